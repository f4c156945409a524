"""
Probe Catalog

The ordered set of named probes a cycle runs: the ingest probe first, then
the query probes selected by the configured probe set.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, List, Union

import httpx

from ..target.client import PyroscopeClient
from .schemas import QueryProbeSet

ProbeFunc = Callable[[httpx.AsyncClient, datetime], Awaitable[None]]

INGEST_PROBE_NAME = "ingest"


@dataclass(frozen=True)
class Probe:
    """A named operation against the cell under test"""
    name: str
    func: ProbeFunc


@dataclass
class ProbeCatalog:
    ingest: Probe
    queries: List[Probe] = field(default_factory=list)

    @property
    def names(self) -> List[str]:
        return [self.ingest.name] + [probe.name for probe in self.queries]


def build_catalog(api: PyroscopeClient, probe_set: Union[QueryProbeSet, str] = QueryProbeSet.DEFAULT) -> ProbeCatalog:
    """
    Build the probe catalog for ``probe_set``.

    ``default`` runs only the merge-profile query; ``all`` adds every other
    query and render probe.
    """
    probe_set = QueryProbeSet(probe_set)

    queries = [Probe("query-select-merge-profile", api.select_merge_profile)]
    if probe_set == QueryProbeSet.ALL:
        queries.extend([
            Probe("query-profile-types", api.profile_types),
            Probe("query-series", api.series),
            Probe("query-label-names", api.label_names),
            Probe("query-label-values", api.label_values),
            Probe("query-select-series", api.select_series),
            Probe("query-select-merge-stacktraces", api.select_merge_stacktraces),
            Probe("query-select-merge-span-profile", api.select_merge_span_profile),
            Probe("query-get-profile-stats", api.get_profile_stats),
            Probe("render", api.render),
            Probe("render-diff", api.render_diff),
        ])

    return ProbeCatalog(ingest=Probe(INGEST_PROBE_NAME, api.ingest_profile), queries=queries)
