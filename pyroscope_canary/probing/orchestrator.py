"""
Canary Orchestrator

Coordinates one test cycle against a Pyroscope cell:
1. Ingest a synthetic profile
2. Wait for the configured delay
3. Run every configured query probe
4. Aggregate failures into the cycle result

Each probe execution gets a fresh instrumented transport and HTTP client,
so nothing is shared between probes except the metrics sink.
"""

import asyncio
from datetime import datetime, timezone
from typing import Callable, Dict, Optional
import logging

import httpx

from ..errors import IngestError, QueryProbesError
from ..metrics.sink import MetricsSink
from ..target.client import PyroscopeClient
from .catalog import Probe, ProbeCatalog
from .recorder import ProbeRecorder
from .schemas import CycleResult, ProbeRun
from .transport import InstrumentedTransport, Resolver

logger = logging.getLogger(__name__)

TransportFactory = Callable[[], httpx.AsyncBaseTransport]


def default_transport() -> httpx.AsyncBaseTransport:
    """Base transport with keep-alives disabled so every probe measures a fresh connection"""
    return httpx.AsyncHTTPTransport(limits=httpx.Limits(max_keepalive_connections=0))


class CanaryOrchestrator:
    """
    Runs the ingest and query probes of a cycle and records their metrics.

    Args:
        api: Client for the cell under test
        catalog: Probes to run
        sink: Destination for all probe metrics
        test_delay: Seconds to wait between ingest and queries
        transport_factory: Builds the base transport of each probe execution
        resolver: DNS resolver used to time the resolve phase
    """

    def __init__(
        self,
        api: PyroscopeClient,
        catalog: ProbeCatalog,
        sink: MetricsSink,
        test_delay: float = 2.0,
        transport_factory: Optional[TransportFactory] = None,
        resolver: Optional[Resolver] = None,
    ):
        self.api = api
        self.catalog = catalog
        self.recorder = ProbeRecorder(sink)
        self.test_delay = test_delay
        self.transport_factory = transport_factory or default_transport
        self.resolver = resolver

    async def run_cycle(self, now: Optional[datetime] = None) -> CycleResult:
        """
        Execute one complete cycle.

        An ingest failure ends the cycle straight away since there is
        nothing to query. Query probes are independent: all of them run and
        their failures are reported together.

        Returns:
            CycleResult whose ``error`` is None only if every probe succeeded
        """
        now = now or datetime.now(timezone.utc)
        result = CycleResult(now=now)

        # Step 1: ingest a synthetic profile
        result.ingest = await self.run_probe(self.catalog.ingest, now)
        if not result.ingest.success:
            error = IngestError(result.ingest.error)
            error.__cause__ = result.ingest.error
            result.error = error
            return result

        # Step 2: give the cell time to make the profile queryable
        if self.test_delay > 0:
            logger.info(f"Waiting before running a query: delay={self.test_delay}s")
            await asyncio.sleep(self.test_delay)

        # Step 3: query the data back
        errors: Dict[str, BaseException] = {}
        for probe in self.catalog.queries:
            run = await self.run_probe(probe, now)
            result.queries.append(run)
            if not run.success:
                errors[probe.name] = run.error

        if errors:
            result.error = QueryProbesError(errors, total=len(self.catalog.queries))

        return result

    async def run_probe(self, probe: Probe, now: datetime) -> ProbeRun:
        """
        Execute a single probe and record its metrics.

        Metrics are recorded even when the probe fails or is cancelled by
        the cycle deadline; a cancelled probe counts as a failure and the
        cancellation is re-raised.
        """
        logger.info(f"Starting probe: probe_name={probe.name}")

        run = ProbeRun(name=probe.name)

        try:
            transport = InstrumentedTransport(self.transport_factory(), run, self.recorder, resolver=self.resolver)
            async with self.api.build_client(transport) as client:
                try:
                    await probe.func(client, now)
                finally:
                    # Body has been read (or the probe gave up): close the last
                    # round trip before the connection pool is torn down.
                    run.finish()
        except Exception as e:
            run.error = e
            logger.error(f"Probe failed: probe_name={probe.name} err={e}")
        else:
            run.success = True
            logger.info(f"Probe successful: probe_name={probe.name}")
        finally:
            self.recorder.record_run(run)

        return run
