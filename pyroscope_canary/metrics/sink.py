"""
Metrics Sink

The probing engine only needs somewhere to put gauge values and histogram
observations. ``MetricsSink`` is that contract; ``PrometheusSink`` backs it
with ``prometheus_client`` metrics living in a private registry so the
exporter only ever exposes canary metrics.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Protocol, Sequence, Tuple

from prometheus_client import CollectorRegistry, Gauge, Histogram, generate_latest
from prometheus_client import CONTENT_TYPE_LATEST
from prometheus_client.openmetrics import exposition as openmetrics

logger = logging.getLogger(__name__)

Labels = Dict[str, str]


class MetricsSink(Protocol):
    """Receives named observations from the probing engine"""

    def set_gauge(self, name: str, labels: Labels, value: float) -> None:
        ...

    def observe_histogram(self, name: str, labels: Labels, value: float) -> None:
        ...


# ---------------------------------------------------------------------------
# Metric names (stable contract)
# ---------------------------------------------------------------------------

PROBE_SUCCESS = "probe_success"
PROBE_HTTP_DURATION_SECONDS = "probe_http_duration_seconds"
PROBE_HTTP_CONTENT_LENGTH = "probe_http_content_length"
PROBE_HTTP_UNCOMPRESSED_BODY_LENGTH = "probe_http_uncompressed_body_length"
PROBE_HTTP_STATUS_CODE = "probe_http_status_code"
PROBE_HTTP_SSL = "probe_http_ssl"
PROBE_SSL_EARLIEST_CERT_EXPIRY = "probe_ssl_earliest_cert_expiry"
PROBE_SSL_LAST_CHAIN_EXPIRY_TIMESTAMP_SECONDS = "probe_ssl_last_chain_expiry_timestamp_seconds"
PROBE_TLS_VERSION_INFO = "probe_tls_version_info"
PROBE_SSL_LAST_CHAIN_INFO = "probe_ssl_last_chain_info"
PROBE_HTTP_VERSION = "probe_http_version"

DURATION_BUCKETS = tuple(0.00025 * 4 ** i for i in range(10))


@dataclass(frozen=True)
class MetricDefinition:
    name: str
    documentation: str
    labelnames: Tuple[str, ...] = ()
    histogram: bool = False
    buckets: Optional[Sequence[float]] = None


METRIC_DEFINITIONS = (
    MetricDefinition(PROBE_SUCCESS, "Displays whether or not the probe was a success", ("name",)),
    MetricDefinition(
        PROBE_HTTP_DURATION_SECONDS,
        "Duration of http request by phase, summed over all redirects",
        ("name", "phase"),
        histogram=True,
        buckets=DURATION_BUCKETS,
    ),
    MetricDefinition(PROBE_HTTP_CONTENT_LENGTH, "Length of http content response", ("name",)),
    MetricDefinition(PROBE_HTTP_UNCOMPRESSED_BODY_LENGTH, "Length of uncompressed response body", ("name",)),
    MetricDefinition(PROBE_HTTP_STATUS_CODE, "Response HTTP status code", ("name",)),
    MetricDefinition(PROBE_HTTP_SSL, "Indicates if SSL was used for the final redirect"),
    MetricDefinition(PROBE_SSL_EARLIEST_CERT_EXPIRY, "Returns earliest SSL cert expiry in unixtime"),
    MetricDefinition(
        PROBE_SSL_LAST_CHAIN_EXPIRY_TIMESTAMP_SECONDS,
        "Returns last SSL chain expiry in timestamp",
    ),
    MetricDefinition(PROBE_TLS_VERSION_INFO, "Returns the TLS version used or NaN when unknown", ("version",)),
    MetricDefinition(
        PROBE_SSL_LAST_CHAIN_INFO,
        "Contains SSL leaf certificate information",
        ("fingerprint_sha256", "subject", "issuer", "subjectalternative"),
    ),
    MetricDefinition(PROBE_HTTP_VERSION, "Returns the version of HTTP of the probe response", ("name",)),
)


class PrometheusSink:
    """
    ``MetricsSink`` backed by a dedicated ``CollectorRegistry``.

    prometheus_client metrics are thread safe, so the scheduler can write
    while the HTTP server renders the exposition.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()
        self._metrics = {}

        for definition in METRIC_DEFINITIONS:
            if definition.histogram:
                metric = Histogram(
                    definition.name,
                    definition.documentation,
                    definition.labelnames,
                    buckets=definition.buckets,
                    registry=self.registry,
                )
            else:
                metric = Gauge(
                    definition.name,
                    definition.documentation,
                    definition.labelnames,
                    registry=self.registry,
                )
            self._metrics[definition.name] = metric

    def _child(self, name: str, labels: Labels):
        metric = self._metrics.get(name)
        if metric is None:
            raise KeyError(f"Unknown metric: {name}")
        return metric.labels(**labels) if labels else metric

    def set_gauge(self, name: str, labels: Labels, value: float) -> None:
        self._child(name, labels).set(value)

    def observe_histogram(self, name: str, labels: Labels, value: float) -> None:
        self._child(name, labels).observe(value)

    def get_sample_value(self, name: str, labels: Optional[Labels] = None) -> Optional[float]:
        return self.registry.get_sample_value(name, labels or {})

    def render(self, accept_header: Optional[str] = None) -> Tuple[bytes, str]:
        """
        Serialize every recorded metric.

        OpenMetrics is used when the scraper asks for it in its ``Accept``
        header, the classic text format otherwise.
        """
        if accept_header and "application/openmetrics-text" in accept_header:
            return openmetrics.generate_latest(self.registry), openmetrics.CONTENT_TYPE_LATEST
        return generate_latest(self.registry), CONTENT_TYPE_LATEST
