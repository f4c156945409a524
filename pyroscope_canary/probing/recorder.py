"""
Probe Recorder

Translates probe results into sink observations: per-probe success, phase
histograms and body size once a probe has finished, response metadata and
certificate facts as each round trip returns.
"""

from datetime import datetime

from ..metrics import sink as m
from .aggregator import aggregate_phases
from .schemas import CertificateSnapshot, ProbeRun


class ProbeRecorder:
    """Writes canary observations into a :class:`~..metrics.sink.MetricsSink`"""

    def __init__(self, sink: m.MetricsSink):
        self.sink = sink

    def record_run(self, run: ProbeRun) -> None:
        """Record everything known about a finished (or aborted) probe run."""
        labels = {"name": run.name}

        self.sink.set_gauge(m.PROBE_HTTP_UNCOMPRESSED_BODY_LENGTH, labels, float(run.body_size))

        durations = aggregate_phases(run.trace_snapshots())
        for phase, value in durations.items():
            self.sink.observe_histogram(m.PROBE_HTTP_DURATION_SECONDS, {"name": run.name, "phase": phase}, value)

        self.sink.set_gauge(m.PROBE_SUCCESS, labels, 1.0 if run.success else 0.0)

    def record_response(
        self,
        probe_name: str,
        status_code: int,
        content_length: int,
        http_version: float,
    ) -> None:
        labels = {"name": probe_name}
        self.sink.set_gauge(m.PROBE_HTTP_STATUS_CODE, labels, float(status_code))
        self.sink.set_gauge(m.PROBE_HTTP_CONTENT_LENGTH, labels, float(content_length))
        self.sink.set_gauge(m.PROBE_HTTP_VERSION, labels, http_version)

    def record_tls(self, snapshot: CertificateSnapshot) -> None:
        self.sink.set_gauge(m.PROBE_HTTP_SSL, {}, 1.0)
        self.sink.set_gauge(m.PROBE_TLS_VERSION_INFO, {"version": snapshot.negotiated_version}, 1.0)

        if snapshot.earliest_leaf_expiry is not None:
            self.sink.set_gauge(m.PROBE_SSL_EARLIEST_CERT_EXPIRY, {}, _unix(snapshot.earliest_leaf_expiry))

        if snapshot.last_verified_chain_expiry is not None:
            self.sink.set_gauge(
                m.PROBE_SSL_LAST_CHAIN_EXPIRY_TIMESTAMP_SECONDS,
                {},
                _unix(snapshot.last_verified_chain_expiry),
            )

        if snapshot.has_leaf:
            self.sink.set_gauge(
                m.PROBE_SSL_LAST_CHAIN_INFO,
                {
                    "fingerprint_sha256": snapshot.fingerprint_sha256,
                    "subject": snapshot.subject or "",
                    "issuer": snapshot.issuer or "",
                    "subjectalternative": snapshot.san_list or "",
                },
                1.0,
            )


def _unix(dt: datetime) -> float:
    return float(int(dt.timestamp()))
