"""
Phase Aggregator

Reduces the round-trip traces of one probe run into per-phase durations,
summed over every redirect hop.
"""

from typing import Dict, Iterable

from .phase_trace import PhaseTrace
from .schemas import Phase


def aggregate_phases(traces: Iterable[PhaseTrace]) -> Dict[str, float]:
    """
    Sum phase durations (seconds) over all round trips of a probe.

    A round trip that never got a connection, a response or a full body
    stops contributing at that stage, so a failure shows up as missing
    samples for the later phases rather than as zero-valued ones.

    Returns:
        Mapping of phase name to summed duration, only for phases that at
        least one round trip contributed to.
    """
    durations: Dict[str, float] = {}

    def add(phase: Phase, value: float) -> None:
        durations[phase.value] = durations.get(phase.value, 0.0) + value

    for trace in traces:
        # Resolution never finished, nothing usable on this hop.
        if trace.start is None or trace.dns_done is None:
            continue
        add(Phase.RESOLVE, trace.dns_done - trace.start)

        # No connection, e.g. a redirect target that refused us.
        if trace.got_conn is None:
            continue

        if trace.is_tls:
            if trace.connect_done is not None:
                add(Phase.CONNECT, trace.connect_done - trace.dns_done)
            if trace.tls_start is not None and trace.tls_done is not None:
                add(Phase.TLS, trace.tls_done - trace.tls_start)
        else:
            add(Phase.CONNECT, trace.got_conn - trace.dns_done)

        # No response from the server.
        if trace.response_start is None:
            continue
        add(Phase.PROCESSING, trace.response_start - trace.got_conn)

        # Body never fully read: the request failed or was redirected.
        if trace.end is None:
            continue
        add(Phase.TRANSFER, trace.end - trace.response_start)

    return durations
