"""
Phase Trace

Timestamped lifecycle of a single HTTP round trip.

A trace is created by the instrumented transport when a round trip starts
and is handed to the event hooks of that round trip only. Every field is
written at most once; the aggregator reads the trace after the probe has
completed.
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional


@dataclass
class PhaseTrace:
    """Timings for one HTTP round trip (one entry per redirect hop)."""

    is_tls: bool = False
    start: Optional[float] = None
    dns_done: Optional[float] = None
    connect_done: Optional[float] = None
    got_conn: Optional[float] = None
    response_start: Optional[float] = None
    end: Optional[float] = None
    tls_start: Optional[float] = None
    tls_done: Optional[float] = None

    clock: Callable[[], float] = field(default=time.perf_counter, repr=False, compare=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False, compare=False)

    def _mark(self, name: str) -> None:
        with self._lock:
            if getattr(self, name) is None:
                setattr(self, name, self.clock())

    # ------------------------------------------------------------------
    # Lifecycle hooks
    # ------------------------------------------------------------------

    def mark_dns_start(self) -> None:
        self._mark("start")

    def mark_dns_done(self) -> None:
        self._mark("dns_done")

    def mark_connect_start(self) -> None:
        """
        Backfill the resolve phase for direct-IP connections.

        No DNS lookup happened if ``dns_done`` is still unset, so the
        resolve phase collapses to zero instead of staying undefined.
        """
        with self._lock:
            if self.dns_done is None:
                now = self.clock()
                self.start = now
                self.dns_done = now

    def mark_connect_done(self) -> None:
        self._mark("connect_done")

    def mark_got_conn(self) -> None:
        self._mark("got_conn")

    def mark_tls_start(self) -> None:
        self._mark("tls_start")

    def mark_tls_done(self) -> None:
        self._mark("tls_done")

    def mark_response_start(self) -> None:
        self._mark("response_start")

    def mark_end(self) -> None:
        self._mark("end")

    def snapshot(self) -> "PhaseTrace":
        """Consistent copy of the timestamps, taken under the lock."""
        with self._lock:
            return PhaseTrace(
                is_tls=self.is_tls,
                start=self.start,
                dns_done=self.dns_done,
                connect_done=self.connect_done,
                got_conn=self.got_conn,
                response_start=self.response_start,
                end=self.end,
                tls_start=self.tls_start,
                tls_done=self.tls_done,
                clock=self.clock,
            )
