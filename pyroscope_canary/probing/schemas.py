"""
Probing Schemas

Data models shared by the transport, the certificate inspector and the
orchestrator. TLS facts are Pydantic models; per-probe runtime state is kept
in dataclasses because it is mutated while the probe is in flight.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .phase_trace import PhaseTrace


class Phase(str, Enum):
    """Named segments of a round trip's latency"""
    RESOLVE = "resolve"
    CONNECT = "connect"
    TLS = "tls"
    PROCESSING = "processing"
    TRANSFER = "transfer"


class QueryProbeSet(str, Enum):
    """Selectable sets of query probes"""
    DEFAULT = "default"  # ingest + merge-profile query
    ALL = "all"          # ingest + every query probe


class CertificateInfo(BaseModel):
    """Facts extracted from one X.509 certificate"""
    model_config = ConfigDict(frozen=True)

    fingerprint_sha256: str = ""
    subject: str = ""
    issuer: str = ""
    dns_names: List[str] = Field(default_factory=list)
    not_after: Optional[datetime] = None  # None means no expiry data


class TLSConnectionState(BaseModel):
    """Negotiated TLS parameters and certificates of a finished handshake"""
    model_config = ConfigDict(frozen=True)

    version: Optional[str] = None
    peer_certificates: List[CertificateInfo] = Field(default_factory=list)
    verified_chains: List[List[CertificateInfo]] = Field(default_factory=list)


class CertificateSnapshot(BaseModel):
    """Certificate facts reported for one TLS round trip"""
    model_config = ConfigDict(frozen=True)

    earliest_leaf_expiry: Optional[datetime] = None
    last_verified_chain_expiry: Optional[datetime] = None
    fingerprint_sha256: Optional[str] = None
    subject: Optional[str] = None
    issuer: Optional[str] = None
    san_list: Optional[str] = None
    negotiated_version: str = "unknown"

    @property
    def has_leaf(self) -> bool:
        return self.fingerprint_sha256 is not None


@dataclass
class ProbeRun:
    """
    One execution of a named probe.

    Holds the round-trip traces in chronological order (later entries are
    redirect hops) and the number of response body bytes read so far.
    """

    name: str
    traces: List[PhaseTrace] = field(default_factory=list)
    success: bool = False
    error: Optional[BaseException] = None

    _body_size: int = field(default=0, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False, compare=False)

    def new_trace(self, is_tls: bool) -> PhaseTrace:
        trace = PhaseTrace(is_tls=is_tls)
        with self._lock:
            self.traces.append(trace)
        return trace

    def add_body_bytes(self, n: int) -> None:
        with self._lock:
            self._body_size += n

    @property
    def body_size(self) -> int:
        with self._lock:
            return self._body_size

    def finish(self) -> None:
        """Mark the end of the last round trip once the body has been drained."""
        with self._lock:
            last = self.traces[-1] if self.traces else None
        if last is not None:
            last.mark_end()

    def trace_snapshots(self) -> List[PhaseTrace]:
        with self._lock:
            traces = list(self.traces)
        return [t.snapshot() for t in traces]


@dataclass
class CycleResult:
    """Outcome of one scheduled cycle: ingest, delay, queries"""

    now: datetime
    ingest: Optional[ProbeRun] = None
    queries: List[ProbeRun] = field(default_factory=list)
    error: Optional[Exception] = None

    @property
    def success(self) -> bool:
        return self.error is None
