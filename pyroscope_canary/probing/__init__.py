"""
Probing Module

This module provides the instrumented probe engine of the canary:
- Per round trip phase tracing (DNS, connect, TLS, processing, transfer)
- Phase aggregation over redirect chains
- TLS certificate inspection
- Probe catalog, cycle orchestration and scheduling
"""

from .phase_trace import PhaseTrace
from .aggregator import aggregate_phases
from .transport import InstrumentedTransport
from .catalog import Probe, ProbeCatalog, build_catalog
from .recorder import ProbeRecorder
from .orchestrator import CanaryOrchestrator
from .scheduler import CycleScheduler
from .schemas import (
    CertificateInfo,
    CertificateSnapshot,
    CycleResult,
    Phase,
    ProbeRun,
    QueryProbeSet,
    TLSConnectionState,
)

__all__ = [
    'PhaseTrace',
    'aggregate_phases',
    'InstrumentedTransport',
    'Probe',
    'ProbeCatalog',
    'build_catalog',
    'ProbeRecorder',
    'CanaryOrchestrator',
    'CycleScheduler',
    'CertificateInfo',
    'CertificateSnapshot',
    'CycleResult',
    'Phase',
    'ProbeRun',
    'QueryProbeSet',
    'TLSConnectionState',
]
