"""
Canary Error Handling

Defines the exceptions raised while testing a Pyroscope cell.
"""

from typing import Dict, Optional


class CanaryError(Exception):
    """Base class for cycle-level failures"""
    pass


class IngestError(CanaryError):
    """Raised when the synthetic profile could not be ingested"""

    def __init__(self, error: BaseException):
        super().__init__(f"error during ingestion: {error}")
        self.error = error


class QueryProbesError(CanaryError):
    """Raised when one or more query probes failed within a cycle"""

    def __init__(self, errors: Dict[str, BaseException], total: int):
        super().__init__(f"{len(errors)} error(s) reported from query probes")
        self.errors = errors
        self.total = total

    @property
    def failed(self) -> int:
        return len(self.errors)

    def details(self) -> str:
        """One line per failing probe, for logging."""
        return "\n".join(f"{name}: {error}" for name, error in self.errors.items())


class TargetAPIError(Exception):
    """Raised when the Pyroscope API answers with a non-success status"""

    def __init__(self, operation: str, status_code: int, body: Optional[str] = None):
        message = f"{operation} returned HTTP {status_code}"
        if body:
            message = f"{message}: {body[:200]}"
        super().__init__(message)
        self.operation = operation
        self.status_code = status_code


class UnexpectedResponseError(Exception):
    """Raised when the Pyroscope API answers successfully but without the canary's data"""
    pass
