"""
Canary Configuration

Pydantic model for the exporter settings, plus parsing of Go-style
duration strings (``15s``, ``1m30s``, ``250ms``) used by the CLI flags.
"""

import re
from typing import Optional, Tuple, Union

from pydantic import BaseModel, Field, field_validator

from .probing.schemas import QueryProbeSet

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


def parse_duration(value: Union[str, int, float]) -> float:
    """
    Parse a duration into seconds.

    Accepts numbers (seconds) and Go-style strings made of one or more
    ``<number><unit>`` parts, e.g. ``2s``, ``1m30s``, ``1.5h``, ``250ms``.

    Raises:
        ValueError: If the value is not a valid duration
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)

    text = value.strip()
    if not text:
        raise ValueError("invalid duration: empty string")

    try:
        return float(text)
    except ValueError:
        pass

    total = 0.0
    pos = 0
    for match in _DURATION_PART_RE.finditer(text):
        if match.start() != pos:
            raise ValueError(f"invalid duration: {value!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()

    if pos != len(text):
        raise ValueError(f"invalid duration: {value!r}")
    return total


def parse_listen_address(address: str) -> Tuple[str, int]:
    """``:4101`` -> ("0.0.0.0", 4101); ``127.0.0.1:9000`` -> ("127.0.0.1", 9000)"""
    host, sep, port = address.rpartition(":")
    if not sep:
        raise ValueError(f"listen address {address!r} must be [host]:port")
    try:
        port_number = int(port)
    except ValueError:
        raise ValueError(f"invalid port in listen address {address!r}")
    if not 0 < port_number < 65536:
        raise ValueError(f"port out of range in listen address {address!r}")
    host = host.strip("[]") or "0.0.0.0"
    return host, port_number


class CanaryConfig(BaseModel):
    """Settings of the canary exporter"""
    listen_address: str = Field(default=":4101", description="Listen address for the canary exporter")
    test_frequency: float = Field(default=15.0, description="How often the Pyroscope cell is tested (seconds)")
    test_delay: float = Field(default=2.0, description="Delay between ingest and query requests (seconds)")
    query_probe_set: QueryProbeSet = Field(default=QueryProbeSet.DEFAULT, description="Set of query probes")

    url: str = Field(default="http://localhost:4040", description="URL of the Pyroscope cell")
    tenant_id: Optional[str] = Field(default=None, description="Tenant ID sent as X-Scope-OrgID")
    username: Optional[str] = Field(default=None, description="Basic auth username")
    password: Optional[str] = Field(default=None, description="Basic auth password")
    request_timeout: float = Field(default=10.0, description="Per-request timeout (seconds)")

    log_level: str = Field(default="INFO", description="Log level")
    log_format: str = Field(default="text", description="Log format: text or json")

    @field_validator('test_frequency', 'test_delay', 'request_timeout', mode='before')
    @classmethod
    def parse_durations(cls, v):
        return parse_duration(v)

    @field_validator('test_frequency', 'request_timeout')
    @classmethod
    def validate_positive(cls, v):
        if v <= 0:
            raise ValueError('duration must be positive')
        return v

    @field_validator('test_delay')
    @classmethod
    def validate_delay(cls, v):
        if v < 0:
            raise ValueError('test delay must not be negative')
        return v

    @field_validator('listen_address')
    @classmethod
    def validate_listen_address(cls, v):
        parse_listen_address(v)
        return v

    @field_validator('url')
    @classmethod
    def validate_url(cls, v):
        if not v.startswith(('http://', 'https://')):
            raise ValueError('url must start with http:// or https://')
        return v.rstrip('/')

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        level = v.upper()
        if level not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            raise ValueError(f'unknown log level {v!r}')
        return level

    @field_validator('log_format')
    @classmethod
    def validate_log_format(cls, v):
        if v not in ('text', 'json'):
            raise ValueError('log format must be text or json')
        return v

    @property
    def listen_host(self) -> str:
        return parse_listen_address(self.listen_address)[0]

    @property
    def listen_port(self) -> int:
        return parse_listen_address(self.listen_address)[1]
