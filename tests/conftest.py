"""
Test configuration and fixtures for the canary exporter tests.
"""

import pytest

from pyroscope_canary.metrics.sink import PrometheusSink

from .helpers import make_certificate_der


@pytest.fixture
def sink() -> PrometheusSink:
    """Metrics sink backed by a fresh registry"""
    return PrometheusSink()


@pytest.fixture
def certificate_der() -> bytes:
    return make_certificate_der(dns_names=["pyroscope.example.com", "www.pyroscope.example.com"])
