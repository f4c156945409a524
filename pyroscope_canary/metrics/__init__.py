"""
Metrics Module

Sink contract and its Prometheus adapter.
"""

from .sink import MetricsSink, PrometheusSink

__all__ = [
    'MetricsSink',
    'PrometheusSink',
]
