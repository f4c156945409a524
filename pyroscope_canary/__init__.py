"""
Pyroscope Canary Exporter

Periodically ingests a synthetic profile into a Pyroscope cell, queries it
back and exposes the outcome and HTTP timings as Prometheus metrics.
"""

__version__ = "0.1.0"
