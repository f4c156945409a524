"""
Target Module

Client for the Pyroscope cell under test.
"""

from .client import PyroscopeClient

__all__ = ['PyroscopeClient']
