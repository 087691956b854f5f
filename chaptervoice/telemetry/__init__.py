"""Telemetry and observability helpers.

This package emits deterministic structured run events for pipeline stages.
"""

from .logger import RunLogger

__all__ = ["RunLogger"]
