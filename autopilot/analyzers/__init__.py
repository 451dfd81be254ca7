"""Analyzers for performance and knowledge signal detection."""

from autopilot.analyzers.signal_monitor import SignalMonitor

__all__ = [
    "SignalMonitor",
]
