"""Session state machine, tracking coordinator and reporting engine."""

from punchclock.core.reporting import ReportingEngine
from punchclock.core.tracking import TrackingCoordinator

__all__ = [
    "ReportingEngine",
    "TrackingCoordinator",
]
