"""Utility modules for notifications and time handling."""

from autopilot.utils.time_utils import utc_now, to_iso, from_iso, new_id

__all__ = [
    "utc_now",
    "to_iso",
    "from_iso",
    "new_id",
]
