"""
Runtime settings read from the environment.
"""

import os
from dataclasses import dataclass
from typing import Optional


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class AutopilotSettings:
    """
    Process-level settings.

    Environment variables:
        SLACK_WEBHOOK_URL             Slack incoming webhook (optional)
        AUTOPILOT_AUDIT_LOG_FILE      JSONL audit mirror file (optional)
        AUTOPILOT_STORE_DIR           JSON file store directory (default: in-memory)
        AUTOPILOT_GENERATOR_TIMEOUT   Seconds per generator call (default 30)
        AUTOPILOT_MAX_WORKERS         Accounts run in parallel (default 4)
        AUTOPILOT_GLOBAL_ENABLED      Global kill switch on start (default true)
    """
    slack_webhook_url: Optional[str] = None
    audit_log_file: Optional[str] = None
    store_dir: Optional[str] = None
    generator_timeout: float = 30.0
    max_workers: int = 4
    global_enabled: bool = True

    @classmethod
    def from_env(cls) -> "AutopilotSettings":
        return cls(
            slack_webhook_url=os.getenv("SLACK_WEBHOOK_URL") or None,
            audit_log_file=os.getenv("AUTOPILOT_AUDIT_LOG_FILE") or None,
            store_dir=os.getenv("AUTOPILOT_STORE_DIR") or None,
            generator_timeout=float(os.getenv("AUTOPILOT_GENERATOR_TIMEOUT", "30")),
            max_workers=int(os.getenv("AUTOPILOT_MAX_WORKERS", "4")),
            global_enabled=_env_bool("AUTOPILOT_GLOBAL_ENABLED", True),
        )
