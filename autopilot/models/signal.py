"""
Signal models for anomaly detection.

A Signal is an immutable detection event emitted by the signal monitor. Only
acknowledge/resolve operations change its status.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from autopilot.utils.time_utils import from_iso, to_iso


class SignalType(Enum):
    """Kinds of anomalies the monitor detects."""
    CPA_SPIKE = "cpa_spike"
    CTR_COLLAPSE = "ctr_collapse"
    CONVERSION_DROP = "conversion_drop"
    ROAS_DECLINE = "roas_decline"
    NEGATIVE_ROI = "negative_roi"
    BUDGET_EXHAUSTION = "budget_exhaustion"
    TRACKING_FAILURE = "tracking_failure"
    QUALITY_SCORE_DROP = "quality_score_drop"
    COMPETITIVE_THREAT = "competitive_threat"
    SEASONAL_ANOMALY = "seasonal_anomaly"
    CONTEXT_GAP = "context_gap"
    STRATEGY_MISALIGNMENT = "strategy_misalignment"


class SignalCategory(Enum):
    PERFORMANCE = "performance"
    FINANCIAL = "financial"
    BUDGET = "budget"
    TECHNICAL = "technical"
    COMPETITIVE = "competitive"
    SEASONAL = "seasonal"
    DATA_QUALITY = "data_quality"
    STRATEGIC = "strategic"


class Severity(Enum):
    """Signal severity tiers, ordered info < warning < critical."""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def priority(self) -> int:
        return {"info": 0, "warning": 1, "critical": 2}[self.value]


class SignalStatus(Enum):
    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"


@dataclass(frozen=True)
class SignalThreshold:
    """Two-tier threshold for one metric."""
    warning: float
    critical: float
    lookback_days: int = 7


@dataclass(frozen=True)
class Signal:
    """A detected anomaly in performance or account knowledge."""
    id: str
    account_id: str
    type: SignalType
    category: SignalCategory
    severity: Severity
    title: str
    description: str
    metric: str
    current_value: float
    previous_value: float
    change_percent: float
    threshold: float
    detected_at: datetime
    channel: Optional[str] = None
    status: SignalStatus = SignalStatus.ACTIVE
    suggested_actions: List[str] = field(default_factory=list)
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolution: Optional[str] = None

    @property
    def is_critical(self) -> bool:
        return self.severity == Severity.CRITICAL

    def acknowledge(self, acknowledged_by: str, at: datetime) -> "Signal":
        """Return an acknowledged copy of this signal."""
        return replace(
            self,
            status=SignalStatus.ACKNOWLEDGED,
            acknowledged_at=at,
            acknowledged_by=acknowledged_by,
        )

    def resolve(self, resolution: str, at: datetime) -> "Signal":
        """Return a resolved copy of this signal."""
        return replace(self, status=SignalStatus.RESOLVED, resolved_at=at, resolution=resolution)

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "type": self.type.value,
            "category": self.category.value,
            "severity": self.severity.value,
            "title": self.title,
            "description": self.description,
            "metric": self.metric,
            "current_value": self.current_value,
            "previous_value": self.previous_value,
            "change_percent": self.change_percent,
            "threshold": self.threshold,
            "detected_at": to_iso(self.detected_at),
            "channel": self.channel,
            "status": self.status.value,
            "suggested_actions": list(self.suggested_actions),
            "acknowledged_at": to_iso(self.acknowledged_at),
            "acknowledged_by": self.acknowledged_by,
            "resolved_at": to_iso(self.resolved_at),
            "resolution": self.resolution,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "Signal":
        return cls(
            id=data["id"],
            account_id=data["account_id"],
            type=SignalType(data["type"]),
            category=SignalCategory(data["category"]),
            severity=Severity(data["severity"]),
            title=data.get("title", ""),
            description=data.get("description", ""),
            metric=data.get("metric", ""),
            current_value=data.get("current_value", 0.0),
            previous_value=data.get("previous_value", 0.0),
            change_percent=data.get("change_percent", 0.0),
            threshold=data.get("threshold", 0.0),
            detected_at=from_iso(data["detected_at"]),
            channel=data.get("channel"),
            status=SignalStatus(data.get("status", "active")),
            suggested_actions=list(data.get("suggested_actions", [])),
            acknowledged_at=from_iso(data.get("acknowledged_at")),
            acknowledged_by=data.get("acknowledged_by"),
            resolved_at=from_iso(data.get("resolved_at")),
            resolution=data.get("resolution"),
        )

    def __str__(self) -> str:
        return (
            f"Signal(type={self.type.value}, "
            f"severity={self.severity.value}, "
            f"change={self.change_percent:.1f}%)"
        )


@dataclass
class AlertConfig:
    """Per-account alert eligibility settings."""
    enabled: bool = True
    min_severity: Severity = Severity.WARNING
    enabled_types: Optional[List[SignalType]] = None  # None = all types
    quiet_hours_start: Optional[int] = None  # hour 0-23, UTC
    quiet_hours_end: Optional[int] = None

    @property
    def has_quiet_hours(self) -> bool:
        return self.quiet_hours_start is not None and self.quiet_hours_end is not None

    def in_quiet_hours(self, hour: int) -> bool:
        """Check if an hour falls in the quiet window (wraps past midnight)."""
        if not self.has_quiet_hours:
            return False
        start, end = self.quiet_hours_start, self.quiet_hours_end
        if start == end:
            return False
        if start < end:
            return start <= hour < end
        return hour >= start or hour < end

    def to_dict(self) -> Dict:
        return {
            "enabled": self.enabled,
            "min_severity": self.min_severity.value,
            "enabled_types": (
                [t.value for t in self.enabled_types]
                if self.enabled_types is not None else None
            ),
            "quiet_hours_start": self.quiet_hours_start,
            "quiet_hours_end": self.quiet_hours_end,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "AlertConfig":
        enabled_types = data.get("enabled_types")
        return cls(
            enabled=data.get("enabled", True),
            min_severity=Severity(data.get("min_severity", "warning")),
            enabled_types=(
                [SignalType(t) for t in enabled_types]
                if enabled_types is not None else None
            ),
            quiet_hours_start=data.get("quiet_hours_start"),
            quiet_hours_end=data.get("quiet_hours_end"),
        )
