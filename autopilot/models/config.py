"""
Per-account autopilot configuration.

Defines the autonomy tiers, risk tolerance and cycle frequency enums, and the
AccountConfig record that governs what the control loop may do for an account.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from autopilot.utils.time_utils import from_iso, to_iso, utc_now


class AutonomyLevel(Enum):
    """How much the loop may act without human approval."""
    MANUAL_ONLY = "manual_only"
    AI_ASSISTED = "ai_assisted"
    SEMI_AUTONOMOUS = "semi_autonomous"
    FULL_AUTONOMOUS = "full_autonomous"

    @property
    def rank(self) -> int:
        """Position in the autonomy ladder (0 = manual_only)."""
        return AUTONOMY_ORDER.index(self)


AUTONOMY_ORDER = [
    AutonomyLevel.MANUAL_ONLY,
    AutonomyLevel.AI_ASSISTED,
    AutonomyLevel.SEMI_AUTONOMOUS,
    AutonomyLevel.FULL_AUTONOMOUS,
]


class RiskTolerance(Enum):
    """Appetite for change; controls how many hypotheses are selected."""
    CONSERVATIVE = "conservative"
    MODERATE = "moderate"
    AGGRESSIVE = "aggressive"


class CycleFrequency(Enum):
    """How often scheduled cycles run."""
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"


@dataclass
class AccountConfig:
    """
    Autopilot settings for one account.

    Created with defaults on first use and updated on every config change or
    cycle completion.
    """
    account_id: str
    enabled: bool = False
    autonomy_level: AutonomyLevel = AutonomyLevel.AI_ASSISTED
    cycle_frequency: CycleFrequency = CycleFrequency.WEEKLY
    allowed_domains: List[str] = field(
        default_factory=lambda: ["performance_media", "creative", "audience"]
    )
    budget_flexibility: float = 0.2
    experiment_budget_percent: float = 10.0
    risk_tolerance: RiskTolerance = RiskTolerance.MODERATE
    require_approval_for: List[str] = field(default_factory=lambda: ["budget", "channel"])
    notify_on_changes: bool = True
    emergency_stop_threshold: float = 30.0  # percent deviation
    last_cycle_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def requires_approval(self, change_type: str) -> bool:
        """Check if changes of this type always need human sign-off."""
        return change_type in self.require_approval_for

    def to_dict(self) -> Dict:
        """Convert to dictionary for serialization."""
        return {
            "account_id": self.account_id,
            "enabled": self.enabled,
            "autonomy_level": self.autonomy_level.value,
            "cycle_frequency": self.cycle_frequency.value,
            "allowed_domains": list(self.allowed_domains),
            "budget_flexibility": self.budget_flexibility,
            "experiment_budget_percent": self.experiment_budget_percent,
            "risk_tolerance": self.risk_tolerance.value,
            "require_approval_for": list(self.require_approval_for),
            "notify_on_changes": self.notify_on_changes,
            "emergency_stop_threshold": self.emergency_stop_threshold,
            "last_cycle_at": to_iso(self.last_cycle_at),
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "AccountConfig":
        return cls(
            account_id=data["account_id"],
            enabled=data.get("enabled", False),
            autonomy_level=AutonomyLevel(data.get("autonomy_level", "ai_assisted")),
            cycle_frequency=CycleFrequency(data.get("cycle_frequency", "weekly")),
            allowed_domains=list(data.get("allowed_domains", [])),
            budget_flexibility=data.get("budget_flexibility", 0.2),
            experiment_budget_percent=data.get("experiment_budget_percent", 10.0),
            risk_tolerance=RiskTolerance(data.get("risk_tolerance", "moderate")),
            require_approval_for=list(data.get("require_approval_for", [])),
            notify_on_changes=data.get("notify_on_changes", True),
            emergency_stop_threshold=data.get("emergency_stop_threshold", 30.0),
            last_cycle_at=from_iso(data.get("last_cycle_at")),
            created_at=from_iso(data.get("created_at")) or utc_now(),
            updated_at=from_iso(data.get("updated_at")) or utc_now(),
        )
