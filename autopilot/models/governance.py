"""
Governance models: approval requests, emergency state and the audit trail.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from autopilot.models.change import ChangeKind
from autopilot.models.config import AutonomyLevel
from autopilot.utils.time_utils import from_iso, new_id, to_iso, utc_now


class ApprovalStatus(Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"
    AUTO_APPROVED = "auto_approved"


class Priority(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class ApprovalRequest:
    """A gated change waiting for human sign-off."""
    account_id: str
    type: ChangeKind
    title: str
    description: str
    proposed_change: Dict[str, Any]
    reasoning: str
    expected_impact: str
    requested_at: datetime
    expires_at: datetime
    risks: List[str] = field(default_factory=list)
    rules_triggered: List[str] = field(default_factory=list)
    status: ApprovalStatus = ApprovalStatus.PENDING
    requested_by: str = "autopilot"
    priority: Priority = Priority.MEDIUM
    cycle_id: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    review_notes: Optional[str] = None
    id: str = field(default_factory=lambda: new_id("approval"))

    @property
    def is_pending(self) -> bool:
        return self.status == ApprovalStatus.PENDING

    def is_expired(self, now: datetime) -> bool:
        """Check if a pending request has passed its expiry time."""
        return self.is_pending and self.expires_at < now

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "type": self.type.value,
            "title": self.title,
            "description": self.description,
            "proposed_change": self.proposed_change,
            "reasoning": self.reasoning,
            "expected_impact": self.expected_impact,
            "requested_at": to_iso(self.requested_at),
            "expires_at": to_iso(self.expires_at),
            "risks": list(self.risks),
            "rules_triggered": list(self.rules_triggered),
            "status": self.status.value,
            "requested_by": self.requested_by,
            "priority": self.priority.value,
            "cycle_id": self.cycle_id,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": to_iso(self.reviewed_at),
            "review_notes": self.review_notes,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "ApprovalRequest":
        return cls(
            id=data["id"],
            account_id=data["account_id"],
            type=ChangeKind(data["type"]),
            title=data.get("title", ""),
            description=data.get("description", ""),
            proposed_change=data.get("proposed_change") or {},
            reasoning=data.get("reasoning", ""),
            expected_impact=data.get("expected_impact", ""),
            requested_at=from_iso(data["requested_at"]),
            expires_at=from_iso(data["expires_at"]),
            risks=list(data.get("risks", [])),
            rules_triggered=list(data.get("rules_triggered", [])),
            status=ApprovalStatus(data.get("status", "pending")),
            requested_by=data.get("requested_by", "autopilot"),
            priority=Priority(data.get("priority", "medium")),
            cycle_id=data.get("cycle_id"),
            reviewed_by=data.get("reviewed_by"),
            reviewed_at=from_iso(data.get("reviewed_at")),
            review_notes=data.get("review_notes"),
        )


@dataclass(frozen=True)
class ApprovalDecision:
    """A reviewer's verdict on an approval request."""
    request_id: str
    approved: bool
    reviewed_by: str
    notes: Optional[str] = None


class EmergencyStatus(Enum):
    ACTIVE = "active"
    RESOLVED = "resolved"
    SCHEDULED_RESUME = "scheduled_resume"


@dataclass
class EmergencyState:
    """Account-level kill switch state."""
    account_id: str
    triggered: bool = False
    status: EmergencyStatus = EmergencyStatus.RESOLVED
    triggered_at: Optional[datetime] = None
    triggered_by: Optional[str] = None
    reason: Optional[str] = None
    affected_channels: List[str] = field(default_factory=list)
    auto_resume_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "account_id": self.account_id,
            "triggered": self.triggered,
            "status": self.status.value,
            "triggered_at": to_iso(self.triggered_at),
            "triggered_by": self.triggered_by,
            "reason": self.reason,
            "affected_channels": list(self.affected_channels),
            "auto_resume_at": to_iso(self.auto_resume_at),
            "resolved_at": to_iso(self.resolved_at),
            "resolved_by": self.resolved_by,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "EmergencyState":
        return cls(
            account_id=data["account_id"],
            triggered=data.get("triggered", False),
            status=EmergencyStatus(data.get("status", "resolved")),
            triggered_at=from_iso(data.get("triggered_at")),
            triggered_by=data.get("triggered_by"),
            reason=data.get("reason"),
            affected_channels=list(data.get("affected_channels") or []),
            auto_resume_at=from_iso(data.get("auto_resume_at")),
            resolved_at=from_iso(data.get("resolved_at")),
            resolved_by=data.get("resolved_by"),
        )


class AutopilotAction(Enum):
    """Every action that can appear in the audit trail."""
    CYCLE_STARTED = "cycle_started"
    CYCLE_COMPLETED = "cycle_completed"
    HYPOTHESIS_GENERATED = "hypothesis_generated"
    HYPOTHESIS_VALIDATED = "hypothesis_validated"
    EXPERIMENT_CREATED = "experiment_created"
    EXPERIMENT_STARTED = "experiment_started"
    EXPERIMENT_COMPLETED = "experiment_completed"
    BUDGET_REALLOCATED = "budget_reallocated"
    CREATIVE_OPTIMIZED = "creative_optimized"
    AUDIENCE_REFINED = "audience_refined"
    CHANGE_BLOCKED = "change_blocked"
    SIGNAL_DETECTED = "signal_detected"
    ALERT_TRIGGERED = "alert_triggered"
    EMERGENCY_STOP = "emergency_stop"
    EMERGENCY_RESOLVED = "emergency_resolved"
    APPROVAL_REQUESTED = "approval_requested"
    APPROVAL_GRANTED = "approval_granted"
    APPROVAL_DENIED = "approval_denied"
    APPROVAL_EXPIRED = "approval_expired"
    CHANGE_REVERTED = "change_reverted"
    HUMAN_OVERRIDE = "human_override"
    CONFIG_CHANGED = "config_changed"
    RULE_EVALUATION_FAILED = "rule_evaluation_failed"
    GENERATOR_FAILED = "generator_failed"


class LogCategory(Enum):
    CYCLE = "cycle"
    HYPOTHESIS = "hypothesis"
    EXPERIMENT = "experiment"
    OPTIMIZATION = "optimization"
    SIGNAL = "signal"
    APPROVAL = "approval"
    OVERRIDE = "override"
    ERROR = "error"


# Static action -> category table
ACTION_CATEGORIES = {
    AutopilotAction.CYCLE_STARTED: LogCategory.CYCLE,
    AutopilotAction.CYCLE_COMPLETED: LogCategory.CYCLE,
    AutopilotAction.HYPOTHESIS_GENERATED: LogCategory.HYPOTHESIS,
    AutopilotAction.HYPOTHESIS_VALIDATED: LogCategory.HYPOTHESIS,
    AutopilotAction.EXPERIMENT_CREATED: LogCategory.EXPERIMENT,
    AutopilotAction.EXPERIMENT_STARTED: LogCategory.EXPERIMENT,
    AutopilotAction.EXPERIMENT_COMPLETED: LogCategory.EXPERIMENT,
    AutopilotAction.BUDGET_REALLOCATED: LogCategory.OPTIMIZATION,
    AutopilotAction.CREATIVE_OPTIMIZED: LogCategory.OPTIMIZATION,
    AutopilotAction.AUDIENCE_REFINED: LogCategory.OPTIMIZATION,
    AutopilotAction.CHANGE_BLOCKED: LogCategory.OPTIMIZATION,
    AutopilotAction.SIGNAL_DETECTED: LogCategory.SIGNAL,
    AutopilotAction.ALERT_TRIGGERED: LogCategory.SIGNAL,
    AutopilotAction.EMERGENCY_STOP: LogCategory.OVERRIDE,
    AutopilotAction.EMERGENCY_RESOLVED: LogCategory.OVERRIDE,
    AutopilotAction.APPROVAL_REQUESTED: LogCategory.APPROVAL,
    AutopilotAction.APPROVAL_GRANTED: LogCategory.APPROVAL,
    AutopilotAction.APPROVAL_DENIED: LogCategory.APPROVAL,
    AutopilotAction.APPROVAL_EXPIRED: LogCategory.APPROVAL,
    AutopilotAction.CHANGE_REVERTED: LogCategory.OVERRIDE,
    AutopilotAction.HUMAN_OVERRIDE: LogCategory.OVERRIDE,
    AutopilotAction.CONFIG_CHANGED: LogCategory.OVERRIDE,
    AutopilotAction.RULE_EVALUATION_FAILED: LogCategory.ERROR,
    AutopilotAction.GENERATOR_FAILED: LogCategory.ERROR,
}


class TriggeredBy(Enum):
    AUTOPILOT = "autopilot"
    HUMAN = "human"
    SIGNAL = "signal"
    SCHEDULE = "schedule"


class Outcome(Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    PENDING = "pending"


@dataclass
class AutopilotLogEntry:
    """One append-only audit trail entry."""
    account_id: str
    action: AutopilotAction
    category: LogCategory
    description: str
    details: Dict[str, Any] = field(default_factory=dict)
    triggered_by: TriggeredBy = TriggeredBy.AUTOPILOT
    actor: Optional[str] = None
    impacted_domains: List[str] = field(default_factory=list)
    impacted_fields: List[str] = field(default_factory=list)
    outcome: Outcome = Outcome.SUCCESS
    timestamp: datetime = field(default_factory=utc_now)
    id: str = field(default_factory=lambda: new_id("log"))

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "action": self.action.value,
            "category": self.category.value,
            "description": self.description,
            "details": self.details,
            "triggered_by": self.triggered_by.value,
            "actor": self.actor,
            "impacted_domains": list(self.impacted_domains),
            "impacted_fields": list(self.impacted_fields),
            "outcome": self.outcome.value,
            "timestamp": to_iso(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "AutopilotLogEntry":
        return cls(
            id=data["id"],
            account_id=data["account_id"],
            action=AutopilotAction(data["action"]),
            category=LogCategory(data["category"]),
            description=data.get("description", ""),
            details=data.get("details") or {},
            triggered_by=TriggeredBy(data.get("triggered_by", "autopilot")),
            actor=data.get("actor"),
            impacted_domains=list(data.get("impacted_domains", [])),
            impacted_fields=list(data.get("impacted_fields", [])),
            outcome=Outcome(data.get("outcome", "success")),
            timestamp=from_iso(data["timestamp"]),
        )


@dataclass
class GovernanceSummary:
    """Dashboard view of an account's governance state."""
    account_id: str
    emergency_active: bool
    pending_approvals: int
    approved_today: int
    rejected_today: int
    changes_last_24h: int
    reverts_last_24h: int
    active_experiments: int
    current_autonomy_level: AutonomyLevel
    rule_violations_last_24h: int

    def to_dict(self) -> Dict:
        return {
            "account_id": self.account_id,
            "emergency_active": self.emergency_active,
            "pending_approvals": self.pending_approvals,
            "approved_today": self.approved_today,
            "rejected_today": self.rejected_today,
            "changes_last_24h": self.changes_last_24h,
            "reverts_last_24h": self.reverts_last_24h,
            "active_experiments": self.active_experiments,
            "current_autonomy_level": self.current_autonomy_level.value,
            "rule_violations_last_24h": self.rule_violations_last_24h,
        }
