"""
CycleResult: the one record every control-loop run produces.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from autopilot.models.change import BudgetChange, CreativeRecommendation, TargetingChange
from autopilot.models.config import AutonomyLevel
from autopilot.utils.time_utils import from_iso, to_iso


class CycleStatus(Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class CycleResult:
    """
    Outcome of one cycle for one account.

    Immutable once finalized; retained in a bounded per-account history.
    """
    id: str
    account_id: str
    cycle_number: int
    started_at: datetime
    autonomy_level: AutonomyLevel
    dry_run: bool = False
    completed_at: Optional[datetime] = None
    duration_ms: float = 0.0

    # Scores (0-100)
    context_health_score: float = 0.0
    performance_score: float = 0.0
    readiness_score: float = 0.0

    # Counters
    hypotheses_generated: int = 0
    hypotheses_selected: int = 0
    experiments_created: int = 0
    optimizations_applied: int = 0
    updates_proposed: int = 0
    updates_applied: int = 0
    approvals_requested: int = 0
    changes_blocked: int = 0
    signals_detected: int = 0
    alerts_triggered: int = 0
    human_overrides: int = 0

    # Proposed changes
    budget_changes: List[BudgetChange] = field(default_factory=list)
    creative_changes: List[CreativeRecommendation] = field(default_factory=list)
    audience_changes: List[TargetingChange] = field(default_factory=list)

    # Narrative
    summary: str = ""
    highlights: List[str] = field(default_factory=list)
    concerns: List[str] = field(default_factory=list)
    next_actions: List[str] = field(default_factory=list)

    status: CycleStatus = CycleStatus.SUCCESS
    error_message: Optional[str] = None

    @property
    def is_finalized(self) -> bool:
        return self.completed_at is not None

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "cycle_number": self.cycle_number,
            "started_at": to_iso(self.started_at),
            "completed_at": to_iso(self.completed_at),
            "duration_ms": self.duration_ms,
            "autonomy_level": self.autonomy_level.value,
            "dry_run": self.dry_run,
            "context_health_score": self.context_health_score,
            "performance_score": self.performance_score,
            "readiness_score": self.readiness_score,
            "hypotheses_generated": self.hypotheses_generated,
            "hypotheses_selected": self.hypotheses_selected,
            "experiments_created": self.experiments_created,
            "optimizations_applied": self.optimizations_applied,
            "updates_proposed": self.updates_proposed,
            "updates_applied": self.updates_applied,
            "approvals_requested": self.approvals_requested,
            "changes_blocked": self.changes_blocked,
            "signals_detected": self.signals_detected,
            "alerts_triggered": self.alerts_triggered,
            "human_overrides": self.human_overrides,
            "budget_changes": [c.to_dict() for c in self.budget_changes],
            "creative_changes": [c.to_dict() for c in self.creative_changes],
            "audience_changes": [c.to_dict() for c in self.audience_changes],
            "summary": self.summary,
            "highlights": list(self.highlights),
            "concerns": list(self.concerns),
            "next_actions": list(self.next_actions),
            "status": self.status.value,
            "error_message": self.error_message,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "CycleResult":
        counters = {
            key: data.get(key, 0) for key in (
                "hypotheses_generated", "hypotheses_selected", "experiments_created",
                "optimizations_applied", "updates_proposed", "updates_applied",
                "approvals_requested", "changes_blocked", "signals_detected",
                "alerts_triggered", "human_overrides",
            )
        }
        return cls(
            id=data["id"],
            account_id=data["account_id"],
            cycle_number=data["cycle_number"],
            started_at=from_iso(data["started_at"]),
            completed_at=from_iso(data.get("completed_at")),
            duration_ms=data.get("duration_ms", 0.0),
            autonomy_level=AutonomyLevel(data["autonomy_level"]),
            dry_run=data.get("dry_run", False),
            context_health_score=data.get("context_health_score", 0.0),
            performance_score=data.get("performance_score", 0.0),
            readiness_score=data.get("readiness_score", 0.0),
            budget_changes=[BudgetChange.from_dict(c) for c in data.get("budget_changes", [])],
            creative_changes=[
                CreativeRecommendation.from_dict(c) for c in data.get("creative_changes", [])
            ],
            audience_changes=[
                TargetingChange.from_dict(c) for c in data.get("audience_changes", [])
            ],
            summary=data.get("summary", ""),
            highlights=list(data.get("highlights", [])),
            concerns=list(data.get("concerns", [])),
            next_actions=list(data.get("next_actions", [])),
            status=CycleStatus(data.get("status", "success")),
            error_message=data.get("error_message"),
            **counters,
        )

    def __str__(self) -> str:
        return (
            f"CycleResult(account={self.account_id}, "
            f"cycle={self.cycle_number}, "
            f"status={self.status.value}, "
            f"applied={self.optimizations_applied})"
        )
