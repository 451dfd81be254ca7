"""
Change models: candidate optimizations, proposed changes and the change ledger.

A ProposedChange is a tagged union: a ChangeKind plus a payload whose type is
fixed by the kind (see PAYLOAD_TYPES). Rules match on the kind first and only
then read the payload.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from autopilot.utils.time_utils import from_iso, new_id, to_iso, utc_now


class ChangeKind(Enum):
    """Kinds of mutation the loop can propose, approve or record."""
    BUDGET = "budget"
    CREATIVE = "creative"
    AUDIENCE = "audience"
    EXPERIMENT = "experiment"
    CHANNEL = "channel"
    CONFIG = "config"
    AUTONOMY_CHANGE = "autonomy_change"


class HypothesisCategory(Enum):
    BUDGET_REALLOCATION = "budget_reallocation"
    CHANNEL_EXPANSION = "channel_expansion"
    CHANNEL_REDUCTION = "channel_reduction"
    CREATIVE_REFRESH = "creative_refresh"
    AUDIENCE_REFINEMENT = "audience_refinement"
    GEO_TARGETING = "geo_targeting"
    SEASONAL_ADJUSTMENT = "seasonal_adjustment"
    COMPETITIVE_RESPONSE = "competitive_response"
    PERFORMANCE_OPTIMIZATION = "performance_optimization"
    BRAND_ALIGNMENT = "brand_alignment"
    FUNNEL_OPTIMIZATION = "funnel_optimization"


class ExperimentType(Enum):
    BUDGET_TEST = "budget_test"
    CHANNEL_TEST = "channel_test"
    CREATIVE_TEST = "creative_test"
    AUDIENCE_TEST = "audience_test"
    GEO_TEST = "geo_test"
    BIDDING_TEST = "bidding_test"
    LANDING_PAGE_TEST = "landing_page_test"


@dataclass
class BudgetChange:
    """
    Budget move across channels.

    ``channels`` maps channel name to ``{"current": x, "proposed": y}`` in any
    consistent unit (spend or share). ``total_delta`` is the percent change of
    the overall budget.
    """
    type: str  # "increase", "decrease", "reallocation"
    channels: Dict[str, Dict[str, float]] = field(default_factory=dict)
    total_delta: float = 0.0

    @classmethod
    def from_allocation(cls, channels: Dict[str, Dict[str, float]]) -> "BudgetChange":
        """Derive change type and total delta from a channel allocation."""
        current_total = sum(c.get("current", 0.0) for c in channels.values())
        proposed_total = sum(c.get("proposed", 0.0) for c in channels.values())

        if current_total > 0:
            delta = (proposed_total - current_total) / current_total * 100
        else:
            delta = 100.0 if proposed_total > 0 else 0.0

        if abs(delta) < 0.01:
            change_type = "reallocation"
            delta = 0.0
        elif delta > 0:
            change_type = "increase"
        else:
            change_type = "decrease"

        return cls(type=change_type, channels=channels, total_delta=round(delta, 2))

    def proposed_shares(self) -> Dict[str, float]:
        """Proposed share of the total budget per channel, in percent."""
        total = sum(c.get("proposed", 0.0) for c in self.channels.values())
        if total <= 0:
            return {name: 0.0 for name in self.channels}
        return {
            name: c.get("proposed", 0.0) / total * 100
            for name, c in self.channels.items()
        }

    def to_dict(self) -> Dict:
        return {
            "type": self.type,
            "channels": {name: dict(c) for name, c in self.channels.items()},
            "total_delta": self.total_delta,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "BudgetChange":
        return cls(
            type=data["type"],
            channels={name: dict(c) for name, c in data.get("channels", {}).items()},
            total_delta=data.get("total_delta", 0.0),
        )


@dataclass
class TargetingChange:
    """Audience targeting change."""
    type: str  # "add", "remove", "modify"
    segments: List[str] = field(default_factory=list)
    channel: Optional[str] = None
    rationale: str = ""

    def to_dict(self) -> Dict:
        return {
            "type": self.type,
            "segments": list(self.segments),
            "channel": self.channel,
            "rationale": self.rationale,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "TargetingChange":
        return cls(
            type=data["type"],
            segments=list(data.get("segments", [])),
            channel=data.get("channel"),
            rationale=data.get("rationale", ""),
        )


@dataclass
class CreativeRecommendation:
    """Creative change suggested by an upstream generator."""
    recommendation: str
    priority: str = "medium"  # "high", "medium", "low"
    channel: Optional[str] = None
    asset_type: str = "ad_copy"
    rationale: str = ""
    id: str = field(default_factory=lambda: new_id("creative"))

    @property
    def is_high_priority(self) -> bool:
        return self.priority == "high"

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "recommendation": self.recommendation,
            "priority": self.priority,
            "channel": self.channel,
            "asset_type": self.asset_type,
            "rationale": self.rationale,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "CreativeRecommendation":
        return cls(
            id=data.get("id") or new_id("creative"),
            recommendation=data["recommendation"],
            priority=data.get("priority", "medium"),
            channel=data.get("channel"),
            asset_type=data.get("asset_type", "ad_copy"),
            rationale=data.get("rationale", ""),
        )


@dataclass
class ChannelChange:
    """Add or remove a channel from the media mix."""
    action: str  # "add", "remove"
    channel: str
    budget_share: float = 0.0

    def to_dict(self) -> Dict:
        return {"action": self.action, "channel": self.channel, "budget_share": self.budget_share}

    @classmethod
    def from_dict(cls, data: Dict) -> "ChannelChange":
        return cls(
            action=data["action"],
            channel=data["channel"],
            budget_share=data.get("budget_share", 0.0),
        )


@dataclass
class Hypothesis:
    """Candidate improvement returned by the hypothesis generator."""
    account_id: str
    hypothesis: str
    domain: str
    category: HypothesisCategory
    confidence: float  # 0.0 to 1.0
    expected_impact: float  # 0.0 to 1.0
    rationale: str = ""
    id: str = field(default_factory=lambda: new_id("hyp"))

    @property
    def score(self) -> float:
        """Ranking score: confidence x expected impact."""
        return self.confidence * self.expected_impact

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "hypothesis": self.hypothesis,
            "domain": self.domain,
            "category": self.category.value,
            "confidence": self.confidence,
            "expected_impact": self.expected_impact,
            "rationale": self.rationale,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "Hypothesis":
        return cls(
            id=data["id"],
            account_id=data["account_id"],
            hypothesis=data["hypothesis"],
            domain=data["domain"],
            category=HypothesisCategory(data["category"]),
            confidence=data["confidence"],
            expected_impact=data["expected_impact"],
            rationale=data.get("rationale", ""),
        )


@dataclass
class ExperimentPlan:
    """Experiment designed to validate a hypothesis."""
    account_id: str
    name: str
    hypothesis_id: str
    type: ExperimentType
    description: str
    budget_percent: float
    duration_days: int = 14
    expected_lift: float = 0.0
    min_detectable_effect: float = 5.0
    statistical_power: float = 0.8
    channels: List[str] = field(default_factory=list)
    primary_metric: str = "roas"
    secondary_metrics: List[str] = field(default_factory=list)
    guardrails: List[str] = field(default_factory=lambda: ["spend", "cpa_cap"])
    status: str = "draft"  # "draft", "running", "completed", "cancelled"
    created_at: datetime = field(default_factory=utc_now)
    id: str = field(default_factory=lambda: new_id("exp"))

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "name": self.name,
            "hypothesis_id": self.hypothesis_id,
            "type": self.type.value,
            "description": self.description,
            "budget_percent": self.budget_percent,
            "duration_days": self.duration_days,
            "expected_lift": self.expected_lift,
            "min_detectable_effect": self.min_detectable_effect,
            "statistical_power": self.statistical_power,
            "channels": list(self.channels),
            "primary_metric": self.primary_metric,
            "secondary_metrics": list(self.secondary_metrics),
            "guardrails": list(self.guardrails),
            "status": self.status,
            "created_at": to_iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "ExperimentPlan":
        return cls(
            id=data["id"],
            account_id=data["account_id"],
            name=data["name"],
            hypothesis_id=data["hypothesis_id"],
            type=ExperimentType(data["type"]),
            description=data.get("description", ""),
            budget_percent=data.get("budget_percent", 0.0),
            duration_days=data.get("duration_days", 14),
            expected_lift=data.get("expected_lift", 0.0),
            min_detectable_effect=data.get("min_detectable_effect", 5.0),
            statistical_power=data.get("statistical_power", 0.8),
            channels=list(data.get("channels", [])),
            primary_metric=data.get("primary_metric", "roas"),
            secondary_metrics=list(data.get("secondary_metrics", [])),
            guardrails=list(data.get("guardrails", [])),
            status=data.get("status", "draft"),
            created_at=from_iso(data.get("created_at")) or utc_now(),
        )


ChangePayload = Union[BudgetChange, CreativeRecommendation, TargetingChange, ExperimentPlan, ChannelChange]

# Payload type required for each proposable change kind
PAYLOAD_TYPES = {
    ChangeKind.BUDGET: BudgetChange,
    ChangeKind.CREATIVE: CreativeRecommendation,
    ChangeKind.AUDIENCE: TargetingChange,
    ChangeKind.EXPERIMENT: ExperimentPlan,
    ChangeKind.CHANNEL: ChannelChange,
}


@dataclass(frozen=True)
class ProposedChange:
    """A candidate mutation awaiting a rule decision."""
    kind: ChangeKind
    payload: ChangePayload

    def __post_init__(self):
        expected = PAYLOAD_TYPES.get(self.kind)
        if expected is None:
            raise ValueError(f"{self.kind.value} changes cannot be proposed")
        if not isinstance(self.payload, expected):
            raise TypeError(
                f"{self.kind.value} change requires {expected.__name__}, "
                f"got {type(self.payload).__name__}"
            )

    @classmethod
    def budget(cls, change: BudgetChange) -> "ProposedChange":
        return cls(ChangeKind.BUDGET, change)

    @classmethod
    def creative(cls, recommendation: CreativeRecommendation) -> "ProposedChange":
        return cls(ChangeKind.CREATIVE, recommendation)

    @classmethod
    def audience(cls, change: TargetingChange) -> "ProposedChange":
        return cls(ChangeKind.AUDIENCE, change)

    @classmethod
    def experiment(cls, plan: ExperimentPlan) -> "ProposedChange":
        return cls(ChangeKind.EXPERIMENT, plan)

    @classmethod
    def channel(cls, change: ChannelChange) -> "ProposedChange":
        return cls(ChangeKind.CHANNEL, change)

    def to_dict(self) -> Dict:
        return {"kind": self.kind.value, "payload": self.payload.to_dict()}

    @classmethod
    def from_dict(cls, data: Dict) -> "ProposedChange":
        kind = ChangeKind(data["kind"])
        return cls(kind, PAYLOAD_TYPES[kind].from_dict(data["payload"]))


@dataclass
class ChangeRecord:
    """
    Audit record of an applied mutation.

    Append-only except for the revert flag and its metadata.
    """
    account_id: str
    type: ChangeKind
    before: Any
    after: Any
    applied_by: str  # "autopilot" or a user id
    approval_id: Optional[str] = None
    reverted: bool = False
    reverted_at: Optional[datetime] = None
    reverted_by: Optional[str] = None
    timestamp: datetime = field(default_factory=utc_now)
    id: str = field(default_factory=lambda: new_id("change"))

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "type": self.type.value,
            "before": self.before,
            "after": self.after,
            "applied_by": self.applied_by,
            "approval_id": self.approval_id,
            "reverted": self.reverted,
            "reverted_at": to_iso(self.reverted_at),
            "reverted_by": self.reverted_by,
            "timestamp": to_iso(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "ChangeRecord":
        return cls(
            id=data["id"],
            account_id=data["account_id"],
            type=ChangeKind(data["type"]),
            before=data.get("before"),
            after=data.get("after"),
            applied_by=data.get("applied_by", "autopilot"),
            approval_id=data.get("approval_id"),
            reverted=data.get("reverted", False),
            reverted_at=from_iso(data.get("reverted_at")),
            reverted_by=data.get("reverted_by"),
            timestamp=from_iso(data.get("timestamp")) or utc_now(),
        )
