"""
Rule engine that gates every proposed change.

Rules are declarative policy: a pure predicate over an immutable RuleContext
mapped to an action (block, warn, require_approval, escalate). Each enabled
rule is evaluated independently; a predicate that raises is recorded and
treated as not triggered so one bad rule cannot block the batch.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from autopilot.agents.knowledge_health import name_similarity
from autopilot.errors import RuleEvaluationError
from autopilot.models.change import (
    BudgetChange,
    ChangeKind,
    ExperimentPlan,
    ProposedChange,
    TargetingChange,
)
from autopilot.models.config import AccountConfig, AutonomyLevel
from autopilot.models.knowledge import AccountKnowledge
from autopilot.models.performance import PerformanceSnapshot
from autopilot.models.signal import Severity, Signal, SignalType
from autopilot.storage import keys
from autopilot.storage.store import KeyValueStore
from autopilot.utils.time_utils import utc_now


class RuleCategory(Enum):
    SAFETY = "safety"
    BUDGET = "budget"
    PERFORMANCE = "performance"
    CREATIVE = "creative"
    AUDIENCE = "audience"
    TIMING = "timing"
    APPROVAL = "approval"


class RuleAction(Enum):
    BLOCK = "block"
    WARN = "warn"
    REQUIRE_APPROVAL = "require_approval"
    ESCALATE = "escalate"


@dataclass(frozen=True)
class EscalationConfig:
    """Who to notify when an escalating rule triggers."""
    notify_roles: Tuple[str, ...]
    urgency: str  # "low", "medium", "high", "critical"
    slack_channel: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "notify_roles": list(self.notify_roles),
            "urgency": self.urgency,
            "slack_channel": self.slack_channel,
        }


@dataclass(frozen=True)
class PerformanceMetrics:
    """Current performance against account targets, as seen by rules."""
    current_cpa: float = 0.0
    target_cpa: float = 0.0
    current_roas: float = 0.0
    target_roas: float = 0.0
    current_spend: float = 0.0
    budget_utilization: float = 0.0
    days_since_last_creative: float = 0.0

    @classmethod
    def from_snapshot(
        cls,
        snapshot: PerformanceSnapshot,
        knowledge: AccountKnowledge
    ) -> "PerformanceMetrics":
        """Combine a performance snapshot with targets from account knowledge."""
        return cls(
            current_cpa=snapshot.current.cpa,
            target_cpa=knowledge.get_number("objectives.target_cpa"),
            current_roas=snapshot.current.roas,
            target_roas=knowledge.get_number("objectives.target_roas"),
            current_spend=snapshot.current.spend,
            budget_utilization=snapshot.max_budget_utilization,
            days_since_last_creative=knowledge.get_number("creative.days_since_last_refresh"),
        )


@dataclass(frozen=True)
class RuleContext:
    """
    Immutable snapshot a rule predicate is evaluated against.

    Built once per proposed change; predicates never read live shared state.
    """
    account_id: str
    config: AccountConfig
    knowledge: AccountKnowledge
    proposed_change: Optional[ProposedChange] = None
    signals: Tuple[Signal, ...] = ()
    performance: Optional[PerformanceMetrics] = None
    active_experiments: int = 0
    evaluated_at: datetime = field(default_factory=utc_now)

    @property
    def change_kind(self) -> Optional[ChangeKind]:
        return self.proposed_change.kind if self.proposed_change else None


@dataclass(frozen=True)
class Rule:
    """Static policy definition."""
    id: str
    name: str
    description: str
    category: RuleCategory
    priority: str  # "critical", "high", "medium", "low"
    condition: Callable[[RuleContext], bool]
    action: RuleAction
    enabled: bool = True
    escalation: Optional[EscalationConfig] = None


@dataclass(frozen=True)
class RuleEvaluation:
    """Outcome of evaluating one rule against one context."""
    rule_id: str
    rule_name: str
    triggered: bool
    action: RuleAction
    reason: str
    timestamp: datetime
    error: Optional[str] = None


@dataclass
class RuleDecision:
    """Reduction of all evaluations for one proposed change."""
    allowed: bool
    requires_approval: bool
    warnings: List[str] = field(default_factory=list)
    block_reasons: List[str] = field(default_factory=list)
    escalations: List[EscalationConfig] = field(default_factory=list)
    triggered_rules: List[str] = field(default_factory=list)
    evaluations: List[RuleEvaluation] = field(default_factory=list)


# ============================================================================
# Predicates
# ============================================================================

MAX_BUDGET_INCREASE_PCT = 25.0
MAX_BUDGET_DECREASE_PCT = 30.0
BUDGET_EXHAUSTION_PCT = 90.0
CHANNEL_CONCENTRATION_PCT = 60.0
CPA_OVER_TARGET_RATIO = 0.2
ROAS_FLOOR_RATIO = 0.7
MIN_ROAS = 0.5
CREATIVE_FATIGUE_DAYS = 30
MAX_CONCURRENT_EXPERIMENTS = 3
SEGMENT_MATCH_THRESHOLD = 0.85
HOLIDAY_MONTHS = (11, 12)


def _budget_change(ctx: RuleContext) -> Optional[BudgetChange]:
    if ctx.change_kind == ChangeKind.BUDGET:
        return ctx.proposed_change.payload
    return None


def _emergency_cpa_stop(ctx: RuleContext) -> bool:
    perf = ctx.performance
    if perf is None or perf.target_cpa <= 0:
        return False
    return perf.current_cpa / perf.target_cpa > 1 + ctx.config.emergency_stop_threshold / 100


def _negative_roi_stop(ctx: RuleContext) -> bool:
    perf = ctx.performance
    if perf is None or perf.current_spend <= 0:
        return False
    return perf.current_roas < MIN_ROAS


def _tracking_failure_stop(ctx: RuleContext) -> bool:
    return any(
        s.type == SignalType.TRACKING_FAILURE and s.severity == Severity.CRITICAL
        for s in ctx.signals
    )


def _budget_increase_limit(ctx: RuleContext) -> bool:
    change = _budget_change(ctx)
    return change is not None and change.type == "increase" and change.total_delta > MAX_BUDGET_INCREASE_PCT


def _budget_decrease_limit(ctx: RuleContext) -> bool:
    change = _budget_change(ctx)
    return (
        change is not None and change.type == "decrease"
        and abs(change.total_delta) > MAX_BUDGET_DECREASE_PCT
    )


def _budget_exhaustion_pause(ctx: RuleContext) -> bool:
    change = _budget_change(ctx)
    if change is None or ctx.performance is None:
        return False
    return ctx.performance.budget_utilization > BUDGET_EXHAUSTION_PCT and change.type == "increase"


def _channel_concentration(ctx: RuleContext) -> bool:
    change = _budget_change(ctx)
    if change is None:
        return False
    return any(share > CHANNEL_CONCENTRATION_PCT for share in change.proposed_shares().values())


def _cpa_threshold(ctx: RuleContext) -> bool:
    perf = ctx.performance
    if perf is None or perf.target_cpa <= 0:
        return False
    return (perf.current_cpa - perf.target_cpa) / perf.target_cpa > CPA_OVER_TARGET_RATIO


def _roas_minimum(ctx: RuleContext) -> bool:
    change = _budget_change(ctx)
    perf = ctx.performance
    if change is None or perf is None or perf.target_roas <= 0:
        return False
    return perf.current_roas < perf.target_roas * ROAS_FLOOR_RATIO and change.type == "increase"


def _creative_fatigue(ctx: RuleContext) -> bool:
    if ctx.performance is None:
        return False
    return ctx.performance.days_since_last_creative > CREATIVE_FATIGUE_DAYS


def _creative_approval(ctx: RuleContext) -> bool:
    return ctx.change_kind == ChangeKind.CREATIVE and ctx.config.requires_approval("creative")


def _audience_approval(ctx: RuleContext) -> bool:
    return ctx.change_kind == ChangeKind.AUDIENCE and ctx.config.requires_approval("audience")


def is_core_segment(segment: str, core_segments: List[str]) -> bool:
    """Check if a segment fuzzily matches any core segment."""
    return any(
        name_similarity(segment, core) >= SEGMENT_MATCH_THRESHOLD
        for core in core_segments
    )


def _audience_exclusion(ctx: RuleContext) -> bool:
    if ctx.change_kind != ChangeKind.AUDIENCE:
        return False
    change: TargetingChange = ctx.proposed_change.payload
    if change.type != "remove":
        return False
    core_segments = ctx.knowledge.get_value("audience.core_segments") or []
    return any(is_core_segment(segment, core_segments) for segment in change.segments)


def _weekend_pause(ctx: RuleContext) -> bool:
    return ctx.evaluated_at.weekday() >= 5


def _holiday_caution(ctx: RuleContext) -> bool:
    notes = ctx.knowledge.get_value("identity.seasonality_notes") or ""
    peak_seasons = ctx.knowledge.get_value("identity.peak_seasons") or []
    if not notes and not peak_seasons:
        return False
    has_holiday_pattern = (
        "holiday" in str(notes).lower()
        or any("holiday" in str(p).lower() for p in peak_seasons)
    )
    return ctx.evaluated_at.month in HOLIDAY_MONTHS and has_holiday_pattern


def _experiment_budget(ctx: RuleContext) -> bool:
    if ctx.change_kind != ChangeKind.EXPERIMENT:
        return False
    plan: ExperimentPlan = ctx.proposed_change.payload
    return plan.budget_percent > ctx.config.experiment_budget_percent


def _concurrent_experiments(ctx: RuleContext) -> bool:
    return (
        ctx.change_kind == ChangeKind.EXPERIMENT
        and ctx.active_experiments >= MAX_CONCURRENT_EXPERIMENTS
    )


def _critical_signal_escalation(ctx: RuleContext) -> bool:
    return any(s.severity == Severity.CRITICAL for s in ctx.signals)


DEFAULT_RULES: Tuple[Rule, ...] = (
    # Safety
    Rule(
        id="rule_emergency_stop",
        name="Emergency Performance Stop",
        description="Stop all automation if CPA exceeds target by more than the emergency threshold",
        category=RuleCategory.SAFETY,
        priority="critical",
        condition=_emergency_cpa_stop,
        action=RuleAction.BLOCK,
        escalation=EscalationConfig(notify_roles=("admin", "account_manager"), urgency="critical"),
    ),
    Rule(
        id="rule_negative_roi_stop",
        name="Negative ROI Stop",
        description="Halt changes when ROAS is below 0.5x",
        category=RuleCategory.SAFETY,
        priority="critical",
        condition=_negative_roi_stop,
        action=RuleAction.BLOCK,
        escalation=EscalationConfig(notify_roles=("admin",), urgency="critical"),
    ),
    Rule(
        id="rule_tracking_failure_stop",
        name="Tracking Failure Stop",
        description="Stop automation while tracking is broken",
        category=RuleCategory.SAFETY,
        priority="critical",
        condition=_tracking_failure_stop,
        action=RuleAction.BLOCK,
        escalation=EscalationConfig(notify_roles=("admin", "tech_lead"), urgency="critical"),
    ),
    Rule(
        id="rule_critical_signal_escalation",
        name="Critical Signal Escalation",
        description="Notify account owners while any critical signal is active",
        category=RuleCategory.SAFETY,
        priority="high",
        condition=_critical_signal_escalation,
        action=RuleAction.ESCALATE,
        escalation=EscalationConfig(notify_roles=("account_manager",), urgency="high"),
    ),
    # Budget
    Rule(
        id="rule_budget_increase_limit",
        name="Budget Increase Limit",
        description="Single budget increases above 25% need approval",
        category=RuleCategory.BUDGET,
        priority="high",
        condition=_budget_increase_limit,
        action=RuleAction.REQUIRE_APPROVAL,
    ),
    Rule(
        id="rule_budget_decrease_limit",
        name="Budget Decrease Limit",
        description="Single budget decreases above 30% need approval",
        category=RuleCategory.BUDGET,
        priority="high",
        condition=_budget_decrease_limit,
        action=RuleAction.REQUIRE_APPROVAL,
    ),
    Rule(
        id="rule_budget_exhaustion_pause",
        name="Budget Exhaustion Pause",
        description="Block budget increases when a channel has used over 90% of budget",
        category=RuleCategory.BUDGET,
        priority="high",
        condition=_budget_exhaustion_pause,
        action=RuleAction.BLOCK,
    ),
    Rule(
        id="rule_channel_concentration",
        name="Channel Concentration Limit",
        description="Flag allocations that put more than 60% of budget in one channel",
        category=RuleCategory.BUDGET,
        priority="medium",
        condition=_channel_concentration,
        action=RuleAction.WARN,
    ),
    # Performance
    Rule(
        id="rule_cpa_threshold",
        name="CPA Threshold Guard",
        description="Require approval for changes while CPA is more than 20% above target",
        category=RuleCategory.PERFORMANCE,
        priority="high",
        condition=_cpa_threshold,
        action=RuleAction.REQUIRE_APPROVAL,
    ),
    Rule(
        id="rule_roas_minimum",
        name="ROAS Minimum Guard",
        description="Block budget increases while ROAS is below 70% of target",
        category=RuleCategory.PERFORMANCE,
        priority="high",
        condition=_roas_minimum,
        action=RuleAction.BLOCK,
    ),
    # Creative
    Rule(
        id="rule_creative_fatigue",
        name="Creative Fatigue Alert",
        description="Creative has not been refreshed in over 30 days",
        category=RuleCategory.CREATIVE,
        priority="medium",
        condition=_creative_fatigue,
        action=RuleAction.WARN,
    ),
    Rule(
        id="rule_creative_approval",
        name="Creative Change Approval",
        description="Account requires approval for creative changes",
        category=RuleCategory.CREATIVE,
        priority="medium",
        condition=_creative_approval,
        action=RuleAction.REQUIRE_APPROVAL,
    ),
    # Audience
    Rule(
        id="rule_audience_approval",
        name="Audience Change Approval",
        description="Account requires approval for audience targeting changes",
        category=RuleCategory.AUDIENCE,
        priority="medium",
        condition=_audience_approval,
        action=RuleAction.REQUIRE_APPROVAL,
    ),
    Rule(
        id="rule_audience_exclusion",
        name="Audience Exclusion Guard",
        description="Block audience removals that would drop a core segment",
        category=RuleCategory.AUDIENCE,
        priority="high",
        condition=_audience_exclusion,
        action=RuleAction.BLOCK,
    ),
    # Timing
    Rule(
        id="rule_weekend_pause",
        name="Weekend Change Pause",
        description="Avoid significant changes on weekends",
        category=RuleCategory.TIMING,
        priority="low",
        condition=_weekend_pause,
        action=RuleAction.WARN,
        enabled=False,
    ),
    Rule(
        id="rule_holiday_pause",
        name="Holiday Period Caution",
        description="Require approval for changes during the holiday peak",
        category=RuleCategory.TIMING,
        priority="medium",
        condition=_holiday_caution,
        action=RuleAction.REQUIRE_APPROVAL,
    ),
    # Experiments
    Rule(
        id="rule_experiment_budget",
        name="Experiment Budget Limit",
        description="Block experiments sized above the configured experiment budget",
        category=RuleCategory.BUDGET,
        priority="medium",
        condition=_experiment_budget,
        action=RuleAction.BLOCK,
    ),
    Rule(
        id="rule_concurrent_experiments",
        name="Concurrent Experiment Limit",
        description="Flag new experiments when three or more are already active",
        category=RuleCategory.SAFETY,
        priority="medium",
        condition=_concurrent_experiments,
        action=RuleAction.WARN,
    ),
)


# Actions each autonomy level may apply without a human
LEVEL_PERMISSIONS = {
    AutonomyLevel.MANUAL_ONLY: frozenset(),
    AutonomyLevel.AI_ASSISTED: frozenset(),
    AutonomyLevel.SEMI_AUTONOMOUS: frozenset({ChangeKind.BUDGET, ChangeKind.CREATIVE}),
    AutonomyLevel.FULL_AUTONOMOUS: frozenset({
        ChangeKind.BUDGET,
        ChangeKind.CREATIVE,
        ChangeKind.AUDIENCE,
        ChangeKind.CHANNEL,
        ChangeKind.EXPERIMENT,
    }),
}

AVAILABLE_ACTIONS = {
    AutonomyLevel.MANUAL_ONLY: [
        "View recommendations",
        "View diagnostics",
    ],
    AutonomyLevel.AI_ASSISTED: [
        "View recommendations",
        "View diagnostics",
        "Generate hypotheses",
        "Generate plans",
    ],
    AutonomyLevel.SEMI_AUTONOMOUS: [
        "View recommendations",
        "View diagnostics",
        "Generate hypotheses",
        "Generate plans",
        "Auto-adjust budgets (within limits)",
        "Auto-refresh creative (safe changes)",
        "Run experiments",
    ],
    AutonomyLevel.FULL_AUTONOMOUS: [
        "View recommendations",
        "View diagnostics",
        "Generate hypotheses",
        "Generate plans",
        "Auto-adjust budgets",
        "Auto-refresh creative",
        "Auto-adjust audiences",
        "Auto-expand channels",
        "Run experiments",
    ],
}

# Rule fields a per-account override may patch
OVERRIDABLE_FIELDS = ("enabled", "priority", "action", "name", "description")


def is_action_allowed_at_level(kind: ChangeKind, level: AutonomyLevel) -> Tuple[bool, Optional[str]]:
    """
    Check if a change kind may be applied automatically at an autonomy level.

    Returns:
        (allowed, reason) where reason explains a refusal
    """
    if kind in LEVEL_PERMISSIONS[level]:
        return True, None
    return False, f"Action '{kind.value}' not allowed at autonomy level '{level.value}'"


def get_available_actions(level: AutonomyLevel) -> List[str]:
    return list(AVAILABLE_ACTIONS.get(level, []))


class RuleEngine:
    """
    Evaluate rules against proposed changes.

    Per-account overrides are stored in the key-value store and applied on
    top of the shared base catalogue, which is never mutated.
    """

    def __init__(
        self,
        store: KeyValueStore,
        rules: Optional[Tuple[Rule, ...]] = None,
        on_error: Optional[Callable[[str, RuleEvaluationError], None]] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        """
        Initialize rule engine.

        Args:
            store: Key-value store holding per-account rule overrides
            rules: Base rule catalogue (default DEFAULT_RULES)
            on_error: Called with (account_id, error) when a predicate raises
            clock: Returns the current UTC time
        """
        self.store = store
        self.base_rules = tuple(rules) if rules is not None else DEFAULT_RULES
        self.on_error = on_error
        self.clock = clock

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate(
        self,
        context: RuleContext,
        custom_rules: Optional[List[Rule]] = None
    ) -> List[RuleEvaluation]:
        """
        Evaluate every enabled rule for the account against a context.

        Args:
            context: Immutable rule context
            custom_rules: Extra rules evaluated after the account rules

        Returns:
            One evaluation per enabled rule
        """
        rules = self.get_account_rules(context.account_id) + list(custom_rules or [])
        return [self._evaluate_rule(rule, context) for rule in rules if rule.enabled]

    def _evaluate_rule(self, rule: Rule, context: RuleContext) -> RuleEvaluation:
        now = self.clock()
        try:
            triggered = bool(rule.condition(context))
        except Exception as e:
            error = RuleEvaluationError(rule.id, e)
            if self.on_error is not None:
                self.on_error(context.account_id, error)
            return RuleEvaluation(
                rule_id=rule.id,
                rule_name=rule.name,
                triggered=False,
                action=rule.action,
                reason=f"Rule evaluation failed: {e}",
                timestamp=now,
                error=str(error),
            )

        return RuleEvaluation(
            rule_id=rule.id,
            rule_name=rule.name,
            triggered=triggered,
            action=rule.action,
            reason=rule.description if triggered else "Rule not triggered",
            timestamp=now,
        )

    def decide(
        self,
        context: RuleContext,
        custom_rules: Optional[List[Rule]] = None
    ) -> RuleDecision:
        """
        Reduce all evaluations into a single decision.

        A triggered block rule always wins: allowed is False regardless of
        any warn or require_approval rules that also triggered.
        """
        rules = {r.id: r for r in self.get_account_rules(context.account_id)}
        rules.update({r.id: r for r in custom_rules or []})
        evaluations = self.evaluate(context, custom_rules)
        triggered = [e for e in evaluations if e.triggered]

        block_reasons = [e.reason for e in triggered if e.action == RuleAction.BLOCK]
        warnings = [e.reason for e in triggered if e.action == RuleAction.WARN]
        escalations = [
            rules[e.rule_id].escalation for e in triggered
            if e.action == RuleAction.ESCALATE and rules[e.rule_id].escalation is not None
        ]

        return RuleDecision(
            allowed=not block_reasons,
            requires_approval=any(e.action == RuleAction.REQUIRE_APPROVAL for e in triggered),
            warnings=warnings,
            block_reasons=block_reasons,
            escalations=escalations,
            triggered_rules=[e.rule_id for e in triggered],
            evaluations=evaluations,
        )

    # ------------------------------------------------------------------
    # Per-account overrides
    # ------------------------------------------------------------------

    def get_account_rules(self, account_id: str) -> List[Rule]:
        """Base rules with the account's overrides applied."""
        overrides = self.store.get(keys.rule_overrides_key(account_id), {})
        rules = []
        for rule in self.base_rules:
            patch = overrides.get(rule.id)
            if patch:
                changes = {k: v for k, v in patch.items() if k in OVERRIDABLE_FIELDS}
                if "action" in changes:
                    changes["action"] = RuleAction(changes["action"])
                rule = replace(rule, **changes)
            rules.append(rule)
        return rules

    def set_rule_overrides(self, account_id: str, overrides: Dict[str, Dict]):
        """
        Replace the account's rule overrides.

        Args:
            account_id: Account identifier
            overrides: Map of rule id to fields to patch (enabled, priority,
                       action, name, description)
        """
        cleaned = {}
        for rule_id, patch in overrides.items():
            patch = {k: v for k, v in patch.items() if k in OVERRIDABLE_FIELDS}
            if isinstance(patch.get("action"), RuleAction):
                patch["action"] = patch["action"].value
            cleaned[rule_id] = patch
        self.store.set(keys.rule_overrides_key(account_id), cleaned)

    def set_rule_enabled(self, account_id: str, rule_id: str, enabled: bool):
        """Enable or disable one rule for an account."""
        def _patch(overrides):
            overrides.setdefault(rule_id, {})["enabled"] = enabled
            return overrides

        self.store.update(keys.rule_overrides_key(account_id), _patch, default={})
