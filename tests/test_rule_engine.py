"""
Unit tests for RuleEngine.

Tests individual rule predicates, decision reduction, error isolation,
per-account overrides and autonomy permissions.
"""

import pytest

from conftest import FIXED_NOW, make_knowledge, make_snapshot
from autopilot.agents.rule_engine import (
    PerformanceMetrics,
    Rule,
    RuleAction,
    RuleCategory,
    RuleContext,
    RuleEngine,
    get_available_actions,
    is_action_allowed_at_level,
    is_core_segment,
)
from autopilot.models.change import (
    BudgetChange,
    ChangeKind,
    CreativeRecommendation,
    ExperimentPlan,
    ExperimentType,
    ProposedChange,
    TargetingChange,
)
from autopilot.models.config import AccountConfig, AutonomyLevel
from autopilot.models.signal import Severity, Signal, SignalCategory, SignalType


@pytest.fixture
def engine(store, clock):
    return RuleEngine(store, clock=clock)


@pytest.fixture
def config():
    return AccountConfig(account_id="ACC_001", enabled=True)


def make_context(config, change=None, performance=None, signals=(),
                 knowledge=None, active_experiments=0, evaluated_at=FIXED_NOW):
    return RuleContext(
        account_id="ACC_001",
        config=config,
        knowledge=knowledge or make_knowledge(),
        proposed_change=change,
        signals=tuple(signals),
        performance=performance,
        active_experiments=active_experiments,
        evaluated_at=evaluated_at,
    )


def creative_change(priority="high"):
    return ProposedChange.creative(
        CreativeRecommendation(recommendation="Refresh hero image", priority=priority)
    )


def allocation_change(current_a, proposed_a, current_b, proposed_b):
    return ProposedChange.budget(BudgetChange.from_allocation({
        "google_search": {"current": current_a, "proposed": proposed_a},
        "meta": {"current": current_b, "proposed": proposed_b},
    }))


def critical_signal():
    return Signal(
        id="signal_1",
        account_id="ACC_001",
        type=SignalType.CPA_SPIKE,
        category=SignalCategory.PERFORMANCE,
        severity=Severity.CRITICAL,
        title="Critical CPA Spike Detected",
        description="CPA increased by 50%",
        metric="cpa",
        current_value=150.0,
        previous_value=100.0,
        change_percent=50.0,
        threshold=50.0,
        detected_at=FIXED_NOW,
    )


class TestDecision:
    """Test reduction of evaluations into a decision."""

    def test_quiet_context_is_allowed(self, engine, config):
        decision = engine.decide(make_context(config, creative_change()))

        assert decision.allowed is True
        assert decision.requires_approval is False
        assert decision.triggered_rules == []

    def test_block_dominates_approval(self, engine, config):
        """CPA 40% over target trips both the emergency stop and the CPA guard."""
        performance = PerformanceMetrics(current_cpa=70.0, target_cpa=50.0)

        decision = engine.decide(make_context(config, creative_change(), performance))

        assert decision.allowed is False
        assert decision.requires_approval is True
        assert "rule_emergency_stop" in decision.triggered_rules
        assert "rule_cpa_threshold" in decision.triggered_rules
        assert len(decision.block_reasons) == 1

    def test_cpa_over_target_requires_approval(self, engine, config):
        performance = PerformanceMetrics(current_cpa=62.0, target_cpa=50.0)

        decision = engine.decide(make_context(config, creative_change(), performance))

        assert decision.allowed is True
        assert decision.requires_approval is True
        assert decision.triggered_rules == ["rule_cpa_threshold"]

    def test_warnings_are_collected(self, engine, config):
        performance = PerformanceMetrics(days_since_last_creative=45)

        decision = engine.decide(make_context(config, creative_change(), performance))

        assert decision.allowed is True
        assert decision.warnings == ["Creative has not been refreshed in over 30 days"]

    def test_critical_signal_escalates(self, engine, config):
        decision = engine.decide(
            make_context(config, creative_change(), signals=[critical_signal()])
        )

        assert decision.allowed is True
        assert len(decision.escalations) == 1
        assert decision.escalations[0].urgency == "high"

    def test_one_evaluation_per_enabled_rule(self, engine, config):
        evaluations = engine.evaluate(make_context(config))
        enabled = [r for r in engine.get_account_rules("ACC_001") if r.enabled]

        assert len(evaluations) == len(enabled)
        # Weekend pause ships disabled
        assert "rule_weekend_pause" not in {e.rule_id for e in evaluations}


class TestPerformanceMetrics:
    """Test how targets are read from account knowledge."""

    def test_targets_come_from_knowledge(self):
        metrics = PerformanceMetrics.from_snapshot(make_snapshot(), make_knowledge())

        assert metrics.current_cpa == pytest.approx(40.0)
        assert metrics.target_cpa == 50.0
        assert metrics.target_roas == 3.0
        assert metrics.days_since_last_creative == 45.0

    def test_numeric_strings_are_accepted(self):
        knowledge = make_knowledge(overrides={"objectives.target_cpa": "45.5"})

        assert PerformanceMetrics.from_snapshot(make_snapshot(), knowledge).target_cpa == 45.5

    def test_non_numeric_values_fall_back_to_zero(self, engine, config):
        knowledge = make_knowledge(overrides={
            "objectives.target_cpa": "n/a",
            "objectives.target_roas": [3.0],
            "creative.days_since_last_refresh": "recently",
        })

        metrics = PerformanceMetrics.from_snapshot(make_snapshot(), knowledge)
        decision = engine.decide(make_context(config, creative_change(), metrics, knowledge=knowledge))

        assert (metrics.target_cpa, metrics.target_roas, metrics.days_since_last_creative) == (0.0, 0.0, 0.0)
        assert decision.allowed is True
        assert decision.triggered_rules == []


class TestBudgetRules:

    """Test budget-specific rules."""

    def test_channel_concentration_warns(self, engine, config):
        change = allocation_change(5000, 7000, 5000, 3000)

        decision = engine.decide(make_context(config, change))

        assert decision.allowed is True
        assert "rule_channel_concentration" in decision.triggered_rules

    def test_large_increase_requires_approval(self, engine, config):
        change = allocation_change(5000, 6500, 5000, 6500)

        decision = engine.decide(make_context(config, change))

        assert decision.requires_approval is True
        assert "rule_budget_increase_limit" in decision.triggered_rules

    def test_increase_blocked_when_budget_exhausted(self, engine, config):
        change = allocation_change(5000, 5500, 5000, 5500)
        performance = PerformanceMetrics(budget_utilization=95.0)

        decision = engine.decide(make_context(config, change, performance))

        assert decision.allowed is False
        assert "rule_budget_exhaustion_pause" in decision.triggered_rules

    def test_roas_floor_blocks_increase(self, engine, config):
        change = allocation_change(5000, 5500, 5000, 5500)
        performance = PerformanceMetrics(current_roas=1.5, target_roas=3.0, current_spend=10000)

        decision = engine.decide(make_context(config, change, performance))

        assert decision.allowed is False
        assert "rule_roas_minimum" in decision.triggered_rules


class TestAudienceRules:
    """Test audience rules with fuzzy core segment matching."""

    def test_core_segment_matching_ignores_formatting(self):
        assert is_core_segment("young-parents", ["Young Parents"]) is True
        assert is_core_segment("Retirees", ["Young Parents"]) is False

    def test_removing_core_segment_is_blocked(self, engine, config):
        change = ProposedChange.audience(TargetingChange(type="remove", segments=["young-parents"]))

        decision = engine.decide(make_context(config, change))

        assert decision.allowed is False
        assert "rule_audience_exclusion" in decision.triggered_rules

    def test_adding_segment_is_allowed(self, engine, config):
        change = ProposedChange.audience(TargetingChange(type="add", segments=["young-parents"]))

        decision = engine.decide(make_context(config, change))

        assert decision.allowed is True

    def test_audience_approval_follows_config(self, engine):
        config = AccountConfig(account_id="ACC_001", require_approval_for=["audience"])
        change = ProposedChange.audience(TargetingChange(type="add", segments=["Gamers"]))

        decision = engine.decide(make_context(config, change))

        assert decision.requires_approval is True


class TestTimingAndExperimentRules:
    """Test timing and experiment rules."""

    def test_holiday_caution_in_december(self, engine, config):
        knowledge = make_knowledge(overrides={"identity.seasonality_notes": "Holiday peak"})
        december = FIXED_NOW.replace(month=12)

        decision = engine.decide(
            make_context(config, creative_change(), knowledge=knowledge, evaluated_at=december)
        )

        assert decision.requires_approval is True
        assert "rule_holiday_pause" in decision.triggered_rules

    def test_holiday_caution_not_in_march(self, engine, config):
        knowledge = make_knowledge(overrides={"identity.seasonality_notes": "Holiday peak"})

        decision = engine.decide(make_context(config, creative_change(), knowledge=knowledge))

        assert "rule_holiday_pause" not in decision.triggered_rules

    def test_oversized_experiment_is_blocked(self, engine, config):
        plan = ExperimentPlan(
            account_id="ACC_001",
            name="Big test",
            hypothesis_id="hyp_1",
            type=ExperimentType.BUDGET_TEST,
            description="Move budget",
            budget_percent=15.0,
        )

        decision = engine.decide(make_context(config, ProposedChange.experiment(plan)))

        assert decision.allowed is False
        assert "rule_experiment_budget" in decision.triggered_rules

    def test_concurrent_experiments_warn(self, engine, config):
        plan = ExperimentPlan(
            account_id="ACC_001",
            name="Small test",
            hypothesis_id="hyp_1",
            type=ExperimentType.CREATIVE_TEST,
            description="New headline",
            budget_percent=3.0,
        )

        decision = engine.decide(
            make_context(config, ProposedChange.experiment(plan), active_experiments=3)
        )

        assert decision.allowed is True
        assert "rule_concurrent_experiments" in decision.triggered_rules


class TestErrorIsolation:
    """Test that a failing predicate never blocks the batch."""

    def test_failing_rule_is_recorded_and_not_triggered(self, store, config):
        errors = []

        def broken(ctx):
            raise KeyError("missing_metric")

        rules = (
            Rule(
                id="rule_broken",
                name="Broken Rule",
                description="Always raises",
                category=RuleCategory.SAFETY,
                priority="critical",
                condition=broken,
                action=RuleAction.BLOCK,
            ),
            Rule(
                id="rule_always_warn",
                name="Always Warn",
                description="Always triggers",
                category=RuleCategory.TIMING,
                priority="low",
                condition=lambda ctx: True,
                action=RuleAction.WARN,
            ),
        )
        engine = RuleEngine(store, rules=rules, on_error=lambda account, err: errors.append(err))

        decision = engine.decide(make_context(config, creative_change()))

        assert decision.allowed is True
        assert decision.triggered_rules == ["rule_always_warn"]
        broken_eval = next(e for e in decision.evaluations if e.rule_id == "rule_broken")
        assert broken_eval.triggered is False
        assert broken_eval.error is not None
        assert len(errors) == 1
        assert errors[0].rule_id == "rule_broken"


class TestOverrides:
    """Test per-account rule overrides."""

    def test_disable_rule_for_one_account(self, engine, config):
        engine.set_rule_enabled("ACC_001", "rule_channel_concentration", False)
        change = allocation_change(5000, 7000, 5000, 3000)

        decision = engine.decide(make_context(config, change))
        other = engine.get_account_rules("ACC_002")

        assert "rule_channel_concentration" not in decision.triggered_rules
        assert next(r for r in other if r.id == "rule_channel_concentration").enabled is True

    def test_override_action(self, engine, config):
        engine.set_rule_overrides("ACC_001", {
            "rule_channel_concentration": {"action": RuleAction.BLOCK, "priority": "high"},
        })
        change = allocation_change(5000, 7000, 5000, 3000)

        decision = engine.decide(make_context(config, change))

        assert decision.allowed is False

    def test_base_catalogue_is_not_mutated(self, engine):
        engine.set_rule_enabled("ACC_001", "rule_creative_fatigue", False)
        fresh = RuleEngine(engine.store)

        base = next(r for r in fresh.base_rules if r.id == "rule_creative_fatigue")
        assert base.enabled is True


class TestAutonomyPermissions:
    """Test what each autonomy level may apply automatically."""

    @pytest.mark.parametrize("level,kind,expected", [
        (AutonomyLevel.MANUAL_ONLY, ChangeKind.CREATIVE, False),
        (AutonomyLevel.AI_ASSISTED, ChangeKind.BUDGET, False),
        (AutonomyLevel.SEMI_AUTONOMOUS, ChangeKind.BUDGET, True),
        (AutonomyLevel.SEMI_AUTONOMOUS, ChangeKind.CREATIVE, True),
        (AutonomyLevel.SEMI_AUTONOMOUS, ChangeKind.AUDIENCE, False),
        (AutonomyLevel.FULL_AUTONOMOUS, ChangeKind.AUDIENCE, True),
        (AutonomyLevel.FULL_AUTONOMOUS, ChangeKind.CHANNEL, True),
    ])
    def test_level_permissions(self, level, kind, expected):
        allowed, reason = is_action_allowed_at_level(kind, level)

        assert allowed is expected
        assert (reason is None) is expected

    def test_available_actions_grow_with_level(self):
        manual = get_available_actions(AutonomyLevel.MANUAL_ONLY)
        full = get_available_actions(AutonomyLevel.FULL_AUTONOMOUS)

        assert "View recommendations" in manual
        assert "Auto-expand channels" in full
        assert len(full) > len(manual)
