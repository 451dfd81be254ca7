"""
Unit tests for experiment planning and the experiment store.
"""

import pytest

from autopilot.agents.experiments import ExperimentStore, create_experiment_plan
from autopilot.models.change import ExperimentType, Hypothesis, HypothesisCategory


def make_hypothesis(category=HypothesisCategory.CREATIVE_REFRESH, account_id="ACC_001"):
    return Hypothesis(
        account_id=account_id,
        hypothesis="Refreshing ad creative will recover click-through rate",
        domain="creative",
        category=category,
        confidence=0.7,
        expected_impact=0.12,
    )


class TestCreateExperimentPlan:
    """Test mapping a hypothesis to an experiment."""

    def test_creative_hypothesis_becomes_creative_test(self):
        hypothesis = make_hypothesis()

        plan = create_experiment_plan(hypothesis, budget_percent=5.0, channels=["meta"])

        assert plan.type == ExperimentType.CREATIVE_TEST
        assert plan.primary_metric == "ctr"
        assert plan.hypothesis_id == hypothesis.id
        assert plan.budget_percent == 5.0
        assert plan.expected_lift == pytest.approx(12.0)
        assert plan.channels == ["meta"]
        assert plan.status == "draft"

    @pytest.mark.parametrize("category,expected", [
        (HypothesisCategory.BUDGET_REALLOCATION, ExperimentType.BUDGET_TEST),
        (HypothesisCategory.SEASONAL_ADJUSTMENT, ExperimentType.BUDGET_TEST),
        (HypothesisCategory.AUDIENCE_REFINEMENT, ExperimentType.AUDIENCE_TEST),
        (HypothesisCategory.FUNNEL_OPTIMIZATION, ExperimentType.LANDING_PAGE_TEST),
        (HypothesisCategory.PERFORMANCE_OPTIMIZATION, ExperimentType.BIDDING_TEST),
    ])
    def test_category_mapping(self, category, expected):
        assert create_experiment_plan(make_hypothesis(category)).type == expected

    def test_name_is_truncated(self):
        hypothesis = make_hypothesis()
        hypothesis.hypothesis = "x" * 80

        plan = create_experiment_plan(hypothesis)

        assert plan.name == "Test: " + "x" * 50


class TestExperimentStore:
    """Test the per-account experiment list."""

    def test_save_and_list_oldest_first(self, store):
        experiments = ExperimentStore(store)
        first = experiments.save(create_experiment_plan(make_hypothesis()))
        second = experiments.save(create_experiment_plan(make_hypothesis()))

        assert [p.id for p in experiments.get_experiments("ACC_001")] == [first.id, second.id]
        assert experiments.get_experiments("ACC_002") == []

    def test_count_active_ignores_finished(self, store):
        experiments = ExperimentStore(store)
        running = experiments.save(create_experiment_plan(make_hypothesis()))
        finished = experiments.save(create_experiment_plan(make_hypothesis()))
        experiments.save(create_experiment_plan(make_hypothesis()))

        experiments.update_status("ACC_001", running.id, "running")
        experiments.update_status("ACC_001", finished.id, "completed")

        assert experiments.count_active("ACC_001") == 2
        assert len(experiments.get_experiments("ACC_001", status="running")) == 1

    def test_update_unknown_returns_none(self, store):
        assert ExperimentStore(store).update_status("ACC_001", "exp_missing", "running") is None
