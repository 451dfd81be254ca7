"""
Experiment planning for selected hypotheses.

Maps each hypothesis category to an experiment type and its metric set, and
keeps the per-account list of planned experiments.
"""

from typing import Dict, List, Optional

from autopilot.models.change import (
    ExperimentPlan,
    ExperimentType,
    Hypothesis,
    HypothesisCategory,
)
from autopilot.storage import keys
from autopilot.storage.store import KeyValueStore


# Hypothesis category -> experiment type
EXPERIMENT_TYPES = {
    HypothesisCategory.BUDGET_REALLOCATION: ExperimentType.BUDGET_TEST,
    HypothesisCategory.CHANNEL_EXPANSION: ExperimentType.CHANNEL_TEST,
    HypothesisCategory.CHANNEL_REDUCTION: ExperimentType.CHANNEL_TEST,
    HypothesisCategory.CREATIVE_REFRESH: ExperimentType.CREATIVE_TEST,
    HypothesisCategory.AUDIENCE_REFINEMENT: ExperimentType.AUDIENCE_TEST,
    HypothesisCategory.GEO_TARGETING: ExperimentType.GEO_TEST,
    HypothesisCategory.SEASONAL_ADJUSTMENT: ExperimentType.BUDGET_TEST,
    HypothesisCategory.COMPETITIVE_RESPONSE: ExperimentType.CREATIVE_TEST,
    HypothesisCategory.PERFORMANCE_OPTIMIZATION: ExperimentType.BIDDING_TEST,
    HypothesisCategory.BRAND_ALIGNMENT: ExperimentType.CREATIVE_TEST,
    HypothesisCategory.FUNNEL_OPTIMIZATION: ExperimentType.LANDING_PAGE_TEST,
}

# Experiment type -> (primary metric, secondary metrics)
EXPERIMENT_METRICS = {
    ExperimentType.BUDGET_TEST: ("roas", ["cpa", "conversions", "revenue"]),
    ExperimentType.CHANNEL_TEST: ("conversions", ["cpa", "roas", "ctr"]),
    ExperimentType.CREATIVE_TEST: ("ctr", ["conversion_rate", "engagement", "cpa"]),
    ExperimentType.AUDIENCE_TEST: ("conversion_rate", ["cpa", "reach", "frequency"]),
    ExperimentType.GEO_TEST: ("cpa", ["conversions", "roas", "impression_share"]),
    ExperimentType.BIDDING_TEST: ("cpa", ["conversions", "impression_share", "position"]),
    ExperimentType.LANDING_PAGE_TEST: ("conversion_rate", ["bounce_rate", "time_on_page", "cpa"]),
}

ACTIVE_STATUSES = ("draft", "running")


def create_experiment_plan(
    hypothesis: Hypothesis,
    budget_percent: float = 10.0,
    duration_days: int = 14,
    channels: Optional[List[str]] = None
) -> ExperimentPlan:
    """
    Build a draft experiment that tests a hypothesis.

    Args:
        hypothesis: Selected hypothesis
        budget_percent: Share of the account budget to allocate (percent)
        duration_days: Planned run length
        channels: Channels the test runs on

    Returns:
        Draft ExperimentPlan
    """
    experiment_type = EXPERIMENT_TYPES.get(hypothesis.category, ExperimentType.BUDGET_TEST)
    primary_metric, secondary_metrics = EXPERIMENT_METRICS[experiment_type]

    return ExperimentPlan(
        account_id=hypothesis.account_id,
        name=f"Test: {hypothesis.hypothesis[:50]}",
        hypothesis_id=hypothesis.id,
        type=experiment_type,
        description=hypothesis.hypothesis,
        budget_percent=budget_percent,
        duration_days=duration_days,
        expected_lift=round(hypothesis.expected_impact * 100, 2),
        channels=list(channels or []),
        primary_metric=primary_metric,
        secondary_metrics=list(secondary_metrics),
    )


class ExperimentStore:
    """Per-account experiment list."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    def save(self, plan: ExperimentPlan) -> ExperimentPlan:
        self.store.append(keys.experiments_key(plan.account_id), plan.to_dict())
        return plan

    def get_experiments(
        self,
        account_id: str,
        status: Optional[str] = None
    ) -> List[ExperimentPlan]:
        """Experiments for an account, oldest first, optionally by status."""
        plans = self.store.get(keys.experiments_key(account_id), [])
        if status is not None:
            plans = [p for p in plans if p.get("status") == status]
        return [ExperimentPlan.from_dict(p) for p in plans]

    def update_status(self, account_id: str, experiment_id: str, status: str) -> Optional[ExperimentPlan]:
        updated: List[Dict] = []

        def _set_status(plans):
            for plan in plans:
                if plan["id"] == experiment_id:
                    plan["status"] = status
                    updated.append(plan)
                    break
            return plans

        self.store.update(keys.experiments_key(account_id), _set_status, default=[])
        return ExperimentPlan.from_dict(updated[0]) if updated else None

    def count_active(self, account_id: str) -> int:
        """Number of draft or running experiments."""
        plans = self.store.get(keys.experiments_key(account_id), [])
        return sum(1 for p in plans if p.get("status") in ACTIVE_STATUSES)
