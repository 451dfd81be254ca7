"""
Candidate generators for hypotheses and optimizations.

Generators are long-latency, fallible collaborators. The cycle engine calls
them through call_with_timeout so that an error or timeout degrades to an
empty result instead of aborting the cycle.
"""

from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Any, Callable, List, Optional

from autopilot.errors import GeneratorError
from autopilot.models.change import (
    BudgetChange,
    CreativeRecommendation,
    Hypothesis,
    HypothesisCategory,
    TargetingChange,
)
from autopilot.models.knowledge import AccountKnowledge
from autopilot.models.performance import PerformanceSnapshot


def call_with_timeout(
    fn: Callable[[], Any],
    timeout: float,
    default: Any,
    on_error: Optional[Callable[[GeneratorError], None]] = None,
    name: str = "generator"
) -> Any:
    """
    Run fn on a worker thread and wait at most timeout seconds.

    Args:
        fn: Zero-argument callable
        timeout: Seconds to wait for a result
        default: Returned on timeout or error
        on_error: Called with a GeneratorError on timeout or error
        name: Generator name used in the error

    Returns:
        fn's result, or default
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"autopilot-{name}")
    future = executor.submit(fn)
    try:
        return future.result(timeout=timeout)
    except FutureTimeout:
        error = GeneratorError(name, TimeoutError(f"timed out after {timeout}s"))
    except Exception as e:
        error = GeneratorError(name, e)
    finally:
        # A timed-out call keeps running in the background; don't wait for it
        executor.shutdown(wait=False)

    if on_error is not None:
        on_error(error)
    return default


class CandidateGenerator(ABC):
    """Produces ranked candidates for one account."""

    @abstractmethod
    def generate_hypotheses(
        self,
        account_id: str,
        knowledge: AccountKnowledge,
        focus_domains: List[str],
        max_hypotheses: int = 15
    ) -> List[Hypothesis]:
        """Candidate hypotheses, best first."""

    @abstractmethod
    def generate_budget_allocation(
        self,
        account_id: str,
        knowledge: AccountKnowledge,
        snapshot: Optional[PerformanceSnapshot] = None
    ) -> Optional[BudgetChange]:
        """Proposed budget move, or None."""

    @abstractmethod
    def generate_creative_recommendations(
        self,
        account_id: str,
        knowledge: AccountKnowledge
    ) -> List[CreativeRecommendation]:
        """Creative changes, best first."""

    def generate_audience_changes(
        self,
        account_id: str,
        knowledge: AccountKnowledge
    ) -> List[TargetingChange]:
        return []


class MockCandidateGenerator(CandidateGenerator):
    """
    Deterministic heuristics over the knowledge graph.

    Each candidate list can be fixed up front, which is how tests drive the
    cycle engine with known inputs.
    """

    # Share of the weakest channel's budget moved to the strongest
    REALLOCATION_SHARE = 0.10
    CREATIVE_FATIGUE_DAYS = 30

    def __init__(
        self,
        hypotheses: Optional[List[Hypothesis]] = None,
        budget_allocation: Optional[BudgetChange] = None,
        creative_recommendations: Optional[List[CreativeRecommendation]] = None,
        audience_changes: Optional[List[TargetingChange]] = None
    ):
        self.hypotheses = hypotheses
        self.budget_allocation = budget_allocation
        self.creative_recommendations = creative_recommendations
        self.audience_changes = audience_changes

    def generate_hypotheses(
        self,
        account_id: str,
        knowledge: AccountKnowledge,
        focus_domains: List[str],
        max_hypotheses: int = 15
    ) -> List[Hypothesis]:
        if self.hypotheses is not None:
            return list(self.hypotheses)[:max_hypotheses]

        hypotheses = []
        channel_roas = knowledge.get_value("performance_media.channel_roas", {}) or {}
        if len(channel_roas) >= 2:
            best = max(channel_roas, key=channel_roas.get)
            worst = min(channel_roas, key=channel_roas.get)
            hypotheses.append(Hypothesis(
                account_id=account_id,
                hypothesis=f"Shifting budget from {worst} to {best} will improve blended ROAS",
                domain="performance_media",
                category=HypothesisCategory.BUDGET_REALLOCATION,
                confidence=0.75,
                expected_impact=0.15,
                rationale=f"{best} returns {channel_roas[best]}x vs {channel_roas[worst]}x on {worst}",
            ))

        days_since_refresh = knowledge.get_number("creative.days_since_last_refresh")
        if days_since_refresh >= self.CREATIVE_FATIGUE_DAYS:
            hypotheses.append(Hypothesis(
                account_id=account_id,
                hypothesis="Refreshing ad creative will recover click-through rate",
                domain="creative",
                category=HypothesisCategory.CREATIVE_REFRESH,
                confidence=0.7,
                expected_impact=0.12,
                rationale=f"Creative last refreshed {days_since_refresh:.0f} days ago",
            ))

        segments = knowledge.get_value("audience.core_segments", []) or []
        if segments:
            hypotheses.append(Hypothesis(
                account_id=account_id,
                hypothesis=f"Lookalike audiences seeded from {segments[0]} will lower CPA",
                domain="audience",
                category=HypothesisCategory.AUDIENCE_REFINEMENT,
                confidence=0.6,
                expected_impact=0.1,
                rationale="Core segment converts above account average",
            ))

        seasons = knowledge.get_value("identity.peak_seasons", []) or []
        if seasons:
            hypotheses.append(Hypothesis(
                account_id=account_id,
                hypothesis=f"Front-loading budget ahead of {seasons[0]} will capture peak demand",
                domain="performance_media",
                category=HypothesisCategory.SEASONAL_ADJUSTMENT,
                confidence=0.55,
                expected_impact=0.2,
                rationale="Peak season identified in account knowledge",
            ))

        if not knowledge.has_value("brand.positioning"):
            hypotheses.append(Hypothesis(
                account_id=account_id,
                hypothesis="Aligning ad copy with a defined brand position will lift conversion rate",
                domain="brand",
                category=HypothesisCategory.BRAND_ALIGNMENT,
                confidence=0.4,
                expected_impact=0.08,
            ))

        return hypotheses[:max_hypotheses]

    def generate_budget_allocation(
        self,
        account_id: str,
        knowledge: AccountKnowledge,
        snapshot: Optional[PerformanceSnapshot] = None
    ) -> Optional[BudgetChange]:
        if self.budget_allocation is not None:
            return self.budget_allocation

        budgets = knowledge.get_value("performance_media.channel_budgets", {}) or {}
        channel_roas = knowledge.get_value("performance_media.channel_roas", {}) or {}
        ranked = [c for c in budgets if c in channel_roas]
        if len(ranked) < 2:
            return None

        best = max(ranked, key=channel_roas.get)
        worst = min(ranked, key=channel_roas.get)
        if best == worst:
            return None

        moved = round(budgets[worst] * self.REALLOCATION_SHARE, 2)
        channels = {c: {"current": v, "proposed": v} for c, v in budgets.items()}
        channels[worst]["proposed"] = round(budgets[worst] - moved, 2)
        channels[best]["proposed"] = round(budgets[best] + moved, 2)
        return BudgetChange.from_allocation(channels)

    def generate_creative_recommendations(
        self,
        account_id: str,
        knowledge: AccountKnowledge
    ) -> List[CreativeRecommendation]:
        if self.creative_recommendations is not None:
            return list(self.creative_recommendations)

        channels = knowledge.get_value("performance_media.active_channels", []) or []
        channel = channels[0] if channels else None
        days_since_refresh = knowledge.get_number("creative.days_since_last_refresh")

        recommendations = [CreativeRecommendation(
            recommendation="Test two new headline variants against the current control",
            priority="medium",
            channel=channel,
            asset_type="headline",
        )]
        if days_since_refresh >= self.CREATIVE_FATIGUE_DAYS:
            recommendations.insert(0, CreativeRecommendation(
                recommendation="Rotate in fresh creative to counter ad fatigue",
                priority="high",
                channel=channel,
                asset_type="image",
                rationale=f"Creative last refreshed {days_since_refresh:.0f} days ago",
            ))
        return recommendations

    def generate_audience_changes(
        self,
        account_id: str,
        knowledge: AccountKnowledge
    ) -> List[TargetingChange]:
        if self.audience_changes is not None:
            return list(self.audience_changes)

        segments = knowledge.get_value("audience.core_segments", []) or []
        if not segments:
            return []
        return [TargetingChange(
            type="add",
            segments=[f"Lookalike: {segments[0]}"],
            rationale="Expand reach with lookalikes of the best converting segment",
        )]
