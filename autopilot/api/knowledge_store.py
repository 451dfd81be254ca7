"""
Knowledge store clients.

The cycle engine reads the account knowledge graph and an optional
performance snapshot through the KnowledgeStore interface. The mock store
generates realistic accounts with different performance scenarios so the
loop can be exercised without a real data warehouse.
"""

import random
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from autopilot.models.knowledge import AccountKnowledge
from autopilot.models.performance import (
    ChannelPerformance,
    PerformancePeriod,
    PerformanceSnapshot,
)
from autopilot.utils.time_utils import utc_now


class KnowledgeStore(ABC):
    """Source of account knowledge and performance data."""

    @abstractmethod
    def load_knowledge(self, account_id: str) -> Optional[AccountKnowledge]:
        """Return the account's knowledge graph, or None if there is none."""

    def load_performance(self, account_id: str) -> Optional[PerformanceSnapshot]:
        """Return the latest performance snapshot, if the store has one."""
        return None

    def list_accounts(self) -> List[str]:
        return []


class InMemoryKnowledgeStore(KnowledgeStore):
    """Dict-backed store; populate with put_knowledge / put_performance."""

    def __init__(self):
        self._knowledge: Dict[str, AccountKnowledge] = {}
        self._performance: Dict[str, PerformanceSnapshot] = {}

    def put_knowledge(self, knowledge: AccountKnowledge):
        self._knowledge[knowledge.account_id] = knowledge

    def put_performance(self, account_id: str, snapshot: PerformanceSnapshot):
        self._performance[account_id] = snapshot

    def load_knowledge(self, account_id: str) -> Optional[AccountKnowledge]:
        return self._knowledge.get(account_id)

    def load_performance(self, account_id: str) -> Optional[PerformanceSnapshot]:
        return self._performance.get(account_id)

    def list_accounts(self) -> List[str]:
        return sorted(self._knowledge)


def build_period(spend: float, conversions: float, revenue: float,
                 impressions: float, clicks: float) -> PerformancePeriod:
    """Build a period with derived ratio metrics."""
    return PerformancePeriod(
        spend=spend,
        impressions=impressions,
        clicks=clicks,
        conversions=conversions,
        revenue=revenue,
        cpa=spend / conversions if conversions else 0.0,
        ctr=clicks / impressions * 100 if impressions else 0.0,
        roas=revenue / spend if spend else 0.0,
        cpc=spend / clicks if clicks else 0.0,
    )


class MockKnowledgeStore(InMemoryKnowledgeStore):
    """
    Generated accounts with realistic knowledge and performance.

    Scenario mix:
    - Healthy accounts (small period-over-period movement)
    - CPA spike accounts (cost per acquisition up 30-60%)
    - Negative ROI accounts (revenue below spend)
    - Thin-knowledge accounts (critical fields missing or stale)
    """

    # CPA multiplier, revenue multiplier per scenario
    SCENARIOS = {
        "healthy": [(0.95, 1.05), (1.02, 0.98), (0.98, 1.10)],
        "cpa_spike": [(1.30, 0.95), (1.45, 0.90), (1.60, 0.85)],
        "negative_roi": [(1.15, 0.30), (1.20, 0.25)],
        "thin_knowledge": [(1.00, 1.00)],
    }

    INDUSTRIES = ["ecommerce", "retail", "saas", "travel", "education"]
    CHANNELS = ["google_search", "google_shopping", "meta", "youtube", "display", "tiktok"]
    SEGMENTS = ["Young Parents", "Value Shoppers", "Gift Buyers", "Enthusiasts", "Professionals"]
    SEASONS = ["november", "december", "june", "march"]

    def __init__(self, num_accounts: int = 5, seed: Optional[int] = None,
                 now: Optional[datetime] = None):
        """
        Initialize mock store.

        Args:
            num_accounts: Number of accounts to generate
            seed: Random seed for reproducibility
            now: Reference time for field freshness (default: current UTC)
        """
        super().__init__()
        self.rng = random.Random(seed)
        self.now = now or utc_now()
        self.scenarios: Dict[str, str] = {}

        scenario_distribution = ["healthy"] * 2 + ["cpa_spike", "negative_roi", "thin_knowledge"]
        for i in range(num_accounts):
            account_id = f"ACC_{i + 1:03d}"
            scenario = scenario_distribution[i % len(scenario_distribution)]
            self.scenarios[account_id] = scenario
            self.put_knowledge(self._generate_knowledge(account_id, scenario))
            self.put_performance(account_id, self._generate_performance(scenario))

    def _generate_knowledge(self, account_id: str, scenario: str) -> AccountKnowledge:
        channels = self.rng.sample(self.CHANNELS, 3)
        fresh = self.now - timedelta(days=self.rng.randint(1, 20))
        stale = self.now - timedelta(days=self.rng.randint(120, 240))

        values = {
            "identity.industry": self.rng.choice(self.INDUSTRIES),
            "identity.peak_seasons": self.rng.sample(self.SEASONS, 2),
            "brand.positioning": "Premium quality at fair prices",
            "audience.demographics": "25-45, urban",
            "objectives.target_cpa": round(self.rng.uniform(20, 60), 2),
            "objectives.target_roas": round(self.rng.uniform(2.5, 4.5), 2),
            "creative.days_since_last_refresh": self.rng.randint(5, 60),
            "performance_media.channel_budgets": {
                c: round(self.rng.uniform(2000, 12000), 2) for c in channels
            },
            "performance_media.channel_roas": {
                c: round(self.rng.uniform(1.0, 5.0), 2) for c in channels
            },
        }
        critical = {
            "brand.value_proposition": "Durable products that last a lifetime",
            "audience.core_segments": self.rng.sample(self.SEGMENTS, 2),
            "performance_media.active_channels": channels,
            "performance_media.monthly_budget": round(self.rng.uniform(20000, 80000), 2),
            "objectives.primary_objective": self.rng.choice(["sales", "leads", "awareness"]),
        }

        if scenario == "thin_knowledge":
            # Keep only two critical fields, everything else stale
            critical = dict(list(critical.items())[:2])
            knowledge = AccountKnowledge.from_values(
                account_id, {**values, **critical},
                account_name=f"Account {account_id}", updated_at=stale
            )
        else:
            knowledge = AccountKnowledge.from_values(
                account_id, {**values, **critical},
                account_name=f"Account {account_id}", updated_at=fresh
            )
        return knowledge

    def _generate_performance(self, scenario: str) -> PerformanceSnapshot:
        cpa_factor, revenue_factor = self.rng.choice(self.SCENARIOS[scenario])

        spend = self.rng.uniform(20000, 60000)
        conversions = spend / self.rng.uniform(25, 45)
        impressions = spend * self.rng.uniform(80, 120)
        clicks = impressions * self.rng.uniform(0.01, 0.03)
        revenue = spend * self.rng.uniform(2.5, 4.0)
        previous = build_period(spend, conversions, revenue, impressions, clicks)

        current_spend = spend * self.rng.uniform(0.97, 1.03)
        current = build_period(
            current_spend,
            current_spend / (previous.cpa * cpa_factor),
            (current_spend if scenario == "negative_roi" else revenue) * revenue_factor,
            impressions * self.rng.uniform(0.97, 1.03),
            clicks * self.rng.uniform(0.95, 1.05),
        )

        channels = {}
        for name in self.rng.sample(self.CHANNELS, 3):
            channel_spend = current_spend / 3
            channel = ChannelPerformance(
                channel=name,
                impression_share=round(self.rng.uniform(30, 70), 1),
                previous_impression_share=round(self.rng.uniform(30, 70), 1),
                quality_score=float(self.rng.randint(5, 9)),
                previous_quality_score=float(self.rng.randint(5, 9)),
                budget_utilization=round(self.rng.uniform(50, 99), 1),
                tracking_discrepancy=round(self.rng.uniform(0, 8), 1),
            )
            channel.spend = channel_spend
            channel.revenue = current.revenue / 3
            channel.roas = channel.revenue / channel_spend if channel_spend else 0.0
            channels[name] = channel

        return PerformanceSnapshot(current=current, previous=previous, channels=channels)
