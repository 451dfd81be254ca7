"""
Shared fixtures: in-memory store, fixed clock and account knowledge.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import pytest

from autopilot.api.knowledge_store import build_period
from autopilot.models.knowledge import AccountKnowledge
from autopilot.models.performance import ChannelPerformance, PerformanceSnapshot
from autopilot.storage.store import InMemoryStore


# A Wednesday in March: no weekend or holiday rules fire
FIXED_NOW = datetime(2024, 3, 13, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


def make_knowledge(
    account_id: str = "ACC_001",
    updated_at: datetime = FIXED_NOW,
    overrides: Optional[Dict] = None,
    drop=()
) -> AccountKnowledge:
    """Complete, fresh knowledge for one account."""
    values = {
        "brand.value_proposition": "Durable products that last a lifetime",
        "brand.positioning": "Premium quality at fair prices",
        "audience.core_segments": ["Young Parents", "Value Shoppers"],
        "audience.demographics": "25-45, urban",
        "performance_media.active_channels": ["google_search", "meta"],
        "performance_media.monthly_budget": 50000.0,
        "performance_media.channel_budgets": {"google_search": 6000.0, "meta": 4000.0},
        "performance_media.channel_roas": {"google_search": 4.0, "meta": 2.0},
        "objectives.primary_objective": "sales",
        "objectives.target_cpa": 50.0,
        "objectives.target_roas": 3.0,
        "identity.industry": "retail",
        "identity.peak_seasons": ["november"],
        "identity.seasonality_notes": "Strong fourth quarter",
        "creative.days_since_last_refresh": 45,
    }
    values.update(overrides or {})
    for path in drop:
        values.pop(path, None)
    return AccountKnowledge.from_values(
        account_id, values, account_name=f"Account {account_id}", updated_at=updated_at
    )


def make_snapshot(
    previous_spend: float = 10000.0,
    current_spend: float = 10000.0,
    previous_conversions: float = 250.0,
    current_conversions: float = 250.0,
    roas: float = 3.5,
    channels: Optional[Dict[str, ChannelPerformance]] = None
) -> PerformanceSnapshot:
    """
    Snapshot where only CPA moves (via spend/conversions).

    Revenue follows spend so ROAS stays constant, and impressions and clicks
    are identical in both periods.
    """
    previous = build_period(previous_spend, previous_conversions, previous_spend * roas, 100000, 2000)
    current = build_period(current_spend, current_conversions, current_spend * roas, 100000, 2000)
    return PerformanceSnapshot(current=current, previous=previous, channels=channels or {})


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def knowledge():
    return make_knowledge()


@pytest.fixture
def snapshot():
    return make_snapshot()
