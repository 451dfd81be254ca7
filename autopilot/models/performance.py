"""
Performance snapshot models.

A snapshot compares the current period with the previous one, optionally
broken down per channel with channel-only health metrics.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional


@dataclass
class PerformancePeriod:
    """Aggregated metrics for one reporting period."""
    spend: float = 0.0
    impressions: float = 0.0
    clicks: float = 0.0
    conversions: float = 0.0
    revenue: float = 0.0
    cpa: float = 0.0
    ctr: float = 0.0
    roas: float = 0.0
    cpc: float = 0.0

    @property
    def roi_pct(self) -> float:
        """Return on spend as a percentage; 0.0 when nothing was spent."""
        if self.spend <= 0:
            return 0.0
        return (self.revenue - self.spend) / self.spend * 100

    def to_dict(self) -> Dict:
        return {
            "spend": self.spend,
            "impressions": self.impressions,
            "clicks": self.clicks,
            "conversions": self.conversions,
            "revenue": self.revenue,
            "cpa": self.cpa,
            "ctr": self.ctr,
            "roas": self.roas,
            "cpc": self.cpc,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "PerformancePeriod":
        return cls(**{k: data[k] for k in cls.__dataclass_fields__ if k in data})


@dataclass
class ChannelPerformance(PerformancePeriod):
    """Per-channel metrics, including channel-only health indicators."""
    channel: str = ""
    impression_share: Optional[float] = None
    previous_impression_share: Optional[float] = None
    quality_score: Optional[float] = None
    previous_quality_score: Optional[float] = None
    budget_utilization: Optional[float] = None  # percent of period budget spent
    tracking_discrepancy: Optional[float] = None  # percent platform vs analytics

    def to_dict(self) -> Dict:
        data = super().to_dict()
        data.update({
            "channel": self.channel,
            "impression_share": self.impression_share,
            "previous_impression_share": self.previous_impression_share,
            "quality_score": self.quality_score,
            "previous_quality_score": self.previous_quality_score,
            "budget_utilization": self.budget_utilization,
            "tracking_discrepancy": self.tracking_discrepancy,
        })
        return data


@dataclass
class PerformanceSnapshot:
    """Current vs. previous period, with optional channel breakdown."""
    current: PerformancePeriod
    previous: PerformancePeriod
    channels: Dict[str, ChannelPerformance] = field(default_factory=dict)
    year_over_year: Optional[PerformancePeriod] = None

    @property
    def max_budget_utilization(self) -> float:
        """Highest budget utilization across channels (0.0 if unknown)."""
        values = [
            c.budget_utilization for c in self.channels.values()
            if c.budget_utilization is not None
        ]
        return max(values) if values else 0.0

    def to_dict(self) -> Dict:
        return {
            "current": self.current.to_dict(),
            "previous": self.previous.to_dict(),
            "channels": {name: c.to_dict() for name, c in self.channels.items()},
            "year_over_year": self.year_over_year.to_dict() if self.year_over_year else None,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "PerformanceSnapshot":
        return cls(
            current=PerformancePeriod.from_dict(data.get("current", {})),
            previous=PerformancePeriod.from_dict(data.get("previous", {})),
            channels={
                name: ChannelPerformance.from_dict(c)
                for name, c in data.get("channels", {}).items()
            },
            year_over_year=(
                PerformancePeriod.from_dict(data["year_over_year"])
                if data.get("year_over_year") else None
            ),
        )
