"""
Signal monitor for performance and knowledge anomalies.

Compares a performance snapshot (current vs. previous period) and the account
knowledge graph against two-tier thresholds and emits typed Signal records.
Every detector is a pure function of its inputs; only scan() persists the
result (active set + bounded history).
"""

from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from autopilot.models.knowledge import AccountKnowledge
from autopilot.models.performance import PerformanceSnapshot
from autopilot.models.signal import (
    AlertConfig,
    Severity,
    Signal,
    SignalCategory,
    SignalThreshold,
    SignalType,
)
from autopilot.storage import keys
from autopilot.storage.store import KeyValueStore
from autopilot.utils.time_utils import from_iso, new_id, utc_now


# Period-over-period metrics: (metric attribute, category, direction, titles, actions)
# direction +1 means an increase is bad, -1 means a decrease is bad.
RATIO_METRICS = {
    SignalType.CPA_SPIKE: {
        "metric": "cpa",
        "category": SignalCategory.PERFORMANCE,
        "direction": 1,
        "titles": ("Critical CPA Spike Detected", "CPA Increase Warning"),
        "actions": (
            [
                "Review recent campaign changes",
                "Check for audience saturation",
                "Analyze creative performance",
                "Review bid strategy settings",
            ],
            [
                "Monitor CPA trend over next 48 hours",
                "Review recent targeting changes",
            ],
        ),
    },
    SignalType.CTR_COLLAPSE: {
        "metric": "ctr",
        "category": SignalCategory.PERFORMANCE,
        "direction": -1,
        "titles": ("Critical CTR Collapse", "CTR Decline Warning"),
        "actions": (
            [
                "Check for creative fatigue",
                "Review ad relevance scores",
                "Analyze competitor activity",
                "Consider creative refresh",
            ],
            [
                "Monitor creative performance",
                "Review audience targeting",
            ],
        ),
    },
    SignalType.CONVERSION_DROP: {
        "metric": "conversions",
        "category": SignalCategory.PERFORMANCE,
        "direction": -1,
        "titles": ("Critical Conversion Drop", "Conversion Decline Warning"),
        "actions": (
            [
                "Check landing page functionality",
                "Review conversion tracking setup",
                "Analyze funnel drop-off points",
                "Verify tracking pixels are firing",
            ],
            [
                "Monitor conversion trend",
                "Review recent campaign changes",
            ],
        ),
    },
    SignalType.ROAS_DECLINE: {
        "metric": "roas",
        "category": SignalCategory.PERFORMANCE,
        "direction": -1,
        "titles": ("Critical ROAS Decline", "ROAS Decline Warning"),
        "actions": (
            [
                "Review revenue attribution",
                "Analyze channel efficiency",
                "Consider budget reallocation",
                "Review bid strategies",
            ],
            [
                "Monitor ROAS trend",
                "Review campaign performance by channel",
            ],
        ),
    },
}


class SignalMonitor:
    """
    Watchdog that turns performance and knowledge data into signals.

    Severity tiers per metric:
    - Warning: change crosses the warning threshold
    - Critical: change crosses the critical threshold (only one signal is
      emitted per metric, at the highest tier crossed)
    """

    DEFAULT_THRESHOLDS = {
        SignalType.CPA_SPIKE: SignalThreshold(warning=20, critical=50, lookback_days=7),
        SignalType.CTR_COLLAPSE: SignalThreshold(warning=15, critical=30, lookback_days=7),
        SignalType.CONVERSION_DROP: SignalThreshold(warning=20, critical=40, lookback_days=7),
        SignalType.ROAS_DECLINE: SignalThreshold(warning=15, critical=30, lookback_days=14),
        SignalType.BUDGET_EXHAUSTION: SignalThreshold(warning=80, critical=95, lookback_days=30),
        SignalType.TRACKING_FAILURE: SignalThreshold(warning=5, critical=15, lookback_days=3),
        SignalType.SEASONAL_ANOMALY: SignalThreshold(warning=25, critical=50, lookback_days=365),
        SignalType.COMPETITIVE_THREAT: SignalThreshold(warning=10, critical=25, lookback_days=14),
        SignalType.NEGATIVE_ROI: SignalThreshold(warning=0, critical=-20, lookback_days=7),
        SignalType.QUALITY_SCORE_DROP: SignalThreshold(warning=1, critical=2, lookback_days=14),
    }

    HISTORY_LIMIT = 1000

    # Baselines used when a channel reports no previous value
    IMPRESSION_SHARE_BASELINE = 50.0
    QUALITY_SCORE_BASELINE = 7.0

    CRITICAL_CONTEXT_FIELDS = [
        ("brand.value_proposition", "Value Proposition"),
        ("audience.core_segments", "Core Audience Segments"),
        ("performance_media.active_channels", "Active Channels"),
        ("performance_media.monthly_budget", "Monthly Budget"),
    ]

    def __init__(
        self,
        store: KeyValueStore,
        clock: Callable[[], datetime] = utc_now
    ):
        """
        Initialize signal monitor.

        Args:
            store: Key-value store holding per-account signal state
            clock: Returns the current UTC time
        """
        self.store = store
        self.clock = clock

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    def scan(
        self,
        account_id: str,
        knowledge: AccountKnowledge,
        snapshot: Optional[PerformanceSnapshot] = None,
        custom_thresholds: Optional[Dict[SignalType, SignalThreshold]] = None,
        persist: bool = True
    ) -> List[Signal]:
        """
        Run a full signal scan for an account.

        Args:
            account_id: Account identifier
            knowledge: Account knowledge graph
            snapshot: Optional performance snapshot; performance detectors
                      are skipped without one
            custom_thresholds: Per-call threshold overrides (merged over the
                               account's stored overrides and the defaults)
            persist: When False, nothing is written to the store

        Returns:
            All detected signals, including info-level ones
        """
        thresholds = self.get_thresholds(account_id)
        if custom_thresholds:
            thresholds.update(custom_thresholds)

        signals = self.detect(account_id, knowledge, snapshot, thresholds, self.clock())

        if persist:
            active = [s.to_dict() for s in signals if s.severity != Severity.INFO]
            self.store.set(keys.active_signals_key(account_id), active)
            if signals:
                self.store.update(
                    keys.signal_history_key(account_id),
                    lambda history: (history + [s.to_dict() for s in signals])[-self.HISTORY_LIMIT:],
                    default=[],
                )

        return signals

    def detect(
        self,
        account_id: str,
        knowledge: AccountKnowledge,
        snapshot: Optional[PerformanceSnapshot],
        thresholds: Dict[SignalType, SignalThreshold],
        now: datetime
    ) -> List[Signal]:
        """Run every detector without touching the store."""
        signals: List[Signal] = []

        if snapshot is not None:
            for signal_type in RATIO_METRICS:
                signals.extend(
                    self._detect_ratio_change(account_id, signal_type, snapshot, thresholds, now)
                )
            signals.extend(self._detect_negative_roi(account_id, snapshot, thresholds, now))
            signals.extend(self._detect_budget_exhaustion(account_id, snapshot, thresholds, now))
            signals.extend(self._detect_tracking_failure(account_id, snapshot, thresholds, now))
            signals.extend(self._detect_quality_score_drop(account_id, snapshot, thresholds, now))
            signals.extend(self._detect_competitive_threat(account_id, snapshot, thresholds, now))

        signals.extend(self._detect_seasonal_context(account_id, knowledge, now))
        signals.extend(self._detect_context_gaps(account_id, knowledge, now))
        signals.extend(self._detect_strategy_misalignment(account_id, knowledge, now))

        return signals

    # ------------------------------------------------------------------
    # Detectors
    # ------------------------------------------------------------------

    @staticmethod
    def percent_change(current: float, previous: float) -> float:
        """Rolling percentage change; 0.0 when there is no previous value."""
        if previous <= 0:
            return 0.0
        return (current - previous) / previous * 100

    @staticmethod
    def _tier(value: float, threshold: SignalThreshold) -> Optional[Tuple[Severity, float]]:
        """Highest tier crossed by a value where larger means worse."""
        if value >= threshold.critical:
            return Severity.CRITICAL, threshold.critical
        if value >= threshold.warning:
            return Severity.WARNING, threshold.warning
        return None

    def _detect_ratio_change(
        self,
        account_id: str,
        signal_type: SignalType,
        snapshot: PerformanceSnapshot,
        thresholds: Dict[SignalType, SignalThreshold],
        now: datetime
    ) -> List[Signal]:
        definition = RATIO_METRICS[signal_type]
        metric = definition["metric"]
        direction = definition["direction"]
        current = getattr(snapshot.current, metric)
        previous = getattr(snapshot.previous, metric)

        change = self.percent_change(current, previous)
        tier = self._tier(change * direction, thresholds[signal_type])
        if tier is None:
            return []

        severity, crossed = tier
        is_critical = severity == Severity.CRITICAL
        verb = "increased" if direction > 0 else "dropped"

        return [Signal(
            id=new_id("signal"),
            account_id=account_id,
            type=signal_type,
            category=definition["category"],
            severity=severity,
            title=definition["titles"][0 if is_critical else 1],
            description=(
                f"{metric.upper()} {verb} by {abs(change):.1f}% "
                f"from {self._format_metric(metric, previous)} to {self._format_metric(metric, current)}"
            ),
            metric=metric,
            current_value=current,
            previous_value=previous,
            change_percent=change,
            threshold=crossed * direction,
            detected_at=now,
            suggested_actions=list(definition["actions"][0 if is_critical else 1]),
        )]

    @staticmethod
    def _format_metric(metric: str, value: float) -> str:
        if metric == "cpa":
            return f"${value:,.2f}"
        if metric == "ctr":
            return f"{value * 100:.2f}%"
        if metric == "roas":
            return f"{value:.2f}x"
        return f"{value:,.0f}"

    def _detect_negative_roi(
        self,
        account_id: str,
        snapshot: PerformanceSnapshot,
        thresholds: Dict[SignalType, SignalThreshold],
        now: datetime
    ) -> List[Signal]:
        current = snapshot.current
        if current.spend <= 0:
            return []

        roi = current.roi_pct
        threshold = thresholds[SignalType.NEGATIVE_ROI]

        # Lower ROI is worse, so tiers are compared downwards
        if roi <= threshold.critical:
            severity, crossed = Severity.CRITICAL, threshold.critical
            title = "Critical Negative ROI"
            description = (
                f"ROI is {roi:.1f}% - spending ${current.spend:,.0f} "
                f"to generate ${current.revenue:,.0f} revenue"
            )
            actions = [
                "Consider pausing underperforming campaigns",
                "Review channel ROI breakdown",
                "Analyze cost structure",
                "Evaluate pricing strategy",
            ]
        elif roi <= threshold.warning:
            severity, crossed = Severity.WARNING, threshold.warning
            title = "Break-even ROI Warning"
            description = f"ROI is at break-even ({roi:.1f}%) - monitor closely"
            actions = [
                "Review campaign efficiency",
                "Identify optimization opportunities",
            ]
        else:
            return []

        return [Signal(
            id=new_id("signal"),
            account_id=account_id,
            type=SignalType.NEGATIVE_ROI,
            category=SignalCategory.FINANCIAL,
            severity=severity,
            title=title,
            description=description,
            metric="roi",
            current_value=roi,
            previous_value=0.0,
            change_percent=roi,
            threshold=crossed,
            detected_at=now,
            suggested_actions=actions,
        )]

    def _detect_budget_exhaustion(
        self,
        account_id: str,
        snapshot: PerformanceSnapshot,
        thresholds: Dict[SignalType, SignalThreshold],
        now: datetime
    ) -> List[Signal]:
        signals = []
        threshold = thresholds[SignalType.BUDGET_EXHAUSTION]

        for name, channel in snapshot.channels.items():
            utilization = channel.budget_utilization or 0.0
            tier = self._tier(utilization, threshold)
            if tier is None:
                continue
            severity, crossed = tier
            if severity == Severity.CRITICAL:
                title = f"Budget Nearly Exhausted: {name}"
                actions = [
                    f"Review {name} budget allocation",
                    "Consider budget reallocation from other channels",
                    "Evaluate campaign pacing settings",
                ]
            else:
                title = f"High Budget Utilization: {name}"
                actions = [
                    f"Monitor {name} spend rate",
                    "Plan for potential budget increase",
                ]
            signals.append(Signal(
                id=new_id("signal"),
                account_id=account_id,
                type=SignalType.BUDGET_EXHAUSTION,
                category=SignalCategory.BUDGET,
                severity=severity,
                title=title,
                description=f"{name} has used {utilization:.0f}% of monthly budget",
                metric="budget_utilization",
                current_value=utilization,
                previous_value=0.0,
                change_percent=0.0,
                threshold=crossed,
                channel=name,
                detected_at=now,
                suggested_actions=actions,
            ))

        return signals

    def _detect_tracking_failure(
        self,
        account_id: str,
        snapshot: PerformanceSnapshot,
        thresholds: Dict[SignalType, SignalThreshold],
        now: datetime
    ) -> List[Signal]:
        signals = []
        threshold = thresholds[SignalType.TRACKING_FAILURE]

        for name, channel in snapshot.channels.items():
            discrepancy = channel.tracking_discrepancy or 0.0
            tier = self._tier(abs(discrepancy), threshold)
            if tier is None:
                continue
            severity, crossed = tier
            if severity == Severity.CRITICAL:
                title = f"Tracking Discrepancy: {name}"
                actions = [
                    "Verify tracking pixel implementation",
                    "Check conversion tag configuration",
                    "Review attribution settings",
                    "Test conversion tracking",
                ]
            else:
                title = f"Tracking Variance: {name}"
                actions = [
                    "Monitor tracking discrepancy",
                    "Review attribution window settings",
                ]
            signals.append(Signal(
                id=new_id("signal"),
                account_id=account_id,
                type=SignalType.TRACKING_FAILURE,
                category=SignalCategory.TECHNICAL,
                severity=severity,
                title=title,
                description=(
                    f"{name} shows {discrepancy:.1f}% discrepancy between platform and analytics"
                ),
                metric="tracking_discrepancy",
                current_value=discrepancy,
                previous_value=0.0,
                change_percent=0.0,
                threshold=crossed,
                channel=name,
                detected_at=now,
                suggested_actions=actions,
            ))

        return signals

    def _detect_quality_score_drop(
        self,
        account_id: str,
        snapshot: PerformanceSnapshot,
        thresholds: Dict[SignalType, SignalThreshold],
        now: datetime
    ) -> List[Signal]:
        signals = []
        threshold = thresholds[SignalType.QUALITY_SCORE_DROP]

        for name, channel in snapshot.channels.items():
            if channel.quality_score is None:
                continue
            previous = channel.previous_quality_score
            if previous is None:
                previous = self.QUALITY_SCORE_BASELINE
            current = channel.quality_score
            drop = previous - current

            tier = self._tier(drop, threshold)
            if tier is None:
                continue
            severity, crossed = tier
            if severity == Severity.CRITICAL:
                title = f"Quality Score Drop: {name}"
                actions = [
                    "Review ad relevance",
                    "Improve landing page experience",
                    "Optimize expected CTR",
                    "Review keyword-ad alignment",
                ]
            else:
                title = f"Quality Score Decline: {name}"
                actions = [
                    "Monitor Quality Score trends",
                    "Review ad copy relevance",
                ]
            signals.append(Signal(
                id=new_id("signal"),
                account_id=account_id,
                type=SignalType.QUALITY_SCORE_DROP,
                category=SignalCategory.PERFORMANCE,
                severity=severity,
                title=title,
                description=f"Average Quality Score at {current:g}/10 (down {drop:g} points)",
                metric="quality_score",
                current_value=current,
                previous_value=previous,
                change_percent=-(drop / previous * 100) if previous > 0 else 0.0,
                threshold=crossed,
                channel=name,
                detected_at=now,
                suggested_actions=actions,
            ))

        return signals

    def _detect_competitive_threat(
        self,
        account_id: str,
        snapshot: PerformanceSnapshot,
        thresholds: Dict[SignalType, SignalThreshold],
        now: datetime
    ) -> List[Signal]:
        signals = []
        threshold = thresholds[SignalType.COMPETITIVE_THREAT]

        for name, channel in snapshot.channels.items():
            if channel.impression_share is None:
                continue
            previous = channel.previous_impression_share
            if previous is None:
                previous = self.IMPRESSION_SHARE_BASELINE
            current = channel.impression_share
            loss = previous - current

            tier = self._tier(loss, threshold)
            if tier is None:
                continue
            severity, crossed = tier
            if severity == Severity.CRITICAL:
                title = f"Impression Share Loss: {name}"
                actions = [
                    "Analyze competitor activity",
                    "Review bid competitiveness",
                    "Consider budget increase",
                    "Evaluate targeting overlap",
                ]
            else:
                title = f"Impression Share Decline: {name}"
                actions = [
                    "Monitor competitive landscape",
                    "Review bid strategy",
                ]
            signals.append(Signal(
                id=new_id("signal"),
                account_id=account_id,
                type=SignalType.COMPETITIVE_THREAT,
                category=SignalCategory.COMPETITIVE,
                severity=severity,
                title=title,
                description=(
                    f"Impression share at {current:.0f}% (lost {loss:.0f} points)"
                ),
                metric="impression_share",
                current_value=current,
                previous_value=previous,
                change_percent=-(loss / previous * 100) if previous > 0 else 0.0,
                threshold=crossed,
                channel=name,
                detected_at=now,
                suggested_actions=actions,
            ))

        return signals

    def _detect_seasonal_context(
        self,
        account_id: str,
        knowledge: AccountKnowledge,
        now: datetime
    ) -> List[Signal]:
        peak_seasons = knowledge.get_value("identity.peak_seasons") or []
        if isinstance(peak_seasons, str):
            peak_seasons = [peak_seasons]

        current_month = now.strftime("%B").lower()
        if not any(current_month in str(season).lower() for season in peak_seasons):
            return []

        return [Signal(
            id=new_id("signal"),
            account_id=account_id,
            type=SignalType.SEASONAL_ANOMALY,
            category=SignalCategory.SEASONAL,
            severity=Severity.INFO,
            title="Peak Season Active",
            description=(
                "Currently in peak season. Ensure campaigns are optimized for increased demand."
            ),
            metric="seasonal_indicator",
            current_value=1.0,
            previous_value=0.0,
            change_percent=0.0,
            threshold=0.0,
            detected_at=now,
            suggested_actions=[
                "Review budget allocation for peak season",
                "Ensure creative assets are season-appropriate",
                "Monitor competitor activity closely",
            ],
        )]

    def _detect_context_gaps(
        self,
        account_id: str,
        knowledge: AccountKnowledge,
        now: datetime
    ) -> List[Signal]:
        missing = [
            name for path, name in self.CRITICAL_CONTEXT_FIELDS
            if not knowledge.has_value(path)
        ]
        if not missing:
            return []

        total = len(self.CRITICAL_CONTEXT_FIELDS)
        return [Signal(
            id=new_id("signal"),
            account_id=account_id,
            type=SignalType.CONTEXT_GAP,
            category=SignalCategory.DATA_QUALITY,
            severity=Severity.CRITICAL if len(missing) >= 3 else Severity.WARNING,
            title="Account Knowledge Gaps Detected",
            description=f"Missing critical knowledge: {', '.join(missing)}",
            metric="context_completeness",
            current_value=(total - len(missing)) / total * 100,
            previous_value=100.0,
            change_percent=0.0,
            threshold=75.0,
            detected_at=now,
            suggested_actions=[
                "Complete account knowledge setup",
                "Run knowledge enrichment",
            ] + [f"Add {name} to account knowledge" for name in missing],
        )]

    def _detect_strategy_misalignment(
        self,
        account_id: str,
        knowledge: AccountKnowledge,
        now: datetime
    ) -> List[Signal]:
        goal = knowledge.get_value("objectives.primary_objective")
        channels = knowledge.get_value("performance_media.active_channels")
        if not goal or not channels:
            return []

        goal = str(goal).lower()
        channels = [str(c).lower() for c in channels]
        signals = []

        if "ecommerce" in goal or "sales" in goal:
            if not any("shopping" in c or "google" in c for c in channels):
                signals.append(self._misalignment_signal(
                    account_id,
                    now,
                    "E-commerce goals detected but no shopping channels active",
                    [
                        "Consider adding Google Shopping",
                        "Review channel strategy for goal alignment",
                    ],
                ))

        if "awareness" in goal or "brand" in goal:
            if not any(k in c for c in channels for k in ("display", "youtube", "video")):
                signals.append(self._misalignment_signal(
                    account_id,
                    now,
                    "Brand awareness goals detected but no awareness channels active",
                    [
                        "Consider adding YouTube or Display channels",
                        "Review channel mix for brand awareness",
                    ],
                ))

        return signals

    @staticmethod
    def _misalignment_signal(
        account_id: str,
        now: datetime,
        description: str,
        actions: List[str]
    ) -> Signal:
        return Signal(
            id=new_id("signal"),
            account_id=account_id,
            type=SignalType.STRATEGY_MISALIGNMENT,
            category=SignalCategory.STRATEGIC,
            severity=Severity.WARNING,
            title="Strategy-Channel Misalignment",
            description=description,
            metric="strategy_alignment",
            current_value=0.0,
            previous_value=1.0,
            change_percent=-100.0,
            threshold=1.0,
            detected_at=now,
            suggested_actions=actions,
        )

    # ------------------------------------------------------------------
    # Signal management
    # ------------------------------------------------------------------

    def get_active_signals(self, account_id: str) -> List[Signal]:
        return [
            Signal.from_dict(s)
            for s in self.store.get(keys.active_signals_key(account_id), [])
        ]

    def get_signal_history(
        self,
        account_id: str,
        signal_type: Optional[SignalType] = None,
        severity: Optional[Severity] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = None
    ) -> List[Signal]:
        """
        Get signal history, oldest first.

        Args:
            account_id: Account identifier
            signal_type: Only signals of this type
            severity: Only signals of this severity
            since: Only signals detected at or after this time
            limit: Keep only the most recent N matches
        """
        history = self.store.get(keys.signal_history_key(account_id), [])

        if signal_type is not None:
            history = [s for s in history if s["type"] == signal_type.value]
        if severity is not None:
            history = [s for s in history if s["severity"] == severity.value]
        if since is not None:
            history = [s for s in history if from_iso(s["detected_at"]) >= since]
        if limit:
            history = history[-limit:]

        return [Signal.from_dict(s) for s in history]

    def acknowledge_signal(
        self,
        account_id: str,
        signal_id: str,
        acknowledged_by: str
    ) -> Optional[Signal]:
        """Mark an active signal as acknowledged; None if it is not active."""
        found: List[Signal] = []

        def _acknowledge(active):
            for i, data in enumerate(active):
                if data["id"] == signal_id:
                    updated = Signal.from_dict(data).acknowledge(acknowledged_by, self.clock())
                    active[i] = updated.to_dict()
                    found.append(updated)
                    break
            return active

        self.store.update(keys.active_signals_key(account_id), _acknowledge, default=[])
        return found[0] if found else None

    def resolve_signal(
        self,
        account_id: str,
        signal_id: str,
        resolution: str
    ) -> Optional[Signal]:
        """Resolve an active signal and move it into history; None if not active."""
        found: List[Signal] = []

        def _resolve(active):
            remaining = []
            for data in active:
                if data["id"] == signal_id and not found:
                    found.append(Signal.from_dict(data).resolve(resolution, self.clock()))
                else:
                    remaining.append(data)
            return remaining

        self.store.update(keys.active_signals_key(account_id), _resolve, default=[])
        if not found:
            return None

        self.store.append(
            keys.signal_history_key(account_id),
            found[0].to_dict(),
            max_items=self.HISTORY_LIMIT,
        )
        return found[0]

    def get_signal_summary(self, account_id: str) -> Dict:
        """
        Summarize the active signal set.

        Returns:
            Dictionary with total, critical, warning and info counts, counts
            by category and the five most severe signals
        """
        signals = self.get_active_signals(account_id)

        by_category: Dict[str, int] = {}
        for signal in signals:
            by_category[signal.category.value] = by_category.get(signal.category.value, 0) + 1

        top_issues = sorted(signals, key=lambda s: -s.severity.priority)[:5]

        return {
            "total": len(signals),
            "critical": sum(1 for s in signals if s.severity == Severity.CRITICAL),
            "warning": sum(1 for s in signals if s.severity == Severity.WARNING),
            "info": sum(1 for s in signals if s.severity == Severity.INFO),
            "by_category": by_category,
            "top_issues": top_issues,
        }

    # ------------------------------------------------------------------
    # Thresholds and alerting
    # ------------------------------------------------------------------

    def get_thresholds(self, account_id: str) -> Dict[SignalType, SignalThreshold]:
        """Defaults with the account's stored overrides merged over them."""
        thresholds = dict(self.DEFAULT_THRESHOLDS)
        overrides = self.store.get(keys.signal_thresholds_key(account_id), {})
        for type_value, data in overrides.items():
            thresholds[SignalType(type_value)] = SignalThreshold(
                warning=data["warning"],
                critical=data["critical"],
                lookback_days=data.get("lookback_days", 7),
            )
        return thresholds

    def set_thresholds(
        self,
        account_id: str,
        overrides: Dict[SignalType, SignalThreshold]
    ):
        """Store per-account threshold overrides."""
        def _merge(current):
            for signal_type, threshold in overrides.items():
                current[signal_type.value] = {
                    "warning": threshold.warning,
                    "critical": threshold.critical,
                    "lookback_days": threshold.lookback_days,
                }
            return current

        self.store.update(keys.signal_thresholds_key(account_id), _merge, default={})

    def set_alert_config(self, account_id: str, config: AlertConfig):
        self.store.set(keys.alert_config_key(account_id), config.to_dict())

    def get_alert_config(self, account_id: str) -> Optional[AlertConfig]:
        data = self.store.get(keys.alert_config_key(account_id))
        return AlertConfig.from_dict(data) if data else None

    def should_trigger_alert(
        self,
        account_id: str,
        signal: Signal,
        now: Optional[datetime] = None
    ) -> bool:
        """
        Check if a signal should notify a human.

        Requires an enabled alert config; the signal must reach the minimum
        severity, be in the enabled type allowlist (if any) and fall outside
        the quiet-hours window.
        """
        config = self.get_alert_config(account_id)
        if config is None or not config.enabled:
            return False

        if signal.severity.priority < config.min_severity.priority:
            return False

        if config.enabled_types is not None and signal.type not in config.enabled_types:
            return False

        now = now or self.clock()
        if config.in_quiet_hours(now.hour):
            return False

        return True
