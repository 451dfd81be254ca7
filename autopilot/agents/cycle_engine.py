"""
CycleEngine: LangGraph-based autopilot control loop.

One cycle, for one account, walks a state machine:

    load_state -> check_readiness -> scan_signals -> generate_hypotheses
        -> create_experiments -> generate_optimizations -> gate_and_apply
        -> summarize -> finalize

A failed readiness check routes straight to finalize (skipped cycle) and an
emergency stop raised by the signal scan routes to summarize. Every cycle
produces exactly one CycleResult and one cycle_completed audit entry, even
when a node raises.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Literal, Optional, Set, TypedDict

from langgraph.graph import StateGraph, END

from autopilot.agents.experiments import create_experiment_plan
from autopilot.agents.knowledge_health import KnowledgeHealthScorer
from autopilot.agents.rule_engine import (
    PerformanceMetrics,
    RuleAction,
    RuleContext,
    RuleEngine,
    is_action_allowed_at_level,
)
from autopilot.analyzers.signal_monitor import SignalMonitor
from autopilot.api.generators import CandidateGenerator, MockCandidateGenerator, call_with_timeout
from autopilot.api.knowledge_store import KnowledgeStore
from autopilot.errors import ConfigurationError, DataUnavailableError, GeneratorError, RuleEvaluationError
from autopilot.governance import Governance
from autopilot.models.change import ChangeKind, ExperimentPlan, Hypothesis, ProposedChange
from autopilot.models.config import AccountConfig, AutonomyLevel, RiskTolerance
from autopilot.models.cycle import CycleResult, CycleStatus
from autopilot.models.governance import AutopilotAction, Outcome, TriggeredBy
from autopilot.models.knowledge import AccountKnowledge
from autopilot.models.performance import PerformanceSnapshot
from autopilot.models.signal import Severity, Signal
from autopilot.storage import keys
from autopilot.storage.store import KeyValueStore
from autopilot.utils.slack_notifier import SlackNotifier
from autopilot.utils.time_utils import new_id, utc_now


class CycleState(TypedDict, total=False):
    """
    State passed between nodes in the LangGraph workflow.

    The CycleResult is created before the graph runs and filled in by each
    node, so it survives a node raising half way through.
    """
    account_id: str
    dry_run: bool
    result: CycleResult
    config: AccountConfig
    autonomy_level: AutonomyLevel
    knowledge: Optional[AccountKnowledge]
    snapshot: Optional[PerformanceSnapshot]
    readiness: Dict[str, Any]
    signals: List[Signal]
    emergency_triggered: bool
    emergency_reason: Optional[str]
    hypotheses: List[Hypothesis]
    selected: List[Hypothesis]
    experiments: List[ExperimentPlan]
    candidates: List[ProposedChange]


# Hypotheses kept per cycle, by risk tolerance
SELECTION_LIMITS = {
    RiskTolerance.AGGRESSIVE: 5,
    RiskTolerance.MODERATE: 3,
    RiskTolerance.CONSERVATIVE: 2,
}

# Knowledge domain each optimization kind touches
CHANGE_DOMAINS = {
    ChangeKind.BUDGET: "performance_media",
    ChangeKind.CREATIVE: "creative",
    ChangeKind.AUDIENCE: "audience",
}

# Audit action written when a change of this kind is applied
APPLIED_ACTIONS = {
    ChangeKind.BUDGET: AutopilotAction.BUDGET_REALLOCATED,
    ChangeKind.CREATIVE: AutopilotAction.CREATIVE_OPTIMIZED,
    ChangeKind.AUDIENCE: AutopilotAction.AUDIENCE_REFINED,
}


def select_hypotheses(hypotheses: List[Hypothesis], config: AccountConfig) -> List[Hypothesis]:
    """
    Filter to allowed domains, rank by confidence x impact, keep the top k.

    Args:
        hypotheses: Candidate hypotheses
        config: Account config (allowed_domains, risk_tolerance)

    Returns:
        Selected hypotheses, best first
    """
    allowed = [h for h in hypotheses if h.domain in config.allowed_domains]
    ranked = sorted(allowed, key=lambda h: h.score, reverse=True)
    return ranked[:SELECTION_LIMITS.get(config.risk_tolerance, 3)]


def performance_score(
    snapshot: Optional[PerformanceSnapshot],
    knowledge: AccountKnowledge
) -> float:
    """
    Performance against targets (0 to 100).

    Averages current/target ROAS and target/current CPA, each capped at 1.0.
    Returns 0.0 when there is no snapshot or no target to compare with.
    """
    if snapshot is None:
        return 0.0

    current = snapshot.current
    ratios = []
    target_roas = knowledge.get_number("objectives.target_roas")
    if target_roas > 0:
        ratios.append(min(1.0, current.roas / target_roas))
    target_cpa = knowledge.get_number("objectives.target_cpa")
    if target_cpa > 0 and current.cpa > 0:
        ratios.append(min(1.0, target_cpa / current.cpa))

    if not ratios:
        return 0.0
    return round(sum(ratios) / len(ratios) * 100, 1)


class CycleEngine:
    """
    LangGraph-based autopilot cycle runner.

    This engine orchestrates one full control-loop run:
    1. Load account knowledge and performance
    2. Check readiness (kill switch, config, emergency stop, knowledge health)
    3. Scan for signals and trigger emergency stops on critical deviation
    4. Generate, rank and select hypotheses
    5. Plan experiments for the top hypotheses
    6. Generate budget, creative and audience optimizations
    7. Gate every change through the rule engine; apply, queue or block it
    8. Summarize and finalize the CycleResult
    """

    # Knowledge health below this fails the readiness check
    MIN_KNOWLEDGE_HEALTH = 40.0

    MAX_EXPERIMENTS_PER_CYCLE = 3
    MAX_HYPOTHESES = 15
    HISTORY_LIMIT = 100
    GENERATOR_TIMEOUT = 30.0

    def __init__(
        self,
        store: KeyValueStore,
        knowledge_store: KnowledgeStore,
        generator: Optional[CandidateGenerator] = None,
        governance: Optional[Governance] = None,
        signal_monitor: Optional[SignalMonitor] = None,
        rule_engine: Optional[RuleEngine] = None,
        health_scorer: Optional[KnowledgeHealthScorer] = None,
        slack_webhook: Optional[str] = None,
        clock: Callable[[], datetime] = utc_now,
        generator_timeout: float = GENERATOR_TIMEOUT
    ):
        """
        Initialize cycle engine.

        Args:
            store: Key-value store for all per-account state
            knowledge_store: Source of account knowledge and performance
            generator: Candidate generator (default MockCandidateGenerator)
            governance: Governance layer sharing the same store
            signal_monitor: Signal monitor sharing the same store
            rule_engine: Rule engine sharing the same store
            health_scorer: Knowledge health scorer
            slack_webhook: Optional Slack webhook URL for notifications
            clock: Returns the current UTC time
            generator_timeout: Seconds allowed per generator call
        """
        self.store = store
        self.knowledge_store = knowledge_store
        self.generator = generator or MockCandidateGenerator()
        self.clock = clock
        self.generator_timeout = generator_timeout

        self.governance = governance or Governance(store, clock=clock)
        self.signal_monitor = signal_monitor or SignalMonitor(store, clock=clock)
        self.rule_engine = rule_engine or RuleEngine(
            store, on_error=self._log_rule_error, clock=clock
        )
        self.health_scorer = health_scorer or KnowledgeHealthScorer(clock=clock)
        self.slack_notifier = SlackNotifier(slack_webhook) if slack_webhook else None

        self.graph = self._build_graph()

    @property
    def audit(self):
        return self.governance.audit

    def _build_graph(self):
        """
        Construct the LangGraph state machine.

        Returns:
            Compiled StateGraph ready for execution
        """
        workflow = StateGraph(CycleState)

        workflow.add_node("load_state", self.load_state)
        workflow.add_node("check_readiness", self.check_readiness_node)
        workflow.add_node("scan_signals", self.scan_signals)
        workflow.add_node("generate_hypotheses", self.generate_hypotheses)
        workflow.add_node("create_experiments", self.create_experiments)
        workflow.add_node("generate_optimizations", self.generate_optimizations)
        workflow.add_node("gate_and_apply", self.gate_and_apply)
        workflow.add_node("summarize", self.summarize)
        workflow.add_node("finalize", self.finalize)

        workflow.set_entry_point("load_state")
        workflow.add_edge("load_state", "check_readiness")

        # Readiness gate
        workflow.add_conditional_edges(
            "check_readiness",
            self.route_by_readiness,
            {
                "skip": "finalize",
                "continue": "scan_signals"
            }
        )

        # Emergency gate
        workflow.add_conditional_edges(
            "scan_signals",
            self.route_by_emergency,
            {
                "emergency": "summarize",
                "continue": "generate_hypotheses"
            }
        )

        workflow.add_edge("generate_hypotheses", "create_experiments")
        workflow.add_edge("create_experiments", "generate_optimizations")
        workflow.add_edge("generate_optimizations", "gate_and_apply")
        workflow.add_edge("gate_and_apply", "summarize")
        workflow.add_edge("summarize", "finalize")
        workflow.add_edge("finalize", END)

        return workflow.compile()

    # ==============
    # Public surface
    # ==============

    def run_cycle(
        self,
        account_id: str,
        dry_run: bool = False,
        forced_autonomy_level: Optional[AutonomyLevel] = None
    ) -> CycleResult:
        """
        Run one autopilot cycle for an account.

        Args:
            account_id: Account identifier
            dry_run: Compute the would-be result without persisting changes,
                     approvals, experiments, signals or last_cycle_at
            forced_autonomy_level: Use this level instead of the configured one

        Returns:
            The finalized CycleResult (success, skipped or failed)
        """
        config = self.governance.configs.get_or_create_config(account_id)
        autonomy_level = forced_autonomy_level or config.autonomy_level

        result = CycleResult(
            id=new_id("cycle"),
            account_id=account_id,
            cycle_number=self.store.increment(keys.cycle_counter_key(account_id)),
            started_at=self.clock(),
            autonomy_level=autonomy_level,
            dry_run=dry_run,
        )

        state: CycleState = {
            "account_id": account_id,
            "dry_run": dry_run,
            "result": result,
            "config": config,
            "autonomy_level": autonomy_level,
            "knowledge": None,
            "snapshot": None,
            "readiness": {},
            "signals": [],
            "emergency_triggered": False,
            "emergency_reason": None,
            "hypotheses": [],
            "selected": [],
            "experiments": [],
            "candidates": [],
        }

        try:
            self.audit.log_action(
                account_id,
                AutopilotAction.CYCLE_STARTED,
                {"cycle_id": result.id, "cycle_number": result.cycle_number, "dry_run": dry_run},
                triggered_by=TriggeredBy.SCHEDULE,
            )
            self.graph.invoke(state)
        except Exception as e:
            if result.is_finalized:
                # History already holds this result; keep it as recorded
                print(f"Cycle {result.id} failed after it was recorded: {e}")
                return result
            result.status = CycleStatus.FAILED
            result.error_message = str(e) or type(e).__name__
            result.summary = f"Cycle failed: {result.error_message}"
            try:
                self._finalize_result(result)
            except Exception as finalize_error:
                print(f"Failed to record cycle {result.id}: {finalize_error}")

        return result

    def check_readiness(
        self,
        account_id: str,
        knowledge: Optional[AccountKnowledge] = None,
        dry_run: bool = False
    ) -> Dict[str, Any]:
        """
        Check if the autopilot may run for an account.

        Every failing check is reported; the result is ready only when no
        check failed.

        Args:
            account_id: Account identifier
            knowledge: Pre-loaded knowledge (loaded from the store if omitted)
            dry_run: Leave a lapsed emergency stop unresolved in the store

        Returns:
            Dictionary with ready (bool), reasons (list) and score (0-100)
        """
        reasons = []
        score = 100.0

        if not self.governance.configs.is_global_enabled():
            reasons.append("Global autopilot is disabled")
            score -= 100

        config = self.governance.configs.get_autopilot_config(account_id)
        if config is None or not config.enabled:
            reasons.append("Account autopilot is not enabled")
            score -= 100

        if self.governance.emergency.is_active(account_id, resolve_expired=not dry_run):
            reasons.append("Emergency stop is active")
            score -= 100

        if knowledge is None:
            knowledge = self.knowledge_store.load_knowledge(account_id)
        if knowledge is None:
            reasons.append("No account knowledge available")
            score -= 50
        else:
            health = self.health_scorer.score(knowledge)
            if health < self.MIN_KNOWLEDGE_HEALTH:
                reasons.append(f"Knowledge health too low: {health}%")
                score -= 30

        return {
            "ready": not reasons,
            "reasons": reasons,
            "score": max(0.0, score),
        }

    def get_cycle_history(self, account_id: str, limit: int = 20) -> List[CycleResult]:
        """Finalized cycle results, most recent first."""
        history = self.store.get(keys.cycles_key(account_id), [])
        if limit:
            history = history[-limit:]
        return [CycleResult.from_dict(r) for r in reversed(history)]

    # ===================
    # Node Implementations
    # ===================

    def load_state(self, state: CycleState) -> CycleState:
        """Load knowledge and performance; missing knowledge fails the cycle."""
        account_id = state["account_id"]

        knowledge = self.knowledge_store.load_knowledge(account_id)
        if knowledge is None:
            raise DataUnavailableError(account_id)

        state["knowledge"] = knowledge
        state["snapshot"] = self.knowledge_store.load_performance(account_id)

        # Reverts since the previous cycle count as human overrides
        last_cycle_at = state["config"].last_cycle_at
        if last_cycle_at is not None:
            state["result"].human_overrides = self.audit.count(
                account_id, AutopilotAction.CHANGE_REVERTED, since=last_cycle_at
            )
        return state

    def check_readiness_node(self, state: CycleState) -> CycleState:
        """Score knowledge and performance, then run the readiness checks."""
        result = state["result"]
        knowledge = state["knowledge"]

        result.context_health_score = self.health_scorer.score(knowledge)
        result.performance_score = performance_score(state["snapshot"], knowledge)

        readiness = self.check_readiness(state["account_id"], knowledge, dry_run=state["dry_run"])
        state["readiness"] = readiness
        result.readiness_score = readiness["score"]

        if not readiness["ready"]:
            result.concerns.extend(readiness["reasons"])
            if not state["dry_run"]:
                result.status = CycleStatus.SKIPPED
                result.summary = f"Cycle skipped: {ConfigurationError(readiness['reasons'])}"

        return state

    def scan_signals(self, state: CycleState) -> CycleState:
        """Scan for signals; a large critical deviation stops the account."""
        account_id = state["account_id"]
        result = state["result"]
        config = state["config"]
        dry_run = state["dry_run"]

        signals = self.signal_monitor.scan(
            account_id,
            state["knowledge"],
            state["snapshot"],
            persist=not dry_run,
        )
        state["signals"] = signals

        critical = [s for s in signals if s.severity == Severity.CRITICAL]
        result.signals_detected = len(signals)
        result.alerts_triggered = len(critical)

        for signal in signals:
            if signal.severity == Severity.INFO:
                continue
            self.audit.log_action(
                account_id,
                AutopilotAction.SIGNAL_DETECTED,
                {
                    "signal_id": signal.id,
                    "type": signal.type.value,
                    "severity": signal.severity.value,
                    "metric": signal.metric,
                    "change_percent": signal.change_percent,
                    "channel": signal.channel,
                },
                triggered_by=TriggeredBy.SIGNAL,
            )
            if not dry_run and self.slack_notifier and self.signal_monitor.should_trigger_alert(
                account_id, signal
            ):
                self.slack_notifier.send_signal_alert(self._account_name(state), signal)

        if critical:
            result.concerns.append(f"{len(critical)} critical signal(s) detected")

        if dry_run:
            return state

        for signal in critical:
            self.audit.log_action(
                account_id,
                AutopilotAction.ALERT_TRIGGERED,
                {"signal_id": signal.id, "type": signal.type.value, "severity": signal.severity.value},
                triggered_by=TriggeredBy.SIGNAL,
                description=f"Emergency: {signal.title}",
            )

            deviation = signal.change_percent or 0.0
            if abs(deviation) <= config.emergency_stop_threshold:
                continue

            reason = f"Critical signal: {signal.title} ({deviation:+.1f}%)"
            emergency = self.governance.emergency.trigger_emergency_stop(
                account_id,
                triggered_by="autopilot",
                reason=reason,
                affected_channels=[signal.channel] if signal.channel else None,
                source=TriggeredBy.SIGNAL,
            )
            self.governance.configs.update_config(
                account_id, lambda c: setattr(c, "enabled", False)
            )
            state["emergency_triggered"] = True
            state["emergency_reason"] = reason
            result.concerns.append(f"Emergency stop triggered: {reason}")

            if self.slack_notifier:
                self.slack_notifier.send_emergency_stop(self._account_name(state), emergency)
            break

        return state

    def generate_hypotheses(self, state: CycleState) -> CycleState:
        """Request hypotheses, log them and select the top k."""
        account_id = state["account_id"]
        result = state["result"]
        config = state["config"]
        knowledge = state["knowledge"]

        hypotheses = call_with_timeout(
            lambda: self.generator.generate_hypotheses(
                account_id, knowledge, list(config.allowed_domains), self.MAX_HYPOTHESES
            ),
            timeout=self.generator_timeout,
            default=[],
            on_error=self._generator_error_handler(state),
            name="hypotheses",
        ) or []
        state["hypotheses"] = hypotheses
        result.hypotheses_generated = len(hypotheses)

        for h in hypotheses:
            self.audit.log_action(
                account_id,
                AutopilotAction.HYPOTHESIS_GENERATED,
                {
                    "hypothesis_id": h.id,
                    "domain": h.domain,
                    "category": h.category.value,
                    "confidence": h.confidence,
                    "expected_impact": h.expected_impact,
                },
                impacted_domains=[h.domain],
                description=h.hypothesis,
            )

        selected = select_hypotheses(hypotheses, config)
        state["selected"] = selected
        result.hypotheses_selected = len(selected)
        return state

    def create_experiments(self, state: CycleState) -> CycleState:
        """Plan draft experiments for the top selected hypotheses."""
        account_id = state["account_id"]
        result = state["result"]
        config = state["config"]
        channels = state["knowledge"].get_value("performance_media.active_channels", []) or []

        experiments = []
        for hypothesis in state["selected"][:self.MAX_EXPERIMENTS_PER_CYCLE]:
            plan = create_experiment_plan(
                hypothesis,
                budget_percent=config.experiment_budget_percent,
                channels=channels,
            )
            change = ProposedChange.experiment(plan)
            decision = self.rule_engine.decide(self._rule_context(state, change))

            for warning in decision.warnings:
                if warning not in result.concerns:
                    result.concerns.append(warning)

            if not decision.allowed:
                self._log_blocked(state, change, decision)
                continue

            if decision.requires_approval or config.requires_approval(change.kind.value):
                result.approvals_requested += 1
                if not state["dry_run"]:
                    self._request_approval(state, change, decision.triggered_rules)
                continue

            if not state["dry_run"]:
                self.governance.experiments.save(plan)
            experiments.append(plan)

            self.audit.log_action(
                account_id,
                AutopilotAction.EXPERIMENT_CREATED,
                {
                    "experiment_id": plan.id,
                    "hypothesis_id": hypothesis.id,
                    "name": plan.name,
                    "type": plan.type.value,
                    "budget_percent": plan.budget_percent,
                },
                impacted_domains=[hypothesis.domain],
            )

        state["experiments"] = experiments
        result.experiments_created = len(experiments)
        return state

    def generate_optimizations(self, state: CycleState) -> CycleState:
        """Request budget, creative and audience candidates (not in manual_only)."""
        account_id = state["account_id"]
        result = state["result"]
        config = state["config"]
        knowledge = state["knowledge"]

        if state["autonomy_level"] == AutonomyLevel.MANUAL_ONLY:
            state["candidates"] = []
            return state

        on_error = self._generator_error_handler(state)
        candidates: List[ProposedChange] = []

        if CHANGE_DOMAINS[ChangeKind.BUDGET] in config.allowed_domains:
            budget = call_with_timeout(
                lambda: self.generator.generate_budget_allocation(
                    account_id, knowledge, state["snapshot"]
                ),
                timeout=self.generator_timeout,
                default=None,
                on_error=on_error,
                name="budget_allocation",
            )
            if budget is not None and budget.channels:
                result.budget_changes.append(budget)
                candidates.append(ProposedChange.budget(budget))

        if CHANGE_DOMAINS[ChangeKind.CREATIVE] in config.allowed_domains:
            creative = call_with_timeout(
                lambda: self.generator.generate_creative_recommendations(account_id, knowledge),
                timeout=self.generator_timeout,
                default=[],
                on_error=on_error,
                name="creative_recommendations",
            ) or []
            result.creative_changes.extend(creative)
            candidates.extend(ProposedChange.creative(rec) for rec in creative)

        if CHANGE_DOMAINS[ChangeKind.AUDIENCE] in config.allowed_domains:
            audience = call_with_timeout(
                lambda: self.generator.generate_audience_changes(account_id, knowledge),
                timeout=self.generator_timeout,
                default=[],
                on_error=on_error,
                name="audience_changes",
            ) or []
            result.audience_changes.extend(audience)
            candidates.extend(ProposedChange.audience(change) for change in audience)

        state["candidates"] = candidates
        result.updates_proposed = len(candidates)
        return state

    def gate_and_apply(self, state: CycleState) -> CycleState:
        """
        Run every candidate through the rule engine.

        Blocked changes are logged, gated changes become approval requests and
        the rest are applied when the autonomy level permits and this is not
        a dry run.
        """
        account_id = state["account_id"]
        result = state["result"]
        config = state["config"]
        autonomy_level = state["autonomy_level"]
        dry_run = state["dry_run"]

        escalated: Set[str] = set()
        applied_by_kind: Dict[ChangeKind, int] = {}

        for change in state["candidates"]:
            decision = self.rule_engine.decide(self._rule_context(state, change))

            for warning in decision.warnings:
                if warning not in result.concerns:
                    result.concerns.append(warning)
            self._log_escalations(state, decision, escalated)

            if not decision.allowed:
                self._log_blocked(state, change, decision)
                continue

            if decision.requires_approval or config.requires_approval(change.kind.value):
                result.approvals_requested += 1
                if not dry_run:
                    self._request_approval(state, change, decision.triggered_rules)
                continue

            allowed_at_level, _ = is_action_allowed_at_level(change.kind, autonomy_level)
            if change.kind == ChangeKind.CREATIVE and autonomy_level != AutonomyLevel.FULL_AUTONOMOUS:
                allowed_at_level = allowed_at_level and change.payload.is_high_priority
            if not allowed_at_level or dry_run:
                continue

            # The kill switch may be flipped while the cycle runs
            if not self.governance.configs.is_global_enabled():
                result.concerns.append("Global autopilot disabled mid-cycle; remaining changes not applied")
                break

            self._apply_change(state, change)
            applied_by_kind[change.kind] = applied_by_kind.get(change.kind, 0) + 1

        result.optimizations_applied = (
            applied_by_kind.get(ChangeKind.BUDGET, 0) + applied_by_kind.get(ChangeKind.CREATIVE, 0)
        )
        result.updates_applied = sum(applied_by_kind.values())
        return state

    def summarize(self, state: CycleState) -> CycleState:
        """Compose summary, highlights and next actions from the counters."""
        result = state["result"]
        hypotheses = state["selected"] or state["hypotheses"]

        parts = [f"Generated {result.hypotheses_generated} hypotheses"]
        if result.experiments_created > 0:
            parts.append(f"created {result.experiments_created} experiments")
        if result.optimizations_applied > 0:
            parts.append(f"applied {result.optimizations_applied} optimizations")
        if result.approvals_requested > 0:
            parts.append(f"requested {result.approvals_requested} approvals")
        if result.changes_blocked > 0:
            parts.append(f"blocked {result.changes_blocked} changes")
        if result.signals_detected > 0:
            parts.append(f"detected {result.signals_detected} signals")
        summary = ", ".join(parts) + "."
        if state["emergency_triggered"]:
            summary = f"Emergency stop triggered ({state['emergency_reason']}). {summary}"
        if state["dry_run"]:
            summary = f"[Dry run] {summary}"
        result.summary = summary

        highlights = []
        if hypotheses:
            highlights.append(f"Top opportunity: {hypotheses[0].hypothesis}")
        if result.context_health_score >= 80:
            highlights.append("Knowledge health is excellent")
        elif result.context_health_score >= 60:
            highlights.append("Knowledge health is good")
        if result.experiments_created > 0:
            highlights.append(f"{result.experiments_created} new experiments queued")
        if result.updates_applied > 0:
            highlights.append(f"{result.updates_applied} changes applied automatically")
        result.highlights = highlights

        actions = []
        if state["emergency_triggered"]:
            actions.append("Investigate critical signals and resolve the emergency stop")
        if result.experiments_created > 0:
            actions.append(f"Review {result.experiments_created} experiment proposals")
        if result.approvals_requested > 0:
            actions.append(f"Review {result.approvals_requested} pending approval requests")
        if result.context_health_score < 60:
            actions.append("Improve knowledge health by filling missing fields")
        if result.alerts_triggered > 0:
            actions.append(f"Address {result.alerts_triggered} critical alerts")
        if hypotheses:
            actions.append(f"Consider: {hypotheses[0].hypothesis}")
        result.next_actions = actions

        return state

    def finalize(self, state: CycleState) -> CycleState:
        self._finalize_result(state["result"])
        return state

    # ================
    # Routing Functions
    # ================

    def route_by_readiness(self, state: CycleState) -> Literal["skip", "continue"]:
        """Skip the cycle when not ready, unless this is a dry run."""
        if state["result"].status == CycleStatus.SKIPPED:
            return "skip"
        return "continue"

    def route_by_emergency(self, state: CycleState) -> Literal["emergency", "continue"]:
        if state["emergency_triggered"]:
            return "emergency"
        return "continue"

    # =======
    # Helpers
    # =======

    def _finalize_result(self, result: CycleResult):
        """Stamp timing, store the result and write cycle_completed."""
        result.completed_at = self.clock()
        result.duration_ms = (result.completed_at - result.started_at).total_seconds() * 1000

        try:
            self.store.append(
                keys.cycles_key(result.account_id), result.to_dict(), max_items=self.HISTORY_LIMIT
            )
        except Exception:
            result.completed_at = None
            raise

        if not result.dry_run and self.governance.configs.get_autopilot_config(result.account_id):
            completed_at = result.completed_at
            self.governance.configs.update_config(
                result.account_id, lambda c: setattr(c, "last_cycle_at", completed_at)
            )

        self.audit.log_action(
            result.account_id,
            AutopilotAction.CYCLE_COMPLETED,
            {
                "cycle_id": result.id,
                "cycle_number": result.cycle_number,
                "status": result.status.value,
                "dry_run": result.dry_run,
                "duration_ms": result.duration_ms,
                "hypotheses_generated": result.hypotheses_generated,
                "experiments_created": result.experiments_created,
                "updates_applied": result.updates_applied,
                "error": result.error_message,
            },
            outcome=Outcome.FAILURE if result.status == CycleStatus.FAILED else Outcome.SUCCESS,
            description=f"Cycle {result.status.value}: {result.summary}",
        )

    def _rule_context(self, state: CycleState, change: Optional[ProposedChange]) -> RuleContext:
        snapshot = state["snapshot"]
        knowledge = state["knowledge"]
        return RuleContext(
            account_id=state["account_id"],
            config=state["config"],
            knowledge=knowledge,
            proposed_change=change,
            signals=tuple(state["signals"]),
            performance=PerformanceMetrics.from_snapshot(snapshot, knowledge) if snapshot else None,
            active_experiments=self.governance.experiments.count_active(state["account_id"]),
            evaluated_at=self.clock(),
        )

    def _log_blocked(self, state: CycleState, change: ProposedChange, decision):
        state["result"].changes_blocked += 1
        self.audit.log_action(
            state["account_id"],
            AutopilotAction.CHANGE_BLOCKED,
            {
                "kind": change.kind.value,
                "change": change.payload.to_dict(),
                "block_reasons": decision.block_reasons,
                "triggered_rules": decision.triggered_rules,
            },
            impacted_domains=[CHANGE_DOMAINS[change.kind]] if change.kind in CHANGE_DOMAINS else [],
        )

    def _log_escalations(self, state: CycleState, decision, escalated: Set[str]):
        """Log each escalating rule once per cycle."""
        rules = {r.id: r for r in self.rule_engine.get_account_rules(state["account_id"])}
        for evaluation in decision.evaluations:
            if not evaluation.triggered or evaluation.action != RuleAction.ESCALATE:
                continue
            if evaluation.rule_id in escalated:
                continue
            escalated.add(evaluation.rule_id)

            rule = rules.get(evaluation.rule_id)
            escalation = rule.escalation.to_dict() if rule and rule.escalation else None
            self.audit.log_action(
                state["account_id"],
                AutopilotAction.ALERT_TRIGGERED,
                {"rule_id": evaluation.rule_id, "escalation": escalation},
                triggered_by=TriggeredBy.SIGNAL,
                description=f"Escalation: {evaluation.rule_name}",
            )
            state["result"].concerns.append(f"Escalated: {evaluation.rule_name}")

    def _request_approval(self, state: CycleState, change: ProposedChange, rules_triggered: List[str]):
        payload = change.payload.to_dict()
        if change.kind == ChangeKind.BUDGET:
            reasoning = "Budget reallocation toward higher-return channels"
            impact = f"{change.payload.total_delta}% total budget change"
        elif change.kind == ChangeKind.CREATIVE:
            reasoning = change.payload.rationale or change.payload.recommendation
            impact = "Improved engagement from refreshed creative"
        elif change.kind == ChangeKind.AUDIENCE:
            reasoning = change.payload.rationale or "Audience targeting refinement"
            impact = "Better audience match and lower acquisition cost"
        elif change.kind == ChangeKind.EXPERIMENT:
            reasoning = change.payload.description
            impact = f"{change.payload.expected_lift:.1f}% expected lift in {change.payload.primary_metric}"
        else:
            reasoning = f"Proposed {change.kind.value} change"
            impact = "See proposed change"

        request = self.governance.approvals.create_approval_request(
            state["account_id"],
            change.kind,
            payload,
            reasoning=reasoning,
            expected_impact=impact,
            rules_triggered=rules_triggered,
            cycle_id=state["result"].id,
        )
        if self.slack_notifier:
            self.slack_notifier.send_approval_request(self._account_name(state), request)

    def _apply_change(self, state: CycleState, change: ProposedChange):
        account_id = state["account_id"]
        payload = change.payload

        if change.kind == ChangeKind.BUDGET:
            before = {name: c.get("current") for name, c in payload.channels.items()}
            after = {name: c.get("proposed") for name, c in payload.channels.items()}
            details = {"type": payload.type, "total_delta": payload.total_delta, "allocation": after}
            description = "Budget reallocation applied"
        elif change.kind == ChangeKind.CREATIVE:
            before = None
            after = payload.to_dict()
            details = {"recommendation_id": payload.id, "priority": payload.priority}
            description = f"Creative recommendation applied: {payload.recommendation}"
        else:
            before = {"segments": state["knowledge"].get_value("audience.core_segments", []) or []}
            after = payload.to_dict()
            details = {"type": payload.type, "segments": list(payload.segments)}
            description = f"Audience {payload.type}: {', '.join(payload.segments)}"

        record = self.governance.changes.record_change(
            account_id, change.kind, before, after, applied_by="autopilot"
        )
        details["change_id"] = record.id
        self.audit.log_action(
            account_id,
            APPLIED_ACTIONS[change.kind],
            details,
            impacted_domains=[CHANGE_DOMAINS[change.kind]],
            description=description,
        )

    def _generator_error_handler(self, state: CycleState) -> Callable[[GeneratorError], None]:
        def _on_error(error: GeneratorError):
            self.audit.log_action(
                state["account_id"],
                AutopilotAction.GENERATOR_FAILED,
                {"generator": error.generator, "error": str(error), "cycle_id": state["result"].id},
                outcome=Outcome.FAILURE,
            )
            state["result"].concerns.append(f"{error.generator} generator unavailable")
        return _on_error

    def _log_rule_error(self, account_id: str, error: RuleEvaluationError):
        self.audit.log_action(
            account_id,
            AutopilotAction.RULE_EVALUATION_FAILED,
            {"rule_id": error.rule_id, "error": str(error.cause)},
            outcome=Outcome.FAILURE,
        )

    @staticmethod
    def _account_name(state: CycleState) -> str:
        knowledge = state.get("knowledge")
        if knowledge is not None and knowledge.account_name:
            return knowledge.account_name
        return state["account_id"]
