"""Data models for autopilot configuration, signals, changes and governance."""

from autopilot.models.config import (
    AutonomyLevel,
    RiskTolerance,
    CycleFrequency,
    AccountConfig,
)
from autopilot.models.knowledge import KnowledgeField, AccountKnowledge
from autopilot.models.performance import (
    PerformancePeriod,
    ChannelPerformance,
    PerformanceSnapshot,
)
from autopilot.models.signal import (
    SignalType,
    SignalCategory,
    Severity,
    SignalStatus,
    SignalThreshold,
    Signal,
    AlertConfig,
)
from autopilot.models.change import (
    ChangeKind,
    HypothesisCategory,
    ExperimentType,
    BudgetChange,
    TargetingChange,
    CreativeRecommendation,
    ChannelChange,
    Hypothesis,
    ExperimentPlan,
    ProposedChange,
    ChangeRecord,
)
from autopilot.models.governance import (
    ApprovalStatus,
    Priority,
    ApprovalRequest,
    ApprovalDecision,
    EmergencyStatus,
    EmergencyState,
    AutopilotAction,
    LogCategory,
    TriggeredBy,
    Outcome,
    AutopilotLogEntry,
    GovernanceSummary,
)
from autopilot.models.cycle import CycleStatus, CycleResult

__all__ = [
    "AutonomyLevel",
    "RiskTolerance",
    "CycleFrequency",
    "AccountConfig",
    "KnowledgeField",
    "AccountKnowledge",
    "PerformancePeriod",
    "ChannelPerformance",
    "PerformanceSnapshot",
    "SignalType",
    "SignalCategory",
    "Severity",
    "SignalStatus",
    "SignalThreshold",
    "Signal",
    "AlertConfig",
    "ChangeKind",
    "HypothesisCategory",
    "ExperimentType",
    "BudgetChange",
    "TargetingChange",
    "CreativeRecommendation",
    "ChannelChange",
    "Hypothesis",
    "ExperimentPlan",
    "ProposedChange",
    "ChangeRecord",
    "ApprovalStatus",
    "Priority",
    "ApprovalRequest",
    "ApprovalDecision",
    "EmergencyStatus",
    "EmergencyState",
    "AutopilotAction",
    "LogCategory",
    "TriggeredBy",
    "Outcome",
    "AutopilotLogEntry",
    "GovernanceSummary",
    "CycleStatus",
    "CycleResult",
]
