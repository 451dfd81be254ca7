"""Agent components for knowledge health, rule gating and experiment planning."""

from autopilot.agents.knowledge_health import KnowledgeHealthScorer
from autopilot.agents.rule_engine import RuleEngine, RuleContext, RuleDecision
from autopilot.agents.experiments import ExperimentStore, create_experiment_plan

__all__ = [
    "KnowledgeHealthScorer",
    "RuleEngine",
    "RuleContext",
    "RuleDecision",
    "ExperimentStore",
    "create_experiment_plan",
]
