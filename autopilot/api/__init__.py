"""Clients for account knowledge and candidate generation."""

from autopilot.api.knowledge_store import (
    KnowledgeStore,
    InMemoryKnowledgeStore,
    MockKnowledgeStore,
)
from autopilot.api.generators import (
    CandidateGenerator,
    MockCandidateGenerator,
    call_with_timeout,
)

__all__ = [
    "KnowledgeStore",
    "InMemoryKnowledgeStore",
    "MockKnowledgeStore",
    "CandidateGenerator",
    "MockCandidateGenerator",
    "call_with_timeout",
]
