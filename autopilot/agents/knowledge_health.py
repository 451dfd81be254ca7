"""
Knowledge health scorer for readiness assessment.

This module scores how complete, fresh and trustworthy an account's knowledge
graph is, based on:
- Critical field coverage (fields the loop cannot run safely without)
- Overall completeness across the expected field registry
- Freshness (age of each populated field)
- Confidence reported by the knowledge store

It also provides fuzzy name matching (Levenshtein) used to compare audience
segment names that differ only in formatting.
"""

import re
from datetime import datetime
from typing import Callable, Dict, List, Optional

from Levenshtein import distance as levenshtein_distance

from autopilot.models.knowledge import AccountKnowledge
from autopilot.utils.time_utils import utc_now


def normalize_name(name: str) -> str:
    """Lowercase, turn separators into spaces and collapse whitespace."""
    return re.sub(r"[\s_\-]+", " ", str(name).lower()).strip()


def name_similarity(first: str, second: str) -> float:
    """
    Similarity of two names using Levenshtein distance.

    Args:
        first: First name
        second: Second name

    Returns:
        Similarity score from 0.0 (completely different) to 1.0 (identical)
    """
    if not first or not second:
        return 0.0

    first_normalized = normalize_name(first)
    second_normalized = normalize_name(second)

    if first_normalized == second_normalized:
        return 1.0

    max_len = max(len(first_normalized), len(second_normalized))
    if max_len == 0:
        return 1.0

    edit_distance = levenshtein_distance(first_normalized, second_normalized)
    return max(0.0, 1.0 - edit_distance / max_len)


class KnowledgeHealthScorer:
    """
    Calculate a 0-100 health score for an account knowledge graph.

    Health is a weighted sum of:
    - Critical coverage (40%): share of critical fields populated
    - Completeness (30%): share of all expected fields populated
    - Freshness (20%): average freshness of populated fields
    - Confidence (10%): average confidence of populated fields
    """

    CRITICAL_COVERAGE_WEIGHT = 0.4
    COMPLETENESS_WEIGHT = 0.3
    FRESHNESS_WEIGHT = 0.2
    CONFIDENCE_WEIGHT = 0.1

    CRITICAL_FIELDS = [
        "brand.value_proposition",
        "audience.core_segments",
        "performance_media.active_channels",
        "performance_media.monthly_budget",
        "objectives.primary_objective",
    ]

    SUPPORTING_FIELDS = [
        "brand.positioning",
        "audience.demographics",
        "identity.industry",
        "identity.peak_seasons",
        "identity.seasonality_notes",
        "objectives.target_cpa",
        "objectives.target_roas",
        "creative.days_since_last_refresh",
    ]

    # Stale fields are reported by diagnose()
    STALE_AFTER_DAYS = 90

    def __init__(
        self,
        critical_fields: Optional[List[str]] = None,
        supporting_fields: Optional[List[str]] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        """
        Initialize scorer with an expected field registry.

        Args:
            critical_fields: Fields the loop needs to run safely
            supporting_fields: Additional expected fields
            clock: Returns the current UTC time
        """
        self.critical_fields = critical_fields or list(self.CRITICAL_FIELDS)
        self.supporting_fields = (
            supporting_fields if supporting_fields is not None else list(self.SUPPORTING_FIELDS)
        )
        self.clock = clock

    @property
    def expected_fields(self) -> List[str]:
        return self.critical_fields + self.supporting_fields

    def calculate_health(self, knowledge: AccountKnowledge) -> Dict[str, float]:
        """
        Calculate overall health and component scores.

        Args:
            knowledge: Account knowledge graph

        Returns:
            Dictionary with:
            - health_score: Overall health (0 to 100)
            - critical_coverage: Share of critical fields present (0.0 to 1.0)
            - completeness: Share of expected fields present (0.0 to 1.0)
            - freshness: Average freshness of present fields (0.0 to 1.0)
            - confidence: Average confidence of present fields (0.0 to 1.0)
        """
        now = self.clock()
        present = [path for path in self.expected_fields if knowledge.has_value(path)]

        critical_present = [path for path in self.critical_fields if path in present]
        critical_coverage = (
            len(critical_present) / len(self.critical_fields) if self.critical_fields else 1.0
        )
        completeness = (
            len(present) / len(self.expected_fields) if self.expected_fields else 1.0
        )

        if present:
            fields = [knowledge.get_field(path) for path in present]
            freshness = sum(self.calculate_freshness(f.age_days(now)) for f in fields) / len(fields)
            confidence = sum(f.confidence for f in fields) / len(fields)
        else:
            freshness = 0.0
            confidence = 0.0

        health = (
            critical_coverage * self.CRITICAL_COVERAGE_WEIGHT +
            completeness * self.COMPLETENESS_WEIGHT +
            freshness * self.FRESHNESS_WEIGHT +
            confidence * self.CONFIDENCE_WEIGHT
        ) * 100

        return {
            "health_score": round(health, 1),
            "critical_coverage": critical_coverage,
            "completeness": completeness,
            "freshness": freshness,
            "confidence": confidence,
        }

    def score(self, knowledge: AccountKnowledge) -> float:
        """Overall health score (0 to 100)."""
        return self.calculate_health(knowledge)["health_score"]

    @staticmethod
    def calculate_freshness(age_days: float) -> float:
        """
        Freshness score based on field age.

        - <= 30 days: 1.0
        - <= 90 days: 0.7
        - <= 180 days: 0.4
        - older: 0.1
        """
        if age_days <= 30:
            return 1.0
        elif age_days <= 90:
            return 0.7
        elif age_days <= 180:
            return 0.4
        else:
            return 0.1

    def diagnose(self, knowledge: AccountKnowledge) -> Dict[str, List[str]]:
        """
        List what drags the health score down.

        Returns:
            Dictionary with missing_critical, missing_supporting and
            stale_fields (populated but older than STALE_AFTER_DAYS)
        """
        now = self.clock()
        stale = []
        for path in self.expected_fields:
            knowledge_field = knowledge.get_field(path)
            if knowledge_field is None or knowledge_field.is_empty:
                continue
            if knowledge_field.age_days(now) > self.STALE_AFTER_DAYS:
                stale.append(path)

        return {
            "missing_critical": [p for p in self.critical_fields if not knowledge.has_value(p)],
            "missing_supporting": [p for p in self.supporting_fields if not knowledge.has_value(p)],
            "stale_fields": stale,
        }
