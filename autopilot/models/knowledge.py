"""
Account knowledge graph as consumed by the control loop.

The long-term knowledge store is an external collaborator; this module only
defines the read-only view the loop needs: nested domains of fields, each
carrying a value plus freshness and confidence indicators.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from autopilot.utils.time_utils import from_iso, to_iso, utc_now


@dataclass
class KnowledgeField:
    """A single knowledge value with provenance indicators."""
    value: Any
    updated_at: datetime = field(default_factory=utc_now)
    confidence: float = 1.0  # 0.0 to 1.0

    @property
    def is_empty(self) -> bool:
        """Check if the field carries no usable value."""
        return self.value is None or self.value == "" or self.value == [] or self.value == {}

    def age_days(self, now: Optional[datetime] = None) -> float:
        """Days since the field was last updated."""
        now = now or utc_now()
        return (now - self.updated_at).total_seconds() / 86400

    def to_dict(self) -> Dict:
        return {
            "value": self.value,
            "updated_at": to_iso(self.updated_at),
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "KnowledgeField":
        return cls(
            value=data.get("value"),
            updated_at=from_iso(data.get("updated_at")) or utc_now(),
            confidence=data.get("confidence", 1.0),
        )


@dataclass
class AccountKnowledge:
    """
    Knowledge graph for one account.

    Fields are addressed by ``"domain.field"`` paths, for example
    ``"audience.core_segments"`` or ``"objectives.primary_objective"``.
    """
    account_id: str
    account_name: str = ""
    domains: Dict[str, Dict[str, KnowledgeField]] = field(default_factory=dict)

    def get_field(self, path: str) -> Optional[KnowledgeField]:
        """Get a field by ``domain.field`` path, or None if absent."""
        domain, _, key = path.partition(".")
        return self.domains.get(domain, {}).get(key)

    def get_value(self, path: str, default: Any = None) -> Any:
        """Get the value at a path, or default if absent or empty."""
        knowledge_field = self.get_field(path)
        if knowledge_field is None or knowledge_field.is_empty:
            return default
        return knowledge_field.value

    def get_number(self, path: str, default: float = 0.0) -> float:
        """Get the value at a path as a float; non-numeric values give default."""
        value = self.get_value(path)
        if value is None:
            return default
        try:
            return float(value)
        except (TypeError, ValueError):
            return default

    def has_value(self, path: str) -> bool:
        knowledge_field = self.get_field(path)
        return knowledge_field is not None and not knowledge_field.is_empty

    def set_value(
        self,
        path: str,
        value: Any,
        updated_at: Optional[datetime] = None,
        confidence: float = 1.0
    ):
        """Set the value at a path (used by knowledge stores and tests)."""
        domain, _, key = path.partition(".")
        self.domains.setdefault(domain, {})[key] = KnowledgeField(
            value=value,
            updated_at=updated_at or utc_now(),
            confidence=confidence,
        )

    @classmethod
    def from_values(
        cls,
        account_id: str,
        values: Dict[str, Any],
        account_name: str = "",
        updated_at: Optional[datetime] = None
    ) -> "AccountKnowledge":
        """Build knowledge from a flat ``{"domain.field": value}`` mapping."""
        knowledge = cls(account_id=account_id, account_name=account_name)
        for path, value in values.items():
            knowledge.set_value(path, value, updated_at=updated_at)
        return knowledge

    def to_dict(self) -> Dict:
        return {
            "account_id": self.account_id,
            "account_name": self.account_name,
            "domains": {
                domain: {key: f.to_dict() for key, f in fields.items()}
                for domain, fields in self.domains.items()
            },
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "AccountKnowledge":
        return cls(
            account_id=data["account_id"],
            account_name=data.get("account_name", ""),
            domains={
                domain: {key: KnowledgeField.from_dict(f) for key, f in fields.items()}
                for domain, fields in data.get("domains", {}).items()
            },
        )
