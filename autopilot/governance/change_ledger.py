"""
Change ledger: records applied mutations and supports reverting them.

Records are append-only; a revert only sets the reverted flag and its
metadata, so before/after payloads are always preserved.
"""

from datetime import datetime
from typing import Any, Callable, List, Optional

from autopilot.governance.audit_log import AuditLog
from autopilot.models.change import ChangeKind, ChangeRecord
from autopilot.models.governance import AutopilotAction, TriggeredBy
from autopilot.storage import keys
from autopilot.storage.store import KeyValueStore
from autopilot.utils.time_utils import from_iso, to_iso, utc_now


class ChangeLedger:
    """Per-account change history."""

    def __init__(
        self,
        store: KeyValueStore,
        audit: AuditLog,
        clock: Callable[[], datetime] = utc_now
    ):
        self.store = store
        self.audit = audit
        self.clock = clock

    def record_change(
        self,
        account_id: str,
        kind: ChangeKind,
        before: Any,
        after: Any,
        applied_by: str,
        approval_id: Optional[str] = None
    ) -> ChangeRecord:
        """
        Record an applied change.

        Args:
            account_id: Account identifier
            kind: Change kind
            before: JSON-compatible state before the change
            after: JSON-compatible state after the change
            applied_by: "autopilot" or a user id
            approval_id: Approval request that authorised the change

        Returns:
            The stored record
        """
        record = ChangeRecord(
            account_id=account_id,
            type=kind,
            before=before,
            after=after,
            applied_by=applied_by,
            approval_id=approval_id,
            timestamp=self.clock(),
        )
        self.store.append(keys.changes_key(account_id), record.to_dict())
        return record

    def revert_change(
        self,
        account_id: str,
        change_id: str,
        reverted_by: str
    ) -> Optional[ChangeRecord]:
        """
        Mark a change as reverted.

        Returns:
            The reverted record, or None if the id is unknown. Reverting an
            already reverted record returns it unchanged.
        """
        now = self.clock()
        found: List[ChangeRecord] = []
        newly_reverted: List[bool] = []

        def _revert(history):
            for data in history:
                if data["id"] != change_id:
                    continue
                if not data.get("reverted"):
                    data["reverted"] = True
                    data["reverted_at"] = to_iso(now)
                    data["reverted_by"] = reverted_by
                    newly_reverted.append(True)
                found.append(ChangeRecord.from_dict(data))
                break
            return history

        self.store.update(keys.changes_key(account_id), _revert, default=[])
        if not found:
            return None

        record = found[0]
        if newly_reverted:
            self.audit.log_action(
                account_id,
                AutopilotAction.CHANGE_REVERTED,
                {
                    "change_id": change_id,
                    "change_type": record.type.value,
                    "reverted_by": reverted_by,
                },
                triggered_by=TriggeredBy.HUMAN,
                actor=reverted_by,
            )
        return record

    def get_change(self, account_id: str, change_id: str) -> Optional[ChangeRecord]:
        for data in self.store.get(keys.changes_key(account_id), []):
            if data["id"] == change_id:
                return ChangeRecord.from_dict(data)
        return None

    def get_change_history(
        self,
        account_id: str,
        limit: Optional[int] = None,
        kind: Optional[ChangeKind] = None,
        since: Optional[datetime] = None,
        include_reverted: bool = False
    ) -> List[ChangeRecord]:
        """
        Get applied changes, oldest first.

        Args:
            account_id: Account identifier
            limit: Keep only the most recent N matches
            kind: Only changes of this kind
            since: Only changes at or after this time
            include_reverted: Include reverted changes (excluded by default)
        """
        history = self.store.get(keys.changes_key(account_id), [])

        if kind is not None:
            history = [c for c in history if c["type"] == kind.value]
        if since is not None:
            history = [c for c in history if from_iso(c["timestamp"]) >= since]
        if not include_reverted:
            history = [c for c in history if not c.get("reverted")]
        if limit:
            history = history[-limit:]

        return [ChangeRecord.from_dict(c) for c in history]
