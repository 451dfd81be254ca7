"""
Audit logging for autopilot actions.

Every cycle step, gating decision, approval and override is written to an
append-only, bounded per-account log in the key-value store. An optional
JSONL sink mirrors each entry to a file for offline analysis.
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from autopilot.models.governance import (
    ACTION_CATEGORIES,
    AutopilotAction,
    AutopilotLogEntry,
    LogCategory,
    Outcome,
    TriggeredBy,
)
from autopilot.storage import keys
from autopilot.storage.store import KeyValueStore
from autopilot.utils.time_utils import from_iso, utc_now


def describe_action(action: AutopilotAction, details: Dict[str, Any]) -> str:
    """Default human-readable description for an audit entry."""
    if action == AutopilotAction.CYCLE_STARTED:
        return f"Autopilot cycle #{details.get('cycle_number', 'unknown')} started"
    if action == AutopilotAction.CYCLE_COMPLETED:
        return (
            f"Autopilot cycle {details.get('status', 'completed')}: "
            f"{details.get('hypotheses_generated', 0)} hypotheses, "
            f"{details.get('experiments_created', 0)} experiments"
        )
    if action == AutopilotAction.HYPOTHESIS_GENERATED:
        return f"Generated hypothesis: {details.get('category', 'unknown')}"
    if action == AutopilotAction.EXPERIMENT_CREATED:
        return f"Created experiment: {details.get('name', 'unknown')}"
    if action == AutopilotAction.BUDGET_REALLOCATED:
        return f"Budget reallocated: {details.get('total_delta', 0)}% change"
    if action == AutopilotAction.SIGNAL_DETECTED:
        return f"Signal detected: {details.get('type', 'unknown')} - {details.get('severity', 'unknown')}"
    if action == AutopilotAction.EMERGENCY_STOP:
        return f"Emergency stop triggered: {details.get('reason', 'unknown reason')}"
    if action == AutopilotAction.EMERGENCY_RESOLVED:
        return f"Emergency stop resolved by {details.get('resolved_by', 'unknown')}"
    if action == AutopilotAction.APPROVAL_REQUESTED:
        return f"Approval requested: {details.get('title', 'change')}"
    if action == AutopilotAction.CHANGE_BLOCKED:
        return f"Change blocked: {'; '.join(details.get('block_reasons', [])) or 'rule violation'}"
    if action == AutopilotAction.CHANGE_REVERTED:
        return f"Change {details.get('change_id', 'unknown')} reverted by {details.get('reverted_by', 'unknown')}"
    if action == AutopilotAction.HUMAN_OVERRIDE:
        return f"Human override by {details.get('user_id', 'unknown')}"
    return f"Action: {action.value}"


class JsonlAuditSink:
    """
    Mirror audit entries to a JSONL file.

    One JSON object per line, in the same shape as AutopilotLogEntry.to_dict().
    """

    def __init__(
        self,
        log_file: str = "autopilot_audit.jsonl",
        log_dir: Optional[str] = None
    ):
        """
        Initialize JSONL sink.

        Args:
            log_file: Name of log file (JSONL format)
            log_dir: Directory for log files (default: current directory)
        """
        if log_dir:
            self.log_dir = Path(log_dir)
            self.log_dir.mkdir(parents=True, exist_ok=True)
            self.log_path = self.log_dir / log_file
        else:
            self.log_path = Path(log_file)

    def log_event(self, event: Dict[str, Any]):
        """Append one event to the file."""
        with open(self.log_path, "a") as f:
            f.write(json.dumps(event) + "\n")

    def get_events(
        self,
        action: Optional[str] = None,
        account_id: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[Dict]:
        """
        Retrieve events from the log file, oldest first.

        Args:
            action: Filter by action value
            account_id: Filter by account
            limit: Maximum number of events to return
        """
        if not self.log_path.exists():
            return []

        events = []
        with open(self.log_path, "r") as f:
            for line in f:
                try:
                    event = json.loads(line.strip())
                except json.JSONDecodeError:
                    continue

                if action and event.get("action") != action:
                    continue
                if account_id and event.get("account_id") != account_id:
                    continue

                events.append(event)
                if limit and len(events) >= limit:
                    break

        return events

    def get_summary_stats(self) -> Dict[str, Any]:
        """
        Aggregate statistics over the whole file.

        Returns:
            Dictionary with total_events, counts by action, category and
            outcome, and the file location/size
        """
        events = self.get_events()

        by_action: Dict[str, int] = {}
        by_category: Dict[str, int] = {}
        by_outcome: Dict[str, int] = {}
        for event in events:
            for bucket, key in (
                (by_action, "action"),
                (by_category, "category"),
                (by_outcome, "outcome"),
            ):
                value = event.get(key, "unknown")
                bucket[value] = bucket.get(value, 0) + 1

        return {
            "total_events": len(events),
            "actions": by_action,
            "categories": by_category,
            "outcomes": by_outcome,
            "log_file": str(self.log_path),
            "log_size_bytes": self.log_path.stat().st_size if self.log_path.exists() else 0,
        }


class AuditLog:
    """
    Append-only audit trail, one bounded log per account.

    The category of each entry is derived from ACTION_CATEGORIES; callers only
    pick the action.
    """

    MAX_ENTRIES = 10000

    def __init__(
        self,
        store: KeyValueStore,
        sink: Optional[JsonlAuditSink] = None,
        clock: Callable[[], datetime] = utc_now,
        max_entries: int = MAX_ENTRIES
    ):
        """
        Initialize audit log.

        Args:
            store: Key-value store holding per-account logs
            sink: Optional JSONL mirror
            clock: Returns the current UTC time
            max_entries: Retention cap per account (oldest evicted)
        """
        self.store = store
        self.sink = sink
        self.clock = clock
        self.max_entries = max_entries

    def log_action(
        self,
        account_id: str,
        action: AutopilotAction,
        details: Optional[Dict[str, Any]] = None,
        triggered_by: TriggeredBy = TriggeredBy.AUTOPILOT,
        actor: Optional[str] = None,
        impacted_domains: Optional[List[str]] = None,
        impacted_fields: Optional[List[str]] = None,
        outcome: Outcome = Outcome.SUCCESS,
        description: Optional[str] = None
    ) -> AutopilotLogEntry:
        """
        Append an entry to the account's audit log.

        Args:
            account_id: Account identifier
            action: What happened
            details: JSON-compatible structured details
            triggered_by: Actor class (autopilot, human, signal, schedule)
            actor: Optional user or system id
            impacted_domains: Knowledge domains affected
            impacted_fields: Knowledge fields affected
            outcome: success, failure or pending
            description: Free text; derived from action and details if omitted

        Returns:
            The stored entry
        """
        details = details or {}
        entry = AutopilotLogEntry(
            account_id=account_id,
            action=action,
            category=ACTION_CATEGORIES.get(action, LogCategory.CYCLE),
            description=description or describe_action(action, details),
            details=details,
            triggered_by=triggered_by,
            actor=actor,
            impacted_domains=list(impacted_domains or []),
            impacted_fields=list(impacted_fields or []),
            outcome=outcome,
            timestamp=self.clock(),
        )

        data = entry.to_dict()
        self.store.append(keys.audit_log_key(account_id), data, max_items=self.max_entries)
        if self.sink is not None:
            try:
                self.sink.log_event(data)
            except OSError as e:
                print(f"Warning: audit sink write failed for {account_id}: {e}")

        return entry

    def get_audit_log(
        self,
        account_id: str,
        limit: Optional[int] = None,
        since: Optional[datetime] = None,
        category: Optional[LogCategory] = None,
        action: Optional[AutopilotAction] = None
    ) -> List[AutopilotLogEntry]:
        """
        Get audit entries, most recent first.

        Args:
            account_id: Account identifier
            limit: Maximum number of entries
            since: Only entries at or after this time
            category: Only entries in this category
            action: Only entries for this action
        """
        def _select(entries):
            selected = []
            for e in reversed(entries):
                # Entries are appended in time order
                if since is not None and from_iso(e["timestamp"]) < since:
                    break
                if category is not None and e["category"] != category.value:
                    continue
                if action is not None and e["action"] != action.value:
                    continue
                selected.append(e)
                if limit and len(selected) >= limit:
                    break
            return selected

        entries = self.store.view(keys.audit_log_key(account_id), _select, default=[])
        return [AutopilotLogEntry.from_dict(e) for e in entries]

    def count(
        self,
        account_id: str,
        action: AutopilotAction,
        since: Optional[datetime] = None
    ) -> int:
        def _count(entries):
            total = 0
            for e in reversed(entries):
                if since is not None and from_iso(e["timestamp"]) < since:
                    break
                if e["action"] == action.value:
                    total += 1
            return total

        return self.store.view(keys.audit_log_key(account_id), _count, default=[])
