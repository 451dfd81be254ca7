"""
Approval workflow for gated changes.

Requests are asynchronous: the cycle engine queues them and moves on. A
request leaves the pending state through an explicit decision or by passing
its expiry time, which is marked lazily when the queue is read.
"""

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from autopilot.governance.audit_log import AuditLog
from autopilot.models.change import ChangeKind
from autopilot.models.governance import (
    ApprovalDecision,
    ApprovalRequest,
    ApprovalStatus,
    AutopilotAction,
    Priority,
    TriggeredBy,
)
from autopilot.storage import keys
from autopilot.storage.store import KeyValueStore
from autopilot.utils.time_utils import to_iso, utc_now


def approval_title(kind: ChangeKind, change: Dict[str, Any]) -> str:
    if kind == ChangeKind.BUDGET:
        return f"Budget {change.get('type', 'change')}: {change.get('total_delta', 0)}% change requested"
    if kind == ChangeKind.CREATIVE:
        return "Creative change requested"
    if kind == ChangeKind.AUDIENCE:
        return f"Audience {change.get('type', 'change')}: {len(change.get('segments', []))} segments"
    if kind == ChangeKind.EXPERIMENT:
        return f"New experiment: {change.get('name', 'unnamed')}"
    if kind == ChangeKind.CHANNEL:
        return f"Channel {change.get('action', 'change')}: {change.get('channel', 'unknown')}"
    if kind == ChangeKind.AUTONOMY_CHANGE:
        return "Autonomy level change requested"
    return "Change approval requested"


def approval_description(kind: ChangeKind, change: Dict[str, Any]) -> str:
    if kind == ChangeKind.BUDGET:
        return (
            f"Proposed budget {change.get('type', 'change')} of "
            f"{change.get('total_delta', 0)}% across channels"
        )
    if kind == ChangeKind.CREATIVE:
        return change.get("recommendation", "Creative change")
    if kind == ChangeKind.AUDIENCE:
        return f"{change.get('type', 'modify')} {len(change.get('segments', []))} audience segments"
    if kind == ChangeKind.EXPERIMENT:
        return change.get("description", "New experiment")
    if kind == ChangeKind.AUTONOMY_CHANGE:
        return f"Change autonomy from {change.get('current')} to {change.get('proposed')}"
    return "Autopilot is requesting approval for a change"


def approval_priority(kind: ChangeKind, change: Dict[str, Any]) -> Priority:
    """Priority from change kind and magnitude."""
    if kind == ChangeKind.BUDGET:
        delta = abs(change.get("total_delta", 0))
        if delta > 30:
            return Priority.HIGH
        if delta > 15:
            return Priority.MEDIUM
        return Priority.LOW
    if kind == ChangeKind.AUTONOMY_CHANGE:
        return Priority.HIGH
    return Priority.MEDIUM


class ApprovalWorkflow:
    """Per-account approval queue."""

    TTL_HOURS = 24

    def __init__(
        self,
        store: KeyValueStore,
        audit: AuditLog,
        clock: Callable[[], datetime] = utc_now,
        ttl_hours: float = TTL_HOURS
    ):
        self.store = store
        self.audit = audit
        self.clock = clock
        self.ttl_hours = ttl_hours

    def create_approval_request(
        self,
        account_id: str,
        kind: ChangeKind,
        proposed_change: Dict[str, Any],
        reasoning: str,
        expected_impact: str,
        risks: Optional[List[str]] = None,
        rules_triggered: Optional[List[str]] = None,
        cycle_id: Optional[str] = None
    ) -> ApprovalRequest:
        """
        Queue a change for human review.

        Args:
            account_id: Account identifier
            kind: Change kind
            proposed_change: JSON-compatible change payload
            reasoning: Why the change is proposed
            expected_impact: What the change should achieve
            risks: Known risks
            rules_triggered: Ids of rules that required approval
            cycle_id: Cycle that proposed the change, if any

        Returns:
            The pending request
        """
        now = self.clock()
        request = ApprovalRequest(
            account_id=account_id,
            type=kind,
            title=approval_title(kind, proposed_change),
            description=approval_description(kind, proposed_change),
            proposed_change=proposed_change,
            reasoning=reasoning,
            expected_impact=expected_impact,
            requested_at=now,
            expires_at=now + timedelta(hours=self.ttl_hours),
            risks=list(risks or []),
            rules_triggered=list(rules_triggered or []),
            priority=approval_priority(kind, proposed_change),
            cycle_id=cycle_id,
        )

        self.store.append(keys.approvals_key(account_id), request.to_dict())
        self.audit.log_action(
            account_id,
            AutopilotAction.APPROVAL_REQUESTED,
            {
                "request_id": request.id,
                "type": kind.value,
                "title": request.title,
                "priority": request.priority.value,
            },
        )
        return request

    def _expire_stale(self, account_id: str) -> List[ApprovalRequest]:
        """Mark pending requests past their expiry; return the whole queue."""
        now = self.clock()
        expired: List[str] = []

        def _mark(queue):
            for data in queue:
                if data["status"] != ApprovalStatus.PENDING.value:
                    continue
                if ApprovalRequest.from_dict(data).is_expired(now):
                    data["status"] = ApprovalStatus.EXPIRED.value
                    expired.append(data["id"])
            return queue

        queue = self.store.update(keys.approvals_key(account_id), _mark, default=[])

        for request_id in expired:
            self.audit.log_action(
                account_id,
                AutopilotAction.APPROVAL_EXPIRED,
                {"request_id": request_id},
                triggered_by=TriggeredBy.SCHEDULE,
            )

        return [ApprovalRequest.from_dict(r) for r in queue]

    def get_pending_approvals(self, account_id: str) -> List[ApprovalRequest]:
        """Pending requests; expired ones are marked and excluded."""
        return [r for r in self._expire_stale(account_id) if r.is_pending]

    def get_approval_history(
        self,
        account_id: str,
        limit: Optional[int] = None,
        status: Optional[ApprovalStatus] = None
    ) -> List[ApprovalRequest]:
        """All requests, oldest first."""
        queue = self._expire_stale(account_id)
        if status is not None:
            queue = [r for r in queue if r.status == status]
        if limit:
            queue = queue[-limit:]
        return queue

    def get_request(self, account_id: str, request_id: str) -> Optional[ApprovalRequest]:
        for request in self._expire_stale(account_id):
            if request.id == request_id:
                return request
        return None

    def process_approval(
        self,
        account_id: str,
        decision: ApprovalDecision
    ) -> Optional[ApprovalRequest]:
        """
        Apply a reviewer decision to a pending request.

        Returns:
            The updated request, or None if no pending request has that id
            (unknown, already decided or expired)
        """
        self._expire_stale(account_id)
        now = self.clock()
        updated: List[ApprovalRequest] = []

        def _decide(queue):
            for i, data in enumerate(queue):
                if data["id"] != decision.request_id:
                    continue
                if data["status"] != ApprovalStatus.PENDING.value:
                    break
                data["status"] = (
                    ApprovalStatus.APPROVED.value if decision.approved
                    else ApprovalStatus.REJECTED.value
                )
                data["reviewed_by"] = decision.reviewed_by
                data["reviewed_at"] = to_iso(now)
                data["review_notes"] = decision.notes
                queue[i] = data
                updated.append(ApprovalRequest.from_dict(data))
                break
            return queue

        self.store.update(keys.approvals_key(account_id), _decide, default=[])
        if not updated:
            return None

        request = updated[0]
        self.audit.log_action(
            account_id,
            AutopilotAction.APPROVAL_GRANTED if decision.approved else AutopilotAction.APPROVAL_DENIED,
            {
                "request_id": request.id,
                "type": request.type.value,
                "reviewed_by": decision.reviewed_by,
                "notes": decision.notes,
            },
            triggered_by=TriggeredBy.HUMAN,
            actor=decision.reviewed_by,
        )
        return request
