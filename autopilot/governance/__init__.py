"""Governance layer: approvals, emergency control, audit trail and change ledger."""

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from autopilot.agents.experiments import ExperimentStore
from autopilot.governance.account_config import ConfigManager
from autopilot.governance.approvals import ApprovalWorkflow
from autopilot.governance.audit_log import AuditLog, JsonlAuditSink
from autopilot.governance.change_ledger import ChangeLedger
from autopilot.governance.emergency import EmergencyControl
from autopilot.models.change import ChangeKind, ExperimentPlan
from autopilot.models.config import AccountConfig, AutonomyLevel
from autopilot.models.governance import (
    ApprovalDecision,
    ApprovalRequest,
    ApprovalStatus,
    AutopilotAction,
    GovernanceSummary,
    TriggeredBy,
)
from autopilot.storage.store import KeyValueStore
from autopilot.utils.time_utils import utc_now


class Governance:
    """
    One entry point over the governance sub-components.

    All sub-components share the same store, clock and audit log:

        governance.audit       AuditLog
        governance.approvals   ApprovalWorkflow
        governance.emergency   EmergencyControl
        governance.changes     ChangeLedger
        governance.configs     ConfigManager
        governance.experiments ExperimentStore
    """

    def __init__(
        self,
        store: KeyValueStore,
        clock: Callable[[], datetime] = utc_now,
        audit_sink: Optional[JsonlAuditSink] = None
    ):
        """
        Initialize governance layer.

        Args:
            store: Key-value store for all per-account state
            clock: Returns the current UTC time
            audit_sink: Optional JSONL mirror for the audit trail
        """
        self.store = store
        self.clock = clock
        self.audit = AuditLog(store, sink=audit_sink, clock=clock)
        self.approvals = ApprovalWorkflow(store, self.audit, clock=clock)
        self.emergency = EmergencyControl(store, self.audit, clock=clock)
        self.changes = ChangeLedger(store, self.audit, clock=clock)
        self.configs = ConfigManager(store, self.audit, clock=clock)
        self.experiments = ExperimentStore(store)

    def is_emergency_active(self, account_id: str) -> bool:
        return self.emergency.is_active(account_id)

    def change_autonomy_level(
        self,
        account_id: str,
        new_level: AutonomyLevel,
        changed_by: str,
        reason: str = ""
    ) -> Dict[str, Any]:
        """
        Change an account's autonomy level.

        Lowering autonomy (or raising it below semi_autonomous) is applied
        immediately. Raising to semi_autonomous or above only queues an
        approval request; a pending request for the same level is reused.

        Returns:
            Dictionary with success, message, requires_approval and, when
            queued, approval_id
        """
        config = self.configs.get_or_create_config(account_id)
        current = config.autonomy_level

        if new_level == current:
            return {
                "success": True,
                "message": f"Autonomy level already {current.value}",
                "requires_approval": False,
            }

        if self.configs.is_escalation(current, new_level):
            request = self._pending_autonomy_request(account_id, new_level)
            if request is None:
                request = self.approvals.create_approval_request(
                    account_id,
                    ChangeKind.AUTONOMY_CHANGE,
                    {"current": current.value, "proposed": new_level.value},
                    reasoning=reason or f"Requested by {changed_by}",
                    expected_impact=f"Autopilot may act with {new_level.value} permissions",
                    risks=["Autopilot will apply changes without per-change review"],
                )
            return {
                "success": False,
                "message": f"Increasing autonomy to {new_level.value} requires approval",
                "requires_approval": True,
                "approval_id": request.id,
            }

        self._apply_autonomy_level(account_id, config, new_level, changed_by, reason)
        return {
            "success": True,
            "message": f"Autonomy level changed from {current.value} to {new_level.value}",
            "requires_approval": False,
        }

    def process_approval(
        self,
        account_id: str,
        decision: ApprovalDecision
    ) -> Optional[ApprovalRequest]:
        """
        Record a reviewer decision.

        An approved autonomy change is applied to the account config at once;
        an approved experiment is stored as a draft.

        Returns:
            The decided request, or None if no pending request has that id
        """
        request = self.approvals.process_approval(account_id, decision)
        if request is None:
            return None

        if request.status == ApprovalStatus.APPROVED and request.type == ChangeKind.AUTONOMY_CHANGE:
            config = self.configs.get_or_create_config(account_id)
            self._apply_autonomy_level(
                account_id,
                config,
                AutonomyLevel(request.proposed_change["proposed"]),
                decision.reviewed_by,
                decision.notes or "",
                approval_id=request.id,
            )
        elif request.status == ApprovalStatus.APPROVED and request.type == ChangeKind.EXPERIMENT:
            plan = self.experiments.save(ExperimentPlan.from_dict(request.proposed_change))
            self.audit.log_action(
                account_id,
                AutopilotAction.EXPERIMENT_CREATED,
                {
                    "experiment_id": plan.id,
                    "hypothesis_id": plan.hypothesis_id,
                    "name": plan.name,
                    "type": plan.type.value,
                    "budget_percent": plan.budget_percent,
                    "approval_id": request.id,
                },
                triggered_by=TriggeredBy.HUMAN,
                actor=decision.reviewed_by,
            )
        return request

    def _pending_autonomy_request(
        self,
        account_id: str,
        level: AutonomyLevel
    ) -> Optional[ApprovalRequest]:
        for request in self.approvals.get_pending_approvals(account_id):
            if (request.type == ChangeKind.AUTONOMY_CHANGE
                    and request.proposed_change.get("proposed") == level.value):
                return request
        return None

    def _apply_autonomy_level(
        self,
        account_id: str,
        config: AccountConfig,
        new_level: AutonomyLevel,
        changed_by: str,
        reason: str,
        approval_id: Optional[str] = None
    ):
        before = config.autonomy_level.value
        self.configs.update_config(
            account_id, lambda c: setattr(c, "autonomy_level", new_level)
        )
        self.changes.record_change(
            account_id,
            ChangeKind.CONFIG,
            before={"autonomy_level": before},
            after={"autonomy_level": new_level.value},
            applied_by=changed_by,
            approval_id=approval_id,
        )
        self.audit.log_action(
            account_id,
            AutopilotAction.CONFIG_CHANGED,
            {
                "field": "autonomy_level",
                "from": before,
                "to": new_level.value,
                "reason": reason,
                "approval_id": approval_id,
            },
            triggered_by=TriggeredBy.HUMAN,
            actor=changed_by,
            description=f"Autonomy level changed from {before} to {new_level.value}",
        )

    def get_governance_summary(
        self,
        account_id: str,
        config: Optional[AccountConfig] = None
    ) -> GovernanceSummary:
        """Dashboard counts over the last 24 hours."""
        config = config or self.configs.get_or_create_config(account_id)
        since = self.clock() - timedelta(hours=24)

        history = self.approvals.get_approval_history(account_id)
        decided_recently = [
            r for r in history
            if (r.reviewed_at or r.requested_at) >= since
        ]
        recent_changes = self.changes.get_change_history(
            account_id, since=since, include_reverted=True
        )

        return GovernanceSummary(
            account_id=account_id,
            emergency_active=self.emergency.is_active(account_id),
            pending_approvals=sum(1 for r in history if r.is_pending),
            approved_today=sum(1 for r in decided_recently if r.status == ApprovalStatus.APPROVED),
            rejected_today=sum(1 for r in decided_recently if r.status == ApprovalStatus.REJECTED),
            changes_last_24h=len(recent_changes),
            reverts_last_24h=sum(1 for c in recent_changes if c.reverted),
            active_experiments=self.experiments.count_active(account_id),
            current_autonomy_level=config.autonomy_level,
            rule_violations_last_24h=self.audit.count(
                account_id, AutopilotAction.CHANGE_BLOCKED, since=since
            ),
        )


__all__ = [
    "Governance",
    "AuditLog",
    "JsonlAuditSink",
    "ApprovalWorkflow",
    "EmergencyControl",
    "ChangeLedger",
    "ConfigManager",
]
