"""
Unit tests for the governance layer.

Tests the audit log, approval workflow, emergency control, change ledger,
account config and the autonomy-change guard.
"""

import copy
import json
from datetime import timedelta

import pytest

from conftest import FIXED_NOW
from autopilot.errors import AutonomyEscalationError
from autopilot.governance import Governance, JsonlAuditSink
from autopilot.governance.audit_log import AuditLog
from autopilot.models.change import ChangeKind
from autopilot.models.config import AccountConfig, AutonomyLevel
from autopilot.models.governance import (
    ApprovalDecision,
    ApprovalStatus,
    AutopilotAction,
    EmergencyStatus,
    LogCategory,
    Outcome,
    Priority,
    TriggeredBy,
)
from autopilot.storage import keys


@pytest.fixture
def governance(store, clock):
    return Governance(store, clock=clock)


def request_budget_approval(governance, total_delta=20.0):
    return governance.approvals.create_approval_request(
        "ACC_001",
        ChangeKind.BUDGET,
        {"type": "increase", "channels": {}, "total_delta": total_delta},
        reasoning="Scale the best channel",
        expected_impact="+10% conversions",
    )


class TestAuditLog:
    """Test the append-only audit trail."""

    def test_category_derived_from_action(self, governance):
        entry = governance.audit.log_action(
            "ACC_001", AutopilotAction.SIGNAL_DETECTED, {"type": "cpa_spike", "severity": "critical"}
        )

        assert entry.category == LogCategory.SIGNAL
        assert entry.description == "Signal detected: cpa_spike - critical"

    def test_newest_first_with_filters(self, governance, clock):
        governance.audit.log_action("ACC_001", AutopilotAction.CYCLE_STARTED, {"cycle_number": 1})
        clock.advance(minutes=1)
        governance.audit.log_action("ACC_001", AutopilotAction.CHANGE_BLOCKED, {"block_reasons": ["x"]})
        clock.advance(minutes=1)
        governance.audit.log_action("ACC_001", AutopilotAction.CYCLE_COMPLETED, {"status": "completed"})

        entries = governance.audit.get_audit_log("ACC_001")
        blocked = governance.audit.get_audit_log("ACC_001", action=AutopilotAction.CHANGE_BLOCKED)

        assert [e.action for e in entries] == [
            AutopilotAction.CYCLE_COMPLETED,
            AutopilotAction.CHANGE_BLOCKED,
            AutopilotAction.CYCLE_STARTED,
        ]
        assert len(blocked) == 1
        assert governance.audit.get_audit_log("ACC_001", limit=1)[0].action == AutopilotAction.CYCLE_COMPLETED

    def test_log_is_bounded(self, store, clock):
        audit = AuditLog(store, clock=clock, max_entries=5)

        for i in range(8):
            audit.log_action("ACC_001", AutopilotAction.CYCLE_STARTED, {"cycle_number": i})

        entries = audit.get_audit_log("ACC_001")
        assert len(entries) == 5
        assert entries[0].details["cycle_number"] == 7
        assert entries[-1].details["cycle_number"] == 3

    def test_accounts_are_isolated(self, governance):
        governance.audit.log_action("ACC_001", AutopilotAction.CYCLE_STARTED)

        assert governance.audit.get_audit_log("ACC_002") == []

    def test_since_and_count_stop_at_older_entries(self, governance, clock):
        for i in range(5):
            governance.audit.log_action("ACC_001", AutopilotAction.CYCLE_STARTED, {"cycle_number": i})
            clock.advance(minutes=10)
        since = FIXED_NOW + timedelta(minutes=30)

        recent = governance.audit.get_audit_log("ACC_001", since=since)

        assert [e.details["cycle_number"] for e in recent] == [4, 3]
        assert governance.audit.count("ACC_001", AutopilotAction.CYCLE_STARTED, since=since) == 2
        assert governance.audit.count("ACC_001", AutopilotAction.CYCLE_STARTED) == 5
        assert governance.audit.count("ACC_001", AutopilotAction.CYCLE_COMPLETED) == 0

    def test_full_log_reads_and_writes_copy_little(self, governance, store, monkeypatch):
        entry = governance.audit.log_action("ACC_001", AutopilotAction.CYCLE_STARTED, {"cycle_number": 0})
        template = entry.to_dict()
        store.set(
            keys.audit_log_key("ACC_001"),
            [dict(template, id=f"log_{i}") for i in range(governance.audit.max_entries)],
        )
        calls = []
        deepcopy = copy.deepcopy

        def counting_deepcopy(value, memo=None):
            calls.append(value)
            return deepcopy(value, memo)

        monkeypatch.setattr(copy, "deepcopy", counting_deepcopy)

        governance.audit.log_action("ACC_001", AutopilotAction.CYCLE_COMPLETED, {"status": "success"})
        latest = governance.audit.get_audit_log("ACC_001", limit=3)

        # A full copy of the log would be hundreds of thousands of calls
        assert len(calls) < 1000
        assert latest[0].action == AutopilotAction.CYCLE_COMPLETED
        assert len(latest) == 3


    def test_jsonl_sink_mirrors_entries(self, store, clock, tmp_path):
        sink = JsonlAuditSink("audit.jsonl", log_dir=str(tmp_path))
        governance = Governance(store, clock=clock, audit_sink=sink)

        governance.audit.log_action("ACC_001", AutopilotAction.CYCLE_STARTED, {"cycle_number": 1})
        governance.audit.log_action("ACC_002", AutopilotAction.CYCLE_STARTED, {"cycle_number": 1})

        lines = (tmp_path / "audit.jsonl").read_text().splitlines()
        assert len(lines) == 2
        assert json.loads(lines[0])["action"] == "cycle_started"
        assert len(sink.get_events(account_id="ACC_002")) == 1
        assert sink.get_summary_stats()["actions"] == {"cycle_started": 2}


class TestApprovals:
    """Test the approval workflow."""

    def test_create_request(self, governance):
        request = request_budget_approval(governance)

        assert request.status == ApprovalStatus.PENDING
        assert request.priority == Priority.MEDIUM
        assert request.title == "Budget increase: 20.0% change requested"
        assert governance.audit.count("ACC_001", AutopilotAction.APPROVAL_REQUESTED) == 1

    def test_approve(self, governance):
        request = request_budget_approval(governance)

        decided = governance.process_approval(
            "ACC_001", ApprovalDecision(request.id, True, "jane", "Looks good")
        )

        assert decided.status == ApprovalStatus.APPROVED
        assert decided.reviewed_by == "jane"
        assert governance.approvals.get_pending_approvals("ACC_001") == []
        granted = governance.audit.get_audit_log("ACC_001", action=AutopilotAction.APPROVAL_GRANTED)
        assert granted[0].triggered_by == TriggeredBy.HUMAN

    def test_reject(self, governance):
        request = request_budget_approval(governance)

        decided = governance.process_approval("ACC_001", ApprovalDecision(request.id, False, "jane"))

        assert decided.status == ApprovalStatus.REJECTED
        assert governance.audit.count("ACC_001", AutopilotAction.APPROVAL_DENIED) == 1

    def test_unknown_request_returns_none(self, governance):
        assert governance.process_approval(
            "ACC_001", ApprovalDecision("approval_missing", True, "jane")
        ) is None

    def test_decided_request_cannot_be_decided_again(self, governance):
        request = request_budget_approval(governance)
        governance.process_approval("ACC_001", ApprovalDecision(request.id, True, "jane"))

        again = governance.process_approval("ACC_001", ApprovalDecision(request.id, False, "bob"))

        assert again is None
        assert governance.approvals.get_request("ACC_001", request.id).status == ApprovalStatus.APPROVED

    def test_expired_request_is_marked_once(self, governance, clock):
        request = request_budget_approval(governance)
        clock.advance(hours=25)

        assert governance.approvals.get_pending_approvals("ACC_001") == []
        assert governance.approvals.get_pending_approvals("ACC_001") == []

        history = governance.approvals.get_approval_history("ACC_001")
        assert history[0].status == ApprovalStatus.EXPIRED
        assert governance.audit.count("ACC_001", AutopilotAction.APPROVAL_EXPIRED) == 1
        assert governance.process_approval(
            "ACC_001", ApprovalDecision(request.id, True, "jane")
        ) is None

    def test_large_budget_change_is_high_priority(self, governance):
        assert request_budget_approval(governance, total_delta=40.0).priority == Priority.HIGH


class TestEmergencyControl:
    """Test the account kill switch."""

    def test_trigger_and_resolve(self, governance):
        governance.emergency.trigger_emergency_stop("ACC_001", "jane", "CPA spike")

        assert governance.is_emergency_active("ACC_001") is True
        resolved = governance.emergency.resolve_emergency_stop("ACC_001", "jane", "Fixed")

        assert resolved.status == EmergencyStatus.RESOLVED
        assert governance.is_emergency_active("ACC_001") is False
        assert governance.audit.count("ACC_001", AutopilotAction.EMERGENCY_RESOLVED) == 1

    def test_resolve_without_stop_returns_none(self, governance):
        assert governance.emergency.resolve_emergency_stop("ACC_001", "jane") is None

    def test_auto_resume_logged_once(self, governance, clock):
        state = governance.emergency.trigger_emergency_stop(
            "ACC_001", "autopilot", "Tracking outage", auto_resume_in_hours=2
        )
        assert state.status == EmergencyStatus.SCHEDULED_RESUME
        assert governance.is_emergency_active("ACC_001") is True

        clock.advance(hours=3)

        assert governance.is_emergency_active("ACC_001") is False
        assert governance.is_emergency_active("ACC_001") is False
        resolutions = governance.audit.get_audit_log(
            "ACC_001", action=AutopilotAction.EMERGENCY_RESOLVED
        )
        assert len(resolutions) == 1
        assert resolutions[0].triggered_by == TriggeredBy.SCHEDULE

    def test_stop_is_per_account(self, governance):
        governance.emergency.trigger_emergency_stop("ACC_001", "jane", "CPA spike")

        assert governance.is_emergency_active("ACC_002") is False

    def test_read_only_check_leaves_lapsed_stop(self, governance, clock):
        governance.emergency.trigger_emergency_stop(
            "ACC_001", "autopilot", "Tracking outage", auto_resume_in_hours=2
        )
        clock.advance(hours=3)

        assert governance.emergency.is_active("ACC_001", resolve_expired=False) is False
        assert governance.emergency.get_emergency_state("ACC_001").triggered is True
        assert governance.audit.count("ACC_001", AutopilotAction.EMERGENCY_RESOLVED) == 0



class TestChangeLedger:
    """Test change recording and non-destructive revert."""

    def test_revert_preserves_payload(self, governance):
        record = governance.changes.record_change(
            "ACC_001", ChangeKind.BUDGET,
            before={"meta": 4000}, after={"meta": 3600}, applied_by="autopilot"
        )

        reverted = governance.changes.revert_change("ACC_001", record.id, "jane")

        assert reverted.reverted is True
        assert reverted.reverted_by == "jane"
        assert reverted.before == {"meta": 4000}
        assert reverted.after == {"meta": 3600}

    def test_revert_twice_logs_once(self, governance):
        record = governance.changes.record_change(
            "ACC_001", ChangeKind.CREATIVE, before=None, after={"id": "c1"}, applied_by="autopilot"
        )

        governance.changes.revert_change("ACC_001", record.id, "jane")
        second = governance.changes.revert_change("ACC_001", record.id, "bob")

        assert second.reverted_by == "jane"
        assert governance.audit.count("ACC_001", AutopilotAction.CHANGE_REVERTED) == 1

    def test_revert_unknown_returns_none(self, governance):
        assert governance.changes.revert_change("ACC_001", "change_missing", "jane") is None

    def test_history_excludes_reverted_by_default(self, governance):
        kept = governance.changes.record_change(
            "ACC_001", ChangeKind.CREATIVE, before=None, after={"id": "c1"}, applied_by="autopilot"
        )
        undone = governance.changes.record_change(
            "ACC_001", ChangeKind.BUDGET, before={}, after={}, applied_by="autopilot"
        )
        governance.changes.revert_change("ACC_001", undone.id, "jane")

        assert [c.id for c in governance.changes.get_change_history("ACC_001")] == [kept.id]
        assert len(governance.changes.get_change_history("ACC_001", include_reverted=True)) == 2
        assert governance.changes.get_change_history("ACC_001", kind=ChangeKind.BUDGET) == []


class TestConfig:
    """Test account config and the global switch."""

    def test_default_config_is_not_persisted(self, governance, store):
        config = governance.configs.get_or_create_config("ACC_001")

        assert config.enabled is False
        assert config.autonomy_level == AutonomyLevel.AI_ASSISTED
        assert governance.configs.get_autopilot_config("ACC_001") is None

    def test_set_config_is_audited(self, governance):
        governance.configs.set_autopilot_config(
            AccountConfig(account_id="ACC_001", enabled=True), changed_by="jane"
        )

        assert governance.configs.get_autopilot_config("ACC_001").enabled is True
        entry = governance.audit.get_audit_log("ACC_001", action=AutopilotAction.CONFIG_CHANGED)[0]
        assert entry.triggered_by == TriggeredBy.HUMAN
        assert entry.details["created"] is True

    def test_unreviewed_raise_is_refused(self, governance):
        with pytest.raises(AutonomyEscalationError) as exc:
            governance.configs.set_autopilot_config(
                AccountConfig(
                    account_id="ACC_001", enabled=True, autonomy_level=AutonomyLevel.SEMI_AUTONOMOUS
                ),
                changed_by="jane",
            )

        assert exc.value.current == AutonomyLevel.AI_ASSISTED
        assert exc.value.proposed == AutonomyLevel.SEMI_AUTONOMOUS
        assert governance.configs.get_autopilot_config("ACC_001") is None
        assert governance.audit.get_audit_log("ACC_001") == []

    def test_raise_over_stored_level_is_refused(self, governance):
        config = governance.configs.set_autopilot_config(
            AccountConfig(account_id="ACC_001", enabled=True), changed_by="jane"
        )
        config.autonomy_level = AutonomyLevel.FULL_AUTONOMOUS

        with pytest.raises(AutonomyEscalationError):
            governance.configs.set_autopilot_config(config, changed_by="jane")

        stored = governance.configs.get_autopilot_config("ACC_001")
        assert stored.autonomy_level == AutonomyLevel.AI_ASSISTED

    def test_signed_off_raise_is_recorded(self, governance):
        governance.configs.set_autopilot_config(
            AccountConfig(
                account_id="ACC_001", enabled=True, autonomy_level=AutonomyLevel.SEMI_AUTONOMOUS
            ),
            changed_by="jane",
            approved_by="admin",
        )

        assert governance.configs.get_autopilot_config("ACC_001").autonomy_level == AutonomyLevel.SEMI_AUTONOMOUS
        entry = governance.audit.get_audit_log("ACC_001", action=AutopilotAction.CONFIG_CHANGED)[0]
        assert entry.details["approved_by"] == "admin"

    def test_lowering_and_unchanged_levels_need_no_sign_off(self, governance):
        config = governance.configs.set_autopilot_config(
            AccountConfig(
                account_id="ACC_001", enabled=True, autonomy_level=AutonomyLevel.SEMI_AUTONOMOUS
            ),
            approved_by="admin",
        )

        config.enabled = False
        governance.configs.set_autopilot_config(config, changed_by="jane")
        config.autonomy_level = AutonomyLevel.MANUAL_ONLY
        governance.configs.set_autopilot_config(config, changed_by="jane")

        stored = governance.configs.get_autopilot_config("ACC_001")
        assert (stored.enabled, stored.autonomy_level) == (False, AutonomyLevel.MANUAL_ONLY)

    def test_update_config_is_not_audited(self, governance):

        governance.configs.update_config("ACC_001", lambda c: setattr(c, "enabled", True))

        assert governance.configs.get_autopilot_config("ACC_001").enabled is True
        assert governance.audit.get_audit_log("ACC_001") == []

    def test_global_switch_defaults_on(self, governance):
        assert governance.configs.is_global_enabled() is True
        governance.configs.set_global_enabled(False, changed_by="ops")
        assert governance.configs.is_global_enabled() is False


class TestAutonomyChange:
    """Test the autonomy escalation guard."""

    def test_lowering_applies_immediately(self, governance):
        result = governance.change_autonomy_level("ACC_001", AutonomyLevel.MANUAL_ONLY, "jane")

        assert result["success"] is True
        assert governance.configs.get_autopilot_config("ACC_001").autonomy_level == AutonomyLevel.MANUAL_ONLY
        assert len(governance.changes.get_change_history("ACC_001", kind=ChangeKind.CONFIG)) == 1

    def test_same_level_is_noop(self, governance):
        result = governance.change_autonomy_level("ACC_001", AutonomyLevel.AI_ASSISTED, "jane")

        assert result["success"] is True
        assert governance.audit.get_audit_log("ACC_001") == []

    def test_raising_requires_approval(self, governance):
        result = governance.change_autonomy_level(
            "ACC_001", AutonomyLevel.FULL_AUTONOMOUS, "jane", reason="Stable account"
        )

        assert result["success"] is False
        assert result["requires_approval"] is True
        assert governance.configs.get_or_create_config("ACC_001").autonomy_level == AutonomyLevel.AI_ASSISTED

        governance.process_approval("ACC_001", ApprovalDecision(result["approval_id"], True, "admin"))

        config = governance.configs.get_autopilot_config("ACC_001")
        assert config.autonomy_level == AutonomyLevel.FULL_AUTONOMOUS
        change = governance.changes.get_change_history("ACC_001", kind=ChangeKind.CONFIG)[0]
        assert change.approval_id == result["approval_id"]

    def test_rejected_escalation_keeps_level(self, governance):
        result = governance.change_autonomy_level("ACC_001", AutonomyLevel.SEMI_AUTONOMOUS, "jane")

        governance.process_approval("ACC_001", ApprovalDecision(result["approval_id"], False, "admin"))

        assert governance.configs.get_or_create_config("ACC_001").autonomy_level == AutonomyLevel.AI_ASSISTED

    def test_repeated_raise_reuses_pending_request(self, governance):
        first = governance.change_autonomy_level("ACC_001", AutonomyLevel.SEMI_AUTONOMOUS, "jane")
        second = governance.change_autonomy_level("ACC_001", AutonomyLevel.SEMI_AUTONOMOUS, "joe")
        other = governance.change_autonomy_level("ACC_001", AutonomyLevel.FULL_AUTONOMOUS, "joe")

        assert second["approval_id"] == first["approval_id"]
        assert other["approval_id"] != first["approval_id"]
        assert len(governance.approvals.get_pending_approvals("ACC_001")) == 2



class TestGovernanceSummary:
    """Test the dashboard summary."""

    def test_summary_counts(self, governance, clock):
        approved = request_budget_approval(governance)
        rejected = request_budget_approval(governance)
        request_budget_approval(governance)
        governance.process_approval("ACC_001", ApprovalDecision(approved.id, True, "jane"))
        governance.process_approval("ACC_001", ApprovalDecision(rejected.id, False, "jane"))
        record = governance.changes.record_change(
            "ACC_001", ChangeKind.CREATIVE, before=None, after={}, applied_by="autopilot"
        )
        governance.changes.revert_change("ACC_001", record.id, "jane")
        governance.audit.log_action(
            "ACC_001", AutopilotAction.CHANGE_BLOCKED, {"block_reasons": ["x"]},
            outcome=Outcome.FAILURE
        )

        summary = governance.get_governance_summary("ACC_001")

        assert summary.pending_approvals == 1
        assert summary.approved_today == 1
        assert summary.rejected_today == 1
        assert summary.changes_last_24h == 1
        assert summary.reverts_last_24h == 1
        assert summary.rule_violations_last_24h == 1
        assert summary.emergency_active is False
        assert summary.current_autonomy_level == AutonomyLevel.AI_ASSISTED

    def test_old_activity_drops_out(self, governance, clock):
        governance.changes.record_change(
            "ACC_001", ChangeKind.CREATIVE, before=None, after={}, applied_by="autopilot"
        )
        clock.advance(hours=30)

        assert governance.get_governance_summary("ACC_001").changes_last_24h == 0
