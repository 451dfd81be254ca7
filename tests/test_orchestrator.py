"""
Tests for AutopilotOrchestrator: multi-account runs and reviewer operations.
"""

import json

import pytest

from conftest import make_knowledge, make_snapshot
from autopilot.api.knowledge_store import InMemoryKnowledgeStore, MockKnowledgeStore
from autopilot.errors import GovernanceConflict
from autopilot.models.change import ChangeKind
from autopilot.models.config import AutonomyLevel
from autopilot.models.cycle import CycleStatus
from autopilot.models.governance import ApprovalStatus, EmergencyStatus
from autopilot.orchestrator import AutopilotOrchestrator
from autopilot.settings import AutopilotSettings
from autopilot.storage.store import InMemoryStore


ACCOUNTS = ["ACC_001", "ACC_002"]


def enable_semi_autonomous(orchestrator, account_ids=None):
    """Enable accounts at semi autonomy and sign off the queued raises."""
    enabled = orchestrator.enable_accounts(account_ids, AutonomyLevel.SEMI_AUTONOMOUS)
    for account_id in enabled:
        for request in orchestrator.governance.approvals.get_pending_approvals(account_id):
            if request.type == ChangeKind.AUTONOMY_CHANGE:
                orchestrator.approve(account_id, request.id, "admin")
    return enabled


@pytest.fixture
def knowledge_store():
    ks = InMemoryKnowledgeStore()
    for account_id in ACCOUNTS:
        ks.put_knowledge(make_knowledge(account_id))
        ks.put_performance(account_id, make_snapshot())
    return ks


@pytest.fixture
def orchestrator(knowledge_store, clock):
    return AutopilotOrchestrator(
        settings=AutopilotSettings(),
        store=InMemoryStore(),
        knowledge_store=knowledge_store,
        clock=clock,
    )


class TestRuns:
    """Test running cycles across accounts."""

    def test_enable_accounts_defaults_to_every_account(self, orchestrator):
        enabled = orchestrator.enable_accounts()

        assert enabled == ACCOUNTS
        for account_id in ACCOUNTS:
            config = orchestrator.governance.configs.get_autopilot_config(account_id)
            assert config.enabled is True
            assert config.autonomy_level == AutonomyLevel.AI_ASSISTED

    def test_raising_autonomy_waits_for_approval(self, orchestrator):
        orchestrator.enable_accounts(["ACC_001"], AutonomyLevel.SEMI_AUTONOMOUS)

        config = orchestrator.governance.configs.get_autopilot_config("ACC_001")
        pending = orchestrator.governance.approvals.get_pending_approvals("ACC_001")
        assert config.enabled is True
        assert config.autonomy_level == AutonomyLevel.AI_ASSISTED
        assert [r.type for r in pending] == [ChangeKind.AUTONOMY_CHANGE]

        # Still AI-assisted: everything is proposed, nothing applied
        assert orchestrator.run_account("ACC_001").updates_applied == 0

        orchestrator.approve("ACC_001", pending[0].id, "admin")

        config = orchestrator.governance.configs.get_autopilot_config("ACC_001")
        assert config.autonomy_level == AutonomyLevel.SEMI_AUTONOMOUS
        assert orchestrator.run_account("ACC_001").autonomy_level == AutonomyLevel.SEMI_AUTONOMOUS

    def test_enabling_twice_queues_one_request(self, orchestrator):
        orchestrator.enable_accounts(["ACC_001"], AutonomyLevel.FULL_AUTONOMOUS)
        orchestrator.enable_accounts(["ACC_001"], AutonomyLevel.FULL_AUTONOMOUS)

        assert len(orchestrator.governance.approvals.get_pending_approvals("ACC_001")) == 1

    def test_lowering_autonomy_applies_at_once(self, orchestrator):
        orchestrator.enable_accounts(["ACC_001"], AutonomyLevel.MANUAL_ONLY)

        config = orchestrator.governance.configs.get_autopilot_config("ACC_001")
        assert config.autonomy_level == AutonomyLevel.MANUAL_ONLY
        assert orchestrator.governance.approvals.get_pending_approvals("ACC_001") == []

    def test_run_all_accounts_keeps_input_order(self, orchestrator):
        enable_semi_autonomous(orchestrator)

        results = orchestrator.run_all_accounts()

        assert [r.account_id for r in results] == ACCOUNTS
        assert all(r.status == CycleStatus.SUCCESS for r in results)
        assert all(r.updates_applied == 1 for r in results)

    def test_disabled_accounts_are_skipped(self, orchestrator):
        results = orchestrator.run_all_accounts()

        assert [r.status for r in results] == [CycleStatus.SKIPPED, CycleStatus.SKIPPED]

    def test_global_switch_from_settings(self, knowledge_store, clock):
        orchestrator = AutopilotOrchestrator(
            settings=AutopilotSettings(global_enabled=False),
            store=InMemoryStore(),
            knowledge_store=knowledge_store,
            clock=clock,
        )
        orchestrator.enable_accounts()

        result = orchestrator.run_account("ACC_001")

        assert result.status == CycleStatus.SKIPPED
        assert "Global autopilot is disabled" in result.concerns

    def test_audit_mirrored_to_jsonl(self, knowledge_store, clock, tmp_path):
        log_file = tmp_path / "audit.jsonl"
        orchestrator = AutopilotOrchestrator(
            settings=AutopilotSettings(audit_log_file=str(log_file)),
            store=InMemoryStore(),
            knowledge_store=knowledge_store,
            clock=clock,
        )

        orchestrator.run_account("ACC_001")

        lines = log_file.read_text().strip().splitlines()
        actions = [json.loads(line)["action"] for line in lines]
        assert actions == ["cycle_started", "cycle_completed"]

    def test_mock_accounts(self):
        knowledge_store = MockKnowledgeStore(num_accounts=3, seed=42)
        orchestrator = AutopilotOrchestrator(
            settings=AutopilotSettings(max_workers=2),
            store=InMemoryStore(),
            knowledge_store=knowledge_store,
        )
        orchestrator.enable_accounts()

        results = orchestrator.run_all_accounts(dry_run=True)

        assert [r.account_id for r in results] == knowledge_store.list_accounts()
        assert all(r.is_finalized for r in results)
        assert all(r.dry_run for r in results)


class TestReviewerOperations:
    """Test approve, reject, revert and emergency handling."""

    def test_approve_pending_request(self, orchestrator):
        enable_semi_autonomous(orchestrator, ["ACC_001"])
        orchestrator.run_account("ACC_001")
        pending = orchestrator.governance.approvals.get_pending_approvals("ACC_001")[0]

        request = orchestrator.approve("ACC_001", pending.id, "jane", notes="Looks good")

        assert request.status == ApprovalStatus.APPROVED
        assert request.reviewed_by == "jane"
        assert orchestrator.governance.approvals.get_pending_approvals("ACC_001") == []

    def test_reject_pending_request(self, orchestrator):
        enable_semi_autonomous(orchestrator, ["ACC_001"])
        orchestrator.run_account("ACC_001")
        pending = orchestrator.governance.approvals.get_pending_approvals("ACC_001")[0]

        request = orchestrator.reject("ACC_001", pending.id, "jane")

        assert request.status == ApprovalStatus.REJECTED
        assert request.type == ChangeKind.BUDGET

    @pytest.mark.parametrize("operation", ["approve", "reject"])
    def test_unknown_approval_raises(self, orchestrator, operation):
        with pytest.raises(GovernanceConflict) as exc:
            getattr(orchestrator, operation)("ACC_001", "approval_missing", "jane")

        assert exc.value.kind == "approval"
        assert exc.value.item_id == "approval_missing"

    def test_double_approval_raises(self, orchestrator):
        enable_semi_autonomous(orchestrator, ["ACC_001"])
        orchestrator.run_account("ACC_001")
        pending = orchestrator.governance.approvals.get_pending_approvals("ACC_001")[0]
        orchestrator.approve("ACC_001", pending.id, "jane")

        with pytest.raises(GovernanceConflict):
            orchestrator.reject("ACC_001", pending.id, "joe")

    def test_revert_applied_change(self, orchestrator):
        enable_semi_autonomous(orchestrator, ["ACC_001"])
        orchestrator.run_account("ACC_001")
        applied = orchestrator.governance.changes.get_change_history("ACC_001", kind=ChangeKind.CREATIVE)[0]

        record = orchestrator.revert("ACC_001", applied.id, "jane")

        assert record.reverted is True
        assert record.reverted_by == "jane"

    def test_unknown_change_raises(self, orchestrator):
        with pytest.raises(GovernanceConflict) as exc:
            orchestrator.revert("ACC_001", "change_missing", "jane")

        assert exc.value.kind == "change"

    def test_emergency_stop_and_resolve(self, orchestrator):
        orchestrator.enable_accounts(["ACC_001"])

        state = orchestrator.emergency_stop("ACC_001", "jane", "Tracking looks broken")
        skipped = orchestrator.run_account("ACC_001")
        resolved = orchestrator.resolve_emergency("ACC_001", "jane", notes="Fixed")

        assert state.status == EmergencyStatus.ACTIVE
        assert skipped.status == CycleStatus.SKIPPED
        assert resolved.status == EmergencyStatus.RESOLVED
        assert orchestrator.governance.is_emergency_active("ACC_001") is False

    def test_resolve_without_stop_raises(self, orchestrator):
        with pytest.raises(GovernanceConflict) as exc:
            orchestrator.resolve_emergency("ACC_001", "jane")

        assert exc.value.kind == "emergency stop"
