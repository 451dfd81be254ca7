"""
Main orchestrator for running the marketing autopilot.

This module provides the entry point for running autopilot cycles across
many accounts and for the human-facing governance operations (approve,
reject, revert, emergency stop).
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Callable, Dict, List, Optional

from autopilot.agents.cycle_engine import CycleEngine
from autopilot.api.generators import CandidateGenerator
from autopilot.api.knowledge_store import KnowledgeStore, MockKnowledgeStore
from autopilot.errors import GovernanceConflict
from autopilot.governance import Governance, JsonlAuditSink
from autopilot.models.change import ChangeRecord
from autopilot.models.config import AutonomyLevel
from autopilot.models.cycle import CycleResult, CycleStatus
from autopilot.models.governance import ApprovalDecision, ApprovalRequest, EmergencyState
from autopilot.settings import AutopilotSettings
from autopilot.storage.store import InMemoryStore, JsonFileStore, KeyValueStore
from autopilot.utils.slack_notifier import SlackNotifier
from autopilot.utils.time_utils import utc_now


class AutopilotOrchestrator:
    """
    Orchestrates autopilot cycles across multiple accounts.

    Responsibilities:
    - Build the store, governance layer and cycle engine from settings
    - Run one cycle per account, accounts in parallel
    - Aggregate results and print a summary report
    - Expose approve / reject / revert for reviewers
    """

    def __init__(
        self,
        settings: Optional[AutopilotSettings] = None,
        store: Optional[KeyValueStore] = None,
        knowledge_store: Optional[KnowledgeStore] = None,
        generator: Optional[CandidateGenerator] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        """
        Initialize orchestrator.

        Args:
            settings: Runtime settings (default: read from the environment)
            store: Key-value store (default: JSON files if store_dir is set,
                   otherwise in-memory)
            knowledge_store: Knowledge source (default: seeded mock accounts)
            generator: Candidate generator (default: mock heuristics)
            clock: Returns the current UTC time
        """
        self.settings = settings or AutopilotSettings.from_env()

        if store is None:
            store = (
                JsonFileStore(self.settings.store_dir)
                if self.settings.store_dir else InMemoryStore()
            )
        self.store = store

        audit_sink = (
            JsonlAuditSink(log_file=self.settings.audit_log_file)
            if self.settings.audit_log_file else None
        )
        self.governance = Governance(store, clock=clock, audit_sink=audit_sink)
        self.knowledge_store = knowledge_store or MockKnowledgeStore(num_accounts=5, seed=42)

        self.engine = CycleEngine(
            store,
            self.knowledge_store,
            generator=generator,
            governance=self.governance,
            slack_webhook=self.settings.slack_webhook_url,
            clock=clock,
            generator_timeout=self.settings.generator_timeout,
        )

        if not self.settings.global_enabled:
            self.governance.configs.set_global_enabled(False, changed_by="environment")

    def enable_accounts(
        self,
        account_ids: Optional[List[str]] = None,
        autonomy_level: AutonomyLevel = AutonomyLevel.AI_ASSISTED,
        changed_by: str = "orchestrator"
    ) -> List[str]:
        """
        Turn the autopilot on for accounts.

        The autonomy level goes through the escalation guard: lowering it
        applies at once, raising it to semi_autonomous or above queues an
        autonomy_change approval and the account keeps its current level
        until a reviewer approves.

        Args:
            account_ids: Accounts to enable (default: every known account)
            autonomy_level: Autonomy level to request
            changed_by: Actor recorded in the audit log

        Returns:
            The enabled account ids
        """
        account_ids = account_ids or self.knowledge_store.list_accounts()
        for account_id in account_ids:
            config = self.governance.configs.get_or_create_config(account_id)
            if not config.enabled:
                config.enabled = True
                self.governance.configs.set_autopilot_config(config, changed_by=changed_by)

            outcome = self.governance.change_autonomy_level(
                account_id, autonomy_level, changed_by, reason="Requested when enabling autopilot"
            )
            if outcome["requires_approval"]:
                print(f"⏳ {account_id}: {outcome['message']} ({outcome['approval_id']})")
        return account_ids

    def run_all_accounts(
        self,
        account_ids: Optional[List[str]] = None,
        dry_run: bool = False
    ) -> List[CycleResult]:
        """
        Run one cycle for every account.

        Accounts are independent and run concurrently on a thread pool.

        Args:
            account_ids: Accounts to run (default: every known account)
            dry_run: Compute results without persisting changes

        Returns:
            One CycleResult per account, in input order
        """
        account_ids = account_ids or self.knowledge_store.list_accounts()

        print(f"\n{'=' * 70}")
        print(f"Marketing Autopilot - Cycle Run Started{' (dry run)' if dry_run else ''}")
        print(f"Timestamp: {utc_now().strftime('%Y-%m-%d %H:%M:%S UTC')}")
        print(f"Accounts: {len(account_ids)}")
        print(f"{'=' * 70}\n")

        workers = max(1, min(self.settings.max_workers, len(account_ids) or 1))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="autopilot-cycle") as pool:
            results = list(pool.map(lambda a: self.engine.run_cycle(a, dry_run=dry_run), account_ids))

        for result in results:
            emoji = self._get_result_emoji(result.status)
            print(f"   {emoji} {result.account_id} #{result.cycle_number}: {result.summary}")

        self._print_summary(results)
        return results

    def run_account(self, account_id: str, dry_run: bool = False) -> CycleResult:
        return self.engine.run_cycle(account_id, dry_run=dry_run)

    def approve(
        self,
        account_id: str,
        request_id: str,
        reviewer: str,
        notes: Optional[str] = None
    ) -> ApprovalRequest:
        """
        Approve a pending request.

        Raises:
            GovernanceConflict: No pending request with that id
        """
        return self._decide(account_id, request_id, True, reviewer, notes)

    def reject(
        self,
        account_id: str,
        request_id: str,
        reviewer: str,
        notes: Optional[str] = None
    ) -> ApprovalRequest:
        """
        Reject a pending request.

        Raises:
            GovernanceConflict: No pending request with that id
        """
        return self._decide(account_id, request_id, False, reviewer, notes)

    def _decide(self, account_id, request_id, approved, reviewer, notes) -> ApprovalRequest:
        request = self.governance.process_approval(
            account_id,
            ApprovalDecision(request_id=request_id, approved=approved, reviewed_by=reviewer, notes=notes),
        )
        if request is None:
            raise GovernanceConflict("approval", request_id)
        return request

    def revert(self, account_id: str, change_id: str, reverted_by: str) -> ChangeRecord:
        """
        Revert an applied change.

        Raises:
            GovernanceConflict: No change with that id
        """
        record = self.governance.changes.revert_change(account_id, change_id, reverted_by)
        if record is None:
            raise GovernanceConflict("change", change_id)
        return record

    def emergency_stop(
        self,
        account_id: str,
        triggered_by: str,
        reason: str,
        auto_resume_in_hours: Optional[float] = None
    ) -> EmergencyState:
        """Stop all automation for an account and notify Slack."""
        state = self.governance.emergency.trigger_emergency_stop(
            account_id,
            triggered_by=triggered_by,
            reason=reason,
            auto_resume_in_hours=auto_resume_in_hours,
        )
        if self.engine.slack_notifier:
            self.engine.slack_notifier.send_emergency_stop(account_id, state)
        return state

    def resolve_emergency(
        self,
        account_id: str,
        resolved_by: str,
        notes: Optional[str] = None
    ) -> EmergencyState:
        """
        Clear an active emergency stop.

        Raises:
            GovernanceConflict: No emergency stop is active
        """
        state = self.governance.emergency.resolve_emergency_stop(account_id, resolved_by, notes)
        if state is None:
            raise GovernanceConflict("emergency stop", account_id)
        return state

    def _get_result_emoji(self, status: CycleStatus) -> str:
        """Get emoji for result display."""
        return {
            CycleStatus.SUCCESS: "✅",
            CycleStatus.SKIPPED: "⏭️",
            CycleStatus.FAILED: "❌",
        }.get(status, "❓")

    def _print_summary(self, results: List[CycleResult]):
        """Print summary report of a cycle run."""
        print(f"\n{'=' * 70}")
        print("📊 Cycle Run Summary")
        print(f"{'=' * 70}\n")

        counts: Dict[CycleStatus, int] = {status: 0 for status in CycleStatus}
        for result in results:
            counts[result.status] += 1

        total = len(results) or 1
        print(f"Accounts run:               {len(results)}")
        for status, emoji in ((CycleStatus.SUCCESS, "✅"), (CycleStatus.SKIPPED, "⏭️"),
                              (CycleStatus.FAILED, "❌")):
            label = f"{emoji} {status.value.capitalize()}:"
            print(f"{label:<28}{counts[status]} ({counts[status] / total * 100:.1f}%)")

        print(f"\n🧪 Hypotheses generated:    {sum(r.hypotheses_generated for r in results)}")
        print(f"🔬 Experiments created:     {sum(r.experiments_created for r in results)}")
        print(f"🤖 Changes applied:         {sum(r.updates_applied for r in results)}")
        print(f"👤 Approvals requested:     {sum(r.approvals_requested for r in results)}")
        print(f"⛔ Changes blocked:         {sum(r.changes_blocked for r in results)}")
        print(f"🚨 Critical alerts:         {sum(r.alerts_triggered for r in results)}")

        if self.governance.audit.sink is not None:
            stats = self.governance.audit.sink.get_summary_stats()
            print(f"\n📝 Audit log entries:       {stats['total_events']}")

        print(f"\n{'=' * 70}\n")


def main():
    """
    Main entry point for running the marketing autopilot.

    Usage:
        python -m autopilot.orchestrator
    """
    settings = AutopilotSettings.from_env()
    orchestrator = AutopilotOrchestrator(settings=settings)

    # Mock accounts start disabled; switch them on for the run
    orchestrator.enable_accounts()
    results = orchestrator.run_all_accounts()

    if settings.slack_webhook_url:
        notifier = SlackNotifier(settings.slack_webhook_url)
        notifier.send_cycle_summary(results)


if __name__ == "__main__":
    main()
