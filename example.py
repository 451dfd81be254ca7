"""
Quick example demonstrating the Marketing Autopilot.

Run this to see the control loop in action with mock accounts.
"""

from autopilot.models.config import AutonomyLevel
from autopilot.orchestrator import AutopilotOrchestrator
from autopilot.settings import AutopilotSettings


def main():
    print("\n" + "=" * 70)
    print(" MARKETING AUTOPILOT - DEMO")
    print("=" * 70 + "\n")

    # In-memory store and mock accounts; set SLACK_WEBHOOK_URL to enable alerts
    orchestrator = AutopilotOrchestrator(
        settings=AutopilotSettings(audit_log_file="autopilot_audit.jsonl")
    )
    account_ids = orchestrator.enable_accounts(autonomy_level=AutonomyLevel.SEMI_AUTONOMOUS)

    # Raising autonomy queues one request per account; sign them off first
    for account_id in account_ids:
        for request in orchestrator.governance.approvals.get_pending_approvals(account_id):
            orchestrator.approve(account_id, request.id, reviewer="demo")

    # Preview first, then run for real
    orchestrator.run_all_accounts(dry_run=True)
    results = orchestrator.run_all_accounts()

    print("\n" + "=" * 70)
    print(" DETAILED RESULTS (First 3 Accounts)")
    print("=" * 70 + "\n")

    for result in results[:3]:
        print(f"Account: {result.account_id} (cycle #{result.cycle_number})")
        print(f"  Status:        {result.status.value}")
        print(f"  Health:        {result.context_health_score:.1f}")
        print(f"  Signals:       {result.signals_detected} ({result.alerts_triggered} critical)")
        print(f"  Applied:       {result.updates_applied}")
        print(f"  Approvals:     {result.approvals_requested}")
        print(f"  Summary:       {result.summary}")
        for action in result.next_actions:
            print(f"  Next:          {action}")
        print()

    # Approve everything still pending for the first account
    account_id = results[0].account_id
    for request in orchestrator.governance.approvals.get_pending_approvals(account_id):
        orchestrator.approve(account_id, request.id, reviewer="demo")
        print(f"✅ Approved: {request.title}")

    summary = orchestrator.governance.get_governance_summary(account_id)
    print(f"\nGovernance for {account_id}: {summary.pending_approvals} pending, "
          f"{summary.approved_today} approved today, emergency={summary.emergency_active}")

    print("\n" + "=" * 70)
    print(" END OF DEMO")
    print("=" * 70 + "\n")

    print("✅ Check 'autopilot_audit.jsonl' for full audit trail")


if __name__ == "__main__":
    main()
