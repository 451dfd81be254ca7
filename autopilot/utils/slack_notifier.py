"""
Slack notification utility.

Sends formatted autopilot notifications (signal alerts, approval requests,
emergency stops and cycle summaries) via webhook integration.
"""

import requests
from typing import Dict, List, Optional

from autopilot.models.cycle import CycleResult
from autopilot.models.governance import ApprovalRequest, EmergencyState
from autopilot.models.signal import Severity, Signal
from autopilot.utils.time_utils import utc_now


class SlackNotifier:
    """
    Send formatted Slack notifications for autopilot events.

    Delivery failures are printed and reported as False; they never raise
    into the control loop.
    """

    def __init__(self, webhook_url: str):
        """
        Initialize Slack notifier with webhook URL.

        Args:
            webhook_url: Slack incoming webhook URL
        """
        self.webhook_url = webhook_url

    def _post(self, message: Dict, what: str) -> bool:
        try:
            response = requests.post(
                self.webhook_url,
                json=message,
                timeout=10
            )
            response.raise_for_status()
            return True
        except requests.exceptions.RequestException as e:
            print(f"Failed to send Slack {what}: {e}")
            return False

    @staticmethod
    def _get_emoji(severity: Severity) -> str:
        if severity == Severity.CRITICAL:
            return "🚨"
        elif severity == Severity.WARNING:
            return "⚠️"
        else:
            return "ℹ️"

    @staticmethod
    def _footer() -> List[Dict]:
        return [
            {"type": "divider"},
            {
                "type": "context",
                "elements": [
                    {
                        "type": "mrkdwn",
                        "text": f"Generated at {utc_now().strftime('%Y-%m-%d %H:%M:%S UTC')}"
                    }
                ]
            }
        ]

    def send_signal_alert(self, account_name: str, signal: Signal) -> bool:
        """
        Send a signal alert to Slack.

        Args:
            account_name: Human-readable account name
            signal: Detected signal

        Returns:
            True if message sent successfully, False otherwise
        """
        emoji = self._get_emoji(signal.severity)
        status = signal.severity.value.upper()

        blocks = [
            {
                "type": "header",
                "text": {
                    "type": "plain_text",
                    "text": f"{emoji} Autopilot Signal {status}",
                    "emoji": True
                }
            },
            {"type": "divider"},
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Account:*\n{account_name}"},
                    {"type": "mrkdwn", "text": f"*Signal:*\n{signal.title}"},
                    {"type": "mrkdwn", "text": f"*Metric:*\n{signal.metric}"},
                    {"type": "mrkdwn", "text": f"*Change:*\n{signal.change_percent:+.1f}%"},
                    {"type": "mrkdwn", "text": f"*Channel:*\n{signal.channel or 'all'}"},
                    {"type": "mrkdwn", "text": f"*Signal ID:*\n`{signal.id}`"},
                ]
            },
            {"type": "divider"},
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": f"*Details:*\n{signal.description}"}
            },
        ]

        if signal.suggested_actions:
            blocks.extend([
                {"type": "divider"},
                {
                    "type": "section",
                    "text": {
                        "type": "mrkdwn",
                        "text": "*Suggested Actions:*\n" + "\n".join(
                            f"• {a}" for a in signal.suggested_actions
                        )
                    }
                }
            ])

        blocks.extend(self._footer())
        message = {
            "text": f"{emoji} Autopilot {status}: {signal.title} ({account_name})",
            "blocks": blocks
        }
        return self._post(message, "signal alert")

    def send_approval_request(self, account_name: str, request: ApprovalRequest) -> bool:
        """
        Ask reviewers to act on a pending approval request.

        Returns:
            True if message sent successfully
        """
        blocks = [
            {
                "type": "header",
                "text": {
                    "type": "plain_text",
                    "text": f"📝 Approval Needed: {request.title}",
                    "emoji": True
                }
            },
            {"type": "divider"},
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Account:*\n{account_name}"},
                    {"type": "mrkdwn", "text": f"*Type:*\n{request.type.value}"},
                    {"type": "mrkdwn", "text": f"*Priority:*\n{request.priority.value.upper()}"},
                    {
                        "type": "mrkdwn",
                        "text": f"*Expires:*\n{request.expires_at.strftime('%Y-%m-%d %H:%M UTC')}"
                    },
                    {"type": "mrkdwn", "text": f"*Request ID:*\n`{request.id}`"},
                ]
            },
            {"type": "divider"},
            {
                "type": "section",
                "text": {
                    "type": "mrkdwn",
                    "text": (
                        f"*Description:*\n{request.description}\n\n"
                        f"*Reasoning:*\n{request.reasoning}\n\n"
                        f"*Expected Impact:*\n{request.expected_impact}"
                    )
                }
            },
        ]

        if request.rules_triggered:
            blocks.append({
                "type": "context",
                "elements": [{
                    "type": "mrkdwn",
                    "text": "Rules: " + ", ".join(request.rules_triggered)
                }]
            })

        blocks.extend(self._footer())
        message = {
            "text": f"📝 Approval needed for {account_name}: {request.title}",
            "blocks": blocks
        }
        return self._post(message, "approval request")

    def send_emergency_stop(self, account_name: str, state: EmergencyState) -> bool:
        """
        Announce an emergency stop.

        Returns:
            True if message sent successfully
        """
        resume = (
            state.auto_resume_at.strftime('%Y-%m-%d %H:%M UTC')
            if state.auto_resume_at else "manual resolution required"
        )
        message = {
            "text": f"🚨 Autopilot EMERGENCY STOP: {account_name}",
            "blocks": [
                {
                    "type": "header",
                    "text": {
                        "type": "plain_text",
                        "text": "🚨 Autopilot Emergency Stop",
                        "emoji": True
                    }
                },
                {"type": "divider"},
                {
                    "type": "section",
                    "fields": [
                        {"type": "mrkdwn", "text": f"*Account:*\n{account_name}"},
                        {"type": "mrkdwn", "text": f"*Triggered By:*\n{state.triggered_by}"},
                        {"type": "mrkdwn", "text": f"*Resume:*\n{resume}"},
                        {
                            "type": "mrkdwn",
                            "text": f"*Channels:*\n{', '.join(state.affected_channels) or 'all'}"
                        },
                    ]
                },
                {
                    "type": "section",
                    "text": {"type": "mrkdwn", "text": f"*Reason:*\n{state.reason}"}
                },
            ] + self._footer()
        }
        return self._post(message, "emergency stop")

    def send_cycle_summary(
        self,
        results: List[CycleResult],
        title: Optional[str] = None
    ) -> bool:
        """
        Send a summary report of a batch of cycles.

        Args:
            results: Cycle results from one run
            title: Optional header text

        Returns:
            True if message sent successfully
        """
        succeeded = sum(1 for r in results if r.status.value == "success")
        skipped = sum(1 for r in results if r.status.value == "skipped")
        failed = sum(1 for r in results if r.status.value == "failed")
        applied = sum(r.updates_applied for r in results)
        approvals = sum(r.approvals_requested for r in results)
        alerts = sum(r.alerts_triggered for r in results)

        message = {
            "text": title or "Autopilot Cycle Summary",
            "blocks": [
                {
                    "type": "header",
                    "text": {
                        "type": "plain_text",
                        "text": f"📊 {title or 'Autopilot Cycle Summary'}",
                        "emoji": True
                    }
                },
                {"type": "divider"},
                {
                    "type": "section",
                    "fields": [
                        {"type": "mrkdwn", "text": f"*Accounts:*\n{len(results)}"},
                        {"type": "mrkdwn", "text": f"*Succeeded:*\n✅ {succeeded}"},
                        {"type": "mrkdwn", "text": f"*Skipped:*\n⏭️ {skipped}"},
                        {"type": "mrkdwn", "text": f"*Failed:*\n❌ {failed}"},
                        {"type": "mrkdwn", "text": f"*Changes Applied:*\n{applied}"},
                        {"type": "mrkdwn", "text": f"*Approvals Requested:*\n{approvals}"},
                        {"type": "mrkdwn", "text": f"*Critical Alerts:*\n🚨 {alerts}"},
                    ]
                },
            ] + self._footer()
        }
        return self._post(message, "summary")

    def test_connection(self) -> bool:
        """
        Test Slack webhook connection.

        Returns:
            True if connection successful
        """
        message = {
            "text": "🤖 Marketing Autopilot - Test Message",
            "blocks": [
                {
                    "type": "section",
                    "text": {
                        "type": "mrkdwn",
                        "text": "Marketing Autopilot webhook test successful! :white_check_mark:"
                    }
                }
            ]
        }

        if self._post(message, "test message"):
            print("✅ Slack webhook connection successful")
            return True
        print("❌ Slack webhook connection failed")
        return False
