"""
Unit tests for SlackNotifier.

requests.post is replaced with a recorder so nothing leaves the process.
"""

from datetime import timedelta

import pytest
import requests

from conftest import FIXED_NOW
from autopilot.models.change import ChangeKind
from autopilot.models.config import AutonomyLevel
from autopilot.models.cycle import CycleResult, CycleStatus
from autopilot.models.governance import ApprovalRequest, EmergencyState, EmergencyStatus
from autopilot.models.signal import Severity, Signal, SignalCategory, SignalType
from autopilot.utils.slack_notifier import SlackNotifier


class FakeResponse:
    def __init__(self, status_code=200):
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} error")


@pytest.fixture
def posts(monkeypatch):
    """Record every webhook call."""
    calls = []

    def fake_post(url, json=None, timeout=None):
        calls.append({"url": url, "json": json, "timeout": timeout})
        return FakeResponse()

    monkeypatch.setattr(requests, "post", fake_post)
    return calls


@pytest.fixture
def notifier():
    return SlackNotifier("https://hooks.slack.test/services/T000/B000/XXX")


def make_signal():
    return Signal(
        id="signal_1",
        account_id="ACC_001",
        type=SignalType.CPA_SPIKE,
        category=SignalCategory.PERFORMANCE,
        severity=Severity.CRITICAL,
        title="Critical CPA Spike Detected",
        description="CPA increased by 50.0% from $100.00 to $150.00",
        metric="cpa",
        current_value=150.0,
        previous_value=100.0,
        change_percent=50.0,
        threshold=50.0,
        detected_at=FIXED_NOW,
        suggested_actions=["Review recent campaign changes"],
    )


class TestSignalAlert:
    """Test signal alert formatting and delivery."""

    def test_sends_blocks(self, notifier, posts):
        assert notifier.send_signal_alert("Account ACC_001", make_signal()) is True

        message = posts[0]["json"]
        assert posts[0]["timeout"] == 10
        assert message["text"] == "🚨 Autopilot CRITICAL: Critical CPA Spike Detected (Account ACC_001)"
        assert message["blocks"][0]["type"] == "header"
        fields = message["blocks"][2]["fields"]
        assert {"type": "mrkdwn", "text": "*Change:*\n+50.0%"} in fields

    def test_http_error_returns_false(self, notifier, monkeypatch):
        monkeypatch.setattr(requests, "post", lambda *args, **kwargs: FakeResponse(500))

        assert notifier.send_signal_alert("Account ACC_001", make_signal()) is False

    def test_connection_error_returns_false(self, notifier, monkeypatch):
        def refuse(*args, **kwargs):
            raise requests.exceptions.ConnectionError("refused")

        monkeypatch.setattr(requests, "post", refuse)

        assert notifier.send_signal_alert("Account ACC_001", make_signal()) is False


class TestOtherMessages:
    """Test approval, emergency and summary messages."""

    def test_approval_request(self, notifier, posts):
        request = ApprovalRequest(
            account_id="ACC_001",
            type=ChangeKind.BUDGET,
            title="Budget reallocation: 0.0% change requested",
            description="Proposed budget reallocation",
            proposed_change={},
            reasoning="Best channel returns 4x",
            expected_impact="+5% ROAS",
            requested_at=FIXED_NOW,
            expires_at=FIXED_NOW + timedelta(hours=24),
            rules_triggered=["rule_channel_concentration"],
        )

        assert notifier.send_approval_request("Account ACC_001", request) is True
        assert "Approval needed" in posts[0]["json"]["text"]

    def test_emergency_stop(self, notifier, posts):
        state = EmergencyState(
            account_id="ACC_001",
            triggered=True,
            status=EmergencyStatus.ACTIVE,
            triggered_at=FIXED_NOW,
            triggered_by="autopilot",
            reason="CPA up 50%",
        )

        assert notifier.send_emergency_stop("Account ACC_001", state) is True
        fields = posts[0]["json"]["blocks"][2]["fields"]
        assert {"type": "mrkdwn", "text": "*Resume:*\nmanual resolution required"} in fields

    def test_connection_check(self, notifier, posts):
        assert notifier.test_connection() is True
        assert posts[0]["json"]["text"] == "🤖 Marketing Autopilot - Test Message"

    def test_cycle_summary_counts(self, notifier, posts):
        results = [
            CycleResult(
                id=f"cycle_{i}",
                account_id=f"ACC_00{i}",
                cycle_number=1,
                started_at=FIXED_NOW,
                autonomy_level=AutonomyLevel.SEMI_AUTONOMOUS,
                status=status,
                updates_applied=1,
            )
            for i, status in enumerate([CycleStatus.SUCCESS, CycleStatus.SUCCESS, CycleStatus.FAILED])
        ]

        assert notifier.send_cycle_summary(results) is True
        fields = posts[0]["json"]["blocks"][2]["fields"]
        assert {"type": "mrkdwn", "text": "*Succeeded:*\n✅ 2"} in fields
        assert {"type": "mrkdwn", "text": "*Failed:*\n❌ 1"} in fields
        assert {"type": "mrkdwn", "text": "*Changes Applied:*\n3"} in fields
