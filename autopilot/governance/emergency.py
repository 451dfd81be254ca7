"""
Emergency controls (account kill switch).

While an emergency stop is active the cycle engine's readiness check fails
closed for the account. A stop with an auto-resume time resolves itself the
first time it is checked after that time.
"""

from datetime import datetime, timedelta
from typing import Callable, List, Optional

from autopilot.governance.audit_log import AuditLog
from autopilot.models.governance import (
    AutopilotAction,
    EmergencyState,
    EmergencyStatus,
    TriggeredBy,
)
from autopilot.storage import keys
from autopilot.storage.store import KeyValueStore
from autopilot.utils.time_utils import from_iso, to_iso, utc_now


class EmergencyControl:
    """Trigger, resolve and check per-account emergency stops."""

    AUTO_RESUME_ACTOR = "system"

    def __init__(
        self,
        store: KeyValueStore,
        audit: AuditLog,
        clock: Callable[[], datetime] = utc_now
    ):
        self.store = store
        self.audit = audit
        self.clock = clock

    def trigger_emergency_stop(
        self,
        account_id: str,
        triggered_by: str,
        reason: str,
        affected_channels: Optional[List[str]] = None,
        auto_resume_in_hours: Optional[float] = None,
        source: TriggeredBy = TriggeredBy.HUMAN
    ) -> EmergencyState:
        """
        Stop all automation for an account.

        Args:
            account_id: Account identifier
            triggered_by: User or system id
            reason: Why the stop was triggered
            affected_channels: Channels the stop applies to (informational)
            auto_resume_in_hours: Resolve automatically after this many hours
            source: Actor class recorded in the audit log

        Returns:
            The new emergency state
        """
        now = self.clock()
        state = EmergencyState(
            account_id=account_id,
            triggered=True,
            status=EmergencyStatus.ACTIVE,
            triggered_at=now,
            triggered_by=triggered_by,
            reason=reason,
            affected_channels=list(affected_channels or []),
        )
        if auto_resume_in_hours:
            state.auto_resume_at = now + timedelta(hours=auto_resume_in_hours)
            state.status = EmergencyStatus.SCHEDULED_RESUME

        self.store.set(keys.emergency_key(account_id), state.to_dict())
        self.audit.log_action(
            account_id,
            AutopilotAction.EMERGENCY_STOP,
            {
                "triggered_by": triggered_by,
                "reason": reason,
                "affected_channels": state.affected_channels,
                "auto_resume_at": to_iso(state.auto_resume_at),
            },
            triggered_by=source,
            actor=triggered_by,
        )
        return state

    def resolve_emergency_stop(
        self,
        account_id: str,
        resolved_by: str,
        notes: Optional[str] = None
    ) -> Optional[EmergencyState]:
        """
        Clear an active emergency stop.

        Returns:
            The resolved state, or None if no stop was active
        """
        resolved = self._resolve(account_id, resolved_by)
        if resolved is None:
            return None
        self._log_resolution(account_id, resolved, resolved_by, notes, TriggeredBy.HUMAN)
        return resolved

    def is_active(self, account_id: str, resolve_expired: bool = True) -> bool:
        """
        Check if an emergency stop is in force.

        A stop whose auto-resume time has passed is resolved here and an
        emergency_resolved entry is logged exactly once. With
        resolve_expired=False the check is read-only: a lapsed stop reports
        inactive but stays stored as triggered.
        """
        state = self.get_emergency_state(account_id)
        if state is None or not state.triggered:
            return False

        if state.auto_resume_at is not None and state.auto_resume_at <= self.clock():
            if not resolve_expired:
                return False
            resolved = self._resolve(account_id, self.AUTO_RESUME_ACTOR, due_only=True)
            if resolved is not None:
                self._log_resolution(
                    account_id,
                    resolved,
                    self.AUTO_RESUME_ACTOR,
                    "Auto-resumed after scheduled period",
                    TriggeredBy.SCHEDULE,
                )
            return False

        return True

    def get_emergency_state(self, account_id: str) -> Optional[EmergencyState]:
        data = self.store.get(keys.emergency_key(account_id))
        return EmergencyState.from_dict(data) if data else None

    def _resolve(
        self,
        account_id: str,
        resolved_by: str,
        due_only: bool = False
    ) -> Optional[EmergencyState]:
        """Atomically flip a triggered state to resolved; None if nothing flipped."""
        now = self.clock()
        flipped: List[EmergencyState] = []

        def _flip(data):
            if not data or not data.get("triggered"):
                return data
            if due_only:
                resume_at = from_iso(data.get("auto_resume_at"))
                if resume_at is None or resume_at > now:
                    return data
            data["triggered"] = False
            data["status"] = EmergencyStatus.RESOLVED.value
            data["resolved_at"] = to_iso(now)
            data["resolved_by"] = resolved_by
            flipped.append(EmergencyState.from_dict(data))
            return data

        self.store.update(keys.emergency_key(account_id), _flip, default=None)
        return flipped[0] if flipped else None

    def _log_resolution(
        self,
        account_id: str,
        state: EmergencyState,
        resolved_by: str,
        notes: Optional[str],
        source: TriggeredBy
    ):
        duration_ms = 0.0
        if state.triggered_at and state.resolved_at:
            duration_ms = (state.resolved_at - state.triggered_at).total_seconds() * 1000

        self.audit.log_action(
            account_id,
            AutopilotAction.EMERGENCY_RESOLVED,
            {
                "resolved_by": resolved_by,
                "notes": notes,
                "original_reason": state.reason,
                "duration_ms": duration_ms,
            },
            triggered_by=source,
            actor=resolved_by,
        )
