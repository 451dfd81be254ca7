"""
Account configuration and the global kill switch.
"""

from datetime import datetime
from typing import Callable, Optional

from autopilot.errors import AutonomyEscalationError
from autopilot.governance.audit_log import AuditLog
from autopilot.models.config import AccountConfig, AutonomyLevel
from autopilot.models.governance import AutopilotAction, TriggeredBy
from autopilot.storage import keys
from autopilot.storage.store import KeyValueStore
from autopilot.utils.time_utils import utc_now


class ConfigManager:
    """Read and write per-account AccountConfig records."""

    # Autonomy at or above this level needs human approval to switch on
    APPROVAL_REQUIRED_FROM = AutonomyLevel.SEMI_AUTONOMOUS

    def __init__(
        self,
        store: KeyValueStore,
        audit: AuditLog,
        clock: Callable[[], datetime] = utc_now
    ):
        self.store = store
        self.audit = audit
        self.clock = clock

    def create_default_config(self, account_id: str) -> AccountConfig:
        """Default settings for an account. Not persisted."""
        now = self.clock()
        return AccountConfig(account_id=account_id, created_at=now, updated_at=now)

    def get_autopilot_config(self, account_id: str) -> Optional[AccountConfig]:
        data = self.store.get(keys.config_key(account_id))
        return AccountConfig.from_dict(data) if data else None

    def get_or_create_config(self, account_id: str) -> AccountConfig:
        return self.get_autopilot_config(account_id) or self.create_default_config(account_id)

    def is_escalation(self, current: AutonomyLevel, proposed: AutonomyLevel) -> bool:
        """True when moving from current to proposed needs an approval."""
        return proposed.rank > current.rank and proposed.rank >= self.APPROVAL_REQUIRED_FROM.rank

    def set_autopilot_config(
        self,
        config: AccountConfig,
        changed_by: Optional[str] = None,
        approved_by: Optional[str] = None
    ) -> AccountConfig:
        """
        Persist a config and record the change in the audit log.

        A config that raises autonomy to semi_autonomous or above (compared
        with the stored level, or the default for a new account) is refused
        unless approved_by names the reviewer who signed off. Use
        Governance.change_autonomy_level to queue the raise instead.

        Args:
            config: New configuration
            changed_by: User id; None means the autopilot itself
            approved_by: Reviewer who approved an autonomy raise

        Returns:
            The stored config with updated_at stamped

        Raises:
            AutonomyEscalationError: Unapproved raise past the threshold
        """
        previous = self.store.get(keys.config_key(config.account_id))
        current = (
            AccountConfig.from_dict(previous).autonomy_level if previous
            else self.create_default_config(config.account_id).autonomy_level
        )
        if approved_by is None and self.is_escalation(current, config.autonomy_level):
            raise AutonomyEscalationError(config.account_id, current, config.autonomy_level)

        config.updated_at = self.clock()
        self.store.set(keys.config_key(config.account_id), config.to_dict())

        self.audit.log_action(
            config.account_id,
            AutopilotAction.CONFIG_CHANGED,
            {
                "enabled": config.enabled,
                "autonomy_level": config.autonomy_level.value,
                "previous_autonomy_level": previous.get("autonomy_level") if previous else None,
                "created": previous is None,
                "approved_by": approved_by,
            },
            triggered_by=TriggeredBy.HUMAN if changed_by else TriggeredBy.AUTOPILOT,
            actor=changed_by,
            description="Autopilot configuration updated",
        )
        return config

    def update_config(
        self,
        account_id: str,
        fn: Callable[[AccountConfig], None]
    ) -> AccountConfig:
        """
        Atomically mutate the stored config without an audit entry.

        Used by the cycle engine for bookkeeping (last_cycle_at, disabling on
        emergency stop). Creates the default config if none exists.
        """
        now = self.clock()

        def _apply(data):
            config = AccountConfig.from_dict(data) if data else self.create_default_config(account_id)
            fn(config)
            config.updated_at = now
            return config.to_dict()

        return AccountConfig.from_dict(
            self.store.update(keys.config_key(account_id), _apply, default=None)
        )

    def set_global_enabled(self, enabled: bool, changed_by: Optional[str] = None):
        """Flip the process-wide kill switch."""
        self.store.set(keys.GLOBAL_ENABLED, bool(enabled))
        print(f"{'▶️' if enabled else '⏸️'} Autopilot globally {'enabled' if enabled else 'disabled'}"
              + (f" by {changed_by}" if changed_by else ""))

    def is_global_enabled(self) -> bool:
        return bool(self.store.get(keys.GLOBAL_ENABLED, True))
