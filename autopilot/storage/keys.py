"""Store key layout. One logical partition per account id."""

GLOBAL_ENABLED = "global:enabled"


def account_key(account_id: str, name: str) -> str:
    """Key for a per-account record, e.g. ``account:acme:config``."""
    return f"account:{account_id}:{name}"


def config_key(account_id: str) -> str:
    return account_key(account_id, "config")


def cycles_key(account_id: str) -> str:
    return account_key(account_id, "cycles")


def cycle_counter_key(account_id: str) -> str:
    return account_key(account_id, "cycle_counter")


def audit_log_key(account_id: str) -> str:
    return account_key(account_id, "audit_log")


def active_signals_key(account_id: str) -> str:
    return account_key(account_id, "signals:active")


def signal_history_key(account_id: str) -> str:
    return account_key(account_id, "signals:history")


def alert_config_key(account_id: str) -> str:
    return account_key(account_id, "alert_config")


def signal_thresholds_key(account_id: str) -> str:
    return account_key(account_id, "signals:thresholds")


def approvals_key(account_id: str) -> str:
    return account_key(account_id, "approvals")


def changes_key(account_id: str) -> str:
    return account_key(account_id, "changes")


def emergency_key(account_id: str) -> str:
    return account_key(account_id, "emergency")


def experiments_key(account_id: str) -> str:
    return account_key(account_id, "experiments")


def rule_overrides_key(account_id: str) -> str:
    return account_key(account_id, "rule_overrides")
