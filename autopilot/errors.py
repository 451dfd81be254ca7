"""
Error taxonomy for the autopilot control loop.

Only DataUnavailableError is raised inside a cycle; it is caught by the cycle
engine and turned into a failed CycleResult. GovernanceConflict and
AutonomyEscalationError reach the caller of a governance operation. The other
errors are used to wrap and record failures in the audit trail without
propagating.
"""


class AutopilotError(Exception):
    """Base class for all autopilot errors."""


class ConfigurationError(AutopilotError):
    """Account disabled or configuration missing. Surfaces as a skipped cycle."""

    def __init__(self, reasons):
        self.reasons = list(reasons)
        super().__init__("; ".join(self.reasons) or "Autopilot not ready")


class DataUnavailableError(AutopilotError):
    """The knowledge store returned nothing for an account."""

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"No account knowledge available for {account_id}")


class RuleEvaluationError(AutopilotError):
    """A single rule predicate raised while being evaluated."""

    def __init__(self, rule_id: str, cause: Exception):
        self.rule_id = rule_id
        self.cause = cause
        super().__init__(f"Rule {rule_id} failed: {cause}")


class GeneratorError(AutopilotError):
    """An external candidate generator failed or timed out."""

    def __init__(self, generator: str, cause: Exception):
        self.generator = generator
        self.cause = cause
        super().__init__(f"Generator {generator} failed: {cause or 'timed out'}")


class GovernanceConflict(AutopilotError):
    """An approval or change id does not exist for the account."""

    def __init__(self, kind: str, item_id: str):
        self.kind = kind
        self.item_id = item_id
        super().__init__(f"{kind} {item_id} not found")


class AutonomyEscalationError(AutopilotError):
    """A config write would raise autonomy past the approval threshold unreviewed."""

    def __init__(self, account_id: str, current, proposed):
        self.account_id = account_id
        self.current = current
        self.proposed = proposed
        super().__init__(
            f"Raising {account_id} from {current.value} to {proposed.value} requires approval"
        )
