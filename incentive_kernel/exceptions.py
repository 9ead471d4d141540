"""
Typed exception hierarchy for the incentive kernel.

Every error carries a class-level ``code`` (machine-readable, API-safe) and
stores its context as attributes rather than only in the message, so it
survives logging (see ``StructuredFormatter``) and the structured
``{success: False, error: {code, message}}`` payloads returned by the
primary triggers.

    IncentiveKernelError (base)
    |
    +-- TenantError
    |   +-- TenantNotFoundError
    |   +-- EntityNotFoundError
    |
    +-- PeriodError
    |   +-- PeriodNotFoundError
    |
    +-- PlanError
    |   +-- RuleSetNotFoundError
    |   +-- NoComponentsError
    |   +-- InvalidComponentError
    |   +-- InvalidDerivationError
    |   +-- UnknownVariantError
    |
    +-- CalculationError
    |   +-- NoEligibleEntitiesError
    |   +-- BatchNotFoundError
    |
    +-- ReconciliationError
    |   +-- BenchmarkError
    |
    +-- DisputeError
    |   +-- DisputeNotFoundError
    |   +-- InvalidDisputeTransitionError
    |   +-- InvalidDisputeAmountError
    |
    +-- ConfigurationError

Handling pattern for primary triggers::

    try:
        outcome = service.run(tenant_id, period_id, rule_set_id)
    except IncentiveKernelError as e:
        return failure(code=e.code, message=str(e))

Degraded-dependency errors (agent memory) and observability-write errors
(classification signals) are NOT raised through this hierarchy; they are
logged and swallowed at their call sites.
"""


class IncentiveKernelError(Exception):
    """
    Base exception for all incentive kernel errors.

    All subclasses must have a ``code`` class attribute for
    machine-readable error identification.
    """

    code: str = "INCENTIVE_KERNEL_ERROR"


# Tenant


class TenantError(IncentiveKernelError):
    """Base exception for tenant errors."""

    code: str = "TENANT_ERROR"


class TenantNotFoundError(TenantError):
    """Tenant does not exist or is inactive."""

    code: str = "TENANT_NOT_FOUND"

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        super().__init__(f"Tenant not found: {tenant_id}")


class EntityNotFoundError(TenantError):
    """No entity with the external id exists for the tenant."""

    code: str = "ENTITY_NOT_FOUND"

    def __init__(self, external_id: str, tenant_id: str | None = None):
        self.external_id = external_id
        self.tenant_id = tenant_id
        super().__init__(f"Entity not found: {external_id}")


# Period


class PeriodError(IncentiveKernelError):
    """Base exception for period errors."""

    code: str = "PERIOD_ERROR"


class PeriodNotFoundError(PeriodError):
    """Period does not exist for the tenant."""

    code: str = "PERIOD_NOT_FOUND"

    def __init__(self, period_id: str, tenant_id: str | None = None):
        self.period_id = period_id
        self.tenant_id = tenant_id
        super().__init__(f"Period not found: {period_id}")


# Plan


class PlanError(IncentiveKernelError):
    """Base exception for plan (rule set) errors."""

    code: str = "PLAN_ERROR"


class RuleSetNotFoundError(PlanError):
    """Rule set does not exist for the tenant."""

    code: str = "RULE_SET_NOT_FOUND"

    def __init__(self, rule_set_id: str, tenant_id: str | None = None):
        self.rule_set_id = rule_set_id
        self.tenant_id = tenant_id
        super().__init__(f"Rule set not found: {rule_set_id}")


class NoComponentsError(PlanError):
    """Rule set has no components in any variant."""

    code: str = "NO_COMPONENTS"

    def __init__(self, rule_set_id: str):
        self.rule_set_id = rule_set_id
        super().__init__(f"Rule set {rule_set_id} has no components")


class InvalidComponentError(PlanError):
    """A component blob failed load-time validation."""

    code: str = "INVALID_COMPONENT"

    def __init__(self, component_name: str, reason: str):
        self.component_name = component_name
        self.reason = reason
        super().__init__(f"Invalid component '{component_name}': {reason}")


class InvalidDerivationError(PlanError):
    """A metric derivation rule failed validation."""

    code: str = "INVALID_DERIVATION"

    def __init__(self, metric: str, reason: str):
        self.metric = metric
        self.reason = reason
        super().__init__(f"Invalid derivation for '{metric}': {reason}")


class UnknownVariantError(PlanError):
    """Population config selected a variant the plan does not define."""

    code: str = "UNKNOWN_VARIANT"

    def __init__(self, variant_id: str):
        self.variant_id = variant_id
        super().__init__(f"Unknown variant: {variant_id}")


# Calculation


class CalculationError(IncentiveKernelError):
    """Base exception for calculation run errors."""

    code: str = "CALCULATION_ERROR"


class NoEligibleEntitiesError(CalculationError):
    """No entities are assigned to the rule set."""

    code: str = "NO_ELIGIBLE_ENTITIES"

    def __init__(self, rule_set_id: str):
        self.rule_set_id = rule_set_id
        super().__init__(f"No entities assigned to rule set {rule_set_id}")


class BatchNotFoundError(CalculationError):
    """Calculation batch does not exist for the tenant."""

    code: str = "BATCH_NOT_FOUND"

    def __init__(self, batch_id: str):
        self.batch_id = batch_id
        super().__init__(f"Calculation batch not found: {batch_id}")


# Reconciliation


class ReconciliationError(IncentiveKernelError):
    """Base exception for reconciliation errors."""

    code: str = "RECONCILIATION_ERROR"


class BenchmarkError(ReconciliationError):
    """A benchmark record is malformed."""

    code: str = "INVALID_BENCHMARK"

    def __init__(self, reason: str, record_index: int | None = None):
        self.reason = reason
        self.record_index = record_index
        where = f" (record {record_index})" if record_index is not None else ""
        super().__init__(f"Invalid benchmark{where}: {reason}")


# Disputes


class DisputeError(IncentiveKernelError):
    """Base exception for dispute errors."""

    code: str = "DISPUTE_ERROR"


class DisputeNotFoundError(DisputeError):
    """Dispute does not exist for the tenant."""

    code: str = "DISPUTE_NOT_FOUND"

    def __init__(self, dispute_id: str):
        self.dispute_id = dispute_id
        super().__init__(f"Dispute not found: {dispute_id}")


class InvalidDisputeTransitionError(DisputeError):
    """Dispute status transition is not allowed."""

    code: str = "INVALID_DISPUTE_TRANSITION"

    def __init__(self, dispute_id: str, from_status: str, to_status: str):
        self.dispute_id = dispute_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Dispute {dispute_id}: cannot transition {from_status} -> {to_status}"
        )


class InvalidDisputeAmountError(DisputeError):
    """Disputed amount is not a number."""

    code: str = "INVALID_DISPUTE_AMOUNT"

    def __init__(self, entity_external_id: str, amount: object):
        self.entity_external_id = entity_external_id
        self.amount = amount
        super().__init__(
            f"Dispute for {entity_external_id}: amount_disputed must be numeric, got {amount!r}"
        )


# Configuration


class ConfigurationError(IncentiveKernelError):
    """Configuration set is missing or malformed."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, reason: str, source: str | None = None):
        self.reason = reason
        self.source = source
        super().__init__(f"Configuration error{f' in {source}' if source else ''}: {reason}")
