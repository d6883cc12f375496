"""
Typed exception hierarchy for the back-office run engine.

Every error raised by a service, run task or engine is a BackofficeError
subclass with:
  1. a TYPED class, so callers catch by type and never by message;
  2. a class-level CODE attribute, machine readable and stable;
  3. structured DATA stored as attributes.

Example:
    try:
        revenue.recognize("ACME", 2026, 1, dry_run=False)
    except PeriodAlreadyPostedError as e:
        respond(code=e.code, period=e.period_key)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    BackofficeError (base)
    |
    +-- ValidationError
    |   +-- InvalidCurrencyError
    |
    +-- RunError
    |   +-- RunNotFoundError
    |   +-- RunIdempotencyError
    |   +-- RunStateError
    |   +-- RunInProgressError
    |   +-- TaskNotRegisteredError
    |
    +-- LockError
    |   +-- LockHeldError
    |   +-- PeriodAlreadyPostedError
    |
    +-- LedgerError
    |   +-- EmptyJournalError
    |   +-- UnbalancedJournalError
    |
    +-- AllocationRuleError
    |
    +-- BillingError
    |   +-- InvoiceStateError
    |   +-- MissingFxRateError
    |
    +-- PaymentError
    |   +-- PayRunStateError
    |   +-- BankProfileMissingError
    |
    +-- DunningError
    |   +-- DunningTemplateMissingError
    |
    +-- RevenueError
    |   +-- MissingRevenuePolicyError
    |   +-- ScheduleError
    |
    +-- AuditError
        +-- AuditChainBrokenError

The run executor records ``exc.code`` as the item ``error_code`` when a run
item raises a BackofficeError, and ``UNHANDLED_EXCEPTION`` otherwise.
"""


class BackofficeError(Exception):
    """
    Base exception for all back-office errors.

    All subclasses carry a ``code`` class attribute.
    """

    code: str = "BACKOFFICE_ERROR"


# Validation


class ValidationError(BackofficeError):
    """Input rejected at a service or engine boundary."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, value: object, reason: str):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field}={value!r}: {reason}")


class InvalidCurrencyError(ValidationError):
    """Not an ISO 4217 currency code."""

    code: str = "INVALID_CURRENCY"

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__("currency", currency, "not a recognized ISO 4217 code")


# Run orchestration


class RunError(BackofficeError):
    """Base exception for run orchestration errors."""

    code: str = "RUN_ERROR"


class RunNotFoundError(RunError):

    code: str = "RUN_NOT_FOUND"

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Run not found: {run_id}")


class RunIdempotencyError(RunError):
    """A run with this idempotency key already exists."""

    code: str = "RUN_IDEMPOTENCY_CONFLICT"

    def __init__(self, idempotency_key: str, existing_run_id: str):
        self.idempotency_key = idempotency_key
        self.existing_run_id = existing_run_id
        super().__init__(
            f"Run with idempotency key '{idempotency_key}' already exists: "
            f"{existing_run_id}"
        )


class RunStateError(RunError):
    """Operation not allowed for the run's current status."""

    code: str = "RUN_INVALID_STATE"

    def __init__(self, run_id: str, status: str, operation: str):
        self.run_id = run_id
        self.status = status
        self.operation = operation
        super().__init__(f"Cannot {operation} run {run_id} in status {status}")


class RunInProgressError(RunError):
    """Another run of the same type is already running for the company."""

    code: str = "RUN_IN_PROGRESS"

    def __init__(self, run_type: str, company: str, running_run_id: str):
        self.run_type = run_type
        self.company = company
        self.running_run_id = running_run_id
        super().__init__(
            f"Run {running_run_id} of type {run_type} is already running "
            f"for company {company}"
        )


class TaskNotRegisteredError(RunError):

    code: str = "RUN_TASK_NOT_REGISTERED"

    def __init__(self, run_type: str, available: tuple[str, ...] = ()):
        self.run_type = run_type
        self.available = available
        super().__init__(
            f"No run task registered for type '{run_type}'. "
            f"Available: {', '.join(available) or '(none)'}"
        )


# Safety locks


class LockError(BackofficeError):
    """Base exception for run safety locks."""

    code: str = "LOCK_ERROR"


class LockHeldError(LockError):
    """The lock for this scope is already held."""

    code: str = "LOCK_HELD"

    def __init__(self, lock_kind: str, company: str, scope_key: str, held_by: str | None = None):
        self.lock_kind = lock_kind
        self.company = company
        self.scope_key = scope_key
        self.held_by = held_by
        super().__init__(
            f"Lock {lock_kind}:{company}:{scope_key} is already held"
            + (f" by run {held_by}" if held_by else "")
        )


class PeriodAlreadyPostedError(LockError):

    code: str = "PERIOD_ALREADY_POSTED"

    def __init__(self, company: str, period_key: str):
        self.company = company
        self.period_key = period_key
        super().__init__(f"Period {period_key} is already posted")


# Ledger


class LedgerError(BackofficeError):
    """Base exception for journal posting errors."""

    code: str = "LEDGER_ERROR"


class EmptyJournalError(LedgerError):

    code: str = "EMPTY_JOURNAL"

    def __init__(self, idempotency_key: str):
        self.idempotency_key = idempotency_key
        super().__init__(f"Journal {idempotency_key} has no postable lines")


class UnbalancedJournalError(LedgerError):
    """Journal entry debits do not equal credits."""

    code: str = "UNBALANCED_JOURNAL"

    def __init__(self, debits: str, credits: str, idempotency_key: str):
        self.debits = debits
        self.credits = credits
        self.idempotency_key = idempotency_key
        super().__init__(
            f"Unbalanced journal {idempotency_key}: debits={debits}, credits={credits}"
        )


# Allocation


class AllocationRuleError(BackofficeError):
    """An allocation rule definition is invalid."""

    code: str = "ALLOCATION_RULE_INVALID"

    def __init__(self, rule_code: str, reason: str):
        self.rule_code = rule_code
        self.reason = reason
        super().__init__(f"Allocation rule {rule_code}: {reason}")


# Billing


class BillingError(BackofficeError):

    code: str = "BILLING_ERROR"


class InvoiceStateError(BillingError):

    code: str = "INVOICE_INVALID_STATE"

    def __init__(self, invoice_id: str, status: str, required: str):
        self.invoice_id = invoice_id
        self.status = status
        self.required = required
        super().__init__(
            f"Invoice {invoice_id} is {status}; operation requires {required}"
        )


class MissingFxRateError(BillingError):

    code: str = "MISSING_FX_RATE"

    def __init__(self, from_ccy: str, to_ccy: str, as_of: str):
        self.from_ccy = from_ccy
        self.to_ccy = to_ccy
        self.as_of = as_of
        super().__init__(f"No FX rate {from_ccy}->{to_ccy} on or before {as_of}")


# Payments


class PaymentError(BackofficeError):

    code: str = "PAYMENT_ERROR"


class PayRunStateError(PaymentError):

    code: str = "PAY_RUN_INVALID_STATE"

    def __init__(self, pay_run_id: str, status: str, operation: str):
        self.pay_run_id = pay_run_id
        self.status = status
        self.operation = operation
        super().__init__(f"Cannot {operation} pay run {pay_run_id} in status {status}")


class BankProfileMissingError(PaymentError):

    code: str = "BANK_PROFILE_MISSING"

    def __init__(self, company: str, bank_code: str):
        self.company = company
        self.bank_code = bank_code
        super().__init__(f"No bank file profile {bank_code} for company {company}")


# Dunning


class DunningError(BackofficeError):

    code: str = "DUNNING_ERROR"


class DunningTemplateMissingError(DunningError):
    """A dunning policy step references a template that does not exist."""

    code: str = "DUNNING_TEMPLATE_MISSING"

    def __init__(self, policy_code: str, template_code: str):
        self.policy_code = policy_code
        self.template_code = template_code
        super().__init__(
            f"Dunning policy {policy_code} references missing template {template_code}"
        )


# Revenue


class RevenueError(BackofficeError):

    code: str = "REVENUE_ERROR"


class MissingRevenuePolicyError(RevenueError):

    code: str = "REVENUE_POLICY_MISSING"

    def __init__(self, company: str):
        self.company = company
        super().__init__(f"No revenue policy found for company {company}")


class ScheduleError(RevenueError):

    code: str = "REVENUE_SCHEDULE_INVALID"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Cannot build recognition schedule: {reason}")


# Audit


class AuditError(BackofficeError):

    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_event_id: str, expected_hash: str, actual_hash: str):
        self.audit_event_id = audit_event_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at {audit_event_id}: "
            f"expected {expected_hash}, found {actual_hash}"
        )
