"""
Module: backoffice_engines
Responsibility:
    Re-exports the pure calculation engines used by run tasks.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May import backoffice_kernel domain types and helpers only.
    MUST NOT import backoffice_runs or backoffice_modules.

Invariants enforced:
    - Engines never read the clock; dates are explicit parameters.
    - Decimal-only arithmetic for money.
    - Identical inputs always produce identical outputs.
"""

from backoffice_engines.aging import (
    STANDARD_BUCKETS,
    AgeBucket,
    AgedItem,
    OpenItem,
    bucket_for,
    days_past_due,
    group_by_customer_bucket,
)
from backoffice_engines.allocation import (
    AllocationEngine,
    AllocationLine,
    AllocationMethod,
    AllocationRule,
    AllocationTarget,
    BalanceRow,
    DriverValue,
    RuleAllocation,
    active_rules_for_period,
    source_pool,
)
from backoffice_engines.billing import ChargeKind, InvoiceDraft, LineDraft, rate_subscription
from backoffice_engines.dunning import DunningContext, is_throttled, is_waiting, render_template
from backoffice_engines.payments import (
    BankFile,
    PaymentInstruction,
    pay_amount,
    render_csv,
    render_pain001,
)
from backoffice_engines.recognition import (
    RecognitionMethod,
    ScheduleEntry,
    ScheduleStatus,
    build_schedule,
    recognition_status,
)
from backoffice_engines.tracer import traced_engine

__all__ = [
    "STANDARD_BUCKETS",
    "AgeBucket",
    "AgedItem",
    "AllocationEngine",
    "AllocationLine",
    "AllocationMethod",
    "AllocationRule",
    "AllocationTarget",
    "BalanceRow",
    "BankFile",
    "ChargeKind",
    "DriverValue",
    "DunningContext",
    "InvoiceDraft",
    "LineDraft",
    "OpenItem",
    "PaymentInstruction",
    "RecognitionMethod",
    "RuleAllocation",
    "ScheduleEntry",
    "ScheduleStatus",
    "active_rules_for_period",
    "bucket_for",
    "build_schedule",
    "days_past_due",
    "group_by_customer_bucket",
    "is_throttled",
    "is_waiting",
    "pay_amount",
    "rate_subscription",
    "recognition_status",
    "render_csv",
    "render_pain001",
    "render_template",
    "source_pool",
    "traced_engine",
]
