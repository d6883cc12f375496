"""
Module: backoffice_engines.dunning
Responsibility:
    Pure dunning decisions: throttle and wait-period checks for a policy
    step, and reminder template rendering.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from backoffice_kernel.db.types import round_money


@dataclass(frozen=True)
class DunningContext:
    """Values available to a reminder template."""

    customer_name: str
    total_due: Decimal
    invoice_count: int
    oldest_days: int
    bucket: str


def render_template(template: str, context: DunningContext) -> str:
    """Substitute the supported ``{{...}}`` placeholders.  Unknown ones are left as is."""
    replacements = {
        "{{customer.name}}": context.customer_name,
        "{{total_due}}": f"{round_money(context.total_due):.2f}",
        "{{invoice_count}}": str(context.invoice_count),
        "{{oldest_days}}": str(context.oldest_days),
        "{{bucket}}": context.bucket,
    }
    rendered = template
    for placeholder, value in replacements.items():
        rendered = rendered.replace(placeholder, value)
    return rendered


def _as_utc(value: datetime) -> datetime:
    # Naive timestamps (SQLite round trips) are UTC.
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def is_throttled(last_sent_at: datetime | None, as_of: datetime, throttle_days: int) -> bool:
    """True when the same step was sent less than ``throttle_days`` ago."""
    if last_sent_at is None or throttle_days <= 0:
        return False
    return _as_utc(as_of) - _as_utc(last_sent_at) < timedelta(days=throttle_days)


def is_waiting(newest_invoice_date: date, as_of: date, wait_days: int) -> bool:
    """True when any invoice of the group is younger than ``wait_days``."""
    if wait_days <= 0:
        return False
    return newest_invoice_date > as_of - timedelta(days=wait_days)
