"""
Module: backoffice_engines.aging
Responsibility:
    Classify open receivables into aging buckets and group them per
    customer and bucket, the unit of work of a dunning run.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Purity: ``as_of`` is always passed in; no clock access.
    - Deterministic grouping order: (customer_id, bucket position).

Failure modes:
    - ValueError when a bucket definition is inconsistent or an age falls
      outside every configured bucket.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from backoffice_engines.tracer import traced_engine
from backoffice_kernel.db.types import ZERO


@dataclass(frozen=True)
class AgeBucket:
    """
    A contiguous range of days past due.

    ``min_days`` may be None for the open-ended "not yet due" bucket and
    ``max_days`` None for the open-ended oldest bucket.
    """

    name: str
    min_days: int | None
    max_days: int | None

    def __post_init__(self) -> None:
        if (
            self.min_days is not None
            and self.max_days is not None
            and self.max_days < self.min_days
        ):
            raise ValueError("max_days cannot be less than min_days")

    def contains(self, days: int) -> bool:
        if self.min_days is not None and days < self.min_days:
            return False
        return self.max_days is None or days <= self.max_days


CURRENT = "CURRENT"

STANDARD_BUCKETS: tuple[AgeBucket, ...] = (
    AgeBucket(CURRENT, None, 0),
    AgeBucket("1-30", 1, 30),
    AgeBucket("31-60", 31, 60),
    AgeBucket("61-90", 61, 90),
    AgeBucket("90+", 91, None),
)


@dataclass(frozen=True)
class AgedItem:
    """An open receivable with its age classification."""

    document_id: str
    customer_id: str
    invoice_date: date
    due_date: date
    amount_due: Decimal
    days_past_due: int
    bucket: str


def days_past_due(due_date: date, as_of: date) -> int:
    """Days after due date; negative while not yet due."""
    return (as_of - due_date).days


def bucket_for(days: int, buckets: tuple[AgeBucket, ...] = STANDARD_BUCKETS) -> AgeBucket:
    for bucket in buckets:
        if bucket.contains(days):
            return bucket
    raise ValueError(f"No aging bucket covers {days} days")


@dataclass(frozen=True)
class OpenItem:
    """Input row: one unpaid invoice."""

    document_id: str
    customer_id: str
    invoice_date: date
    due_date: date
    amount_due: Decimal


@traced_engine("aging", "1.0", fingerprint_fields=("as_of",))
def group_by_customer_bucket(
    *,
    items: Iterable[OpenItem],
    as_of: date,
    buckets: tuple[AgeBucket, ...] = STANDARD_BUCKETS,
) -> dict[tuple[str, str], tuple[AgedItem, ...]]:
    """
    Age each open item and group by (customer_id, bucket name).

    Items with nothing due are ignored.  Keys are ordered by customer and
    then by bucket position.
    """
    order = {b.name: i for i, b in enumerate(buckets)}
    groups: dict[tuple[str, str], list[AgedItem]] = {}
    for item in items:
        if item.amount_due <= ZERO:
            continue
        days = days_past_due(item.due_date, as_of)
        bucket = bucket_for(days, buckets)
        groups.setdefault((item.customer_id, bucket.name), []).append(
            AgedItem(
                document_id=item.document_id,
                customer_id=item.customer_id,
                invoice_date=item.invoice_date,
                due_date=item.due_date,
                amount_due=item.amount_due,
                days_past_due=days,
                bucket=bucket.name,
            )
        )

    return {
        key: tuple(sorted(groups[key], key=lambda a: (a.due_date, a.document_id)))
        for key in sorted(groups, key=lambda k: (k[0], order[k[1]]))
    }
