"""Tests for receivables aging and customer/bucket grouping."""

from datetime import date
from decimal import Decimal

import pytest

from backoffice_engines.aging import (
    CURRENT,
    AgeBucket,
    OpenItem,
    bucket_for,
    days_past_due,
    group_by_customer_bucket,
)

AS_OF = date(2026, 3, 31)


def _item(doc, customer, due, amount="100.00"):
    return OpenItem(
        document_id=doc,
        customer_id=customer,
        invoice_date=date(2026, 1, 1),
        due_date=due,
        amount_due=Decimal(amount),
    )


class TestBuckets:
    @pytest.mark.parametrize(
        "days, bucket",
        [(-5, CURRENT), (0, CURRENT), (1, "1-30"), (30, "1-30"), (31, "31-60"),
         (90, "61-90"), (91, "90+"), (400, "90+")],
    )
    def test_bucket_boundaries(self, days, bucket):
        assert bucket_for(days).name == bucket

    def test_days_past_due(self):
        assert days_past_due(date(2026, 3, 1), AS_OF) == 30
        assert days_past_due(date(2026, 4, 10), AS_OF) == -10

    def test_inverted_bucket_rejected(self):
        with pytest.raises(ValueError):
            AgeBucket("bad", 10, 5)

    def test_uncovered_age_rejected(self):
        with pytest.raises(ValueError):
            bucket_for(5, (AgeBucket("old", 30, None),))


class TestGroupByCustomerBucket:
    def test_groups_ordered_by_customer_then_bucket(self):
        groups = group_by_customer_bucket(
            items=[
                _item("INV-3", "CUST-B", date(2026, 3, 20)),
                _item("INV-1", "CUST-A", date(2025, 12, 1)),
                _item("INV-2", "CUST-A", date(2026, 3, 10)),
            ],
            as_of=AS_OF,
        )
        assert list(groups) == [
            ("CUST-A", "1-30"),
            ("CUST-A", "90+"),
            ("CUST-B", "1-30"),
        ]

    def test_items_sorted_by_due_date_within_group(self):
        groups = group_by_customer_bucket(
            items=[
                _item("INV-2", "CUST-A", date(2026, 3, 15)),
                _item("INV-1", "CUST-A", date(2026, 3, 5)),
            ],
            as_of=AS_OF,
        )
        assert [a.document_id for a in groups[("CUST-A", "1-30")]] == ["INV-1", "INV-2"]

    def test_settled_items_ignored(self):
        groups = group_by_customer_bucket(
            items=[_item("INV-1", "CUST-A", date(2026, 1, 1), amount="0")],
            as_of=AS_OF,
        )
        assert groups == {}
