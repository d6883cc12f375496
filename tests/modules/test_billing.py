"""
Billing: catalog setup, ``billing.invoice_run`` runs and the invoice
lifecycle (DRAFT -> FINAL -> POSTED).
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from backoffice_engines.billing import ChargeKind
from backoffice_kernel.domain.periods import Period
from backoffice_kernel.exceptions import (
    InvoiceStateError,
    MissingFxRateError,
    ValidationError,
)
from backoffice_kernel.services.lock_service import LockKind
from backoffice_modules.billing.config import BillingConfig
from backoffice_modules.billing.models import InvoiceStatus, SubscriptionStatus
from backoffice_modules.billing.service import BillingService
from backoffice_runs.domain.types import RunItemStatus, RunStatus

JAN_START = date(2026, 1, 1)
JAN_END = date(2026, 1, 31)


@pytest.fixture
def service(session, clock, auditor, journal, locks):
    return BillingService(session, clock, auditor=auditor, journal=journal, locks=locks)


@pytest.fixture
def subscription_id(service, company, actor_id):
    service.create_product(company, "PLAN-PRO", "Pro plan", ChargeKind.RECURRING, actor_id)
    service.set_price(company, "PLAN-PRO", "USD", Decimal("100.00"), actor_id)
    return service.create_subscription(
        company=company,
        customer_id="CUST-1",
        sku="PLAN-PRO",
        quantity=Decimal("2"),
        bill_anchor=date(2026, 1, 5),
        price_currency="USD",
        actor_id=actor_id,
    )


class TestCatalog:
    def test_negative_price_rejected(self, service, company, actor_id):
        service.create_product(company, "X", "X", ChargeKind.RECURRING, actor_id)
        with pytest.raises(ValidationError):
            service.set_price(company, "X", "USD", Decimal("-1"), actor_id)

    def test_unknown_sku_rejected(self, service, company, actor_id):
        with pytest.raises(ValidationError):
            service.set_price(company, "NOPE", "USD", Decimal("1"), actor_id)

    def test_only_active_anchored_subscriptions_are_due(
        self, service, company, actor_id, subscription_id,
    ):
        assert [s.subscription_id for s in service.due_subscriptions(company, JAN_START, JAN_END)] == [
            subscription_id
        ]
        assert service.due_subscriptions(company, date(2026, 2, 1), date(2026, 2, 28)) == []

        service.set_subscription_status(subscription_id, SubscriptionStatus.PAUSED, actor_id)
        assert service.due_subscriptions(company, JAN_START, JAN_END) == []

    def test_fx_rate_uses_latest_on_or_before(self, service, actor_id):
        service.set_fx_rate("EUR", "USD", date(2026, 1, 1), Decimal("1.10"), actor_id)
        service.set_fx_rate("EUR", "USD", date(2026, 1, 20), Decimal("1.20"), actor_id)

        assert service.fx_rate("EUR", "USD", date(2026, 1, 15)) == Decimal("1.10")
        assert service.fx_rate("EUR", "USD", date(2026, 1, 31)) == Decimal("1.20")
        assert service.fx_rate("USD", "USD", date(2026, 1, 31)) == Decimal("1")
        with pytest.raises(MissingFxRateError):
            service.fx_rate("EUR", "USD", date(2025, 12, 31))


class TestInvoiceRun:
    def test_dry_run_creates_no_invoices(self, orchestrator, service, company, subscription_id):
        result = orchestrator.run_billing(company, JAN_START, JAN_END)

        assert result.status == RunStatus.COMPLETED
        assert result.summary["invoices_created"] == 1
        assert Decimal(result.summary["total_amount"]) == Decimal("200")
        assert result.summary["currency"] == "USD"
        assert result.summary["customers"] == ["CUST-1"]
        assert service.list_invoices(company) == []

    def test_commit_creates_draft_invoice(
        self, orchestrator, service, company, clock, subscription_id,
    ):
        result = orchestrator.run_billing(company, JAN_START, JAN_END, dry_run=False)

        assert result.status == RunStatus.COMPLETED
        (invoice,) = service.list_invoices(company, InvoiceStatus.DRAFT)
        assert invoice.invoice_no.startswith("INV-")
        assert len(invoice.invoice_no) == len("INV-000001")
        assert invoice.customer_id == "CUST-1"
        assert invoice.total == Decimal("200")
        assert invoice.issue_date == clock.today()
        assert invoice.due_date == date(2026, 3, 2)
        assert invoice.lines[0].description == "PLAN-PRO subscription x 2"
        assert invoice.lines[0].revenue_account == "4000"

        (item,) = result.item_results
        assert item.item_key == f"CUST-1:{subscription_id}"
        assert item.result_data["invoice_no"] == invoice.invoice_no

    def test_already_billed_period_is_skipped(
        self, orchestrator, service, company, subscription_id,
    ):
        orchestrator.run_billing(company, JAN_START, JAN_END, dry_run=False)
        again = orchestrator.run_billing(
            company, JAN_START, JAN_END, dry_run=False, idempotency_key="billing-again",
        )

        assert again.status == RunStatus.PARTIALLY_COMPLETED
        (item,) = again.item_results
        assert item.status == RunItemStatus.SKIPPED
        assert item.error_code == "ALREADY_BILLED"
        assert len(service.list_invoices(company)) == 1

    def test_foreign_price_is_converted(self, orchestrator, service, company, actor_id):
        service.create_product(company, "PLAN-EU", "EU plan", ChargeKind.RECURRING, actor_id)
        service.set_price(company, "PLAN-EU", "EUR", Decimal("100.00"), actor_id)
        service.create_subscription(
            company, "CUST-EU", "PLAN-EU", Decimal("2"), date(2026, 1, 10), "EUR", actor_id,
        )
        service.set_fx_rate("EUR", "USD", date(2026, 1, 1), Decimal("1.10"), actor_id)

        orchestrator.run_billing(company, JAN_START, JAN_END, present_ccy="USD", dry_run=False)

        (invoice,) = service.list_invoices(company)
        assert invoice.currency == "USD"
        assert invoice.fx_rate == Decimal("1.10")
        assert invoice.total == Decimal("220")

    def test_stored_rate_rounds_half_cent_up(self, orchestrator, service, session, company, actor_id):
        service.create_product(company, "ADDON", "EU add-on", ChargeKind.RECURRING, actor_id)
        service.set_price(company, "ADDON", "EUR", Decimal("0.10"), actor_id)
        service.create_subscription(
            company, "CUST-EU", "ADDON", Decimal("1"), date(2026, 1, 10), "EUR", actor_id,
        )
        service.set_fx_rate("EUR", "USD", date(2026, 1, 1), Decimal("1.15"), actor_id)
        session.expire_all()

        orchestrator.run_billing(company, JAN_START, JAN_END, present_ccy="USD", dry_run=False)
        session.expire_all()

        (invoice,) = service.list_invoices(company)
        assert invoice.fx_rate == Decimal("1.15")
        assert invoice.lines[0].amount == Decimal("0.12")

    def test_missing_fx_rate_fails_the_item(self, orchestrator, service, company, actor_id):
        service.create_product(company, "PLAN-EU", "EU plan", ChargeKind.RECURRING, actor_id)
        service.set_price(company, "PLAN-EU", "EUR", Decimal("100.00"), actor_id)
        service.create_subscription(
            company, "CUST-EU", "PLAN-EU", Decimal("1"), date(2026, 1, 10), "EUR", actor_id,
        )

        result = orchestrator.run_billing(company, JAN_START, JAN_END, dry_run=False)

        assert result.status == RunStatus.FAILED
        (item,) = result.item_results
        assert item.error_code == "MISSING_FX_RATE"
        assert service.list_invoices(company) == []

    def test_usage_is_summed_within_the_period(self, orchestrator, service, company, actor_id):
        service.create_product(company, "METER", "Metered API", ChargeKind.USAGE, actor_id)
        service.set_price(company, "METER", "USD", Decimal("10.00"), actor_id)
        sub_id = service.create_subscription(
            company, "CUST-2", "METER", Decimal("1"), date(2026, 1, 1), "USD", actor_id,
        )
        service.record_usage(sub_id, date(2026, 1, 3), Decimal("3"), actor_id)
        service.record_usage(sub_id, date(2026, 1, 28), Decimal("4"), actor_id)
        service.record_usage(sub_id, date(2026, 2, 2), Decimal("50"), actor_id)

        orchestrator.run_billing(company, JAN_START, JAN_END, dry_run=False)

        (invoice,) = service.list_invoices(company)
        assert invoice.total == Decimal("70")
        assert invoice.lines[0].description == "METER usage x 7"

    def test_end_before_start_is_rejected_before_submit(self, orchestrator, company):
        with pytest.raises(ValidationError):
            orchestrator.run_billing(company, JAN_END, JAN_START, dry_run=False)

    def test_invalid_currency_is_rejected(self, orchestrator, company):
        with pytest.raises(ValidationError):
            orchestrator.run_billing(company, JAN_START, JAN_END, present_ccy="ZZZ")


class TestInvoiceLifecycle:
    @pytest.fixture
    def invoice_id(self, orchestrator, service, company, subscription_id):
        orchestrator.run_billing(company, JAN_START, JAN_END, dry_run=False)
        return service.list_invoices(company)[0].invoice_id

    def test_finalize_then_post(self, service, journal, locks, company, actor_id, invoice_id):
        assert service.finalize_invoice(invoice_id, actor_id).status == InvoiceStatus.FINAL

        posted = service.post_invoice(invoice_id, actor_id)

        invoice = service.get_invoice(invoice_id)
        assert invoice.status == InvoiceStatus.POSTED
        assert invoice.journal_entry_id == posted.entry_id
        assert locks.is_locked(LockKind.INVOICE_POST, company, str(invoice_id))

        balances = {
            row.account: row.balance for row in journal.trial_balance(company, Period(2026, 2))
        }
        assert balances == {"1200": Decimal("200"), "4000": Decimal("-200")}

    def test_post_requires_final(self, service, actor_id, invoice_id):
        with pytest.raises(InvoiceStateError):
            service.post_invoice(invoice_id, actor_id)

    def test_finalize_requires_draft(self, service, actor_id, invoice_id):
        service.finalize_invoice(invoice_id, actor_id)
        with pytest.raises(InvoiceStateError):
            service.finalize_invoice(invoice_id, actor_id)

    def test_posted_invoice_cannot_post_twice(self, service, actor_id, invoice_id):
        service.finalize_invoice(invoice_id, actor_id)
        service.post_invoice(invoice_id, actor_id)
        with pytest.raises(InvoiceStateError):
            service.post_invoice(invoice_id, actor_id)


class TestTaxPosting:
    def test_tax_is_credited_to_tax_payable(
        self, session, clock, auditor, journal, locks, company, actor_id,
    ):
        service = BillingService(
            session,
            clock,
            config=BillingConfig(tax_rate=Decimal("0.10")),
            auditor=auditor,
            journal=journal,
            locks=locks,
        )
        service.create_product(
            company, "PLAN-TAX", "Taxed plan", ChargeKind.RECURRING, actor_id,
            gl_revenue_account="4100",
        )
        service.set_price(company, "PLAN-TAX", "USD", Decimal("100.00"), actor_id)
        sub_id = service.create_subscription(
            company, "CUST-T", "PLAN-TAX", Decimal("1"), date(2026, 1, 1), "USD", actor_id,
        )

        outcome = service.bill_subscription(sub_id, JAN_START, JAN_END, "USD", uuid4(), actor_id)
        session.commit()
        service.finalize_invoice(outcome.invoice_id, actor_id)
        service.post_invoice(outcome.invoice_id, actor_id)

        balances = {
            row.account: row.balance for row in journal.trial_balance(company, Period(2026, 2))
        }
        assert balances == {
            "1200": Decimal("110"),
            "4100": Decimal("-100"),
            "2200": Decimal("-10"),
        }
