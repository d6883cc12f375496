"""
Payments: ``payments.select`` runs and the pay run lifecycle.

Open AP invoices for ACME (pay run currency USD):

    SUP-A  A-1  due 2026-02-10  1000 less 20 discount  -> 980
    SUP-A  A-2  due 2026-02-20   500 on hold
    SUP-A  A-3  due 2026-03-15    50
    SUP-B  B-1  due 2026-02-05   300 (supplier has no bank account)
"""

from datetime import date
from decimal import Decimal

import pytest

from backoffice_engines.payments import PAIN_001_NAMESPACE
from backoffice_kernel.domain.periods import Period
from backoffice_kernel.exceptions import (
    BankProfileMissingError,
    PayRunStateError,
    ValidationError,
)
from backoffice_kernel.services.lock_service import LockKind
from backoffice_modules.payments.models import (
    ApInvoiceStatus,
    BankFileFormat,
    PayRunStatus,
)
from backoffice_modules.payments.orm import ApBankFileModel, ApInvoiceModel
from backoffice_modules.payments.service import PaymentsService
from backoffice_runs.domain.types import RunItemStatus, RunStatus


@pytest.fixture
def ap(session, clock, auditor, journal, locks):
    return PaymentsService(session, clock, auditor=auditor, journal=journal, locks=locks)


@pytest.fixture
def invoices(ap, company, actor_id):
    ap.create_supplier(
        company, "SUP-A", "Acme Parts", actor_id,
        iban="DE89370400440532013000", bic="COBADEFFXXX", email="ap@acme-parts.test",
    )
    ap.create_supplier(company, "SUP-B", "No Bank Ltd", actor_id)
    return {
        "A-1": ap.create_invoice(
            company, "SUP-A", "A-1", date(2026, 1, 10), date(2026, 2, 10),
            Decimal("1000.00"), "USD", actor_id, discount_amount=Decimal("20.00"),
        ),
        "A-2": ap.create_invoice(
            company, "SUP-A", "A-2", date(2026, 1, 20), date(2026, 2, 20),
            Decimal("500.00"), "USD", actor_id, hold_pay=True,
        ),
        "A-3": ap.create_invoice(
            company, "SUP-A", "A-3", date(2026, 1, 25), date(2026, 3, 15),
            Decimal("50.00"), "USD", actor_id,
        ),
        "B-1": ap.create_invoice(
            company, "SUP-B", "B-1", date(2026, 1, 5), date(2026, 2, 5),
            Decimal("300.00"), "USD", actor_id,
        ),
    }


@pytest.fixture
def pay_run(ap, company, actor_id):
    return ap.create_pay_run(company, 2026, 2, actor_id)


@pytest.fixture
def bank_profile(ap, company, actor_id):
    ap.add_bank_profile(
        company, "BANK1", BankFileFormat.PAIN_001, "ACME Corp",
        "GB33BUKB20201555555555", actor_id, debtor_bic="BUKBGB22",
    )


def select_committed(orchestrator, company, pay_run, **kwargs):
    return orchestrator.select_payments(
        company, pay_run.pay_run_id, dry_run=False, min_amount=Decimal("100"), **kwargs,
    )


class TestSelection:
    def test_dry_run_previews_without_locking(
        self, orchestrator, ap, locks, company, invoices, pay_run,
    ):
        result = orchestrator.select_payments(company, pay_run.pay_run_id)

        assert result.status == RunStatus.PARTIALLY_COMPLETED
        assert result.summary["selected_count"] == 2
        assert Decimal(result.summary["total_amount"]) == Decimal("1030")
        assert result.summary["skipped"] == {"NO_BANK": 1, "ON_HOLD": 1}
        assert result.summary["dry_run"] is True
        assert ap.lines(pay_run.pay_run_id) == []
        assert locks.held(LockKind.AP_INVOICE, company) == []

    def test_items_are_ordered_by_due_date(self, orchestrator, company, invoices, pay_run):
        result = orchestrator.select_payments(company, pay_run.pay_run_id)
        assert [r.item_key for r in result.item_results] == [
            "SUP-B:B-1", "SUP-A:A-1", "SUP-A:A-2", "SUP-A:A-3",
        ]

    def test_commit_selects_and_locks(self, orchestrator, ap, locks, company, invoices, pay_run):
        result = select_committed(orchestrator, company, pay_run)

        assert result.summary["selected_count"] == 1
        assert result.summary["skipped"] == {"NO_BANK": 1, "ON_HOLD": 1, "BELOW_MIN": 1}
        (line,) = ap.lines(pay_run.pay_run_id)
        assert line.amount == Decimal("980")
        assert locks.held(LockKind.AP_INVOICE, company) == [str(invoices["A-1"])]

        summary = ap.summary(pay_run.pay_run_id)
        assert summary.total_lines == 1
        assert summary.total_amount == Decimal("980")
        assert summary.suppliers_count == 1

    def test_filters_by_supplier_and_due_date(self, orchestrator, company, invoices, pay_run):
        result = orchestrator.select_payments(
            company, pay_run.pay_run_id, suppliers=["SUP-A"], due_on_or_before=date(2026, 2, 28),
        )
        assert [r.item_key for r in result.item_results] == ["SUP-A:A-1", "SUP-A:A-2"]

    def test_invoice_locked_by_another_pay_run_is_skipped(
        self, orchestrator, ap, company, actor_id, invoices, pay_run,
    ):
        select_committed(orchestrator, company, pay_run)
        other = ap.create_pay_run(company, 2026, 2, actor_id)

        result = select_committed(orchestrator, company, other)

        by_key = {r.item_key: r for r in result.item_results}
        assert by_key["SUP-A:A-1"].status == RunItemStatus.SKIPPED
        assert by_key["SUP-A:A-1"].error_code == "LOCKED"
        assert ap.lines(other.pay_run_id) == []

    def test_foreign_invoice_is_converted(
        self, orchestrator, ap, company, actor_id, invoices, pay_run,
    ):
        ap.create_invoice(
            company, "SUP-A", "A-EU", date(2026, 1, 12), date(2026, 2, 12),
            Decimal("100.00"), "EUR", actor_id,
        )
        ap.set_fx_rate("EUR", "USD", date(2026, 1, 1), Decimal("1.10"), actor_id)

        result = select_committed(orchestrator, company, pay_run)

        by_key = {r.item_key: r for r in result.item_results}
        assert Decimal(by_key["SUP-A:A-EU"].result_data["amount"]) == Decimal("110")

    def test_stored_rate_is_exact_on_a_half_cent(
        self, orchestrator, ap, session, company, actor_id, invoices, pay_run,
    ):
        eu_invoice = ap.create_invoice(
            company, "SUP-A", "A-EU", date(2026, 1, 12), date(2026, 2, 12),
            Decimal("100.10"), "EUR", actor_id,
        )
        ap.set_fx_rate("EUR", "USD", date(2026, 1, 1), Decimal("1.15"), actor_id)
        session.expire_all()

        assert ap.fx_rate("EUR", "USD", date(2026, 1, 31)) == Decimal("1.150000000")

        result = select_committed(orchestrator, company, pay_run)

        by_key = {r.item_key: r for r in result.item_results}
        assert Decimal(by_key["SUP-A:A-EU"].result_data["amount"]) == Decimal("115.12")
        session.expire_all()
        (line,) = [l for l in ap.lines(pay_run.pay_run_id) if l.invoice_id == eu_invoice]
        assert line.fx_rate == Decimal("1.15")

    def test_missing_fx_rate_fails_the_item(
        self, orchestrator, ap, company, actor_id, invoices, pay_run,
    ):
        ap.create_invoice(
            company, "SUP-A", "A-EU", date(2026, 1, 12), date(2026, 2, 12),
            Decimal("100.00"), "EUR", actor_id,
        )
        result = select_committed(orchestrator, company, pay_run)

        by_key = {r.item_key: r for r in result.item_results}
        assert by_key["SUP-A:A-EU"].status == RunItemStatus.FAILED
        assert by_key["SUP-A:A-EU"].error_code == "MISSING_FX_RATE"
        assert result.status == RunStatus.PARTIALLY_COMPLETED

    def test_pay_run_must_be_draft(self, orchestrator, ap, company, actor_id, invoices, pay_run):
        select_committed(orchestrator, company, pay_run)
        ap.approve(pay_run.pay_run_id, actor_id)

        with pytest.raises(PayRunStateError):
            orchestrator.select_payments(company, pay_run.pay_run_id, dry_run=False)

    def test_pay_run_must_belong_to_company(self, orchestrator, ap, actor_id, invoices):
        foreign = ap.create_pay_run("GLOBEX", 2026, 2, actor_id)
        with pytest.raises(ValidationError):
            orchestrator.select_payments("ACME", foreign.pay_run_id)


class TestLifecycle:
    @pytest.fixture
    def selected(self, orchestrator, company, invoices, pay_run):
        select_committed(orchestrator, company, pay_run)
        return pay_run

    def test_approve_export_execute(
        self, ap, journal, locks, session, company, actor_id, invoices, selected, bank_profile,
    ):
        assert ap.approve(selected.pay_run_id, actor_id).status == PayRunStatus.APPROVED

        exported = ap.export(selected.pay_run_id, "BANK1", actor_id)
        assert exported.format == BankFileFormat.PAIN_001
        assert exported.line_count == 1
        assert exported.total_amount == Decimal("980")
        assert exported.remittances_queued == 1
        assert len(exported.checksum) == 64

        xml = session.get(ApBankFileModel, exported.bank_file_id).content.decode("utf-8")
        assert PAIN_001_NAMESPACE in xml
        assert "DE89370400440532013000" in xml

        posted = ap.execute(selected.pay_run_id, actor_id)

        pay_run = ap.get_pay_run(selected.pay_run_id)
        assert pay_run.status == PayRunStatus.EXECUTED
        assert pay_run.journal_entry_id == posted.entry_id
        assert session.get(ApInvoiceModel, invoices["A-1"]).status == ApInvoiceStatus.PAID.value
        assert locks.held(LockKind.AP_INVOICE, company) == []

        balances = {
            row.account: row.balance for row in journal.trial_balance(company, Period(2026, 2))
        }
        assert balances == {"2000": Decimal("980"), "1000": Decimal("-980")}

    def test_csv_export(self, ap, company, actor_id, selected):
        ap.add_bank_profile(
            company, "CSVBANK", BankFileFormat.CSV, "ACME Corp", "GB33BUKB20201555555555", actor_id,
        )
        ap.approve(selected.pay_run_id, actor_id)

        exported = ap.export(selected.pay_run_id, "CSVBANK", actor_id)

        assert exported.format == BankFileFormat.CSV
        assert exported.filename == f"PAY_ACME_202602_{selected.pay_run_id}.csv"

    def test_approve_requires_lines(self, ap, actor_id, pay_run):
        with pytest.raises(PayRunStateError):
            ap.approve(pay_run.pay_run_id, actor_id)
        assert ap.get_pay_run(pay_run.pay_run_id).status == PayRunStatus.DRAFT

    def test_export_requires_approval(self, ap, actor_id, selected, bank_profile):
        with pytest.raises(PayRunStateError):
            ap.export(selected.pay_run_id, "BANK1", actor_id)

    def test_export_requires_bank_profile(self, ap, actor_id, selected):
        ap.approve(selected.pay_run_id, actor_id)
        with pytest.raises(BankProfileMissingError):
            ap.export(selected.pay_run_id, "NOBANK", actor_id)
        assert ap.get_pay_run(selected.pay_run_id).status == PayRunStatus.APPROVED

    def test_execute_requires_export(self, ap, actor_id, selected):
        ap.approve(selected.pay_run_id, actor_id)
        with pytest.raises(PayRunStateError):
            ap.execute(selected.pay_run_id, actor_id)

    def test_cancel_releases_invoices(
        self, orchestrator, ap, locks, company, actor_id, selected,
    ):
        cancelled = ap.cancel(selected.pay_run_id, "wrong batch", actor_id)

        assert cancelled.status == PayRunStatus.CANCELLED
        assert ap.lines(selected.pay_run_id) == []
        assert locks.held(LockKind.AP_INVOICE, company) == []

        fresh = ap.create_pay_run(company, 2026, 2, actor_id)
        result = select_committed(orchestrator, company, fresh)
        assert result.summary["selected_count"] == 1

    def test_exported_pay_run_cannot_be_cancelled(self, ap, actor_id, selected, bank_profile):
        ap.approve(selected.pay_run_id, actor_id)
        ap.export(selected.pay_run_id, "BANK1", actor_id)
        with pytest.raises(PayRunStateError):
            ap.cancel(selected.pay_run_id, "too late", actor_id)
