"""
Payments Module Service -- supplier pay runs.

Thin glue layer that:
1. Maintains suppliers, AP invoices, bank profiles and FX rates
2. Selects invoices into a DRAFT pay run under the ``ap_invoice`` lock
   (run item work, never commits)
3. Drives the pay run through approve -> export -> execute, rendering the
   bank file with ``backoffice_engines.payments`` and posting the payment
   journal through JournalService

Every lifecycle method owns its transaction and audits the transition.
"""

from __future__ import annotations

from collections import OrderedDict
from collections.abc import Iterable
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from backoffice_engines.payments import (
    BankFile,
    PaymentInstruction,
    bank_filename,
    pay_amount,
    render_csv,
    render_pain001,
)
from backoffice_kernel.db.types import ZERO, round_rate, validate_currency
from backoffice_kernel.domain.clock import Clock, SystemClock
from backoffice_kernel.domain.periods import Period
from backoffice_kernel.exceptions import (
    BankProfileMissingError,
    MissingFxRateError,
    PayRunStateError,
    ValidationError,
)
from backoffice_kernel.logging_config import get_logger
from backoffice_kernel.models.audit_event import AuditAction
from backoffice_kernel.services.auditor_service import AuditorService
from backoffice_kernel.services.journal_service import (
    JournalLineInput,
    JournalService,
    PostedJournal,
)
from backoffice_kernel.services.lock_service import LockKind, RunLockService
from backoffice_modules.payments.config import PaymentsConfig
from backoffice_modules.payments.models import (
    ApInvoiceStatus,
    BankFileFormat,
    ExportedFile,
    PayLineStatus,
    PayRun,
    PayRunStatus,
    PayRunSummary,
    SelectionOutcome,
    SelectionSkipReason,
)
from backoffice_modules.payments.orm import (
    ApBankFileModel,
    ApBankProfileModel,
    ApFxRateModel,
    ApInvoiceModel,
    ApPayLineModel,
    ApPayRunModel,
    ApRemittanceModel,
    ApSupplierModel,
)
from backoffice_modules.payments.workflows import require_transition

logger = get_logger("modules.payments.service")

ONE = Decimal("1")


def pay_run_journal_key(pay_run_id: UUID) -> str:
    return f"payments:pay_run:{pay_run_id}"


class PaymentsService:
    """
    Supplier payment runs.

    Engine composition:
    - pay_amount: discount and FX
    - render_pain001 / render_csv: bank files
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: PaymentsConfig | None = None,
        auditor: AuditorService | None = None,
        journal: JournalService | None = None,
        locks: RunLockService | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or PaymentsConfig.with_defaults()
        self._auditor = auditor or AuditorService(session, self._clock)
        self._journal = journal or JournalService(session, self._auditor, self._clock)
        self._locks = locks or RunLockService(session, self._auditor, self._clock)

    @property
    def config(self) -> PaymentsConfig:
        return self._config

    # =========================================================================
    # Master data
    # =========================================================================

    def create_supplier(
        self,
        company: str,
        supplier_code: str,
        name: str,
        actor_id: UUID,
        iban: str | None = None,
        bic: str | None = None,
        email: str | None = None,
        bank_active: bool = True,
    ) -> UUID:
        try:
            model = ApSupplierModel(
                company=company,
                supplier_code=supplier_code,
                name=name,
                email=email,
                iban=iban,
                bic=bic,
                bank_active=bank_active,
                created_by_id=actor_id,
            )
            self._session.add(model)
            self._session.flush()
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        logger.info(
            "ap_supplier_created",
            extra={"company": company, "supplier_code": supplier_code},
        )
        return model.id

    def create_invoice(
        self,
        company: str,
        supplier_code: str,
        invoice_no: str,
        invoice_date: date,
        due_date: date,
        gross_amount: Decimal,
        currency: str,
        actor_id: UUID,
        discount_amount: Decimal = ZERO,
        hold_pay: bool = False,
    ) -> UUID:
        validate_currency(currency)
        if gross_amount <= ZERO:
            raise ValidationError("gross_amount", gross_amount, "must be positive")
        if not ZERO <= discount_amount <= gross_amount:
            raise ValidationError(
                "discount_amount", discount_amount, f"must be within [0, {gross_amount}]",
            )
        try:
            supplier = self._supplier(company, supplier_code)
            model = ApInvoiceModel(
                company=company,
                supplier_id=supplier.id,
                invoice_no=invoice_no,
                invoice_date=invoice_date,
                due_date=due_date,
                gross_amount=gross_amount,
                discount_amount=discount_amount,
                currency=currency,
                status=ApInvoiceStatus.OPEN.value,
                hold_pay=hold_pay,
                created_by_id=actor_id,
            )
            self._session.add(model)
            self._session.flush()
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        logger.info(
            "ap_invoice_created",
            extra={
                "company": company,
                "supplier_code": supplier_code,
                "invoice_no": invoice_no,
                "gross_amount": str(gross_amount),
            },
        )
        return model.id

    def set_hold(self, invoice_id: UUID, hold_pay: bool, actor_id: UUID) -> None:
        try:
            invoice = self._invoice(invoice_id)
            invoice.hold_pay = hold_pay
            invoice.updated_by_id = actor_id
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        logger.info(
            "ap_invoice_hold_changed",
            extra={"invoice_id": str(invoice_id), "hold_pay": hold_pay},
        )

    def add_bank_profile(
        self,
        company: str,
        bank_code: str,
        fmt: BankFileFormat,
        debtor_name: str,
        debtor_iban: str,
        actor_id: UUID,
        debtor_bic: str | None = None,
    ) -> None:
        try:
            self._session.add(
                ApBankProfileModel(
                    company=company,
                    bank_code=bank_code,
                    format=fmt.value,
                    debtor_name=debtor_name,
                    debtor_iban=debtor_iban,
                    debtor_bic=debtor_bic,
                    created_by_id=actor_id,
                )
            )
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

    def set_fx_rate(
        self,
        from_ccy: str,
        to_ccy: str,
        as_of: date,
        rate: Decimal,
        actor_id: UUID,
    ) -> None:
        if rate <= ZERO:
            raise ValidationError("rate", rate, "must be positive")
        try:
            self._session.add(
                ApFxRateModel(
                    from_ccy=validate_currency(from_ccy),
                    to_ccy=validate_currency(to_ccy),
                    as_of=as_of,
                    rate=round_rate(rate),
                    created_by_id=actor_id,
                )
            )
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

    # =========================================================================
    # Lookups
    # =========================================================================

    def _supplier(self, company: str, supplier_code: str) -> ApSupplierModel:
        supplier = self._session.execute(
            select(ApSupplierModel).where(
                ApSupplierModel.company == company,
                ApSupplierModel.supplier_code == supplier_code,
            )
        ).scalar_one_or_none()
        if supplier is None:
            raise ValidationError("supplier_code", supplier_code, f"no such supplier for {company}")
        return supplier

    def _invoice(self, invoice_id: UUID) -> ApInvoiceModel:
        invoice = self._session.get(ApInvoiceModel, invoice_id)
        if invoice is None:
            raise ValidationError("invoice_id", invoice_id, "no such AP invoice")
        return invoice

    def _pay_run_for_update(self, pay_run_id: UUID) -> ApPayRunModel:
        model = self._session.execute(
            select(ApPayRunModel)
            .where(ApPayRunModel.id == pay_run_id)
            .with_for_update()
        ).scalar_one_or_none()
        if model is None:
            raise ValidationError("pay_run_id", pay_run_id, "no such pay run")
        return model

    def fx_rate(self, from_ccy: str, to_ccy: str, as_of: date) -> Decimal:
        """Latest rate effective on or before ``as_of``.

        Raises:
            MissingFxRateError: No rate on or before ``as_of``.
        """
        if from_ccy == to_ccy:
            return ONE
        rate = self._session.execute(
            select(ApFxRateModel.rate)
            .where(
                ApFxRateModel.from_ccy == from_ccy,
                ApFxRateModel.to_ccy == to_ccy,
                ApFxRateModel.as_of <= as_of,
            )
            .order_by(ApFxRateModel.as_of.desc())
            .limit(1)
        ).scalar_one_or_none()
        if rate is None:
            raise MissingFxRateError(from_ccy, to_ccy, as_of.isoformat())
        return round_rate(rate)

    def get_pay_run(self, pay_run_id: UUID) -> PayRun:
        model = self._session.get(ApPayRunModel, pay_run_id)
        if model is None:
            raise ValidationError("pay_run_id", pay_run_id, "no such pay run")
        return model.to_dto()

    def require_draft(self, pay_run_id: UUID) -> PayRun:
        """The pay run, which must still accept selections.

        Raises:
            PayRunStateError: The pay run is not DRAFT.
        """
        pay_run = self.get_pay_run(pay_run_id)
        if pay_run.status != PayRunStatus.DRAFT:
            raise PayRunStateError(str(pay_run_id), pay_run.status.value, "select invoices for")
        return pay_run

    def open_invoices(
        self,
        company: str,
        suppliers: Iterable[str] | None = None,
        due_on_or_before: date | None = None,
    ) -> list[ApInvoiceModel]:
        """OPEN invoices ordered by (due_date, supplier code, invoice number)."""
        stmt = (
            select(ApInvoiceModel)
            .join(ApSupplierModel, ApInvoiceModel.supplier_id == ApSupplierModel.id)
            .where(
                ApInvoiceModel.company == company,
                ApInvoiceModel.status == ApInvoiceStatus.OPEN.value,
            )
        )
        if suppliers:
            stmt = stmt.where(ApSupplierModel.supplier_code.in_(list(suppliers)))
        if due_on_or_before is not None:
            stmt = stmt.where(ApInvoiceModel.due_date <= due_on_or_before)
        stmt = stmt.order_by(
            ApInvoiceModel.due_date, ApSupplierModel.supplier_code, ApInvoiceModel.invoice_no,
        )
        return list(self._session.execute(stmt).scalars())

    def lines(self, pay_run_id: UUID) -> list[ApPayLineModel]:
        return list(
            self._session.execute(
                select(ApPayLineModel)
                .join(ApInvoiceModel, ApPayLineModel.invoice_id == ApInvoiceModel.id)
                .join(ApSupplierModel, ApPayLineModel.supplier_id == ApSupplierModel.id)
                .where(
                    ApPayLineModel.pay_run_id == pay_run_id,
                    ApPayLineModel.status != PayLineStatus.CANCELLED.value,
                )
                .order_by(
                    ApInvoiceModel.due_date,
                    ApSupplierModel.supplier_code,
                    ApInvoiceModel.invoice_no,
                )
            ).scalars()
        )

    def summary(self, pay_run_id: UUID) -> PayRunSummary:
        pay_run = self.get_pay_run(pay_run_id)
        lines = self.lines(pay_run_id)
        return PayRunSummary(
            pay_run_id=pay_run_id,
            status=pay_run.status,
            total_lines=len(lines),
            total_amount=sum((line.amount for line in lines), ZERO),
            suppliers_count=len({line.supplier_id for line in lines}),
        )

    # =========================================================================
    # Pay run lifecycle
    # =========================================================================

    def _audit_transition(
        self,
        model: ApPayRunModel,
        from_status: str | None,
        action: str,
        actor_id: UUID,
        **details: object,
    ) -> None:
        self._auditor.record(
            "PayRun",
            model.id,
            AuditAction.PAY_RUN_TRANSITION,
            actor_id,
            {"from": from_status, "to": model.status, "action": action, **details},
        )
        logger.info(
            "pay_run_transition",
            extra={
                "pay_run_id": str(model.id),
                "from_status": from_status,
                "to_status": model.status,
                "action": action,
            },
        )

    def create_pay_run(
        self,
        company: str,
        year: int,
        month: int,
        actor_id: UUID,
        currency: str | None = None,
    ) -> PayRun:
        period = Period(year, month)
        try:
            model = ApPayRunModel(
                company=company,
                year=period.year,
                month=period.month,
                currency=validate_currency(currency or self._config.default_currency),
                status=PayRunStatus.DRAFT.value,
                created_by_id=actor_id,
            )
            self._session.add(model)
            self._session.flush()
            self._audit_transition(model, None, "create", actor_id)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        return model.to_dto()

    def select_invoice(
        self,
        pay_run_id: UUID,
        invoice_id: UUID,
        run_id: UUID,
        actor_id: UUID,
        min_amount: Decimal | None = None,
    ) -> SelectionOutcome:
        """
        Add one invoice to a DRAFT pay run and lock it.  Does NOT commit.

        Raises:
            MissingFxRateError: The invoice currency differs from the pay
                run's and no rate exists.
            LockHeldError: Another run locked the invoice concurrently.
        """
        pay_run = self.require_draft(pay_run_id)
        invoice = self._invoice(invoice_id)
        supplier = invoice.supplier
        outcome = dict(
            invoice_id=invoice.id,
            invoice_no=invoice.invoice_no,
            supplier_code=supplier.supplier_code,
        )

        if self._locks.is_locked(LockKind.AP_INVOICE, pay_run.company, str(invoice.id)):
            return SelectionOutcome(**outcome, skip_reason=SelectionSkipReason.LOCKED)
        if not supplier.has_bank:
            return SelectionOutcome(**outcome, skip_reason=SelectionSkipReason.NO_BANK)
        if invoice.hold_pay:
            return SelectionOutcome(**outcome, skip_reason=SelectionSkipReason.ON_HOLD)

        fx_rate = self.fx_rate(invoice.currency, pay_run.currency, self._clock.today())
        amount = pay_amount(invoice.gross_amount, invoice.discount_amount, fx_rate)
        if min_amount is not None and amount < min_amount:
            return SelectionOutcome(
                **outcome,
                amount=amount,
                currency=pay_run.currency,
                skip_reason=SelectionSkipReason.BELOW_MIN,
            )

        line = ApPayLineModel(
            pay_run_id=pay_run.pay_run_id,
            invoice_id=invoice.id,
            supplier_id=supplier.id,
            amount=amount,
            currency=pay_run.currency,
            fx_rate=fx_rate,
            status=PayLineStatus.SELECTED.value,
            selection_run_id=run_id,
            created_by_id=actor_id,
        )
        self._session.add(line)
        self._session.flush()
        self._locks.acquire(
            LockKind.AP_INVOICE, pay_run.company, str(invoice.id), actor_id, run_id=run_id,
        )

        logger.info(
            "ap_invoice_selected",
            extra={
                "pay_run_id": str(pay_run_id),
                "invoice_no": invoice.invoice_no,
                "amount": str(amount),
            },
        )
        return SelectionOutcome(
            **outcome,
            amount=amount,
            currency=pay_run.currency,
            fx_rate=fx_rate,
            due_date=invoice.due_date,
            pay_line_id=line.id,
        )

    def approve(self, pay_run_id: UUID, actor_id: UUID) -> PayRun:
        """DRAFT -> APPROVED.  The pay run must have at least one line."""
        try:
            model = self._pay_run_for_update(pay_run_id)
            from_status = model.status
            require_transition(str(pay_run_id), PayRunStatus(from_status), "approve")
            if not self.lines(pay_run_id):
                raise PayRunStateError(str(pay_run_id), from_status, "approve (no lines)")
            model.status = PayRunStatus.APPROVED.value
            model.approved_by_id = actor_id
            model.approved_at = self._clock.now()
            model.updated_by_id = actor_id
            self._session.flush()
            self._audit_transition(model, from_status, "approve", actor_id)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        return model.to_dto()

    def export(self, pay_run_id: UUID, bank_code: str, actor_id: UUID) -> ExportedFile:
        """
        APPROVED -> EXPORTED.  Renders and stores the bank file and queues
        one remittance advice per supplier.

        Raises:
            PayRunStateError: The pay run is not APPROVED.
            BankProfileMissingError: No profile for ``bank_code``.
        """
        try:
            model = self._pay_run_for_update(pay_run_id)
            from_status = model.status
            require_transition(str(pay_run_id), PayRunStatus(from_status), "export")

            profile = self._session.execute(
                select(ApBankProfileModel).where(
                    ApBankProfileModel.company == model.company,
                    ApBankProfileModel.bank_code == bank_code,
                )
            ).scalar_one_or_none()
            if profile is None:
                raise BankProfileMissingError(model.company, bank_code)

            lines = self.lines(pay_run_id)
            instructions = [
                PaymentInstruction(
                    instruction_id=f"{i:05d}",
                    supplier_id=line.supplier.supplier_code,
                    supplier_name=line.supplier.name,
                    invoice_ref=line.invoice.invoice_no,
                    amount=line.amount,
                    currency=line.currency,
                    iban=line.supplier.iban or "",
                    bic=line.supplier.bic,
                    due_date=line.invoice.due_date,
                )
                for i, line in enumerate(lines, start=1)
            ]
            fmt = BankFileFormat(profile.format)
            if fmt == BankFileFormat.PAIN_001:
                content = render_pain001(
                    message_id=f"PAY-{model.id.hex[:16].upper()}",
                    created_at=self._clock.now(),
                    execution_date=self._clock.today(),
                    debtor_name=profile.debtor_name,
                    debtor_iban=profile.debtor_iban,
                    debtor_bic=profile.debtor_bic,
                    instructions=instructions,
                )
            else:
                content = render_csv(instructions)
            bank_file = BankFile(
                filename=bank_filename(
                    model.company, model.year, model.month, str(model.id), fmt.value,
                ),
                format=fmt.value,
                content=content,
            )
            total = sum((line.amount for line in lines), ZERO)
            file_model = ApBankFileModel(
                pay_run_id=model.id,
                bank_code=bank_code,
                filename=bank_file.filename,
                format=bank_file.format,
                content=bank_file.content,
                checksum=bank_file.checksum,
                line_count=len(lines),
                total_amount=total,
                created_by_id=actor_id,
            )
            self._session.add(file_model)

            by_supplier: OrderedDict[UUID, list[ApPayLineModel]] = OrderedDict()
            for line in lines:
                by_supplier.setdefault(line.supplier_id, []).append(line)
            for supplier_lines in by_supplier.values():
                supplier = supplier_lines[0].supplier
                self._session.add(
                    ApRemittanceModel(
                        pay_run_id=model.id,
                        supplier_id=supplier.id,
                        email=supplier.email,
                        amount=sum((line.amount for line in supplier_lines), ZERO),
                        currency=model.currency,
                        invoice_count=len(supplier_lines),
                        created_by_id=actor_id,
                    )
                )

            model.status = PayRunStatus.EXPORTED.value
            model.exported_at = self._clock.now()
            model.updated_by_id = actor_id
            self._session.flush()
            self._audit_transition(
                model, from_status, "export", actor_id,
                bank_code=bank_code, checksum=bank_file.checksum,
            )
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        return ExportedFile(
            bank_file_id=file_model.id,
            filename=bank_file.filename,
            format=fmt,
            checksum=bank_file.checksum,
            line_count=len(instructions),
            total_amount=total,
            remittances_queued=len(by_supplier),
        )

    def execute(self, pay_run_id: UUID, actor_id: UUID) -> PostedJournal:
        """
        EXPORTED -> EXECUTED.  Posts Dr AP per line and Cr bank for the
        total, marks lines and invoices PAID and releases the invoice locks.
        """
        try:
            model = self._pay_run_for_update(pay_run_id)
            from_status = model.status
            require_transition(str(pay_run_id), PayRunStatus(from_status), "execute")

            lines = self.lines(pay_run_id)
            total = sum((line.amount for line in lines), ZERO)
            journal_lines = [
                JournalLineInput.dr(
                    self._config.ap_account,
                    line.amount,
                    description=f"Pay {line.supplier.supplier_code} {line.invoice.invoice_no}",
                )
                for line in lines
            ]
            journal_lines.append(
                JournalLineInput.cr(
                    self._config.bank_account, total, description="Payment run",
                )
            )
            period = Period(model.year, model.month)
            posted = self._journal.post(
                company=model.company,
                entry_date=self._clock.today(),
                lines=journal_lines,
                memo=f"Pay run {period.key}",
                source=self._config.journal_source,
                idempotency_key=pay_run_journal_key(model.id),
                actor_id=actor_id,
                currency=model.currency,
            )

            for line in lines:
                line.status = PayLineStatus.PAID.value
                line.invoice.status = ApInvoiceStatus.PAID.value
                line.invoice.updated_by_id = actor_id
                self._locks.release(
                    LockKind.AP_INVOICE, model.company, str(line.invoice_id), actor_id,
                )

            model.status = PayRunStatus.EXECUTED.value
            model.executed_at = self._clock.now()
            model.journal_entry_id = posted.entry_id
            model.updated_by_id = actor_id
            self._session.flush()
            self._audit_transition(
                model, from_status, "execute", actor_id,
                journal_entry_id=str(posted.entry_id),
            )
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        return posted

    def cancel(self, pay_run_id: UUID, reason: str, actor_id: UUID) -> PayRun:
        """DRAFT/APPROVED -> CANCELLED.  Releases the invoice locks."""
        try:
            model = self._pay_run_for_update(pay_run_id)
            from_status = model.status
            require_transition(str(pay_run_id), PayRunStatus(from_status), "cancel")
            for line in self.lines(pay_run_id):
                line.status = PayLineStatus.CANCELLED.value
                self._locks.release(
                    LockKind.AP_INVOICE, model.company, str(line.invoice_id), actor_id,
                )
            model.status = PayRunStatus.CANCELLED.value
            model.updated_by_id = actor_id
            self._session.flush()
            self._audit_transition(model, from_status, "cancel", actor_id, reason=reason)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        return model.to_dto()
