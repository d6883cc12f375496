"""
Billing Module Service -- catalog, subscriptions and the invoice lifecycle.

Thin glue layer that:
1. Maintains products, prices, subscriptions, usage and FX rates
2. Rates a subscription through ``backoffice_engines.billing`` and stores
   the DRAFT invoice (run item work, never commits)
3. Moves invoices DRAFT -> FINAL -> POSTED, posting the GL entry through
   JournalService under the ``invoice_post`` lock

Catalog and lifecycle methods own their transaction: commit on success,
roll back on failure.
"""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from backoffice_engines.billing import ONE, ChargeKind, rate_subscription
from backoffice_kernel.db.types import ZERO, round_rate, validate_currency
from backoffice_kernel.domain.clock import Clock, SystemClock
from backoffice_kernel.exceptions import (
    InvoiceStateError,
    MissingFxRateError,
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
from backoffice_kernel.services.sequence_service import SequenceService
from backoffice_modules.billing.config import BillingConfig
from backoffice_modules.billing.models import (
    BillingOutcome,
    BillingSkipReason,
    Invoice,
    InvoiceStatus,
    Subscription,
    SubscriptionStatus,
)
from backoffice_modules.billing.orm import (
    BillFxRateModel,
    BillInvoiceLineModel,
    BillInvoiceModel,
    BillPriceBookModel,
    BillPriceModel,
    BillProductModel,
    BillSubscriptionModel,
    BillUsageModel,
)

logger = get_logger("modules.billing.service")

DEFAULT_PRICE_BOOK = "DEFAULT"


def invoice_journal_key(invoice_id: UUID) -> str:
    return f"billing:invoice:{invoice_id}"


class BillingService:
    """
    Subscription billing.

    Engine composition:
    - rate_subscription: line drafts, FX conversion and tax
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: BillingConfig | None = None,
        auditor: AuditorService | None = None,
        journal: JournalService | None = None,
        locks: RunLockService | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or BillingConfig.with_defaults()
        self._auditor = auditor or AuditorService(session, self._clock)
        self._journal = journal or JournalService(session, self._auditor, self._clock)
        self._locks = locks or RunLockService(session, self._auditor, self._clock)
        self._sequence = SequenceService(session)

    @property
    def config(self) -> BillingConfig:
        return self._config

    # =========================================================================
    # Catalog
    # =========================================================================

    def create_product(
        self,
        company: str,
        sku: str,
        name: str,
        kind: ChargeKind,
        actor_id: UUID,
        gl_revenue_account: str | None = None,
    ) -> UUID:
        try:
            model = BillProductModel(
                company=company,
                sku=sku,
                name=name,
                price_model=kind.value,
                gl_revenue_account=gl_revenue_account,
                created_by_id=actor_id,
            )
            self._session.add(model)
            self._session.flush()
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        logger.info("billing_product_created", extra={"company": company, "sku": sku})
        return model.id

    def set_price(
        self,
        company: str,
        sku: str,
        currency: str,
        unit_amount: Decimal,
        actor_id: UUID,
        price_book: str = DEFAULT_PRICE_BOOK,
    ) -> None:
        validate_currency(currency)
        if unit_amount < ZERO:
            raise ValidationError("unit_amount", unit_amount, "must be non-negative")
        try:
            product = self._product(company, sku)
            book = self._price_book(company, price_book, actor_id)
            price = self._session.execute(
                select(BillPriceModel).where(
                    BillPriceModel.price_book_id == book.id,
                    BillPriceModel.product_id == product.id,
                    BillPriceModel.currency == currency,
                )
            ).scalar_one_or_none()
            if price is None:
                self._session.add(
                    BillPriceModel(
                        price_book_id=book.id,
                        product_id=product.id,
                        currency=currency,
                        unit_amount=unit_amount,
                        created_by_id=actor_id,
                    )
                )
            else:
                price.unit_amount = unit_amount
                price.updated_by_id = actor_id
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        logger.info(
            "billing_price_set",
            extra={
                "company": company,
                "sku": sku,
                "currency": currency,
                "unit_amount": str(unit_amount),
                "price_book": price_book,
            },
        )

    def create_subscription(
        self,
        company: str,
        customer_id: str,
        sku: str,
        quantity: Decimal,
        bill_anchor: date,
        price_currency: str,
        actor_id: UUID,
        price_book: str = DEFAULT_PRICE_BOOK,
    ) -> UUID:
        validate_currency(price_currency)
        if quantity < ZERO:
            raise ValidationError("quantity", quantity, "must be non-negative")
        try:
            product = self._product(company, sku)
            book = self._price_book(company, price_book, actor_id)
            model = BillSubscriptionModel(
                company=company,
                customer_id=customer_id,
                product_id=product.id,
                price_book_id=book.id,
                quantity=quantity,
                status=SubscriptionStatus.ACTIVE.value,
                bill_anchor=bill_anchor,
                price_currency=price_currency,
                created_by_id=actor_id,
            )
            self._session.add(model)
            self._session.flush()
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        logger.info(
            "billing_subscription_created",
            extra={"company": company, "customer_id": customer_id, "sku": sku},
        )
        return model.id

    def set_subscription_status(
        self,
        subscription_id: UUID,
        status: SubscriptionStatus,
        actor_id: UUID,
    ) -> None:
        try:
            model = self._subscription(subscription_id)
            model.status = status.value
            model.updated_by_id = actor_id
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

    def record_usage(
        self,
        subscription_id: UUID,
        usage_date: date,
        quantity: Decimal,
        actor_id: UUID,
    ) -> None:
        if quantity < ZERO:
            raise ValidationError("quantity", quantity, "must be non-negative")
        try:
            self._subscription(subscription_id)
            self._session.add(
                BillUsageModel(
                    subscription_id=subscription_id,
                    usage_date=usage_date,
                    quantity=quantity,
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
        validate_currency(from_ccy)
        validate_currency(to_ccy)
        if rate <= ZERO:
            raise ValidationError("rate", rate, "must be positive")
        try:
            self._session.add(
                BillFxRateModel(
                    from_ccy=from_ccy,
                    to_ccy=to_ccy,
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

    def _product(self, company: str, sku: str) -> BillProductModel:
        product = self._session.execute(
            select(BillProductModel).where(
                BillProductModel.company == company,
                BillProductModel.sku == sku,
            )
        ).scalar_one_or_none()
        if product is None:
            raise ValidationError("sku", sku, f"no such product for {company}")
        return product

    def _price_book(self, company: str, code: str, actor_id: UUID) -> BillPriceBookModel:
        book = self._session.execute(
            select(BillPriceBookModel).where(
                BillPriceBookModel.company == company,
                BillPriceBookModel.code == code,
            )
        ).scalar_one_or_none()
        if book is None:
            book = BillPriceBookModel(company=company, code=code, created_by_id=actor_id)
            self._session.add(book)
            self._session.flush()
        return book

    def _subscription(self, subscription_id: UUID) -> BillSubscriptionModel:
        model = self._session.get(BillSubscriptionModel, subscription_id)
        if model is None:
            raise ValidationError("subscription_id", subscription_id, "no such subscription")
        return model

    def _invoice_for_update(self, invoice_id: UUID) -> BillInvoiceModel:
        model = self._session.execute(
            select(BillInvoiceModel)
            .where(BillInvoiceModel.id == invoice_id)
            .with_for_update()
        ).scalar_one_or_none()
        if model is None:
            raise ValidationError("invoice_id", invoice_id, "no such invoice")
        return model

    def fx_rate(self, from_ccy: str, to_ccy: str, as_of: date) -> Decimal:
        """Latest rate effective on or before ``as_of``.

        Raises:
            MissingFxRateError: No rate on or before ``as_of``.
        """
        if from_ccy == to_ccy:
            return ONE
        rate = self._session.execute(
            select(BillFxRateModel.rate)
            .where(
                BillFxRateModel.from_ccy == from_ccy,
                BillFxRateModel.to_ccy == to_ccy,
                BillFxRateModel.as_of <= as_of,
            )
            .order_by(BillFxRateModel.as_of.desc())
            .limit(1)
        ).scalar_one_or_none()
        if rate is None:
            raise MissingFxRateError(from_ccy, to_ccy, as_of.isoformat())
        return round_rate(rate)

    def unit_amount(self, subscription: BillSubscriptionModel) -> Decimal:
        price = self._session.execute(
            select(BillPriceModel.unit_amount).where(
                BillPriceModel.price_book_id == subscription.price_book_id,
                BillPriceModel.product_id == subscription.product_id,
                BillPriceModel.currency == subscription.price_currency,
            )
        ).scalar_one_or_none()
        if price is None:
            raise ValidationError(
                "price",
                subscription.product.sku,
                f"no {subscription.price_currency} price for the subscription's price book",
            )
        return price

    def usage_quantity(
        self,
        subscription_id: UUID,
        period_start: date,
        period_end: date,
    ) -> Decimal:
        total = self._session.execute(
            select(func.coalesce(func.sum(BillUsageModel.quantity), 0)).where(
                BillUsageModel.subscription_id == subscription_id,
                BillUsageModel.usage_date >= period_start,
                BillUsageModel.usage_date <= period_end,
            )
        ).scalar_one()
        return Decimal(str(total))

    def due_subscriptions(
        self,
        company: str,
        period_start: date,
        period_end: date,
    ) -> list[Subscription]:
        """ACTIVE subscriptions whose bill anchor falls in the period."""
        models = self._session.execute(
            select(BillSubscriptionModel)
            .where(
                BillSubscriptionModel.company == company,
                BillSubscriptionModel.status == SubscriptionStatus.ACTIVE.value,
                BillSubscriptionModel.bill_anchor >= period_start,
                BillSubscriptionModel.bill_anchor <= period_end,
            )
            .order_by(BillSubscriptionModel.customer_id, BillSubscriptionModel.bill_anchor)
        ).scalars().all()
        return [m.to_dto() for m in models]

    def existing_invoice(
        self,
        subscription_id: UUID,
        period_start: date,
        period_end: date,
    ) -> BillInvoiceModel | None:
        return self._session.execute(
            select(BillInvoiceModel).where(
                BillInvoiceModel.subscription_id == subscription_id,
                BillInvoiceModel.period_start == period_start,
                BillInvoiceModel.period_end == period_end,
            )
        ).scalar_one_or_none()

    def get_invoice(self, invoice_id: UUID) -> Invoice:
        model = self._session.get(BillInvoiceModel, invoice_id)
        if model is None:
            raise ValidationError("invoice_id", invoice_id, "no such invoice")
        return model.to_dto()

    def list_invoices(
        self,
        company: str,
        status: InvoiceStatus | None = None,
    ) -> list[Invoice]:
        stmt = select(BillInvoiceModel).where(BillInvoiceModel.company == company)
        if status is not None:
            stmt = stmt.where(BillInvoiceModel.status == status.value)
        models = self._session.execute(stmt.order_by(BillInvoiceModel.invoice_no)).scalars()
        return [m.to_dto() for m in models]

    # =========================================================================
    # Billing (run item work)
    # =========================================================================

    def bill_subscription(
        self,
        subscription_id: UUID,
        period_start: date,
        period_end: date,
        present_ccy: str,
        run_id: UUID,
        actor_id: UUID,
    ) -> BillingOutcome:
        """
        Rate one subscription and store a DRAFT invoice.  Does NOT commit.

        Raises:
            MissingFxRateError: Price and presentation currency differ and
                no rate exists.
            ValidationError: No price for the subscription.
        """
        sub = self._subscription(subscription_id)

        if self.existing_invoice(sub.id, period_start, period_end) is not None:
            return BillingOutcome(
                sub.id, sub.customer_id, skip_reason=BillingSkipReason.ALREADY_BILLED,
            )

        kind = ChargeKind(sub.product.price_model)
        draft = rate_subscription(
            sku=sub.product.sku,
            kind=kind,
            unit_amount=self.unit_amount(sub),
            quantity=sub.quantity,
            usage_quantity=(
                self.usage_quantity(sub.id, period_start, period_end)
                if kind == ChargeKind.USAGE
                else ZERO
            ),
            fx_rate=self.fx_rate(sub.price_currency, present_ccy, period_end),
            present_currency=present_ccy,
            tax_rate=self._config.tax_rate,
        )
        if not draft.lines:
            return BillingOutcome(
                sub.id, sub.customer_id, draft=draft,
                skip_reason=BillingSkipReason.NOTHING_TO_BILL,
            )

        seq = self._sequence.next_value(SequenceService.INVOICE)
        invoice_no = f"{self._config.invoice_prefix}-{seq:06d}"
        due_date = period_end + timedelta(days=self._config.payment_terms_days)
        revenue_account = sub.product.gl_revenue_account or self._config.default_revenue_account

        invoice = BillInvoiceModel(
            company=sub.company,
            invoice_no=invoice_no,
            customer_id=sub.customer_id,
            subscription_id=sub.id,
            period_start=period_start,
            period_end=period_end,
            issue_date=self._clock.today(),
            due_date=due_date,
            present_currency=present_ccy,
            fx_rate=draft.fx_rate,
            subtotal=draft.subtotal,
            tax_total=draft.tax_total,
            total=draft.total,
            status=InvoiceStatus.DRAFT.value,
            run_id=run_id,
            created_by_id=actor_id,
        )
        for line_no, line in enumerate(draft.lines, start=1):
            invoice.lines.append(
                BillInvoiceLineModel(
                    line_no=line_no,
                    product_id=sub.product_id,
                    description=line.description,
                    kind=line.kind.value,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    amount=line.amount,
                    tax_amount=line.tax_amount,
                    revenue_account=revenue_account,
                    created_by_id=actor_id,
                )
            )
        self._session.add(invoice)
        self._session.flush()

        self._auditor.record(
            "Invoice",
            invoice.id,
            AuditAction.INVOICE_CREATED,
            actor_id,
            {"invoice_no": invoice_no, "total": str(draft.total), "currency": present_ccy},
        )
        logger.info(
            "billing_invoice_created",
            extra={
                "invoice_no": invoice_no,
                "customer_id": sub.customer_id,
                "total": str(draft.total),
                "currency": present_ccy,
            },
        )
        return BillingOutcome(
            subscription_id=sub.id,
            customer_id=sub.customer_id,
            draft=draft,
            invoice_id=invoice.id,
            invoice_no=invoice_no,
            due_date=due_date,
        )

    # =========================================================================
    # Invoice lifecycle
    # =========================================================================

    def finalize_invoice(self, invoice_id: UUID, actor_id: UUID) -> Invoice:
        """DRAFT -> FINAL.

        Raises:
            InvoiceStateError: The invoice is not DRAFT.
        """
        try:
            model = self._invoice_for_update(invoice_id)
            if model.status != InvoiceStatus.DRAFT.value:
                raise InvoiceStateError(str(invoice_id), model.status, InvoiceStatus.DRAFT.value)
            model.status = InvoiceStatus.FINAL.value
            model.updated_by_id = actor_id
            self._session.flush()
            self._auditor.record(
                "Invoice",
                model.id,
                AuditAction.INVOICE_FINALIZED,
                actor_id,
                {"invoice_no": model.invoice_no},
            )
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        logger.info("billing_invoice_finalized", extra={"invoice_no": model.invoice_no})
        return model.to_dto()

    def post_invoice(self, invoice_id: UUID, actor_id: UUID) -> PostedJournal:
        """
        FINAL -> POSTED.  Posts Dr AR, Cr revenue per line, Cr tax payable.

        Raises:
            InvoiceStateError: The invoice is not FINAL.
            LockHeldError: The invoice's post lock is already held.
        """
        try:
            model = self._invoice_for_update(invoice_id)
            if model.status != InvoiceStatus.FINAL.value:
                raise InvoiceStateError(str(invoice_id), model.status, InvoiceStatus.FINAL.value)

            self._locks.acquire(LockKind.INVOICE_POST, model.company, str(model.id), actor_id)

            lines = [
                JournalLineInput.dr(
                    self._config.ar_account,
                    model.total,
                    description=f"Invoice {model.invoice_no}",
                )
            ]
            for line in model.lines:
                lines.append(
                    JournalLineInput.cr(
                        line.revenue_account,
                        line.amount,
                        description=f"{line.description} - Revenue",
                    )
                )
            if model.tax_total > ZERO:
                lines.append(
                    JournalLineInput.cr(
                        self._config.tax_payable_account,
                        model.tax_total,
                        description=f"Invoice {model.invoice_no} - Tax",
                    )
                )

            posted = self._journal.post(
                company=model.company,
                entry_date=model.issue_date,
                lines=lines,
                memo=f"Invoice {model.invoice_no}",
                source=self._config.journal_source,
                idempotency_key=invoice_journal_key(model.id),
                actor_id=actor_id,
                currency=model.present_currency,
            )

            model.status = InvoiceStatus.POSTED.value
            model.journal_entry_id = posted.entry_id
            model.updated_by_id = actor_id
            self._session.flush()
            self._auditor.record(
                "Invoice",
                model.id,
                AuditAction.INVOICE_POSTED,
                actor_id,
                {"invoice_no": model.invoice_no, "journal_entry_id": str(posted.entry_id)},
            )
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info(
            "billing_invoice_posted",
            extra={
                "invoice_no": model.invoice_no,
                "journal_entry_id": str(posted.entry_id),
                "total": str(posted.total),
            },
        )
        return posted
