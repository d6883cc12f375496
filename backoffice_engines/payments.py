"""
Module: backoffice_engines.payments
Responsibility:
    Pay amount computation and bank file rendering (ISO 20022 pain.001
    credit transfer XML and a flat CSV layout) for exported pay runs.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Rendering returns bytes;
    storing the file is the payments service's job.

Invariants enforced:
    - Bank files are deterministic for identical inputs (creation time is
      an explicit argument), so checksums are reproducible.
    - CtrlSum equals the sum of instructed amounts.
"""

from __future__ import annotations

import csv
import io
import xml.etree.ElementTree as ET
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from backoffice_kernel.db.types import ZERO, round_money
from backoffice_kernel.exceptions import ValidationError
from backoffice_kernel.utils.hashing import hash_bytes

PAIN_001_NAMESPACE = "urn:iso:std:iso:20022:tech:xsd:pain.001.001.03"

CSV_HEADER = ("Supplier ID", "Invoice ID", "Amount", "Currency", "Bank Ref", "Due Date")


def pay_amount(gross: Decimal, discount: Decimal, fx_rate: Decimal = Decimal("1")) -> Decimal:
    """Amount to pay in the pay run currency: (gross - discount) * fx_rate."""
    if discount < ZERO or discount > gross:
        raise ValidationError("discount", discount, f"must be within [0, {gross}]")
    if fx_rate <= ZERO:
        raise ValidationError("fx_rate", fx_rate, "must be positive")
    return round_money((gross - discount) * fx_rate)


@dataclass(frozen=True)
class PaymentInstruction:
    """One credit transfer in a bank file."""

    instruction_id: str
    supplier_id: str
    supplier_name: str
    invoice_ref: str
    amount: Decimal
    currency: str
    iban: str
    bic: str | None
    due_date: date


@dataclass(frozen=True)
class BankFile:
    filename: str
    format: str
    content: bytes

    @property
    def checksum(self) -> str:
        return hash_bytes(self.content)


def control_sum(instructions: Sequence[PaymentInstruction]) -> Decimal:
    return sum((i.amount for i in instructions), ZERO)


def _sub(parent: ET.Element, tag: str, text: str | None = None) -> ET.Element:
    el = ET.SubElement(parent, tag)
    if text is not None:
        el.text = text
    return el


def render_pain001(
    *,
    message_id: str,
    created_at: datetime,
    execution_date: date,
    debtor_name: str,
    debtor_iban: str,
    debtor_bic: str | None,
    instructions: Sequence[PaymentInstruction],
) -> bytes:
    """Render a pain.001.001.03 customer credit transfer initiation."""
    ET.register_namespace("", PAIN_001_NAMESPACE)
    doc = ET.Element(f"{{{PAIN_001_NAMESPACE}}}Document")
    root = _sub(doc, "CstmrCdtTrfInitn")

    header = _sub(root, "GrpHdr")
    _sub(header, "MsgId", message_id)
    _sub(header, "CreDtTm", created_at.replace(microsecond=0).isoformat())
    _sub(header, "NbOfTxs", str(len(instructions)))
    _sub(header, "CtrlSum", f"{control_sum(instructions):.2f}")
    _sub(_sub(header, "InitgPty"), "Nm", debtor_name)

    pmt = _sub(root, "PmtInf")
    _sub(pmt, "PmtInfId", message_id)
    _sub(pmt, "PmtMtd", "TRF")
    _sub(pmt, "NbOfTxs", str(len(instructions)))
    _sub(pmt, "CtrlSum", f"{control_sum(instructions):.2f}")
    _sub(pmt, "ReqdExctnDt", execution_date.isoformat())
    _sub(_sub(pmt, "Dbtr"), "Nm", debtor_name)
    _sub(_sub(_sub(pmt, "DbtrAcct"), "Id"), "IBAN", debtor_iban)
    if debtor_bic:
        _sub(_sub(_sub(pmt, "DbtrAgt"), "FinInstnId"), "BIC", debtor_bic)

    for instr in instructions:
        tx = _sub(pmt, "CdtTrfTxInf")
        pmt_id = _sub(tx, "PmtId")
        _sub(pmt_id, "InstrId", instr.instruction_id)
        _sub(pmt_id, "EndToEndId", instr.invoice_ref)
        amt = _sub(tx, "Amt")
        instd = _sub(amt, "InstdAmt", f"{instr.amount:.2f}")
        instd.set("Ccy", instr.currency)
        if instr.bic:
            _sub(_sub(_sub(tx, "CdtrAgt"), "FinInstnId"), "BIC", instr.bic)
        _sub(_sub(tx, "Cdtr"), "Nm", instr.supplier_name)
        _sub(_sub(_sub(tx, "CdtrAcct"), "Id"), "IBAN", instr.iban)
        _sub(_sub(tx, "RmtInf"), "Ustrd", f"Payment for invoice {instr.invoice_ref}")

    return ET.tostring(doc, encoding="utf-8", xml_declaration=True)


def render_csv(instructions: Sequence[PaymentInstruction]) -> bytes:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for instr in instructions:
        writer.writerow(
            (
                instr.supplier_id,
                instr.invoice_ref,
                f"{instr.amount:.2f}",
                instr.currency,
                instr.bic or "",
                instr.due_date.isoformat(),
            )
        )
    return buffer.getvalue().encode("utf-8")


def bank_filename(company: str, year: int, month: int, pay_run_id: str, fmt: str) -> str:
    ext = "xml" if fmt == "PAIN_001" else "csv"
    return f"PAY_{company}_{year}{month:02d}_{pay_run_id}.{ext}"
