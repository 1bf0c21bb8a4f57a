"""Customer invoices and the payments recorded against them.

``Invoice.amount_paid`` and ``Invoice.status`` are stored for cheap reads but
are recomputed from the payment rows in every transaction that adds or
removes a payment, while the invoice row is locked.
"""

from __future__ import annotations

import logging
import re
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from extensions import db
from models import Invoice, InvoiceLine, InvoiceStatus, Payment, PaymentMethod

from . import audit
from .errors import (
    DuplicateInvoiceNumber,
    InvalidInput,
    InvalidQuantity,
    InvoiceHasPayments,
    NotFound,
    PaymentExceedsBalance,
)
from .stock import normalize_count
from .transactions import atomic, is_unique_violation, lock_for_update, touch
from .validation import (
    CURRENCY_QUANT,
    KG_QUANT,
    TOLERANCE,
    ZERO,
    date_field,
    decimal_field,
    id_field,
    int_field,
    name_field,
    quantize,
    strip_or_none,
    to_decimal,
)

logger = logging.getLogger(__name__)

GST_RATE = Decimal("0.09")
MAX_RATE = Decimal("9999")
MAX_LINE_WEIGHT_KG = Decimal("999999")
MAX_PAYMENT = Decimal("99999999")
INVOICE_PREFIX = "INV-"
INVOICE_NUMBER_WIDTH = 5
INVOICE_NUMBER_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9/_-]{0,39}$")


def derive_status(amount_paid: Decimal, total: Decimal) -> InvoiceStatus:
    paid = Decimal(amount_paid)
    if paid <= ZERO:
        return InvoiceStatus.UNPAID
    if paid >= Decimal(total) - TOLERANCE:
        return InvoiceStatus.PAID
    return InvoiceStatus.PARTIAL


def get_next_invoice_number() -> str:
    """Next ``INV-00001`` style number after the highest one on file."""

    numbers = db.session.query(Invoice.invoice_no).filter(Invoice.invoice_no.like(f"{INVOICE_PREFIX}%"))
    highest = 0
    for (value,) in numbers:
        suffix = value[len(INVOICE_PREFIX):]
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    return f"{INVOICE_PREFIX}{highest + 1:0{INVOICE_NUMBER_WIDTH}d}"


def _parse_lines(items: Any, errors: Dict[str, str]) -> List[Dict[str, Any]]:
    if not isinstance(items, Sequence) or isinstance(items, (str, bytes)) or not items:
        errors["line_items"] = "Add at least one line item."
        return []

    lines: List[Dict[str, Any]] = []
    for index, item in enumerate(items):
        prefix = f"line_items.{index}."
        if not isinstance(item, Mapping):
            errors[prefix + "yarn_count"] = "Invalid line item."
            continue
        code = normalize_count(item.get("yarn_count"))
        if code is None:
            errors[prefix + "yarn_count"] = "Yarn count is required."
        bags = int_field(item.get("bags"), prefix + "bags", errors, minimum=0, default=0)
        weight = decimal_field(
            item.get("weight_kg"),
            prefix + "weight_kg",
            errors,
            exclusive_minimum=ZERO,
            maximum=MAX_LINE_WEIGHT_KG,
            quantize_to=KG_QUANT,
        )
        rate = decimal_field(
            item.get("rate"),
            prefix + "rate",
            errors,
            exclusive_minimum=ZERO,
            maximum=MAX_RATE,
            quantize_to=CURRENCY_QUANT,
        )
        if code is None or bags is None or weight is None or rate is None:
            continue
        lines.append(
            {
                "yarn_count": code,
                "bags": bags,
                "weight_kg": weight,
                "rate": rate,
                "amount": quantize(weight * rate, CURRENCY_QUANT),
            }
        )
    return lines


def invoice_totals(lines: Sequence[Mapping[str, Any]]) -> Dict[str, Decimal]:
    # Line amounts are rounded for display only; the subtotal rounds once over the exact products.
    exact = sum((Decimal(line["weight_kg"]) * Decimal(line["rate"]) for line in lines), ZERO)
    subtotal = quantize(exact, CURRENCY_QUANT)
    cgst = quantize(subtotal * GST_RATE, CURRENCY_QUANT)
    sgst = quantize(subtotal * GST_RATE, CURRENCY_QUANT)
    return {"subtotal": subtotal, "cgst": cgst, "sgst": sgst, "total": subtotal + cgst + sgst}


def create_invoice(
    *,
    date: Any,
    customer: Any,
    line_items: Any,
    invoice_no: Any = None,
    actor_id: Optional[int] = None,
    audit_sink: Optional[audit.AuditSink] = None,
) -> Invoice:
    errors: Dict[str, str] = {}
    invoice_date = date_field(date, "date", errors)
    customer_name = name_field(customer, "customer", errors, label="Customer name")
    requested_no = strip_or_none(invoice_no)
    if requested_no is not None and not INVOICE_NUMBER_PATTERN.match(requested_no):
        errors["invoice_no"] = "Invoice number may contain letters, digits, '/', '-' and '_'."
    lines = _parse_lines(line_items, errors)
    if errors:
        numeric_only = all(key.endswith(("weight_kg", "rate", "bags")) for key in errors)
        raise (InvalidQuantity if numeric_only else InvalidInput)(errors)

    totals = invoice_totals(lines)

    def work() -> Invoice:
        number = requested_no or get_next_invoice_number()
        if requested_no and Invoice.query.filter_by(invoice_no=requested_no).first() is not None:
            raise DuplicateInvoiceNumber(errors={"invoice_no": f"Invoice {requested_no} already exists."})
        invoice = Invoice(
            invoice_no=number,
            date=invoice_date,
            customer_name=customer_name,
            amount_paid=ZERO,
            status=InvoiceStatus.UNPAID,
            created_by=actor_id,
            **totals,
        )
        invoice.lines = [InvoiceLine(**line) for line in lines]
        db.session.add(invoice)
        db.session.flush()
        return invoice

    attempts = 0
    while True:
        attempts += 1
        try:
            invoice = atomic(work, operation="create_invoice")
            break
        except IntegrityError as exc:
            if not is_unique_violation(exc, "invoice_no"):
                raise
            if requested_no or attempts >= 5:
                raise DuplicateInvoiceNumber(
                    errors={"invoice_no": "Invoice number already exists."}
                ) from exc

    logger.info({"event": "invoice_created", "invoice_no": invoice.invoice_no, "total": str(invoice.total)})
    audit.notify(
        "invoice.create",
        "Invoice",
        invoice.id,
        actor_id=actor_id,
        details={"invoice_no": invoice.invoice_no, "total": str(invoice.total)},
        sink=audit_sink,
    )
    return invoice


def get_invoice(invoice_id: Any) -> Invoice:
    errors: Dict[str, str] = {}
    ident = id_field(invoice_id, "id", errors)
    if errors:
        raise InvalidInput(errors)
    invoice = (
        Invoice.query.options(selectinload(Invoice.lines), selectinload(Invoice.payments))
        .filter(Invoice.id == ident)
        .first()
    )
    if invoice is None:
        raise NotFound("Invoice not found.", {"id": "Invoice not found."})
    return invoice


def parse_status(value: Any) -> Optional[InvoiceStatus]:
    text = strip_or_none(value)
    if text is None:
        return None
    try:
        return InvoiceStatus(text.upper())
    except ValueError:
        raise InvalidInput({"status": "Status must be UNPAID, PARTIAL or PAID."}) from None


def list_invoices(
    *,
    status: Optional[InvoiceStatus] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> List[Invoice]:
    stmt = Invoice.query.options(selectinload(Invoice.lines)).order_by(Invoice.date.desc(), Invoice.id.desc())
    if status is not None:
        stmt = stmt.filter(Invoice.status == status)
    if start:
        stmt = stmt.filter(Invoice.date >= start)
    if end:
        stmt = stmt.filter(Invoice.date <= end)
    return list(stmt)


def _paid_total(invoice_id: int) -> Decimal:
    total = (
        db.session.query(func.coalesce(func.sum(Payment.amount), 0))
        .filter(Payment.invoice_id == invoice_id)
        .scalar()
    )
    return quantize(to_decimal(total), CURRENCY_QUANT)


def _lock_invoice(invoice_id: int) -> Invoice:
    invoice = lock_for_update(Invoice.query.filter(Invoice.id == invoice_id)).one_or_none()
    if invoice is None:
        raise NotFound("Invoice not found.", {"id": "Invoice not found."})
    return invoice


def _refresh_paid(invoice: Invoice) -> None:
    paid = _paid_total(invoice.id)
    if paid < ZERO:
        paid = ZERO
    invoice.amount_paid = paid
    invoice.status = derive_status(paid, invoice.total)
    touch([invoice])


def _parse_method(value: Any, errors: Dict[str, str]) -> Optional[PaymentMethod]:
    text = strip_or_none(value)
    if text is None:
        errors["method"] = "Payment method is required."
        return None
    try:
        return PaymentMethod(text.upper())
    except ValueError:
        errors["method"] = "Method must be CASH, BANK, UPI or CHEQUE."
        return None


def record_payment(
    invoice_id: Any,
    *,
    date: Any,
    amount: Any,
    method: Any,
    reference: Any = None,
    notes: Any = None,
    actor_id: Optional[int] = None,
    audit_sink: Optional[audit.AuditSink] = None,
) -> Payment:
    errors: Dict[str, str] = {}
    ident = id_field(invoice_id, "invoice_id", errors)
    payment_date = date_field(date, "date", errors)
    value = decimal_field(
        amount, "amount", errors, exclusive_minimum=ZERO, maximum=MAX_PAYMENT, quantize_to=CURRENCY_QUANT
    )
    payment_method = _parse_method(method, errors)
    ref = strip_or_none(reference)
    if ref is not None and len(ref) > 80:
        errors["reference"] = "Reference cannot exceed 80 characters."
    if errors:
        raise (InvalidQuantity if set(errors) == {"amount"} else InvalidInput)(errors)

    def work() -> Payment:
        invoice = _lock_invoice(ident)
        remaining = quantize(Decimal(invoice.total) - _paid_total(invoice.id), CURRENCY_QUANT)
        if value > remaining + TOLERANCE:
            raise PaymentExceedsBalance(
                errors={"amount": f"Only {max(remaining, ZERO)} remains due on {invoice.invoice_no}."}
            )
        payment = Payment(
            invoice_id=invoice.id,
            date=payment_date,
            amount=value,
            method=payment_method,
            reference=ref,
            notes=strip_or_none(notes),
            created_by=actor_id,
        )
        db.session.add(payment)
        db.session.flush()
        _refresh_paid(invoice)
        return payment

    payment = atomic(work, operation="record_payment")
    invoice = payment.invoice
    logger.info(
        {
            "event": "payment_recorded",
            "invoice_no": invoice.invoice_no,
            "amount": str(payment.amount),
            "status": invoice.status.value,
        }
    )
    audit.notify(
        "payment.create",
        "Payment",
        payment.id,
        actor_id=actor_id,
        details={"invoice_no": invoice.invoice_no, "amount": str(payment.amount)},
        sink=audit_sink,
    )
    return payment


def delete_payment(
    payment_id: Any,
    *,
    actor_id: Optional[int] = None,
    audit_sink: Optional[audit.AuditSink] = None,
) -> Invoice:
    errors: Dict[str, str] = {}
    ident = id_field(payment_id, "id", errors)
    if errors:
        raise InvalidInput(errors)

    def work() -> Invoice:
        payment = db.session.get(Payment, ident)
        if payment is None:
            raise NotFound("Payment not found.", {"id": "Payment not found."})
        invoice = _lock_invoice(payment.invoice_id)
        db.session.delete(payment)
        db.session.flush()
        _refresh_paid(invoice)
        return invoice

    invoice = atomic(work, operation="delete_payment")
    logger.info({"event": "payment_deleted", "payment_id": ident, "invoice_no": invoice.invoice_no})
    audit.notify(
        "payment.delete",
        "Payment",
        ident,
        actor_id=actor_id,
        details={"invoice_no": invoice.invoice_no},
        sink=audit_sink,
    )
    return invoice


def delete_invoice(
    invoice_id: Any,
    *,
    actor_id: Optional[int] = None,
    audit_sink: Optional[audit.AuditSink] = None,
) -> None:
    ident = get_invoice(invoice_id).id

    def work() -> str:
        invoice = _lock_invoice(ident)
        count = db.session.query(func.count(Payment.id)).filter(Payment.invoice_id == invoice.id).scalar()
        if count:
            raise InvoiceHasPayments(
                errors={"id": f"{invoice.invoice_no} has {count} payment(s); delete them first."}
            )
        number = invoice.invoice_no
        db.session.delete(invoice)
        return number

    number = atomic(work, operation="delete_invoice")
    logger.info({"event": "invoice_deleted", "invoice_no": number})
    audit.notify("invoice.delete", "Invoice", ident, actor_id=actor_id, details={"invoice_no": number}, sink=audit_sink)


def outstanding_total() -> Decimal:
    total, paid = db.session.query(
        func.coalesce(func.sum(Invoice.total), 0),
        func.coalesce(func.sum(Invoice.amount_paid), 0),
    ).one()
    return quantize(to_decimal(total) - to_decimal(paid), CURRENCY_QUANT)
