# Overview: Invoice generator; numbered invoices with a draft -> sent -> paid/overdue/cancelled lifecycle.

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import func, or_, update

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Invoice, InvoiceLine, Sale
from ..models.documents import (
    INVOICE_PAYMENT_METHODS,
    INVOICE_STATUS_CANCELLED,
    INVOICE_STATUS_DRAFT,
    INVOICE_STATUS_OVERDUE,
    INVOICE_STATUS_PAID,
    INVOICE_STATUS_SENT,
)
from ..models.sales import SALE_STATUS_COMPLETED
from ..time_utils import parse_iso_datetime, utcnow
from . import inventory_service
from .concurrency import lock_for_update, run_in_transaction
from .ledger_service import append_ledger_event
from .listing import like_pattern, paginate, parse_date_range
from .numbering_service import next_invoice_number
from .totals import compute_totals, parse_cents, parse_quantity, parse_tax_rate
"""
Invoice Invariants (authoritative)

- invoice_number is FAC-<year>-<6 digits>, strictly increasing per (seller, year), never reused.
- Totals are always recomputed server-side from lines, tax rate and discount.
- Content edits are only allowed while 'draft'.
- 'paid' and 'cancelled' are terminal; every status move is a conditional UPDATE.
"""

OPEN_STATUSES = (INVOICE_STATUS_DRAFT, INVOICE_STATUS_SENT, INVOICE_STATUS_OVERDUE)

CUSTOMER_FIELDS = ("name", "email", "phone", "address", "company", "siret")
SELLER_FIELDS = ("company_name", "address", "phone", "email", "siret")


def get_invoice(seller_id: int, invoice_id: int) -> Invoice:
    invoice = (
        db.session.query(Invoice)
        .filter(Invoice.id == invoice_id, Invoice.seller_id == seller_id)
        .first()
    )
    if not invoice:
        raise NotFoundError("Invoice not found", details={"invoice_id": invoice_id})
    return invoice


def _clean(value):
    if value is None:
        return None
    if not isinstance(value, str):
        value = str(value)
    return value.strip() or None


def _parse_customer(customer) -> dict:
    if not isinstance(customer, dict) or not _clean(customer.get("name")):
        raise ValidationError("customer.name is required", details={"field": "customer.name"})
    return {f"customer_{key}": _clean(customer.get(key)) for key in CUSTOMER_FIELDS}


def _parse_seller_info(seller_info) -> dict:
    if not isinstance(seller_info, dict) or not _clean(seller_info.get("company_name")):
        raise ValidationError(
            "seller_info.company_name is required", details={"field": "seller_info.company_name"}
        )
    return {
        "seller_company_name": _clean(seller_info.get("company_name")),
        "seller_address": _clean(seller_info.get("address")),
        "seller_phone": _clean(seller_info.get("phone")),
        "seller_email": _clean(seller_info.get("email")),
        "seller_siret": _clean(seller_info.get("siret")),
    }


def _parse_payment_method(payment) -> str:
    if not isinstance(payment, dict) or not payment.get("method"):
        raise ValidationError("payment.method is required", details={"field": "payment.method"})
    method = payment["method"]
    if method not in INVOICE_PAYMENT_METHODS:
        raise ValidationError(
            "Unsupported payment method",
            details={"method": method, "allowed": list(INVOICE_PAYMENT_METHODS)},
        )
    return method


def _parse_due_date(value) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return parse_iso_datetime(value)
    except (TypeError, ValueError):
        raise ValidationError("due_date must be ISO-8601", details={"field": "due_date"})


def _parse_lines(items) -> list[InvoiceLine]:
    if not isinstance(items, list) or not items:
        raise ValidationError("At least one item is required", details={"field": "items"})

    lines = []
    for position, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError("Each item must be an object", details={"index": position})
        description = _clean(item.get("description") or item.get("name"))
        if not description:
            raise ValidationError("description is required", details={"index": position, "field": "description"})
        product_id = item.get("product_id")
        if product_id is not None and (isinstance(product_id, bool) or not isinstance(product_id, int)):
            raise ValidationError(
                "product_id must be an integer", details={"index": position, "field": "product_id"}
            )
        quantity = parse_quantity(item.get("quantity"))
        unit_price = parse_cents(item.get("unit_price_cents"), field="unit_price_cents")
        lines.append(
            InvoiceLine(
                position=position,
                product_id=product_id,
                description=description,
                sku=_clean(item.get("sku")),
                quantity=quantity,
                unit_price_cents=unit_price,
                line_total_cents=quantity * unit_price,
            )
        )
    return lines


def _check_line_products(seller_id: int, lines: list[InvoiceLine]) -> None:
    """Catalog references on invoice lines must belong to the invoicing seller."""
    for line in lines:
        if line.product_id is not None:
            inventory_service.get_product(seller_id, line.product_id)


def _lines_from_sale(sale: Sale) -> list[InvoiceLine]:
    return [
        InvoiceLine(
            position=line.position,
            product_id=line.product_id,
            description=line.name,
            sku=line.sku,
            quantity=line.quantity,
            unit_price_cents=line.unit_price_cents,
            line_total_cents=line.line_total_cents,
        )
        for line in sale.lines
    ]


def _apply_totals(invoice: Invoice, tax_rate: float, discount_cents: int) -> None:
    totals = compute_totals([line.line_total_cents for line in invoice.lines], tax_rate, discount_cents)
    invoice.subtotal_cents = totals.subtotal_cents
    invoice.tax_rate = totals.tax_rate
    invoice.tax_cents = totals.tax_cents
    invoice.discount_cents = totals.discount_cents
    invoice.total_cents = totals.total_cents


def create_invoice(
    seller_id: int,
    customer,
    seller_info,
    payment,
    *,
    items=None,
    sale_id: int | None = None,
    tax_rate=None,
    discount_cents: int | None = None,
    notes: str | None = None,
    due_date=None,
) -> Invoice:
    """
    Issue an invoice, either from explicit lines or by copying a completed sale.

    A sale-based invoice inherits the sale's tax rate and discount unless
    they are given explicitly. ``payment.paid`` creates it already paid.
    """
    customer_fields = _parse_customer(customer)
    seller_fields = _parse_seller_info(seller_info)
    method = _parse_payment_method(payment)
    paid = payment.get("paid", False)
    if paid is None:
        paid = False
    if not isinstance(paid, bool):
        raise ValidationError("payment.paid must be a boolean", details={"field": "payment.paid"})
    due = _parse_due_date(due_date)
    if sale_id is None and not items:
        raise ValidationError("items or sale_id is required", details={"field": "items"})
    manual_lines = _parse_lines(items) if items else None
    discount = parse_cents(discount_cents, field="discount_cents", allow_none=True)

    def _op():
        currency = current_app.config["DEFAULT_CURRENCY"]
        default_rate = current_app.config["DEFAULT_TAX_RATE"]
        default_discount = 0

        if sale_id is not None:
            sale = db.session.query(Sale).filter(Sale.id == sale_id, Sale.seller_id == seller_id).first()
            if not sale:
                raise NotFoundError("Sale not found", details={"sale_id": sale_id})
            if sale.status != SALE_STATUS_COMPLETED:
                raise ValidationError(
                    "Only completed sales can be invoiced",
                    details={"sale_id": sale_id, "status": sale.status},
                )
            lines = manual_lines or _lines_from_sale(sale)
            currency = sale.currency
            default_rate = sale.tax_rate
            default_discount = sale.discount_cents
        else:
            lines = manual_lines
        _check_line_products(seller_id, lines)

        rate = parse_tax_rate(tax_rate, default_rate)
        now = utcnow()

        invoice = Invoice(
            seller_id=seller_id,
            invoice_number=next_invoice_number(seller_id, now.year),
            sale_id=sale_id,
            currency=currency,
            payment_method=method,
            paid=paid,
            paid_at=now if paid else None,
            payment_reference=_clean(payment.get("reference")),
            notes=notes,
            due_date=due,
            status=INVOICE_STATUS_PAID if paid else INVOICE_STATUS_DRAFT,
            **customer_fields,
            **seller_fields,
        )
        invoice.lines = lines
        _apply_totals(invoice, rate, default_discount if discount is None else discount)
        db.session.add(invoice)
        db.session.flush()

        append_ledger_event(
            seller_id=seller_id,
            event_type="invoice.created",
            entity_type="invoice",
            entity_id=invoice.id,
            reference=invoice.invoice_number,
            amount_cents=invoice.total_cents,
            payload={"sale_id": sale_id, "status": invoice.status},
        )
        return invoice

    invoice = run_in_transaction(_op)
    current_app.logger.info("Invoice %s issued for seller %s", invoice.invoice_number, seller_id)
    return invoice


def update_invoice(seller_id: int, invoice_id: int, changes: dict) -> Invoice:
    """
    Edit a draft invoice. Client-supplied totals are ignored; totals are
    recomputed whenever lines, tax rate or discount change.
    """
    if not isinstance(changes, dict):
        raise ValidationError("changes must be an object")

    def _op():
        invoice = lock_for_update(
            db.session.query(Invoice).filter(Invoice.id == invoice_id, Invoice.seller_id == seller_id)
        ).first()
        if not invoice:
            raise NotFoundError("Invoice not found", details={"invoice_id": invoice_id})
        if invoice.status != INVOICE_STATUS_DRAFT:
            raise ConflictError(
                "Only draft invoices can be edited",
                details={"invoice_id": invoice_id, "status": invoice.status},
            )

        if "customer" in changes:
            for key, value in _parse_customer(changes["customer"]).items():
                setattr(invoice, key, value)
        if "seller_info" in changes:
            for key, value in _parse_seller_info(changes["seller_info"]).items():
                setattr(invoice, key, value)
        if "payment" in changes:
            invoice.payment_method = _parse_payment_method(changes["payment"])
        if "notes" in changes:
            invoice.notes = changes["notes"]
        if "due_date" in changes:
            invoice.due_date = _parse_due_date(changes["due_date"])

        if "items" in changes:
            lines = _parse_lines(changes["items"])
            _check_line_products(seller_id, lines)
            invoice.lines = lines
            db.session.flush()

        rate = parse_tax_rate(changes["tax_rate"], invoice.tax_rate) if "tax_rate" in changes else invoice.tax_rate
        discount = (
            parse_cents(changes["discount_cents"], field="discount_cents")
            if "discount_cents" in changes
            else invoice.discount_cents
        )
        _apply_totals(invoice, rate, discount)
        invoice.updated_at = utcnow()
        db.session.flush()

        append_ledger_event(
            seller_id=seller_id,
            event_type="invoice.updated",
            entity_type="invoice",
            entity_id=invoice.id,
            reference=invoice.invoice_number,
            amount_cents=invoice.total_cents,
            payload={"fields": sorted(changes.keys())},
        )
        return invoice

    return run_in_transaction(_op)


def _transition(
    seller_id: int,
    invoice_id: int,
    from_statuses: tuple[str, ...],
    values: dict,
    *,
    event_type: str,
    message: str,
) -> Invoice:
    def _op():
        invoice = get_invoice(seller_id, invoice_id)
        result = db.session.execute(
            update(Invoice)
            .where(
                Invoice.id == invoice_id,
                Invoice.seller_id == seller_id,
                Invoice.status.in_(from_statuses),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.session.refresh(invoice)
            raise ConflictError(message, details={"invoice_id": invoice_id, "status": invoice.status})

        db.session.refresh(invoice)
        append_ledger_event(
            seller_id=seller_id,
            event_type=event_type,
            entity_type="invoice",
            entity_id=invoice.id,
            reference=invoice.invoice_number,
            amount_cents=invoice.total_cents,
        )
        return invoice

    return run_in_transaction(_op)


def mark_paid(seller_id: int, invoice_id: int, reference: str | None = None) -> Invoice:
    now = utcnow()
    values = {"status": INVOICE_STATUS_PAID, "paid": True, "paid_at": now, "updated_at": now}
    if _clean(reference):
        values["payment_reference"] = _clean(reference)
    return _transition(
        seller_id,
        invoice_id,
        OPEN_STATUSES,
        values,
        event_type="invoice.paid",
        message="Invoice is already paid or cancelled",
    )


def cancel_invoice(seller_id: int, invoice_id: int) -> Invoice:
    now = utcnow()
    return _transition(
        seller_id,
        invoice_id,
        OPEN_STATUSES,
        {"status": INVOICE_STATUS_CANCELLED, "cancelled_at": now, "updated_at": now},
        event_type="invoice.cancelled",
        message="Invoice is already paid or cancelled",
    )


def mark_sent(seller_id: int, invoice_id: int) -> Invoice:
    """Record that a draft went out to the customer. Delivery happens elsewhere."""
    now = utcnow()
    return _transition(
        seller_id,
        invoice_id,
        (INVOICE_STATUS_DRAFT,),
        {"status": INVOICE_STATUS_SENT, "sent_at": now, "updated_at": now},
        event_type="invoice.sent",
        message="Only draft invoices can be sent",
    )


def flag_overdue(seller_id: int | None = None, as_of: datetime | None = None) -> int:
    """
    Move 'sent' invoices whose due date has passed to 'overdue'.

    seller_id=None sweeps every seller (CLI use). Returns the number flagged.
    """
    as_of = as_of or utcnow()

    def _op():
        q = db.session.query(Invoice.id, Invoice.seller_id, Invoice.invoice_number).filter(
            Invoice.status == INVOICE_STATUS_SENT,
            Invoice.due_date.isnot(None),
            Invoice.due_date < as_of,
        )
        if seller_id is not None:
            q = q.filter(Invoice.seller_id == seller_id)

        flagged = 0
        for inv_id, inv_seller_id, number in q.all():
            result = db.session.execute(
                update(Invoice)
                .where(Invoice.id == inv_id, Invoice.status == INVOICE_STATUS_SENT)
                .values(status=INVOICE_STATUS_OVERDUE, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                flagged += 1
                append_ledger_event(
                    seller_id=inv_seller_id,
                    event_type="invoice.overdue",
                    entity_type="invoice",
                    entity_id=inv_id,
                    reference=number,
                )
        return flagged

    flagged = run_in_transaction(_op)
    if flagged:
        current_app.logger.info("Flagged %d invoice(s) overdue", flagged)
    return flagged


def invoice_stats(seller_id: int) -> dict:
    rows = (
        db.session.query(
            Invoice.status,
            func.count(Invoice.id),
            func.coalesce(func.sum(Invoice.total_cents), 0),
        )
        .filter(Invoice.seller_id == seller_id)
        .group_by(Invoice.status)
        .all()
    )
    by_status = {status: (int(count), int(amount)) for status, count, amount in rows}

    def _bucket(*statuses: str) -> dict:
        return {
            "count": sum(by_status.get(s, (0, 0))[0] for s in statuses),
            "amount_cents": sum(by_status.get(s, (0, 0))[1] for s in statuses),
        }

    return {
        "total": _bucket(*by_status.keys()),
        "paid": _bucket(INVOICE_STATUS_PAID),
        "unpaid": _bucket(*OPEN_STATUSES),
        "overdue": _bucket(INVOICE_STATUS_OVERDUE),
        "cancelled": _bucket(INVOICE_STATUS_CANCELLED),
    }


def list_invoices(
    seller_id: int,
    *,
    page: int | None = 1,
    limit: int | None = None,
    status: str | None = None,
    date_from=None,
    date_to=None,
    search: str | None = None,
) -> dict:
    start, end = parse_date_range(date_from, date_to)

    q = db.session.query(Invoice).filter(Invoice.seller_id == seller_id)
    if status:
        q = q.filter(Invoice.status == status)
    if start:
        q = q.filter(Invoice.created_at >= start)
    if end:
        q = q.filter(Invoice.created_at <= end)
    if search and search.strip():
        pattern = like_pattern(search)
        q = q.filter(
            or_(
                Invoice.invoice_number.ilike(pattern, escape="\\"),
                Invoice.customer_name.ilike(pattern, escape="\\"),
                Invoice.customer_company.ilike(pattern, escape="\\"),
            )
        )
    q = q.order_by(Invoice.created_at.desc(), Invoice.id.desc())
    return paginate(q, page, limit, lambda inv: inv.to_dict())
