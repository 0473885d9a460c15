# Overview: Sale transaction processor; records sales and refunds against the inventory store.

from __future__ import annotations

from collections import defaultdict

from flask import current_app
from sqlalchemy import func, or_, update

from ..errors import ConflictError, InvalidPaymentError, NotFoundError, ValidationError
from ..extensions import db
from ..models import ProductReturn, ReturnLine, Sale, SaleLine
from ..models.documents import RETURN_STATUS_APPROVED, RETURN_STATUS_COMPLETED
from ..models.sales import (
    SALE_PAYMENT_METHODS,
    SALE_STATUS_COMPLETED,
    SALE_STATUS_PARTIAL_REFUND,
    SALE_STATUS_REFUNDED,
)
from ..time_utils import utcnow
from . import inventory_service
from .concurrency import lock_for_update, run_in_transaction
from .ledger_service import append_ledger_event
from .listing import like_pattern, paginate, parse_date_range
from .numbering_service import generate_sale_number
from .totals import compute_totals, parse_cents, parse_quantity, parse_tax_rate
"""
Sale Invariants (authoritative)

- A sale is all-or-nothing: its row, its lines and every stock debit commit together.
- Line prices come from the catalog at sale time; client prices are ignored.
- total_cents = subtotal_cents + tax_cents - discount_cents, exactly.
- Cash sales: change_given_cents = cash_received_cents - total_cents >= 0.
- Sale lines and totals are immutable; only status moves (completed -> refunded|partial_refund).
- A refund restores each sold unit at most once, net of units already restored by approved returns.
"""


def get_sale(seller_id: int, sale_id: int) -> Sale:
    sale = db.session.query(Sale).filter(Sale.id == sale_id, Sale.seller_id == seller_id).first()
    if not sale:
        raise NotFoundError("Sale not found", details={"sale_id": sale_id})
    return sale


def _parse_items(items) -> list[tuple[int, int]]:
    if not isinstance(items, list) or not items:
        raise ValidationError("At least one item is required", details={"field": "items"})

    parsed = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError("Each item must be an object", details={"index": index})
        product_id = item.get("product_id")
        if isinstance(product_id, bool) or not isinstance(product_id, int):
            raise ValidationError("product_id is required", details={"index": index, "field": "product_id"})
        parsed.append((product_id, parse_quantity(item.get("quantity"))))
    return parsed


def _parse_payment(payment) -> dict:
    if not isinstance(payment, dict) or not payment.get("method"):
        raise InvalidPaymentError("Payment method is required", details={"field": "payment.method"})
    method = payment["method"]
    if method not in SALE_PAYMENT_METHODS:
        raise InvalidPaymentError(
            "Unsupported payment method",
            details={"method": method, "allowed": list(SALE_PAYMENT_METHODS)},
        )
    try:
        cash_received = parse_cents(
            payment.get("cash_received_cents"), field="payment.cash_received_cents", allow_none=True
        )
    except ValidationError as exc:
        raise InvalidPaymentError(exc.message, details=exc.details)
    return {
        "method": method,
        "cash_received_cents": cash_received,
        "card_reference": payment.get("card_reference"),
    }


def _customer_fields(customer) -> dict:
    if customer is None:
        return {}
    if not isinstance(customer, dict):
        raise ValidationError("customer must be an object", details={"field": "customer"})
    return {
        "customer_name": (customer.get("name") or "").strip() or None,
        "customer_phone": (customer.get("phone") or "").strip() or None,
        "customer_email": (customer.get("email") or "").strip() or None,
    }


def create_sale(
    seller_id: int,
    items,
    payment,
    *,
    customer=None,
    discount_cents: int = 0,
    tax_rate=None,
    notes: str | None = None,
) -> Sale:
    """
    Record a completed sale and debit stock for every tracked line.

    Runs as one write transaction: if any line is unknown, any debit comes
    up short, or the payment does not cover the total, nothing is written.
    """
    parsed_items = _parse_items(items)
    pay = _parse_payment(payment)
    discount = parse_cents(discount_cents or 0, field="discount_cents")
    rate = parse_tax_rate(tax_rate, current_app.config["DEFAULT_TAX_RATE"])
    customer_fields = _customer_fields(customer)

    def _op():
        products = [inventory_service.get_product(seller_id, pid) for pid, _ in parsed_items]

        line_totals = [p.price_cents * qty for p, (_, qty) in zip(products, parsed_items)]
        totals = compute_totals(line_totals, rate, discount)

        change_given = None
        if pay["method"] == "cash" and pay["cash_received_cents"] is not None:
            change_given = pay["cash_received_cents"] - totals.total_cents
            if change_given < 0:
                raise InvalidPaymentError(
                    "Cash received does not cover the total",
                    details={
                        "cash_received_cents": pay["cash_received_cents"],
                        "total_cents": totals.total_cents,
                    },
                )

        sale_number = generate_sale_number()

        for product, (product_id, qty) in zip(products, parsed_items):
            if product.track_inventory:
                inventory_service.debit(
                    seller_id,
                    product_id,
                    qty,
                    movement_type=inventory_service.MOVEMENT_SALE,
                    reference=sale_number,
                )

        sale = Sale(
            seller_id=seller_id,
            sale_number=sale_number,
            subtotal_cents=totals.subtotal_cents,
            tax_cents=totals.tax_cents,
            tax_rate=totals.tax_rate,
            discount_cents=totals.discount_cents,
            total_cents=totals.total_cents,
            currency=current_app.config["DEFAULT_CURRENCY"],
            payment_method=pay["method"],
            cash_received_cents=pay["cash_received_cents"],
            change_given_cents=change_given,
            card_reference=pay["card_reference"],
            notes=notes,
            status=SALE_STATUS_COMPLETED,
            **customer_fields,
        )
        db.session.add(sale)
        db.session.flush()

        for position, (product, (product_id, qty), line_total) in enumerate(
            zip(products, parsed_items, line_totals)
        ):
            db.session.add(
                SaleLine(
                    sale_id=sale.id,
                    product_id=product_id,
                    position=position,
                    name=product.name,
                    sku=product.sku,
                    quantity=qty,
                    unit_price_cents=product.price_cents,
                    line_total_cents=line_total,
                    stock_tracked=bool(product.track_inventory),
                )
            )
        db.session.flush()

        append_ledger_event(
            seller_id=seller_id,
            event_type="sale.completed",
            entity_type="sale",
            entity_id=sale.id,
            reference=sale.sale_number,
            amount_cents=sale.total_cents,
            payload={"payment_method": sale.payment_method, "lines": len(parsed_items)},
        )
        return sale

    sale = run_in_transaction(_op)
    current_app.logger.info("Sale %s recorded for seller %s (%s cents)", sale.sale_number, seller_id, sale.total_cents)
    return sale


def returned_quantities(sale_id: int, resolution: str | None = None) -> dict[int, int]:
    """
    Units per product already credited back by approved/completed returns.

    With ``resolution`` only returns settled that way are counted.
    """
    q = (
        db.session.query(ReturnLine.product_id, func.coalesce(func.sum(ReturnLine.quantity), 0))
        .join(ProductReturn, ProductReturn.id == ReturnLine.return_id)
        .filter(
            ProductReturn.sale_id == sale_id,
            ProductReturn.status.in_([RETURN_STATUS_APPROVED, RETURN_STATUS_COMPLETED]),
        )
    )
    if resolution:
        q = q.filter(ProductReturn.resolution == resolution)
    rows = q.group_by(ReturnLine.product_id).all()
    return {product_id: int(qty) for product_id, qty in rows}


def refund_sale(seller_id: int, sale_id: int) -> Sale:
    """
    Refund a whole sale and restore its stock.

    The status flip is a conditional UPDATE, so two concurrent refunds of the
    same sale cannot both succeed.
    """
    def _op():
        sale = lock_for_update(
            db.session.query(Sale).filter(Sale.id == sale_id, Sale.seller_id == seller_id)
        ).first()
        if not sale:
            raise NotFoundError("Sale not found", details={"sale_id": sale_id})

        now = utcnow()
        result = db.session.execute(
            update(Sale)
            .where(
                Sale.id == sale_id,
                Sale.seller_id == seller_id,
                Sale.status.in_([SALE_STATUS_COMPLETED, SALE_STATUS_PARTIAL_REFUND]),
            )
            .values(status=SALE_STATUS_REFUNDED, refunded_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError("Sale already refunded", details={"sale_id": sale_id})

        already_returned = defaultdict(int, returned_quantities(sale_id))
        for line in sale.lines:
            if not line.stock_tracked:
                continue
            covered = min(already_returned[line.product_id], line.quantity)
            already_returned[line.product_id] -= covered
            to_credit = line.quantity - covered
            if to_credit > 0:
                inventory_service.credit(
                    seller_id,
                    line.product_id,
                    to_credit,
                    movement_type=inventory_service.MOVEMENT_REFUND,
                    reference=sale.sale_number,
                )

        append_ledger_event(
            seller_id=seller_id,
            event_type="sale.refunded",
            entity_type="sale",
            entity_id=sale.id,
            reference=sale.sale_number,
            amount_cents=sale.total_cents,
        )
        return sale

    sale = run_in_transaction(_op)
    current_app.logger.info("Sale %s refunded for seller %s", sale.sale_number, seller_id)
    return sale


def list_sales(
    seller_id: int,
    *,
    page: int | None = 1,
    limit: int | None = None,
    status: str | None = None,
    payment_method: str | None = None,
    date_from=None,
    date_to=None,
    search: str | None = None,
) -> dict:
    """Seller's sales, newest first."""
    start, end = parse_date_range(date_from, date_to)

    q = db.session.query(Sale).filter(Sale.seller_id == seller_id)
    if status:
        q = q.filter(Sale.status == status)
    if payment_method:
        q = q.filter(Sale.payment_method == payment_method)
    if start:
        q = q.filter(Sale.created_at >= start)
    if end:
        q = q.filter(Sale.created_at <= end)
    if search and search.strip():
        pattern = like_pattern(search)
        q = q.filter(
            or_(
                Sale.sale_number.ilike(pattern, escape="\\"),
                Sale.customer_name.ilike(pattern, escape="\\"),
                Sale.lines.any(SaleLine.name.ilike(pattern, escape="\\")),
            )
        )

    q = q.order_by(Sale.created_at.desc(), Sale.id.desc())
    return paginate(q, page, limit, lambda s: s.to_dict())
