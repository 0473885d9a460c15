"""
Return Processing Service

Returns move through a small approval workflow. Creating a return is pure
bookkeeping; stock comes back only when the return is approved, and the
pending -> approved transition is a conditional UPDATE so it can happen at
most once no matter how many callers race on it.

LIFECYCLE:
1. Create return (pending)
2. Approve (credits stock) or reject (no stock effect)
3. Complete (approved -> completed), closes the document
"""

from __future__ import annotations

from collections import defaultdict

from flask import current_app
from sqlalchemy import func, or_, update

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import ProductReturn, ReturnLine, Sale
from ..models.documents import (
    RETURN_RESOLUTIONS,
    RETURN_STATUS_APPROVED,
    RETURN_STATUS_COMPLETED,
    RETURN_STATUS_PENDING,
    RETURN_STATUS_REJECTED,
)
from ..models.sales import SALE_STATUS_COMPLETED, SALE_STATUS_PARTIAL_REFUND, SALE_STATUS_REFUNDED
from ..time_utils import utcnow
from . import inventory_service
from .concurrency import lock_for_update, run_in_transaction
from .ledger_service import append_ledger_event
from .listing import like_pattern, paginate
from .numbering_service import generate_return_number
from .sales_service import returned_quantities
from .totals import compute_totals, parse_cents, parse_quantity, parse_tax_rate

DEFAULT_RETURN_REASON = "Not specified"


def get_return(seller_id: int, return_id: int) -> ProductReturn:
    return_doc = (
        db.session.query(ProductReturn)
        .filter(ProductReturn.id == return_id, ProductReturn.seller_id == seller_id)
        .first()
    )
    if not return_doc:
        raise NotFoundError("Return not found", details={"return_id": return_id})
    return return_doc


def _parse_return_items(items) -> list[dict]:
    if not isinstance(items, list) or not items:
        raise ValidationError("At least one item is required", details={"field": "items"})

    parsed = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError("Each item must be an object", details={"index": index})
        product_id = item.get("product_id")
        if isinstance(product_id, bool) or not isinstance(product_id, int):
            raise ValidationError("product_id is required", details={"index": index, "field": "product_id"})
        parsed.append(
            {
                "product_id": product_id,
                "quantity": parse_quantity(item.get("quantity")),
                "unit_price_cents": parse_cents(
                    item.get("unit_price_cents"), field="unit_price_cents", allow_none=True
                ),
                "reason": (item.get("reason") or "").strip() or DEFAULT_RETURN_REASON,
            }
        )
    return parsed


def _check_against_sale(seller_id: int, sale_id: int, items: list[dict]) -> Sale:
    """
    A return against a sale may only take back what the sale sold, net of
    every other non-rejected return already filed against it.
    """
    sale = lock_for_update(
        db.session.query(Sale).filter(Sale.id == sale_id, Sale.seller_id == seller_id)
    ).first()
    if not sale:
        raise NotFoundError("Sale not found", details={"sale_id": sale_id})
    if sale.status == SALE_STATUS_REFUNDED:
        raise ConflictError("Sale already refunded", details={"sale_id": sale_id})

    sold = defaultdict(int)
    for line in sale.lines:
        sold[line.product_id] += line.quantity

    claimed = defaultdict(int)
    rows = (
        db.session.query(ReturnLine.product_id, func.coalesce(func.sum(ReturnLine.quantity), 0))
        .join(ProductReturn, ProductReturn.id == ReturnLine.return_id)
        .filter(
            ProductReturn.sale_id == sale_id,
            ProductReturn.status != RETURN_STATUS_REJECTED,
        )
        .group_by(ReturnLine.product_id)
        .all()
    )
    for product_id, qty in rows:
        claimed[product_id] = int(qty)

    requested = defaultdict(int)
    for item in items:
        requested[item["product_id"]] += item["quantity"]

    for product_id, qty in requested.items():
        if product_id not in sold:
            raise ValidationError(
                "Item was not part of the sale",
                details={"item_id": product_id, "sale_id": sale_id},
            )
        remaining = sold[product_id] - claimed[product_id]
        if qty > remaining:
            raise ValidationError(
                "Return quantity exceeds the quantity sold",
                details={"item_id": product_id, "sold": sold[product_id], "returnable": remaining, "requested": qty},
            )
    return sale


def create_return(
    seller_id: int,
    items,
    resolution: str,
    *,
    sale_id: int | None = None,
    customer=None,
    tax_rate=None,
    notes: str | None = None,
) -> ProductReturn:
    """Create a pending return. Stock is untouched until approval."""
    if resolution not in RETURN_RESOLUTIONS:
        raise ValidationError(
            "resolution must be one of refund, exchange, credit",
            details={"field": "resolution", "allowed": list(RETURN_RESOLUTIONS)},
        )
    parsed_items = _parse_return_items(items)
    if sale_id is None and current_app.config.get("RETURNS_REQUIRE_SALE"):
        raise ValidationError("sale_id is required", details={"field": "sale_id"})
    if customer is not None and not isinstance(customer, dict):
        raise ValidationError("customer must be an object", details={"field": "customer"})

    def _op():
        sale = _check_against_sale(seller_id, sale_id, parsed_items) if sale_id is not None else None

        rate = parse_tax_rate(
            tax_rate,
            sale.tax_rate if sale is not None else current_app.config["DEFAULT_TAX_RATE"],
        )

        sale_prices = {}
        if sale is not None:
            for line in sale.lines:
                sale_prices.setdefault(line.product_id, line.unit_price_cents)

        lines = []
        for position, item in enumerate(parsed_items):
            product = inventory_service.get_product(seller_id, item["product_id"])
            unit_price = item["unit_price_cents"]
            if unit_price is None:
                unit_price = sale_prices.get(product.id, product.price_cents)
            lines.append(
                ReturnLine(
                    product_id=product.id,
                    position=position,
                    name=product.name,
                    sku=product.sku,
                    quantity=item["quantity"],
                    unit_price_cents=unit_price,
                    line_total_cents=unit_price * item["quantity"],
                    reason=item["reason"],
                )
            )

        totals = compute_totals([line.line_total_cents for line in lines], rate)

        cust = customer or {}
        return_doc = ProductReturn(
            seller_id=seller_id,
            return_number=generate_return_number(),
            sale_id=sale.id if sale is not None else None,
            customer_name=(cust.get("name") or "").strip() or (sale.customer_name if sale else None),
            customer_phone=(cust.get("phone") or "").strip() or (sale.customer_phone if sale else None),
            customer_email=(cust.get("email") or "").strip() or (sale.customer_email if sale else None),
            subtotal_cents=totals.subtotal_cents,
            tax_cents=totals.tax_cents,
            tax_rate=totals.tax_rate,
            total_cents=totals.total_cents,
            currency=sale.currency if sale is not None else current_app.config["DEFAULT_CURRENCY"],
            resolution=resolution,
            credit_amount_cents=totals.total_cents if resolution == "credit" else None,
            status=RETURN_STATUS_PENDING,
            notes=notes,
        )
        return_doc.lines = lines
        db.session.add(return_doc)
        db.session.flush()

        append_ledger_event(
            seller_id=seller_id,
            event_type="return.created",
            entity_type="return",
            entity_id=return_doc.id,
            reference=return_doc.return_number,
            amount_cents=return_doc.total_cents,
            payload={"resolution": resolution, "sale_id": return_doc.sale_id},
        )
        return return_doc

    return run_in_transaction(_op)


def _transition(seller_id: int, return_id: int, from_status: str, values: dict) -> ProductReturn:
    """
    Conditional status move; exactly one caller can win a given transition.

    Raises NotFoundError for an unknown/foreign return and ConflictError when
    the return is no longer in ``from_status``.
    """
    return_doc = get_return(seller_id, return_id)
    result = db.session.execute(
        update(ProductReturn)
        .where(
            ProductReturn.id == return_id,
            ProductReturn.seller_id == seller_id,
            ProductReturn.status == from_status,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.refresh(return_doc)
        raise ConflictError(
            f"Return is {return_doc.status}, expected {from_status}",
            details={"return_id": return_id, "status": return_doc.status},
        )
    db.session.refresh(return_doc)
    return return_doc


def _settle_sale_status(return_doc: ProductReturn) -> None:
    """
    After a refund-resolution approval, mark the sale partially or fully refunded.

    Only refund-resolution returns count toward a full refund; exchanged or
    credited units keep the sale's revenue.
    """
    sale = db.session.get(Sale, return_doc.sale_id)
    sold = sum(line.quantity for line in sale.lines)
    refunded = sum(returned_quantities(sale.id, resolution="refund").values())

    new_status = SALE_STATUS_REFUNDED if refunded >= sold else SALE_STATUS_PARTIAL_REFUND
    now = utcnow()
    values = {"status": new_status, "updated_at": now}
    if new_status == SALE_STATUS_REFUNDED:
        values["refunded_at"] = now

    db.session.execute(
        update(Sale)
        .where(
            Sale.id == sale.id,
            Sale.status.in_([SALE_STATUS_COMPLETED, SALE_STATUS_PARTIAL_REFUND]),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )


def approve_return(seller_id: int, return_id: int) -> ProductReturn:
    """
    Approve a pending return and credit stock for every tracked line.

    A second approval (or an approval of a rejected/completed return) is a
    ConflictError and credits nothing.
    """
    def _op():
        return_doc = get_return(seller_id, return_id)
        sale = None
        if return_doc.sale_id is not None:
            sale = lock_for_update(db.session.query(Sale).filter(Sale.id == return_doc.sale_id)).first()
            if sale is not None and sale.status == SALE_STATUS_REFUNDED:
                raise ConflictError(
                    "Sale already refunded",
                    details={"sale_id": sale.id, "return_id": return_id},
                )

        now = utcnow()
        return_doc = _transition(
            seller_id,
            return_id,
            RETURN_STATUS_PENDING,
            {"status": RETURN_STATUS_APPROVED, "approved_at": now, "updated_at": now},
        )

        # Sale-linked lines follow the tracking flag frozen on the sale
        sold_tracked = {}
        if sale is not None:
            for sale_line in sale.lines:
                tracked = sold_tracked.get(sale_line.product_id, False)
                sold_tracked[sale_line.product_id] = tracked or sale_line.stock_tracked
        movement_type = (
            inventory_service.MOVEMENT_REFUND if return_doc.resolution == "refund" else inventory_service.MOVEMENT_RETURN
        )

        for line in return_doc.lines:
            if line.product_id in sold_tracked:
                tracked = sold_tracked[line.product_id]
            else:
                tracked = inventory_service.get_product(seller_id, line.product_id).track_inventory
            if not tracked:
                continue
            inventory_service.credit(
                seller_id,
                line.product_id,
                line.quantity,
                movement_type=movement_type,
                reference=return_doc.return_number,
            )

        if return_doc.sale_id is not None and return_doc.resolution == "refund":
            _settle_sale_status(return_doc)

        append_ledger_event(
            seller_id=seller_id,
            event_type="return.approved",
            entity_type="return",
            entity_id=return_doc.id,
            reference=return_doc.return_number,
            amount_cents=return_doc.total_cents,
        )
        return return_doc

    return_doc = run_in_transaction(_op)
    current_app.logger.info("Return %s approved for seller %s", return_doc.return_number, seller_id)
    return return_doc


def reject_return(seller_id: int, return_id: int, reason: str | None = None) -> ProductReturn:
    reason = (reason or "").strip() or None

    def _op():
        now = utcnow()
        return_doc = _transition(
            seller_id,
            return_id,
            RETURN_STATUS_PENDING,
            {
                "status": RETURN_STATUS_REJECTED,
                "rejected_at": now,
                "rejection_reason": reason,
                "updated_at": now,
            },
        )
        append_ledger_event(
            seller_id=seller_id,
            event_type="return.rejected",
            entity_type="return",
            entity_id=return_doc.id,
            reference=return_doc.return_number,
            note=reason,
        )
        return return_doc

    return run_in_transaction(_op)


def complete_return(seller_id: int, return_id: int) -> ProductReturn:
    """Close an approved return. Stock was already restored on approval."""
    def _op():
        now = utcnow()
        return_doc = _transition(
            seller_id,
            return_id,
            RETURN_STATUS_APPROVED,
            {"status": RETURN_STATUS_COMPLETED, "completed_at": now, "updated_at": now},
        )
        append_ledger_event(
            seller_id=seller_id,
            event_type="return.completed",
            entity_type="return",
            entity_id=return_doc.id,
            reference=return_doc.return_number,
        )
        return return_doc

    return run_in_transaction(_op)


def list_returns(
    seller_id: int,
    *,
    page: int | None = 1,
    limit: int | None = None,
    status: str | None = None,
    resolution: str | None = None,
    search: str | None = None,
) -> dict:
    q = db.session.query(ProductReturn).filter(ProductReturn.seller_id == seller_id)
    if status:
        q = q.filter(ProductReturn.status == status)
    if resolution:
        q = q.filter(ProductReturn.resolution == resolution)
    if search and search.strip():
        pattern = like_pattern(search)
        q = q.filter(
            or_(
                ProductReturn.return_number.ilike(pattern, escape="\\"),
                ProductReturn.customer_name.ilike(pattern, escape="\\"),
                ProductReturn.lines.any(ReturnLine.name.ilike(pattern, escape="\\")),
            )
        )
    q = q.order_by(ProductReturn.created_at.desc(), ProductReturn.id.desc())
    return paginate(q, page, limit, lambda r: r.to_dict())
