# Overview: Inventory store; the only code path that mutates product stock counters.

from __future__ import annotations

from flask import current_app
from sqlalchemy import and_, case, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..errors import (
    ConflictError,
    InsufficientStockError,
    InternalError,
    ItemNotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import Product, StockMovement
from ..models.inventory import PRODUCT_STATUS_ACTIVE, PRODUCT_STATUS_OUT_OF_STOCK
from .concurrency import run_in_transaction
from .ledger_service import append_ledger_event
from .listing import paginate
"""
Inventory Invariants (authoritative)

- Product.quantity is never negative (conditional UPDATE plus CHECK constraint).
- Every mutation is a single conditional UPDATE; there is no read-then-write.
- A debit that leaves quantity at 0 sets status 'out-of-stock' in the same statement.
- A credit that lifts quantity above 0 reactivates an 'out-of-stock' product in the same statement.
- Every mutation appends a StockMovement whose before/after quantities are read
  back from the row after the UPDATE, inside the same transaction.
- debit()/credit() never commit; callers own the transaction.
"""

MOVEMENT_SALE = "SALE"
MOVEMENT_REFUND = "REFUND"
MOVEMENT_RETURN = "RETURN"
MOVEMENT_ADJUST = "ADJUST"

STOCK_STATUS_OUT = "out"
STOCK_STATUS_LOW = "low"
STOCK_STATUS_OK = "ok"


def get_product(seller_id: int, product_id: int) -> Product:
    product = (
        db.session.query(Product)
        .filter(Product.id == product_id, Product.seller_id == seller_id)
        .first()
    )
    if not product:
        raise ItemNotFoundError("Item not found", details={"item_id": product_id})
    return product


def _reload(product_id: int) -> Product:
    # populate_existing refreshes any stale instance already in the identity map
    return db.session.get(Product, product_id, populate_existing=True)


def _record_movement(
    product: Product,
    *,
    movement_type: str,
    delta: int,
    reference: str | None,
    note: str | None,
) -> StockMovement:
    movement = StockMovement(
        seller_id=product.seller_id,
        product_id=product.id,
        movement_type=movement_type,
        quantity_delta=delta,
        quantity_before=product.quantity - delta,
        quantity_after=product.quantity,
        reference=reference,
        note=note,
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def debit(
    seller_id: int,
    product_id: int,
    quantity: int,
    *,
    movement_type: str = MOVEMENT_SALE,
    reference: str | None = None,
    note: str | None = None,
) -> StockMovement:
    """
    Atomically remove ``quantity`` units if at least that many are on hand.

    Raises ItemNotFoundError when the product is missing or owned by another
    seller, InsufficientStockError when fewer than ``quantity`` units remain.
    """
    if quantity < 1:
        raise ValidationError("quantity must be a positive integer", details={"field": "quantity"})

    values = {
        "quantity": Product.quantity - quantity,
        "status": case(
            (Product.quantity - quantity == 0, PRODUCT_STATUS_OUT_OF_STOCK),
            else_=Product.status,
        ),
    }
    if movement_type == MOVEMENT_SALE:
        values["sales_count"] = Product.sales_count + quantity

    stmt = (
        update(Product)
        .where(
            Product.id == product_id,
            Product.seller_id == seller_id,
            Product.quantity >= quantity,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )

    try:
        result = db.session.execute(stmt)
    except IntegrityError:
        # CHECK constraint tripped; the aborted statement leaves nothing to read back
        raise InsufficientStockError(product_id, 0, quantity)
    except SQLAlchemyError as exc:
        current_app.logger.exception("Stock debit failed for product %s", product_id)
        raise InternalError("Stock debit failed") from exc

    if result.rowcount != 1:
        product = get_product(seller_id, product_id)
        raise InsufficientStockError(product.id, product.quantity, quantity, name=product.name)

    product = _reload(product_id)
    return _record_movement(
        product, movement_type=movement_type, delta=-quantity, reference=reference, note=note
    )


def credit(
    seller_id: int,
    product_id: int,
    quantity: int,
    *,
    movement_type: str = MOVEMENT_RETURN,
    reference: str | None = None,
    note: str | None = None,
) -> StockMovement:
    """Atomically add ``quantity`` units back to a seller's product."""
    if quantity < 1:
        raise ValidationError("quantity must be a positive integer", details={"field": "quantity"})

    values = {
        "quantity": Product.quantity + quantity,
        "status": case(
            (
                and_(
                    Product.status == PRODUCT_STATUS_OUT_OF_STOCK,
                    Product.quantity + quantity > 0,
                ),
                PRODUCT_STATUS_ACTIVE,
            ),
            else_=Product.status,
        ),
    }
    if movement_type == MOVEMENT_REFUND:
        values["sales_count"] = case(
            (Product.sales_count >= quantity, Product.sales_count - quantity),
            else_=0,
        )

    stmt = (
        update(Product)
        .where(Product.id == product_id, Product.seller_id == seller_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )

    try:
        result = db.session.execute(stmt)
    except SQLAlchemyError as exc:
        current_app.logger.exception("Stock credit failed for product %s", product_id)
        raise InternalError("Stock credit failed") from exc

    if result.rowcount != 1:
        raise ItemNotFoundError("Item not found", details={"item_id": product_id})

    product = _reload(product_id)
    return _record_movement(
        product, movement_type=movement_type, delta=quantity, reference=reference, note=note
    )


def adjust_stock(seller_id: int, product_id: int, adjustment, reason: str | None = None) -> dict:
    """
    Manual stock correction, committed on success.

    Positive adjustments credit, negative ones go through the same
    conditional debit as a sale, so a correction can never drive stock
    below zero.
    """
    if isinstance(adjustment, bool) or not isinstance(adjustment, int) or adjustment == 0:
        raise ValidationError("adjustment must be a non-zero integer", details={"field": "adjustment"})

    note = (reason or "").strip() or None

    def _op():
        product = get_product(seller_id, product_id)
        if not product.track_inventory:
            raise ValidationError(
                "Inventory tracking is disabled for this item",
                details={"item_id": product_id},
            )

        if adjustment > 0:
            movement = credit(
                seller_id, product_id, adjustment, movement_type=MOVEMENT_ADJUST, note=note
            )
        else:
            movement = debit(
                seller_id, product_id, -adjustment, movement_type=MOVEMENT_ADJUST, note=note
            )

        append_ledger_event(
            seller_id=seller_id,
            event_type="stock.adjusted",
            entity_type="product",
            entity_id=product_id,
            note=note,
            payload={
                "adjustment": adjustment,
                "quantity_before": movement.quantity_before,
                "quantity_after": movement.quantity_after,
            },
        )
        return {
            "product_id": product_id,
            "name": movement.product.name,
            "sku": movement.product.sku,
            "previous_quantity": movement.quantity_before,
            "adjustment": adjustment,
            "new_quantity": movement.quantity_after,
            "status": movement.product.status,
            "reason": note,
        }

    return run_in_transaction(_op)


def _stock_status(quantity: int, threshold: int) -> str:
    if quantity <= 0:
        return STOCK_STATUS_OUT
    if quantity <= threshold:
        return STOCK_STATUS_LOW
    return STOCK_STATUS_OK


def list_stock(
    seller_id: int,
    *,
    page: int | None = 1,
    limit: int | None = None,
    stock_status: str | None = None,
) -> dict:
    """Tracked products ordered by quantity ascending (most urgent first)."""
    threshold = current_app.config.get("LOW_STOCK_THRESHOLD", 5)

    q = db.session.query(Product).filter(
        Product.seller_id == seller_id,
        Product.track_inventory.is_(True),
    )
    if stock_status == STOCK_STATUS_OUT:
        q = q.filter(Product.quantity == 0)
    elif stock_status == STOCK_STATUS_LOW:
        q = q.filter(Product.quantity > 0, Product.quantity <= threshold)
    elif stock_status == STOCK_STATUS_OK:
        q = q.filter(Product.quantity > threshold)
    elif stock_status:
        raise ValidationError(
            "stock_status must be one of out, low, ok",
            details={"field": "stock_status"},
        )

    q = q.order_by(Product.quantity.asc(), Product.id.asc())

    def _row(p: Product) -> dict:
        data = p.to_dict()
        data["stock_status"] = _stock_status(p.quantity, threshold)
        return data

    return paginate(q, page, limit, _row)


def restock_alerts(seller_id: int, threshold: int | None = None) -> list[dict]:
    if threshold is None:
        threshold = current_app.config.get("LOW_STOCK_THRESHOLD", 5)
    if threshold < 0:
        raise ValidationError("threshold must not be negative", details={"field": "threshold"})

    products = (
        db.session.query(Product)
        .filter(
            Product.seller_id == seller_id,
            Product.track_inventory.is_(True),
            Product.quantity <= threshold,
        )
        .order_by(Product.quantity.asc(), Product.name.asc())
        .all()
    )
    return [
        {
            "product_id": p.id,
            "name": p.name,
            "sku": p.sku,
            "quantity": p.quantity,
            "alert": STOCK_STATUS_OUT if p.quantity == 0 else STOCK_STATUS_LOW,
        }
        for p in products
    ]


def list_movements(seller_id: int, product_id: int, limit: int = 200) -> list[StockMovement]:
    get_product(seller_id, product_id)
    return (
        db.session.query(StockMovement)
        .filter(StockMovement.seller_id == seller_id, StockMovement.product_id == product_id)
        .order_by(StockMovement.occurred_at.desc(), StockMovement.id.desc())
        .limit(limit)
        .all()
    )


def create_product(
    seller_id: int,
    *,
    sku: str,
    name: str,
    price_cents: int,
    quantity: int = 0,
    track_inventory: bool = True,
) -> Product:
    """Catalog bootstrap used by the CLI seeder and tests."""
    sku = (sku or "").strip()
    name = (name or "").strip()
    if not sku or not name:
        raise ValidationError("sku and name are required")
    if price_cents < 0 or quantity < 0:
        raise ValidationError("price_cents and quantity must not be negative")

    def _op():
        product = Product(
            seller_id=seller_id,
            sku=sku,
            name=name,
            price_cents=price_cents,
            quantity=quantity,
            track_inventory=track_inventory,
            status=PRODUCT_STATUS_ACTIVE if quantity > 0 or not track_inventory else PRODUCT_STATUS_OUT_OF_STOCK,
        )
        db.session.add(product)
        try:
            db.session.flush()
        except IntegrityError:
            raise ConflictError(f"SKU {sku!r} already exists", details={"sku": sku})
        return product

    return run_in_transaction(_op)

