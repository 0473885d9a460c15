from __future__ import annotations

from ..extensions import db
from posledger.time_utils import to_utc_z, utcnow


PRODUCT_STATUS_DRAFT = "draft"
PRODUCT_STATUS_ACTIVE = "active"
PRODUCT_STATUS_INACTIVE = "inactive"
PRODUCT_STATUS_OUT_OF_STOCK = "out-of-stock"


class Product(db.Model):
    """
    Catalog item as seen by the POS ledger.

    Only the inventory subset of the marketplace product lives here: the
    current price, the stock counter and its tracking flag. Products are
    owned by exactly one seller; every lookup is seller-scoped.

    STOCK INVARIANTS:
    - quantity is never negative (CHECK constraint plus conditional updates)
    - quantity reaching 0 through a debit flips status to 'out-of-stock'
    - a credit lifting quantity above 0 flips 'out-of-stock' back to 'active'
    - quantity is only mutated through services.inventory_service
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("seller_id", "sku", name="uq_products_seller_sku"),
        db.CheckConstraint("quantity >= 0", name="ck_products_quantity_non_negative"),
        db.Index("ix_products_seller_name", "seller_id", "name"),
        db.Index("ix_products_seller_quantity", "seller_id", "track_inventory", "quantity"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    seller_id = db.Column(db.Integer, nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)

    # Current catalog price; sales always snapshot this, never a client price
    price_cents = db.Column(db.Integer, nullable=False, default=0)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    track_inventory = db.Column(db.Boolean, nullable=False, default=True)
    status = db.Column(db.String(16), nullable=False, default=PRODUCT_STATUS_ACTIVE, index=True)

    # Cumulative units sold through the POS
    sales_count = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} qty={self.quantity} seller_id={self.seller_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "seller_id": self.seller_id,
            "sku": self.sku,
            "name": self.name,
            "price_cents": self.price_cents,
            "quantity": self.quantity,
            "track_inventory": self.track_inventory,
            "status": self.status,
            "sales_count": self.sales_count,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only record of every stock mutation.

    quantity_before/quantity_after are captured from the row right after the
    conditional update, so they are the authoritative history of the counter.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_seller_product_occurred", "seller_id", "product_id", "occurred_at"),
        db.Index("ix_stock_movements_reference", "reference"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    seller_id = db.Column(db.Integer, nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    # SALE, REFUND, RETURN, ADJUST
    movement_type = db.Column(db.String(16), nullable=False, index=True)

    quantity_delta = db.Column(db.Integer, nullable=False)
    quantity_before = db.Column(db.Integer, nullable=False)
    quantity_after = db.Column(db.Integer, nullable=False)

    reference = db.Column(db.String(64), nullable=True)
    note = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)

    product = db.relationship("Product", backref=db.backref("movements", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "seller_id": self.seller_id,
            "product_id": self.product_id,
            "movement_type": self.movement_type,
            "quantity_delta": self.quantity_delta,
            "quantity_before": self.quantity_before,
            "quantity_after": self.quantity_after,
            "reference": self.reference,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }
