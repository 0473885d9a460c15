from __future__ import annotations

from ..extensions import db
from posledger.time_utils import to_utc_z, utcnow


SALE_STATUS_COMPLETED = "completed"
SALE_STATUS_REFUNDED = "refunded"
SALE_STATUS_PARTIAL_REFUND = "partial_refund"

SALE_PAYMENT_METHODS = ("cash", "card", "check", "mixed")


class Sale(db.Model):
    """
    Completed in-person sale.

    A sale is written once, already 'completed', together with the stock
    debits it caused. Afterwards only its status may move to 'refunded' or
    'partial_refund'; lines and totals never change.

    All money is in integer cents: total_cents = subtotal + tax - discount.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("sale_number", name="uq_sales_sale_number"),
        db.Index("ix_sales_seller_created", "seller_id", "created_at"),
        db.Index("ix_sales_seller_status", "seller_id", "status"),
        db.Index("ix_sales_seller_payment_method", "seller_id", "payment_method"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    seller_id = db.Column(db.Integer, nullable=False, index=True)

    # Human-readable number (e.g., "POS-1760882400000-9F2C01AB")
    sale_number = db.Column(db.String(64), nullable=False)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_rate = db.Column(db.Float, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="EUR")

    payment_method = db.Column(db.String(16), nullable=False)
    cash_received_cents = db.Column(db.Integer, nullable=True)
    change_given_cents = db.Column(db.Integer, nullable=True)
    card_reference = db.Column(db.String(128), nullable=True)

    # Customer snapshot (optional, denormalized)
    customer_name = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(64), nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)

    notes = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=SALE_STATUS_COMPLETED)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    refunded_at = db.Column(db.DateTime, nullable=True)

    lines = db.relationship(
        "SaleLine",
        backref="sale",
        lazy=True,
        order_by="SaleLine.position",
        cascade="all, delete-orphan",
    )

    def customer_dict(self) -> dict | None:
        if not (self.customer_name or self.customer_phone or self.customer_email):
            return None
        return {
            "name": self.customer_name,
            "phone": self.customer_phone,
            "email": self.customer_email,
        }

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "seller_id": self.seller_id,
            "sale_number": self.sale_number,
            "totals": {
                "subtotal_cents": self.subtotal_cents,
                "tax_cents": self.tax_cents,
                "tax_rate": self.tax_rate,
                "discount_cents": self.discount_cents,
                "total_cents": self.total_cents,
                "currency": self.currency,
            },
            "payment": {
                "method": self.payment_method,
                "cash_received_cents": self.cash_received_cents,
                "change_given_cents": self.change_given_cents,
                "card_reference": self.card_reference,
            },
            "customer": self.customer_dict(),
            "notes": self.notes,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "refunded_at": to_utc_z(self.refunded_at) if self.refunded_at else None,
        }
        if include_lines:
            data["items"] = [line.to_dict() for line in self.lines]
        return data


class SaleLine(db.Model):
    """Line item on a sale; name and SKU are frozen at sale time."""
    __tablename__ = "sale_lines"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_sale_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    # Whether the sale debited stock for this line
    stock_tracked = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "name": self.name,
            "sku": self.sku,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "stock_tracked": self.stock_tracked,
        }
