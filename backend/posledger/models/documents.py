from __future__ import annotations

import json

from ..extensions import db
from posledger.time_utils import to_utc_z, utcnow


RETURN_STATUS_PENDING = "pending"
RETURN_STATUS_APPROVED = "approved"
RETURN_STATUS_COMPLETED = "completed"
RETURN_STATUS_REJECTED = "rejected"

RETURN_RESOLUTIONS = ("refund", "exchange", "credit")

INVOICE_STATUS_DRAFT = "draft"
INVOICE_STATUS_SENT = "sent"
INVOICE_STATUS_PAID = "paid"
INVOICE_STATUS_OVERDUE = "overdue"
INVOICE_STATUS_CANCELLED = "cancelled"

INVOICE_PAYMENT_METHODS = ("cash", "card", "check", "transfer", "other")


class ProductReturn(db.Model):
    """
    Return document (status: pending -> approved|rejected, approved -> completed).

    Creating a return never touches stock. Stock is credited exactly once,
    by the pending -> approved transition.
    """
    __tablename__ = "product_returns"
    __table_args__ = (
        db.UniqueConstraint("return_number", name="uq_product_returns_number"),
        db.Index("ix_product_returns_seller_created", "seller_id", "created_at"),
        db.Index("ix_product_returns_seller_status", "seller_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    seller_id = db.Column(db.Integer, nullable=False, index=True)
    return_number = db.Column(db.String(64), nullable=False)

    # Optional: freestanding counter returns have no originating sale
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)

    customer_name = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(64), nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_rate = db.Column(db.Float, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="EUR")

    resolution = db.Column(db.String(16), nullable=False)
    credit_amount_cents = db.Column(db.Integer, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=RETURN_STATUS_PENDING)
    notes = db.Column(db.Text, nullable=True)
    rejection_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    approved_at = db.Column(db.DateTime, nullable=True)
    rejected_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)

    sale = db.relationship("Sale", backref=db.backref("returns", lazy=True))
    lines = db.relationship(
        "ReturnLine",
        backref="product_return",
        lazy=True,
        order_by="ReturnLine.position",
        cascade="all, delete-orphan",
    )

    def to_dict(self) -> dict:
        customer = None
        if self.customer_name or self.customer_phone or self.customer_email:
            customer = {
                "name": self.customer_name,
                "phone": self.customer_phone,
                "email": self.customer_email,
            }
        return {
            "id": self.id,
            "seller_id": self.seller_id,
            "return_number": self.return_number,
            "sale_id": self.sale_id,
            "customer": customer,
            "items": [line.to_dict() for line in self.lines],
            "totals": {
                "subtotal_cents": self.subtotal_cents,
                "tax_cents": self.tax_cents,
                "tax_rate": self.tax_rate,
                "total_cents": self.total_cents,
                "currency": self.currency,
            },
            "resolution": self.resolution,
            "credit_amount_cents": self.credit_amount_cents,
            "status": self.status,
            "notes": self.notes,
            "rejection_reason": self.rejection_reason,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "approved_at": to_utc_z(self.approved_at) if self.approved_at else None,
            "rejected_at": to_utc_z(self.rejected_at) if self.rejected_at else None,
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
        }


class ReturnLine(db.Model):
    __tablename__ = "return_lines"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_return_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("product_returns.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_id": self.return_id,
            "product_id": self.product_id,
            "name": self.name,
            "sku": self.sku,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "reason": self.reason,
        }


class Invoice(db.Model):
    """
    Formal invoice, numbered FAC-<year>-<sequence> per seller.

    Content (customer, lines, totals, payment method, seller info) is only
    editable while 'draft'. 'paid' and 'cancelled' are terminal.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("seller_id", "invoice_number", name="uq_invoices_seller_number"),
        db.Index("ix_invoices_seller_created", "seller_id", "created_at"),
        db.Index("ix_invoices_seller_status", "seller_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    seller_id = db.Column(db.Integer, nullable=False, index=True)
    invoice_number = db.Column(db.String(32), nullable=False)

    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)

    customer_name = db.Column(db.String(255), nullable=False)
    customer_email = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(64), nullable=True)
    customer_address = db.Column(db.String(512), nullable=True)
    customer_company = db.Column(db.String(255), nullable=True)
    customer_siret = db.Column(db.String(32), nullable=True)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    tax_rate = db.Column(db.Float, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="EUR")

    payment_method = db.Column(db.String(16), nullable=False)
    paid = db.Column(db.Boolean, nullable=False, default=False)
    paid_at = db.Column(db.DateTime, nullable=True)
    payment_reference = db.Column(db.String(128), nullable=True)

    # Seller/company snapshot printed on the invoice
    seller_company_name = db.Column(db.String(255), nullable=False)
    seller_address = db.Column(db.String(512), nullable=True)
    seller_phone = db.Column(db.String(64), nullable=True)
    seller_email = db.Column(db.String(255), nullable=True)
    seller_siret = db.Column(db.String(32), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    due_date = db.Column(db.DateTime, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=INVOICE_STATUS_DRAFT)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    sent_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)

    sale = db.relationship("Sale", backref=db.backref("invoices", lazy=True))
    lines = db.relationship(
        "InvoiceLine",
        backref="invoice",
        lazy=True,
        order_by="InvoiceLine.position",
        cascade="all, delete-orphan",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "seller_id": self.seller_id,
            "invoice_number": self.invoice_number,
            "sale_id": self.sale_id,
            "customer": {
                "name": self.customer_name,
                "email": self.customer_email,
                "phone": self.customer_phone,
                "address": self.customer_address,
                "company": self.customer_company,
                "siret": self.customer_siret,
            },
            "items": [line.to_dict() for line in self.lines],
            "totals": {
                "subtotal_cents": self.subtotal_cents,
                "tax_rate": self.tax_rate,
                "tax_cents": self.tax_cents,
                "discount_cents": self.discount_cents,
                "total_cents": self.total_cents,
                "currency": self.currency,
            },
            "payment": {
                "method": self.payment_method,
                "paid": self.paid,
                "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
                "reference": self.payment_reference,
            },
            "seller_info": {
                "company_name": self.seller_company_name,
                "address": self.seller_address,
                "phone": self.seller_phone,
                "email": self.seller_email,
                "siret": self.seller_siret,
            },
            "notes": self.notes,
            "due_date": to_utc_z(self.due_date) if self.due_date else None,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "sent_at": to_utc_z(self.sent_at) if self.sent_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
        }


class InvoiceLine(db.Model):
    __tablename__ = "invoice_lines"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_invoice_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)
    description = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "product_id": self.product_id,
            "description": self.description,
            "sku": self.sku,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }


class DocumentSequence(db.Model):
    """
    Atomic per-seller document counters.

    WHY: "read the highest number and add one" hands out duplicates under
    concurrent callers. The counter row is incremented with a single UPDATE.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("seller_id", "document_type", "period", name="uq_doc_sequences_scope"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    seller_id = db.Column(db.Integer, nullable=False, index=True)
    document_type = db.Column(db.String(32), nullable=False)
    # e.g. "2026" for invoices; "" for unbounded sequences
    period = db.Column(db.String(16), nullable=False, default="")
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "seller_id": self.seller_id,
            "document_type": self.document_type,
            "period": self.period,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }


class LedgerEvent(db.Model):
    """Append-only audit log; rows are never updated or deleted."""
    __tablename__ = "ledger_events"
    __table_args__ = (
        db.Index("ix_ledger_events_seller_occurred", "seller_id", "occurred_at"),
        db.Index("ix_ledger_events_entity", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    seller_id = db.Column(db.Integer, nullable=False, index=True)
    event_type = db.Column(db.String(64), nullable=False, index=True)
    entity_type = db.Column(db.String(32), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)
    reference = db.Column(db.String(64), nullable=True)
    amount_cents = db.Column(db.Integer, nullable=True)
    note = db.Column(db.String(255), nullable=True)
    payload = db.Column(db.Text, nullable=True)
    occurred_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "seller_id": self.seller_id,
            "event_type": self.event_type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "reference": self.reference,
            "amount_cents": self.amount_cents,
            "note": self.note,
            "payload": json.loads(self.payload) if self.payload else None,
            "occurred_at": to_utc_z(self.occurred_at),
        }
