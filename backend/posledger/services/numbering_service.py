# Overview: Document numbering; atomic per-seller counters and random sale/return numbers.

from __future__ import annotations

import secrets
import time

from flask import current_app
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from ..errors import InternalError, ValidationError
from ..extensions import db
from ..models import DocumentSequence

DOCUMENT_TYPE_INVOICE = "invoice"

INVOICE_PREFIX = "FAC"
SALE_PREFIX = "POS"
RETURN_PREFIX = "RET"


def next_number(seller_id: int, document_type: str, period: str = "") -> int:
    """
    Allocate the next number in a (seller, document type, period) scope.

    The counter row is bumped with a single UPDATE. When the row does not
    exist yet it is inserted inside a SAVEPOINT; if a concurrent caller
    created it first the insert fails on the unique constraint and the loop
    goes back to the UPDATE. Runs inside the caller's transaction.
    """
    if not seller_id:
        raise ValidationError("seller_id is required")
    if not document_type:
        raise ValidationError("document_type is required")

    scope = (
        DocumentSequence.seller_id == seller_id,
        DocumentSequence.document_type == document_type,
        DocumentSequence.period == period,
    )
    bump = (
        update(DocumentSequence)
        .where(*scope)
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    attempts = current_app.config.get("NUMBERING_MAX_ATTEMPTS", 5)
    for _ in range(attempts):
        result = db.session.execute(bump)
        if result.rowcount:
            current = db.session.execute(select(DocumentSequence.next_number).where(*scope)).scalar_one()
            return current - 1

        try:
            with db.session.begin_nested():
                db.session.add(
                    DocumentSequence(
                        seller_id=seller_id,
                        document_type=document_type,
                        period=period,
                        next_number=2,
                    )
                )
            return 1
        except IntegrityError:
            current_app.logger.info(
                "Sequence %s/%s/%s created concurrently; retrying increment",
                seller_id, document_type, period,
            )
            continue

    raise InternalError(
        "Could not allocate a document number",
        details={"document_type": document_type, "period": period},
    )


def format_invoice_number(year: int, number: int) -> str:
    return f"{INVOICE_PREFIX}-{year}-{number:06d}"


def next_invoice_number(seller_id: int, year: int) -> str:
    return format_invoice_number(year, next_number(seller_id, DOCUMENT_TYPE_INVOICE, str(year)))


def _random_number(prefix: str) -> str:
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(4).upper()}"


def generate_sale_number() -> str:
    """POS-<epoch ms>-<8 uppercase hex>; uniqueness is backed by the DB constraint."""
    return _random_number(SALE_PREFIX)


def generate_return_number() -> str:
    return _random_number(RETURN_PREFIX)
