# Overview: Append-only audit trail of POS domain events.

from __future__ import annotations

import json
from datetime import datetime
from typing import Optional

from ..extensions import db
from ..models import LedgerEvent
"""
Ledger Event Invariants (authoritative)

- Append-only audit log for cross-cutting domain events.
- No domain/business logic in the ledger itself.
- Events are written inside the same DB transaction as the domain event they record.
- Reads are always seller-scoped and ordered by occurred_at, then id.
"""


def append_ledger_event(
    *,
    seller_id: int,
    event_type: str,
    entity_type: str,
    entity_id: int,
    reference: str | None = None,
    amount_cents: int | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
    payload: dict | None = None,
) -> LedgerEvent:
    """
    Append one ledger event to the current transaction.

    Never commits; the caller's commit (or rollback) decides whether the
    event exists.
    """
    ev = LedgerEvent(
        seller_id=seller_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        reference=reference,
        amount_cents=amount_cents,
        occurred_at=occurred_at,  # if None, column default applies
        note=note,
        payload=json.dumps(payload, sort_keys=True) if payload is not None else None,
    )
    db.session.add(ev)
    db.session.flush()  # ensures ev.id is assigned without committing
    return ev


def list_ledger_events(
    seller_id: int,
    *,
    entity_type: str | None = None,
    entity_id: int | None = None,
    event_type: str | None = None,
    limit: int = 100,
) -> list[LedgerEvent]:
    q = db.session.query(LedgerEvent).filter(LedgerEvent.seller_id == seller_id)
    if entity_type:
        q = q.filter(LedgerEvent.entity_type == entity_type)
    if entity_id is not None:
        q = q.filter(LedgerEvent.entity_id == entity_id)
    if event_type:
        q = q.filter(LedgerEvent.event_type == event_type)
    return q.order_by(LedgerEvent.occurred_at.asc(), LedgerEvent.id.asc()).limit(limit).all()
