# Overview: Flask API route for reading the seller's ledger event trail.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_seller
from ..services import ledger_service

"""
Read-only view of the append-only event log.
Events come back oldest first (occurred_at, then id).
"""

ledger_bp = Blueprint("ledger", __name__, url_prefix="/api/pos/ledger")


@ledger_bp.get("")
@require_seller
def list_ledger_events_route():
    """
    Query params:
    - entity_type: sale | return | invoice | product
    - entity_id
    - event_type: e.g. sale.completed
    - limit (default 100, max 500)
    """
    limit = request.args.get("limit", default=100, type=int)
    limit = max(1, min(limit, 500))

    try:
        events = ledger_service.list_ledger_events(
            g.seller_id,
            entity_type=request.args.get("entity_type"),
            entity_id=request.args.get("entity_id", type=int),
            event_type=request.args.get("event_type"),
            limit=limit,
        )
        return jsonify({"items": [e.to_dict() for e in events], "limit": limit}), 200

    except Exception:
        current_app.logger.exception("Failed to list ledger events")
        return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error", "details": {}}), 500
