# Overview: Flask API routes for stock levels, manual adjustments and restock alerts.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import error_response, json_body, require_seller
from ..errors import LedgerError
from ..services import inventory_service


stock_bp = Blueprint("stock", __name__, url_prefix="/api/pos/stock")


def _internal_error():
    return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error", "details": {}}), 500


@stock_bp.get("")
@require_seller
def list_stock_route():
    """
    Query params:
    - page, limit
    - stock_status: out | low | ok
    """
    try:
        result = inventory_service.list_stock(
            g.seller_id,
            page=request.args.get("page", 1, type=int),
            limit=request.args.get("limit", type=int),
            stock_status=request.args.get("stock_status"),
        )
        return jsonify(result), 200

    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list stock")
        return _internal_error()


@stock_bp.patch("/adjust")
@require_seller
def adjust_stock_route():
    """
    Manual stock correction.

    Request body:
    {
        "product_id": 1,
        "adjustment": -2,
        "reason": "Breakage"
    }
    """
    try:
        data = json_body()
        result = inventory_service.adjust_stock(
            g.seller_id,
            data.get("product_id"),
            data.get("adjustment"),
            data.get("reason"),
        )
        current_app.logger.info(
            "Stock adjusted for product %s by %s (seller %s)",
            result["product_id"], result["adjustment"], g.seller_id,
        )
        return jsonify({"adjustment": result}), 200

    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return _internal_error()


@stock_bp.get("/alerts")
@require_seller
def restock_alerts_route():
    try:
        alerts = inventory_service.restock_alerts(
            g.seller_id,
            threshold=request.args.get("threshold", type=int),
        )
        return jsonify({"alerts": alerts, "count": len(alerts)}), 200

    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to compute restock alerts")
        return _internal_error()


@stock_bp.get("/<int:product_id>/movements")
@require_seller
def list_movements_route(product_id: int):
    try:
        limit = request.args.get("limit", 200, type=int)
        movements = inventory_service.list_movements(g.seller_id, product_id, limit=max(1, min(limit, 500)))
        return jsonify({"movements": [m.to_dict() for m in movements]}), 200

    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list stock movements")
        return _internal_error()
