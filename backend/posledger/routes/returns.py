# Overview: Flask API routes for returns operations; parses input and returns JSON responses.

"""
Return Processing API Routes

DESIGN:
- Create returns, optionally referencing the original sale
- Approval credits stock exactly once; rejection has no stock effect
- Complete closes an approved return
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import error_response, json_body, require_seller
from ..errors import LedgerError
from ..services import return_service


returns_bp = Blueprint("returns", __name__, url_prefix="/api/pos/returns")


def _internal_error():
    return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error", "details": {}}), 500


@returns_bp.post("")
@require_seller
def create_return_route():
    """
    Create a new return document (status: pending).

    Request body:
    {
        "items": [{"product_id": 1, "quantity": 1, "reason": "Damaged"}],
        "resolution": "refund" | "exchange" | "credit",
        "sale_id": 123,  (optional)
        "customer": {"name": "..."},  (optional)
        "tax_rate": 0.2,  (optional)
        "notes": "..."  (optional)
    }

    Returns:
        201: Return created with pending status
        400: Invalid input
        404: Sale or item not found
        409: Sale already refunded
    """
    try:
        data = json_body()
        return_doc = return_service.create_return(
            g.seller_id,
            data.get("items"),
            data.get("resolution"),
            sale_id=data.get("sale_id"),
            customer=data.get("customer"),
            tax_rate=data.get("tax_rate"),
            notes=data.get("notes"),
        )
        return jsonify({"return": return_doc.to_dict()}), 201

    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create return")
        return _internal_error()


@returns_bp.get("")
@require_seller
def list_returns_route():
    try:
        result = return_service.list_returns(
            g.seller_id,
            page=request.args.get("page", 1, type=int),
            limit=request.args.get("limit", type=int),
            status=request.args.get("status"),
            resolution=request.args.get("resolution"),
            search=request.args.get("search"),
        )
        return jsonify(result), 200

    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list returns")
        return _internal_error()


@returns_bp.get("/<int:return_id>")
@require_seller
def get_return_route(return_id: int):
    try:
        return_doc = return_service.get_return(g.seller_id, return_id)
        return jsonify({"return": return_doc.to_dict()}), 200

    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get return")
        return _internal_error()


@returns_bp.patch("/<int:return_id>/approve")
@require_seller
def approve_return_route(return_id: int):
    """
    Returns:
        200: Return approved, stock credited
        404: Return not found
        409: Return is not pending
    """
    try:
        return_doc = return_service.approve_return(g.seller_id, return_id)
        return jsonify({"return": return_doc.to_dict()}), 200

    except LedgerError as e:
        current_app.logger.warning("Approval rejected for return %s: %s", return_id, e.code)
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to approve return")
        return _internal_error()


@returns_bp.patch("/<int:return_id>/reject")
@require_seller
def reject_return_route(return_id: int):
    try:
        data = json_body()
        return_doc = return_service.reject_return(g.seller_id, return_id, data.get("reason"))
        return jsonify({"return": return_doc.to_dict()}), 200

    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reject return")
        return _internal_error()


@returns_bp.patch("/<int:return_id>/complete")
@require_seller
def complete_return_route(return_id: int):
    try:
        return_doc = return_service.complete_return(g.seller_id, return_id)
        return jsonify({"return": return_doc.to_dict()}), 200

    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to complete return")
        return _internal_error()
