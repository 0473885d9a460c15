# Overview: Flask API routes for POS sales; parses input and returns JSON responses.

"""
Sales API Routes

DESIGN:
- POST records a completed sale and debits stock in one transaction
- Listing is paginated, newest first, with status/payment/date/search filters
- Refund restores stock and is accepted at most once per sale

All routes are scoped to the seller named by the X-Seller-Id header.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import error_response, json_body, require_seller
from ..errors import LedgerError
from ..services import sales_service


sales_bp = Blueprint("sales", __name__, url_prefix="/api/pos/sales")


@sales_bp.post("")
@require_seller
def create_sale_route():
    """
    Record a sale.

    Request body:
    {
        "items": [{"product_id": 1, "quantity": 2}],
        "payment": {"method": "cash", "cash_received_cents": 5000},
        "customer": {"name": "...", "phone": "...", "email": "..."},  (optional)
        "discount_cents": 0,  (optional)
        "tax_rate": 0.2,  (optional, defaults to DEFAULT_TAX_RATE)
        "notes": "..."  (optional)
    }

    Returns:
        201: Sale created
        400: VALIDATION_ERROR / INVALID_PAYMENT / INSUFFICIENT_STOCK
        404: ITEM_NOT_FOUND
    """
    try:
        data = json_body()
        sale = sales_service.create_sale(
            g.seller_id,
            data.get("items"),
            data.get("payment"),
            customer=data.get("customer"),
            discount_cents=data.get("discount_cents", 0),
            tax_rate=data.get("tax_rate"),
            notes=data.get("notes"),
        )
        return jsonify({"sale": sale.to_dict()}), 201

    except LedgerError as e:
        current_app.logger.info("Sale rejected for seller %s: %s", g.seller_id, e.code)
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error", "details": {}}), 500


@sales_bp.get("")
@require_seller
def list_sales_route():
    try:
        result = sales_service.list_sales(
            g.seller_id,
            page=request.args.get("page", 1, type=int),
            limit=request.args.get("limit", type=int),
            status=request.args.get("status"),
            payment_method=request.args.get("payment_method"),
            date_from=request.args.get("date_from"),
            date_to=request.args.get("date_to"),
            search=request.args.get("search"),
        )
        return jsonify(result), 200

    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list sales")
        return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error", "details": {}}), 500


@sales_bp.get("/<int:sale_id>")
@require_seller
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(g.seller_id, sale_id)
        return jsonify({"sale": sale.to_dict()}), 200

    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get sale")
        return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error", "details": {}}), 500


@sales_bp.patch("/<int:sale_id>/refund")
@require_seller
def refund_sale_route(sale_id: int):
    """
    Refund a whole sale.

    Returns:
        200: Sale refunded, stock restored
        404: Sale not found
        409: Sale already refunded
    """
    try:
        sale = sales_service.refund_sale(g.seller_id, sale_id)
        return jsonify({"sale": sale.to_dict()}), 200

    except LedgerError as e:
        current_app.logger.warning("Refund rejected for sale %s: %s", sale_id, e.code)
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to refund sale")
        return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error", "details": {}}), 500
