# Overview: Flask API routes for invoices; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import error_response, json_body, require_seller
from ..errors import LedgerError
from ..services import invoice_service


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/pos/invoices")


def _internal_error():
    return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error", "details": {}}), 500


@invoices_bp.post("")
@require_seller
def create_invoice_route():
    """
    Issue an invoice.

    Request body:
    {
        "customer": {"name": "...", "email": "...", "address": "...", "company": "...", "siret": "..."},
        "seller_info": {"company_name": "...", "address": "...", "siret": "..."},
        "payment": {"method": "transfer", "paid": false, "reference": "..."},
        "items": [{"description": "...", "quantity": 1, "unit_price_cents": 1000}],  (or sale_id)
        "sale_id": 123,  (optional)
        "tax_rate": 0.2,  (optional)
        "discount_cents": 0,  (optional)
        "due_date": "2026-11-30",  (optional)
        "notes": "..."  (optional)
    }
    """
    try:
        data = json_body()
        invoice = invoice_service.create_invoice(
            g.seller_id,
            data.get("customer"),
            data.get("seller_info"),
            data.get("payment"),
            items=data.get("items"),
            sale_id=data.get("sale_id"),
            tax_rate=data.get("tax_rate"),
            discount_cents=data.get("discount_cents"),
            notes=data.get("notes"),
            due_date=data.get("due_date"),
        )
        return jsonify({"invoice": invoice.to_dict()}), 201

    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create invoice")
        return _internal_error()


@invoices_bp.get("")
@require_seller
def list_invoices_route():
    try:
        result = invoice_service.list_invoices(
            g.seller_id,
            page=request.args.get("page", 1, type=int),
            limit=request.args.get("limit", type=int),
            status=request.args.get("status"),
            date_from=request.args.get("date_from"),
            date_to=request.args.get("date_to"),
            search=request.args.get("search"),
        )
        return jsonify(result), 200

    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list invoices")
        return _internal_error()


@invoices_bp.get("/stats")
@require_seller
def invoice_stats_route():
    try:
        return jsonify({"stats": invoice_service.invoice_stats(g.seller_id)}), 200
    except Exception:
        current_app.logger.exception("Failed to compute invoice stats")
        return _internal_error()


@invoices_bp.get("/<int:invoice_id>")
@require_seller
def get_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.get_invoice(g.seller_id, invoice_id)
        return jsonify({"invoice": invoice.to_dict()}), 200

    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get invoice")
        return _internal_error()


@invoices_bp.route("/<int:invoice_id>", methods=["PATCH", "PUT"])
@require_seller
def update_invoice_route(invoice_id: int):
    """Edit a draft invoice; 409 once it left draft."""
    try:
        invoice = invoice_service.update_invoice(g.seller_id, invoice_id, json_body())
        return jsonify({"invoice": invoice.to_dict()}), 200

    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update invoice")
        return _internal_error()


@invoices_bp.patch("/<int:invoice_id>/pay")
@require_seller
def pay_invoice_route(invoice_id: int):
    try:
        data = json_body()
        invoice = invoice_service.mark_paid(g.seller_id, invoice_id, data.get("reference"))
        return jsonify({"invoice": invoice.to_dict()}), 200

    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to mark invoice paid")
        return _internal_error()


@invoices_bp.patch("/<int:invoice_id>/cancel")
@require_seller
def cancel_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.cancel_invoice(g.seller_id, invoice_id)
        return jsonify({"invoice": invoice.to_dict()}), 200

    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel invoice")
        return _internal_error()


@invoices_bp.patch("/<int:invoice_id>/send")
@require_seller
def send_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.mark_sent(g.seller_id, invoice_id)
        return jsonify({"invoice": invoice.to_dict()}), 200

    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to send invoice")
        return _internal_error()
