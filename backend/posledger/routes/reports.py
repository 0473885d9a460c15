# Overview: Flask API routes for reports, the dashboard and accounting exports.

from flask import Blueprint, Response, request, jsonify, g, current_app

from ..decorators import error_response, query_bool, require_seller
from ..errors import LedgerError
from ..services import accounting_service, reporting_service


reports_bp = Blueprint("reports", __name__, url_prefix="/api/pos")


def _internal_error():
    return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error", "details": {}}), 500


@reports_bp.get("/reports")
@require_seller
def financial_report_route():
    """
    Query params:
    - period: day | week | month (default day)
    - start, end: ISO-8601, overrides the period window
    - include_refunded: bool
    - top: number of top products (default 5)
    """
    try:
        report = reporting_service.financial_report(
            g.seller_id,
            period=request.args.get("period", "day"),
            start=request.args.get("start"),
            end=request.args.get("end"),
            include_refunded=query_bool("include_refunded"),
            top_n=request.args.get("top", 5, type=int),
        )
        return jsonify({"report": report}), 200

    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to build financial report")
        return _internal_error()


@reports_bp.get("/dashboard")
@require_seller
def dashboard_route():
    try:
        return jsonify({"dashboard": reporting_service.dashboard(g.seller_id)}), 200
    except Exception:
        current_app.logger.exception("Failed to build dashboard")
        return _internal_error()


@reports_bp.get("/accounting/export")
@require_seller
def accounting_export_route():
    """
    Download completed sales as a file.

    Query params:
    - format: csv | fec (default csv)
    - dateFrom / dateTo (date_from / date_to also accepted)
    """
    try:
        export = accounting_service.export_sales(
            g.seller_id,
            request.args.get("format", "csv"),
            date_from=request.args.get("dateFrom") or request.args.get("date_from"),
            date_to=request.args.get("dateTo") or request.args.get("date_to"),
        )
        return Response(
            export.content,
            mimetype=export.mimetype,
            headers={
                "Content-Disposition": f'attachment; filename="{export.filename}"',
                "X-Sale-Count": str(export.sale_count),
            },
        )

    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to export accounting data")
        return _internal_error()
