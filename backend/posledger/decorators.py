# Overview: Request decorators and JSON helpers shared by API routes.

from functools import wraps
from flask import request, jsonify, g

from .errors import LedgerError, ValidationError

SELLER_HEADER = "X-Seller-Id"


def require_seller(f):
    """
    Require the caller's seller identity.

    Identity is asserted by the gateway in front of this service through the
    X-Seller-Id header; this service performs no authentication of its own.
    Sets g.seller_id. Returns 401 if the header is missing or not a positive
    integer.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = (request.headers.get(SELLER_HEADER) or "").strip()
        if not raw.isdigit() or int(raw) < 1:
            return jsonify({
                "error": "UNAUTHORIZED",
                "message": "Seller identity required",
                "details": {"header": SELLER_HEADER},
            }), 401

        g.seller_id = int(raw)
        return f(*args, **kwargs)

    return decorated_function


def error_response(exc: LedgerError):
    return jsonify(exc.to_dict()), exc.http_status


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def query_bool(name: str, default: bool = False) -> bool:
    value = request.args.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")
