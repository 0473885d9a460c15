# Overview: Read-only financial reporting over persisted sales and stock levels.

from __future__ import annotations

from collections import OrderedDict
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from flask import current_app
from sqlalchemy import func

from ..errors import ValidationError
from ..extensions import db
from ..models import Product, Sale, SaleLine
from ..models.sales import SALE_STATUS_COMPLETED, SALE_STATUS_PARTIAL_REFUND, SALE_STATUS_REFUNDED
from ..time_utils import start_of_day, start_of_month, to_utc_z, utcnow
from .listing import parse_date_range

PERIODS = ("day", "week", "month")

DASHBOARD_LOW_STOCK_LIMIT = 10
DASHBOARD_RECENT_SALES = 5
MAX_REPORT_DAYS = 366


def _sum_completed(seller_id: int, start: datetime, end: datetime) -> dict:
    total, count = (
        db.session.query(func.coalesce(func.sum(Sale.total_cents), 0), func.count(Sale.id))
        .filter(
            Sale.seller_id == seller_id,
            Sale.status == SALE_STATUS_COMPLETED,
            Sale.created_at >= start,
            Sale.created_at <= end,
        )
        .one()
    )
    return {"total_cents": int(total or 0), "count": int(count or 0)}


def dashboard(seller_id: int, now: datetime | None = None) -> dict:
    now = now or utcnow()
    threshold = current_app.config.get("LOW_STOCK_THRESHOLD", 5)

    low_stock = (
        db.session.query(Product)
        .filter(
            Product.seller_id == seller_id,
            Product.track_inventory.is_(True),
            Product.quantity <= threshold,
        )
        .order_by(Product.quantity.asc(), Product.id.asc())
        .limit(DASHBOARD_LOW_STOCK_LIMIT)
        .all()
    )
    recent = (
        db.session.query(Sale)
        .filter(Sale.seller_id == seller_id)
        .order_by(Sale.created_at.desc(), Sale.id.desc())
        .limit(DASHBOARD_RECENT_SALES)
        .all()
    )

    return {
        "as_of": to_utc_z(now),
        "today": _sum_completed(seller_id, start_of_day(now), now),
        "month": _sum_completed(seller_id, start_of_month(now), now),
        "low_stock": [
            {"product_id": p.id, "name": p.name, "sku": p.sku, "quantity": p.quantity}
            for p in low_stock
        ],
        "recent_sales": [s.to_dict(include_lines=False) for s in recent],
    }


def _resolve_window(period: str, start, end, now: datetime) -> tuple[datetime, datetime]:
    if start or end:
        start_dt, end_dt = parse_date_range(start, end)
        start_dt, end_dt = start_dt or start_of_day(now), end_dt or now
        if start_dt > end_dt:
            raise ValidationError("start must not be after end", details={"field": "start"})
        if (end_dt.date() - start_dt.date()).days >= MAX_REPORT_DAYS:
            raise ValidationError(
                f"report window must not exceed {MAX_REPORT_DAYS} days",
                details={"max_days": MAX_REPORT_DAYS},
            )
        return start_dt, end_dt

    if period == "day":
        return start_of_day(now), now
    if period == "week":
        return start_of_day(now) - timedelta(days=6), now
    return start_of_month(now), now


def _average(total: int, count: int) -> int:
    if not count:
        return 0
    return int((Decimal(total) / Decimal(count)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def financial_report(
    seller_id: int,
    *,
    period: str = "day",
    start=None,
    end=None,
    include_refunded: bool = False,
    top_n: int = 5,
    now: datetime | None = None,
) -> dict:
    """
    Revenue summary for a window.

    The window is today, the last 7 days or month-to-date depending on
    ``period``, unless explicit start/end are given. Refunded and partially
    refunded sales only count when ``include_refunded`` is set.
    """
    if period not in PERIODS:
        raise ValidationError("period must be one of day, week, month", details={"field": "period"})
    if top_n < 1:
        raise ValidationError("top must be a positive integer", details={"field": "top"})

    now = now or utcnow()
    start_dt, end_dt = _resolve_window(period, start, end, now)

    statuses = [SALE_STATUS_COMPLETED]
    if include_refunded:
        statuses += [SALE_STATUS_REFUNDED, SALE_STATUS_PARTIAL_REFUND]

    window = (
        Sale.seller_id == seller_id,
        Sale.status.in_(statuses),
        Sale.created_at >= start_dt,
        Sale.created_at <= end_dt,
    )

    revenue, tax, discount, count = (
        db.session.query(
            func.coalesce(func.sum(Sale.total_cents), 0),
            func.coalesce(func.sum(Sale.tax_cents), 0),
            func.coalesce(func.sum(Sale.discount_cents), 0),
            func.count(Sale.id),
        )
        .filter(*window)
        .one()
    )
    revenue, tax, discount, count = int(revenue), int(tax), int(discount), int(count)

    # Daily buckets are filled in Python to stay dialect-neutral
    series = OrderedDict()
    day = start_dt.date()
    while day <= end_dt.date():
        series[day] = {"date": day.isoformat(), "revenue_cents": 0, "count": 0}
        day += timedelta(days=1)
    for created_at, total_cents in db.session.query(Sale.created_at, Sale.total_cents).filter(*window):
        bucket = series.get(created_at.date())
        if bucket is not None:
            bucket["revenue_cents"] += total_cents
            bucket["count"] += 1

    revenue_expr = func.sum(SaleLine.line_total_cents)
    top_rows = (
        db.session.query(
            SaleLine.product_id,
            func.max(SaleLine.name),
            func.sum(SaleLine.quantity),
            revenue_expr,
        )
        .join(Sale, Sale.id == SaleLine.sale_id)
        .filter(*window)
        .group_by(SaleLine.product_id)
        .order_by(revenue_expr.desc(), SaleLine.product_id.asc())
        .limit(top_n)
        .all()
    )

    payment_rows = (
        db.session.query(Sale.payment_method, func.count(Sale.id), func.coalesce(func.sum(Sale.total_cents), 0))
        .filter(*window)
        .group_by(Sale.payment_method)
        .order_by(Sale.payment_method.asc())
        .all()
    )

    return {
        "period": period,
        "start": to_utc_z(start_dt),
        "end": to_utc_z(end_dt),
        "include_refunded": include_refunded,
        "summary": {
            "revenue_cents": revenue,
            "tax_cents": tax,
            "discount_cents": discount,
            "net_revenue_cents": revenue - tax,
            "sale_count": count,
            "average_basket_cents": _average(revenue, count),
        },
        "daily": list(series.values()),
        "top_products": [
            {
                "product_id": product_id,
                "name": name,
                "total_quantity": int(qty or 0),
                "total_revenue_cents": int(rev or 0),
            }
            for product_id, name, qty, rev in top_rows
        ],
        "payment_methods": [
            {"method": method, "count": int(n), "total_cents": int(total)}
            for method, n, total in payment_rows
        ],
    }
