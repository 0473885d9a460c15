from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..errors import ValidationError
from ..time_utils import parse_iso_datetime, parse_range_end


DEFAULT_PAGE_SIZE = 20


def paginate(query, page: int | None, limit: int | None, serialize) -> dict:
    """
    Offset pagination over an ordered query.

    page is 1-indexed; limit defaults to 20 and is capped by MAX_PAGE_SIZE.
    """
    max_size = current_app.config.get("MAX_PAGE_SIZE", 100)
    limit = max(1, min(limit or DEFAULT_PAGE_SIZE, max_size))
    page = max(page or 1, 1)

    total = query.order_by(None).count()
    total_pages = (total + limit - 1) // limit if total > 0 else 1

    rows = query.offset((page - 1) * limit).limit(limit).all()

    return {
        "items": [serialize(row) for row in rows],
        "count": len(rows),
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def parse_date_range(date_from, date_to) -> tuple[datetime | None, datetime | None]:
    """
    Normalize an inclusive [date_from, date_to] filter to UTC-naive datetimes.

    Accepts datetimes or ISO-8601 strings; a bare date as ``date_to`` covers
    that whole day.
    """
    try:
        start = date_from if isinstance(date_from, datetime) else parse_iso_datetime(date_from)
        end = date_to if isinstance(date_to, datetime) else parse_range_end(date_to)
    except ValueError:
        raise ValidationError(
            "dates must be ISO-8601",
            details={"date_from": date_from if isinstance(date_from, str) else None,
                     "date_to": date_to if isinstance(date_to, str) else None},
        )
    if start and end and start > end:
        raise ValidationError("date_from must not be after date_to")
    return start, end


def like_pattern(search: str) -> str:
    escaped = search.strip().lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"
