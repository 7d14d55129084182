"""Uniform JSON envelope for API responses."""

import math
from datetime import datetime, timezone
from typing import Any

from fastapi.encoders import jsonable_encoder


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def api_response(data: Any = None, message: str = "Success") -> dict:
    body: dict[str, Any] = {"success": True, "message": message}
    if data is not None:
        body["data"] = jsonable_encoder(data)
    body["timestamp"] = _timestamp()
    return body


def error_body(message: str, errors: list | None = None, details: dict | None = None) -> dict:
    body: dict[str, Any] = {"success": False, "message": message}
    if errors:
        body["errors"] = jsonable_encoder(errors)
    if details:
        body["details"] = details
    body["timestamp"] = _timestamp()
    return body


def build_pagination(page: int, limit: int, total: int) -> dict:
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": total_pages,
        "has_next": page < total_pages,
        "has_prev": page > 1,
    }


def paginated_response(
    items: list,
    page: int,
    limit: int,
    total: int,
    message: str = "Success",
) -> dict:
    return {
        "success": True,
        "message": message,
        "data": jsonable_encoder(items),
        "pagination": build_pagination(page, limit, total),
        "timestamp": _timestamp(),
    }
