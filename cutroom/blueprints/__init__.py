"""
Cutroom Collaboration Platform
Blueprint registry and shared request helpers.
"""

from flask import request

from cutroom.core.exceptions import ValidationError


def paginate_query(query, default_limit=50, max_limit=500):
    """Apply limit/offset pagination to a SQLAlchemy query.

    Query params:
        limit  - max items (default 50, capped at max_limit)
        offset - starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = query.count()
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    items = query.limit(max(limit, 0)).offset(offset).all()
    return items, total


def json_body() -> dict:
    """Request JSON as a dict; anything else is a 400."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def arg_bool(name, default=False):
    value = request.args.get(name)
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes", "on")
