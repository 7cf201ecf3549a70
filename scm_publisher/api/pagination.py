"""Pagination helper for API endpoints."""
from flask import request


def paginate_query(query, max_per_page=100):
    """
    Apply pagination to a SQLAlchemy query.

    Reads ?page= and ?per_page= from query string.
    Returns a dict whose "items" are model instances; callers serialize them.

    Response format:
    {
        "items": [...],
        "total": 123,
        "page": 1,
        "per_page": 20,
        "pages": 7
    }
    """
    page = max(1, request.args.get("page", 1, type=int))
    per_page = max(1, min(request.args.get("per_page", 20, type=int), max_per_page))

    pagination = query.paginate(page=page, per_page=per_page, error_out=False)

    return {
        "items": pagination.items,
        "total": pagination.total,
        "page": pagination.page,
        "per_page": pagination.per_page,
        "pages": pagination.pages,
    }
