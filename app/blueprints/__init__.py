"""
Agency Compliance Portal
Blueprint package.
"""

from flask import request


def page_args(default_limit=50, max_limit=200):
    """Read ``limit`` / ``offset`` query params.

    Returns:
        (limit, offset) with limit capped at *max_limit* and offset >= 0.
    """
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    return max(limit, 1), offset
