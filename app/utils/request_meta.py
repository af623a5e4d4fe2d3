"""Request metadata helpers shared by activity logging and CM approvals.

Both return ``None`` outside a request context so services can also run
from CLI commands and tests without a request.
"""

from flask import has_request_context, request


def client_ip() -> str | None:
    """Return the real client IP, honouring X-Forwarded-For from load balancers.

    The first entry of the comma-delimited header is the originating client.
    Falls back to ``remote_addr`` when the header is absent.
    """
    if not has_request_context():
        return None
    forwarded_for = request.headers.get("X-Forwarded-For", "")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return request.remote_addr


def user_agent() -> str | None:
    if not has_request_context():
        return None
    ua = request.headers.get("User-Agent")
    return ua[:500] if ua else None
