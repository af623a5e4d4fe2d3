"""
JWT Auth Middleware - resolves ``Authorization: Bearer <token>`` to ``g.identity``.

The role comes from the stored user row, not from the token, so a role
change or deactivation takes effect on the next request. Invalid, expired
or unknown-user tokens leave ``g.identity`` as ``None``; the services then
answer "Unauthorized".
"""

import logging

import jwt as pyjwt
from flask import g, request

from app.auth import Identity
from app.models import db
from app.models.auth import User
from app.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/health",
    "/static/",
)


def resolve_identity(token: str) -> Identity | None:
    """Decode *token* and load the matching active user."""
    try:
        payload = decode_access_token(token)
    except pyjwt.ExpiredSignatureError:
        logger.info("Expired access token presented", extra={"event_type": "jwt_expired"})
        return None
    except pyjwt.InvalidTokenError:
        logger.warning("Invalid access token presented", extra={"event_type": "jwt_invalid"})
        return None

    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        return None

    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        return None
    return Identity(user_id=user.id, role=user.role, name=user.name, email=user.email)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.identity = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        g.identity = resolve_identity(auth_header[7:])
