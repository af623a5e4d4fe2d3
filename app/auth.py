"""
Agency Compliance Portal
Identity & capability-based authorization.

Provides:
    - ``Identity``: the authenticated caller (user id + role), resolved once
      per request by the JWT middleware and stored on ``g.identity``.
    - ``ROLE_CAPABILITIES``: the single role → capability policy table.
    - ``authorize(identity, capability)``: evaluated once at every service
      entry point; raises ``UnauthorizedError`` / ``ForbiddenError``.
    - ``init_auth(app)``: CSRF-style Content-Type enforcement for API writes.

Primary authentication (passwords, sessions, SSO) lives in the external
identity provider; this module only consumes its tokens.
"""

import logging
from dataclasses import dataclass

from flask import g, has_request_context, jsonify, request

from app.core.exceptions import ForbiddenError, UnauthorizedError
from app.models.auth import (
    ROLE_ADMIN,
    ROLE_AUDITOR,
    ROLE_SUPER_ADMIN,
    ROLE_USER,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """Authenticated caller as seen by the services."""

    user_id: int
    role: str
    name: str = ""
    email: str = ""


# ── Capabilities ─────────────────────────────────────────────────────────────

CAPABILITY_MESSAGES = {
    "forms.edit": "Only agency users can edit compliance forms.",
    "forms.view_all": "You do not have access to other agencies' forms.",
    "approval_requests.decide": "Only admins can process approval requests.",
    "activity.view_all": "You do not have access to the activity log.",
    "cm_sessions.host": "This action can only be performed on an active agency session.",
    "cm_sessions.monitor": "Only super admins can monitor Collection Manager sessions.",
}

ROLE_CAPABILITIES = {
    ROLE_USER: frozenset({"forms.edit", "cm_sessions.host"}),
    ROLE_ADMIN: frozenset({"forms.view_all", "approval_requests.decide", "activity.view_all"}),
    ROLE_SUPER_ADMIN: frozenset({
        "forms.view_all", "approval_requests.decide", "activity.view_all",
        "cm_sessions.monitor",
    }),
    ROLE_AUDITOR: frozenset({"forms.view_all", "activity.view_all"}),
}


def has_capability(identity: Identity | None, capability: str) -> bool:
    if identity is None:
        return False
    return capability in ROLE_CAPABILITIES.get(identity.role, frozenset())


def authorize(identity: Identity | None, capability: str) -> Identity:
    """Return *identity* if it holds *capability*, otherwise raise.

    Raises:
        UnauthorizedError: no identity at all.
        ForbiddenError: identity's role lacks the capability.
    """
    if capability not in CAPABILITY_MESSAGES:
        raise ValueError(f"Unknown capability {capability!r}")
    if identity is None:
        raise UnauthorizedError()
    if not has_capability(identity, capability):
        logger.warning(
            "Access denied: role '%s' lacks capability '%s'",
            identity.role, capability,
            extra={"user_id": identity.user_id, "event_type": "authz_denied"},
        )
        raise ForbiddenError(CAPABILITY_MESSAGES[capability])
    return identity


def current_identity() -> Identity | None:
    """Identity resolved by the JWT middleware for this request, if any."""
    if not has_request_context():
        return None
    return getattr(g, "identity", None)


# ── CSRF protection for API ──────────────────────────────────────────────────

def _check_content_type():
    """
    For state-changing requests, require Content-Type: application/json.
    HTML forms cannot send that content type.
    """
    if request.method in ("POST", "PUT", "PATCH", "DELETE"):
        ct = request.content_type or ""
        if "application/json" not in ct and request.content_length and request.content_length > 0:
            return jsonify({
                "error": "Content-Type must be application/json for state-changing requests"
            }), 415
    return None


def init_auth(app):
    """Install the Content-Type guard on API routes."""

    @app.before_request
    def _before_request_auth():
        if not request.path.startswith("/api/v1/"):
            return None
        if request.path.startswith("/api/v1/health"):
            return None
        if request.method == "OPTIONS":
            return None
        return _check_content_type()
