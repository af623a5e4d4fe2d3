"""
Service action boundary and transaction helper.

Every public service operation is wrapped with ``@service_action(...)``:
domain exceptions become ``{"error": message, "code": E.*}`` results and
unexpected failures are logged with stack detail and surfaced as the
operation's generic failure message. Callers never see an exception and
nothing is retried.

Usage:
    @service_action("Failed to save form")
    def save_form(identity, ...):
        authorize(identity, "forms.edit")
        with atomic():
            ...
        return {"success": True, ...}
"""

import functools
import logging
from contextlib import contextmanager

import sqlalchemy as sa
from flask import current_app

from app.core.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    StateError,
    UnauthorizedError,
    ValidationError,
)
from app.models import db
from app.utils.errors import E

logger = logging.getLogger(__name__)

_ERROR_CODES = (
    (UnauthorizedError, E.UNAUTHORIZED),
    (ForbiddenError, E.FORBIDDEN),
    (ValidationError, E.VALIDATION_INVALID),
    (NotFoundError, E.NOT_FOUND),
    (ConflictError, E.CONFLICT_DUPLICATE),
    (StateError, E.CONFLICT_STATE),
)


def error_result(exc: Exception) -> dict | None:
    """Map a domain exception to an error result, or ``None`` if it is not one."""
    for exc_type, code in _ERROR_CODES:
        if isinstance(exc, exc_type):
            result = {"error": str(exc), "code": code}
            details = getattr(exc, "details", None)
            if details:
                result["details"] = details
            return result
    return None


def service_action(failure_message: str):
    """Decorator: convert exceptions raised by a service call into error results."""

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            try:
                return fn(*args, **kwargs)
            except Exception as exc:  # noqa: BLE001
                db.session.rollback()
                result = error_result(exc)
                if result is not None:
                    logger.info(
                        "%s rejected: %s", fn.__name__, exc,
                        extra={"event_type": "action_rejected"},
                    )
                    return result
                logger.exception("%s failed", fn.__name__)
                return {"error": failure_message, "code": E.INTERNAL}

        return wrapper

    return decorator


def _is_postgres() -> bool:
    return db.engine.dialect.name == "postgresql"


@contextmanager
def atomic():
    """Run the block in one transaction: commit on success, roll back on error.

    On PostgreSQL the transaction gets a ``statement_timeout`` budget from
    ``FORM_TRANSACTION_TIMEOUT_SECONDS``. Exceeding it surfaces as a
    failure of the surrounding action, not a retry.
    """
    if _is_postgres():
        seconds = current_app.config.get("FORM_TRANSACTION_TIMEOUT_SECONDS", 15)
        db.session.execute(sa.text(f"SET LOCAL statement_timeout = '{int(seconds)}s'"))
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
