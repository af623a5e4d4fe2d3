"""
Portal-wide exception hierarchy.

Services raise these; the action boundary in
``app.services.helpers.action`` converts them into ``{"error": ...}``
results so that no domain exception ever reaches a caller.

Usage:
    from app.core.exceptions import NotFoundError, StateError

    raise NotFoundError(resource="Form", resource_id=form_id)
    raise StateError("Cannot delete a submitted form.")
"""


class UnauthorizedError(Exception):
    """Raised when an operation is attempted without an identity."""

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class ForbiddenError(Exception):
    """Raised when the identity's role lacks the required capability.

    Messages are user-facing and always start with ``Forbidden:``.
    """

    def __init__(self, message: str = "Forbidden: You do not have permission to perform this action.") -> None:
        if not message.startswith("Forbidden"):
            message = f"Forbidden: {message}"
        super().__init__(message)


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the caller's scope.

    Used for BOTH genuinely missing records AND records owned by another
    agency. A 403 would confirm the resource exists; a 404 does not.

    Args:
        resource: Human-readable entity name (e.g. "Form", "Approval request").
        resource_id: The PK that was looked up. Logged, not shown to the user.
        message: Optional user-facing override.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        message: str | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(message or f"{resource} not found")


class ValidationError(Exception):
    """Raised when input is missing or fails a field-level rule.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would violate a uniqueness rule.

    Args:
        resource: Entity name.
        field: The unique field that would be duplicated.
        value: The conflicting value.
        message: Optional user-facing override.
    """

    def __init__(
        self,
        resource: str,
        field: str,
        value: str | None = None,
        message: str | None = None,
    ) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(message or f"{resource} with {field}={value!r} already exists")


class StateError(Exception):
    """Raised when a lifecycle transition is not allowed from the current state.

    The message tells the user what to do next (e.g. request edit access),
    so it is passed through verbatim.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)
