"""
User Service - provisioning of portal accounts.

Accounts are normally mirrored from the identity provider; this service
is what the seed script and the test-suite use to create them, including
the Collection Manager profile that CM sign-offs reference.
"""

import logging

from email_validator import EmailNotValidError, validate_email

from app.core.exceptions import ConflictError, ValidationError
from app.models import db
from app.models.auth import ROLE_COLLECTION_MANAGER, ROLES, CollectionManagerProfile, User
from app.utils.crypto import hash_password

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    """Syntax-check and normalise an address (lower-cased, no deliverability check)."""
    try:
        valid = validate_email(email or "", check_deliverability=False)
    except EmailNotValidError as e:
        raise ValidationError(f"Invalid email: {e}") from None
    return valid.normalized.lower()


def create_user(email: str, name: str, role: str, password: str | None = None,
                *, designation: str | None = None, employee_id: str | None = None,
                products_assigned: list[str] | None = None, commit: bool = True) -> User:
    """Create a user; COLLECTION_MANAGER users also get a profile row."""
    email = normalize_email(email)
    if role not in ROLES:
        raise ValidationError(f"Invalid role '{role}'")
    if User.query.filter_by(email=email).first():
        raise ConflictError("User", "email", email)

    user = User(
        email=email,
        name=name,
        role=role,
        password_hash=hash_password(password) if password else None,
        status="active",
    )
    db.session.add(user)
    db.session.flush()

    if role == ROLE_COLLECTION_MANAGER:
        db.session.add(CollectionManagerProfile(
            user_id=user.id,
            employee_id=employee_id,
            designation=designation or "Collection Manager",
            products_assigned=products_assigned or [],
        ))

    if commit:
        db.session.commit()
    logger.info("User created: %s (%s)", email, role, extra={"user_id": user.id})
    return user


def get_user_by_email(email: str) -> User | None:
    try:
        email = normalize_email(email)
    except ValidationError:
        return None
    return User.query.filter_by(email=email).first()


def deactivate_user(user_id: int) -> User | None:
    user = db.session.get(User, user_id)
    if user is None:
        return None
    user.status = "inactive"
    db.session.commit()
    return user
