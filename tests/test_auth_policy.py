"""
Role → capability policy and JWT identity resolution tests.

Tests cover:
  - Capability table per role (agency, admin, super admin, auditor, CM)
  - authorize(): 401 without identity, 403 with "Forbidden:" prefix, unknown capability
  - resolve_identity(): role read from the user row, inactive / expired / garbage tokens
"""

import pytest

from app.auth import CAPABILITY_MESSAGES, ROLE_CAPABILITIES, Identity, authorize, has_capability
from app.core.exceptions import ForbiddenError, UnauthorizedError
from app.middleware.jwt_auth import resolve_identity
from app.models import db
from app.models.auth import ROLES
from app.services.jwt_service import generate_access_token
from app.services.user_service import deactivate_user


class TestCapabilityTable:
    @pytest.mark.parametrize("role,capability,allowed", [
        ("USER", "forms.edit", True),
        ("USER", "cm_sessions.host", True),
        ("USER", "forms.view_all", False),
        ("USER", "approval_requests.decide", False),
        ("ADMIN", "forms.edit", False),
        ("ADMIN", "approval_requests.decide", True),
        ("ADMIN", "cm_sessions.monitor", False),
        ("SUPER_ADMIN", "approval_requests.decide", True),
        ("SUPER_ADMIN", "cm_sessions.monitor", True),
        ("AUDITOR", "forms.view_all", True),
        ("AUDITOR", "activity.view_all", True),
        ("AUDITOR", "approval_requests.decide", False),
        ("COLLECTION_MANAGER", "forms.edit", False),
        ("COLLECTION_MANAGER", "cm_sessions.host", False),
    ])
    def test_has_capability(self, role, capability, allowed):
        assert has_capability(Identity(user_id=1, role=role), capability) is allowed

    def test_no_identity_has_nothing(self):
        assert has_capability(None, "forms.edit") is False

    def test_collection_manager_has_no_direct_capabilities(self):
        assert "COLLECTION_MANAGER" not in ROLE_CAPABILITIES

    def test_table_only_names_known_roles_and_capabilities(self):
        assert set(ROLE_CAPABILITIES) <= ROLES
        for capabilities in ROLE_CAPABILITIES.values():
            assert capabilities <= set(CAPABILITY_MESSAGES)


class TestAuthorize:
    def test_returns_identity(self):
        ident = Identity(user_id=7, role="USER")
        assert authorize(ident, "forms.edit") is ident

    def test_unauthorized_without_identity(self):
        with pytest.raises(UnauthorizedError, match="Unauthorized"):
            authorize(None, "forms.edit")

    def test_forbidden_message_prefix(self):
        with pytest.raises(ForbiddenError) as exc:
            authorize(Identity(user_id=1, role="AUDITOR"), "approval_requests.decide")
        assert str(exc.value) == "Forbidden: Only admins can process approval requests."

    def test_unknown_capability_is_a_programming_error(self):
        with pytest.raises(ValueError):
            authorize(Identity(user_id=1, role="ADMIN"), "forms.destroy")


class TestResolveIdentity:
    def test_valid_token(self, agency):
        ident = resolve_identity(generate_access_token(agency.id, "USER"))
        assert ident == Identity(
            user_id=agency.id, role="USER", name="Alpha Collections", email="agency@alphacollections.com",
        )

    def test_role_comes_from_user_row(self, agency):
        token = generate_access_token(agency.id, "SUPER_ADMIN")
        assert resolve_identity(token).role == "USER"

    def test_role_change_applies_immediately(self, agency):
        token = generate_access_token(agency.id, "USER")
        agency.role = "AUDITOR"
        db.session.commit()
        assert resolve_identity(token).role == "AUDITOR"

    def test_inactive_user(self, agency):
        token = generate_access_token(agency.id, "USER")
        deactivate_user(agency.id)
        assert resolve_identity(token) is None

    def test_unknown_user(self):
        assert resolve_identity(generate_access_token(9999, "ADMIN")) is None

    def test_expired_token(self, agency):
        token = generate_access_token(agency.id, "USER", expires_in=-10)
        assert resolve_identity(token) is None

    def test_garbage_token(self):
        assert resolve_identity("not-a-jwt") is None
