"""
Role and hotel-scope checks.
"""

import pytest

from hotel_kernel.domain.user_context import Role, UserContext
from hotel_kernel.exceptions import HotelScopeViolationError, RoleNotPermittedError
from hotel_services.authorization import (
    OPERATION_ROLES,
    authorize,
    check_hotel_scope,
    check_role,
)


class TestCheckRole:
    """Operation table lookups."""

    def test_unknown_operation_denied(self, admin):
        allowed, reason = check_role(admin, "ledger.truncate")
        assert not allowed
        assert "unknown operation" in reason

    @pytest.mark.parametrize(
        "role,operation,expected",
        [
            (Role.GUEST, "settlement.add_payment", True),
            (Role.GUEST, "settlement.raise_dispute", True),
            (Role.GUEST, "settlement.cancel", False),
            (Role.STAFF, "journal.create_draft", True),
            (Role.STAFF, "journal.post", False),
            (Role.TRAVEL_AGENT, "settlement.create", True),
            (Role.TRAVEL_AGENT, "settlement.add_adjustment", False),
            (Role.MANAGER, "rules.update", False),
            (Role.ADMIN, "rules.update", True),
        ],
    )
    def test_matrix(self, role, operation, expected):
        user = UserContext(user_id="u", role=role, hotel_id="H1")
        assert check_role(user, operation)[0] is expected

    def test_every_operation_allows_admin(self):
        assert all(Role.ADMIN in roles for roles in OPERATION_ROLES.values())


class TestHotelScope:
    """Hotel binding."""

    def test_admin_not_bound(self, admin):
        assert check_hotel_scope(admin, "H7") == (True, "")

    def test_scoped_user_other_hotel(self, manager):
        allowed, _ = check_hotel_scope(manager, "H2")
        assert not allowed

    def test_unscoped_non_admin_denied(self):
        user = UserContext(user_id="s", role=Role.STAFF)
        assert not check_hotel_scope(user, "H1")[0]

    def test_no_target_hotel(self, staff):
        assert check_hotel_scope(staff, None)[0]


class TestAuthorize:
    """authorize raises the matching error."""

    def test_role_error(self, staff, captured_logs):
        with pytest.raises(RoleNotPermittedError):
            authorize(staff, "settlement.cancel", "H1")
        assert any(r["message"] == "authorization_denied" for r in captured_logs())

    def test_scope_error(self, staff):
        with pytest.raises(HotelScopeViolationError):
            authorize(staff, "settlement.add_adjustment", "H2")

    def test_allowed(self, manager):
        authorize(manager, "settlement.cancel", "H1")
