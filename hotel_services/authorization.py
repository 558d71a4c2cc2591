"""
hotel_services.authorization -- role and hotel-scope checks at the façade.

Responsibility:
    Decide whether a caller (``UserContext``) may perform a named operation
    on a given hotel. The only place role checks live; core services take a
    typed caller and never read request state.

Architecture position:
    Services layer. Called by ``HotelFinanceFacade`` before any work starts.

Invariants:
    - Admins are not hotel-bound. Every other role acts only on the hotel
      it is scoped to; a caller without a hotel may not act on one.
    - An operation missing from OPERATION_ROLES is denied.
"""

from __future__ import annotations

from hotel_kernel.domain.user_context import Role, UserContext
from hotel_kernel.exceptions import HotelScopeViolationError, RoleNotPermittedError
from hotel_kernel.logging_config import get_logger

logger = get_logger("services.authorization")

_BACK_OFFICE = frozenset({Role.ADMIN, Role.MANAGER})
_FRONT_DESK = frozenset({Role.ADMIN, Role.MANAGER, Role.STAFF})
_ANY = frozenset(Role)

# operation -> roles allowed to perform it
OPERATION_ROLES: dict[str, frozenset[Role]] = {
    # Chart of accounts
    "accounts.create": _BACK_OFFICE,
    "accounts.update": _BACK_OFFICE,
    "accounts.deactivate": _BACK_OFFICE,
    "accounts.seed": frozenset({Role.ADMIN}),
    "accounts.reconcile": _BACK_OFFICE,
    # Journal
    "journal.create_draft": _FRONT_DESK,
    "journal.post": _BACK_OFFICE,
    "journal.reverse": _BACK_OFFICE,
    # Exchange rates
    "exchange_rates.upsert": _BACK_OFFICE,
    # Invoices and payments
    "invoice.create": _FRONT_DESK,
    "invoice.send": _FRONT_DESK,
    "invoice.record_payment": _FRONT_DESK,
    "invoice.cancel": _BACK_OFFICE,
    "payment.process": _FRONT_DESK,
    "payment.refund": _BACK_OFFICE,
    "payment.reconcile": _BACK_OFFICE,
    # Settlements
    "settlement.create": _FRONT_DESK | {Role.TRAVEL_AGENT},
    "settlement.get": _ANY,
    "settlement.add_adjustment": _FRONT_DESK,
    "settlement.add_payment": _ANY,
    "settlement.issue_refund": _BACK_OFFICE,
    "settlement.apply_late_fee": _BACK_OFFICE,
    "settlement.escalate": _FRONT_DESK,
    "settlement.add_communication": _FRONT_DESK,
    "settlement.raise_dispute": _ANY,
    "settlement.resolve_dispute": _BACK_OFFICE,
    "settlement.cancel": _BACK_OFFICE,
    "settlement.refresh_overdue": _BACK_OFFICE,
    "settlement.analytics": _BACK_OFFICE,
    # Reports and budgets
    "reports.read": _BACK_OFFICE,
    "budgets.manage": _BACK_OFFICE,
    # Rules engine
    "rules.read": _BACK_OFFICE,
    "rules.update": frozenset({Role.ADMIN}),
}


def check_role(user: UserContext, operation: str) -> tuple[bool, str]:
    """
    Whether ``user``'s role may perform ``operation``.

    Returns:
        (allowed, reason). reason is empty when allowed.
    """
    allowed_roles = OPERATION_ROLES.get(operation)
    if allowed_roles is None:
        return (False, f"unknown operation '{operation}'")
    if user.role not in allowed_roles:
        return (False, f"role '{user.role.value}' may not perform '{operation}'")
    return (True, "")


def check_hotel_scope(user: UserContext, hotel_id: str | None) -> tuple[bool, str]:
    """Whether ``user`` may act on ``hotel_id`` (None means not hotel-bound)."""
    if hotel_id is None or user.role == Role.ADMIN:
        return (True, "")
    if user.hotel_id != hotel_id:
        return (False, f"user scoped to '{user.hotel_id}' cannot act on '{hotel_id}'")
    return (True, "")


def authorize(user: UserContext, operation: str, hotel_id: str | None = None) -> None:
    """
    Raise unless ``user`` may perform ``operation`` on ``hotel_id``.

    Raises:
        RoleNotPermittedError: role not allowed for the operation.
        HotelScopeViolationError: caller is scoped to another hotel.
    """
    allowed, reason = check_role(user, operation)
    if not allowed:
        logger.warning(
            "authorization_denied",
            extra={"operation": operation, "role": user.role.value, "reason": reason},
        )
        raise RoleNotPermittedError(user.role.value, operation)
    allowed, reason = check_hotel_scope(user, hotel_id)
    if not allowed:
        logger.warning(
            "hotel_scope_denied",
            extra={
                "operation": operation,
                "user_hotel_id": user.hotel_id,
                "target_hotel_id": hotel_id,
            },
        )
        raise HotelScopeViolationError(user.hotel_id, hotel_id)
