"""
AccountService -- chart of accounts maintenance.

Responsibility:
    Create, update, deactivate and look up accounts; install the default
    hotel chart; reconcile cached balances against the ledger.

Architecture position:
    Kernel > Services.

Invariants enforced:
    - (hotel_id, code) unique -> DuplicateAccountCodeError.
    - normal_side is always derived from kind.
    - Accounts are deactivated, never deleted.
    - current_balance is never edited here, except by an explicit
      reconciliation repair, which is logged.

Failure modes:
    - AccountNotFoundError, DuplicateAccountCodeError,
      InvalidAccountKindError, InvalidCurrencyError.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy import select

from hotel_kernel.db.types import validate_currency
from hotel_kernel.domain.values import TOLERANCE
from hotel_kernel.exceptions import (
    AccountNotFoundError,
    DuplicateAccountCodeError,
    InvalidAccountKindError,
    ValidationError,
)
from hotel_kernel.logging_config import get_logger
from hotel_kernel.models.account import (
    Account,
    AccountKind,
    AccountSubType,
    balance_sign,
    normal_side_for,
)
from hotel_kernel.selectors.ledger_selector import LedgerSelector
from hotel_kernel.services.base import BaseService

logger = get_logger("services.account")

_UNSET: Any = object()


@dataclass(frozen=True)
class BalanceDrift:
    """Cached balance disagreeing with the ledger."""

    account_id: UUID
    account_code: str
    cached: Decimal
    computed: Decimal

    @property
    def difference(self) -> Decimal:
        return self.cached - self.computed


def _parse_kind(kind: AccountKind | str) -> AccountKind:
    try:
        return AccountKind(kind)
    except ValueError:
        raise InvalidAccountKindError(str(kind)) from None


def _parse_sub_type(sub_type: AccountSubType | str | None) -> str | None:
    if sub_type is None:
        return None
    try:
        return AccountSubType(sub_type).value
    except ValueError:
        raise InvalidAccountKindError(str(sub_type)) from None


class AccountService(BaseService[Account]):
    """Chart of accounts operations for one or more hotels."""

    def get(self, account_id: UUID) -> Account:
        account = self.session.get(Account, account_id)
        if account is None:
            raise AccountNotFoundError(str(account_id))
        return account

    def get_by_code(self, hotel_id: str, code: str) -> Account:
        account = self.session.execute(
            select(Account).where(Account.hotel_id == hotel_id, Account.code == code)
        ).scalar_one_or_none()
        if account is None:
            raise AccountNotFoundError(f"{hotel_id}/{code}")
        return account

    def find_by_code(self, hotel_id: str, code: str) -> Account | None:
        return self.session.execute(
            select(Account).where(Account.hotel_id == hotel_id, Account.code == code)
        ).scalar_one_or_none()

    def list_by_kind(
        self,
        hotel_id: str,
        kind: AccountKind | str | None = None,
        include_inactive: bool = False,
    ) -> list[Account]:
        query = select(Account).where(Account.hotel_id == hotel_id)
        if kind is not None:
            query = query.where(Account.kind == _parse_kind(kind).value)
        if not include_inactive:
            query = query.where(Account.is_active.is_(True))
        return list(self.session.execute(query.order_by(Account.code)).scalars())

    def create(
        self,
        hotel_id: str,
        code: str,
        name: str,
        kind: AccountKind | str,
        actor_id: str,
        currency: str,
        sub_type: AccountSubType | str | None = None,
        parent_id: UUID | None = None,
        description: str | None = None,
        is_system: bool = False,
    ) -> Account:
        if not hotel_id:
            raise ValidationError("hotel_id is required", field="hotel_id")
        code = (code or "").strip()
        if not code:
            raise ValidationError("Account code is required", field="code")
        if not name or not name.strip():
            raise ValidationError("Account name is required", field="name")
        parsed_kind = _parse_kind(kind)
        currency = validate_currency(currency)

        if self.find_by_code(hotel_id, code) is not None:
            raise DuplicateAccountCodeError(hotel_id, code)
        if parent_id is not None:
            self._check_parent(hotel_id, parent_id)

        account = Account(
            hotel_id=hotel_id,
            code=code,
            name=name.strip(),
            kind=parsed_kind.value,
            normal_side=normal_side_for(parsed_kind).value,
            sub_type=_parse_sub_type(sub_type),
            parent_id=parent_id,
            description=description,
            is_active=True,
            is_system=is_system,
            currency=currency,
            current_balance=Decimal("0"),
            created_by_id=actor_id,
        )
        self.session.add(account)
        self.session.flush()
        logger.info(
            "account_created",
            extra={
                "hotel_id": hotel_id,
                "account_id": str(account.id),
                "account_code": code,
                "kind": parsed_kind.value,
            },
        )
        return account

    def _check_parent(self, hotel_id: str, parent_id: UUID, child_id: UUID | None = None) -> None:
        parent = self.get(parent_id)
        if parent.hotel_id != hotel_id:
            raise ValidationError("Parent account belongs to another hotel", field="parent_id")
        if child_id is not None and parent.id == child_id:
            raise ValidationError("Account cannot be its own parent", field="parent_id")

    def update(
        self,
        account_id: UUID,
        actor_id: str,
        name: str | None = None,
        parent_id: UUID | None = _UNSET,
        is_active: bool | None = None,
        description: str | None = None,
    ) -> Account:
        """Update name, parent, description or active flag."""
        account = self.get(account_id)
        changes: dict[str, Any] = {}
        if name is not None:
            if not name.strip():
                raise ValidationError("Account name is required", field="name")
            account.name = changes["name"] = name.strip()
        if parent_id is not _UNSET:
            if parent_id is not None:
                self._check_parent(account.hotel_id, parent_id, child_id=account.id)
            account.parent_id = parent_id
            changes["parent_id"] = str(parent_id) if parent_id else None
        if description is not None:
            account.description = changes["description"] = description
        if is_active is not None:
            account.is_active = changes["is_active"] = is_active
        account.updated_by_id = actor_id
        self.session.flush()
        logger.info(
            "account_updated",
            extra={"account_id": str(account.id), "changes": changes},
        )
        return account

    def deactivate(self, account_id: UUID, actor_id: str) -> Account:
        account = self.get(account_id)
        if account.is_active:
            account.is_active = False
            account.updated_by_id = actor_id
            self.session.flush()
            logger.info(
                "account_deactivated",
                extra={"account_id": str(account.id), "account_code": account.code},
            )
        return account

    def seed_defaults(
        self,
        hotel_id: str,
        actor_id: str,
        currency: str,
        chart: Iterable[dict[str, Any]],
    ) -> list[Account]:
        """
        Install a chart of accounts (see hotel_config.loader) for a hotel.

        Idempotent: codes that already exist are left untouched. Parents are
        resolved by code, so a parent must precede its children in ``chart``.
        """
        installed: list[Account] = []
        for spec in chart:
            existing = self.find_by_code(hotel_id, str(spec["code"]))
            if existing is not None:
                installed.append(existing)
                continue
            parent_id = None
            if spec.get("parent"):
                parent_id = self.get_by_code(hotel_id, str(spec["parent"])).id
            installed.append(
                self.create(
                    hotel_id=hotel_id,
                    code=str(spec["code"]),
                    name=spec["name"],
                    kind=spec["kind"],
                    actor_id=actor_id,
                    currency=currency,
                    sub_type=spec.get("sub_type"),
                    parent_id=parent_id,
                    description=spec.get("description"),
                    is_system=True,
                )
            )
        logger.info(
            "chart_of_accounts_seeded",
            extra={"hotel_id": hotel_id, "account_count": len(installed)},
        )
        return installed

    def reconcile_balances(
        self, hotel_id: str, repair: bool = False, actor_id: str | None = None
    ) -> list[BalanceDrift]:
        """
        Compare every cached balance with the ledger.

        Returns the accounts whose cache differs by more than the money
        tolerance. With ``repair=True`` the cache is overwritten with the
        ledger value.
        """
        computed_net = LedgerSelector(self.session).computed_balances(hotel_id)
        drifts: list[BalanceDrift] = []
        for account in self.list_by_kind(hotel_id, include_inactive=True):
            computed = balance_sign(account.normal_side) * computed_net.get(
                account.id, Decimal("0")
            )
            cached = account.current_balance
            if abs(cached - computed) <= TOLERANCE:
                continue
            drift = BalanceDrift(account.id, account.code, cached, computed)
            drifts.append(drift)
            logger.warning(
                "balance_drift_detected",
                extra={
                    "hotel_id": hotel_id,
                    "account_id": str(account.id),
                    "account_code": account.code,
                    "cached": cached,
                    "computed": computed,
                },
            )
            if repair:
                account.current_balance = computed
                account.updated_by_id = actor_id
        if repair and drifts:
            self.session.flush()
            logger.warning(
                "balance_drift_repaired",
                extra={"hotel_id": hotel_id, "account_count": len(drifts)},
            )
        return drifts
