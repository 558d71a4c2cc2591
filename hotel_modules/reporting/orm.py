"""
Budget ORM Models (``hotel_modules.reporting.orm``).

Responsibility
--------------
Persistence for budgets and their per-account items. Reports themselves
are computed on demand and are never stored.

Architecture position
---------------------
**Modules layer** -- ORM models consumed by ``BudgetService``. Inherits
from ``TrackedBase`` (kernel db layer).

Invariants enforced
-------------------
* ``BudgetItemModel`` uniqueness: one item per budget + account + period start.
* ``actual_amount``, ``variance`` and ``variance_pct`` are written only by
  ``BudgetService.refresh_actuals``.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hotel_kernel.db.base import TrackedBase
from hotel_kernel.db.types import DecimalString, RATE_DECIMAL_PLACES


class BudgetModel(TrackedBase):
    """
    A budget for one hotel and fiscal year.

    Guarantees:
        - ``name`` + ``fiscal_year`` is unique per hotel.
        - ``status`` follows draft -> approved -> closed.
    """

    __tablename__ = "budgets"

    __table_args__ = (
        UniqueConstraint("hotel_id", "name", "fiscal_year", name="uq_budgets_hotel_name_year"),
        Index("idx_budgets_hotel_year", "hotel_id", "fiscal_year"),
    )

    hotel_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    fiscal_year: Mapped[int] = mapped_column(Integer, nullable=False)
    period_start: Mapped[date] = mapped_column(nullable=False)
    period_end: Mapped[date] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
    notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    items: Mapped[list["BudgetItemModel"]] = relationship(
        back_populates="budget",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="BudgetItemModel.period_start",
    )

    def to_dto(self):
        from hotel_modules.reporting.models import Budget, BudgetStatus

        return Budget(
            id=self.id,
            hotel_id=self.hotel_id,
            name=self.name,
            fiscal_year=self.fiscal_year,
            period_start=self.period_start,
            period_end=self.period_end,
            currency=self.currency,
            status=BudgetStatus(self.status),
            items=tuple(item.to_dto() for item in self.items),
        )

    def __repr__(self) -> str:
        return f"<BudgetModel {self.name} FY{self.fiscal_year} [{self.status}]>"


class BudgetItemModel(TrackedBase):
    """Budgeted amount for one account over a sub-period of the budget."""

    __tablename__ = "budget_items"

    __table_args__ = (
        UniqueConstraint(
            "budget_id", "account_id", "period_start",
            name="uq_budget_items_budget_account_period",
        ),
        Index("idx_budget_items_account", "account_id"),
    )

    budget_id: Mapped[UUID] = mapped_column(ForeignKey("budgets.id"), nullable=False)
    account_id: Mapped[UUID] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    period_start: Mapped[date] = mapped_column(nullable=False)
    period_end: Mapped[date] = mapped_column(nullable=False)
    budgeted_amount: Mapped[Decimal] = mapped_column(nullable=False)
    actual_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    variance: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    variance_pct: Mapped[Decimal | None] = mapped_column(
        DecimalString(RATE_DECIMAL_PLACES), nullable=True,
    )
    last_refreshed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    budget: Mapped[BudgetModel] = relationship(back_populates="items")

    def to_dto(self):
        from hotel_modules.reporting.models import BudgetItem

        return BudgetItem(
            id=self.id,
            account_id=self.account_id,
            period_start=self.period_start,
            period_end=self.period_end,
            budgeted_amount=self.budgeted_amount,
            actual_amount=self.actual_amount,
            variance=self.variance,
            variance_pct=self.variance_pct,
        )
