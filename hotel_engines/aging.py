"""
Module: hotel_engines.aging
Responsibility:
    Age open receivables (invoice balances, settlement outstanding amounts)
    by days past due and total them per bucket.
Architecture position:
    Engines -- pure calculation layer, zero I/O.
Invariants enforced:
    - No clock access: ``as_of`` is always a parameter.
    - Every non-negative age falls in exactly one receivable bucket; items
      not yet due (negative age) are Current.
    - Totals are Money sums; mixing currencies raises CurrencyMismatchError.
Failure modes:
    - ValueError when an age does not fit a custom bucket set.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Sequence
from uuid import UUID

from hotel_engines.tracer import traced_engine
from hotel_kernel.domain.values import Money
from hotel_kernel.logging_config import get_logger

logger = get_logger("engines.aging")


@dataclass(frozen=True)
class AgeBucket:
    """Contiguous range of days past due; max_days=None is unbounded."""

    name: str
    min_days: int
    max_days: int | None

    def __post_init__(self) -> None:
        if self.max_days is not None and self.max_days < self.min_days:
            raise ValueError("max_days cannot be less than min_days")

    def contains(self, age_days: int) -> bool:
        if age_days < self.min_days:
            return False
        return self.max_days is None or age_days <= self.max_days


RECEIVABLE_BUCKETS: tuple[AgeBucket, ...] = (
    AgeBucket("current", 0, 30),
    AgeBucket("31-60", 31, 60),
    AgeBucket("61-90", 61, 90),
    AgeBucket("91-120", 91, 120),
    AgeBucket("120+", 121, None),
)


@dataclass(frozen=True)
class AgedItem:
    document_id: str | UUID
    document_type: str
    document_number: str
    due_date: date
    amount: Money
    days_past_due: int
    bucket: AgeBucket
    counterparty_name: str | None = None

    @property
    def is_overdue(self) -> bool:
        return self.days_past_due > 0


@dataclass(frozen=True)
class AgingReport:
    as_of: date
    currency: str
    buckets: tuple[AgeBucket, ...]
    items: tuple[AgedItem, ...]

    @property
    def item_count(self) -> int:
        return len(self.items)

    def total_amount(self) -> Money:
        return Money.total((i.amount for i in self.items), self.currency)

    def total_by_bucket(self) -> dict[str, Money]:
        totals = {b.name: Money.zero(self.currency) for b in self.buckets}
        for item in self.items:
            totals[item.bucket.name] = totals[item.bucket.name].add(item.amount)
        return totals

    def items_in_bucket(self, bucket_name: str) -> tuple[AgedItem, ...]:
        return tuple(i for i in self.items if i.bucket.name == bucket_name)

    def overdue_amount(self) -> Money:
        return Money.total((i.amount for i in self.items if i.is_overdue), self.currency)


class AgingCalculator:
    """Pure aging calculations."""

    DEFAULT_BUCKETS = RECEIVABLE_BUCKETS

    def days_past_due(self, due_date: date, as_of: date) -> int:
        return (as_of - due_date).days

    def classify(self, age_days: int, buckets: Sequence[AgeBucket] | None = None) -> AgeBucket:
        buckets = buckets or self.DEFAULT_BUCKETS
        if age_days < 0:
            return buckets[0]
        for bucket in buckets:
            if bucket.contains(age_days):
                return bucket
        logger.warning(
            "age_classification_no_bucket",
            extra={"age_days": age_days, "bucket_count": len(buckets)},
        )
        raise ValueError(f"Age {age_days} does not fit any bucket")

    def age_item(
        self,
        document_id: str | UUID,
        document_type: str,
        document_number: str,
        due_date: date,
        amount: Money,
        as_of: date,
        counterparty_name: str | None = None,
        buckets: Sequence[AgeBucket] | None = None,
    ) -> AgedItem:
        age = self.days_past_due(due_date, as_of)
        return AgedItem(
            document_id=document_id,
            document_type=document_type,
            document_number=document_number,
            due_date=due_date,
            amount=amount,
            days_past_due=age,
            bucket=self.classify(age, buckets),
            counterparty_name=counterparty_name,
        )

    @traced_engine("aging", "1.0", fingerprint_fields=("items", "as_of", "currency"))
    def generate_report(
        self,
        *,
        items: Sequence[AgedItem],
        as_of: date,
        currency: str,
        buckets: Sequence[AgeBucket] | None = None,
    ) -> AgingReport:
        report = AgingReport(
            as_of=as_of,
            currency=currency,
            buckets=tuple(buckets or self.DEFAULT_BUCKETS),
            items=tuple(items),
        )
        logger.info(
            "aging_report_generated",
            extra={
                "as_of": as_of.isoformat(),
                "item_count": len(items),
                "currency": currency,
            },
        )
        return report
