"""
Tests for exchange rate storage, lookup and conversion at posting time.
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from hotel_kernel.domain.values import Money
from hotel_kernel.exceptions import ExchangeRateNotFoundError, InvalidAmountError
from hotel_kernel.selectors.ledger_selector import LedgerSelector
from hotel_kernel.services.exchange_rate_service import ExchangeRateService
from hotel_kernel.services.journal_service import JournalLineInput
from tests.conftest import HOTEL_ID, TEST_ACTOR_ID


@pytest.fixture
def rates(session, deterministic_clock):
    return ExchangeRateService(session, deterministic_clock)


class TestRateLookup:
    """Tests for get_rate."""

    def test_same_currency_is_one(self, rates, today):
        assert rates.get_rate("INR", "INR", today) == Decimal("1")

    def test_latest_effective_rate_wins(self, rates, today):
        rates.upsert_rate("USD", "INR", "82.50", today - timedelta(days=10), TEST_ACTOR_ID)
        rates.upsert_rate("USD", "INR", "83.10", today - timedelta(days=1), TEST_ACTOR_ID)
        rates.upsert_rate("USD", "INR", "90.00", today + timedelta(days=5), TEST_ACTOR_ID)
        assert rates.get_rate("USD", "INR", today) == Decimal("83.10")
        assert rates.get_rate("USD", "INR", today - timedelta(days=5)) == Decimal("82.50")

    def test_inverse_rate_used_when_direct_missing(self, rates, today):
        rates.upsert_rate("USD", "INR", "80", today, TEST_ACTOR_ID)
        assert rates.get_rate("INR", "USD", today) == Decimal("0.0125")

    def test_missing_rate_raises(self, rates, today):
        with pytest.raises(ExchangeRateNotFoundError):
            rates.get_rate("EUR", "JPY", today)

    def test_upsert_replaces_same_day(self, rates, today):
        rates.upsert_rate("USD", "INR", "82", today, TEST_ACTOR_ID)
        updated = rates.upsert_rate("USD", "INR", "83", today, TEST_ACTOR_ID, source="manual")
        assert updated.rate == Decimal("83")
        assert updated.source == "manual"
        assert rates.get_rate("USD", "INR", today) == Decimal("83")

    def test_non_positive_rate_rejected(self, rates, today):
        with pytest.raises(InvalidAmountError):
            rates.upsert_rate("USD", "INR", "0", today, TEST_ACTOR_ID)

    def test_upsert_rates_skips_base(self, rates, today):
        stored = rates.upsert_rates(
            "USD", {"INR": "83", "EUR": "0.92", "USD": "1"}, today, TEST_ACTOR_ID
        )
        assert sorted(r.to_currency for r in stored) == ["EUR", "INR"]

    def test_convert(self, rates, today):
        rates.upsert_rate("USD", "INR", "83", today, TEST_ACTOR_ID)
        converted = rates.convert(Money.of("10.50", "USD"), "INR", today)
        assert converted == Money.of("871.50", "INR")


class TestForeignCurrencyPosting:
    """Entries in a foreign currency land in account currency."""

    def test_usd_entry_posts_inr_base_amounts(self, rates, journal, seeded_accounts, session, today):
        rates.upsert_rate("USD", "INR", "83", today, TEST_ACTOR_ID)
        entry = journal.create_and_post(
            hotel_id=HOTEL_ID,
            entry_date=today,
            description="Foreign card payment",
            lines=[
                JournalLineInput.dr(seeded_accounts["1010"].id, Decimal("100")),
                JournalLineInput.cr(seeded_accounts["4000"].id, Decimal("100")),
            ],
            actor_id=TEST_ACTOR_ID,
            currency="USD",
        )
        records = LedgerSelector(session).records_for_entry(entry.id)
        assert [r.base_currency_amount for r in records] == [Decimal("8300"), Decimal("-8300")]
        assert all(r.exchange_rate == Decimal("83") for r in records)
        assert seeded_accounts["1010"].current_balance == Decimal("8300")

    def test_missing_rate_blocks_posting(self, journal, seeded_accounts, session, today):
        with pytest.raises(ExchangeRateNotFoundError):
            journal.create_and_post(
                hotel_id=HOTEL_ID,
                entry_date=today,
                description="No rate",
                lines=[
                    JournalLineInput.dr(seeded_accounts["1010"].id, Decimal("100")),
                    JournalLineInput.cr(seeded_accounts["4000"].id, Decimal("100")),
                ],
                actor_id=TEST_ACTOR_ID,
                currency="EUR",
            )
        assert LedgerSelector(session).records(hotel_id=HOTEL_ID) == []
