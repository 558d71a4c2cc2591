"""
Tests for the chart of accounts service.

Covers:
- Seeding the default chart (idempotent, parents resolved)
- Create/update validation
- Balance cache reconciliation against the ledger
"""

from decimal import Decimal

import pytest

from hotel_config.loader import load_chart_of_accounts
from hotel_kernel.exceptions import (
    AccountNotFoundError,
    DuplicateAccountCodeError,
    InvalidAccountKindError,
    InvalidCurrencyError,
    ValidationError,
)
from hotel_kernel.models.account import AccountKind, NormalSide
from tests.conftest import CURRENCY, HOTEL_ID, OTHER_HOTEL_ID, TEST_ACTOR_ID


class TestSeedDefaults:
    """Tests for installing the default chart."""

    def test_all_accounts_installed(self, seeded_accounts):
        assert len(seeded_accounts) == len(load_chart_of_accounts())
        assert seeded_accounts["1001"].name == "Cash"
        assert seeded_accounts["1001"].is_system is True

    def test_parents_resolved_by_code(self, seeded_accounts):
        assert seeded_accounts["1001"].parent_id == seeded_accounts["1000"].id
        assert seeded_accounts["1500"].parent_id is None

    def test_normal_side_follows_kind(self, seeded_accounts):
        assert seeded_accounts["1100"].normal_side == NormalSide.DEBIT.value
        assert seeded_accounts["2100"].normal_side == NormalSide.CREDIT.value
        assert seeded_accounts["4000"].normal_side == NormalSide.CREDIT.value
        assert seeded_accounts["5000"].normal_side == NormalSide.DEBIT.value

    def test_seeding_twice_is_idempotent(self, account_service, seeded_accounts):
        again = account_service.seed_defaults(
            HOTEL_ID,
            actor_id=TEST_ACTOR_ID,
            currency=CURRENCY,
            chart=load_chart_of_accounts(),
        )
        assert {a.id for a in again} == {a.id for a in seeded_accounts.values()}

    def test_hotels_have_separate_charts(self, account_service, seeded_accounts):
        other = account_service.seed_defaults(
            OTHER_HOTEL_ID,
            actor_id=TEST_ACTOR_ID,
            currency="USD",
            chart=load_chart_of_accounts(),
        )
        assert all(a.hotel_id == OTHER_HOTEL_ID for a in other)
        assert account_service.get_by_code(OTHER_HOTEL_ID, "1001").currency == "USD"
        assert account_service.get_by_code(HOTEL_ID, "1001").currency == CURRENCY


class TestCreateAndUpdate:
    """Tests for account creation and maintenance."""

    def test_duplicate_code_rejected(self, account_service, seeded_accounts):
        with pytest.raises(DuplicateAccountCodeError):
            account_service.create(
                hotel_id=HOTEL_ID,
                code="1001",
                name="Second cash",
                kind="asset",
                actor_id=TEST_ACTOR_ID,
                currency=CURRENCY,
            )

    def test_unknown_kind_rejected(self, account_service):
        with pytest.raises(InvalidAccountKindError):
            account_service.create(
                hotel_id=HOTEL_ID,
                code="9000",
                name="Mystery",
                kind="contra",
                actor_id=TEST_ACTOR_ID,
                currency=CURRENCY,
            )

    def test_unknown_currency_rejected(self, account_service):
        with pytest.raises(InvalidCurrencyError):
            account_service.create(
                hotel_id=HOTEL_ID,
                code="9000",
                name="Mystery",
                kind="asset",
                actor_id=TEST_ACTOR_ID,
                currency="ZZZ",
            )

    def test_parent_from_other_hotel_rejected(self, account_service, seeded_accounts):
        with pytest.raises(ValidationError):
            account_service.create(
                hotel_id=OTHER_HOTEL_ID,
                code="1001",
                name="Cash",
                kind="asset",
                actor_id=TEST_ACTOR_ID,
                currency=CURRENCY,
                parent_id=seeded_accounts["1000"].id,
            )

    def test_update_name_and_parent(self, account_service, seeded_accounts):
        account = account_service.update(
            seeded_accounts["1500"].id,
            TEST_ACTOR_ID,
            name="Property, Plant & Equipment",
            parent_id=seeded_accounts["1000"].id,
        )
        assert account.name == "Property, Plant & Equipment"
        assert account.parent_id == seeded_accounts["1000"].id
        assert account.updated_by_id == TEST_ACTOR_ID

    def test_account_cannot_parent_itself(self, account_service, seeded_accounts):
        with pytest.raises(ValidationError):
            account_service.update(
                seeded_accounts["1000"].id,
                TEST_ACTOR_ID,
                parent_id=seeded_accounts["1000"].id,
            )

    def test_deactivated_hidden_from_listing(self, account_service, seeded_accounts):
        account_service.deactivate(seeded_accounts["6200"].id, TEST_ACTOR_ID)
        codes = [a.code for a in account_service.list_by_kind(HOTEL_ID, AccountKind.EXPENSE)]
        assert "6200" not in codes
        all_codes = [
            a.code
            for a in account_service.list_by_kind(HOTEL_ID, "expense", include_inactive=True)
        ]
        assert "6200" in all_codes

    def test_missing_code_raises(self, account_service, seeded_accounts):
        with pytest.raises(AccountNotFoundError):
            account_service.get_by_code(HOTEL_ID, "9999")
        assert account_service.find_by_code(HOTEL_ID, "9999") is None


class TestReconcileBalances:
    """Cached balances are checked against the ledger."""

    def test_clean_ledger_has_no_drift(self, account_service, post_entry):
        post_entry("1001", "4000", "1200")
        assert account_service.reconcile_balances(HOTEL_ID) == []

    def test_drift_reported_and_repaired(self, account_service, post_entry, seeded_accounts):
        post_entry("1001", "4000", "1200")
        cash = seeded_accounts["1001"]
        cash.current_balance = Decimal("999")

        drifts = account_service.reconcile_balances(HOTEL_ID)
        assert len(drifts) == 1
        assert drifts[0].account_code == "1001"
        assert drifts[0].computed == Decimal("1200")
        assert drifts[0].difference == Decimal("-201")
        assert cash.current_balance == Decimal("999")

        account_service.reconcile_balances(HOTEL_ID, repair=True, actor_id=TEST_ACTOR_ID)
        assert cash.current_balance == Decimal("1200")
        assert account_service.reconcile_balances(HOTEL_ID) == []

    def test_drift_is_logged(self, account_service, post_entry, seeded_accounts, captured_logs):
        post_entry("1001", "4000", "10")
        seeded_accounts["4000"].current_balance = Decimal("0")
        account_service.reconcile_balances(HOTEL_ID)
        assert any(r["message"] == "balance_drift_detected" for r in captured_logs())
