"""
Façade tests: authorization, error envelopes and savepoint isolation.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from hotel_engines.rules import BookingView
from hotel_kernel.domain.user_context import Role, UserContext
from hotel_kernel.services.journal_service import JournalLineInput
from hotel_modules.settlement.models import GuestDetails, SettlementPaymentInput, SettlementStatus
from hotel_services.facade import HotelFinanceFacade
from tests.conftest import HOTEL_ID, OTHER_HOTEL_ID


@pytest.fixture
def facade(session, deterministic_clock, rules_engine):
    return HotelFinanceFacade(session, deterministic_clock, rules_engine=rules_engine)


def _lines(accounts, amount="250", credit_amount=None):
    return [
        JournalLineInput.dr(accounts["1001"].id, Decimal(amount)),
        JournalLineInput.cr(accounts["4000"].id, Decimal(credit_amount or amount)),
    ]


class TestChartOfAccounts:
    """Account operations."""

    def test_admin_seeds_any_hotel(self, facade, admin):
        result = facade.seed_chart_of_accounts(admin, "H9")
        assert result.ok
        assert len(result.data) == 23
        assert {row["hotel_id"] for row in result.data} == {"H9"}

    def test_manager_cannot_seed(self, facade, manager):
        result = facade.seed_chart_of_accounts(manager, HOTEL_ID)
        assert not result.ok
        assert result.error.code == "ROLE_NOT_PERMITTED"

    def test_duplicate_code_reported(self, facade, manager, seeded_accounts):
        result = facade.create_account(manager, HOTEL_ID, "1001", "Second till", "asset", sub_type="cash")
        assert result.error.code == "DUPLICATE_ACCOUNT_CODE"
        assert result.error.kind == "conflict"


class TestJournalOperations:
    """Draft, post, reverse through the façade."""

    def test_staff_drafts_manager_posts(self, facade, staff, manager, seeded_accounts, today):
        draft = facade.create_journal_draft(staff, HOTEL_ID, today, "Walk-in sale", _lines(seeded_accounts))
        assert draft.ok
        assert draft.data["status"] == "draft"

        denied = facade.post_journal_entry(staff, draft.data["id"])
        assert denied.error.code == "ROLE_NOT_PERMITTED"

        posted = facade.post_journal_entry(manager, draft.data["id"])
        assert posted.ok
        assert posted.data["number"] == "JE-2024-000001"
        assert posted.data["ledger_record_count"] == 2

        reversed_ = facade.reverse_journal_entry(manager, draft.data["id"], "Keyed twice")
        assert reversed_.ok
        assert reversed_.data["reversal_of_id"] == draft.data["id"]

    def test_unbalanced_draft(self, facade, staff, seeded_accounts, today):
        result = facade.create_journal_draft(
            staff, HOTEL_ID, today, "Typo", _lines(seeded_accounts, "250", "205")
        )
        assert result.error.code == "UNBALANCED_ENTRY"
        assert result.error.kind == "precision"

    def test_other_hotel_rejected(self, facade, manager, seeded_accounts, today):
        result = facade.create_journal_draft(
            manager, OTHER_HOTEL_ID, today, "Wrong hotel", _lines(seeded_accounts)
        )
        assert result.error.code == "HOTEL_SCOPE_VIOLATION"

    def test_unknown_entry(self, facade, manager):
        result = facade.post_journal_entry(manager, uuid4())
        assert result.error.code == "JOURNAL_ENTRY_NOT_FOUND"
        assert result.error.kind == "not_found"


class TestSettlementOperations:
    """Settlement calls and DTO results."""

    def _create(self, facade, user):
        return facade.create_settlement(
            user,
            HOTEL_ID,
            "BK-1",
            "10000",
            GuestDetails("Asha Rao"),
            BookingView(total_amount=Decimal("10000")),
        )

    def test_create_and_read(self, facade, staff, guest, seeded_accounts):
        created = self._create(facade, staff)
        assert created.ok
        assert created.data.status == SettlementStatus.PENDING
        fetched = facade.get_settlement(guest, created.data.id)
        assert fetched.data.number == created.data.number
        assert fetched.to_dict()["data"]["original_amount"] == "10000.0000"

    def test_guest_may_pay(self, facade, staff, guest, seeded_accounts):
        created = self._create(facade, staff)
        paid = facade.add_settlement_payment(
            guest, created.data.id, SettlementPaymentInput(Decimal("2500"), "card", reference="TXN-1")
        )
        assert paid.ok
        assert paid.data.status == SettlementStatus.PARTIAL

    def test_failed_payment_leaves_nothing_behind(self, facade, staff, seeded_accounts, settlement_service):
        created = self._create(facade, staff)
        result = facade.add_settlement_payment(
            staff, created.data.id, SettlementPaymentInput(Decimal("99999999"), "card", reference="X")
        )
        assert result.error.code == "RULE_VIOLATION"
        assert result.error.details["violations"]
        assert settlement_service.get(created.data.id).payments == []

    def test_unknown_settlement(self, facade, manager):
        result = facade.get_settlement(manager, uuid4())
        assert result.error.code == "SETTLEMENT_NOT_FOUND"

    def test_cross_hotel_guest_rejected(self, facade, staff, seeded_accounts):
        created = self._create(facade, staff)
        outsider = UserContext(user_id="guest-9", role=Role.GUEST, hotel_id=OTHER_HOTEL_ID)
        assert facade.get_settlement(outsider, created.data.id).error.code == "HOTEL_SCOPE_VIOLATION"


class TestRulesAndInternalErrors:
    """Rules administration and unexpected failures."""

    def test_update_rules(self, facade, admin, rules_engine):
        result = facade.update_rules(admin, {"max_cash_payment": "1000"})
        assert result.ok
        assert result.data["max_cash_payment"] == "1000"
        assert rules_engine.config.max_cash_payment == Decimal("1000")
        assert facade.get_rules(admin).data["max_cash_payment"] == "1000"

    def test_unknown_rule_is_validation_error(self, facade, admin):
        result = facade.update_rules(admin, {"no_such_rule": 1})
        assert result.error.code == "VALIDATION_ERROR"

    def test_manager_cannot_update_rules(self, facade, manager):
        assert facade.update_rules(manager, {}).error.code == "ROLE_NOT_PERMITTED"

    def test_internal_error_hidden(self, facade, manager, monkeypatch, captured_logs):
        def boom(*args, **kwargs):
            raise RuntimeError("database exploded")

        monkeypatch.setattr(facade._accounts, "reconcile_balances", boom)
        result = facade.reconcile_balances(manager, HOTEL_ID)
        assert result.error.code == "INTERNAL_ERROR"
        assert result.error.message == "Internal error"
        assert "database exploded" not in str(result.to_dict())
        assert any(r["message"] == "operation_internal_error" for r in captured_logs())

    def test_correlation_id_logged(self, facade, admin, captured_logs):
        facade.get_rules(admin)
        completed = [r for r in captured_logs() if r["message"] == "operation_completed"]
        assert completed[-1]["correlation_id"]
        assert completed[-1]["operation"] == "rules.read"
