"""
Pytest fixtures for the hotel finance test suite.

Provides:
- Structured logging setup and a ``captured_logs`` helper
- A session-scoped engine (in-memory SQLite unless DATABASE_URL is set)
- Per-test sessions joined to an outer transaction that is rolled back
- A deterministic clock, a seeded chart of accounts and service factories

Environment Variables:
- DATABASE_URL: SQLAlchemy URL; PostgreSQL runs the same suite.
"""

import json
import logging
import os
from datetime import date
from decimal import Decimal
from io import StringIO
from typing import Generator

import pytest
from sqlalchemy.orm import Session

from hotel_config.loader import load_chart_of_accounts
from hotel_engines.rules import RulesConfig, RulesEngine
from hotel_kernel.db.engine import init_engine_from_url, reset_engine
from hotel_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from hotel_kernel.domain.clock import DeterministicClock
from hotel_kernel.domain.user_context import Role, UserContext
from hotel_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from hotel_kernel.services.account_service import AccountService
from hotel_kernel.services.journal_service import JournalLineInput, JournalService
from hotel_modules._orm_registry import create_all_tables, drop_all_tables
from hotel_modules.billing.service import InvoiceService, PaymentService
from hotel_modules.reporting.service import BudgetService, ReportingService
from hotel_modules.settlement.service import SettlementService

HOTEL_ID = "H1"
OTHER_HOTEL_ID = "H2"
CURRENCY = "INR"
TEST_ACTOR_ID = "tester"

DEFAULT_DATABASE_URL = "sqlite+pysqlite:///:memory:"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture hotel_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, journal):
            ...
            logs = captured_logs()
            assert any(r["message"] == "journal_entry_posted" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("hotel_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Session-scoped DB infrastructure
# =============================================================================


def get_database_url() -> str:
    return os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)


@pytest.fixture(scope="session")
def db_engine():
    """Single engine for the whole run."""
    eng = init_engine_from_url(get_database_url(), echo=False)
    yield eng
    reset_engine()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    """Create all tables once per session; immutability listeners stay active."""
    drop_all_tables(db_engine)
    create_all_tables(db_engine)
    register_immutability_listeners()
    yield
    unregister_immutability_listeners()
    drop_all_tables(db_engine)


@pytest.fixture
def session(db_tables, db_engine) -> Generator[Session, None, None]:
    """
    Session joined to an outer transaction that is rolled back at teardown.

    Services flush only; ``session.commit()`` inside a test releases a
    SAVEPOINT instead of committing.
    """
    conn = db_engine.connect()
    trans = conn.begin()
    sess = Session(bind=conn, join_transaction_mode="create_savepoint", expire_on_commit=False)
    yield sess
    try:
        sess.close()
    finally:
        try:
            trans.rollback()
        finally:
            conn.close()


# =============================================================================
# Clock, callers, chart of accounts
# =============================================================================


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    """Fixed at 2024-01-01 12:00 UTC."""
    return DeterministicClock()


@pytest.fixture
def today(deterministic_clock) -> date:
    return deterministic_clock.today()


@pytest.fixture
def admin() -> UserContext:
    return UserContext(user_id="admin-1", role=Role.ADMIN)


@pytest.fixture
def manager() -> UserContext:
    return UserContext(user_id="manager-1", role=Role.MANAGER, hotel_id=HOTEL_ID)


@pytest.fixture
def staff() -> UserContext:
    return UserContext(user_id="staff-1", role=Role.STAFF, hotel_id=HOTEL_ID)


@pytest.fixture
def guest() -> UserContext:
    return UserContext(user_id="guest-1", role=Role.GUEST, hotel_id=HOTEL_ID)


@pytest.fixture
def account_service(session, deterministic_clock) -> AccountService:
    return AccountService(session, deterministic_clock)


@pytest.fixture
def seeded_accounts(account_service) -> dict:
    """Default chart for HOTEL_ID, keyed by account code."""
    accounts = account_service.seed_defaults(
        HOTEL_ID,
        actor_id=TEST_ACTOR_ID,
        currency=CURRENCY,
        chart=load_chart_of_accounts(),
    )
    return {a.code: a for a in accounts}


# =============================================================================
# Service factories
# =============================================================================


@pytest.fixture
def journal(session, deterministic_clock) -> JournalService:
    return JournalService(session, deterministic_clock)


@pytest.fixture
def rules_engine() -> RulesEngine:
    return RulesEngine(RulesConfig.with_defaults())


@pytest.fixture
def invoice_service(session, deterministic_clock, rules_engine, seeded_accounts) -> InvoiceService:
    return InvoiceService(session, deterministic_clock, rules_engine=rules_engine)


@pytest.fixture
def payment_service(session, deterministic_clock, rules_engine, seeded_accounts) -> PaymentService:
    return PaymentService(session, deterministic_clock, rules_engine=rules_engine)


@pytest.fixture
def settlement_service(
    session, deterministic_clock, rules_engine, seeded_accounts
) -> SettlementService:
    return SettlementService(session, deterministic_clock, rules_engine)


@pytest.fixture
def reporting_service(session, deterministic_clock, seeded_accounts) -> ReportingService:
    return ReportingService(session, deterministic_clock)


@pytest.fixture
def budget_service(session, deterministic_clock, seeded_accounts) -> BudgetService:
    return BudgetService(session, deterministic_clock)


@pytest.fixture
def post_entry(journal, seeded_accounts, today):
    """
    Create and post a two-line entry between account codes.

        post_entry("1001", "4000", "50000")
    """

    def _post(debit_code: str, credit_code: str, amount, entry_date: date | None = None):
        amount = Decimal(str(amount))
        return journal.create_and_post(
            hotel_id=HOTEL_ID,
            entry_date=entry_date or today,
            description=f"{debit_code} / {credit_code}",
            lines=[
                JournalLineInput.dr(seeded_accounts[debit_code].id, amount),
                JournalLineInput.cr(seeded_accounts[credit_code].id, amount),
            ],
            actor_id=TEST_ACTOR_ID,
            currency=CURRENCY,
        )

    return _post
