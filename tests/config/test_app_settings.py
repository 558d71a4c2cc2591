"""
Settings from the environment and the effective rules configuration.
"""

import json
from decimal import Decimal

import pytest
from sqlalchemy import inspect

import hotel_services.bootstrap as bootstrap_module
from hotel_config.settings import DEFAULT_DATABASE_URL, AppSettings
from hotel_kernel.db.engine import build_engine
from hotel_kernel.exceptions import InvalidCurrencyError


class TestFromEnv:
    """AppSettings.from_env."""

    def test_defaults(self):
        settings = AppSettings.from_env({})
        assert settings.database_url == DEFAULT_DATABASE_URL
        assert settings.default_currency == "INR"
        assert settings.log_level == "INFO"
        assert settings.rules_file is None
        assert settings.rules_overrides == {}

    def test_values_read(self, captured_logs):
        settings = AppSettings.from_env(
            {
                "DATABASE_URL": "sqlite+pysqlite:///hotel.db",
                "HOTEL_DEFAULT_CURRENCY": "usd",
                "HOTEL_LOG_LEVEL": "debug",
                "HOTEL_RULES_OVERRIDES": json.dumps({"max_cash_payment": "150000"}),
            }
        )
        assert settings.default_currency == "USD"
        assert settings.log_level == "DEBUG"
        assert settings.rules_overrides == {"max_cash_payment": "150000"}
        loaded = [r for r in captured_logs() if r["message"] == "settings_loaded"]
        assert loaded[-1]["database_backend"] == "sqlite+pysqlite"

    def test_unknown_currency(self):
        with pytest.raises(InvalidCurrencyError):
            AppSettings.from_env({"HOTEL_DEFAULT_CURRENCY": "XXQ"})

    def test_unknown_log_level(self):
        with pytest.raises(ValueError):
            AppSettings(log_level="chatty")

    @pytest.mark.parametrize("overrides", ['["max_cash_payment"]', '{"no_such_rule": 1}', "{not json"])
    def test_bad_overrides(self, overrides):
        with pytest.raises(ValueError):
            AppSettings.from_env({"HOTEL_RULES_OVERRIDES": overrides})


class TestRulesConfig:
    """Defaults, then file, then overrides."""

    def test_defaults_only(self):
        config = AppSettings().rules_config()
        assert config.max_cash_payment == Decimal("200000")

    def test_flat_file(self, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text("max_cash_payment: 150000\nmax_grace_period_days: 10\n")
        config = AppSettings(rules_file=str(path)).rules_config()
        assert config.max_cash_payment == Decimal("150000")
        assert config.max_grace_period_days == 10

    def test_nested_file_then_overrides(self, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text("rules:\n  max_cash_payment: 150000\n  large_cash_warning: 40000\n")
        settings = AppSettings(rules_file=str(path), rules_overrides={"max_cash_payment": "90000"})
        config = settings.rules_config()
        assert config.max_cash_payment == Decimal("90000")
        assert config.large_cash_warning == Decimal("40000")

    def test_unknown_key_in_file(self, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text("max_tips: 5\n")
        with pytest.raises(ValueError):
            AppSettings(rules_file=str(path)).rules_config()


class TestBootstrap:
    """Start-up wiring."""

    def test_creates_schema(self, monkeypatch, captured_logs):
        engines = []

        def fresh_engine(url):
            engine = build_engine(url)
            engines.append(engine)
            return engine

        monkeypatch.setattr(bootstrap_module, "init_engine_from_url", fresh_engine)
        settings = bootstrap_module.bootstrap(AppSettings())
        assert settings.default_currency == "INR"
        tables = set(inspect(engines[0]).get_table_names())
        assert {"accounts", "journal_entries", "settlements", "invoices"} <= tables
        assert any(r["message"] == "application_bootstrapped" for r in captured_logs())
        engines[0].dispose()
