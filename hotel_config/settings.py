"""
Application settings (``hotel_config.settings``).

Responsibility
--------------
Read deployment settings from the environment once, at startup, into an
immutable ``AppSettings``; build the effective ``RulesConfig`` from the
defaults, an optional YAML file and optional JSON overrides (applied in
that order).

Failure modes
-------------
* Unknown currency  -> ``InvalidCurrencyError``.
* Malformed JSON overrides  -> ``ValueError``.
* Unknown rules keys  -> ``ValueError`` (from ``RulesConfig.with_overrides``).
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Mapping, Self

from hotel_config.loader import load_rules_file
from hotel_engines.rules import RulesConfig
from hotel_kernel.db.types import validate_currency
from hotel_kernel.logging_config import get_logger

logger = get_logger("config.settings")

DEFAULT_DATABASE_URL = "sqlite+pysqlite:///:memory:"
DEFAULT_CURRENCY = "INR"


@dataclass(frozen=True)
class AppSettings:
    database_url: str = DEFAULT_DATABASE_URL
    default_currency: str = DEFAULT_CURRENCY
    log_level: str = "INFO"
    rules_file: str | None = None
    rules_overrides: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "default_currency", validate_currency(self.default_currency))
        level = self.log_level.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {self.log_level}")
        object.__setattr__(self, "log_level", level)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Self:
        env = os.environ if environ is None else environ
        overrides = _parse_overrides(env.get("HOTEL_RULES_OVERRIDES", ""))
        RulesConfig.with_defaults().with_overrides(overrides)
        settings = cls(
            database_url=env.get("DATABASE_URL") or DEFAULT_DATABASE_URL,
            default_currency=env.get("HOTEL_DEFAULT_CURRENCY") or DEFAULT_CURRENCY,
            log_level=env.get("HOTEL_LOG_LEVEL") or "INFO",
            rules_file=env.get("HOTEL_RULES_FILE") or None,
            rules_overrides=overrides,
        )
        logger.info(
            "settings_loaded",
            extra={
                "database_backend": settings.database_url.split(":", 1)[0],
                "default_currency": settings.default_currency,
                "rules_file": settings.rules_file,
                "rules_override_keys": sorted(settings.rules_overrides),
            },
        )
        return settings

    def rules_config(self) -> RulesConfig:
        """Defaults, then the YAML file, then the JSON overrides."""
        config = RulesConfig.with_defaults()
        if self.rules_file:
            config = config.with_overrides(load_rules_file(self.rules_file))
        if self.rules_overrides:
            config = config.with_overrides(self.rules_overrides)
        return config


def _parse_overrides(text: str) -> dict[str, Any]:
    if not text.strip():
        return {}
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("HOTEL_RULES_OVERRIDES must be a JSON object")
    return data
