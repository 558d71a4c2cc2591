"""
Process start-up: settings -> logging -> engine -> schema.

    settings = bootstrap()
    with session_scope() as session:
        facade = HotelFinanceFacade(session, settings=settings)
        ...
"""

from __future__ import annotations

from hotel_config.settings import AppSettings
from hotel_kernel.db.engine import init_engine_from_url
from hotel_kernel.logging_config import configure_logging, get_logger
from hotel_modules._orm_registry import create_all_tables

logger = get_logger("services.bootstrap")


def bootstrap(settings: AppSettings | None = None, create_schema: bool = True) -> AppSettings:
    """Configure logging and the database from ``settings`` (default: env)."""
    settings = settings or AppSettings.from_env()
    configure_logging(level=settings.log_level)
    engine = init_engine_from_url(settings.database_url)
    if create_schema:
        create_all_tables(engine)
    logger.info(
        "application_bootstrapped",
        extra={
            "dialect": engine.dialect.name,
            "default_currency": settings.default_currency,
            "schema_created": create_schema,
        },
    )
    return settings
