"""
Module ORM Registry (``hotel_modules._orm_registry``).

Responsibility
--------------
Import every module-level ORM file so ``Base.metadata`` carries the module
tables, then create the full schema. Scripts, the façade bootstrap and
``tests/conftest.py`` all go through ``create_all_tables()``.

Architecture position
---------------------
**Modules layer** -- utility. MUST NOT be imported by ``hotel_kernel``.
"""

from sqlalchemy.engine import Engine

from hotel_kernel.db.engine import create_tables, drop_tables


def import_all_orm_models() -> None:
    """Idempotent: repeated calls are harmless."""
    import hotel_kernel.models  # noqa: F401
    import hotel_modules.billing.orm  # noqa: F401
    import hotel_modules.reporting.orm  # noqa: F401
    import hotel_modules.settlement.orm  # noqa: F401


def create_all_tables(engine: Engine | None = None) -> None:
    import_all_orm_models()
    create_tables(engine)


def drop_all_tables(engine: Engine | None = None) -> None:
    import_all_orm_models()
    drop_tables(engine)
