"""
Module ORM Registry (``market_modules._orm_registry``).

Responsibility
--------------
Ensure all module-level SQLAlchemy ORM models are imported so that
``Base.metadata`` contains their table definitions before tables are
created.  ``market_kernel.db.engine.create_tables()`` calls
``import_all_orm_models()`` first.
"""


def import_all_orm_models() -> None:
    """Import every ``market_modules.*.orm`` module to register ORM models.

    This function is idempotent -- repeated calls are harmless.
    """
    import market_modules.jobs.orm  # noqa: F401
    import market_modules.payments.orm  # noqa: F401
    import market_modules.disputes.orm  # noqa: F401
