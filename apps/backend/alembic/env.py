from __future__ import annotations

from logging.config import fileConfig
from typing import Any

from sqlalchemy import engine_from_config, pool
from alembic import context

from folio_finance.core.config import settings
from folio_finance.core.database import Base, is_sqlite
from folio_finance import models  # noqa: F401 - registers every table on Base.metadata


config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# FOLIO_DATABASE_URL wins over anything in alembic.ini
config.set_main_option("sqlalchemy.url", settings.DATABASE_URL)


def _options(url: str) -> dict[str, Any]:
    # SQLite cannot ALTER most constraints in place; batch mode rebuilds the table
    return {
        "target_metadata": Base.metadata,
        "compare_type": True,
        "render_as_batch": is_sqlite(url),
    }


def run_migrations_offline() -> None:
    url = config.get_main_option("sqlalchemy.url")
    context.configure(url=url, literal_binds=True, dialect_opts={"paramstyle": "named"}, **_options(url))
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(connection=connection, **_options(str(connection.engine.url)))
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
