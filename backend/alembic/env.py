"""
Alembic environment.

The database URL comes from DATABASE_URL (core.config) unless the caller set
sqlalchemy.url explicitly on the Config object, as the test suite does.
"""

import logging
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool

from core.config import DATABASE_URL
from core.database import Base, build_engine
import models  # noqa: F401  (registers every table on Base.metadata)

config = context.config

if config.config_file_name is not None and not config.attributes.get("skip_logging_config"):
    fileConfig(config.config_file_name, disable_existing_loggers=False)

logger = logging.getLogger("alembic.env")

target_metadata = Base.metadata


def _database_url() -> str:
    url = config.get_main_option("sqlalchemy.url")
    if config.attributes.get("use_configured_url") and url:
        return url
    return DATABASE_URL


def run_migrations_offline() -> None:
    """Emit SQL to stdout without a live connection."""
    context.configure(
        url=_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations against a live connection."""
    url = _database_url()
    connectable = build_engine(url, poolclass=pool.NullPool)
    logger.info(f"Running migrations against {connectable.url.render_as_string(hide_password=True)}")

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=connection.dialect.name == "sqlite",
        )

        with context.begin_transaction():
            context.run_migrations()

    connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
