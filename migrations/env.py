"""Alembic environment configuration without Flask app bootstrap."""

from __future__ import annotations

from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from config import DEFAULT_SQLITE_URI, get_database_uri_from_env
from gentil.models import db  # noqa: F401 - ensures models are imported

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)


database_url, _source = get_database_uri_from_env(DEFAULT_SQLITE_URI)
config.set_main_option("sqlalchemy.url", database_url)

target_metadata = db.Model.metadata


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode."""

    context.configure(
        url=database_url,
        target_metadata=target_metadata,
        literal_binds=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""

    connectable = engine_from_config(
        config.get_section(config.config_ini_section),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=True,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
