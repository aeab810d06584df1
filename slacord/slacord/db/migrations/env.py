from __future__ import annotations

import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

# Import metadata so autogenerate works
from slacord.db.base import Base
from slacord.db import models  # noqa: F401  # keeps model metadata registered
from slacord.db.session import _sync_url, mask_url


config = context.config

if config.config_file_name is not None and config.get_section("loggers"):
    fileConfig(config.config_file_name)


# Order of precedence (highest first):
#   1) SLACORD_DATABASE_URL
#   2) the URL set by init_db or alembic.ini
chosen = os.getenv("SLACORD_DATABASE_URL") or config.get_main_option("sqlalchemy.url")
if not chosen:
    raise RuntimeError("No database URL configured for migrations")
norm_url = _sync_url(chosen.strip())
config.set_main_option("sqlalchemy.url", norm_url.replace("%", "%%"))
print("Alembic using", mask_url(norm_url))

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode."""
    context.configure(
        url=norm_url,
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    connectable = engine_from_config(
        config.get_section(config.config_ini_section),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
        pool_pre_ping=True,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
