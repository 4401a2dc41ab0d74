"""Alembic environment for slotkeeper."""

import os

from sqlalchemy import create_engine, pool

from alembic import context

from slotkeeper.database import models  # noqa: F401
from slotkeeper.database.database import Base

target_metadata = Base.metadata


def get_url() -> str:
    """Resolve the database URL from Alembic config or the environment."""
    url = context.config.get_main_option("sqlalchemy.url")
    if url:
        return url
    return os.getenv("DATABASE_URL", "sqlite:///./slotkeeper.db")


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode (emit SQL without a live connection)."""
    context.configure(
        url=get_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode (with a live database connection)."""
    connectable = create_engine(get_url(), poolclass=pool.NullPool)
    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
