"""
Alembic environment for the grantmatch schema.

Migrations run over synchronous psycopg2; the service itself uses
asyncpg. `database_ssl` maps to `sslmode=require` on the sync URL.
"""

import sys
from logging.config import fileConfig
from pathlib import Path

from alembic import context
from sqlalchemy import create_engine, pool
from sqlalchemy.engine import make_url

sys.path.insert(0, str(Path(__file__).parent.parent))

from grantmatch.core.config import get_settings
from grantmatch.db.base import Base

# Registers source, funding_program, scrape_job and match_record on Base.metadata
import grantmatch.models  # noqa: E402,F401

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def get_url() -> str:
    """Database URL from settings, rewritten for psycopg2."""
    settings = get_settings()
    url = make_url(str(settings.database_url))
    if url.drivername.startswith("postgresql"):
        url = url.set(drivername="postgresql+psycopg2")
        if settings.database_ssl:
            url = url.update_query_dict({"sslmode": "require"})
    return url.render_as_string(hide_password=False)


def run_migrations_offline() -> None:
    """Emit SQL without connecting."""
    context.configure(
        url=get_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = create_engine(get_url(), poolclass=pool.NullPool)
    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata, compare_type=True)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
