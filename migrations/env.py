"""Alembic migration environment.

Takes the database URL from application settings (DATABASE_URL / .env),
converting the asyncpg URL to a sync psycopg2 URL for Alembic:
    postgresql+asyncpg://...  →  postgresql://...
"""
from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool
from alembic import context

from app.core.config import get_settings
from app.models.risk_assessment import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# FastAPI uses postgresql+asyncpg://; Alembic needs a sync driver
sync_url = (
    get_settings().database_url
    .replace("postgresql+asyncpg://", "postgresql://")
    .replace("sqlite+aiosqlite://", "sqlite://")
)
config.set_main_option("sqlalchemy.url", sync_url)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    context.configure(url=sync_url, target_metadata=target_metadata, literal_binds=True)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
