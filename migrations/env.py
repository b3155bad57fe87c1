from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool
from alembic import context

from cafeteria_pay.config import get_settings

# Import the models so their tables are registered on Base.metadata
from cafeteria_pay import models  # noqa: F401
from cafeteria_pay.db import Base

# Alembic Config object
config = context.config

# Logging
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# This is what Alembic uses for autogenerate
target_metadata = Base.metadata


def get_url() -> str:
    """
    Prefer DATABASE_URL from the application settings (environment / .env).
    Fallback to sqlalchemy.url from alembic.ini.
    """
    return get_settings().DATABASE_URL or config.get_main_option("sqlalchemy.url")


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode."""
    context.configure(
        url=get_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    config_section = config.get_section(config.config_ini_section) or {}
    config_section["sqlalchemy.url"] = get_url()

    connectable = engine_from_config(
        config_section,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=connection.dialect.name == "sqlite",
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
