from logging.config import fileConfig
from sqlalchemy import engine_from_config, pool
from alembic import context
import os

# Load .env for DATABASE_SYNC_URL
from dotenv import load_dotenv
load_dotenv()

# Import all models so Base.metadata is populated
import procurement.models  # noqa: F401
from procurement.database import Base

config = context.config
database_url = os.getenv(
    "DATABASE_SYNC_URL", config.get_main_option("sqlalchemy.url")
)
config.set_main_option("sqlalchemy.url", database_url)
if config.config_file_name:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def run_migrations_offline():
    context.configure(
        url=database_url, target_metadata=target_metadata, literal_binds=True
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    connectable = engine_from_config(
        config.get_section(config.config_ini_section),
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
