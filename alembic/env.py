from logging.config import fileConfig

from sqlalchemy import create_engine, pool
from alembic import context

import config as app_config
from database import Base, engine_options
import models  # noqa: F401  (registers the pipeline and audit tables)

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def get_url() -> str:
    """alembic.ini / -x url=... first, then the app's DATABASE_URL."""
    x_url = context.get_x_argument(as_dictionary=True).get("url")
    return x_url or config.get_main_option("sqlalchemy.url") or app_config.DATABASE_URL


def _configure(url: str, **kw) -> None:
    context.configure(
        target_metadata=target_metadata,
        compare_type=True,
        compare_server_default=True,
        # sqlite cannot ALTER constraints in place (labs partial index, chalan unique)
        render_as_batch=url.startswith("sqlite"),
        **kw,
    )


def run_migrations_offline() -> None:
    url = get_url()
    _configure(url, url=url, literal_binds=True, dialect_opts={"paramstyle": "named"})
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    url = get_url()
    opts = engine_options(url)
    opts.pop("pool_timeout", None)
    connectable = create_engine(url, poolclass=pool.NullPool, **opts)

    with connectable.connect() as connection:
        _configure(url, connection=connection)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
