# migrations/env.py
from __future__ import annotations

import os
import sys
import logging
from logging.config import fileConfig

from alembic import context

# -----------------------------------------------------------------------------
# Project root on sys.path so "import kingrent" works from any working directory
# -----------------------------------------------------------------------------
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

config = context.config

if config.config_file_name:
    try:
        fileConfig(config.config_file_name, disable_existing_loggers=False)
    except KeyError:
        # alembic.ini without logging sections
        pass

logger = logging.getLogger("alembic.env")

# -----------------------------------------------------------------------------
# Two ways in:
# - DATABASE_URL set (CI, container entrypoint): plain Alembic, no Flask app.
# - Otherwise: `flask db ...` through Flask-Migrate, engine from current_app.
# -----------------------------------------------------------------------------
DB_URL = os.getenv("DATABASE_URL")

USING_FLASK_MIGRATE = False
target_db = None
current_app = None


def _normalize_url(url: str) -> str:
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    if url.startswith("postgresql://"):
        url = "postgresql+psycopg2://" + url[len("postgresql://"):]
    return url


def _set_sqlalchemy_url(url: str) -> None:
    # ConfigParser treats % as interpolation
    if url:
        config.set_main_option("sqlalchemy.url", url.replace("%", "%%"))


def _kingrent_metadata():
    from kingrent.extensions import db
    import kingrent.models  # noqa: F401  registers every table on db.metadata

    return db.metadata


def _bootstrap_flask_migrate():
    global USING_FLASK_MIGRATE, target_db, current_app  # noqa: PLW0603

    from flask import current_app as flask_current_app

    current_app = flask_current_app
    USING_FLASK_MIGRATE = True
    target_db = current_app.extensions["migrate"].db

    def get_engine():
        return current_app.extensions["migrate"].db.engine

    def get_engine_url():
        return get_engine().url.render_as_string(hide_password=False).replace("%", "%%")

    return get_engine, get_engine_url


if DB_URL:
    _set_sqlalchemy_url(_normalize_url(DB_URL))
    get_engine = None
else:
    get_engine, get_engine_url = _bootstrap_flask_migrate()
    _set_sqlalchemy_url(get_engine_url())


def get_metadata():
    if not USING_FLASK_MIGRATE:
        return _kingrent_metadata()
    if hasattr(target_db, "metadatas"):
        return target_db.metadatas[None]
    return target_db.metadata


def process_revision_directives(ctx, revision, directives):
    # No empty autogenerate revisions
    cmd_opts = getattr(config, "cmd_opts", None)
    if cmd_opts and getattr(cmd_opts, "autogenerate", False):
        script = directives[0]
        if script.upgrade_ops.is_empty():
            directives[:] = []
            logger.info("No changes in schema detected.")


def _configure_kwargs() -> dict:
    return {
        "target_metadata": get_metadata(),
        "process_revision_directives": process_revision_directives,
        "compare_type": True,
        "render_as_batch": config.get_main_option("sqlalchemy.url", "").startswith("sqlite"),
    }


def run_migrations_offline():
    url = config.get_main_option("sqlalchemy.url")
    if not url:
        raise RuntimeError("No sqlalchemy.url configured. Set DATABASE_URL or run through `flask db`.")

    context.configure(url=url, literal_binds=True, **_configure_kwargs())
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    kwargs = _configure_kwargs()

    if USING_FLASK_MIGRATE:
        for key, value in (current_app.extensions["migrate"].configure_args or {}).items():
            kwargs.setdefault(key, value)
        connectable = get_engine()
    else:
        from sqlalchemy import create_engine

        connectable = create_engine(config.get_main_option("sqlalchemy.url"))

    with connectable.connect() as connection:
        context.configure(connection=connection, **kwargs)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
