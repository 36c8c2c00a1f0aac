# migrations/env.py
from __future__ import annotations

import logging
import os
import sys
from logging.config import fileConfig

from alembic import context

# `alembic -c migrations/alembic.ini ...` from a checkout must be able to import onboarding
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

config = context.config
log = logging.getLogger("alembic.env")

if config.config_file_name:
    try:
        fileConfig(config.config_file_name, disable_existing_loggers=False)
    except KeyError:
        pass


# =========================================================
# Where the schema and the connection come from
#
# Two entry points:
#   flask db upgrade         -> Flask-Migrate pushes an app context
#   DATABASE_URL=... alembic -> standalone, no app is created
# =========================================================
def _standalone_url() -> str | None:
    url = os.getenv("DATABASE_URL")
    if url and url.startswith(("postgres://", "postgresql://")):
        url = "postgresql+psycopg2://" + url.split("://", 1)[1]
    return url


def _flask_db():
    from flask import current_app

    return current_app.extensions["migrate"].db


def _metadata(flask_db=None):
    if flask_db is not None:
        return flask_db.metadata

    from onboarding import models  # noqa: F401  (registers tables)
    from onboarding.extensions import db

    return db.metadata


def _skip_empty_revision(ctx, revision, directives):
    opts = getattr(config, "cmd_opts", None)
    if getattr(opts, "autogenerate", False) and directives[0].upgrade_ops.is_empty():
        directives[:] = []
        log.info("Schema unchanged; no revision written.")


def _configure(flask_db=None, **kwargs) -> None:
    options = {
        "target_metadata": _metadata(flask_db),
        "compare_type": True,
        "process_revision_directives": _skip_empty_revision,
    }
    if flask_db is not None:
        from flask import current_app

        options.update(current_app.extensions["migrate"].configure_args or {})
    options.update(kwargs)
    context.configure(**options)


# =========================================================
# Runners
# =========================================================
STANDALONE_URL = _standalone_url()
FLASK_DB = None if STANDALONE_URL else _flask_db()

if FLASK_DB is not None:
    config.set_main_option(
        "sqlalchemy.url",
        FLASK_DB.engine.url.render_as_string(hide_password=False).replace("%", "%%"),
    )
elif STANDALONE_URL:
    config.set_main_option("sqlalchemy.url", STANDALONE_URL.replace("%", "%%"))


def run_offline() -> None:
    url = config.get_main_option("sqlalchemy.url")
    if not url:
        raise RuntimeError("Set DATABASE_URL or run through `flask db`.")
    _configure(FLASK_DB, url=url, literal_binds=True, render_as_batch=url.startswith("sqlite"))
    with context.begin_transaction():
        context.run_migrations()


def run_online() -> None:
    if FLASK_DB is not None:
        engine = FLASK_DB.engine
    else:
        from sqlalchemy import create_engine

        engine = create_engine(config.get_main_option("sqlalchemy.url"))

    with engine.connect() as connection:
        _configure(FLASK_DB, connection=connection, render_as_batch=connection.dialect.name == "sqlite")
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_offline()
else:
    run_online()
