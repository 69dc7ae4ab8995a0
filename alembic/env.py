"""Alembic environment for the sessionscribe schema.

The URL and metadata come from the Flask app (via ``wsgi``) so migrations
see the same database as the running service.
"""
import os
import pathlib
import sys

from alembic import context
from sqlalchemy import engine_from_config, pool

# migrations own the schema here, not db.create_all()
os.environ["SKIP_CREATE_ALL"] = "1"

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from wsgi import app  # noqa: E402
from sessionscribe.extensions import db  # noqa: E402
import sessionscribe.models  # noqa: E402,F401

with app.app_context():
    # resolved by Flask-SQLAlchemy, so relative sqlite paths already point into instance/
    url = db.engine.url.render_as_string(hide_password=False)

target_metadata = db.metadata


def run_migrations_offline():
    context.configure(url=url, target_metadata=target_metadata,
                      literal_binds=True, compare_type=True, render_as_batch=True)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    connectable = engine_from_config({"sqlalchemy.url": url},
                                     prefix="sqlalchemy.", poolclass=pool.NullPool)
    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata,
                          compare_type=True, render_as_batch=True)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
