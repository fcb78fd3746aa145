"""
MAAP Snapshot Platform: Model Package

Holds the shared Flask-SQLAlchemy handle.  Model modules import ``db`` from
here; ``create_app`` imports every model module so that ``db.create_all()``
and Alembic autogenerate see the full metadata.
"""

from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)
