# casebook/models/base.py

from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def _utcnow():
    return datetime.now(timezone.utc)


class BaseModel(db.Model):
    """Abstract base adding audit timestamps to every table."""

    __abstract__ = True

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    def save(self):
        db.session.add(self)
        db.session.commit()
        return self
