# casebook/models/client.py
"""
Client model: the entity populated by bulk imports.

Clients are soft-deleted through ``deleted_at`` so import rollback can
reverse creations without losing history.
"""

import hashlib
import json
from datetime import date, datetime, timezone

from sqlalchemy import Index
from sqlalchemy.orm import validates

from .base import BaseModel, db

# Columns captured in pre-images and compared by rollback checksums.
CLIENT_SNAPSHOT_FIELDS = (
    "first_name",
    "last_name",
    "phone",
    "phone_normalized",
    "email",
    "email_normalized",
    "internal_id",
    "date_of_birth",
    "street",
    "city",
    "state",
    "zip_code",
)


class Client(BaseModel):
    """A person served by an organization."""

    __tablename__ = "clients"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    first_name = db.Column(db.String(100), nullable=False, index=True)
    last_name = db.Column(db.String(100), nullable=False, index=True)
    phone = db.Column(db.String(40), nullable=True)
    phone_normalized = db.Column(db.String(20), nullable=True, index=True)
    email = db.Column(db.String(255), nullable=True)
    email_normalized = db.Column(db.String(255), nullable=True, index=True)
    internal_id = db.Column(db.String(100), nullable=True, index=True)
    date_of_birth = db.Column(db.Date, nullable=True)
    street = db.Column(db.String(255), nullable=True)
    city = db.Column(db.String(100), nullable=True)
    state = db.Column(db.String(50), nullable=True)
    zip_code = db.Column(db.String(20), nullable=True)
    created_by_user_id = db.Column(db.Integer, nullable=True)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    organization = db.relationship("Organization", back_populates="clients")

    __table_args__ = (Index("idx_clients_org_active", "organization_id", "deleted_at"),)

    def __repr__(self):
        return f"<Client {self.id}: {self.full_name}>"

    @validates("first_name", "last_name")
    def _strip_names(self, key, value):
        return value.strip() if isinstance(value, str) else value

    @property
    def full_name(self):
        return " ".join(part for part in (self.first_name, self.last_name) if part)

    @property
    def is_deleted(self):
        return self.deleted_at is not None

    def soft_delete(self):
        self.deleted_at = datetime.now(timezone.utc)

    def snapshot(self):
        """Return JSON-safe values for the snapshot columns."""
        payload = {}
        for field_name in CLIENT_SNAPSHOT_FIELDS:
            value = getattr(self, field_name)
            if isinstance(value, date):
                value = value.isoformat()
            payload[field_name] = value
        return payload

    def restore_snapshot(self, payload):
        for field_name in CLIENT_SNAPSHOT_FIELDS:
            if field_name not in payload:
                continue
            value = payload[field_name]
            if field_name == "date_of_birth" and isinstance(value, str):
                value = date.fromisoformat(value)
            setattr(self, field_name, value)

    def checksum(self):
        """Stable sha256 over the snapshot, used to detect later edits."""
        serialized = json.dumps(sorted(self.snapshot().items()), sort_keys=True, default=str)
        return hashlib.sha256(serialized.encode("utf-8")).hexdigest()

    @classmethod
    def active_for_organization(cls, organization_id):
        return cls.query.filter(cls.organization_id == organization_id, cls.deleted_at.is_(None))
