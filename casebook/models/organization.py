# casebook/models/organization.py

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from .base import BaseModel, db


class Organization(BaseModel):
    """Tenant owning clients and import batches."""

    __tablename__ = "organizations"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, index=True)
    slug = db.Column(db.String(100), unique=True, nullable=False, index=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False, index=True)

    clients = db.relationship("Client", back_populates="organization", lazy="dynamic")

    def __repr__(self):
        return f"<Organization {self.slug}>"

    @classmethod
    def _lookup(cls, statement, description):
        try:
            return db.session.scalars(statement).first()
        except SQLAlchemyError as exc:
            current_app.logger.error(
                f"Database error loading organization {description}: {exc}",
                extra={"organization_lookup": description},
            )
            return None

    @classmethod
    def find_by_slug(cls, slug):
        return cls._lookup(db.select(cls).where(cls.slug == slug), f"slug={slug}")

    @classmethod
    def find_by_id(cls, org_id):
        return cls._lookup(db.select(cls).where(cls.id == org_id), f"id={org_id}")

    @classmethod
    def find_active(cls, org_id):
        """The tenant, or None when it is missing or deactivated."""
        if org_id is None:
            return None
        return cls._lookup(db.select(cls).where(cls.id == org_id, cls.is_active.is_(True)), f"id={org_id}")
