"""
Soft Delete Mixin — papelera (trash) support.

Documents moved to the trash keep their row, derivations and audit trail;
they only disappear from the default listings.

Usage:
    class Document(SoftDeleteMixin, db.Model):
        ...

    doc.soft_delete(user_id)
    Document.query_active().all()     # excludes trashed rows
    Document.query_deleted().all()    # papelera
    doc.restore()
"""

from datetime import datetime, timezone

from sigedoc.models import db


class SoftDeleteMixin:
    """Adds ``deleted_at`` / ``deleted_by_id`` and trash-aware query helpers."""

    deleted_at = db.Column(db.DateTime, nullable=True, default=None, index=True)
    deleted_by_id = db.Column(db.Integer, nullable=True)

    def soft_delete(self, user_id=None):
        self.deleted_at = datetime.now(timezone.utc)
        self.deleted_by_id = user_id

    def restore(self):
        self.deleted_at = None
        self.deleted_by_id = None

    @property
    def is_deleted(self):
        return self.deleted_at is not None

    @classmethod
    def query_active(cls):
        return cls.query.filter(cls.deleted_at.is_(None))

    @classmethod
    def query_deleted(cls):
        return cls.query.filter(cls.deleted_at.isnot(None))
