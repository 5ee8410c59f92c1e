"""
SIGEDOC
Audit domain model — trazabilidad.

Models:
    - AuditLog: immutable, append-only audit trail for lifecycle events.
"""

import json
from datetime import UTC, datetime

from sqlalchemy import event

from sigedoc.models import db

# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ENTITY_TYPES = {
    "document", "derivation", "area", "role", "user", "security",
}

AUDIT_ACTIONS = {
    # Document lifecycle
    "document.receive",
    "document.start_review",
    "document.derive",
    "document.accept_derivation",
    "document.reject_derivation",
    "document.close",
    "document.reject",
    "document.update",
    "document.delete",
    "document.restore",
    # Derivation lifecycle
    "derivation.create",
    "derivation.accept",
    "derivation.reject",
    # Administration
    "area.create",
    "area.update",
    "area.activate",
    "area.deactivate",
    "role.create",
    "role.update",
    "role.delete",
    "user.create",
    "user.update",
    "user.status",
    "user.password",
    # Security
    "security.login",
    "security.login_failed",
    "security.access_denied",
}


class AuditLog(db.Model):
    """
    Immutable audit trail for every lifecycle event.

    One row per action.  Document transitions fill ``from_status`` /
    ``to_status`` and, for derivations, ``source_area_id`` /
    ``destination_area_id``; ``diff_json`` carries any extra payload.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_document", "document_id"),
        db.Index("idx_audit_actor", "actor_user_id"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)

    # Polymorphic entity reference
    entity_type = db.Column(
        db.String(30), nullable=False,
        comment="document | derivation | area | role | user | security",
    )
    entity_id = db.Column(
        db.String(36), nullable=False,
        comment="PK of the referenced entity (int-as-string)",
    )
    document_id = db.Column(
        db.Integer,
        db.ForeignKey("documents.id", ondelete="SET NULL"),
        nullable=True,
        comment="Set for document and derivation entries so the trazabilidad can be read per document",
    )

    # What happened
    action = db.Column(db.String(60), nullable=False)
    actor = db.Column(db.String(200), nullable=False, default="system")
    actor_user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    # State change
    from_status = db.Column(db.String(20), nullable=True)
    to_status = db.Column(db.String(20), nullable=True)
    source_area_id = db.Column(db.Integer, nullable=True)
    destination_area_id = db.Column(db.Integer, nullable=True)

    # Change payload
    diff_json = db.Column(db.Text, default="{}")

    # Timestamp (immutable)
    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def diff(self) -> dict:
        """Deserialise *diff_json* to a Python dict."""
        try:
            return json.loads(self.diff_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "document_id": self.document_id,
            "action": self.action,
            "actor": self.actor,
            "actor_user_id": self.actor_user_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "source_area_id": self.source_area_id,
            "destination_area_id": self.destination_area_id,
            "diff": self.diff,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


@event.listens_for(AuditLog, "before_update")
def _refuse_update(mapper, connection, target):
    raise ValueError("AuditLog entries are append-only")


@event.listens_for(AuditLog, "before_delete")
def _refuse_delete(mapper, connection, target):
    raise ValueError("AuditLog entries are append-only")


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    *,
    entity_type: str,
    entity_id,
    action: str,
    actor: str = "system",
    actor_user_id: int | None = None,
    document_id: int | None = None,
    from_status: str | None = None,
    to_status: str | None = None,
    source_area_id: int | None = None,
    destination_area_id: int | None = None,
    diff: dict | None = None,
) -> AuditLog:
    """
    Append a single audit row to the current session without committing,
    so the entry commits or rolls back together with the state change it
    describes.

    Returns the pending AuditLog instance.
    """
    log = AuditLog(
        entity_type=entity_type,
        entity_id=str(entity_id),
        document_id=document_id,
        action=action,
        actor=actor,
        actor_user_id=actor_user_id,
        from_status=from_status,
        to_status=to_status,
        source_area_id=source_area_id,
        destination_area_id=destination_area_id,
        diff_json=json.dumps(diff or {}, default=str, ensure_ascii=False),
    )
    db.session.add(log)
    return log
