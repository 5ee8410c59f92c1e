"""
Document domain models — Document and Derivation.

State machines:

    Document.status
        RECEIVED  ──start_review──▶ IN_REVIEW ──close──▶ CLOSED
            │                          │
            └──────derive──▶ DERIVED ◀─┘
                               │ accept  → IN_REVIEW (at destination area)
                               │ reject  → prior status (at source area)
        any non-terminal ──reject──▶ REJECTED

    Derivation.status
        PENDING ──accept──▶ ACCEPTED
        PENDING ──reject──▶ REJECTED

Concurrency guards:
    - ``documents.version`` is a SQLAlchemy ``version_id_col``; a flush that
      updates a stale row raises ``StaleDataError``.
    - ``derivations.version`` does the same for derivations, so a stale
      accept or reject cannot overwrite a resolution made elsewhere.
    - ``uq_derivations_one_pending`` is a partial unique index allowing at
      most one PENDING derivation per document.
"""

from datetime import datetime, timezone

from sqlalchemy import event, inspect, text

from sigedoc.core.exceptions import InvalidTransition
from sigedoc.models import db
from sigedoc.models.soft_delete import SoftDeleteMixin

# ── Constants ────────────────────────────────────────────────────────────────

DOCUMENT_STATUSES = ("RECEIVED", "IN_REVIEW", "DERIVED", "CLOSED", "REJECTED")
TERMINAL_STATUSES = frozenset({"CLOSED", "REJECTED"})
DERIVATION_STATUSES = ("PENDING", "ACCEPTED", "REJECTED")
PRIORITIES = ("NORMAL", "URGENTE", "MUY_URGENTE")

DOCUMENT_TRANSITIONS = {
    "start_review": {"from": ["RECEIVED"], "to": "IN_REVIEW"},
    "derive": {"from": ["RECEIVED", "IN_REVIEW"], "to": "DERIVED"},
    "accept_derivation": {"from": ["DERIVED"], "to": "IN_REVIEW"},
    # target is the derivation's prior_status, resolved at runtime
    "reject_derivation": {"from": ["DERIVED"], "to": None},
    "close": {"from": ["IN_REVIEW"], "to": "CLOSED"},
    "reject": {"from": ["RECEIVED", "IN_REVIEW", "DERIVED"], "to": "REJECTED"},
}

DERIVATION_TRANSITIONS = {
    "accept": {"from": ["PENDING"], "to": "ACCEPTED"},
    "reject": {"from": ["PENDING"], "to": "REJECTED"},
}


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


# ═════════════════════════════════════════════════════════════════════════════
# Document
# ═════════════════════════════════════════════════════════════════════════════

class Document(SoftDeleteMixin, db.Model):
    """
    A registered expediente.  ``current_area_id`` and ``status`` are owned by
    the derivation workflow; blueprints never assign them directly.
    """

    __tablename__ = "documents"
    __table_args__ = (
        db.Index("idx_documents_status", "status"),
        db.Index("idx_documents_current_area", "current_area_id"),
        db.Index("idx_documents_created", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    registration_number = db.Column(db.String(50), unique=True, nullable=False)
    office_number = db.Column(db.String(100), nullable=False)
    document_type = db.Column(db.String(60), nullable=False, default="OFICIO")
    origin = db.Column(db.String(60), nullable=False, comment="EXTERNO | INTERNO")
    procedencia = db.Column(db.String(200), default="")
    content = db.Column(db.Text, default="")
    observations = db.Column(db.Text, default="")
    priority = db.Column(db.String(20), nullable=False, default="NORMAL")
    document_date = db.Column(db.Date, nullable=True)

    status = db.Column(db.String(20), nullable=False, default="RECEIVED")
    initial_area_id = db.Column(
        db.Integer, db.ForeignKey("areas.id", ondelete="RESTRICT"), nullable=False,
    )
    current_area_id = db.Column(
        db.Integer, db.ForeignKey("areas.id", ondelete="RESTRICT"), nullable=False,
    )
    created_by_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    rejection_reason = db.Column(db.Text, nullable=True)

    version = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    initial_area = db.relationship("Area", foreign_keys=[initial_area_id])
    current_area = db.relationship("Area", foreign_keys=[current_area_id])
    created_by = db.relationship("User", foreign_keys=[created_by_id])
    derivations = db.relationship(
        "Derivation", back_populates="document", lazy="dynamic",
        order_by="Derivation.id",
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def pending_derivation(self):
        return self.derivations.filter_by(status="PENDING").first()

    def to_dict(self, include_derivations=False):
        d = {
            "id": self.id,
            "registration_number": self.registration_number,
            "office_number": self.office_number,
            "document_type": self.document_type,
            "origin": self.origin,
            "procedencia": self.procedencia,
            "content": self.content,
            "observations": self.observations,
            "priority": self.priority,
            "document_date": _iso(self.document_date),
            "status": self.status,
            "initial_area_id": self.initial_area_id,
            "current_area_id": self.current_area_id,
            "current_area": self.current_area.name if self.current_area else None,
            "created_by_id": self.created_by_id,
            "created_by": self.created_by.full_name if self.created_by else None,
            "rejection_reason": self.rejection_reason,
            "version": self.version,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "closed_at": _iso(self.closed_at),
            "deleted_at": _iso(self.deleted_at),
        }
        if include_derivations:
            d["derivations"] = [dv.to_dict() for dv in self.derivations.all()]
        return d

    def __repr__(self):
        return f"<Document {self.registration_number} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# Derivation
# ═════════════════════════════════════════════════════════════════════════════

class Derivation(db.Model):
    """
    Routing request of a document from its holding area to another area.

    Immutable once ACCEPTED or REJECTED (enforced by ``_guard_resolved``).
    """

    __tablename__ = "derivations"
    __table_args__ = (
        db.Index("idx_derivations_document", "document_id"),
        db.Index("idx_derivations_destination_status", "destination_area_id", "status"),
        db.Index(
            "uq_derivations_one_pending",
            "document_id",
            unique=True,
            sqlite_where=text("status = 'PENDING'"),
            postgresql_where=text("status = 'PENDING'"),
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(
        db.Integer, db.ForeignKey("documents.id", ondelete="CASCADE"), nullable=False,
    )
    source_area_id = db.Column(
        db.Integer, db.ForeignKey("areas.id", ondelete="RESTRICT"), nullable=False,
    )
    destination_area_id = db.Column(
        db.Integer, db.ForeignKey("areas.id", ondelete="RESTRICT"), nullable=False,
    )
    requested_by_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False,
    )
    resolved_by_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="RESTRICT"), nullable=True,
    )
    status = db.Column(db.String(20), nullable=False, default="PENDING")
    prior_status = db.Column(
        db.String(20), nullable=False,
        comment="Document status before this derivation; restored on rejection",
    )
    observations = db.Column(db.Text, default="")
    rejection_reason = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    document = db.relationship("Document", back_populates="derivations")
    source_area = db.relationship("Area", foreign_keys=[source_area_id])
    destination_area = db.relationship("Area", foreign_keys=[destination_area_id])
    requested_by = db.relationship("User", foreign_keys=[requested_by_id])
    resolved_by = db.relationship("User", foreign_keys=[resolved_by_id])

    def to_dict(self):
        return {
            "id": self.id,
            "document_id": self.document_id,
            "source_area_id": self.source_area_id,
            "source_area": self.source_area.name if self.source_area else None,
            "destination_area_id": self.destination_area_id,
            "destination_area": self.destination_area.name if self.destination_area else None,
            "requested_by_id": self.requested_by_id,
            "requested_by": self.requested_by.full_name if self.requested_by else None,
            "resolved_by_id": self.resolved_by_id,
            "status": self.status,
            "prior_status": self.prior_status,
            "observations": self.observations,
            "rejection_reason": self.rejection_reason,
            "version": self.version,
            "created_at": _iso(self.created_at),
            "resolved_at": _iso(self.resolved_at),
        }

    def __repr__(self):
        return f"<Derivation {self.id}: doc={self.document_id} {self.source_area_id}->{self.destination_area_id} [{self.status}]>"


@event.listens_for(Derivation, "before_update")
def _guard_resolved(mapper, connection, target):
    """Refuse to flush changes to a derivation that was already resolved."""
    history = inspect(target).attrs.status.history
    previous = history.deleted[0] if history.deleted else target.status
    if previous != "PENDING":
        raise InvalidTransition("derivation", "update", previous, reason="resolved derivations are immutable")
