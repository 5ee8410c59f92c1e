"""
Document Derivation Workflow — the state machine over a document's life.

Every entry point takes the caller's ``Identity`` explicitly and, for
mutations, a validated request struct from ``sigedoc.core.payloads``.

Guarantees per transition:
    - preconditions (existence, capability, area, state) are checked before
      anything is written; a failed check raises a typed error and leaves
      the database untouched
    - the status change, the derivation row and the audit entries are one
      unit of work: they commit together or roll back together
    - the document row is the serialization point (``version_id_col`` plus
      ``SELECT ... FOR UPDATE`` on PostgreSQL, plus the partial unique index
      on pending derivations); the loser of a race gets ``ConflictError``

Notifications for ``derive_document`` and ``accept_derivation`` are sent
only after the commit succeeded, and their failure is only logged.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import or_

from sigedoc.core.exceptions import (
    ConflictError,
    InvalidTransition,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from sigedoc.models import db
from sigedoc.models.area import Area
from sigedoc.models.audit import AuditLog, write_audit
from sigedoc.models.document import DOCUMENT_TRANSITIONS, Derivation, Document
from sigedoc.services.notification import dispatch_derivation_event
from sigedoc.services.permission_service import Capability
from sigedoc.utils.helpers import commit_or_raise, flush_or_raise

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════════
# Internal helpers
# ═════════════════════════════════════════════════════════════════════════════

def _utcnow():
    return datetime.now(timezone.utc)


def _require(identity, capability: Capability, action: str):
    if not identity.can(capability):
        logger.warning("%s denied to %s: missing %s", action, identity.label, capability.name)
        raise PermissionDenied(action, required=[capability.name])


def _require_home_area(identity, area_id: int, action: str):
    if identity.home_area_id != area_id:
        logger.warning(
            "%s denied to %s: home area %s is not area %s",
            action, identity.label, identity.home_area_id, area_id,
        )
        raise PermissionDenied(action, reason="caller's home area does not hold this document")


def _supports_row_locks() -> bool:
    return db.session.get_bind().dialect.name == "postgresql"


def _load_document(document_id: int, *, for_update=False) -> Document:
    q = Document.query.filter(Document.id == document_id, Document.deleted_at.is_(None))
    if for_update and _supports_row_locks():
        q = q.with_for_update()
    doc = q.first()
    if doc is None:
        raise NotFoundError("Document", document_id)
    return doc


def _load_derivation(derivation_id: int) -> Derivation:
    derivation = db.session.get(Derivation, derivation_id)
    if derivation is None:
        raise NotFoundError("Derivation", derivation_id)
    return derivation


def _reload_pending_derivation(derivation_id: int, action: str) -> Derivation:
    """Re-read a derivation after its document is locked and insist it is still PENDING."""
    q = Derivation.query.filter(Derivation.id == derivation_id).populate_existing()
    if _supports_row_locks():
        q = q.with_for_update()
    derivation = q.one()
    if derivation.status != "PENDING":
        logger.warning("Derivation %s was resolved concurrently (%s)", derivation_id, derivation.status)
        raise InvalidTransition("derivation", action, derivation.status)
    return derivation


def _pending_derivation_for(document_id: int) -> Derivation | None:
    return Derivation.query.filter_by(document_id=document_id, status="PENDING").first()


def _check_transition(doc: Document, action: str):
    allowed = DOCUMENT_TRANSITIONS[action]["from"]
    if doc.status not in allowed:
        raise InvalidTransition(
            "document", action, doc.status,
            reason=f"allowed from {', '.join(allowed)}",
        )


def _check_version(doc: Document, expected_version: int | None, action: str):
    if expected_version is not None and expected_version != doc.version:
        raise ConflictError(
            f"Document {doc.id} changed since it was read; reload and retry",
            {"action": action, "expected_version": expected_version, "current_version": doc.version},
        )


def _audit_document(identity, doc, action, from_status, *, diff=None, **areas):
    write_audit(
        entity_type="document",
        entity_id=doc.id,
        document_id=doc.id,
        action=action,
        actor=identity.label,
        actor_user_id=identity.user_id,
        from_status=from_status,
        to_status=doc.status,
        diff=diff,
        **areas,
    )


def _audit_derivation(identity, derivation, action, from_status, *, diff=None):
    write_audit(
        entity_type="derivation",
        entity_id=derivation.id,
        document_id=derivation.document_id,
        action=action,
        actor=identity.label,
        actor_user_id=identity.user_id,
        from_status=from_status,
        to_status=derivation.status,
        source_area_id=derivation.source_area_id,
        destination_area_id=derivation.destination_area_id,
        diff=diff,
    )


def _derivation_event(kind: str, doc: Document, derivation: Derivation) -> dict:
    return {
        "type": "derivation",
        "event": kind,
        "derivation_id": derivation.id,
        "document_id": doc.id,
        "registration_number": doc.registration_number,
        "source_area_id": derivation.source_area_id,
        "destination_area_id": derivation.destination_area_id,
        "observations": derivation.observations,
    }


# ═════════════════════════════════════════════════════════════════════════════
# Transitions
# ═════════════════════════════════════════════════════════════════════════════

def receive_document(identity, request) -> Document:
    """Register a document in RECEIVED at the requested (or caller's) area."""
    _require(identity, Capability.CREATE, "document.receive")

    area_id = request.initial_area_id or identity.home_area_id
    if area_id is None:
        raise ValidationError("An initial area is required", {"initial_area_id": "is required"})
    area = db.session.get(Area, area_id)
    if area is None:
        raise NotFoundError("Area", area_id)
    if not area.is_active:
        raise ValidationError(f"Area {area.code} is inactive", {"initial_area_id": "inactive"})

    if Document.query.filter_by(registration_number=request.registration_number).first():
        raise ConflictError(
            f"Registration number {request.registration_number} already exists",
            {"registration_number": "duplicate"},
        )

    doc = Document(
        registration_number=request.registration_number,
        office_number=request.office_number,
        document_type=request.document_type,
        origin=request.origin,
        procedencia=request.procedencia,
        content=request.content,
        observations=request.observations,
        priority=request.priority,
        document_date=request.document_date,
        status="RECEIVED",
        initial_area_id=area.id,
        current_area_id=area.id,
        created_by_id=identity.user_id,
    )
    db.session.add(doc)
    flush_or_raise("document.receive")
    _audit_document(
        identity, doc, "document.receive", None,
        destination_area_id=area.id,
        diff={"registration_number": doc.registration_number},
    )
    commit_or_raise("document.receive")
    logger.info("Document %s received at area %s by %s", doc.registration_number, area.code, identity.label)
    return doc


def start_review(identity, document_id: int) -> Document:
    """RECEIVED → IN_REVIEW at the holding area."""
    doc = _load_document(document_id, for_update=True)
    _require(identity, Capability.EDIT, "document.start_review")
    _require_home_area(identity, doc.current_area_id, "document.start_review")
    _check_transition(doc, "start_review")

    prior = doc.status
    doc.status = "IN_REVIEW"
    _audit_document(identity, doc, "document.start_review", prior)
    commit_or_raise("document.start_review")
    logger.info("Document %s review started by %s", doc.registration_number, identity.label)
    return doc


def derive_document(identity, document_id: int, request) -> Derivation:
    """RECEIVED | IN_REVIEW → DERIVED, opening a PENDING derivation from the holding area."""
    doc = _load_document(document_id, for_update=True)
    # Terminal documents refuse derivation whatever the caller may do
    if doc.is_terminal:
        raise InvalidTransition("document", "derive", doc.status, reason=f"document is {doc.status}")
    _require(identity, Capability.DERIVE, "document.derive")
    _check_version(doc, request.expected_version, "document.derive")
    if request.destination_area_id == doc.current_area_id:
        raise ValidationError(
            "Destination area already holds the document",
            {"destination_area_id": "same as current area"},
        )
    destination = db.session.get(Area, request.destination_area_id)
    if destination is None:
        raise NotFoundError("Area", request.destination_area_id)
    if not destination.is_active:
        raise ValidationError(f"Area {destination.code} is inactive", {"destination_area_id": "inactive"})

    pending = _pending_derivation_for(doc.id)
    if pending is not None:
        logger.warning("Derive refused for %s: derivation %s still pending", doc.registration_number, pending.id)
        raise ConflictError(
            f"Document {doc.id} already has a pending derivation",
            {"pending_derivation_id": pending.id},
        )
    _check_transition(doc, "derive")

    prior = doc.status
    derivation = Derivation(
        document_id=doc.id,
        source_area_id=doc.current_area_id,
        destination_area_id=destination.id,
        requested_by_id=identity.user_id,
        status="PENDING",
        prior_status=prior,
        observations=request.observations,
    )
    db.session.add(derivation)
    doc.status = "DERIVED"
    flush_or_raise("document.derive")

    _audit_document(
        identity, doc, "document.derive", prior,
        source_area_id=derivation.source_area_id,
        destination_area_id=derivation.destination_area_id,
        diff={"derivation_id": derivation.id},
    )
    _audit_derivation(identity, derivation, "derivation.create", None, diff={"observations": request.observations})
    commit_or_raise("document.derive")
    logger.info(
        "Document %s derived %s -> %s by %s",
        doc.registration_number, derivation.source_area_id, derivation.destination_area_id, identity.label,
    )

    dispatch_derivation_event(_derivation_event("created", doc, derivation))
    return derivation


def accept_derivation(identity, derivation_id: int) -> Derivation:
    """PENDING → ACCEPTED; the document moves to the destination area, back IN_REVIEW."""
    derivation = _load_derivation(derivation_id)
    _require_home_area(identity, derivation.destination_area_id, "derivation.accept")
    if derivation.status != "PENDING":
        raise InvalidTransition("derivation", "accept", derivation.status)
    doc = _load_document(derivation.document_id, for_update=True)
    derivation = _reload_pending_derivation(derivation_id, "accept")
    _check_transition(doc, "accept_derivation")

    prior_doc = doc.status
    prior_area = doc.current_area_id
    derivation.status = "ACCEPTED"
    derivation.resolved_by_id = identity.user_id
    derivation.resolved_at = _utcnow()
    doc.current_area_id = derivation.destination_area_id
    doc.status = "IN_REVIEW"

    _audit_derivation(identity, derivation, "derivation.accept", "PENDING")
    _audit_document(
        identity, doc, "document.accept_derivation", prior_doc,
        source_area_id=prior_area,
        destination_area_id=doc.current_area_id,
        diff={"derivation_id": derivation.id},
    )
    commit_or_raise("derivation.accept")
    logger.info("Derivation %s accepted by %s", derivation.id, identity.label)

    dispatch_derivation_event(_derivation_event("accepted", doc, derivation))
    return derivation


def reject_derivation(identity, derivation_id: int, request) -> Derivation:
    """PENDING → REJECTED; the document stays at the source area with its prior status restored."""
    derivation = _load_derivation(derivation_id)
    _require_home_area(identity, derivation.destination_area_id, "derivation.reject")
    if derivation.status != "PENDING":
        raise InvalidTransition("derivation", "reject", derivation.status)
    doc = _load_document(derivation.document_id, for_update=True)
    derivation = _reload_pending_derivation(derivation_id, "reject")
    _check_transition(doc, "reject_derivation")

    prior_doc = doc.status
    derivation.status = "REJECTED"
    derivation.rejection_reason = request.reason
    derivation.resolved_by_id = identity.user_id
    derivation.resolved_at = _utcnow()
    doc.status = derivation.prior_status

    _audit_derivation(identity, derivation, "derivation.reject", "PENDING", diff={"reason": request.reason})
    _audit_document(
        identity, doc, "document.reject_derivation", prior_doc,
        source_area_id=derivation.source_area_id,
        destination_area_id=derivation.destination_area_id,
        diff={"derivation_id": derivation.id, "reason": request.reason},
    )
    commit_or_raise("derivation.reject")
    logger.info("Derivation %s rejected by %s", derivation.id, identity.label)
    return derivation


def close_document(identity, document_id: int) -> Document:
    """IN_REVIEW → CLOSED at the holding area."""
    doc = _load_document(document_id, for_update=True)
    _require(identity, Capability.EDIT, "document.close")
    _require_home_area(identity, doc.current_area_id, "document.close")
    _check_transition(doc, "close")

    prior = doc.status
    doc.status = "CLOSED"
    doc.closed_at = _utcnow()
    _audit_document(identity, doc, "document.close", prior)
    commit_or_raise("document.close")
    logger.info("Document %s closed by %s", doc.registration_number, identity.label)
    return doc


def reject_document(identity, document_id: int, request) -> Document:
    """Any non-terminal status → REJECTED; a pending derivation is rejected with it."""
    doc = _load_document(document_id, for_update=True)
    _require(identity, Capability.EDIT, "document.reject")
    _check_transition(doc, "reject")

    pending = _pending_derivation_for(doc.id)
    if pending is not None:
        pending.status = "REJECTED"
        pending.rejection_reason = request.reason
        pending.resolved_by_id = identity.user_id
        pending.resolved_at = _utcnow()
        _audit_derivation(identity, pending, "derivation.reject", "PENDING", diff={"reason": request.reason})

    prior = doc.status
    doc.status = "REJECTED"
    doc.rejection_reason = request.reason
    doc.closed_at = _utcnow()
    _audit_document(identity, doc, "document.reject", prior, diff={"reason": request.reason})
    commit_or_raise("document.reject")
    logger.info("Document %s rejected by %s", doc.registration_number, identity.label)
    return doc


# ═════════════════════════════════════════════════════════════════════════════
# Read operations
# ═════════════════════════════════════════════════════════════════════════════

def get_document(identity, document_id: int) -> Document:
    _require(identity, Capability.VIEW, "document.view")
    return _load_document(document_id)


def document_query(*, status=None, current_area_id=None, origin=None, priority=None,
                   date_from=None, date_to=None, search=None, include_deleted=False):
    """Filtered document query shared by listings, inbox views and exports."""
    q = Document.query if include_deleted else Document.query_active()
    if status:
        statuses = status if isinstance(status, (list, tuple, set)) else [status]
        q = q.filter(Document.status.in_(list(statuses)))
    if current_area_id:
        q = q.filter(Document.current_area_id == current_area_id)
    if origin:
        q = q.filter(Document.origin == origin)
    if priority:
        q = q.filter(Document.priority == priority)
    if date_from:
        q = q.filter(Document.document_date >= date_from)
    if date_to:
        q = q.filter(Document.document_date <= date_to)
    if search:
        term = f"%{search.strip()}%"
        q = q.filter(or_(
            Document.registration_number.ilike(term),
            Document.office_number.ilike(term),
            Document.procedencia.ilike(term),
            Document.content.ilike(term),
        ))
    return q.order_by(Document.created_at.desc(), Document.id.desc())


def list_documents(identity, *, page=1, per_page=20, **filters):
    _require(identity, Capability.VIEW, "document.list")
    return document_query(**filters).paginate(page=page, per_page=per_page, error_out=False)


def get_derivations(identity, document_id: int) -> list[Derivation]:
    _require(identity, Capability.VIEW, "document.view")
    doc = _load_document(document_id)
    return doc.derivations.all()


def list_pending_derivations(identity, area_id: int | None = None) -> list[Derivation]:
    """PENDING derivations addressed to *area_id* (default: the caller's area)."""
    area_id = area_id or identity.home_area_id
    if area_id != identity.home_area_id:
        _require(identity, Capability.ADMIN, "derivation.inbox")
    return (
        Derivation.query.join(Document, Document.id == Derivation.document_id)
        .filter(
            Derivation.destination_area_id == area_id,
            Derivation.status == "PENDING",
            Document.deleted_at.is_(None),
        )
        .order_by(Derivation.created_at, Derivation.id)
        .all()
    )


def get_history(identity, document_id: int) -> list[AuditLog]:
    """Trazabilidad of a document, oldest first."""
    _require(identity, Capability.VIEW, "document.history")
    doc = _load_document(document_id)
    return (
        AuditLog.query.filter(AuditLog.document_id == doc.id)
        .order_by(AuditLog.timestamp, AuditLog.id)
        .all()
    )
