"""
SIGEDOC
Audit & Traceability blueprint.

Endpoints:
    GET  /api/v1/audit               — list / filter audit logs
    GET  /api/v1/audit/<int:log_id>  — single audit entry
"""

from flask import Blueprint, jsonify, request

from sigedoc.core.exceptions import NotFoundError
from sigedoc.middleware.permission_required import require_any_permission
from sigedoc.models import db
from sigedoc.models.audit import AuditLog
from sigedoc.services.permission_service import Capability
from sigedoc.utils.helpers import paginated, pagination_args, parse_date

audit_bp = Blueprint("audit", __name__, url_prefix="/api/v1")


# ── List / filter ────────────────────────────────────────────────────────────

@audit_bp.route("/audit", methods=["GET"])
@require_any_permission(Capability.AUDIT, Capability.ADMIN)
def list_audit_logs():
    """
    Return paginated audit logs with optional filters.

    Query params:
        entity_type    — document, derivation, area, role, user, security
        entity_id      — filter by entity PK
        document_id    — every entry of one document's trazabilidad
        action         — filter by action string (prefix match)
        actor_user_id  — filter by acting user
        area_id        — source or destination area of a transition
        date_from, date_to
        page, per_page (default 20, max 200)
    """
    q = AuditLog.query

    # ── Filters ──────────────────────────────────────────────────────────
    entity_type = request.args.get("entity_type")
    if entity_type:
        q = q.filter(AuditLog.entity_type == entity_type)

    entity_id = request.args.get("entity_id")
    if entity_id:
        q = q.filter(AuditLog.entity_id == entity_id)

    document_id = request.args.get("document_id", type=int)
    if document_id is not None:
        q = q.filter(AuditLog.document_id == document_id)

    action = request.args.get("action")
    if action:
        q = q.filter(AuditLog.action.startswith(action))

    actor_user_id = request.args.get("actor_user_id", type=int)
    if actor_user_id is not None:
        q = q.filter(AuditLog.actor_user_id == actor_user_id)

    area_id = request.args.get("area_id", type=int)
    if area_id is not None:
        q = q.filter((AuditLog.source_area_id == area_id) | (AuditLog.destination_area_id == area_id))

    date_from = parse_date(request.args.get("date_from"))
    if date_from:
        q = q.filter(db.func.date(AuditLog.timestamp) >= date_from.isoformat())

    date_to = parse_date(request.args.get("date_to"))
    if date_to:
        q = q.filter(db.func.date(AuditLog.timestamp) <= date_to.isoformat())

    # ── Ordering ─────────────────────────────────────────────────────────
    q = q.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())

    page, per_page = pagination_args()
    return jsonify(paginated(q.paginate(page=page, per_page=per_page, error_out=False), "audit_logs"))


# ── Single entry ─────────────────────────────────────────────────────────────

@audit_bp.route("/audit/<int:log_id>", methods=["GET"])
@require_any_permission(Capability.AUDIT, Capability.ADMIN)
def get_audit_log(log_id):
    log = db.session.get(AuditLog, log_id)
    if not log:
        raise NotFoundError("AuditLog", log_id)
    return jsonify(log.to_dict())
