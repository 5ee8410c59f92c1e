"""
SIGEDOC
Documents blueprint — intake, derivation workflow, papelera and export.

Endpoints:
    GET    /api/v1/documents                       — filtered, paginated list
    POST   /api/v1/documents                       — receive (register) a document
    GET    /api/v1/documents/trash                 — papelera
    GET    /api/v1/documents/export                — xlsx of the filtered list
    GET    /api/v1/documents/<id>                  — detail with derivations
    PUT    /api/v1/documents/<id>                  — metadata edit
    DELETE /api/v1/documents/<id>                  — move to papelera
    POST   /api/v1/documents/<id>/restore          — restore from papelera
    POST   /api/v1/documents/<id>/review           — RECEIVED → IN_REVIEW
    POST   /api/v1/documents/<id>/derive           — open a derivation
    POST   /api/v1/documents/<id>/close            — IN_REVIEW → CLOSED
    POST   /api/v1/documents/<id>/reject           — → REJECTED
    GET    /api/v1/documents/<id>/derivations      — derivation chain
    GET    /api/v1/documents/<id>/history          — trazabilidad
    POST   /api/v1/derivations/<id>/accept         — destination accepts
    POST   /api/v1/derivations/<id>/reject         — destination rejects
"""

import io
from datetime import datetime, timezone

from flask import Blueprint, jsonify, request, send_file

from sigedoc.core.payloads import (
    DeriveRequest,
    DocumentUpdateRequest,
    ReceiveDocumentRequest,
    RejectRequest,
)
from sigedoc.middleware.permission_required import (
    current_identity,
    require_auth,
    require_permission,
)
from sigedoc.services import derivation_workflow as workflow
from sigedoc.services import document_service
from sigedoc.services.permission_service import Capability
from sigedoc.utils.helpers import paginated, pagination_args, parse_date

documents_bp = Blueprint("documents", __name__, url_prefix="/api/v1")

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _payload():
    return request.get_json(silent=True)


def document_filters() -> dict:
    """Listing filters from the query string (shared by the list and the export)."""
    status = request.args.get("status")
    return {
        "status": [s.strip().upper() for s in status.split(",") if s.strip()] if status else None,
        "current_area_id": request.args.get("area_id", type=int),
        "origin": (request.args.get("origin") or "").upper() or None,
        "priority": (request.args.get("priority") or "").upper() or None,
        "date_from": parse_date(request.args.get("date_from")),
        "date_to": parse_date(request.args.get("date_to")),
        "search": request.args.get("q") or request.args.get("search"),
    }


# ── List / create ────────────────────────────────────────────────────────────

@documents_bp.route("/documents", methods=["GET"])
@require_permission(Capability.VIEW)
def list_documents():
    """
    Query params:
        status     — comma-separated statuses
        area_id    — current holding area
        origin, priority
        date_from, date_to — document date range
        q          — registration / office number / procedencia / content
        page, per_page
    """
    page, per_page = pagination_args()
    result = workflow.list_documents(current_identity(), page=page, per_page=per_page, **document_filters())
    return jsonify(paginated(result, "documents"))


@documents_bp.route("/documents", methods=["POST"])
@require_permission(Capability.CREATE)
def receive_document():
    req = ReceiveDocumentRequest.from_payload(_payload())
    doc = workflow.receive_document(current_identity(), req)
    return jsonify(doc.to_dict()), 201


@documents_bp.route("/documents/trash", methods=["GET"])
@require_permission(Capability.DELETE)
def list_trash():
    page, per_page = pagination_args()
    result = document_service.list_trash(current_identity(), page=page, per_page=per_page)
    return jsonify(paginated(result, "documents"))


@documents_bp.route("/documents/export", methods=["GET"])
@require_permission(Capability.EXPORT)
def export_documents():
    content = document_service.export_documents_xlsx(current_identity(), **document_filters())
    filename = f"documentos_{datetime.now(timezone.utc).strftime('%Y%m%d_%H%M')}.xlsx"
    return send_file(
        io.BytesIO(content),
        mimetype=XLSX_MIMETYPE,
        as_attachment=True,
        download_name=filename,
    )


# ── Single document ──────────────────────────────────────────────────────────

@documents_bp.route("/documents/<int:document_id>", methods=["GET"])
@require_permission(Capability.VIEW)
def get_document(document_id):
    doc = workflow.get_document(current_identity(), document_id)
    return jsonify(doc.to_dict(include_derivations=True))


@documents_bp.route("/documents/<int:document_id>", methods=["PUT"])
@require_permission(Capability.EDIT)
def update_document(document_id):
    req = DocumentUpdateRequest.from_payload(_payload())
    doc = document_service.update_document(current_identity(), document_id, req)
    return jsonify(doc.to_dict())


@documents_bp.route("/documents/<int:document_id>", methods=["DELETE"])
@require_permission(Capability.DELETE)
def delete_document(document_id):
    document_service.delete_document(current_identity(), document_id)
    return jsonify({"message": "Document moved to trash", "id": document_id})


@documents_bp.route("/documents/<int:document_id>/restore", methods=["POST"])
@require_permission(Capability.DELETE)
def restore_document(document_id):
    doc = document_service.restore_document(current_identity(), document_id)
    return jsonify(doc.to_dict())


# ── Workflow transitions ─────────────────────────────────────────────────────

@documents_bp.route("/documents/<int:document_id>/review", methods=["POST"])
@require_permission(Capability.EDIT)
def start_review(document_id):
    doc = workflow.start_review(current_identity(), document_id)
    return jsonify(doc.to_dict())


@documents_bp.route("/documents/<int:document_id>/derive", methods=["POST"])
@require_auth
def derive_document(document_id):
    req = DeriveRequest.from_payload(_payload())
    derivation = workflow.derive_document(current_identity(), document_id, req)
    return jsonify({
        "derivation": derivation.to_dict(),
        "document": derivation.document.to_dict(),
    }), 201


@documents_bp.route("/documents/<int:document_id>/close", methods=["POST"])
@require_permission(Capability.EDIT)
def close_document(document_id):
    doc = workflow.close_document(current_identity(), document_id)
    return jsonify(doc.to_dict())


@documents_bp.route("/documents/<int:document_id>/reject", methods=["POST"])
@require_permission(Capability.EDIT)
def reject_document(document_id):
    req = RejectRequest.from_payload(_payload())
    doc = workflow.reject_document(current_identity(), document_id, req)
    return jsonify(doc.to_dict())


@documents_bp.route("/documents/<int:document_id>/derivations", methods=["GET"])
@require_permission(Capability.VIEW)
def list_document_derivations(document_id):
    derivations = workflow.get_derivations(current_identity(), document_id)
    return jsonify({"derivations": [d.to_dict() for d in derivations]})


@documents_bp.route("/documents/<int:document_id>/history", methods=["GET"])
@require_permission(Capability.VIEW)
def document_history(document_id):
    entries = workflow.get_history(current_identity(), document_id)
    return jsonify({"document_id": document_id, "history": [e.to_dict() for e in entries]})


# ── Derivation resolution ────────────────────────────────────────────────────

@documents_bp.route("/derivations/<int:derivation_id>/accept", methods=["POST"])
@require_auth
def accept_derivation(derivation_id):
    derivation = workflow.accept_derivation(current_identity(), derivation_id)
    return jsonify({
        "derivation": derivation.to_dict(),
        "document": derivation.document.to_dict(),
    })


@documents_bp.route("/derivations/<int:derivation_id>/reject", methods=["POST"])
@require_auth
def reject_derivation(derivation_id):
    req = RejectRequest.from_payload(_payload())
    derivation = workflow.reject_derivation(current_identity(), derivation_id, req)
    return jsonify({
        "derivation": derivation.to_dict(),
        "document": derivation.document.to_dict(),
    })
