"""
Mesa de Partes blueprint — per-area trays over the document workflow.

Each tray is scoped to the caller's home area unless an administrator
passes ``area_id``.

    GET /api/v1/mesa-partes/documents/received     — RECEIVED
    GET /api/v1/mesa-partes/documents/in-process   — IN_REVIEW, DERIVED
    GET /api/v1/mesa-partes/documents/completed    — CLOSED, REJECTED
    GET /api/v1/mesa-partes/derivations/pending    — derivations awaiting this area
"""

from flask import Blueprint, jsonify, request

from sigedoc.core.exceptions import PermissionDenied
from sigedoc.middleware.permission_required import current_identity, require_permission
from sigedoc.services import derivation_workflow as workflow
from sigedoc.services.permission_service import Capability
from sigedoc.utils.helpers import paginated, pagination_args

mesa_partes_bp = Blueprint("mesa_partes", __name__, url_prefix="/api/v1/mesa-partes")

TRAYS = {
    "received": ["RECEIVED"],
    "in-process": ["IN_REVIEW", "DERIVED"],
    "completed": ["CLOSED", "REJECTED"],
}


def _tray_area(identity) -> int:
    area_id = request.args.get("area_id", type=int) or identity.home_area_id
    if area_id != identity.home_area_id and not identity.can(Capability.ADMIN):
        raise PermissionDenied("mesa_partes.tray", required=["ADMIN"],
                               reason="tray belongs to another area")
    return area_id


def _tray_documents(tray):
    identity = current_identity()
    page, per_page = pagination_args()
    result = workflow.list_documents(
        identity,
        page=page,
        per_page=per_page,
        status=TRAYS[tray],
        current_area_id=_tray_area(identity),
        search=request.args.get("q"),
    )
    return jsonify(paginated(result, "documents"))


@mesa_partes_bp.route("/documents/received", methods=["GET"])
@require_permission(Capability.VIEW)
def received_documents():
    return _tray_documents("received")


@mesa_partes_bp.route("/documents/in-process", methods=["GET"])
@require_permission(Capability.VIEW)
def in_process_documents():
    return _tray_documents("in-process")


@mesa_partes_bp.route("/documents/completed", methods=["GET"])
@require_permission(Capability.VIEW)
def completed_documents():
    return _tray_documents("completed")


@mesa_partes_bp.route("/derivations/pending", methods=["GET"])
@require_permission(Capability.VIEW)
def pending_derivations():
    identity = current_identity()
    derivations = workflow.list_pending_derivations(identity, request.args.get("area_id", type=int))
    return jsonify({
        "derivations": [
            {**d.to_dict(), "document": d.document.to_dict()} for d in derivations
        ],
        "total": len(derivations),
    })

