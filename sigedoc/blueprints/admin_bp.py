"""
Administration blueprints — areas, roles and users.

  /api/v1/areas                     GET, POST
  /api/v1/areas/<id>                GET, PUT
  /api/v1/areas/<id>/status         PATCH   { "is_active": bool }
  /api/v1/roles                     GET, POST
  /api/v1/roles/<id>                GET, PUT, DELETE
  /api/v1/permissions/catalog       GET
  /api/v1/users                     GET, POST
  /api/v1/users/<id>                GET, PUT
  /api/v1/users/<id>/status         PATCH   { "status": "active|inactive|blocked" }
  /api/v1/users/<id>/password       PUT     { "password": "..." }

Reads of areas are open to any authenticated user (forms need the area
list for derivations); every write requires ADMIN.
"""

from flask import Blueprint, jsonify, request

from sigedoc.core.exceptions import ValidationError
from sigedoc.middleware.permission_required import current_identity, require_auth, require_permission
from sigedoc.services import area_service, role_service, user_service
from sigedoc.services.permission_service import Capability, catalog
from sigedoc.utils.helpers import paginated, pagination_args

areas_bp = Blueprint("areas", __name__, url_prefix="/api/v1")
roles_bp = Blueprint("roles", __name__, url_prefix="/api/v1")
users_bp = Blueprint("users", __name__, url_prefix="/api/v1")


def _payload() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


# ── Areas ────────────────────────────────────────────────────────────────────

@areas_bp.route("/areas", methods=["GET"])
@require_auth
def list_areas():
    include_inactive = request.args.get("include_inactive", "false").lower() in ("1", "true", "yes")
    areas = area_service.list_areas(
        include_inactive=include_inactive,
        area_type=(request.args.get("area_type") or "").upper() or None,
    )
    return jsonify({"areas": [a.to_dict() for a in areas], "total": len(areas)})


@areas_bp.route("/areas", methods=["POST"])
@require_permission(Capability.ADMIN)
def create_area():
    area = area_service.create_area(current_identity(), _payload())
    return jsonify(area.to_dict()), 201


@areas_bp.route("/areas/<int:area_id>", methods=["GET"])
@require_auth
def get_area(area_id):
    return jsonify(area_service.get_area(area_id).to_dict())


@areas_bp.route("/areas/<int:area_id>", methods=["PUT"])
@require_permission(Capability.ADMIN)
def update_area(area_id):
    area = area_service.update_area(current_identity(), area_id, _payload())
    return jsonify(area.to_dict())


@areas_bp.route("/areas/<int:area_id>/status", methods=["PATCH"])
@require_permission(Capability.ADMIN)
def set_area_status(area_id):
    data = _payload()
    if not isinstance(data.get("is_active"), bool):
        raise ValidationError("Invalid area status", {"is_active": "must be a boolean"})
    area = area_service.set_area_active(current_identity(), area_id, data["is_active"])
    return jsonify(area.to_dict())


# ── Roles ────────────────────────────────────────────────────────────────────

@roles_bp.route("/roles", methods=["GET"])
@require_permission(Capability.ADMIN)
def list_roles():
    roles = role_service.list_roles()
    return jsonify({"roles": [r.to_dict(include_user_count=True) for r in roles]})


@roles_bp.route("/roles", methods=["POST"])
@require_permission(Capability.ADMIN)
def create_role():
    role = role_service.create_role(current_identity(), _payload())
    return jsonify(role.to_dict()), 201


@roles_bp.route("/roles/<int:role_id>", methods=["GET"])
@require_permission(Capability.ADMIN)
def get_role(role_id):
    return jsonify(role_service.get_role(role_id).to_dict(include_user_count=True))


@roles_bp.route("/roles/<int:role_id>", methods=["PUT"])
@require_permission(Capability.ADMIN)
def update_role(role_id):
    role = role_service.update_role(current_identity(), role_id, _payload())
    return jsonify(role.to_dict())


@roles_bp.route("/roles/<int:role_id>", methods=["DELETE"])
@require_permission(Capability.ADMIN)
def delete_role(role_id):
    role_service.delete_role(current_identity(), role_id)
    return jsonify({"message": "Role deleted", "id": role_id})


@roles_bp.route("/permissions/catalog", methods=["GET"])
@require_auth
def permission_catalog():
    """Capability names, bit values and labels for role editors."""
    return jsonify({"capabilities": catalog()})


# ── Users ────────────────────────────────────────────────────────────────────

@users_bp.route("/users", methods=["GET"])
@require_permission(Capability.ADMIN)
def list_users():
    page, per_page = pagination_args()
    result = user_service.list_users(
        status=request.args.get("status"),
        area_id=request.args.get("area_id", type=int),
        role_id=request.args.get("role_id", type=int),
        search=request.args.get("q"),
        page=page,
        per_page=per_page,
    )
    return jsonify(paginated(result, "users"))


@users_bp.route("/users", methods=["POST"])
@require_permission(Capability.ADMIN)
def create_user():
    user = user_service.create_user(current_identity(), _payload())
    return jsonify(user.to_dict(include_permissions=True)), 201


@users_bp.route("/users/<int:user_id>", methods=["GET"])
@require_permission(Capability.ADMIN)
def get_user(user_id):
    return jsonify(user_service.get_user(user_id).to_dict(include_permissions=True))


@users_bp.route("/users/<int:user_id>", methods=["PUT"])
@require_permission(Capability.ADMIN)
def update_user(user_id):
    user = user_service.update_user(current_identity(), user_id, _payload())
    return jsonify(user.to_dict(include_permissions=True))


@users_bp.route("/users/<int:user_id>/status", methods=["PATCH"])
@require_permission(Capability.ADMIN)
def set_user_status(user_id):
    status = str(_payload().get("status") or "").strip().lower()
    user = user_service.set_user_status(current_identity(), user_id, status)
    return jsonify(user.to_dict())


@users_bp.route("/users/<int:user_id>/password", methods=["PUT"])
@require_permission(Capability.ADMIN)
def reset_password(user_id):
    user_service.reset_password(current_identity(), user_id, _payload().get("password"))
    return jsonify({"message": "Password reset", "id": user_id})
