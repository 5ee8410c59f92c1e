"""
Area Service — organizational units.

Areas are deactivated, never deleted: documents and derivations keep
pointing at them.  An inactive area cannot receive new documents or
derivations.
"""

import logging

from sigedoc.core.exceptions import ConflictError, NotFoundError, PermissionDenied, ValidationError
from sigedoc.models import db
from sigedoc.models.area import AREA_TYPES, Area
from sigedoc.models.audit import write_audit
from sigedoc.services.permission_service import Capability
from sigedoc.utils.helpers import commit_or_raise, flush_or_raise

logger = logging.getLogger(__name__)


def _require_admin(identity, action):
    if not identity.can(Capability.ADMIN):
        raise PermissionDenied(action, required=["ADMIN"])


def _validate(data: dict, *, creating: bool) -> dict:
    errors = {}
    clean = {}
    if creating or "name" in data:
        name = str(data.get("name") or "").strip()
        if len(name) < 2:
            errors["name"] = "must be at least 2 characters"
        clean["name"] = name
    if creating or "code" in data:
        code = str(data.get("code") or "").strip().upper()
        if not code:
            errors["code"] = "is required"
        clean["code"] = code
    if creating or "area_type" in data:
        area_type = str(data.get("area_type") or "ESPECIALIZADA").strip().upper()
        if area_type not in AREA_TYPES:
            errors["area_type"] = f"must be one of {sorted(AREA_TYPES)}"
        clean["area_type"] = area_type
    if errors:
        raise ValidationError("Invalid area data", errors)
    return clean


def get_area(area_id: int) -> Area:
    area = db.session.get(Area, area_id)
    if area is None:
        raise NotFoundError("Area", area_id)
    return area


def get_active_area(area_id: int) -> Area:
    """Like ``get_area`` but refuses inactive areas."""
    area = get_area(area_id)
    if not area.is_active:
        raise ValidationError(f"Area {area.code} is inactive", {"area_id": "inactive"})
    return area


def list_areas(*, include_inactive=False, area_type=None):
    q = Area.query
    if not include_inactive:
        q = q.filter(Area.is_active.is_(True))
    if area_type:
        q = q.filter(Area.area_type == area_type)
    return q.order_by(Area.name).all()


def create_area(identity, data: dict) -> Area:
    _require_admin(identity, "area.create")
    clean = _validate(data, creating=True)
    if Area.query.filter_by(code=clean["code"]).first():
        raise ConflictError(f"Area code {clean['code']} already exists", {"code": "duplicate"})

    area = Area(**clean)
    db.session.add(area)
    flush_or_raise("area.create")
    write_audit(
        entity_type="area", entity_id=area.id, action="area.create",
        actor=identity.label, actor_user_id=identity.user_id, diff=clean,
    )
    commit_or_raise("area.create")
    logger.info("Area %s created by %s", area.code, identity.label)
    return area


def update_area(identity, area_id: int, data: dict) -> Area:
    _require_admin(identity, "area.update")
    area = get_area(area_id)
    clean = _validate(data, creating=False)
    if "code" in clean and clean["code"] != area.code and Area.query.filter_by(code=clean["code"]).first():
        raise ConflictError(f"Area code {clean['code']} already exists", {"code": "duplicate"})

    diff = {}
    for key, value in clean.items():
        if getattr(area, key) != value:
            diff[key] = {"old": getattr(area, key), "new": value}
            setattr(area, key, value)
    if diff:
        write_audit(
            entity_type="area", entity_id=area.id, action="area.update",
            actor=identity.label, actor_user_id=identity.user_id, diff=diff,
        )
        commit_or_raise("area.update")
    return area


def set_area_active(identity, area_id: int, active: bool) -> Area:
    _require_admin(identity, "area.activate" if active else "area.deactivate")
    area = get_area(area_id)
    if area.is_active == bool(active):
        return area
    area.is_active = bool(active)
    write_audit(
        entity_type="area", entity_id=area.id,
        action="area.activate" if active else "area.deactivate",
        actor=identity.label, actor_user_id=identity.user_id,
    )
    commit_or_raise("area.status")
    logger.info("Area %s %s by %s", area.code, "activated" if active else "deactivated", identity.label)
    return area
