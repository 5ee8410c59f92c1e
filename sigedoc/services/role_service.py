"""
Role Service — role catalog with capability bit-sets.

Permissions may be given either as the packed integer or as a list of
capability names.  System roles cannot be deleted, and neither can a role
that still has users.  Any change to a role's bits invalidates the
permission cache for everyone.
"""

import logging

from sigedoc.core.exceptions import ConflictError, NotFoundError, PermissionDenied, ValidationError
from sigedoc.models import db
from sigedoc.models.audit import write_audit
from sigedoc.models.auth import Role
from sigedoc.services import permission_service
from sigedoc.services.permission_service import ALL_BITS, Capability, to_bits
from sigedoc.utils.helpers import commit_or_raise, flush_or_raise

logger = logging.getLogger(__name__)


def _require_admin(identity, action):
    if not identity.can(Capability.ADMIN):
        raise PermissionDenied(action, required=["ADMIN"])


def _parse_permissions(data: dict):
    """Return the packed bits from ``permissions`` (int) or ``capabilities`` (names)."""
    if "capabilities" in data:
        try:
            return to_bits(data.get("capabilities") or [])
        except ValueError as e:
            raise ValidationError("Invalid capabilities", {"capabilities": str(e)}) from None
    try:
        bits = int(data.get("permissions") or 0)
    except (TypeError, ValueError):
        raise ValidationError("Invalid permissions", {"permissions": "must be an integer bit-set"}) from None
    if not 0 <= bits <= ALL_BITS:
        raise ValidationError("Invalid permissions", {"permissions": "outside the capability catalog"})
    return bits


def get_role(role_id: int) -> Role:
    role = db.session.get(Role, role_id)
    if role is None:
        raise NotFoundError("Role", role_id)
    return role


def list_roles():
    return Role.query.order_by(Role.level.desc(), Role.name).all()


def create_role(identity, data: dict) -> Role:
    _require_admin(identity, "role.create")
    name = str(data.get("name") or "").strip()
    if len(name) < 2:
        raise ValidationError("Invalid role data", {"name": "must be at least 2 characters"})
    if Role.query.filter_by(name=name).first():
        raise ConflictError(f"Role '{name}' already exists", {"name": "duplicate"})

    role = Role(
        name=name,
        description=data.get("description") or "",
        level=int(data.get("level") or 0),
        permissions=_parse_permissions(data),
        is_system=False,
    )
    db.session.add(role)
    flush_or_raise("role.create")
    write_audit(
        entity_type="role", entity_id=role.id, action="role.create",
        actor=identity.label, actor_user_id=identity.user_id,
        diff={"name": role.name, "permissions": role.permissions},
    )
    commit_or_raise("role.create")
    logger.info("Role %s created by %s", role.name, identity.label)
    return role


def update_role(identity, role_id: int, data: dict) -> Role:
    _require_admin(identity, "role.update")
    role = get_role(role_id)
    diff = {}

    if "name" in data:
        name = str(data.get("name") or "").strip()
        if len(name) < 2:
            raise ValidationError("Invalid role data", {"name": "must be at least 2 characters"})
        if name != role.name:
            if Role.query.filter_by(name=name).first():
                raise ConflictError(f"Role '{name}' already exists", {"name": "duplicate"})
            diff["name"] = {"old": role.name, "new": name}
            role.name = name
    if "description" in data and data["description"] != role.description:
        diff["description"] = {"old": role.description, "new": data["description"]}
        role.description = data["description"]
    if "level" in data:
        level = int(data.get("level") or 0)
        if level != role.level:
            diff["level"] = {"old": role.level, "new": level}
            role.level = level
    if "permissions" in data or "capabilities" in data:
        bits = _parse_permissions(data)
        if bits != role.permissions:
            diff["permissions"] = {"old": role.permissions, "new": bits}
            role.permissions = bits

    if diff:
        write_audit(
            entity_type="role", entity_id=role.id, action="role.update",
            actor=identity.label, actor_user_id=identity.user_id, diff=diff,
        )
        commit_or_raise("role.update")
        if "permissions" in diff:
            permission_service.invalidate_all_cache()
    return role


def delete_role(identity, role_id: int) -> None:
    _require_admin(identity, "role.delete")
    role = get_role(role_id)
    if role.is_system:
        raise ValidationError("System roles cannot be deleted", {"role_id": "system"})
    user_count = role.users.count()
    if user_count:
        raise ConflictError(
            f"Role '{role.name}' is assigned to {user_count} user(s)",
            {"user_count": user_count},
        )
    write_audit(
        entity_type="role", entity_id=role.id, action="role.delete",
        actor=identity.label, actor_user_id=identity.user_id, diff={"name": role.name},
    )
    db.session.delete(role)
    commit_or_raise("role.delete")
    logger.info("Role %s deleted by %s", role.name, identity.label)
