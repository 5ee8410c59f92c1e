"""
User Service — login, CRUD, status changes and passwords.

Users log in with their CIP code (6 to 8 digits).  Users are never deleted:
deactivating or blocking one revokes every refresh session and invalidates
the cached permission bits, so the change takes effect on the next request.
"""

import logging
import re
from datetime import datetime, timezone

from email_validator import EmailNotValidError, validate_email

from sigedoc.core.exceptions import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from sigedoc.models import db
from sigedoc.models.audit import write_audit
from sigedoc.models.auth import USER_STATUSES, Role, User
from sigedoc.services import area_service, permission_service
from sigedoc.services.jwt_service import revoke_all_user_sessions
from sigedoc.utils.crypto import hash_password, verify_password
from sigedoc.utils.helpers import commit_or_raise, flush_or_raise

logger = logging.getLogger(__name__)

CIP_PATTERN = re.compile(r"^\d{6,8}$")
MIN_NAME_LENGTH = 2
MIN_PASSWORD_LENGTH = 6

_UPDATABLE_FIELDS = ("first_names", "last_names", "grade", "email", "role_id", "area_id", "extra_permissions")


# ═══════════════════════════════════════════════════════════════
# Validation
# ═══════════════════════════════════════════════════════════════
def _validate_fields(data: dict, *, creating: bool) -> dict:
    """Normalise and validate user fields; raises ValidationError listing every bad field."""
    errors = {}
    clean = {}

    if creating or "cip_code" in data:
        cip = str(data.get("cip_code") or "").strip()
        if not CIP_PATTERN.match(cip):
            errors["cip_code"] = "must be 6 to 8 digits"
        clean["cip_code"] = cip

    for name_field in ("first_names", "last_names"):
        if creating or name_field in data:
            value = str(data.get(name_field) or "").strip()
            if len(value) < MIN_NAME_LENGTH:
                errors[name_field] = f"must be at least {MIN_NAME_LENGTH} characters"
            clean[name_field] = value

    if creating or "grade" in data:
        grade = str(data.get("grade") or "").strip()
        if not grade:
            errors["grade"] = "is required"
        clean["grade"] = grade

    if creating:
        password = data.get("password") or ""
        if len(password) < MIN_PASSWORD_LENGTH:
            errors["password"] = f"must be at least {MIN_PASSWORD_LENGTH} characters"
        clean["password"] = password

    if data.get("email"):
        try:
            clean["email"] = validate_email(data["email"], check_deliverability=False).normalized
        except EmailNotValidError as e:
            errors["email"] = str(e)
    elif "email" in data:
        clean["email"] = None

    for fk in ("role_id", "area_id"):
        if creating or fk in data:
            try:
                clean[fk] = int(data.get(fk))
            except (TypeError, ValueError):
                errors[fk] = "must be an integer id"

    if "extra_permissions" in data:
        try:
            clean["extra_permissions"] = int(data.get("extra_permissions") or 0)
            if not 0 <= clean["extra_permissions"] <= permission_service.ALL_BITS:
                errors["extra_permissions"] = "outside the capability catalog"
        except (TypeError, ValueError):
            errors["extra_permissions"] = "must be an integer bit-set"

    if errors:
        raise ValidationError("Invalid user data", errors)

    if "role_id" in clean and db.session.get(Role, clean["role_id"]) is None:
        raise NotFoundError("Role", clean["role_id"])
    if "area_id" in clean:
        area_service.get_active_area(clean["area_id"])
    return clean


def _require_admin(identity, action):
    if not identity.can(permission_service.Capability.ADMIN):
        raise PermissionDenied(action, required=["ADMIN"])


# ═══════════════════════════════════════════════════════════════
# Queries
# ═══════════════════════════════════════════════════════════════
def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User", user_id)
    return user


def get_user_by_cip(cip_code: str) -> User | None:
    return User.query.filter_by(cip_code=str(cip_code).strip()).first()


def list_users(*, status=None, area_id=None, role_id=None, search=None, page=1, per_page=20):
    """Paginated user listing ordered by last name."""
    q = User.query
    if status:
        q = q.filter(User.status == status)
    if area_id:
        q = q.filter(User.area_id == area_id)
    if role_id:
        q = q.filter(User.role_id == role_id)
    if search:
        term = f"%{search.strip()}%"
        q = q.filter(
            User.cip_code.ilike(term) | User.first_names.ilike(term) | User.last_names.ilike(term)
        )
    return q.order_by(User.last_names, User.first_names).paginate(
        page=page, per_page=per_page, error_out=False,
    )


# ═══════════════════════════════════════════════════════════════
# CRUD
# ═══════════════════════════════════════════════════════════════
def create_user(identity, data: dict) -> User:
    _require_admin(identity, "user.create")
    clean = _validate_fields(data, creating=True)
    if get_user_by_cip(clean["cip_code"]) is not None:
        raise ConflictError(f"CIP code {clean['cip_code']} is already registered", {"cip_code": "duplicate"})

    password = clean.pop("password")
    user = User(password_hash=hash_password(password), status="active", **clean)
    db.session.add(user)
    flush_or_raise("user.create")
    write_audit(
        entity_type="user", entity_id=user.id, action="user.create",
        actor=identity.label, actor_user_id=identity.user_id,
        diff={"cip_code": user.cip_code, "role_id": user.role_id, "area_id": user.area_id},
    )
    commit_or_raise("user.create")
    logger.info("User %s created by %s", user.cip_code, identity.label)
    return user


def update_user(identity, user_id: int, data: dict) -> User:
    _require_admin(identity, "user.update")
    user = get_user(user_id)
    clean = _validate_fields({k: v for k, v in data.items() if k in _UPDATABLE_FIELDS}, creating=False)

    diff = {}
    for key, value in clean.items():
        old = getattr(user, key)
        if old != value:
            diff[key] = {"old": old, "new": value}
            setattr(user, key, value)

    if diff:
        write_audit(
            entity_type="user", entity_id=user.id, action="user.update",
            actor=identity.label, actor_user_id=identity.user_id, diff=diff,
        )
        commit_or_raise("user.update")
        permission_service.invalidate_cache(user.id)
    return user


def set_user_status(identity, user_id: int, status: str) -> User:
    """Activate, deactivate or block a user."""
    _require_admin(identity, "user.status")
    if status not in USER_STATUSES:
        raise ValidationError("Invalid status", {"status": f"must be one of {sorted(USER_STATUSES)}"})
    user = get_user(user_id)
    if user.id == identity.user_id and status != "active":
        raise ValidationError("You cannot deactivate your own account", {"status": "self"})

    previous = user.status
    if previous == status:
        return user
    user.status = status
    if status == "active":
        user.failed_logins = 0
    else:
        revoke_all_user_sessions(user.id, commit=False)
    write_audit(
        entity_type="user", entity_id=user.id, action="user.status",
        actor=identity.label, actor_user_id=identity.user_id,
        from_status=previous, to_status=status,
    )
    commit_or_raise("user.status")
    permission_service.invalidate_cache(user.id)
    logger.info("User %s status %s -> %s by %s", user.cip_code, previous, status, identity.label)
    return user


def reset_password(identity, user_id: int, new_password: str) -> User:
    """Administrator sets a new password for another user."""
    _require_admin(identity, "user.password")
    if len(new_password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationError("Invalid password", {"password": f"must be at least {MIN_PASSWORD_LENGTH} characters"})
    user = get_user(user_id)
    user.password_hash = hash_password(new_password)
    revoke_all_user_sessions(user.id, commit=False)
    write_audit(
        entity_type="user", entity_id=user.id, action="user.password",
        actor=identity.label, actor_user_id=identity.user_id, diff={"reset_by_admin": True},
    )
    commit_or_raise("user.password")
    return user


def change_own_password(identity, current_password: str, new_password: str) -> User:
    user = get_user(identity.user_id)
    if not verify_password(current_password or "", user.password_hash):
        raise AuthenticationError("Current password is incorrect")
    if len(new_password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationError("Invalid password", {"new_password": f"must be at least {MIN_PASSWORD_LENGTH} characters"})
    user.password_hash = hash_password(new_password)
    write_audit(
        entity_type="user", entity_id=user.id, action="user.password",
        actor=identity.label, actor_user_id=identity.user_id, diff={"reset_by_admin": False},
    )
    commit_or_raise("user.password")
    return user


# ═══════════════════════════════════════════════════════════════
# Login helpers
# ═══════════════════════════════════════════════════════════════
def authenticate_user(cip_code: str, password: str, ip_address: str | None = None) -> User:
    """Authenticate with CIP code + password. Returns User on success."""
    user = get_user_by_cip(cip_code or "")
    if user is None or not verify_password(password or "", user.password_hash):
        if user is not None:
            user.failed_logins = (user.failed_logins or 0) + 1
        write_audit(
            entity_type="security", entity_id=user.id if user else 0, action="security.login_failed",
            actor=str(cip_code or "")[:200], actor_user_id=user.id if user else None,
            diff={"ip": ip_address},
        )
        db.session.commit()
        logger.warning("Failed login for CIP %s from %s", cip_code, ip_address)
        raise AuthenticationError("Invalid CIP code or password")

    if user.status != "active":
        logger.warning("Login refused for %s user %s", user.status, user.cip_code)
        raise PermissionDenied("login", reason=f"account is {user.status}")

    user.last_login_at = datetime.now(timezone.utc)
    user.failed_logins = 0
    write_audit(
        entity_type="security", entity_id=user.id, action="security.login",
        actor=user.full_name, actor_user_id=user.id, diff={"ip": ip_address},
    )
    db.session.commit()
    return user
