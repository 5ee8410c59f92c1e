"""
Auth Models — roles, users and refresh-token sessions.

Roles carry the packed capability bit-set (see
``sigedoc.services.permission_service.Capability``).  Users reference one
role and one home area; they are never physically deleted, only moved to
``inactive`` or ``blocked``.
"""

from datetime import datetime, timezone

from sigedoc.models import db

USER_STATUSES = {"active", "inactive", "blocked"}


# ═══════════════════════════════════════════════════════════════
# 1. ROLES
# ═══════════════════════════════════════════════════════════════
class Role(db.Model):
    __tablename__ = "roles"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    description = db.Column(db.Text)
    level = db.Column(db.Integer, default=0)  # Access level (higher = more privileged)
    permissions = db.Column(db.Integer, nullable=False, default=0)  # Capability bit-set
    is_system = db.Column(db.Boolean, default=False)  # True = cannot be deleted
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    # Relationships
    users = db.relationship("User", back_populates="role", lazy="dynamic")

    def to_dict(self, include_user_count=False):
        from sigedoc.services.permission_service import capability_names

        d = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "level": self.level,
            "permissions": self.permissions,
            "capabilities": capability_names(self.permissions),
            "is_system": self.is_system,
        }
        if include_user_count:
            d["user_count"] = self.users.count()
        return d


# ═══════════════════════════════════════════════════════════════
# 2. USERS
# ═══════════════════════════════════════════════════════════════
class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    cip_code = db.Column(db.String(8), unique=True, nullable=False)  # Login identifier
    first_names = db.Column(db.String(120), nullable=False)
    last_names = db.Column(db.String(120), nullable=False)
    grade = db.Column(db.String(80), nullable=False)
    email = db.Column(db.String(200))
    password_hash = db.Column(db.String(256), nullable=False)
    role_id = db.Column(
        db.Integer, db.ForeignKey("roles.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    area_id = db.Column(
        db.Integer, db.ForeignKey("areas.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    extra_permissions = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(20), default="active")  # active, inactive, blocked
    failed_logins = db.Column(db.Integer, default=0)
    last_login_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    role = db.relationship("Role", back_populates="users")
    area = db.relationship("Area")
    sessions = db.relationship("Session", back_populates="user", lazy="dynamic", cascade="all, delete-orphan")

    @property
    def full_name(self) -> str:
        return f"{self.first_names} {self.last_names}".strip()

    @property
    def permission_bits(self) -> int:
        from sigedoc.services.permission_service import effective_bits

        return effective_bits(self)

    def to_dict(self, include_permissions=False):
        d = {
            "id": self.id,
            "cip_code": self.cip_code,
            "first_names": self.first_names,
            "last_names": self.last_names,
            "full_name": self.full_name,
            "grade": self.grade,
            "email": self.email,
            "role_id": self.role_id,
            "role": self.role.name if self.role else None,
            "area_id": self.area_id,
            "area": self.area.name if self.area else None,
            "status": self.status,
            "last_login_at": self.last_login_at.isoformat() if self.last_login_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_permissions:
            from sigedoc.services.permission_service import capability_names

            d["extra_permissions"] = self.extra_permissions
            d["permission_bits"] = self.permission_bits
            d["capabilities"] = capability_names(self.permission_bits)
        return d


# ═══════════════════════════════════════════════════════════════
# 3. SESSIONS (refresh tokens)
# ═══════════════════════════════════════════════════════════════
class Session(db.Model):
    __tablename__ = "sessions"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    token_hash = db.Column(db.String(64), unique=True, nullable=False)
    ip_address = db.Column(db.String(45))
    user_agent = db.Column(db.String(500))
    expires_at = db.Column(db.DateTime, nullable=False)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    user = db.relationship("User", back_populates="sessions")

    @property
    def is_expired(self) -> bool:
        expires = self.expires_at
        if expires is None:
            return True
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        return datetime.now(timezone.utc) >= expires

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
