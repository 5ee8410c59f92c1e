"""
Permission Service — bit-flag capabilities with a small resolution cache.

Capabilities are kept as a named ``Capability`` flag set inside the
application.  The packed integer form (``Rol.Permisos`` in the legacy
schema) only appears at the persistence boundary (``roles.permissions``,
``users.extra_permissions``) and in the JWT ``perms`` claim.

Bit catalog (stable, shared with existing stored values):
    CREATE=1  EDIT=2  DELETE=4  VIEW=8  DERIVE=16  AUDIT=32  EXPORT=64  ADMIN=128

Evaluation is pure and total:
  - ``None`` bits are treated as 0 (no permissions)
  - a flag matches iff ``(bits & flag) == flag``
"""

import enum
import logging
import threading
import time
from collections.abc import Iterable
from typing import Optional

logger = logging.getLogger(__name__)

CACHE_TTL = 300  # 5 minutes

# Cache key: user_id → (cached_at, effective bits)
_bits_cache: dict[int, tuple[float, int]] = {}
_cache_lock = threading.Lock()


class Capability(enum.IntFlag):
    CREATE = 1
    EDIT = 2
    DELETE = 4
    VIEW = 8
    DERIVE = 16
    AUDIT = 32
    EXPORT = 64
    ADMIN = 128


ALL_CAPABILITIES = tuple(Capability)
ALL_BITS = sum(int(c) for c in ALL_CAPABILITIES)

CAPABILITY_LABELS = {
    Capability.CREATE: "Registrar documentos",
    Capability.EDIT: "Editar y revisar documentos",
    Capability.DELETE: "Eliminar documentos (papelera)",
    Capability.VIEW: "Ver documentos e historial",
    Capability.DERIVE: "Derivar documentos",
    Capability.AUDIT: "Consultar trazabilidad",
    Capability.EXPORT: "Exportar listados",
    Capability.ADMIN: "Administrar usuarios, roles y áreas",
}


# ═══════════════════════════════════════════════════════════════
# Pure bit checks
# ═══════════════════════════════════════════════════════════════
def _as_bits(value) -> int:
    if value is None:
        return 0
    return int(value)


def has_permission(bits, flag) -> bool:
    """True iff every bit of *flag* is set in *bits*."""
    flag = _as_bits(flag)
    return (_as_bits(bits) & flag) == flag


def has_any(bits, flags: Iterable) -> bool:
    """True iff at least one of *flags* matches by the ``has_permission`` rule."""
    return any(has_permission(bits, f) for f in flags)


def has_all(bits, flags: Iterable) -> bool:
    """True iff every one of *flags* matches."""
    return all(has_permission(bits, f) for f in flags)


def to_capabilities(bits) -> frozenset:
    """Unpack an integer bit-set into the named capabilities it grants.

    Bits outside the catalog are ignored.
    """
    value = _as_bits(bits)
    return frozenset(c for c in ALL_CAPABILITIES if value & c == c)


def to_bits(capabilities: Iterable) -> int:
    """Pack capabilities (members or names) into the persisted integer form."""
    bits = 0
    for cap in capabilities:
        if isinstance(cap, str):
            try:
                cap = Capability[cap.strip().upper()]
            except KeyError:
                raise ValueError(f"Unknown capability: {cap}") from None
        bits |= int(cap)
    return bits


def capability_names(bits) -> list[str]:
    return sorted(c.name for c in to_capabilities(bits))


def catalog() -> list[dict]:
    """Capability catalog for the role-editor UI."""
    return [
        {"name": c.name, "bit": int(c), "label": CAPABILITY_LABELS[c]}
        for c in ALL_CAPABILITIES
    ]


def effective_bits(user) -> int:
    """Role bits OR-ed with the user's own extra bits.

    A user whose status is not ``active`` resolves to 0.  Roles carry no
    activation flag; a user without a role keeps only its extra bits.
    """
    if user is None or getattr(user, "status", "active") != "active":
        return 0
    role = getattr(user, "role", None)
    role_bits = _as_bits(role.permissions) if role is not None else 0
    return role_bits | _as_bits(getattr(user, "extra_permissions", 0))


# ═══════════════════════════════════════════════════════════════
# DB-backed resolution (cached)
# ═══════════════════════════════════════════════════════════════
def _get_cached(user_id: int) -> Optional[int]:
    with _cache_lock:
        entry = _bits_cache.get(user_id)
        if entry is None:
            return None
        cached_at, bits = entry
        if time.time() - cached_at > CACHE_TTL:
            del _bits_cache[user_id]
            return None
        return bits


def _set_cached(user_id: int, bits: int) -> None:
    with _cache_lock:
        _bits_cache[user_id] = (time.time(), bits)


def invalidate_cache(user_id: int) -> None:
    with _cache_lock:
        _bits_cache.pop(user_id, None)


def invalidate_all_cache() -> None:
    with _cache_lock:
        _bits_cache.clear()


def get_user_permission_bits(user_id: int) -> int:
    """Resolve the effective bits for *user_id*, hitting the DB on cache miss."""
    cached = _get_cached(user_id)
    if cached is not None:
        return cached

    from sigedoc.models import db
    from sigedoc.models.auth import User

    user = db.session.get(User, user_id)
    bits = effective_bits(user)
    _set_cached(user_id, bits)
    return bits


def user_has_permission(user_id: int, capability: Capability) -> bool:
    return has_permission(get_user_permission_bits(user_id), capability)
