"""
Permission Decorators — capability checks for route protection.

Provides decorators that check the JWT-authenticated identity before the
view runs.  Failures raise the typed errors from ``sigedoc.core.exceptions``;
the application-level handler renders them (and records denials in the
audit log).

Usage:
    @bp.route("/documents", methods=["POST"])
    @require_permission(Capability.CREATE)
    def receive():
        ...

    @bp.route("/audit", methods=["GET"])
    @require_any_permission(Capability.AUDIT, Capability.ADMIN)
    def list_audit_logs():
        ...

    @bp.route("/auth/me", methods=["GET"])
    @require_auth
    def me():
        ...
"""

import functools
import logging

from flask import g

from sigedoc.core.exceptions import AuthenticationError, PermissionDenied
from sigedoc.services.permission_service import has_all, has_any

logger = logging.getLogger(__name__)


def current_identity():
    """The request's Identity; raises AuthenticationError when there is none."""
    identity = getattr(g, "identity", None)
    if identity is None:
        raise AuthenticationError(getattr(g, "auth_error", None) or "Authentication required")
    return identity


def require_auth(f):
    """Decorator: any authenticated, active user."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        current_identity()
        return f(*args, **kwargs)
    return decorated


def require_permission(*capabilities):
    """
    Decorator: require the caller to hold ALL of the listed capabilities.

    Args:
        capabilities: ``Capability`` members
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            identity = current_identity()
            if not has_all(identity.permission_bits, capabilities):
                names = [c.name for c in capabilities]
                logger.warning(
                    "User %d denied: missing %s on %s",
                    identity.user_id, names, f.__name__,
                )
                raise PermissionDenied(f.__name__, required=names)
            return f(*args, **kwargs)
        return decorated
    return decorator


def require_any_permission(*capabilities):
    """
    Decorator: require the caller to hold at least ONE of the listed capabilities.
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            identity = current_identity()
            if not has_any(identity.permission_bits, capabilities):
                names = [c.name for c in capabilities]
                logger.warning(
                    "User %d denied: missing any of %s on %s",
                    identity.user_id, names, f.__name__,
                )
                raise PermissionDenied(f.__name__, required=names)
            return f(*args, **kwargs)
        return decorated
    return decorator
