"""
JWT Auth Middleware — parses the Bearer token and sets ``g.identity``.

The token only proves who the caller is.  Home area and permission bits
are re-read from the database on every request (through the permission
cache, which role/user edits invalidate), so deactivating a user or
editing a role takes effect without waiting for the token to expire.

Sets:
    g.identity     — ``Identity`` or None
    g.jwt_user_id  — int or None
    g.auth_error   — reason string when a token was sent but rejected
"""

import logging

import jwt as pyjwt
from flask import g, request

from sigedoc.core.identity import Identity
from sigedoc.models import db
from sigedoc.models.auth import User
from sigedoc.services.jwt_service import decode_access_token
from sigedoc.services.permission_service import get_user_permission_bits

logger = logging.getLogger(__name__)

# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/auth/login",
    "/api/v1/auth/refresh",
    "/api/v1/health",
)


def identity_for_user(user: User) -> Identity:
    return Identity(
        user_id=user.id,
        home_area_id=user.area_id,
        permission_bits=get_user_permission_bits(user.id),
        role_id=user.role_id,
        display_name=user.full_name,
    )


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.identity = None
        g.jwt_user_id = None
        g.auth_error = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return  # decorators decide whether anonymous access is fine

        token = auth_header[7:]
        try:
            payload = decode_access_token(token)
        except pyjwt.ExpiredSignatureError:
            g.auth_error = "Token expired"
            return
        except pyjwt.InvalidTokenError:
            g.auth_error = "Invalid token"
            return

        user = db.session.get(User, payload["sub"])
        if user is None or user.status != "active":
            g.auth_error = "User inactive or not found"
            logger.info("Token for inactive/missing user %s refused", payload["sub"])
            return

        g.jwt_user_id = user.id
        g.identity = identity_for_user(user)
