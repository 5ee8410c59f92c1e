"""
Auth Blueprint — JWT authentication endpoints.

  POST /api/v1/auth/login         — CIP code + password → JWT pair
  POST /api/v1/auth/refresh       — Refresh token → new pair (rotation)
  POST /api/v1/auth/logout        — Revoke refresh token
  GET  /api/v1/auth/me            — Current user, home area and capabilities
  GET  /api/v1/auth/verify-token  — Cheap access-token check
  PUT  /api/v1/auth/password      — Change own password
"""

import jwt as pyjwt
from flask import Blueprint, g, jsonify, request

from sigedoc import limiter
from sigedoc.core.exceptions import AuthenticationError, ValidationError
from sigedoc.middleware.permission_required import current_identity, require_auth
from sigedoc.middleware.rate_limiter import LOGIN_LIMIT
from sigedoc.models import db
from sigedoc.models.auth import User
from sigedoc.services.jwt_service import (
    create_session,
    decode_refresh_token,
    generate_token_pair,
    get_active_session_by_token,
    hash_token,
    revoke_all_user_sessions,
    revoke_session,
    revoke_session_by_token,
    rotate_session,
)
from sigedoc.services.permission_service import capability_names
from sigedoc.services.user_service import authenticate_user, change_own_password, get_user

auth_bp = Blueprint("auth", __name__, url_prefix="/api/v1/auth")


def _token_response(tokens: dict, user: User | None = None):
    body = {
        "access_token": tokens["access_token"],
        "refresh_token": tokens["refresh_token"],
        "token_type": tokens["token_type"],
        "expires_in": tokens["expires_in"],
    }
    if user is not None:
        body["user"] = user.to_dict(include_permissions=True)
    return body


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/login
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/login", methods=["POST"])
@limiter.limit(LOGIN_LIMIT)
def login():
    """
    Authenticate with CIP code + password, return JWT pair.

    Body: { "cip_code": "...", "password": "..." }
    """
    data = request.get_json(silent=True) or {}
    cip_code = str(data.get("cip_code", "")).strip()
    password = data.get("password", "")

    if not cip_code or not password:
        raise ValidationError(
            "CIP code and password are required",
            {k: "required" for k, v in (("cip_code", cip_code), ("password", password)) if not v},
        )

    user = authenticate_user(cip_code, password, ip_address=request.remote_addr)

    tokens = generate_token_pair(user)
    create_session(
        user.id, tokens["token_hash"],
        request.remote_addr, request.headers.get("User-Agent", ""),
        tokens["expires_at"],
    )
    return jsonify(_token_response(tokens, user)), 200


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/refresh
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/refresh", methods=["POST"])
@limiter.limit(LOGIN_LIMIT)
def refresh():
    """
    Exchange a refresh token for a new pair (token rotation).

    Body: { "refresh_token": "..." }
    """
    data = request.get_json(silent=True) or {}
    refresh_token = data.get("refresh_token", "")
    if not refresh_token:
        raise ValidationError("Refresh token is required", {"refresh_token": "required"})

    try:
        payload = decode_refresh_token(refresh_token)
    except pyjwt.InvalidTokenError:
        raise AuthenticationError("Invalid or expired refresh token") from None

    session = get_active_session_by_token(payload["sub"], hash_token(refresh_token))
    if not session:
        raise AuthenticationError("Session not found or revoked")

    if session.is_expired:
        revoke_session(session)
        raise AuthenticationError("Session expired")

    user = db.session.get(User, payload["sub"])
    if not user or user.status != "active":
        revoke_session(session)
        raise AuthenticationError("User inactive or not found")

    tokens = generate_token_pair(user)
    rotate_session(
        session,
        user.id,
        tokens["token_hash"],
        tokens["expires_at"],
        request.remote_addr,
        request.headers.get("User-Agent", ""),
    )
    return jsonify(_token_response(tokens)), 200


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/logout
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/logout", methods=["POST"])
def logout():
    """
    Revoke the given refresh token, or every session of the caller when
    only the Authorization header is sent.
    """
    data = request.get_json(silent=True) or {}
    refresh_token = data.get("refresh_token", "")

    if refresh_token:
        revoke_session_by_token(hash_token(refresh_token))
    elif g.get("jwt_user_id"):
        revoke_all_user_sessions(g.jwt_user_id)
    else:
        raise AuthenticationError(g.get("auth_error") or "Authentication required")

    return jsonify({"message": "Logged out successfully"}), 200


# ═══════════════════════════════════════════════════════════════
# GET /api/v1/auth/me
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/me", methods=["GET"])
@require_auth
def me():
    identity = current_identity()
    user = get_user(identity.user_id)
    return jsonify({
        "user": user.to_dict(include_permissions=True),
        "area": user.area.to_dict() if user.area else None,
        "permissions": identity.permission_bits,
        "capabilities": capability_names(identity.permission_bits),
    }), 200


@auth_bp.route("/verify-token", methods=["GET"])
@require_auth
def verify_token():
    identity = current_identity()
    return jsonify({"valid": True, "identity": identity.to_dict()}), 200


# ═══════════════════════════════════════════════════════════════
# PUT /api/v1/auth/password
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/password", methods=["PUT"])
@require_auth
def change_password():
    """
    Body: { "current_password": "...", "new_password": "..." }
    """
    data = request.get_json(silent=True) or {}
    current_pw = data.get("current_password", "")
    new_pw = data.get("new_password", "")
    if not current_pw or not new_pw:
        raise ValidationError("Both current and new password are required")

    change_own_password(current_identity(), current_pw, new_pw)
    return jsonify({"message": "Password changed successfully"}), 200
