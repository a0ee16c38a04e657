from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import wraps

import jwt
from flask import current_app, g, jsonify, request

from siteshelf.extensions import get_rest
from siteshelf.services.supabase import RestScope
from siteshelf.services.tiers import resolve_tier

logger = logging.getLogger(__name__)


@dataclass
class Identity:
    user_id: str
    email: str
    tier: str
    is_admin: bool
    token: str
    metadata: dict = field(default_factory=dict)

    def scope(self) -> RestScope:
        return get_rest().as_user(self.token)

    def relation_scope(self) -> RestScope:
        rest = get_rest()
        if rest.has_service_key:
            return rest.as_service()
        return rest.as_user(self.token)


def extract_token() -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    token = auth_header.removeprefix("Bearer ").strip()
    return token or None


def _decode_unverified(token: str) -> dict | None:
    try:
        return jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError:
        return None


def decode_jwt(token: str, secret: str | None = None) -> dict | None:
    """Return the token claims, verifying the signature when a secret is set."""
    if not secret:
        return _decode_unverified(token)
    try:
        return jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            options={"verify_aud": False},
        )
    except jwt.PyJWTError as exc:
        logger.info("Rejected bearer token: %s", exc)
        return None


def admin_emails() -> list[str]:
    return list(current_app.config.get("ADMIN_EMAILS") or [])


def resolve_identity(token: str) -> Identity | None:
    payload = decode_jwt(token, current_app.config.get("SUPABASE_JWT_SECRET"))
    if not payload or not payload.get("sub"):
        return None
    email = (payload.get("email") or "").lower()
    is_admin = bool(email) and email in admin_emails()
    metadata = payload.get("user_metadata") or {}
    return Identity(
        user_id=str(payload["sub"]),
        email=email,
        tier=resolve_tier(metadata, is_admin),
        is_admin=is_admin,
        token=token,
        metadata=metadata,
    )


def _verify_admin(identity: Identity):
    user = get_rest().get_user(identity.user_id)
    if not user or not user.get("email"):
        return jsonify({"success": False, "error": "User not found"}), 401
    emails = admin_emails()
    if not emails:
        return jsonify({"success": False, "error": "No admin emails configured"}), 403
    if user["email"].lower() not in emails:
        return jsonify({"success": False, "error": "Access denied"}), 403
    identity.email = user["email"].lower()
    identity.is_admin = True
    return None


def api_auth_required(admin=False):
    def decorator(func):
        @wraps(func)
        def wrapped(*args, **kwargs):
            token = extract_token()
            if not token:
                return jsonify({"success": False, "error": "Missing authorization"}), 401
            identity = resolve_identity(token)
            if not identity:
                return jsonify({"success": False, "error": "Invalid token"}), 401
            if admin:
                failure = _verify_admin(identity)
                if failure is not None:
                    return failure
            g.identity = identity
            return func(*args, **kwargs)

        return wrapped

    return decorator
