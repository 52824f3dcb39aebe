"""Signed session tokens.

A token is ``<session_id>.<signature>`` where the session id is 32 random
bytes in hex and the signature is HMAC-SHA256 over the id. The token only
references a server-side record; it carries no user data.
"""
from __future__ import annotations

import hashlib
import hmac
import logging
import os
import secrets

from ..errors import SessionSecretMissingError

logger = logging.getLogger(__name__)

SESSION_ID_BYTES = 32
MIN_SECRET_LENGTH = 32
TOKEN_SEPARATOR = "."

DEVELOPMENT_CONTEXTS = frozenset({"dev", "dev-server", "deploy-preview", "branch-deploy"})


def is_development_context() -> bool:
    """True for local and preview deployments, where a throwaway secret is acceptable."""
    if os.getenv("NODE_ENV", "").strip().lower() == "development":
        return True
    if os.getenv("APP_ENV", "").strip().lower() == "development":
        return True
    return os.getenv("CONTEXT", "").strip().lower() in DEVELOPMENT_CONTEXTS


def is_session_secret_configured() -> bool:
    if os.getenv("SESSION_SECRET"):
        return True
    return is_development_context()


def resolve_session_secret() -> str:
    """Read the signing secret from the environment.

    Raises:
        SessionSecretMissingError: If SESSION_SECRET is unset outside a
            development or preview context
    """
    secret = os.getenv("SESSION_SECRET")
    if not secret:
        if is_development_context():
            logger.warning(
                "SESSION_SECRET not set. Using development-only fallback. DO NOT use in production!"
            )
            build_id = os.getenv("BUILD_ID") or "local"
            return f"dev-session-secret-{build_id}-not-for-production"
        raise SessionSecretMissingError()

    if len(secret) < MIN_SECRET_LENGTH:
        logger.warning(
            "SESSION_SECRET is less than %d characters. Consider using a longer secret.",
            MIN_SECRET_LENGTH,
        )
    return secret


def generate_session_id() -> str:
    return secrets.token_hex(SESSION_ID_BYTES)


def sign(session_id: str) -> str:
    secret = resolve_session_secret()
    return hmac.new(
        secret.encode("utf-8"), session_id.encode("utf-8"), hashlib.sha256
    ).hexdigest()


def verify(session_id: str, signature: str) -> bool:
    expected = sign(session_id)
    return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))


def encode(session_id: str) -> str:
    return f"{session_id}{TOKEN_SEPARATOR}{sign(session_id)}"


def decode(token: str) -> str | None:
    """Return the session id carried by ``token`` if its signature is valid."""
    parts = token.split(TOKEN_SEPARATOR)
    if len(parts) != 2:
        return None
    session_id, signature = parts
    if not session_id or not signature:
        return None
    return session_id if verify(session_id, signature) else None
