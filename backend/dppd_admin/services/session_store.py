"""Server-side admin sessions.

Records live in the ``admin-sessions`` namespace keyed by session id. The
browser only holds the signed token in an HttpOnly cookie. Expiry is
enforced at read time; the store TTL is housekeeping only.
"""
from __future__ import annotations

import logging
import math
import time
from typing import Callable

from fastapi import Request
from pydantic import ValidationError as PydanticValidationError

from ..domain.ports import BlobStore
from ..errors import ConfigurationError
from ..schemas.session import AdminUser, BindingInfo, Session, SessionGrant
from ..security import session_token
from ..security.policies import resolve_or_default, resolve_or_deny
from ..utils.request import binding_info, hash_ip

logger = logging.getLogger(__name__)

SESSION_COOKIE_NAME = "dppd_session"
SESSION_LIFETIME_SECONDS = 24 * 60 * 60
SESSION_REFRESH_SECONDS = 4 * 60 * 60


def build_cookie(value: str, max_age: int) -> str:
    return (
        f"{SESSION_COOKIE_NAME}={value}; HttpOnly; Secure; SameSite=Strict; "
        f"Path=/; Max-Age={max_age}"
    )


def clearing_cookie() -> str:
    return build_cookie("", 0)


class SessionStore:
    def __init__(
        self,
        store: BlobStore,
        *,
        lifetime_seconds: int = SESSION_LIFETIME_SECONDS,
        refresh_seconds: int = SESSION_REFRESH_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._lifetime = lifetime_seconds
        self._refresh = refresh_seconds
        self._clock = clock

    async def create(
        self, user: AdminUser, binding: BindingInfo | None = None
    ) -> SessionGrant:
        session_id = session_token.generate_session_id()
        # Sign first so a missing secret fails before anything is persisted
        token = session_token.encode(session_id)
        now = self._clock()
        record = Session(
            session_id=session_id,
            user=user,
            created_at=now,
            expires_at=now + self._lifetime,
            ip_hash=hash_ip(binding.client_ip) if binding and binding.client_ip else None,
            user_agent=binding.user_agent if binding else None,
            last_activity_at=now,
            refreshed_at=now,
        )
        await self._store.set_json(
            session_id, record.to_document(), ttl_seconds=self._lifetime
        )
        logger.info("Created session for user=%s role=%s", user.id, user.role.value)
        return SessionGrant(token=token, cookie=build_cookie(token, self._lifetime))

    async def get(self, request: Request) -> Session | None:
        token = request.cookies.get(SESSION_COOKIE_NAME)
        if not token:
            return None
        return await self.get_by_token(token, binding_info(request))

    async def get_by_token(
        self, token: str, binding: BindingInfo | None = None
    ) -> Session | None:
        session_id = session_token.decode(token)
        if session_id is None:
            return None

        record = await resolve_or_deny(lambda: self._load(session_id), what="session")
        if record is None:
            return None

        now = self._clock()
        if now > record.expires_at:
            await self._discard(session_id)
            return None

        if binding is not None:
            self._log_binding_mismatch(record, binding)

        last_refresh = record.refreshed_at if record.refreshed_at is not None else record.created_at
        if now - last_refresh > self._refresh:
            record.expires_at = now + self._lifetime
            record.refreshed_at = now
            record.last_activity_at = now
            record.refreshed = True
            await resolve_or_default(
                lambda: self._persist(record),
                lambda: None,
                what="session refresh",
            )
        return record

    def refreshed_cookie(self, request: Request, session: Session) -> str | None:
        """Cookie re-sent after a sliding refresh so the browser keeps it until the new expiry."""
        token = request.cookies.get(SESSION_COOKIE_NAME)
        if not session.refreshed or not token:
            return None
        return build_cookie(token, max(1, math.ceil(session.expires_at - self._clock())))

    async def validate(self, request: Request) -> AdminUser | None:
        session = await self.get(request)
        return session.user if session else None

    async def invalidate(self, request: Request) -> str:
        """Delete the session behind the request cookie. Always returns a clearing cookie."""
        token = request.cookies.get(SESSION_COOKIE_NAME)
        if token:
            try:
                session_id = session_token.decode(token)
            except ConfigurationError as exc:
                logger.error("Cannot verify session token during logout: %s", exc.message)
                session_id = None
            if session_id is not None:
                await self._discard(session_id)
        return clearing_cookie()

    async def _load(self, session_id: str) -> Session | None:
        raw = await self._store.get_json(session_id)
        if raw is None:
            return None
        try:
            return Session.model_validate(raw)
        except PydanticValidationError as exc:
            logger.warning("Discarding malformed session record id=%s: %s", session_id[:8], exc)
            return None

    async def _persist(self, record: Session) -> None:
        remaining = max(1, math.ceil(record.expires_at - self._clock()))
        await self._store.set_json(
            record.session_id, record.to_document(), ttl_seconds=remaining
        )

    async def _discard(self, session_id: str) -> None:
        await resolve_or_default(
            lambda: self._store.delete(session_id),
            lambda: False,
            what="session delete",
        )

    def _log_binding_mismatch(self, record: Session, binding: BindingInfo) -> None:
        # Logged only: legitimate users change networks mid-session
        if record.ip_hash and binding.client_ip and hash_ip(binding.client_ip) != record.ip_hash:
            logger.warning(
                "Session client address changed session=%s user=%s",
                record.session_id[:8],
                record.user.id,
            )
        if record.user_agent and binding.user_agent and binding.user_agent != record.user_agent:
            logger.warning(
                "Session user agent changed session=%s user=%s",
                record.session_id[:8],
                record.user.id,
            )
