import logging
from datetime import datetime, timezone

from ...application.auth_rate_limit import (
    RateLimitExceededError,
    check_login_rate_limit,
    record_login_failure,
    reset_login_limit,
)
from ...errors import AuthError, RateLimitedError
from ...schemas.session import AdminUser, BindingInfo, SessionGrant
from ...security.passwords import hash_password, needs_rehash, verify_password
from ...security.policies import resolve_or_default
from ...services.admin_users import AdminUserRepository
from ...services.session_store import SessionStore

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid username or password"


async def _authenticate_user(
    users: AdminUserRepository, username: str, password: str
) -> AdminUser:
    stored = await users.find_by_username(username)
    if stored is None or not verify_password(password, stored.password):
        raise AuthError(INVALID_CREDENTIALS)

    if needs_rehash(stored.password):
        upgraded = stored.model_copy(
            update={
                "password": hash_password(password),
                "updated_at": datetime.now(timezone.utc).isoformat(),
            }
        )
        # Login still succeeds when the upgrade cannot be written
        await resolve_or_default(
            lambda: users.replace(upgraded), lambda: None, what="password rehash"
        )
        logger.info("Upgraded stored password hash for user=%s", stored.id)
    return stored.to_admin_user()


async def login_admin(
    users: AdminUserRepository,
    sessions: SessionStore,
    username: str,
    password: str,
    *,
    binding: BindingInfo | None = None,
) -> tuple[AdminUser, SessionGrant]:
    """Verify static credentials and open a session.

    Raises:
        RateLimitedError: If the (address, username) pair is locked out
        AuthError: If the credentials do not match
        StorageError: If the user list or the new session cannot be read or written
    """
    client_ip = binding.client_ip if binding else None
    try:
        key = check_login_rate_limit(username, client_ip)
    except RateLimitExceededError as exc:
        logger.warning("Login locked out for ip=%s", client_ip or "unknown")
        raise RateLimitedError(details={"retryAfter": exc.retry_after}) from exc

    try:
        user = await _authenticate_user(users, username, password)
    except AuthError:
        record_login_failure(key)
        logger.info("Failed login attempt ip=%s", client_ip or "unknown")
        raise

    reset_login_limit(key)
    grant = await sessions.create(user, binding)
    logger.info("Admin login user=%s role=%s", user.id, user.role.value)
    return user, grant
