from fastapi import Depends, Request, Response

from .config import get_settings
from .domain.ports import BlobStoreFactory
from .errors import AuthError, PermissionError
from .infrastructure.blob_store import (
    ADMIN_USERS_NAMESPACE,
    ROLES_CONFIG_NAMESPACE,
    SESSIONS_NAMESPACE,
    redis_blob_store_factory,
)
from .schemas.session import AdminUser, Session
from .services.admin_users import AdminUserRepository
from .services.cache import TTLCache
from .services.discord_oauth import DiscordOAuthClient
from .services.permission_evaluator import PermissionEvaluator
from .services.roles_config import RolesConfigRepository, RolesConfigService
from .services.session_store import SessionStore

# One cache per process, shared by the evaluator and the config writers
roles_config_cache = TTLCache()


def get_blob_store_factory() -> BlobStoreFactory:
    return redis_blob_store_factory


def get_roles_cache() -> TTLCache:
    return roles_config_cache


def get_session_store(
    factory: BlobStoreFactory = Depends(get_blob_store_factory),
) -> SessionStore:
    settings = get_settings()
    return SessionStore(
        factory(SESSIONS_NAMESPACE),
        lifetime_seconds=settings.session_lifetime_seconds,
        refresh_seconds=settings.session_refresh_seconds,
    )


def get_roles_repository(
    factory: BlobStoreFactory = Depends(get_blob_store_factory),
) -> RolesConfigRepository:
    return RolesConfigRepository(factory(ROLES_CONFIG_NAMESPACE))


def get_roles_config_service(
    repository: RolesConfigRepository = Depends(get_roles_repository),
    cache: TTLCache = Depends(get_roles_cache),
) -> RolesConfigService:
    return RolesConfigService(repository, cache)


def get_permission_evaluator(
    repository: RolesConfigRepository = Depends(get_roles_repository),
    cache: TTLCache = Depends(get_roles_cache),
) -> PermissionEvaluator:
    return PermissionEvaluator(
        repository, cache, ttl_seconds=get_settings().roles_cache_ttl_seconds
    )


def get_admin_user_repository(
    factory: BlobStoreFactory = Depends(get_blob_store_factory),
) -> AdminUserRepository:
    return AdminUserRepository(factory(ADMIN_USERS_NAMESPACE))


def get_discord_client() -> DiscordOAuthClient:
    return DiscordOAuthClient(get_settings())


async def get_current_session(
    request: Request,
    response: Response,
    sessions: SessionStore = Depends(get_session_store),
) -> Session | None:
    session = await sessions.get(request)
    if session is not None:
        cookie = sessions.refreshed_cookie(request, session)
        if cookie:
            response.headers.append("set-cookie", cookie)
    return session


async def get_current_user_optional(
    session: Session | None = Depends(get_current_session),
) -> AdminUser | None:
    return session.user if session else None


async def get_current_user(
    user: AdminUser | None = Depends(get_current_user_optional),
) -> AdminUser:
    if user is None:
        raise AuthError()
    return user


async def require_super_admin(
    user: AdminUser = Depends(get_current_user),
) -> AdminUser:
    if not user.is_super_admin:
        raise PermissionError("Forbidden - Super Admin access required")
    return user

