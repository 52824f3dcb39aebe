import logging
import secrets

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import RedirectResponse

from ..config import get_settings
from ..dependencies import (
    get_admin_user_repository,
    get_current_session,
    get_discord_client,
    get_roles_config_service,
    get_session_store,
)
from ..domain.errors import StorageError
from ..errors import AuthError, ConfigurationError, ServiceUnavailableError
from ..schemas.auth import LoginResponse, LogoutResponse, SessionResponse, UserLogin
from ..schemas.session import Session
from ..security.session_token import is_session_secret_configured
from ..services.admin_users import AdminUserRepository
from ..services.discord_oauth import DiscordOAuthClient, DiscordOAuthError, build_admin_user
from ..services.roles_config import RolesConfigService
from ..services.session_store import SessionStore
from ..use_cases.auth.login_admin import login_admin
from ..utils.request import binding_info

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

OAUTH_STATE_COOKIE_NAME = "discord_oauth_state"
OAUTH_STATE_MAX_AGE = 10 * 60
LOGIN_PAGE = "/admin/login"
ADMIN_HOME = "/admin"


def _callback_uri(request: Request) -> str:
    return f"{request.base_url}".rstrip("/") + "/api/auth/discord/callback"


def _login_redirect(error: str) -> RedirectResponse:
    response = RedirectResponse(f"{LOGIN_PAGE}?error={error}", status_code=status.HTTP_302_FOUND)
    response.delete_cookie(OAUTH_STATE_COOKIE_NAME, path="/")
    return response


@router.post("/login", response_model=LoginResponse)
async def login(
    payload: UserLogin,
    request: Request,
    response: Response,
    users: AdminUserRepository = Depends(get_admin_user_repository),
    sessions: SessionStore = Depends(get_session_store),
) -> LoginResponse:
    if not is_session_secret_configured():
        raise ConfigurationError("Login attempted but SESSION_SECRET is not configured")

    user, grant = await login_admin(
        users, sessions, payload.username, payload.password, binding=binding_info(request)
    )
    response.headers.append("set-cookie", grant.cookie)
    return LoginResponse(user=user)


@router.post("/logout", response_model=LogoutResponse)
async def logout(
    request: Request,
    response: Response,
    sessions: SessionStore = Depends(get_session_store),
) -> LogoutResponse:
    response.headers.append("set-cookie", await sessions.invalidate(request))
    return LogoutResponse()


@router.get("/session", response_model=SessionResponse)
async def session(
    current: Session | None = Depends(get_current_session),
) -> SessionResponse:
    if current is None:
        raise AuthError()
    return SessionResponse(authenticated=True, user=current.user)


@router.get("/discord")
async def discord_login(
    request: Request,
    client: DiscordOAuthClient = Depends(get_discord_client),
) -> RedirectResponse:
    if not get_settings().discord_oauth_configured:
        raise ServiceUnavailableError(
            "Discord OAuth is not configured. Please set the required environment variables."
        )

    state = secrets.token_hex(16)
    response = RedirectResponse(
        client.authorization_url(_callback_uri(request), state),
        status_code=status.HTTP_302_FOUND,
    )
    response.set_cookie(
        OAUTH_STATE_COOKIE_NAME,
        state,
        max_age=OAUTH_STATE_MAX_AGE,
        path="/",
        secure=True,
        httponly=True,
        samesite="lax",
    )
    return response


@router.get("/discord/callback")
async def discord_callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    error_description: str | None = None,
    client: DiscordOAuthClient = Depends(get_discord_client),
    roles: RolesConfigService = Depends(get_roles_config_service),
    sessions: SessionStore = Depends(get_session_store),
) -> RedirectResponse:
    if not is_session_secret_configured():
        logger.error("Discord OAuth callback attempted but SESSION_SECRET is not configured")
        return _login_redirect("server_config")

    if error:
        logger.warning("Discord OAuth error=%s description=%s", error, error_description)
        return _login_redirect(f"discord_{error}")

    if not code or not state:
        return _login_redirect("missing_params")

    stored_state = request.cookies.get(OAUTH_STATE_COOKIE_NAME)
    if not stored_state or not secrets.compare_digest(stored_state, state):
        logger.warning("Discord OAuth state mismatch")
        return _login_redirect("state_mismatch")

    try:
        redirect_uri = _callback_uri(request)
        access_token = await client.exchange_code(code, redirect_uri)
        discord_user = await client.get_user(access_token)
        member = await client.get_guild_member(discord_user.id)
        if member is None:
            logger.info("Discord login rejected, not a guild member user=%s", discord_user.id)
            return _login_redirect("not_member")

        resolved = await roles.resolve_member_roles(member.roles, get_settings())
        if resolved is None:
            logger.info("Discord login rejected, no mapped role user=%s", discord_user.id)
            return _login_redirect("no_role")

        user = build_admin_user(discord_user, resolved)
        grant = await sessions.create(user, binding_info(request))
    except (DiscordOAuthError, ConfigurationError, StorageError) as exc:
        logger.error("Discord OAuth callback failed: %s", exc)
        return _login_redirect("callback_failed")

    logger.info(
        "Discord login user=%s role=%s mapping=%s",
        user.id,
        user.role.value,
        user.role_mapping_id or "legacy",
    )
    response = RedirectResponse(ADMIN_HOME, status_code=status.HTTP_302_FOUND)
    response.headers.append("set-cookie", grant.cookie)
    response.delete_cookie(OAUTH_STATE_COOKIE_NAME, path="/")
    return response
