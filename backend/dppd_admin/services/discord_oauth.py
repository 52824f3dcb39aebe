"""Discord OAuth2 login: authorize URL, code exchange, user and guild-member lookups."""
from __future__ import annotations

import logging
from typing import Any, TypeVar
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel, Field, ValidationError

from ..config import Settings
from ..schemas.roles import ResolvedRole
from ..schemas.session import AdminUser

logger = logging.getLogger(__name__)

DISCORD_API_BASE = "https://discord.com/api/v10"
DISCORD_OAUTH_AUTHORIZE = "https://discord.com/oauth2/authorize"
DISCORD_OAUTH_TOKEN = f"{DISCORD_API_BASE}/oauth2/token"
OAUTH_SCOPES = ("identify", "guilds.members.read")

_ModelT = TypeVar("_ModelT", bound=BaseModel)


class DiscordOAuthError(Exception):
    """Discord rejected a request or answered with something unusable."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class DiscordUser(BaseModel):
    id: str
    username: str
    global_name: str | None = None
    avatar: str | None = None


class DiscordGuildMember(BaseModel):
    roles: list[str] = Field(default_factory=list)
    nick: str | None = None
    avatar: str | None = None


class DiscordOAuthClient:
    def __init__(
        self,
        settings: Settings,
        *,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    def authorization_url(self, redirect_uri: str, state: str) -> str:
        params = {
            "client_id": self._settings.discord_client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(OAUTH_SCOPES),
            "state": state,
            "prompt": "consent",
        }
        return f"{DISCORD_OAUTH_AUTHORIZE}?{urlencode(params)}"

    async def exchange_code(self, code: str, redirect_uri: str) -> str:
        """Trade an authorization code for a user access token."""
        data = {
            "client_id": self._settings.discord_client_id,
            "client_secret": self._settings.discord_client_secret,
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
        }
        payload = await self._request("POST", DISCORD_OAUTH_TOKEN, data=data, what="token exchange")
        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not access_token:
            raise DiscordOAuthError("Token response did not contain an access token")
        return access_token

    async def get_user(self, access_token: str) -> DiscordUser:
        payload = await self._request(
            "GET",
            f"{DISCORD_API_BASE}/users/@me",
            headers={"Authorization": f"Bearer {access_token}"},
            what="user lookup",
        )
        return _parse(DiscordUser, payload, "user lookup")

    async def get_guild_member(self, user_id: str) -> DiscordGuildMember | None:
        """Member record from the bot's view of the guild, ``None`` if not a member."""
        url = f"{DISCORD_API_BASE}/guilds/{self._settings.discord_guild_id}/members/{user_id}"
        payload = await self._request(
            "GET",
            url,
            headers={"Authorization": f"Bot {self._settings.discord_bot_token}"},
            what="guild member lookup",
            missing_ok=True,
        )
        if payload is None:
            return None
        return _parse(DiscordGuildMember, payload, "guild member lookup")

    async def _request(
        self,
        method: str,
        url: str,
        *,
        what: str,
        headers: dict[str, str] | None = None,
        data: dict[str, str] | None = None,
        missing_ok: bool = False,
    ) -> Any:
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout_seconds, transport=self._transport
            ) as client:
                response = await client.request(method, url, headers=headers, data=data)
        except httpx.RequestError as exc:
            logger.error("Discord %s failed: %s", what, exc)
            raise DiscordOAuthError(f"Discord {what} failed: {exc}") from exc

        if missing_ok and response.status_code == httpx.codes.NOT_FOUND:
            return None
        if response.is_error:
            logger.error(
                "Discord %s returned status=%s body=%s",
                what,
                response.status_code,
                response.text[:200],
            )
            raise DiscordOAuthError(
                f"Discord {what} failed with status {response.status_code}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise DiscordOAuthError(f"Discord {what} returned invalid JSON") from exc


def _parse(model: type[_ModelT], payload: Any, what: str) -> _ModelT:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        logger.error("Discord %s returned an unexpected payload: %s", what, exc)
        raise DiscordOAuthError(f"Discord {what} returned an unexpected payload") from exc


def build_admin_user(discord_user: DiscordUser, resolved: ResolvedRole) -> AdminUser:
    return AdminUser(
        id=f"discord-{discord_user.id}",
        username=discord_user.username,
        display_name=discord_user.global_name or discord_user.username,
        role=resolved.role,
        permissions=list(resolved.permissions),
        role_mapping_id=resolved.role_mapping_id,
        page_permissions=resolved.page_permissions,
    )
