from urllib.parse import parse_qs, urlparse

import httpx
from fastapi import status
import pytest

from dppd_admin.config import Settings, reset_settings
from dppd_admin.infrastructure.blob_store import SESSIONS_NAMESPACE
from dppd_admin.schemas.roles import InternalRole, PagePermission, ResolvedRole, RoleMapping, RolesConfig
from dppd_admin.services.discord_oauth import (
    DiscordOAuthClient,
    DiscordOAuthError,
    DiscordUser,
    build_admin_user,
)
from tests.app_helpers import make_client, seed_roles_config
from tests.store_helpers import InMemoryStoreFactory

GUILD_ID = "900000000000000000"
MEMBER_ID = "123456789012345678"
PATROL_ROLE_ID = "111111111111111111"

DISCORD_ENV = {
    "DISCORD_CLIENT_ID": "client-id",
    "DISCORD_CLIENT_SECRET": "client-secret",
    "DISCORD_GUILD_ID": GUILD_ID,
    "DISCORD_BOT_TOKEN": "bot-token",
}


def discord_settings() -> Settings:
    return Settings(
        discord_client_id="client-id",
        discord_client_secret="client-secret",
        discord_guild_id=GUILD_ID,
        discord_bot_token="bot-token",
    )


class FakeDiscord:
    """Answers the three Discord endpoints the login flow calls."""

    def __init__(
        self,
        *,
        member_roles: list[str] | None = None,
        token_status: int = 200,
        user_body: dict | None = None,
        member_body: dict | None = None,
    ) -> None:
        self.member_roles = member_roles
        self.token_status = token_status
        self.user_body = user_body
        self.member_body = member_body
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.endswith("/oauth2/token"):
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"error": "invalid_grant"})
            return httpx.Response(200, json={"access_token": "user-token", "token_type": "Bearer"})
        if path.endswith("/users/@me"):
            if self.user_body is not None:
                return httpx.Response(200, json=self.user_body)
            return httpx.Response(
                200, json={"id": MEMBER_ID, "username": "officer", "global_name": "Officer K"}
            )
        if path.endswith(f"/guilds/{GUILD_ID}/members/{MEMBER_ID}"):
            if self.member_body is not None:
                return httpx.Response(200, json=self.member_body)
            if self.member_roles is None:
                return httpx.Response(404, json={"message": "Unknown Member"})
            return httpx.Response(200, json={"roles": self.member_roles})
        return httpx.Response(500)

    def client(self) -> DiscordOAuthClient:
        return DiscordOAuthClient(discord_settings(), transport=httpx.MockTransport(self))


@pytest.fixture
def discord_env(monkeypatch: pytest.MonkeyPatch):
    for name, value in DISCORD_ENV.items():
        monkeypatch.setenv(name, value)
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def factory() -> InMemoryStoreFactory:
    factory = InMemoryStoreFactory()
    seed_roles_config(
        factory,
        RolesConfig(
            discord_role_mappings=[
                RoleMapping(
                    id="role-patrol",
                    discord_role_id=PATROL_ROLE_ID,
                    role_name="Patrol",
                    permissions=["events", "warehouse"],
                    priority=5,
                )
            ]
        ).to_document(),
    )
    return factory


def start_login(client) -> str:
    response = client.get("/api/auth/discord", follow_redirects=False)
    assert response.status_code == status.HTTP_302_FOUND
    query = parse_qs(urlparse(response.headers["location"]).query)
    return query["state"][0]


def error_of(response) -> str:
    assert response.status_code == status.HTTP_302_FOUND
    location = urlparse(response.headers["location"])
    assert location.path == "/admin/login"
    return parse_qs(location.query)["error"][0]


@pytest.mark.anyio
async def test_client_exchanges_code_and_reads_member() -> None:
    discord = FakeDiscord(member_roles=[PATROL_ROLE_ID])
    client = discord.client()

    token = await client.exchange_code("auth-code", "https://testserver/api/auth/discord/callback")
    user = await client.get_user(token)
    member = await client.get_guild_member(user.id)

    assert token == "user-token"
    assert user.global_name == "Officer K"
    assert member.roles == [PATROL_ROLE_ID]

    token_request, user_request, member_request = discord.requests
    assert parse_qs(token_request.content.decode())["grant_type"] == ["authorization_code"]
    assert user_request.headers["authorization"] == "Bearer user-token"
    assert member_request.headers["authorization"] == "Bot bot-token"


@pytest.mark.anyio
async def test_client_reports_non_member_as_none() -> None:
    client = FakeDiscord(member_roles=None).client()

    assert await client.get_guild_member(MEMBER_ID) is None


@pytest.mark.anyio
async def test_client_raises_on_rejected_exchange() -> None:
    client = FakeDiscord(token_status=400).client()

    with pytest.raises(DiscordOAuthError) as exc_info:
        await client.exchange_code("stale-code", "https://testserver/cb")
    assert exc_info.value.status_code == 400


@pytest.mark.anyio
async def test_client_wraps_transport_errors() -> None:
    def unreachable(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = DiscordOAuthClient(discord_settings(), transport=httpx.MockTransport(unreachable))

    with pytest.raises(DiscordOAuthError):
        await client.get_user("user-token")


@pytest.mark.anyio
async def test_client_rejects_malformed_payloads() -> None:
    bad_user = FakeDiscord(user_body={"username": "officer"}).client()
    bad_member = FakeDiscord(member_body={"roles": "everyone"}).client()

    with pytest.raises(DiscordOAuthError, match="user lookup"):
        await bad_user.get_user("user-token")
    with pytest.raises(DiscordOAuthError, match="guild member lookup"):
        await bad_member.get_guild_member(MEMBER_ID)


def test_authorization_url_carries_scopes_and_state() -> None:
    client = DiscordOAuthClient(discord_settings())

    url = urlparse(client.authorization_url("https://testserver/cb", "abc123"))
    query = parse_qs(url.query)

    assert url.netloc == "discord.com"
    assert query["client_id"] == ["client-id"]
    assert query["scope"] == ["identify guilds.members.read"]
    assert query["state"] == ["abc123"]
    assert query["redirect_uri"] == ["https://testserver/cb"]


def test_build_admin_user_prefers_global_name() -> None:
    resolved = ResolvedRole(
        role=InternalRole.CUSTOM,
        permissions=["events"],
        role_name="Patrol",
        role_mapping_id="role-patrol",
        page_permissions=[PagePermission(page_id="events", actions=["view"])],
    )

    named = build_admin_user(DiscordUser(id="1", username="k", global_name="Officer K"), resolved)
    plain = build_admin_user(DiscordUser(id="1", username="k"), resolved)

    assert named.id == "discord-1"
    assert named.display_name == "Officer K"
    assert plain.display_name == "k"
    assert named.role_mapping_id == "role-patrol"
    assert [p.page_id for p in named.page_permissions] == ["events"]


def test_start_requires_configuration(
    factory: InMemoryStoreFactory, monkeypatch: pytest.MonkeyPatch
) -> None:
    for name in DISCORD_ENV:
        monkeypatch.delenv(name, raising=False)
    reset_settings()
    try:
        client = make_client(factory)
        response = client.get("/api/auth/discord", follow_redirects=False)
    finally:
        reset_settings()

    assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
    assert response.json()["error"]["code"] == "SERVICE_UNAVAILABLE"


def test_start_sets_state_cookie(discord_env, factory: InMemoryStoreFactory) -> None:
    client = make_client(factory, discord_client=FakeDiscord().client())

    response = client.get("/api/auth/discord", follow_redirects=False)

    cookie = response.headers["set-cookie"]
    state = parse_qs(urlparse(response.headers["location"]).query)["state"][0]
    assert cookie.startswith(f"discord_oauth_state={state}")
    assert "HttpOnly" in cookie
    assert "Secure" in cookie
    assert "Max-Age=600" in cookie


def test_callback_logs_member_in(discord_env, factory: InMemoryStoreFactory) -> None:
    client = make_client(factory, discord_client=FakeDiscord(member_roles=[PATROL_ROLE_ID]).client())
    state = start_login(client)

    response = client.get(
        "/api/auth/discord/callback",
        params={"code": "auth-code", "state": state},
        follow_redirects=False,
    )

    assert response.status_code == status.HTTP_302_FOUND
    assert response.headers["location"] == "/admin"
    session = client.get("/api/auth/session").json()
    assert session["user"]["id"] == f"discord-{MEMBER_ID}"
    assert session["user"]["roleMappingId"] == "role-patrol"
    assert session["user"]["permissions"] == ["events", "warehouse"]
    assert len(factory(SESSIONS_NAMESPACE).data) == 1


def test_callback_rejects_state_mismatch(discord_env, factory: InMemoryStoreFactory) -> None:
    discord = FakeDiscord(member_roles=[PATROL_ROLE_ID])
    client = make_client(factory, discord_client=discord.client())
    start_login(client)

    response = client.get(
        "/api/auth/discord/callback",
        params={"code": "auth-code", "state": "forged"},
        follow_redirects=False,
    )

    assert error_of(response) == "state_mismatch"
    assert discord.requests == []


@pytest.mark.parametrize(
    ("params", "expected"),
    [
        ({"error": "access_denied"}, "discord_access_denied"),
        ({"code": "auth-code"}, "missing_params"),
        ({"state": "abc"}, "missing_params"),
    ],
)
def test_callback_rejects_incomplete_requests(
    discord_env, factory: InMemoryStoreFactory, params: dict, expected: str
) -> None:
    client = make_client(factory, discord_client=FakeDiscord().client())

    response = client.get("/api/auth/discord/callback", params=params, follow_redirects=False)

    assert error_of(response) == expected


@pytest.mark.parametrize(
    ("member_roles", "expected"),
    [(None, "not_member"), (["999999999999999999"], "no_role")],
)
def test_callback_rejects_members_without_access(
    discord_env, factory: InMemoryStoreFactory, member_roles, expected: str
) -> None:
    client = make_client(factory, discord_client=FakeDiscord(member_roles=member_roles).client())
    state = start_login(client)

    response = client.get(
        "/api/auth/discord/callback",
        params={"code": "auth-code", "state": state},
        follow_redirects=False,
    )

    assert error_of(response) == expected
    assert factory(SESSIONS_NAMESPACE).data == {}


def test_callback_reports_discord_failure(discord_env, factory: InMemoryStoreFactory) -> None:
    client = make_client(factory, discord_client=FakeDiscord(token_status=400).client())
    state = start_login(client)

    response = client.get(
        "/api/auth/discord/callback",
        params={"code": "stale-code", "state": state},
        follow_redirects=False,
    )

    assert error_of(response) == "callback_failed"


def test_callback_falls_back_to_legacy_role_ids(
    discord_env, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("DISCORD_SUPERADMIN_ROLE_ID", "333333333333333333")
    reset_settings()
    factory = InMemoryStoreFactory()
    client = make_client(
        factory, discord_client=FakeDiscord(member_roles=["333333333333333333"]).client()
    )
    state = start_login(client)

    response = client.get(
        "/api/auth/discord/callback",
        params={"code": "auth-code", "state": state},
        follow_redirects=False,
    )

    assert response.headers["location"] == "/admin"
    user = client.get("/api/auth/session").json()["user"]
    assert user["role"] == "super_admin"
    assert "roleMappingId" not in user or user["roleMappingId"] is None


def test_callback_reports_malformed_member(discord_env, factory: InMemoryStoreFactory) -> None:
    client = make_client(factory, discord_client=FakeDiscord(member_body={"roles": "everyone"}).client())
    state = start_login(client)

    response = client.get(
        "/api/auth/discord/callback",
        params={"code": "auth-code", "state": state},
        follow_redirects=False,
    )

    assert error_of(response) == "callback_failed"
    assert factory(SESSIONS_NAMESPACE).data == {}
