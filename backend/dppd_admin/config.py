import json
import os
import threading
from urllib.parse import urlparse

from dotenv import load_dotenv
from pydantic import BaseModel, Field


load_dotenv()


class Settings(BaseModel):
    app_name: str = Field(default="DPPD Admin")
    debug: bool = Field(default=False)
    redis_url: str = Field(default="redis://localhost:6379/0")
    allowed_origins: list[str] = Field(default_factory=list)
    # Peers whose X-Forwarded-For / X-Real-IP headers are believed
    trusted_proxies: list[str] = Field(default_factory=list)
    session_lifetime_seconds: int = Field(default=24 * 60 * 60)
    session_refresh_seconds: int = Field(default=4 * 60 * 60)
    roles_cache_ttl_seconds: float = Field(default=60.0)
    discord_client_id: str = Field(default="")
    discord_client_secret: str = Field(default="")
    discord_guild_id: str = Field(default="")
    discord_bot_token: str = Field(default="")
    discord_superadmin_role_id: str = Field(default="")
    discord_subdiv_role_id: str = Field(default="")
    discord_allothers_role_id: str = Field(default="")
    bootstrap_admin_username: str = Field(default="")
    bootstrap_admin_password: str = Field(default="")

    @property
    def discord_oauth_configured(self) -> bool:
        return bool(
            self.discord_client_id
            and self.discord_client_secret
            and self.discord_guild_id
            and self.discord_bot_token
        )

    @classmethod
    def from_env(cls) -> "Settings":
        # Support both CSV format and JSON array format
        raw_allowed_origins = os.getenv("ALLOWED_ORIGINS", "").strip()
        allowed_origins: list[str] = []
        if raw_allowed_origins.startswith("["):
            try:
                parsed_list = json.loads(raw_allowed_origins)
                if not isinstance(parsed_list, list):
                    raise ValueError("ALLOWED_ORIGINS JSON must be an array")
                allowed_origins = [
                    origin.strip() for origin in parsed_list if isinstance(origin, str) and origin.strip()
                ]
            except json.JSONDecodeError as exc:
                raise ValueError(f"ALLOWED_ORIGINS JSON is malformed: {exc}") from exc
        elif raw_allowed_origins:
            allowed_origins = [
                origin.strip() for origin in raw_allowed_origins.split(",") if origin.strip()
            ]

        if "*" in allowed_origins:
            raise ValueError(
                "ALLOWED_ORIGINS cannot contain '*' when credentialed requests are used"
            )

        for origin in allowed_origins:
            parsed = urlparse(origin)
            if parsed.scheme not in {"http", "https"} or not parsed.netloc:
                raise ValueError(
                    "ALLOWED_ORIGINS must contain valid http/https origins with host"
                )

        trusted_proxies = [
            proxy.strip() for proxy in os.getenv("TRUSTED_PROXIES", "").split(",") if proxy.strip()
        ]

        redis_url = os.getenv("REDIS_URL", cls.model_fields["redis_url"].default).strip()
        if urlparse(redis_url).scheme not in {"redis", "rediss", "unix"}:
            raise ValueError("REDIS_URL must use the redis://, rediss:// or unix:// scheme")

        session_lifetime_seconds = int(
            os.getenv(
                "SESSION_LIFETIME_SECONDS",
                cls.model_fields["session_lifetime_seconds"].default,
            )
        )
        if session_lifetime_seconds <= 0:
            raise ValueError("SESSION_LIFETIME_SECONDS must be greater than 0")

        session_refresh_seconds = int(
            os.getenv(
                "SESSION_REFRESH_SECONDS",
                cls.model_fields["session_refresh_seconds"].default,
            )
        )
        if not 0 < session_refresh_seconds <= session_lifetime_seconds:
            raise ValueError(
                "SESSION_REFRESH_SECONDS must be greater than 0 and not exceed SESSION_LIFETIME_SECONDS"
            )

        roles_cache_ttl_seconds = float(
            os.getenv(
                "ROLES_CACHE_TTL_SECONDS",
                cls.model_fields["roles_cache_ttl_seconds"].default,
            )
        )
        if roles_cache_ttl_seconds < 0:
            raise ValueError("ROLES_CACHE_TTL_SECONDS must be greater than or equal to 0")

        return cls(
            app_name=os.getenv("APP_NAME", cls.model_fields["app_name"].default),
            debug=os.getenv("DEBUG", "false").lower() == "true",
            redis_url=redis_url,
            allowed_origins=allowed_origins,
            trusted_proxies=trusted_proxies,
            session_lifetime_seconds=session_lifetime_seconds,
            session_refresh_seconds=session_refresh_seconds,
            roles_cache_ttl_seconds=roles_cache_ttl_seconds,
            discord_client_id=os.getenv("DISCORD_CLIENT_ID", "").strip(),
            discord_client_secret=os.getenv("DISCORD_CLIENT_SECRET", "").strip(),
            discord_guild_id=os.getenv("DISCORD_GUILD_ID", "").strip(),
            discord_bot_token=os.getenv("DISCORD_BOT_TOKEN", "").strip(),
            discord_superadmin_role_id=os.getenv("DISCORD_SUPERADMIN_ROLE_ID", "").strip(),
            discord_subdiv_role_id=os.getenv("DISCORD_SUBDIV_ROLE_ID", "").strip(),
            discord_allothers_role_id=os.getenv("DISCORD_ALLOTHERS_ROLE_ID", "").strip(),
            bootstrap_admin_username=os.getenv("BOOTSTRAP_ADMIN_USERNAME", "").strip(),
            bootstrap_admin_password=os.getenv("BOOTSTRAP_ADMIN_PASSWORD", ""),
        )


# Settings are validated on first access, not at import
_settings_instance: Settings | None = None
_settings_lock = threading.Lock()


def get_settings() -> Settings:
    """Get settings instance, creating it on first access.

    Uses double-checked locking so concurrent first accesses build a
    single instance.

    Returns:
        Settings instance

    Raises:
        ValueError: If environment variables are invalid
    """
    global _settings_instance

    if _settings_instance is not None:
        return _settings_instance

    with _settings_lock:
        if _settings_instance is None:
            _settings_instance = Settings.from_env()

    return _settings_instance


def reset_settings() -> None:
    """Drop the cached settings so the next access re-reads the environment."""
    global _settings_instance
    with _settings_lock:
        _settings_instance = None


class _SettingsProxy:
    """Proxy to defer settings creation until first attribute access."""

    def __getattr__(self, name: str):
        return getattr(get_settings(), name)


settings = _SettingsProxy()  # type: ignore[assignment]
