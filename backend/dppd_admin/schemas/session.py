from __future__ import annotations

from pydantic import Field

from .base import CamelModel
from .roles import InternalRole, PagePermission


class AdminUser(CamelModel):
    """Snapshot of the principal taken at login and stored in the session."""

    id: str
    username: str
    display_name: str
    role: InternalRole
    permissions: list[str] = Field(default_factory=list)
    # Copied from the role mapping at login; checks read the live mapping
    page_permissions: list[PagePermission] | None = None
    # Set for Discord logins; older sessions fall back to permission-set matching
    role_mapping_id: str | None = None

    @property
    def is_super_admin(self) -> bool:
        return self.role == InternalRole.SUPER_ADMIN


class BindingInfo(CamelModel):
    client_ip: str | None = None
    user_agent: str | None = None


class Session(CamelModel):
    session_id: str
    user: AdminUser
    created_at: float
    expires_at: float
    ip_hash: str | None = None
    user_agent: str | None = None
    last_activity_at: float | None = None
    refreshed_at: float | None = None
    # True when this read extended the expiry; never stored
    refreshed: bool = Field(default=False, exclude=True)


class SessionGrant(CamelModel):
    token: str
    cookie: str
