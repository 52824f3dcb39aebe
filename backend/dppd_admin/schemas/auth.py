from pydantic import BaseModel, Field

from .base import CamelModel
from .roles import InternalRole
from .session import AdminUser


class UserLogin(BaseModel):
    username: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=1, max_length=256)


class StoredAdminUser(CamelModel):
    id: str
    username: str
    password: str
    display_name: str
    role: InternalRole
    permissions: list[str] = Field(default_factory=list)
    created_at: str | None = None
    updated_at: str | None = None

    def to_admin_user(self) -> AdminUser:
        return AdminUser(
            id=self.id,
            username=self.username,
            display_name=self.display_name,
            role=self.role,
            permissions=list(self.permissions),
        )


class LoginResponse(CamelModel):
    success: bool = True
    message: str = "Login successful"
    user: AdminUser


class LogoutResponse(CamelModel):
    success: bool = True
    message: str = "Logged out successfully"


class SessionResponse(CamelModel):
    authenticated: bool
    user: AdminUser | None = None
