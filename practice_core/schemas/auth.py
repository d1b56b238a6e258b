"""Authentication-related Pydantic schemas."""

from pydantic import BaseModel, ConfigDict

from practice_core.core.permissions import Permission
from practice_core.db.enums import Role


class TokenPayload(BaseModel):
    """Decoded JWT payload structure."""
    sub: str  # user_id
    tenant_id: str
    role: str
    email: str = ""
    name: str = ""


class UserContext(BaseModel):
    """
    Identity and derived authority for one signed-in session.

    Built by permission_service.create_user_context and never mutated;
    a role change means building a new context.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    role: Role  # Validated enum
    tenant_id: str
    display_name: str
    permissions: tuple[Permission, ...]
    accessible_routes: tuple[str, ...]


class MeResponse(BaseModel):
    """Response schema for GET /auth/me endpoint."""
    user_id: str
    email: str
    display_name: str
    role: Role
    role_label: str
    tenant_id: str
    accessible_routes: list[str]


class SessionPolicyRead(BaseModel):
    """Inactivity policy the client should enforce (seconds)."""
    timeout: int
    warning_window: int
    heartbeat_interval: int
    enable_warning: bool
