"""Authentication request/response models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from pybridgecore.models._base import BridgeCoreBaseModel


class LoginRequest(BaseModel):
    """Body of the tenant login call."""

    model_config = ConfigDict(frozen=True)

    email: str
    password: str
    odoo_fields_check: dict[str, Any] | None = None

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class TenantUser(BridgeCoreBaseModel):
    """The authenticated user."""

    id: str
    email: str
    full_name: str = ""
    role: str = ""
    odoo_user_id: int | None = None


class Tenant(BridgeCoreBaseModel):
    """The tenant (customer account) the user belongs to."""

    id: str
    name: str = ""
    slug: str = ""
    status: str = "active"

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @property
    def is_suspended(self) -> bool:
        return self.status == "suspended"

    @property
    def is_trial(self) -> bool:
        return self.status == "trial"


class TenantSession(BridgeCoreBaseModel):
    """Response of a successful login.

    Parameters
    ----------
    access_token : str
        Bearer credential for subsequent calls.
    refresh_token : str
        Credential used to mint new access tokens.
    token_type : str
        Always ``"bearer"`` in practice.
    expires_in : int or None
        Access token lifetime in seconds.
    user : TenantUser
        The authenticated user.
    tenant : Tenant
        The user's tenant.
    odoo_fields_data : dict or None
        Custom Odoo fields requested through ``odoo_fields_check``.
    """

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int | None = None
    user: TenantUser
    tenant: Tenant
    odoo_fields_data: dict[str, Any] | None = None


class RefreshResponse(BridgeCoreBaseModel):
    """Response of the token refresh call. Numeric strings are accepted for ``expires_in``."""

    access_token: str = Field(min_length=1)
    refresh_token: str | None = None
    expires_in: float | None = None


class UserInfo(BridgeCoreBaseModel):
    """Response of ``/me``."""

    user: TenantUser
    tenant: Tenant
    odoo_fields_data: dict[str, Any] | None = None
