from __future__ import annotations

import os
from pathlib import Path
from typing import List, Literal, Optional, Union
from urllib.parse import urlsplit

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator


def is_valid_site_url(url: Optional[str]) -> bool:
    """Return True for an absolute http(s) URL that names a host."""
    if not url:
        return False
    parts = urlsplit(url)
    return parts.scheme in ("http", "https") and bool(parts.hostname)


def site_origin(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"


class SecretRef(BaseModel):
    """Reference to a secret source without storing the secret in code.

    Secrets come from environment variables injected at runtime. ``value`` is
    accepted for local development only.
    """

    env: Optional[str] = Field(
        default=None, description="Environment variable name containing the secret"
    )
    value: Optional[str] = Field(
        default=None,
        description="Inline value (use only for local development; avoid in production)",
    )

    model_config = ConfigDict(extra="forbid")

    def resolve(self) -> str:
        if self.env:
            env_value = os.getenv(self.env)
            if env_value:
                return env_value
            raise ValueError(f"Environment variable {self.env} is not set")
        if self.value:
            return self.value
        raise ValueError("No secret reference provided for resolution")


class ClientSecretAuth(BaseModel):
    type: Literal["client_secret"]
    client_id: str
    client_secret: SecretRef
    authority_host: str = Field(
        default="https://login.microsoftonline.com",
        description="Entra ID authority host",
    )

    model_config = ConfigDict(extra="forbid")


class CertificateAuth(BaseModel):
    """App-only certificate credential. SharePoint rejects app-only client secrets
    for CSOM, so this is the usual choice for unattended runs."""

    type: Literal["certificate"]
    client_id: str
    certificate_path: Path = Field(description="PEM file holding the private key")
    thumbprint: str = Field(description="SHA-1 thumbprint of the uploaded certificate")
    certificate_password: Optional[SecretRef] = None
    authority_host: str = Field(
        default="https://login.microsoftonline.com",
        description="Entra ID authority host",
    )

    model_config = ConfigDict(extra="forbid")

    @field_validator("thumbprint")
    @classmethod
    def normalize_thumbprint(cls, value: str) -> str:
        value = value.replace(":", "").replace(" ", "").upper()
        if not value:
            raise ValueError("thumbprint is required for certificate auth")
        return value


class ManagedIdentityAuth(BaseModel):
    type: Literal["managed_identity"]
    client_id: Optional[str] = Field(
        default=None, description="Optional user-assigned managed identity client ID"
    )

    model_config = ConfigDict(extra="forbid")


AuthConfig = Union[ClientSecretAuth, CertificateAuth, ManagedIdentityAuth]


class TenantConfig(BaseModel):
    tenant_id: str
    display_name: Optional[str] = None
    admin_site_url: str = Field(
        description="Tenant admin site, e.g. https://contoso-admin.sharepoint.com",
    )
    auth: AuthConfig = Field(discriminator="type")
    scopes: List[str] = Field(
        default_factory=list,
        description="Token scopes. Defaults to '<admin site origin>/.default'.",
    )
    application_name: str = Field(
        default="spo-control-plane",
        description="Sent as ApplicationName on CSOM requests",
    )
    http_timeout: float = Field(default=30.0, gt=0)

    model_config = ConfigDict(extra="forbid")

    @field_validator("admin_site_url")
    @classmethod
    def validate_admin_site_url(cls, value: str) -> str:
        if not is_valid_site_url(value):
            raise ValueError(f"{value} is not a valid SharePoint Online site URL")
        return value.rstrip("/")

    @property
    def resource(self) -> str:
        return site_origin(self.admin_site_url)

    @property
    def token_scopes(self) -> List[str]:
        return self.scopes or [f"{self.resource}/.default"]


class ControlPlaneConfig(BaseModel):
    tenants: List[TenantConfig]

    model_config = ConfigDict(extra="forbid")

    @classmethod
    def load(cls, path: Union[str, Path]) -> "ControlPlaneConfig":
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with config_path.open("r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle) or {}

        return cls.model_validate(raw)
