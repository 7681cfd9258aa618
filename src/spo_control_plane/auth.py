from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

import msal
import requests
from azure.core.exceptions import AzureError, ServiceRequestError
from azure.identity import ManagedIdentityCredential

from .audit import JsonAuditLogger
from .config import CertificateAuth, ClientSecretAuth, ManagedIdentityAuth, TenantConfig
from .errors import AuthError, NetworkError

logger = logging.getLogger(__name__)


class TokenProvider(Protocol):
    def ensure_access_token(self, resource: str) -> str:
        ...


class SharePointAuthenticator:
    """Acquires app-only bearer tokens for a tenant's SharePoint resource.

    Supports client secret, certificate-based auth, and managed identities.
    Confidential client applications are kept per authenticator so MSAL's
    in-memory cache serves repeated calls; managed identity relies on the
    platform cache.
    """

    def __init__(self, tenant_config: TenantConfig, audit_logger: JsonAuditLogger):
        self.tenant_config = tenant_config
        self.audit = audit_logger
        self._app: Optional[msal.ConfidentialClientApplication] = None

    def ensure_access_token(self, resource: str) -> str:
        scopes = self._scopes_for(resource)
        auth_config = self.tenant_config.auth

        if isinstance(auth_config, (ClientSecretAuth, CertificateAuth)):
            try:
                app = self._confidential_app()
                result = app.acquire_token_silent(scopes, account=None)
                if not result:
                    result = app.acquire_token_for_client(scopes=scopes)
            except requests.RequestException as exc:
                raise NetworkError(f"Token request to {auth_config.authority_host} failed: {exc}") from exc
            token = self._extract_token(result)
            self.audit.info(
                "acquired_app_token",
                tenant_id=self.tenant_config.tenant_id,
                auth_type=auth_config.type,
                resource=resource,
            )
            return token

        if isinstance(auth_config, ManagedIdentityAuth):
            credential = ManagedIdentityCredential(client_id=auth_config.client_id)
            try:
                result = credential.get_token(*scopes)
            except ServiceRequestError as exc:
                raise NetworkError(f"Managed identity endpoint unreachable: {exc}") from exc
            except AzureError as exc:
                raise AuthError(f"Managed identity token request failed: {exc}") from exc
            self.audit.info(
                "acquired_app_token",
                tenant_id=self.tenant_config.tenant_id,
                auth_type=auth_config.type,
                resource=resource,
            )
            return result.token

        raise ValueError("Unsupported authentication configuration")

    def _scopes_for(self, resource: str) -> list:
        if resource == self.tenant_config.resource:
            return list(self.tenant_config.token_scopes)
        return [f"{resource.rstrip('/')}/.default"]

    def _confidential_app(self) -> msal.ConfidentialClientApplication:
        if self._app is not None:
            return self._app

        auth_config = self.tenant_config.auth
        try:
            if isinstance(auth_config, CertificateAuth):
                credential: Any = self._load_certificate(auth_config)
            else:
                credential = auth_config.client_secret.resolve()
        except ValueError as exc:
            raise AuthError(str(exc)) from exc

        try:
            # Authority discovery happens here, so an unknown tenant fails now.
            self._app = msal.ConfidentialClientApplication(
                client_id=auth_config.client_id,
                client_credential=credential,
                authority=f"{auth_config.authority_host}/{self.tenant_config.tenant_id}",
                token_cache=msal.TokenCache(),
            )
        except ValueError as exc:
            raise AuthError(f"Invalid authority for tenant {self.tenant_config.tenant_id}: {exc}") from exc
        return self._app

    @staticmethod
    def _extract_token(result: Optional[dict]) -> str:
        if not result or "access_token" not in result:
            description = (result or {}).get("error_description") or json.dumps(result)
            raise AuthError(f"Token acquisition failed: {description}")
        return result["access_token"]

    @staticmethod
    def _load_certificate(auth_config: CertificateAuth) -> Dict[str, Any]:
        path = Path(auth_config.certificate_path)
        try:
            with path.open("r", encoding="utf-8") as handle:
                private_key = handle.read()
        except OSError as exc:
            raise AuthError(f"Failed to read certificate at {path}: {exc}") from exc

        credential: Dict[str, Any] = {
            "private_key": private_key,
            "thumbprint": auth_config.thumbprint,
        }
        if auth_config.certificate_password:
            credential["passphrase"] = auth_config.certificate_password.resolve()
        return credential
