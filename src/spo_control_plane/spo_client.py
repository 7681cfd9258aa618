from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .audit import JsonAuditLogger, redact_headers
from .config import TenantConfig
from .errors import AuthError, NetworkError, ProtocolError

logger = logging.getLogger(__name__)

NOMETADATA = "application/json;odata=nometadata"


class ContextInfo(BaseModel):
    FormDigestValue: str = Field(min_length=1)
    FormDigestTimeoutSeconds: Optional[int] = None
    WebFullUrl: Optional[str] = None
    SiteFullUrl: Optional[str] = None
    LibraryVersion: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class SharePointClient:
    """Tenant-scoped SharePoint Online client for the legacy CSOM endpoints.

    The bearer token is passed into every call rather than held by the client.
    No retries: every failure is mapped onto the error taxonomy and raised.
    """

    def __init__(
        self,
        tenant_config: TenantConfig,
        audit_logger: JsonAuditLogger,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.tenant_config = tenant_config
        self.audit = audit_logger
        self.site_url = tenant_config.admin_site_url
        self.session = httpx.Client(timeout=tenant_config.http_timeout, transport=transport)

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "SharePointClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def request(
        self,
        method: str,
        path: str,
        access_token: str,
        headers: Optional[Dict[str, str]] = None,
        **kwargs: Any,
    ) -> httpx.Response:
        url = f"{self.site_url}{path}"
        headers = dict(headers or {})
        headers["Authorization"] = f"Bearer {access_token}"
        content = kwargs.get("content")

        self.audit.debug(
            "spo_request",
            tenant_id=self.tenant_config.tenant_id,
            method=method,
            url=url,
            headers=redact_headers(headers),
            body=content.decode("utf-8") if isinstance(content, bytes) else content,
        )

        try:
            response = self.session.request(method, url, headers=headers, **kwargs)
        except httpx.TransportError as exc:
            self.audit.error(
                "spo_request_failed",
                tenant_id=self.tenant_config.tenant_id,
                url=url,
                error=str(exc),
            )
            raise NetworkError(f"Request to {url} failed: {exc}") from exc

        self.audit.debug(
            "spo_response",
            tenant_id=self.tenant_config.tenant_id,
            status=response.status_code,
            url=url,
            body=response.text,
        )

        if response.status_code >= 400:
            self.audit.error(
                "spo_request_failed",
                tenant_id=self.tenant_config.tenant_id,
                status=response.status_code,
                url=url,
                body=response.text,
            )
            if response.status_code in (401, 403):
                raise AuthError(
                    f"{response.status_code} {response.reason_phrase} from {url}",
                    status_code=response.status_code,
                )
            raise ProtocolError(
                f"Unexpected status {response.status_code} {response.reason_phrase} from {url}",
                status_code=response.status_code,
            )

        self.audit.info(
            "spo_request_succeeded",
            tenant_id=self.tenant_config.tenant_id,
            status=response.status_code,
            url=url,
        )
        return response

    def get_context_info(self, access_token: str) -> ContextInfo:
        """Fetch a form digest for the admin site."""
        response = self.request(
            "POST",
            "/_api/contextinfo",
            access_token,
            headers={"Accept": NOMETADATA},
        )
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProtocolError(f"contextinfo response is not valid JSON: {exc}") from exc

        if not isinstance(payload, dict):
            raise ProtocolError("contextinfo response is not a JSON object")
        try:
            return ContextInfo.model_validate(payload)
        except ValidationError as exc:
            raise ProtocolError(f"contextinfo response lacks FormDigestValue: {exc}") from exc

    def process_query(self, access_token: str, form_digest: str, body: str) -> str:
        """POST a CSOM request document and return the raw response text."""
        response = self.request(
            "POST",
            "/_vti_bin/client.svc/ProcessQuery",
            access_token,
            headers={"X-RequestDigest": form_digest, "Content-Type": "text/xml"},
            content=body.encode("utf-8"),
        )
        return response.text
