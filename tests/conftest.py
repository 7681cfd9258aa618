import json
import logging
from typing import Callable, List

import httpx
import pytest

from spo_control_plane.audit import InMemoryAuditStore, JsonAuditLogger
from spo_control_plane.config import ControlPlaneConfig, TenantConfig

TENANT_ID = "contoso-tenant"
ADMIN_URL = "https://contoso-admin.sharepoint.com"
APP_CATALOG_URL = "https://contoso.sharepoint.com/sites/appcatalog"


class FakeTokenProvider:
    def __init__(self, token: str = "token-123"):
        self.token = token
        self.resources: List[str] = []

    def ensure_access_token(self, resource: str) -> str:
        self.resources.append(resource)
        return self.token


class SharePointStub:
    """Answers contextinfo and ProcessQuery, recording every request."""

    def __init__(self, digest_body=None, process_query_body=None, digest_status=200, process_query_status=200):
        self.digest_body = {"FormDigestValue": "abc123"} if digest_body is None else digest_body
        self.process_query_body = (
            [{"SchemaVersion": "15.0.0.0", "LibraryVersion": "16.0.0.0"}]
            if process_query_body is None
            else process_query_body
        )
        self.digest_status = digest_status
        self.process_query_status = process_query_status
        self.requests: List[httpx.Request] = []

    @staticmethod
    def _content(body) -> bytes:
        if isinstance(body, (bytes, str)):
            return body if isinstance(body, bytes) else body.encode("utf-8")
        return json.dumps(body).encode("utf-8")

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path.endswith("/_api/contextinfo"):
            return httpx.Response(self.digest_status, content=self._content(self.digest_body))
        if request.url.path.endswith("/_vti_bin/client.svc/ProcessQuery"):
            return httpx.Response(self.process_query_status, content=self._content(self.process_query_body))
        return httpx.Response(404)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture(autouse=True)
def reset_audit_handlers():
    yield
    for name in ("spo_control_plane", "spo_control_plane.tests"):
        logging.getLogger(name).handlers.clear()


@pytest.fixture
def tenant_config() -> TenantConfig:
    return TenantConfig(
        tenant_id=TENANT_ID,
        display_name="Contoso",
        admin_site_url=ADMIN_URL,
        auth={"type": "client_secret", "client_id": "app-id", "client_secret": {"value": "s3cret"}},
        application_name="spo-control-plane",
    )


@pytest.fixture
def control_plane_config(tenant_config) -> ControlPlaneConfig:
    return ControlPlaneConfig(tenants=[tenant_config])


@pytest.fixture
def audit_store() -> InMemoryAuditStore:
    return InMemoryAuditStore()


@pytest.fixture
def audit_logger(audit_store) -> JsonAuditLogger:
    return JsonAuditLogger(name="spo_control_plane.tests", store=audit_store)


@pytest.fixture
def token_provider() -> FakeTokenProvider:
    return FakeTokenProvider()


@pytest.fixture
def make_stub() -> Callable[..., SharePointStub]:
    return SharePointStub


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "tenants.yaml"
    path.write_text(
        f"""
tenants:
  - tenant_id: {TENANT_ID}
    admin_site_url: {ADMIN_URL}
    auth:
      type: client_secret
      client_id: app-id
      client_secret:
        value: s3cret
""",
        encoding="utf-8",
    )
    return path
