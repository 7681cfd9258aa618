from __future__ import annotations

import logging
import uuid
from typing import Callable, Dict, Optional, TypeVar
from urllib.parse import urlsplit

import httpx

from .audit import JsonAuditLogger
from .auth import SharePointAuthenticator, TokenProvider
from .config import ControlPlaneConfig, TenantConfig
from .errors import AuthError, ControlPlaneError
from .operations import TenantExecutionContext, TenantOperations
from .spo_client import SharePointClient

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_tenant_admin_site(url: str) -> bool:
    host = urlsplit(url).hostname or ""
    return "-admin." in host


class TenantManager:
    """Central orchestrator for tenant onboarding, validation, and operations.

    ``token_provider`` and ``transport`` replace the per-tenant authenticator
    and the network transport; both are meant for tests and embedding.
    """

    def __init__(
        self,
        config: ControlPlaneConfig,
        audit_logger: Optional[JsonAuditLogger] = None,
        token_provider: Optional[TokenProvider] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.config = config
        self.audit = audit_logger or JsonAuditLogger()
        self.token_provider = token_provider
        self.transport = transport
        self._tenant_cache: Dict[str, TenantConfig] = {tenant.tenant_id: tenant for tenant in config.tenants}

    def get_tenant(self, tenant_id: str) -> TenantConfig:
        tenant = self._tenant_cache.get(tenant_id)
        if not tenant:
            raise KeyError(f"Tenant {tenant_id} is not configured")
        return tenant

    def onboard_tenant(self, tenant: TenantConfig) -> None:
        self._tenant_cache[tenant.tenant_id] = tenant
        self.audit.info("tenant_onboarded", tenant_id=tenant.tenant_id, display_name=tenant.display_name)

    def offboard_tenant(self, tenant_id: str) -> None:
        self._tenant_cache.pop(tenant_id, None)
        self.audit.info("tenant_offboarded", tenant_id=tenant_id)

    def validate_permissions(self, tenant: TenantConfig) -> None:
        # Storage entities can only be managed through the tenant admin site.
        if not is_tenant_admin_site(tenant.admin_site_url):
            raise AuthError(
                "This command requires tenant admin permissions. "
                f"Configure the tenant admin site (e.g. https://contoso-admin.sharepoint.com) "
                f"instead of {tenant.admin_site_url}"
            )
        self.audit.info("tenant_validated", tenant_id=tenant.tenant_id, admin_site_url=tenant.admin_site_url)

    def with_context(self, tenant_id: str) -> TenantExecutionContext:
        tenant = self.get_tenant(tenant_id)
        self.validate_permissions(tenant)
        token_provider = self.token_provider or SharePointAuthenticator(tenant, self.audit)
        spo = SharePointClient(tenant_config=tenant, audit_logger=self.audit, transport=self.transport)
        return TenantExecutionContext(
            tenant_id=tenant.tenant_id,
            resource=tenant.resource,
            application_name=tenant.application_name,
            token_provider=token_provider,
            spo=spo,
            audit=self.audit,
        )

    def run_operation(
        self,
        tenant_id: str,
        operation: Callable[[TenantOperations], T],
        correlation_id: Optional[str] = None,
    ) -> T:
        correlation_id = correlation_id or str(uuid.uuid4())
        context = self.with_context(tenant_id)
        self.audit.info("operation_started", tenant_id=tenant_id, correlation_id=correlation_id)
        try:
            result = operation(TenantOperations(context))
        except ControlPlaneError as exc:
            self.audit.error(
                "operation_failed",
                tenant_id=tenant_id,
                correlation_id=correlation_id,
                error_type=type(exc).__name__,
                error=exc.message,
            )
            raise
        finally:
            context.spo.close()
        self.audit.info("operation_completed", tenant_id=tenant_id, correlation_id=correlation_id)
        return result
