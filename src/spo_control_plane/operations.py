from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Dict

from .audit import JsonAuditLogger
from .auth import TokenProvider
from .csom import (
    StorageEntityRequest,
    build_set_storage_entity_request,
    parse_client_svc_response,
    raise_for_error_info,
)
from .spo_client import SharePointClient

STORAGEENTITY_SET = "spo storageentity set"


@dataclass
class TenantExecutionContext:
    tenant_id: str
    resource: str
    application_name: str
    token_provider: TokenProvider
    spo: SharePointClient
    audit: JsonAuditLogger


@dataclass
class StorageEntityResult:
    key: str
    app_catalog_url: str
    status: str = "DONE"

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


class TenantOperations:
    """Operations executed within a tenant context."""

    def __init__(self, context: TenantExecutionContext):
        self.context = context

    def set_storage_entity(self, request: StorageEntityRequest) -> StorageEntityResult:
        """Set a tenant property on the app catalog at ``request.app_catalog_url``.

        Runs token, digest and ProcessQuery strictly in sequence. Any failure
        aborts; a retry has to start again from a fresh digest.
        """
        context = self.context
        access_token = context.token_provider.ensure_access_token(context.resource)
        context_info = context.spo.get_context_info(access_token)

        context.audit.info(
            "storage_entity_set_requested",
            tenant_id=context.tenant_id,
            key=request.key,
            app_catalog_url=request.app_catalog_url,
        )
        body = build_set_storage_entity_request(request, context.application_name)
        raw = context.spo.process_query(access_token, context_info.FormDigestValue, body)

        response = parse_client_svc_response(raw)
        raise_for_error_info(response, STORAGEENTITY_SET)
        return StorageEntityResult(key=request.key, app_catalog_url=request.app_catalog_url)
