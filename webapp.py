from __future__ import annotations

import os
import uuid
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from flask import Flask, jsonify, request
from pydantic import ValidationError

from spo_control_plane.audit import InMemoryAuditStore, JsonAuditLogger
from spo_control_plane.config import ControlPlaneConfig
from spo_control_plane.csom import StorageEntityRequest
from spo_control_plane.errors import AuthError, ControlPlaneError, RemoteOperationError
from spo_control_plane.tenant_manager import TenantManager


def _error(message: str, status: int, **extra: Any) -> Tuple[Any, int]:
    payload: Dict[str, Any] = {"error": message}
    payload.update({k: v for k, v in extra.items() if v is not None})
    return jsonify(payload), status


def _parse_limit(raw: Optional[str]) -> int:
    try:
        return int(raw) if raw else 100
    except ValueError:
        return 100


def create_app(
    config_path: str | os.PathLike[str] = "config/tenants.yaml",
    manager: Optional[TenantManager] = None,
    audit_store: Optional[InMemoryAuditStore] = None,
) -> Flask:
    audit_store = audit_store or InMemoryAuditStore()
    if manager is None:
        config = ControlPlaneConfig.load(Path(config_path))
        manager = TenantManager(config, audit_logger=JsonAuditLogger(store=audit_store))

    app = Flask(__name__)
    app.config["TENANT_MANAGER"] = manager
    app.config["AUDIT_STORE"] = audit_store

    @app.get("/tenants")
    def tenants():
        return jsonify(
            {
                "tenants": [
                    {
                        "tenant_id": tenant.tenant_id,
                        "display_name": tenant.display_name,
                        "admin_site_url": tenant.admin_site_url,
                    }
                    for tenant in manager.config.tenants
                ]
            }
        )

    @app.post("/storage-entities")
    def set_storage_entity():
        body = request.get_json(silent=True)
        if body is None:
            body = {}
        if not isinstance(body, dict):
            return _error("Request body must be a JSON object", 400)
        tenant_id = body.pop("tenant_id", None)
        correlation_id = str(uuid.uuid4())

        if not tenant_id or not isinstance(tenant_id, str):
            return _error("tenant_id is required and must be a string", 400)

        try:
            entity = StorageEntityRequest(**body)
        except ValidationError as exc:
            return _error("Invalid storage entity request", 400, details=[e["msg"] for e in exc.errors()])

        try:
            result = manager.run_operation(
                tenant_id=tenant_id,
                correlation_id=correlation_id,
                operation=lambda ops: ops.set_storage_entity(entity),
            )
        except KeyError as exc:
            return _error(exc.args[0], 404, correlation_id=correlation_id)
        except AuthError as exc:
            return _error(exc.message, 401, correlation_id=correlation_id)
        except RemoteOperationError as exc:
            return _error(exc.message, 502, hint=exc.hint, correlation_id=correlation_id)
        except ControlPlaneError as exc:
            return _error(exc.message, 502, correlation_id=correlation_id)

        payload = result.to_dict()
        payload["correlation_id"] = correlation_id
        return jsonify(payload)

    @app.get("/audit.json")
    def audit_json():
        events = audit_store.list(limit=_parse_limit(request.args.get("limit")))
        payload = [event.to_dict() for event in events]
        return jsonify({"events": payload, "count": len(payload)})

    return app


if __name__ == "__main__":
    app = create_app()
    app.run(host="0.0.0.0", port=int(os.getenv("PORT", 5000)), debug=True)
