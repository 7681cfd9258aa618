from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import ValidationError

from spo_control_plane.audit import JsonAuditLogger
from spo_control_plane.config import ControlPlaneConfig
from spo_control_plane.csom import StorageEntityRequest
from spo_control_plane.errors import ControlPlaneError, RemoteOperationError
from spo_control_plane.tenant_manager import TenantManager

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INVALID_INPUT = 2

EPILOG = """\
Tenant properties are stored in the app catalog site associated with the tenant.
Specify the absolute URL of that app catalog site; any other site URL fails
with an access denied error. The tenant must be configured with its admin site
(e.g. https://contoso-admin.sharepoint.com).

example:
  %(prog)s --config tenants.yaml --tenant-id contoso -k AnalyticsId -v 123 \\
      -d "Web analytics ID" -c "Use on all sites" \\
      -u https://contoso.sharepoint.com/sites/appcatalog

SharePoint Framework tenant properties:
  https://docs.microsoft.com/en-us/sharepoint/dev/spfx/tenant-properties
"""


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Sets tenant property on the specified SharePoint Online app catalog",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config", required=True, help="Path to tenant configuration YAML")
    parser.add_argument("--tenant-id", required=True, help="Tenant ID to target")
    parser.add_argument(
        "-u", "--appCatalogUrl", dest="app_catalog_url", required=True, help="URL of the app catalog site"
    )
    parser.add_argument("-k", "--key", required=True, help="Name of the tenant property to set")
    parser.add_argument("-v", "--value", required=True, help="Value to set for the property")
    parser.add_argument("-d", "--description", default="", help="Description to set for the property")
    parser.add_argument("-c", "--comment", default="", help="Comment to set for the property")
    parser.add_argument("--output", choices=["text", "json"], default="text", help="Output format")
    parser.add_argument("--verbose", action="store_true", help="Log request and response details")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    try:
        request = StorageEntityRequest(
            app_catalog_url=args.app_catalog_url,
            key=args.key,
            value=args.value,
            description=args.description,
            comment=args.comment,
        )
    except ValidationError as exc:
        for error in exc.errors():
            print(f"Error: {error['msg']}", file=sys.stderr)
        return EXIT_INVALID_INPUT

    try:
        config = ControlPlaneConfig.load(Path(args.config))
    except (FileNotFoundError, yaml.YAMLError, ValidationError) as exc:
        print(f"Error: invalid configuration {args.config}: {exc}", file=sys.stderr)
        return EXIT_INVALID_INPUT

    audit_logger = JsonAuditLogger(verbose=args.verbose)
    manager = TenantManager(config, audit_logger=audit_logger)

    if args.output == "text":
        print(f"Setting tenant property {request.key} in {request.app_catalog_url}...")

    try:
        result = manager.run_operation(
            tenant_id=args.tenant_id,
            operation=lambda ops: ops.set_storage_entity(request),
        )
    except KeyError as exc:
        print(f"Error: {exc.args[0]}", file=sys.stderr)
        return EXIT_INVALID_INPUT
    except ControlPlaneError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        if isinstance(exc, RemoteOperationError) and exc.hint:
            print("", file=sys.stderr)
            print(exc.hint, file=sys.stderr)
        return EXIT_FAILED

    if args.output == "json":
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print(result.status)
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
