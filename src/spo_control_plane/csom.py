"""Client-side object model (CSOM) ``ProcessQuery`` request encoding.

A request is an ``<Actions>`` list and an ``<ObjectPaths>`` graph. Object
paths refer to their parent by integer id; actions refer to object paths the
same way. The builder allocates ids and refuses references to ids it has not
defined, so a rendered document is always internally consistent.

User-supplied text only enters a document through ``StringParameter`` or an
escaped attribute, both of which go through ``escape_xml``.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .config import is_valid_site_url
from .errors import ProtocolError, RemoteOperationError

CLIENT_QUERY_NAMESPACE = "http://schemas.microsoft.com/sharepoint/clientquery/2009"
SCHEMA_VERSION = "15.0.0.0"
LIBRARY_VERSION = "16.0.0.0"

# Microsoft.Online.SharePoint.TenantAdministration.Tenant
TENANT_TYPE_ID = "{268004ae-ef6b-4e9b-8425-127220d84719}"

ACCESS_DENIED_MARKER = "Access denied."

_XML_ESCAPES = (
    ("&", "&amp;"),
    ("<", "&lt;"),
    (">", "&gt;"),
    ("'", "&apos;"),
    ('"', "&quot;"),
)


def escape_xml(value: str) -> str:
    for char, entity in _XML_ESCAPES:
        value = value.replace(char, entity)
    return value


@dataclass(frozen=True)
class StringParameter:
    value: str

    def to_xml(self) -> str:
        return f'<Parameter Type="String">{escape_xml(self.value)}</Parameter>'


Parameter = StringParameter


def _parameters_xml(parameters: Sequence[Parameter]) -> str:
    return "<Parameters>" + "".join(p.to_xml() for p in parameters) + "</Parameters>"


@dataclass(frozen=True)
class ConstructorPath:
    id: int
    type_id: str

    def to_xml(self) -> str:
        return f'<Constructor Id="{self.id}" TypeId="{escape_xml(self.type_id)}" />'


@dataclass(frozen=True)
class MethodPath:
    id: int
    parent_id: int
    name: str
    parameters: Sequence[Parameter] = ()

    def to_xml(self) -> str:
        return (
            f'<Method Id="{self.id}" ParentId="{self.parent_id}" Name="{escape_xml(self.name)}">'
            f"{_parameters_xml(self.parameters)}</Method>"
        )


@dataclass(frozen=True)
class PropertyPath:
    id: int
    parent_id: int
    name: str

    def to_xml(self) -> str:
        return f'<Property Id="{self.id}" ParentId="{self.parent_id}" Name="{escape_xml(self.name)}" />'


ObjectPath = Union[ConstructorPath, MethodPath, PropertyPath]


@dataclass(frozen=True)
class ObjectPathAction:
    id: int
    object_path_id: int

    def to_xml(self) -> str:
        return f'<ObjectPath Id="{self.id}" ObjectPathId="{self.object_path_id}" />'


@dataclass(frozen=True)
class MethodAction:
    id: int
    object_path_id: int
    name: str
    parameters: Sequence[Parameter] = ()

    def to_xml(self) -> str:
        return (
            f'<Method Name="{escape_xml(self.name)}" Id="{self.id}" ObjectPathId="{self.object_path_id}">'
            f"{_parameters_xml(self.parameters)}</Method>"
        )


Action = Union[ObjectPathAction, MethodAction]


@dataclass
class ProcessQueryBuilder:
    """Builds one ``ProcessQuery`` request document.

    Each ``add_*_path`` call defines an object path, queues an ``ObjectPath``
    action for it and returns the path id for use as a parent or target.
    """

    application_name: str
    first_id: int = 23
    actions: List[Action] = field(default_factory=list)
    object_paths: List[ObjectPath] = field(default_factory=list)
    _next_id: int = field(init=False)

    def __post_init__(self) -> None:
        self._next_id = self.first_id

    def _allocate(self) -> int:
        allocated = self._next_id
        self._next_id += 1
        return allocated

    def _require_path(self, path_id: int) -> None:
        if not any(path.id == path_id for path in self.object_paths):
            raise ValueError(f"Object path {path_id} is not defined in this request")

    def _register(self, path: ObjectPath) -> int:
        self.object_paths.append(path)
        self.actions.append(ObjectPathAction(id=self._allocate(), object_path_id=path.id))
        return path.id

    def add_constructor(self, type_id: str) -> int:
        return self._register(ConstructorPath(id=self._allocate(), type_id=type_id))

    def add_method_path(self, parent_id: int, name: str, parameters: Sequence[Parameter] = ()) -> int:
        self._require_path(parent_id)
        return self._register(
            MethodPath(id=self._allocate(), parent_id=parent_id, name=name, parameters=tuple(parameters))
        )

    def add_property_path(self, parent_id: int, name: str) -> int:
        self._require_path(parent_id)
        return self._register(PropertyPath(id=self._allocate(), parent_id=parent_id, name=name))

    def call_method(self, object_path_id: int, name: str, parameters: Sequence[Parameter] = ()) -> int:
        self._require_path(object_path_id)
        action = MethodAction(
            id=self._allocate(),
            object_path_id=object_path_id,
            name=name,
            parameters=tuple(parameters),
        )
        self.actions.append(action)
        return action.id

    def to_xml(self) -> str:
        return (
            f'<Request AddExpandoFieldTypeSuffix="true" SchemaVersion="{SCHEMA_VERSION}" '
            f'LibraryVersion="{LIBRARY_VERSION}" ApplicationName="{escape_xml(self.application_name)}" '
            f'xmlns="{CLIENT_QUERY_NAMESPACE}">'
            "<Actions>" + "".join(a.to_xml() for a in self.actions) + "</Actions>"
            "<ObjectPaths>" + "".join(p.to_xml() for p in self.object_paths) + "</ObjectPaths>"
            "</Request>"
        )


class StorageEntityRequest(BaseModel):
    """Parameters of one ``SetStorageEntity`` call."""

    app_catalog_url: str
    key: str = Field(min_length=1)
    value: str
    description: str = ""
    comment: str = ""

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("app_catalog_url")
    @classmethod
    def validate_app_catalog_url(cls, value: str) -> str:
        if not is_valid_site_url(value):
            raise ValueError(f"{value} is not a valid SharePoint Online site URL")
        return value

    @field_validator("description", "comment", mode="before")
    @classmethod
    def default_empty(cls, value: Optional[str]) -> str:
        return "" if value is None else value


def build_set_storage_entity_request(request: StorageEntityRequest, application_name: str) -> str:
    """Render ``Tenant.GetSiteByUrl(url).RootWeb.SetStorageEntity(...)``."""
    builder = ProcessQueryBuilder(application_name=application_name)
    tenant = builder.add_constructor(TENANT_TYPE_ID)
    site = builder.add_method_path(tenant, "GetSiteByUrl", [StringParameter(request.app_catalog_url)])
    root_web = builder.add_property_path(site, "RootWeb")
    builder.call_method(
        root_web,
        "SetStorageEntity",
        [
            StringParameter(request.key),
            StringParameter(request.value),
            StringParameter(request.description),
            StringParameter(request.comment),
        ],
    )
    return builder.to_xml()


class CsomErrorInfo(BaseModel):
    ErrorMessage: str
    ErrorValue: Optional[Any] = None
    TraceCorrelationId: Optional[str] = None
    ErrorCode: Optional[int] = None
    ErrorTypeName: Optional[str] = None
    ErrorDetails: Optional[Any] = None

    model_config = ConfigDict(extra="allow")


class ClientSvcResponseContents(BaseModel):
    SchemaVersion: Optional[str] = None
    LibraryVersion: Optional[str] = None
    ErrorInfo: Optional[CsomErrorInfo] = None
    TraceCorrelationId: Optional[str] = None

    model_config = ConfigDict(extra="allow")


@dataclass
class ClientSvcResponse:
    """Decoded ``ProcessQuery`` response: the header object plus raw items."""

    contents: ClientSvcResponseContents
    items: List[Any]

    @property
    def error_info(self) -> Optional[CsomErrorInfo]:
        return self.contents.ErrorInfo


def parse_client_svc_response(text: str) -> ClientSvcResponse:
    try:
        payload = json.loads(text)
    except ValueError as exc:
        raise ProtocolError(f"ProcessQuery response is not valid JSON: {exc}") from exc

    if not isinstance(payload, list) or not payload or not isinstance(payload[0], dict):
        raise ProtocolError("ProcessQuery response is not a JSON array starting with an object")

    try:
        contents = ClientSvcResponseContents.model_validate(payload[0])
    except ValidationError as exc:
        raise ProtocolError(f"Unexpected ProcessQuery response header: {exc}") from exc

    return ClientSvcResponse(contents=contents, items=payload)


def access_denied_hint(command_name: str) -> str:
    return (
        "This error is often caused by invalid URL of the app catalog site. "
        f"Verify, that the URL you specified as an argument of the {command_name} "
        "command is a valid app catalog URL and try again."
    )


def raise_for_error_info(response: ClientSvcResponse, command_name: str) -> None:
    error = response.error_info
    if error is None:
        return

    hint = access_denied_hint(command_name) if ACCESS_DENIED_MARKER in error.ErrorMessage else None
    raise RemoteOperationError(
        error.ErrorMessage,
        hint=hint,
        error_code=error.ErrorCode,
        error_type=error.ErrorTypeName,
        correlation_id=error.TraceCorrelationId or response.contents.TraceCorrelationId,
    )
