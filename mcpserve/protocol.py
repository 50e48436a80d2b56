"""Protocol data types, error codes, errors and JSON-RPC message envelopes."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Callable, Mapping

from .uritemplate import URITemplate

JSONRPC_VERSION = "2.0"
LATEST_PROTOCOL_VERSION = "2025-03-26"

METHOD_INITIALIZE = "initialize"
METHOD_PING = "ping"
METHOD_RESOURCES_LIST = "resources/list"
METHOD_RESOURCES_TEMPLATES_LIST = "resources/templates/list"
METHOD_RESOURCES_READ = "resources/read"
METHOD_PROMPTS_LIST = "prompts/list"
METHOD_PROMPTS_GET = "prompts/get"
METHOD_TOOLS_LIST = "tools/list"
METHOD_TOOLS_CALL = "tools/call"

NOTIFICATION_RESOURCES_LIST_CHANGED = "notifications/resources/list_changed"
NOTIFICATION_PROMPTS_LIST_CHANGED = "notifications/prompts/list_changed"
NOTIFICATION_TOOLS_LIST_CHANGED = "notifications/tools/list_changed"

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"


class ErrorCode(IntEnum):
    """JSON-RPC and protocol error codes."""

    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603
    RESOURCE_NOT_FOUND = -32002


class MCPError(Exception):
    """Base class of the errors raised by this package."""


class ToolNotFoundError(MCPError, LookupError):
    """No tool is registered under the requested name."""

    def __init__(self, name: str) -> None:
        super().__init__(f"tool '{name}' not found")
        self.name = name


class PromptNotFoundError(MCPError, LookupError):
    """No prompt is registered under the requested name."""

    def __init__(self, name: str) -> None:
        super().__init__(f"prompt '{name}' not found")
        self.name = name


class ResourceNotFoundError(MCPError, LookupError):
    """No resource or template handles the requested URI."""

    def __init__(self, uri: str) -> None:
        super().__init__(f"handler not found for resource URI '{uri}'")
        self.uri = uri


class UnsupportedError(MCPError):
    """A capability the server has not enabled was requested."""

    def __init__(self, capability: str) -> None:
        super().__init__(f"{capability} not supported")
        self.capability = capability


class UnparsableMessageError(MCPError):
    """A request whose parameters could not be decoded."""

    def __init__(self, message: str | bytes, method: str, error: BaseException) -> None:
        super().__init__(f"unparsable {method} request: {error}")
        self.message = message
        self.method = method
        self.error = error
        self.__cause__ = error


class RequestError(MCPError):
    """An error tied to a request id that becomes a JSON-RPC error response."""

    def __init__(self, request_id: Any, code: int, error: BaseException) -> None:
        super().__init__(f"request error: {error}")
        self.request_id = request_id
        self.code = ErrorCode(code) if code in ErrorCode._value2member_map_ else code
        self.error = error
        self.__cause__ = error

    def to_jsonrpc_error(self) -> JSONRPCError:
        """Build the JSON-RPC error message for this failure."""
        return JSONRPCError(id=self.request_id, code=int(self.code), message=str(self.error))


def _json_key(name: str) -> str:
    if name == "meta":
        return "_meta"
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def to_jsonable(value: Any) -> Any:
    """Convert protocol objects into plain JSON-compatible values.

    Dataclass fields that are None or False are left out, like omitted
    optional members on the wire.
    """
    if isinstance(value, URITemplate):
        return value.raw
    if isinstance(value, Enum):
        return to_jsonable(value.value)
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict) and not isinstance(value, type):
        return to_jsonable(to_dict())
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        result: dict[str, Any] = {}
        for item_field in dataclasses.fields(value):
            if not item_field.metadata.get("json", True):
                continue
            item = getattr(value, item_field.name)
            if item is None or item is False:
                continue
            result[_json_key(item_field.name)] = to_jsonable(item)
        return result
    if isinstance(value, Mapping):
        return {str(key): to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_jsonable(item) for item in value]
    return value


def _default_input_schema() -> dict[str, Any]:
    return {"type": "object", "properties": {}}


@dataclass
class Tool:
    """A tool the client may call."""

    name: str
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=_default_input_schema)
    annotations: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"name": self.name}
        if self.description:
            result["description"] = self.description
        result["inputSchema"] = to_jsonable(self.input_schema)
        if self.annotations:
            result["annotations"] = to_jsonable(self.annotations)
        return result


@dataclass
class Resource:
    """A concrete resource identified by a URI."""

    uri: str
    name: str
    description: str = ""
    mime_type: str = ""

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"uri": self.uri, "name": self.name}
        if self.description:
            result["description"] = self.description
        if self.mime_type:
            result["mimeType"] = self.mime_type
        return result


@dataclass
class ResourceTemplate:
    """A family of resources described by a URI template."""

    uri_template: URITemplate
    name: str
    description: str = ""
    mime_type: str = ""

    def __post_init__(self) -> None:
        if isinstance(self.uri_template, str):
            self.uri_template = URITemplate(self.uri_template)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"uriTemplate": self.uri_template.raw, "name": self.name}
        if self.description:
            result["description"] = self.description
        if self.mime_type:
            result["mimeType"] = self.mime_type
        return result


@dataclass
class PromptArgument:
    """An argument a prompt accepts."""

    name: str
    description: str | None = None
    required: bool = False


@dataclass
class Prompt:
    """A prompt template offered to the client."""

    name: str
    description: str = ""
    arguments: list[PromptArgument] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"name": self.name}
        if self.description:
            result["description"] = self.description
        if self.arguments:
            result["arguments"] = [to_jsonable(argument) for argument in self.arguments]
        return result


@dataclass
class TextContent:
    """Plain text content."""

    text: str
    type: str = "text"


@dataclass
class TextResourceContents:
    """Text contents of a resource."""

    uri: str
    text: str
    mime_type: str | None = None


@dataclass
class PromptMessage:
    """One message of a rendered prompt."""

    role: str
    content: Any


@dataclass
class CallToolResult:
    """The outcome of a tool call."""

    content: list[Any] = field(default_factory=list)
    is_error: bool = False
    meta: dict[str, Any] | None = None


@dataclass
class GetPromptResult:
    """A rendered prompt."""

    messages: list[PromptMessage] = field(default_factory=list)
    description: str | None = None
    meta: dict[str, Any] | None = None


@dataclass
class ServerTool:
    """A tool together with the callable that handles calls to it."""

    tool: Tool
    handler: Callable[..., Any] | None = field(default=None, metadata={"json": False})


@dataclass
class JSONRPCNotification:
    """A JSON-RPC notification sent to a client."""

    method: str
    params: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "method": self.method}
        if self.params:
            result["params"] = to_jsonable(self.params)
        return result


@dataclass
class JSONRPCResponse:
    """A successful JSON-RPC response."""

    id: Any
    result: Any

    def to_dict(self) -> dict[str, Any]:
        return {"jsonrpc": JSONRPC_VERSION, "id": self.id, "result": to_jsonable(self.result)}


@dataclass
class JSONRPCError:
    """A JSON-RPC error response."""

    id: Any
    code: int
    message: str
    data: Any = None

    def to_dict(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": int(self.code), "message": self.message}
        if self.data is not None:
            error["data"] = to_jsonable(self.data)
        return {"jsonrpc": JSONRPC_VERSION, "id": self.id, "error": error}