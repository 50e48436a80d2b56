"""The MCP server: registries of resources, prompts and tools, and request dispatch."""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping

from .pagination import InvalidCursorError, paginate
from .protocol import (
    JSONRPC_VERSION,
    LATEST_PROTOCOL_VERSION,
    METHOD_INITIALIZE,
    METHOD_PING,
    METHOD_PROMPTS_GET,
    METHOD_PROMPTS_LIST,
    METHOD_RESOURCES_LIST,
    METHOD_RESOURCES_READ,
    METHOD_RESOURCES_TEMPLATES_LIST,
    METHOD_TOOLS_CALL,
    METHOD_TOOLS_LIST,
    NOTIFICATION_PROMPTS_LIST_CHANGED,
    NOTIFICATION_RESOURCES_LIST_CHANGED,
    NOTIFICATION_TOOLS_LIST_CHANGED,
    ErrorCode,
    JSONRPCError,
    JSONRPCNotification,
    JSONRPCResponse,
    MCPError,
    Prompt,
    PromptNotFoundError,
    RequestError,
    Resource,
    ResourceNotFoundError,
    ResourceTemplate,
    ServerTool,
    Tool,
    ToolNotFoundError,
    UnparsableMessageError,
    UnsupportedError,
)
from .session import Hooks, SessionRegistry, SessionWithTools, current_session

Handler = Callable[[dict[str, Any]], Any]
ToolMiddleware = Callable[[Handler], Handler]
ToolFilter = Callable[[list[Tool]], list[Tool]]
NotificationHandler = Callable[[JSONRPCNotification], None]


@dataclass
class ResourceCapabilities:
    """Resource features the server announces."""

    subscribe: bool = False
    list_changed: bool = False


@dataclass
class PromptCapabilities:
    """Prompt features the server announces."""

    list_changed: bool = False


@dataclass
class ToolCapabilities:
    """Tool features the server announces."""

    list_changed: bool = False


def recovery_middleware(next_handler: Handler) -> Handler:
    """Turn unexpected exceptions of a tool handler into ordinary tool errors."""

    def handler(params: dict[str, Any]) -> Any:
        try:
            return next_handler(params)
        except MCPError:
            raise
        except Exception as exc:
            name = params.get("name", "")
            raise MCPError(f"panic recovered in {name} tool handler: {exc}") from exc

    return handler


def _by_name(item: Any) -> str:
    return item.name


class MCPServer(SessionRegistry):
    """A Model Context Protocol server serving resources, prompts and tools.

    Handlers receive the request's ``params`` mapping and signal failure by
    raising :class:`MCPError`; any other exception propagates unless the
    recovery middleware is installed.
    """

    def __init__(
        self,
        name: str,
        version: str,
        *,
        resources: ResourceCapabilities | None = None,
        prompts: PromptCapabilities | None = None,
        tools: ToolCapabilities | None = None,
        logging: bool = False,
        instructions: str = "",
        pagination_limit: int | None = None,
        hooks: Hooks | None = None,
        tool_middlewares: Iterable[ToolMiddleware] = (),
        tool_filters: Iterable[ToolFilter] = (),
        recovery: bool = False,
    ) -> None:
        super().__init__(hooks)
        self.name = name
        self.version = version
        self.instructions = instructions
        self.pagination_limit = pagination_limit
        self.resource_capabilities = resources
        self.prompt_capabilities = prompts
        self.tool_capabilities = tools
        self.logging = logging
        self._lock = threading.RLock()
        self._resources: dict[str, tuple[Resource, Handler]] = {}
        self._resource_templates: dict[str, tuple[ResourceTemplate, Handler]] = {}
        self._prompts: dict[str, tuple[Prompt, Handler]] = {}
        self._tools: dict[str, ServerTool] = {}
        self._middlewares: list[ToolMiddleware] = list(tool_middlewares)
        if recovery:
            self._middlewares.append(recovery_middleware)
        self._filters: list[ToolFilter] = list(tool_filters)
        self._notification_handlers: dict[str, NotificationHandler] = {}
        self._routes: dict[str, tuple[str | None, Callable[[Any, dict[str, Any]], Any]]] = {
            METHOD_INITIALIZE: (None, self.handle_initialize),
            METHOD_PING: (None, self.handle_ping),
            METHOD_RESOURCES_LIST: ("resources", self.handle_list_resources),
            METHOD_RESOURCES_TEMPLATES_LIST: ("resources", self.handle_list_resource_templates),
            METHOD_RESOURCES_READ: ("resources", self.handle_read_resource),
            METHOD_PROMPTS_LIST: ("prompts", self.handle_list_prompts),
            METHOD_PROMPTS_GET: ("prompts", self.handle_get_prompt),
            METHOD_TOOLS_LIST: ("tools", self.handle_list_tools),
            METHOD_TOOLS_CALL: ("tools", self.handle_call_tool),
        }

    # registration

    def _ensure_resources(self) -> ResourceCapabilities:
        with self._lock:
            if self.resource_capabilities is None:
                self.resource_capabilities = ResourceCapabilities()
            return self.resource_capabilities

    def _ensure_tools(self) -> ToolCapabilities:
        with self._lock:
            if self.tool_capabilities is None:
                self.tool_capabilities = ToolCapabilities()
            return self.tool_capabilities

    def add_resource(self, resource: Resource, handler: Handler) -> None:
        """Register a resource and the handler that reads it."""
        capabilities = self._ensure_resources()
        with self._lock:
            self._resources[resource.uri] = (resource, handler)
        if capabilities.list_changed:
            self.send_notification_to_all_clients(NOTIFICATION_RESOURCES_LIST_CHANGED, None)

    def remove_resource(self, uri: str) -> None:
        """Remove the resource registered under ``uri``."""
        with self._lock:
            self._resources.pop(uri, None)
        capabilities = self.resource_capabilities
        if capabilities is not None and capabilities.list_changed:
            self.send_notification_to_all_clients(NOTIFICATION_RESOURCES_LIST_CHANGED, None)

    def add_resource_template(self, template: ResourceTemplate, handler: Handler) -> None:
        """Register a resource template and the handler for URIs it matches."""
        capabilities = self._ensure_resources()
        with self._lock:
            self._resource_templates[template.uri_template.raw] = (template, handler)
        if capabilities.list_changed:
            self.send_notification_to_all_clients(NOTIFICATION_RESOURCES_LIST_CHANGED, None)

    def add_prompt(self, prompt: Prompt, handler: Handler) -> None:
        """Register a prompt and the handler that renders it."""
        with self._lock:
            if self.prompt_capabilities is None:
                self.prompt_capabilities = PromptCapabilities()
            capabilities = self.prompt_capabilities
            self._prompts[prompt.name] = (prompt, handler)
        if capabilities.list_changed:
            self.send_notification_to_all_clients(NOTIFICATION_PROMPTS_LIST_CHANGED, None)

    def add_tool(self, tool: Tool, handler: Handler | None) -> None:
        """Register one tool and its handler."""
        self.add_tools(ServerTool(tool=tool, handler=handler))

    def add_tools(self, *tools: ServerTool) -> None:
        """Register several tools at once."""
        capabilities = self._ensure_tools()
        with self._lock:
            self._tools.update((entry.tool.name, entry) for entry in tools)
        if capabilities.list_changed:
            self.send_notification_to_all_clients(NOTIFICATION_TOOLS_LIST_CHANGED, None)

    def set_tools(self, *tools: ServerTool) -> None:
        """Replace all registered tools with ``tools``."""
        with self._lock:
            self._tools = {}
        self.add_tools(*tools)

    def delete_tools(self, *names: str) -> None:
        """Remove the named tools."""
        with self._lock:
            for name in names:
                self._tools.pop(name, None)
        capabilities = self.tool_capabilities
        if capabilities is not None and capabilities.list_changed:
            self.send_notification_to_all_clients(NOTIFICATION_TOOLS_LIST_CHANGED, None)

    def add_notification_handler(self, method: str, handler: NotificationHandler) -> None:
        """Register a handler for incoming notifications of ``method``."""
        with self._lock:
            self._notification_handlers[method] = handler

    def add_tool_middleware(self, middleware: ToolMiddleware) -> None:
        """Wrap every tool handler with ``middleware``; earlier ones run outermost."""
        with self._lock:
            self._middlewares.append(middleware)

    def add_tool_filter(self, tool_filter: ToolFilter) -> None:
        """Apply ``tool_filter`` to the tool list before it is returned."""
        with self._lock:
            self._filters.append(tool_filter)

    # dispatch

    def handle_message(
        self, message: str | bytes | Mapping[str, Any]
    ) -> JSONRPCResponse | JSONRPCError | None:
        """Handle one JSON-RPC message and return the reply, or None if there is none."""
        if isinstance(message, Mapping):
            data: Any = dict(message)
        else:
            try:
                data = json.loads(message)
            except (ValueError, TypeError):
                return JSONRPCError(None, int(ErrorCode.PARSE_ERROR), "Parse error")
        if not isinstance(data, dict):
            return JSONRPCError(None, int(ErrorCode.PARSE_ERROR), "Parse error")

        request_id = data.get("id")
        if data.get("jsonrpc") != JSONRPC_VERSION:
            return JSONRPCError(
                request_id, int(ErrorCode.INVALID_REQUEST), "Invalid JSON-RPC version"
            )

        method = data.get("method")
        if method is None and ("result" in data or "error" in data):
            return None
        if request_id is None:
            params = data.get("params")
            self.handle_notification(
                JSONRPCNotification(
                    method=method or "", params=params if isinstance(params, dict) else None
                )
            )
            return None

        route = self._routes.get(method) if isinstance(method, str) else None
        if route is None:
            return JSONRPCError(
                request_id, int(ErrorCode.METHOD_NOT_FOUND), f"Method {method} not found"
            )
        capability, handler = route

        try:
            params = data.get("params")
            if params is None:
                params = {}
            elif not isinstance(params, dict):
                raise RequestError(
                    request_id,
                    ErrorCode.INVALID_REQUEST,
                    UnparsableMessageError(
                        message, method, TypeError("params must be a JSON object")
                    ),
                )
            if capability is not None and getattr(self, f"{capability[:-1]}_capabilities") is None:
                raise RequestError(
                    request_id, ErrorCode.METHOD_NOT_FOUND, UnsupportedError(capability)
                )
            result = handler(request_id, params)
        except RequestError as exc:
            if self.hooks is not None:
                self.hooks.report_error(request_id, method, data, exc)
            return exc.to_jsonrpc_error()
        return JSONRPCResponse(id=request_id, result=result)

    def handle_notification(self, notification: JSONRPCNotification) -> None:
        """Pass an incoming notification to its registered handler, if any."""
        with self._lock:
            handler = self._notification_handlers.get(notification.method)
        if handler is not None:
            handler(notification)

    # request handlers

    def handle_initialize(self, request_id: Any, params: dict[str, Any]) -> dict[str, Any]:
        """Describe the server and its capabilities; mark the current session initialized."""
        capabilities: dict[str, Any] = {}
        if self.resource_capabilities is not None:
            flags = self.resource_capabilities
            capabilities["resources"] = {
                key: True
                for key, value in (("subscribe", flags.subscribe), ("listChanged", flags.list_changed))
                if value
            }
        if self.prompt_capabilities is not None:
            capabilities["prompts"] = (
                {"listChanged": True} if self.prompt_capabilities.list_changed else {}
            )
        if self.tool_capabilities is not None:
            capabilities["tools"] = (
                {"listChanged": True} if self.tool_capabilities.list_changed else {}
            )
        if self.logging:
            capabilities["logging"] = {}
        result: dict[str, Any] = {
            "protocolVersion": LATEST_PROTOCOL_VERSION,
            "capabilities": capabilities,
            "serverInfo": {"name": self.name, "version": self.version},
        }
        if self.instructions:
            result["instructions"] = self.instructions
        session = current_session()
        if session is not None:
            session.initialize()
        return result

    def handle_ping(self, request_id: Any, params: dict[str, Any]) -> dict[str, Any]:
        """Answer a ping with an empty result."""
        return {}

    def _page(self, request_id: Any, params: dict[str, Any], key: str, items: list[Any]) -> dict[str, Any]:
        try:
            page, next_cursor = paginate(items, params.get("cursor") or "", self.pagination_limit)
        except InvalidCursorError as exc:
            raise RequestError(request_id, ErrorCode.INVALID_PARAMS, exc) from exc
        result: dict[str, Any] = {key: page}
        if next_cursor:
            result["nextCursor"] = next_cursor
        return result

    def _invoke(self, request_id: Any, handler: Handler, params: dict[str, Any]) -> Any:
        try:
            return handler(params)
        except MCPError as exc:
            raise RequestError(request_id, ErrorCode.INTERNAL_ERROR, exc) from exc

    def handle_list_resources(self, request_id: Any, params: dict[str, Any]) -> dict[str, Any]:
        """List registered resources sorted by name, one page at a time."""
        with self._lock:
            resources = sorted((entry[0] for entry in self._resources.values()), key=_by_name)
        return self._page(request_id, params, "resources", resources)

    def handle_list_resource_templates(self, request_id: Any, params: dict[str, Any]) -> dict[str, Any]:
        """List registered resource templates sorted by name, one page at a time."""
        with self._lock:
            templates = sorted((entry[0] for entry in self._resource_templates.values()), key=_by_name)
        return self._page(request_id, params, "resourceTemplates", templates)

    def handle_read_resource(self, request_id: Any, params: dict[str, Any]) -> dict[str, Any]:
        """Read a resource by URI, falling back to the first matching template."""
        uri = params.get("uri", "")
        with self._lock:
            entry = self._resources.get(uri)
            templates = list(self._resource_templates.values())
        if entry is not None:
            return {"contents": list(self._invoke(request_id, entry[1], params))}
        for template, handler in templates:
            variables = template.uri_template.match(uri)
            if variables is not None:
                request = {**params, "arguments": variables}
                return {"contents": list(self._invoke(request_id, handler, request))}
        raise RequestError(request_id, ErrorCode.RESOURCE_NOT_FOUND, ResourceNotFoundError(uri))

    def handle_list_prompts(self, request_id: Any, params: dict[str, Any]) -> dict[str, Any]:
        """List registered prompts sorted by name, one page at a time."""
        with self._lock:
            prompts = sorted((entry[0] for entry in self._prompts.values()), key=_by_name)
        return self._page(request_id, params, "prompts", prompts)

    def handle_get_prompt(self, request_id: Any, params: dict[str, Any]) -> Any:
        """Render the named prompt."""
        name = params.get("name", "")
        with self._lock:
            entry = self._prompts.get(name)
        if entry is None:
            raise RequestError(request_id, ErrorCode.INVALID_PARAMS, PromptNotFoundError(name))
        return self._invoke(request_id, entry[1], params)

    def handle_list_tools(self, request_id: Any, params: dict[str, Any]) -> dict[str, Any]:
        """List tools, with the current session's tools overriding global ones."""
        with self._lock:
            merged = {name: entry.tool for name, entry in self._tools.items()}
            filters = list(self._filters)
        session = current_session()
        if isinstance(session, SessionWithTools):
            session_tools = session.get_session_tools()
            if session_tools is not None:
                merged.update((name, entry.tool) for name, entry in session_tools.items())
        tools = [merged[name] for name in sorted(merged)]
        for tool_filter in filters:
            tools = list(tool_filter(tools))
        return self._page(request_id, params, "tools", tools)

    def handle_call_tool(self, request_id: Any, params: dict[str, Any]) -> Any:
        """Call the named tool through the middleware chain."""
        name = params.get("name", "")
        entry: ServerTool | None = None
        session = current_session()
        if isinstance(session, SessionWithTools):
            entry = (session.get_session_tools() or {}).get(name)
        if entry is None:
            with self._lock:
                entry = self._tools.get(name)
        if entry is None:
            raise RequestError(request_id, ErrorCode.INVALID_PARAMS, ToolNotFoundError(name))
        with self._lock:
            middlewares = list(self._middlewares)
        handler = entry.handler
        for middleware in reversed(middlewares):
            handler = middleware(handler)
        return self._invoke(request_id, handler, params)