# mcpserve

`mcpserve` is the core of a Model Context Protocol (MCP) server. It is written in plain Python and needs only the standard library.

It takes JSON-RPC 2.0 messages and dispatches them to registered tools, prompts, resources and resource templates. It also keeps track of client sessions and sends notifications to them.

## Modules

- `mcpserve.protocol`: protocol data types and JSON-RPC envelopes.
  - Data types: `Tool`, `Resource`, `ResourceTemplate`, `Prompt`, `PromptArgument`, `PromptMessage`, `TextContent`, `TextResourceContents`, `CallToolResult`, `GetPromptResult` and `ServerTool`.
  - Envelopes: `JSONRPCResponse`, `JSONRPCError` and `JSONRPCNotification`.
  - Error codes: `ErrorCode`.
  - Errors: `MCPError`, `RequestError`, `ToolNotFoundError`, `PromptNotFoundError`, `ResourceNotFoundError`, `UnsupportedError` and `UnparsableMessageError`.
  - `to_jsonable()` turns these objects into plain JSON values.
- `mcpserve.uritemplate`: the `URITemplate` class for RFC 6570 URI templates.
  - `matches(uri)` tells whether a URI is an expansion of the template.
  - `match(uri)` returns the decoded variables, as a mapping from name to a list of strings, or `None` when the URI does not match.
- `mcpserve.pagination`: cursor pagination over items that have a `name`.
  - `paginate`, `encode_cursor` and `decode_cursor` do the paging.
  - A cursor that is not valid base64 raises `InvalidCursorError`.
- `mcpserve.session`: client sessions and their notifications.
  - `ClientSession` and `SessionWithTools` are the session protocols.
  - `BasicSession` is a thread-safe in-memory session.
  - `session_context()` and `current_session()` bind a session to the current context and read it back.
  - `Hooks` holds the callbacks, and `SessionRegistry` sends the notifications.
- `mcpserve.server`: `MCPServer`, which is a `SessionRegistry`.
  - The capability settings are `ResourceCapabilities`, `PromptCapabilities` and `ToolCapabilities`.
  - `recovery_middleware` turns unexpected exceptions in tool handlers into errors.
- `mcpserve.sse_session`: building blocks for a Server-Sent Events transport.
  - `SSESession` is a session with an event queue, per-session tools and `close()`.
  - `format_sse_event` renders one event frame.
  - `normalize_url_path` joins path elements so that the result always starts with a slash and never ends with one.
  - `DynamicPathConfigError` is the error for operations that need a static base path.

## Installation

```
pip install mcpserve
```

To install the test dependencies as well:

```
pip install "mcpserve[test]"
```

## Defining a server

Every handler is called with the request's `params` mapping. A handler reports a failure by raising `MCPError`, and the client then receives an `INTERNAL_ERROR`. Any other exception propagates to the caller. With `recovery=True`, an exception raised by a tool handler becomes an `INTERNAL_ERROR` reading `panic recovered in <name> tool handler: ...`.

```python
from mcpserve.protocol import (
    CallToolResult, GetPromptResult, Prompt, PromptArgument, PromptMessage,
    Resource, ResourceTemplate, TextContent, TextResourceContents, Tool,
)
from mcpserve.server import MCPServer, PromptCapabilities, ToolCapabilities

server = MCPServer(
    "demo-server",
    "1.0.0",
    tools=ToolCapabilities(list_changed=True),
    prompts=PromptCapabilities(list_changed=True),
    logging=True,
    instructions="Ask for a greeting.",
    pagination_limit=50,
    recovery=True,
)

def greet(params):
    name = params.get("arguments", {}).get("name", "world")
    return CallToolResult(content=[TextContent(text=f"Hello, {name}!")])

server.add_tool(Tool(name="greet", description="Say hello"), greet)

server.add_resource(
    Resource(uri="resource://motd", name="Message of the day"),
    lambda params: [TextResourceContents(uri="resource://motd", text="Have a nice day",
                                         mime_type="text/plain")],
)

# Template variables arrive in params["arguments"] as lists of strings.
server.add_resource_template(
    ResourceTemplate(uri_template="users://{id}/profile", name="User profile"),
    lambda params: [TextResourceContents(uri=params["uri"],
                                         text=f"profile of {params['arguments']['id'][0]}")],
)

server.add_prompt(
    Prompt(name="summary", description="Summarise a topic",
           arguments=[PromptArgument(name="topic", description="What to summarise")]),
    lambda params: GetPromptResult(messages=[PromptMessage(
        role="assistant",
        content=TextContent(text="Summary of " + params.get("arguments", {}).get("topic", "")),
    )]),
)
```

Registering a tool, resource or prompt turns on the matching capability if it is not on already.

The server also has these registration methods:

- `set_tools` replaces every registered tool.
- `delete_tools` and `remove_resource` take entries away.
- `add_tool_middleware` wraps every tool handler. Earlier middlewares run outermost.
- `add_tool_filter` transforms the tool list before it is paginated.
- `add_notification_handler` handles incoming notifications.

When a capability has `list_changed` set, every change to its list sends the matching `notifications/.../list_changed` notification to all initialized sessions.

## Handling messages

`handle_message` accepts a message as `str`, `bytes` or an already decoded mapping. It returns one of these:

- a `JSONRPCResponse` on success;
- a `JSONRPCError` on failure;
- `None` for notifications and for incoming responses.

Call `to_dict()` on the reply to get its JSON form.

```python
reply = server.handle_message('{"jsonrpc": "2.0", "id": 1, "method": "tools/list"}')
print(reply.to_dict())
```

The supported methods are:

- `initialize`
- `ping`
- `resources/list`
- `resources/templates/list`
- `resources/read`
- `prompts/list`
- `prompts/get`
- `tools/list`
- `tools/call`

Lists are sorted by name. When `pagination_limit` is set, lists come back in pages with a `nextCursor`.

Error codes, all members of `ErrorCode`:

| Code | When |
| --- | --- |
| `PARSE_ERROR` | The message is not valid JSON or not a JSON object. |
| `INVALID_REQUEST` | `jsonrpc` is not `"2.0"`, or `params` is not an object. |
| `METHOD_NOT_FOUND` | The method is unknown, or the server has no capability for it. |
| `INVALID_PARAMS` | The tool or prompt is unknown, or the pagination cursor is invalid. |
| `RESOURCE_NOT_FOUND` | No resource or template matches the URI. |
| `INTERNAL_ERROR` | A handler raised `MCPError`. |

Failures of known methods are also passed to every `on_error` hook, as `(request_id, method, message, error)`. Here `error` is a `RequestError`, and its `error` attribute holds the underlying exception, for example a `ToolNotFoundError`.

```python
from mcpserve.session import Hooks

hooks = Hooks()
hooks.add_on_error(lambda request_id, method, message, error: print(method, error))
server = MCPServer("demo-server", "1.0.0", hooks=hooks)
```

## Sessions and notifications

A session is any object that has these members:

- `session_id`;
- `notification_channel`, a `queue.Queue`;
- `initialized`;
- `initialize()`.

A session that also has `get_session_tools()` and `set_session_tools()` can carry tools of its own. During `tools/list` and `tools/call`, those tools override global tools with the same name.

```python
from mcpserve.protocol import Tool
from mcpserve.session import BasicSession, session_context

session = BasicSession("session-1")
server.register_session(session)

with session_context(session):
    server.handle_message('{"jsonrpc": "2.0", "id": 1, "method": "initialize"}')
    server.send_notification_to_client("notifications/message", {"text": "hi"})

server.send_notification_to_specific_client("session-1", "notifications/message", None)
server.send_notification_to_all_clients("notifications/message", None)
server.add_session_tool("session-1", Tool(name="private"), greet)

notification = session.notification_channel.get_nowait()  # a JSONRPCNotification
```

Registering a session twice raises `SessionExistsError`. Hooks registered with `add_on_register_session` and `add_on_unregister_session` run when a session is registered or unregistered.

`send_notification_to_client` raises `NotificationNotInitializedError` when no initialized session is bound to the current context.

`send_notification_to_specific_client` raises these errors:

- `SessionNotFoundError` when no session has the given id;
- `SessionNotInitializedError` when the session has not been initialized.

Both methods raise `NotificationChannelBlockedError` when the session's queue is full, and they also report this to the `on_error` hooks. `send_notification_to_all_clients` only reports it.

Per-session tool changes send `notifications/tools/list_changed` to that session alone. A session without tool support raises `SessionDoesNotSupportToolsError`.

## What the package does not do

The package has no HTTP server and does not listen on a socket. It provides no command to start one either.

`mcpserve.sse_session` supplies these pieces for a Server-Sent Events transport:

- the per-connection `SSESession`;
- event framing with `format_sse_event`;
- path joining with `normalize_url_path`.

Accepting connections, streaming events and routing posted messages into `MCPServer.handle_message` are left to the application.

## Running the tests

```
pytest
```