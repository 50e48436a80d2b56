import queue
from dataclasses import dataclass, field

import pytest

from mcpserve.protocol import CallToolResult, ServerTool, TextContent, Tool
from mcpserve.session import (
    BasicSession,
    Hooks,
    NotificationChannelBlockedError,
    NotificationNotInitializedError,
    SessionDoesNotSupportToolsError,
    SessionExistsError,
    SessionNotFoundError,
    SessionNotInitializedError,
    SessionRegistry,
    SessionWithTools,
    current_session,
    session_context,
)


@dataclass
class _PlainSession:
    session_id: str
    notification_channel: queue.Queue = field(default_factory=lambda: queue.Queue(maxsize=10))
    initialized: bool = False

    def initialize(self):
        self.initialized = True


def _drain(channel):
    items = []
    while True:
        try:
            items.append(channel.get_nowait())
        except queue.Empty:
            return items


def _session(session_id, size=10, initialized=True, tools=None):
    return BasicSession(
        session_id=session_id,
        notification_channel=queue.Queue(maxsize=size),
        initialized=initialized,
        tools=tools,
    )


def test_session_with_tools_integration():
    registry = SessionRegistry()

    def handler(params):
        return CallToolResult(content=[TextContent("session-tool result")])

    tool = ServerTool(Tool("session-tool"), handler)
    session = _session("session-1", tools={"session-tool": tool})
    registry.register_session(session)

    with session_context(session):
        found = current_session()
        assert found.session_id == "session-1"
        assert isinstance(found, SessionWithTools)
        tools = found.get_session_tools()
        assert "session-tool" in tools
        result = tools["session-tool"].handler({})
    assert len(result.content) == 1
    assert result.content[0].text == "session-tool result"


def test_session_context_restores_previous():
    outer = _session("outer")
    inner = _session("inner")
    assert current_session() is None
    with session_context(outer):
        with session_context(inner):
            assert current_session() is inner
        assert current_session() is outer
    assert current_session() is None


def test_add_session_tools_sends_notification():
    registry = SessionRegistry()
    session = _session("session-1")
    registry.register_session(session)
    registry.add_session_tools("session-1", ServerTool(Tool("session-tool")))
    notifications = _drain(session.notification_channel)
    assert [n.method for n in notifications] == ["notifications/tools/list_changed"]
    assert list(session.get_session_tools()) == ["session-tool"]


def test_add_session_tool():
    registry = SessionRegistry()
    session = _session("session-1")
    registry.register_session(session)

    def handler(params):
        return CallToolResult(content=[TextContent("helper result")])

    registry.add_session_tool("session-1", Tool("session-tool-helper"), handler)
    notification = session.notification_channel.get_nowait()
    assert notification.method == "notifications/tools/list_changed"
    tools = session.get_session_tools()
    assert list(tools) == ["session-tool-helper"]
    assert tools["session-tool-helper"].handler({}).content[0].text == "helper result"


def test_delete_session_tools():
    registry = SessionRegistry()
    session = _session(
        "session-1",
        tools={
            "session-tool-1": ServerTool(Tool("session-tool-1")),
            "session-tool-2": ServerTool(Tool("session-tool-2")),
        },
    )
    registry.register_session(session)
    registry.delete_session_tools("session-1", "session-tool-1")
    assert session.notification_channel.get_nowait().method == "notifications/tools/list_changed"
    assert list(session.get_session_tools()) == ["session-tool-2"]


def test_delete_session_tools_without_tools_is_silent():
    registry = SessionRegistry()
    session = _session("session-1")
    registry.register_session(session)
    registry.delete_session_tools("session-1", "anything")
    assert session.get_session_tools() is None
    assert _drain(session.notification_channel) == []


def test_session_tools_errors():
    registry = SessionRegistry()
    registry.register_session(_PlainSession("plain", initialized=True))
    with pytest.raises(SessionNotFoundError):
        registry.add_session_tools("missing", ServerTool(Tool("x")))
    with pytest.raises(SessionDoesNotSupportToolsError):
        registry.add_session_tools("plain", ServerTool(Tool("x")))
    with pytest.raises(SessionDoesNotSupportToolsError):
        registry.delete_session_tools("plain", "x")


def test_get_session_tools_returns_copy():
    session = _session("s")
    session.set_session_tools({"a": ServerTool(Tool("a"))})
    copy = session.get_session_tools()
    copy["b"] = ServerTool(Tool("b"))
    assert list(session.get_session_tools()) == ["a"]


def test_send_notification_to_specific_client():
    registry = SessionRegistry()
    session1 = _PlainSession("session-1")
    session1.initialize()
    session2 = _PlainSession("session-2")
    session2.initialize()
    session3 = _PlainSession("session-3")
    for session in (session1, session2, session3):
        registry.register_session(session)

    registry.send_notification_to_specific_client("session-1", "test-method", {"data": "test-data"})
    notification = session1.notification_channel.get_nowait()
    assert notification.method == "test-method"
    assert notification.params["data"] == "test-data"
    assert _drain(session2.notification_channel) == []

    with pytest.raises(SessionNotFoundError) as excinfo:
        registry.send_notification_to_specific_client("non-existent", "test-method", None)
    assert "not found" in str(excinfo.value)

    with pytest.raises(SessionNotInitializedError) as excinfo:
        registry.send_notification_to_specific_client("session-3", "test-method", None)
    assert "not properly initialized" in str(excinfo.value)


def test_notification_channel_blocked_reports_to_hooks():
    captured = []
    hooks = Hooks()
    hooks.add_on_error(lambda request_id, method, message, error: captured.append((message, error)))
    registry = SessionRegistry(hooks)
    session = _PlainSession("blocked-session", notification_channel=queue.Queue(maxsize=1))
    session.initialize()
    registry.register_session(session)

    registry.send_notification_to_specific_client("blocked-session", "first-message", None)
    with pytest.raises(NotificationChannelBlockedError):
        registry.send_notification_to_specific_client("blocked-session", "blocked-message", None)
    assert len(captured) == 1
    message, error = captured[0]
    assert message == {"method": "blocked-message", "session_id": "blocked-session"}
    assert isinstance(error, NotificationChannelBlockedError)

    captured.clear()
    registry.send_notification_to_all_clients("broadcast-message", None)
    assert len(captured) == 1
    message, error = captured[0]
    assert message == {"method": "broadcast-message", "session_id": "blocked-session"}
    assert isinstance(error, NotificationChannelBlockedError)


def test_send_notification_to_client_without_session():
    registry = SessionRegistry()
    with pytest.raises(NotificationNotInitializedError):
        registry.send_notification_to_client("method", None)


def test_send_notification_to_client_uninitialized_session():
    registry = SessionRegistry()
    session = _PlainSession("test")
    with session_context(session):
        with pytest.raises(NotificationNotInitializedError):
            registry.send_notification_to_client("method", None)
        assert current_session() is session


def test_send_notification_to_client_active_session():
    registry = SessionRegistry()
    session = _PlainSession("test", initialized=True)
    with session_context(session):
        for _ in range(10):
            registry.send_notification_to_client("method", None)
    records = _drain(session.notification_channel)
    assert [record.method for record in records] == ["method"] * 10


def test_send_notification_to_client_blocked_channel():
    registry = SessionRegistry()
    session = _PlainSession("test", notification_channel=queue.Queue(maxsize=1), initialized=True)
    with session_context(session):
        registry.send_notification_to_client("method", None)
        with pytest.raises(NotificationChannelBlockedError):
            registry.send_notification_to_client("method", None)


def test_send_notification_to_all_clients():
    registry = SessionRegistry()
    sessions = [_session(f"test{i}") for i in range(5)]
    for session in sessions:
        registry.register_session(session)
    for count in range(10):
        registry.send_notification_to_all_clients("method", {"count": count})
    for session in sessions:
        notifications = _drain(session.notification_channel)
        assert [n.method for n in notifications] == ["method"] * 10
        assert [n.params["count"] for n in notifications] == list(range(10))


def test_send_notification_to_all_clients_skips_uninitialized():
    registry = SessionRegistry()
    active = _session("active")
    idle = _session("idle", initialized=False)
    registry.register_session(active)
    registry.register_session(idle)
    registry.send_notification_to_all_clients("method", None)
    assert len(_drain(active.notification_channel)) == 1
    assert _drain(idle.notification_channel) == []


def test_register_duplicate_session_raises():
    registry = SessionRegistry()
    registry.register_session(_session("dup"))
    with pytest.raises(SessionExistsError):
        registry.register_session(_session("dup"))


def test_session_hooks():
    registered = []
    unregistered = []
    hooks = Hooks()
    hooks.add_on_register_session(registered.append)
    hooks.add_on_unregister_session(unregistered.append)
    registry = SessionRegistry(hooks)
    session = _PlainSession("test-session-id", notification_channel=queue.Queue(maxsize=5))

    registry.register_session(session)
    assert [s.session_id for s in registered] == ["test-session-id"]
    registry.unregister_session("test-session-id")
    assert [s.session_id for s in unregistered] == ["test-session-id"]
    registry.unregister_session("test-session-id")
    assert len(unregistered) == 1


def test_session_without_hooks_can_reregister():
    registry = SessionRegistry()
    session = _PlainSession("test-session-id")
    registry.register_session(session)
    registry.unregister_session("test-session-id")
    registry.register_session(session)
    with pytest.raises(SessionExistsError):
        registry.register_session(session)


def test_registry_distinguishes_sessions_with_tools():
    registry = SessionRegistry()
    with_tools = _session("with-tools")
    plain = _PlainSession("plain", initialized=True)
    registry.register_session(with_tools)
    registry.register_session(plain)

    registry.add_session_tools("with-tools", ServerTool(Tool("a")))
    assert list(with_tools.get_session_tools()) == ["a"]

    with pytest.raises(SessionDoesNotSupportToolsError):
        registry.add_session_tools("plain", ServerTool(Tool("a")))

    registry.send_notification_to_specific_client("plain", "ping-method", None)
    assert [n.method for n in _drain(plain.notification_channel)] == ["ping-method"]


def test_basic_session_initialize():
    session = BasicSession("s")
    assert session.initialized is False
    session.initialize()
    assert session.initialized is True
    assert session.notification_channel.maxsize == 100