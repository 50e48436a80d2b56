"""Client sessions, session hooks and delivery of notifications to sessions."""

from __future__ import annotations

import contextvars
import queue
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Protocol, runtime_checkable

from .protocol import (
    NOTIFICATION_TOOLS_LIST_CHANGED,
    JSONRPCNotification,
    MCPError,
    ServerTool,
    Tool,
)

DEFAULT_NOTIFICATION_BUFFER = 100


class SessionError(MCPError):
    """Base class of session related errors."""


class SessionExistsError(SessionError):
    """A session with the same id is already registered."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"session already exists: {session_id}")
        self.session_id = session_id


class SessionNotFoundError(SessionError, LookupError):
    """No session is registered under the given id."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"session not found: {session_id}")
        self.session_id = session_id


class SessionNotInitializedError(SessionError):
    """The session exists but has not completed initialization."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"session not properly initialized: {session_id}")
        self.session_id = session_id


class NotificationNotInitializedError(SessionError):
    """There is no initialized session in the current context."""

    def __init__(self) -> None:
        super().__init__("notification channel not initialized")


class NotificationChannelBlockedError(SessionError):
    """The session's notification channel cannot take more notifications."""

    def __init__(self, session_id: str | None = None) -> None:
        message = "notification channel blocked"
        if session_id is not None:
            message += f" for session {session_id}"
        super().__init__(message)
        self.session_id = session_id


class SessionDoesNotSupportToolsError(SessionError):
    """The session cannot hold session-specific tools."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"session does not support per-session tools: {session_id}")
        self.session_id = session_id


@runtime_checkable
class ClientSession(Protocol):
    """An active client connection the server can notify."""

    @property
    def session_id(self) -> str: ...

    @property
    def notification_channel(self) -> queue.Queue: ...

    @property
    def initialized(self) -> bool: ...

    def initialize(self) -> None: ...


@runtime_checkable
class SessionWithTools(ClientSession, Protocol):
    """A session that can carry tools of its own."""

    def get_session_tools(self) -> dict[str, ServerTool] | None: ...

    def set_session_tools(self, tools: dict[str, ServerTool] | None) -> None: ...


@dataclass
class BasicSession:
    """A thread-safe in-memory session holding its own tools."""

    session_id: str
    notification_channel: queue.Queue = field(
        default_factory=lambda: queue.Queue(maxsize=DEFAULT_NOTIFICATION_BUFFER)
    )
    initialized: bool = False
    tools: dict[str, ServerTool] | None = None
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    def initialize(self) -> None:
        """Mark the session as ready to receive notifications."""
        self.initialized = True

    def get_session_tools(self) -> dict[str, ServerTool] | None:
        """Return a copy of the session's tools, or None if it has none."""
        with self._lock:
            return None if self.tools is None else dict(self.tools)

    def set_session_tools(self, tools: dict[str, ServerTool] | None) -> None:
        """Replace the session's tools with a copy of ``tools``."""
        with self._lock:
            self.tools = None if tools is None else dict(tools)


_current_session: contextvars.ContextVar[ClientSession | None] = contextvars.ContextVar(
    "mcpserve_current_session", default=None
)


def current_session() -> ClientSession | None:
    """Return the session bound to the current context, if any."""
    return _current_session.get()


@contextmanager
def session_context(session: ClientSession | None) -> Iterator[ClientSession | None]:
    """Bind ``session`` as the current session for the duration of the block."""
    token = _current_session.set(session)
    try:
        yield session
    finally:
        _current_session.reset(token)


ErrorHook = Callable[[Any, str, Any, BaseException], None]
SessionHook = Callable[[ClientSession], None]


@dataclass
class Hooks:
    """Callbacks run when sessions come and go and when errors occur."""

    on_error: list[ErrorHook] = field(default_factory=list)
    on_register_session: list[SessionHook] = field(default_factory=list)
    on_unregister_session: list[SessionHook] = field(default_factory=list)

    def add_on_error(self, hook: ErrorHook) -> ErrorHook:
        self.on_error.append(hook)
        return hook

    def add_on_register_session(self, hook: SessionHook) -> SessionHook:
        self.on_register_session.append(hook)
        return hook

    def add_on_unregister_session(self, hook: SessionHook) -> SessionHook:
        self.on_unregister_session.append(hook)
        return hook

    def report_error(self, request_id: Any, method: str, message: Any, error: BaseException) -> None:
        """Pass an error to every error hook."""
        for hook in self.on_error:
            hook(request_id, method, message, error)

    def _registered(self, session: ClientSession) -> None:
        for hook in self.on_register_session:
            hook(session)

    def _unregistered(self, session: ClientSession) -> None:
        for hook in self.on_unregister_session:
            hook(session)


class SessionRegistry:
    """Keeps track of client sessions and delivers notifications to them."""

    def __init__(self, hooks: Hooks | None = None) -> None:
        self.hooks = hooks
        self._sessions: dict[str, ClientSession] = {}
        self._sessions_lock = threading.Lock()

    def _snapshot(self) -> list[ClientSession]:
        with self._sessions_lock:
            return list(self._sessions.values())

    def _lookup(self, session_id: str) -> ClientSession:
        with self._sessions_lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def _report(self, method: str, session_id: str, error: BaseException) -> None:
        if self.hooks is not None and self.hooks.on_error:
            self.hooks.report_error(
                None, "notification", {"method": method, "session_id": session_id}, error
            )

    def _deliver(self, session: ClientSession, notification: JSONRPCNotification) -> bool:
        try:
            session.notification_channel.put_nowait(notification)
        except queue.Full:
            self._report(
                notification.method,
                session.session_id,
                NotificationChannelBlockedError(session.session_id),
            )
            return False
        return True

    def register_session(self, session: ClientSession) -> None:
        """Add a session to be notified; raise SessionExistsError on a duplicate id."""
        session_id = session.session_id
        with self._sessions_lock:
            if session_id in self._sessions:
                raise SessionExistsError(session_id)
            self._sessions[session_id] = session
        if self.hooks is not None:
            self.hooks._registered(session)

    def unregister_session(self, session_id: str) -> None:
        """Forget a session; unknown ids are ignored."""
        with self._sessions_lock:
            session = self._sessions.pop(session_id, None)
        if session is not None and self.hooks is not None:
            self.hooks._unregistered(session)

    def send_notification_to_all_clients(self, method: str, params: dict[str, Any] | None) -> None:
        """Send a notification to every initialized session."""
        notification = JSONRPCNotification(method=method, params=params)
        for session in self._snapshot():
            if session.initialized:
                self._deliver(session, notification)

    def send_notification_to_client(self, method: str, params: dict[str, Any] | None) -> None:
        """Send a notification to the session bound to the current context."""
        session = current_session()
        if session is None or not session.initialized:
            raise NotificationNotInitializedError()
        if not self._deliver(session, JSONRPCNotification(method=method, params=params)):
            raise NotificationChannelBlockedError()

    def send_notification_to_specific_client(
        self, session_id: str, method: str, params: dict[str, Any] | None
    ) -> None:
        """Send a notification to the registered session with the given id."""
        session = self._lookup(session_id)
        if not session.initialized:
            raise SessionNotInitializedError(session_id)
        if not self._deliver(session, JSONRPCNotification(method=method, params=params)):
            raise NotificationChannelBlockedError()

    def _tools_session(self, session_id: str) -> SessionWithTools:
        session = self._lookup(session_id)
        if not isinstance(session, SessionWithTools):
            raise SessionDoesNotSupportToolsError(session_id)
        return session

    def _announce_tools_changed(self, session_id: str, action: str) -> None:
        try:
            self.send_notification_to_specific_client(
                session_id, NOTIFICATION_TOOLS_LIST_CHANGED, None
            )
        except SessionError as exc:
            wrapped = SessionError(f"failed to send notification after {action} tools: {exc}")
            wrapped.__cause__ = exc
            self._report(NOTIFICATION_TOOLS_LIST_CHANGED, session_id, wrapped)

    def add_session_tool(self, session_id: str, tool: Tool, handler: Callable[..., Any] | None) -> None:
        """Add one tool visible only to the given session."""
        self.add_session_tools(session_id, ServerTool(tool=tool, handler=handler))

    def add_session_tools(self, session_id: str, *tools: ServerTool) -> None:
        """Add tools visible only to the given session."""
        session = self._tools_session(session_id)
        merged = dict(session.get_session_tools() or {})
        merged.update((entry.tool.name, entry) for entry in tools)
        session.set_session_tools(merged)
        self._announce_tools_changed(session_id, "adding")

    def delete_session_tools(self, session_id: str, *names: str) -> None:
        """Remove tools by name from the given session."""
        session = self._tools_session(session_id)
        existing = session.get_session_tools()
        if existing is None:
            return
        remaining = {name: entry for name, entry in existing.items() if name not in names}
        session.set_session_tools(remaining)
        self._announce_tools_changed(session_id, "deleting")