"""Sessions of Server-Sent Events connections and helpers for SSE endpoints."""

from __future__ import annotations

import itertools
import json
import queue
import threading
from typing import Any, Iterable

from .protocol import MCPError, ServerTool, to_jsonable

EVENT_QUEUE_SIZE = 100
NOTIFICATION_QUEUE_SIZE = 100


class DynamicPathConfigError(MCPError):
    """An operation that needs a static base path was used with a dynamic one."""

    def __init__(self, method: str) -> None:
        super().__init__(
            f"{method} cannot be used with a dynamic base path; "
            "route the SSE and message handlers yourself"
        )
        self.method = method


def _clean(path: str) -> str:
    """Reduce a slash separated path to its shortest equivalent form."""
    if not path:
        return "."
    rooted = path.startswith("/")
    segments: list[str] = []
    for segment in path.split("/"):
        if segment in ("", "."):
            continue
        if segment == "..":
            if segments and segments[-1] != "..":
                segments.pop()
            elif not rooted:
                segments.append("..")
            continue
        segments.append(segment)
    cleaned = "/".join(segments)
    if rooted:
        return "/" + cleaned
    return cleaned or "."


def _join(elements: Iterable[str]) -> str:
    parts = [element for element in elements if element]
    if not parts:
        return ""
    return _clean("/".join(parts))


def normalize_url_path(*elements: str) -> str:
    """Join path elements into a path that starts with a slash and never ends with one."""
    joined = _join(elements)
    if not joined.startswith("/"):
        joined = "/" + joined
    if len(joined) > 1 and joined.endswith("/"):
        joined = joined[:-1]
    return joined


def format_sse_event(event: str, data: Any) -> str:
    """Render one SSE frame; non-string data is encoded as compact JSON."""
    if not isinstance(data, str):
        data = json.dumps(to_jsonable(data), separators=(",", ":"))
    return f"event: {event}\ndata: {data}\n\n"


class SSESession:
    """The server side of one open SSE connection."""

    def __init__(self, session_id: str) -> None:
        self._session_id = session_id
        self._notification_channel: queue.Queue = queue.Queue(maxsize=NOTIFICATION_QUEUE_SIZE)
        self.event_queue: queue.Queue = queue.Queue(maxsize=EVENT_QUEUE_SIZE)
        self.done = threading.Event()
        self.request_ids = itertools.count(1)
        self._initialized = threading.Event()
        self._tools: dict[str, ServerTool] = {}
        self._tools_lock = threading.Lock()

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def notification_channel(self) -> queue.Queue:
        return self._notification_channel

    @property
    def initialized(self) -> bool:
        return self._initialized.is_set()

    @property
    def closed(self) -> bool:
        return self.done.is_set()

    def initialize(self) -> None:
        """Mark the session as ready to receive notifications."""
        self._initialized.set()

    def get_session_tools(self) -> dict[str, ServerTool]:
        """Return a copy of the tools specific to this session."""
        with self._tools_lock:
            return dict(self._tools)

    def set_session_tools(self, tools: dict[str, ServerTool] | None) -> None:
        """Replace the session's tools with ``tools``."""
        with self._tools_lock:
            self._tools = dict(tools or {})

    def close(self) -> None:
        """Signal that the connection is finished; calling it again does nothing."""
        self.done.set()

    def __repr__(self) -> str:
        return f"SSESession({self._session_id!r})"