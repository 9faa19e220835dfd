"""Event wire between the session core and whatever renders it.

Sessions and the registry emit events onto the wire; the command loop
(or any other UI) subscribes and renders them. The state machine never
prints anything itself.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
from dataclasses import dataclass, field
from typing import Any


class EventType(enum.Enum):
    SESSION_STATE = "session_state"
    SESSION_READY = "session_ready"
    SESSION_EXIT = "session_exit"
    ATTACHED = "attached"
    DETACHED = "detached"
    ERROR = "error"


@dataclass
class WireEvent:
    """An event on the wire."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)


class Wire:
    """Broadcasts session events to every listening queue.

    Delivery is synchronous (``put_nowait``) so sessions can emit from
    reader callbacks without awaiting.
    """

    def __init__(self) -> None:
        self._listeners: list[asyncio.Queue[WireEvent | None]] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, event: WireEvent) -> None:
        """Deliver ``event`` to each listener; a closed wire drops it."""
        if self._closed:
            return
        for queue in self._listeners:
            queue.put_nowait(event)

    def send_state(self, tool_id: str, old: str, new: str) -> None:
        self.send(
            WireEvent(
                type=EventType.SESSION_STATE,
                data={"tool_id": tool_id, "old": old, "new": new},
            )
        )

    def send_ready(self, tool_id: str) -> None:
        self.send(WireEvent(type=EventType.SESSION_READY, data={"tool_id": tool_id}))

    def send_error(self, error: str) -> None:
        self.send(WireEvent(type=EventType.ERROR, data={"error": error}))

    def send_attached(self, tool_id: str, reattach: bool) -> None:
        self.send(
            WireEvent(
                type=EventType.ATTACHED,
                data={"tool_id": tool_id, "reattach": reattach},
            )
        )

    def send_detached(self, tool_id: str, trigger: str | None) -> None:
        self.send(
            WireEvent(
                type=EventType.DETACHED,
                data={"tool_id": tool_id, "trigger": trigger},
            )
        )

    def send_session_exit(
        self,
        tool_id: str,
        exit_code: int | None,
        last_output: str = "",
    ) -> None:
        """Notify subscribers that a session's process exited."""
        self.send(
            WireEvent(
                type=EventType.SESSION_EXIT,
                data={
                    "tool_id": tool_id,
                    "exit_code": exit_code,
                    "last_output": last_output[:500],
                },
            )
        )

    def subscribe(self) -> asyncio.Queue[WireEvent | None]:
        """Register a new listener and hand back its event queue.

        A listener that joins after ``close()`` gets the end-of-stream
        marker straight away so its reader loop terminates.
        """
        queue: asyncio.Queue[WireEvent | None] = asyncio.Queue()
        if self._closed:
            queue.put_nowait(None)
        else:
            self._listeners.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        with contextlib.suppress(ValueError):
            self._listeners.remove(queue)

    def close(self) -> None:
        """Stop delivery and push ``None`` to every listener."""
        self._closed = True
        listeners, self._listeners = self._listeners, []
        for queue in listeners:
            queue.put_nowait(None)
