"""Session registry — at most one live session per tool."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
from typing import TYPE_CHECKING, Any, Callable

from aic.errors import AlreadyAttachedError, InvalidTransitionError, SpawnError, UnknownToolError
from aic.pty.buffer import DEFAULT_MAX_CHARS, OutputBuffer
from aic.pty.session import Session

if TYPE_CHECKING:
    from aic.adapters.registry import AdapterRegistry
    from aic.config import SessionConfig
    from aic.session.wire import Wire

logger = logging.getLogger(__name__)


def _terminal_size() -> tuple[int, int]:
    size = shutil.get_terminal_size((80, 24))
    return size.columns, size.lines


class SessionRegistry:
    """Owns the ``tool_id -> Session`` map.

    Constructed once per host process and passed to whoever needs it.
    The registry guarantees:
    - zero or one session per tool id; a dead session is dropped before a
      replacement is spawned
    - at most one session attached at any time
    - exit notifications go out on the wire, except for silent kills
    """

    def __init__(
        self,
        adapters: AdapterRegistry,
        config: SessionConfig | None = None,
        wire: Wire | None = None,
        cwd: str | None = None,
        terminal_size: Callable[[], tuple[int, int]] = _terminal_size,
    ) -> None:
        self._adapters = adapters
        self._config = config
        self._wire = wire
        self._cwd = cwd or os.getcwd()
        self._terminal_size = terminal_size
        self._sessions: dict[str, Session] = {}

    async def get_or_create(
        self,
        tool_id: str,
        wait_for_ready: bool = False,
        timeout: float | None = None,
        has_history: bool = False,
    ) -> Session:
        """Return the live session for ``tool_id``, spawning one if needed.

        Args:
            tool_id: Adapter name.
            wait_for_ready: Suspend until the adapter's ready pattern shows up.
            timeout: Deadline for ``wait_for_ready``; None waits forever.
            has_history: Ask the adapter to resume earlier conversation.

        Raises:
            UnknownToolError: no adapter for ``tool_id`` (nothing launched).
            SpawnError: launch failed, or the process died / timed out
                before becoming ready. Nothing is registered.
        """
        adapter = self._adapters.get(tool_id)
        if adapter is None:
            raise UnknownToolError(tool_id)

        existing = self._sessions.get(tool_id)
        if existing is not None:
            if existing.alive:
                if wait_for_ready and not existing.ready:
                    await self._join_startup(existing, timeout)
                return existing
            del self._sessions[tool_id]
            logger.debug("Discarded dead session for %s", tool_id)

        cols, rows = self._terminal_size()
        cfg = self._config
        session = Session(
            tool_id=tool_id,
            command=adapter.spawn_argv(has_history),
            cwd=self._cwd,
            env=dict(adapter.env),
            ready_pattern=adapter.ready_pattern,
            idle_timeout=adapter.idle_timeout,
            term=cfg.term if cfg else "xterm-256color",
            cols=cols,
            rows=rows,
            kill_grace=cfg.kill_grace if cfg else 2.0,
            buffer=OutputBuffer(cfg.buffer_max_chars if cfg else DEFAULT_MAX_CHARS),
            wire=self._wire,
        )
        session.add_exit_listener(self._notify_exit)
        await session.start()
        self._sessions[tool_id] = session

        if wait_for_ready:
            try:
                await session.wait_ready(timeout)
            except asyncio.TimeoutError as e:
                self._discard(session)
                raise SpawnError(tool_id, f"not ready after {timeout}s", cause=e) from e
            except SpawnError:
                self._discard(session)
                raise
        return session

    async def _join_startup(self, session: Session, timeout: float | None) -> None:
        # Another caller spawned this session and owns its startup: a
        # timeout here is reported but does not kill the session.
        try:
            await session.wait_ready(timeout)
        except asyncio.TimeoutError as e:
            raise SpawnError(session.tool_id, f"not ready after {timeout}s", cause=e) from e

    def _discard(self, session: Session) -> None:
        if self._sessions.get(session.tool_id) is session:
            del self._sessions[session.tool_id]
        session.remove_exit_listener(self._notify_exit)
        session.kill()

    def _notify_exit(self, session: Session, exit_code: int | None) -> None:
        if self._wire is None:
            return
        tail = session.buffer.read_tail(3)
        self._wire.send_session_exit(session.tool_id, exit_code, "\n".join(tail))

    def get(self, tool_id: str) -> Session | None:
        """Get the registered session for a tool (possibly dead)."""
        return self._sessions.get(tool_id)

    def attached_session(self) -> Session | None:
        for session in self._sessions.values():
            if session.attached:
                return session
        return None

    def attach(
        self, tool_id: str, output_sink: Callable[[str], None] | None = None
    ) -> tuple[Session, bool]:
        """Attach the live session for ``tool_id``.

        Returns (session, reattach).

        Raises:
            AlreadyAttachedError: a different session is attached.
            InvalidTransitionError: there is no live session for ``tool_id``.
        """
        session = self._sessions.get(tool_id)
        if session is None or not session.alive:
            raise InvalidTransitionError(tool_id, "dead" if session else "absent", "attached")
        current = self.attached_session()
        if current is not None and current is not session:
            raise AlreadyAttachedError(tool_id, current.tool_id)
        if current is session:
            return session, False
        return session, session.attach(output_sink)

    def detach(self, tool_id: str) -> bool:
        session = self._sessions.get(tool_id)
        return session.detach() if session is not None else False

    def kill(self, tool_id: str, silent: bool = False) -> bool:
        """Kill a session and remove it from the registry.

        ``silent`` suppresses the exit notification, for callers that
        discard a session on purpose.
        """
        session = self._sessions.pop(tool_id, None)
        if session is None:
            return False
        if silent:
            session.remove_exit_listener(self._notify_exit)
        session.kill()
        return True

    def list_sessions(self, now: float | None = None) -> list[dict[str, Any]]:
        """Status rows for all registered sessions."""
        return [
            {
                "tool_id": s.tool_id,
                "state": s.reported_state(now).value,
                "pid": s.pid,
                "alive": s.alive,
                "attached": s.attached,
                "buffered": len(s.buffer),
                "exit_code": s.exit_code,
            }
            for s in self._sessions.values()
        ]

    def cleanup(self) -> None:
        """Kill all sessions silently. Called on shutdown."""
        for tool_id in list(self._sessions.keys()):
            self.kill(tool_id, silent=True)
        logger.info("All sessions cleaned up")

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, tool_id: str) -> bool:
        return tool_id in self._sessions
