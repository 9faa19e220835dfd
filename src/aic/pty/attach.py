"""Attach controller — bridges the user's keyboard to one attached session.

While attached the controller owns the terminal: raw mode is on, stdin
is read with ``loop.add_reader`` and every chunk is classified (see
``aic.pty.triggers``), process output goes straight to the screen, and
``SIGWINCH`` resizes the PTY.

Leaving happens on a detach trigger, on process exit (including a
``kill`` from elsewhere) or on error/cancellation. On every one of those
paths the terminal is restored before control returns to the caller:
clear line, focus reporting off, bracketed paste off, keyboard
enhancement reset, cursor shown, raw mode left.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
import os
import signal
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Iterator

from aic.pty.ansi import CLEAR_SCREEN, RESTORE_SEQUENCE, strip_focus_text
from aic.pty.session import Session
from aic.pty.terminal import Terminal
from aic.pty.triggers import DEFAULT_ESCAPE_WINDOW, DetachClassifier, InputAction

if TYPE_CHECKING:
    from aic.pty.registry import SessionRegistry
    from aic.session.wire import Wire

logger = logging.getLogger(__name__)

READ_SIZE = 4096


class DetachReason(enum.Enum):
    DETACHED = "detached"  # user pressed a detach trigger
    EXITED = "exited"  # process ended while attached


@dataclass
class AttachResult:
    """What happened during one attachment."""

    tool_id: str
    reason: DetachReason
    trigger: str | None = None
    snapshot: str = ""  # full buffer at the moment of leaving
    captured: str = ""  # output produced during this attachment
    exit_code: int | None = None
    reattach: bool = False


class AttachController:
    """Runs one attachment at a time on behalf of the command loop."""

    def __init__(
        self,
        registry: SessionRegistry,
        terminal: Terminal | None = None,
        wire: Wire | None = None,
        escape_window: float = DEFAULT_ESCAPE_WINDOW,
        replay_on_reattach: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._registry = registry
        self._terminal = terminal or Terminal()
        self._wire = wire
        self._escape_window = escape_window
        self._replay = replay_on_reattach
        self._clock = clock

        self._session: Session | None = None
        self._classifier: DetachClassifier | None = None
        self._done: asyncio.Future[AttachResult] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._mark = 0
        self._reattach = False
        self._listening = False
        self._winch_installed = False
        self._restored = True

    @property
    def session(self) -> Session | None:
        """The currently attached session, if any."""
        return self._session

    async def attach(self, tool_id: str) -> AttachResult:
        """Attach to the live session for ``tool_id`` until detach or exit.

        Raises:
            AlreadyAttachedError: another session is attached.
            InvalidTransitionError: no live session for ``tool_id``.
        """
        loop = asyncio.get_running_loop()
        session, reattach = self._registry.attach(tool_id, output_sink=self._terminal.write)

        self._loop = loop
        self._session = session
        self._reattach = reattach
        self._classifier = DetachClassifier(
            escape_window=self._escape_window, clock=self._clock
        )
        self._done = loop.create_future()
        self._mark = session.buffer.mark()
        session.add_exit_listener(self._on_exit)
        if self._wire is not None:
            self._wire.send_attached(tool_id, reattach)

        try:
            with self._terminal_modes():
                if reattach and self._replay and session.buffer:
                    self._terminal.write(CLEAR_SCREEN)
                    self._terminal.write(strip_focus_text(session.buffer.read_all()))
                self.handle_resize()
                self._start_input()
                try:
                    return await self._done
                finally:
                    self._stop_input()
        finally:
            session.remove_exit_listener(self._on_exit)
            session.detach()
            self._session = None
            self._classifier = None
            self._done = None

    @contextlib.contextmanager
    def _terminal_modes(self) -> Iterator[None]:
        self._restored = False
        self._terminal.enter_raw()
        try:
            yield
        finally:
            self._restore_terminal()

    def _restore_terminal(self) -> None:
        if self._restored:
            return
        self._restored = True
        try:
            self._terminal.write("".join(RESTORE_SEQUENCE))
        finally:
            self._terminal.exit_raw()

    # ------------------------------------------------------------------
    # Event sources
    # ------------------------------------------------------------------

    def _start_input(self) -> None:
        assert self._loop is not None
        self._loop.add_reader(self._terminal.input_fd, self._on_stdin)
        self._listening = True
        try:
            self._loop.add_signal_handler(signal.SIGWINCH, self.handle_resize)
            self._winch_installed = True
        except (NotImplementedError, RuntimeError, ValueError) as e:
            logger.debug("Resize handler unavailable: %s", e)

    def _stop_input(self) -> None:
        if self._loop is None:
            return
        if self._listening:
            self._loop.remove_reader(self._terminal.input_fd)
            self._listening = False
        if self._winch_installed:
            self._loop.remove_signal_handler(signal.SIGWINCH)
            self._winch_installed = False

    def _on_stdin(self) -> None:
        try:
            data = os.read(self._terminal.input_fd, READ_SIZE)
        except OSError as e:
            logger.debug("stdin read failed: %s", e)
            data = b""
        if not data:
            self._complete(DetachReason.DETACHED, trigger="eof")
            return
        self.feed_input(data)

    def feed_input(self, chunk: bytes) -> None:
        """Classify one chunk of keyboard input and act on it."""
        if self._session is None or self._classifier is None:
            return
        decision = self._classifier.classify(chunk)
        if decision.action is InputAction.DETACH:
            self._complete(DetachReason.DETACHED, trigger=decision.trigger)
        elif decision.action is InputAction.FORWARD:
            self._session.write(decision.data)

    def handle_resize(self) -> None:
        """Propagate the terminal size to the attached PTY."""
        if self._session is None or not self._session.attached:
            return
        cols, rows = self._terminal.size()
        self._session.resize(cols, rows)

    def _on_exit(self, session: Session, exit_code: int | None) -> None:
        self._complete(DetachReason.EXITED, exit_code=exit_code)

    # ------------------------------------------------------------------
    # Leaving
    # ------------------------------------------------------------------

    def _complete(
        self,
        reason: DetachReason,
        trigger: str | None = None,
        exit_code: int | None = None,
    ) -> None:
        """Stop input, snapshot, detach, restore the terminal, wake ``attach()``."""
        session, done = self._session, self._done
        if session is None or done is None or done.done():
            return
        self._stop_input()
        result = AttachResult(
            tool_id=session.tool_id,
            reason=reason,
            trigger=trigger,
            snapshot=session.buffer.read_all(),
            captured=session.buffer.read_since(self._mark),
            exit_code=exit_code if reason is DetachReason.EXITED else None,
            reattach=self._reattach,
        )
        session.detach()
        self._restore_terminal()
        logger.info("Left session %s (%s, trigger=%s)", session.tool_id, reason.value, trigger)
        if self._wire is not None and reason is DetachReason.DETACHED:
            self._wire.send_detached(session.tool_id, trigger)
        done.set_result(result)
