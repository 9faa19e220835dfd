"""Paced injection — "type" text into a session without racing its startup."""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable

from aic.pty.ansi import PASTE_END, PASTE_START
from aic.pty.session import Session

logger = logging.getLogger(__name__)


class PacedInjector:
    """Writes a sequence of ``(text, delay)`` steps into a session.

    A single task sleeps ``delay`` seconds before writing each step. The
    task stops on its own if the session dies mid-injection, and
    ``cancel()`` stops it from outside.
    """

    def __init__(self, session: Session, steps: Iterable[tuple[str, float]]) -> None:
        self.session = session
        self.steps = list(steps)
        self.written = 0  # Steps delivered so far
        self._task: asyncio.Task | None = None

    @classmethod
    def typing(
        cls,
        session: Session,
        text: str,
        initial_delay: float = 0.5,
        char_delay: float = 0.01,
        submit: bool = True,
    ) -> PacedInjector:
        """One step per character, optionally followed by Enter."""
        steps = [(ch, initial_delay if i == 0 else char_delay) for i, ch in enumerate(text)]
        if submit:
            steps.append(("\r", initial_delay if not steps else char_delay * 10))
        return cls(session, steps)

    @classmethod
    def paste(
        cls,
        session: Session,
        text: str,
        initial_delay: float = 0.5,
        submit_delay: float = 0.3,
    ) -> PacedInjector:
        """Deliver multi-line text as one bracketed paste, then Enter.

        Typed newlines would submit early; inside paste markers the tool
        keeps them as part of the input.
        """
        return cls(
            session,
            [(PASTE_START + text + PASTE_END, initial_delay), ("\r", submit_delay)],
        )

    def start(self) -> asyncio.Task:
        if self._task is None:
            self.session.add_exit_listener(self._on_exit)
            self._task = asyncio.get_running_loop().create_task(self._run())
        return self._task

    async def _run(self) -> None:
        try:
            for text, delay in self.steps:
                if delay > 0:
                    await asyncio.sleep(delay)
                if not self.session.alive or not self.session.write(text):
                    logger.debug(
                        "Injection into %s stopped after %d steps",
                        self.session.tool_id,
                        self.written,
                    )
                    return
                self.written += 1
        finally:
            self.session.remove_exit_listener(self._on_exit)

    def _on_exit(self, session: Session, exit_code: int | None) -> None:
        self.cancel()

    def cancel(self) -> None:
        # A task cancelled before its first step never reaches the finally
        self.session.remove_exit_listener(self._on_exit)
        if self._task is not None and not self._task.done():
            self._task.cancel()

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    async def wait(self) -> int:
        """Wait for injection to finish or stop. Returns steps written."""
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                if not self._task.cancelled():
                    raise
        return self.written
