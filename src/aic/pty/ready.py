"""Ready detection — has a freshly spawned tool reached its prompt?"""

from __future__ import annotations

import logging
import re
from typing import Callable

from aic.pty.ansi import strip_ansi

logger = logging.getLogger(__name__)

# How much trailing (ANSI-stripped) output is kept for matching. Prompts
# are short; this only has to cover a prompt split across a few chunks.
DEFAULT_WINDOW = 4096


class ReadyDetector:
    """One-shot matcher of a ready pattern against the growing output stream.

    The pattern is searched in the accumulated, ANSI-stripped tail of the
    stream rather than per chunk or per line, so prompts that arrive split
    across reads or wrapped in color codes still match. Once it fires it
    never re-arms. With no pattern it fires on the first ``feed()``.
    """

    def __init__(
        self,
        pattern: str | re.Pattern[str] | None,
        on_ready: Callable[[], None] | None = None,
        window: int = DEFAULT_WINDOW,
    ) -> None:
        if isinstance(pattern, str):
            pattern = re.compile(pattern)
        self.pattern = pattern
        self._on_ready = on_ready
        self._window = window
        self._tail = ""
        self._pending_raw = ""
        self.fired = False

    def feed(self, text: str) -> bool:
        """Feed a chunk of output. Returns True only on the call that fires."""
        if self.fired:
            return False
        if self.pattern is None:
            self._fire()
            return True

        # An escape sequence may be cut at the chunk boundary; hold back
        # everything from the last ESC so it is stripped once complete.
        raw = self._pending_raw + text
        self._pending_raw = ""
        cut = raw.rfind("\x1b")
        if cut != -1 and len(raw) - cut < 32 and strip_ansi(raw[cut:]).startswith("\x1b"):
            self._pending_raw = raw[cut:]
            raw = raw[:cut]

        self._tail = (self._tail + strip_ansi(raw))[-self._window :]
        if self.pattern.search(self._tail):
            self._fire()
            return True
        return False

    def _fire(self) -> None:
        self.fired = True
        self._tail = ""
        self._pending_raw = ""
        logger.debug("Ready pattern matched: %s", self.pattern and self.pattern.pattern)
        if self._on_ready is not None:
            self._on_ready()
