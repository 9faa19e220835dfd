"""Bounded output buffer for PTY sessions."""

from __future__ import annotations

from collections import deque

from aic.pty.ansi import strip_ansi, sanitize_binary_output

DEFAULT_MAX_CHARS = 1_000_000


class OutputBuffer:
    """Append-only, capacity-bounded text accumulator for PTY output.

    Keeps the raw terminal stream (ANSI sequences intact) so it can be
    replayed onto the screen on reattach. When an append would push the
    length past ``max_chars`` the oldest characters are dropped first;
    overflow is a steady-state condition and never raises.

    Positions handed out by ``mark()`` are absolute offsets into the whole
    stream ever appended, so ``read_since()`` stays correct after
    truncation (it simply returns whatever part is still retained).
    """

    def __init__(self, max_chars: int = DEFAULT_MAX_CHARS) -> None:
        if max_chars <= 0:
            raise ValueError("max_chars must be positive")
        self.max_chars = max_chars
        self._chunks: deque[str] = deque()
        self._length = 0
        self._total_chars = 0  # Total characters ever appended
        self._dropped = 0  # Characters lost to overflow, not to clear()

    def append(self, text: str) -> None:
        """Append text, truncating the oldest content if over capacity."""
        if not text:
            return
        self._total_chars += len(text)
        if len(text) >= self.max_chars:
            # The new chunk alone fills the buffer
            self._dropped += self._length + len(text) - self.max_chars
            self._chunks.clear()
            text = text[-self.max_chars :]
            self._length = 0
        self._chunks.append(text)
        self._length += len(text)
        self._trim()

    def _trim(self) -> None:
        overflow = self._length - self.max_chars
        if overflow > 0:
            self._dropped += overflow
        while overflow > 0:
            head = self._chunks[0]
            if len(head) <= overflow:
                self._chunks.popleft()
                self._length -= len(head)
                overflow -= len(head)
            else:
                self._chunks[0] = head[overflow:]
                self._length -= overflow
                overflow = 0

    def read_all(self) -> str:
        """Everything currently retained, raw."""
        if len(self._chunks) > 1:
            # Coalesce so repeated reads stay cheap
            joined = "".join(self._chunks)
            self._chunks.clear()
            self._chunks.append(joined)
        return self._chunks[0] if self._chunks else ""

    def read_clean(self) -> str:
        """Everything currently retained, ANSI-stripped and sanitized."""
        return sanitize_binary_output(strip_ansi(self.read_all()))

    def read_tail(self, n: int = 100) -> list[str]:
        """Read the last N cleaned lines."""
        lines = self.read_clean().splitlines()
        return lines[-n:] if len(lines) > n else lines

    def mark(self) -> int:
        """Return the current absolute stream position."""
        return self._total_chars

    def read_since(self, mark: int) -> str:
        """Raw text appended after ``mark`` that is still retained."""
        wanted = self._total_chars - mark
        if wanted <= 0:
            return ""
        data = self.read_all()
        return data[-wanted:] if wanted < len(data) else data

    @property
    def total_chars(self) -> int:
        """Total number of characters ever appended."""
        return self._total_chars

    @property
    def dropped_chars(self) -> int:
        """Characters lost to overflow so far."""
        return self._dropped

    def clear(self) -> None:
        """Drop retained content. Positions from ``mark()`` remain valid."""
        self._chunks.clear()
        self._length = 0

    def __len__(self) -> int:
        return self._length

    def __bool__(self) -> bool:
        return self._length > 0
