"""The controlling terminal — raw mode, size, and output."""

from __future__ import annotations

import logging
import os
import shutil
import sys
import termios
import tty
from typing import Any, BinaryIO

logger = logging.getLogger(__name__)


class Terminal:
    """Handle on the user's terminal (stdin/stdout by default).

    Raw mode is process-wide state: ``enter_raw()`` saves the current
    attributes and ``exit_raw()`` puts them back. Both are no-ops when
    input is not a TTY (pipes, tests).
    """

    def __init__(
        self,
        input_fd: int | None = None,
        output: BinaryIO | None = None,
    ) -> None:
        self.input_fd = sys.stdin.fileno() if input_fd is None else input_fd
        self._output = output if output is not None else sys.stdout.buffer
        self._saved_attrs: list[Any] | None = None

    @property
    def is_tty(self) -> bool:
        return os.isatty(self.input_fd)

    @property
    def raw(self) -> bool:
        return self._saved_attrs is not None

    def enter_raw(self) -> None:
        if self._saved_attrs is not None or not self.is_tty:
            return
        self._saved_attrs = termios.tcgetattr(self.input_fd)
        tty.setraw(self.input_fd)

    def exit_raw(self) -> None:
        if self._saved_attrs is None:
            return
        attrs, self._saved_attrs = self._saved_attrs, None
        try:
            termios.tcsetattr(self.input_fd, termios.TCSADRAIN, attrs)
        except termios.error as e:
            logger.warning("Could not restore terminal attributes: %s", e)

    def size(self) -> tuple[int, int]:
        """(columns, rows), falling back to 80x24."""
        size = shutil.get_terminal_size((80, 24))
        return size.columns or 80, size.lines or 24

    def write(self, data: str | bytes) -> None:
        if isinstance(data, str):
            data = data.encode("utf-8", errors="replace")
        self._output.write(data)
        self._output.flush()
