"""Base adapter describing one external tool to the session core."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from aic.pty.ansi import sanitize_binary_output, strip_ansi

# Lines made only of box drawing, block/spinner glyphs and whitespace are
# terminal chrome, never part of a response.
_CHROME_LINE_RE = re.compile(r"^[\s─-▟⠀-⣿●○•·…]*$")
_BLANK_RUN_RE = re.compile(r"\n{3,}")


@dataclass
class ToolAdapter:
    """Everything the core needs to know about an external CLI.

    ``command``/``args`` launch the interactive session; ``ready_pattern``
    and ``idle_timeout`` are handed to the session untouched. The
    ``continue_args`` are appended when earlier conversation exists with
    the tool, so a fresh process resumes instead of starting over.

    Subclasses override ``clean_response()`` to remove tool-specific
    chrome (input boxes, hints, status lines).
    """

    name: str
    display_name: str
    command: str
    color: str = "white"
    args: list[str] = field(default_factory=list)
    ready_pattern: str | None = None
    idle_timeout: float = 2.0
    env: dict[str, str] = field(default_factory=dict)
    print_flags: list[str] = field(default_factory=list)
    continue_args: list[str] = field(default_factory=list)

    def interactive_args(self, has_history: bool = False) -> list[str]:
        """Arguments for a persistent interactive session."""
        extra = self.continue_args if has_history else []
        return [*self.args, *extra]

    def spawn_argv(self, has_history: bool = False) -> list[str]:
        return [self.command, *self.interactive_args(has_history)]

    def print_args(self, message: str, has_history: bool = False) -> list[str]:
        """Arguments for a one-shot, non-interactive request."""
        extra = self.continue_args if has_history else []
        return [*self.print_flags, *extra, message]

    def is_chrome(self, line: str) -> bool:
        """Whether a cleaned line is tool chrome rather than content."""
        return bool(line.strip()) and bool(_CHROME_LINE_RE.match(line))

    def clean_response(self, raw: str) -> str:
        """Strip terminal formatting and chrome from captured output."""
        text = sanitize_binary_output(strip_ansi(raw).replace("\r\n", "\n"))
        # Lone carriage returns are redraws; keep only the final version
        lines = [line.rsplit("\r", 1)[-1].rstrip() for line in text.split("\n")]
        kept = [line for line in lines if not (line and self.is_chrome(line))]
        return _BLANK_RUN_RE.sub("\n\n", "\n".join(kept)).strip()
