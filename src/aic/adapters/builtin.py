"""Built-in adapters for the supported AI coding CLIs."""

from __future__ import annotations

from dataclasses import dataclass, field

from aic.adapters.base import ToolAdapter


@dataclass
class ClaudeAdapter(ToolAdapter):
    name: str = "claude"
    display_name: str = "Claude Code"
    command: str = "claude"
    color: str = "bright_cyan"
    ready_pattern: str | None = r"\? for shortcuts|│ >"
    idle_timeout: float = 2.0
    print_flags: list[str] = field(default_factory=lambda: ["-p"])
    continue_args: list[str] = field(default_factory=lambda: ["--continue"])

    _HINTS = ("? for shortcuts", "esc to interrupt", "auto-accept edits")

    def is_chrome(self, line: str) -> bool:
        stripped = line.strip()
        if stripped == ">" or stripped.startswith(("│ >", "> ")):
            return True
        if any(h in stripped for h in self._HINTS):
            return True
        return super().is_chrome(line)


@dataclass
class GeminiAdapter(ToolAdapter):
    name: str = "gemini"
    display_name: str = "Gemini CLI"
    command: str = "gemini"
    color: str = "bright_magenta"
    ready_pattern: str | None = r"Type your message"
    idle_timeout: float = 2.0
    continue_args: list[str] = field(default_factory=lambda: ["--resume", "latest"])

    _HINTS = ("Type your message", "Using:", "context left")

    def is_chrome(self, line: str) -> bool:
        if any(h in line for h in self._HINTS):
            return True
        return super().is_chrome(line)


def builtin_adapters() -> list[ToolAdapter]:
    return [ClaudeAdapter(), GeminiAdapter()]
