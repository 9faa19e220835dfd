"""Rendering for the command loop (rich)."""

from __future__ import annotations

import contextlib
from typing import TYPE_CHECKING, Any, Iterator

from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from aic import __version__
from aic.pty.attach import AttachResult, DetachReason

if TYPE_CHECKING:
    from aic.adapters.base import ToolAdapter
    from aic.adapters.registry import AdapterRegistry
    from aic.history import HistoryMessage

# For the readline prompt, which cannot use rich markup
_ANSI_COLORS = {
    "bright_cyan": "\x1b[96m",
    "bright_magenta": "\x1b[95m",
    "bright_yellow": "\x1b[93m",
    "bright_green": "\x1b[92m",
    "bright_blue": "\x1b[94m",
    "cyan": "\x1b[36m",
    "magenta": "\x1b[35m",
    "green": "\x1b[32m",
    "white": "\x1b[37m",
}

_STATE_STYLES = {
    "spawning": "yellow",
    "ready": "green",
    "attached": "bold green",
    "detached": "cyan",
    "processing": "bright_yellow",
    "dead": "dim",
}

HELP_ROWS = [
    ("//<tool>", "Switch the active tool"),
    ("//i [prompt]", "Interactive mode: attach (spawn or re-attach)"),
    ("//forward [tool] [msg]", "Forward the last response to another tool"),
    ("//history", "Show conversation history"),
    ("//status", "Show running sessions"),
    ("//kill [tool]", "Stop a tool's interactive session"),
    ("//clear", "Stop all sessions and clear history"),
    ("//quit", "Exit (also //exit, //cya)"),
]

DETACH_HINT = "Ctrl+] or Esc Esc to detach"


def prompt_text(adapter: ToolAdapter) -> str:
    """Readline prompt for the active tool (non-printing parts wrapped)."""
    color = _ANSI_COLORS.get(adapter.color, "")
    return f"\x01{color}\x02❯ {adapter.name}\x01\x1b[0m\x1b[2m\x02 →\x01\x1b[0m\x02 "


class UI:
    """All user-facing output of the command loop."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console(highlight=False)

    def banner(self, cwd: str, active: ToolAdapter, adapters: AdapterRegistry) -> None:
        title = Text.assemble(
            ("AI", "bold bright_cyan"),
            (" Code ", "white"),
            ("Connect", "bold bright_yellow"),
            (f"  v{__version__}", "dim"),
        )
        self.console.print(Rule(style="dim"))
        self.console.print(title)
        self.console.print(f"[dim]{escape(cwd)}[/dim]")
        self.console.print(
            "Tools: "
            + ", ".join(f"[{a.color}]{escape(a.display_name)}[/]" for a in adapters)
        )
        self.console.print(
            f"[dim]Tab: complete   ↑/↓: history   [bright_yellow]{DETACH_HINT}[/][/dim]"
        )
        self.console.print(Rule(style="dim"))
        self.active(active)

    def help(self) -> None:
        table = Table(show_header=False, box=None, padding=(0, 2))
        for cmd, desc in HELP_ROWS:
            table.add_row(f"[bright_yellow]{escape(cmd)}[/]", desc)
        self.console.print(table)

    def active(self, adapter: ToolAdapter) -> None:
        self.console.print(
            f"[green]●[/green] Active: [{adapter.color}]{escape(adapter.display_name)}[/]"
        )

    def notice(self, message: str) -> None:
        self.console.print(message)

    def error(self, message: str) -> None:
        self.console.print(f"[red]Error:[/red] {escape(message)}")

    @contextlib.contextmanager
    def thinking(self, adapter: ToolAdapter) -> Iterator[None]:
        with self.console.status(
            f"[{adapter.color}]{escape(adapter.display_name)}[/] is thinking..."
        ):
            yield

    def response(self, adapter: ToolAdapter, text: str) -> None:
        self.console.print()
        self.console.print(Markdown(text))
        self.console.print()

    def attach_notice(self, adapter: ToolAdapter, reattach: bool) -> None:
        name = f"[{adapter.color}]{escape(adapter.display_name)}[/]"
        if reattach:
            self.console.print(f"\n[green]↩[/green] Re-attaching to {name}...")
        else:
            self.console.print(f"\n[green]▶[/green] Starting {name} interactive mode...")
        self.console.print(f"[dim]{DETACH_HINT} • /exit in the tool to terminate[/dim]\n")

    def leave_notice(self, adapter: ToolAdapter, result: AttachResult) -> None:
        name = f"[{adapter.color}]{escape(adapter.display_name)}[/]"
        if result.reason is DetachReason.EXITED:
            code = "?" if result.exit_code is None else result.exit_code
            self.console.print(f"\n[dim]{escape(adapter.display_name)} exited (code {code})[/dim]")
            self.console.print("[dim]Returned to [bright_yellow]aic[/][/dim]\n")
            return
        self.console.print(f"\n[yellow]⏸[/yellow] Detached from {name} [dim](still running)[/dim]")
        self.console.print(
            "[dim]Use [bright_yellow]//i[/] to re-attach • "
            "[bright_green]//forward[/] to send to another tool[/dim]\n"
        )

    def exit_notice(self, adapter: ToolAdapter | None, tool_id: str, exit_code: Any) -> None:
        label = adapter.display_name if adapter else tool_id
        code = "?" if exit_code is None else exit_code
        self.console.print(f"[dim]{escape(label)} exited (code {code})[/dim]")

    def forward_banner(self, source: ToolAdapter, target: ToolAdapter) -> None:
        self.console.print(Rule(style="dim"))
        self.console.print(
            f"[green]↗[/green] Forwarding from [{source.color}]{escape(source.display_name)}[/]"
            f" → [{target.color}]{escape(target.display_name)}[/]"
        )
        self.console.print(Rule(style="dim"))

    def status(
        self,
        rows: list[dict[str, Any]],
        adapters: AdapterRegistry,
        with_history: set[str],
    ) -> None:
        by_tool = {row["tool_id"]: row for row in rows}
        table = Table(title="Sessions", title_style="bold", border_style="dim")
        table.add_column("Tool")
        table.add_column("State")
        table.add_column("PID", justify="right")
        table.add_column("Buffered", justify="right")
        table.add_column("History")
        for adapter in adapters:
            row = by_tool.get(adapter.name)
            state = row["state"] if row else "stopped"
            style = _STATE_STYLES.get(state, "dim")
            table.add_row(
                f"[{adapter.color}]{escape(adapter.display_name)}[/]",
                f"[{style}]{state}[/]",
                str(row["pid"]) if row and row["alive"] else "-",
                f"{row['buffered']:,}" if row else "-",
                "yes" if adapter.name in with_history else "",
            )
        self.console.print(table)

    def history(self, messages: list[HistoryMessage], adapters: AdapterRegistry) -> None:
        if not messages:
            self.console.print("\n[dim]No conversation history yet.[/dim]\n")
            return
        lines = []
        for i, msg in enumerate(messages, start=1):
            if msg.role == "user":
                who = "[yellow]You[/yellow]"
            else:
                adapter = adapters.get(msg.tool)
                color = adapter.color if adapter else "white"
                who = f"[{color}]{escape(msg.tool)}[/]"
            preview = msg.content if len(msg.content) <= 80 else msg.content[:80] + "..."
            preview = preview.replace("\n", " ")
            lines.append(f"[dim]{i:2}.[/dim] {who}: {escape(preview)}")
        self.console.print(Panel("\n".join(lines), title="Conversation History", border_style="dim"))
