"""Command loop — the line-based UI between attachments.

Plain input goes to the active tool in print mode; ``//`` commands
switch tools, attach to interactive sessions, forward responses and
show status.
"""

from __future__ import annotations

import asyncio
import logging
import os
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING

from rich.markup import escape

from aic.errors import AicError
from aic.pty.attach import DetachReason
from aic.pty.inject import PacedInjector
from aic.runner import run_print
from aic.session.wire import EventType
from aic.ui import prompt_text

if TYPE_CHECKING:
    from aic.adapters.base import ToolAdapter
    from aic.adapters.registry import AdapterRegistry
    from aic.config import AicConfig
    from aic.history import ConversationHistory
    from aic.pty.attach import AttachController
    from aic.pty.registry import SessionRegistry
    from aic.session.wire import Wire, WireEvent
    from aic.ui import UI

logger = logging.getLogger(__name__)

BUILTIN_COMMANDS = (
    "i",
    "interactive",
    "shell",
    "forward",
    "history",
    "status",
    "kill",
    "clear",
    "help",
    "quit",
    "exit",
    "cya",
)


@dataclass
class Command:
    name: str
    args: str = ""


def parse_command(line: str) -> Command | None:
    """Parse ``//name args``. Returns None for plain input."""
    stripped = line.strip()
    if not stripped.startswith("//"):
        return None
    parts = stripped[2:].split(maxsplit=1)
    if not parts:
        return Command(name="")
    return Command(name=parts[0].lower(), args=parts[1] if len(parts) > 1 else "")


def parse_forward_args(
    args: str, source: str, tools: list[str]
) -> tuple[str | None, str, str | None]:
    """Work out the forward target.

    Returns (target, extra_message, error). The first word names the
    target when it is a tool; with no tool named and exactly one other
    tool available, that one is used.
    """
    others = [t for t in tools if t != source]
    parts = args.split()
    if parts and parts[0].lower() == source:
        return None, "", f"Cannot forward to the same tool ({source})."
    if parts and parts[0].lower() in others:
        return parts[0].lower(), args.split(maxsplit=1)[1] if len(parts) > 1 else "", None
    if len(others) == 1:
        return others[0], args.strip(), None
    if not others:
        return None, "", "No other tool to forward to."
    return None, "", f"Multiple tools available. Use: //forward <{'|'.join(others)}> [message]"


def build_forward_prompt(source_name: str, content: str, extra: str = "") -> str:
    prompt = (
        f"Another AI assistant ({source_name}) provided this response. "
        f"Please review and share your thoughts:\n\n---\n{content}\n---"
    )
    if extra.strip():
        prompt += f"\n\nAdditional context: {extra.strip()}"
    return prompt


class CommandLoop:
    """Reads lines, dispatches commands, and runs attachments."""

    def __init__(
        self,
        config: AicConfig,
        adapters: AdapterRegistry,
        registry: SessionRegistry,
        controller: AttachController,
        history: ConversationHistory,
        ui: UI,
        wire: Wire,
        cwd: str | None = None,
    ) -> None:
        self.config = config
        self.adapters = adapters
        self.registry = registry
        self.controller = controller
        self.history = history
        self.ui = ui
        self.wire = wire
        self.cwd = cwd or os.getcwd()
        self.active = config.default_tool if config.default_tool in adapters else adapters.names()[0]
        self.running = False
        self._deferred: list[WireEvent] = []
        self._reported_exits: set[str] = set()

    @property
    def active_adapter(self) -> ToolAdapter:
        adapter = self.adapters.get(self.active)
        assert adapter is not None
        return adapter

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def run(self) -> None:
        self.running = True
        self._setup_readline()
        self.ui.banner(self.cwd, self.active_adapter, self.adapters)
        consumer = asyncio.create_task(self._consume_wire())
        try:
            while self.running:
                try:
                    line = await self._read_line(prompt_text(self.active_adapter))
                except EOFError:
                    break
                if line.strip():
                    await self.handle_line(line)
        finally:
            self.registry.cleanup()
            self.wire.close()
            await consumer

    async def handle_line(self, line: str) -> None:
        command = parse_command(line)
        if command is None:
            await self.send(line.strip())
            return
        try:
            await self.dispatch(command)
        except AicError as e:
            self.ui.error(str(e))

    async def dispatch(self, command: Command) -> None:
        name, args = command.name, command.args
        if name in self.adapters:
            self.active = name
            self.ui.active(self.active_adapter)
        elif name in ("i", "interactive", "shell"):
            await self.interactive(self.active, prompt=args or None)
        elif name == "forward":
            await self.forward(args)
        elif name == "history":
            self.ui.history(self.history.messages, self.adapters)
        elif name == "status":
            self.ui.status(self.registry.list_sessions(), self.adapters, self.history.sessions)
        elif name == "kill":
            tool = args.strip().lower() or self.active
            if self.registry.kill(tool, silent=True):
                self.ui.notice(f"Stopped {escape(tool)}.")
            else:
                self.ui.notice(f"No session running for {escape(tool)}.")
        elif name == "clear":
            self.registry.cleanup()
            self.history.clear()
            self.ui.notice("Sessions and history cleared.")
        elif name == "help":
            self.ui.help()
        elif name in ("quit", "exit", "cya"):
            self.running = False
            self.ui.notice("[bright_yellow]Goodbye![/bright_yellow]")
        else:
            self.ui.notice(f"Unknown command: //{escape(name)}. Type //help for commands.")

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def send(self, message: str) -> None:
        """Send a message to the active tool in print mode."""
        adapter = self.active_adapter
        has_history = self.history.has_session(adapter.name)
        await self.history.add_user(adapter.name, message)
        try:
            with self.ui.thinking(adapter):
                result = await run_print(adapter, message, cwd=self.cwd, has_history=has_history)
        except AicError as e:
            self.history.pop()
            self.ui.error(str(e))
            return
        self.ui.response(adapter, result.raw)
        await self.history.add_assistant(adapter.name, result.text)

    async def interactive(self, tool: str, prompt: str | None = None) -> None:
        """Attach to ``tool``'s session, spawning it if needed."""
        adapter = self.adapters.get(tool)
        if adapter is None:
            self.ui.error(f"Unknown tool: {tool}")
            return
        existing = self.registry.get(tool)
        self.ui.attach_notice(adapter, reattach=existing is not None and existing.alive)

        cfg = self.config.session
        session = await self.registry.get_or_create(
            tool,
            wait_for_ready=cfg.wait_for_ready,
            timeout=cfg.ready_timeout,
            has_history=self.history.has_session(tool),
        )

        injector = None
        if prompt:
            delay = 0.2 if session.ready else 1.5
            if "\n" in prompt:
                injector = PacedInjector.paste(session, prompt, initial_delay=delay)
            else:
                injector = PacedInjector.typing(session, prompt, initial_delay=delay)
            injector.start()

        try:
            result = await self.controller.attach(tool)
        finally:
            if injector is not None:
                injector.cancel()

        if result.reason is DetachReason.EXITED:
            self._reported_exits.add(tool)
        await self.history.capture(tool, result.captured, adapter)
        self.ui.leave_notice(adapter, result)
        if result.reason is DetachReason.EXITED:
            self.registry.kill(tool, silent=True)
        self._flush_deferred()

    async def forward(self, args: str) -> None:
        """Forward the last response to another tool."""
        last = self.history.last_assistant()
        if last is None:
            self.ui.notice("No response to forward yet.")
            return
        target, extra, error = parse_forward_args(args, last.tool, self.adapters.names())
        if error is not None or target is None:
            self.ui.notice(escape(error or "No target tool."))
            return

        source = self.adapters.get(last.tool)
        source_name = source.display_name if source else last.tool
        prompt = build_forward_prompt(source_name, last.content, extra)

        self.active = target
        if source is not None:
            self.ui.forward_banner(source, self.active_adapter)

        session = self.registry.get(target)
        if session is not None and session.alive:
            await self.interactive(target, prompt=prompt)
        else:
            await self.send(prompt)

    # ------------------------------------------------------------------
    # Wire events
    # ------------------------------------------------------------------

    async def _consume_wire(self) -> None:
        queue = self.wire.subscribe()
        while True:
            event = await queue.get()
            if event is None:
                break
            if self.controller.session is not None:
                # Never print into an attached tool's screen
                self._deferred.append(event)
            else:
                self._show_event(event)
        self.wire.unsubscribe(queue)

    def _flush_deferred(self) -> None:
        events, self._deferred = self._deferred, []
        for event in events:
            self._show_event(event)

    def _show_event(self, event: WireEvent) -> None:
        d = event.data
        if event.type == EventType.SESSION_EXIT:
            tool_id = d.get("tool_id", "?")
            if tool_id in self._reported_exits:
                self._reported_exits.discard(tool_id)
                return
            self.ui.exit_notice(self.adapters.get(tool_id), tool_id, d.get("exit_code"))
        elif event.type == EventType.ERROR:
            self.ui.error(d.get("error", "Unknown error"))

    # ------------------------------------------------------------------
    # Line input
    # ------------------------------------------------------------------

    def _completions(self) -> list[str]:
        return [f"//{name}" for name in (*self.adapters.names(), *BUILTIN_COMMANDS)]

    def complete(self, text: str, state: int) -> str | None:
        """readline completer for ``//`` commands."""
        if not text.startswith("/"):
            return None
        options = [c for c in self._completions() if c.startswith(text)] or self._completions()
        return options[state] if state < len(options) else None

    def _setup_readline(self) -> None:
        try:
            import readline
        except ImportError:
            return
        readline.set_completer(self.complete)
        readline.set_completer_delims(" \t\n")
        readline.parse_and_bind("tab: complete")
        readline.set_history_length(self.config.history.max_input_history)

    async def _read_line(self, prompt: str) -> str:
        """``input()`` on a daemon thread, so shutdown never waits on it."""
        loop = asyncio.get_running_loop()
        future: asyncio.Future[str] = loop.create_future()

        def _deliver(value: str | None, error: BaseException | None) -> None:
            if future.done():
                return
            if error is not None:
                future.set_exception(error)
            else:
                future.set_result(value or "")

        def _worker() -> None:
            try:
                line = input(prompt)
            except Exception as e:  # EOFError on Ctrl+D
                loop.call_soon_threadsafe(_deliver, None, e)
            else:
                loop.call_soon_threadsafe(_deliver, line, None)

        threading.Thread(target=_worker, name="aic-input", daemon=True).start()
        return await future
