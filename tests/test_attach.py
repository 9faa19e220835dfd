"""Tests for aic.pty.attach.AttachController."""

from __future__ import annotations

import asyncio
import os
from pathlib import Path

import pytest

from aic.adapters.base import ToolAdapter
from aic.adapters.registry import AdapterRegistry
from aic.config import SessionConfig
from aic.pty.ansi import CLEAR_SCREEN, RESTORE_SEQUENCE
from aic.pty.attach import AttachController, DetachReason
from aic.pty.registry import SessionRegistry
from aic.pty.session import Session, SessionState
from aic.session.wire import EventType, Wire
from fakes import FakeTerminal

RESTORE = "".join(RESTORE_SEQUENCE)


@pytest.fixture
def registry(tmp_path: Path):
    adapters = AdapterRegistry()
    adapters.register(
        ToolAdapter(
            name="sh",
            display_name="Shell",
            command="/bin/sh",
            args=["-c", 'read line; echo "got:$line"; sleep 10'],
        )
    )
    adapters.register(
        ToolAdapter(
            name="short",
            display_name="Short",
            command="/bin/sh",
            args=["-c", "echo working; sleep 0.3; exit 5"],
        )
    )
    reg = SessionRegistry(
        adapters,
        config=SessionConfig(kill_grace=1.0),
        cwd=str(tmp_path),
        terminal_size=lambda: (80, 24),
    )
    yield reg
    reg.cleanup()


def idle_session(registry: SessionRegistry, tool_id: str = "idle") -> Session:
    """Register a session that was never spawned; enough for state/IO tests."""
    session = Session(tool_id=tool_id, command=["true"])
    session.mark_ready()
    registry._sessions[tool_id] = session
    return session


async def until_attached(controller: AttachController) -> None:
    for _ in range(100):
        if controller.session is not None and controller.session.attached:
            return
        await asyncio.sleep(0.01)
    raise AssertionError("controller never attached")


# ---------------------------------------------------------------------------
# Detach triggers
# ---------------------------------------------------------------------------


class TestDetach:
    async def test_control_byte_from_stdin(
        self, registry: SessionRegistry, terminal: FakeTerminal
    ) -> None:
        controller = AttachController(registry, terminal=terminal)
        session = await registry.get_or_create("sh")
        task = asyncio.create_task(controller.attach("sh"))
        await until_attached(controller)

        terminal.type(b"\x1d")
        result = await asyncio.wait_for(task, timeout=5)

        assert result.reason is DetachReason.DETACHED
        assert result.trigger == "control byte"
        assert session.state == SessionState.DETACHED
        assert session.alive
        assert controller.session is None

    async def test_terminal_restored_in_order(
        self, registry: SessionRegistry, terminal: FakeTerminal
    ) -> None:
        idle_session(registry)
        controller = AttachController(registry, terminal=terminal)
        task = asyncio.create_task(controller.attach("idle"))
        await until_attached(controller)
        controller.feed_input(b"\x1b\x1b")
        result = await task

        assert result.trigger == "double escape"
        assert terminal.events[0] == ("raw", "")
        assert terminal.events[-2:] == [("write", RESTORE), ("cooked", "")]
        # Restored exactly once
        assert [e for e in terminal.events if e == ("write", RESTORE)] == [("write", RESTORE)]

    async def test_stdin_eof_detaches(
        self, registry: SessionRegistry, terminal: FakeTerminal
    ) -> None:
        idle_session(registry)
        controller = AttachController(registry, terminal=terminal)
        task = asyncio.create_task(controller.attach("idle"))
        await until_attached(controller)
        os.close(terminal.write_fd)
        terminal.write_fd = -1
        result = await asyncio.wait_for(task, timeout=5)
        assert result.reason is DetachReason.DETACHED
        assert result.trigger == "eof"

    async def test_cancel_restores_terminal(
        self, registry: SessionRegistry, terminal: FakeTerminal
    ) -> None:
        session = idle_session(registry)
        controller = AttachController(registry, terminal=terminal)
        task = asyncio.create_task(controller.attach("idle"))
        await until_attached(controller)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert terminal.events[-2:] == [("write", RESTORE), ("cooked", "")]
        assert session.state == SessionState.DETACHED


# ---------------------------------------------------------------------------
# Input forwarding
# ---------------------------------------------------------------------------


class TestForwarding:
    async def test_keys_reach_process(
        self, registry: SessionRegistry, terminal: FakeTerminal
    ) -> None:
        controller = AttachController(registry, terminal=terminal)
        session = await registry.get_or_create("sh")
        task = asyncio.create_task(controller.attach("sh"))
        await until_attached(controller)

        terminal.type(b"hi\r")
        for _ in range(250):
            if "got:hi" in terminal.output:
                break
            await asyncio.sleep(0.02)
        controller.feed_input(b"\x1d")
        result = await asyncio.wait_for(task, timeout=5)

        assert "got:hi" in terminal.output
        assert "got:hi" in result.captured
        assert "got:hi" in session.buffer.read_all()

    async def test_terminal_responses_not_forwarded(
        self,
        registry: SessionRegistry,
        terminal: FakeTerminal,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        session = idle_session(registry)
        writes: list[bytes] = []
        monkeypatch.setattr(session, "write", lambda data: writes.append(data) or True)

        controller = AttachController(registry, terminal=terminal)
        task = asyncio.create_task(controller.attach("idle"))
        await until_attached(controller)

        controller.feed_input(b"\x1b[?1;2c")
        controller.feed_input(b"\x1b[I")
        controller.feed_input(b"\x1b[12;40R")
        controller.feed_input(b"ls\r")
        controller.feed_input(b"\x1d")
        await task

        assert writes == [b"ls\r"]

    async def test_input_after_detach_ignored(
        self,
        registry: SessionRegistry,
        terminal: FakeTerminal,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        session = idle_session(registry)
        writes: list[bytes] = []
        monkeypatch.setattr(session, "write", lambda data: writes.append(data) or True)

        controller = AttachController(registry, terminal=terminal)
        task = asyncio.create_task(controller.attach("idle"))
        await until_attached(controller)
        controller.feed_input(b"\x1d")
        await task
        controller.feed_input(b"late")
        assert writes == []


# ---------------------------------------------------------------------------
# Output, replay and capture
# ---------------------------------------------------------------------------


class TestOutput:
    async def test_capture_and_snapshot(
        self, registry: SessionRegistry, terminal: FakeTerminal
    ) -> None:
        session = idle_session(registry)
        session.feed_output("earlier output\n")
        controller = AttachController(registry, terminal=terminal)
        task = asyncio.create_task(controller.attach("idle"))
        await until_attached(controller)

        session.feed_output("the answer\n")
        controller.feed_input(b"\x1d")
        result = await task

        assert result.captured == "the answer\n"
        assert result.snapshot == "earlier output\nthe answer\n"
        assert "the answer" in terminal.output
        # First attach never replays
        assert CLEAR_SCREEN not in terminal.output
        assert result.reattach is False

    async def test_replay_on_reattach(
        self, registry: SessionRegistry, terminal: FakeTerminal
    ) -> None:
        session = idle_session(registry)
        controller = AttachController(registry, terminal=terminal)

        task = asyncio.create_task(controller.attach("idle"))
        await until_attached(controller)
        session.feed_output("\x1b[Ihello\x1b[O")
        controller.feed_input(b"\x1d")
        await task

        terminal.events.clear()
        task = asyncio.create_task(controller.attach("idle"))
        await until_attached(controller)
        controller.feed_input(b"\x1d")
        result = await task

        writes = [data for kind, data in terminal.events if kind == "write"]
        assert writes[0] == CLEAR_SCREEN
        assert writes[1] == "hello"
        assert result.reattach is True

    async def test_replay_disabled(
        self, registry: SessionRegistry, terminal: FakeTerminal
    ) -> None:
        session = idle_session(registry)
        session.feed_output("hello")
        session.attach()
        session.detach()
        controller = AttachController(registry, terminal=terminal, replay_on_reattach=False)
        task = asyncio.create_task(controller.attach("idle"))
        await until_attached(controller)
        controller.feed_input(b"\x1d")
        await task
        assert CLEAR_SCREEN not in terminal.output
        assert "hello" not in terminal.output

    async def test_resize_propagates(
        self, registry: SessionRegistry, terminal: FakeTerminal
    ) -> None:
        session = idle_session(registry)
        controller = AttachController(registry, terminal=terminal)
        task = asyncio.create_task(controller.attach("idle"))
        await until_attached(controller)
        assert (session.cols, session.rows) == (120, 40)

        terminal.cols, terminal.rows = 90, 30
        controller.handle_resize()
        assert (session.cols, session.rows) == (90, 30)

        controller.feed_input(b"\x1d")
        await task
        # Not attached: no effect
        terminal.cols = 200
        controller.handle_resize()
        assert session.cols == 90


# ---------------------------------------------------------------------------
# Process exit while attached
# ---------------------------------------------------------------------------


class TestExitWhileAttached:
    async def test_process_exit(
        self, registry: SessionRegistry, terminal: FakeTerminal
    ) -> None:
        controller = AttachController(registry, terminal=terminal)
        await registry.get_or_create("short")
        result = await asyncio.wait_for(controller.attach("short"), timeout=5)

        assert result.reason is DetachReason.EXITED
        assert result.exit_code == 5
        assert "working" in result.snapshot
        assert terminal.events[-2:] == [("write", RESTORE), ("cooked", "")]
        assert controller.session is None

    async def test_kill_from_elsewhere(
        self, registry: SessionRegistry, terminal: FakeTerminal
    ) -> None:
        session = idle_session(registry)
        controller = AttachController(registry, terminal=terminal)
        task = asyncio.create_task(controller.attach("idle"))
        await until_attached(controller)

        registry.kill("idle", silent=True)
        result = await asyncio.wait_for(task, timeout=5)

        assert result.reason is DetachReason.EXITED
        assert session.state == SessionState.DEAD
        assert terminal.events[-2:] == [("write", RESTORE), ("cooked", "")]


# ---------------------------------------------------------------------------
# Wire notifications
# ---------------------------------------------------------------------------


class TestWire:
    async def test_attach_and_detach_events(
        self, registry: SessionRegistry, terminal: FakeTerminal
    ) -> None:
        wire = Wire()
        queue = wire.subscribe()
        idle_session(registry)
        controller = AttachController(registry, terminal=terminal, wire=wire)
        task = asyncio.create_task(controller.attach("idle"))
        await until_attached(controller)
        controller.feed_input(b"\x1c")
        await task

        events = [queue.get_nowait() for _ in range(queue.qsize())]
        assert events[0].type == EventType.ATTACHED
        assert events[0].data == {"tool_id": "idle", "reattach": False}
        assert events[-1].type == EventType.DETACHED
        assert events[-1].data == {"tool_id": "idle", "trigger": "control byte"}
