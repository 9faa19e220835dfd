"""Tests for aic.pty.registry.SessionRegistry."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from aic.adapters.base import ToolAdapter
from aic.adapters.registry import AdapterRegistry
from aic.config import SessionConfig
from aic.errors import AlreadyAttachedError, InvalidTransitionError, SpawnError, UnknownToolError
from aic.pty.registry import SessionRegistry
from aic.pty.session import SessionState
from aic.session.wire import EventType, Wire, WireEvent


def shell_adapter(name: str, script: str, ready_pattern: str | None = None) -> ToolAdapter:
    return ToolAdapter(
        name=name,
        display_name=name.title(),
        command="/bin/sh",
        args=["-c", script],
        ready_pattern=ready_pattern,
        continue_args=["resumed"],
    )


def make_registry(
    tmp_path: Path, *adapters: ToolAdapter, wire: Wire | None = None, **kwargs
) -> SessionRegistry:
    reg = AdapterRegistry()
    reg.register_many(list(adapters))
    return SessionRegistry(
        reg,
        config=kwargs.pop("config", SessionConfig(kill_grace=1.0)),
        wire=wire,
        cwd=str(tmp_path),
        terminal_size=lambda: (100, 30),
    )


def drain(queue) -> list[WireEvent]:
    return [queue.get_nowait() for _ in range(queue.qsize())]


@pytest.fixture
def wire() -> Wire:
    return Wire()


# ---------------------------------------------------------------------------
# get_or_create
# ---------------------------------------------------------------------------


class TestGetOrCreate:
    async def test_unknown_tool(self, tmp_path: Path) -> None:
        registry = make_registry(tmp_path, shell_adapter("sh", "sleep 10"))
        with pytest.raises(UnknownToolError):
            await registry.get_or_create("nope")
        assert len(registry) == 0

    async def test_spawns_with_adapter_settings(self, tmp_path: Path) -> None:
        registry = make_registry(
            tmp_path,
            shell_adapter("sh", "sleep 10"),
            config=SessionConfig(buffer_max_chars=1234, kill_grace=1.0),
        )
        try:
            session = await registry.get_or_create("sh")
            assert session.command == ["/bin/sh", "-c", "sleep 10"]
            assert session.cwd == str(tmp_path)
            assert (session.cols, session.rows) == (100, 30)
            assert session.buffer.max_chars == 1234
            assert "sh" in registry
        finally:
            registry.cleanup()

    async def test_history_adds_continue_args(self, tmp_path: Path) -> None:
        registry = make_registry(tmp_path, shell_adapter("sh", "sleep 10"))
        try:
            session = await registry.get_or_create("sh", has_history=True)
            assert session.command[-1] == "resumed"
        finally:
            registry.cleanup()

    async def test_reuses_live_session(self, tmp_path: Path) -> None:
        registry = make_registry(tmp_path, shell_adapter("sh", "sleep 10"))
        try:
            first = await registry.get_or_create("sh")
            second = await registry.get_or_create("sh")
            assert first is second
            assert len(registry) == 1
        finally:
            registry.cleanup()

    async def test_replaces_dead_session(self, tmp_path: Path) -> None:
        registry = make_registry(tmp_path, shell_adapter("sh", "exit 0"))
        try:
            first = await registry.get_or_create("sh")
            await first.wait_for_exit(timeout=5)
            second = await registry.get_or_create("sh")
            assert second is not first
            assert registry.get("sh") is second
        finally:
            registry.cleanup()

    async def test_wait_for_ready(self, tmp_path: Path) -> None:
        registry = make_registry(
            tmp_path,
            shell_adapter("sh", "sleep 0.3; printf '> '; sleep 10", ready_pattern=r"> "),
        )
        try:
            session = await registry.get_or_create("sh", wait_for_ready=True, timeout=5)
            assert session.ready
            assert session.state == SessionState.READY
            assert "> " in session.buffer.read_all()
        finally:
            registry.cleanup()

    async def test_without_wait_returns_while_spawning(self, tmp_path: Path) -> None:
        registry = make_registry(
            tmp_path,
            shell_adapter("sh", "sleep 0.5; printf '> '; sleep 10", ready_pattern=r"> "),
        )
        try:
            session = await registry.get_or_create("sh")
            assert session.state == SessionState.SPAWNING
        finally:
            registry.cleanup()

    async def test_exit_before_ready(self, tmp_path: Path) -> None:
        registry = make_registry(
            tmp_path, shell_adapter("sh", "echo crashed; exit 2", ready_pattern=r"> ")
        )
        with pytest.raises(SpawnError):
            await registry.get_or_create("sh", wait_for_ready=True, timeout=5)
        assert "sh" not in registry

    async def test_ready_timeout(self, tmp_path: Path) -> None:
        registry = make_registry(
            tmp_path, shell_adapter("sh", "sleep 10", ready_pattern=r"never")
        )
        with pytest.raises(SpawnError) as exc_info:
            await registry.get_or_create("sh", wait_for_ready=True, timeout=0.2)
        assert "not ready" in str(exc_info.value)
        assert "sh" not in registry

    async def test_concurrent_callers_both_wait(self, tmp_path: Path) -> None:
        registry = make_registry(
            tmp_path,
            shell_adapter("sh", "sleep 0.5; printf '> '; sleep 10", ready_pattern=r"> "),
        )
        try:
            first = asyncio.create_task(
                registry.get_or_create("sh", wait_for_ready=True, timeout=5)
            )
            await asyncio.sleep(0.1)
            second = await registry.get_or_create("sh", wait_for_ready=True, timeout=5)
            assert second.ready
            assert second.state == SessionState.READY
            assert await first is second
        finally:
            registry.cleanup()

    async def test_joining_caller_timeout_keeps_session(self, tmp_path: Path) -> None:
        registry = make_registry(
            tmp_path,
            shell_adapter("sh", "sleep 0.6; printf '> '; sleep 10", ready_pattern=r"> "),
        )
        try:
            first = asyncio.create_task(
                registry.get_or_create("sh", wait_for_ready=True, timeout=5)
            )
            await asyncio.sleep(0.05)
            with pytest.raises(SpawnError) as exc_info:
                await registry.get_or_create("sh", wait_for_ready=True, timeout=0.1)
            assert "not ready" in str(exc_info.value)
            session = await first
            assert session.ready
            assert registry.get("sh") is session
        finally:
            registry.cleanup()

    async def test_spawner_timeout_fails_joining_caller(self, tmp_path: Path) -> None:
        registry = make_registry(
            tmp_path, shell_adapter("sh", "sleep 10", ready_pattern=r"never")
        )
        first = asyncio.create_task(
            registry.get_or_create("sh", wait_for_ready=True, timeout=0.3)
        )
        await asyncio.sleep(0.05)
        with pytest.raises(SpawnError) as exc_info:
            await registry.get_or_create("sh", wait_for_ready=True, timeout=5)
        assert "exited before ready" in str(exc_info.value)
        with pytest.raises(SpawnError):
            await first
        assert "sh" not in registry

    async def test_launch_failure(self, tmp_path: Path) -> None:
        adapter = ToolAdapter(name="ghost", display_name="Ghost", command="/nonexistent/tool")
        registry = make_registry(tmp_path, adapter)
        with pytest.raises(SpawnError):
            await registry.get_or_create("ghost")
        assert len(registry) == 0


# ---------------------------------------------------------------------------
# Exit notification and kill
# ---------------------------------------------------------------------------


class TestExitAndKill:
    async def test_exit_notifies_wire(self, tmp_path: Path, wire: Wire) -> None:
        queue = wire.subscribe()
        registry = make_registry(
            tmp_path, shell_adapter("sh", "echo goodbye; exit 4"), wire=wire
        )
        session = await registry.get_or_create("sh")
        await session.wait_for_exit(timeout=5)

        exits = [e for e in drain(queue) if e.type == EventType.SESSION_EXIT]
        assert len(exits) == 1
        assert exits[0].data["tool_id"] == "sh"
        assert exits[0].data["exit_code"] == 4
        assert "goodbye" in exits[0].data["last_output"]

    async def test_silent_kill(self, tmp_path: Path, wire: Wire) -> None:
        queue = wire.subscribe()
        registry = make_registry(tmp_path, shell_adapter("sh", "sleep 10"), wire=wire)
        first = await registry.get_or_create("sh")

        assert registry.kill("sh", silent=True) is True
        assert not first.alive
        assert "sh" not in registry
        assert not any(e.type == EventType.SESSION_EXIT for e in drain(queue))

        try:
            second = await registry.get_or_create("sh")
            assert second is not first
            assert second.alive
        finally:
            registry.cleanup()

    async def test_kill_notifies(self, tmp_path: Path, wire: Wire) -> None:
        queue = wire.subscribe()
        registry = make_registry(tmp_path, shell_adapter("sh", "sleep 10"), wire=wire)
        await registry.get_or_create("sh")
        assert registry.kill("sh") is True
        assert any(e.type == EventType.SESSION_EXIT for e in drain(queue))

    def test_kill_unknown(self, tmp_path: Path) -> None:
        registry = make_registry(tmp_path, shell_adapter("sh", "sleep 10"))
        assert registry.kill("sh") is False

    async def test_cleanup_is_silent(self, tmp_path: Path, wire: Wire) -> None:
        queue = wire.subscribe()
        registry = make_registry(
            tmp_path,
            shell_adapter("a", "sleep 10"),
            shell_adapter("b", "sleep 10"),
            wire=wire,
        )
        a = await registry.get_or_create("a")
        b = await registry.get_or_create("b")
        registry.cleanup()
        assert len(registry) == 0
        assert not a.alive and not b.alive
        assert not any(e.type == EventType.SESSION_EXIT for e in drain(queue))


# ---------------------------------------------------------------------------
# Attachment
# ---------------------------------------------------------------------------


class TestAttach:
    async def test_single_attached_session(self, tmp_path: Path) -> None:
        registry = make_registry(
            tmp_path, shell_adapter("a", "sleep 10"), shell_adapter("b", "sleep 10")
        )
        try:
            a = await registry.get_or_create("a")
            b = await registry.get_or_create("b")

            session, reattach = registry.attach("a")
            assert session is a
            assert reattach is False
            with pytest.raises(AlreadyAttachedError) as exc_info:
                registry.attach("b")
            assert exc_info.value.attached_tool_id == "a"
            assert not b.attached

            assert registry.detach("a") is True
            session, reattach = registry.attach("b")
            assert session is b
            assert registry.attached_session() is b
            assert a.state == SessionState.DETACHED
        finally:
            registry.cleanup()

    async def test_reattach_flag(self, tmp_path: Path) -> None:
        registry = make_registry(tmp_path, shell_adapter("sh", "sleep 10"))
        try:
            await registry.get_or_create("sh")
            registry.attach("sh")
            registry.detach("sh")
            _, reattach = registry.attach("sh")
            assert reattach is True
        finally:
            registry.cleanup()

    def test_attach_absent(self, tmp_path: Path) -> None:
        registry = make_registry(tmp_path, shell_adapter("sh", "sleep 10"))
        with pytest.raises(InvalidTransitionError):
            registry.attach("sh")

    async def test_attach_dead(self, tmp_path: Path) -> None:
        registry = make_registry(tmp_path, shell_adapter("sh", "exit 0"))
        session = await registry.get_or_create("sh")
        await session.wait_for_exit(timeout=5)
        with pytest.raises(InvalidTransitionError):
            registry.attach("sh")

    async def test_list_sessions(self, tmp_path: Path) -> None:
        registry = make_registry(tmp_path, shell_adapter("sh", "sleep 10"))
        try:
            session = await registry.get_or_create("sh")
            registry.attach("sh")
            rows = registry.list_sessions(now=10**9)
            assert rows == [
                {
                    "tool_id": "sh",
                    "state": "attached",
                    "pid": session.pid,
                    "alive": True,
                    "attached": True,
                    "buffered": len(session.buffer),
                    "exit_code": None,
                }
            ]
        finally:
            registry.cleanup()
