"""Configuration — Pydantic models for aic settings."""

from __future__ import annotations

import json
import os
from typing import TYPE_CHECKING, Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from aic.pty.buffer import DEFAULT_MAX_CHARS

if TYPE_CHECKING:
    from aic.adapters.base import ToolAdapter


class SessionConfig(BaseModel):
    """Persistent PTY session settings."""

    buffer_max_chars: int = Field(
        default=DEFAULT_MAX_CHARS,
        gt=0,
        description="Output kept per session for replay/forwarding; oldest dropped first",
    )
    wait_for_ready: bool = Field(
        default=False,
        description="Block //i until the tool's ready pattern appears",
    )
    ready_timeout: float = Field(
        default=30.0, gt=0, description="Deadline (seconds) when waiting for ready"
    )
    term: str = Field(default="xterm-256color", description="TERM for tool processes")
    kill_grace: float = Field(
        default=2.0, ge=0, description="Seconds between SIGTERM and SIGKILL"
    )


class AttachConfig(BaseModel):
    """Attach/detach behaviour."""

    escape_window: float = Field(
        default=0.5,
        gt=0,
        description="Two single Escape presses closer than this detach",
    )
    replay_on_reattach: bool = Field(
        default=True, description="Clear screen and replay buffered output on reattach"
    )


class HistoryConfig(BaseModel):
    """Conversation history and input history."""

    min_capture_chars: int = Field(
        default=50,
        ge=0,
        description="Interactive captures shorter than this are not recorded",
    )
    max_input_history: int = Field(default=100, gt=0)
    persist: bool = Field(default=False, description="Write a JSONL transcript")
    transcript_dir: str = Field(default="~/.aic/transcripts")


class ToolOverride(BaseModel):
    """Per-tool overrides of adapter defaults."""

    command: str | None = None
    args: list[str] | None = None
    ready_pattern: str | None = None
    idle_timeout: float | None = Field(default=None, gt=0)
    env: dict[str, str] = Field(default_factory=dict)

    def apply(self, adapter: ToolAdapter) -> None:
        """Write the fields that are set onto an adapter."""
        if self.command:
            adapter.command = self.command
        if self.args is not None:
            adapter.args = list(self.args)
        if self.ready_pattern is not None:
            adapter.ready_pattern = self.ready_pattern
        if self.idle_timeout is not None:
            adapter.idle_timeout = self.idle_timeout
        adapter.env.update(self.env)


class AicConfig(BaseModel):
    """Top-level aic configuration."""

    default_tool: str = Field(default="claude")
    session: SessionConfig = Field(default_factory=SessionConfig)
    attach: AttachConfig = Field(default_factory=AttachConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    tools: dict[str, ToolOverride] = Field(default_factory=dict)

    @classmethod
    def load(cls, config_path: str | None = None) -> AicConfig:
        """Load config from file, env vars, or defaults.

        Priority: env vars > config file > defaults.

        Env vars:
            AIC_DEFAULT_TOOL        - Tool active at startup
            AIC_BUFFER_MAX_CHARS    - Per-session output buffer capacity
            AIC_WAIT_FOR_READY      - "1"/"true" to block until the tool prompt appears
            AIC_READY_TIMEOUT       - Seconds to wait for the prompt
            AIC_ESCAPE_WINDOW       - Double-Escape detach window in seconds
            AIC_PERSIST_HISTORY     - "1"/"true" to write a JSONL transcript
        """
        load_dotenv(override=True)

        config_data: dict[str, Any] = {}

        if config_path and os.path.exists(config_path):
            with open(config_path) as f:
                config_data = json.load(f)

        session = config_data.get("session", {})
        attach = config_data.get("attach", {})
        history = config_data.get("history", {})

        env_tool = os.environ.get("AIC_DEFAULT_TOOL")
        if env_tool:
            config_data["default_tool"] = env_tool.lower()

        env_buffer = os.environ.get("AIC_BUFFER_MAX_CHARS")
        if env_buffer:
            session["buffer_max_chars"] = int(env_buffer)

        env_wait = os.environ.get("AIC_WAIT_FOR_READY")
        if env_wait:
            session["wait_for_ready"] = _truthy(env_wait)

        env_ready_timeout = os.environ.get("AIC_READY_TIMEOUT")
        if env_ready_timeout:
            session["ready_timeout"] = float(env_ready_timeout)

        env_window = os.environ.get("AIC_ESCAPE_WINDOW")
        if env_window:
            attach["escape_window"] = float(env_window)

        env_persist = os.environ.get("AIC_PERSIST_HISTORY")
        if env_persist:
            history["persist"] = _truthy(env_persist)

        if session:
            config_data["session"] = session
        if attach:
            config_data["attach"] = attach
        if history:
            config_data["history"] = history

        return cls.model_validate(config_data)


def _truthy(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")
