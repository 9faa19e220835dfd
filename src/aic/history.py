"""Conversation history — what was said to and by each tool.

Holds user prompts, print-mode replies and captures of interactive
sessions so a reply can be forwarded from one tool to another. Can
optionally mirror every message to a JSONL transcript.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Literal

import aiofiles

if TYPE_CHECKING:
    from aic.adapters.base import ToolAdapter

logger = logging.getLogger(__name__)

Role = Literal["user", "assistant"]


@dataclass
class HistoryMessage:
    tool: str
    role: Role
    content: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class ConversationHistory:
    """In-memory conversation log with an optional JSONL transcript."""

    path: Path | None = None
    min_capture_chars: int = 50
    messages: list[HistoryMessage] = field(default_factory=list)
    # Tools that have conversation state on their side (--continue / --resume)
    sessions: set[str] = field(default_factory=set)

    def __post_init__(self) -> None:
        if self.path is not None:
            self.path = Path(self.path).expanduser()
            self.path.parent.mkdir(parents=True, exist_ok=True)

    async def add_user(self, tool: str, content: str) -> HistoryMessage:
        return await self._append(HistoryMessage(tool=tool, role="user", content=content))

    async def add_assistant(self, tool: str, content: str) -> HistoryMessage:
        self.sessions.add(tool)
        return await self._append(HistoryMessage(tool=tool, role="assistant", content=content))

    async def capture(self, tool: str, raw: str, adapter: ToolAdapter) -> HistoryMessage | None:
        """Record output captured from an interactive session.

        The adapter strips its chrome first; captures shorter than
        ``min_capture_chars`` are noise (a prompt redraw, a keystroke
        echo) and are not recorded.
        """
        self.sessions.add(tool)
        cleaned = adapter.clean_response(raw)
        if len(cleaned) < self.min_capture_chars:
            logger.debug("Capture from %s too short (%d chars), skipped", tool, len(cleaned))
            return None
        return await self.add_assistant(tool, cleaned)

    def pop(self) -> HistoryMessage | None:
        """Drop the most recent message (e.g. a prompt whose request failed)."""
        return self.messages.pop() if self.messages else None

    def last_assistant(self) -> HistoryMessage | None:
        for msg in reversed(self.messages):
            if msg.role == "assistant":
                return msg
        return None

    def has_session(self, tool: str) -> bool:
        return tool in self.sessions

    def clear(self) -> None:
        self.messages.clear()
        self.sessions.clear()

    def __len__(self) -> int:
        return len(self.messages)

    async def _append(self, message: HistoryMessage) -> HistoryMessage:
        self.messages.append(message)
        if self.path is not None:
            async with aiofiles.open(self.path, "a", encoding="utf-8") as f:
                await f.write(json.dumps(asdict(message), ensure_ascii=False) + "\n")
        return message

    @classmethod
    async def restore(cls, path: Path, min_capture_chars: int = 50) -> ConversationHistory:
        """Restore history from a JSONL transcript."""
        history = cls(path=path, min_capture_chars=min_capture_chars)
        assert history.path is not None
        if not history.path.exists():
            return history

        async with aiofiles.open(history.path, "r", encoding="utf-8") as f:
            async for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    data = json.loads(line)
                    msg = HistoryMessage(**data)
                except (json.JSONDecodeError, TypeError):
                    logger.warning("Skipping malformed JSONL line in %s", history.path)
                    continue
                history.messages.append(msg)
                if msg.role == "assistant":
                    history.sessions.add(msg.tool)
        return history
