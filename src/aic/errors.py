"""Exception hierarchy for aic."""

from __future__ import annotations


class AicError(Exception):
    """Base class for all aic errors."""


class SpawnError(AicError):
    """A tool subprocess could not be launched or never became ready."""

    def __init__(self, tool_id: str, message: str, cause: BaseException | None = None) -> None:
        super().__init__(f"Failed to start {tool_id}: {message}")
        self.tool_id = tool_id
        self.cause = cause


class UnknownToolError(AicError):
    """No adapter is registered for the requested tool id."""

    def __init__(self, tool_id: str) -> None:
        super().__init__(f"Unknown tool: {tool_id}")
        self.tool_id = tool_id


class AlreadyAttachedError(AicError):
    """Another session already owns the terminal."""

    def __init__(self, tool_id: str, attached_tool_id: str) -> None:
        super().__init__(
            f"Cannot attach to {tool_id}: {attached_tool_id} is attached (detach it first)"
        )
        self.tool_id = tool_id
        self.attached_tool_id = attached_tool_id


class InvalidTransitionError(AicError):
    """A session was asked to move to a state it cannot reach from its current one."""

    def __init__(self, tool_id: str, state: str, target: str) -> None:
        super().__init__(f"Session {tool_id}: cannot go from {state} to {target}")
        self.tool_id = tool_id
        self.state = state
        self.target = target


class ToolRunError(AicError):
    """A one-shot (print mode) tool invocation exited with a non-zero status."""

    def __init__(self, tool_id: str, exit_code: int | None, output: str = "") -> None:
        detail = output.strip()
        super().__init__(
            f"{tool_id} exited with code {exit_code}" + (f": {detail}" if detail else "")
        )
        self.tool_id = tool_id
        self.exit_code = exit_code
        self.output = output
