"""Tool adapters — how to launch each external CLI and clean its output."""

from aic.adapters.base import ToolAdapter
from aic.adapters.builtin import ClaudeAdapter, GeminiAdapter, builtin_adapters
from aic.adapters.registry import AdapterRegistry

__all__ = [
    "ToolAdapter",
    "ClaudeAdapter",
    "GeminiAdapter",
    "builtin_adapters",
    "AdapterRegistry",
]
