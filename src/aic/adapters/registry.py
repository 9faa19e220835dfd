"""Adapter registry — look up tool adapters by name."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from aic.adapters.base import ToolAdapter
from aic.adapters.builtin import builtin_adapters

if TYPE_CHECKING:
    from aic.config import AicConfig

logger = logging.getLogger(__name__)


class AdapterRegistry:
    """Registry of available tool adapters, in registration order."""

    def __init__(self) -> None:
        self._adapters: dict[str, ToolAdapter] = {}

    @classmethod
    def from_config(cls, config: AicConfig | None = None) -> AdapterRegistry:
        """Built-in adapters with per-tool overrides from the config applied."""
        reg = cls()
        reg.register_many(builtin_adapters())
        if config is None:
            return reg
        for name, override in config.tools.items():
            adapter = reg.get(name)
            if adapter is None:
                if not override.command:
                    logger.warning("Tool %s has no adapter and no command, skipping", name)
                    continue
                adapter = ToolAdapter(name=name, display_name=name, command=override.command)
                reg.register(adapter)
            override.apply(adapter)
        return reg

    def register(self, adapter: ToolAdapter) -> None:
        """Register an adapter instance."""
        if adapter.name in self._adapters:
            logger.warning("Adapter %s already registered, overwriting", adapter.name)
        self._adapters[adapter.name] = adapter

    def register_many(self, adapters: list[ToolAdapter]) -> None:
        for adapter in adapters:
            self.register(adapter)

    def get(self, name: str) -> ToolAdapter | None:
        """Get an adapter by name."""
        return self._adapters.get(name)

    def names(self) -> list[str]:
        """Get all registered tool names."""
        return list(self._adapters.keys())

    def __iter__(self):
        return iter(self._adapters.values())

    def __len__(self) -> int:
        return len(self._adapters)

    def __contains__(self, name: str) -> bool:
        return name in self._adapters
