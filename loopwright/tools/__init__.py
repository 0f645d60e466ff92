"""Tools package for Loopwright."""

from typing import Any, Callable

from loopwright.exceptions import ConfigurationError
from loopwright.memory import MemoryIndex
from loopwright.tools.registry import (
    DO_NOTHING,
    TASK_COMPLETE,
    Tool,
    ToolRegistry,
    ToolResult,
)
from loopwright.tools.web_page_scraper import WebPageScraperTool
from loopwright.tools.web_search import WebSearchTool

# Declared command identifier -> factory taking the agent's memory index.
BUILTIN_TOOL_FACTORIES: dict[str, Callable[[MemoryIndex | None], Tool]] = {
    WebSearchTool.name: WebSearchTool,
    WebPageScraperTool.name: WebPageScraperTool,
}


def create_default_registry(config: Any, memory: MemoryIndex | None = None) -> ToolRegistry:
    """Build a registry holding the tools enabled in ``config.tools.enabled``."""
    tools_cfg = config.tools
    registry = ToolRegistry(timeout_seconds=float(tools_cfg.timeout_seconds))
    for tool_name in tools_cfg.enabled:
        factory = BUILTIN_TOOL_FACTORIES.get(tool_name)
        if factory is None:
            raise ConfigurationError(f"Unknown tool in tools.enabled: {tool_name}")
        registry.register(factory(memory))
    return registry


__all__ = [
    "BUILTIN_TOOL_FACTORIES",
    "DO_NOTHING",
    "TASK_COMPLETE",
    "Tool",
    "ToolRegistry",
    "ToolResult",
    "WebPageScraperTool",
    "WebSearchTool",
    "create_default_registry",
]
