"""Tool registry and base tool class."""

import asyncio
import json
from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, model_validator

from loopwright.exceptions import ToolExecutionError, ToolUnavailableError
from loopwright.logging import get_logger

log = get_logger(__name__)

TASK_COMPLETE = "task_complete"
DO_NOTHING = "do_nothing"

# Always-available commands handled by the agent itself.
PSEUDO_TOOL_DEFINITIONS: list[dict[str, Any]] = [
    {
        "name": TASK_COMPLETE,
        "description": "Signal that all goals have been achieved",
        "args": {},
    },
    {
        "name": DO_NOTHING,
        "description": "Do nothing this turn",
        "args": {},
    },
]


class ToolResult(BaseModel):
    """Result from tool execution."""

    success: bool = True
    content: str = ""
    error: str | None = None

    @model_validator(mode="after")
    def _normalize_failure_error(self) -> "ToolResult":
        """Ensure failed results always provide an error message."""
        if not self.success and not (self.error or "").strip():
            fallback = (self.content or "").strip()
            self.error = fallback or "Tool execution failed"
        return self


class Tool(ABC):
    """Base class for all tools."""

    name: str = ""
    description: str = ""
    parameters: dict[str, Any] = {}
    response_format: dict[str, str] = {}
    timeout_seconds: float = 60.0

    @abstractmethod
    async def execute(self, **kwargs: Any) -> ToolResult:
        """Execute the tool.

        Args:
            **kwargs: Tool-specific arguments

        Returns:
            ToolResult with success status and content
        """
        pass

    def get_definition(self) -> dict[str, Any]:
        """Get the tool definition shown to the model."""
        properties = self.parameters.get("properties", {})
        return {
            "name": self.name,
            "description": self.description,
            "args": {
                arg: str(spec.get("description", "")) if isinstance(spec, dict) else str(spec)
                for arg, spec in properties.items()
            },
            "response_format": dict(self.response_format),
        }

    def prompt(self) -> str:
        return json.dumps(self.get_definition())

    def validate_arguments(self, arguments: dict[str, Any]) -> None:
        """Validate tool arguments against schema.

        Raises:
            ToolExecutionError if a required argument is missing
        """
        required = self.parameters.get("required", [])
        for field in required:
            if field not in arguments:
                raise ToolExecutionError(
                    self.name,
                    f"Missing required argument: {field}",
                )


class ToolRegistry:
    """Explicit mapping of declared command identifiers to tool instances."""

    def __init__(self, timeout_seconds: float | None = None):
        self._tools: dict[str, Tool] = {}
        self._timeout_seconds = timeout_seconds

    def register(self, tool: Tool) -> None:
        """Register a tool under its declared name."""
        if not tool.name:
            raise ValueError("Tool must have a name")
        if tool.name in (TASK_COMPLETE, DO_NOTHING):
            raise ValueError(f"Tool name is reserved: {tool.name}")

        log.debug("Registering tool", tool=tool.name)
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)

    def has_tool(self, name: str) -> bool:
        """Return whether a tool name is currently registered."""
        return name in self._tools

    def get(self, name: str) -> Tool:
        """Get a tool by name.

        Raises:
            ToolUnavailableError if not found
        """
        if name not in self._tools:
            raise ToolUnavailableError(name)
        return self._tools[name]

    def list_tools(self) -> list[str]:
        return list(self._tools.keys())

    def get_definitions(self) -> list[dict[str, Any]]:
        return [tool.get_definition() for tool in self._tools.values()]

    def tools_prompt(self) -> list[str]:
        """One JSON line per available command, pseudo-commands included."""
        lines = [tool.prompt() for tool in self._tools.values()]
        lines.extend(json.dumps(definition) for definition in PSEUDO_TOOL_DEFINITIONS)
        return lines

    async def execute(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        """Execute a tool by name.

        Returns:
            Successful ToolResult

        Raises:
            ToolUnavailableError if tool not found
            ToolExecutionError if execution fails, times out or reports failure
        """
        tool = self.get(name)
        tool.validate_arguments(arguments)

        timeout_seconds = self._timeout_seconds or float(getattr(tool, "timeout_seconds", 60.0) or 60.0)
        timeout_seconds = max(1.0, timeout_seconds)
        try:
            log.info("Executing tool", tool=name, args=arguments)
            result = await asyncio.wait_for(tool.execute(**arguments), timeout=timeout_seconds)
        except asyncio.TimeoutError:
            timeout_label = int(timeout_seconds) if timeout_seconds.is_integer() else timeout_seconds
            raise ToolExecutionError(name, f"Execution timed out after {timeout_label}s")
        except ToolExecutionError:
            raise
        except Exception as e:
            log.error("Tool execution failed", tool=name, error=str(e))
            raise ToolExecutionError(name, str(e))

        if not isinstance(result, ToolResult):
            raise ToolExecutionError(name, "Tool returned invalid result payload")
        log.info("Tool executed", tool=name, success=result.success)
        if not result.success:
            raise ToolExecutionError(name, result.error or "Tool execution failed")
        return result
