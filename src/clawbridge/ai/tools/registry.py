"""Tool registry: name -> tool, plus failure-safe dispatch."""

from __future__ import annotations

import time
from typing import Any, Iterable

from clawbridge.ai.tools.base import Tool, ToolResult
from clawbridge.log import get_logger

logger = get_logger(__name__)

TOOL_NOT_FOUND = "ToolNotFound"
TOOL_EXECUTION_FAILED = "ToolExecutionFailed"


class ToolRegistry:
    """Registry of all available tools.

    ``execute`` never raises: unknown tools and executor exceptions come back
    as failed ``ToolResult`` values tagged with an ``error_kind``.
    """

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            logger.warning("tool_overwritten", tool_name=tool.name)
        self._tools[tool.name] = tool
        logger.info("tool_registered", tool_name=tool.name)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def all_tools(self) -> list[Tool]:
        return list(self._tools.values())

    def tools_by_names(self, names: Iterable[str]) -> list[Tool]:
        """Subset by name list; an empty list selects every tool."""
        names = list(names)
        if not names:
            return self.all_tools()
        return [self._tools[n] for n in names if n in self._tools]

    def describe(self) -> list[dict[str, str]]:
        return [{"name": t.name, "description": t.description} for t in self._tools.values()]

    def definitions(self, names: Iterable[str] = ()) -> list[dict[str, Any]]:
        return [t.to_api_dict() for t in self.tools_by_names(names)]

    async def execute(self, name: str, args: dict[str, Any] | None = None) -> ToolResult:
        tool = self._tools.get(name)
        if tool is None:
            logger.warning("tool_not_found", tool=name)
            return ToolResult.fail(f"Tool not found: {name}", error_kind=TOOL_NOT_FOUND)

        args = args or {}
        started = time.monotonic()
        try:
            result = await tool.execute(**args)
        except Exception as e:
            logger.error("tool_execution_error", tool=name, error=str(e))
            return ToolResult.fail(str(e) or type(e).__name__, error_kind=TOOL_EXECUTION_FAILED)

        if not isinstance(result, ToolResult):
            result = ToolResult.ok(str(result))
        logger.info(
            "tool_executed",
            tool=name,
            success=result.success,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        return result

    def discover_and_register(self, enabled: Iterable[str] = ()) -> None:
        """Register the built-in tools (all of them when ``enabled`` is empty)."""
        from clawbridge.ai.tools.executor import ShellTool
        from clawbridge.ai.tools.filesystem import ListDirTool, ReadFileTool, WriteFileTool
        from clawbridge.ai.tools.system import CwdTool, SystemInfoTool

        wanted = set(enabled)
        for tool in (
            ShellTool(),
            ReadFileTool(),
            WriteFileTool(),
            ListDirTool(),
            SystemInfoTool(),
            CwdTool(),
        ):
            if not wanted or tool.name in wanted:
                self.register(tool)
