"""Host introspection tools."""

from __future__ import annotations

import os
import platform
import shutil
import sys
import time
from pathlib import Path
from typing import Any

from clawbridge.ai.tools.base import Tool, ToolResult

_STARTED = time.monotonic()


class SystemInfoTool(Tool):
    @property
    def name(self) -> str:
        return "system_info"

    @property
    def description(self) -> str:
        return "Get system information (OS, CPU count, disk, Python version)."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {"type": "object", "properties": {}}

    async def execute(self, **kwargs: Any) -> ToolResult:
        disk = shutil.disk_usage(Path.home())
        info = {
            "platform": sys.platform,
            "os": platform.platform(),
            "arch": platform.machine(),
            "hostname": platform.node(),
            "homedir": str(Path.home()),
            "cwd": os.getcwd(),
            "python": platform.python_version(),
            "cpu_count": os.cpu_count() or 0,
            "disk_total": f"{disk.total // 1024**3} GB",
            "disk_free": f"{disk.free // 1024**3} GB",
            "bot_uptime": f"{int(time.monotonic() - _STARTED)}s",
        }
        return ToolResult.ok("\n".join(f"{k}: {v}" for k, v in info.items()), **info)


class CwdTool(Tool):
    @property
    def name(self) -> str:
        return "cwd"

    @property
    def description(self) -> str:
        return "Get current working directory."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {"type": "object", "properties": {}}

    async def execute(self, **kwargs: Any) -> ToolResult:
        return ToolResult.ok(os.getcwd())
