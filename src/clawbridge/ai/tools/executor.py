"""Shell command execution tool."""

from __future__ import annotations

import asyncio
import os
import sys
import time
from typing import Any

from clawbridge.ai.tools.base import Tool, ToolResult

MAX_TIMEOUT = 300


class ShellTool(Tool):
    """Run a shell command on the local computer."""

    @property
    def name(self) -> str:
        return "shell"

    @property
    def description(self) -> str:
        return (
            "Execute a shell command on the local computer. "
            "Returns stdout and stderr output and the exit code."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "command": {
                    "type": "string",
                    "description": "The shell command to run",
                },
                "cwd": {
                    "type": "string",
                    "description": "Working directory for execution (default: current directory)",
                },
                "timeout": {
                    "type": "integer",
                    "description": f"Timeout in seconds (default: 30, max: {MAX_TIMEOUT})",
                },
                "env": {
                    "type": "object",
                    "description": "Extra environment variables",
                },
            },
            "required": ["command"],
        }

    async def execute(self, **kwargs: Any) -> ToolResult:
        command = kwargs.get("command", "")
        cwd = kwargs.get("cwd") or None
        timeout = min(int(kwargs.get("timeout", 30)), MAX_TIMEOUT)
        extra_env = kwargs.get("env") or {}

        if not command:
            return ToolResult.fail("Command is required")

        env = {**os.environ, **{str(k): str(v) for k, v in extra_env.items()}}
        started = time.monotonic()
        try:
            if sys.platform == "win32":
                process = await asyncio.create_subprocess_exec(
                    "cmd.exe", "/c", command,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    cwd=cwd,
                    env=env,
                )
            else:
                process = await asyncio.create_subprocess_exec(
                    "/bin/bash", "-c", command,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    cwd=cwd,
                    env=env,
                )
        except OSError as e:
            return ToolResult.fail(str(e))

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            return ToolResult.fail(f"Command timed out after {timeout} seconds")

        duration_ms = int((time.monotonic() - started) * 1000)
        output = stdout.decode("utf-8", errors="replace")[:20000]
        if stderr:
            output += f"\nSTDERR: {stderr.decode('utf-8', errors='replace')[:5000]}"

        code = process.returncode
        return ToolResult(
            success=code == 0,
            output=output or "(no output)",
            error=None if code == 0 else f"Exit code: {code}",
            metadata={"exit_code": code, "duration": f"{duration_ms}ms"},
        )
