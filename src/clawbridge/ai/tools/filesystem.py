"""File tools: read, write and list, confined to the home and working directories."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Sequence

from clawbridge.ai.tools.base import Tool, ToolResult

MAX_READ_BYTES = 500_000


class _SandboxedTool(Tool):
    """Shared path resolution: only paths under ``roots`` are reachable."""

    def __init__(self, roots: Sequence[str | Path] | None = None):
        if roots is None:
            roots = (Path.home(), Path.cwd())
        self._roots = tuple(Path(r).resolve() for r in roots)

    def _resolve(self, path_str: str) -> Path | None:
        path = Path(path_str).expanduser().resolve()
        if any(path == root or path.is_relative_to(root) for root in self._roots):
            return path
        return None


class ReadFileTool(_SandboxedTool):
    @property
    def name(self) -> str:
        return "read_file"

    @property
    def description(self) -> str:
        return "Read contents of a text file, optionally a window of lines."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "File path"},
                "lines": {"type": "integer", "description": "Number of lines to return (default: 100)"},
                "offset": {"type": "integer", "description": "First line to return, 0-based (default: 0)"},
            },
            "required": ["path"],
        }

    async def execute(self, **kwargs: Any) -> ToolResult:
        path_str = kwargs.get("path", "")
        lines = int(kwargs.get("lines", 100))
        offset = int(kwargs.get("offset", 0))

        if not path_str:
            return ToolResult.fail("File path is required")

        path = self._resolve(path_str)
        if path is None:
            return ToolResult.fail("Access denied: path must be in home or working directory")
        if not path.exists():
            return ToolResult.fail("File not found")
        if path.is_dir():
            return ToolResult.fail("Path is a directory, not a file")
        if path.stat().st_size > MAX_READ_BYTES:
            return ToolResult.fail(f"File is too large ({_format_size(path.stat().st_size)}). Max 500KB.")

        try:
            content = path.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            return ToolResult.fail(f"'{path}' is a binary file and cannot be read as text")

        all_lines = content.split("\n")
        selected = all_lines[offset : offset + lines]
        return ToolResult.ok(
            "\n".join(selected),
            file_path=str(path),
            total_lines=len(all_lines),
            lines_shown=len(selected),
            offset=offset,
        )


class WriteFileTool(_SandboxedTool):
    @property
    def name(self) -> str:
        return "write_file"

    @property
    def description(self) -> str:
        return "Write (or append) text content to a file, creating parent directories."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "File path"},
                "content": {"type": "string", "description": "Text to write"},
                "append": {"type": "boolean", "description": "Append instead of overwrite (default: false)"},
            },
            "required": ["path", "content"],
        }

    async def execute(self, **kwargs: Any) -> ToolResult:
        path_str = kwargs.get("path", "")
        content = kwargs.get("content")
        append = bool(kwargs.get("append", False))

        if not path_str:
            return ToolResult.fail("File path is required")
        if content is None:
            return ToolResult.fail("Content is required")

        path = self._resolve(path_str)
        if path is None:
            return ToolResult.fail("Access denied: path must be in home or working directory")

        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a" if append else "w", encoding="utf-8") as f:
            f.write(str(content))

        return ToolResult.ok(
            f"File written successfully: {path}",
            file_path=str(path),
            bytes_written=len(str(content).encode("utf-8")),
        )


class ListDirTool(_SandboxedTool):
    @property
    def name(self) -> str:
        return "list_dir"

    @property
    def description(self) -> str:
        return "List contents of a directory."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Directory path (default: '.')"},
                "show_hidden": {"type": "boolean", "description": "Include dotfiles (default: false)"},
            },
        }

    async def execute(self, **kwargs: Any) -> ToolResult:
        path = self._resolve(kwargs.get("path") or ".")
        show_hidden = bool(kwargs.get("show_hidden", False))

        if path is None:
            return ToolResult.fail("Access denied")
        if not path.exists():
            return ToolResult.fail("Directory not found")
        if not path.is_dir():
            return ToolResult.fail("Path is not a directory")

        entries = sorted(path.iterdir())
        if not show_hidden:
            entries = [e for e in entries if not e.name.startswith(".")]

        lines = []
        for entry in entries:
            if entry.is_dir():
                lines.append(f"d {entry.name}")
            else:
                lines.append(f"- {entry.name} ({_format_size(entry.stat().st_size)})")

        return ToolResult.ok("\n".join(lines) or "(empty)", path=str(path), item_count=len(entries))


def _format_size(size: int) -> str:
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024:
            return f"{size:.1f}{unit}"
        size /= 1024  # type: ignore[assignment]
    return f"{size:.1f}TB"
