"""Parse ``<tool_call>`` directives emitted by backends without native tool use.

The model is asked to reply with exactly one block::

    <tool_call>
    {"tool": "shell", "input": {"command": "ls"}}
    </tool_call>

Only the first block in a response is considered. A malformed block is
reported as ``Malformed`` so callers can log it; the tool loop treats it the
same as ``NoDirective`` and returns the response as final text.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Union

TOOL_CALL_PATTERN = re.compile(r"<tool_call>\s*(.*?)\s*</tool_call>", re.DOTALL)
_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*|\s*```$")


@dataclass(frozen=True)
class NoDirective:
    pass


@dataclass(frozen=True)
class Directive:
    name: str
    args: dict[str, Any] = field(default_factory=dict)
    raw: str = ""

    @property
    def signature(self) -> tuple[str, str]:
        """Identity used to detect an exact repeat of a tool call."""
        return self.name, normalize_args(self.args)


@dataclass(frozen=True)
class Malformed:
    reason: str
    raw: str = ""


ParsedDirective = Union[NoDirective, Directive, Malformed]


def normalize_args(args: dict[str, Any]) -> str:
    return json.dumps(args, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def parse_tool_directive(text: str) -> ParsedDirective:
    match = TOOL_CALL_PATTERN.search(text or "")
    if match is None:
        return NoDirective()

    body = _FENCE_PATTERN.sub("", match.group(1).strip())
    try:
        data = json.loads(body)
    except json.JSONDecodeError as e:
        return Malformed(reason=f"invalid JSON: {e.msg}", raw=match.group(0))

    if not isinstance(data, dict):
        return Malformed(reason="directive is not a JSON object", raw=match.group(0))

    name = data.get("tool") or data.get("name")
    if not isinstance(name, str) or not name.strip():
        return Malformed(reason="missing tool name", raw=match.group(0))

    args = data.get("input", data.get("arguments", {}))
    if args is None:
        args = {}
    if not isinstance(args, dict):
        return Malformed(reason="tool input must be a JSON object", raw=match.group(0))

    return Directive(name=name.strip(), args=args, raw=match.group(0))


def strip_directives(text: str) -> str:
    """Remove any ``<tool_call>`` blocks, leaving the surrounding prose."""
    return TOOL_CALL_PATTERN.sub("", text or "").strip()
