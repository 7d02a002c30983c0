"""Build conversation turns in the Anthropic content-block shape."""

from __future__ import annotations

import base64
import json
from typing import TYPE_CHECKING, Any, Sequence

from clawbridge.core.history import ContentBlock, Turn
from clawbridge.core.types import Role

if TYPE_CHECKING:
    from clawbridge.ai.client import ToolInvocation
    from clawbridge.ai.tools.base import ToolResult
    from clawbridge.messenger.models import ImageAttachment

TOOL_RESULT_LIMIT = 20_000

CONTINUE_INSTRUCTION = (
    "If you need more information, call another tool. "
    "Otherwise answer the user directly in plain text without any <tool_call> tags. "
    "Do not repeat a tool call you have already made with the same arguments."
)


def user_turn(text: str, images: Sequence[ImageAttachment] = ()) -> Turn:
    """User turn; images become base64 image blocks after the text."""
    if not images:
        return Turn(role=Role.USER, content=text)

    blocks: list[ContentBlock] = []
    if text:
        blocks.append({"type": "text", "text": text})
    for image in images:
        blocks.append(
            {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": image.media_type,
                    "data": base64.b64encode(image.data).decode(),
                },
            }
        )
    return Turn(role=Role.USER, content=tuple(blocks))


def assistant_turn(text: str) -> Turn:
    return Turn(role=Role.ASSISTANT, content=text)


def assistant_tool_use_turn(raw_blocks: Sequence[ContentBlock]) -> Turn:
    """Assistant turn echoing the model's text + tool_use blocks verbatim."""
    return Turn(role=Role.ASSISTANT, content=tuple(raw_blocks))


def format_tool_result(result: ToolResult) -> str:
    if result.success:
        text = result.output or "(no output)"
    else:
        text = f"Error: {result.error or 'unknown error'}"
        if result.output:
            text += f"\n{result.output}"
    if len(text) > TOOL_RESULT_LIMIT:
        text = text[:TOOL_RESULT_LIMIT] + "\n... (truncated)"
    return text


def tool_results_turn(pairs: Sequence[tuple[ToolInvocation, ToolResult]]) -> Turn:
    """Single synthetic user turn carrying one tool_result block per invocation."""
    blocks: list[ContentBlock] = []
    for invocation, result in pairs:
        block: ContentBlock = {
            "type": "tool_result",
            "tool_use_id": invocation.id,
            "content": format_tool_result(result),
        }
        if not result.success:
            block["is_error"] = True
        blocks.append(block)
    return Turn(role=Role.USER, content=tuple(blocks), synthetic=True)


def textual_result_turn(tool_name: str, args: dict[str, Any], result: ToolResult) -> Turn:
    """Synthetic user turn reporting a textual-protocol tool result."""
    status = "succeeded" if result.success else "failed"
    text = (
        f"[Tool Result: {tool_name} {status}]\n"
        f"Arguments: {json.dumps(args, ensure_ascii=False)}\n"
        f"{format_tool_result(result)}\n\n"
        f"{CONTINUE_INSTRUCTION}"
    )
    return Turn(role=Role.USER, content=text, synthetic=True)


def to_api_messages(turns: Sequence[Turn]) -> list[dict[str, Any]]:
    return [turn.to_api() for turn in turns]
