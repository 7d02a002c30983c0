"""System prompt assembly: base prompt, recalled context, textual tool protocol."""

from __future__ import annotations

from typing import Protocol, Sequence

from clawbridge.ai.tools.base import Tool
from clawbridge.log import get_logger

logger = get_logger(__name__)

SUMMARY_INSTRUCTION = (
    "You have used the maximum number of tool calls for this request. "
    "Do not call any more tools. Using only the tool results above, "
    "summarize what you found and answer the user's request as well as you can."
)


class ContextProvider(Protocol):
    """Recalls memory excerpts relevant to the current message."""

    async def recall(self, conversation_id: str, query: str) -> str: ...


def build_tool_instructions(tools: Sequence[Tool]) -> str:
    """Describe the ``<tool_call>`` convention and every tool's parameters."""
    if not tools:
        return ""

    lines = [
        "--- Available Tools ---",
        "You have access to the following tools. To use a tool, reply with EXACTLY one block:",
        "<tool_call>",
        '{"tool": "tool_name", "input": {"param1": "value1"}}',
        "</tool_call>",
        "",
        "Call at most one tool per reply and wait for its result before continuing.",
        "Never repeat a tool call with the same arguments.",
        "When you have the final answer, respond with plain text WITHOUT any <tool_call> tags.",
        "",
        "Tools:",
    ]
    for tool in tools:
        schema = tool.input_schema
        props = schema.get("properties", {})
        param_desc = ", ".join(
            f'{k} ({v.get("type", "any")}): {v.get("description", "")}' for k, v in props.items()
        )
        lines.append(f"\n### {tool.name}")
        lines.append(f"Description: {tool.description}")
        lines.append(f"Parameters: {param_desc or '(none)'}")
        required = schema.get("required", [])
        if required:
            lines.append(f"Required: {', '.join(required)}")

    return "\n".join(lines)


class PromptBuilder:
    def __init__(self, base_prompt: str, context_provider: ContextProvider | None = None):
        self._base_prompt = base_prompt.strip()
        self._context_provider = context_provider

    @property
    def base_prompt(self) -> str:
        return self._base_prompt

    async def build(self, conversation_id: str, query: str) -> str:
        """Base prompt plus any recalled context for this message."""
        sections = [self._base_prompt] if self._base_prompt else []

        context = await self._recall(conversation_id, query)
        if context:
            sections.append(f"--- Relevant context ---\n{context}")

        return "\n\n".join(sections)

    @staticmethod
    def with_tools(system_prompt: str, tools: Sequence[Tool]) -> str:
        """Append the textual tool protocol; used when the backend lacks native tool use."""
        instructions = build_tool_instructions(tools)
        if not instructions:
            return system_prompt
        return f"{system_prompt}\n\n{instructions}" if system_prompt else instructions

    @staticmethod
    def with_summary(system_prompt: str) -> str:
        return f"{system_prompt}\n\n{SUMMARY_INSTRUCTION}" if system_prompt else SUMMARY_INSTRUCTION

    async def _recall(self, conversation_id: str, query: str) -> str:
        if self._context_provider is None or not query:
            return ""
        try:
            return (await self._context_provider.recall(conversation_id, query)).strip()
        except Exception as e:
            # Recall is an enrichment; the turn proceeds without it
            logger.warning("context_recall_failed", conversation_id=conversation_id, error=str(e))
            return ""
