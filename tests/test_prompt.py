"""Tests for system prompt assembly."""

import pytest

from clawbridge.ai.prompt import SUMMARY_INSTRUCTION, PromptBuilder, build_tool_instructions
from fakes import EchoTool


class StaticContext:
    def __init__(self, text: str = "", error: Exception | None = None):
        self.text = text
        self.error = error
        self.queries: list[tuple[str, str]] = []

    async def recall(self, conversation_id: str, query: str) -> str:
        self.queries.append((conversation_id, query))
        if self.error:
            raise self.error
        return self.text


class TestPromptBuilder:
    @pytest.mark.asyncio
    async def test_base_prompt_only(self):
        assert await PromptBuilder("  Be brief.  ").build("c1", "hi") == "Be brief."

    @pytest.mark.asyncio
    async def test_recalled_context_is_appended(self):
        context = StaticContext("User prefers metric units.")
        prompt = await PromptBuilder("Be brief.", context).build("telegram:1", "weather?")
        assert prompt == "Be brief.\n\n--- Relevant context ---\nUser prefers metric units."
        assert context.queries == [("telegram:1", "weather?")]

    @pytest.mark.asyncio
    async def test_recall_failure_is_ignored(self):
        prompt = await PromptBuilder("Be brief.", StaticContext(error=RuntimeError("db down"))).build("c", "q")
        assert prompt == "Be brief."

    @pytest.mark.asyncio
    async def test_empty_query_skips_recall(self):
        context = StaticContext("x")
        await PromptBuilder("p", context).build("c", "")
        assert context.queries == []

    def test_with_summary(self):
        assert PromptBuilder.with_summary("Base").endswith(SUMMARY_INSTRUCTION)
        assert PromptBuilder.with_summary("") == SUMMARY_INSTRUCTION

    def test_with_tools_without_tools_is_identity(self):
        assert PromptBuilder.with_tools("Base", []) == "Base"


class TestToolInstructions:
    def test_describes_protocol_and_parameters(self):
        text = build_tool_instructions([EchoTool()])
        assert "<tool_call>" in text
        assert '{"tool": "tool_name", "input": {"param1": "value1"}}' in text
        assert "### echo" in text
        assert "text (string): Text to echo" in text
        assert "Required: text" in text

    def test_no_tools_no_instructions(self):
        assert build_tool_instructions([]) == ""
