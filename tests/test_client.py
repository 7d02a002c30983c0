"""Tests for the model backends' response handling and the backend factory."""

import asyncio
import json
from types import SimpleNamespace

import pytest

from clawbridge.ai.client import (
    STOP_TOOL_USE,
    AgentOptions,
    AnthropicClient,
    ClaudeCodeClient,
    create_ai_client,
)
from clawbridge.ai.conversation import assistant_turn, textual_result_turn, user_turn
from clawbridge.ai.tools.base import ToolResult
from clawbridge.config import AnthropicConfig, AppConfig, ClaudeCodeConfig
from clawbridge.errors import ConfigError, ModelBackendError


def _sdk_message(*blocks, stop_reason="end_turn"):
    return SimpleNamespace(
        content=list(blocks),
        stop_reason=stop_reason,
        usage=SimpleNamespace(input_tokens=12, output_tokens=7),
    )


class TestAnthropicResponse:
    def test_text_only(self):
        response = AnthropicClient._to_response(_sdk_message(SimpleNamespace(type="text", text="Hello")))
        assert response.text == "Hello"
        assert not response.wants_tools
        assert (response.input_tokens, response.output_tokens) == (12, 7)

    def test_tool_use_blocks(self):
        message = _sdk_message(
            SimpleNamespace(type="text", text="Let me look."),
            SimpleNamespace(type="tool_use", id="toolu_1", name="shell", input={"command": "ls"}),
            stop_reason=STOP_TOOL_USE,
        )

        response = AnthropicClient._to_response(message)

        assert response.wants_tools
        (invocation,) = response.tool_invocations
        assert (invocation.id, invocation.name, invocation.input) == ("toolu_1", "shell", {"command": "ls"})
        assert response.raw_blocks == [
            {"type": "text", "text": "Let me look."},
            {"type": "tool_use", "id": "toolu_1", "name": "shell", "input": {"command": "ls"}},
        ]


class TestAnthropicChat:
    @pytest.mark.asyncio
    async def test_request_shape_and_error_mapping(self):
        import anthropic
        import httpx

        client = AnthropicClient(AnthropicConfig(api_key="sk-test"), model="claude-test")
        captured = {}

        async def create(**kwargs):
            captured.update(kwargs)
            return _sdk_message(SimpleNamespace(type="text", text="ok"))

        client._client = SimpleNamespace(messages=SimpleNamespace(create=create))
        tools = ({"name": "echo", "description": "d", "input_schema": {"type": "object"}},)

        await client.chat([user_turn("hi")], AgentOptions(model="", system_prompt="sys", tools=tools, tool_choice="none"))

        assert captured["model"] == "claude-test"
        assert captured["system"] == "sys"
        assert captured["messages"] == [{"role": "user", "content": "hi"}]
        assert captured["tool_choice"] == {"type": "none"}

        async def failing_create(**kwargs):
            request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
            raise anthropic.APIConnectionError(request=request)

        client._client = SimpleNamespace(messages=SimpleNamespace(create=failing_create))
        with pytest.raises(ModelBackendError):
            await client.chat([user_turn("hi")], AgentOptions(model="claude-test"))


class TestClaudeCode:
    def test_flattens_turns_into_prompt(self):
        prompt = ClaudeCodeClient._build_prompt(
            "Be nice.",
            [
                user_turn("hi"),
                assistant_turn("hello"),
                textual_result_turn("cwd", {}, ToolResult.ok("/home/bot")),
            ],
        )
        assert prompt.startswith("[System Instructions]\nBe nice.\n")
        assert "[User]\nhi" in prompt
        assert "[Assistant]\nhello" in prompt
        assert "[Tool Result]\n[Tool Result: cwd succeeded]" in prompt

    def test_parses_json_result(self):
        output = json.dumps({"result": "answer", "usage": {"input_tokens": 3, "output_tokens": 4}})
        response = ClaudeCodeClient._parse_response(output)
        assert response.text == "answer"
        assert (response.input_tokens, response.output_tokens) == (3, 4)

    def test_non_json_output_is_text(self):
        assert ClaudeCodeClient._parse_response("plain words").text == "plain words"

    def test_never_claims_native_tool_use(self):
        assert ClaudeCodeClient(ClaudeCodeConfig()).supports_tool_use is False

    @pytest.mark.asyncio
    async def test_timeout_kills_and_reaps_process(self, monkeypatch):
        events: list[str] = []

        class HangingProcess:
            returncode = None

            async def communicate(self, input=None):
                await asyncio.sleep(10)

            def kill(self):
                events.append("kill")

            async def wait(self):
                events.append("wait")
                return -9

        async def fake_exec(*args, **kwargs):
            return HangingProcess()

        monkeypatch.setattr(asyncio, "create_subprocess_exec", fake_exec)
        client = ClaudeCodeClient(ClaudeCodeConfig(cli_path="/nonexistent/claude-cli", timeout=0))

        with pytest.raises(ModelBackendError, match="timed out"):
            await client.chat([user_turn("hi")], AgentOptions(model="sonnet"))
        assert events == ["kill", "wait"]

    @pytest.mark.asyncio
    async def test_missing_cli_is_backend_error(self):
        client = ClaudeCodeClient(ClaudeCodeConfig(cli_path="/nonexistent/claude-cli"))
        with pytest.raises(ModelBackendError, match="not found"):
            await client.chat([user_turn("hi")], AgentOptions(model="sonnet"))


class TestFactory:
    def test_anthropic(self):
        config = AppConfig(anthropic=AnthropicConfig(api_key="sk-test"))
        client = create_ai_client(config)
        assert isinstance(client, AnthropicClient)
        assert client.supports_tool_use
        assert client.model_name == config.agent.model

    def test_anthropic_without_section(self):
        with pytest.raises(ConfigError):
            create_ai_client(AppConfig())

    def test_claude_code(self):
        config = AppConfig.model_validate({"agent": {"backend": "claude_code"}})
        assert isinstance(create_ai_client(config), ClaudeCodeClient)

    def test_unknown_backend(self):
        config = AppConfig.model_validate({"agent": {"backend": "carrier-pigeon"}})
        with pytest.raises(ConfigError, match="carrier-pigeon"):
            create_ai_client(config)
