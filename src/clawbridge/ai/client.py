"""AI client abstraction with Anthropic API and Claude Code CLI backends."""

from __future__ import annotations

import asyncio
import json
import os
import platform
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Any, Optional, Sequence

from clawbridge.ai.conversation import to_api_messages
from clawbridge.config import AnthropicConfig, AppConfig, ClaudeCodeConfig
from clawbridge.core.history import ContentBlock, Turn
from clawbridge.errors import ConfigError, ModelBackendError
from clawbridge.log import get_logger

logger = get_logger(__name__)

STOP_TOOL_USE = "tool_use"
STOP_END_TURN = "end_turn"


@dataclass(frozen=True)
class AgentOptions:
    """Per-call model options; built fresh for every model call."""

    model: str
    max_tokens: int = 4096
    temperature: float = 0.7
    system_prompt: str = ""
    tools: Optional[tuple[dict[str, Any], ...]] = None
    tool_choice: Optional[str] = None  # "none" keeps tool definitions but forbids calls

    def without_tools(self, system_prompt: str | None = None) -> AgentOptions:
        return replace(
            self,
            tools=None,
            system_prompt=self.system_prompt if system_prompt is None else system_prompt,
        )


@dataclass(frozen=True)
class ToolInvocation:
    id: str
    name: str
    input: dict[str, Any]


@dataclass
class AIResponse:
    """Unified response from any AI backend."""

    text: str
    stop_reason: str = STOP_END_TURN
    tool_invocations: list[ToolInvocation] = field(default_factory=list)
    raw_blocks: list[ContentBlock] = field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def wants_tools(self) -> bool:
        return self.stop_reason == STOP_TOOL_USE and bool(self.tool_invocations)


class AIClient(ABC):
    """Abstract base class for AI backends."""

    @abstractmethod
    async def chat(self, turns: Sequence[Turn], options: AgentOptions) -> AIResponse:
        """Send the conversation and return the model's response.

        Raises ``ModelBackendError`` when the backend call fails.
        """
        ...

    @property
    @abstractmethod
    def supports_tool_use(self) -> bool:
        """Whether tool calls come back as structured blocks (vs. free text)."""
        ...

    @property
    @abstractmethod
    def backend_name(self) -> str:
        ...

    @property
    def model_name(self) -> str:
        return ""


class AnthropicClient(AIClient):
    """Anthropic API backend using the official SDK."""

    def __init__(self, config: AnthropicConfig, model: str = ""):
        import anthropic

        self._anthropic = anthropic
        self._model = model
        self._client = anthropic.AsyncAnthropic(
            api_key=config.api_key,
            base_url=config.base_url,
            max_retries=config.max_retries,
            timeout=config.timeout,
        )

    @property
    def supports_tool_use(self) -> bool:
        return True

    @property
    def backend_name(self) -> str:
        return "anthropic"

    @property
    def model_name(self) -> str:
        return self._model

    async def chat(self, turns: Sequence[Turn], options: AgentOptions) -> AIResponse:
        kwargs: dict[str, Any] = {
            "model": options.model or self._model,
            "max_tokens": options.max_tokens,
            "messages": to_api_messages(turns),
            "temperature": options.temperature,
        }
        if options.system_prompt:
            kwargs["system"] = options.system_prompt
        if options.tools:
            kwargs["tools"] = list(options.tools)
            if options.tool_choice:
                kwargs["tool_choice"] = {"type": options.tool_choice}

        logger.debug("api_request", model=kwargs["model"], message_count=len(turns))
        try:
            response = await self._client.messages.create(**kwargs)
        except self._anthropic.APIError as e:
            raise ModelBackendError(self.backend_name, str(e)) from e

        logger.debug(
            "api_response",
            model=kwargs["model"],
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            stop_reason=response.stop_reason,
        )
        return self._to_response(response)

    @staticmethod
    def _to_response(response: Any) -> AIResponse:
        texts: list[str] = []
        invocations: list[ToolInvocation] = []
        raw_blocks: list[ContentBlock] = []

        for block in response.content:
            if block.type == "text":
                texts.append(block.text)
                raw_blocks.append({"type": "text", "text": block.text})
            elif block.type == "tool_use":
                invocations.append(
                    ToolInvocation(id=block.id, name=block.name, input=dict(block.input or {}))
                )
                raw_blocks.append(
                    {"type": "tool_use", "id": block.id, "name": block.name, "input": block.input}
                )

        return AIResponse(
            text="\n".join(texts),
            stop_reason=response.stop_reason or STOP_END_TURN,
            tool_invocations=invocations,
            raw_blocks=raw_blocks,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )


class ClaudeCodeClient(AIClient):
    """Claude Code CLI backend using a subprocess; tools go through the text protocol."""

    def __init__(self, config: ClaudeCodeConfig):
        self._cli_path = self._resolve_cli_path(config.cli_path)
        self._model = config.model
        self._timeout = config.timeout

    @staticmethod
    def _resolve_cli_path(cli_path: str) -> str:
        """Resolve the claude CLI path, checking common install locations."""
        if os.path.isabs(cli_path) and os.path.exists(cli_path):
            return cli_path

        found = shutil.which(cli_path)
        if found:
            return found

        # npm global installs on Windows land outside PATH more often than not
        if platform.system() == "Windows":
            for env_var in ("APPDATA", "LOCALAPPDATA"):
                base = os.environ.get(env_var, "")
                if not base:
                    continue
                candidate = os.path.join(base, "npm", "claude.cmd")
                if os.path.exists(candidate):
                    return candidate

        return cli_path

    @property
    def supports_tool_use(self) -> bool:
        return False

    @property
    def backend_name(self) -> str:
        return "claude_code"

    @property
    def model_name(self) -> str:
        return self._model

    async def chat(self, turns: Sequence[Turn], options: AgentOptions) -> AIResponse:
        prompt = self._build_prompt(options.system_prompt, turns)
        # Prompt goes through stdin to dodge argv length and encoding limits
        cmd = [self._cli_path, "-p", "--output-format", "json", "--model", options.model or self._model]

        logger.info("claude_code_request", cli_path=self._cli_path, prompt_length=len(prompt))

        # Drop ANTHROPIC_API_KEY so the CLI uses subscription auth
        env = {k: v for k, v in os.environ.items() if k != "ANTHROPIC_API_KEY"}
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except FileNotFoundError as e:
            logger.error("claude_code_not_found", cli_path=self._cli_path)
            raise ModelBackendError(
                self.backend_name, f"Claude Code CLI not found at '{self._cli_path}'"
            ) from e

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(input=prompt.encode("utf-8")),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            logger.error("claude_code_timeout", timeout=self._timeout)
            raise ModelBackendError(
                self.backend_name, f"timed out after {self._timeout} seconds"
            ) from e

        stdout_text = stdout.decode("utf-8", errors="replace").strip()
        stderr_text = stderr.decode("utf-8", errors="replace").strip()

        if process.returncode != 0:
            logger.error(
                "claude_code_error",
                returncode=process.returncode,
                stderr=stderr_text,
                stdout=stdout_text[:500],
            )
            detail = stderr_text or stdout_text or "(no output)"
            raise ModelBackendError(self.backend_name, f"exit {process.returncode}: {detail}")

        return self._parse_response(stdout_text)

    @staticmethod
    def _build_prompt(system: str, turns: Sequence[Turn]) -> str:
        """Flatten the system prompt and turns into a single prompt string."""
        parts: list[str] = []
        if system:
            parts.append(f"[System Instructions]\n{system}\n")

        for turn in turns:
            label = "Tool Result" if turn.synthetic else str(turn.role).title()
            if isinstance(turn.content, str):
                parts.append(f"[{label}]\n{turn.content}")
                continue
            for block in turn.content:
                if block.get("type") == "text":
                    parts.append(f"[{label}]\n{block['text']}")
                elif block.get("type") == "tool_result":
                    parts.append(f"[Tool Result]\n{block.get('content', '')}")
                elif block.get("type") == "image":
                    parts.append(f"[{label}]\n(image attached, not supported by this backend)")

        return "\n\n".join(parts)

    @staticmethod
    def _parse_response(output: str) -> AIResponse:
        """Parse Claude Code CLI JSON output: {"result": "...", "usage": {...}}."""
        try:
            data = json.loads(output)
        except json.JSONDecodeError:
            return AIResponse(text=output)

        if isinstance(data, dict):
            usage = data.get("usage") or {}
            return AIResponse(
                text=str(data.get("result", "")),
                input_tokens=int(usage.get("input_tokens", data.get("input_tokens", 0)) or 0),
                output_tokens=int(usage.get("output_tokens", data.get("output_tokens", 0)) or 0),
            )
        if isinstance(data, list):
            texts = [
                str(item.get("result", ""))
                for item in data
                if isinstance(item, dict) and item.get("type") == "result"
            ]
            return AIResponse(text="\n".join(texts) if texts else output)
        return AIResponse(text=output)


def create_ai_client(config: AppConfig) -> AIClient:
    """Factory keyed on ``config.agent.backend``."""
    match config.agent.backend:
        case "anthropic":
            if not config.anthropic:
                raise ConfigError(
                    "Agent uses the 'anthropic' backend but the config has no 'anthropic' section"
                )
            return AnthropicClient(config.anthropic, model=config.agent.model)
        case "claude_code":
            return ClaudeCodeClient(config.claude_code)
        case _:
            raise ConfigError(f"Unknown AI backend: {config.agent.backend}")
