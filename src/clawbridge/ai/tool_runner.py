"""Bounded tool-calling loop with structured and textual strategies.

Both strategies share the same skeleton: call the model, stop on a final
answer, otherwise execute the requested tool(s), append the results and call
the model again. After ``max_tool_rounds`` tool rounds (or, for the textual
strategy, on an exact repeat of an earlier call) one last model call is made
with tool calling disabled and its text is returned unconditionally, so a
single message costs at most ``max_tool_rounds + 1`` model calls.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import Any, Awaitable, Callable, Collection, Optional

from clawbridge.ai.client import AgentOptions, AIClient, AIResponse, ToolInvocation
from clawbridge.ai.conversation import (
    assistant_tool_use_turn,
    assistant_turn,
    textual_result_turn,
    tool_results_turn,
)
from clawbridge.ai.directive import Directive, Malformed, parse_tool_directive, strip_directives
from clawbridge.ai.tools.base import ToolResult
from clawbridge.ai.tools.registry import TOOL_NOT_FOUND, ToolRegistry
from clawbridge.core.history import Turn
from clawbridge.log import get_logger

logger = get_logger(__name__)

MAX_TOOL_ROUNDS = 10
LIMIT_FALLBACK_TEXT = "[Tool execution limit reached]"
EMPTY_REPLY_TEXT = "(empty response)"

WorkingCallback = Callable[[], Awaitable[None]]


class LoopState(StrEnum):
    AWAITING_MODEL = "awaiting_model"
    EXECUTING = "executing"
    DONE = "done"
    FORCED_SUMMARY = "forced_summary"


@dataclass
class LoopOutcome:
    text: str
    state: LoopState
    rounds: int
    model_calls: int
    new_turns: list[Turn] = field(default_factory=list)
    artifacts: list[str] = field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class _Run:
    """Mutable bookkeeping for one loop execution."""

    turns: list[Turn]
    options: AgentOptions
    allowed: frozenset[str]
    on_working: Optional[WorkingCallback]
    new_turns: list[Turn] = field(default_factory=list)
    artifacts: list[str] = field(default_factory=list)
    executed: set[tuple[str, str]] = field(default_factory=set)
    state: LoopState = LoopState.AWAITING_MODEL
    rounds: int = 0
    model_calls: int = 0
    input_tokens: int = 0
    output_tokens: int = 0

    def push(self, turn: Turn) -> None:
        self.turns.append(turn)
        self.new_turns.append(turn)

    def outcome(self, text: str) -> LoopOutcome:
        return LoopOutcome(
            text=text,
            state=self.state,
            rounds=self.rounds,
            model_calls=self.model_calls,
            new_turns=self.new_turns,
            artifacts=self.artifacts,
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
        )


class ToolLoop(ABC):
    """Runs one message through the model until a terminal state."""

    text_protocol: bool = False

    def __init__(
        self,
        ai_client: AIClient,
        tool_registry: ToolRegistry,
        max_tool_rounds: int = MAX_TOOL_ROUNDS,
    ):
        self._ai_client = ai_client
        self._tool_registry = tool_registry
        self._max_tool_rounds = max_tool_rounds

    @property
    def max_tool_rounds(self) -> int:
        return self._max_tool_rounds

    @property
    def name(self) -> str:
        return "textual" if self.text_protocol else "structured"

    async def run(
        self,
        history: list[Turn],
        options: AgentOptions,
        summary_options: AgentOptions,
        allowed_tools: Collection[str] = (),
        on_working: Optional[WorkingCallback] = None,
    ) -> LoopOutcome:
        """Run the loop over ``history`` (which already ends with the user turn).

        ``history`` is not mutated; the turns the loop produced are returned in
        ``LoopOutcome.new_turns`` for the caller to commit.
        """
        run = _Run(
            turns=list(history),
            options=options,
            allowed=frozenset(allowed_tools),
            on_working=on_working,
        )

        while True:
            response = await self._call_model(run, run.options)
            final_text = await self._step(run, response)
            if final_text is not None:
                final_text = final_text or EMPTY_REPLY_TEXT
                run.state = LoopState.DONE
                run.push(assistant_turn(final_text))
                logger.info("tool_loop_done", rounds=run.rounds, model_calls=run.model_calls)
                return run.outcome(final_text)
            if run.state == LoopState.FORCED_SUMMARY or run.rounds >= self._max_tool_rounds:
                break
            run.state = LoopState.AWAITING_MODEL

        return await self._forced_summary(run, summary_options)

    @abstractmethod
    async def _step(self, run: _Run, response: AIResponse) -> Optional[str]:
        """Handle one model response.

        Returns the final text, or None after executing a tool round. Setting
        ``run.state`` to FORCED_SUMMARY ends the loop early.
        """
        ...

    @abstractmethod
    def _summary_text(self, response: AIResponse) -> str:
        ...

    @staticmethod
    @abstractmethod
    def summary_options(options: AgentOptions, system_prompt: str) -> AgentOptions:
        """Options for the forced-summary call: same conversation, no tool calls."""
        ...

    async def _call_model(self, run: _Run, options: AgentOptions) -> AIResponse:
        if run.model_calls > 0:
            await self._signal_working(run)
        response = await self._ai_client.chat(run.turns, options)
        run.model_calls += 1
        run.input_tokens += response.input_tokens
        run.output_tokens += response.output_tokens
        return response

    async def _forced_summary(self, run: _Run, summary_options: AgentOptions) -> LoopOutcome:
        run.state = LoopState.FORCED_SUMMARY
        logger.warning("tool_loop_forced_summary", rounds=run.rounds, model_calls=run.model_calls)
        response = await self._call_model(run, summary_options)
        text = self._summary_text(response) or LIMIT_FALLBACK_TEXT
        run.push(assistant_turn(text))
        return run.outcome(text)

    async def _execute(self, run: _Run, name: str, args: dict[str, Any]) -> ToolResult:
        run.state = LoopState.EXECUTING
        if name not in run.allowed:
            logger.warning("tool_not_offered", tool=name)
            result = ToolResult.fail(f"Tool not found: {name}", error_kind=TOOL_NOT_FOUND)
        else:
            result = await self._tool_registry.execute(name, args)
        if result.artifact:
            run.artifacts.append(result.artifact)
        return result

    @staticmethod
    async def _signal_working(run: _Run) -> None:
        if run.on_working is None:
            return
        try:
            await run.on_working()
        except Exception as e:
            logger.debug("working_indicator_failed", error=str(e))


class StructuredToolLoop(ToolLoop):
    """Backends that return tool invocations as structured blocks."""

    text_protocol = False

    async def _step(self, run: _Run, response: AIResponse) -> Optional[str]:
        if not response.wants_tools:
            return response.text

        run.push(assistant_tool_use_turn(response.raw_blocks))

        # Sequential, in the order the model listed them
        results: list[tuple[ToolInvocation, ToolResult]] = []
        for invocation in response.tool_invocations:
            logger.info("tool_invocation", tool=invocation.name, round=run.rounds + 1)
            results.append((invocation, await self._execute(run, invocation.name, invocation.input)))

        run.push(tool_results_turn(results))
        run.rounds += 1
        return None

    def _summary_text(self, response: AIResponse) -> str:
        return response.text.strip()

    @staticmethod
    def summary_options(options: AgentOptions, system_prompt: str) -> AgentOptions:
        # Definitions must stay when the history holds tool_use blocks
        if options.tools:
            return replace(options, system_prompt=system_prompt, tool_choice="none")
        return options.without_tools(system_prompt)


class TextualToolLoop(ToolLoop):
    """Backends without native tool use: one ``<tool_call>`` directive per reply."""

    text_protocol = True

    async def _step(self, run: _Run, response: AIResponse) -> Optional[str]:
        parsed = parse_tool_directive(response.text)

        if isinstance(parsed, Malformed):
            logger.warning("tool_directive_malformed", reason=parsed.reason)
            return response.text.strip()
        if not isinstance(parsed, Directive):
            return response.text.strip()

        if parsed.signature in run.executed:
            logger.warning("tool_call_repeated", tool=parsed.name)
            run.state = LoopState.FORCED_SUMMARY
            return None

        logger.info("tool_invocation", tool=parsed.name, round=run.rounds + 1)
        run.push(assistant_turn(response.text))
        result = await self._execute(run, parsed.name, parsed.args)
        run.executed.add(parsed.signature)
        run.push(textual_result_turn(parsed.name, parsed.args, result))
        run.rounds += 1
        return None

    def _summary_text(self, response: AIResponse) -> str:
        return strip_directives(response.text)

    @staticmethod
    def summary_options(options: AgentOptions, system_prompt: str) -> AgentOptions:
        return options.without_tools(system_prompt)


def select_tool_loop(
    ai_client: AIClient,
    tool_registry: ToolRegistry,
    max_tool_rounds: int = MAX_TOOL_ROUNDS,
) -> ToolLoop:
    """Pick the strategy once per bot, from the backend's capabilities."""
    loop_cls = StructuredToolLoop if ai_client.supports_tool_use else TextualToolLoop
    return loop_cls(ai_client, tool_registry, max_tool_rounds=max_tool_rounds)
