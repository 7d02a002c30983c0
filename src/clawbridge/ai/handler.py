"""Message handler: pairing gate -> bot commands -> tool-calling model loop -> reply."""

from __future__ import annotations

import json
from typing import Any

from clawbridge.ai.client import AgentOptions, AIClient
from clawbridge.ai.conversation import user_turn
from clawbridge.ai.prompt import PromptBuilder
from clawbridge.ai.tool_runner import LoopOutcome, select_tool_loop
from clawbridge.ai.tools.base import Tool, ToolResult
from clawbridge.ai.tools.registry import ToolRegistry
from clawbridge.config import AgentConfig
from clawbridge.core.history import ConversationStore
from clawbridge.core.pairing import PairingGate
from clawbridge.errors import AdmissionDenied, ModelBackendError, PairingError
from clawbridge.log import bind_message_context, get_logger
from clawbridge.messenger.base import MessengerAdapter
from clawbridge.messenger.models import IncomingMessage

logger = get_logger(__name__)

GENERIC_ERROR_REPLY = "Sorry, something went wrong while processing your message. Please try again."
DIRECT_TOOL_LIMIT = 4000


class AgentOrchestrator:
    """Handles the full flow for one bot: message -> gate -> history -> model/tools -> reply.

    One instance per messenger adapter; the history store, pairing gate and
    tool registry are shared between instances. Each message is its own
    failure domain: ``handle`` never raises.
    """

    def __init__(
        self,
        adapter: MessengerAdapter,
        ai_client: AIClient,
        history: ConversationStore,
        pairing: PairingGate,
        tool_registry: ToolRegistry,
        prompt_builder: PromptBuilder,
        agent_config: AgentConfig,
        owner_id: str | None = None,
        enable_tools: bool = False,
        require_pairing: bool = True,
    ):
        self._adapter = adapter
        self._ai_client = ai_client
        self._history = history
        self._pairing = pairing
        self._tool_registry = tool_registry
        self._prompt_builder = prompt_builder
        self._agent_config = agent_config
        self._owner_id = owner_id
        self._enable_tools = enable_tools
        self._require_pairing = require_pairing
        self._tool_loop = select_tool_loop(
            ai_client, tool_registry, max_tool_rounds=agent_config.max_tool_rounds
        )

    @property
    def strategy(self) -> str:
        return self._tool_loop.name

    def offered_tools(self) -> list[Tool]:
        if not self._enable_tools:
            return []
        return self._tool_registry.tools_by_names(self._agent_config.tools)

    async def handle(self, message: IncomingMessage) -> None:
        """Process an incoming message end-to-end. Outermost recovery boundary."""
        bind_message_context(message.platform, message.conversation_id, message.sender)
        try:
            await self._dispatch(message)
        except ModelBackendError as e:
            logger.error("model_backend_error", backend=e.backend, error=str(e))
            await self._reply(message.conversation_id, GENERIC_ERROR_REPLY)
        except Exception:
            logger.exception("message_handling_failed")
            await self._reply(message.conversation_id, GENERIC_ERROR_REPLY)

    async def _dispatch(self, message: IncomingMessage) -> None:
        text = message.content.strip()
        if not text and not message.images:
            return

        logger.info("message_received", length=len(text), images=len(message.images))

        try:
            self._admit(message)
        except AdmissionDenied:
            await self._handle_unpaired(message, text)
            return

        if _is_pairing_command(text):
            await self._handle_pairing_command(message, text)
            return

        if await self._handle_bot_command(message, text):
            return

        if self._enable_tools and self._is_owner(message):
            direct = await self._handle_direct_tool_command(text)
            if direct is not None:
                await self._reply(message.conversation_id, direct)
                return

        async with self._history.lock(message.conversation_key):
            await self._run_agent(message, text)

    # -- pairing ---------------------------------------------------------------

    def _is_owner(self, message: IncomingMessage) -> bool:
        if not self._owner_id:
            return False
        return self._owner_id in (message.sender, f"{message.platform}:{message.sender}")

    def _admit(self, message: IncomingMessage) -> None:
        if not self._require_pairing or self._is_owner(message):
            return
        if not self._pairing.is_approved(message.platform, message.sender):
            raise AdmissionDenied(message.platform, message.sender)

    async def _handle_unpaired(self, message: IncomingMessage, text: str) -> None:
        code = self._pairing.issue_code(message.platform, message.sender)
        logger.info("admission_denied", platform=message.platform, sender=message.sender)

        if text.lower().split(" ", 1)[0] in ("pair", "/pair"):
            reply = (
                f"Pairing code: {code}\n"
                f"Ask the bot owner to approve with:\n"
                f"pairing approve {code}"
            )
        else:
            reply = (
                f"Access not configured.\n\n"
                f"Your {message.platform} user id: {message.sender}\n\n"
                f"Pairing code: {code}\n\n"
                f"Ask the bot owner to approve with:\n"
                f"pairing approve {code}"
            )
        await self._reply(message.conversation_id, reply)

    async def _handle_pairing_command(self, message: IncomingMessage, text: str) -> None:
        cid = message.conversation_id
        if not self._is_owner(message):
            await self._reply(cid, "Only the owner can manage pairing.")
            return

        parts = text.lstrip("/").split()
        action = parts[1].lower() if len(parts) > 1 else ""

        match action:
            case "approve":
                # "pairing approve <code>" or "pairing approve <platform> <code>"
                if len(parts) not in (3, 4):
                    await self._reply(cid, "Usage: pairing approve [platform] <code>")
                    return
                try:
                    record = self._pairing.approve(parts[-1])
                except PairingError as e:
                    await self._reply(cid, str(e))
                    return
                await self._reply(cid, f"User {record.user_id} approved successfully")

            case "revoke" | "reject":
                if len(parts) != 4:
                    await self._reply(cid, f"Usage: pairing {action} <platform> <userId>")
                    return
                platform, user_id = parts[2], parts[3]
                self._pairing.revoke(platform, user_id)
                verb = "revoked" if action == "revoke" else "rejected"
                await self._reply(cid, f"User {user_id} {verb}")

            case "list":
                records = self._pairing.list()
                if not records:
                    await self._reply(cid, "No paired users")
                    return
                lines = [
                    f"{r.platform}:{r.user_id} ({'approved' if r.approved else 'pending'})"
                    for r in records
                ]
                await self._reply(cid, "Paired users:\n" + "\n".join(lines))

            case "pending":
                codes = self._pairing.pending()
                if not codes:
                    await self._reply(cid, "No pending pairing codes")
                    return
                lines = [f"{c.code}: {c.platform}:{c.user_id}" for c in codes]
                await self._reply(cid, "Pending codes:\n" + "\n".join(lines))

            case _:
                await self._reply(
                    cid, "Usage: pairing <approve|revoke|reject|list|pending> [platform] [code/userId]"
                )

    # -- bot commands ----------------------------------------------------------

    async def _handle_bot_command(self, message: IncomingMessage, text: str) -> bool:
        """Handle /reset, /status and /tools. Returns True when the message was consumed."""
        command = text.split(" ", 1)[0].split("@", 1)[0].lower()
        cid = message.conversation_id
        key = message.conversation_key

        match command:
            case "/reset":
                async with self._history.lock(key):
                    self._history.clear(key)
                logger.info("history_reset", conversation=key)
                await self._reply(cid, "Conversation history cleared. Starting fresh.")
            case "/status":
                tools = self.offered_tools()
                info = (
                    f"Backend: {self._ai_client.backend_name}\n"
                    f"Model: {self._model()}\n"
                    f"Tool strategy: {self.strategy}\n"
                    f"Tools: {len(tools) if tools else 'disabled'}\n"
                    f"Max tool rounds: {self._tool_loop.max_tool_rounds}\n"
                    f"History: {self._history.size(key)} turns\n"
                    f"Paired users: {len(self._pairing.list())}"
                )
                await self._reply(cid, info)
            case "/tools":
                tools = self.offered_tools()
                if not tools:
                    await self._reply(cid, "Tools are disabled.")
                else:
                    listing = "\n".join(f"  {t.name}: {t.description}" for t in tools)
                    await self._reply(cid, "Available tools:\n" + listing)
            case _:
                return False
        return True

    async def _handle_direct_tool_command(self, text: str) -> str | None:
        """Owner shortcuts that run a tool without the model: ``!tool arg``, ``/run tool arg``, ``shell cmd``."""
        if text.startswith("!"):
            name, _, rest = text[1:].partition(" ")
        elif text.startswith("/run "):
            name, _, rest = text[5:].strip().partition(" ")
        elif text.startswith("shell "):
            name, rest = "shell", text[6:]
        else:
            return None

        name = name.strip()
        if not name:
            return None
        tool = self._tool_registry.get(name)
        args = _direct_args(tool, rest.strip()) if tool else {}
        result = await self._tool_registry.execute(name, args)
        return _format_direct_result(result)

    # -- model loop ------------------------------------------------------------

    def _model(self) -> str:
        return self._ai_client.model_name or self._agent_config.model

    async def _run_agent(self, message: IncomingMessage, text: str) -> None:
        cid = message.conversation_id
        key = message.conversation_key
        await self._typing(cid)

        turn = user_turn(text, message.images)
        history = [*self._history.get(key), turn]

        tools = self.offered_tools()
        system = await self._prompt_builder.build(key, text)
        cfg = self._agent_config
        if self._tool_loop.text_protocol:
            options = AgentOptions(
                model=self._model(),
                max_tokens=cfg.max_tokens,
                temperature=cfg.temperature,
                system_prompt=PromptBuilder.with_tools(system, tools),
            )
        else:
            options = AgentOptions(
                model=self._model(),
                max_tokens=cfg.max_tokens,
                temperature=cfg.temperature,
                system_prompt=system,
                tools=tuple(t.to_api_dict() for t in tools) or None,
            )
        summary_options = self._tool_loop.summary_options(options, PromptBuilder.with_summary(system))

        outcome = await self._tool_loop.run(
            history,
            options,
            summary_options,
            allowed_tools=[t.name for t in tools],
            on_working=lambda: self._adapter.send_typing_indicator(cid),
        )

        # Only a completed loop reaches the history; a failed one leaves no trace
        self._history.extend(key, [turn, *outcome.new_turns])
        logger.info(
            "agent_reply",
            state=outcome.state,
            rounds=outcome.rounds,
            model_calls=outcome.model_calls,
            input_tokens=outcome.input_tokens,
            output_tokens=outcome.output_tokens,
        )

        await self._deliver(cid, outcome)

    async def _deliver(self, conversation_id: str, outcome: LoopOutcome) -> None:
        for chunk in self._chunks(outcome.text):
            await self._adapter.send_message(conversation_id, chunk)

        for artifact in outcome.artifacts:
            if not self._adapter.supports_photos:
                logger.info("artifact_skipped", artifact=artifact, reason="adapter has no photo support")
                continue
            try:
                await self._adapter.send_photo(conversation_id, artifact, caption="")
            except Exception as e:
                logger.warning("artifact_delivery_failed", artifact=artifact, error=str(e))

    # -- adapter helpers -------------------------------------------------------

    async def _typing(self, conversation_id: str) -> None:
        try:
            await self._adapter.send_typing_indicator(conversation_id)
        except Exception as e:
            logger.debug("typing_indicator_failed", error=str(e))

    async def _reply(self, conversation_id: str, text: str) -> None:
        try:
            for chunk in self._chunks(text):
                await self._adapter.send_message(conversation_id, chunk)
        except Exception as e:
            logger.error("reply_failed", error=str(e))

    def _chunks(self, text: str) -> list[str]:
        limit = min(self._agent_config.max_message_length, self._adapter.max_message_length)
        return split_message(text, limit)


def _is_pairing_command(text: str) -> bool:
    lowered = text.lower()
    return lowered == "pairing" or lowered.startswith(("pairing ", "/pairing"))


def _direct_args(tool: Tool, rest: str) -> dict[str, Any]:
    """Map the text after a direct command to tool arguments.

    A JSON object is passed through; anything else fills the tool's first
    required parameter (``command`` for the shell).
    """
    if rest.startswith("{"):
        try:
            parsed = json.loads(rest)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, dict):
            return parsed
    if not rest:
        return {}
    schema = tool.input_schema
    required = schema.get("required") or list(schema.get("properties", {}))
    key = required[0] if required else "command"
    return {key: rest}


def _format_direct_result(result: ToolResult) -> str:
    if result.success:
        response = f"✓ Success\n\n{result.output}"
    else:
        response = f"✗ Error: {result.error}"
    if result.metadata:
        response += f"\n\n{json.dumps(result.metadata, default=str)}"
    if len(response) > DIRECT_TOOL_LIMIT:
        suffix = "\n\n... (truncated)"
        response = response[: DIRECT_TOOL_LIMIT - len(suffix)] + suffix
    return response


def split_message(text: str, max_length: int = 4000) -> list[str]:
    """Split text into chunks of at most ``max_length`` at line boundaries.

    A single line longer than ``max_length`` is the only thing ever cut
    mid-line.
    """
    if len(text) <= max_length:
        return [text]

    chunks: list[str] = []
    current = ""
    for line in text.split("\n"):
        while len(line) > max_length:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(line[:max_length])
            line = line[max_length:]
        candidate = f"{current}\n{line}" if current else line
        if len(candidate) > max_length:
            chunks.append(current)
            current = line
        else:
            current = candidate
    if current:
        chunks.append(current)
    return chunks
