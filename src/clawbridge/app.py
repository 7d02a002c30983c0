"""Application orchestrator - wires all components and manages lifecycle."""

from __future__ import annotations

from pathlib import Path

from clawbridge.ai.client import AIClient, create_ai_client
from clawbridge.ai.handler import AgentOrchestrator
from clawbridge.ai.prompt import ContextProvider, PromptBuilder
from clawbridge.ai.tools.registry import ToolRegistry
from clawbridge.config import AppConfig, PlatformConfig
from clawbridge.core.history import ConversationStore
from clawbridge.core.pairing import PairingGate, PairingStore
from clawbridge.core.types import Platform
from clawbridge.errors import ConfigError
from clawbridge.log import get_logger
from clawbridge.messenger.base import MessengerAdapter

logger = get_logger(__name__)


def build_pairing_gate(config: AppConfig) -> PairingGate:
    store = PairingStore(Path(config.pairing.store_path))
    return PairingGate(store, code_ttl=config.pairing.code_ttl_seconds)


class ClawbridgeApp:
    """Top-level application orchestrator.

    History, pairing and tools are shared across every platform; each enabled
    platform gets its own adapter and ``AgentOrchestrator``.
    """

    def __init__(self, config: AppConfig, context_provider: ContextProvider | None = None):
        self.config = config
        self.history = ConversationStore(max_history=config.agent.max_history)
        self.pairing = build_pairing_gate(config)
        self.tool_registry = ToolRegistry()
        self.prompt_builder = PromptBuilder(config.agent.system_prompt, context_provider)
        self.adapters: dict[str, MessengerAdapter] = {}
        self.orchestrators: dict[str, AgentOrchestrator] = {}

    async def start(self) -> None:
        """Initialize and start all components."""
        Path(self.config.data_dir).mkdir(parents=True, exist_ok=True)

        if self.config.enable_tools:
            self.tool_registry.discover_and_register(self.config.agent.tools)

        ai_client = create_ai_client(self.config)

        for platform_cfg in self.config.enabled_platforms():
            try:
                adapter = self._create_adapter(platform_cfg)
                orchestrator = self._create_orchestrator(adapter, ai_client)
                adapter.on_message(orchestrator.handle)
                self._approve_owner(adapter.platform_name)
                await adapter.start()
                self.adapters[adapter.platform_name] = adapter
                self.orchestrators[adapter.platform_name] = orchestrator
                logger.info(
                    "platform_started",
                    platform=adapter.platform_name,
                    backend=ai_client.backend_name,
                    strategy=orchestrator.strategy,
                )
            except Exception as e:
                logger.error("platform_start_failed", platform=platform_cfg.type, error=str(e))

        logger.info(
            "clawbridge_started",
            platforms=list(self.adapters),
            tools=len(self.tool_registry),
            require_pairing=self.config.pairing.require_pairing,
        )

    async def stop(self) -> None:
        """Gracefully shut down all components."""
        for name, adapter in self.adapters.items():
            try:
                await adapter.stop()
            except Exception as e:
                logger.error("platform_stop_error", platform=name, error=str(e))
        self.adapters.clear()
        self.orchestrators.clear()
        logger.info("clawbridge_stopped")

    def _create_orchestrator(self, adapter: MessengerAdapter, ai_client: AIClient) -> AgentOrchestrator:
        return AgentOrchestrator(
            adapter=adapter,
            ai_client=ai_client,
            history=self.history,
            pairing=self.pairing,
            tool_registry=self.tool_registry,
            prompt_builder=self.prompt_builder,
            agent_config=self.config.agent,
            owner_id=self.config.owner_id,
            enable_tools=self.config.enable_tools,
            require_pairing=self.config.pairing.require_pairing,
        )

    def _approve_owner(self, platform: str) -> None:
        owner = self.config.owner_id
        if not owner:
            return
        owner_platform, sep, owner_user = owner.partition(":")
        if sep and owner_platform != platform:
            return
        user_id = owner_user if sep else owner
        if not self.pairing.is_approved(platform, user_id):
            self.pairing.approve_user(platform, user_id)
            logger.info("owner_auto_approved", platform=platform, user_id=user_id)

    def _create_adapter(self, cfg: PlatformConfig) -> MessengerAdapter:
        match cfg.type:
            case Platform.TELEGRAM:
                from clawbridge.messenger.telegram import TelegramAdapter

                return TelegramAdapter(cfg.type, cfg.model_dump())
            case Platform.DISCORD:
                from clawbridge.messenger.discord_adapter import DiscordAdapter

                return DiscordAdapter(cfg.type, cfg.model_dump())
            case _:
                raise ConfigError(f"Unsupported platform: {cfg.type}")
