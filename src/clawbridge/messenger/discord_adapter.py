"""Discord messenger adapter using discord.py v2+."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any

import discord

from clawbridge.core.types import Platform
from clawbridge.log import get_logger
from clawbridge.messenger.base import MessengerAdapter
from clawbridge.messenger.models import ImageAttachment, IncomingMessage

logger = get_logger(__name__)

_Sendable = (discord.TextChannel, discord.DMChannel, discord.Thread)


class DiscordAdapter(MessengerAdapter):
    """Discord bot adapter; conversations are channel ids."""

    def __init__(self, bot_id: str, config: dict):
        super().__init__(bot_id, config)
        intents = discord.Intents.default()
        intents.message_content = True
        self._bot = discord.Client(intents=intents)
        self._guild_ids = set(config.get("guild_ids") or ())
        self._task: asyncio.Task[Any] | None = None
        self._ready = asyncio.Event()

        @self._bot.event
        async def on_ready() -> None:
            logger.info("discord_bot_ready", user=str(self._bot.user), bot_id=self.bot_id)
            self._ready.set()

        @self._bot.event
        async def on_message(message: discord.Message) -> None:
            if message.author == self._bot.user or message.author.bot:
                return
            if self._guild_ids and message.guild and message.guild.id not in self._guild_ids:
                return
            await self._on_discord_message(message)

    @property
    def platform_name(self) -> str:
        return Platform.DISCORD

    @property
    def supports_photos(self) -> bool:
        return True

    @property
    def max_message_length(self) -> int:
        # Discord rejects longer messages
        return 2000

    async def start(self) -> None:
        token = self.config.get("token", "")
        if not token:
            raise ValueError(f"Discord bot token not configured for bot '{self.bot_id}'")

        self._task = asyncio.create_task(self._bot.start(token))
        try:
            await asyncio.wait_for(self._ready.wait(), timeout=30)
        except asyncio.TimeoutError:
            logger.warning("discord_ready_timeout", bot_id=self.bot_id)

        logger.info("discord_adapter_started", bot_id=self.bot_id)

    async def stop(self) -> None:
        await self._bot.close()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except (asyncio.CancelledError, Exception):
                pass
        logger.info("discord_adapter_stopped", bot_id=self.bot_id)

    async def _channel(self, conversation_id: str) -> Any:
        channel = self._bot.get_channel(int(conversation_id))
        if channel is None:
            try:
                channel = await self._bot.fetch_channel(int(conversation_id))
            except discord.DiscordException:
                logger.error("discord_channel_not_found", channel_id=conversation_id)
                return None
        if not isinstance(channel, _Sendable):
            return None
        return channel

    async def send_message(self, conversation_id: str, text: str) -> None:
        channel = await self._channel(conversation_id)
        if channel is None:
            return
        await channel.send(text)

    async def send_photo(self, conversation_id: str, file_path: str, caption: str = "") -> None:
        channel = await self._channel(conversation_id)
        if channel is None:
            return
        await channel.send(content=caption[:2000] or None, file=discord.File(file_path))

    async def send_typing_indicator(self, conversation_id: str) -> None:
        channel = self._bot.get_channel(int(conversation_id))
        if channel and hasattr(channel, "typing"):
            await channel.typing()  # type: ignore[union-attr]

    async def _on_discord_message(self, message: discord.Message) -> None:
        """Normalize a Discord message (text and/or images) into an IncomingMessage."""
        if not self._message_callback:
            return

        text = message.content or ""
        images: list[ImageAttachment] = []

        for att in message.attachments:
            media_type = att.content_type or ""
            if not media_type.startswith("image/"):
                continue
            try:
                images.append(ImageAttachment(data=await att.read(), media_type=media_type))
            except discord.DiscordException as e:
                logger.warning("discord_attachment_download_error", error=str(e))

        if not text and not images:
            return

        incoming = IncomingMessage(
            id=str(message.id),
            platform=Platform.DISCORD,
            sender=str(message.author.id),
            sender_name=message.author.display_name,
            content=text,
            conversation_id=str(message.channel.id),
            images=tuple(images),
            timestamp=message.created_at or datetime.now(timezone.utc),
        )

        try:
            await self._message_callback(incoming)
        except Exception as e:
            logger.error(
                "discord_handler_error", error=str(e), channel_id=str(message.channel.id)
            )
