"""Telegram messenger adapter using python-telegram-bot v21+."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from telegram import Update
from telegram.constants import ChatAction
from telegram.ext import Application, MessageHandler as TGMessageHandler, filters

from clawbridge.core.types import Platform
from clawbridge.log import get_logger
from clawbridge.messenger.base import MessengerAdapter
from clawbridge.messenger.models import ImageAttachment, IncomingMessage

logger = get_logger(__name__)


class TelegramAdapter(MessengerAdapter):
    """Telegram bot adapter using long polling."""

    def __init__(self, bot_id: str, config: dict):
        super().__init__(bot_id, config)
        self._app: Application | None = None  # type: ignore[type-arg]

    @property
    def platform_name(self) -> str:
        return Platform.TELEGRAM

    @property
    def supports_photos(self) -> bool:
        return True

    @property
    def max_message_length(self) -> int:
        return 4096

    async def start(self) -> None:
        token = self.config.get("token", "")
        if not token:
            raise ValueError(f"Telegram bot token not configured for bot '{self.bot_id}'")

        self._app = self._build_application(token)

        # Commands (/reset, /status, /pair, ...) are routed like plain text
        self._app.add_handler(
            TGMessageHandler(filters.TEXT | filters.COMMAND, self._on_telegram_message)
        )
        self._app.add_handler(TGMessageHandler(filters.PHOTO, self._on_telegram_message))

        await self._app.initialize()
        await self._app.start()
        await self._app.updater.start_polling(drop_pending_updates=True)  # type: ignore[union-attr]
        logger.info("telegram_adapter_started", bot_id=self.bot_id)

    @staticmethod
    def _build_application(token: str) -> Application:  # type: ignore[type-arg]
        # Chats run side by side; same-chat ordering comes from the conversation lock
        return Application.builder().token(token).concurrent_updates(True).build()

    async def stop(self) -> None:
        if self._app:
            await self._app.updater.stop()  # type: ignore[union-attr]
            await self._app.stop()
            await self._app.shutdown()
            logger.info("telegram_adapter_stopped", bot_id=self.bot_id)

    async def send_message(self, conversation_id: str, text: str) -> None:
        if not self._app or not self._app.bot:
            return
        await self._app.bot.send_message(chat_id=int(conversation_id), text=text)

    async def send_photo(self, conversation_id: str, file_path: str, caption: str = "") -> None:
        if not self._app or not self._app.bot:
            return
        with Path(file_path).open("rb") as photo:
            await self._app.bot.send_photo(
                chat_id=int(conversation_id), photo=photo, caption=caption or None
            )

    async def send_typing_indicator(self, conversation_id: str) -> None:
        if self._app and self._app.bot:
            await self._app.bot.send_chat_action(
                chat_id=int(conversation_id), action=ChatAction.TYPING
            )

    async def _on_telegram_message(self, update: Update, context: Any) -> None:
        """Normalize a Telegram update (text and/or photo) into an IncomingMessage."""
        if not update.message or not self._message_callback:
            return

        msg = update.message
        text = msg.text or msg.caption or ""
        images: list[ImageAttachment] = []

        # Highest resolution is the last size
        if msg.photo:
            try:
                tg_file = await msg.photo[-1].get_file()
                photo_bytes = await tg_file.download_as_bytearray()
                images.append(ImageAttachment(data=bytes(photo_bytes), media_type="image/jpeg"))
            except Exception as e:
                logger.warning("telegram_photo_download_error", error=str(e))

        if not text and not images:
            return

        incoming = IncomingMessage(
            id=str(msg.message_id),
            platform=Platform.TELEGRAM,
            sender=str(msg.from_user.id) if msg.from_user else "unknown",
            sender_name=msg.from_user.full_name if msg.from_user else "Unknown",
            content=text,
            conversation_id=str(msg.chat_id),
            images=tuple(images),
            timestamp=msg.date or datetime.now(timezone.utc),
        )

        try:
            await self._message_callback(incoming)
        except Exception as e:
            logger.error("telegram_handler_error", error=str(e), chat_id=str(msg.chat_id))
