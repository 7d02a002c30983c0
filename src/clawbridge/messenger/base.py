"""Abstract messenger adapter interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Awaitable, Callable

from clawbridge.messenger.models import IncomingMessage


class MessengerAdapter(ABC):
    """Base class for all messenger platform adapters.

    The orchestrator only relies on ``send_message``; photo delivery and the
    typing indicator are optional capabilities that adapters may leave at the
    defaults below.
    """

    def __init__(self, bot_id: str, config: dict):
        self.bot_id = bot_id
        self.config = config
        self._message_callback: Callable[[IncomingMessage], Awaitable[None]] | None = None

    @abstractmethod
    async def start(self) -> None:
        """Connect to the platform and begin receiving messages."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Gracefully disconnect."""
        ...

    @abstractmethod
    async def send_message(self, conversation_id: str, text: str) -> None:
        """Send a text message to a chat/channel."""
        ...

    @property
    def supports_photos(self) -> bool:
        return False

    @property
    def max_message_length(self) -> int:
        """Longest text the platform accepts in a single message."""
        return 4000

    async def send_photo(self, conversation_id: str, file_path: str, caption: str = "") -> None:
        """Send a local image file; only called when ``supports_photos`` is True."""
        raise NotImplementedError(f"{self.platform_name} adapter cannot send photos")

    async def send_typing_indicator(self, conversation_id: str) -> None:
        """Show typing/processing indicator."""
        return None

    def on_message(self, callback: Callable[[IncomingMessage], Awaitable[None]]) -> None:
        """Register the callback invoked for every incoming message."""
        self._message_callback = callback

    @property
    @abstractmethod
    def platform_name(self) -> str:
        """Return platform identifier string."""
        ...
