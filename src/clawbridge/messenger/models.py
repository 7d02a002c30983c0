"""Normalized inbound message shared by every platform adapter."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone


@dataclass(frozen=True, slots=True)
class ImageAttachment:
    """Inline image received with a message."""

    data: bytes
    media_type: str = "image/jpeg"


@dataclass(frozen=True, slots=True)
class IncomingMessage:
    platform: str
    sender: str
    content: str
    conversation_id: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    sender_name: str = ""
    images: tuple[ImageAttachment, ...] = ()
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def conversation_key(self) -> str:
        """Platform-scoped key used for history and locking."""
        return f"{self.platform}:{self.conversation_id}"
