"""In-memory, bounded conversation history keyed by conversation id."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Iterable

from clawbridge.core.types import Role
from clawbridge.log import get_logger

logger = get_logger(__name__)

ContentBlock = dict[str, Any]


@dataclass(frozen=True)
class Turn:
    """One message-equivalent unit of a conversation.

    ``synthetic`` marks user-role turns injected by the tool loop (tool
    results); they never start an exchange.
    """

    role: Role
    content: str | tuple[ContentBlock, ...]
    synthetic: bool = False

    @property
    def starts_exchange(self) -> bool:
        return self.role == Role.USER and not self.synthetic

    def text(self) -> str:
        """Plain-text view of the content (text blocks joined)."""
        if isinstance(self.content, str):
            return self.content
        return "\n".join(b.get("text", "") for b in self.content if b.get("type") == "text")

    def to_api(self) -> dict[str, Any]:
        content = self.content if isinstance(self.content, str) else list(self.content)
        return {"role": str(self.role), "content": content}


class ConversationStore:
    """Per-conversation history capped at ``2 * max_history`` turns.

    Eviction removes whole exchanges from the front: a real user turn plus
    every assistant/tool turn that answered it. At most one tool loop may run
    per conversation at a time; callers serialize through ``lock()``.
    """

    def __init__(self, max_history: int = 25):
        self._max_history = max_history
        self._turns: dict[str, list[Turn]] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def ceiling(self) -> int:
        return 2 * self._max_history

    def lock(self, conversation_id: str) -> asyncio.Lock:
        return self._locks.setdefault(conversation_id, asyncio.Lock())

    def append(self, conversation_id: str, turn: Turn) -> None:
        turns = self._turns.setdefault(conversation_id, [])
        turns.append(turn)
        if len(turns) > self.ceiling:
            self._trim(conversation_id, turns)

    def extend(self, conversation_id: str, turns: Iterable[Turn]) -> None:
        stored = self._turns.setdefault(conversation_id, [])
        stored.extend(turns)
        if len(stored) > self.ceiling:
            self._trim(conversation_id, stored)

    def get(self, conversation_id: str) -> list[Turn]:
        return list(self._turns.get(conversation_id, ()))

    def size(self, conversation_id: str) -> int:
        return len(self._turns.get(conversation_id, ()))

    def clear(self, conversation_id: str) -> None:
        self._turns.pop(conversation_id, None)
        lock = self._locks.get(conversation_id)
        if lock is not None and not lock.locked():
            del self._locks[conversation_id]

    def clear_all(self) -> None:
        self._turns.clear()
        self._locks = {cid: lock for cid, lock in self._locks.items() if lock.locked()}

    def conversation_ids(self) -> list[str]:
        return list(self._turns)

    def _trim(self, conversation_id: str, turns: list[Turn]) -> None:
        before = len(turns)
        while len(turns) > self.ceiling:
            next_start = next(
                (i for i in range(1, len(turns)) if turns[i].starts_exchange), None
            )
            if next_start is not None:
                del turns[:next_start]
                continue
            # A single exchange is over the ceiling: keep its question and answer only
            if len(turns) > 2 and turns[0].starts_exchange and turns[-1].role == Role.ASSISTANT:
                del turns[1:-1]
            else:
                del turns[: len(turns) - self.ceiling]
            break
        logger.debug("history_trimmed", conversation_id=conversation_id, evicted=before - len(turns))
