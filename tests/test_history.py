"""Tests for clawbridge.core.history: bounded per-conversation turns."""

import asyncio

import pytest

from clawbridge.ai.conversation import assistant_tool_use_turn, assistant_turn, user_turn
from clawbridge.core.history import ConversationStore, Turn
from clawbridge.core.types import Role


def _tool_result(tool_use_id: str = "t1") -> Turn:
    return Turn(
        role=Role.USER,
        content=({"type": "tool_result", "tool_use_id": tool_use_id, "content": "ok"},),
        synthetic=True,
    )


def _tool_use(tool_use_id: str = "t1") -> Turn:
    return assistant_tool_use_turn([{"type": "tool_use", "id": tool_use_id, "name": "echo", "input": {}}])


class TestTurn:
    def test_real_user_turn_starts_exchange(self):
        assert user_turn("hi").starts_exchange

    def test_synthetic_and_assistant_turns_do_not_start_exchange(self):
        assert not _tool_result().starts_exchange
        assert not assistant_turn("hello").starts_exchange

    def test_text_joins_text_blocks_only(self):
        turn = Turn(
            role=Role.ASSISTANT,
            content=(
                {"type": "text", "text": "first"},
                {"type": "tool_use", "id": "t1", "name": "echo", "input": {}},
                {"type": "text", "text": "second"},
            ),
        )
        assert turn.text() == "first\nsecond"

    def test_to_api_uses_plain_role_string(self):
        assert user_turn("hi").to_api() == {"role": "user", "content": "hi"}


class TestConversationStore:
    def test_get_returns_copy(self, history):
        history.append("c1", user_turn("hi"))
        snapshot = history.get("c1")
        snapshot.append(assistant_turn("mutated"))
        assert history.size("c1") == 1

    def test_conversations_are_isolated(self, history):
        history.append("telegram:1", user_turn("a"))
        history.append("discord:1", user_turn("b"))
        assert [t.text() for t in history.get("telegram:1")] == ["a"]
        assert sorted(history.conversation_ids()) == ["discord:1", "telegram:1"]

    def test_clear_and_clear_all(self, history):
        history.extend("c1", [user_turn("a"), assistant_turn("b")])
        history.extend("c2", [user_turn("c"), assistant_turn("d")])
        history.clear("c1")
        assert history.get("c1") == []
        assert history.size("c2") == 2
        history.clear_all()
        assert history.conversation_ids() == []

    def test_ceiling_is_twice_max_history(self):
        assert ConversationStore(max_history=25).ceiling == 50

    def test_trim_evicts_oldest_exchange(self):
        store = ConversationStore(max_history=2)
        store.extend("c", [user_turn("u1"), assistant_turn("a1"), user_turn("u2"), assistant_turn("a2")])
        store.append("c", user_turn("u3"))

        kept = store.get("c")
        assert [t.text() for t in kept] == ["u2", "a2", "u3"]
        assert kept[0].starts_exchange

    def test_trim_never_splits_tool_pairs(self):
        store = ConversationStore(max_history=2)
        store.extend(
            "c",
            [user_turn("u1"), _tool_use(), _tool_result(), assistant_turn("a1"), user_turn("u2")],
        )

        kept = store.get("c")
        assert len(kept) == 1
        assert kept[0].text() == "u2"

    def test_window_always_starts_with_real_user_turn(self):
        store = ConversationStore(max_history=3)
        for i in range(10):
            store.extend(
                "c",
                [user_turn(f"u{i}"), _tool_use(f"t{i}"), _tool_result(f"t{i}"), assistant_turn(f"a{i}")],
            )
            kept = store.get("c")
            assert len(kept) <= store.ceiling
            assert kept[0].starts_exchange

    def test_oversized_single_exchange_keeps_question_and_answer(self):
        store = ConversationStore(max_history=2)
        store.extend(
            "c",
            [
                user_turn("question"),
                _tool_use("t1"),
                _tool_result("t1"),
                _tool_use("t2"),
                _tool_result("t2"),
                assistant_turn("answer"),
            ],
        )

        assert [t.text() for t in store.get("c")] == ["question", "answer"]


class TestLocks:
    def test_lock_is_stable_per_conversation(self, history):
        assert history.lock("c1") is history.lock("c1")
        assert history.lock("c1") is not history.lock("c2")

    def test_clear_drops_idle_lock(self, history):
        first = history.lock("c1")
        history.clear("c1")
        assert history.lock("c1") is not first

    @pytest.mark.asyncio
    async def test_clear_keeps_held_lock(self, history):
        async with history.lock("c1"):
            held = history.lock("c1")
            history.clear("c1")
            history.clear_all()
            assert history.lock("c1") is held

    @pytest.mark.asyncio
    async def test_lock_serializes_same_conversation(self, history):
        order: list[str] = []

        async def worker(name: str, delay: float) -> None:
            async with history.lock("c1"):
                order.append(f"{name}-start")
                await asyncio.sleep(delay)
                order.append(f"{name}-end")

        await asyncio.gather(worker("first", 0.02), worker("second", 0))
        assert order == ["first-start", "first-end", "second-start", "second-end"]


@pytest.mark.parametrize("pairs", [1, 25, 26, 60])
def test_keeps_most_recent_turns_in_order(pairs):
    store = ConversationStore(max_history=25)
    appended = []
    for i in range(pairs):
        for turn in (user_turn(f"u{i}"), assistant_turn(f"a{i}")):
            store.append("c", turn)
            appended.append(turn)

    kept = store.get("c")
    assert len(kept) <= 50
    assert kept == appended[len(appended) - len(kept):]
