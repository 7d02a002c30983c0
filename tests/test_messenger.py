"""Tests for the platform adapters' delivery limits and update handling."""

import pytest

from clawbridge.messenger.discord_adapter import DiscordAdapter
from clawbridge.messenger.telegram import TelegramAdapter


class _Channel:
    def __init__(self) -> None:
        self.sent: list[str] = []

    async def send(self, content: str) -> None:
        self.sent.append(content)


class TestTelegramAdapter:
    def test_message_limit(self):
        assert TelegramAdapter("telegram", {}).max_message_length == 4096

    def test_updates_from_different_chats_run_concurrently(self):
        app = TelegramAdapter._build_application("123:abc")
        assert app.concurrent_updates > 1


class TestDiscordAdapter:
    @pytest.mark.asyncio
    async def test_message_limit(self):
        assert DiscordAdapter("discord", {}).max_message_length == 2000

    @pytest.mark.asyncio
    async def test_send_message_passes_chunk_through_whole(self, monkeypatch):
        adapter = DiscordAdapter("discord", {})
        channel = _Channel()

        async def fake_channel(conversation_id):
            return channel

        monkeypatch.setattr(adapter, "_channel", fake_channel)
        text = "a" * 1500 + "\n" + "b" * 400

        await adapter.send_message("42", text)

        assert channel.sent == [text]
