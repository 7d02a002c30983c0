"""Shared fixtures for the clawbridge test suite."""

from __future__ import annotations

from pathlib import Path

import pytest

from clawbridge.ai.tools.registry import ToolRegistry
from clawbridge.core.history import ConversationStore
from clawbridge.core.pairing import PairingGate, PairingStore
from fakes import BrokenTool, EchoTool, FakeClock, RecordingAdapter


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def pairing_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "paired-users.json"


@pytest.fixture
def pairing_gate(pairing_path: Path, clock: FakeClock) -> PairingGate:
    return PairingGate(PairingStore(pairing_path), code_ttl=600, clock=clock)


@pytest.fixture
def history() -> ConversationStore:
    return ConversationStore(max_history=25)


@pytest.fixture
def echo_tool() -> EchoTool:
    return EchoTool()


@pytest.fixture
def registry(echo_tool: EchoTool) -> ToolRegistry:
    reg = ToolRegistry()
    reg.register(echo_tool)
    reg.register(BrokenTool())
    return reg


@pytest.fixture
def adapter() -> RecordingAdapter:
    return RecordingAdapter()
