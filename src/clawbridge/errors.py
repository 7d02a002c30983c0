"""Exception taxonomy for the orchestration core.

Tool failures have no exception here: they are returned as failed
``ToolResult`` values (``metadata["error_kind"]`` is ``"ToolNotFound"`` or
``"ToolExecutionFailed"``) and never raised past the tool registry.
"""

from __future__ import annotations


class ClawbridgeError(Exception):
    """Base class for all clawbridge errors."""


class ConfigError(ClawbridgeError):
    """Configuration file missing or invalid."""


class AdmissionDenied(ClawbridgeError):
    """Sender is not an approved (platform, user) pair."""

    def __init__(self, platform: str, user_id: str):
        super().__init__(f"{platform}:{user_id} is not paired")
        self.platform = platform
        self.user_id = user_id


class PairingError(ClawbridgeError):
    """Base class for pairing-code failures."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code


class InvalidPairingCode(PairingError):
    def __init__(self, code: str):
        super().__init__(code, "Invalid or expired pairing code")


class ExpiredPairingCode(PairingError):
    def __init__(self, code: str):
        super().__init__(code, "Pairing code expired")


class ModelBackendError(ClawbridgeError):
    """The model backend call failed; aborts the loop for the current message."""

    def __init__(self, backend: str, message: str):
        super().__init__(f"{backend}: {message}")
        self.backend = backend
