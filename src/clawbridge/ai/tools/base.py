"""Abstract tool interface and the result value every tool returns."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass(frozen=True)
class ToolResult:
    success: bool
    output: str = ""
    error: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    artifact: Optional[str] = None  # local file (e.g. an image) to forward to the chat

    @classmethod
    def ok(cls, output: str, **metadata: Any) -> ToolResult:
        return cls(success=True, output=output, metadata=metadata)

    @classmethod
    def fail(cls, error: str, output: str = "", **metadata: Any) -> ToolResult:
        return cls(success=False, output=output, error=error, metadata=metadata)

    @property
    def error_kind(self) -> Optional[str]:
        return self.metadata.get("error_kind")


class Tool(ABC):
    """Base class for all model-callable tools."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique tool name; the dispatch key."""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable description for the model and for /tools."""
        ...

    @property
    @abstractmethod
    def input_schema(self) -> dict[str, Any]:
        """JSON Schema dict describing accepted parameters."""
        ...

    @abstractmethod
    async def execute(self, **kwargs: Any) -> ToolResult:
        """Run the tool."""
        ...

    def to_api_dict(self) -> dict[str, Any]:
        """Serialize to the Anthropic API tool definition format."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }
