"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from clawbridge.errors import ConfigError

DEFAULT_SYSTEM_PROMPT = "You are a helpful AI assistant."


class AgentConfig(BaseModel):
    backend: str = "anthropic"  # "anthropic" | "claude_code"
    model: str = "claude-sonnet-4-6"
    max_tokens: int = 4096
    temperature: float = 0.7
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    tools: list[str] = Field(default_factory=list)  # empty = every registered tool
    max_tool_rounds: int = Field(default=10, ge=1)
    max_history: int = Field(default=25, ge=1)
    max_message_length: int = Field(default=4000, ge=100)


class PlatformConfig(BaseModel):
    type: str  # "telegram" | "discord"
    enabled: bool = True
    token: str = ""
    guild_ids: list[int] = Field(default_factory=list)


class AnthropicConfig(BaseModel):
    api_key: str
    base_url: Optional[str] = None
    max_retries: int = 3
    timeout: int = 120


class ClaudeCodeConfig(BaseModel):
    cli_path: str = "claude"
    model: str = "sonnet"
    timeout: int = 300


class PairingConfig(BaseModel):
    require_pairing: bool = True
    store_path: str = "${data_dir}/paired-users.json"
    code_ttl_seconds: int = Field(default=600, ge=1)


class AppConfig(BaseModel):
    log_level: str = "INFO"
    log_json: bool = False
    data_dir: str = "./data"
    owner_id: Optional[str] = None
    enable_tools: bool = False
    agent: AgentConfig = Field(default_factory=AgentConfig)
    platforms: list[PlatformConfig] = Field(default_factory=list)
    anthropic: Optional[AnthropicConfig] = None
    claude_code: ClaudeCodeConfig = Field(default_factory=ClaudeCodeConfig)
    pairing: PairingConfig = Field(default_factory=PairingConfig)

    def enabled_platforms(self) -> list[PlatformConfig]:
        return [p for p in self.platforms if p.enabled]


_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _interpolate_env_vars(text: str, extra: dict[str, str] | None = None) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        if extra and var_name in extra:
            return extra[var_name]
        value = os.environ.get(var_name)
        if value is None:
            return match.group(0)
        return value

    return _ENV_VAR_PATTERN.sub(_replace, text)


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Load and validate configuration from YAML file with env-var interpolation."""
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise ConfigError(f"Configuration file not found: {config_file}")

    raw_text = config_file.read_text(encoding="utf-8")

    try:
        # First pass: data_dir may be referenced by other values
        raw_data = yaml.safe_load(raw_text) or {}
        data_dir = _interpolate_env_vars(str(raw_data.get("data_dir", "./data")))

        data = yaml.safe_load(_interpolate_env_vars(raw_text, extra={"data_dir": data_dir})) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_file}: {e}") from e

    try:
        config = AppConfig(**data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {config_file}:\n{e}") from e

    # Defaults are not part of the YAML text, so interpolate them here too
    config.pairing.store_path = _interpolate_env_vars(
        config.pairing.store_path, extra={"data_dir": config.data_dir}
    )
    return config
