"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

DEFAULT_OPENROUTER_BASE = "https://openrouter.ai/api/v1"


class OpenRouterConfig(BaseModel):
    api_key: str = ""
    base_url: str = DEFAULT_OPENROUTER_BASE
    app_url: str = "https://localhost"
    title: str = "Telegram Chat Bot"
    timeout: float = 45.0  # seconds, per attempt
    connect_timeout: float = 10.0
    max_retries: int = 4
    retry_base_delay: float = 0.3
    retry_max_delay: float = 4.0
    retry_jitter: float = 0.12


class ModelsConfig(BaseModel):
    """Model ids for each preset. Any of them may be overridden from the environment."""

    auto: str = "openrouter/auto"
    fast: str = "openai/gpt-4o-mini"
    smart: str = "anthropic/claude-3.5-sonnet"
    code: str = "qwen/qwen-2.5-coder-32b-instruct"
    math: str = "deepseek/deepseek-r1"
    vision: str = "openai/gpt-4o-mini"
    fallback: Optional[str] = None


class LockConfig(BaseModel):
    ttl: float = 30.0
    retry_delay: float = 0.18
    max_wait: float = 40.0

    @model_validator(mode="after")
    def _check_bounds(self) -> LockConfig:
        if self.ttl <= 0 or self.retry_delay <= 0 or self.max_wait <= 0:
            raise ValueError("lock ttl, retry_delay and max_wait must be positive")
        # A single stuck holder must be reclaimable before waiters give up.
        if self.max_wait <= self.ttl + self.retry_delay:
            raise ValueError("lock max_wait must exceed ttl plus one retry_delay")
        return self


class RateLimitConfig(BaseModel):
    max_events: int = 20
    window: float = 600.0  # seconds
    cleanup_multiplier: int = 24


class StorageConfig(BaseModel):
    db_path: str = "./data/teleassist.db"
    busy_timeout: float = 5.0


class TurnConfig(BaseModel):
    max_input_chars: int = 4000
    max_output_tokens: int = 1600
    tool_max_tokens: int = 700
    tool_rounds: int = 2
    chunk_size: int = 3500
    stream_edit_interval: float = 1.2
    recent_messages: int = 12


class AppConfig(BaseModel):
    log_level: str = "INFO"
    json_logs: bool = False
    data_dir: str = "./data"
    openrouter: OpenRouterConfig = Field(default_factory=OpenRouterConfig)
    models: ModelsConfig = Field(default_factory=ModelsConfig)
    lock: LockConfig = Field(default_factory=LockConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    turn: TurnConfig = Field(default_factory=TurnConfig)


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
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    raw_text = config_file.read_text(encoding="utf-8")

    # First pass: extract data_dir for self-referencing
    raw_data = yaml.safe_load(raw_text) or {}
    data_dir = _interpolate_env_vars(str(raw_data.get("data_dir", "./data")))

    # Second pass: interpolate all env vars
    interpolated = _interpolate_env_vars(raw_text, extra={"data_dir": data_dir})
    data = yaml.safe_load(interpolated) or {}

    return AppConfig(**data)
