"""
config/settings.py — Signal Analyst Runtime Settings

Merges config.yaml (defaults/structure) with .env (secrets).
Pydantic-powered — all fields are validated and typed.

  - Field validators reject bad values at parse time (unknown provider,
    non-positive limits, bad log level, non-http Home Assistant URL)
  - validate_all() performs full startup validation and raises ConfigError
    with a clear, human-readable message listing every problem found
  - load_settings() respects SIGNAL_ANALYST_CONFIG env var as a fallback
    when no explicit config_path argument is given
"""

from __future__ import annotations

import os
import threading as _threading
from pathlib import Path
from typing import Any, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# ─────────────────────────────────────────────────────────────────────────────
# Errors
# ─────────────────────────────────────────────────────────────────────────────

class ConfigError(Exception):
    """Raised by validate_all() when one or more config problems are found."""


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

_VALID_PROVIDERS  = {"openai", "anthropic", "ollama", "conversation"}
_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _require_positive(name: str, v: float) -> float:
    if v <= 0:
        raise ValueError(f"{name} must be > 0")
    return v


# ─────────────────────────────────────────────────────────────────────────────
# Sub-models
# ─────────────────────────────────────────────────────────────────────────────

class AgentConfig(BaseModel):
    name: str = "Signal Analyst"
    version: str = "1.0.0"
    max_iterations: int = 6
    max_history_messages: int = 40

    @field_validator("max_iterations")
    @classmethod
    def _positive_iterations(cls, v: int) -> int:
        if v < 1:
            raise ValueError("agent.max_iterations must be >= 1")
        return v

    @field_validator("max_history_messages")
    @classmethod
    def _history_floor(cls, v: int) -> int:
        if v < 2:
            raise ValueError("agent.max_history_messages must be >= 2")
        return v


class LLMRetryConfig(BaseModel):
    """Exponential backoff config for transient LLM errors."""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0

    @field_validator("max_attempts")
    @classmethod
    def _positive_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("llm.retry.max_attempts must be >= 1")
        return v


class LLMConfig(BaseModel):
    provider: str = "conversation"
    model: str = "default"
    temperature: float = 0.2
    max_tokens: int = 4096
    timeout_seconds: float = 120.0
    retry: LLMRetryConfig = Field(default_factory=LLMRetryConfig)
    fallback_providers: List[str] = Field(default_factory=list)
    conversation_agent_id: Optional[str] = None

    @field_validator("provider")
    @classmethod
    def _known_provider(cls, v: str) -> str:
        v = v.lower().strip()
        if v not in _VALID_PROVIDERS:
            raise ValueError(
                f"llm.provider '{v}' is not supported. "
                f"Supported: {sorted(_VALID_PROVIDERS)}"
            )
        return v

    @field_validator("temperature")
    @classmethod
    def _valid_temperature(cls, v: float) -> float:
        if not (0.0 <= v <= 2.0):
            raise ValueError("llm.temperature must be between 0.0 and 2.0")
        return v

    @field_validator("max_tokens")
    @classmethod
    def _positive_tokens(cls, v: int) -> int:
        if v < 1:
            raise ValueError("llm.max_tokens must be >= 1")
        return v

    @field_validator("timeout_seconds")
    @classmethod
    def _positive_timeout(cls, v: float) -> float:
        return _require_positive("llm.timeout_seconds", v)


class HomeAssistantConfig(BaseModel):
    url: str = "http://homeassistant.local:8123"
    timeout_seconds: float = 20.0

    @field_validator("url")
    @classmethod
    def _http_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(
                f"home_assistant.url '{v}' must start with http:// or https://"
            )
        return v.rstrip("/")

    @field_validator("timeout_seconds")
    @classmethod
    def _positive_timeout(cls, v: float) -> float:
        return _require_positive("home_assistant.timeout_seconds", v)


class SandboxConfig(BaseModel):
    timeout_seconds: float = 30.0
    host_call_timeout_seconds: float = 300.0

    @field_validator("timeout_seconds", "host_call_timeout_seconds")
    @classmethod
    def _positive_timeouts(cls, v: float) -> float:
        return _require_positive("sandbox timeouts", v)


class SafetyConfig(BaseModel):
    effectful_methods: list[str] = Field(default_factory=lambda: ["call_service"])
    confirmation_timeout_seconds: float = 120.0
    host_call_timeout_seconds: float = 30.0

    @field_validator("confirmation_timeout_seconds", "host_call_timeout_seconds")
    @classmethod
    def _positive_timeouts(cls, v: float) -> float:
        return _require_positive("safety timeouts", v)


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_dir: str = "./data/logs"
    max_file_size_mb: int = 100
    backup_count: int = 5
    console_output: bool = False
    json_format: bool = True

    @field_validator("level")
    @classmethod
    def _valid_log_level(cls, v: str) -> str:
        upper = v.upper()
        if upper not in _VALID_LOG_LEVELS:
            raise ValueError(
                f"logging.level '{v}' is not valid. "
                f"Must be one of: {sorted(_VALID_LOG_LEVELS)}"
            )
        return upper


# ─────────────────────────────────────────────────────────────────────────────
# Root Settings
# ─────────────────────────────────────────────────────────────────────────────

_KNOWN_SECTIONS = {"agent", "llm", "home_assistant", "sandbox", "safety", "logging"}


class Settings(BaseSettings):
    """
    Signal Analyst runtime settings.

    Priority (highest to lowest):
      1. Environment variables
      2. .env file
      3. config.yaml
      4. Field defaults
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    # -- Secrets from .env ---------------------------------------------------
    openai_api_key: Optional[str] = Field(default=None, alias="OPENAI_API_KEY")
    anthropic_api_key: Optional[str] = Field(default=None, alias="ANTHROPIC_API_KEY")
    ha_token: Optional[str] = Field(default=None, alias="HA_TOKEN")
    ollama_base_url: str = Field(default="http://localhost:11434", alias="OLLAMA_BASE_URL")

    # -- Structured config (from config.yaml) --------------------------------
    agent: AgentConfig = Field(default_factory=AgentConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    home_assistant: HomeAssistantConfig = Field(default_factory=HomeAssistantConfig)
    sandbox: SandboxConfig = Field(default_factory=SandboxConfig)
    safety: SafetyConfig = Field(default_factory=SafetyConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("ha_token", mode="before")
    @classmethod
    def _blank_token(cls, v: Any) -> Optional[str]:
        if v in (None, "", "null"):
            return None
        return v

    # -- Convenience properties ----------------------------------------------

    @property
    def agent_name(self) -> str:
        return self.agent.name

    @property
    def log_level(self) -> str:
        return self.logging.level.upper()

    @property
    def log_dir(self) -> Path:
        return Path(self.logging.log_dir)

    @property
    def log_json_format(self) -> bool:
        return self.logging.json_format

    @property
    def log_console_output(self) -> bool:
        return self.logging.console_output

    def validate_all(self) -> None:
        """
        Full startup validation. Raises ConfigError listing every problem found.

        Called once at startup in main.py bootstrap() before any subsystem
        initialises. Pydantic field validators catch type/value errors at parse
        time; this method catches cross-field problems Pydantic can't see
        (API key presence for the chosen provider, fallbacks without keys,
        the HA token the host functions need).
        """
        errors: list[str] = []

        key_map = {
            "openai":    ("OPENAI_API_KEY",    self.openai_api_key),
            "anthropic": ("ANTHROPIC_API_KEY", self.anthropic_api_key),
        }

        # ── LLM provider API key ─────────────────────────────────────────────
        provider = self.llm.provider
        if provider in key_map:
            env_name, value = key_map[provider]
            if not value:
                errors.append(
                    f"LLM provider '{provider}' requires {env_name} to be set "
                    f"in your .env file."
                )

        # ── Fallback providers ───────────────────────────────────────────────
        for fp in self.llm.fallback_providers:
            if fp not in _VALID_PROVIDERS:
                errors.append(
                    f"llm.fallback_providers contains unknown provider '{fp}'. "
                    f"Supported: {sorted(_VALID_PROVIDERS)}"
                )
            elif fp in key_map and not key_map[fp][1]:
                errors.append(
                    f"Fallback provider '{fp}' requires {key_map[fp][0]} but it "
                    f"is not set. Remove '{fp}' from llm.fallback_providers "
                    f"or add the key to .env."
                )

        # ── Home Assistant token ─────────────────────────────────────────────
        if not self.ha_token:
            errors.append(
                "HA_TOKEN is not set. Create a long-lived access token in your "
                "Home Assistant profile and add it to .env."
            )

        # ── Effectful methods list ───────────────────────────────────────────
        if "call_service" not in self.safety.effectful_methods:
            errors.append(
                "safety.effectful_methods must include 'call_service'; service "
                "calls may not bypass the confirmation gate."
            )

        # ── Report all errors together ───────────────────────────────────────
        if errors:
            numbered = "\n".join(f"  {i+1}. {e}" for i, e in enumerate(errors))
            raise ConfigError(
                f"\n\nSignal Analyst startup failed — {len(errors)} configuration "
                f"problem(s) found:\n\n{numbered}\n\n"
                f"Fix the issues above in config/config.yaml or your .env file "
                f"and restart.\n"
            )


# ─────────────────────────────────────────────────────────────────────────────
# Loader + singleton
# ─────────────────────────────────────────────────────────────────────────────

_singleton: Optional[Settings] = None
_singleton_lock = _threading.Lock()


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _resolve_config_path(config_path: str | Path | None) -> Path:
    """
    Resolve the config file path with this priority:
      1. Explicit config_path argument (from --config CLI flag)
      2. SIGNAL_ANALYST_CONFIG environment variable
      3. Default: config/config.yaml
    """
    if config_path is not None:
        return Path(config_path)
    env_path = os.environ.get("SIGNAL_ANALYST_CONFIG")
    if env_path:
        return Path(env_path)
    return Path("config/config.yaml")


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load settings by merging config.yaml with environment variables."""
    global _singleton
    yaml_data = _load_yaml(_resolve_config_path(config_path))
    init_kwargs = {k: v for k, v in yaml_data.items() if k in _KNOWN_SECTIONS}

    instance = Settings(**init_kwargs)
    with _singleton_lock:
        _singleton = instance
    return instance


def get_settings() -> Settings:
    """
    Return the global Settings singleton, loading the default config on
    first use. Guarded by _singleton_lock against double initialisation.
    """
    global _singleton
    if _singleton is not None:
        return _singleton
    with _singleton_lock:
        if _singleton is not None:
            return _singleton
    return load_settings()
