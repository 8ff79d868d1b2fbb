"""Settings loading and validation for the chat panel."""

from __future__ import annotations

import asyncio
from copy import deepcopy
import logging
import os
from pathlib import Path
import tomllib
from typing import Any
from urllib.parse import urlparse

from platformdirs import user_state_path
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
)

from .exceptions import ConfigValidationError, ConfigurationError
from .providers.base import Provider

LOGGER = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".config" / "notechat"
CONFIG_PATH = CONFIG_DIR / "config.toml"

VALID_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}

ENV_OVERRIDES: dict[str, str] = {
    "NOTECHAT_API_KEY": "aiApiKey",
    "NOTECHAT_MODEL": "aiModel",
    "NOTECHAT_PROVIDER": "aiProvider",
}


class AISettings(BaseModel):
    """Provider credentials and generation parameters.

    Field aliases keep the host application's option names (``aiApiKey``,
    ``aiModel`` ...); snake_case names are accepted as well.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    api_key: str = Field(default="", alias="aiApiKey")
    model: str = Field(default="", alias="aiModel")
    provider: Provider = Field(default=Provider.OPENAI, alias="aiProvider")
    system_prompt: str | None = Field(default=None, alias="aiSystemPrompt")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0, alias="aiTemperature")
    max_tokens: int = Field(default=2000, ge=1, le=1_000_000, alias="aiMaxTokens")
    custom_api_url: str | None = Field(default=None, alias="aiCustomApiUrl")
    request_timeout_seconds: float | None = Field(
        default=None, gt=0, le=86_400, alias="requestTimeoutSeconds"
    )
    retries: int = Field(default=1, ge=0, le=10)

    @field_validator("api_key", "model", mode="before")
    @classmethod
    def _normalize_string(cls, value: Any) -> str:
        if value is None:
            return ""
        if not isinstance(value, str):
            raise ValueError("Expected a string value.")
        return value.strip()

    @field_validator("provider", mode="before")
    @classmethod
    def _normalize_provider(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("system_prompt", mode="before")
    @classmethod
    def _normalize_prompt(cls, value: Any) -> str | None:
        if value is None:
            return None
        if not isinstance(value, str):
            raise ValueError("aiSystemPrompt must be a string.")
        return value.strip() or None

    @field_validator("custom_api_url", mode="before")
    @classmethod
    def _validate_url(cls, value: Any) -> str | None:
        if value is None:
            return None
        if not isinstance(value, str):
            raise ValueError("aiCustomApiUrl must be a string.")
        normalized = value.strip()
        if not normalized:
            return None
        parsed = urlparse(normalized)
        if parsed.scheme.lower() not in {"http", "https"} or not parsed.hostname:
            raise ValueError("aiCustomApiUrl must be an http(s) URL with a host.")
        return normalized

    def missing_fields(self) -> list[str]:
        """Return the option names a send still needs."""
        missing: list[str] = []
        if self.provider.requires_api_key and not self.api_key:
            missing.append("aiApiKey")
        if not self.model:
            missing.append("aiModel")
        return missing

    def require_ready(self) -> None:
        """Raise :class:`ConfigurationError` when a send cannot be made."""
        missing = self.missing_fields()
        if missing:
            raise ConfigurationError(
                f"Please configure {' and '.join(missing)} in the AI settings."
            )


class PanelSettings(BaseModel):
    """Sidebar presentation options."""

    title: str = "AI Chat"
    input_max_lines: int = Field(default=8, ge=1, le=50)
    show_token_counts: bool = True
    sidebar_width: int = Field(default=48, ge=20, le=200)

    @field_validator("title", mode="before")
    @classmethod
    def _validate_title(cls, value: Any) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValueError("title must be a non-empty string.")
        return value.strip()


class LoggingSettings(BaseModel):
    """Logging behavior and output destinations."""

    level: str = "INFO"
    structured: bool = True
    log_to_file: bool = False
    log_file_path: str = str(user_state_path("notechat") / "app.log")

    @field_validator("level", mode="before")
    @classmethod
    def _validate_level(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("Logging level must be a string.")
        normalized = value.strip().upper()
        if normalized not in VALID_LOG_LEVELS:
            raise ValueError(f"Unsupported log level {normalized!r}.")
        return normalized

    @field_validator("log_file_path", mode="before")
    @classmethod
    def _validate_log_file_path(cls, value: Any) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValueError("log_file_path must be a non-empty string.")
        return value.strip()


class Settings(BaseModel):
    """Root settings model."""

    ai: AISettings = AISettings()
    panel: PanelSettings = PanelSettings()
    logging: LoggingSettings = LoggingSettings()


_NAME_TO_ALIAS: dict[str, str] = {
    name: info.alias for name, info in AISettings.model_fields.items() if info.alias
}
_ALIAS_TO_NAME: dict[str, str] = {alias: name for name, alias in _NAME_TO_ALIAS.items()}


def ensure_config_dir(config_dir: Path | None = None) -> Path:
    """Ensure that the config directory exists and return its path."""
    directory = config_dir or CONFIG_DIR
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        LOGGER.warning("Unable to create config directory %s: %s", directory, exc)
    return directory


def _apply_env_overrides(raw: dict[str, Any], environ: dict[str, str]) -> dict[str, Any]:
    merged = deepcopy(raw)
    ai_section = merged.get("ai")
    if not isinstance(ai_section, dict):
        ai_section = {}
    for env_name, option in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value is None or not value.strip():
            continue
        # Drop the snake_case spelling so the override cannot be shadowed.
        ai_section.pop(_ALIAS_TO_NAME[option], None)
        ai_section[option] = value.strip()
    if ai_section:
        merged["ai"] = ai_section
    return merged


def _drop_invalid(raw: dict[str, Any], exc: ValidationError) -> dict[str, Any]:
    """Remove every value pydantic rejected so defaults take their place."""
    cleaned = deepcopy(raw)
    for error in exc.errors():
        location = [part for part in error.get("loc", ()) if isinstance(part, str)]
        if not location:
            continue
        LOGGER.warning(
            "config.invalid",
            extra={
                "event": "config.invalid",
                "option": ".".join(location),
                "reason": error.get("msg", ""),
            },
        )
        container: Any = cleaned
        for part in location[:-1]:
            container = container.get(part) if isinstance(container, dict) else None
        if isinstance(container, dict):
            key = location[-1]
            container.pop(key, None)
            container.pop(_ALIAS_TO_NAME.get(key, key), None)
            container.pop(_NAME_TO_ALIAS.get(key, key), None)
    return cleaned


def validate_settings(raw: dict[str, Any]) -> Settings:
    """Validate raw settings, replacing rejected values with defaults."""
    try:
        return Settings.model_validate(raw)
    except ValidationError as exc:
        cleaned = _drop_invalid(raw, exc)
    try:
        return Settings.model_validate(cleaned)
    except ValidationError as exc:
        LOGGER.warning("Configuration validation failed, using safe defaults: %s", exc)
        return Settings()
    except Exception as exc:  # noqa: BLE001 - unexpected model construction failure.
        raise ConfigValidationError(f"Unable to validate configuration: {exc}") from exc


def load_settings(
    config_path: Path | None = None,
    environ: dict[str, str] | None = None,
) -> Settings:
    """
    Load settings from TOML, apply environment overrides, and validate.

    The optional arguments are intended for tests and tooling.
    """
    target_path = config_path or CONFIG_PATH
    raw_data: dict[str, Any] = {}
    if target_path.exists():
        try:
            raw_data = tomllib.loads(target_path.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError) as exc:
            LOGGER.warning("Failed to parse config at %s: %s", target_path, exc)
            raw_data = {}

    raw_data = _apply_env_overrides(
        raw_data, dict(os.environ) if environ is None else environ
    )
    return validate_settings(raw_data)


async def load_settings_async(
    config_path: Path | None = None,
    environ: dict[str, str] | None = None,
) -> Settings:
    """Load settings off the event loop."""
    return await asyncio.to_thread(load_settings, config_path, environ)
