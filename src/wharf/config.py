"""Centralized configuration — Pydantic BaseSettings with TOML + dotenv sources.

Non-secret settings live in config.toml. Environment variables override it
using ``__`` as the nested delimiter (e.g. ``CONTAINER__QUICK_TIMEOUT=5``).

Priority (highest wins): init args > env vars > .env > config.toml

Usage::

    from wharf.config import get_settings

    s = get_settings()
    print(s.container.name_prefix)
    print(s.images.default_tag)
"""

from __future__ import annotations

import logging
from functools import cached_property
from pathlib import Path

from pydantic import BaseModel, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

# ---------------------------------------------------------------------------
# Sub-models (each maps to a [section] in config.toml)
# ---------------------------------------------------------------------------


class _StrictModel(BaseModel):
    """Base for all config sub-models — reject unknown keys so typos fail loudly."""

    model_config = {"extra": "forbid"}


class ContainerSettings(_StrictModel):
    runtime: str | None = None  # "docker" | "podman" | None (auto-detect)
    name_prefix: str = "wharf"
    workspace_path: str = "/workspace"

    # Timeout tiers, in seconds
    quick_timeout: float = 8.0  # status / metadata queries
    boot_timeout: float = 20.0  # create + start
    standard_timeout: float = 30.0  # in-container exec, rm
    exec_timeout: float = 120.0  # streaming in-container exec
    copy_timeout: float = 900.0  # workspace tar stream (large repos)
    build_timeout: float = 300.0
    pull_timeout: float = 300.0

    @field_validator(
        "quick_timeout",
        "boot_timeout",
        "standard_timeout",
        "exec_timeout",
        "copy_timeout",
        "build_timeout",
        "pull_timeout",
    )
    @classmethod
    def positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeouts must be positive")
        return v


class ImageSettings(_StrictModel):
    default_tag: str = "wharf-sandbox:latest"
    registry: str = "docker.io/wharf"


class StateSettings(_StrictModel):
    path: str | None = None  # None = ~/.wharf/containers.json


class LoggingSettings(_StrictModel):
    level: str = "INFO"

    @field_validator("level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        level = v.upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {v!r}")
        return level


# ---------------------------------------------------------------------------
# Root Settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        toml_file="config.toml",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    container: ContainerSettings = ContainerSettings()
    images: ImageSettings = ImageSettings()
    state: StateSettings = StateSettings()
    logging: LoggingSettings = LoggingSettings()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Priority: init > env vars > .env > config.toml > file secrets."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    # --- Computed properties ---

    @cached_property
    def state_path(self) -> Path:
        if self.state.path:
            return Path(self.state.path).expanduser()
        return Path.home() / ".wharf" / "containers.json"


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_settings: Settings | None = None


def get_settings() -> Settings:
    """Lazy cached singleton."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Clear the cached singleton (for tests)."""
    global _settings
    _settings = None
