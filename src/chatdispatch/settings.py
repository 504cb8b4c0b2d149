from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .config import ConfigError, load_config
from .ids import DEFAULT_BROADCAST_CHAT_ID


class DispatchSettings(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True, validate_default=True)

    default_prefix: str = "."
    cache_ttl_s: float = Field(default=600.0, gt=0)
    status_batch_delay_s: float = Field(default=1.0, ge=0)
    chat_log_limit: int = Field(default=1000, gt=0)
    broadcast_chat_id: str = DEFAULT_BROADCAST_CHAT_ID
    status_reaction: str = "❤️"
    presence_cooldown_s: float = Field(default=5.0, ge=0)
    poll_marker: str = "\N{BAR CHART} Poll:"
    default_tier: str = "free"
    store_path: Path = Path("~/.chatdispatch/settings.db")
    metrics_path: Path = Path("~/.chatdispatch/metrics.jsonl")

    @field_validator("default_prefix")
    @classmethod
    def _prefix_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("default_prefix must be a non-empty string")
        return value.strip()

    @field_validator("store_path", "metrics_path")
    @classmethod
    def _expand_path(cls, value: Path) -> Path:
        return value.expanduser()


def validate_settings_data(data: dict, *, config_path: Path | None) -> DispatchSettings:
    try:
        return DispatchSettings.model_validate(data)
    except ValidationError as exc:
        where = config_path if config_path is not None else "settings"
        raise ConfigError(f"Invalid config in {where}: {exc}") from exc


def load_settings(path: str | Path | None = None) -> tuple[DispatchSettings, Path | None]:
    config, config_path = load_config(path)
    return validate_settings_data(config, config_path=config_path), config_path
