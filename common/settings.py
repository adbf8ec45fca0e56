"""Runtime settings for the devtool, read from DEVTOOL_* environment variables."""

from __future__ import annotations

import logging

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DevtoolSettings(BaseSettings):
    """Knobs for the map-reduce engine and logging."""

    model_config = SettingsConfigDict(env_prefix="DEVTOOL_", extra="ignore")

    max_workers: int = Field(default=8, ge=1, description="Thread pool size for per-repository work")
    task_timeout: float | None = Field(default=None, gt=0, description="Seconds before a read-only task is abandoned")
    logfile: str | None = Field(default=None, description="Log file path; ~/.devtool/log.txt when unset")
    loglevel: int = Field(default=logging.INFO)

    @field_validator("loglevel", mode="before")
    @classmethod
    def _level_name(cls, value: object) -> object:
        if isinstance(value, str) and not value.isdigit():
            level = logging.getLevelName(value.upper())
            if not isinstance(level, int):
                raise ValueError(f"unknown log level {value!r}")
            return level
        return value


__all__ = ["DevtoolSettings"]
