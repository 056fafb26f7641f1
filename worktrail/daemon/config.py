"""Configuration management for worktrail."""

import os
import re
from pathlib import Path
from typing import List, Optional

import yaml
from loguru import logger
from pydantic import BaseModel, Field, field_validator

from .error_handling import ConfigError


_TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")
WEEKDAYS = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]


def _check_time(value: str) -> str:
    value = value.strip()
    if not _TIME_PATTERN.match(value):
        raise ValueError(f"time must be HH:MM, got {value!r}")
    return value


def _check_count(value: int, name: str) -> int:
    if value < 0:
        raise ValueError(f"{name} must not be negative")
    return value


class GeminiConfig(BaseModel):
    api_key: Optional[str] = None
    model: str = "gemini-2.5-flash"
    endpoint: str = "https://generativelanguage.googleapis.com/v1beta"
    max_retries: int = 3
    retry_delay: float = 2.0
    timeout: float = 120.0

    @field_validator('max_retries')
    @classmethod
    def validate_retries(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_retries must be at least 1")
        return v


class ScreenshotConfig(BaseModel):
    directory: Path = Path("./screenshots")
    format: str = "jpeg"
    interval: int = 10

    @field_validator('format')
    @classmethod
    def validate_format(cls, v: str) -> str:
        v = v.lower()
        if v not in ("jpeg", "png"):
            raise ValueError("format must be jpeg or png")
        return v

    @field_validator('interval')
    @classmethod
    def validate_interval(cls, v: int) -> int:
        if v < 1:
            raise ValueError("interval must be a positive number of seconds")
        return v


class BaseTierConfig(BaseModel):
    enabled: bool = True
    screenshots_per_minute: Optional[int] = None
    history_minutes: int = 10

    @field_validator('screenshots_per_minute')
    @classmethod
    def validate_per_minute(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 1:
            raise ValueError("screenshots_per_minute must be positive")
        return v

    @field_validator('history_minutes')
    @classmethod
    def validate_history(cls, v: int) -> int:
        return _check_count(v, 'history_minutes')


class MidTierConfig(BaseModel):
    enabled: bool = True
    history_count: int = 5

    @field_validator('history_count')
    @classmethod
    def validate_history(cls, v: int) -> int:
        return _check_count(v, 'history_count')


class TopTierConfig(BaseModel):
    enabled: bool = True
    recent_count: int = 6
    earlier_count: int = 6

    @field_validator('recent_count')
    @classmethod
    def validate_recent(cls, v: int) -> int:
        if v < 1:
            raise ValueError("recent_count must be positive")
        return v

    @field_validator('earlier_count')
    @classmethod
    def validate_earlier(cls, v: int) -> int:
        return _check_count(v, 'earlier_count')



class SummaryConfig(BaseModel):
    directory: Path = Path("./summaries")
    base: BaseTierConfig = Field(default_factory=BaseTierConfig)
    mid: MidTierConfig = Field(default_factory=MidTierConfig)
    top: TopTierConfig = Field(default_factory=TopTierConfig)


class ScheduleConfig(BaseModel):
    enabled: bool = False
    start_time: str = "08:00"
    end_time: str = "22:00"
    days: List[str] = Field(default_factory=lambda: ["Mon", "Tue", "Wed", "Thu", "Fri"])
    stop_times: List[str] = Field(default_factory=list)

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_time(cls, v: str) -> str:
        return _check_time(v)

    @field_validator('stop_times')
    @classmethod
    def validate_stop_times(cls, v: List[str]) -> List[str]:
        return sorted({_check_time(t) for t in v if t and t.strip()})

    @field_validator('days')
    @classmethod
    def validate_days(cls, v: List[str]) -> List[str]:
        invalid = [d for d in v if d not in WEEKDAYS]
        if invalid:
            raise ValueError(f"invalid weekdays: {invalid}")
        return v


class TaxonomyConfig(BaseModel):
    directory: Optional[Path] = None
    behavior_recent_days: int = 7


class LoggingConfig(BaseModel):
    level: str = "INFO"
    console: bool = True
    file: Optional[Path] = None
    rotation: str = "1 day"
    retention: str = "7 days"


class Config(BaseModel):
    """Main configuration for the worktrail daemon."""

    gemini: GeminiConfig = Field(default_factory=GeminiConfig)
    screenshot: ScreenshotConfig = Field(default_factory=ScreenshotConfig)
    summary: SummaryConfig = Field(default_factory=SummaryConfig)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    taxonomy: TaxonomyConfig = Field(default_factory=TaxonomyConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Config":
        """Load configuration from YAML file."""
        if config_path is None:
            # Try default locations
            candidates = [
                Path("worktrail.yaml"),
                Path.home() / ".config" / "worktrail" / "config.yaml",
                Path("/etc/worktrail/config.yaml"),
            ]
            for candidate in candidates:
                if candidate.exists():
                    config_path = candidate
                    break
            else:
                raise FileNotFoundError(
                    f"No config file found. Searched: {[str(c) for c in candidates]}"
                )

        logger.info(f"Loading config from: {config_path}")
        with open(config_path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}

        config = cls(**data)
        config._resolve_paths(Path(config_path).parent)
        return config

    def save(self, config_path: Path) -> None:
        """Save configuration to YAML file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.safe_dump(self.model_dump(mode="json"), f, default_flow_style=False, allow_unicode=True)

    def require_api_key(self) -> str:
        """Return the Gemini API key, falling back to ``GEMINI_API_KEY``."""
        key = self.gemini.api_key or os.environ.get("GEMINI_API_KEY")
        if not key:
            raise ConfigError("gemini.api_key is not set and GEMINI_API_KEY is empty")
        self.gemini.api_key = key
        return key

    def _resolve_paths(self, base: Path) -> None:
        # Relative paths in a config file are relative to that file.
        def resolve(path: Path) -> Path:
            path = path.expanduser()
            return path if path.is_absolute() else (base / path).resolve()

        self.screenshot.directory = resolve(self.screenshot.directory)
        self.summary.directory = resolve(self.summary.directory)
        if self.taxonomy.directory is not None:
            self.taxonomy.directory = resolve(self.taxonomy.directory)
        if self.logging.file is not None:
            self.logging.file = resolve(self.logging.file)
