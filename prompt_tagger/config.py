"""
Configuration management for the Prompt Tagger service.
"""

import json
from functools import lru_cache
from pathlib import Path
from typing import Annotated, List, Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


DEFAULT_MARKER_LABEL = "pp:prompt_imported"
DEFAULT_STOPWORDS = ["a", "an", "the", "of", "and", "with", "in", "on", "to", "is"]


class Settings(BaseSettings):
    """Application settings with validation."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # PhotoPrism Configuration
    photoprism_url: str
    photoprism_token: str
    originals_path: Path

    # Labeling Configuration
    marker_label: str = Field(default=DEFAULT_MARKER_LABEL)
    marker_priority: int = Field(default=10)
    label_limit: Optional[int] = Field(default=None, description="Truncate derived labels (unset = no limit)")
    stopwords: Annotated[List[str], NoDecode] = Field(default_factory=lambda: list(DEFAULT_STOPWORDS))
    include_model_label: bool = Field(default=True)
    update_caption: bool = Field(default=True, description="Write positive prompt as caption")

    # Processing Configuration
    concurrency: int = Field(default=5, description="Max outstanding tasks in the worker pool")
    poll_interval: float = Field(default=30.0, ge=0.0, description="Seconds between reconciliation cycles")
    poll_page_size: int = Field(default=100, gt=0)
    poll_query: str = Field(default='caption:""', description="Search filter matching photos without a caption")

    # Extraction Configuration
    exiftool_path: str = Field(default="exiftool")
    exiftool_timeout: float = Field(default=30.0, gt=0.0)

    # File handling
    watch_path: Optional[Path] = Field(default=None)
    one_shot_file: Optional[Path] = Field(default=None)
    stability_timeout: float = Field(default=10.0, ge=0.0)
    stability_poll_interval: float = Field(default=1.0, gt=0.0)

    # Performance Configuration
    max_retries: int = Field(default=3, ge=0)
    retry_delay: float = Field(default=1.0, gt=0.0)
    request_timeout: float = Field(default=30.0, gt=0.0)
    uid_lookup_attempts: int = Field(default=20, gt=0)
    uid_lookup_interval: float = Field(default=3.0, ge=0.0)

    # Logging Configuration
    log_level: str = Field(default="INFO")

    # Health endpoint
    enable_health_server: bool = Field(default=True)
    health_port: int = Field(default=8000)

    @field_validator("photoprism_url")
    @classmethod
    def validate_photoprism_url(cls, v):
        """Ensure the PhotoPrism URL is properly formatted."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("PHOTOPRISM_URL must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("photoprism_token", "marker_label")
    @classmethod
    def validate_not_blank(cls, v):
        """Reject empty tokens and marker labels."""
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v.strip()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Ensure the log level is valid."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of: {valid_levels}")
        return v.upper()

    @field_validator("label_limit", mode="before")
    @classmethod
    def parse_label_limit(cls, v):
        """Treat empty or non-positive limits as 'no limit'."""
        if v is None or (isinstance(v, str) and not v.strip()):
            return None
        if int(v) <= 0:
            return None
        return int(v)

    @field_validator("watch_path", "one_shot_file", mode="before")
    @classmethod
    def parse_optional_path(cls, v):
        """Empty environment values mean 'not set'."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("stopwords", mode="before")
    @classmethod
    def parse_stopwords(cls, v):
        """Parse stopwords from a JSON array or a comma-separated string."""
        if v is None:
            return list(DEFAULT_STOPWORDS)
        if isinstance(v, str):
            v = v.strip()
            if not v:
                return []
            if v.startswith('[') and v.endswith(']'):
                try:
                    v = json.loads(v)
                except json.JSONDecodeError:
                    raise ValueError("Invalid JSON format for STOPWORDS")
            else:
                v = v.split(',')
        return [str(word).strip().lower() for word in v if str(word).strip()]

    def resolve_watch_path(self) -> Path:
        """Pick the folder to watch: explicit setting, a known upload folder, or originals/temp."""
        if self.watch_path:
            return self.watch_path.resolve()

        for name in ("upload", "uploads", "import", "imports"):
            candidate = self.originals_path / name
            if candidate.exists():
                return candidate.resolve()

        return (self.originals_path / "temp").resolve()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from the environment once per process."""
    return Settings()
