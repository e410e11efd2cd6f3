"""Configuration models and YAML loader for the crawler."""

import re
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from crawler.core.errors import ConfigurationError
from crawler.core.urls import is_web_url, sanitize_url

_SOURCE_ID_RE = re.compile(r"^[a-z0-9][a-z0-9._-]*$")


class FetchStrategy(str, Enum):
    """How a source is fetched and where its posting blocks live."""

    STATIC_PAGE = "static-page"
    PAGINATED_LISTING = "paginated-listing"
    RENDERED_PAGE = "rendered-page"
    PDF_NOTICE = "pdf-notice"


class SourceSelectors(BaseModel):
    """Optional CSS hints for the structural pass."""

    block: str | None = None
    title: str | None = None
    next_page: str | None = None


class Source(BaseModel):
    """A configured origin to scan."""

    id: str
    name: str = ""
    url: str
    strategy: FetchStrategy = FetchStrategy.STATIC_PAGE
    enabled: bool = True
    keywords: list[str] = Field(default_factory=list)
    selectors: SourceSelectors = Field(default_factory=SourceSelectors)
    max_pages: int = Field(default=3, ge=1, le=20)
    timeout_seconds: float | None = Field(default=None, gt=0, le=120)
    last_scanned_at: datetime | None = None

    @field_validator("id")
    @classmethod
    def id_is_slug(cls, v: str) -> str:
        v = v.strip()
        if not _SOURCE_ID_RE.match(v):
            msg = f"source id must be a lower-case slug, got '{v}'"
            raise ValueError(msg)
        return v

    @field_validator("url")
    @classmethod
    def url_is_fetchable(cls, v: str) -> str:
        sanitized = sanitize_url(v)
        if not is_web_url(sanitized):
            msg = f"source url must be an absolute http(s) URL, got '{v}'"
            raise ValueError(msg)
        return sanitized

    @field_validator("keywords")
    @classmethod
    def drop_blank_keywords(cls, v: list[str]) -> list[str]:
        return [kw.strip() for kw in v if kw.strip()]

    @property
    def display_name(self) -> str:
        return self.name or self.id


class FetchConfig(BaseModel):
    """Timeout, retry and politeness settings for the fetcher."""

    timeout_seconds: float = Field(default=8.0, gt=0, le=120)
    max_retries: int = Field(default=2, ge=0, le=5)
    backoff_base_seconds: float = Field(default=0.5, ge=0)
    backoff_max_seconds: float = Field(default=8.0, ge=0)
    max_retry_after_seconds: float = Field(default=30.0, ge=0)
    user_agent: str = "Mozilla/5.0 (compatible; JobNoticeCrawler/1.0)"
    max_bytes: int = Field(default=5_000_000, ge=1024)
    page_delay_min_seconds: float = Field(default=1.0, ge=0)
    page_delay_max_seconds: float = Field(default=3.0, ge=0)


class ScanConfig(BaseModel):
    """Concurrency ceiling and cycle deadline for a scan."""

    max_concurrency: int = Field(default=4, ge=1, le=32)
    cycle_deadline_seconds: float = Field(default=300.0, gt=0)


class DatabaseConfig(BaseModel):
    """Storage configuration."""

    path: str = "data/jobs.db"
    write_timeout_seconds: float = Field(default=5.0, gt=0)


class BrowserConfig(BaseModel):
    """Headless browser settings for rendered-page sources."""

    headless: bool = True
    timeout_ms: int = Field(default=30000, ge=1000)
    cookies_path: str | None = None


class AIExtractionConfig(BaseModel):
    """Model-assisted completion of fields the extractor marked unknown."""

    enabled: bool = False
    provider: str = "gemini"
    model: str | None = None
    timeout_seconds: float = Field(default=30.0, gt=0)
    max_retries: int = Field(default=1, ge=0, le=3)
    max_input_chars: int = Field(default=30000, ge=500)


class Settings(BaseModel):
    """Top-level settings loaded from YAML."""

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    fetch: FetchConfig = Field(default_factory=FetchConfig)
    scan: ScanConfig = Field(default_factory=ScanConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    ai: AIExtractionConfig = Field(default_factory=AIExtractionConfig)
    sources: list[Source] = Field(default_factory=list)

    @model_validator(mode="after")
    def source_ids_unique(self) -> "Settings":
        seen: set[str] = set()
        for source in self.sources:
            if source.id in seen:
                msg = f"duplicate source id '{source.id}'"
                raise ValueError(msg)
            seen.add(source.id)
        return self

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file.

        Raises ConfigurationError if the file is missing, unreadable or invalid.
        """
        path = Path(path)
        if not path.exists():
            msg = f"Config file not found: {path}"
            raise ConfigurationError(msg)
        try:
            raw: dict[str, Any] = yaml.safe_load(path.read_text()) or {}
        except (OSError, yaml.YAMLError) as e:
            msg = f"Could not read config file {path}: {e}"
            raise ConfigurationError(msg) from e
        try:
            return cls.model_validate(raw)
        except ValidationError as e:
            msg = f"Invalid config file {path}: {e}"
            raise ConfigurationError(msg) from e
