"""
Pydantic model for application configuration.
Provides robust validation for all settings.
"""

from typing import Literal
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DAY_MS = 24 * 60 * 60 * 1000

DEFAULT_ALLOWED_DOMAINS = [
    "fonts.googleapis.com",
    "fonts.gstatic.com",
    "cdnjs.cloudflare.com",
    "cdn.jsdelivr.net",
]


class CacheConfig(BaseModel):
    """A validated configuration model for the cache subsystem."""

    model_config = ConfigDict(validate_assignment=True, str_strip_whitespace=True)

    # Remote API
    base_url: str = "http://localhost:3001"
    files_endpoint: str = "/files"
    hashes_endpoint: str = "/api/hashes"
    list_endpoint: str = "/api/list"
    cache_buster: str = ""
    allowed_domains: list[str] = Field(
        default_factory=lambda: list(DEFAULT_ALLOWED_DOMAINS)
    )

    # Cache policy. TTLs are in milliseconds; None means "never expires".
    storage_prefix: str = "api-cache:"
    validation_mode: Literal["hash", "time"] = "hash"
    trust_unmapped_paths: bool = True
    page_ttl: int | None = 60 * 60 * 1000
    asset_ttl: int | None = 12 * 60 * 60 * 1000
    manifest_ttl: int = 5 * 60 * 1000
    max_cache_age: int = 90 * DAY_MS

    # Retry policy (seconds)
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    jitter: float = 1.0

    # Background tasks (seconds)
    sync_interval: int = 30 * 60
    sweep_interval: int = 60 * 60
    preload_pages: list[str] = Field(
        default_factory=lambda: ["dashboard", "rules", "withdraw"]
    )

    # Storage. Internal fields are not written back to the INI file.
    data_dir: str = Field("", repr=False)
    encryption_key: str = Field("", repr=False)
    config_path: str = Field("", repr=False)

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Requires an absolute http(s) URL and drops any trailing slash."""
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"Base URL must be an absolute http(s) URL, got: {v!r}")
        return v.rstrip("/")

    @field_validator("files_endpoint", "hashes_endpoint", "list_endpoint")
    @classmethod
    def validate_endpoint(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError(f"Endpoints must start with '/', got: {v!r}")
        return v.rstrip("/")

    @field_validator("page_ttl", "asset_ttl")
    @classmethod
    def validate_ttl(cls, v: int | None) -> int | None:
        if v is not None and v <= 0:
            raise ValueError("TTL must be positive (leave empty for no expiry).")
        return v

    @field_validator("manifest_ttl", "max_cache_age", "sync_interval", "sweep_interval")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Durations must be positive.")
        return v

    @field_validator("max_attempts")
    @classmethod
    def validate_attempts(cls, v: int) -> int:
        """Ensures a reasonable number of attempts."""
        if v < 1 or v > 10:
            raise ValueError("Max attempts must be between 1 and 10.")
        return v

    @field_validator("encryption_key")
    @classmethod
    def validate_encryption_key(cls, v: str) -> str:
        if v and len(v) < 16:
            raise ValueError("Encryption key must be at least 16 characters long.")
        return v

    @model_validator(mode="after")
    def validate_delays(self) -> "CacheConfig":
        """Checks that the backoff settings are consistent."""
        if self.base_delay < 0 or self.jitter < 0:
            raise ValueError("Backoff delays cannot be negative.")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be greater than or equal to base_delay.")
        return self

    @property
    def base_host(self) -> str:
        return urlparse(self.base_url).hostname or ""

    @classmethod
    def get_ini_keys(cls) -> set[str]:
        """Returns a set of all keys that are expected in the INI file."""
        internal_fields = {"config_path", "encryption_key", "data_dir"}
        return {key for key in cls.model_fields if key not in internal_fields}
