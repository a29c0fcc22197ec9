"""Centralized settings for dataspine.

Configuration should be explicit, validated, and environment-driven. All
fields can be set via ``DATASPINE_*`` environment variables (e.g.
``DATASPINE_STATEMENT_TIMEOUT_SECONDS=2.5``) or a ``.env`` file.

Examples:
    >>> from dataspine.core.settings import get_settings
    >>> settings = get_settings()
    >>> settings.delete_policy
    <DeletePolicy.IDEMPOTENT: 'idempotent'>

Tags:
    settings, configuration, pydantic, environment, dataspine
"""

from __future__ import annotations

from enum import Enum

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DeletePolicy(str, Enum):
    """What a delete that affects zero store rows means.

    ``IDEMPOTENT`` treats it as success (the row is already gone) and
    removes the local row. ``STRICT`` reports ``NotFound`` so a stale key
    is not masked.
    """

    IDEMPOTENT = "idempotent"
    STRICT = "strict"


class ConcurrencyMode(str, Enum):
    """Which before-image values guard an UPDATE's WHERE clause."""

    KEY_ONLY = "key_only"
    CHANGED_FIELDS = "changed_fields"
    ALL_FIELDS = "all_fields"


class DataSpineSettings(BaseSettings):
    """dataspine configuration.

    Fields
    ──────
    database_url              : Store URL for :func:`create_store`
    statement_timeout_seconds : Default bound for store round-trips (None = unbounded)
    delete_policy             : Zero-rows-affected delete handling
    concurrency_mode          : Default optimistic concurrency guard for bindings
    log_level / log_format    : structlog configuration
    service_name              : ``service.name`` on every log record
    """

    model_config = SettingsConfigDict(
        env_prefix="DATASPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Store ────────────────────────────────────────────────────
    database_url: str = Field(default="memory")
    statement_timeout_seconds: float | None = Field(default=None)

    # ── Synchronization ──────────────────────────────────────────
    delete_policy: DeletePolicy = Field(default=DeletePolicy.IDEMPOTENT)
    concurrency_mode: ConcurrencyMode = Field(default=ConcurrencyMode.ALL_FIELDS)

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")
    service_name: str = Field(default="dataspine")

    @field_validator("statement_timeout_seconds")
    @classmethod
    def _positive_timeout(cls, value: float | None) -> float | None:
        if value is not None and value <= 0:
            raise ValueError("statement_timeout_seconds must be positive")
        return value

    @field_validator("log_format")
    @classmethod
    def _known_format(cls, value: str) -> str:
        if value not in ("json", "console"):
            raise ValueError("log_format must be 'json' or 'console'")
        return value


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: DataSpineSettings | None = None


def get_settings(*, _force_reload: bool = False) -> DataSpineSettings:
    """Load, validate, and cache a :class:`DataSpineSettings` instance."""
    global _settings_cache
    if _settings_cache is None or _force_reload:
        _settings_cache = DataSpineSettings()
    return _settings_cache


__all__ = [
    "ConcurrencyMode",
    "DataSpineSettings",
    "DeletePolicy",
    "get_settings",
]
