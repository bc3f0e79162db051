"""
Pydantic v2 models for source classification.

Each SourceClassification describes the license category, attribution and
operational limits for one upstream data provider.  Instances are loaded from
config/sources.toml by the registry module and are immutable (frozen=True).

Model hierarchy
---------------
  SourceClassification
    └── RateLimitConfig  — requests per minute/hour (informational)

Validation
----------
``license`` must be one of "redistributable" or "display-only".
``credential_tiers`` must be a non-empty, duplicate-free ordering of
"pro", "demo" and "none".  A source that requires auth may not list "none".
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, field_validator, model_validator


# ── Enums ─────────────────────────────────────────────────────────────────────


class LicenseCategory(str, Enum):
    """Whether a provider's data may leave the preview surface."""

    REDISTRIBUTABLE = "redistributable"
    DISPLAY_ONLY    = "display-only"


class Purpose(str, Enum):
    """What the caller intends to do with fetched data."""

    DISPLAY  = "display"
    DOWNLOAD = "download"


VALID_CREDENTIAL_TIERS = frozenset({"pro", "demo", "none"})


# ── Rate-limit sub-model ──────────────────────────────────────────────────────


class RateLimitConfig(BaseModel):
    """Published rate limits for one source (0 = unknown / unlimited).

    The engine bounds concurrency globally; these values document the upstream
    limits and are shown by ``list-sources``.
    """

    model_config = ConfigDict(frozen=True)

    requests_per_minute: int = 0
    requests_per_hour:   int = 0

    @field_validator("requests_per_minute", "requests_per_hour")
    @classmethod
    def non_negative_int(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"Rate limit value must be >= 0, got {v}.")
        return v


# ── Top-level SourceClassification ────────────────────────────────────────────


class SourceClassification(BaseModel):
    """Complete classification for one data provider.

    Attributes:
        source_id:                Unique identifier (e.g., "coingecko").
        display_name:             Human-readable name.
        license:                  Redistribution category.
        attribution:              Attribution text required alongside the data.
        attribution_url:          Link shown with the attribution.
        refresh_interval_seconds: How often upstream data changes; bounds cache TTL.
        credential_tiers:         Usable credential tiers in preference order.
        requires_auth:            Whether a user key is mandatory.
        enabled:                  Whether datasets may use this source.
        timeout_seconds:          HTTP timeout for this source's requests.
        rate_limit:               Published upstream limits.
    """

    model_config = ConfigDict(frozen=True)

    source_id:    str
    display_name: str
    license:      LicenseCategory
    attribution:  str = ""
    attribution_url: str = ""
    refresh_interval_seconds: int = 300
    credential_tiers: tuple[str, ...] = ("none",)
    requires_auth: bool = False
    enabled:       bool = True
    timeout_seconds: float = 15.0
    rate_limit: RateLimitConfig = RateLimitConfig()

    @field_validator("refresh_interval_seconds")
    @classmethod
    def positive_refresh(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"refresh_interval_seconds must be > 0, got {v}.")
        return v

    @field_validator("timeout_seconds")
    @classmethod
    def positive_timeout(cls, v: float) -> float:
        if v <= 0.0:
            raise ValueError(f"timeout_seconds must be > 0, got {v}.")
        return v

    @field_validator("credential_tiers")
    @classmethod
    def valid_tiers(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        if not v:
            raise ValueError("credential_tiers must list at least one tier.")
        unknown = [t for t in v if t not in VALID_CREDENTIAL_TIERS]
        if unknown:
            raise ValueError(
                f"credential_tiers entries must be in {sorted(VALID_CREDENTIAL_TIERS)}, "
                f"got {unknown}."
            )
        if len(set(v)) != len(v):
            raise ValueError(f"credential_tiers contains duplicates: {list(v)}.")
        return v

    @model_validator(mode="after")
    def auth_excludes_public_tier(self) -> "SourceClassification":
        if self.requires_auth and "none" in self.credential_tiers:
            raise ValueError(
                f"Source '{self.source_id}' requires auth but lists the 'none' credential tier."
            )
        return self

    @property
    def is_redistributable(self) -> bool:
        return self.license == LicenseCategory.REDISTRIBUTABLE
