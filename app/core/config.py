# app/core/config.py
from __future__ import annotations

"""
# StudioPass — Centralized Configuration (Pydantic v2)

Single `settings` object with strongly-typed, environment-driven config.

## Goals
- Safe defaults for local/dev; explicit where prod needs secrets.
- Bounded credential lifetimes: callers can never mint unbounded URLs.
- Optional external systems (R2 / Stream) so imports never crash in dev.

## Usage
    from app.core.config import settings
"""

import logging
from typing import List, Literal, Optional

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

log = logging.getLogger(__name__)
load_dotenv()  # harmless in prod; convenient in dev


# ─────────────────────────────────────────────────────────────
# Small helpers
# ─────────────────────────────────────────────────────────────
def _split_csv(v: str | None) -> list[str]:
    """Split a comma-separated string into a trimmed list (empty-safe)."""
    if not v:
        return []
    return [s.strip() for s in str(v).split(",") if s and s.strip()]


def _normalize_url_like(v: str | None, *, require_scheme: bool = True) -> str:
    """Normalize to a string URL without trailing slash."""
    s = (v or "").strip()
    if not s:
        return ""
    if require_scheme and not (s.startswith("http://") or s.startswith("https://")):
        s = "https://" + s
    return s.rstrip("/")


# ─────────────────────────────────────────────────────────────
# Settings
# ─────────────────────────────────────────────────────────────
class Settings(BaseSettings):
    """
    Global application settings sourced from environment.

    Security:
        - The media signing secret and the Stream signing key never leave
          the process; they are `SecretStr` and never logged.
        - TTL floor/ceiling are fixed server-side; requests are clamped.

    Notes:
        - R2 is reached through its S3-compatible endpoint.
        - When no Stream signing key is configured, video tokens are minted
          through the provider API instead (same result, one extra hop).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # don't crash on unknown keys
    )

    # ── App meta ──────────────────────────────────────────────
    PROJECT_NAME: str = "StudioPass Media Access API"
    VERSION: str = "1.0.0"
    API_V1_STR: str = "/api/v1"
    ENV: Literal["development", "staging", "production"] = "development"
    ENABLE_DOCS: bool = True

    # ── Identity (resolved upstream; trusted header) ──────────
    PRINCIPAL_HEADER: str = "x-user-id"
    INTERNAL_API_KEY: Optional[SecretStr] = None  # edge → binding verification

    # ── Media signing ─────────────────────────────────────────
    MEDIA_SIGNING_SECRET: Optional[SecretStr] = None
    MEDIA_URL_MIN_TTL_SECONDS: int = Field(15 * 60, ge=60, le=24 * 60 * 60)
    MEDIA_URL_MAX_TTL_SECONDS: int = Field(60 * 60, ge=60, le=24 * 60 * 60)
    MEDIA_URL_DEFAULT_TTL_SECONDS: int = Field(30 * 60, ge=60, le=24 * 60 * 60)

    # ── Playback revalidation / refresh ───────────────────────
    REVALIDATE_INTERVAL_SECONDS: int = Field(300, ge=10, le=3600)
    REFRESH_BUFFER_SECONDS: int = Field(60, ge=5, le=600)

    # ── Object storage (Cloudflare R2, S3-compatible) ─────────
    CLOUDFLARE_ACCOUNT_ID: Optional[str] = None
    R2_ACCESS_KEY_ID: Optional[str] = None
    R2_SECRET_ACCESS_KEY: Optional[SecretStr] = None
    R2_BUCKET_NAME: Optional[str] = None
    R2_ENDPOINT_URL: Optional[str] = None  # derived from account id when unset

    # ── Video streaming (Cloudflare Stream) ───────────────────
    STREAM_API_BASE: str = "https://api.cloudflare.com/client/v4"
    STREAM_API_TOKEN: Optional[SecretStr] = None
    STREAM_SIGNING_KEY_ID: Optional[str] = None
    STREAM_SIGNING_KEY_PEM: Optional[SecretStr] = None
    STREAM_CUSTOMER_SUBDOMAIN: Optional[str] = None

    # ── Provider calls ────────────────────────────────────────
    PROVIDER_TIMEOUT_SECONDS: float = Field(5.0, gt=0, le=30)

    # ── Data collaborator ─────────────────────────────────────
    ENTITLEMENT_REPOSITORY_IMPL: Optional[str] = None  # "module.sub:ClassName"
    ENTITLEMENTS_DATA_PATH: Optional[str] = None

    # ── Rate limiting ─────────────────────────────────────────
    DEFAULT_RATE_LIMIT: Optional[str] = None  # e.g., "200/minute"
    MEDIA_ACCESS_RATE_LIMIT: str = "60/minute"
    REVALIDATE_RATE_LIMIT: str = "120/minute"
    RATELIMIT_STORAGE_URI: Optional[str] = None

    # ── CORS ──────────────────────────────────────────────────
    FRONTEND_ORIGINS: Optional[str] = None  # CSV

    # ── Validators / normalizers ──────────────────────────────
    @field_validator("FRONTEND_ORIGINS", mode="before")
    @classmethod
    def _normalize_frontend_csv(cls, v):
        return None if v is None else ",".join(_split_csv(str(v)))

    @field_validator("R2_ENDPOINT_URL", mode="before")
    @classmethod
    def _normalize_endpoint(cls, v: str | None) -> str | None:
        s = (v or "").strip()
        return _normalize_url_like(s) if s else None

    @model_validator(mode="after")
    def _check_ttl_bounds(self) -> "Settings":
        """Keep floor ≤ default ≤ ceiling so clamping is well-defined."""
        if self.MEDIA_URL_MIN_TTL_SECONDS > self.MEDIA_URL_MAX_TTL_SECONDS:
            raise ValueError("MEDIA_URL_MIN_TTL_SECONDS must not exceed MEDIA_URL_MAX_TTL_SECONDS")
        if not (self.MEDIA_URL_MIN_TTL_SECONDS <= self.MEDIA_URL_DEFAULT_TTL_SECONDS <= self.MEDIA_URL_MAX_TTL_SECONDS):
            log.warning("MEDIA_URL_DEFAULT_TTL_SECONDS outside [min, max]; it will be clamped at issuance")
        return self

    # ── Derived / convenience properties ─────────────────────
    @property
    def is_production(self) -> bool:
        return self.ENV.lower() == "production"

    @property
    def r2_endpoint(self) -> Optional[str]:
        """
        S3-compatible endpoint for R2.
        Examples:
          R2_ENDPOINT_URL set           -> that value (normalized)
          CLOUDFLARE_ACCOUNT_ID='abc'   -> 'https://abc.r2.cloudflarestorage.com'
        """
        if self.R2_ENDPOINT_URL:
            return self.R2_ENDPOINT_URL
        if self.CLOUDFLARE_ACCOUNT_ID:
            return f"https://{self.CLOUDFLARE_ACCOUNT_ID}.r2.cloudflarestorage.com"
        return None

    @property
    def stream_playback_host(self) -> Optional[str]:
        """Customer playback host; falls back to the account id like the provider does."""
        sub = self.STREAM_CUSTOMER_SUBDOMAIN or self.CLOUDFLARE_ACCOUNT_ID
        if not sub:
            return None
        return f"https://customer-{sub}.cloudflarestream.com"

    @property
    def frontend_origins_list(self) -> List[str]:
        return _split_csv(self.FRONTEND_ORIGINS)

    @property
    def ratelimit_storage(self) -> Optional[str]:
        return self.RATELIMIT_STORAGE_URI or None


# Singleton instance
settings = Settings()
