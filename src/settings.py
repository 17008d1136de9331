"""
settings.py

Runtime configuration for MOC Studio.

All values are read from environment variables with the ``MOC_`` prefix
(e.g. ``MOC_TOKEN_SECRET``, ``MOC_STORAGE_PATH``) or from a local ``.env``
file.  ``get_settings()`` is cached; tests that need different values build
their own ``Settings`` instance and pass it explicitly.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings for the MOC Studio service.

    Environment variable prefix: MOC_
    """

    model_config = SettingsConfigDict(env_prefix="MOC_", env_file=".env", extra="ignore")

    service_name: str = "moc-studio"

    # -------------------------------------------------------------------------
    # Session tokens
    # -------------------------------------------------------------------------

    token_secret: str = Field(
        default="moc-studio-development-secret-change-me",
        description="HMAC secret used to sign access and refresh tokens.",
    )
    token_algorithm: str = Field(default="HS256")
    access_token_ttl_seconds: int = Field(default=60 * 60, gt=0)
    refresh_token_ttl_seconds: int = Field(default=7 * 24 * 60 * 60, gt=0)
    revalidate_sessions: bool = Field(
        default=False,
        description="Re-read the live user record on every call instead of trusting "
        "the user snapshot embedded in the access token.",
    )

    # -------------------------------------------------------------------------
    # Storage
    # -------------------------------------------------------------------------

    storage_path: Optional[str] = Field(
        default=None,
        description="JSON file backing the key-value store. In-memory when unset.",
    )
    audit_capacity: int = Field(default=1000, gt=0)
    notification_capacity: int = Field(default=50, gt=0)

    # -------------------------------------------------------------------------
    # Change control
    # -------------------------------------------------------------------------

    work_order_due_days: int = Field(default=7, ge=0)

    # -------------------------------------------------------------------------
    # Geocoding collaborator
    # -------------------------------------------------------------------------

    geocoder_url: Optional[str] = Field(
        default=None,
        description="Nominatim-compatible search endpoint. Lookups always fall back "
        "to the default location when unset.",
    )
    geocoder_timeout_seconds: float = Field(default=5.0, gt=0)

    # -------------------------------------------------------------------------
    # HTTP surface
    # -------------------------------------------------------------------------

    enable_mcp: bool = True
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])
    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    return Settings()


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
