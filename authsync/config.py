"""
Application Configuration.

Pydantic Settings model for the session synchronisation core.
All configuration is loaded from environment variables and .env files.
Inject an AppConfig instance via dependency injection where needed.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings
from pydantic import Field, SecretStr, model_validator


class AppConfig(BaseSettings):
    """Central configuration loaded from environment variables and defaults."""

    # --- Supabase (identity provider + profile store) ---
    SUPABASE_URL: str = ""
    SUPABASE_ANON_KEY: SecretStr = SecretStr("")

    # --- Local key-value store ---
    LOCAL_STORE_PATH: str = "authsync_local.db"
    PROFILE_CACHE_KEY: str = "authsync.user_profile"
    LOGOUT_FLAG_KEY: str = "authsync.logging_out"

    # --- Profile fetching ---
    PROFILE_FETCH_TIMEOUT_S: float = Field(default=10.0, gt=0)
    PROFILE_FETCH_MAX_RETRIES: int = Field(default=3, ge=0)
    PROFILE_RETRY_BASE_DELAY_S: float = Field(default=1.0, ge=0)
    PROFILE_RETRY_MAX_DELAY_S: float = Field(default=3.0, ge=0)

    # --- Sign-in / sign-out timing ---
    LOGOUT_GUARD_DELAY_S: float = Field(default=1.0, ge=0)
    SIGNUP_PROFILE_FETCH_DELAY_S: float = Field(default=0.5, ge=0)

    # --- Logging ---
    LOG_FILE: str = "authsync.log"
    LOG_MAX_BYTES: int = 5_242_880  # 5 MB
    LOG_BACKUP_COUNT: int = 3

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @model_validator(mode="after")
    def _warn_missing_env(self) -> "AppConfig":
        """Emit a startup warning when critical configuration is empty.

        Pydantic silently falls back to defaults when ``.env`` is missing.
        This validator logs a warning so operators know the core is running
        without a reachable identity provider.
        """
        _log = logging.getLogger("authsync.config")

        if not Path(".env").exists():
            _log.warning(
                "No .env file found — all configuration loaded from "
                "environment variables or defaults."
            )

        if not self.SUPABASE_URL:
            _log.warning(
                "SUPABASE_URL is empty — Supabase connectivity is disabled. "
                "Sign-in and profile fetches will report network errors."
            )

        if self.PROFILE_RETRY_MAX_DELAY_S < self.PROFILE_RETRY_BASE_DELAY_S:
            raise ValueError(
                "PROFILE_RETRY_MAX_DELAY_S must be >= PROFILE_RETRY_BASE_DELAY_S"
            )

        return self

    @property
    def is_supabase_configured(self) -> bool:
        """``True`` when both the Supabase URL and anon key are set."""
        return bool(self.SUPABASE_URL and self.SUPABASE_ANON_KEY.get_secret_value())


# ---------------------------------------------------------------------------
# Module-level singleton factory
# ---------------------------------------------------------------------------

_config_instance: Optional[AppConfig] = None
_config_lock: threading.Lock = threading.Lock()


def get_config() -> AppConfig:
    """Return a cached ``AppConfig`` singleton.

    On first call, creates an ``AppConfig`` instance (reading from ``.env``).
    Subsequent calls return the same instance.

    Prefer direct constructor injection of ``AppConfig`` in new code;
    this factory exists for modules such as the logger that need
    configuration before the dependency graph is wired.
    """
    global _config_instance
    if _config_instance is None:
        with _config_lock:
            if _config_instance is None:
                _config_instance = AppConfig()
    return _config_instance
