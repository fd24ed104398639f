"""Configuration utilities for the Financial Clinic engine.

This module loads application configuration with the following rules:
- Primary source: `clinic_config.json` at the project root.
- Overrides: environment variables, then optional text files under `config/`.
- Validation: Pydantic models enforce required fields and value constraints.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator, model_validator


CONFIG_DIR = Path("config")
ROOT_CLINIC_CONFIG = Path("clinic_config.json")
logger = logging.getLogger(__name__)


def _read_config_file(rel_path: str) -> Optional[str]:
    path = CONFIG_DIR / rel_path
    try:
        if path.exists():
            return path.read_text(encoding="utf-8").strip()
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Failed to read override %s: %s", path, e)
        return None
    return None


def _env(key: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(key, default)


class ApiConfig(BaseModel):
    base_url: str = "http://localhost:8000/api/v1"
    timeout_seconds: float = Field(default=30.0, gt=0)
    auth_token: Optional[str] = None

    @field_validator("base_url")
    @classmethod
    def base_url_must_be_http(cls, v: str) -> str:
        if not isinstance(v, str) or not v.strip().startswith(("http://", "https://")):
            raise ValueError("api.base_url must be an http(s) URL")
        return v.strip().rstrip("/")


class RetryConfig(BaseModel):
    max_retries: int = Field(default=3, ge=0)
    base_delay_ms: int = Field(default=1000, ge=0)
    max_delay_ms: int = Field(default=10000, ge=0)

    @model_validator(mode="after")
    def cap_not_below_base(self) -> "RetryConfig":
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError("retry.max_delay_ms must be >= retry.base_delay_ms")
        return self


class AutosaveConfig(BaseModel):
    # None keeps the session id in memory only
    context_dir: Optional[str] = None


class DatabaseConfig(BaseModel):
    dsn: str

    @field_validator("dsn")
    @classmethod
    def dsn_must_be_non_empty(cls, v: str) -> str:
        if not isinstance(v, str) or not v.strip():
            raise ValueError("database.dsn must be a non-empty string")
        return v


class ProgressServiceConfig(BaseModel):
    abandon_after_hours: float = Field(default=24.0, gt=0)


class AppConfig(BaseModel):
    api: ApiConfig
    retry: RetryConfig
    autosave: AutosaveConfig
    database: DatabaseConfig
    progress: ProgressServiceConfig


def _read_json_file(path: Path) -> dict:
    try:
        if path.exists():
            return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.error("Failed to read JSON config %s: %s", path, e)
    return {}


def load_config() -> AppConfig:
    """Load configuration with validation.

    Precedence (highest first):
    1) Environment variables
    2) Text files in `config/` (optional)
    3) clinic_config.json at project root (primary base)
    4) Safe defaults for development
    """

    base = _read_json_file(ROOT_CLINIC_CONFIG)

    def _base(path: str, default: Optional[str] = None) -> Optional[str]:
        cur: object = base
        for key in path.split("."):
            if not isinstance(cur, dict) or key not in cur:
                return default
            cur = cur[key]
        return str(cur) if cur is not None else default

    # API transport
    base_url = _env("CLINIC_API_URL") or _read_config_file("api.base_url") or _base("api.base_url", "http://localhost:8000/api/v1")
    timeout_text = _env("CLINIC_API_TIMEOUT_SECONDS") or _read_config_file("api.timeout_seconds") or _base("api.timeout_seconds", "30")
    auth_token = _env("CLINIC_API_TOKEN") or _read_config_file("api.auth_token") or _base("api.auth_token")

    # Retry policy
    max_retries_text = _env("CLINIC_MAX_RETRIES") or _read_config_file("retry.max_retries") or _base("retry.max_retries", "3")
    base_delay_text = _env("CLINIC_RETRY_BASE_DELAY_MS") or _read_config_file("retry.base_delay_ms") or _base("retry.base_delay_ms", "1000")
    max_delay_text = _env("CLINIC_RETRY_MAX_DELAY_MS") or _read_config_file("retry.max_delay_ms") or _base("retry.max_delay_ms", "10000")

    # Autosave session storage
    context_dir = _env("CLINIC_SESSION_CONTEXT_DIR") or _read_config_file("autosave.context_dir") or _base("autosave.context_dir")

    # Progress service
    dsn = _env("DATABASE_URL") or _read_config_file("database.url") or _base("database.dsn") or "sqlite+pysqlite:///:memory:"
    abandon_text = _env("CLINIC_ABANDON_AFTER_HOURS") or _read_config_file("progress.abandon_after_hours") or _base("progress.abandon_after_hours", "24")

    try:
        cfg = AppConfig(
            api=ApiConfig(
                base_url=base_url,
                timeout_seconds=float(str(timeout_text).strip()),
                auth_token=auth_token or None,
            ),
            retry=RetryConfig(
                max_retries=int(str(max_retries_text).strip()),
                base_delay_ms=int(str(base_delay_text).strip()),
                max_delay_ms=int(str(max_delay_text).strip()),
            ),
            autosave=AutosaveConfig(context_dir=context_dir or None),
            database=DatabaseConfig(dsn=dsn),
            progress=ProgressServiceConfig(abandon_after_hours=float(str(abandon_text).strip())),
        )
        return cfg
    except PydanticValidationError as e:
        # Surface an actionable message before propagating
        logger.error("Invalid application configuration: %s", e)
        raise


__all__ = [
    "AppConfig",
    "ApiConfig",
    "RetryConfig",
    "AutosaveConfig",
    "DatabaseConfig",
    "ProgressServiceConfig",
    "load_config",
]
