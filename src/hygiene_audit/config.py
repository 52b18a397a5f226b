"""Configuration management for the hygiene audit core."""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

_config_logger = logging.getLogger(__name__)


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO", description="Python logging level name")
    file: str | None = Field(default=None, description="Optional log file path")


class StorageSettings(BaseModel):
    sqlite_path: str = Field(default="./data/hygiene_audit.sqlite")
    sqlite_wal: bool = Field(default=True)


class ChecklistSettings(BaseModel):
    path: str = Field(default="./checklist.yaml")


class GenerationSettings(BaseModel):
    service_url: str | None = Field(
        default=None,
        description="Endpoint of the external report-generation service.",
    )
    api_key: str | None = Field(default=None)
    timeout_seconds: float = Field(
        default=300.0,
        gt=0,
        le=3600,
        description="A job with no outcome after this window is recorded as failed.",
    )
    request_timeout_seconds: float = Field(default=120.0, gt=0, le=3600)
    max_workers: int = Field(default=4, ge=1, le=64)

    @field_validator("service_url")
    @classmethod
    def _validate_service_url(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        if not value:
            return None
        if not value.lower().startswith(("http://", "https://")):
            raise ValueError("service_url must be an http(s) URL")
        return value.rstrip("/")


class AuditorSettings(BaseModel):
    """Auditor identity copied onto each report when it is generated."""

    name: str = Field(default="")
    phone: str = Field(default="")
    email: str = Field(default="")
    web: str = Field(default="")


class Settings(BaseModel):
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    checklist: ChecklistSettings = Field(default_factory=ChecklistSettings)
    generation: GenerationSettings = Field(default_factory=GenerationSettings)
    auditor: AuditorSettings = Field(default_factory=AuditorSettings)


ENV_KEYS = {
    "log_level": "LOG_LEVEL",
    "log_file": "LOG_FILE",
    "sqlite_path": "SQLITE_PATH",
    "sqlite_wal": "SQLITE_WAL",
    "checklist_path": "CHECKLIST_PATH",
    "generation_url": "GENERATION_SERVICE_URL",
    "generation_api_key": "GENERATION_API_KEY",
    "generation_timeout": "GENERATION_TIMEOUT_SECONDS",
    "generation_request_timeout": "GENERATION_REQUEST_TIMEOUT_SECONDS",
    "generation_max_workers": "GENERATION_MAX_WORKERS",
    "auditor_name": "AUDITOR_NAME",
    "auditor_phone": "AUDITOR_PHONE",
    "auditor_email": "AUDITOR_EMAIL",
    "auditor_web": "AUDITOR_WEB",
}

_TRUE_VALUES = frozenset({"1", "true", "yes"})


def _project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _resolve_path(path: str) -> str:
    candidate = Path(path)
    if candidate.is_absolute():
        return str(candidate.resolve())
    return str((_project_root() / candidate).resolve())


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        _config_logger.warning(
            "Invalid integer value for %s: %r, using default %d", key, value, default
        )
        return default


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        _config_logger.warning(
            "Invalid float value for %s: %r, using default %s", key, value, default
        )
        return default


def load_settings() -> Settings:
    """Load configuration and cache the result."""

    return _load_settings_cached()


@lru_cache(maxsize=1)
def _load_settings_cached() -> Settings:
    load_dotenv(dotenv_path=_project_root() / ".env")
    log_file_env = os.getenv(ENV_KEYS["log_file"])

    settings_data: dict[str, object] = {
        "logging": {
            "level": os.getenv(ENV_KEYS["log_level"], LoggingSettings().level),
            "file": _resolve_path(log_file_env) if log_file_env else None,
        },
        "storage": {
            "sqlite_path": _resolve_path(
                os.getenv(ENV_KEYS["sqlite_path"], StorageSettings().sqlite_path)
            ),
            "sqlite_wal": _env_bool(ENV_KEYS["sqlite_wal"], StorageSettings().sqlite_wal),
        },
        "checklist": {
            "path": _resolve_path(
                os.getenv(ENV_KEYS["checklist_path"], ChecklistSettings().path)
            ),
        },
        "generation": {
            "service_url": os.getenv(ENV_KEYS["generation_url"]),
            "api_key": os.getenv(ENV_KEYS["generation_api_key"]) or None,
            "timeout_seconds": _env_float(
                ENV_KEYS["generation_timeout"],
                GenerationSettings().timeout_seconds,
            ),
            "request_timeout_seconds": _env_float(
                ENV_KEYS["generation_request_timeout"],
                GenerationSettings().request_timeout_seconds,
            ),
            "max_workers": _env_int(
                ENV_KEYS["generation_max_workers"],
                GenerationSettings().max_workers,
            ),
        },
        "auditor": {
            "name": os.getenv(ENV_KEYS["auditor_name"], ""),
            "phone": os.getenv(ENV_KEYS["auditor_phone"], ""),
            "email": os.getenv(ENV_KEYS["auditor_email"], ""),
            "web": os.getenv(ENV_KEYS["auditor_web"], ""),
        },
    }

    try:
        settings = Settings.model_validate(settings_data)
    except ValidationError as exc:
        raise RuntimeError(f"Invalid configuration: {exc}") from exc

    Path(settings.storage.sqlite_path).parent.mkdir(parents=True, exist_ok=True)

    return settings
