from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from core.exceptions import ConfigurationError

# Load .env file from project root
_env_path = Path(__file__).parent.parent / ".env"
if _env_path.exists():
    load_dotenv(_env_path)

DEFAULT_CONFIG_PATH = Path("config/default.yaml")


class StorageSettings(BaseModel):
    backend: Literal["s3", "local"] = "s3"
    bucket: str | None = None
    prefix: str = ""
    region: str | None = None
    endpoint_url: str | None = None
    # MinIO only understands path-style addressing.
    force_path_style: bool = True
    local_root: Path = Path("data/bucket")
    presign_ttl_seconds: int = Field(600, gt=0, le=7 * 24 * 3600)
    connect_timeout_seconds: float = Field(5.0, gt=0.0)
    read_timeout_seconds: float = Field(30.0, gt=0.0)

    def require_bucket(self) -> str:
        if not self.bucket:
            raise ConfigurationError("No S3 bucket configured", {"setting": "storage.bucket"})
        return self.bucket


class ServerSettings(BaseModel):
    base_url: str = "http://localhost:3000"
    # Unset means the socket comes from systemd socket activation.
    host: str | None = None
    port: int | None = Field(None, ge=0, le=65535)
    preload_channels: bool = True

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith(("http://", "https://")):
            raise ValueError("base_url must be an absolute http(s) URL")
        return value.rstrip("/")


class AuthSettings(BaseModel):
    jwt_public_key_path: Path | None = None
    algorithms: list[str] = Field(default_factory=lambda: ["RS256"])

    @property
    def enabled(self) -> bool:
        return self.jwt_public_key_path is not None


class LoggingSettings(BaseModel):
    level: str = "INFO"
    json_format: bool = False
    file: Path | None = None


class Settings(BaseModel):
    storage: StorageSettings = Field(default_factory=StorageSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def load(cls, path: Path | None = None) -> "Settings":
        """Load settings from a YAML file and apply environment overrides.

        Args:
            path: Optional path to configuration file. If not provided, uses
                the CHANNELS_CONFIG environment variable or config/default.yaml.
                Only an explicitly requested file has to exist.

        Returns:
            Settings instance with loaded configuration.

        Raises:
            FileNotFoundError: If an explicitly requested file does not exist.
            ConfigurationError: If configuration is invalid.
        """
        explicit = path or os.getenv("CHANNELS_CONFIG")
        config_path = Path(explicit) if explicit else DEFAULT_CONFIG_PATH
        payload: dict[str, Any] = {}
        if config_path.exists():
            with config_path.open("r", encoding="utf-8") as fp:
                payload = yaml.safe_load(fp) or {}
        elif explicit:
            raise FileNotFoundError(f"Configuration file not found: {config_path}")
        _apply_env_overrides(payload)
        try:
            return cls(**payload)
        except Exception as exc:
            raise ConfigurationError(f"Invalid configuration: {exc}") from exc


_ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "CHANNELS_BUCKET": ("storage", "bucket"),
    "CHANNELS_STORAGE_BACKEND": ("storage", "backend"),
    "CHANNELS_LOCAL_ROOT": ("storage", "local_root"),
    "CHANNELS_BASE_URL": ("server", "base_url"),
    "CHANNELS_JWT_PEM": ("auth", "jwt_public_key_path"),
    "LOG_LEVEL": ("logging", "level"),
    "JSON_LOGGING": ("logging", "json_format"),
    "LOG_FILE": ("logging", "file"),
}


def _apply_env_overrides(payload: dict[str, Any]) -> None:
    for env_name, (section, field) in _ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if not value:
            continue
        target = payload.setdefault(section, {}) or {}
        payload[section] = target
        if env_name == "JSON_LOGGING":
            target[field] = value.lower() in {"true", "1", "yes"}
        else:
            target[field] = value


@lru_cache(maxsize=1)
def get_settings(path: str | None = None) -> Settings:
    return Settings.load(Path(path) if path else None)


__all__ = [
    "Settings",
    "StorageSettings",
    "ServerSettings",
    "AuthSettings",
    "LoggingSettings",
    "get_settings",
]
