"""Configuration models and loading for the POP3 client."""

import json
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigurationError, InvalidConfigError, PopMailError

DEFAULT_DIAL_TIMEOUT = 3.0
MIN_DIAL_TIMEOUT = 0.001


class POP3Config(BaseModel):
    """Pydantic model for the POP3 server connection."""

    host: str = "localhost"
    port: int = 110
    dial_timeout: float = DEFAULT_DIAL_TIMEOUT  # in seconds
    tls_enabled: bool = False
    tls_skip_verify: bool = False
    command_timeout: float = 30.0  # in seconds, per command round trip
    max_line_length: int = 65_536  # in bytes

    @field_validator("host")
    @classmethod
    def _host_not_empty(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("host must not be empty")
        return value

    @field_validator("port")
    @classmethod
    def _port_in_range(cls, value: int) -> int:
        if not 0 < value < 65536:
            raise ValueError(f"port out of range: {value}")
        return value

    @field_validator("dial_timeout", mode="before")
    @classmethod
    def _default_dial_timeout(cls, value) -> float:
        # Unset, unparsable or sub-millisecond values fall back to the default
        try:
            value = float(value)
        except (TypeError, ValueError):
            return DEFAULT_DIAL_TIMEOUT
        if value < MIN_DIAL_TIMEOUT:
            return DEFAULT_DIAL_TIMEOUT
        return value

    @field_validator("command_timeout", "max_line_length")
    @classmethod
    def _positive(cls, value):
        if value <= 0:
            raise ValueError("must be positive")
        return value


class LoggingConfig(BaseModel):
    """Pydantic model for logging settings."""

    console_level: str = "WARNING"
    file_level: str = "DEBUG"
    log_file: Optional[Path] = None
    max_file_size: int = 5_242_880  # 5 MB
    backup_count: int = 5


class AppConfig(BaseModel):
    """Pydantic model for overall configuration."""

    pop3: POP3Config = Field(default_factory=POP3Config)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


_ENV_FIELDS = {
    "POPMAIL_HOST": "host",
    "POPMAIL_PORT": "port",
    "POPMAIL_DIAL_TIMEOUT": "dial_timeout",
    "POPMAIL_TLS_ENABLED": "tls_enabled",
    "POPMAIL_TLS_SKIP_VERIFY": "tls_skip_verify",
}


def load_config(path: Optional[Path | str] = None) -> AppConfig:
    """Load configuration from a JSON file.

    A missing file yields the defaults.

    Raises:
        InvalidConfigError: If the file is not valid JSON or fails validation
        ConfigurationError: If the file cannot be read
    """
    if path is None:
        return AppConfig()

    path = Path(path)
    if not path.exists():
        return AppConfig()

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return AppConfig(**data)

    except json.JSONDecodeError as e:
        raise InvalidConfigError(
            f"Configuration file is not valid JSON: {e}", details={"path": str(path)}
        ) from e
    except ValidationError as e:
        raise InvalidConfigError(
            f"Configuration data does not match expected schema: {e}",
            details={"path": str(path)},
        ) from e
    except TypeError as e:
        raise InvalidConfigError(
            "Configuration root must be a JSON object", details={"path": str(path)}
        ) from e
    except PopMailError:
        raise
    except OSError as e:
        raise ConfigurationError(
            f"Failed to read configuration: {e}", details={"path": str(path)}
        ) from e


def config_from_env(base: Optional[POP3Config] = None) -> POP3Config:
    """Return ``base`` with POPMAIL_* environment overrides applied."""
    values = (base or POP3Config()).model_dump()

    for env_name, field in _ENV_FIELDS.items():
        raw = os.environ.get(env_name)
        if raw is None:
            continue
        if field in ("tls_enabled", "tls_skip_verify"):
            values[field] = raw.strip().lower() in ("1", "true", "yes", "on")
        else:
            values[field] = raw

    try:
        return POP3Config(**values)
    except ValidationError as e:
        raise InvalidConfigError(f"Invalid POPMAIL_* environment settings: {e}") from e
