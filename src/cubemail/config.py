from __future__ import annotations

from dataclasses import dataclass
import logging
import os
from pathlib import Path
from typing import Any, cast

import yaml

MAX_LOG_FILES = 5

CURRENT_CONFIG_VERSION = 1

DEFAULT_CONFIG_PATH = "cube-gmail.json"

LOGGER = logging.getLogger(__name__)

_DEFAULT_CONFIG_VALUES: dict[str, Any] = {
    "label": "INBOX",
    "poll-interval-seconds": 1.0,
    "error-backoff-seconds": 60.0,
    "device-retry-seconds": 10.0,
    "blink-seconds": 0.1,
    "imap-timeout-seconds": 30.0,
    "device-baud-rate": 9600,
    "device-dry-run": False,
    "color-output": True,
    "log-file": "logs/cubemail.log",
    "log-level": "INFO",
    "log-console-level": "INFO",
    "log-console-enabled": True,
    "log-max-bytes": 5_000_000,
    "log-backup-count": 3,
    "log-run-files-keep": 3,
    "config-version": CURRENT_CONFIG_VERSION,
}


class ConfigError(ValueError):
    """Raised when the configuration cannot be loaded or is invalid."""


def _check_config_version(data: dict[str, Any]) -> None:
    version_raw = data.get("config-version", CURRENT_CONFIG_VERSION)
    try:
        version = int(version_raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError("config-version must be an integer") from exc
    if version > CURRENT_CONFIG_VERSION:
        raise ConfigError(
            "config-version is newer than supported: "
            f"{version} > {CURRENT_CONFIG_VERSION}"
        )
    if version < 1:
        raise ConfigError("config-version must be >= 1")


def _apply_config_defaults(data: dict[str, Any]) -> tuple[dict[str, Any], tuple[str, ...]]:
    # Logging is not set up yet; the caller reports the defaulted keys later.
    missing: list[str] = []
    updated = dict(data)
    for key, value in _DEFAULT_CONFIG_VALUES.items():
        if key not in updated:
            updated[key] = value
            missing.append(key)
    return updated, tuple(sorted(missing))


def get_user_data_dir() -> Path:
    override = os.environ.get("CUBEMAIL_DATA_DIR")
    if override:
        return Path(override)
    return Path.home() / ".cubemail"


@dataclass(frozen=True)
class AppConfig:
    cube: str
    addr: str
    username: str
    password: str
    label: str
    green_if_more: int
    red_if_more: int
    poll_interval_seconds: float = 1.0
    error_backoff_seconds: float = 60.0
    device_retry_seconds: float = 10.0
    blink_seconds: float = 0.1
    imap_timeout_seconds: float = 30.0
    device_baud_rate: int = 9600
    device_dry_run: bool = False
    color_output: bool = True
    log_file: str = "logs/cubemail.log"
    log_level: str = "INFO"
    log_console_level: str = "INFO"
    log_console_enabled: bool = True
    log_max_bytes: int = 5_000_000
    log_backup_count: int = 3
    log_run_files_keep: int = 3
    config_version: int = CURRENT_CONFIG_VERSION
    defaulted_keys: tuple[str, ...] = ()


def _get_required(data: dict[str, Any], key: str) -> Any:
    if key not in data or data[key] is None:
        raise ConfigError(f"Missing required config key: {key}")
    return data[key]


def _as_int(data: dict[str, Any], key: str) -> int:
    value = _get_required(data, key)
    if isinstance(value, bool):
        raise ConfigError(f"{key} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{key} must be an integer") from exc


def _as_float(data: dict[str, Any], key: str) -> float:
    value = _get_required(data, key)
    if isinstance(value, bool):
        raise ConfigError(f"{key} must be a number")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{key} must be a number") from exc


def _as_bool(data: dict[str, Any], key: str) -> bool:
    value = _get_required(data, key)
    if not isinstance(value, bool):
        raise ConfigError(f"{key} must be true or false")
    return value


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    try:
        raw: object = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Malformed config file '{path}': {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError("Config must be a mapping")
    return cast(dict[str, Any], raw)


def _resolve_log_file(value: str) -> str:
    candidate = Path(value).expanduser()
    if candidate.is_absolute():
        return str(candidate)
    return str(get_user_data_dir() / candidate)


def _is_valid_log_level(level: str) -> bool:
    level_name = str(level).upper()
    return level_name in logging.getLevelNamesMapping()


def _build_config(data: dict[str, Any]) -> AppConfig:
    _check_config_version(data)
    data, defaulted_keys = _apply_config_defaults(data)

    password = str(data.get("password") or "")
    env_password = os.environ.get("CUBEMAIL_PASSWORD")
    if env_password:
        password = env_password
    if not password:
        raise ConfigError("password must be set in the config or via CUBEMAIL_PASSWORD")

    log_backup_count = _as_int(data, "log-backup-count")
    log_run_files_keep = _as_int(data, "log-run-files-keep")
    if log_backup_count > MAX_LOG_FILES:
        LOGGER.warning(
            "log-backup-count capped at %s (requested %s)",
            MAX_LOG_FILES,
            log_backup_count,
            extra={"category": "config"},
        )
        log_backup_count = MAX_LOG_FILES
    if log_run_files_keep > MAX_LOG_FILES:
        LOGGER.warning(
            "log-run-files-keep capped at %s (requested %s)",
            MAX_LOG_FILES,
            log_run_files_keep,
            extra={"category": "config"},
        )
        log_run_files_keep = MAX_LOG_FILES

    config = AppConfig(
        cube=str(_get_required(data, "cube")),
        addr=str(_get_required(data, "addr")),
        username=str(_get_required(data, "username")),
        password=password,
        label=str(_get_required(data, "label")),
        green_if_more=_as_int(data, "green-if-more"),
        red_if_more=_as_int(data, "red-if-more"),
        poll_interval_seconds=_as_float(data, "poll-interval-seconds"),
        error_backoff_seconds=_as_float(data, "error-backoff-seconds"),
        device_retry_seconds=_as_float(data, "device-retry-seconds"),
        blink_seconds=_as_float(data, "blink-seconds"),
        imap_timeout_seconds=_as_float(data, "imap-timeout-seconds"),
        device_baud_rate=_as_int(data, "device-baud-rate"),
        device_dry_run=_as_bool(data, "device-dry-run"),
        color_output=_as_bool(data, "color-output"),
        log_file=_resolve_log_file(str(_get_required(data, "log-file"))),
        log_level=str(_get_required(data, "log-level")).upper(),
        log_console_level=str(_get_required(data, "log-console-level")).upper(),
        log_console_enabled=_as_bool(data, "log-console-enabled"),
        log_max_bytes=_as_int(data, "log-max-bytes"),
        log_backup_count=log_backup_count,
        log_run_files_keep=log_run_files_keep,
        config_version=_as_int(data, "config-version"),
        defaulted_keys=defaulted_keys,
    )
    _validate_config(config)
    return config


def _validate_config(config: AppConfig) -> None:
    if not config.cube:
        raise ConfigError("cube is required")
    if not config.addr:
        raise ConfigError("addr is required")
    if not config.username:
        raise ConfigError("username is required")
    if not config.label:
        raise ConfigError("label is required")
    # Thresholds are independent; red-if-more <= green-if-more is legal.
    if config.green_if_more < 0:
        raise ConfigError("green-if-more must be >= 0")
    if config.red_if_more < 0:
        raise ConfigError("red-if-more must be >= 0")
    if config.poll_interval_seconds <= 0:
        raise ConfigError("poll-interval-seconds must be > 0")
    if config.error_backoff_seconds <= 0:
        raise ConfigError("error-backoff-seconds must be > 0")
    if config.device_retry_seconds <= 0:
        raise ConfigError("device-retry-seconds must be > 0")
    if config.blink_seconds <= 0:
        raise ConfigError("blink-seconds must be > 0")
    if config.imap_timeout_seconds <= 0:
        raise ConfigError("imap-timeout-seconds must be > 0")
    if config.device_baud_rate < 1:
        raise ConfigError("device-baud-rate must be >= 1")
    if config.log_max_bytes < 1024:
        raise ConfigError("log-max-bytes must be >= 1024")
    if config.log_backup_count < 0:
        raise ConfigError("log-backup-count must be >= 0")
    if config.log_run_files_keep < 1:
        raise ConfigError("log-run-files-keep must be >= 1")
    if not _is_valid_log_level(config.log_level):
        raise ConfigError("log-level must be a valid logging level")
    if not _is_valid_log_level(config.log_console_level):
        raise ConfigError("log-console-level must be a valid logging level")


def load_config(path: str) -> AppConfig:
    data = _load_yaml(Path(path))
    return _build_config(data)
