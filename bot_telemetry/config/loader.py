"""
Configuration management and loading.

Builds the forwarder's immutable settings from environment variables or a
YAML file. Settings are resolved once at startup and passed to the
forwarder; nothing on the telemetry path reads the environment.
"""

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from ..storage.db import DEFAULT_DB_PATH

DEFAULT_ADMIN_URL = "http://127.0.0.1:10010"
DEFAULT_TIMEOUT_SECONDS = 4.0

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


class WriteMode(Enum):
    """Which sinks receive each telemetry event."""
    ADMIN = "admin"  # remote intake only, local on fallback
    BOT = "bot"  # local store only
    BOTH = "both"  # remote and local

    @property
    def writes_remote(self) -> bool:
        return self is not WriteMode.BOT

    @property
    def writes_local(self) -> bool:
        return self is not WriteMode.ADMIN


@dataclass(frozen=True)
class ForwarderConfig:
    """Process-wide telemetry forwarder settings."""
    admin_url: str = DEFAULT_ADMIN_URL
    admin_key: str = ""
    write_mode: WriteMode = WriteMode.ADMIN
    fallback_local_on_fail: bool = False
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    retry_on_failure: bool = True
    db_path: str = DEFAULT_DB_PATH

    def __post_init__(self):
        """Validate settings and strip trailing slashes from the intake URL."""
        if not isinstance(self.write_mode, WriteMode):
            raise ValueError(f"write_mode must be a WriteMode, got {self.write_mode!r}")
        if not self.admin_url or not self.admin_url.strip():
            raise ValueError("admin_url is required and cannot be empty")
        if not self.timeout_seconds > 0:
            raise ValueError("timeout_seconds must be > 0")
        object.__setattr__(self, "admin_url", self.admin_url.strip().rstrip("/"))

    @property
    def intake_endpoint(self) -> str:
        """URL the intake POST goes to."""
        return f"{self.admin_url}/api/portal/log"


def parse_write_mode(value: Any) -> WriteMode:
    """Parse a write mode name, case-insensitively.

    Raises:
        ValueError: If the name is not a known write mode
    """
    try:
        return WriteMode(str(value).strip().lower())
    except ValueError:
        valid_modes = [mode.value for mode in WriteMode]
        raise ValueError(f"write mode must be one of: {valid_modes}, got {value!r}")


def parse_bool(value: Any, name: str) -> bool:
    """Parse a boolean flag from a string or bool.

    Raises:
        ValueError: If the value is not a recognized boolean
    """
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ValueError(f"'{name}' must be a boolean, got {value!r}")


def _parse_timeout(value: Any, name: str) -> float:
    try:
        timeout = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"'{name}' must be a number, got {value!r}")
    return timeout


def load_forwarder_config(environ: Optional[Mapping[str, str]] = None) -> ForwarderConfig:
    """Build forwarder settings from environment variables.

    Recognized variables: ADMIN_URL, ADMIN_CUSTOMER_KEY (or ADMIN_KEY),
    LOG_WRITE_MODE, LOG_FALLBACK_LOCAL_ON_FAIL, LOG_TIMEOUT_SECONDS,
    LOG_RETRY_ON_FAILURE and TELEMETRY_DB_PATH.

    Args:
        environ: Mapping to read instead of ``os.environ``

    Returns:
        Validated ForwarderConfig

    Raises:
        ValueError: If any variable holds an invalid value
    """
    env = os.environ if environ is None else environ

    return ForwarderConfig(
        admin_url=env.get("ADMIN_URL") or DEFAULT_ADMIN_URL,
        admin_key=env.get("ADMIN_CUSTOMER_KEY") or env.get("ADMIN_KEY") or "",
        write_mode=parse_write_mode(env.get("LOG_WRITE_MODE") or WriteMode.ADMIN.value),
        fallback_local_on_fail=parse_bool(
            env.get("LOG_FALLBACK_LOCAL_ON_FAIL", ""), "LOG_FALLBACK_LOCAL_ON_FAIL"
        ),
        timeout_seconds=_parse_timeout(
            env.get("LOG_TIMEOUT_SECONDS") or DEFAULT_TIMEOUT_SECONDS, "LOG_TIMEOUT_SECONDS"
        ),
        retry_on_failure=parse_bool(
            env.get("LOG_RETRY_ON_FAILURE", "true"), "LOG_RETRY_ON_FAILURE"
        ),
        db_path=env.get("TELEMETRY_DB_PATH") or DEFAULT_DB_PATH,
    )


def load_forwarder_config_file(path: str) -> ForwarderConfig:
    """Load and validate forwarder settings from a YAML file.

    Strict validation ensures no silent misconfigurations, such as a typo in
    a key that would quietly leave the default write mode in place.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated ForwarderConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Forwarder config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    allowed_top_keys = {'intake', 'write_mode', 'fallback_local_on_fail', 'db_path'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    intake = _parse_intake_section(raw_config.get('intake', {}))

    db_path = raw_config.get('db_path', DEFAULT_DB_PATH)
    if not isinstance(db_path, str) or not db_path.strip():
        raise ValueError("'db_path' must be a non-empty string")

    return ForwarderConfig(
        write_mode=parse_write_mode(raw_config.get('write_mode', WriteMode.ADMIN.value)),
        fallback_local_on_fail=parse_bool(
            raw_config.get('fallback_local_on_fail', False), 'fallback_local_on_fail'
        ),
        db_path=db_path,
        **intake,
    )


def _parse_intake_section(data: Any) -> Dict[str, Any]:
    """Parse and validate the ``intake`` section.

    Args:
        data: Intake section data

    Returns:
        Keyword arguments for ForwarderConfig

    Raises:
        ValueError: If the section is invalid
    """
    if not isinstance(data, dict):
        raise ValueError("'intake' must be a dictionary")

    allowed_keys = {'url', 'key', 'timeout_seconds', 'retry_on_failure'}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in intake: {unknown_keys}")

    parsed: Dict[str, Any] = {}
    if 'url' in data:
        if not isinstance(data['url'], str):
            raise ValueError("'url' in intake must be a string")
        parsed['admin_url'] = data['url']
    if 'key' in data:
        parsed['admin_key'] = str(data['key'] or "")
    if 'timeout_seconds' in data:
        timeout = data['timeout_seconds']
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)):
            raise ValueError("'timeout_seconds' in intake must be a number")
        parsed['timeout_seconds'] = float(timeout)
    if 'retry_on_failure' in data:
        parsed['retry_on_failure'] = parse_bool(data['retry_on_failure'], 'retry_on_failure')

    return parsed
