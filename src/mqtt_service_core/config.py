"""
Service configuration.

File-backed JSON config. On first run, when the file does not exist, a
default-valued file is written and then read back, so later runs see a stable
file to edit.

Priority (lowest -> highest):
1) dataclass defaults
2) the JSON config file
3) ./.env, loaded with python-dotenv
4) process environment variables (always win)
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import types
from dataclasses import MISSING, asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Optional, TypeVar, Union, get_args, get_origin, get_type_hints

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

C = TypeVar("C", bound="ServiceConfig")

DEFAULT_CONFIG_PATH = Path("config.json")

# environment variable -> config field
ENV_OVERRIDES = {
    "MQTT_IP": "mqtt_ip",
    "MQTT_PORT": "mqtt_port",
    "MQTT_USERNAME": "mqtt_username",
    "MQTT_PASSWORD": "mqtt_password",
    "SERVICE_LOG_LEVEL": "log_level",
}


class ConfigError(ValueError):
    """Raised when configuration is missing or invalid."""


@dataclass
class ServiceConfig:
    """
    Base configuration for every service. Subclass to add fields; keys in the
    file default to the field name unless a "file" name is set in metadata.
    """

    mqtt_ip: str = field(default="127.0.0.1", metadata={"file": "MqttIp"})
    mqtt_port: int = field(default=1883, metadata={"file": "MqttPort"})
    mqtt_username: Optional[str] = field(default=None, metadata={"file": "MqttUsername"})
    mqtt_password: Optional[str] = field(default=None, metadata={"file": "MqttPassword"})
    log_level: str = field(default="INFO", metadata={"file": "LogLevel"})

    @property
    def broker_address(self) -> str:
        host = f"[{self.mqtt_ip}]" if ":" in self.mqtt_ip else self.mqtt_ip
        return f"{host}:{self.mqtt_port}"

    def to_dict(self) -> dict[str, Any]:
        values = asdict(self)
        return {_file_key(f): values[f.name] for f in fields(self)}


def _file_key(f) -> str:
    return f.metadata.get("file", f.name)


def _unwrap_optional(tp: Any) -> tuple[Any, bool]:
    if get_origin(tp) in (Union, types.UnionType) and type(None) in get_args(tp):
        rest = [a for a in get_args(tp) if a is not type(None)]
        return rest[0], True
    return tp, False


def _parse_env(key: str, raw: str, base: Any) -> Any:
    if base is bool:
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if base in (int, float):
        try:
            return base(raw)
        except ValueError as exc:
            raise ConfigError(f"Invalid {base.__name__} for {key}: {raw!r}") from exc
    return raw


def _coerce(key: str, raw: Any, expected: Any, *, from_env: bool) -> Any:
    base, optional = _unwrap_optional(expected)
    if raw is None:
        if optional:
            return None
        raise ConfigError(f"{key} must not be null")
    if from_env and isinstance(raw, str):
        raw = _parse_env(key, raw, base)

    if base is bool:
        ok = isinstance(raw, bool)
    elif base is int:
        ok = isinstance(raw, int) and not isinstance(raw, bool)
    elif base is float:
        ok = isinstance(raw, (int, float)) and not isinstance(raw, bool)
        raw = float(raw) if ok else raw
    elif isinstance(base, type):
        ok = isinstance(raw, base)
    else:
        ok = True
    if not ok:
        raise ConfigError(f"{key} must be {getattr(base, '__name__', base)}, got {type(raw).__name__}")
    return raw


def write_default_config(path: Path, config_cls: type[C] = ServiceConfig) -> None:
    """Atomically write a default-valued config file (indented JSON)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    defaults = config_cls().to_dict()
    with tempfile.NamedTemporaryFile(
        mode="w",
        encoding="utf-8",
        delete=False,
        dir=str(path.parent),
    ) as tf:
        json.dump(defaults, tf, indent=2)
        tf.write("\n")
        tf.flush()
        os.fsync(tf.fileno())
        tmp_path = Path(tf.name)
    os.replace(tmp_path, path)
    logger.info("Config file not found, wrote defaults to %s", path)


def _load_dotenv() -> None:
    if Path(".env").is_file():
        # do not override values already set in the process environment
        load_dotenv(Path(".env"), override=False)


def load_config(
    path: Union[str, Path, None] = None,
    config_cls: type[C] = ServiceConfig,
    *,
    dotenv_enabled: bool = True,
) -> C:
    """
    Load config_cls from path, writing a default file first if it is missing.

    Unknown keys are ignored. Raises ConfigError on invalid JSON or values.
    """
    path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    if not path.exists():
        try:
            write_default_config(path, config_cls)
        except (OSError, TypeError) as exc:
            raise ConfigError(f"Cannot write default config to {path}: {exc}") from exc

    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Config file {path} is not valid JSON: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Failed to read {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object")

    hints = get_type_hints(config_cls)
    values: dict[str, Any] = {}
    for f in fields(config_cls):
        key = _file_key(f)
        if key in data:
            values[f.name] = _coerce(key, data[key], hints[f.name], from_env=False)
        elif f.default is MISSING and f.default_factory is MISSING:
            raise ConfigError(f"Missing required config key: {key}")

    if dotenv_enabled:
        _load_dotenv()
    for env_key, name in ENV_OVERRIDES.items():
        raw = os.getenv(env_key)
        if raw is None or raw == "" or name not in hints:
            continue
        values[name] = _coerce(env_key, raw, hints[name], from_env=True)

    cfg = config_cls(**values)
    if not cfg.mqtt_ip:
        raise ConfigError("mqtt_ip must be a non-empty string")
    if not (1 <= cfg.mqtt_port <= 65535):
        raise ConfigError(f"mqtt_port out of range: {cfg.mqtt_port}")
    return cfg
