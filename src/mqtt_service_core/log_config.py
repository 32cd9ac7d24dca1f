"""
Process log level for a service.

The config's log_level wins over the SERVICE_LOG_LEVEL env variable; an
unset or unknown name means INFO. Numeric levels ("15") are accepted.
"""

from __future__ import annotations

import logging
import os
from typing import Any

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_LEVEL_ENV = "SERVICE_LOG_LEVEL"


def level_from_cfg_or_env(cfg: Any) -> int:
    """Resolve the level from cfg.log_level (or cfg["log_level"]), then env, then INFO."""
    value = cfg.get("log_level") if isinstance(cfg, dict) else getattr(cfg, "log_level", None)
    if not isinstance(value, str) or not value.strip():
        value = os.environ.get(LOG_LEVEL_ENV, "")
    name = value.strip().upper()
    if name.isdigit():
        return int(name)
    level = logging.getLevelName(name) if name else logging.INFO
    return level if isinstance(level, int) else logging.INFO


def configure_logging(cfg: Any = None) -> None:
    """basicConfig with the service format, then set the root level from cfg or env."""
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    logging.getLogger().setLevel(level_from_cfg_or_env(cfg))
