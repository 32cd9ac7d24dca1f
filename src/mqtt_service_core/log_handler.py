"""
Logging handler that forwards application log records to the bus LOG topic.

Records are published as LogPackets through the owning service, with rate
limiting to prevent flooding the broker.
"""
from __future__ import annotations

import logging
import threading
import time
import traceback
from typing import Any

from mqtt_service_core.packets import LogLevel

logger = logging.getLogger(__name__)

# Rate limiting: max logs per time window
MAX_LOGS_PER_WINDOW = 10
TIME_WINDOW_S = 1.0

# Records from these loggers stay local; dispatch failures are already
# published by the service and re-publishing would recurse.
_LOCAL_ONLY_PREFIXES = ("mqtt_service_core", "paho")

_LEVEL_MAP = {
    logging.DEBUG: LogLevel.Debug,
    logging.INFO: LogLevel.Info,
    logging.WARNING: LogLevel.Warning,
    logging.ERROR: LogLevel.Error,
    logging.CRITICAL: LogLevel.Critical,
}


def to_log_level(levelno: int) -> LogLevel:
    if levelno >= logging.CRITICAL:
        return LogLevel.Critical
    if levelno in _LEVEL_MAP:
        return _LEVEL_MAP[levelno]
    for threshold in (logging.ERROR, logging.WARNING, logging.INFO):
        if levelno >= threshold:
            return _LEVEL_MAP[threshold]
    return LogLevel.Debug


class BusLogHandler(logging.Handler):
    """
    Publishes log records via service.log().

    At most MAX_LOGS_PER_WINDOW records per TIME_WINDOW_S seconds are sent;
    the rest are counted and reported locally.
    """

    def __init__(self, service: Any, level: int = logging.NOTSET) -> None:
        super().__init__(level)
        self.service = service

        self._lock = threading.Lock()
        self._log_timestamps: list[float] = []
        self._dropped_count = 0
        self._last_warning_ts = 0.0

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name.startswith(_LOCAL_ONLY_PREFIXES):
            return False
        return super().filter(record)

    def emit(self, record: logging.LogRecord) -> None:
        if not self._should_publish():
            self._report_dropped()
            return
        try:
            stack_trace = ""
            if record.exc_info and record.exc_info[0] is not None:
                stack_trace = "".join(traceback.format_exception(*record.exc_info))
            self.service.log(to_log_level(record.levelno), record.getMessage(), stack_trace)
        except Exception:
            self.handleError(record)

    def _report_dropped(self) -> None:
        with self._lock:
            self._dropped_count += 1
            now = time.time()
            if now - self._last_warning_ts < 10.0:
                return
            dropped, self._dropped_count = self._dropped_count, 0
            self._last_warning_ts = now
        logger.warning("Bus log handler: dropped %d log messages due to rate limiting", dropped)

    def _should_publish(self) -> bool:
        with self._lock:
            now = time.time()

            cutoff = now - TIME_WINDOW_S
            self._log_timestamps = [ts for ts in self._log_timestamps if ts > cutoff]

            if len(self._log_timestamps) >= MAX_LOGS_PER_WINDOW:
                return False

            self._log_timestamps.append(now)
            return True


def attach_bus_logging(service: Any, logger_name: str = "") -> BusLogHandler:
    """Add a BusLogHandler for service to logger_name (root by default), once."""
    target = logging.getLogger(logger_name)
    for handler in target.handlers:
        if isinstance(handler, BusLogHandler) and handler.service is service:
            return handler
    handler = BusLogHandler(service)
    target.addHandler(handler)
    return handler


def detach_bus_logging(handler: BusLogHandler, logger_name: str = "") -> None:
    logging.getLogger(logger_name).removeHandler(handler)
