"""
Service runner.

Constructs one service from an explicit constructor table, prints a started
banner, and blocks until "exit" is typed, stdin closes, or SIGINT/SIGTERM
arrives. The service's connection is released on every exit path.
"""

from __future__ import annotations

import logging
import signal
import sys
import threading
from typing import Any, Callable, Optional, TextIO

from mqtt_service_core.config import ServiceConfig
from mqtt_service_core.connection import BusConnectionError, SubscribeError
from mqtt_service_core.log_handler import attach_bus_logging, detach_bus_logging
from mqtt_service_core.service import MqttService

logger = logging.getLogger(__name__)

ServiceFactory = Callable[[ServiceConfig], MqttService]

SERVICES: dict[str, ServiceFactory] = {}

EXIT_COMMAND = "exit"


def register_service(name: str) -> Callable[[ServiceFactory], ServiceFactory]:
    """Decorator adding a service class or factory to SERVICES under name."""

    def _register(factory: ServiceFactory) -> ServiceFactory:
        if name in SERVICES and SERVICES[name] is not factory:
            raise ValueError(f"service {name!r} is already registered")
        SERVICES[name] = factory
        return factory

    return _register


def get_service_factory(name: str) -> ServiceFactory:
    try:
        return SERVICES[name]
    except KeyError:
        known = ", ".join(sorted(SERVICES)) or "none"
        raise KeyError(f"unknown service {name!r} (known: {known})") from None


def _install_signal_handlers(shutdown: threading.Event) -> dict[int, Any]:
    def _handler(signum: int, frame) -> None:  # frame is unused, keep signature
        logger.info("Received signal %s; requesting shutdown", signum)
        shutdown.set()

    return {sig: signal.signal(sig, _handler) for sig in (signal.SIGINT, signal.SIGTERM)}


def _restore_signal_handlers(previous: dict[int, Any]) -> None:
    for sig, handler in previous.items():
        # None means the handler was not installed from Python
        signal.signal(sig, handler if handler is not None else signal.SIG_DFL)


def _wait_for_exit(stdin: TextIO, shutdown: threading.Event) -> None:
    def _read() -> None:
        for line in stdin:
            if line.strip() == EXIT_COMMAND:
                break
        shutdown.set()

    reader = threading.Thread(target=_read, daemon=True, name="console-reader")
    reader.start()
    while not shutdown.wait(timeout=0.5):
        pass


def run_service(
    factory: ServiceFactory,
    config: ServiceConfig,
    *,
    stdin: Optional[TextIO] = None,
    out: Optional[TextIO] = None,
    install_signals: bool = True,
) -> int:
    """
    Run one service until exit. Returns the process exit code:
    0 after a clean shutdown, 1 if connecting or subscribing failed.
    """
    stdin = stdin if stdin is not None else sys.stdin
    out = out if out is not None else sys.stdout

    try:
        service = factory(config)
    except BusConnectionError as exc:
        logger.error("MQTT connection failed: %s", exc)
        return 1
    except SubscribeError as exc:
        logger.error("Service setup failed: %s", exc)
        return 1

    shutdown = threading.Event()
    previous_handlers = _install_signal_handlers(shutdown) if install_signals else {}

    bus_handler = attach_bus_logging(service)
    try:
        print(f"{service.name} Service Started! Type {EXIT_COMMAND} to quit the application.", file=out, flush=True)
        _wait_for_exit(stdin, shutdown)
    finally:
        logger.info("Shutting down...")
        detach_bus_logging(bus_handler)
        service.close()
        _restore_signal_handlers(previous_handlers)

    return 0
