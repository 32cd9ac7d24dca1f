"""
Ping service — answers every message on PING with an Info "pong" log record.

Entry in the runner table: "ping".
"""
from __future__ import annotations

import logging
from typing import Optional

from mqtt_service_core.config import ServiceConfig
from mqtt_service_core.connection import ConnectionManager
from mqtt_service_core.packets import LogLevel
from mqtt_service_core.runner import register_service
from mqtt_service_core.service import MqttService

logger = logging.getLogger(__name__)

PING = "PING"


@register_service("ping")
class PingService(MqttService):
    name = "Ping"

    def __init__(self, config: ServiceConfig, *, connection: Optional[ConnectionManager] = None) -> None:
        super().__init__(config, connection=connection)
        self.subscribe(PING, self.on_ping)

    def on_ping(self, message: str) -> None:
        logger.debug("Ping received: %r", message)
        self.log(LogLevel.Info, "pong")
