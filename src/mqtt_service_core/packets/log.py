from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import ClassVar

from mqtt_service_core.packets.base import Packet
from mqtt_service_core.topics import LOG


class LogLevel(enum.IntEnum):
    Debug = 0
    Info = 1
    Warning = 2
    Error = 3
    Critical = 4


@dataclass(frozen=True, slots=True)
class LogPacket(Packet):
    """Structured log record published on the LOG topic."""

    TOPIC: ClassVar[str] = LOG

    level: LogLevel = field(metadata={"wire": "Level"})
    message: str = field(metadata={"wire": "Message"})
    stack_trace: str = field(default="", metadata={"wire": "StackTrace"})
