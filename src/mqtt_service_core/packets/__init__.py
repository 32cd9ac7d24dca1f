from mqtt_service_core.packets.base import DecodeError, Packet, deserialize, serialize, topic_of
from mqtt_service_core.packets.log import LogLevel, LogPacket
from mqtt_service_core.packets.transaction import (
    TransactionAuthPacket,
    TransactionAuthStatus,
    TransactionPacket,
)

__all__ = [
    "DecodeError",
    "LogLevel",
    "LogPacket",
    "Packet",
    "TransactionAuthPacket",
    "TransactionAuthStatus",
    "TransactionPacket",
    "deserialize",
    "serialize",
    "topic_of",
]
