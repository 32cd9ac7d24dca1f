from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import ClassVar

from mqtt_service_core.packets.base import Packet
from mqtt_service_core.topics import TRANSACTION, TRANSACTION_AUTH


class TransactionAuthStatus(enum.IntEnum):
    Approved = 0
    Rejected = 1
    Pending = 2


@dataclass(frozen=True, slots=True)
class TransactionPacket(Packet):
    TOPIC: ClassVar[str] = TRANSACTION

    transaction: str = field(metadata={"wire": "Transaction"})


@dataclass(frozen=True, slots=True)
class TransactionAuthPacket(Packet):
    """
    Authorization verdict for a transaction.

    Carries its own transaction field; not a TransactionPacket subtype.
    """

    TOPIC: ClassVar[str] = TRANSACTION_AUTH

    transaction: str = field(metadata={"wire": "Transaction"})
    status: TransactionAuthStatus = field(metadata={"wire": "Status"})
    confidence_score: float = field(metadata={"wire": "ConfidenceScore"})
