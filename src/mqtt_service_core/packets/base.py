"""
Packet contract — typed payloads bound to a fixed topic.

Every packet is a dataclass subclass of Packet declaring a class-level TOPIC.
Wire format is a UTF-8 JSON object whose keys follow the dataclass field order.
Each field may carry a wire name via field(metadata={"wire": "..."}).
"""

from __future__ import annotations

import enum
import json
from dataclasses import MISSING, fields, is_dataclass
from typing import Any, ClassVar, TypeVar, Union, get_type_hints

P = TypeVar("P", bound="Packet")


class DecodeError(ValueError):
    """Raised when a payload is not well-formed for the target packet shape."""


def _wire_name(f) -> str:
    return f.metadata.get("wire", f.name)


class Packet:
    """
    Base class for all bus packets.

    Subclasses must be dataclasses and must define TOPIC. A concrete subclass
    without a TOPIC is rejected when the class is created.
    """

    __slots__ = ()

    TOPIC: ClassVar[str]

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        topic = cls.__dict__.get("TOPIC")
        if not isinstance(topic, str) or not topic:
            raise TypeError(f"{cls.__name__} must define a non-empty TOPIC")

    @property
    def topic(self) -> str:
        return type(self).TOPIC

    def to_json(self) -> str:
        return serialize(self).decode("utf-8")

    @classmethod
    def from_json(cls: type[P], data: Union[str, bytes]) -> P:
        return deserialize(data, cls)


def topic_of(variant: Union[type[Packet], Packet]) -> str:
    """Return the fixed topic of a packet class or instance."""
    cls = variant if isinstance(variant, type) else type(variant)
    if not issubclass(cls, Packet):
        raise TypeError(f"{cls.__name__} is not a Packet")
    return cls.TOPIC


def _encode_value(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.name
    return value


def serialize(packet: Packet) -> bytes:
    """
    Encode a packet's fields as a JSON object, in field order.

    Raises ValueError for non-finite floats.
    """
    if not isinstance(packet, Packet) or not is_dataclass(packet):
        raise TypeError(f"cannot serialize {type(packet).__name__}")
    obj = {_wire_name(f): _encode_value(getattr(packet, f.name)) for f in fields(packet)}
    return json.dumps(obj, allow_nan=False, ensure_ascii=False).encode("utf-8")


def _decode_value(name: str, raw: Any, expected: Any) -> Any:
    if isinstance(expected, type) and issubclass(expected, enum.Enum):
        if isinstance(raw, str):
            try:
                return expected[raw]
            except KeyError:
                raise DecodeError(f"{name}: unknown {expected.__name__} member {raw!r}") from None
        if isinstance(raw, int) and not isinstance(raw, bool):
            try:
                return expected(raw)
            except ValueError:
                raise DecodeError(f"{name}: unknown {expected.__name__} value {raw!r}") from None
        raise DecodeError(f"{name} must be a {expected.__name__} name, got {type(raw).__name__}")

    if expected is float:
        if isinstance(raw, bool) or not isinstance(raw, (int, float)):
            raise DecodeError(f"{name} must be a number, got {type(raw).__name__}")
        try:
            return float(raw)
        except OverflowError:
            raise DecodeError(f"{name} is out of range for a float") from None

    if expected is int:
        if isinstance(raw, bool) or not isinstance(raw, int):
            raise DecodeError(f"{name} must be an integer, got {type(raw).__name__}")
        return raw

    if expected is bool:
        if not isinstance(raw, bool):
            raise DecodeError(f"{name} must be a boolean, got {type(raw).__name__}")
        return raw

    if expected is str:
        if not isinstance(raw, str):
            raise DecodeError(f"{name} must be a string, got {type(raw).__name__}")
        return raw

    return raw


def _reject_constant(name: str) -> Any:
    raise DecodeError(f"payload is not valid JSON: non-finite number {name}")


def deserialize(data: Union[bytes, str], variant: type[P]) -> P:
    """
    Decode a payload into a packet of the given variant.

    Raises DecodeError on invalid UTF-8, invalid JSON, a non-object payload,
    a missing required field or a field of the wrong type. Unknown keys are ignored.
    """
    if isinstance(data, (bytes, bytearray)):
        try:
            data = bytes(data).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecodeError(f"payload is not valid UTF-8: {exc}") from exc

    try:
        obj = json.loads(data, parse_constant=_reject_constant)
    except DecodeError:
        raise
    except json.JSONDecodeError as exc:
        raise DecodeError(f"payload is not valid JSON: {exc.msg}") from exc
    except (ValueError, RecursionError) as exc:
        # oversized integer literals, excessive nesting
        raise DecodeError(f"payload is not valid JSON: {exc}") from exc

    if not isinstance(obj, dict):
        raise DecodeError(f"{variant.__name__} payload must be a JSON object")

    hints = get_type_hints(variant)
    kwargs: dict[str, Any] = {}
    for f in fields(variant):
        if not f.init:
            continue
        key = _wire_name(f)
        if key not in obj:
            if f.default is MISSING and f.default_factory is MISSING:
                raise DecodeError(f"{variant.__name__} missing required field {key!r}")
            continue
        kwargs[f.name] = _decode_value(key, obj[key], hints[f.name])

    return variant(**kwargs)
