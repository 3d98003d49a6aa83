"""Domain models for commands and telemetry."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional, Tuple


def _hex(data: bytes) -> str:
    return " ".join(f"{byte:02X}" for byte in data)


@dataclass(frozen=True, slots=True)
class Field:
    """A tagged byte payload inside a packet."""

    descriptor: int
    data: bytes = b""

    def __post_init__(self) -> None:
        object.__setattr__(self, "data", bytes(self.data))

    def __str__(self) -> str:
        return f"0x{self.descriptor:02X}: [{_hex(self.data)}]"


@dataclass(frozen=True, slots=True)
class Packet:
    """An ordered sequence of fields addressed to one descriptor set.

    Used both for outgoing command packets and for decoded telemetry.
    """

    descriptor: int
    fields: Tuple[Field, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", tuple(self.fields))

    def get_field(self, descriptor: int) -> Optional[Field]:
        for item in self.fields:
            if item.descriptor == descriptor:
                return item
        return None

    def fields_with(self, descriptor: int) -> list[Field]:
        return [item for item in self.fields if item.descriptor == descriptor]

    def __str__(self) -> str:
        body = " ".join(str(item) for item in self.fields)
        return f"0x{self.descriptor:02X} {body}".rstrip()


@dataclass(frozen=True, slots=True)
class ChannelRate:
    channel_id: int
    decimation: int


@dataclass(frozen=True, slots=True)
class FormatRequest:
    function: int
    entries: Tuple[ChannelRate, ...] = field(default_factory=tuple)

    @classmethod
    def of(cls, function: int, entries: Iterable[Tuple[int, int] | ChannelRate]) -> "FormatRequest":
        normalized = tuple(
            item if isinstance(item, ChannelRate) else ChannelRate(*item)
            for item in entries
        )
        return cls(function=function, entries=normalized)


@dataclass(frozen=True, slots=True)
class Ack:
    """Positive acknowledgment for every field of a sent command packet."""

    descriptor: int
    acknowledged: Tuple[int, ...]
    replies: Tuple[Packet, ...]

    def reply_field(self, descriptor: int) -> Optional[Field]:
        """Return the first data field with ``descriptor`` across all replies."""
        for reply in self.replies:
            found = reply.get_field(descriptor)
            if found is not None:
                return found
        return None
