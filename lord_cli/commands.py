"""Command builder for device configuration packets.

Every subsystem format command shares one encoding: the field data starts
with the function selector and, for ``APPLY``, a count byte followed by one
``(channel id, big-endian u16 decimation)`` tuple per entry in declared
order. The other selectors (save, load, default, read) are bare function
bytes.
"""

from __future__ import annotations

import struct
from enum import IntEnum
from typing import Iterable, List, Sequence, Tuple, Union

from . import constants
from .core.models import ChannelRate, Field, FormatRequest, Packet

EntryLike = Union[ChannelRate, Tuple[int, int]]


class InvalidConfigurationError(RuntimeError):
    """Raised when a channel/rate table violates the encoding constraints."""


class FunctionCode(IntEnum):
    APPLY = 0x01
    READ = 0x02
    SAVE = 0x03
    LOAD = 0x04
    DEFAULT = 0x05


class Subsystem(IntEnum):
    """Format command field descriptors on the 3DM command set."""

    IMU = 0x08
    GNSS = 0x09
    FILTER = 0x0A


class DataStream(IntEnum):
    """Selectors for the stream enable/disable command."""

    IMU = 0x01
    GNSS = 0x02
    FILTER = 0x03


_BASE_RATE_QUERIES = {
    Subsystem.IMU: constants.IMU_BASE_RATE_FIELD,
    Subsystem.GNSS: constants.GNSS_BASE_RATE_FIELD,
    Subsystem.FILTER: constants.FILTER_BASE_RATE_FIELD,
}


def _coerce_function(function: int) -> FunctionCode:
    try:
        return FunctionCode(function)
    except ValueError as exc:
        raise InvalidConfigurationError(
            f"Unrecognized function code: {function!r}"
        ) from exc


def _coerce_subsystem(subsystem: int) -> Subsystem:
    try:
        return Subsystem(subsystem)
    except ValueError as exc:
        raise InvalidConfigurationError(f"Unknown subsystem: {subsystem!r}") from exc


def _coerce_entry(entry: EntryLike) -> ChannelRate:
    if not isinstance(entry, ChannelRate):
        try:
            channel_id, decimation = entry
        except (TypeError, ValueError) as exc:
            raise InvalidConfigurationError(f"Malformed channel entry: {entry!r}") from exc
        entry = ChannelRate(channel_id, decimation)

    if not isinstance(entry.channel_id, int) or not isinstance(entry.decimation, int):
        raise InvalidConfigurationError(f"Channel entry must hold integers: {entry!r}")
    if not 0 <= entry.channel_id <= 0xFF:
        raise InvalidConfigurationError(f"Channel id out of range: {entry.channel_id!r}")
    if entry.decimation == 0:
        raise InvalidConfigurationError(
            f"Decimation for channel 0x{entry.channel_id:02X} must be greater than zero"
        )
    if not 0 < entry.decimation <= 0xFFFF:
        raise InvalidConfigurationError(
            f"Decimation for channel 0x{entry.channel_id:02X} out of range: {entry.decimation!r}"
        )
    return entry


def _coerce_stream(stream: int) -> DataStream:
    try:
        return DataStream(stream)
    except ValueError as exc:
        raise InvalidConfigurationError(f"Unknown data stream: {stream!r}") from exc


def build_format_field(
    subsystem: int, function: int, entries: Iterable[EntryLike] = ()
) -> Field:
    """Encode one subsystem format command as a field."""

    target = _coerce_subsystem(subsystem)
    selector = _coerce_function(function)
    table = [_coerce_entry(entry) for entry in entries]

    if selector is not FunctionCode.APPLY:
        if table:
            raise InvalidConfigurationError(
                f"{selector.name} on {target.name} does not take channel entries"
            )
        return Field(int(target), bytes([selector]))

    if not table:
        raise InvalidConfigurationError(f"APPLY on {target.name} needs at least one channel")
    if len(table) > 0xFF:
        raise InvalidConfigurationError(f"Too many channels for {target.name}: {len(table)}")

    data = bytearray([selector, len(table)])
    for entry in table:
        data.extend(struct.pack(">BH", entry.channel_id, entry.decimation))
    return Field(int(target), bytes(data))


def build_format_command(
    subsystem: int, function: int, entries: Iterable[EntryLike] = ()
) -> Packet:
    return Packet(
        constants.DEVICE_COMMAND_SET,
        (build_format_field(subsystem, function, entries),),
    )


def stream_control_field(stream: int, enabled: bool = True) -> Field:
    return Field(
        constants.STREAM_CONTROL_FIELD,
        bytes([FunctionCode.APPLY, _coerce_stream(stream), 0x01 if enabled else 0x00]),
    )


def save_stream_field(stream: int) -> Field:
    return Field(constants.STREAM_CONTROL_FIELD, bytes([FunctionCode.SAVE, _coerce_stream(stream)]))


def base_rate_query_field(subsystem: int) -> Field:
    return Field(_BASE_RATE_QUERIES[_coerce_subsystem(subsystem)])


def device_reset_packet() -> Packet:
    return Packet(constants.BASE_COMMAND_SET, (Field(constants.DEVICE_RESET_FIELD),))


class CommandBatch:
    """Accumulate several commands into one packet sent atomically.

    Example::

        packet = (
            CommandBatch()
            .add_format(Subsystem.IMU, FunctionCode.APPLY, [(0x06, 50)])
            .add_format(Subsystem.IMU, FunctionCode.SAVE)
            .enable_stream(DataStream.IMU)
            .build()
        )
    """

    def __init__(self, descriptor: int = constants.DEVICE_COMMAND_SET) -> None:
        self.descriptor = descriptor
        self._fields: List[Field] = []

    def __len__(self) -> int:
        return len(self._fields)

    def add_field(self, field: Field) -> "CommandBatch":
        self._fields.append(field)
        return self

    def add_fields(self, fields: Sequence[Field]) -> "CommandBatch":
        self._fields.extend(fields)
        return self

    def add_format(
        self, subsystem: int, function: int, entries: Iterable[EntryLike] = ()
    ) -> "CommandBatch":
        return self.add_field(build_format_field(subsystem, function, entries))

    def add_request(self, subsystem: int, request: FormatRequest) -> "CommandBatch":
        return self.add_format(subsystem, request.function, request.entries)

    def enable_stream(self, stream: int, enabled: bool = True) -> "CommandBatch":
        return self.add_field(stream_control_field(stream, enabled))

    def save_stream(self, stream: int) -> "CommandBatch":
        return self.add_field(save_stream_field(stream))

    def build(self) -> Packet:
        if not self._fields:
            raise InvalidConfigurationError("Cannot build an empty command packet")
        return Packet(self.descriptor, tuple(self._fields))


def parse_channel_table(text: str) -> List[ChannelRate]:
    """Parse ``"0x06:50, 0x04:50"`` into channel entries."""

    entries: List[ChannelRate] = []
    for item in text.split(","):
        item = item.strip()
        if not item:
            continue
        channel, sep, decimation = item.partition(":")
        if not sep:
            raise InvalidConfigurationError(f"Expected '<channel>:<decimation>', got {item!r}")
        try:
            entry = ChannelRate(int(channel.strip(), 0), int(decimation.strip(), 0))
        except ValueError as exc:
            raise InvalidConfigurationError(f"Invalid channel entry {item!r}") from exc
        entries.append(_coerce_entry(entry))
    return entries


def format_channel_table(entries: Iterable[ChannelRate]) -> str:
    return ", ".join(f"0x{entry.channel_id:02X}:{entry.decimation}" for entry in entries)
