"""MIP frame codec.

A MIP frame is laid out as::

    0x75 0x65 <descriptor set> <payload length> <fields...> <ck1> <ck2>

where every field is ``<field length> <field descriptor> <data...>`` and the
field length counts its own two header bytes. The trailing two bytes are a
Fletcher-16 checksum over everything that precedes them.

``FrameDecoder`` turns an arbitrary byte stream into checksum-valid packets,
resynchronizing on the sync bytes and silently dropping corrupt frames.
``SerialFrameCodec`` runs a decoder on a background reader thread and
splits decoded packets into command replies and telemetry.
"""

from __future__ import annotations

import contextlib
import logging
import queue
import threading
from typing import List, Optional

from . import constants
from .core.models import Field, Packet
from .core.protocols import Transport

LOGGER = logging.getLogger(__name__)

_SYNC = bytes([constants.SYNC1, constants.SYNC2])


class FrameError(RuntimeError):
    """Raised when a packet cannot be serialized into a MIP frame."""


def fletcher_checksum(data: bytes) -> bytes:
    ck1 = 0
    ck2 = 0
    for byte in data:
        ck1 = (ck1 + byte) & 0xFF
        ck2 = (ck2 + ck1) & 0xFF
    return bytes([ck1, ck2])


def encode_packet(packet: Packet) -> bytes:
    """Serialize ``packet`` into a complete, checksummed MIP frame."""

    if not 0 <= packet.descriptor <= 0xFF:
        raise FrameError(f"Descriptor set out of range: {packet.descriptor!r}")

    payload = bytearray()
    for item in packet.fields:
        if not 0 <= item.descriptor <= 0xFF:
            raise FrameError(f"Field descriptor out of range: {item.descriptor!r}")
        if len(item.data) > constants.MAX_FIELD_DATA_SIZE:
            raise FrameError(
                f"Field 0x{item.descriptor:02X} carries {len(item.data)} bytes "
                f"(max {constants.MAX_FIELD_DATA_SIZE})"
            )
        payload.append(len(item.data) + constants.FIELD_HEADER_SIZE)
        payload.append(item.descriptor)
        payload.extend(item.data)

    if len(payload) > constants.MAX_PAYLOAD_SIZE:
        raise FrameError(
            f"Packet payload is {len(payload)} bytes (max {constants.MAX_PAYLOAD_SIZE})"
        )

    frame = bytearray(_SYNC)
    frame.append(packet.descriptor)
    frame.append(len(payload))
    frame.extend(payload)
    frame.extend(fletcher_checksum(frame))
    return bytes(frame)


def _parse_fields(payload: bytes) -> Optional[List[Field]]:
    fields: List[Field] = []
    position = 0
    while position < len(payload):
        length = payload[position]
        if length < constants.FIELD_HEADER_SIZE or position + length > len(payload):
            return None
        fields.append(
            Field(payload[position + 1], payload[position + constants.FIELD_HEADER_SIZE : position + length])
        )
        position += length
    return fields


class FrameDecoder:
    """Incremental decoder from raw bytes to validated packets."""

    def __init__(self) -> None:
        self._buffer = bytearray()
        self.dropped_frames = 0

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def feed(self, data: bytes) -> List[Packet]:
        self._buffer.extend(data)
        packets: List[Packet] = []

        while True:
            start = self._buffer.find(_SYNC)
            if start < 0:
                # Keep a trailing first sync byte; its partner may be in the next chunk
                keep = 1 if self._buffer[-1:] == _SYNC[:1] else 0
                del self._buffer[: len(self._buffer) - keep]
                break
            if start:
                del self._buffer[:start]

            if len(self._buffer) < constants.HEADER_SIZE:
                break
            payload_length = self._buffer[3]
            total = constants.HEADER_SIZE + payload_length + constants.CHECKSUM_SIZE
            if len(self._buffer) < total:
                break

            frame = bytes(self._buffer[:total])
            if fletcher_checksum(frame[:-constants.CHECKSUM_SIZE]) != frame[-constants.CHECKSUM_SIZE:]:
                self._drop("checksum mismatch", frame)
                del self._buffer[:1]
                continue

            fields = _parse_fields(frame[constants.HEADER_SIZE : -constants.CHECKSUM_SIZE])
            del self._buffer[:total]
            if fields is None:
                self._drop("malformed field layout", frame)
                continue
            packets.append(Packet(frame[2], tuple(fields)))

        return packets

    def reset(self) -> None:
        self._buffer.clear()

    def _drop(self, reason: str, frame: bytes) -> None:
        self.dropped_frames += 1
        LOGGER.debug("Dropping frame (%s): %s", reason, frame.hex())


class _ReaderThread(threading.Thread):
    def __init__(self, codec: "SerialFrameCodec") -> None:
        super().__init__(name="lord-cli-reader", daemon=True)
        self._codec = codec
        self._stop_event = threading.Event()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        self._stop_event.set()

    def run(self) -> None:
        while not self.stopped:
            try:
                chunk = self._codec.transport.read(self._codec.read_size)
            except Exception as exc:  # noqa: BLE001
                if not self.stopped:
                    LOGGER.error("Serial read failed: %s", exc)
                    self._codec.reader_error = exc
                break
            if chunk:
                self._codec.feed(chunk)


class SerialFrameCodec:
    """Background-decoding codec over a byte transport.

    Decoded packets on command descriptor sets (below 0x80) are treated as
    replies; everything else is telemetry. The telemetry queue is bounded
    and drops its oldest packet when full.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        queue_size: int = constants.DEFAULT_QUEUE_SIZE,
        read_size: int = 256,
    ) -> None:
        self.transport = transport
        self.read_size = read_size
        self.reader_error: Optional[BaseException] = None
        self.dropped_packets = 0

        self._decoder = FrameDecoder()
        self._packets: "queue.Queue[Packet]" = queue.Queue(maxsize=max(1, queue_size))
        self._replies: "queue.Queue[Packet]" = queue.Queue()
        self._write_lock = threading.Lock()
        self._reader: Optional[_ReaderThread] = None

    @property
    def dropped_frames(self) -> int:
        return self._decoder.dropped_frames

    @property
    def running(self) -> bool:
        return self._reader is not None and self._reader.is_alive()

    def start(self) -> None:
        if self._reader is not None:
            return
        self._reader = _ReaderThread(self)
        self._reader.start()
        LOGGER.debug("Frame reader started")

    def stop(self, timeout: float = 1.0) -> None:
        reader = self._reader
        if reader is None:
            return
        reader.stop()
        reader.join(timeout=timeout)
        self._reader = None
        LOGGER.debug("Frame reader stopped")

    def feed(self, data: bytes) -> None:
        """Decode ``data`` and route the resulting packets."""

        for packet in self._decoder.feed(data):
            if packet.descriptor < constants.DATA_SET_THRESHOLD:
                self._replies.put(packet)
            else:
                self._enqueue_telemetry(packet)

    def send(self, packet: Packet) -> bytes:
        frame = encode_packet(packet)
        with self._write_lock:
            self.transport.write(frame)
        LOGGER.debug("Sent frame %s", frame.hex())
        return frame

    def try_decode_next(self) -> Optional[Packet]:
        try:
            return self._packets.get_nowait()
        except queue.Empty:
            return None

    def next_reply(self, timeout: float) -> Optional[Packet]:
        try:
            return self._replies.get(timeout=max(0.0, timeout))
        except queue.Empty:
            return None

    def drain_replies(self) -> int:
        drained = 0
        while True:
            try:
                self._replies.get_nowait()
            except queue.Empty:
                return drained
            drained += 1

    def _enqueue_telemetry(self, packet: Packet) -> None:
        try:
            self._packets.put_nowait(packet)
            return
        except queue.Full:
            pass
        with contextlib.suppress(queue.Empty):
            self._packets.get_nowait()
        self.dropped_packets += 1
        LOGGER.debug("Telemetry queue full; dropped oldest packet")
        with contextlib.suppress(queue.Full):
            self._packets.put_nowait(packet)
