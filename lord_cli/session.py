"""Device session: command/acknowledgment round trips and telemetry polling."""

from __future__ import annotations

import logging
import struct
import threading
import time
from enum import Enum
from typing import Callable, Iterable, List, Optional

from . import constants
from .codec import FrameError, SerialFrameCodec
from .commands import EntryLike, Subsystem, base_rate_query_field, build_format_command
from .core.models import Ack, Packet
from .core.protocols import FrameCodec, Transport
from .transport import DeviceUnavailableError

LOGGER = logging.getLogger(__name__)


class SessionState(str, Enum):
    CLOSED = "closed"
    IDLE = "idle"
    AWAITING_ACK = "awaiting_ack"


class SessionClosedError(RuntimeError):
    """Raised when an operation is attempted on a closed session."""


class AckTimeoutError(RuntimeError):
    """Raised when the device does not acknowledge a command in time."""


class DeviceNackError(RuntimeError):
    """Raised when the device rejects a command."""

    def __init__(self, message: str, *, descriptor: int, command: int, code: int) -> None:
        super().__init__(message)
        self.descriptor = descriptor
        self.command = command
        self.code = code

    @property
    def reason(self) -> str:
        return constants.ACK_ERROR_REASONS.get(self.code, "unknown error")


_BASE_RATE_REPLIES = {
    Subsystem.IMU: constants.IMU_BASE_RATE_REPLY,
    Subsystem.GNSS: constants.GNSS_BASE_RATE_REPLY,
    Subsystem.FILTER: constants.FILTER_BASE_RATE_REPLY,
}


class Session:
    """Owns the device connection for the lifetime of one CLI invocation.

    Only one command awaits acknowledgment at a time. ``poll_next_packet``
    only drains already decoded telemetry and may be called between
    commands.
    """

    def __init__(
        self,
        codec: FrameCodec,
        *,
        transport: Optional[Transport] = None,
        ack_timeout: float = constants.DEFAULT_ACK_TIMEOUT_SECONDS,
        monotonic: Optional[Callable[[], float]] = None,
    ) -> None:
        self._codec = codec
        self._transport = transport
        self._ack_timeout = ack_timeout
        self._monotonic = monotonic or time.monotonic
        self._command_lock = threading.Lock()
        self._state = SessionState.CLOSED

    @classmethod
    def open(
        cls,
        transport: Transport,
        *,
        ack_timeout: float = constants.DEFAULT_ACK_TIMEOUT_SECONDS,
        queue_size: int = constants.DEFAULT_QUEUE_SIZE,
    ) -> "Session":
        """Wrap ``transport`` in a frame codec and start decoding."""

        codec = SerialFrameCodec(transport, queue_size=queue_size)
        session = cls(codec, transport=transport, ack_timeout=ack_timeout)
        session.start()
        return session

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is not SessionState.CLOSED

    def start(self) -> None:
        if self.is_open:
            return
        self._codec.start()
        self._state = SessionState.IDLE

    def close(self) -> None:
        if not self.is_open:
            return
        try:
            self._codec.stop()
        finally:
            if self._transport is not None:
                self._transport.close()
            self._state = SessionState.CLOSED
        LOGGER.debug("Session closed")

    def __enter__(self) -> "Session":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.close()
        return False

    # ---------- configuration ----------

    def configure_subsystem_format(
        self, subsystem: int, function: int, entries: Iterable[EntryLike] = ()
    ) -> Ack:
        packet = build_format_command(subsystem, function, entries)
        LOGGER.info("Configuring %s format: %s", Subsystem(subsystem).name, packet)
        return self.send_raw(packet)

    def send_raw(self, packet: Packet) -> Ack:
        """Send a pre-built packet and block until every field is acknowledged."""

        self._ensure_open()
        if not packet.fields:
            raise FrameError("Command packet has no fields to acknowledge")
        self._raise_if_link_lost()

        with self._command_lock:
            stale = self._codec.drain_replies()
            if stale:
                LOGGER.debug("Discarded %d stale replies", stale)

            self._state = SessionState.AWAITING_ACK
            try:
                self._codec.send(packet)
                return self._await_ack(packet)
            finally:
                if self._state is SessionState.AWAITING_ACK:
                    self._state = SessionState.IDLE

    def imu_base_rate(self) -> int:
        return self._query_base_rate(Subsystem.IMU)

    def gnss_base_rate(self) -> int:
        return self._query_base_rate(Subsystem.GNSS)

    def filter_base_rate(self) -> int:
        return self._query_base_rate(Subsystem.FILTER)

    # ---------- telemetry ----------

    def poll_next_packet(self) -> Optional[Packet]:
        self._ensure_open()
        packet = self._codec.try_decode_next()
        if packet is None:
            self._raise_if_link_lost()
        return packet

    # ---------- internals ----------

    def _ensure_open(self) -> None:
        if not self.is_open:
            raise SessionClosedError("Session is not open")

    def _raise_if_link_lost(self) -> None:
        error = self._codec.reader_error
        if error is not None:
            raise DeviceUnavailableError(f"Serial link lost: {error}") from error

    def _await_ack(self, packet: Packet) -> Ack:
        pending: List[int] = [item.descriptor for item in packet.fields]
        acknowledged: List[int] = []
        replies: List[Packet] = []
        deadline = self._monotonic() + self._ack_timeout

        while pending:
            remaining = deadline - self._monotonic()
            if remaining <= 0:
                raise AckTimeoutError(
                    f"No acknowledgment from device for descriptor set 0x{packet.descriptor:02X} "
                    f"within {self._ack_timeout:.2f}s (pending fields: "
                    + ", ".join(f"0x{item:02X}" for item in pending)
                    + ")"
                )

            reply = self._codec.next_reply(min(remaining, constants.ACK_POLL_INTERVAL_SECONDS))
            if reply is None:
                self._raise_if_link_lost()
                continue
            if reply.descriptor != packet.descriptor:
                LOGGER.debug("Ignoring reply on descriptor set 0x%02X", reply.descriptor)
                continue

            matched = False
            for ack in reply.fields_with(constants.ACK_FIELD):
                if len(ack.data) < 2 or ack.data[0] not in pending:
                    continue
                command, code = ack.data[0], ack.data[1]
                pending.remove(command)
                matched = True
                if code != 0:
                    reason = constants.ACK_ERROR_REASONS.get(code, "unknown error")
                    raise DeviceNackError(
                        f"Device rejected command 0x{packet.descriptor:02X}/0x{command:02X}: "
                        f"{reason} (code 0x{code:02X})",
                        descriptor=packet.descriptor,
                        command=command,
                        code=code,
                    )
                acknowledged.append(command)
            if matched:
                replies.append(reply)

        LOGGER.debug("Command 0x%02X acknowledged", packet.descriptor)
        return Ack(
            descriptor=packet.descriptor,
            acknowledged=tuple(acknowledged),
            replies=tuple(replies),
        )

    def _query_base_rate(self, subsystem: Subsystem) -> int:
        query = Packet(constants.DEVICE_COMMAND_SET, (base_rate_query_field(subsystem),))
        ack = self.send_raw(query)
        reply_field = ack.reply_field(_BASE_RATE_REPLIES[subsystem])
        if reply_field is None or len(reply_field.data) < 2:
            raise FrameError(f"Device reply carries no {subsystem.name} base rate")
        (rate,) = struct.unpack(">H", reply_field.data[:2])
        return rate
