import threading
from typing import Callable, List, Optional

import pytest

from lord_cli.codec import FrameDecoder, encode_packet
from lord_cli.core.models import Field, Packet

Responder = Callable[[Packet], List[Packet]]


class FakeTransport:
    """In-memory serial port; replies to each written command via ``responder``."""

    def __init__(self, responder: Optional[Responder] = None) -> None:
        self.responder = responder
        self.written: List[bytes] = []
        self.sent_packets: List[Packet] = []
        self.closed = False
        self._decoder = FrameDecoder()
        self._inbound = bytearray()
        self._cond = threading.Condition()

    def inject(self, data: bytes) -> None:
        with self._cond:
            self._inbound.extend(data)
            self._cond.notify_all()

    def inject_packet(self, packet: Packet) -> None:
        self.inject(encode_packet(packet))

    def read(self, size: int = 1) -> bytes:
        with self._cond:
            if not self._inbound:
                self._cond.wait(timeout=0.01)
            chunk = bytes(self._inbound[:size])
            del self._inbound[:size]
            return chunk

    def write(self, data: bytes) -> int:
        self.written.append(bytes(data))
        packets = self._decoder.feed(data)
        self.sent_packets.extend(packets)
        if self.responder is not None:
            for packet in packets:
                for reply in self.responder(packet):
                    self.inject_packet(reply)
        return len(data)

    def close(self) -> None:
        self.closed = True


def ack_all(packet: Packet, code: int = 0x00, extra: tuple = ()) -> List[Packet]:
    fields = [Field(0xF1, bytes([item.descriptor, code])) for item in packet.fields]
    return [Packet(packet.descriptor, tuple(fields) + tuple(extra))]


@pytest.fixture
def acking_transport() -> FakeTransport:
    return FakeTransport(responder=ack_all)


class UnpluggedTransport:
    """Serial port that hands out ``data`` once and then fails every read."""

    def __init__(self, data: bytes = b"") -> None:
        self.data = bytearray(data)
        self.written: List[bytes] = []
        self.closed = False

    def read(self, size: int = 1) -> bytes:
        if self.data:
            chunk = bytes(self.data[:size])
            del self.data[:size]
            return chunk
        raise OSError(5, "Input/output error")

    def write(self, data: bytes) -> int:
        self.written.append(bytes(data))
        return len(data)

    def close(self) -> None:
        self.closed = True
