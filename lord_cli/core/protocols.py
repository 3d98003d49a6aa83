"""Protocol definitions for the transport and frame codec seams."""

from __future__ import annotations

from typing import Optional, Protocol

from .models import Packet


class Transport(Protocol):
    """Duplex byte stream over a serial connection."""

    def read(self, size: int = 1) -> bytes:
        """Return up to ``size`` bytes, or ``b""`` when the read times out."""
        ...

    def write(self, data: bytes) -> Optional[int]:
        ...

    def close(self) -> None:
        ...


class FrameCodec(Protocol):
    """Minimal contract the session needs from the framing layer."""

    reader_error: Optional[BaseException]

    def start(self) -> None:
        """Begin decoding the transport byte stream in the background."""
        ...

    def stop(self) -> None:
        ...

    def send(self, packet: Packet) -> bytes:
        """Serialize and transmit ``packet``, returning the bytes written."""
        ...

    def try_decode_next(self) -> Optional[Packet]:
        """Return the next buffered telemetry packet without blocking."""
        ...

    def next_reply(self, timeout: float) -> Optional[Packet]:
        """Wait up to ``timeout`` seconds for the next command reply packet."""
        ...

    def drain_replies(self) -> int:
        """Discard buffered replies, returning how many were dropped."""
        ...
