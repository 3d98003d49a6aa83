"""Core primitives for lord-cli."""

from .models import Ack, ChannelRate, Field, FormatRequest, Packet
from .protocols import FrameCodec, Transport

__all__ = [
    "Ack",
    "ChannelRate",
    "Field",
    "FormatRequest",
    "FrameCodec",
    "Packet",
    "Transport",
]
