"""Telemetry arrival correlation and the streaming loop.

``TelemetryCorrelator`` remembers, per descriptor set, when the previous
packet arrived and reports the elapsed time for each new one. Each
correlator owns its own timing state, so independent streams (and tests)
never share it.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol

from . import constants
from .core.models import Packet

LOGGER = logging.getLogger(__name__)


class PacketSource(Protocol):
    def poll_next_packet(self) -> Optional[Packet]: ...


@dataclass(frozen=True, slots=True)
class ArrivalReport:
    """Elapsed time since the previous packet with the same descriptor.

    Attributes:
        descriptor: Descriptor set of the packet.
        elapsed: Seconds since the previous arrival, or None on first sight.
        packet: The observed packet.
    """

    descriptor: int
    elapsed: Optional[float]
    packet: Packet

    @property
    def first_seen(self) -> bool:
        return self.elapsed is None

    @property
    def elapsed_ms(self) -> int:
        if self.elapsed is None:
            return 0
        return int(round(self.elapsed * 1000))


class TelemetryCorrelator:
    """Tracks inter-arrival timing per descriptor.

    Thread-safety: not thread-safe; one correlator belongs to one loop.
    """

    def __init__(self, *, monotonic: Optional[Callable[[], float]] = None) -> None:
        self._monotonic = monotonic or time.monotonic
        self._last_seen: Dict[int, float] = {}

    def __len__(self) -> int:
        return len(self._last_seen)

    def observe(self, packet: Packet) -> ArrivalReport:
        now = self._monotonic()
        descriptor = packet.descriptor
        previous = self._last_seen.get(descriptor)
        self._last_seen[descriptor] = now
        elapsed = None if previous is None else now - previous
        return ArrivalReport(descriptor=descriptor, elapsed=elapsed, packet=packet)

    def last_seen(self, descriptor: int) -> Optional[float]:
        return self._last_seen.get(descriptor)

    def reset(self) -> None:
        self._last_seen.clear()


def format_report(report: ArrivalReport) -> str:
    return f"{report.elapsed_ms:02}ms {report.packet}"


def run_stream(
    source: PacketSource,
    on_packet: Callable[[Packet], None],
    *,
    stop_event: Optional[threading.Event] = None,
    idle_interval: float = constants.DEFAULT_IDLE_INTERVAL_SECONDS,
    limit: Optional[int] = None,
) -> int:
    """Poll ``source`` until ``stop_event`` is set or ``limit`` packets arrive.

    Returns the number of packets handed to ``on_packet``.
    """

    stop = stop_event or threading.Event()
    delivered = 0

    while not stop.is_set():
        if limit is not None and delivered >= limit:
            break
        packet = source.poll_next_packet()
        if packet is None:
            stop.wait(idle_interval)
            continue
        on_packet(packet)
        delivered += 1

    LOGGER.debug("Stream loop finished after %d packets", delivered)
    return delivered


def stream_arrivals(
    source: PacketSource,
    on_report: Callable[[ArrivalReport], None],
    *,
    correlator: Optional[TelemetryCorrelator] = None,
    stop_event: Optional[threading.Event] = None,
    idle_interval: float = constants.DEFAULT_IDLE_INTERVAL_SECONDS,
    limit: Optional[int] = None,
) -> int:
    """Run the stream loop, reporting inter-arrival timing for every packet."""

    tracker = correlator if correlator is not None else TelemetryCorrelator()
    return run_stream(
        source,
        lambda packet: on_report(tracker.observe(packet)),
        stop_event=stop_event,
        idle_interval=idle_interval,
        limit=limit,
    )
