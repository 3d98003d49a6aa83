"""Serial transport built on pyserial."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

import serial
from serial.tools import list_ports

from . import constants

LOGGER = logging.getLogger(__name__)


class DeviceUnavailableError(RuntimeError):
    """Raised when the serial port cannot be opened."""


@dataclass(slots=True)
class PortInfo:
    device: str
    description: str
    hwid: str

    def __str__(self) -> str:
        return f"{self.device} - {self.description} [{self.hwid}]"


class SerialTransport:
    """Thin wrapper over ``serial.Serial`` satisfying the Transport protocol."""

    def __init__(self, port: serial.Serial) -> None:
        self._serial = port

    @property
    def name(self) -> str:
        return str(self._serial.port)

    @property
    def is_open(self) -> bool:
        return bool(self._serial.is_open)

    def read(self, size: int = 1) -> bytes:
        # Block for at most one byte, then take whatever else is already waiting
        waiting = self._serial.in_waiting
        return self._serial.read(min(size, waiting) if waiting else 1)

    def write(self, data: bytes) -> Optional[int]:
        return self._serial.write(data)

    def close(self) -> None:
        if self._serial.is_open:
            self._serial.close()


def open_transport(
    port: str,
    baudrate: int = constants.DEFAULT_BAUDRATE,
    *,
    timeout: float = constants.DEFAULT_READ_TIMEOUT_SECONDS,
) -> SerialTransport:
    """Open ``port`` at ``baudrate``; no retry is attempted on failure."""

    try:
        handle = serial.Serial(port, baudrate, timeout=timeout, write_timeout=timeout * 20)
    except (serial.SerialException, OSError, ValueError) as exc:
        raise DeviceUnavailableError(f"Failed to open {port}: {exc}") from exc

    LOGGER.info("Opened %s at %d baud", port, baudrate)
    return SerialTransport(handle)


def list_serial_ports() -> List[PortInfo]:
    return [
        PortInfo(device=info.device, description=info.description, hwid=info.hwid)
        for info in sorted(list_ports.comports(), key=lambda item: item.device)
    ]
