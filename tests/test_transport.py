from pathlib import Path
from types import SimpleNamespace

import pytest

from lord_cli import transport
from lord_cli.transport import DeviceUnavailableError, SerialTransport, open_transport


def test_open_nonexistent_port_raises_device_unavailable(tmp_path: Path) -> None:
    missing = tmp_path / "ttyMISSING0"

    with pytest.raises(DeviceUnavailableError) as excinfo:
        open_transport(str(missing))

    assert str(missing) in str(excinfo.value)


class FakeSerial:
    def __init__(self, data: bytes) -> None:
        self.port = "/dev/fake"
        self.is_open = True
        self.buffer = bytearray(data)
        self.reads: list[int] = []
        self.writes: list[bytes] = []

    @property
    def in_waiting(self) -> int:
        return len(self.buffer)

    def read(self, size: int) -> bytes:
        self.reads.append(size)
        chunk = bytes(self.buffer[:size])
        del self.buffer[:size]
        return chunk

    def write(self, data: bytes) -> int:
        self.writes.append(data)
        return len(data)

    def close(self) -> None:
        self.is_open = False


def test_serial_transport_reads_what_is_waiting() -> None:
    port = FakeSerial(b"\x75\x65\x80")
    wrapped = SerialTransport(port)

    assert wrapped.read(256) == b"\x75\x65\x80"
    assert port.reads == [3]
    assert wrapped.read(256) == b""
    assert port.reads == [3, 1]


def test_serial_transport_write_and_close() -> None:
    port = FakeSerial(b"")
    wrapped = SerialTransport(port)

    assert wrapped.write(b"\x01\x02") == 2
    wrapped.close()

    assert port.writes == [b"\x01\x02"]
    assert wrapped.is_open is False
    assert wrapped.name == "/dev/fake"


def test_list_serial_ports_sorted(monkeypatch) -> None:
    ports = [
        SimpleNamespace(device="/dev/ttyUSB1", description="FTDI", hwid="USB VID:PID=0403:6001"),
        SimpleNamespace(device="/dev/ttyACM0", description="3DM-GX5", hwid="USB VID:PID=199B:3065"),
    ]
    monkeypatch.setattr(transport.list_ports, "comports", lambda: ports)

    listed = transport.list_serial_ports()

    assert [item.device for item in listed] == ["/dev/ttyACM0", "/dev/ttyUSB1"]
    assert str(listed[0]) == "/dev/ttyACM0 - 3DM-GX5 [USB VID:PID=199B:3065]"
