"""Tests for the command-line entry point."""

from pathlib import Path

import pytest

from lord_cli import cli
from lord_cli.codec import encode_packet
from lord_cli.core.models import Field, Packet
from lord_cli.transport import DeviceUnavailableError

from .conftest import FakeTransport, UnpluggedTransport, ack_all


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch):
    monkeypatch.setattr(cli, "configure_logging", lambda *args, **kwargs: None)


@pytest.fixture
def config_path(tmp_path: Path) -> Path:
    path = tmp_path / "lord-cli.cfg"
    path.write_text("[commands]\nack_timeout_seconds = 0.2\n", encoding="utf-8")
    return path


def _install(monkeypatch, transport: FakeTransport) -> list:
    opened = []

    def fake_open(port, baudrate, *, timeout):
        opened.append((port, baudrate))
        return transport

    monkeypatch.setattr(cli, "open_transport", fake_open)
    return opened


def test_parser_requires_port_and_subcommand() -> None:
    parser = cli.build_parser()

    with pytest.raises(SystemExit):
        parser.parse_args([])
    with pytest.raises(SystemExit):
        parser.parse_args(["/dev/ttyACM0"])

    args = parser.parse_args(["/dev/ttyACM0", "read", "--limit", "5"])
    assert args.port == "/dev/ttyACM0"
    assert args.command == "read"
    assert args.limit == 5


def test_open_failure_reports_and_attempts_nothing(monkeypatch, config_path, capsys) -> None:
    def failing_open(port, baudrate, *, timeout):
        raise DeviceUnavailableError(f"Failed to open {port}: no such device")

    def unexpected(*args, **kwargs):
        raise AssertionError("session must not be opened")

    monkeypatch.setattr(cli, "open_transport", failing_open)
    monkeypatch.setattr(cli.Session, "open", unexpected)

    assert cli.main(["/dev/missing", "-c", str(config_path), "configure"]) == 1
    assert "Failed to open" in capsys.readouterr().err


def test_configure_applies_imu_then_gnss(monkeypatch, config_path, capsys) -> None:
    transport = FakeTransport(responder=ack_all)
    opened = _install(monkeypatch, transport)

    assert cli.main(["/dev/ttyACM0", "-c", str(config_path), "configure"]) == 0

    assert opened == [("/dev/ttyACM0", 115200)]
    assert [packet.fields[0].descriptor for packet in transport.sent_packets] == [0x08, 0x09]
    assert transport.sent_packets[0].fields[0].data[:2] == bytes([0x01, 0x05])
    assert transport.closed is True
    out = capsys.readouterr().out
    assert "IMU Configured" in out
    assert "GNSS Configured" in out


def test_configure_nack_exits_non_zero(monkeypatch, config_path) -> None:
    transport = FakeTransport(responder=lambda packet: ack_all(packet, code=0x04))
    _install(monkeypatch, transport)

    assert cli.main(["/dev/ttyACM0", "-c", str(config_path), "configure"]) == 1
    assert len(transport.sent_packets) == 1
    assert transport.closed is True


def test_rate_prints_base_rates(monkeypatch, config_path, capsys) -> None:
    replies = {0x06: 0x83, 0x07: 0x84}

    def responder(packet: Packet):
        query = packet.fields[0].descriptor
        return ack_all(packet, extra=(Field(replies[query], (100 * query).to_bytes(2, "big")),))

    _install(monkeypatch, FakeTransport(responder=responder))

    assert cli.main(["/dev/ttyACM0", "-c", str(config_path), "rate"]) == 0
    out = capsys.readouterr().out
    assert "IMU Rate: 600 Hz" in out
    assert "GNSS Rate: 700 Hz" in out


def test_ekf_configures_filter_and_enables_stream(monkeypatch, config_path, capsys) -> None:
    transport = FakeTransport(responder=ack_all)
    _install(monkeypatch, transport)

    assert cli.main(["/dev/ttyACM0", "-c", str(config_path), "ekf"]) == 0

    sent = transport.sent_packets
    assert [packet.descriptor for packet in sent] == [0x0C, 0x0C, 0x0D]
    assert sent[0].fields[0].data == bytes([0x01, 0x02, 0x01, 0x00, 0x32, 0x11, 0x00, 0x32])
    assert sent[1].fields[0].data == bytes([0x01, 0x02, 0x03, 0x00, 0x04, 0x09, 0x00, 0x04])
    assert sent[2].fields == cli.EKF_ENABLE_FIELDS
    assert "EKF Configured" in capsys.readouterr().out


def test_packet_prints_error_without_failing(monkeypatch, config_path, capsys) -> None:
    transport = FakeTransport(responder=lambda packet: ack_all(packet, code=0x01))
    _install(monkeypatch, transport)

    assert cli.main(["/dev/ttyACM0", "-c", str(config_path), "packet"]) == 0

    out = capsys.readouterr().out
    assert encode_packet(cli.build_test_packet()).hex(" ").upper() in out
    assert "Error:" in out
    assert transport.sent_packets == [cli.build_test_packet()]


def test_build_test_packet_layout() -> None:
    packet = cli.build_test_packet()

    assert packet.descriptor == 0x0C
    assert [item.descriptor for item in packet.fields] == [
        0x08, 0x09, 0x0A,
        0x08, 0x09, 0x0A,
        0x11, 0x11, 0x11,
        0x11, 0x11, 0x11,
        0x0D, 0x19, 0x19,
    ]
    assert packet.fields[0].data == bytes(
        [0x01, 0x05, 0x17, 0x00, 0x0A, 0x06, 0x00, 0x0A, 0x04, 0x00, 0x0A,
         0x05, 0x00, 0x0A, 0x0A, 0x00, 0x0A]
    )
    assert packet.fields[3].data == bytes([0x03])


def test_read_prints_inter_arrival_timing(monkeypatch, config_path, capsys) -> None:
    transport = FakeTransport()
    for _ in range(2):
        transport.inject_packet(Packet(0x80, (Field(0x04, b"\xAA"),)))
    _install(monkeypatch, transport)

    assert cli.main(["/dev/ttyACM0", "-c", str(config_path), "read", "--limit", "2"]) == 0

    lines = capsys.readouterr().out.splitlines()
    assert lines[0] == "00ms 0x80 0x04: [AA]"
    assert lines[1].endswith("ms 0x80 0x04: [AA]")


def test_list_does_not_open_port(monkeypatch, config_path, capsys) -> None:
    monkeypatch.setattr(cli, "list_serial_ports", lambda: ["/dev/ttyACM0 - 3DM-GX5 [USB]"])
    monkeypatch.setattr(
        cli, "open_transport", lambda *args, **kwargs: pytest.fail("port opened")
    )

    assert cli.main(["/dev/ttyACM0", "-c", str(config_path), "list"]) == 0
    assert "3DM-GX5" in capsys.readouterr().out


def test_invalid_config_table_exits_non_zero(tmp_path: Path, capsys) -> None:
    path = tmp_path / "lord-cli.cfg"
    path.write_text("[configure]\nimu = 0x06:0\n", encoding="utf-8")

    assert cli.main(["/dev/ttyACM0", "-c", str(path), "configure"]) == 1
    assert "Invalid configuration" in capsys.readouterr().err


def test_read_exits_non_zero_when_link_is_lost(monkeypatch, config_path) -> None:
    transport = UnpluggedTransport()
    _install(monkeypatch, transport)

    assert cli.main(["/dev/ttyACM0", "-c", str(config_path), "read"]) == 1
    assert transport.closed is True


def test_malformed_config_value_exits_non_zero(tmp_path: Path, capsys) -> None:
    path = tmp_path / "lord-cli.cfg"
    path.write_text("[commands]\nack_timeout_seconds = soon\n", encoding="utf-8")

    assert cli.main(["/dev/ttyACM0", "-c", str(path), "configure"]) == 1
    assert "ack_timeout_seconds" in capsys.readouterr().err


def test_unknown_subcommand_is_rejected_by_the_parser(monkeypatch) -> None:
    monkeypatch.setattr(cli, "open_transport", lambda *args, **kwargs: pytest.fail("port opened"))

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["/dev/ttyACM0", "calibrate"])

    assert excinfo.value.code == 2
    assert set(cli.HANDLERS) == {"test", "configure", "read", "rate", "packet", "ekf"}
