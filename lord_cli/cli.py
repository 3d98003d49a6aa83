"""Command-line interface for lord-cli."""

from __future__ import annotations

import argparse
import logging
import sys
import threading
from pathlib import Path
from typing import Callable, Dict, Optional

from . import __version__, constants
from .codec import FrameError, encode_packet
from .commands import (
    CommandBatch,
    DataStream,
    FunctionCode,
    InvalidConfigurationError,
    Subsystem,
)
from .config import LordConfig, load_config
from .core.models import Field, Packet
from .logging import configure_logging
from .session import AckTimeoutError, DeviceNackError, Session, SessionClosedError
from .telemetry import TelemetryCorrelator, format_report, run_stream, stream_arrivals
from .transport import DeviceUnavailableError, list_serial_ports, open_transport

LOGGER = logging.getLogger(__name__)

COMMAND_ERRORS = (
    InvalidConfigurationError,
    DeviceNackError,
    AckTimeoutError,
    FrameError,
    SessionClosedError,
    DeviceUnavailableError,
)

EKF_ENABLE_FIELDS = (
    Field(0x19, bytes([0x01, 0x01])),
    Field(0x19, bytes([0x03, 0x01])),
)

Handler = Callable[[Session, LordConfig, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=constants.APP_NAME,
        description="Tools for interacting with Lord Microstrain IMU",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("port", metavar="PORT", help="The serial port to use")
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=constants.DEFAULT_CONFIG_PATH,
        help=f"Path to configuration file (default: {constants.DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument(
        "--log-level", default=None, help="Override the configured log level"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("test", help="Dump decoded packets as they arrive")
    subparsers.add_parser("configure", help="Apply the IMU and GNSS channel tables")

    read_parser = subparsers.add_parser(
        "read", help="Stream data with inter-arrival timing"
    )
    read_parser.add_argument(
        "--limit", type=int, default=None, help="Stop after this many packets"
    )

    subparsers.add_parser("list", help="List serial devices")

    rate_parser = subparsers.add_parser("rate", help="Get base rates")
    rate_parser.add_argument(
        "--filter", action="store_true", help="Also query the estimation filter base rate"
    )

    subparsers.add_parser("packet", help="Send a hand-built compound packet")
    subparsers.add_parser(
        "ekf", help="Apply the estimation filter channel table and enable its stream"
    )

    return parser


def build_test_packet() -> Packet:
    """Compound packet for manual protocol testing.

    Applies and saves the IMU, GNSS and filter formats, enables and saves
    all three streams, then appends the trailing raw commands.
    """

    return (
        CommandBatch()
        .add_format(
            Subsystem.IMU,
            FunctionCode.APPLY,
            [(0x17, 10), (0x06, 10), (0x04, 10), (0x05, 10), (0x0A, 10)],
        )
        .add_format(
            Subsystem.GNSS,
            FunctionCode.APPLY,
            [(0x09, 1), (0x0B, 1), (0x03, 1), (0x07, 1), (0x05, 1)],
        )
        .add_format(
            Subsystem.FILTER,
            FunctionCode.APPLY,
            [(0x11, 10), (0x01, 10), (0x02, 10), (0x03, 10), (0x10, 10)],
        )
        .add_format(Subsystem.IMU, FunctionCode.SAVE)
        .add_format(Subsystem.GNSS, FunctionCode.SAVE)
        .add_format(Subsystem.FILTER, FunctionCode.SAVE)
        .enable_stream(DataStream.IMU)
        .enable_stream(DataStream.GNSS)
        .enable_stream(DataStream.FILTER)
        .save_stream(DataStream.IMU)
        .save_stream(DataStream.GNSS)
        .save_stream(DataStream.FILTER)
        .add_fields(
            [
                Field(0x0D),
                Field(0x19, bytes([0x02])),
                Field(0x19, bytes([0x03, 0x01])),
            ]
        )
        .build()
    )


def _run_test(session: Session, config: LordConfig, args: argparse.Namespace) -> int:
    run_stream(
        session,
        print,
        stop_event=threading.Event(),
        idle_interval=config.stream.idle_interval_seconds,
    )
    return 0


def _run_read(session: Session, config: LordConfig, args: argparse.Namespace) -> int:
    stream_arrivals(
        session,
        lambda report: print(format_report(report)),
        correlator=TelemetryCorrelator(),
        stop_event=threading.Event(),
        idle_interval=config.stream.idle_interval_seconds,
        limit=args.limit,
    )
    return 0


def _run_rate(session: Session, config: LordConfig, args: argparse.Namespace) -> int:
    print(f"IMU Rate: {session.imu_base_rate()} Hz")
    print(f"GNSS Rate: {session.gnss_base_rate()} Hz")
    if args.filter:
        print(f"Filter Rate: {session.filter_base_rate()} Hz")
    return 0


def _run_configure(session: Session, config: LordConfig, args: argparse.Namespace) -> int:
    session.configure_subsystem_format(
        Subsystem.IMU, FunctionCode.APPLY, config.formats.configure_imu
    )
    print("IMU Configured")

    session.configure_subsystem_format(
        Subsystem.GNSS, FunctionCode.APPLY, config.formats.configure_gnss
    )
    print("GNSS Configured")
    return 0


def _run_packet(session: Session, config: LordConfig, args: argparse.Namespace) -> int:
    packet = build_test_packet()
    print(encode_packet(packet).hex(" ").upper())

    try:
        ack = session.send_raw(packet)
    except (DeviceNackError, AckTimeoutError) as exc:
        print(f"Error: {exc}")
        return 0

    for reply in ack.replies:
        print(f"Sent: {reply}")
    return 0


def _run_ekf(session: Session, config: LordConfig, args: argparse.Namespace) -> int:
    session.configure_subsystem_format(
        Subsystem.FILTER, FunctionCode.APPLY, config.formats.ekf_filter
    )
    session.configure_subsystem_format(
        Subsystem.GNSS, FunctionCode.APPLY, config.formats.ekf_gnss
    )
    session.send_raw(Packet(constants.FILTER_COMMAND_SET, EKF_ENABLE_FIELDS))
    print("EKF Configured")
    return 0


HANDLERS: Dict[str, Handler] = {
    "test": _run_test,
    "read": _run_read,
    "rate": _run_rate,
    "configure": _run_configure,
    "packet": _run_packet,
    "ekf": _run_ekf,
}


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except InvalidConfigurationError as exc:
        print(f"Invalid configuration in {args.config}: {exc}", file=sys.stderr)
        return 1

    configure_logging(
        args.log_level or config.logging.level,
        log_path=config.logging.path,
        log_serial=config.logging.log_serial,
    )

    if args.command == "list":
        for port in list_serial_ports():
            print(port)
        return 0

    handler = HANDLERS[args.command]

    try:
        transport = open_transport(
            args.port,
            config.serial.baudrate,
            timeout=config.serial.read_timeout_seconds,
        )
    except DeviceUnavailableError as exc:
        print(f"Failed to open. Error: {exc}", file=sys.stderr)
        return 1

    session = Session.open(
        transport,
        ack_timeout=config.commands.ack_timeout_seconds,
        queue_size=config.stream.queue_size,
    )
    try:
        return handler(session, config, args)
    except COMMAND_ERRORS as exc:
        LOGGER.error("%s failed: %s", args.command, exc)
        return 1
    except KeyboardInterrupt:
        return 0
    finally:
        session.close()


if __name__ == "__main__":
    sys.exit(main())
