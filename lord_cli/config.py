"""Configuration loader for lord-cli."""

from __future__ import annotations

from configparser import ConfigParser, Error as ConfigParserError
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, TypeVar

from . import constants
from .commands import InvalidConfigurationError, format_channel_table, parse_channel_table
from .core.models import ChannelRate

DEFAULT_CONFIGURE_IMU = [
    ChannelRate(0x06, 50),
    ChannelRate(0x04, 50),
    ChannelRate(0x05, 50),
    ChannelRate(0x0A, 50),
    ChannelRate(0x17, 50),
]

DEFAULT_CONFIGURE_GNSS = [
    ChannelRate(0x09, 5),
    ChannelRate(0x0B, 5),
    ChannelRate(0x03, 5),
    ChannelRate(0x07, 5),
    ChannelRate(0x04, 5),
]

DEFAULT_EKF_FILTER = [ChannelRate(0x01, 50), ChannelRate(0x11, 50)]

DEFAULT_EKF_GNSS = [ChannelRate(0x03, 4), ChannelRate(0x09, 4)]

T = TypeVar("T")


@dataclass(slots=True)
class SerialConfig:
    baudrate: int = constants.DEFAULT_BAUDRATE
    read_timeout_seconds: float = constants.DEFAULT_READ_TIMEOUT_SECONDS


@dataclass(slots=True)
class CommandConfig:
    ack_timeout_seconds: float = constants.DEFAULT_ACK_TIMEOUT_SECONDS


@dataclass(slots=True)
class StreamConfig:
    queue_size: int = constants.DEFAULT_QUEUE_SIZE
    idle_interval_seconds: float = constants.DEFAULT_IDLE_INTERVAL_SECONDS


@dataclass(slots=True)
class LoggingConfig:
    level: str = "WARNING"
    path: Optional[Path] = None
    log_serial: bool = False


@dataclass(slots=True)
class FormatTables:
    configure_imu: List[ChannelRate] = field(default_factory=lambda: list(DEFAULT_CONFIGURE_IMU))
    configure_gnss: List[ChannelRate] = field(default_factory=lambda: list(DEFAULT_CONFIGURE_GNSS))
    ekf_filter: List[ChannelRate] = field(default_factory=lambda: list(DEFAULT_EKF_FILTER))
    ekf_gnss: List[ChannelRate] = field(default_factory=lambda: list(DEFAULT_EKF_GNSS))


@dataclass(slots=True)
class LordConfig:
    serial: SerialConfig
    commands: CommandConfig
    stream: StreamConfig
    logging: LoggingConfig
    formats: FormatTables
    raw: ConfigParser
    path: Path


def _option(read: Callable[..., T], section: str, option: str, fallback: T) -> T:
    try:
        return read(section, option, fallback=fallback)
    except ValueError as exc:
        raise InvalidConfigurationError(f"[{section}] {option}: {exc}") from exc


def load_config(path: Optional[Path] = None) -> LordConfig:
    """Load configuration from disk, applying defaults where necessary.

    Channel tables are written as ``<channel>:<decimation>`` pairs separated
    by commas, e.g. ``imu = 0x06:50, 0x04:50``. An unparsable file, value or
    table raises ``InvalidConfigurationError``.
    """

    config_path = path or constants.DEFAULT_CONFIG_PATH
    parser = ConfigParser()
    parser.read_dict(
        {
            "serial": {
                "baudrate": str(constants.DEFAULT_BAUDRATE),
                "read_timeout_seconds": str(constants.DEFAULT_READ_TIMEOUT_SECONDS),
            },
            "commands": {
                "ack_timeout_seconds": str(constants.DEFAULT_ACK_TIMEOUT_SECONDS),
            },
            "stream": {
                "queue_size": str(constants.DEFAULT_QUEUE_SIZE),
                "idle_interval_seconds": str(constants.DEFAULT_IDLE_INTERVAL_SECONDS),
            },
            "logging": {
                "level": "WARNING",
                "log_serial": "false",
            },
            "configure": {
                "imu": format_channel_table(DEFAULT_CONFIGURE_IMU),
                "gnss": format_channel_table(DEFAULT_CONFIGURE_GNSS),
            },
            "ekf": {
                "filter": format_channel_table(DEFAULT_EKF_FILTER),
                "gnss": format_channel_table(DEFAULT_EKF_GNSS),
            },
        }
    )

    if config_path.exists():
        try:
            parser.read(config_path)
        except ConfigParserError as exc:
            raise InvalidConfigurationError(str(exc)) from exc

    serial_config = SerialConfig(
        baudrate=_option(parser.getint, "serial", "baudrate", constants.DEFAULT_BAUDRATE),
        read_timeout_seconds=max(
            0.0,
            _option(
                parser.getfloat,
                "serial",
                "read_timeout_seconds",
                constants.DEFAULT_READ_TIMEOUT_SECONDS,
            ),
        ),
    )

    commands = CommandConfig(
        ack_timeout_seconds=max(
            0.0,
            _option(
                parser.getfloat,
                "commands",
                "ack_timeout_seconds",
                constants.DEFAULT_ACK_TIMEOUT_SECONDS,
            ),
        ),
    )

    stream = StreamConfig(
        queue_size=max(
            1, _option(parser.getint, "stream", "queue_size", constants.DEFAULT_QUEUE_SIZE)
        ),
        idle_interval_seconds=max(
            0.0,
            _option(
                parser.getfloat,
                "stream",
                "idle_interval_seconds",
                constants.DEFAULT_IDLE_INTERVAL_SECONDS,
            ),
        ),
    )

    log_path_value = parser.get("logging", "path", fallback="").strip()
    logging_config = LoggingConfig(
        level=parser.get("logging", "level", fallback="WARNING"),
        path=Path(log_path_value).expanduser() if log_path_value else None,
        log_serial=_option(parser.getboolean, "logging", "log_serial", False),
    )

    formats = FormatTables(
        configure_imu=parse_channel_table(parser.get("configure", "imu")),
        configure_gnss=parse_channel_table(parser.get("configure", "gnss")),
        ekf_filter=parse_channel_table(parser.get("ekf", "filter")),
        ekf_gnss=parse_channel_table(parser.get("ekf", "gnss")),
    )

    return LordConfig(
        serial=serial_config,
        commands=commands,
        stream=stream,
        logging=logging_config,
        formats=formats,
        raw=parser,
        path=config_path,
    )
