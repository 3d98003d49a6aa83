"""Constants used across the lord-cli package."""

from __future__ import annotations

from pathlib import Path

APP_NAME = "lord-cli"
DEFAULT_CONFIG_FILENAME = f"{APP_NAME}.cfg"
DEFAULT_CONFIG_PATH = Path.home() / ".config" / APP_NAME / DEFAULT_CONFIG_FILENAME

DEFAULT_BAUDRATE = 115200
DEFAULT_READ_TIMEOUT_SECONDS = 0.05
DEFAULT_ACK_TIMEOUT_SECONDS = 1.0
ACK_POLL_INTERVAL_SECONDS = 0.05
DEFAULT_QUEUE_SIZE = 1024
DEFAULT_IDLE_INTERVAL_SECONDS = 0.001

# MIP framing
SYNC1 = 0x75
SYNC2 = 0x65
HEADER_SIZE = 4
CHECKSUM_SIZE = 2
FIELD_HEADER_SIZE = 2
MAX_PAYLOAD_SIZE = 0xFF
MAX_FIELD_DATA_SIZE = MAX_PAYLOAD_SIZE - FIELD_HEADER_SIZE

# Command descriptor sets
BASE_COMMAND_SET = 0x01
DEVICE_COMMAND_SET = 0x0C
FILTER_COMMAND_SET = 0x0D

# Data descriptor sets start here; anything below is a command reply
DATA_SET_THRESHOLD = 0x80
IMU_DATA_SET = 0x80
GNSS_DATA_SET = 0x81
FILTER_DATA_SET = 0x82

ACK_FIELD = 0xF1
DEVICE_RESET_FIELD = 0x7E
STREAM_CONTROL_FIELD = 0x11

IMU_BASE_RATE_FIELD = 0x06
GNSS_BASE_RATE_FIELD = 0x07
FILTER_BASE_RATE_FIELD = 0x0B
IMU_BASE_RATE_REPLY = 0x83
GNSS_BASE_RATE_REPLY = 0x84
FILTER_BASE_RATE_REPLY = 0x8A

ACK_ERROR_REASONS = {
    0x01: "unknown command",
    0x02: "invalid checksum",
    0x03: "invalid parameter",
    0x04: "command failed",
    0x05: "command timed out",
}
