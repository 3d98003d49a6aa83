"""Command and telemetry tools for Lord Microstrain inertial sensors."""

__version__ = "0.1.0"
