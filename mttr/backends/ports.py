"""Serial port enumeration for USB bus adapters."""

from __future__ import annotations

import fnmatch
import logging
import sys

from serial.tools.list_ports import comports

LOGGER = logging.getLogger(__name__)

_PORT_PATTERNS = {
    "darwin": (
        "/dev/tty.usbserial*",
        "/dev/cu.usbserial*",
        "/dev/tty.usbmodem*",
        "/dev/cu.usbmodem*",
    ),
    "linux": ("/dev/ttyUSB*", "/dev/ttyACM*"),
}


def _patterns_for(platform: str) -> tuple[str, ...] | None:
    for prefix, patterns in _PORT_PATTERNS.items():
        if platform.startswith(prefix):
            return patterns
    return None


def list_serial_ports(platform: str | None = None) -> list[str]:
    """Return sorted, de-duplicated USB serial device paths.

    On Linux and macOS only USB adapter nodes are listed; elsewhere every port
    pyserial reports (e.g. ``COM3``) is returned.
    """
    patterns = _patterns_for(platform or sys.platform)
    devices = {port.device for port in comports()}
    if patterns is not None:
        devices = {d for d in devices if any(fnmatch.fnmatch(d, p) for p in patterns)}
    ports = sorted(devices)
    LOGGER.debug("Detected serial ports: %s", ports)
    return ports
