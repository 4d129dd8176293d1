from __future__ import annotations

from types import SimpleNamespace

from mttr.backends import ports

DETECTED = [
    "/dev/ttyS0",
    "/dev/ttyUSB1",
    "/dev/ttyACM0",
    "/dev/ttyUSB0",
    "/dev/cu.usbserial-A1",
    "/dev/tty.usbmodem14101",
    "/dev/cu.Bluetooth-Incoming-Port",
    "COM3",
]


def _fake_comports():
    return [SimpleNamespace(device=device) for device in DETECTED + ["/dev/ttyUSB0"]]


def test_linux_lists_usb_adapters_only(monkeypatch):
    monkeypatch.setattr(ports, "comports", _fake_comports)
    assert ports.list_serial_ports("linux") == ["/dev/ttyACM0", "/dev/ttyUSB0", "/dev/ttyUSB1"]


def test_macos_lists_usbserial_and_usbmodem(monkeypatch):
    monkeypatch.setattr(ports, "comports", _fake_comports)
    assert ports.list_serial_ports("darwin") == ["/dev/cu.usbserial-A1", "/dev/tty.usbmodem14101"]


def test_other_platforms_list_everything(monkeypatch):
    monkeypatch.setattr(ports, "comports", _fake_comports)
    assert ports.list_serial_ports("win32") == sorted(DETECTED)
