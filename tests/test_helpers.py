"""Tests for device discovery and trace helpers."""

from types import SimpleNamespace

import pytest

from esp_rom_flasher import helpers
from esp_rom_flasher.helpers import (
    HexFormatter,
    SerialDevice,
    Tracer,
    div_roundup,
    find_serial_device,
    list_serial_devices,
    pad_to,
    trace_enabled_by_default,
)


def port_info(device, vid=None, pid=None, product=None, manufacturer=None, description="n/a"):
    return SimpleNamespace(
        device=device, vid=vid, pid=pid, product=product,
        manufacturer=manufacturer, description=description,
    )


@pytest.fixture
def ports(monkeypatch):
    infos = [
        port_info("/dev/ttyUSB0", 0x10C4, 0xEA60, "CP2102 USB to UART Bridge Controller", "Silicon Labs"),
        port_info("/dev/ttyS0"),
        port_info("/dev/ttyACM0", 0x303A, 0x1001, "USB JTAG/serial debug unit", "Espressif"),
    ]
    monkeypatch.setattr(helpers.list_ports, "comports", lambda: infos)
    return infos


class TestDeviceDirectory:
    def test_usb_native_listed_first(self, ports):
        devices = list_serial_devices()
        assert devices[0].path == "/dev/ttyACM0"
        assert devices[0].is_usb_native
        assert devices[0].name == "Espressif USB JTAG/serial debug unit"
        assert {d.path for d in devices[1:]} == {"/dev/ttyUSB0", "/dev/ttyS0"}

    def test_fallback_name(self, ports):
        (device,) = [d for d in list_serial_devices() if d.path == "/dev/ttyS0"]
        assert device.name == "ttyS0"
        assert not device.is_usb_native

    def test_find_listed_device(self, ports):
        device = find_serial_device("/dev/ttyACM0")
        assert device.vid == 0x303A
        assert device.is_usb_native

    def test_find_unlisted_device(self, ports):
        device = find_serial_device("/dev/ttyUSB9")
        assert device == SerialDevice("/dev/ttyUSB9")
        assert device.vid is None
        assert device.display_name == "/dev/ttyUSB9"


class TestTrace:
    def test_disabled_tracer_prints_nothing(self, capsys):
        Tracer()("hello %s", "world")
        assert capsys.readouterr().out == ""

    def test_enabled_tracer(self, capsys):
        times = iter([10.0, 10.25])
        trace = Tracer(True, clock=lambda: next(times))
        trace("first")
        trace("second %d", 2)
        assert capsys.readouterr().out.splitlines() == [
            "TRACE +0.000 first",
            "TRACE +0.250 second 2",
        ]

    def test_env_var(self, monkeypatch):
        monkeypatch.setenv("ESP_ROM_FLASHER_TRACE", "1")
        assert trace_enabled_by_default()
        monkeypatch.setenv("ESP_ROM_FLASHER_TRACE", "0")
        assert not trace_enabled_by_default()
        monkeypatch.delenv("ESP_ROM_FLASHER_TRACE")
        assert not trace_enabled_by_default()

    def test_hex_formatter(self):
        assert str(HexFormatter(b"\xC0\x01")) == "c001"
        lines = str(HexFormatter(b"ABCDEFGHIJKLMNOPQ")).splitlines()
        assert lines[1].strip().endswith("| ABCDEFGHIJKLMNOP")
        assert lines[2].strip().endswith("| Q")

    def test_hex_formatter_masks_unprintable_bytes(self):
        lines = str(HexFormatter(b"\x00A\xC0 " * 5)).splitlines()
        assert lines[1] == "    0041c0200041c020 0041c0200041c020 | .A. .A. .A. .A. "
        assert str(HexFormatter(b"\x00" * 32, auto_split=False)) == "00" * 32


def test_div_roundup():
    assert div_roundup(1500, 1024) == 2
    assert div_roundup(1024, 1024) == 1
    assert div_roundup(8, 1024) == 1


def test_pad_to():
    assert pad_to(b"\x01", 4) == b"\x01\xFF\xFF\xFF"
    assert pad_to(b"\x01\x02\x03\x04", 4) == b"\x01\x02\x03\x04"
