"""Tests for the serial transport, mostly with pyserial replaced by a stand-in."""

import os

import pytest
import serial

from esp_rom_flasher.common import ConnectionFailed, FlasherError, PortDisconnected
from esp_rom_flasher.serial_link import SerialTransport


class FakeSerial:
    instances = []

    def __init__(self):
        self.port = None
        self.baudrate = None
        self.timeout = None
        self.is_open = False
        self.line_changes = []
        self.flow_control_on_open = None
        self.lines_on_open = None
        self.written = b""
        self.write_limit = None
        self.rx = bytearray()
        self.resets = 0
        self.open_error = None
        self.io_error = None
        self._dtr = None
        self._rts = None
        FakeSerial.instances.append(self)

    @property
    def dtr(self):
        return self._dtr

    @dtr.setter
    def dtr(self, state):
        self.line_changes.append(("dtr", state))
        self._dtr = state

    @property
    def rts(self):
        return self._rts

    @rts.setter
    def rts(self, state):
        self.line_changes.append(("rts", state))
        self._rts = state

    def open(self):
        if self.open_error is not None:
            raise self.open_error
        self.flow_control_on_open = (self.rtscts, self.dsrdtr)
        self.lines_on_open = (self._dtr, self._rts)
        # only changes made on the open port reach the device
        self.line_changes = []
        self.is_open = True

    def close(self):
        self.is_open = False

    def reset_input_buffer(self):
        self.resets += 1
        self.rx.clear()

    def reset_output_buffer(self):
        pass

    @property
    def in_waiting(self):
        if self.io_error is not None:
            raise self.io_error
        return len(self.rx)

    def read(self, size):
        data = bytes(self.rx[:size])
        del self.rx[:size]
        return data

    def write(self, data):
        if self.io_error is not None:
            raise self.io_error
        data = bytes(data)
        if self.write_limit is not None:
            data = data[:self.write_limit]
            # the next call writes nothing, as a full driver buffer would
            self.write_limit = 0 if self.write_limit else None
        self.written += data
        return len(data)


@pytest.fixture
def fake_serial(monkeypatch):
    FakeSerial.instances = []
    monkeypatch.setattr(serial, "Serial", FakeSerial)
    monkeypatch.setattr("esp_rom_flasher.serial_link.time.sleep", lambda s: None)
    return FakeSerial.instances


@pytest.fixture
def transport(fake_serial):
    transport = SerialTransport()
    transport.open("/dev/ttyUSB0")
    yield transport
    transport.close()


class TestOpen:
    def test_settings(self, transport, fake_serial):
        port = fake_serial[0]
        assert port.port == "/dev/ttyUSB0"
        assert port.baudrate == 115200
        assert port.bytesize == serial.EIGHTBITS
        assert port.parity == serial.PARITY_NONE
        assert port.stopbits == serial.STOPBITS_ONE
        assert port.exclusive is True
        assert transport.is_open
        assert transport.baudrate == 115200

    def test_no_flow_control(self, transport, fake_serial):
        port = fake_serial[0]
        assert port.flow_control_on_open == (False, False)
        assert (port.rtscts, port.dsrdtr, port.xonxoff) == (False, False, False)

    def test_lines_released_on_open(self, transport, fake_serial):
        port = fake_serial[0]
        assert port.lines_on_open == (False, False)
        assert port.line_changes == []

    def test_open_failure(self, fake_serial, monkeypatch):
        class BusySerial(FakeSerial):
            def open(self):
                raise serial.SerialException("[Errno 11] Could not exclusively lock port")

        monkeypatch.setattr(serial, "Serial", BusySerial)
        transport = SerialTransport()
        with pytest.raises(ConnectionFailed) as excinfo:
            transport.open("/dev/ttyUSB0")
        assert "Could not exclusively lock port" in str(excinfo.value)
        assert not transport.is_open

    def test_double_open(self, transport):
        with pytest.raises(FlasherError):
            transport.open("/dev/ttyUSB0")

    def test_close_is_idempotent(self, transport, fake_serial):
        transport.close()
        transport.close()
        assert not transport.is_open
        assert not fake_serial[0].is_open

    def test_context_manager(self, fake_serial):
        with SerialTransport() as transport:
            transport.open("/dev/ttyUSB0")
        assert not fake_serial[0].is_open


class TestIO:
    def test_write_retries_partial_writes(self, transport, fake_serial):
        fake_serial[0].write_limit = 3
        transport.write(b"\xC0\x00\x08\x24\xC0")
        assert fake_serial[0].written == b"\xC0\x00\x08\x24\xC0"

    def test_read(self, transport, fake_serial):
        fake_serial[0].rx += b"\xC0\x01\x08"
        assert transport.read(0.1) == b"\xC0\x01\x08"
        assert fake_serial[0].timeout == 0.1

    def test_read_nothing(self, transport):
        assert transport.read(0.1) == b""

    def test_read_is_capped(self, transport, fake_serial):
        fake_serial[0].rx += b"\x55" * 5000
        assert len(transport.read(0.1)) == 4096
        assert len(transport.read(0.1)) == 5000 - 4096

    def test_io_error_is_disconnect(self, transport, fake_serial):
        fake_serial[0].io_error = OSError(5, "Input/output error")
        with pytest.raises(PortDisconnected):
            transport.read(0.1)
        with pytest.raises(PortDisconnected):
            transport.write(b"\x00")

    def test_closed_port(self, transport):
        transport.close()
        with pytest.raises(PortDisconnected):
            transport.read(0.1)
        with pytest.raises(PortDisconnected):
            transport.set_dtr(True)

    def test_baud_rate_change_flushes(self, transport, fake_serial):
        fake_serial[0].rx += b"garbage"
        transport.set_baud_rate(921600)
        assert transport.baudrate == 921600
        assert transport.read(0) == b""

    def test_lines(self, transport, fake_serial):
        transport.set_both(True, False)
        transport.set_rts(True)
        assert fake_serial[0].line_changes == [("dtr", True), ("rts", False), ("rts", True)]


@pytest.mark.skipif(not hasattr(os, "openpty"), reason="needs a pseudo terminal")
def test_pty_session_without_flow_control():
    controller, device = os.openpty()
    try:
        with SerialTransport() as transport:
            transport.open(os.ttyname(device))
            port = transport._port
            assert not port.rtscts
            assert not port.dsrdtr
            assert not port.xonxoff
            transport.write(b"\xC0\x00\x08\xC0")
            assert os.read(controller, 4) == b"\xC0\x00\x08\xC0"
    finally:
        os.close(controller)
        os.close(device)
