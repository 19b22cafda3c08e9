"""Fakes shared by the test modules: a clock and a simulated ROM bootloader."""

import struct

import pytest

from esp_rom_flasher.common import ConnectionFailed, PortDisconnected
from esp_rom_flasher.const import (
    ESP_READ_REG,
    ESP_SYNC,
    ESP_WRITE_REG,
    READ_CHUNK_SIZE,
)
from esp_rom_flasher.slip import SlipDecoder, slip_encode


class FakeClock:
    """Monotonic clock that only moves when something sleeps or reads."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def response_frame(op, value=0, status=0, error=0):
    packet = struct.pack("<BBHI", 1, op, 4, value) + bytes([status, error, 0, 0])
    return slip_encode(packet)


class FakeRom:
    """Serial transport connected to a simulated ESP32 ROM bootloader.

    Every decoded request is recorded in `packets` and, split up, in
    `commands` as (op, payload). Replies are queued when the request is
    written and handed out by read(). A read with nothing queued advances
    the clock by its timeout.
    """

    def __init__(self, clock):
        self.clock = clock
        self.commands = []
        self.packets = []
        self.lines = []
        self.bauds = []
        self.opens = []
        self.closes = 0
        self.is_open = False
        # ops that never get a reply
        self.silent = set()
        # op -> (status, error)
        self.failures = {}
        self.registers = {}
        self.reg_writes = []
        # 1-based open counts during which every write fails
        self.disconnected_sessions = set()
        # opens after the first one that fail
        self.reopen_failures = 0
        self.boot_log = b""
        self.sync_replies = 8
        self.on_command = None
        self._incoming = bytearray()
        self._decoder = SlipDecoder()

    def ops(self):
        return [op for op, _ in self.commands]

    def payloads(self, op):
        return [payload for command, payload in self.commands if command == op]

    def open(self, path, baud=115200):
        if self.opens and self.reopen_failures:
            self.reopen_failures -= 1
            raise ConnectionFailed(f"Cannot open port {path}: busy")
        self.opens.append(path)
        self.is_open = True
        self._incoming = bytearray(self.boot_log)
        self._decoder.reset()

    def close(self):
        if self.is_open:
            self.closes += 1
        self.is_open = False

    def _check_open(self):
        if not self.is_open:
            raise PortDisconnected("closed")

    def set_baud_rate(self, baud):
        self._check_open()
        self.bauds.append(baud)

    def set_dtr(self, state):
        self._check_open()
        self.lines.append(("dtr", state))

    def set_rts(self, state):
        self._check_open()
        self.lines.append(("rts", state))

    def set_both(self, dtr, rts):
        self._check_open()
        self.lines.append(("both", (dtr, rts)))

    def flush(self):
        self._check_open()
        self._incoming.clear()

    def write(self, data):
        self._check_open()
        if len(self.opens) in self.disconnected_sessions:
            raise PortDisconnected("device re-enumerated")
        for packet in self._decoder.feed(data):
            op = packet[1]
            payload = packet[8:]
            self.packets.append(packet)
            self.commands.append((op, payload))
            if self.on_command is not None:
                self.on_command(op, payload)
            self._reply(op, payload)

    def _reply(self, op, payload):
        if op in self.silent:
            return
        status, error = self.failures.get(op, (0, 0))
        value = 0
        if op == ESP_READ_REG:
            value = self.registers.get(struct.unpack("<I", payload[:4])[0], 0)
        elif op == ESP_WRITE_REG:
            addr, reg_value = struct.unpack("<II", payload[:8])
            self.reg_writes.append((addr, reg_value))
            self.registers[addr] = reg_value
        count = self.sync_replies if op == ESP_SYNC else 1
        for _ in range(count):
            self._incoming += response_frame(op, value, status, error)

    def read(self, timeout):
        self._check_open()
        if self._incoming:
            data = bytes(self._incoming[:READ_CHUNK_SIZE])
            del self._incoming[:READ_CHUNK_SIZE]
            return data
        self.clock.now += timeout
        return b""


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def rom(clock):
    return FakeRom(clock)
