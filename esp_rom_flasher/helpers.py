import os
import sys
import time

import serial.tools.list_ports as list_ports

from esp_rom_flasher.const import TRACE_ENV_VAR, USB_NATIVE_PID, USB_NATIVE_VID


class SerialDevice:
    def __init__(self, path, name="", vid=None, pid=None):
        self.path = path
        self.name = name
        self.vid = vid
        self.pid = pid

    @property
    def is_usb_native(self):
        """ The chip's own USB-JTAG-Serial peripheral, no bridge chip """
        return self.vid == USB_NATIVE_VID and self.pid == USB_NATIVE_PID

    @property
    def display_name(self):
        return self.name or self.path

    def __eq__(self, other):
        if not isinstance(other, SerialDevice):
            return NotImplemented
        return self.path == other.path

    def __hash__(self):
        return hash(self.path)

    def __repr__(self):
        return f"SerialDevice({self.path!r}, {self.name!r})"


def _device_from_port_info(info):
    name = info.product or info.description
    if info.manufacturer and info.product:
        name = f"{info.manufacturer} {info.product}"
    if not name or name == "n/a":
        name = os.path.basename(info.device)
    return SerialDevice(info.device, name, info.vid, info.pid)


def list_serial_devices():
    """ Available serial devices, ESP USB-JTAG-Serial devices first """
    devices = [_device_from_port_info(info) for info in list_ports.comports()]
    return sorted(devices, key=lambda d: (not d.is_usb_native, d.name, d.path))


def find_serial_device(path):
    """ Look up the descriptor for `path`, a bare descriptor if it is not listed """
    real_path = os.path.realpath(path) if path.startswith("/dev/") else path
    for device in list_serial_devices():
        if device.path in (path, real_path):
            return device
    return SerialDevice(path)


def hexify(data):
    return bytes(data).hex()


class HexFormatter(object):
    """ Hex dump of a packet, built only when the tracer prints it.

    Data longer than 16 bytes is split into indented rows with an ASCII
    column, unless auto_split is False.
    """
    def __init__(self, data, auto_split=True):
        self._data = bytes(data)
        self._auto_split = auto_split

    def __str__(self):
        if not self._auto_split or len(self._data) <= 16:
            return hexify(self._data)
        rows = []
        for start in range(0, len(self._data), 16):
            row = self._data[start:start + 16]
            text = "".join(chr(b) if 0x20 <= b < 0x7F else "." for b in row)
            rows.append("\n    %-16s %-16s | %s" % (hexify(row[:8]), hexify(row[8:]), text))
        return "".join(rows)


def trace_enabled_by_default():
    return os.environ.get(TRACE_ENV_VAR, "").strip() not in ("", "0")


class Tracer:
    """ Prints `TRACE +<seconds since last line>` diagnostics when enabled """

    def __init__(self, enabled=False, clock=time.time):
        self.enabled = enabled
        self._clock = clock
        self._last_trace = None

    def __call__(self, message, *format_args):
        if not self.enabled:
            return
        now = self._clock()
        delta = 0.0 if self._last_trace is None else now - self._last_trace
        self._last_trace = now
        print("TRACE +%.3f %s" % (delta, message % format_args))


def div_roundup(a, b):
    """ Return a/b rounded up to nearest integer,
    equivalent result to int(math.ceil(float(int(a)) / float(int(b))), only
    without possible floating point accuracy errors.
    """
    return (int(a) + int(b) - 1) // int(b)


def pad_to(data, alignment, pad_character=b'\xFF'):
    """ Pad to the next alignment boundary """
    pad_mod = len(data) % alignment
    if pad_mod != 0:
        data += pad_character * (alignment - pad_mod)
    return data


def print_overwrite(message, last_line=False):
    """ Print a message, overwriting the currently printed line.

    If last_line is False, don't append a newline at the end (expecting another subsequent call will overwrite this one.)

    After a sequence of calls with last_line=False, call once with last_line=True.

    If output is not a TTY (for example redirected a pipe), no overwriting happens and this function is the same as print().
    """
    if sys.stdout.isatty():
        print("\r%s" % message, end='\n' if last_line else '')
    else:
        print(message)
