import contextlib
import time

import serial

from esp_rom_flasher.common import ConnectionFailed, FlasherError, PortDisconnected
from esp_rom_flasher.const import ESP_ROM_BAUD, READ_CHUNK_SIZE, WRITE_RETRY_DELAY
from esp_rom_flasher.helpers import HexFormatter, Tracer


class SerialTransport(object):
    """ Exclusive raw 8N1 connection to one serial device.

    Only one instance (in this or any other process) can hold a device at a
    time. There is no flow control. Opening leaves DTR and RTS released,
    after that they only change through set_dtr(), set_rts() and
    set_both().
    """

    def __init__(self, trace_function=None):
        self._port = None
        self.path = None
        self._trace = trace_function if trace_function is not None else Tracer()

    @property
    def is_open(self):
        return self._port is not None and self._port.is_open

    @property
    def baudrate(self):
        return self._port.baudrate if self._port is not None else None

    def open(self, path, baud=ESP_ROM_BAUD):
        if self.is_open:
            raise FlasherError(f"{self.path} is already open")
        port = serial.Serial()
        port.port = path
        port.baudrate = baud
        port.bytesize = serial.EIGHTBITS
        port.parity = serial.PARITY_NONE
        port.stopbits = serial.STOPBITS_ONE
        port.xonxoff = False
        port.rtscts = False
        port.dsrdtr = False
        # pyserial applies these on open; released is the chip's run state
        port.dtr = False
        port.rts = False
        port.exclusive = True
        port.timeout = 0
        port.write_timeout = 0
        try:
            port.open()
            port.reset_input_buffer()
            port.reset_output_buffer()
        except (serial.SerialException, OSError, ValueError) as err:
            if port.is_open:
                port.close()
            raise ConnectionFailed(f"Cannot open port {path}: {err}") from err
        self._port = port
        self.path = path
        self._trace("Opened %s at %d baud", path, baud)

    def close(self):
        if self._port is None:
            return
        port, self._port = self._port, None
        try:
            # closing the descriptor drops the exclusive lock with it
            port.close()
        except (serial.SerialException, OSError) as err:
            self._trace("Error while closing %s: %s", self.path, err)
        self._trace("Closed %s", self.path)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, tb):
        self.close()

    @contextlib.contextmanager
    def _serial_errors(self, operation):
        if not self.is_open:
            raise PortDisconnected(f"{operation} on a closed port")
        try:
            yield
        except serial.SerialException as err:
            raise PortDisconnected(f"{operation} failed: {err}") from err
        except OSError as err:
            raise PortDisconnected(f"{operation} failed: {err}") from err

    def set_baud_rate(self, baud):
        with self._serial_errors("set baud rate"):
            try:
                self._port.baudrate = baud
            except (ValueError, serial.SerialException) as err:
                raise FlasherError(
                    f"Failed to set baud rate {baud}. The driver may not support this rate."
                ) from err
            # bytes framed at the old rate are garbage now
            self._port.reset_input_buffer()
            self._port.reset_output_buffer()
        self._trace("Baud rate set to %d", baud)

    def write(self, data):
        self._trace("Write %d bytes: %s", len(data), HexFormatter(data))
        view = memoryview(bytes(data))
        written = 0
        with self._serial_errors("write"):
            while written < len(view):
                n = self._port.write(view[written:])
                if not n:
                    time.sleep(WRITE_RETRY_DELAY)
                    continue
                written += n

    def read(self, timeout):
        """ Return up to READ_CHUNK_SIZE bytes, b"" if nothing arrived in time """
        with self._serial_errors("read"):
            if self._port.timeout != timeout:
                self._port.timeout = timeout
            waiting = self._port.in_waiting
            data = self._port.read(min(waiting, READ_CHUNK_SIZE) if waiting else 1)
            if data and not waiting:
                more = min(self._port.in_waiting, READ_CHUNK_SIZE - len(data))
                if more > 0:
                    data += self._port.read(more)
        if data:
            self._trace("Read %d bytes: %s", len(data), HexFormatter(data))
        return data

    def flush(self):
        with self._serial_errors("flush"):
            self._port.reset_input_buffer()
            self._port.reset_output_buffer()

    def set_dtr(self, state):
        with self._serial_errors("set DTR"):
            self._port.dtr = state

    def set_rts(self, state):
        with self._serial_errors("set RTS"):
            self._port.rts = state

    def set_both(self, dtr, rts):
        self.set_dtr(dtr)
        self.set_rts(rts)
