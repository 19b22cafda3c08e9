from esp_rom_flasher.const import SLIP_END, SLIP_ESC, SLIP_ESC_END, SLIP_ESC_ESC

_END = bytes([SLIP_END])
_ESC = bytes([SLIP_ESC])


def slip_encode(packet):
    """ Frame a packet, escaping END and ESC bytes inside it """
    return (
        _END
        + bytes(packet).replace(_ESC, _ESC + bytes([SLIP_ESC_ESC]))
        .replace(_END, _ESC + bytes([SLIP_ESC_END]))
        + _END
    )


class SlipDecoder(object):
    """Streaming SLIP decoder.

    Bytes are fed in chunks of any size, full packets are returned as they
    complete. Anything received before the first END byte is line noise and
    is dropped. An escape followed by an unknown byte keeps that byte as-is
    instead of failing.
    """

    def __init__(self, trace_function=None):
        self._trace = trace_function
        self.reset()

    def reset(self):
        self._buffer = bytearray()
        self._started = False
        self._in_escape = False

    @property
    def started(self):
        return self._started

    @property
    def pending(self):
        return bytes(self._buffer)

    def feed(self, data):
        packets = []
        for b in data:
            packet = self.feed_byte(b)
            if packet is not None:
                packets.append(packet)
        return packets

    def feed_byte(self, b):
        if b == SLIP_END:
            if self._started and self._buffer:
                packet = bytes(self._buffer)
                self.reset()
                if self._trace is not None:
                    self._trace("Received full packet (%d bytes)", len(packet))
                return packet
            self._started = True
            self._buffer = bytearray()
            return None

        if not self._started:
            return None

        if self._in_escape:
            self._in_escape = False
            if b == SLIP_ESC_END:
                self._buffer.append(SLIP_END)
            elif b == SLIP_ESC_ESC:
                self._buffer.append(SLIP_ESC)
            else:
                if self._trace is not None:
                    self._trace("Invalid SLIP escape (0xdb, 0x%02x), kept literally", b)
                self._buffer.append(b)
        elif b == SLIP_ESC:
            self._in_escape = True
        else:
            self._buffer.append(b)
        return None


def slip_decode(data):
    """ Decode the first packet in `data`.

    Returns the partial packet if the data ends before the closing END byte,
    b"" if no packet was started.
    """
    decoder = SlipDecoder()
    for b in data:
        packet = decoder.feed_byte(b)
        if packet is not None:
            return packet
    return decoder.pending
