import struct

from esp_rom_flasher.common import describe_status
from esp_rom_flasher.const import (
    DIRECTION_REQUEST,
    DIRECTION_RESPONSE,
    ESP_CHANGE_BAUDRATE,
    ESP_CHECKSUM_MAGIC,
    ESP_FLASH_BEGIN,
    ESP_FLASH_DATA,
    ESP_FLASH_END,
    ESP_READ_REG,
    ESP_SPI_ATTACH,
    ESP_SYNC,
    ESP_WRITE_REG,
    SYNC_PAYLOAD,
)

HEADER = struct.Struct("<BBHI")


def checksum(data, state=ESP_CHECKSUM_MAGIC):
    """ Calculate checksum of a blob, as it is defined by the ROM """
    for b in data:
        state ^= b
    return state & 0xFF


def build_command(op, data=b"", chk=0):
    """ Build an unframed request packet """
    return HEADER.pack(DIRECTION_REQUEST, op, len(data), chk) + data


def build_sync_command():
    return build_command(ESP_SYNC, SYNC_PAYLOAD)


def build_spi_attach_command(config=0):
    # second word is reserved
    return build_command(ESP_SPI_ATTACH, struct.pack("<II", config, 0))


def build_flash_begin_command(size, num_blocks, block_size, offset, encrypted=False):
    # the ROM loader rejects the packet without the fifth (encryption) word
    params = struct.pack(
        "<IIIII", size, num_blocks, block_size, offset, 1 if encrypted else 0
    )
    return build_command(ESP_FLASH_BEGIN, params)


def build_flash_data_command(data, seq):
    data = bytes(data)
    return build_command(
        ESP_FLASH_DATA,
        struct.pack("<IIII", len(data), seq, 0, 0) + data,
        checksum(data),
    )


def build_flash_end_command(reboot=True):
    return build_command(ESP_FLASH_END, struct.pack("<I", int(not reboot)))


def build_change_baud_command(new_baud, old_baud=0):
    return build_command(ESP_CHANGE_BAUDRATE, struct.pack("<II", new_baud, old_baud))


def build_read_reg_command(addr):
    return build_command(ESP_READ_REG, struct.pack("<I", addr))


def build_write_reg_command(addr, value, mask=0xFFFFFFFF, delay_us=0):
    return build_command(ESP_WRITE_REG, struct.pack("<IIII", addr, value, mask, delay_us))


class Response(object):
    """ A reply from the ROM bootloader.

    The status and error bytes are the first two bytes of the data, not
    the last ones.
    """

    def __init__(self, direction, command, size, value, data):
        self.direction = direction
        self.command = command
        self.size = size
        self.value = value
        self.data = data
        self.status = data[0] if len(data) >= 1 else 0
        self.error = data[1] if len(data) >= 2 else 0

    @property
    def is_success(self):
        return self.status == 0 and self.error == 0

    def describe(self):
        return describe_status(self.status, self.error)

    def __repr__(self):
        return "Response(command=0x%02x, value=0x%08x, status=%d, error=%d)" % (
            self.command, self.value, self.status, self.error)


def parse_response(packet):
    """ Parse a decoded packet, None if it is not a response """
    if len(packet) < HEADER.size:
        return None
    direction, op, size, value = HEADER.unpack_from(packet)
    if direction != DIRECTION_RESPONSE:
        return None
    end = min(HEADER.size + size, len(packet))
    return Response(direction, op, size, value, bytes(packet[HEADER.size:end]))
