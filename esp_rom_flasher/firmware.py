import os
import struct

from esp_rom_flasher.common import InvalidFirmware
from esp_rom_flasher.const import (
    BUILD_DIRECTORY_FILES,
    ESP_IMAGE_MAGIC,
    MERGED_BINARY_HINTS,
    MIN_IMAGE_SIZE,
    OFFSET_APPLICATION,
    OFFSET_BOOTLOADER,
    OFFSET_NAMES,
    OFFSET_PARTITIONS,
)

FLASH_MODES = {0: "qio", 1: "qout", 2: "dio", 3: "dout"}
FLASH_FREQUENCIES = {0: "40m", 1: "26m", 2: "20m", 0xF: "80m"}
FLASH_SIZES = {0: "1MB", 1: "2MB", 2: "4MB", 3: "8MB", 4: "16MB", 5: "32MB", 6: "64MB", 7: "128MB"}


def format_size(num_bytes):
    if num_bytes < 1024:
        return f"{num_bytes} B"
    if num_bytes < 1024 * 1024:
        return f"{num_bytes / 1024:.1f} KB"
    return f"{num_bytes / (1024 * 1024):.2f} MB"


class FirmwareImage:
    __slots__ = ("_data", "_source", "_offset")

    def __init__(self, data, source, offset):
        if not 0 <= offset <= 0xFFFFFFFF:
            raise InvalidFirmware(f"flash offset 0x{offset:x} does not fit in 32 bits")
        self._data = bytes(data)
        self._source = source
        self._offset = offset

    @property
    def data(self):
        return self._data

    @property
    def source(self):
        return self._source

    @property
    def offset(self):
        return self._offset

    @property
    def size(self):
        return len(self._data)

    @property
    def file_name(self):
        return os.path.basename(self._source)

    @property
    def is_valid(self):
        return len(self._data) >= MIN_IMAGE_SIZE and self._data[0] == ESP_IMAGE_MAGIC

    def header_info(self):
        """ Flash mode, frequency and size stored in the image header, None if not an image """
        if not self.is_valid:
            return None
        _, _, flash_mode_raw, flash_size_freq = struct.unpack("BBBB", self._data[:4])
        return {
            "flash_mode": FLASH_MODES.get(flash_mode_raw),
            "flash_freq": FLASH_FREQUENCIES.get(flash_size_freq & 0x0F),
            "flash_size": FLASH_SIZES.get(flash_size_freq >> 4),
        }

    def describe(self):
        name = OFFSET_NAMES.get(self._offset, self.file_name)
        return f"{name} @ 0x{self._offset:x} ({format_size(self.size)})"

    def __repr__(self):
        return f"FirmwareImage({self._source!r}, offset=0x{self._offset:x}, size={self.size})"


class FirmwareImageSet:
    """ Images to flash, ordered by offset. Immutable once created. """

    def __init__(self, images):
        images = sorted(images, key=lambda image: image.offset)
        for previous, image in zip(images, images[1:]):
            if previous.offset == image.offset:
                raise InvalidFirmware(
                    f"{previous.file_name} and {image.file_name} both target 0x{image.offset:x}"
                )
        self._images = tuple(images)

    @classmethod
    def from_file(cls, path, data=None):
        """ A single binary: merged images go to 0x0, anything else is an app at 0x10000 """
        if data is None:
            data = _read_binary(path)
        name = os.path.basename(path).lower()
        is_merged = any(hint in name for hint in MERGED_BINARY_HINTS)
        offset = OFFSET_BOOTLOADER if is_merged else OFFSET_APPLICATION
        return cls([FirmwareImage(data, path, offset)])

    @classmethod
    def from_build_directory(cls, path):
        images = []
        for file_name, offset in BUILD_DIRECTORY_FILES:
            file_path = os.path.join(path, file_name)
            if os.path.isfile(file_path):
                images.append(FirmwareImage(_read_binary(file_path), file_path, offset))
        if not images:
            raise InvalidFirmware(f"No firmware files found in {path}")
        if not any(image.offset == OFFSET_APPLICATION for image in images):
            raise InvalidFirmware(f"Missing firmware.bin in {path}")
        return cls(images)

    @property
    def images(self):
        return self._images

    def __iter__(self):
        return iter(self._images)

    def __len__(self):
        return len(self._images)

    @property
    def total_size(self):
        return sum(image.size for image in self._images)

    @property
    def is_valid(self):
        return any(
            image.is_valid and image.offset in (OFFSET_BOOTLOADER, OFFSET_APPLICATION)
            for image in self._images
        )

    @property
    def is_complete(self):
        offsets = {image.offset for image in self._images}
        return {OFFSET_BOOTLOADER, OFFSET_PARTITIONS, OFFSET_APPLICATION} <= offsets

    def validate(self):
        if not self._images:
            raise InvalidFirmware("no images to flash")
        if not self.is_valid:
            raise InvalidFirmware(
                f"no ESP image (magic byte 0x{ESP_IMAGE_MAGIC:02X}) at 0x{OFFSET_BOOTLOADER:x} "
                f"or 0x{OFFSET_APPLICATION:x}"
            )

    def size_description(self):
        return format_size(self.total_size)

    def flash_description(self):
        return ", ".join(image.describe() for image in self._images)


def _read_binary(path):
    try:
        with open(path, "rb") as f:
            return f.read()
    except IOError as err:
        raise InvalidFirmware(f"Error opening binary '{path}': {err}") from err


def load_firmware(path):
    """ Load a single binary or a build directory (bootloader/partitions/firmware) """
    if os.path.isdir(path):
        return FirmwareImageSet.from_build_directory(path)
    return FirmwareImageSet.from_file(path)
