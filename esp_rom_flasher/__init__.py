from esp_rom_flasher.common import FlasherError, FlashingState, FlashingStateType
from esp_rom_flasher.const import __version__
from esp_rom_flasher.firmware import FirmwareImage, FirmwareImageSet, load_firmware
from esp_rom_flasher.flasher import EspRomFlasher
from esp_rom_flasher.helpers import SerialDevice, list_serial_devices

__all__ = [
    "EspRomFlasher",
    "FirmwareImage",
    "FirmwareImageSet",
    "FlasherError",
    "FlashingState",
    "FlashingStateType",
    "SerialDevice",
    "__version__",
    "list_serial_devices",
    "load_firmware",
]
