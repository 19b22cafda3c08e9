__version__ = "1.0.0"

# Commands supported by the ESP32 ROM bootloader
ESP_FLASH_BEGIN = 0x02
ESP_FLASH_DATA = 0x03
ESP_FLASH_END = 0x04
ESP_SYNC = 0x08
ESP_WRITE_REG = 0x09
ESP_READ_REG = 0x0A
ESP_SPI_ATTACH = 0x0D
ESP_CHANGE_BAUDRATE = 0x0F

COMMAND_NAMES = {
    ESP_FLASH_BEGIN: "FLASH_BEGIN",
    ESP_FLASH_DATA: "FLASH_DATA",
    ESP_FLASH_END: "FLASH_END",
    ESP_SYNC: "SYNC",
    ESP_WRITE_REG: "WRITE_REG",
    ESP_READ_REG: "READ_REG",
    ESP_SPI_ATTACH: "SPI_ATTACH",
    ESP_CHANGE_BAUDRATE: "CHANGE_BAUD_RATE",
}

DIRECTION_REQUEST = 0x00
DIRECTION_RESPONSE = 0x01

# SLIP framing
SLIP_END = 0xC0
SLIP_ESC = 0xDB
SLIP_ESC_END = 0xDC
SLIP_ESC_ESC = 0xDD

SYNC_PAYLOAD = b"\x07\x07\x12\x20" + 32 * b"\x55"

# Initial state for the checksum routine
ESP_CHECKSUM_MAGIC = 0xEF

# First byte of the application image
ESP_IMAGE_MAGIC = 0xE9
MIN_IMAGE_SIZE = 8

FLASH_WRITE_SIZE = 0x400
FLASH_PAD_BYTE = b"\xFF"

# The ROM auto-bauds, every session starts here
ESP_ROM_BAUD = 115200
SUPPORTED_BAUD_RATES = (115200, 230400, 460800, 921600)

READ_CHUNK_SIZE = 4096

# Flash map of an ESP32 build
OFFSET_BOOTLOADER = 0x0000
OFFSET_PARTITIONS = 0x8000
OFFSET_APPLICATION = 0x10000

BUILD_DIRECTORY_FILES = (
    ("bootloader.bin", OFFSET_BOOTLOADER),
    ("partitions.bin", OFFSET_PARTITIONS),
    ("firmware.bin", OFFSET_APPLICATION),
)
MERGED_BINARY_HINTS = ("merged", "factory", "combined", "full")

OFFSET_NAMES = {
    OFFSET_BOOTLOADER: "bootloader",
    OFFSET_PARTITIONS: "partitions",
    OFFSET_APPLICATION: "app",
}

# USB-JTAG-Serial peripheral built into the chip
USB_NATIVE_VID = 0x303A
USB_NATIVE_PID = 0x1001

# Watchdog registers (RTC_CNTL)
RTC_CNTL_BASE = 0x60008000
RTC_WDT_CONFIG0 = RTC_CNTL_BASE + 0x0090
RTC_WDT_WPROTECT = RTC_CNTL_BASE + 0x00A8
RTC_WDT_WKEY = 0x50D83AA1
SWD_CONF = RTC_CNTL_BASE + 0x00AC
SWD_WPROTECT = RTC_CNTL_BASE + 0x00B0
SWD_WKEY = 0x8F1D312A
WDT_EN_BIT = 1 << 31
SWD_AUTO_FEED_EN_BIT = 1 << 31

# Timeouts and delays, all in seconds
READ_POLL_INTERVAL = 0.1
SYNC_TIMEOUT = 1.0
SYNC_DRAIN_TIMEOUT = 0.1
SYNC_DRAIN_RESPONSES = 7
SYNC_ATTEMPTS = 20
SYNC_RETRY_DELAY = 0.05
BOOTLOADER_SETTLE_DELAY = 0.5
REENUMERATION_DELAY = 2.0
REOPEN_ATTEMPTS = 5
REOPEN_RETRY_DELAY = 0.5
BAUD_CHANGE_DELAY = 0.05
REGISTER_TIMEOUT = 1.0
SPI_ATTACH_TIMEOUT = 3.0
FLASH_BEGIN_TIMEOUT = 30.0
FLASH_DATA_TIMEOUT = 5.0
FLASH_END_TIMEOUT = 2.0
BLOCK_DELAY = 0.005
VERIFY_DELAY = 0.1
RESTART_DELAY = 1.0
WRITE_RETRY_DELAY = 0.001

# Status/error bytes sent by the ROM in a failed response
ROM_ERRORS = {
    0x05: "Received message is invalid",
    0x06: "Failed to act on received message",
    0x07: "Invalid CRC in message",
    0x08: "Flash write error",
    0x09: "Flash read error",
    0x0A: "Flash read length error",
    0x0B: "Deflate error",
}

TRACE_ENV_VAR = "ESP_ROM_FLASHER_TRACE"
