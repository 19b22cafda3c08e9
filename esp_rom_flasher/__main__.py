import argparse
from datetime import datetime
import sys

from esp_rom_flasher import const
from esp_rom_flasher.common import FlasherError, FlashingStateType, PortDisconnected
from esp_rom_flasher.firmware import load_firmware
from esp_rom_flasher.flasher import EspRomFlasher
from esp_rom_flasher.helpers import (
    find_serial_device,
    list_serial_devices,
    print_overwrite,
    trace_enabled_by_default,
)
from esp_rom_flasher.serial_link import SerialTransport


def parse_args(argv):
    parser = argparse.ArgumentParser(prog=f"esp_rom_flasher {const.__version__}")
    parser.add_argument("-p", "--port", help="Select the USB/COM port for uploading.")
    parser.add_argument(
        "--upload-baud-rate",
        type=int,
        default=const.ESP_ROM_BAUD,
        choices=const.SUPPORTED_BAUD_RATES,
        help="Baud rate to upload (not for logging)",
    )
    parser.add_argument(
        "--trace",
        action="store_true",
        default=trace_enabled_by_default(),
        help=f"Print protocol traces (also enabled by ${const.TRACE_ENV_VAR}).",
    )
    parser.add_argument("--list-ports", help="List serial ports and exit", action="store_true")
    parser.add_argument(
        "--show-logs", help="Show the device's serial output after flashing", action="store_true"
    )
    parser.add_argument(
        "binary",
        nargs="?",
        help="The binary image to flash, or a build directory with "
        "bootloader.bin, partitions.bin and firmware.bin.",
    )

    args = parser.parse_args(argv[1:])
    if args.binary is None and not args.list_ports:
        parser.error("the binary to flash is required")
    return args


def print_ports():
    devices = list_serial_devices()
    if not devices:
        print("No serial port found!")
        return
    for device in devices:
        tag = " [ESP USB-JTAG-Serial]" if device.is_usb_native else ""
        print(f" * {device.path} ({device.display_name}){tag}")


def select_port(args):
    if args.port is not None:
        print(f"Using '{args.port}' as serial port.")
        return find_serial_device(args.port)
    devices = list_serial_devices()
    if not devices:
        raise FlasherError("No serial port found!")
    if len(devices) != 1:
        print("Found more than one serial port:")
        for device in devices:
            print(f" * {device.path} ({device.display_name})")
        print("Please choose one with the --port argument.")
        raise FlasherError("")
    print(f"Auto-detected serial port: {devices[0].path}")
    return devices[0]


def show_logs(path):
    print("Showing logs:")
    pending = b""
    with SerialTransport() as transport:
        transport.open(path)
        while True:
            try:
                pending += transport.read(const.READ_POLL_INTERVAL)
            except PortDisconnected:
                print("Serial port closed!")
                return
            *lines, pending = pending.split(b"\n")
            for raw in lines:
                line = raw.decode(errors="ignore").replace("\r", "")
                time_ = datetime.now().time().strftime("[%H:%M:%S]")
                message = time_ + line
                try:
                    print(message)
                except UnicodeEncodeError:
                    print(message.encode("ascii", "backslashreplace"))


class StatePrinter:
    def __init__(self):
        self._last_percent = None

    def __call__(self, state):
        if state.type is FlashingStateType.FLASHING:
            percent = int(state.progress * 100)
            if percent != self._last_percent:
                self._last_percent = percent
                print_overwrite(state.status_message, last_line=state.progress >= 1.0)
            return
        print(state.status_message)


def run_esp_rom_flasher(argv):
    args = parse_args(argv)

    if args.list_ports:
        print_ports()
        return 0

    firmware = load_firmware(args.binary)
    firmware.validate()
    device = select_port(args)

    print()
    print("Firmware:")
    print(f" - Images: {firmware.flash_description()}")
    print(f" - Total Size: {firmware.size_description()}")
    print(f" - Complete Package: {'YES' if firmware.is_complete else 'NO'}")
    for image in firmware:
        info = image.header_info()
        if info is not None:
            print(
                f" - {image.file_name}: flash mode {info['flash_mode']}, "
                f"frequency {info['flash_freq']}, size {info['flash_size']}"
            )
    print("Device:")
    print(f" - Port: {device.path} ({device.display_name})")
    print(f" - USB-JTAG-Serial: {'YES' if device.is_usb_native else 'NO'}")
    print()

    flasher = EspRomFlasher(on_state=StatePrinter(), trace_enabled=args.trace)
    flasher.start(firmware, device, args.upload_baud_rate)
    try:
        while not flasher.join(0.2):
            pass
    except KeyboardInterrupt:
        print()
        print("Cancelling...")
        flasher.cancel()
        flasher.join()

    state = flasher.state
    if state.type is not FlashingStateType.COMPLETE:
        raise FlasherError("")

    print("Done! Flashing is complete!")
    print()

    if args.show_logs:
        show_logs(device.path)
    return 0


def main():
    try:
        return run_esp_rom_flasher(sys.argv) or 0
    except FlasherError as err:
        msg = str(err)
        if msg:
            print(msg)
        return 1
    except KeyboardInterrupt:
        return 1


if __name__ == "__main__":
    sys.exit(main())
