import re
import threading
import time

from esp_rom_flasher.common import (
    Cancelled,
    ConnectionFailed,
    ConnectionTimeout,
    FlashBeginFailed,
    FlashDataFailed,
    FlashEndFailed,
    FlasherError,
    FlashingState,
    FlashingStateType,
    PortDisconnected,
    SyncFailed,
)
from esp_rom_flasher.const import (
    BAUD_CHANGE_DELAY,
    BLOCK_DELAY,
    BOOTLOADER_SETTLE_DELAY,
    COMMAND_NAMES,
    ESP_FLASH_BEGIN,
    ESP_FLASH_DATA,
    ESP_FLASH_END,
    ESP_READ_REG,
    ESP_ROM_BAUD,
    ESP_SPI_ATTACH,
    ESP_SYNC,
    ESP_WRITE_REG,
    FLASH_BEGIN_TIMEOUT,
    FLASH_DATA_TIMEOUT,
    FLASH_END_TIMEOUT,
    FLASH_PAD_BYTE,
    FLASH_WRITE_SIZE,
    READ_POLL_INTERVAL,
    REENUMERATION_DELAY,
    REGISTER_TIMEOUT,
    REOPEN_ATTEMPTS,
    REOPEN_RETRY_DELAY,
    RESTART_DELAY,
    RTC_WDT_CONFIG0,
    RTC_WDT_WKEY,
    RTC_WDT_WPROTECT,
    SPI_ATTACH_TIMEOUT,
    SUPPORTED_BAUD_RATES,
    SWD_AUTO_FEED_EN_BIT,
    SWD_CONF,
    SWD_WKEY,
    SWD_WPROTECT,
    SYNC_ATTEMPTS,
    SYNC_DRAIN_RESPONSES,
    SYNC_DRAIN_TIMEOUT,
    SYNC_RETRY_DELAY,
    SYNC_TIMEOUT,
    VERIFY_DELAY,
    WDT_EN_BIT,
)
from esp_rom_flasher.helpers import (
    HexFormatter,
    SerialDevice,
    Tracer,
    div_roundup,
    find_serial_device,
    pad_to,
    trace_enabled_by_default,
)
from esp_rom_flasher.protocol import (
    build_change_baud_command,
    build_flash_begin_command,
    build_flash_data_command,
    build_flash_end_command,
    build_read_reg_command,
    build_spi_attach_command,
    build_sync_command,
    build_write_reg_command,
    parse_response,
)
from esp_rom_flasher.reset import ResetStrategy, enter_bootloader, hard_reset, select_reset_strategy
from esp_rom_flasher.serial_link import SerialTransport
from esp_rom_flasher.slip import SlipDecoder, slip_encode

BOOT_LOG_RE = re.compile(b"boot:(0x[0-9a-fA-F]+)(.*waiting for download)?", re.DOTALL)
MAX_BOOT_LOG_READS = 64


class EspRomFlasher(object):
    """Drives one flash attempt against the ESP32 ROM bootloader.

    State changes are reported through `on_state(FlashingState)`, called from
    the thread doing the work. Use start() to flash on a worker thread and
    cancel() to stop it; run() does the same work on the calling thread.

    `sleep` and `clock` are only swapped out by tests.
    """

    def __init__(self, on_state=None, transport_factory=None, sleep=time.sleep,
                 clock=time.monotonic, trace_enabled=None):
        if trace_enabled is None:
            trace_enabled = trace_enabled_by_default()
        self.trace = Tracer(trace_enabled)
        self._on_state = on_state
        if transport_factory is None:
            transport_factory = lambda: SerialTransport(self.trace)  # noqa: E731
        self._transport_factory = transport_factory
        self._sleep = sleep
        self._clock = clock
        self._lock = threading.Lock()
        self._thread = None
        self._cancel_event = threading.Event()
        self._cancel = self._cancel_event
        self._state = FlashingState.idle()
        self._transport = None
        self._decoder = SlipDecoder(self.trace)

    @property
    def state(self):
        return self._state

    @property
    def is_flashing(self):
        return self._thread is not None and self._thread.is_alive()

    def start(self, image_set, port, baud_rate=ESP_ROM_BAUD):
        """ Flash `image_set` to `port` (a SerialDevice or a path) on a worker thread """
        _check_baud_rate(baud_rate)
        with self._lock:
            if self.is_flashing:
                raise FlasherError("A flash operation is already in progress")
            device = port if isinstance(port, SerialDevice) else find_serial_device(port)
            self._cancel_event = threading.Event()
            self._thread = threading.Thread(
                target=self._worker,
                args=(image_set, device, baud_rate, self._cancel_event),
                name=f"esp-rom-flasher {device.path}",
                daemon=True,
            )
            self._thread.start()
        return self._thread

    def cancel(self):
        self._cancel_event.set()

    def join(self, timeout=None):
        thread = self._thread
        if thread is not None:
            thread.join(timeout)
        return not self.is_flashing

    def _worker(self, image_set, device, baud_rate, cancel_event):
        try:
            self.run(image_set, device, baud_rate, cancel_event)
        except Exception as e:
            self._emit(FlashingState.failed(FlasherError(f"Unexpected error: {e}")))
            raise

    def run(self, image_set, device, baud_rate=ESP_ROM_BAUD, cancel_event=None):
        """ Flash synchronously, returns True if the device was flashed """
        _check_baud_rate(baud_rate)
        if not isinstance(device, SerialDevice):
            device = find_serial_device(device)
        if cancel_event is None:
            cancel_event = threading.Event()
            self._cancel_event = cancel_event
        self._cancel = cancel_event
        self._transport = self._transport_factory()
        try:
            self._flash(image_set, device, baud_rate)
            result = FlashingState.complete()
        except FlasherError as err:
            if cancel_event.is_set() and not isinstance(err, Cancelled):
                self.trace("%s after cancellation", err)
                err = Cancelled()
            result = FlashingState.failed(err)
        finally:
            self._transport.close()
            self._transport = None
        self._emit(result)
        return result.type is FlashingStateType.COMPLETE

    def _emit(self, state):
        self._state = state
        self.trace("State: %r", state)
        if self._on_state is not None:
            self._on_state(state)

    def _check_cancelled(self):
        if self._cancel.is_set():
            raise Cancelled()

    def _flash(self, image_set, device, baud_rate):
        image_set.validate()

        self._emit(FlashingState.connecting())
        strategy = select_reset_strategy(device)
        self._transport.open(device.path)
        self._enter_bootloader(strategy)

        self._emit(FlashingState.syncing())
        try:
            self._sync_with_retry()
        except PortDisconnected as err:
            # USB-JTAG-Serial devices re-enumerate after the reset
            self.trace("First sync failed (%s), reopening %s", err, device.path)
            self._reconnect(device.path)
            self._emit(FlashingState.syncing())
            self._sync_with_retry()

        if strategy is ResetStrategy.USB_NATIVE:
            self._disable_watchdogs()

        if baud_rate != ESP_ROM_BAUD:
            self._emit(FlashingState.changing_baud_rate())
            self._change_baud_rate(baud_rate)

        self._spi_attach()
        self._flash_images(image_set)

        # every FLASH_DATA reply already carries the device's checksum verdict
        self._emit(FlashingState.verifying())
        self._sleep(VERIFY_DELAY)

        self._emit(FlashingState.restarting())
        self._flash_end(True, strategy is ResetStrategy.USB_NATIVE)
        self._sleep(RESTART_DELAY)

    def _enter_bootloader(self, strategy):
        self.trace("Resetting into bootloader (%s)", strategy.value)
        enter_bootloader(self._transport, strategy, self._sleep)
        self._sleep(BOOTLOADER_SETTLE_DELAY)
        self._drain_boot_log()
        self._transport.flush()

    def _drain_boot_log(self):
        boot_log = b""
        for _ in range(MAX_BOOT_LOG_READS):
            data = self._transport.read(0)
            if not data:
                break
            boot_log += data
        if not boot_log:
            return
        match = BOOT_LOG_RE.search(boot_log)
        if match is None:
            self.trace("Discarded %d bytes of boot output", len(boot_log))
        elif match.group(2) is None:
            self.trace("Boot log reports mode %s, not download mode", match.group(1).decode())
        else:
            self.trace("Boot log reports download mode %s", match.group(1).decode())

    def _retry(self, attempt, attempts, delay):
        """ Call `attempt` until it returns True, at most `attempts` times """
        for n in range(1, attempts + 1):
            if attempt():
                return True
            self.trace("Attempt %d/%d failed", n, attempts)
            if n < attempts:
                self._sleep(delay)
        return False

    def _sync_with_retry(self):
        if not self._retry(self._sync_once, SYNC_ATTEMPTS, SYNC_RETRY_DELAY):
            raise SyncFailed(SYNC_ATTEMPTS)

    def _sync_once(self):
        self._send(build_sync_command())
        response = self._wait_for_response(ESP_SYNC, SYNC_TIMEOUT)
        if response is None or not response.is_success:
            return False
        # the ROM answers one SYNC with several replies
        for _ in range(SYNC_DRAIN_RESPONSES):
            self._wait_for_response(ESP_SYNC, SYNC_DRAIN_TIMEOUT)
        self._transport.flush()
        return True

    def _reconnect(self, path):
        self._transport.close()
        self._sleep(REENUMERATION_DELAY)

        def reopen():
            self._check_cancelled()
            try:
                self._transport.open(path)
            except ConnectionFailed as err:
                self.trace("%s", err)
                return False
            return True

        if not self._retry(reopen, REOPEN_ATTEMPTS, REOPEN_RETRY_DELAY):
            raise ConnectionFailed(f"Could not reopen {path} after reset")
        self._transport.flush()

    def _send(self, packet):
        self.trace("command op=0x%02x (%s) data len=%d", packet[1],
                   COMMAND_NAMES.get(packet[1], "?"), len(packet) - 8)
        self._transport.write(slip_encode(packet))

    def _wait_for_response(self, op, timeout):
        """ Wait for a reply to `op`, None on timeout.

        Replies to other commands are dropped.
        """
        deadline = self._clock() + timeout
        self._decoder.reset()
        while self._clock() < deadline:
            self._check_cancelled()
            data = self._transport.read(READ_POLL_INTERVAL)
            for packet in self._decoder.feed(data):
                response = parse_response(packet)
                if response is not None and response.command == op:
                    return response
                self.trace("Ignoring packet: %s", HexFormatter(packet))
        self.trace("Timeout waiting for %s response", COMMAND_NAMES.get(op, hex(op)))
        return None

    def _check_command(self, op, packet, timeout, operation):
        self._send(packet)
        response = self._wait_for_response(op, timeout)
        if response is None:
            raise ConnectionTimeout(operation)
        return response

    def read_reg(self, addr):
        response = self._check_command(ESP_READ_REG, build_read_reg_command(addr),
                                       REGISTER_TIMEOUT, "READ_REG")
        if not response.is_success:
            raise ConnectionFailed(
                f"READ_REG failed at 0x{addr:08x} ({response.describe()})"
            )
        return response.value

    def write_reg(self, addr, value):
        response = self._check_command(ESP_WRITE_REG, build_write_reg_command(addr, value),
                                       REGISTER_TIMEOUT, "WRITE_REG")
        if not response.is_success:
            raise ConnectionFailed(
                f"WRITE_REG failed at 0x{addr:08x} ({response.describe()})"
            )

    def _disable_watchdogs(self):
        self.trace("Disabling RTC and super watchdogs")
        self.write_reg(RTC_WDT_WPROTECT, RTC_WDT_WKEY)
        wdt_config = self.read_reg(RTC_WDT_CONFIG0)
        self.write_reg(RTC_WDT_CONFIG0, wdt_config & ~WDT_EN_BIT & 0xFFFFFFFF)
        self.write_reg(RTC_WDT_WPROTECT, 0)

        # auto-feed keeps the super watchdog quiet
        self.write_reg(SWD_WPROTECT, SWD_WKEY)
        swd_config = self.read_reg(SWD_CONF)
        self.write_reg(SWD_CONF, swd_config | SWD_AUTO_FEED_EN_BIT)
        self.write_reg(SWD_WPROTECT, 0)

    def _change_baud_rate(self, baud):
        self.trace("Changing baud rate to %d", baud)
        self._send(build_change_baud_command(baud, ESP_ROM_BAUD))
        self._sleep(BAUD_CHANGE_DELAY)
        self._transport.set_baud_rate(baud)
        self._sleep(BAUD_CHANGE_DELAY)
        if not self._retry(self._sync_once, 1, 0):
            raise SyncFailed(1)

    def _spi_attach(self):
        self._send(build_spi_attach_command())
        response = self._wait_for_response(ESP_SPI_ATTACH, SPI_ATTACH_TIMEOUT)
        if response is None:
            raise ConnectionFailed("no response to SPI_ATTACH")
        if not response.is_success:
            raise ConnectionFailed(f"SPI attach failed ({response.describe()})")

    def _flash_images(self, image_set):
        total_size = image_set.total_size
        bytes_flashed = 0
        for image in image_set:
            self._check_cancelled()
            num_blocks = div_roundup(image.size, FLASH_WRITE_SIZE)

            self._emit(FlashingState.erasing())
            self._flash_begin(image.size, num_blocks, image.offset)

            for seq in range(num_blocks):
                self._check_cancelled()
                start = seq * FLASH_WRITE_SIZE
                block = pad_to(image.data[start:start + FLASH_WRITE_SIZE],
                               FLASH_WRITE_SIZE, FLASH_PAD_BYTE)
                image_progress = (seq + 1) / num_blocks
                self._emit(FlashingState.flashing(
                    (bytes_flashed + image_progress * image.size) / total_size
                ))
                self._flash_data(block, seq)
                # the USB-JTAG-Serial receive buffer overflows without this pause
                self._sleep(BLOCK_DELAY)

            bytes_flashed += image.size

    def _flash_begin(self, size, num_blocks, offset):
        t = self._clock()
        response = self._check_command(
            ESP_FLASH_BEGIN,
            build_flash_begin_command(size, num_blocks, FLASH_WRITE_SIZE, offset),
            FLASH_BEGIN_TIMEOUT,
            "FLASH_BEGIN",
        )
        if not response.is_success:
            raise FlashBeginFailed(response.status, response.error)
        self.trace("Took %.2fs to erase flash block at 0x%x", self._clock() - t, offset)

    def _flash_data(self, block, seq):
        response = self._check_command(
            ESP_FLASH_DATA, build_flash_data_command(block, seq),
            FLASH_DATA_TIMEOUT, "FLASH_DATA",
        )
        if not response.is_success:
            raise FlashDataFailed(seq, response.status, response.error)

    def _flash_end(self, reboot, usb_native):
        self._send(build_flash_end_command(reboot))
        try:
            response = self._wait_for_response(ESP_FLASH_END, FLASH_END_TIMEOUT)
        except PortDisconnected:
            if not reboot:
                raise
            self.trace("Port gone after FLASH_END, device is rebooting")
            return
        if response is None:
            if not reboot:
                raise FlashEndFailed("no response")
            self.trace("No FLASH_END response, device is rebooting")
        elif not response.is_success:
            if not reboot:
                raise FlashEndFailed(response.describe())
            self.trace("FLASH_END returned %s", response.describe())

        # the ROM's soft reboot does not reset the USB-JTAG-Serial peripheral
        if reboot and usb_native:
            self.trace("Hard resetting via RTS pin...")
            hard_reset(self._transport, self._sleep)


def _check_baud_rate(baud_rate):
    if baud_rate not in SUPPORTED_BAUD_RATES:
        raise ValueError(
            f"Unsupported baud rate {baud_rate}, choose one of "
            + ", ".join(str(rate) for rate in SUPPORTED_BAUD_RATES)
        )
