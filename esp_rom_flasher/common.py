from enum import Enum

from esp_rom_flasher.const import ROM_ERRORS


def describe_status(status, error):
    """ Return a readable text for the status/error bytes of a ROM response """
    if status == 0 and error == 0:
        return "OK"
    return "status 0x{:02X}, error 0x{:02X}: {}".format(
        status, error, ROM_ERRORS.get(error, "Unknown result")
    )


class FlasherError(Exception):
    """
    Base class for failures that are caused by the device, the serial
    link or the input firmware, not by internal bugs.
    """


class ConnectionFailed(FlasherError):
    def __init__(self, reason):
        super().__init__(f"Connection failed: {reason}")
        self.reason = reason


class SyncFailed(FlasherError):
    def __init__(self, attempts):
        super().__init__(f"Failed to sync after {attempts} attempts")
        self.attempts = attempts


class ConnectionTimeout(FlasherError):
    def __init__(self, operation):
        super().__init__(f"Timeout waiting for {operation} response")
        self.operation = operation


class FlashBeginFailed(FlasherError):
    def __init__(self, status, error=0):
        super().__init__(f"Flash begin failed ({describe_status(status, error)})")
        self.status = status
        self.error = error


class FlashDataFailed(FlasherError):
    def __init__(self, block, status, error=0):
        super().__init__(
            f"Flash data failed at block {block} ({describe_status(status, error)})"
        )
        self.block = block
        self.status = status
        self.error = error


class FlashEndFailed(FlasherError):
    def __init__(self, detail=""):
        message = "Flash end failed"
        if detail:
            message += f" ({detail})"
        super().__init__(message)
        self.detail = detail


class InvalidFirmware(FlasherError):
    def __init__(self, reason):
        super().__init__(f"Invalid firmware: {reason}")
        self.reason = reason


class PortDisconnected(FlasherError):
    def __init__(self, reason=""):
        message = "Port disconnected"
        if reason:
            message += f": {reason}"
        super().__init__(message)
        self.reason = reason


class Cancelled(FlasherError):
    def __init__(self):
        super().__init__("Operation cancelled")


class FlashingStateType(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    SYNCING = "syncing"
    CHANGING_BAUD_RATE = "changing_baud_rate"
    ERASING = "erasing"
    FLASHING = "flashing"
    VERIFYING = "verifying"
    RESTARTING = "restarting"
    COMPLETE = "complete"
    ERROR = "error"


_STATUS_MESSAGES = {
    FlashingStateType.IDLE: "Ready",
    FlashingStateType.CONNECTING: "Connecting to device...",
    FlashingStateType.SYNCING: "Syncing with bootloader...",
    FlashingStateType.CHANGING_BAUD_RATE: "Changing baud rate...",
    FlashingStateType.ERASING: "Erasing flash...",
    FlashingStateType.VERIFYING: "Verifying...",
    FlashingStateType.RESTARTING: "Restarting device...",
    FlashingStateType.COMPLETE: "Flash complete!",
}


class FlashingState:
    """
    One observable step of a flash attempt.

    Instances are immutable. `progress` is only meaningful for FLASHING and
    `error` (a FlasherError) only for ERROR.
    """
    __slots__ = ("_type", "_progress", "_error")

    def __init__(self, type, progress=0.0, error=None):
        self._type = type
        self._progress = progress
        self._error = error

    @property
    def type(self):
        return self._type

    @property
    def progress(self):
        return self._progress

    @property
    def error(self):
        return self._error

    @classmethod
    def idle(cls):
        return cls(FlashingStateType.IDLE)

    @classmethod
    def connecting(cls):
        return cls(FlashingStateType.CONNECTING)

    @classmethod
    def syncing(cls):
        return cls(FlashingStateType.SYNCING)

    @classmethod
    def changing_baud_rate(cls):
        return cls(FlashingStateType.CHANGING_BAUD_RATE)

    @classmethod
    def erasing(cls):
        return cls(FlashingStateType.ERASING)

    @classmethod
    def flashing(cls, progress):
        return cls(FlashingStateType.FLASHING, progress=progress)

    @classmethod
    def verifying(cls):
        return cls(FlashingStateType.VERIFYING)

    @classmethod
    def restarting(cls):
        return cls(FlashingStateType.RESTARTING)

    @classmethod
    def complete(cls):
        return cls(FlashingStateType.COMPLETE)

    @classmethod
    def failed(cls, error):
        return cls(FlashingStateType.ERROR, error=error)

    @property
    def error_kind(self):
        if self._error is None:
            return None
        return type(self._error).__name__

    @property
    def is_active(self):
        return not self.is_terminal

    @property
    def is_terminal(self):
        return self._type in (
            FlashingStateType.IDLE,
            FlashingStateType.COMPLETE,
            FlashingStateType.ERROR,
        )

    @property
    def status_message(self):
        if self._type is FlashingStateType.FLASHING:
            return f"Flashing... {int(self._progress * 100)}%"
        if self._type is FlashingStateType.ERROR:
            return str(self._error)
        return _STATUS_MESSAGES[self._type]

    def as_dict(self):
        return {
            "type": self._type.value,
            "progress": self._progress,
            "error_kind": self.error_kind,
            "detail": str(self._error) if self._error is not None else None,
        }

    def __eq__(self, other):
        if not isinstance(other, FlashingState):
            return NotImplemented
        return (
            self._type is other._type
            and self._progress == other._progress
            and self.error_kind == other.error_kind
        )

    def __hash__(self):
        return hash((self._type, self._progress, self.error_kind))

    def __repr__(self):
        if self._type is FlashingStateType.FLASHING:
            return f"FlashingState.flashing({self._progress:.3f})"
        if self._type is FlashingStateType.ERROR:
            return f"FlashingState.failed({self._error!r})"
        return f"FlashingState.{self._type.value}()"
