"""DTR/RTS reset sequences.

Each sequence is plain data: a tuple of steps that set one line, set both
lines, or wait. The timings were tuned on real boards, keep them as they are.

DTR drives the boot-strap pin (GPIO0/GPIO9) and RTS drives EN/reset. Both are
active low: True means the pin is pulled to 0V.
"""
import time
from collections import namedtuple
from enum import Enum

DTR = "dtr"
RTS = "rts"
BOTH = "both"
WAIT = "wait"

ResetStep = namedtuple("ResetStep", "action value")


class ResetStrategy(Enum):
    USB_NATIVE = "usb_native"
    BRIDGE = "bridge"


USB_NATIVE_RESET = (
    ResetStep(RTS, False),
    ResetStep(DTR, False),  # idle
    ResetStep(WAIT, 0.1),
    ResetStep(DTR, True),  # boot-strap pin low
    ResetStep(RTS, False),
    ResetStep(WAIT, 0.1),
    ResetStep(RTS, True),  # reset
    ResetStep(DTR, False),
    ResetStep(RTS, True),  # some host stacks only propagate DTR while RTS is set
    ResetStep(WAIT, 0.1),
    ResetStep(DTR, False),
    ResetStep(RTS, False),  # out of reset
    ResetStep(WAIT, 0.05),
)

BRIDGE_RESET = (
    ResetStep(BOTH, (False, True)),  # IO0=HIGH, EN=LOW, chip in reset
    ResetStep(WAIT, 0.1),
    ResetStep(BOTH, (True, False)),  # IO0=LOW, EN=HIGH, chip out of reset
    ResetStep(WAIT, 0.05),
    ResetStep(DTR, False),  # IO0=HIGH, done
    ResetStep(WAIT, 0.05),
)

# DTR stays released so the chip boots the application, RTS alone pulses EN
HARD_RESET = (
    ResetStep(DTR, False),
    ResetStep(WAIT, 0.05),
    ResetStep(RTS, True),
    ResetStep(WAIT, 0.1),
    ResetStep(RTS, False),
    ResetStep(WAIT, 0.1),
)

BOOTLOADER_SEQUENCES = {
    ResetStrategy.USB_NATIVE: USB_NATIVE_RESET,
    ResetStrategy.BRIDGE: BRIDGE_RESET,
}


def select_reset_strategy(device):
    if device.is_usb_native:
        return ResetStrategy.USB_NATIVE
    return ResetStrategy.BRIDGE


def run_sequence(transport, steps, sleep=time.sleep):
    for step in steps:
        if step.action == DTR:
            transport.set_dtr(step.value)
        elif step.action == RTS:
            transport.set_rts(step.value)
        elif step.action == BOTH:
            transport.set_both(*step.value)
        elif step.action == WAIT:
            sleep(step.value)
        else:
            raise ValueError(f"Unknown reset step {step.action!r}")


def enter_bootloader(transport, strategy, sleep=time.sleep):
    run_sequence(transport, BOOTLOADER_SEQUENCES[strategy], sleep)


def hard_reset(transport, sleep=time.sleep):
    run_sequence(transport, HARD_RESET, sleep)
