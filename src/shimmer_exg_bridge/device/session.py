from __future__ import annotations
import enum
from dataclasses import dataclass, field
from typing import Optional


class ConnectionState(str, enum.Enum):
    IDLE = "idle"
    OPENING = "opening"
    NEGOTIATING = "negotiating"
    STREAMING = "streaming"
    CLOSING = "closing"


# Identity pair of a Shimmer3 with the ExG daughter board
EXG_FIRMWARE_IDENTIFIER = 3
EXG_HARDWARE_VERSION = 3


@dataclass
class DeviceIdentity:
    firmware_identifier: Optional[int] = None
    firmware_major: Optional[int] = None
    firmware_minor: Optional[int] = None
    firmware_internal: Optional[int] = None
    hardware_version: Optional[int] = None

    @property
    def exg_capable(self) -> bool:
        return (self.firmware_identifier == EXG_FIRMWARE_IDENTIFIER
                and self.hardware_version == EXG_HARDWARE_VERSION)

    def to_dict(self) -> dict:
        return {
            "firmware_identifier": self.firmware_identifier,
            "firmware_major": self.firmware_major,
            "firmware_minor": self.firmware_minor,
            "firmware_internal": self.firmware_internal,
            "hardware_version": self.hardware_version,
        }


@dataclass
class SessionContext:
    """All mutable state of the single active connection.

    Shared by the reassembler, decoder, sequencer and bridge. A fresh
    instance is created per connect so nothing leaks between sessions.
    """
    identity: DeviceIdentity = field(default_factory=DeviceIdentity)
    state: ConnectionState = ConnectionState.IDLE
    streaming: bool = False
    # Which ExG chip (1 or 2) the next register dump belongs to
    chip_selector: Optional[int] = None
    session_id: int = 0

    def arm_chip(self, chip: int) -> None:
        if chip not in (1, 2):
            raise ValueError(f"ExG chip must be 1 or 2, got {chip}")
        self.chip_selector = chip

    def take_chip(self) -> Optional[int]:
        chip, self.chip_selector = self.chip_selector, None
        return chip
