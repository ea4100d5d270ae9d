from __future__ import annotations
import enum
import struct
from dataclasses import dataclass
from typing import List, Optional, Union

from ..errors import UnrecognizedFrame
from .sample import CHANNEL_DESCRIPTOR, decode_sample
from .session import SessionContext

# Leading marker bytes. Replies from the device are preceded by an ack (0xFF),
# streaming records start with the data packet id (0x00).
ACK = 0xFF
DATA_PACKET = 0x00
MARKERS = (ACK, DATA_PACKET)

FW_VERSION_RESPONSE = 0x2F
HW_VERSION_RESPONSE = 0x25
EXG_REGS_RESPONSE = 0x62


class FrameKind(str, enum.Enum):
    STREAMING_SAMPLE = "streaming_sample"
    FIRMWARE_VERSION = "firmware_version"
    HARDWARE_VERSION = "hardware_version"
    EXG_CONFIG = "exg_config"
    ACK = "ack"


FRAME_LENGTHS = {
    FrameKind.STREAMING_SAMPLE: 18,
    FrameKind.FIRMWARE_VERSION: 8,
    FrameKind.HARDWARE_VERSION: 3,
    FrameKind.EXG_CONFIG: 13,
    FrameKind.ACK: 1,
}

_FW = struct.Struct("<HHBB")


def classify(buf: bytes) -> Optional[FrameKind]:
    """Return the data-frame kind whose discriminator and length match `buf`.

    Acks are reported by the reassembler on the marker itself and are not
    classified here.
    """
    n = len(buf)
    if n == 0:
        return None
    if buf[0] == DATA_PACKET and n == FRAME_LENGTHS[FrameKind.STREAMING_SAMPLE]:
        return FrameKind.STREAMING_SAMPLE
    if n < 2:
        return None
    if buf[1] == FW_VERSION_RESPONSE and n == FRAME_LENGTHS[FrameKind.FIRMWARE_VERSION]:
        return FrameKind.FIRMWARE_VERSION
    if buf[1] == HW_VERSION_RESPONSE and n == FRAME_LENGTHS[FrameKind.HARDWARE_VERSION]:
        return FrameKind.HARDWARE_VERSION
    if buf[1] == EXG_REGS_RESPONSE and n == FRAME_LENGTHS[FrameKind.EXG_CONFIG]:
        return FrameKind.EXG_CONFIG
    return None


@dataclass(frozen=True)
class Frame:
    kind: FrameKind
    data: bytes

    @classmethod
    def from_bytes(cls, buf: bytes) -> "Frame":
        kind = classify(buf)
        if kind is None:
            raise UnrecognizedFrame(f"no frame kind matches {len(buf)} bytes: {bytes(buf).hex()}")
        return cls(kind, bytes(buf))

    def __repr__(self) -> str:
        return f"Frame(kind={self.kind.value}, data={self.data.hex(' ')})"


# ---------- decoded messages ----------

@dataclass(frozen=True)
class FirmwareVersion:
    identifier: int
    major: int
    minor: int
    internal: int

    def to_bytes(self, lead: int = ACK) -> bytes:
        return bytes([lead, FW_VERSION_RESPONSE]) + _FW.pack(self.identifier, self.major, self.minor, self.internal)


@dataclass(frozen=True)
class HardwareVersion:
    version: int

    def to_bytes(self, lead: int = ACK) -> bytes:
        return bytes([lead, HW_VERSION_RESPONSE, self.version])


@dataclass(frozen=True)
class ExgConfig:
    chip: Optional[int]
    registers: bytes


@dataclass(frozen=True)
class StreamingSample:
    values: List[int]


@dataclass(frozen=True)
class Ack:
    pass


Message = Union[FirmwareVersion, HardwareVersion, ExgConfig, StreamingSample, Ack]


def decode(frame: Frame, ctx: SessionContext) -> Message:
    """Decode a complete frame, applying identity updates to `ctx`.

    ExgConfig consumes the chip selector armed by the sequencer.
    """
    b = frame.data
    if frame.kind is FrameKind.FIRMWARE_VERSION:
        ident, major, minor, internal = _FW.unpack_from(b, 2)
        ctx.identity.firmware_identifier = ident
        ctx.identity.firmware_major = major
        ctx.identity.firmware_minor = minor
        ctx.identity.firmware_internal = internal
        return FirmwareVersion(ident, major, minor, internal)
    if frame.kind is FrameKind.HARDWARE_VERSION:
        ctx.identity.hardware_version = b[2]
        return HardwareVersion(b[2])
    if frame.kind is FrameKind.EXG_CONFIG:
        return ExgConfig(chip=ctx.take_chip(), registers=bytes(b[3:]))
    if frame.kind is FrameKind.STREAMING_SAMPLE:
        return StreamingSample(decode_sample(b[1:], CHANNEL_DESCRIPTOR))
    if frame.kind is FrameKind.ACK:
        return Ack()
    raise UnrecognizedFrame(f"cannot decode {frame!r}")


def describe_frame_hex(h: str) -> Optional[dict]:
    """Classify a frame given as a hex string; used to annotate log records.

    Returns None when the string is not hex or matches no known frame.
    """
    if not isinstance(h, str):
        return None
    s = h.strip().lower().replace(" ", "")
    if s.startswith("0x"):
        s = s[2:]
    try:
        b = bytes.fromhex(s)
    except ValueError:
        return None
    kind = classify(b)
    if kind is None:
        return None
    return {"kind": kind.value, "len": len(b)}
