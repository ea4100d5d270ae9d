from __future__ import annotations
from dataclasses import dataclass
from typing import List, Union

from .frames import ACK, MARKERS, Frame, classify


@dataclass(frozen=True)
class AckEvent:
    """Chunk started with the 0xFF ack marker."""


@dataclass(frozen=True)
class DroppedBuffer:
    """Bytes discarded by a marker reset without ever forming a frame."""
    data: bytes


Event = Union[Frame, AckEvent, DroppedBuffer]


class FrameReassembler:
    """Fold arbitrarily-chunked serial reads into frames.

    The wire format has no length prefix. A chunk starting with a marker
    byte (0x00 or 0xFF) replaces the buffer, any other chunk is appended.
    After each chunk the buffer is checked once against the frame table and
    emitted when its length matches exactly. The buffer is not cleared on
    completion; a stale buffer is only dropped by the next marker.
    """

    def __init__(self):
        self.buf = bytearray()
        self._done = True  # nothing pending that could be reported as dropped

    def feed(self, chunk: bytes) -> List[Event]:
        out: List[Event] = []
        if not chunk:
            return out
        if chunk[0] in MARKERS:
            if self.buf and not self._done:
                out.append(DroppedBuffer(bytes(self.buf)))
            self.buf = bytearray(chunk)
            self._done = False
            if chunk[0] == ACK:
                out.append(AckEvent())
                if len(chunk) == 1:
                    self._done = True
        else:
            self.buf.extend(chunk)
            self._done = False
        if classify(self.buf) is not None:
            out.append(Frame.from_bytes(self.buf))
            self._done = True
        return out

    def reset(self) -> None:
        self.buf = bytearray()
        self._done = True
