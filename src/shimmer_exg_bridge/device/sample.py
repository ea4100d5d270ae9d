from __future__ import annotations
import enum
from typing import List, Sequence, Union

from ..errors import TruncatedPayload


class FieldType(str, enum.Enum):
    U8 = "u8"
    U24 = "u24"
    I24R = "i24r"

    @property
    def width(self) -> int:
        return 1 if self is FieldType.U8 else 3


Descriptor = Sequence[Union[FieldType, str]]

# Streaming record layout with the ExG channels enabled:
# timestamp, ExG1 status, ExG1 CH1, ExG1 CH2, ExG2 status, ExG2 CH1, ExG2 CH2
CHANNEL_DESCRIPTOR: List[FieldType] = [
    FieldType.U24, FieldType.U8,
    FieldType.I24R, FieldType.I24R,
    FieldType.U8,
    FieldType.I24R, FieldType.I24R,
]


def _as_types(descriptor: Descriptor) -> List[FieldType]:
    try:
        return [FieldType(d) for d in descriptor]
    except ValueError as e:
        raise ValueError(f"unknown channel type in {list(descriptor)!r}") from e


def payload_width(descriptor: Descriptor) -> int:
    return sum(t.width for t in _as_types(descriptor))


def decode_sample(payload: bytes, descriptor: Descriptor = CHANNEL_DESCRIPTOR) -> List[int]:
    """Decode one streaming record into channel values, left to right.

    - u8:   one unsigned byte
    - u24:  three bytes little-endian
    - i24r: three bytes big-endian, returned unsigned

    Bytes past the descriptor width are ignored.
    """
    types = _as_types(descriptor)
    need = sum(t.width for t in types)
    if len(payload) < need:
        raise TruncatedPayload(f"sample payload has {len(payload)} bytes, descriptor needs {need}")
    out: List[int] = []
    j = 0
    for t in types:
        if t is FieldType.U8:
            out.append(payload[j])
        elif t is FieldType.U24:
            out.append(payload[j] | (payload[j + 1] << 8) | (payload[j + 2] << 16))
        else:
            # TODO: apply two's-complement sign extension once the ExG channel
            # format is confirmed against a device capture.
            out.append((payload[j] << 16) | (payload[j + 1] << 8) | payload[j + 2])
        j += t.width
    return out
