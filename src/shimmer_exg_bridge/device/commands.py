from __future__ import annotations
import re
from dataclasses import dataclass
from typing import Dict, Optional, Any

from ..errors import MalformedHex

_HEX_RE = re.compile(r"[0-9a-fA-F]*")


def encode_hex(hex_digits: str) -> bytes:
    """Convert a string of hex digit pairs ("6300000A") into bytes.

    Raises MalformedHex for empty input, an odd number of digits or any
    non-hex character. Separators such as spaces or dashes are not accepted.
    """
    if not isinstance(hex_digits, str):
        raise MalformedHex(f"expected str, got {type(hex_digits).__name__}")
    s = hex_digits.strip()
    if not s:
        raise MalformedHex("hex string cannot be empty")
    if len(s) % 2 != 0:
        raise MalformedHex(f"must have an even number of hex digits, got {len(s)}")
    if not _HEX_RE.fullmatch(s):
        raise MalformedHex(f"invalid hex digits in {s!r}")
    return bytes.fromhex(s)


@dataclass(frozen=True)
class Command:
    data: bytes
    # Register-set commands must reach the device one byte per write
    per_byte: bool = False

    @classmethod
    def from_hex(cls, hex_digits: str, *, per_byte: bool = False) -> "Command":
        return cls(encode_hex(hex_digits), per_byte=per_byte)

    def chunks(self):
        """Yield the writes needed to emit this command."""
        if self.per_byte:
            for i in range(len(self.data)):
                yield self.data[i:i + 1]
        else:
            yield self.data

    def __len__(self) -> int:
        return len(self.data)

    def hex(self) -> str:
        return self.data.hex()


GET_FIRMWARE_VERSION = Command.from_hex("2E")
GET_HARDWARE_VERSION = Command.from_hex("3F")
START_STREAMING = Command.from_hex("07")
STOP_STREAMING = Command.from_hex("20")
GET_EXG_REG1 = Command.from_hex("6300000A")
GET_EXG_REG2 = Command.from_hex("6301000A")
SET_EXG_REG1 = Command.from_hex("6100000A", per_byte=True)
SET_EXG_REG2 = Command.from_hex("6100010A", per_byte=True)
# Shimmer3 ExG test-signal defaults; both chips use the same register image
DEFAULT_TEST_REG1 = Command.from_hex("00A31045450000000201", per_byte=True)
DEFAULT_TEST_REG2 = Command.from_hex("00A31045450000000201", per_byte=True)

CATALOG: Dict[str, Command] = {
    "get_firmware_version": GET_FIRMWARE_VERSION,
    "get_hardware_version": GET_HARDWARE_VERSION,
    "start_streaming": START_STREAMING,
    "stop_streaming": STOP_STREAMING,
    "get_exg_reg1": GET_EXG_REG1,
    "get_exg_reg2": GET_EXG_REG2,
    "set_exg_reg1": SET_EXG_REG1,
    "set_exg_reg2": SET_EXG_REG2,
    "default_test_reg1": DEFAULT_TEST_REG1,
    "default_test_reg2": DEFAULT_TEST_REG2,
}


def resolve(text: str, extra: Optional[Dict[str, Any]] = None) -> Command:
    """Resolve a catalog name, a configured named command or raw hex.

    `extra` is the `commands:` config mapping, e.g.
    ``{"beep": {"hex": "07"}, "poke": {"hex": "6100000A", "per_byte": True}}``.
    Configured names shadow the built-in catalog.
    """
    key = text.strip()
    entry = (extra or {}).get(key)
    if isinstance(entry, dict):
        if "hex" not in entry:
            raise MalformedHex(f"command {key!r} has no 'hex' entry")
        return Command.from_hex(str(entry["hex"]), per_byte=bool(entry.get("per_byte", False)))
    if isinstance(entry, str):
        return Command.from_hex(entry)
    cmd = CATALOG.get(key.lower())
    if cmd is not None:
        return cmd
    return Command.from_hex(key)
