from __future__ import annotations
import asyncio
from dataclasses import dataclass
from typing import Optional, Protocol, Union

import serial  # pip install pyserial

from ..errors import TransportError
from .commands import Command

PARITIES = {
    "none": serial.PARITY_NONE,
    "even": serial.PARITY_EVEN,
    "odd": serial.PARITY_ODD,
    "mark": serial.PARITY_MARK,
    "space": serial.PARITY_SPACE,
}
BYTESIZES = {5: serial.FIVEBITS, 6: serial.SIXBITS, 7: serial.SEVENBITS, 8: serial.EIGHTBITS}
STOPBITS = {1: serial.STOPBITS_ONE, 1.5: serial.STOPBITS_ONE_POINT_FIVE, 2: serial.STOPBITS_TWO}
FLOW_CONTROLS = ("none", "hardware")


@dataclass(frozen=True)
class LineConfig:
    baud_rate: int = 115200
    data_bits: int = 8
    parity: str = "none"
    stop_bits: float = 1
    flow_control: str = "none"

    def validate(self) -> "LineConfig":
        if self.baud_rate <= 0:
            raise ValueError(f"baud rate must be positive, got {self.baud_rate}")
        if self.data_bits not in BYTESIZES:
            raise ValueError(f"data bits must be one of {sorted(BYTESIZES)}, got {self.data_bits}")
        if self.parity not in PARITIES:
            raise ValueError(f"parity must be one of {sorted(PARITIES)}, got {self.parity!r}")
        if self.stop_bits not in STOPBITS:
            raise ValueError(f"stop bits must be 1, 1.5 or 2, got {self.stop_bits}")
        if self.flow_control not in FLOW_CONTROLS:
            raise ValueError(f"flow control must be 'none' or 'hardware', got {self.flow_control!r}")
        return self

    def to_dict(self) -> dict:
        return {
            "baud_rate": self.baud_rate,
            "data_bits": self.data_bits,
            "parity": self.parity,
            "stop_bits": self.stop_bits,
            "flow_control": self.flow_control,
        }


class Transport(Protocol):
    """Byte stream + byte sink the bridge talks to.

    `lock` gives a writer exclusive access for one logical command.
    `read()` returns the next chunk, or None once the stream has ended.
    """

    lock: asyncio.Lock

    async def open(self, line: LineConfig) -> None:
        ...

    async def read(self) -> Optional[bytes]:
        ...

    async def write(self, data: bytes) -> None:
        ...

    async def close(self) -> None:
        ...


class SerialTransport:
    """pyserial-backed transport. Blocking calls run in worker threads."""

    def __init__(self, port: str, *, read_timeout_s: float = 0.1, read_size: int = 4096):
        self.port = port
        self.read_timeout_s = read_timeout_s
        self.read_size = read_size
        self.lock = asyncio.Lock()
        self._ser: Optional[serial.Serial] = None

    @property
    def is_open(self) -> bool:
        return self._ser is not None and self._ser.is_open

    async def open(self, line: LineConfig) -> None:
        line.validate()
        try:
            self._ser = await asyncio.to_thread(
                serial.Serial,
                port=self.port,
                baudrate=line.baud_rate,
                bytesize=BYTESIZES[line.data_bits],
                parity=PARITIES[line.parity],
                stopbits=STOPBITS[line.stop_bits],
                rtscts=line.flow_control == "hardware",
                timeout=self.read_timeout_s,
                write_timeout=1.0,
            )
        except (serial.SerialException, OSError, ValueError) as e:
            self._ser = None
            raise TransportError(f"cannot open {self.port}: {e}") from e

    def _read_once(self) -> bytes:
        ser = self._ser
        if ser is None:
            return b""
        first = ser.read(1)
        if not first:
            return b""
        # Keep whatever already arrived in the same chunk as its leading byte
        waiting = ser.in_waiting
        if waiting:
            return first + ser.read(min(waiting, self.read_size))
        return first

    async def read(self) -> Optional[bytes]:
        while True:
            if not self.is_open:
                return None
            try:
                data = await asyncio.to_thread(self._read_once)
            except (serial.SerialException, OSError, TypeError) as e:
                # TypeError: pyserial on POSIX when the port is closed under a pending read
                if not self.is_open:
                    return None
                raise TransportError(f"read from {self.port} failed: {e}") from e
            if data:
                return data

    async def write(self, data: bytes) -> None:
        ser = self._ser
        if ser is None or not ser.is_open:
            raise TransportError(f"{self.port} is not open")
        try:
            await asyncio.to_thread(ser.write, data)
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"write to {self.port} failed: {e}") from e

    async def close(self) -> None:
        ser, self._ser = self._ser, None
        if ser is None:
            return
        try:
            await asyncio.to_thread(ser.close)
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"close of {self.port} failed: {e}") from e


class CommandWriter:
    """Write handle over a transport.

    Each command is written while holding the transport lock, so two writers
    never interleave bytes of one command. Per-byte commands are emitted as
    single-byte writes inside that one hold. After `release()` the handle
    refuses further writes.
    """

    def __init__(self, transport: Transport):
        self.transport = transport
        self.released = False
        self.written = 0

    async def write(self, *commands: Union[Command, bytes]) -> None:
        if self.released:
            raise TransportError("write handle already released")
        async with self.transport.lock:
            for cmd in commands:
                if not isinstance(cmd, Command):
                    cmd = Command(bytes(cmd))
                for chunk in cmd.chunks():
                    await self.transport.write(chunk)
                    self.written += len(chunk)

    def release(self) -> None:
        self.released = True
