from __future__ import annotations
import asyncio, sys, threading, time
from typing import Any, Awaitable, Callable, Dict, Optional
from .config import AppCfg, load_config
from .errors import MalformedHex, TransportError
from .logs import NdjsonLogger
from .device import commands as C
from .device.frames import (
    ExgConfig, FirmwareVersion, Frame, FrameKind, HardwareVersion, StreamingSample, decode,
)
from .device.reassembler import AckEvent, DroppedBuffer, FrameReassembler
from .device.sequencer import Sequencer, Step, connect_sequence
from .device.session import ConnectionState, SessionContext
from .device.transport import CommandWriter, SerialTransport, Transport


class Bridge:
    """Single Shimmer connection: open, negotiate, stream, close.

    Decoded device messages are written to the NDJSON log and handed to the
    optional `on_event` listener as the same dict records.
    """

    def __init__(self, cfg: AppCfg, transport: Optional[Transport] = None, *,
                 logger: Optional[NdjsonLogger] = None,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.cfg = cfg
        lc = cfg.logging
        self.logger = logger or NdjsonLogger(lc.dir, lc.file_prefix, dual_file=lc.dual_file, debug_subdir=lc.debug_subdir)
        self.logger.mode = lc.mode
        if lc.verbose_whitelist:
            self.logger.verbose_whitelist.update(lc.verbose_whitelist)
        self.transport: Transport = transport or SerialTransport(
            cfg.serial.port, read_timeout_s=cfg.serial.read_timeout_s, read_size=cfg.serial.read_size)
        self.ctx = SessionContext()
        self.reassembler = FrameReassembler()
        self.sequencer: Optional[Sequencer] = None
        self.counters: Dict[str, int] = {"frames": 0, "samples": 0, "acks": 0, "dropped": 0}
        self._clock = clock
        self._sleep = sleep
        self._sessions = 0
        self._reader_task: Optional[asyncio.Task] = None
        self._close_task: Optional[asyncio.Task] = None
        self._on_event: Optional[Callable[[dict], None]] = None

    @property
    def state(self) -> ConnectionState:
        return self.ctx.state

    def on_event(self, fn: Callable[[dict], None]):
        self._on_event = fn

    def _emit(self, typ: str, msg: str, data: Optional[Dict[str, Any]] = None):
        rec = {"type": typ, "msg": msg, "state": self.ctx.state.value, "data": data or {}}
        self.logger.write(rec)
        if typ != "debug" and self._on_event:
            try:
                self._on_event(rec)
            except Exception as e:
                self.logger.write({"type": "debug", "msg": "listener_error", "data": {"error": repr(e)}})

    # ---------- connection lifecycle ----------

    async def connect(self):
        if self.ctx.state is not ConnectionState.IDLE:
            raise RuntimeError(f"cannot connect while {self.ctx.state.value}")
        try:
            line = self.cfg.line_config()
        except ValueError as e:
            self._emit("error", "open_failed", {"error": str(e)})
            raise
        self._sessions += 1
        self.ctx = SessionContext(session_id=self._sessions, state=ConnectionState.OPENING)
        self.reassembler.reset()
        try:
            await self.transport.open(line)
        except TransportError as e:
            self.ctx.state = ConnectionState.IDLE
            self._emit("error", "open_failed", {"error": str(e)})
            raise
        self._emit("event", "connected", {"port": self.cfg.serial.port, **line.to_dict()})
        self.ctx.state = ConnectionState.NEGOTIATING

        sc = self.cfg.sequence
        steps = connect_sequence(sc.step_interval_ms, sc.streaming_delay_ms, sc.exg_setup, sc.auto_stream)
        self.sequencer = Sequencer(self.ctx, CommandWriter(self.transport), steps, clock=self._clock, sleep=self._sleep)
        self.sequencer.on_step(self._on_step)
        self.sequencer.start().add_done_callback(self._sequence_done)
        self._reader_task = asyncio.create_task(self._read_loop())

    async def disconnect(self):
        await self._close("disconnect")

    async def wait_closed(self):
        """Wait for the reader loop to end (stream end, failure or disconnect)."""
        if self._reader_task is not None:
            await _join(self._reader_task)
        if self._close_task is not None:
            await _join(self._close_task)

    async def _close(self, reason: str):
        if self.ctx.state in (ConnectionState.IDLE, ConnectionState.CLOSING):
            return
        self.ctx.state = ConnectionState.CLOSING
        if self.sequencer:
            self.sequencer.cancel()
        task = self._reader_task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            await asyncio.wait([task])
        try:
            await self.transport.close()
        except TransportError as e:
            self._emit("error", "close_failed", {"error": str(e)})
        self.ctx.streaming = False
        self.ctx.state = ConnectionState.IDLE
        self._emit("event", "disconnected", {
            "reason": reason, "identity": self.ctx.identity.to_dict(), **self.counters})

    def _sequence_done(self, task: asyncio.Task):
        if task.cancelled() or task.exception() is None:
            return
        self._emit("error", "sequence_failed", {"error": str(task.exception())})
        self._close_task = asyncio.ensure_future(self._close("write_failed"))

    def _on_step(self, step: Step, fired: bool):
        self._emit("debug", "sequence_step", {"name": step.name, "offset_ms": step.offset_ms, "fired": fired})
        if not fired:
            return
        if step.name == "get_exg_reg2":
            self._emit("info", "streaming_scheduled", {"delay_ms": self.cfg.sequence.streaming_delay_ms})
        elif step.name == "start_streaming":
            self._emit("event", "streaming_started", {})

    # ---------- inbound ----------

    async def _read_loop(self):
        reason = "stream_end"
        try:
            while True:
                chunk = await self.transport.read()
                if chunk is None:
                    break
                self.feed(chunk)
        except TransportError as e:
            reason = "read_failed"
            self._emit("error", "read_failed", {"error": str(e)})
        await self._close(reason)

    def feed(self, chunk: bytes):
        """Push one raw chunk through reassembly and decoding."""
        if self.cfg.logging.log_raw_chunks:
            self._emit("debug", "raw_chunk", {"hex": chunk.hex(), "len": len(chunk)})
        for ev in self.reassembler.feed(chunk):
            if isinstance(ev, AckEvent):
                self.counters["acks"] += 1
                # Acks only matter to the operator once streaming was requested
                self._emit("event" if self.ctx.streaming else "debug", "ack", {})
            elif isinstance(ev, DroppedBuffer):
                self.counters["dropped"] += 1
                self._emit("debug", "frame_dropped", {"frame_hex": ev.data.hex(), "len": len(ev.data)})
            else:
                self._dispatch(ev)

    def _dispatch(self, frame: Frame):
        self.counters["frames"] += 1
        if frame.kind is FrameKind.STREAMING_SAMPLE and not self.ctx.streaming:
            self._emit("debug", "sample_ignored", {"frame_hex": frame.data.hex()})
            return
        msg = decode(frame, self.ctx)
        if isinstance(msg, StreamingSample):
            self.counters["samples"] += 1
            self._emit("event", "sample", {"values": msg.values})
        elif isinstance(msg, FirmwareVersion):
            self._emit("event", "firmware_version", {
                "identifier": msg.identifier, "major": msg.major, "minor": msg.minor,
                "internal": msg.internal, "frame_hex": frame.data.hex()})
        elif isinstance(msg, HardwareVersion):
            self._emit("event", "hardware_version", {
                "version": msg.version, "exg_capable": self.ctx.identity.exg_capable,
                "frame_hex": frame.data.hex()})
        elif isinstance(msg, ExgConfig):
            self._emit("event", "exg_config", {
                "chip": msg.chip, "registers": list(msg.registers), "frame_hex": frame.data.hex()})

    # ---------- outbound ----------

    def _require_open(self):
        if self.ctx.state not in (ConnectionState.NEGOTIATING, ConnectionState.STREAMING):
            raise TransportError(f"not connected ({self.ctx.state.value})")

    async def _write(self, cmd: C.Command):
        self._require_open()
        writer = CommandWriter(self.transport)
        try:
            await writer.write(cmd)
        finally:
            writer.release()
        self._emit("info", "command_sent", {"hex": cmd.hex(), "per_byte": cmd.per_byte})

    async def send_command(self, text: str):
        """Send a catalog name, a configured command name or raw hex digits."""
        cmd = C.resolve(text, self.cfg.commands)
        await self._write(cmd)

    async def send_hex(self, hex_digits: str):
        await self._write(C.Command(C.encode_hex(hex_digits)))

    async def start_streaming(self):
        self._require_open()
        # Set before the write so the first samples are not dropped
        prev = self.ctx.state, self.ctx.streaming
        self.ctx.streaming = True
        self.ctx.state = ConnectionState.STREAMING
        try:
            await self._write(C.START_STREAMING)
        except TransportError:
            self.ctx.state, self.ctx.streaming = prev
            raise
        self._emit("event", "streaming_started", {})

    async def stop_streaming(self):
        await self._write(C.STOP_STREAMING)
        self.ctx.streaming = False
        self.ctx.state = ConnectionState.NEGOTIATING
        self._emit("event", "streaming_stopped", {})

    def report_command_error(self, text: str, error: Exception):
        """Log a user-issued command that could not be parsed or written."""
        self._emit("error", "command_failed", {"input": text, "error": str(error)})

    async def _status_task(self):
        while True:
            self.logger.write({
                "type": "status",
                "msg": "alive",
                "data": {"state": self.ctx.state.value, **self.counters},
            })
            await asyncio.sleep(5)


async def _join(task: asyncio.Task):
    # asyncio.wait does not cancel the task when our caller is cancelled
    await asyncio.wait([task])
    if not task.cancelled() and task.exception() is not None:
        raise task.exception()

def _stdin_pump(loop: asyncio.AbstractEventLoop, q: asyncio.Queue):
    # Daemon thread: a blocking readline must not hold up interpreter exit
    try:
        for line in sys.stdin:
            loop.call_soon_threadsafe(q.put_nowait, line)
        loop.call_soon_threadsafe(q.put_nowait, None)
    except RuntimeError:
        return  # loop already closed


async def _stdin_commands(br: Bridge):
    """Each stdin line is a catalog name, configured command or hex; 'quit' disconnects."""
    q: asyncio.Queue = asyncio.Queue()
    threading.Thread(target=_stdin_pump, args=(asyncio.get_running_loop(), q), daemon=True).start()
    while True:
        line = await q.get()
        if line is None:
            return
        text = line.strip()
        if not text:
            continue
        if text.lower() in ("quit", "exit"):
            await br.disconnect()
            return
        try:
            if text.lower() == "stop":
                await br.stop_streaming()
            elif text.lower() == "start":
                await br.start_streaming()
            else:
                await br.send_command(text)
        except (MalformedHex, TransportError) as e:
            br.report_command_error(text, e)


async def run(config_path: str, interactive: bool = False):
    cfg = load_config(config_path)
    br = Bridge(cfg)
    await br.connect()
    tasks = [asyncio.create_task(br._status_task())]
    if interactive:
        tasks.append(asyncio.create_task(_stdin_commands(br)))
    try:
        await br.wait_closed()
    except asyncio.CancelledError:
        pass
    finally:
        for t in tasks:
            t.cancel()
        await br.disconnect()
        br.logger.close()
