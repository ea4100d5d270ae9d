from __future__ import annotations
import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

from . import commands as C
from .session import ConnectionState, SessionContext
from .transport import CommandWriter

Action = Callable[[SessionContext, CommandWriter], Awaitable[None]]
Precondition = Callable[[SessionContext], bool]


@dataclass(frozen=True)
class Step:
    offset_ms: int
    name: str
    action: Action
    precondition: Optional[Precondition] = None


def exg_capable(ctx: SessionContext) -> bool:
    return ctx.identity.exg_capable


def _send(*cmds: C.Command) -> Action:
    async def action(ctx: SessionContext, writer: CommandWriter) -> None:
        await writer.write(*cmds)
    return action


def _query_exg(chip: int, cmd: C.Command) -> Action:
    async def action(ctx: SessionContext, writer: CommandWriter) -> None:
        ctx.arm_chip(chip)
        await writer.write(cmd)
    return action


async def _start_streaming(ctx: SessionContext, writer: CommandWriter) -> None:
    ctx.streaming = True
    ctx.state = ConnectionState.STREAMING
    await writer.write(C.START_STREAMING)


async def _release(ctx: SessionContext, writer: CommandWriter) -> None:
    writer.release()


def connect_sequence(step_interval_ms: int = 200, streaming_delay_ms: int = 5000,
                     exg_setup: bool = True, auto_stream: bool = True) -> List[Step]:
    """Schedule run after the port opens.

    Offsets are absolute from open. The ExG steps only fire for a Shimmer3
    ExG unit (firmware identifier 3, hardware version 3) and are skipped
    silently otherwise. Streaming starts `streaming_delay_ms` after the last
    register query to let the ExG chips settle.
    """
    i = step_interval_ms
    steps = [
        Step(1 * i, "get_firmware_version", _send(C.GET_FIRMWARE_VERSION)),
        Step(2 * i, "get_hardware_version", _send(C.GET_HARDWARE_VERSION)),
    ]
    if exg_setup:
        steps += [
            Step(3 * i, "set_exg_reg1", _send(C.SET_EXG_REG1, C.DEFAULT_TEST_REG1), exg_capable),
            Step(4 * i, "set_exg_reg2", _send(C.SET_EXG_REG2, C.DEFAULT_TEST_REG2), exg_capable),
            Step(5 * i, "get_exg_reg1", _query_exg(1, C.GET_EXG_REG1), exg_capable),
            Step(6 * i, "get_exg_reg2", _query_exg(2, C.GET_EXG_REG2), exg_capable),
        ]
    stream_at = 6 * i + streaming_delay_ms
    if auto_stream:
        steps.append(Step(stream_at, "start_streaming", _start_streaming))
    steps.append(Step(stream_at + i, "release_writer", _release))
    return steps


class Sequencer:
    """Fire steps at fixed offsets from start, evaluating preconditions late.

    Timing is absolute: a slow step does not push later ones back. `clock`
    and `sleep` are injectable so tests can run the schedule without real
    delays. `cancel()` drops every step that has not fired yet.
    """

    def __init__(self, ctx: SessionContext, writer: CommandWriter, steps: List[Step], *,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.ctx = ctx
        self.writer = writer
        self.steps = sorted(steps, key=lambda s: s.offset_ms)
        self.clock = clock
        self.sleep = sleep
        self.fired: List[str] = []
        self.skipped: List[str] = []
        self.cancelled = False
        self._session_id = ctx.session_id
        self._task: Optional[asyncio.Task] = None
        self._on_step: Optional[Callable[[Step, bool], None]] = None

    def on_step(self, fn: Callable[[Step, bool], None]):
        """Callback (step, fired) invoked after each step fires or is skipped."""
        self._on_step = fn

    def _active(self) -> bool:
        return not self.cancelled and self.ctx.session_id == self._session_id

    async def run(self) -> None:
        start = self.clock()
        for step in self.steps:
            if not self._active():
                return
            delay = start + step.offset_ms / 1000.0 - self.clock()
            if delay > 0:
                await self.sleep(delay)
            if not self._active():
                return
            if step.precondition is not None and not step.precondition(self.ctx):
                self.skipped.append(step.name)
                self._notify(step, False)
                continue
            await step.action(self.ctx, self.writer)
            self.fired.append(step.name)
            self._notify(step, True)

    def _notify(self, step: Step, fired: bool) -> None:
        if self._on_step:
            self._on_step(step, fired)

    def start(self) -> asyncio.Task:
        self._task = asyncio.create_task(self.run())
        return self._task

    def cancel(self) -> None:
        self.cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
