import asyncio

import pytest

from shimmer_exg_bridge.device import commands as C
from shimmer_exg_bridge.device.sequencer import Sequencer, Step, connect_sequence
from shimmer_exg_bridge.device.session import ConnectionState, SessionContext
from shimmer_exg_bridge.device.transport import CommandWriter
from shimmer_exg_bridge.errors import TransportError


class RecordingTransport:
    def __init__(self, clock=None):
        self.lock = asyncio.Lock()
        self.writes = []
        self.clock = clock

    async def open(self, line):
        pass

    async def read(self):
        return None

    async def write(self, data):
        self.writes.append((self.clock() if self.clock else None, bytes(data)))

    async def close(self):
        pass


class FakeClock:
    """Virtual time; sleeping advances it instantly and runs hooks."""

    def __init__(self):
        self.t = 0.0
        self.hooks = []

    def __call__(self):
        return self.t

    async def sleep(self, d):
        self.t += d
        for at, fn in list(self.hooks):
            if self.t >= at:
                self.hooks.remove((at, fn))
                fn()


def run_sequence(ctx, steps=None, clock=None):
    clock = clock or FakeClock()
    tr = RecordingTransport(clock)
    seq = Sequencer(ctx, CommandWriter(tr), steps or connect_sequence(), clock=clock, sleep=clock.sleep)
    asyncio.run(seq.run())
    return seq, tr


def exg_ctx():
    ctx = SessionContext(state=ConnectionState.NEGOTIATING)
    ctx.identity.firmware_identifier = 3
    ctx.identity.hardware_version = 3
    return ctx


def test_default_schedule_offsets():
    steps = connect_sequence()
    assert [(s.offset_ms, s.name) for s in steps] == [
        (200, "get_firmware_version"),
        (400, "get_hardware_version"),
        (600, "set_exg_reg1"),
        (800, "set_exg_reg2"),
        (1000, "get_exg_reg1"),
        (1200, "get_exg_reg2"),
        (6200, "start_streaming"),
        (6400, "release_writer"),
    ]


def test_schedule_without_exg_setup_or_streaming():
    names = [s.name for s in connect_sequence(exg_setup=False, auto_stream=False)]
    assert names == ["get_firmware_version", "get_hardware_version", "release_writer"]


def test_exg_identity_runs_all_steps():
    ctx = exg_ctx()
    seq, tr = run_sequence(ctx)
    assert seq.skipped == []
    assert seq.fired == [s.name for s in connect_sequence()]
    data = [d for _, d in tr.writes]
    reg1 = [bytes([b]) for b in C.SET_EXG_REG1.data + C.DEFAULT_TEST_REG1.data]
    assert data[0] == b"\x2e"
    assert data[1] == b"\x3f"
    assert data[2:2 + len(reg1)] == reg1
    assert data[-3:] == [C.GET_EXG_REG1.data, C.GET_EXG_REG2.data, b"\x07"]
    assert ctx.streaming and ctx.state is ConnectionState.STREAMING
    assert ctx.chip_selector == 2
    assert seq.writer.released


def test_non_exg_identity_skips_exg_steps_silently():
    ctx = SessionContext()
    ctx.identity.firmware_identifier = 1
    ctx.identity.hardware_version = 3
    seq, tr = run_sequence(ctx)
    assert seq.skipped == ["set_exg_reg1", "set_exg_reg2", "get_exg_reg1", "get_exg_reg2"]
    assert seq.fired == ["get_firmware_version", "get_hardware_version", "start_streaming", "release_writer"]
    assert [d for _, d in tr.writes] == [b"\x2e", b"\x3f", b"\x07"]
    assert ctx.chip_selector is None


def test_steps_fire_at_absolute_offsets():
    ctx = exg_ctx()
    seq, tr = run_sequence(ctx)
    times = [round(t * 1000) for t, d in tr.writes if len(d) > 1 or d in (b"\x2e", b"\x3f", b"\x07")]
    assert times[:2] == [200, 400]
    assert times[-3:] == [1000, 1200, 6200]


def test_slow_step_does_not_shift_later_steps():
    clock = FakeClock()
    fired_at = []

    async def slow(ctx, writer):
        fired_at.append(clock())
        clock.t += 0.15  # step takes 150 ms

    async def mark(ctx, writer):
        fired_at.append(clock())

    steps = [Step(100, "slow", slow), Step(300, "next", mark), Step(350, "late", mark)]
    run_sequence(SessionContext(), steps, clock)
    assert [round(t * 1000) for t in fired_at] == [100, 300, 350]


def test_identity_learned_mid_sequence_enables_exg_steps():
    ctx = SessionContext()
    clock = FakeClock()

    def replies():
        ctx.identity.firmware_identifier = 3
        ctx.identity.hardware_version = 3

    # identity arrives between the hardware query and the first ExG step
    clock.hooks.append((0.5, replies))
    seq, _ = run_sequence(ctx, clock=clock)
    assert seq.skipped == []
    assert "set_exg_reg1" in seq.fired


def test_cancel_drops_pending_steps():
    ctx = exg_ctx()
    clock = FakeClock()
    holder = {}
    clock.hooks.append((0.9, lambda: holder["seq"].cancel()))
    tr = RecordingTransport(clock)
    seq = Sequencer(ctx, CommandWriter(tr), connect_sequence(), clock=clock, sleep=clock.sleep)
    holder["seq"] = seq
    asyncio.run(seq.run())
    assert seq.cancelled
    assert seq.fired == ["get_firmware_version", "get_hardware_version", "set_exg_reg1", "set_exg_reg2"]
    assert not ctx.streaming
    assert not seq.writer.released


def test_new_session_invalidates_old_sequencer():
    ctx = exg_ctx()
    clock = FakeClock()

    def reconnect():
        ctx.session_id += 1

    clock.hooks.append((0.3, reconnect))
    seq, tr = run_sequence(ctx, clock=clock)
    assert seq.fired == ["get_firmware_version"]


def test_task_cancel_via_start():
    async def main():
        ctx = exg_ctx()
        tr = RecordingTransport()
        seq = Sequencer(ctx, CommandWriter(tr), connect_sequence())
        task = seq.start()
        await asyncio.sleep(0)
        seq.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        return tr

    tr = asyncio.run(main())
    assert tr.writes == []


def test_released_writer_refuses_writes():
    async def main():
        w = CommandWriter(RecordingTransport())
        await w.write(C.GET_FIRMWARE_VERSION)
        w.release()
        with pytest.raises(TransportError):
            await w.write(C.GET_HARDWARE_VERSION)
        return w

    w = asyncio.run(main())
    assert w.written == 1


def test_per_byte_command_holds_lock_for_whole_command():
    async def main():
        tr = RecordingTransport()
        a, b = CommandWriter(tr), CommandWriter(tr)
        await asyncio.gather(a.write(C.SET_EXG_REG1), b.write(C.GET_EXG_REG2))
        return [d for _, d in tr.writes]

    writes = asyncio.run(main())
    assert writes == [b"\x61", b"\x00", b"\x00", b"\x0a", C.GET_EXG_REG2.data]
