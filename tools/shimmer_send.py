#!/usr/bin/env python3
"""
Send one command to a Shimmer over serial and print whatever comes back.

Examples:
  python tools/shimmer_send.py --port /dev/rfcomm0 --cmd get_firmware_version
  python tools/shimmer_send.py --port COM5 --hex 6300000A --listen 1.0

Replies are run through the frame reassembler so known frames are decoded.
"""
import argparse, asyncio

from shimmer_exg_bridge.device.commands import resolve
from shimmer_exg_bridge.device.frames import decode
from shimmer_exg_bridge.device.reassembler import AckEvent, DroppedBuffer, FrameReassembler
from shimmer_exg_bridge.device.session import SessionContext
from shimmer_exg_bridge.device.transport import CommandWriter, LineConfig, SerialTransport
from shimmer_exg_bridge.errors import MalformedHex, TransportError


async def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--port", required=True)
    ap.add_argument("--baud", type=int, default=115200)
    ap.add_argument("--rtscts", action="store_true", help="hardware flow control")
    src = ap.add_mutually_exclusive_group(required=True)
    src.add_argument("--cmd", help="catalog command name, e.g. get_hardware_version")
    src.add_argument("--hex", help="raw hex digits, e.g. 3F")
    ap.add_argument("--listen", type=float, default=0.5, help="seconds to read replies")
    args = ap.parse_args()

    try:
        cmd = resolve(args.cmd or args.hex)
    except MalformedHex as e:
        raise SystemExit(f"[err] {e}")

    line = LineConfig(baud_rate=args.baud, flow_control="hardware" if args.rtscts else "none")
    tr = SerialTransport(args.port)
    try:
        await tr.open(line)
    except TransportError as e:
        raise SystemExit(f"[err] {e}")
    print(f"[serial] {args.port} @ {args.baud}")
    try:
        w = CommandWriter(tr)
        print(f"[write] len={len(cmd)} hex={cmd.hex()} per_byte={cmd.per_byte}")
        await w.write(cmd)
        w.release()

        ctx = SessionContext(streaming=True)
        ra = FrameReassembler()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + args.listen
        while loop.time() < deadline:
            try:
                chunk = await asyncio.wait_for(tr.read(), timeout=max(0.01, deadline - loop.time()))
            except asyncio.TimeoutError:
                break
            if chunk is None:
                break
            print(f"[read] {chunk.hex(' ')}")
            for ev in ra.feed(chunk):
                if isinstance(ev, AckEvent):
                    print("[ack]")
                elif isinstance(ev, DroppedBuffer):
                    print(f"[drop] {ev.data.hex(' ')}")
                else:
                    print(f"[frame] {decode(ev, ctx)}")
    finally:
        await tr.close()
    print("[ok] done")


if __name__ == "__main__":
    asyncio.run(main())
