import argparse
import json
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional


@dataclass
class Gap:
    start_ms: float
    end_ms: float
    dur_ms: float


@dataclass
class Summary:
    counts: Counter = field(default_factory=Counter)
    by_msg: Counter = field(default_factory=Counter)
    errors: Counter = field(default_factory=Counter)
    sample_count: int = 0
    sample_intervals_ms: List[float] = field(default_factory=list)
    sample_gaps: List[Gap] = field(default_factory=list)
    firmware: Optional[Dict[str, Any]] = None
    hardware_version: Optional[int] = None
    exg_chips: List[int] = field(default_factory=list)
    matched_any: bool = False


def parse_ndjson_lines(path: Path) -> Iterable[Dict[str, Any]]:
    with path.open("r", encoding="utf-8") as f:
        for ln, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError as e:
                print(f"WARN: Failed to parse line {ln}: {e}")


def hms_to_ms(hms: Any) -> Optional[float]:
    """'HH:MM:SS.mmm' -> milliseconds since midnight."""
    if not isinstance(hms, str):
        return None
    try:
        h, m, s = hms.split(":")
        return (int(h) * 3600 + int(m) * 60 + float(s)) * 1000.0
    except ValueError:
        return None


def summarize(path: Path, gap_threshold_s: float = 1.0, session_filter: Optional[str] = None) -> Summary:
    out = Summary()
    last_sample_ms: Optional[float] = None
    for rec in parse_ndjson_lines(path):
        if session_filter is not None and rec.get("session_id") != session_filter:
            continue
        out.matched_any = True
        rtype = rec.get("type")
        msg = rec.get("msg")
        data = rec.get("data") if isinstance(rec.get("data"), dict) else {}
        out.counts[rtype] += 1
        if msg:
            out.by_msg[msg] += 1

        if msg == "sample":
            out.sample_count += 1
            ts = hms_to_ms(rec.get("hms"))
            if ts is not None and last_sample_ms is not None:
                dt = ts - last_sample_ms
                if dt >= 0:
                    out.sample_intervals_ms.append(dt)
                    if dt > gap_threshold_s * 1000.0:
                        out.sample_gaps.append(Gap(last_sample_ms, ts, dt))
            if ts is not None:
                last_sample_ms = ts
        elif msg == "firmware_version":
            out.firmware = {k: data.get(k) for k in ("identifier", "major", "minor", "internal")}
        elif msg == "hardware_version":
            out.hardware_version = data.get("version")
        elif msg == "exg_config" and data.get("chip") is not None:
            out.exg_chips.append(data["chip"])

        if rtype == "error":
            emsg = msg or "error"
            out.errors[f"{emsg}:{data.get('error', '')}"] += 1
    return out


def print_summary(path: Path, s: Summary, session_filter: Optional[str], gap_threshold_s: float) -> None:
    print(f"File: {path}")
    if session_filter is not None:
        print(f"Session filter: {session_filter}")
        if not s.matched_any:
            print("No records matched the requested session_id.")
            return
    print("Counts by type:")
    for k in sorted(s.counts, key=str):
        print(f"  {k}: {s.counts[k]}")
    if s.by_msg:
        print("Top messages:")
        for k, v in s.by_msg.most_common(10):
            print(f"  {k}: {v}")
    if s.firmware:
        fw = s.firmware
        print(f"Firmware: id={fw['identifier']} v{fw['major']}.{fw['minor']}.{fw['internal']}")
    if s.hardware_version is not None:
        print(f"Hardware version: {s.hardware_version}")
    if s.exg_chips:
        print(f"ExG register dumps: chips {sorted(set(s.exg_chips))}")
    if s.sample_count:
        print(f"samples: {s.sample_count}")
        if s.sample_intervals_ms:
            avg = sum(s.sample_intervals_ms) / len(s.sample_intervals_ms)
            print(f"  avg interval: {avg:.1f} ms")
        print(f"  gaps > {gap_threshold_s:g}s: {len(s.sample_gaps)}")
    if s.errors:
        print("Errors (grouped):")
        for k, v in s.errors.most_common(10):
            print(f"  {k[:100]}: {v}")


def main() -> None:
    ap = argparse.ArgumentParser(description="Summarize Shimmer bridge NDJSON logs")
    ap.add_argument("path", type=Path, help="Path to shimmer_YYYYMMDD_HHMMSS.ndjson")
    ap.add_argument("--gap-sec", type=float, default=1.0, help="Gap threshold seconds for the sample stream")
    ap.add_argument("--session", type=str, default=None, help="Only include records with this session_id")
    args = ap.parse_args()
    s = summarize(args.path, gap_threshold_s=args.gap_sec, session_filter=args.session)
    print_summary(args.path, s, args.session, args.gap_sec)


if __name__ == "__main__":
    main()
