import json
from pathlib import Path

from tools.summarize_ndjson import hms_to_ms, summarize


def _write(path: Path, recs):
    path.write_text("\n".join(json.dumps(r) for r in recs) + "\n", encoding="utf-8")


def test_summarize_session(tmp_path: Path):
    p = tmp_path / "shimmer_20260101_120000.ndjson"
    _write(p, [
        {"type": "event", "msg": "connected", "hms": "12:00:00.000", "session_id": "S1", "data": {}},
        {"type": "event", "msg": "firmware_version", "hms": "12:00:00.200", "session_id": "S1",
         "data": {"identifier": 3, "major": 0, "minor": 16, "internal": 0}},
        {"type": "event", "msg": "hardware_version", "hms": "12:00:00.400", "session_id": "S1", "data": {"version": 3}},
        {"type": "event", "msg": "exg_config", "hms": "12:00:01.000", "session_id": "S1", "data": {"chip": 1}},
        {"type": "event", "msg": "sample", "hms": "12:00:06.200", "session_id": "S1", "data": {"values": [1]}},
        {"type": "event", "msg": "sample", "hms": "12:00:06.210", "session_id": "S1", "data": {"values": [2]}},
        {"type": "event", "msg": "sample", "hms": "12:00:08.210", "session_id": "S1", "data": {"values": [3]}},
        {"type": "error", "msg": "read_failed", "hms": "12:00:09.000", "session_id": "S1",
         "data": {"error": "device unplugged"}},
        {"type": "event", "msg": "sample", "hms": "12:00:10.000", "session_id": "S2", "data": {"values": [4]}},
    ])
    s = summarize(p, gap_threshold_s=1.0, session_filter="S1")
    assert s.matched_any
    assert s.sample_count == 3
    assert [round(x) for x in s.sample_intervals_ms] == [10, 2000]
    assert len(s.sample_gaps) == 1
    assert s.firmware == {"identifier": 3, "major": 0, "minor": 16, "internal": 0}
    assert s.hardware_version == 3
    assert s.exg_chips == [1]
    assert s.errors["read_failed:device unplugged"] == 1
    assert s.counts["event"] == 7


def test_hms_to_ms():
    assert hms_to_ms("00:00:01.500") == 1500.0
    assert hms_to_ms("bad") is None
    assert hms_to_ms(None) is None
