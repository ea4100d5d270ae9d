import json
from pathlib import Path

from shimmer_exg_bridge.logs import NdjsonLogger


def _read_ndjson_lines(d: Path, pattern: str = "*.ndjson"):
    contents = []
    for f in d.glob(pattern):
        with f.open("r", encoding="utf-8") as fh:
            for line in fh:
                line = line.strip()
                if line:
                    contents.append(json.loads(line))
    return contents


def test_records_carry_identity_fields(tmp_path):
    d = tmp_path / "logs"
    logger = NdjsonLogger(str(d), "bridge_smoke")
    logger.write({"type": "event", "msg": "connected", "data": {"port": "COM5"}})
    logger.write({"type": "event", "msg": "disconnected", "data": {}})

    lines = _read_ndjson_lines(d, "bridge_smoke_*.ndjson")
    assert [l["msg"] for l in lines] == ["connected", "disconnected"]
    first = lines[0]
    assert first["seq"] == 1 and lines[1]["seq"] == 2
    assert first["schema"] == "v1"
    assert first["session_id"] == logger.session_id
    assert "hms" in first and "pid" in first


def test_suppresses_idle_heartbeat(tmp_path):
    d = tmp_path / "logs"
    logger = NdjsonLogger(str(d), "testbridge")
    logger.mode = "regular"
    logger.write({"type": "status", "msg": "alive", "data": {"state": "idle", "frames": 0}})
    assert _read_ndjson_lines(d) == []
    logger.write({"type": "status", "msg": "alive", "data": {"state": "streaming", "frames": 9}})
    assert len(_read_ndjson_lines(d)) == 1


def test_debug_whitelist_and_verbose_mode(tmp_path):
    d = tmp_path / "logs"
    logger = NdjsonLogger(str(d), "testbridge")
    logger.mode = "regular"
    logger.verbose_whitelist = set()
    logger.write({"type": "debug", "msg": "raw_chunk", "data": {"hex": "ff"}})
    assert _read_ndjson_lines(d) == []

    logger.verbose_whitelist = {"raw_chunk"}
    logger.write({"type": "debug", "msg": "raw_chunk", "data": {"hex": "ff"}})
    logger.write({"type": "debug", "msg": "sequence_step", "data": {}})
    assert [l["msg"] for l in _read_ndjson_lines(d)] == ["raw_chunk"]

    d2 = tmp_path / "logs2"
    verbose = NdjsonLogger(str(d2), "testbridge")
    verbose.mode = "verbose"
    verbose.write({"type": "debug", "msg": "sequence_step", "data": {}})
    assert len(_read_ndjson_lines(d2)) == 1


def test_frame_hex_is_annotated(tmp_path):
    d = tmp_path / "logs"
    logger = NdjsonLogger(str(d), "testbridge")
    logger.write({"type": "event", "msg": "hardware_version", "data": {"frame_hex": "ff2503"}})
    logger.write({"type": "event", "msg": "odd", "data": {"frame_hex": "ff99"}})
    lines = _read_ndjson_lines(d)
    assert lines[0]["data"]["frame"] == {"kind": "hardware_version", "len": 3}
    assert "frame" not in lines[1]["data"]
