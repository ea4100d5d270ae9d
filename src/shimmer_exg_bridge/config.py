
from __future__ import annotations
import yaml
from dataclasses import dataclass, field
from typing import Optional, List, Any, Dict

from .device.transport import LineConfig

@dataclass
class SerialCfg:
    port: str = "/dev/ttyUSB0"
    baud_rate: int = 115200
    # Non-standard rates; when set this wins over baud_rate
    custom_baud_rate: Optional[int] = None
    data_bits: int = 8
    # none | even | odd | mark | space
    parity: str = "none"
    stop_bits: float = 1
    # none | hardware (RTS/CTS)
    flow_control: str = "none"
    # Short read timeout keeps the reader loop responsive to disconnect
    read_timeout_s: float = 0.1
    read_size: int = 4096

@dataclass
class SequenceCfg:
    # Spacing between connect-time commands; the device needs settling time
    step_interval_ms: int = 200
    # Wait after the last ExG register query before streaming starts
    streaming_delay_ms: int = 5000
    # Write the default ExG test registers and read them back (Shimmer3 ExG only)
    exg_setup: bool = True
    auto_stream: bool = True

@dataclass
class LoggingCfg:
    dir: str = "./logs"
    file_prefix: str = "shimmer"
    # 'regular' filters debug records unless whitelisted; 'verbose' emits everything.
    mode: str = "regular"
    # Message names emitted even in regular mode, e.g. ["raw_chunk","frame_dropped"].
    verbose_whitelist: Optional[List[str]] = None
    # Compact main log in `dir`, full debug log in `dir/debug`.
    dual_file: bool = True
    debug_subdir: Optional[str] = "debug"
    # Log every serial read as a debug record (high rate while streaming)
    log_raw_chunks: bool = False

@dataclass
class AppCfg:
    serial: SerialCfg
    sequence: SequenceCfg
    logging: LoggingCfg
    # Optional named commands, e.g.:
    # commands:
    #   battery: { hex: "95" }
    #   exg_poke: { hex: "6100000A", per_byte: true }
    commands: Dict[str, Any] = field(default_factory=dict)

    def line_config(self) -> LineConfig:
        s = self.serial
        return LineConfig(
            baud_rate=s.custom_baud_rate or s.baud_rate,
            data_bits=s.data_bits,
            parity=s.parity,
            stop_bits=s.stop_bits,
            flow_control=s.flow_control,
        ).validate()

def _as_float(d, key, default):
    v = d.get(key, default)
    try:
        return float(v)
    except (TypeError, ValueError):
        return default

def _as_int(d, key, default):
    v = d.get(key, default)
    try:
        return int(v)
    except (TypeError, ValueError):
        return default

def _as_bool(d, key, default):
    v = d.get(key, default)
    if isinstance(v, str):
        return v.strip().lower() not in ("", "0", "false", "no", "off")
    return bool(v)

def _stop_bits(v):
    f = float(v)
    return int(f) if f.is_integer() else f

def load_config(path: str) -> AppCfg:
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    # Coerce numeric fields to avoid YAML/ENV string issues
    ser_raw = dict(raw.get("serial", {}) or {})
    custom = ser_raw.get("custom_baud_rate")
    ser = SerialCfg(
        port=str(ser_raw.get("port", SerialCfg.port)),
        baud_rate=_as_int(ser_raw, "baud_rate", SerialCfg.baud_rate),
        custom_baud_rate=_as_int(ser_raw, "custom_baud_rate", None) if custom not in (None, "") else None,
        data_bits=_as_int(ser_raw, "data_bits", SerialCfg.data_bits),
        parity=str(ser_raw.get("parity", SerialCfg.parity)).lower(),
        stop_bits=_stop_bits(_as_float(ser_raw, "stop_bits", SerialCfg.stop_bits)),
        flow_control=str(ser_raw.get("flow_control", SerialCfg.flow_control)).lower(),
        read_timeout_s=_as_float(ser_raw, "read_timeout_s", SerialCfg.read_timeout_s),
        read_size=_as_int(ser_raw, "read_size", SerialCfg.read_size),
    )
    seq_raw = dict(raw.get("sequence", {}) or {})
    seq = SequenceCfg(
        step_interval_ms=_as_int(seq_raw, "step_interval_ms", SequenceCfg.step_interval_ms),
        streaming_delay_ms=_as_int(seq_raw, "streaming_delay_ms", SequenceCfg.streaming_delay_ms),
        exg_setup=_as_bool(seq_raw, "exg_setup", SequenceCfg.exg_setup),
        auto_stream=_as_bool(seq_raw, "auto_stream", SequenceCfg.auto_stream),
    )
    log = LoggingCfg(**(raw.get("logging", {}) or {}))
    commands = dict(raw.get("commands", {}) or {})
    return AppCfg(serial=ser, sequence=seq, logging=log, commands=commands)
