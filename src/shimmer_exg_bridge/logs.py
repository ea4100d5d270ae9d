
from __future__ import annotations
import os, json, time, pathlib, uuid
from typing import Optional, IO

from .device.frames import describe_frame_hex

class NdjsonLogger:
    def __init__(self, directory: str, file_prefix: str, *, dual_file: bool = False, debug_subdir: Optional[str] = None):
        self.dir = pathlib.Path(directory)
        self.dir.mkdir(parents=True, exist_ok=True)
        self.prefix = file_prefix
        # Dual-file config
        self.dual_file = bool(dual_file)
        self.debug_subdir = debug_subdir or "debug"
        self._debug_dir: Optional[pathlib.Path] = None
        self.seq = 0
        self._fh: Optional[IO[str]] = None
        self._rot_day: Optional[str] = None
        self._path: Optional[pathlib.Path] = None
        self._debug_fh: Optional[IO[str]] = None
        self._debug_path: Optional[pathlib.Path] = None
        # Logging mode: 'regular' or 'verbose'. In regular mode, debug-level
        # events are dropped from the main file unless whitelisted. The bridge
        # overrides these from config after construction.
        self.mode: str = os.getenv("LOG_MODE", "regular")
        # Message names (obj['msg']) emitted even in regular mode.
        wl = os.getenv("LOG_VERBOSE_WHITELIST", "")
        self.verbose_whitelist = set([s.strip() for s in wl.split(",") if s.strip()])
        # Per-run identifiers
        self.session_id: str = os.getenv("SESSION_ID") or uuid.uuid4().hex[:12]
        self.pid: int = os.getpid()
        self.rotate()

    @property
    def path(self) -> Optional[pathlib.Path]:
        return self._path

    def rotate(self):
        self.close()

        # Time-coded filename, e.g. shimmer_YYYYMMDD_HHMMSS.ndjson
        now = time.time()
        stamp = time.strftime("%Y%m%d_%H%M%S", time.localtime(now))
        day = stamp[:8]
        path = self.dir / f"{self.prefix}_{stamp}.ndjson"
        self._fh = open(path, "a", buffering=1, encoding="utf-8")
        self._path = path
        if self.dual_file:
            self._debug_dir = self.dir / self.debug_subdir
            try:
                self._debug_dir.mkdir(parents=True, exist_ok=True)
            except OSError:
                self._debug_dir = self.dir
            dpath = self._debug_dir / f"{self.prefix}_debug_{stamp}.ndjson"
            try:
                self._debug_fh = open(dpath, "a", buffering=1, encoding="utf-8")
                self._debug_path = dpath
            except OSError:
                self._debug_fh = None
        self._rot_day = day

        # Daily alias pointing at the newest file of the day. The suffix keeps
        # it out of *.ndjson globs; failure to link is non-fatal.
        self._link_alias(path, self.dir / f"{self.prefix}_{day}.ndjson.latest")
        if self.dual_file and self._debug_path and self._debug_dir:
            self._link_alias(self._debug_path, self._debug_dir / f"{self.prefix}_debug_{day}.ndjson.latest")

    @staticmethod
    def _link_alias(target: pathlib.Path, alias: pathlib.Path):
        try:
            if alias.exists() or alias.is_symlink():
                alias.unlink()
            # Prefer hardlink when possible (same filesystem); fallback to symlink
            try:
                os.link(target, alias)
            except OSError:
                os.symlink(str(target), alias)
        except OSError:
            pass

    def close(self):
        for fh in (self._fh, self._debug_fh):
            if fh:
                try:
                    fh.close()
                except OSError:
                    pass
        self._fh = None
        self._debug_fh = None

    def _allowed_in_main(self, obj: dict) -> bool:
        if self.mode != "regular":
            return True
        typ = obj.get("type")
        msg = obj.get("msg")
        data = obj.get("data") if isinstance(obj.get("data"), dict) else {}
        # Idle heartbeats carry no information
        if typ == "status" and msg == "alive" and data.get("state") == "idle":
            return False
        if typ == "debug":
            return bool(msg) and msg in self.verbose_whitelist
        return True

    def write(self, obj: dict):
        main_ok = self._allowed_in_main(obj)
        # Frame hex attached by the bridge gets its classified kind so logs
        # are easier to read.
        data = obj.get("data")
        if isinstance(data, dict) and isinstance(data.get("frame_hex"), str):
            f = describe_frame_hex(data["frame_hex"])
            if f:
                data["frame"] = f

        self.seq += 1
        now = time.time()
        lt = time.localtime(now)
        msec = int((now % 1.0) * 1000)
        obj.setdefault("hms", time.strftime("%H:%M:%S", lt) + f".{msec:03d}")
        obj.setdefault("seq", self.seq)
        obj.setdefault("schema", "v1")
        obj.setdefault("session_id", self.session_id)
        obj.setdefault("pid", self.pid)
        # If rotation day changed, rotate handles (this will also reopen debug fh)
        if time.strftime("%Y%m%d", lt) != self._rot_day:
            self.rotate()

        line = json.dumps(obj) + "\n"
        # Full record always goes to the debug file
        if self.dual_file and self._debug_fh:
            self._debug_fh.write(line)
        if main_ok and self._fh:
            self._fh.write(line)
