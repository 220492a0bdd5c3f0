"""FFmpeg/ffprobe subprocess helpers and the in-process FFmpeg engine."""

import json
import logging
import re
import shlex
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

_log = logging.getLogger(__name__)

_DEFAULT_STDERR_TAIL_LINES = 40
_DURATION_RE = re.compile(r"Duration: (\d+):(\d+):(\d+(?:\.\d+)?)")


class FFmpegNotFoundError(RuntimeError):
    pass


def check_ffmpeg(ffmpeg_path: str = "ffmpeg", ffprobe_path: str = "ffprobe") -> None:
    """Raise FFmpegNotFoundError if ffmpeg/ffprobe are not on PATH."""
    for cmd in (ffmpeg_path, ffprobe_path):
        if shutil.which(cmd) is None:
            raise FFmpegNotFoundError(f"{cmd} not found on PATH")


def probe_duration(input_path: Path, ffprobe_path: str = "ffprobe") -> float | None:
    """Return the container duration in seconds, or None if it can't be read."""
    cmd = [
        ffprobe_path,
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        str(input_path),
    ]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, check=False)
    except FileNotFoundError:
        _log.warning("ffprobe not found at %s", ffprobe_path)
        return None
    if result.returncode != 0:
        _log.warning("ffprobe failed for %s (rc=%s)", input_path, result.returncode)
        return None
    try:
        data = json.loads(result.stdout or "{}")
        duration = float(data["format"]["duration"])
    except (ValueError, KeyError, TypeError):
        _log.warning("ffprobe returned no usable duration for %s", input_path)
        return None
    return duration if duration > 0 else None


def parse_header_duration(stderr: str) -> float | None:
    """Read the first ``Duration: HH:MM:SS.xx`` header from ffmpeg stderr."""
    m = _DURATION_RE.search(stderr)
    if m is None:
        return None
    h, mnt, s = m.groups()
    return int(h) * 3600 + int(mnt) * 60 + float(s)


def format_seconds(value: float) -> str:
    """Render seconds as a plain decimal string: 3 -> "3", 0.5 -> "0.5"."""
    text = f"{float(value):.6f}".rstrip("0").rstrip(".")
    return "0" if text in ("", "-0") else text


@dataclass(frozen=True)
class FFmpegAttempt:
    cmd: list[str]
    returncode: int
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def repro(self) -> str:
        return " ".join(shlex.quote(str(c)) for c in self.cmd)

    def stderr_tail(self, *, max_lines: int = _DEFAULT_STDERR_TAIL_LINES) -> str:
        if not self.stderr:
            return ""
        lines = self.stderr.strip().splitlines()
        return "\n".join(lines[-max_lines:]).strip()


def _expected_duration(argv: list[str]) -> float | None:
    if "-t" in argv:
        i = argv.index("-t")
        try:
            return float(argv[i + 1])
        except (IndexError, ValueError):
            return None
    return None


class FFmpegEngine:
    """FFmpeg driven in-process against a private working directory.

    Virtual names are bare file names inside that directory; commands run with
    it as their cwd so they can refer to those names directly. Progress is
    published on the ``"progress"`` event as ``{"progress": frac, "time": secs}``.
    """

    def __init__(self, ffmpeg_path: str = "ffmpeg", work_root: Path | None = None) -> None:
        self.ffmpeg_path = ffmpeg_path
        self.work_root = work_root
        self.work_dir: Path | None = None
        self._binary: str | None = None
        self._handlers: dict[str, list[Callable[[dict], None]]] = {}
        self._process: subprocess.Popen | None = None

    @property
    def loaded(self) -> bool:
        return self.work_dir is not None

    def load(self) -> None:
        binary = shutil.which(self.ffmpeg_path)
        if binary is None:
            raise FFmpegNotFoundError(f"{self.ffmpeg_path} not found on PATH")
        if self.work_root is not None:
            Path(self.work_root).mkdir(parents=True, exist_ok=True)
        self._binary = binary
        self.work_dir = Path(tempfile.mkdtemp(prefix="cliptrim_", dir=self.work_root))
        _log.debug("ffmpeg engine loaded: binary=%s work_dir=%s", binary, self.work_dir)

    def on(self, event: str, handler: Callable[[dict], None]) -> None:
        self._handlers.setdefault(event, []).append(handler)

    def _emit(self, event: str, payload: dict) -> None:
        for handler in list(self._handlers.get(event, [])):
            handler(payload)

    def _path(self, name: str) -> Path:
        if self.work_dir is None:
            raise RuntimeError("ffmpeg engine is not loaded")
        if not name or name in (".", "..") or "/" in name or "\\" in name:
            raise ValueError(f"Invalid virtual file name: {name!r}")
        return self.work_dir / name

    def write_file(self, name: str, data: bytes) -> None:
        self._path(name).write_bytes(data)

    def read_file(self, name: str) -> bytes:
        return self._path(name).read_bytes()

    def delete_file(self, name: str) -> None:
        self._path(name).unlink()

    def exec(self, argv: list[str]) -> FFmpegAttempt:
        """Run one ffmpeg command, streaming progress from ``-progress pipe:2``."""
        if self.work_dir is None or self._binary is None:
            raise RuntimeError("ffmpeg engine is not loaded")

        cmd = [self._binary, "-hide_banner", "-nostdin", "-y", "-progress", "pipe:2", *argv]
        total = _expected_duration(argv)
        stderr_lines: list[str] = []
        last: float | None = None

        self._process = subprocess.Popen(
            cmd,
            cwd=self.work_dir,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            text=True,
        )
        process = self._process
        try:
            for line in process.stderr or ():
                stderr_lines.append(line)
                if total is None and line.lstrip().startswith("Duration:"):
                    total = parse_header_duration(line)
                if line.startswith("progress=end"):
                    self._emit("progress", {"progress": 1.0, "time": total or 0.0})
                    continue
                if not line.startswith("out_time_ms=") or not total or total <= 0:
                    continue
                try:
                    seconds = float(line.strip().split("=", 1)[1]) / 1_000_000.0
                except ValueError:
                    continue
                frac = max(0.0, min(1.0, seconds / total))
                if last is None or frac - last >= 0.01:
                    last = frac
                    self._emit("progress", {"progress": frac, "time": seconds})
            process.wait()
        finally:
            if process.stderr is not None:
                process.stderr.close()
            self._process = None

        return FFmpegAttempt(cmd=cmd, returncode=int(process.returncode), stderr="".join(stderr_lines))

    def terminate(self) -> None:
        if self._process is not None and self._process.poll() is None:
            self._process.kill()
        if self.work_dir is not None:
            shutil.rmtree(self.work_dir, ignore_errors=True)
            _log.debug("ffmpeg engine work dir removed: %s", self.work_dir)
        self.work_dir = None
        self._binary = None
        self._handlers.clear()
