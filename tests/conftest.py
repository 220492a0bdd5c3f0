"""Shared test fixtures."""

import threading
from pathlib import Path

import pytest

from cliptrim.engine import EngineHandle
from cliptrim.ffutil import FFmpegAttempt
from cliptrim.models import SourceFile
from cliptrim.pipeline import ExtractionPipeline
from cliptrim.sinks import MemorySink

FIXTURES_DIR = Path(__file__).parent / "fixtures"


class FakeBackend:
    """In-memory stand-in for FFmpegEngine.

    A trim command "succeeds" when its input exists and its ``-t`` is not
    negative; the output bytes record what was asked for.
    """

    def __init__(self, load_error=None, fail_outputs=(), progress_steps=(0.25, 1.5)):
        self.load_error = load_error
        self.fail_outputs = set(fail_outputs)
        self.progress_steps = progress_steps
        self.files: dict[str, bytes] = {}
        self.commands: list[list[str]] = []
        self.handlers: dict[str, list] = {}
        self.load_calls = 0
        self.terminate_calls = 0
        self.load_gate: threading.Event | None = None
        self.on_exec = None

    def load(self):
        self.load_calls += 1
        if self.load_gate is not None:
            self.load_gate.wait(timeout=5)
        if self.load_error is not None:
            raise self.load_error

    def on(self, event, handler):
        self.handlers.setdefault(event, []).append(handler)

    def emit(self, event, payload):
        for handler in self.handlers.get(event, []):
            handler(payload)

    def write_file(self, name, data):
        self.files[name] = bytes(data)

    def read_file(self, name):
        if name not in self.files:
            raise FileNotFoundError(name)
        return self.files[name]

    def delete_file(self, name):
        if name not in self.files:
            raise FileNotFoundError(name)
        del self.files[name]

    def exec(self, argv):
        self.commands.append(list(argv))
        if self.on_exec is not None:
            self.on_exec(argv)
        for step in self.progress_steps:
            self.emit("progress", {"progress": step})
        input_name, output = argv[argv.index("-i") + 1], argv[-1]
        start = float(argv[argv.index("-ss") + 1])
        length = float(argv[argv.index("-t") + 1])
        cmd = ["ffmpeg", *argv]
        if output in self.fail_outputs or length < 0 or input_name not in self.files:
            return FFmpegAttempt(cmd=cmd, returncode=1, stderr="Invalid duration\n")
        self.files[output] = f"{start:g}+{length:g}".encode()
        return FFmpegAttempt(cmd=cmd, returncode=0, stderr="")

    def terminate(self):
        self.terminate_calls += 1


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def engine(backend) -> EngineHandle:
    handle = EngineHandle(backend=backend)
    yield handle
    handle.terminate()


@pytest.fixture
def pipeline(engine) -> ExtractionPipeline:
    return ExtractionPipeline(engine)


@pytest.fixture
def sink() -> MemorySink:
    return MemorySink()


@pytest.fixture
def source() -> SourceFile:
    return SourceFile(name="talk.mp4", data=b"VIDEO", duration=10.0)


@pytest.fixture
def sample_manifest_path() -> Path:
    return FIXTURES_DIR / "sample_manifest.json"
