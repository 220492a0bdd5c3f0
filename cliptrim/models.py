"""Shared data types used across ClipTrim."""

from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path


@dataclass
class SourceFile:
    """The video being cut: raw bytes plus what is known about them.

    ``duration`` is ``None`` until the file has been decoded/probed.
    """

    name: str
    data: bytes
    duration: float | None = None

    @property
    def byte_length(self) -> int:
        return len(self.data)

    @property
    def extension(self) -> str:
        return Path(self.name).suffix.lower()

    @classmethod
    def from_path(cls, path: str | Path, duration: float | None = None) -> "SourceFile":
        path = Path(path)
        return cls(name=path.name, data=path.read_bytes(), duration=duration)


@dataclass
class SegmentSpec:
    """One requested extraction, in seconds."""

    start: float
    end: float
    index: int = 0

    @property
    def length(self) -> float:
        # May be zero or negative; the engine decides what that means.
        return self.end - self.start


class EngineState(str, Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"
    TERMINATED = "terminated"


class RunStatus(str, Enum):
    IDLE = "idle"
    STAGING = "staging"
    RUNNING = "running"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"


class SegmentPhase(str, Enum):
    EXECUTING = "executing"
    RETRIEVING = "retrieving"
    EMITTING = "emitting"


@dataclass
class RunState:
    """Progress and outcome of one extraction batch."""

    status: RunStatus = RunStatus.IDLE
    total_segments: int = 0
    current_index: int | None = None
    phase: SegmentPhase | None = None
    percent_complete: int = 0
    completed_indices: list[int] = field(default_factory=list)
    failed_indices: list[int] = field(default_factory=list)
    outputs: list[str] = field(default_factory=list)
    reason: str | None = None
    error: Exception | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == RunStatus.COMPLETED

    @property
    def overall_fraction(self) -> float:
        """Fraction of the whole batch done, counting the live command."""
        if self.status == RunStatus.COMPLETED:
            return 1.0
        if not self.total_segments:
            return 0.0
        done = len(self.completed_indices) + len(self.failed_indices)
        if self.status == RunStatus.RUNNING and self.phase == SegmentPhase.EXECUTING:
            done += self.percent_complete / 100
        return min(1.0, done / self.total_segments)

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error

    def snapshot(self) -> "RunState":
        return replace(
            self,
            completed_indices=list(self.completed_indices),
            failed_indices=list(self.failed_indices),
            outputs=list(self.outputs),
        )

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "total_segments": self.total_segments,
            "current_index": self.current_index,
            "phase": self.phase.value if self.phase else None,
            "percent_complete": self.percent_complete,
            "progress": round(self.overall_fraction, 3),
            "completed_indices": list(self.completed_indices),
            "failed_indices": list(self.failed_indices),
            "outputs": list(self.outputs),
            "reason": self.reason,
        }


@dataclass
class WorkspaceEntry:
    """A blob living in the engine's private file store."""

    virtual_name: str
    byte_length: int = 0
