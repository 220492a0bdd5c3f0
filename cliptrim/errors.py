"""Exceptions raised by ClipTrim components."""


class ClipTrimError(Exception):
    """Base class for all ClipTrim errors."""


class EngineError(ClipTrimError):
    """Raised when the engine is asked to work while not ready."""


class EngineLoadError(EngineError):
    """Raised when the engine never became ready."""


class EngineExecError(EngineError):
    """Raised when a single engine command fails."""

    def __init__(self, message: str, command: list[str] | None = None, stderr: str = "") -> None:
        super().__init__(message)
        self.command = list(command or [])
        self.stderr = stderr


class WorkspaceIOError(ClipTrimError):
    """Raised on workspace access against a not-ready engine."""


class NotFoundError(WorkspaceIOError):
    """Raised when a virtual file was never produced."""


class PipelineBusyError(ClipTrimError):
    """Raised when a run is requested while another is still active."""


class ManifestError(ClipTrimError, ValueError):
    """Raised when a manifest is missing required fields."""
