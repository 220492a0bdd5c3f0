"""Engine lifecycle: loading, serialized command execution, progress, teardown."""

import atexit
import itertools
import logging
import threading
from typing import Callable

from cliptrim.errors import EngineError, EngineExecError, EngineLoadError
from cliptrim.ffutil import FFmpegEngine
from cliptrim.manifest import EngineConfig
from cliptrim.models import EngineState

_log = logging.getLogger(__name__)


class EngineHandle:
    """Owns one engine backend and everything attached to it.

    The backend only has to offer ``load``, ``on``, ``write_file``, ``exec``,
    ``read_file``, ``delete_file`` and ``terminate``;
    :class:`~cliptrim.ffutil.FFmpegEngine` is the real one.
    """

    def __init__(self, backend=None, config: EngineConfig | None = None) -> None:
        config = config or EngineConfig()
        self._backend = backend or FFmpegEngine(
            ffmpeg_path=config.ffmpeg_path, work_root=config.work_root
        )
        self._state = EngineState.UNLOADED
        self._state_lock = threading.Lock()
        self._loaded = threading.Event()
        self._exec_lock = threading.Lock()
        self._run_lock = threading.Lock()
        self._listeners: dict[int, Callable[[float], None]] = {}
        self._tokens = itertools.count(1)
        self.load_error: Exception | None = None
        self._backend.on("progress", self._on_backend_progress)

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def ready(self) -> bool:
        return self._state == EngineState.READY

    @property
    def running(self) -> bool:
        """True while an extraction run holds this engine."""
        return self._run_lock.locked()

    def acquire_run(self) -> bool:
        """Claim the engine for one run; False if another run already holds it."""
        return self._run_lock.acquire(blocking=False)

    def release_run(self) -> None:
        self._run_lock.release()

    # --- lifecycle ---

    def load(self) -> EngineState:
        """Load the backend once; concurrent callers share the same attempt."""
        with self._state_lock:
            if self._state in (EngineState.READY, EngineState.TERMINATED):
                return self._state
            if self._state == EngineState.LOADING:
                waiter = self._loaded
                owner = False
            else:
                self._state = EngineState.LOADING
                self._loaded = waiter = threading.Event()
                self.load_error = None
                owner = True

        if not owner:
            waiter.wait()
            return self._state

        _log.info("Loading engine")
        try:
            self._backend.load()
        except Exception as e:
            _log.error("Engine failed to load: %s", e)
            with self._state_lock:
                self.load_error = EngineLoadError(f"Engine failed to load: {e}")
                self.load_error.__cause__ = e
                if self._state == EngineState.LOADING:
                    self._state = EngineState.FAILED
        else:
            with self._state_lock:
                terminated = self._state == EngineState.TERMINATED
                if self._state == EngineState.LOADING:
                    self._state = EngineState.READY
            if terminated:
                self._backend.terminate()
            else:
                _log.info("Engine ready")
        finally:
            waiter.set()
        return self._state

    def load_in_background(self) -> threading.Thread:
        thread = threading.Thread(target=self.load, name="cliptrim-engine-load", daemon=True)
        thread.start()
        return thread

    def terminate(self) -> None:
        """Release the backend. Safe to call any number of times."""
        with self._state_lock:
            if self._state == EngineState.TERMINATED:
                return
            self._state = EngineState.TERMINATED
            self._listeners.clear()
        try:
            self._backend.terminate()
        finally:
            self._loaded.set()
            _log.info("Engine terminated")

    def __enter__(self) -> "EngineHandle":
        return self

    def __exit__(self, *exc) -> None:
        self.terminate()

    # --- progress ---

    def on_progress(self, callback: Callable[[float], None]) -> int:
        """Register a progress listener; returns a token for :meth:`unsubscribe`."""
        token = next(self._tokens)
        self._listeners[token] = callback
        return token

    def unsubscribe(self, token: int) -> None:
        self._listeners.pop(token, None)

    def _on_backend_progress(self, payload: dict) -> None:
        try:
            value = float(payload.get("progress", 0.0))
        except (TypeError, ValueError):
            return
        value = max(0.0, min(1.0, value))
        for token, listener in list(self._listeners.items()):
            try:
                listener(value)
            except Exception:
                _log.warning("Progress listener %s raised", token, exc_info=True)

    # --- commands and files ---

    def _require_ready(self, what: str) -> None:
        if self._state != EngineState.READY:
            raise EngineError(f"Cannot {what}: engine is {self._state.value}")

    def execute(self, argv: list[str]) -> None:
        """Run one command; later callers wait until it finishes."""
        self._require_ready("execute")
        with self._exec_lock:
            self._require_ready("execute")
            _log.debug("exec: %s", " ".join(argv))
            attempt = self._backend.exec(list(argv))
        if not attempt.ok:
            _log.debug("failed command: %s", attempt.repro)
            raise EngineExecError(
                f"Engine command failed (rc={attempt.returncode})",
                command=attempt.cmd,
                stderr=attempt.stderr_tail(),
            )

    def write_file(self, name: str, data: bytes) -> None:
        self._require_ready("write file")
        self._backend.write_file(name, data)

    def read_file(self, name: str) -> bytes:
        self._require_ready("read file")
        return self._backend.read_file(name)

    def delete_file(self, name: str) -> None:
        self._require_ready("delete file")
        self._backend.delete_file(name)


_engine: EngineHandle | None = None
_engine_lock = threading.Lock()
_atexit_registered = False


def get_engine(config: EngineConfig | None = None) -> EngineHandle:
    """Return the process-wide engine handle, creating it on first use."""
    global _engine, _atexit_registered
    with _engine_lock:
        if _engine is None or _engine.state == EngineState.TERMINATED:
            _engine = EngineHandle(config=config)
            if not _atexit_registered:
                atexit.register(shutdown_engine)
                _atexit_registered = True
        return _engine


def shutdown_engine() -> None:
    global _engine
    with _engine_lock:
        engine, _engine = _engine, None
    if engine is not None:
        engine.terminate()
