"""Orchestrator: stages a source once and extracts each segment in turn."""

import itertools
import logging
from typing import Callable

from cliptrim.engine import EngineHandle
from cliptrim.errors import EngineLoadError, PipelineBusyError
from cliptrim.ffutil import format_seconds
from cliptrim.manifest import PipelineConfig
from cliptrim.models import RunState, RunStatus, SegmentPhase, SegmentSpec, SourceFile
from cliptrim.segments import SegmentList
from cliptrim.sinks import OutputSink
from cliptrim.workspace import Workspace

_log = logging.getLogger(__name__)


def build_trim_command(input_name: str, spec: SegmentSpec, output_name: str) -> list[str]:
    """Stream-copy ``spec`` out of ``input_name`` into ``output_name``."""
    return [
        "-i", input_name,
        "-ss", format_seconds(spec.start),
        "-t", format_seconds(spec.length),
        "-c", "copy",
        output_name,
    ]


class ExtractionPipeline:
    """Drives an engine through stage → execute → retrieve → emit → cleanup.

    Segments run strictly one after another. Whatever happens, the workspace
    is purged before :meth:`run` returns. Only one run may hold the engine at a time.
    """

    def __init__(
        self,
        engine: EngineHandle,
        config: PipelineConfig | None = None,
        workspace: Workspace | None = None,
    ) -> None:
        self.engine = engine
        self.config = config or PipelineConfig()
        self.workspace = workspace or Workspace(engine)
        self._state = RunState()
        self._listeners: dict[int, Callable[[RunState], None]] = {}
        self._tokens = itertools.count(1)

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def busy(self) -> bool:
        return self.engine.running

    def subscribe(self, listener: Callable[[RunState], None]) -> int:
        """Receive a RunState snapshot on every transition and progress tick."""
        token = next(self._tokens)
        self._listeners[token] = listener
        return token

    def unsubscribe(self, token: int) -> None:
        self._listeners.pop(token, None)

    def _publish(self, state: RunState) -> None:
        snap = state.snapshot()
        for token, listener in list(self._listeners.items()):
            try:
                listener(snap)
            except Exception:
                _log.warning("Run listener %s raised", token, exc_info=True)

    # --- naming ---

    def _extension(self, source: SourceFile) -> str:
        return source.extension or self.config.default_extension

    def input_name(self, source: SourceFile) -> str:
        return f"input{self._extension(source)}"

    def output_name(self, spec: SegmentSpec, ext: str) -> str:
        return f"output{spec.index + 1}{ext}"

    def suggested_name(self, spec: SegmentSpec, ext: str) -> str:
        return f"{self.config.output_prefix}_{spec.index + 1}{ext}"

    # --- running ---

    def run(self, source: SourceFile, specs: list[SegmentSpec], sink: OutputSink) -> RunState:
        """Extract every spec from ``source`` and hand each result to ``sink``.

        Failures are recorded on the returned RunState (``status`` FAILED,
        ``reason``, ``error``); segments emitted before the failure stay emitted.
        Raises PipelineBusyError if another run holds the engine.
        """
        if not self.engine.acquire_run():
            raise PipelineBusyError("An extraction run is already in progress")
        try:
            return self._run(source, specs, sink)
        finally:
            self._state = RunState()
            self.engine.release_run()

    def _run(self, source: SourceFile, specs: list[SegmentSpec], sink: OutputSink) -> RunState:
        specs = sorted(specs, key=lambda s: s.index)
        state = self._state = RunState(total_segments=len(specs))
        _log.info("Extracting %d segment(s) from %s", len(specs), source.name)

        if not self.engine.ready:
            self.engine.load()
        if not self.engine.ready:
            error = self.engine.load_error or EngineLoadError(
                f"Engine is {self.engine.state.value}, not ready"
            )
            self._fail(state, None, error)
            return state

        ext = self._extension(source)
        input_name = self.input_name(source)

        def on_progress(frac: float) -> None:
            if state.status == RunStatus.RUNNING and state.phase == SegmentPhase.EXECUTING:
                state.percent_complete = round(frac * 100)
                self._publish(state)

        token = self.engine.on_progress(on_progress)
        try:
            state.status = RunStatus.STAGING
            self._publish(state)
            self.workspace.stage(input_name, source.data)

            state.status = RunStatus.RUNNING
            for spec in specs:
                try:
                    self._extract_one(state, spec, input_name, ext, sink)
                except Exception as e:
                    self._fail(state, spec.index, e)
                    if self.config.abort_on_failure:
                        break
                    state.status = RunStatus.RUNNING
        except Exception as e:
            self._fail(state, None, e)
        finally:
            self.engine.unsubscribe(token)
            self._finalize(state)

        state.status = RunStatus.FAILED if state.error else RunStatus.COMPLETED
        state.phase = None
        self._publish(state)
        _log.info(
            "Run %s: %d/%d segment(s) emitted",
            state.status.value, len(state.completed_indices), len(specs),
        )
        return state

    def _extract_one(
        self,
        state: RunState,
        spec: SegmentSpec,
        input_name: str,
        ext: str,
        sink: OutputSink,
    ) -> None:
        output_name = self.output_name(spec, ext)
        state.current_index = spec.index
        state.percent_complete = 0
        state.phase = SegmentPhase.EXECUTING
        self._publish(state)

        self.workspace.reserve(output_name)
        try:
            self.engine.execute(build_trim_command(input_name, spec, output_name))

            state.phase = SegmentPhase.RETRIEVING
            self._publish(state)
            data = self.workspace.materialize(output_name)

            state.phase = SegmentPhase.EMITTING
            self._publish(state)
            name = self.suggested_name(spec, ext)
            sink(data, name)
        finally:
            self.workspace.purge(output_name)

        state.outputs.append(name)
        state.completed_indices.append(spec.index)
        state.percent_complete = 100
        self._publish(state)

    def _fail(self, state: RunState, index: int | None, error: Exception) -> None:
        if index is not None:
            state.failed_indices.append(index)
            _log.warning("Segment %d failed: %s", index + 1, error)
        else:
            _log.warning("Run failed: %s", error)
        if state.error is None:
            state.error = error
            state.reason = f"Segment {index + 1}: {error}" if index is not None else str(error)
        state.status = RunStatus.FAILED
        self._publish(state)

    def _finalize(self, state: RunState) -> None:
        state.status = RunStatus.FINALIZING
        self._publish(state)
        try:
            self.workspace.purge_all()
        except Exception as e:
            _log.warning("Workspace cleanup failed: %s", e)
            if state.error is None:
                state.error = e
                state.reason = f"Cleanup failed: {e}"


class TrimSession:
    """One user's source and segment list, run through a shared pipeline."""

    def __init__(self, pipeline: ExtractionPipeline, segment_count: int = 3) -> None:
        self.pipeline = pipeline
        self.segments = SegmentList(segment_count)
        self.source: SourceFile | None = None

    def select_source(self, source: SourceFile) -> None:
        self.source = source
        self.segments.set_duration(source.duration)

    def set_duration(self, duration: float) -> None:
        if self.source is not None:
            self.source.duration = duration
        self.segments.set_duration(duration)

    def update_segment(self, index: int, field: str, value) -> SegmentSpec:
        return self.segments.update(index, field, value)

    def trim_and_download(self, sink: OutputSink) -> RunState:
        """Run every segment; the session is cleared afterwards per config."""
        if self.source is None:
            return RunState()
        state = self.pipeline.run(self.source, self.segments.specs(), sink)
        if state.succeeded or self.pipeline.config.clear_on_failure:
            self.clear()
        return state

    def clear(self) -> None:
        self.segments.reset()
        self.source = None
