"""Tests for the extraction pipeline and the trim session."""

import pytest

from conftest import FakeBackend

from cliptrim.engine import EngineHandle
from cliptrim.errors import EngineExecError, EngineLoadError, NotFoundError, PipelineBusyError
from cliptrim.manifest import PipelineConfig
from cliptrim.models import RunStatus, SegmentPhase, SegmentSpec, SourceFile
from cliptrim.pipeline import ExtractionPipeline, TrimSession, build_trim_command
from cliptrim.sinks import MemorySink


def _specs(*pairs):
    return [SegmentSpec(start=s, end=e, index=i) for i, (s, e) in enumerate(pairs)]


class TestBuildTrimCommand:
    def test_shape(self):
        cmd = build_trim_command("input.mp4", SegmentSpec(start=1.5, end=4.0, index=0), "output1.mp4")
        assert cmd == ["-i", "input.mp4", "-ss", "1.5", "-t", "2.5", "-c", "copy", "output1.mp4"]

    def test_whole_seconds_have_no_fraction(self):
        cmd = build_trim_command("input.mp4", SegmentSpec(start=0, end=3, index=0), "o.mp4")
        assert cmd[cmd.index("-ss") + 1] == "0"
        assert cmd[cmd.index("-t") + 1] == "3"

    def test_negative_length_passed_through(self):
        cmd = build_trim_command("input.mp4", SegmentSpec(start=5, end=4, index=0), "o.mp4")
        assert cmd[cmd.index("-t") + 1] == "-1"


class TestSuccessfulRun:
    def test_emits_every_segment_in_order(self, pipeline, backend, source, sink):
        assert pipeline.workspace.is_empty()
        state = pipeline.run(source, _specs((0, 3), (3, 6), (6, 10)), sink)

        assert state.status == RunStatus.COMPLETED
        assert state.succeeded
        assert sink.names == ["segment_1.mp4", "segment_2.mp4", "segment_3.mp4"]
        assert [data for _, data in sink.items] == [b"0+3", b"3+3", b"6+4"]
        assert state.completed_indices == [0, 1, 2]
        assert state.overall_fraction == 1.0

    def test_workspace_empty_after(self, pipeline, backend, source, sink):
        pipeline.run(source, _specs((0, 3), (4, 5)), sink)
        assert backend.files == {}
        assert pipeline.workspace.is_empty()

    def test_input_staged_once(self, pipeline, backend, source, sink):
        staged = []
        original = backend.write_file
        backend.write_file = lambda name, data: (staged.append(name), original(name, data))
        pipeline.run(source, _specs((0, 1), (1, 2), (2, 3)), sink)
        assert staged == ["input.mp4"]

    def test_commands_use_virtual_names(self, pipeline, backend, source, sink):
        pipeline.run(source, _specs((0, 3), (4, 6)), sink)
        assert [c[1] for c in backend.commands] == ["input.mp4", "input.mp4"]
        assert [c[-1] for c in backend.commands] == ["output1.mp4", "output2.mp4"]
        assert all(c[c.index("-c") + 1] == "copy" for c in backend.commands)

    def test_runs_in_index_order(self, pipeline, source, sink):
        specs = [SegmentSpec(start=5, end=6, index=1), SegmentSpec(start=0, end=1, index=0)]
        pipeline.run(source, specs, sink)
        assert sink.names == ["segment_1.mp4", "segment_2.mp4"]

    def test_extension_follows_source(self, pipeline, backend, sink):
        src = SourceFile(name="clip.MKV", data=b"V", duration=5.0)
        pipeline.run(src, _specs((0, 1)), sink)
        assert backend.commands[0][1] == "input.mkv"
        assert sink.names == ["segment_1.mkv"]

    def test_extension_defaults_to_mp4(self, pipeline, sink):
        pipeline.run(SourceFile(name="upload", data=b"V"), _specs((0, 1)), sink)
        assert sink.names == ["segment_1.mp4"]

    def test_loads_engine_itself(self, engine, backend, source, sink):
        assert not engine.ready
        state = ExtractionPipeline(engine).run(source, _specs((0, 1)), sink)
        assert state.succeeded
        assert backend.load_calls == 1

    def test_degenerate_segment_attempted(self, pipeline, backend, source, sink):
        state = pipeline.run(source, _specs((4, 4)), sink)
        assert len(backend.commands) == 1
        assert state.succeeded
        assert sink.items == [("segment_1.mp4", b"4+0")]

    def test_returns_to_idle(self, pipeline, source, sink):
        pipeline.run(source, _specs((0, 1)), sink)
        assert pipeline.state.status == RunStatus.IDLE
        assert not pipeline.busy


class TestScenario:
    def test_clamped_segments(self, pipeline, backend, sink):
        session = TrimSession(pipeline)
        session.select_source(SourceFile(name="v.mp4", data=b"V"))
        for i, (start, end) in enumerate([(0, 3), (4, 4), (5, 12)]):
            session.update_segment(i, "start", start)
            session.update_segment(i, "end", end)
        session.set_duration(10.0)

        state = session.trim_and_download(sink)

        assert state.succeeded
        lengths = [c[c.index("-t") + 1] for c in backend.commands]
        assert lengths == ["3", "0", "5"]
        assert sink.names == ["segment_1.mp4", "segment_2.mp4", "segment_3.mp4"]


class TestFailures:
    def test_load_failure(self, source, sink):
        backend = FakeBackend(load_error=RuntimeError("core download failed"))
        pipeline = ExtractionPipeline(EngineHandle(backend=backend))

        state = pipeline.run(source, _specs((0, 1), (1, 2)), sink)

        assert state.status == RunStatus.FAILED
        assert isinstance(state.error, EngineLoadError)
        assert sink.items == []
        assert backend.files == {}
        assert backend.commands == []
        with pytest.raises(EngineLoadError):
            state.raise_for_error()

    def test_terminated_engine(self, engine, source, sink):
        engine.terminate()
        state = ExtractionPipeline(engine).run(source, _specs((0, 1)), sink)
        assert isinstance(state.error, EngineLoadError)
        assert "terminated" in state.reason

    def test_abort_on_first_failure(self, engine, backend, source, sink):
        backend.fail_outputs = {"output2.mp4"}
        state = ExtractionPipeline(engine).run(source, _specs((0, 1), (1, 2), (2, 3)), sink)

        assert state.status == RunStatus.FAILED
        assert sink.names == ["segment_1.mp4"]
        assert state.completed_indices == [0]
        assert state.failed_indices == [1]
        assert len(backend.commands) == 2
        assert isinstance(state.error, EngineExecError)
        assert state.reason.startswith("Segment 2:")
        assert backend.files == {}

    def test_continue_after_failure(self, engine, backend, source, sink):
        backend.fail_outputs = {"output1.mp4", "output2.mp4"}
        pipeline = ExtractionPipeline(engine, config=PipelineConfig(abort_on_failure=False))

        state = pipeline.run(source, _specs((0, 1), (1, 2), (2, 3)), sink)

        assert state.status == RunStatus.FAILED
        assert sink.names == ["segment_3.mp4"]
        assert state.failed_indices == [0, 1]
        assert state.completed_indices == [2]
        assert state.reason.startswith("Segment 1:")
        assert backend.files == {}

    def test_end_before_start_surfaces_engine_failure(self, pipeline, backend, source, sink):
        state = pipeline.run(source, _specs((5, 2)), sink)
        assert len(backend.commands) == 1
        assert isinstance(state.error, EngineExecError)
        assert sink.items == []

    def test_missing_output(self, pipeline, backend, source, sink):
        original_exec = backend.exec

        def exec_without_output(argv):
            attempt = original_exec(argv)
            backend.files.pop(argv[-1], None)
            return attempt

        backend.exec = exec_without_output
        state = pipeline.run(source, _specs((0, 1)), sink)
        assert isinstance(state.error, NotFoundError)
        assert backend.files == {}

    def test_sink_error_recorded(self, pipeline, backend, source):
        def broken_sink(data, name):
            raise OSError("disk full")

        state = pipeline.run(source, _specs((0, 1)), broken_sink)
        assert isinstance(state.error, OSError)
        assert state.completed_indices == []
        assert backend.files == {}


class TestReentrancy:
    def test_second_run_rejected(self, pipeline, source):
        rejected = []

        def sink(data, name):
            with pytest.raises(PipelineBusyError):
                pipeline.run(source, _specs((0, 1)), MemorySink())
            rejected.append(name)

        state = pipeline.run(source, _specs((0, 1)), sink)
        assert state.succeeded
        assert rejected == ["segment_1.mp4"]

    def test_second_pipeline_on_same_engine_rejected(self, engine, backend, source):
        first = ExtractionPipeline(engine)
        second = ExtractionPipeline(engine)
        outputs = MemorySink()
        busy_seen = []

        def sink(data, name):
            busy_seen.append(second.busy)
            if name == "segment_1.mp4":
                with pytest.raises(PipelineBusyError):
                    second.run(source, _specs((0, 1)), MemorySink())
            outputs(data, name)

        state = first.run(source, _specs((0, 1), (2, 4)), sink)

        assert state.succeeded
        assert state.failed_indices == []
        assert outputs.names == ["segment_1.mp4", "segment_2.mp4"]
        assert busy_seen == [True, True]
        assert not second.busy
        assert backend.files == {}


class TestProgress:
    def test_listener_sees_phases(self, pipeline, source, sink):
        seen = []
        pipeline.subscribe(seen.append)
        pipeline.run(source, _specs((0, 1), (1, 2)), sink)

        statuses = [s.status for s in seen]
        assert statuses[0] == RunStatus.STAGING
        assert RunStatus.FINALIZING in statuses
        assert statuses[-1] == RunStatus.COMPLETED

        phases = [(s.current_index, s.phase) for s in seen if s.status == RunStatus.RUNNING]
        assert (0, SegmentPhase.EXECUTING) in phases
        assert (0, SegmentPhase.RETRIEVING) in phases
        assert (1, SegmentPhase.EMITTING) in phases

    def test_engine_progress_attributed_to_current_segment(self, pipeline, source, sink):
        seen = []
        pipeline.subscribe(seen.append)
        pipeline.run(source, _specs((0, 1), (1, 2)), sink)

        executing = [
            (s.current_index, s.percent_complete)
            for s in seen
            if s.status == RunStatus.RUNNING and s.phase == SegmentPhase.EXECUTING
        ]
        assert (0, 25) in executing
        assert (0, 100) in executing
        assert (1, 25) in executing

    def test_listener_error_ignored(self, pipeline, source, sink):
        def broken(state):
            raise RuntimeError("ui gone")

        pipeline.subscribe(broken)
        assert pipeline.run(source, _specs((0, 1)), sink).succeeded

    def test_unsubscribe(self, pipeline, source, sink):
        seen = []
        token = pipeline.subscribe(seen.append)
        pipeline.unsubscribe(token)
        pipeline.run(source, _specs((0, 1)), sink)
        assert seen == []


class TestTrimSession:
    def test_clears_after_success(self, pipeline, source, sink):
        session = TrimSession(pipeline)
        session.select_source(source)
        session.update_segment(0, "end", 2)

        session.trim_and_download(sink)

        assert session.source is None
        assert [(s.start, s.end) for s in session.segments.specs()] == [(0, 0)] * 3
        assert session.segments.duration is None

    def test_clears_after_failure_by_default(self, engine, backend, source, sink):
        backend.fail_outputs = {"output1.mp4"}
        session = TrimSession(ExtractionPipeline(engine))
        session.select_source(source)
        session.update_segment(0, "end", 2)

        state = session.trim_and_download(sink)

        assert state.status == RunStatus.FAILED
        assert session.source is None

    def test_keeps_state_when_configured(self, engine, backend, source, sink):
        backend.fail_outputs = {"output1.mp4"}
        pipeline = ExtractionPipeline(engine, config=PipelineConfig(clear_on_failure=False))
        session = TrimSession(pipeline)
        session.select_source(source)
        session.update_segment(0, "end", 2)

        session.trim_and_download(sink)

        assert session.source is source
        assert session.segments[0].end == 2

    def test_no_source_does_nothing(self, pipeline, backend, sink):
        state = TrimSession(pipeline).trim_and_download(sink)
        assert state.status == RunStatus.IDLE
        assert backend.load_calls == 0
        assert sink.items == []
