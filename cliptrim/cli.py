"""Thin CLI entry point: builds a Manifest and runs the extraction pipeline."""

import argparse
import logging
import sys
from pathlib import Path

from cliptrim.engine import EngineHandle
from cliptrim.ffutil import FFmpegNotFoundError, check_ffmpeg, probe_duration
from cliptrim.manifest import EngineConfig, Manifest, PipelineConfig, load_manifest
from cliptrim.models import RunState, RunStatus, SegmentPhase, SourceFile
from cliptrim.pipeline import ExtractionPipeline, TrimSession
from cliptrim.sinks import DirectorySink


def parse_range(text: str) -> tuple[float, float]:
    """Parse ``START:END`` (seconds) into a pair of floats."""
    start, sep, end = text.partition(":")
    if not sep:
        raise argparse.ArgumentTypeError(f"expected START:END, got {text!r}")
    try:
        return float(start), float(end)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected numeric START:END, got {text!r}") from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cliptrim",
        description="ClipTrim: cut several segments out of a video without re-encoding.",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command")

    ext = sub.add_parser("extract", help="Extract segments from a video file")
    ext.add_argument("video", nargs="?", type=Path, help="Input video file")
    ext.add_argument("--manifest", "-m", type=Path, help="Path to a JSON manifest file")
    ext.add_argument("--segment", "-s", action="append", type=parse_range, default=[],
                     metavar="START:END", help="Segment to extract (repeatable)")
    ext.add_argument("--output-dir", "-o", type=Path, help="Directory for extracted segments")
    ext.add_argument("--continue-on-error", action="store_true",
                     help="Keep extracting remaining segments after a failure")
    ext.add_argument("--ffmpeg", type=str, default="ffmpeg", help="ffmpeg binary")
    ext.add_argument("--ffprobe", type=str, default="ffprobe", help="ffprobe binary")

    serve = sub.add_parser("serve", help="Launch the web UI")
    serve.add_argument("--port", type=int, default=8321, help="Port to listen on")
    serve.add_argument("--host", type=str, default="127.0.0.1", help="Host to bind to")
    return parser


def manifest_from_args(args: argparse.Namespace) -> Manifest:
    if args.manifest:
        return load_manifest(args.manifest)
    return Manifest(
        input=args.video,
        output_dir=args.output_dir or args.video.with_name(args.video.stem + "_segments"),
        engine=EngineConfig(ffmpeg_path=args.ffmpeg, ffprobe_path=args.ffprobe),
        pipeline=PipelineConfig(abort_on_failure=not args.continue_on_error),
    )


def run_extract(m: Manifest, ranges: list[tuple[float, float]]) -> RunState:
    check_ffmpeg(m.engine.ffmpeg_path, m.engine.ffprobe_path)
    source = SourceFile.from_path(m.input, duration=probe_duration(m.input, m.engine.ffprobe_path))

    with EngineHandle(config=m.engine) as engine:
        pipeline = ExtractionPipeline(engine, config=m.pipeline)
        count = len(ranges) if ranges else len(m.segments)
        session = TrimSession(pipeline, segment_count=count)
        session.select_source(source)
        pairs = ranges or [(s.start, s.end) for s in m.segments]
        for i, (start, end) in enumerate(pairs):
            session.update_segment(i, "start", start)
            session.update_segment(i, "end", end)

        def on_state(state: RunState) -> None:
            if state.status == RunStatus.RUNNING and state.phase == SegmentPhase.EXECUTING:
                print(f"  [{state.overall_fraction:3.0%}] segment {state.current_index + 1}"
                      f" {state.percent_complete}%")

        pipeline.subscribe(on_state)
        return session.trim_and_download(DirectorySink(m.output_dir))


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    if args.command == "serve":
        from cliptrim.web import create_app
        app = create_app()
        print(f"ClipTrim web UI: http://{args.host}:{args.port}")
        app.run(host=args.host, port=args.port, debug=False, threaded=True)
        return

    if not args.manifest and not args.video:
        print("Error: provide either a VIDEO argument or --manifest.", file=sys.stderr)
        sys.exit(1)

    m = manifest_from_args(args)
    if not args.segment and not m.segments:
        print("Error: provide at least one --segment START:END.", file=sys.stderr)
        sys.exit(1)

    try:
        state = run_extract(m, args.segment)
    except FFmpegNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    print()
    if state.succeeded:
        print(f"Done! {len(state.outputs)} segment(s) written to {m.output_dir}")
    else:
        print(f"Failed: {state.reason}", file=sys.stderr)
        if state.outputs:
            print(f"  Written before the failure: {', '.join(state.outputs)}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
