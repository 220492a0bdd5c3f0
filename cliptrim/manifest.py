"""JSON manifest schema: the contract between CLI/API and the pipeline."""

import json
from dataclasses import dataclass, field
from pathlib import Path

from cliptrim.errors import ManifestError
from cliptrim.models import SegmentSpec


@dataclass
class EngineConfig:
    """Where to find FFmpeg and where its private workspace lives."""

    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    work_root: Path | None = None


@dataclass
class PipelineConfig:
    """Batch policy and output naming for extraction runs."""

    abort_on_failure: bool = True
    clear_on_failure: bool = True
    output_prefix: str = "segment"
    default_extension: str = ".mp4"


@dataclass
class Manifest:
    """Top-level extraction manifest."""

    input: Path
    output_dir: Path
    version: str = "1"
    segments: list[SegmentSpec] = field(default_factory=list)
    engine: EngineConfig = field(default_factory=EngineConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)


def parse_segments(raw: list[dict]) -> list[SegmentSpec]:
    """Build SegmentSpecs from ``[{"start": .., "end": ..}, ...]``."""
    specs: list[SegmentSpec] = []
    for i, item in enumerate(raw):
        if "start" not in item or "end" not in item:
            raise ManifestError(f"Segment {i + 1} must contain 'start' and 'end'")
        try:
            start, end = float(item["start"]), float(item["end"])
        except (TypeError, ValueError) as e:
            raise ManifestError(f"Segment {i + 1}: 'start' and 'end' must be numbers") from e
        specs.append(SegmentSpec(start=start, end=end, index=i))
    return specs


def load_manifest(path: str | Path) -> Manifest:
    """Load and validate a manifest from a JSON file."""
    path = Path(path)
    data = json.loads(path.read_text())

    if "input" not in data or "output_dir" not in data:
        raise ManifestError("Manifest must contain 'input' and 'output_dir' fields")

    engine = EngineConfig(**data["engine"]) if "engine" in data else EngineConfig()
    if engine.work_root is not None:
        engine.work_root = Path(engine.work_root)
    pipeline = PipelineConfig(**data["pipeline"]) if "pipeline" in data else PipelineConfig()

    return Manifest(
        version=data.get("version", "1"),
        input=Path(data["input"]),
        output_dir=Path(data["output_dir"]),
        segments=parse_segments(data.get("segments", [])),
        engine=engine,
        pipeline=pipeline,
    )
