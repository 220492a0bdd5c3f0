"""User-editable segment list with clamping against the source duration."""

import logging
import math

from cliptrim.models import SegmentSpec

_log = logging.getLogger(__name__)

FIELDS = ("start", "end")


def _to_seconds(value) -> float:
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        _log.debug("non-numeric segment value %r stored as 0", value)
        return 0.0
    if math.isnan(seconds):
        return 0.0
    return seconds


def clamp(value: float, duration: float | None) -> float:
    """Clamp into ``[0, duration]``; unchanged while duration is unknown."""
    if duration is None:
        return value
    return max(0.0, min(duration, value))


class SegmentList:
    """Ordered segment specs as edited by the user.

    Values are clamped into ``[0, duration]`` once the duration is known, and
    re-clamped when it arrives later. ``end < start`` is deliberately allowed
    through; the engine reports it.
    """

    def __init__(self, count: int = 3) -> None:
        self.placeholder_count = count
        self.duration: float | None = None
        self._specs = [SegmentSpec(start=0.0, end=0.0, index=i) for i in range(count)]

    def __len__(self) -> int:
        return len(self._specs)

    def __getitem__(self, index: int) -> SegmentSpec:
        return self._specs[index]

    def specs(self) -> list[SegmentSpec]:
        return [SegmentSpec(start=s.start, end=s.end, index=s.index) for s in self._specs]

    def update(self, index: int, field: str, value) -> SegmentSpec:
        if field not in FIELDS:
            raise ValueError(f"Unknown segment field: {field!r}")
        spec = self._specs[index]
        setattr(spec, field, clamp(_to_seconds(value), self.duration))
        return spec

    def set_duration(self, duration: float | None) -> None:
        self.duration = duration
        if duration is None:
            return
        for spec in self._specs:
            spec.start = clamp(spec.start, duration)
            spec.end = clamp(spec.end, duration)

    def add(self, start=0.0, end=0.0) -> SegmentSpec:
        spec = SegmentSpec(
            start=clamp(_to_seconds(start), self.duration),
            end=clamp(_to_seconds(end), self.duration),
            index=len(self._specs),
        )
        self._specs.append(spec)
        return spec

    def remove(self, index: int) -> None:
        del self._specs[index]
        for i, spec in enumerate(self._specs):
            spec.index = i

    def reset(self) -> None:
        self.duration = None
        self._specs = [
            SegmentSpec(start=0.0, end=0.0, index=i) for i in range(self.placeholder_count)
        ]
