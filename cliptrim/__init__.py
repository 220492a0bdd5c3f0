"""ClipTrim: extract multiple time-ranged segments from a video with FFmpeg."""

__version__ = "0.1.0"
