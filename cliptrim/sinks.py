"""Output sinks: where each extracted segment's bytes end up."""

import logging
from pathlib import Path
from typing import Protocol

_log = logging.getLogger(__name__)


class OutputSink(Protocol):
    def __call__(self, data: bytes, suggested_name: str) -> None: ...


class DirectorySink:
    """Write each segment into a directory under its suggested name."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)
        self.written: list[Path] = []

    def __call__(self, data: bytes, suggested_name: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.directory / Path(suggested_name).name
        path.write_bytes(data)
        self.written.append(path)
        _log.info("wrote %s (%d bytes)", path, len(data))


class MemorySink:
    """Keep segments in memory, in the order they were emitted."""

    def __init__(self) -> None:
        self.items: list[tuple[str, bytes]] = []

    def __call__(self, data: bytes, suggested_name: str) -> None:
        self.items.append((suggested_name, data))

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self.items]

    def get(self, name: str) -> bytes | None:
        for item_name, data in self.items:
            if item_name == name:
                return data
        return None
