"""The engine's private file store: staged inputs and command outputs."""

import logging

from cliptrim.engine import EngineHandle
from cliptrim.errors import NotFoundError, WorkspaceIOError
from cliptrim.models import WorkspaceEntry

_log = logging.getLogger(__name__)


class Workspace:
    """Tracks every virtual name written into the engine so it can be purged.

    A name is tracked once it is staged or reserved as a command output, and
    forgotten when purged. After a run the workspace must be empty.
    """

    def __init__(self, engine: EngineHandle) -> None:
        self.engine = engine
        self._entries: dict[str, WorkspaceEntry] = {}

    def entries(self) -> list[WorkspaceEntry]:
        return list(self._entries.values())

    def is_empty(self) -> bool:
        return not self._entries

    def stage(self, name: str, data: bytes) -> WorkspaceEntry:
        if not self.engine.ready:
            raise WorkspaceIOError(f"Cannot stage {name}: engine is {self.engine.state.value}")
        self.engine.write_file(name, data)
        entry = WorkspaceEntry(virtual_name=name, byte_length=len(data))
        self._entries[name] = entry
        _log.debug("staged %s (%d bytes)", name, entry.byte_length)
        return entry

    def reserve(self, name: str) -> WorkspaceEntry:
        """Track a name an upcoming command will write."""
        return self._entries.setdefault(name, WorkspaceEntry(virtual_name=name))

    def materialize(self, name: str) -> bytes:
        if name not in self._entries:
            raise NotFoundError(f"{name} was never produced in the workspace")
        if not self.engine.ready:
            raise WorkspaceIOError(f"Cannot read {name}: engine is {self.engine.state.value}")
        try:
            data = self.engine.read_file(name)
        except FileNotFoundError as e:
            raise NotFoundError(f"{name} was not produced by the engine") from e
        self._entries[name].byte_length = len(data)
        _log.debug("materialized %s (%d bytes)", name, len(data))
        return data

    def purge(self, name: str) -> None:
        """Delete ``name``; absent names and a gone engine are not errors."""
        self._entries.pop(name, None)
        if not self.engine.ready:
            return
        try:
            self.engine.delete_file(name)
        except FileNotFoundError:
            return
        _log.debug("purged %s", name)

    def purge_all(self) -> None:
        for name in list(self._entries):
            self.purge(name)
