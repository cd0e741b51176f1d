"""
Linear undo/redo history.

Entries are immutable snapshots of the scene (frozen object records), the
raster that was active and the layout it was displayed at. Nothing in an
entry is ever mutated, so revisiting an entry reproduces the scene exactly.

The cursor always points at the entry matching the rendered scene. Moving
the cursor is a separate step from looking at the target entry so the
engine can finish an asynchronous restore before committing the move.
"""

from dataclasses import dataclass
from typing import List, Optional

from snapmark.engine.layout import BackgroundRaster, RasterLayout
from snapmark.engine.scene import Scene, SceneRecords
from snapmark.services.logging_service import get_logger

DEFAULT_HISTORY_LIMIT = 100


@dataclass(frozen=True)
class HistoryEntry:
    """Immutable (objects, raster, layout) snapshot."""

    records: SceneRecords
    raster: BackgroundRaster
    layout: RasterLayout

    @classmethod
    def capture(cls, scene: Scene) -> "HistoryEntry":
        return cls(records=scene.serialize(), raster=scene.background, layout=scene.layout)


class HistoryManager:
    """
    Ordered history entries plus a cursor.

    ``limit`` caps the number of entries; the oldest are dropped first.
    A limit of 0 keeps everything.
    """

    def __init__(self, limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        self._logger = get_logger(__name__)
        self._limit = max(0, int(limit))
        self._entries: List[HistoryEntry] = []
        self._cursor: int = -1

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def entries(self) -> tuple:
        return tuple(self._entries)

    @property
    def current(self) -> Optional[HistoryEntry]:
        if self._cursor < 0:
            return None
        return self._entries[self._cursor]

    def can_undo(self) -> bool:
        return self._cursor > 0

    def can_redo(self) -> bool:
        return 0 <= self._cursor < len(self._entries) - 1

    def reset(self, entry: HistoryEntry) -> None:
        """Start a fresh history whose only entry is ``entry``."""
        self._entries = [entry]
        self._cursor = 0

    def record(self, entry: HistoryEntry) -> None:
        """
        Append a snapshot after the cursor.

        Entries after the cursor (the redo tail) are discarded first.
        """
        truncated = len(self._entries) - self._cursor - 1
        del self._entries[self._cursor + 1:]
        self._entries.append(entry)
        self._cursor = len(self._entries) - 1

        if truncated:
            self._logger.debug(f"Dropped {truncated} redo entries")

        if self._limit and len(self._entries) > self._limit:
            overflow = len(self._entries) - self._limit
            del self._entries[:overflow]
            self._cursor -= overflow

    def peek_undo(self) -> Optional[HistoryEntry]:
        """Entry an undo would restore, without moving the cursor."""
        if not self.can_undo():
            return None
        return self._entries[self._cursor - 1]

    def peek_redo(self) -> Optional[HistoryEntry]:
        if not self.can_redo():
            return None
        return self._entries[self._cursor + 1]

    def move_to(self, entry: HistoryEntry) -> None:
        """Point the cursor at ``entry`` once its state has been restored."""
        for index, candidate in enumerate(self._entries):
            if candidate is entry:
                self._cursor = index
                return
        raise ValueError("Entry is not part of this history")
