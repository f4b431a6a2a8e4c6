from __future__ import annotations
import logging

from ..domain.errors import InvalidCursorError
from ..domain.models import Cursor
from ..ports.cursor import CursorStore

logger = logging.getLogger(__name__)

class MemoryCursorStore(CursorStore):
    """In-memory progress cursor; one per engine instance.

    With `start_height` the cursor is ready immediately and that block counts
    as already confirmed. Without it the engine seeds it from the tip.
    """
    def __init__(self, start_height: int | None = None) -> None:
        self._cursor: Cursor | None = None
        if start_height is not None:
            self.initialize(start_height)

    def get(self) -> Cursor | None:
        return self._cursor

    def initialize(self, height: int) -> Cursor:
        if self._cursor is not None:
            raise InvalidCursorError(f"cursor already initialized at {self._cursor.last_confirmed_height}")
        if height < 0:
            raise InvalidCursorError(f"cursor height must be >= 0, got {height}")
        self._cursor = Cursor(height)
        logger.info("cursor initialized at block %d", height)
        return self._cursor

    def advance(self, new_height: int) -> Cursor:
        cur = self._cursor
        if cur is None:
            raise InvalidCursorError("cursor is not initialized")
        if new_height < cur.last_confirmed_height:
            raise InvalidCursorError(f"refusing to rewind cursor from {cur.last_confirmed_height} to {new_height}")
        if new_height == cur.last_confirmed_height:
            return cur
        self._cursor = Cursor(new_height)
        return self._cursor

    def reset(self, height: int) -> Cursor:
        if height < 0:
            raise InvalidCursorError(f"cursor height must be >= 0, got {height}")
        prev = self._cursor.last_confirmed_height if self._cursor else None
        self._cursor = Cursor(height)
        logger.warning("cursor reset by operator: %s -> %d", prev, height)
        return self._cursor
