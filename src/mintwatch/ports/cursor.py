# mintwatch/ports/cursor.py
from __future__ import annotations
from typing import Protocol

from ..domain.models import Cursor

class CursorStore(Protocol):
    def get(self) -> Cursor | None:
        """Return the last confirmed position, or None before initialization."""

    def initialize(self, height: int) -> Cursor:
        """Set the cursor for the first time."""

    def advance(self, new_height: int) -> Cursor:
        """Move forward; rewinds raise InvalidCursorError, equal heights are a no-op."""

    def reset(self, height: int) -> Cursor:
        """Operator override; may rewind."""
