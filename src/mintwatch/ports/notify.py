# mintwatch/ports/notify.py
from __future__ import annotations

from typing import Protocol
from ..domain.models import MintEvent


class NotificationSink(Protocol):
    """Port for forwarding one mint to the outside world (chat channel, webhook, console)."""

    async def notify(self, event: MintEvent) -> None:
        """Deliver the event. Raises SinkError on failure; callers do not retry."""
