from __future__ import annotations
from rich.console import Console

from ..domain.models import MintEvent
from ..ports.notify import NotificationSink

class ConsoleSink(NotificationSink):
    """Prints one line per mint. Default sink when no webhook is configured."""
    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    async def notify(self, event: MintEvent) -> None:
        self.console.print(
            f"[bold green]mint[/] token [bold]#{event.token_id}[/] → {event.to_address}  "
            f"block={event.block_number:,}  tx={event.tx_hash}"
        )
