from __future__ import annotations
import httpx, logging
from dataclasses import asdict

from ..domain.errors import SinkError
from ..domain.models import MintEvent
from ..ports.notify import NotificationSink

logger = logging.getLogger(__name__)

def event_payload(event: MintEvent) -> dict:
    body = asdict(event)
    body["token_id"] = str(event.token_id)   # big ints as strings
    return body

class WebhookSink(NotificationSink):
    """POSTs each mint as plain JSON. Presentation is left to the receiver."""
    def __init__(self, url: str, timeout_s: int = 10, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.url = url
        self.client = httpx.AsyncClient(timeout=httpx.Timeout(timeout_s), transport=transport)

    async def notify(self, event: MintEvent) -> None:
        try:
            r = await self.client.post(self.url, json=event_payload(event))
            r.raise_for_status()
        except httpx.HTTPError as e:
            raise SinkError(f"webhook delivery of token {event.token_id} failed: {type(e).__name__}: {e}") from e
        logger.debug("webhook accepted token %s (HTTP %d)", event.token_id, r.status_code)

    async def aclose(self) -> None:
        await self.client.aclose()
