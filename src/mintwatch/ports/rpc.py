# mintwatch/ports/rpc.py
from __future__ import annotations

from typing import Any, Callable, Protocol
from ..domain.value_types import RawLog

OnEvent = Callable[[RawLog], None]
OnError = Callable[[str], None]


class PollingLedgerClient(Protocol):
    """Port for a request/response (eth_blockNumber / eth_getLogs) client bound to one contract."""

    async def current_height(self) -> int:
        """Return the tip block number. Raises TransportError."""

    async def fetch_range(self, from_height: int, to_height: int) -> list[RawLog]:
        """Return raw Transfer logs of the contract for [from_height, to_height] inclusive. Raises TransportError."""

    async def aclose(self) -> None:
        """Release the underlying connection pool."""


class StreamingLedgerClient(Protocol):
    """Port for a push (eth_subscribe "logs") client bound to one contract."""

    async def subscribe(self, on_event: OnEvent, on_error: OnError) -> Any:
        """Open a subscription and return its handle. Raises TransportError.

        `on_event` receives every delivered log; `on_error` is called once when
        the subscription dies for any reason other than `unsubscribe`.
        """

    async def unsubscribe(self, handle: Any) -> None:
        """Tear down a subscription. Idempotent."""
