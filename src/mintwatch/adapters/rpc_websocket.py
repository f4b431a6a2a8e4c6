from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..domain.decoding import NULL_ADDRESS_TOPIC, TRANSFER_TOPIC
from ..domain.errors import TransportError
from ..domain.value_types import Address
from ..ports.rpc import OnError, OnEvent, StreamingLedgerClient

logger = logging.getLogger(__name__)

_CONNECT_ERRORS = (OSError, asyncio.TimeoutError, WebSocketException)


@dataclass(slots=True, eq=False)
class SubscriptionHandle:
    subscription_id: str
    ws: Any
    reader: asyncio.Task | None = None
    closed: bool = False
    pending: list[dict] = field(default_factory=list)   # notifications that beat the subscribe reply


def _notification_result(payload: Any, subscription_id: str | None) -> dict | None:
    if not isinstance(payload, dict) or payload.get("method") != "eth_subscription":
        return None
    params = payload.get("params") or {}
    if subscription_id is not None and params.get("subscription") != subscription_id:
        return None
    result = params.get("result")
    return result if isinstance(result, dict) else None


class WebsocketLedgerClient(StreamingLedgerClient):
    """eth_subscribe("logs") over a websocket, one subscription per connection."""

    def __init__(
        self,
        ws_url: str,
        address: Address,
        *,
        mints_only: bool = True,
        open_timeout_s: float = 20,
        ping_interval_s: float = 20,
        connect: Any = None,
    ) -> None:
        self.ws_url = ws_url
        self.address = Address(address.lower())
        self.mints_only = mints_only
        self.open_timeout_s = open_timeout_s
        self.ping_interval_s = ping_interval_s
        self._connect = connect or websockets.connect
        self._id = 0

    def _filter(self) -> dict:
        topics = [TRANSFER_TOPIC, NULL_ADDRESS_TOPIC] if self.mints_only else [TRANSFER_TOPIC]
        return {"address": str(self.address), "topics": topics}

    async def _request_subscription(self, ws: Any, early: list[dict]) -> str:
        self._id += 1
        req_id = self._id
        await ws.send(json.dumps({
            "jsonrpc": "2.0", "id": req_id,
            "method": "eth_subscribe", "params": ["logs", self._filter()],
        }))
        while True:
            message = await asyncio.wait_for(ws.recv(), timeout=self.open_timeout_s)
            try:
                data = json.loads(message)
            except json.JSONDecodeError:
                logger.warning("ignoring non-JSON frame while subscribing: %.80r", message)
                continue
            if isinstance(data, dict) and data.get("id") == req_id:
                if "result" in data and isinstance(data["result"], str):
                    return data["result"]
                raise TransportError(f"eth_subscribe rejected: {data.get('error', data)}")
            # notifications can arrive before the subscribe reply; keep them
            if isinstance(data, dict) and data.get("method") == "eth_subscription":
                early.append(data)

    async def subscribe(self, on_event: OnEvent, on_error: OnError) -> SubscriptionHandle:
        try:
            ws = await self._connect(
                self.ws_url,
                open_timeout=self.open_timeout_s,
                ping_interval=self.ping_interval_s,
                ping_timeout=self.ping_interval_s,
            )
        except _CONNECT_ERRORS as e:
            raise TransportError(f"websocket connect to {self.ws_url} failed: {type(e).__name__}: {e}") from e

        early: list[dict] = []
        try:
            sub_id = await self._request_subscription(ws, early)
        except (TransportError, *_CONNECT_ERRORS) as e:
            await ws.close()
            if isinstance(e, TransportError):
                raise
            raise TransportError(f"eth_subscribe failed: {type(e).__name__}: {e}") from e

        handle = SubscriptionHandle(subscription_id=sub_id, ws=ws, pending=early)
        logger.info("subscribed to Transfer logs of %s (subscription %s)", self.address, sub_id)
        handle.reader = asyncio.create_task(self._read(handle, on_event, on_error))
        return handle

    async def _read(self, handle: SubscriptionHandle, on_event: OnEvent, on_error: OnError) -> None:
        reason = "connection closed by peer"
        pending, handle.pending = handle.pending, []
        for payload in pending:
            result = _notification_result(payload, handle.subscription_id)
            if result is not None:
                on_event(result)
        try:
            async for message in handle.ws:
                try:
                    payload = json.loads(message)
                except json.JSONDecodeError:
                    logger.warning("ignoring non-JSON frame: %.80r", message)
                    continue
                result = _notification_result(payload, handle.subscription_id)
                if result is not None:
                    on_event(result)
        except ConnectionClosed as e:
            reason = f"connection closed: {e}"
        except OSError as e:
            reason = f"socket error: {e}"
        if not handle.closed:
            handle.closed = True
            on_error(reason)

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        was_closed = handle.closed
        handle.closed = True
        if not was_closed:
            self._id += 1
            try:
                await handle.ws.send(json.dumps({
                    "jsonrpc": "2.0", "id": self._id,
                    "method": "eth_unsubscribe", "params": [handle.subscription_id],
                }))
            except ConnectionClosed:
                logger.debug("eth_unsubscribe skipped, connection already closed")
        await handle.ws.close()
        reader = handle.reader
        if reader is not None and reader is not asyncio.current_task() and not reader.done():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass
