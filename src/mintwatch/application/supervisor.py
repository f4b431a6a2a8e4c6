from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from ..domain.errors import TransportError
from ..domain.models import ConnectionState
from ..ports.rpc import OnEvent, StreamingLedgerClient

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]
OnSubscribed = Callable[[bool], Awaitable[None]]


class Backoff:
    """Doubling delay: base, 2*base, 4*base ... capped at `cap`."""

    def __init__(self, base: float, cap: float) -> None:
        if base <= 0 or cap < base:
            raise ValueError(f"need 0 < base <= cap, got base={base} cap={cap}")
        self.base = base
        self.cap = cap
        self._next = base

    def next_delay(self) -> float:
        d = self._next
        self._next = min(self._next * 2, self.cap)
        return d

    def reset(self) -> None:
        self._next = self.base


class ReconnectSupervisor:
    """Owns the streaming connection lifecycle.

    DISCONNECTED --connect()--> CONNECTING --ok--> SUBSCRIBED
    SUBSCRIBED --transport error/close--> DISCONNECTED
    CONNECTING --failure--> DISCONNECTED

    Every drop to DISCONNECTED (other than close()) schedules exactly one
    reconnect after the current backoff delay. The backoff resets as soon as
    a subscription is established.
    """

    def __init__(
        self,
        client: StreamingLedgerClient,
        on_event: OnEvent,
        *,
        base_backoff_s: float = 1.0,
        max_backoff_s: float = 60.0,
        on_subscribed: OnSubscribed | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.client = client
        self.on_event = on_event
        self.on_subscribed = on_subscribed
        self.backoff = Backoff(base_backoff_s, max_backoff_s)
        self._sleep = sleep
        self._state = ConnectionState.DISCONNECTED
        self._handle: Any = None
        self._timer: asyncio.Task | None = None
        self._closed = False
        self._ever_subscribed = False
        self._subscribed = asyncio.Event()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def reconnect_pending(self) -> bool:
        return self._timer is not None and not self._timer.done()

    async def wait_subscribed(self) -> None:
        await self._subscribed.wait()

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self._state:
            logger.debug("connection %s -> %s", self._state.value, state.value)
        self._state = state
        if state is ConnectionState.SUBSCRIBED:
            self._subscribed.set()
        else:
            self._subscribed.clear()

    async def connect(self) -> bool:
        """Try to subscribe once; on failure a reconnect is scheduled. Returns True when subscribed."""
        if self._closed or self._state is not ConnectionState.DISCONNECTED:
            return self._state is ConnectionState.SUBSCRIBED
        self._set_state(ConnectionState.CONNECTING)
        try:
            handle = await self.client.subscribe(self.on_event, self._on_error)
        except TransportError as e:
            if self._closed:
                return False
            self._set_state(ConnectionState.DISCONNECTED)
            logger.warning("subscribe failed: %s", e)
            self._schedule_reconnect()
            return False

        if self._closed:
            # close() ran while we were connecting
            await self.client.unsubscribe(handle)
            return False

        self._handle = handle
        self.backoff.reset()
        self._set_state(ConnectionState.SUBSCRIBED)
        reconnected = self._ever_subscribed
        self._ever_subscribed = True
        logger.info("%s", "re-subscribed" if reconnected else "subscribed")
        if self.on_subscribed is not None:
            await self.on_subscribed(reconnected)
        return True

    def _on_error(self, reason: str) -> None:
        if self._closed or self._state is not ConnectionState.SUBSCRIBED:
            return
        logger.warning("subscription lost: %s", reason)
        self._set_state(ConnectionState.DISCONNECTED)
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._closed or self.reconnect_pending:
            return
        delay = self.backoff.next_delay()
        logger.info("reconnecting in %.1fs", delay)
        self._timer = asyncio.create_task(self._reconnect_after(delay))

    async def _reconnect_after(self, delay: float) -> None:
        await self._sleep(delay)
        self._timer = None
        stale, self._handle = self._handle, None
        if stale is not None:
            await self.client.unsubscribe(stale)
        await self.connect()

    async def close(self) -> None:
        """Cancel any pending reconnect and drop the subscription. Safe in every state."""
        self._closed = True
        timer, self._timer = self._timer, None
        if timer is not None and timer is not asyncio.current_task() and not timer.done():
            timer.cancel()
            try:
                await timer
            except asyncio.CancelledError:
                pass
        handle, self._handle = self._handle, None
        if handle is not None:
            await self.client.unsubscribe(handle)
        self._set_state(ConnectionState.DISCONNECTED)
