from __future__ import annotations

import asyncio
from typing import Any

import pytest

from mintwatch.domain.decoding import TRANSFER_TOPIC
from mintwatch.domain.errors import SinkError, TransportError
from mintwatch.domain.models import MintEvent
from mintwatch.domain.value_types import NULL_ADDRESS

CONTRACT = "0x9bf567ddf41b425264626d1b8b2c7f7c660b1c42"
ALICE = "0x" + "aa" * 20
BOB = "0x" + "bb" * 20


def addr_topic(addr: str) -> str:
    return "0x" + "00" * 12 + addr[2:].lower()


def make_log(
    token_id: int,
    block: int,
    *,
    frm: str = NULL_ADDRESS,
    to: str = ALICE,
    log_index: int = 0,
    tx: str | None = None,
    block_hash: str | None = None,
    **extra: Any,
) -> dict:
    """A raw eth_getLogs entry for Transfer(from, to, tokenId)."""
    log = {
        "address": CONTRACT,
        "topics": [TRANSFER_TOPIC, addr_topic(frm), addr_topic(to), "0x" + format(token_id, "064x")],
        "data": "0x",
        "blockNumber": hex(block),
        "blockHash": block_hash or "0x" + format(block, "064x"),
        "transactionHash": tx or "0x" + format(block * 1000 + log_index, "064x"),
        "logIndex": hex(log_index),
        "removed": False,
    }
    log.update(extra)
    return log


class FakePollingClient:
    def __init__(self, tip: int = 0, logs: list[dict] | None = None) -> None:
        self.tip = tip
        self.logs = list(logs or [])
        self.fail_height = False
        self.fail_fetch = False
        self.calls: list[tuple[int, int]] = []
        self.closed = False

    async def current_height(self) -> int:
        if self.fail_height:
            raise TransportError("eth_blockNumber timed out")
        return self.tip

    async def fetch_range(self, from_height: int, to_height: int) -> list[dict]:
        self.calls.append((from_height, to_height))
        if self.fail_fetch:
            raise TransportError("eth_getLogs failed")
        return [l for l in self.logs if from_height <= int(l["blockNumber"], 16) <= to_height]

    async def aclose(self) -> None:
        self.closed = True


class RecordingSink:
    def __init__(self, fail_tokens: set[int] | None = None) -> None:
        self.events: list[MintEvent] = []
        self.fail_tokens = fail_tokens or set()

    async def notify(self, event: MintEvent) -> None:
        if event.token_id in self.fail_tokens:
            raise SinkError(f"channel rejected token {event.token_id}")
        self.events.append(event)

    @property
    def token_ids(self) -> list[int]:
        return [e.token_id for e in self.events]


class FakeStreamingClient:
    """Scripted subscribe outcomes: an exception instance fails that attempt, anything else succeeds."""

    def __init__(self, outcomes: list[Any] | None = None) -> None:
        self.outcomes = list(outcomes or [])
        self.attempts = 0
        self.on_event = None
        self.on_error = None
        self.handles: list[str] = []
        self.unsubscribed: list[str] = []
        self.gate: asyncio.Event | None = None

    async def subscribe(self, on_event, on_error) -> str:
        self.attempts += 1
        if self.gate is not None:
            await self.gate.wait()
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if isinstance(outcome, BaseException):
            raise outcome
        self.on_event, self.on_error = on_event, on_error
        handle = f"sub-{self.attempts}"
        self.handles.append(handle)
        return handle

    async def unsubscribe(self, handle: str) -> None:
        if handle not in self.unsubscribed:
            self.unsubscribed.append(handle)

    def push(self, raw: dict) -> None:
        self.on_event(raw)

    def drop(self, reason: str = "connection closed: 1006") -> None:
        self.on_error(reason)


class RecordingSleep:
    """Stands in for asyncio.sleep: records the delay and yields once."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()
