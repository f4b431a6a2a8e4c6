from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Iterable, Mapping

from ..domain.decoding import decode_transfer, is_mint, is_removed, to_mint_event
from ..domain.errors import DecodeError, SinkError, TransportError
from ..domain.models import BlockRange, TransferRecord
from ..domain.value_types import RawLog
from ..ports.cursor import CursorStore
from ..ports.notify import NotificationSink
from ..ports.rpc import PollingLedgerClient, StreamingLedgerClient
from .dedup import DeduplicationCache
from .planning import plan_ranges
from .supervisor import ReconnectSupervisor

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class MonitorStats:
    logs: int = 0              # raw entries seen
    mints: int = 0             # entries that decoded to a mint
    emitted: int = 0           # handed to the sink (success or not)
    duplicates: int = 0
    decode_errors: int = 0
    sink_errors: int = 0
    transport_errors: int = 0

    def merge(self, other: "MonitorStats") -> None:
        for k, v in asdict(other).items():
            setattr(self, k, getattr(self, k) + v)


class MonitoringEngine:
    """Decode -> mint filter -> dedup -> sink. Shared by both transports.

    Not safe for concurrent use; each subclass serializes its own callers.
    """

    def __init__(self, sink: NotificationSink, dedup: DeduplicationCache) -> None:
        self.sink = sink
        self.dedup = dedup
        self.stats = MonitorStats()

    def _decode_mint(self, raw: RawLog, stats: MonitorStats) -> TransferRecord | None:
        stats.logs += 1
        try:
            rec = decode_transfer(raw)
        except DecodeError as e:
            stats.decode_errors += 1
            tx = raw.get("transactionHash") if isinstance(raw, Mapping) else None
            logger.warning("dropping undecodable log (tx=%s): %s", tx, e)
            return None
        if is_removed(raw):
            logger.info("ignoring log of token %d retracted by reorg (block %d)", rec.token_id, rec.block_number)
            return None
        if not is_mint(rec):
            return None
        stats.mints += 1
        return rec

    async def _emit(self, rec: TransferRecord, stats: MonitorStats) -> None:
        event = to_mint_event(rec)
        if self.dedup.has(event.key):
            stats.duplicates += 1
            logger.debug("duplicate mint of token %d in tx %s suppressed", event.token_id, event.tx_hash)
            return
        self.dedup.remember(event.key)
        stats.emitted += 1
        logger.info("mint: token %d -> %s (block %d)", event.token_id, event.to_address, event.block_number)
        try:
            await self.sink.notify(event)
        except SinkError as e:
            stats.sink_errors += 1
            logger.error("sink failed for token %d: %s", event.token_id, e)

    async def process(self, raws: Iterable[RawLog]) -> MonitorStats:
        """Run a batch through the pipeline in (block, log index) order."""
        stats = MonitorStats()
        recs = [r for r in (self._decode_mint(raw, stats) for raw in raws) if r is not None]
        recs.sort(key=lambda r: (r.block_number, r.log_index))
        for rec in recs:
            await self._emit(rec, stats)
        self.stats.merge(stats)
        return stats


class PollingMonitor(MonitoringEngine):
    """Pull mode: one tick scans (cursor, tip] and then advances the cursor."""

    def __init__(
        self,
        client: PollingLedgerClient,
        cursor: CursorStore,
        sink: NotificationSink,
        dedup: DeduplicationCache,
        *,
        max_block_span: int = 2_000,
    ) -> None:
        super().__init__(sink, dedup)
        self.client = client
        self.cursor = cursor
        self.max_block_span = max_block_span
        self._stop = asyncio.Event()

    async def _fetch(self, rng: BlockRange) -> list[RawLog]:
        logs: list[RawLog] = []
        for sub in plan_ranges(rng.start, rng.end, self.max_block_span):
            logs.extend(await self.client.fetch_range(sub.start, sub.end))
        return logs

    async def tick(self) -> MonitorStats:
        try:
            tip = await self.client.current_height()
            cur = self.cursor.get()
            if cur is None:
                # the tip itself is never scanned; only what comes after it
                self.cursor.initialize(tip)
                return MonitorStats()
            if tip <= cur.last_confirmed_height:
                return MonitorStats()
            rng = BlockRange(cur.last_confirmed_height + 1, tip)
            logger.info("checking logs from block %d to %d", rng.start, rng.end)
            logs = await self._fetch(rng)
        except TransportError as e:
            self.stats.transport_errors += 1
            logger.warning("poll tick failed, will retry next tick: %s", e)
            return MonitorStats(transport_errors=1)

        stats = await self.process(logs)
        self.cursor.advance(rng.end)
        if stats.mints:
            logger.info("found %d mint log(s) in %d..%d", stats.mints, rng.start, rng.end)
        return stats

    def stop(self) -> None:
        self._stop.set()

    async def run(self, interval_s: float = 15.0) -> None:
        """Tick, wait `interval_s`, repeat until stop(). The client is closed on the way out."""
        try:
            while not self._stop.is_set():
                await self.tick()
                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=interval_s)
                except asyncio.TimeoutError:
                    pass
        finally:
            await self.client.aclose()
            logger.info("polling stopped: %s", self.stats)


_STOP = object()
_RECONCILE = object()


class StreamingMonitor(MonitoringEngine):
    """Push mode: subscription callbacks are queued and consumed one at a time.

    With a `backfill` client each re-subscription first scans the blocks
    between the last seen height and the tip, closing the gap left by the
    disconnected window. The dedup cache absorbs any overlap.

    The queue is unbounded: subscription callbacks are synchronous and must
    never block or drop, so a sink slower than the mint rate grows it.
    """

    def __init__(
        self,
        client: StreamingLedgerClient,
        sink: NotificationSink,
        dedup: DeduplicationCache,
        *,
        base_backoff_s: float = 1.0,
        max_backoff_s: float = 60.0,
        backfill: PollingLedgerClient | None = None,
        max_block_span: int = 2_000,
    ) -> None:
        super().__init__(sink, dedup)
        self.client = client
        self.backfill = backfill
        self.max_block_span = max_block_span
        self.last_seen_height: int | None = None
        self._queue: asyncio.Queue = asyncio.Queue()
        self.supervisor = ReconnectSupervisor(
            client, self._enqueue,
            base_backoff_s=base_backoff_s,
            max_backoff_s=max_backoff_s,
            on_subscribed=self._on_subscribed,
        )

    def _enqueue(self, raw: RawLog) -> None:
        self._queue.put_nowait(raw)

    async def _on_subscribed(self, reconnected: bool) -> None:
        if self.backfill is not None:
            self._queue.put_nowait(_RECONCILE)
        elif reconnected:
            logger.warning("resubscribed without a backfill endpoint; mints during the outage are not recovered")

    def stop(self) -> None:
        self._queue.put_nowait(_STOP)

    async def handle(self, raw: RawLog) -> MonitorStats:
        stats = await self.process([raw])
        if not isinstance(raw, Mapping):
            return stats
        bn = raw.get("blockNumber")
        try:
            h = int(bn, 16) if isinstance(bn, str) else int(bn)
        except (TypeError, ValueError):
            return stats
        if self.last_seen_height is None or h > self.last_seen_height:
            self.last_seen_height = h
        return stats

    async def reconcile(self) -> MonitorStats:
        """Scan [last_seen_height, tip] through the backfill client.

        The last seen block is rescanned: the stream delivers one log at a
        time, so a drop can land between two logs of the same block.
        """
        if self.backfill is None:
            return MonitorStats()
        try:
            tip = await self.backfill.current_height()
            if self.last_seen_height is None:
                self.last_seen_height = tip
                logger.info("reconciliation baseline set at block %d", tip)
                return MonitorStats()
            if tip < self.last_seen_height:
                return MonitorStats()
            logger.info("reconciling blocks %d..%d after reconnect", self.last_seen_height, tip)
            logs: list[RawLog] = []
            for sub in plan_ranges(self.last_seen_height, tip, self.max_block_span):
                logs.extend(await self.backfill.fetch_range(sub.start, sub.end))
        except TransportError as e:
            self.stats.transport_errors += 1
            logger.warning("reconciliation failed, continuing with the live stream: %s", e)
            return MonitorStats(transport_errors=1)
        stats = await self.process(logs)
        self.last_seen_height = tip
        return stats

    async def run(self) -> None:
        """Subscribe and consume until stop(). Subscription and clients are released on every exit path."""
        try:
            await self.supervisor.connect()
            while True:
                item = await self._queue.get()
                if item is _STOP:
                    break
                if item is _RECONCILE:
                    await self.reconcile()
                else:
                    await self.handle(item)
        finally:
            await self.supervisor.close()
            if self.backfill is not None:
                await self.backfill.aclose()
            logger.info("streaming stopped: %s", self.stats)
