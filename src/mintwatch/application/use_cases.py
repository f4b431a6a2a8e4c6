from __future__ import annotations
import logging

from mintwatch.adapters.rpc_httpx import HttpxLedgerClient
from mintwatch.adapters.rpc_websocket import WebsocketLedgerClient
from mintwatch.adapters.sink_console import ConsoleSink
from mintwatch.adapters.sink_webhook import WebhookSink
from mintwatch.application.cursor import MemoryCursorStore
from mintwatch.application.dedup import DeduplicationCache
from mintwatch.application.engine import PollingMonitor, StreamingMonitor
from mintwatch.application.planning import lookback_range, plan_ranges
from mintwatch.config import MonitorConfig
from ..domain.decoding import decode_transfer, is_mint, to_mint_event
from ..domain.errors import DecodeError
from ..domain.models import MintEvent
from ..domain.value_types import NULL_ADDRESS
from ..ports.notify import NotificationSink
from ..ports.rpc import PollingLedgerClient

logger = logging.getLogger(__name__)


def build_sink(cfg: MonitorConfig) -> NotificationSink:
    return WebhookSink(cfg.webhook_url, timeout_s=cfg.request_timeout_s) if cfg.webhook_url else ConsoleSink()


def build_polling_monitor(cfg: MonitorConfig, sink: NotificationSink) -> PollingMonitor:
    cfg.require_scheme("http", "https")
    return PollingMonitor(
        HttpxLedgerClient(cfg.rpc_endpoint, cfg.contract_address, timeout_s=cfg.request_timeout_s),
        MemoryCursorStore(cfg.start_height),
        sink,
        DeduplicationCache(cfg.dedup_cache_capacity),
        max_block_span=cfg.max_block_span,
    )


def build_streaming_monitor(cfg: MonitorConfig, sink: NotificationSink) -> StreamingMonitor:
    cfg.require_scheme("ws", "wss")
    backfill = None
    if cfg.backfill_endpoint:
        backfill = HttpxLedgerClient(cfg.backfill_endpoint, cfg.contract_address, timeout_s=cfg.request_timeout_s)
    return StreamingMonitor(
        WebsocketLedgerClient(cfg.rpc_endpoint, cfg.contract_address, open_timeout_s=cfg.request_timeout_s),
        sink,
        DeduplicationCache(cfg.dedup_cache_capacity),
        base_backoff_s=cfg.base_backoff_ms / 1000,
        max_backoff_s=cfg.max_backoff_ms / 1000,
        backfill=backfill,
        max_block_span=cfg.max_block_span,
    )


async def close_sink(sink: NotificationSink) -> None:
    aclose = getattr(sink, "aclose", None)
    if aclose is not None:
        await aclose()


async def scan_recent_mints(
    client: PollingLedgerClient,
    *,
    lookback_blocks: int = 8_000,
    limit: int = 25,
    step: int = 2_000,
) -> list[MintEvent]:
    """Mints in the last `lookback_blocks` blocks, ordered by token id, last `limit` kept.

    Read-only diagnostic to compare against what the sink received; it never
    touches a cursor or dedup cache.
    """
    tip = await client.current_height()
    rng = lookback_range(tip, lookback_blocks)
    logger.info("querying Transfer logs from block %d to %d", rng.start, rng.end)

    mints: list[MintEvent] = []
    for sub in plan_ranges(rng.start, rng.end, step):
        for raw in await client.fetch_range(sub.start, sub.end):
            try:
                rec = decode_transfer(raw)
            except DecodeError as e:
                logger.warning("skipping undecodable log: %s", e)
                continue
            if is_mint(rec):
                mints.append(to_mint_event(rec))
    mints.sort(key=lambda m: m.token_id)
    logger.info("detected %d mint(s) in this block range", len(mints))
    return mints[-limit:] if limit > 0 else mints


def sample_mint(token_id: int = 9999) -> MintEvent:
    """Fake mint for checking the sink end to end."""
    return MintEvent(
        from_address=NULL_ADDRESS,
        to_address=NULL_ADDRESS,
        token_id=token_id,
        block_number=0,
        block_hash="0x" + "00" * 32,
        tx_hash="0x" + "00" * 32,
        log_index=0,
    )
