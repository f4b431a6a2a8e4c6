import asyncio

import pytest

from mintwatch.application.cursor import MemoryCursorStore
from mintwatch.application.dedup import DeduplicationCache
from mintwatch.application.engine import PollingMonitor
from mintwatch.domain.errors import TransportError
from mintwatch.domain.models import Cursor
from mintwatch.domain.value_types import NULL_ADDRESS

from conftest import ALICE, FakePollingClient, RecordingSink, make_log


def monitor(client, sink, start_height=None, capacity=1000, span=2000):
    return PollingMonitor(client, MemoryCursorStore(start_height), sink,
                          DeduplicationCache(capacity), max_block_span=span)


async def test_single_mint_in_range_is_emitted_and_cursor_advances(sink):
    client = FakePollingClient(tip=105, logs=[make_log(42, 103)])
    m = monitor(client, sink, start_height=99)
    stats = await m.tick()
    assert client.calls == [(100, 105)]
    assert [(e.token_id, e.block_number) for e in sink.events] == [(42, 103)]
    assert m.cursor.get() == Cursor(105)
    assert stats.emitted == 1


async def test_first_tick_without_start_height_only_initializes(sink):
    client = FakePollingClient(tip=500, logs=[make_log(1, 500)])
    m = monitor(client, sink)
    await m.tick()
    assert m.cursor.get() == Cursor(500)
    assert client.calls == []
    assert sink.events == []

    client.tip = 502
    client.logs.append(make_log(2, 501))
    await m.tick()
    assert client.calls == [(501, 502)]
    assert sink.token_ids == [2]


async def test_no_new_blocks_is_a_noop(sink):
    client = FakePollingClient(tip=100)
    m = monitor(client, sink, start_height=100)
    await m.tick()
    client.tip = 90          # lagging node behind the cursor
    await m.tick()
    assert client.calls == []
    assert m.cursor.get() == Cursor(100)


async def test_fetch_failure_leaves_cursor_untouched(sink):
    client = FakePollingClient(tip=110, logs=[make_log(7, 105)])
    client.fail_fetch = True
    m = monitor(client, sink, start_height=100)
    stats = await m.tick()
    assert stats.transport_errors == 1
    assert m.cursor.get() == Cursor(100)
    assert sink.events == []

    # next tick retries the whole range
    client.fail_fetch = False
    await m.tick()
    assert client.calls[-1] == (101, 110)
    assert sink.token_ids == [7]
    assert m.cursor.get() == Cursor(110)


async def test_height_failure_is_caught(sink):
    client = FakePollingClient(tip=110)
    client.fail_height = True
    m = monitor(client, sink, start_height=100)
    stats = await m.tick()
    assert stats.transport_errors == 1
    assert m.stats.transport_errors == 1
    assert m.cursor.get() == Cursor(100)


async def test_failure_in_later_subrange_does_not_advance(sink):
    class FailSecond(FakePollingClient):
        async def fetch_range(self, a, b):
            if len(self.calls) == 1:
                self.calls.append((a, b))
                raise TransportError("boom")
            return await super().fetch_range(a, b)

    client = FailSecond(tip=110, logs=[make_log(1, 102)])
    m = monitor(client, sink, start_height=100, span=5)
    await m.tick()
    assert client.calls == [(101, 105), (106, 110)]
    assert sink.events == []
    assert m.cursor.get() == Cursor(100)


async def test_range_is_split_by_max_block_span(sink):
    client = FakePollingClient(tip=120, logs=[make_log(1, 101), make_log(2, 115)])
    m = monitor(client, sink, start_height=100, span=10)
    await m.tick()
    assert client.calls == [(101, 110), (111, 120)]
    assert sink.token_ids == [1, 2]


async def test_non_mints_are_never_emitted(sink):
    client = FakePollingClient(tip=110, logs=[
        make_log(5, 101, frm=ALICE, to=NULL_ADDRESS),
        make_log(6, 102, frm="0x" + "AA" * 20),
        make_log(7, 103),
    ])
    m = monitor(client, sink, start_height=100)
    stats = await m.tick()
    assert sink.token_ids == [7]
    assert stats.logs == 3 and stats.mints == 1


async def test_mints_are_emitted_in_block_then_log_order(sink):
    client = FakePollingClient(tip=110, logs=[
        make_log(30, 105, log_index=1),
        make_log(10, 102, log_index=4),
        make_log(20, 105, log_index=0),
        make_log(11, 102, log_index=9),
    ])
    m = monitor(client, sink, start_height=100)
    await m.tick()
    assert sink.token_ids == [10, 11, 20, 30]


async def test_duplicates_within_a_range_emit_once(sink):
    dup = make_log(8, 104)
    client = FakePollingClient(tip=110, logs=[dup, dict(dup), dict(dup)])
    m = monitor(client, sink, start_height=100)
    stats = await m.tick()
    assert sink.token_ids == [8]
    assert stats.duplicates == 2


async def test_overlap_after_operator_rewind_is_deduplicated(sink):
    client = FakePollingClient(tip=110, logs=[make_log(8, 104)])
    m = monitor(client, sink, start_height=100)
    await m.tick()
    m.cursor.reset(100)
    await m.tick()
    assert sink.token_ids == [8]
    assert m.cursor.get() == Cursor(110)


async def test_decode_errors_are_skipped(sink):
    bad = make_log(1, 101)
    bad["topics"] = bad["topics"][:2]
    client = FakePollingClient(tip=110, logs=[bad, make_log(2, 102)])
    m = monitor(client, sink, start_height=100)
    stats = await m.tick()
    assert sink.token_ids == [2]
    assert stats.decode_errors == 1
    assert m.cursor.get() == Cursor(110)


async def test_non_object_entries_are_skipped(sink):
    spaced = make_log(3, 103)
    spaced["topics"][3] = "0x00 00 " + "0" * 56 + "2a"
    client = FakePollingClient(tip=110)

    async def fetch_range(from_height, to_height):
        return ["garbage", None, spaced, make_log(2, 102)]
    client.fetch_range = fetch_range

    m = monitor(client, sink, start_height=100)
    stats = await m.tick()
    assert sink.token_ids == [2]
    assert stats.decode_errors == 3
    assert m.cursor.get() == Cursor(110)


async def test_removed_logs_are_ignored(sink):
    client = FakePollingClient(tip=110, logs=[make_log(1, 101, removed=True)])
    m = monitor(client, sink, start_height=100)
    await m.tick()
    assert sink.events == []


async def test_sink_failure_is_logged_and_cursor_still_advances(caplog):
    sink = RecordingSink(fail_tokens={1})
    client = FakePollingClient(tip=110, logs=[make_log(1, 101), make_log(2, 102)])
    m = monitor(client, sink, start_height=100)
    stats = await m.tick()
    assert sink.token_ids == [2]
    assert stats.sink_errors == 1
    assert m.cursor.get() == Cursor(110)
    assert "sink failed for token 1" in caplog.text

    # not retried on the next tick
    client.tip = 111
    await m.tick()
    assert sink.token_ids == [2]


async def test_run_stops_after_current_tick_and_closes_client(sink):
    client = FakePollingClient(tip=110, logs=[make_log(1, 101)])
    m = monitor(client, sink, start_height=100)
    task = asyncio.create_task(m.run(interval_s=60))
    for _ in range(20):
        await asyncio.sleep(0)
        if sink.events:
            break
    m.stop()
    await asyncio.wait_for(task, timeout=1)
    assert sink.token_ids == [1]
    assert client.closed


async def test_run_closes_client_on_error(sink):
    class Exploding(FakePollingClient):
        async def current_height(self):
            raise RuntimeError("bug")

    client = Exploding()
    m = monitor(client, sink, start_height=1)
    with pytest.raises(RuntimeError):
        await m.run(interval_s=0.01)
    assert client.closed
