"""Tests for live polling and the sync worker."""

import asyncio

import pytest

from pharmatrace.common.exceptions import ChainReadError, TransactionNotFoundError
from pharmatrace.events.dispatcher import DispatchOutcome
from pharmatrace.sync.worker import SyncWorker

MANUFACTURER = "0x" + "a1" * 20
PHARMACY = "0x" + "c3" * 20


def created(make_event, batch_id, block, log_index=0, tx=None):
    return make_event(
        "BatchCreated", block, log_index, tx=tx, batchId=batch_id,
        manufacturer=MANUFACTURER, quantity=10, unit="Box",
    )


async def load_batch(pipeline, batch_id):
    async with pipeline.db.get_session() as session:
        return await pipeline.batches.get_batch(session, batch_id)


@pytest.fixture
async def recovered(pipeline):
    """Pipeline whose cursor sits at the deployment block."""
    pipeline.chain.head = 10
    await pipeline.recovery().recover()
    return pipeline


class TestLivePoller:
    async def test_prime_requires_cursor(self, pipeline):
        with pytest.raises(RuntimeError, match="run recovery"):
            await pipeline.poller().prime()

    async def test_tick_dispatches_new_blocks(self, recovered, make_event):
        pipeline = recovered
        poller = pipeline.poller()
        assert await poller.prime() == 10

        pipeline.chain.emit(created(make_event, 1, 12), created(make_event, 2, 14))
        assert await poller.tick() == 2

        assert pipeline.chain.range_calls[-1] == (11, 14)
        assert poller.last_seen == 14
        assert (await pipeline.cursors.get()).last_processed_block == 14

    async def test_cursor_advances_on_empty_blocks(self, recovered):
        pipeline = recovered
        poller = pipeline.poller()
        pipeline.chain.head = 18

        assert await poller.tick() == 0
        assert (await pipeline.cursors.get()).last_processed_block == 18

    async def test_no_new_blocks_skips_query(self, recovered):
        pipeline = recovered
        poller = pipeline.poller()
        calls = len(pipeline.chain.range_calls)
        assert await poller.tick() == 0
        assert len(pipeline.chain.range_calls) == calls

    async def test_failed_tick_retries_same_range(self, recovered, make_event):
        pipeline = recovered
        poller = pipeline.poller()
        pipeline.chain.emit(created(make_event, 1, 12))
        pipeline.chain.fail_ranges = 1

        with pytest.raises(ChainReadError):
            await poller.tick()
        assert poller.last_seen == 10
        assert (await pipeline.cursors.get()).last_processed_block == 10

        assert await poller.tick() == 1
        assert pipeline.chain.range_calls[-2:] == [(11, 12), (11, 12)]

    async def test_run_survives_errors_until_stopped(self, recovered, make_event):
        pipeline = recovered
        poller = pipeline.poller()
        pipeline.chain.fail_ranges = 2
        pipeline.chain.emit(created(make_event, 1, 12))

        task = asyncio.create_task(poller.run())
        for _ in range(200):
            if poller.last_seen == 12:
                break
            await asyncio.sleep(0.01)
        poller.stop()
        await asyncio.wait_for(task, timeout=2)

        assert poller.last_seen == 12
        assert await load_batch(pipeline, 1) is not None


class TestSyncWorker:
    def _worker(self, pipeline) -> SyncWorker:
        return SyncWorker(pipeline.settings, pipeline.chain, pipeline.dispatcher, pipeline.cursors)

    async def test_recovers_then_polls(self, pipeline, make_event):
        pipeline.chain.emit(created(make_event, 1, 12))
        worker = self._worker(pipeline)

        worker.start()
        assert worker.running
        for _ in range(200):
            if worker.poller.last_seen is not None:
                break
            await asyncio.sleep(0.01)
        pipeline.chain.emit(created(make_event, 2, 16))
        for _ in range(200):
            if worker.poller.last_seen == 16:
                break
            await asyncio.sleep(0.01)
        await worker.stop()

        assert not worker.running
        assert worker.last_recovery.events_dispatched == 1
        assert await load_batch(pipeline, 2) is not None

    async def test_resync_transaction_in_log_order(self, pipeline, make_event):
        tx = "0x" + "9a" * 32
        pipeline.chain.emit(
            make_event("TransferInitiated", 12, 1, tx=tx, batchId=1, **{"from": MANUFACTURER, "to": PHARMACY}),
            created(make_event, 1, 12, log_index=0, tx=tx),
        )
        worker = self._worker(pipeline)

        results = await worker.resync_transaction(tx)

        assert [r.event_key for r in results] == [f"{tx}-0", f"{tx}-1"]
        assert all(r.outcome == DispatchOutcome.PROCESSED for r in results)
        assert (await load_batch(pipeline, 1)).status == "IN_TRANSIT"

        again = await worker.resync_transaction(tx)
        assert [r.outcome for r in again] == [DispatchOutcome.SKIPPED] * 2

    async def test_resync_unknown_transaction(self, pipeline):
        worker = self._worker(pipeline)
        with pytest.raises(TransactionNotFoundError):
            await worker.resync_transaction("0x" + "00" * 32)
