"""Tests for metadata fetch, mapping and draft reconciliation."""

from unittest.mock import patch

import httpx
import pytest
from sqlalchemy import select

from pharmatrace.batches.models import BatchModel
from pharmatrace.common.exceptions import MetadataFetchError
from pharmatrace.metadata.client import MetadataGatewayClient
from pharmatrace.metadata.mapping import RemoteBatchMetadata, apply_remote_metadata
from pharmatrace.orders.models import OrderModel

MANUFACTURER = "0x" + "a1" * 20
DISTRIBUTOR = "0x" + "b2" * 20

DOCUMENT = {
    "name": "Amoxicillin 500mg",
    "image": "ipfs://QmImage",
    "quantity": 1,
    "owner": "0x" + "ff" * 20,
    "properties": {
        "strength": 500,
        "expiry": "2027-01",
        "packingType": "Blister",
        "totalUnitsPerPack": 10,
        "baseUnitPrice": "2.5",
        "ingredients": ["amoxicillin trihydrate", "magnesium stearate"],
        "status": "RECALLED",
    },
}


def scripted_client(*responses):
    calls = []

    def handler(request):
        calls.append(request.url)
        outcome = responses[min(len(calls), len(responses)) - 1]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    client = MetadataGatewayClient("https://gw.test/ipfs/", transport=httpx.MockTransport(handler))
    return client, calls


async def no_sleep(delay):
    return None


async def load_batch(pipeline, batch_id):
    async with pipeline.db.get_session() as session:
        return await pipeline.batches.get_batch(session, batch_id)


@pytest.fixture
def minted(pipeline, make_event):
    async def _minted(batch_id=1, quantity=100):
        await pipeline.dispatcher.dispatch(make_event(
            "BatchCreated", 11, batchId=batch_id, manufacturer=MANUFACTURER,
            quantity=quantity, unit="Box",
        ))
    return _minted


@pytest.fixture
def add_metadata(pipeline, make_event):
    async def _add(content_hash, batch_id=1, block=12):
        return await pipeline.dispatcher.dispatch(make_event(
            "MetadataAdded", block, batchId=batch_id, ipfsHash=content_hash,
            addedBy=MANUFACTURER.upper().replace("0X", "0x"),
        ))
    return _add


# ── Gateway client ──


class TestGatewayClient:
    async def test_fetch_builds_url(self):
        client, calls = scripted_client(httpx.Response(200, json={"name": "X"}))
        assert await client.fetch("QmAbc", timeout=1.0) == {"name": "X"}
        assert str(calls[0]) == "https://gw.test/ipfs/QmAbc"

    async def test_non_object_body_not_retryable(self):
        client, calls = scripted_client(httpx.Response(200, json=["not", "a", "dict"]))
        with pytest.raises(MetadataFetchError) as exc_info:
            await client.fetch_with_retry("QmAbc", timeout=1.0, sleep=no_sleep)
        assert exc_info.value.retryable is False
        assert len(calls) == 1

    async def test_follows_gateway_redirect(self):
        def handler(request):
            if request.url.host == "gw.test":
                return httpx.Response(302, headers={"Location": "https://qmabc.ipfs.sub.test/"})
            return httpx.Response(200, json={"name": "Redirected"})

        client = MetadataGatewayClient("https://gw.test/ipfs/", transport=httpx.MockTransport(handler))
        assert await client.fetch("QmAbc", timeout=1.0) == {"name": "Redirected"}

    async def test_invalid_json(self):
        client, _ = scripted_client(httpx.Response(200, text="<html>gateway</html>"))
        with pytest.raises(MetadataFetchError, match="invalid JSON"):
            await client.fetch("QmAbc", timeout=1.0)

    async def test_rate_limit_retried(self):
        client, calls = scripted_client(httpx.Response(429), httpx.Response(200, json={}))
        assert await client.fetch_with_retry("QmAbc", timeout=1.0, sleep=no_sleep) == {}
        assert len(calls) == 2

    async def test_timeout_has_no_status(self):
        client, _ = scripted_client(httpx.ReadTimeout("slow gateway"))
        with pytest.raises(MetadataFetchError) as exc_info:
            await client.fetch("QmAbc", timeout=1.0)
        assert exc_info.value.status is None
        assert exc_info.value.retryable is True

    def test_retryable_classification(self):
        assert MetadataFetchError(status=503).retryable
        assert MetadataFetchError(status=429).retryable
        assert not MetadataFetchError(status=404).retryable
        assert not MetadataFetchError(status=400).retryable


# ── Mapping ──


class TestRemoteMetadataMapping:
    def test_allow_listed_fields_only(self):
        fields = RemoteBatchMetadata.model_validate(DOCUMENT).batch_fields()
        assert fields == {
            "product_name": "Amoxicillin 500mg",
            "dosage_strength": "500",
            "expiry": "2027-01",
            "packing_type": "Blister",
            "ingredients": "amoxicillin trihydrate, magnesium stearate",
            "total_units_per_pack": 10,
            "product_image": "ipfs://QmImage",
            "base_unit_price": 2.5,
        }

    def test_blank_and_unparseable_values_dropped(self):
        md = RemoteBatchMetadata.model_validate({
            "name": "  ",
            "properties": {"storageTemp": "", "baseUnitPrice": "N/A", "baseUnitCost": "0.8"},
        })
        assert md.batch_fields() == {"base_unit_cost": 0.8}

    def test_property_image_fallback(self):
        md = RemoteBatchMetadata.model_validate({"properties": {"productImage": "ipfs://QmP"}})
        assert md.batch_fields()["product_image"] == "ipfs://QmP"

    def test_non_object_properties(self):
        md = RemoteBatchMetadata.model_validate({"name": "X", "properties": "oops"})
        assert md.batch_fields() == {"product_name": "X"}

    def test_total_value_recomputed(self):
        batch = BatchModel(batch_id=1, quantity=100, total_units_per_pack=1)
        written = apply_remote_metadata(batch, RemoteBatchMetadata.model_validate(DOCUMENT))
        assert batch.total_batch_value == 2500.0
        assert "product_name" in written
        assert written == sorted(written)

    def test_total_value_without_price(self):
        batch = BatchModel(batch_id=1, quantity=100, total_units_per_pack=4)
        apply_remote_metadata(batch, RemoteBatchMetadata.model_validate({"name": "X"}))
        assert batch.total_batch_value == 0.0


# ── Enrichment through the dispatcher ──


class TestEnrichment:
    async def test_retries_with_backoff_then_enriches(self, pipeline, minted, add_metadata):
        await minted()
        pipeline.gateway.script("QmGood", 503, 503, 503, 503, DOCUMENT)

        result = await add_metadata("QmGood")

        assert result.detail["enriched"] is True
        assert pipeline.gateway.calls == ["QmGood"] * 5
        assert pipeline.sleeps == [2.0, 4.0, 8.0, 16.0]
        batch = await load_batch(pipeline, 1)
        assert batch.product_name == "Amoxicillin 500mg"
        assert batch.total_units_per_pack == 10
        assert batch.total_batch_value == 2500.0
        assert batch.owner == MANUFACTURER
        assert batch.status == "CREATED"

    async def test_not_found_stops_immediately(self, pipeline, minted, add_metadata):
        await minted()
        pipeline.gateway.script("QmMissing", 404)

        result = await add_metadata("QmMissing")

        assert result.detail["enriched"] is False
        assert pipeline.gateway.calls == ["QmMissing"]
        assert pipeline.sleeps == []
        batch = await load_batch(pipeline, 1)
        assert batch.metadata_hash == "QmMissing"
        assert batch.product_name == "Pending Batch #1"
        assert batch.metadata_history[-1]["enriched"] is False

    async def test_exhausted_retries_still_processed(self, pipeline, minted, add_metadata):
        await minted()
        pipeline.gateway.script("QmDown", 502)

        result = await add_metadata("QmDown")

        assert result.outcome.value == "processed"
        assert len(pipeline.gateway.calls) == 5
        assert pipeline.sleeps == [2.0, 4.0, 8.0, 16.0]

    async def test_transport_error_retried(self, pipeline, minted, add_metadata):
        await minted()
        pipeline.gateway.script("QmFlaky", httpx.ConnectError("connection reset"), DOCUMENT)

        result = await add_metadata("QmFlaky")

        assert result.detail["enriched"] is True
        assert pipeline.sleeps == [2.0]

    async def test_invalid_document_ignored(self, pipeline, minted, add_metadata):
        await minted()
        pipeline.gateway.script("QmBad", {"name": "Bad", "properties": {"totalUnitsPerPack": 0}})

        result = await add_metadata("QmBad")

        assert result.detail["enriched"] is False
        assert (await load_batch(pipeline, 1)).product_name == "Pending Batch #1"

    async def test_history_appended(self, pipeline, minted, add_metadata):
        await minted()
        pipeline.gateway.script("QmOne", DOCUMENT)
        pipeline.gateway.script("QmTwo", 404)

        await add_metadata("QmOne", block=12)
        await add_metadata("QmTwo", block=13)

        history = (await load_batch(pipeline, 1)).metadata_history
        assert [h["content_hash"] for h in history] == ["QmOne", "QmTwo"]
        assert history[0]["added_by"] == MANUFACTURER
        assert history[0]["doc_type"] == "batch_metadata"
        assert history[0]["enriched"] is True
        assert history[1]["enriched"] is False

    async def test_empty_hash_skipped(self, pipeline, minted, add_metadata):
        await minted()
        result = await add_metadata("   ")
        assert result.detail["content_hash"] == ""
        assert pipeline.gateway.calls == []
        assert (await load_batch(pipeline, 1)).metadata_history == []

    async def test_unknown_batch_skipped(self, pipeline, add_metadata):
        result = await add_metadata("QmOrphan", batch_id=77)
        assert result.detail["enriched"] is False
        assert pipeline.gateway.calls == []


class TestDraftReconciliation:
    async def _seed_draft(self, pipeline, content_hash="QmDraft", copies=1):
        async with pipeline.db.get_session() as session:
            for i in range(copies):
                session.add(BatchModel(
                    batch_id=0,
                    batch_number="BN-2026-001" if i == 0 else None,
                    metadata_hash=content_hash,
                    product_name="Amoxicillin 500mg",
                    owner=MANUFACTURER,
                    manufacturer=MANUFACTURER,
                    base_unit_cost=1.2,
                    base_unit_price=2.0,
                    currency="EUR",
                    storage_temp="2-8C",
                    metadata_history=[],
                ))
            session.add(OrderModel(
                distributor=DISTRIBUTOR,
                manufacturer=MANUFACTURER,
                batch_id=0,
                product_name="Amoxicillin 500mg",
                quantity_requested=10,
                total_price=20.0,
            ))

    async def test_draft_merged_and_orders_relinked(self, pipeline, minted, add_metadata):
        await self._seed_draft(pipeline)
        await minted()
        pipeline.gateway.script("QmDraft", 404)

        result = await add_metadata("QmDraft")

        assert result.detail["merged_draft"] is True
        batch = await load_batch(pipeline, 1)
        assert batch.batch_number == "BN-2026-001"
        assert batch.base_unit_cost == 1.2
        assert batch.base_unit_price == 2.0
        assert batch.currency == "EUR"
        assert batch.storage_temp == "2-8C"

        async with pipeline.db.get_session() as session:
            drafts = await pipeline.batches.placeholders_for_hash(session, "QmDraft")
            orders = (await session.execute(select(OrderModel))).scalars().all()
        assert drafts == []
        assert [o.batch_id for o in orders] == [1]

    async def test_leftover_drafts_removed(self, pipeline, minted, add_metadata):
        await self._seed_draft(pipeline, copies=3)
        await minted()

        await add_metadata("QmDraft")

        async with pipeline.db.get_session() as session:
            assert await pipeline.batches.placeholders_for_hash(session, "QmDraft") == []

    async def test_fetch_precedes_writes(self, pipeline, minted):
        await self._seed_draft(pipeline)
        await minted()
        observed = []

        async with pipeline.db.get_session() as session:
            batch = await pipeline.batches.get_batch(session, 1)

            async def fetch(*args, **kwargs):
                observed.append((
                    batch.metadata_hash, len(session.new), len(session.dirty), len(session.deleted),
                ))
                return DOCUMENT

            with patch.object(pipeline.metadata.client, "fetch_with_retry", side_effect=fetch):
                result = await pipeline.metadata.enrich(session, 1, "QmDraft")

        assert observed == [(None, 0, 0, 0)]
        assert result.merged_draft is True
        assert result.enriched is True

    async def test_remote_values_override_draft(self, pipeline, minted, add_metadata):
        await self._seed_draft(pipeline)
        await minted()
        pipeline.gateway.script("QmDraft", DOCUMENT)

        await add_metadata("QmDraft")

        batch = await load_batch(pipeline, 1)
        assert batch.batch_number == "BN-2026-001"
        assert batch.base_unit_price == 2.5
        assert batch.base_unit_cost == 1.2
        assert batch.total_batch_value == 2500.0
