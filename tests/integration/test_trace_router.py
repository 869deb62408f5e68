"""Integration tests for the traceability API."""

from pharmatrace.batches.models import BatchModel

MANUFACTURER = "0x" + "a1" * 20
DISTRIBUTOR = "0x" + "b2" * 20
PHARMACY = "0x" + "c3" * 20


def make_batch(batch_id, parent=0, owner=MANUFACTURER, **overrides) -> BatchModel:
    values = {
        "batch_id": batch_id,
        "parent_batch_id": parent,
        "batch_number": f"BN-{batch_id}",
        "product_name": "Paracetamol 500mg",
        "quantity": 10,
        "owner": owner,
        "manufacturer": MANUFACTURER,
        "metadata_history": [],
    }
    values.update(overrides)
    return BatchModel(**values)


class TestTraceRouter:
    async def _seed_tree(self, seed):
        await seed(
            make_batch(1, transaction_hash="0x" + "11" * 32, block_number=12),
            make_batch(2, parent=1, owner=DISTRIBUTOR),
            make_batch(3, parent=2, owner=PHARMACY),
            make_batch(4, parent=1, owner=DISTRIBUTOR),
        )

    async def test_full_trace(self, client, seed):
        await self._seed_tree(seed)
        resp = await client.get("/trace/2")
        assert resp.status_code == 200
        data = resp.json()
        assert data["batch"]["batch_id"] == 2
        assert [b["batch_id"] for b in data["upstream"]["batches"]] == [1]
        assert [b["batch_id"] for b in data["downstream"]["batches"]] == [3]
        assert data["downstream"]["batches"][0]["depth"] == 1
        assert data["warnings"] == []

    async def test_upstream(self, client, seed):
        await self._seed_tree(seed)
        resp = await client.get("/trace/3/upstream")
        data = resp.json()
        assert data["count"] == 2
        assert data["max_depth"] == 2
        assert [(b["batch_id"], b["depth"]) for b in data["batches"]] == [(2, 1), (1, 2)]

    async def test_downstream(self, client, seed):
        await self._seed_tree(seed)
        resp = await client.get("/trace/1/downstream")
        data = resp.json()
        assert data["count"] == 3
        assert data["truncated"] is False
        assert [(b["batch_id"], b["depth"]) for b in data["batches"]] == [(2, 1), (4, 1), (3, 2)]

    async def test_cycle_reported(self, client, seed):
        await seed(make_batch(1, parent=2), make_batch(2, parent=1))
        resp = await client.get("/trace/1/downstream")
        data = resp.json()
        assert data["truncated"] is True
        assert "Circular dependency" in data["warnings"][0]

    async def test_unknown_batch(self, client):
        for path in ("/trace/99", "/trace/99/upstream", "/trace/99/downstream"):
            resp = await client.get(path)
            assert resp.status_code == 404

    async def test_search(self, client, seed):
        await self._seed_tree(seed)
        resp = await client.get("/trace/search", params={"q": "bn-3"})
        data = resp.json()
        assert data["count"] == 1
        assert data["candidates"][0]["batch_id"] == 3

        resp = await client.get("/trace/search", params={"q": "paracetamol"})
        assert resp.json()["count"] == 4

    async def test_search_requires_query(self, client):
        resp = await client.get("/trace/search")
        assert resp.status_code == 422
