from pathlib import Path

import pytest

from feedhub.core.config import settings
from feedhub.models.custom_field import CustomField
from feedhub.models.deduplication_rule import DeduplicationRule
from feedhub.models.mapped_product import MappedProduct
from worker.celery_app import celery

CSV_FEED = b"sku,title,price\nA1,Widget,10.00\nA2,Gadget\nA3,Gizmo,3.50\n"


@pytest.fixture
async def seeded(session_factory):
    async with session_factory() as db:
        db.add_all([
            CustomField(workspace_id="ws_a", key="sku", name="SKU", datatype="text", is_required=False, sort_order=0),
            CustomField(workspace_id="ws_a", key="title", name="Title", datatype="text", is_required=False, sort_order=1),
            CustomField(workspace_id="ws_a", key="price", name="Price", datatype="number", is_required=False, sort_order=2),
            CustomField(workspace_id="ws_a", key="ean", name="EAN", datatype="text", is_required=False, sort_order=3),
        ])
        await db.commit()


@pytest.mark.asyncio
async def test_sync_ingest_and_run_endpoints(client, seeded):
    r = await client.post(
        "/v1/workspaces/ws_a/suppliers/sup_1/ingest",
        params={"mode": "sync", "filename": "feed.csv"},
        content=CSV_FEED,
    )
    assert r.status_code == 200, r.text
    run = r.json()
    assert run["status"] == "completed"
    assert run["feed_format"] == "csv"
    assert (run["items_total"], run["items_success"], run["items_errors"]) == (3, 2, 1)

    r = await client.get(f"/v1/ingest-runs/{run['id']}")
    assert r.status_code == 200
    assert r.json()["items_processed"] == 3

    r = await client.get(f"/v1/ingest-runs/{run['id']}/errors")
    assert r.status_code == 200
    errors = r.json()
    assert len(errors) == 1
    assert errors[0]["item_index"] == 2
    assert errors[0]["code"] == "invalid_record"

    r = await client.post(f"/v1/ingest-runs/{run['id']}/cancel")
    assert r.status_code == 409

    r = await client.get("/v1/ingest-runs/run_missing")
    assert r.status_code == 404
    r = await client.get("/v1/ingest-runs/run_missing/errors")
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_async_ingest_stores_and_enqueues(client, seeded, tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "feed_storage_dir", str(tmp_path / "uploads"))
    sent = []

    def fake_send_task(name, args=None, queue=None, **kwargs):
        sent.append((name, args, queue))

    monkeypatch.setattr(celery, "send_task", fake_send_task)

    r = await client.post(
        "/v1/workspaces/ws_a/suppliers/sup_1/ingest",
        params={"mode": "async", "filename": "feed.csv", "uid_source_key": "sku"},
        content=CSV_FEED,
    )
    assert r.status_code == 202, r.text
    run = r.json()
    assert run["status"] == "running"
    assert run["feed_format"] == "csv"

    assert len(sent) == 1
    name, args, queue = sent[0]
    assert (name, queue) == ("worker.tasks.run_ingestion", "ingest")
    assert args[0] == run["id"]
    assert args[2] == "sku"
    stored = Path(args[1].removeprefix("file://"))
    assert stored.read_bytes() == CSV_FEED
    # stored under the run id only; the workspace id never becomes part of the path
    assert stored.name == f"{run['id']}.csv"
    assert stored.parent.resolve() == (tmp_path / "uploads").resolve()

    # the run stays running until the worker picks it up; it can be cancelled meanwhile
    r = await client.post(f"/v1/ingest-runs/{run['id']}/cancel")
    assert r.status_code == 200
    assert r.json()["status"] == "cancelled"


@pytest.mark.asyncio
async def test_async_ingest_broker_down_fails_run(client, seeded, tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "feed_storage_dir", str(tmp_path / "uploads"))

    def broken_send_task(*args, **kwargs):
        raise ConnectionError("broker unreachable")

    monkeypatch.setattr(celery, "send_task", broken_send_task)

    r = await client.post(
        "/v1/workspaces/ws_a/suppliers/sup_1/ingest",
        params={"mode": "async", "feed_format": "csv"},
        content=CSV_FEED,
    )
    assert r.status_code == 202
    assert r.json()["status"] == "failed"
    assert r.json()["error_message"].startswith("enqueue failed")


@pytest.mark.asyncio
async def test_async_ingest_empty_body(client, seeded, tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "feed_storage_dir", str(tmp_path / "uploads"))
    r = await client.post(
        "/v1/workspaces/ws_a/suppliers/sup_1/ingest",
        params={"mode": "async", "feed_format": "csv"},
        content=b"",
    )
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_ingest_url_rejects_non_http(client):
    r = await client.post(
        "/v1/workspaces/ws_a/suppliers/sup_1/ingest-url",
        json={"url": "ftp://supplier.example/feed.csv"},
    )
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_field_mapping_endpoints(client, seeded):
    base = "/v1/workspaces/ws_a/suppliers/sup_1/field-mappings"

    r = await client.put(base, json={"mappings": [
        {"source_key": "name", "field_key": "title"},
        {"source_key": "cost", "field_key": "price", "transform_type": "extract_number"},
    ]})
    assert r.status_code == 200, r.text
    assert [m["field_key"] for m in r.json()] == ["title", "price"]

    r = await client.get(base)
    assert [(m["source_key"], m["transform_type"]) for m in r.json()] == [
        ("name", "direct"),
        ("cost", "extract_number"),
    ]

    r = await client.put(base, json={"mappings": [{"source_key": "x", "field_key": "colour"}]})
    assert r.status_code == 422
    assert r.json()["detail"]["errors"][0]["errors"] == ["unknown custom field: colour"]

    # the rejected set did not replace the stored one
    r = await client.get(base)
    assert len(r.json()) == 2

    r = await client.post(f"{base}/suggest", json={"sample_records": [{"Name": "W", "GTIN": "1"}]})
    assert r.status_code == 200
    assert {(m["source_key"], m["field_key"]) for m in r.json()} == {("name", "title"), ("gtin", "ean")}


@pytest.mark.asyncio
async def test_mapping_rules_apply_to_next_ingest(client, seeded):
    r = await client.put("/v1/workspaces/ws_a/suppliers/sup_1/field-mappings", json={"mappings": [
        {"source_key": "label", "field_key": "title", "transform_type": "uppercase"},
    ]})
    assert r.status_code == 200

    r = await client.post(
        "/v1/workspaces/ws_a/suppliers/sup_1/ingest",
        params={"feed_format": "json"},
        content=b'[{"sku": "A1", "label": "widget"}]',
    )
    assert r.json()["items_success"] == 1

    r = await client.post("/v1/workspaces/ws_a/deduplication/run")
    assert r.status_code == 200
    assert r.json()["stats"]["rule_id"] is None


@pytest.mark.asyncio
async def test_deduplication_endpoints(client, session_factory):
    async with session_factory() as db:
        db.add_all([
            MappedProduct(workspace_id="ws_a", supplier_id="sup_a", uid="1", fields={"ean": "E1", "price": 10}),
            MappedProduct(workspace_id="ws_a", supplier_id="sup_b", uid="1", fields={"ean": "E1", "price": 8.5}),
            MappedProduct(workspace_id="ws_a", supplier_id="sup_b", uid="2", fields={"ean": "E2", "price": 1}),
            DeduplicationRule(workspace_id="ws_a", name="cheapest", match_key="ean", selection_policy="lowest_price"),
        ])
        await db.commit()

    r = await client.post("/v1/workspaces/ws_a/deduplication/run", json={})
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["stats"]["unique_products"] == 2
    assert body["stats"]["conflicts_resolved"] == 1
    assert body["conflicts"][0]["winning_supplier_id"] == "sup_b"

    r = await client.get("/v1/workspaces/ws_a/deduplication/stats")
    assert r.status_code == 200
    assert r.json()["duplicates_removed"] == 1
    assert r.json()["coverage_percentage"] == 67

    r = await client.post("/v1/workspaces/ws_a/deduplication/run", json={"rule_id": "ddr_missing"})
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_uid_counter_endpoints(client, seeded):
    r = await client.get("/v1/workspaces/ws_a/uid-counter")
    assert r.json() == {"workspace_id": "ws_a", "last_uid": 0}

    r = await client.post(
        "/v1/workspaces/ws_a/suppliers/sup_1/ingest",
        params={"feed_format": "json"},
        content=b'[{"title": "one"}, {"title": "two"}]',
    )
    assert r.json()["items_success"] == 2

    r = await client.get("/v1/workspaces/ws_a/uid-counter")
    assert r.json()["last_uid"] == 2

    r = await client.post("/v1/workspaces/ws_a/suppliers/sup_1/products/2/deactivate")
    assert r.status_code == 200
    assert r.json() == {"workspace_id": "ws_a", "supplier_id": "sup_1", "uid": "2", "is_active": False}

    r = await client.post("/v1/workspaces/ws_a/suppliers/sup_1/products/99/deactivate")
    assert r.status_code == 404

    r = await client.post("/v1/workspaces/ws_a/uid-counter/reset")
    assert r.json()["last_uid"] == 0
    r = await client.get("/v1/workspaces/ws_a/uid-counter")
    assert r.json()["last_uid"] == 0
