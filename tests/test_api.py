"""
Tests for the packaging HTTP API.
"""
import pytest
from fastapi.testclient import TestClient

from stock_hub.db_models import AuditAction
from stock_hub.main import create_app

DAY = "2026-10-19"
HEADERS = {"X-User-Id": "user-1", "X-User-Email": "packer@example.com", "X-Session-Id": "sess-1"}


@pytest.fixture
def client(settings, hub, seeded, restore_logging):
    app = create_app(settings, hub=hub)
    with TestClient(app) as client:
        yield client


def _start(client, waybill="WB-1"):
    resp = client.post("/packaging/sessions", json={"waybill_number": waybill, "packaging_date": DAY}, headers=HEADERS)
    assert resp.status_code == 201, resp.text
    return resp.json()["id"]


def _scan(client, session_id, barcode):
    return client.post(f"/packaging/sessions/{session_id}/scan", json={"barcode": barcode})


class TestHealth:
    def test_health(self, client):
        body = client.get("/health").json()

        assert body["status"] == "ok"
        assert body["backend"] == "InMemoryCatalogStore"
        assert body["open_sessions"] == 0


class TestSessionsApi:
    def test_scan_flow(self, client, seeded):
        sid = _start(client)

        resp = _scan(client, sid, "GIFT-001")

        assert resp.status_code == 200
        body = resp.json()
        assert body["items"][0]["product_barcode"] == "GIFT-001"
        assert body["items"][0]["is_bundle"] is True
        assert body["ledger"] == {str(seeded.widget.id): 3, str(seeded.gadget.id): 0}
        assert client.get(f"/packaging/sessions/{sid}").json()["items"] == body["items"]

    def test_scan_shortfall_is_409(self, client):
        sid = _start(client)
        _scan(client, sid, "GIFT-001")

        resp = _scan(client, sid, "GIFT-001")

        assert resp.status_code == 409
        detail = resp.json()["detail"]
        assert detail["code"] == "INSUFFICIENT_STOCK"
        assert detail["shortfalls"][0]["name"] == "Gadget"
        assert len(client.get(f"/packaging/sessions/{sid}").json()["items"]) == 1

    def test_unknown_barcode_is_404(self, client):
        sid = _start(client)

        assert _scan(client, sid, "NOPE").status_code == 404

    def test_blank_barcode_is_400(self, client):
        sid = _start(client)

        assert _scan(client, sid, "   ").status_code == 400

    def test_unknown_session_is_404(self, client):
        resp = client.get("/packaging/sessions/missing")

        assert resp.status_code == 404
        assert resp.json()["detail"]["code"] == "SESSION_NOT_FOUND"

    def test_remove_item(self, client, seeded):
        sid = _start(client)
        _scan(client, sid, "PEN-001")
        _scan(client, sid, "WID-001")

        body = client.delete(f"/packaging/sessions/{sid}/items/0").json()

        assert [i["product_barcode"] for i in body["items"]] == ["WID-001"]
        assert body["ledger"][str(seeded.pen.id)] == 10

    def test_complete(self, client, catalog, audit_sink, seeded):
        sid = _start(client)
        _scan(client, sid, "PEN-001")
        _scan(client, sid, "GIFT-001")

        resp = client.post(f"/packaging/sessions/{sid}/complete")

        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["result"]["success"] is True
        assert body["record"]["waybill_number"] == "WB-1"
        assert len(body["record"]["items"]) == 2
        assert catalog.stock_of(seeded.pen.id) == 9
        assert client.get(f"/packaging/sessions/{sid}").status_code == 404
        entry = audit_sink.of(AuditAction.product_stock_deduct)[0]
        assert entry.user_email == "packer@example.com"

    def test_complete_empty_is_409(self, client):
        sid = _start(client)

        resp = client.post(f"/packaging/sessions/{sid}/complete")

        assert resp.status_code == 409
        assert resp.json()["detail"]["code"] == "EMPTY_BATCH"

    def test_complete_write_failure_is_502(self, client, catalog, seeded):
        sid = _start(client)
        _scan(client, sid, "GIFT-001")
        catalog.configure(fail_writes=[seeded.gadget.id])

        resp = client.post(f"/packaging/sessions/{sid}/complete")

        assert resp.status_code == 502
        assert resp.json()["detail"]["failure"] == "stock_update_failed"
        assert catalog.stock_of(seeded.widget.id) == 5
        # session stays open for a retry
        assert client.get(f"/packaging/sessions/{sid}").json()["closed"] is False

    def test_duplicate_waybill_is_409(self, client):
        sid = _start(client, "WB-9")
        _scan(client, sid, "PEN-001")
        client.post(f"/packaging/sessions/{sid}/complete")

        resp = client.post("/packaging/sessions", json={"waybill_number": "WB-9", "packaging_date": DAY})

        assert resp.status_code == 409
        assert resp.json()["detail"]["code"] == "DUPLICATE_WAYBILL"

    def test_abandon(self, client, catalog):
        sid = _start(client)
        _scan(client, sid, "PEN-001")

        resp = client.delete(f"/packaging/sessions/{sid}")

        assert resp.json() == {"ok": True, "session_id": sid}
        assert client.get(f"/packaging/sessions/{sid}").status_code == 404
        assert catalog.writes == []


class TestRecordsApi:
    def test_list_and_void(self, client, catalog, seeded):
        sid = _start(client)
        _scan(client, sid, "PEN-001")
        record_id = client.post(f"/packaging/sessions/{sid}/complete").json()["record"]["id"]

        listed = client.get("/packaging/records", params={"date": DAY}).json()
        assert [r["id"] for r in listed] == [record_id]

        resp = client.delete(f"/packaging/records/{record_id}", headers=HEADERS)

        assert resp.status_code == 200
        assert resp.json()["success"] is True
        assert catalog.stock_of(seeded.pen.id) == 10
        assert client.get("/packaging/records", params={"date": DAY}).json() == []

    def test_void_without_restore(self, client, catalog, seeded):
        sid = _start(client)
        _scan(client, sid, "PEN-001")
        record_id = client.post(f"/packaging/sessions/{sid}/complete").json()["record"]["id"]

        client.delete(f"/packaging/records/{record_id}", params={"restore_stock": "false"})

        assert catalog.stock_of(seeded.pen.id) == 9

    def test_void_unknown_is_404(self, client):
        assert client.delete("/packaging/records/12345").status_code == 404


class TestStockApi:
    def test_requirements(self, client, seeded):
        resp = client.post("/packaging/stock/requirements", json={"barcodes": ["GIFT-001", "GIFT-001", "NOPE"]})

        body = resp.json()
        assert {r["product_id"]: r["required"] for r in body["requirements"]} == {
            seeded.widget.id: 4, seeded.gadget.id: 2,
        }
        assert body["missing"] == ["NOPE"]

    def test_validate_scenario_a(self, client):
        body = client.post("/packaging/stock/validate", json={"barcodes": ["GIFT-001", "GIFT-001"]}).json()

        assert body["valid"] is False
        assert [(s["name"], s["required"], s["available"]) for s in body["shortfalls"]] == [("Gadget", 2, 1)]

    def test_validate_read_fault_is_502(self, client, catalog):
        catalog.configure(fail_reads=True)

        resp = client.post("/packaging/stock/validate", json={"barcodes": ["PEN-001"]})

        assert resp.status_code == 502
        assert resp.json()["detail"]["code"] == "TRANSPORT"

    def test_empty_barcode_list_is_422(self, client):
        assert client.post("/packaging/stock/validate", json={"barcodes": []}).status_code == 422

    def test_components(self, client, seeded):
        body = client.get(f"/packaging/products/{seeded.gift.id}/components").json()

        assert [(c["barcode"], c["quantity"], c["stock_quantity"]) for c in body] == [
            ("WID-001", 2, 5), ("GAD-001", 1, 1),
        ]

    def test_components_unknown_product(self, client):
        assert client.get("/packaging/products/999/components").status_code == 404
