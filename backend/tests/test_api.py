# tests/test_api.py
import importlib

from services.errors import NoScaleDataAvailable
from services.scale_client import get_scale_client


def reading(pcs, unit=2.0):
    return {"netKg": round(pcs * unit / 1000, 3), "pieceCount": pcs, "unitWeightGrams": unit}


def scan_body(bin_id, pcs, jtc=None, component="C6"):
    body = {"binId": bin_id, "components": [{"componentId": component, "scale": reading(pcs)}]}
    if jtc:
        body["jtc"] = jtc
    return body


def test_scan_assign_release_return_flow(client):
    r = client.post("/api/bins", json={"binId": "b1", "workcellId": "WC-3"})
    assert r.status_code == 201
    assert r.json()["status"] == "Pending JTC"

    for bid in ("B1", "B2"):
        r = client.post("/api/bins/scan", json=scan_body(bid, 6))
        assert r.status_code == 200, r.text
        assert r.json()["quantityCheckStatus"] == "Ready"

    r = client.post("/api/jtc/*JJ1/assign", json={"bins": ["b1", "b2"]})
    assert r.status_code == 200, r.text
    assert r.json()["assigned"] == ["B1", "B2"]
    assert client.get("/api/jtc/J1/assigned-bins-count").json()["count"] == 2

    r = client.post("/api/release/J1/checklist", json={"bins": ["B1", "B2"]})
    assert r.status_code == 200
    assert r.json()["complete"] is True

    r = client.post("/api/release", json={"bins": ["B1", "B2"]})
    assert r.status_code == 200, r.text
    assert r.json()["released"] == ["B1", "B2"]
    assert client.get("/api/bins/B1").json()["bin"]["location"] == "WC-3"

    r = client.post("/api/return", json={"bins": ["B1"]})
    assert r.status_code == 200
    info = client.get("/api/bins/B1").json()
    assert info["bin"]["status"] == "Returned to Warehouse"
    assert info["bin"]["jtc"] is None
    assert info["components"]["C6"]["actualQuantity"] == 0

    summary = client.get("/api/bins/summary").json()
    assert summary["Released"] == 1
    assert summary["Returned to Warehouse"] == 1


def test_errors_name_subject_and_condition(client):
    r = client.get("/api/bins/NOPE")
    assert r.status_code == 404
    assert r.json()["detail"]["code"] == "bin_not_found"
    assert r.json()["detail"]["subject"] == "NOPE"

    assert client.get("/api/jtc/NOPE").status_code == 404

    client.post("/api/bins/scan", json=scan_body("B1", 6))
    r = client.post("/api/release", json={"bins": ["B1"]})
    assert r.status_code == 409
    detail = r.json()["detail"]
    assert detail["code"] == "illegal_transition"
    assert detail["currentStatus"] == "Pending JTC"
    assert detail["condition"]


def test_scan_with_bad_component_is_reported_per_component(client):
    body = scan_body("B1", 6)
    body["components"].append({"componentId": "C1", "scale": {"netKg": 0, "pieceCount": 10, "unitWeightGrams": 2.5}})
    r = client.post("/api/bins/scan", json=body)
    assert r.status_code == 200
    outcomes = {o["componentId"]: o for o in r.json()["components"]}
    assert outcomes["C6"]["ready"] is True
    assert outcomes["C1"]["errorCode"] == "invalid_scale_reading"
    assert r.json()["quantityCheckStatus"] == "Pending"


def test_scan_request_validation(client):
    r = client.post("/api/bins/scan", json={"binId": "B1", "components": []})
    assert r.status_code == 422
    r = client.post("/api/bins/scan", json={"binId": "  ", "components": [{"componentId": "C6"}]})
    assert r.status_code == 422


def test_component_master_and_weight(client):
    r = client.get("/api/component-master/c6", params={"binId": "B1"})
    assert r.status_code == 200
    assert r.json()["expectedQuantityPerBin"] == 6
    assert r.json()["lastActualQuantity"] is None

    r = client.post("/api/component-master/C6/weight", json={"weightKg": 0.21, "quantity": 100})
    assert r.status_code == 200
    assert r.json()["unitWeightGrams"] == 2.1
    assert r.json()["calibrated"] is True

    r = client.post("/api/component-master/C6/weight", json={"weightKg": 0, "quantity": 100})
    assert r.status_code == 422

    assert client.get("/api/component-master/NOPE").status_code == 404


def test_reference_data_upserts(client):
    r = client.put("/api/component-master/NEW1", json={"expectedQuantityPerBin": 2, "requiresScale": False})
    assert r.status_code == 200
    r = client.put("/api/bom/R9", json=[{"componentId": "new1", "quantityPerItem": 3}])
    assert r.json() == {"revisionId": "R9", "lines": 1}
    r = client.put("/api/jtc/*JJ9", json={"revisionId": "R9", "quantityNeeded": 2})
    assert r.json()["jtcId"] == "J9"

    bom = client.get("/api/jtc/J9/bom").json()
    assert bom == [{"componentId": "NEW1", "quantityPerItem": 3, "totalQuantity": 6}]


def test_scale_reading_endpoint_without_data(client):
    from main import app

    class Idle:
        def get_current_reading(self):
            raise NoScaleDataAvailable("scale")

    app.dependency_overrides[get_scale_client] = lambda: Idle()
    r = client.get("/api/scale/reading")
    assert r.status_code == 503
    assert r.json()["detail"]["code"] == "no_scale_data"


def test_release_websocket_pushes_updates(client, manager, monkeypatch):
    ws_router = importlib.import_module("api.ws_router")
    import api.ws_router as via_package
    assert via_package is ws_router

    monkeypatch.setattr(ws_router, "db_manager", manager)
    with client.websocket_connect("/ws/release/J1") as ws:
        first = ws.receive_json()
        assert first["type"] == "checklist"
        assert first["checklist"]["jtc"] == "J1"

        r = client.post("/api/bins/scan", json=scan_body("B1", 6, jtc="J1"))
        assert r.status_code == 200

        update = ws.receive_json()
        assert update["type"] == "bin_update"
        assert update["bins"] == ["B1"]
        checklist = ws.receive_json()
        assert checklist["type"] == "checklist"


def test_release_websocket_rejects_malformed_bins(client, manager, monkeypatch):
    ws_router = importlib.import_module("api.ws_router")

    monkeypatch.setattr(ws_router, "db_manager", manager)
    client.post("/api/bins/scan", json=scan_body("B1", 6, jtc="J1"))
    with client.websocket_connect("/ws/release/J1") as ws:
        assert ws.receive_json()["type"] == "checklist"

        ws.send_json({"type": "request_checklist", "bins": 5})
        err = ws.receive_json()
        assert err == {"type": "error", "message": "bins must be a list of bin ids"}

        ws.send_json({"type": "request_checklist", "bins": ["b1"]})
        again = ws.receive_json()
        assert again["type"] == "checklist"
        assert [b["binId"] for b in again["checklist"]["sessionBins"]] == ["B1"]
