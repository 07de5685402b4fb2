from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from fieldtrack.errors import GraphError
from fieldtrack.main import app, get_config, get_store

from conftest import FakeStore


@pytest.fixture
def client(store, config):
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_config] = lambda: config
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _seed_visit(store):
    store.add_named_row(
        "CheckIn",
        {"email": "a@x.com", "checkinISO": "2025-06-16T03:00:00Z", "locationName": "Store1", "name": "Alice"},
    )
    store.add_named_row("CheckOut", {"email": "a@x.com", "checkoutISO": "2025-06-16T04:00:00Z", "locationName": "Store1"})


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["ok"] is True


def test_graph_health_reports_failures_as_bad_gateway(client, store):
    store.client = MagicMock()
    store.client.health_check.return_value = {"token": True, "workbook": False, "tables": {}, "uploadFolder": False}

    response = client.get("/api/health/graph")

    assert response.status_code == 502
    body = response.json()
    assert body["ok"] is False
    assert body["workbook"] is False
    assert body["error"] == "Graph workbook unavailable"


def test_activity_end_to_end(client, store):
    _seed_visit(store)

    response = client.post("/api/pa/activity", json={"from": "2025-06-16", "to": "2025-06-16"})

    assert response.status_code == 200
    rows = response.json()["rows"]
    assert len(rows) == 1
    assert rows[0]["status"] == "completed"
    assert rows[0]["checkin"] == "03:00"


def test_bad_date_uses_error_envelope(client):
    response = client.post("/api/pa/activity", json={"from": "16/06/2025"})

    assert response.status_code == 400
    assert response.json() == {"ok": False, "error": "from must be in YYYY-MM-DD format"}


def test_validation_errors_use_error_envelope(client):
    response = client.patch("/api/pa/report/update", json={"checkin": "03:00"})

    assert response.status_code == 422
    body = response.json()
    assert body["ok"] is False
    assert body["error"].startswith("date")


def test_upstream_failures_map_to_bad_gateway(config):
    class BrokenStore(FakeStore):
        def get_headers(self, table):
            raise GraphError("Read table failed 503: unavailable", status_code=503)

    app.dependency_overrides[get_store] = lambda: BrokenStore()
    app.dependency_overrides[get_config] = lambda: config
    try:
        response = TestClient(app).post("/api/pa/activity", json={})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 502
    assert response.json() == {"ok": False, "error": "Read table failed 503: unavailable"}


def test_report_counts_flagged_rows(client, store):
    _seed_visit(store)
    store.add_named_row("CheckOut", {"email": "b@x.com", "checkoutISO": "2025-06-16T04:00:00Z", "locationName": "S"})

    body = client.post("/api/pa/report", json={}).json()

    assert body["count"] == 2
    assert body["flagged"] == 0


def test_summary_and_totals(client, store):
    _seed_visit(store)

    body = client.post("/api/pa/report/summary", json={"from": "2025-06-01"}).json()

    assert body["summary"][0]["name"] == "Alice"
    assert body["summary"][0]["completed"] == 1
    assert body["totals"] == {"people": 1, "total": 1, "completed": 1, "incomplete": 0, "ongoing": 0}


def test_summary_pdf(client, store):
    _seed_visit(store)

    response = client.post("/api/pa/report/summary/pdf", json={"from": "2025-06-01"})

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert "visit-summary.pdf" in response.headers["content-disposition"]
    assert response.content.startswith(b"%PDF")


def test_time_attendance_and_pdf(client, store):
    _seed_visit(store)

    rows = client.post("/api/pa/time-attendance", json={"from": "2025-06-16"}).json()["rows"]
    assert rows[0]["firstCheckin"] == "03:00"
    assert rows[0]["lastCheckout"] == "04:00"

    response = client.post("/api/pa/time-attendance/pdf", json={"from": "2025-06-16"})
    assert response.content.startswith(b"%PDF")


def test_checkin_writes_a_row(client, store):
    store.add_named_row("Users", {"email": "a@x.com", "name": "Alice", "employeeNo": "E1", "district": "North"})

    response = client.post(
        "/api/pa/checkin",
        json={"email": "a@x.com", "checkin": "2025-06-16T03:00:00Z", "locationName": "Store1", "gps": "13.75, 100.5"},
    )

    assert response.status_code == 200
    assert response.json()["write"]["dropped"] == []
    headers, rows = store.tables["CheckIn"]
    written = dict(zip(headers, rows[0]))
    assert written["employeeNo"] == "E1"
    assert written["district"] == "North"
    assert written["locationName"] == "Store1"


def test_checkin_without_identity_is_rejected(client):
    response = client.post("/api/pa/checkin", json={"locationName": "Store1"})
    assert response.status_code == 400
    assert response.json()["error"] == "Missing email or username"


def test_leave_add_and_list(client, store):
    response = client.post(
        "/api/pa/leave", json={"dt": "2025-06-16T00:00:00Z", "type": "Sick", "reason": "flu", "email": "a@x.com"}
    )
    assert response.status_code == 200

    rows = client.get("/api/pa/leave", params={"from": "2025-06-16"}).json()["rows"]
    assert [(row["date"], row["leaveType"]) for row in rows] == [("2025-06-16", "Sick")]


def test_resolve_requires_identity(client):
    response = client.post("/api/auth/resolve", json={})
    assert response.status_code == 400


def test_geo_distance(client):
    body = client.post("/api/geo/distance", json={"a": "13.7563, 100.5018", "b": [13.80, 100.60]}).json()

    assert body["distanceKm"] > 10
    assert body["outOfArea"] is True
    assert body["maxKm"] == 0.5
