# tests/test_batches_router.py
import pytest
from fastapi.testclient import TestClient

from app.db.session import make_engine
from app.errors import ProviderError
from app.main import app
from app.schemas.batch import CallHandle, CallStatus, QualificationResult
from app.services.batch_store import SqlBatchStore
from app.services.orchestrator_service import BatchOrchestrator, get_orchestrator


class FakeCallProvider:
    def __init__(self):
        self.called_numbers: list[str] = []
        self.statuses: dict[str, CallStatus] = {}
        self.failing_numbers: set[str] = set()

    def place_call(self, phone: str) -> CallHandle:
        self.called_numbers.append(phone)
        if phone in self.failing_numbers:
            raise ProviderError(f"Failed to call {phone}: rate limited")
        # Return a deterministic fake call id
        return CallHandle(call_id=f"CALL_FAKE_{phone[-4:]}")

    def get_call_status(self, call_id: str) -> CallStatus:
        return self.statuses.get(call_id, CallStatus(completed=False))


class FakeQualifier:
    def qualify(self, transcript: str) -> QualificationResult:
        return QualificationResult(score=5, summary="very interested", transcript=transcript)


@pytest.fixture
def provider():
    return FakeCallProvider()


@pytest.fixture
def client(tmp_path, provider):
    store = SqlBatchStore(make_engine(f"sqlite:///{tmp_path}/batches.db"))
    orchestrator = BatchOrchestrator(store=store, call_provider=provider, qualifier=FakeQualifier())

    # Override the real wiring with fakes
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    yield TestClient(app)
    app.dependency_overrides.pop(get_orchestrator, None)


def _create(client, leads, name=None):
    payload = {"leads": leads}
    if name is not None:
        payload["name"] = name
    return client.post("/api/batches", json=payload)


def test_create_batch_starts_calls(client, provider):
    resp = _create(
        client,
        [
            {"name": "Lead A", "phone": "+11111111111", "company": "ACo", "linkedinUrl": "https://l/a"},
            {"name": "Lead B"},
            {"name": "Lead C", "phone": "+22222222222", "someCsvColumn": "ignored"},
        ],
        name="Demo",
    )
    assert resp.status_code == 201, resp.text

    data = resp.json()
    assert data["id"].startswith("batch-")
    assert data["leadsProcessed"] == 2
    assert data["callsStarted"] == 2
    assert data["status"] == "in_progress"
    assert sorted(provider.called_numbers) == ["+11111111111", "+22222222222"]

    batch = client.get(f"/api/batches/{data['id']}").json()
    assert batch["name"] == "Demo"
    assert "createdAt" in batch
    statuses = {lead["id"]: lead["status"] for lead in batch["leads"]}
    assert statuses == {"lead-1": "in_progress", "lead-2": "rejected", "lead-3": "in_progress"}
    assert batch["leads"][0]["callId"] == "CALL_FAKE_1111"
    assert batch["leads"][0]["linkedinUrl"] == "https://l/a"
    assert batch["leads"][1].get("callId") is None


def test_create_batch_without_phones_is_400(client):
    resp = _create(client, [{"name": "No phone"}])
    assert resp.status_code == 400
    assert client.get("/api/batches").json() == []


def test_list_and_get(client):
    assert client.get("/api/batches").json() == []

    batch_id = _create(client, [{"phone": "+11111111111"}]).json()["id"]

    listed = client.get("/api/batches").json()
    assert [b["id"] for b in listed] == [batch_id]

    assert client.get("/api/batches/batch-unknown").status_code == 404


def test_check_status_qualifies_finished_calls(client, provider):
    batch_id = _create(client, [{"phone": "+11111111111"}]).json()["id"]
    provider.statuses["CALL_FAKE_1111"] = CallStatus(
        completed=True, answered_by="human", concatenated_transcript="hello"
    )

    resp = client.post(f"/api/batches/{batch_id}/check-status")
    assert resp.status_code == 200

    batch = resp.json()
    assert batch["status"] == "completed"
    assert batch["leads"][0]["status"] == "qualified"
    assert batch["leads"][0]["callScore"] == 5
    assert batch["leads"][0]["callSummary"] == "very interested"

    assert client.post("/api/batches/batch-unknown/check-status").status_code == 404


def test_start_call(client, provider):
    batch_id = _create(client, [{"phone": "+11111111111"}, {"id": "nophone"}]).json()["id"]

    resp = client.post(f"/api/batches/{batch_id}/start-call", json={"leadId": "lead-1"})
    assert resp.status_code == 200
    assert resp.json() == {"callId": "CALL_FAKE_1111"}

    assert client.post(f"/api/batches/{batch_id}/start-call", json={"leadId": "ghost"}).status_code == 404
    assert client.post("/api/batches/batch-unknown/start-call", json={"leadId": "lead-1"}).status_code == 404
    assert client.post(f"/api/batches/{batch_id}/start-call", json={"leadId": "nophone"}).status_code == 400

    provider.failing_numbers.add("+11111111111")
    resp = client.post(f"/api/batches/{batch_id}/start-call", json={"leadId": "lead-1"})
    assert resp.status_code == 500
    assert "rate limited" in resp.json()["detail"]


def test_delete_batch(client):
    batch_id = _create(client, [{"phone": "+11111111111"}]).json()["id"]

    resp = client.delete(f"/api/batches/{batch_id}")
    assert resp.status_code == 204

    assert client.get(f"/api/batches/{batch_id}").status_code == 404
    assert client.get("/api/batches").json() == []
    assert client.delete(f"/api/batches/{batch_id}").status_code == 404


def test_cors_preflight_is_open(client):
    resp = client.options(
        "/api/batches",
        headers={
            "Origin": "http://localhost:5173",
            "Access-Control-Request-Method": "DELETE",
        },
    )
    assert resp.status_code == 200
    assert resp.headers["access-control-allow-origin"] in ("*", "http://localhost:5173")
    assert "DELETE" in resp.headers["access-control-allow-methods"]
