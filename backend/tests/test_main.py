import httpx
import pytest
from fastapi.testclient import TestClient

from app.main import app
from models import JobStatus
from services.store import job_state

client = TestClient(app)


@pytest.fixture(autouse=True)
def reset_job_state() -> None:
    """Isolate tests by resetting the in-memory job state."""
    job_state.project_id = ""
    job_state.tenant_id = ""
    job_state.status = JobStatus.PENDING
    job_state.is_recording = False
    job_state.recording_complete = False
    job_state.video_location = None
    job_state.last_error = None
    yield


def test_health() -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_job_status_defaults_to_pending() -> None:
    response = client.get("/api/job")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "pending"
    assert body["is_recording"] is False
    assert body["video_location"] is None


@pytest.mark.anyio
async def test_job_status_reflects_store() -> None:
    job_state.project_id = "proj-1"
    job_state.tenant_id = "TENANT#acme"
    job_state.status = JobStatus.RECORDING
    job_state.is_recording = True

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        response = await http.get("/api/job")

    body = response.json()
    assert body["status"] == "recording"
    assert body["project_id"] == "proj-1"
    assert body["is_recording"] is True
