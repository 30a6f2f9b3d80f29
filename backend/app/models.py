from pydantic import BaseModel

from models import JobStatus


class HealthResponse(BaseModel):
    status: str = "ok"


class JobStatusResponse(BaseModel):
    """Current job state. GET /api/job."""

    project_id: str
    tenant_id: str
    status: JobStatus
    is_recording: bool
    recording_complete: bool
    video_location: str | None = None
    last_error: str | None = None
