"""Job status API, polled by the orchestrator while the recorder runs."""

import logging

from fastapi import APIRouter

from app.models import JobStatusResponse
from services.store import job_state

router = APIRouter(tags=["jobs"])
logger = logging.getLogger(__name__)


@router.get("/job", response_model=JobStatusResponse)
def read_job() -> JobStatusResponse:
    """Status of the job this process is running."""
    logger.debug("[jobs] GET /api/job status=%s", job_state.status)
    return JobStatusResponse(
        project_id=job_state.project_id,
        tenant_id=job_state.tenant_id,
        status=job_state.status,
        is_recording=job_state.is_recording,
        recording_complete=job_state.recording_complete,
        video_location=job_state.video_location,
        last_error=job_state.last_error,
    )
