"""In-memory state of the single job this process runs. Read by the status API."""

from dataclasses import dataclass

from models import JobStatus


@dataclass
class JobState:
    project_id: str = ""
    tenant_id: str = ""
    status: JobStatus = JobStatus.PENDING
    is_recording: bool = False
    recording_complete: bool = False
    video_location: str | None = None
    last_error: str | None = None


job_state = JobState()
