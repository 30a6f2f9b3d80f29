from .gcs import get_bucket_name
from .settings import RecorderSettings
from .store import job_state

__all__ = ["job_state", "get_bucket_name", "RecorderSettings"]
