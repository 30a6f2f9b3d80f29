from .manifest import JobManifest, ManifestStep
from .recording import CompositeResult, JobResult, JobStatus, RecordingResult
from .step import Importance, StepSpec
from .timing import StepTiming

__all__ = [
    "StepSpec",
    "Importance",
    "StepTiming",
    "RecordingResult",
    "CompositeResult",
    "JobResult",
    "JobStatus",
    "JobManifest",
    "ManifestStep",
]
