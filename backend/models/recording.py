from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any

from .timing import StepTiming


class JobStatus(StrEnum):
    PENDING = "pending"
    PREPARING = "preparing"
    RECORDING = "recording"
    COMPOSITING = "compositing"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class RecordingResult:
    success: bool
    raw_video_path: Path | None = None
    final_video_path: Path | None = None
    step_timings: list[StepTiming] = field(default_factory=list)
    logs: list[str] = field(default_factory=list)
    error_message: str | None = None


@dataclass
class CompositeResult:
    success: bool
    output_path: Path | None = None
    clips_mixed: int = 0
    logs: list[str] = field(default_factory=list)
    error_message: str | None = None


@dataclass
class JobResult:
    """Structured outcome handed to the callback and the caller."""

    success: bool
    video_location: str | None = None
    duration_ms: int | None = None
    error_message: str | None = None
    logs: list[str] = field(default_factory=list)
    step_timings: list[StepTiming] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": self.success, "logs": list(self.logs)}
        if self.video_location is not None:
            payload["videoLocation"] = self.video_location
        if self.duration_ms is not None:
            payload["durationMs"] = self.duration_ms
        if self.error_message is not None:
            payload["errorMessage"] = self.error_message
        payload["stepTimings"] = [
            {
                "stepId": t.step_id,
                "startTimestampMs": t.start_timestamp_ms,
                "audioDurationMs": t.audio_duration_ms,
            }
            for t in self.step_timings
        ]
        return payload
