import pytest
from pydantic import ValidationError

from models import (
    Importance,
    JobManifest,
    JobResult,
    StepSpec,
    StepTiming,
)


def test_step_spec_defaults() -> None:
    step = StepSpec(step_id=1, code_action="click login", narration="Click login.")
    assert step.importance is Importance.MEDIUM
    assert step.audio_duration_ms == 0


def test_manifest_accepts_camel_case_and_string_keys() -> None:
    manifest = JobManifest.model_validate(
        {
            "steps": [
                {"step_id": 1, "code_action": "goto", "narration": "Open the app.", "importance": "high"},
                {"step_id": 2, "code_action": "click", "narration": "Sign in.", "durationMs": 1200},
            ],
            "durationMap": {"1": 2500},
        }
    )
    assert manifest.duration_map == {1: 2500}
    assert manifest.steps[0].importance is Importance.HIGH
    assert manifest.steps[1].duration_ms == 1200


def test_resolve_steps_duration_precedence() -> None:
    manifest = JobManifest.model_validate(
        {
            "steps": [
                {"step_id": 1, "durationMs": 900},
                {"step_id": 2, "durationMs": 1200},
                {"step_id": 3},
            ],
            "durationMap": {"1": 2500},
        }
    )
    steps = manifest.resolve_steps(default_duration_ms=2000)
    assert [s.audio_duration_ms for s in steps] == [2500, 1200, 2000]


def test_manifest_rejects_non_positive_step_id() -> None:
    with pytest.raises(ValidationError):
        JobManifest.model_validate({"steps": [{"step_id": 0}], "durationMap": {"1": 100}})


def test_job_result_payload_is_camel_case() -> None:
    result = JobResult(
        success=True,
        video_location="gs://bucket/videos/acme/p1/recording.webm",
        duration_ms=5400,
        logs=["done"],
        step_timings=[StepTiming(step_id=1, start_timestamp_ms=0, audio_duration_ms=2000)],
    )
    payload = result.to_payload()
    assert payload["videoLocation"] == "gs://bucket/videos/acme/p1/recording.webm"
    assert payload["durationMs"] == 5400
    assert "errorMessage" not in payload
    assert payload["stepTimings"] == [{"stepId": 1, "startTimestampMs": 0, "audioDurationMs": 2000}]


def test_failed_job_result_payload_omits_location() -> None:
    payload = JobResult(success=False, error_message="Script is empty").to_payload()
    assert payload == {"success": False, "logs": [], "errorMessage": "Script is empty", "stepTimings": []}
