"""
Job driver: fetch inputs, annotate, instrument, record, composite, upload,
and report. One job per process.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Awaitable, Callable
from pathlib import Path

from pydantic import ValidationError

from models import JobManifest, JobResult, JobStatus, StepSpec
from services.annotator import AnnotationError, annotate_script
from services.compositor import AudioCompositor
from services.injector import instrument_script
from services.job_io import ArtifactStore, JobSource, video_blob_name
from services.media import clear_directory, find_video_files, probe_duration_ms
from services.runner import TimedExecutionRunner
from services.settings import RecorderSettings
from services.store import JobState, job_state
from services.trail import note

logger = logging.getLogger(__name__)

Notifier = Callable[[JobResult, RecorderSettings, JobStatus], Awaitable[object]]


class InputError(ValueError):
    """Job inputs are missing or invalid; nothing was recorded."""


def parse_manifest(text: str) -> JobManifest:
    if not text.strip():
        raise InputError("Manifest is empty")
    try:
        manifest = JobManifest.model_validate(json.loads(text))
    except (json.JSONDecodeError, ValidationError) as exc:
        raise InputError(f"Manifest is invalid: {exc}") from exc
    if not manifest.duration_map:
        raise InputError("Manifest has no durationMap")
    return manifest


class JobDriver:
    def __init__(
        self,
        settings: RecorderSettings,
        source: JobSource,
        store: ArtifactStore,
        notifier: Notifier | None = None,
        *,
        runner: TimedExecutionRunner | None = None,
        compositor: AudioCompositor | None = None,
        state: JobState | None = None,
    ) -> None:
        self.settings = settings
        self.source = source
        self.store = store
        self.notifier = notifier
        self.runner = runner or TimedExecutionRunner(settings)
        self.compositor = compositor or AudioCompositor(settings)
        self.state = state if state is not None else job_state
        self.logs: list[str] = []

    def _set_status(self, status: JobStatus) -> None:
        self.state.status = status
        logger.info("[job] Status -> %s", status)

    async def run(self) -> JobResult:
        started = time.monotonic()
        self.logs = []
        self.state.project_id = self.settings.project_id
        self.state.tenant_id = self.settings.tenant_id
        self.state.last_error = None
        self.state.recording_complete = False
        self.state.video_location = None
        try:
            result = await self._run()
        except InputError as exc:
            note(self.logs, logger, "[job] Input error: %s", exc, level=logging.ERROR)
            result = JobResult(success=False, error_message=str(exc), logs=self.logs)
        except Exception as exc:  # noqa: BLE001
            logger.exception("[job] Unexpected failure")
            self.logs.append(f"[job] Unexpected failure: {exc}")
            result = JobResult(success=False, error_message=f"Unexpected error: {exc}", logs=self.logs)
        finally:
            self.state.is_recording = False

        status = JobStatus.COMPLETED if result.success else JobStatus.FAILED
        self._set_status(status)
        self.state.recording_complete = result.success
        self.state.video_location = result.video_location
        self.state.last_error = result.error_message
        logger.info("[job] Finished in %.1fs (success=%s)", time.monotonic() - started, result.success)

        if self.notifier is not None:
            await self.notifier(result, self.settings, status)
        return result

    def _validate(self) -> None:
        if not self.settings.project_id:
            raise InputError("PROJECT_ID is required")
        if not self.settings.tenant_id:
            raise InputError("TENANT_ID is required")

    async def _load_steps(self) -> tuple[str, list[StepSpec]]:
        try:
            script = await self.source.fetch_script()
        except Exception as exc:  # noqa: BLE001
            raise InputError(f"Could not fetch script: {exc}") from exc
        if not script.strip():
            raise InputError("Script is empty")
        try:
            manifest_text = await self.source.fetch_manifest()
        except Exception as exc:  # noqa: BLE001
            raise InputError(f"Could not fetch manifest: {exc}") from exc
        manifest = parse_manifest(manifest_text)
        steps = manifest.resolve_steps(self.settings.default_step_duration_ms)
        note(self.logs, logger, "[job] Loaded script (%d chars) and %d step(s)", len(script), len(steps))

        try:
            clips = await self.source.fetch_audio(self.settings.audio_dir)
            note(self.logs, logger, "[job] Fetched %d audio clip(s)", len(clips))
        except Exception as exc:  # noqa: BLE001
            note(self.logs, logger, "[job] Audio fetch failed: %s", exc, level=logging.WARNING)
        return script, steps

    async def _run(self) -> JobResult:
        self._validate()
        self._set_status(JobStatus.PREPARING)
        for directory in (self.settings.audio_dir, self.settings.script_dir, self.settings.video_dir):
            clear_directory(directory)

        script, steps = await self._load_steps()

        try:
            annotation = annotate_script(script, steps)
        except AnnotationError as exc:
            note(self.logs, logger, "[job] Annotation rejected: %s", exc, level=logging.ERROR)
            return JobResult(success=False, error_message=str(exc), logs=self.logs)
        self.logs.extend(annotation.logs)

        instrumented = instrument_script(annotation.script, stabilization_ms=self.settings.stabilization_ms)
        self.logs.extend(instrumented.logs)

        self._set_status(JobStatus.RECORDING)
        self.state.is_recording = True
        recording = await self.runner.run(instrumented.script, instrumented.durations)
        self.state.is_recording = False
        self.logs.extend(recording.logs)
        if not recording.success or recording.raw_video_path is None:
            return JobResult(
                success=False,
                error_message=recording.error_message or "Recording failed",
                logs=self.logs,
                step_timings=recording.step_timings,
            )

        self._set_status(JobStatus.COMPOSITING)
        composite = await self.compositor.composite(
            recording.raw_video_path, self.settings.audio_dir, recording.step_timings
        )
        self.logs.extend(composite.logs)
        recording.final_video_path = composite.output_path
        if not composite.success:
            note(self.logs, logger, "[job] Falling back to the raw recording", level=logging.WARNING)

        artifact = self._select_artifact(composite.output_path, recording.raw_video_path)
        if artifact is None:
            return JobResult(
                success=False,
                error_message="No video file available to upload",
                logs=self.logs,
                step_timings=recording.step_timings,
            )

        self._set_status(JobStatus.UPLOADING)
        location, artifact = await self._upload(artifact)
        if location is None:
            return JobResult(
                success=False,
                error_message="Upload failed",
                logs=self.logs,
                step_timings=recording.step_timings,
            )

        return JobResult(
            success=True,
            video_location=location,
            duration_ms=probe_duration_ms(artifact),
            logs=self.logs,
            step_timings=recording.step_timings,
        )

    def _select_artifact(self, composited: Path | None, raw: Path | None) -> Path | None:
        for candidate in (composited, raw):
            if candidate is not None and candidate.is_file():
                return candidate
        found = find_video_files(self.settings.video_dir)
        if found:
            note(self.logs, logger, "[job] Using discovered video %s", found[0], level=logging.WARNING)
            return found[0]
        return None

    async def _upload(self, artifact: Path) -> tuple[str | None, Path]:
        """Upload artifact; on failure retry once with another video from the video directory."""
        try:
            return await self._store(artifact), artifact
        except Exception as exc:  # noqa: BLE001
            note(self.logs, logger, "[job] Upload of %s failed: %s", artifact, exc, level=logging.ERROR)

        alternatives = [p for p in find_video_files(self.settings.video_dir) if p != artifact]
        if not alternatives:
            return None, artifact
        fallback = alternatives[0]
        note(self.logs, logger, "[job] Retrying upload with %s", fallback, level=logging.WARNING)
        try:
            return await self._store(fallback), fallback
        except Exception as exc:  # noqa: BLE001
            note(self.logs, logger, "[job] Retry upload failed: %s", exc, level=logging.ERROR)
            return None, fallback

    async def _store(self, artifact: Path) -> str:
        blob_name = video_blob_name(self.settings.clean_tenant_id, self.settings.project_id, artifact.suffix)
        location = await self.store.store_video(artifact, blob_name)
        note(self.logs, logger, "[job] Uploaded video to %s", location)
        return location
