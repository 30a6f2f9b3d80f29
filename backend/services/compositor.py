"""
Audio compositing: place each step's narration clip at the moment the step
started and mux the mix onto the recorded video.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from models import CompositeResult, StepTiming
from services.media import check_ffmpeg, probe_duration_ms
from services.settings import RecorderSettings
from services.trail import note

logger = logging.getLogger(__name__)

AUDIO_EXTENSIONS = ("mp3", "wav", "m4a", "aac", "ogg", "opus", "flac")
STDERR_TAIL_CHARS = 1000


def find_clip(audio_dir: Path, step_id: int) -> Path | None:
    """audio_dir/step_{id}.{ext}, first extension found wins."""
    for ext in AUDIO_EXTENSIONS:
        candidate = audio_dir / f"step_{step_id}.{ext}"
        if candidate.is_file():
            return candidate
    return None


def final_output_path(raw_video: Path) -> Path:
    return raw_video.with_name(f"{raw_video.stem}_final{raw_video.suffix}")


def audio_codec_for(path: Path) -> str:
    return "libopus" if path.suffix.lower() == ".webm" else "aac"


def build_mix_args(raw_video: Path, clips: list[tuple[Path, int]], output: Path) -> list[str]:
    """
    ffmpeg arguments (without the binary) for muxing clips onto raw_video.

    :param clips: (clip path, delay in ms) pairs; empty means a silent track
    """
    args = ["-i", str(raw_video)]
    if not clips:
        args += [
            "-f", "lavfi", "-i", "anullsrc=channel_layout=stereo:sample_rate=48000",
            "-map", "0:v", "-map", "1:a",
            "-c:v", "copy", "-c:a", audio_codec_for(output),
            "-shortest",
            str(output),
        ]
        return args

    filters: list[str] = []
    for index, (clip, delay_ms) in enumerate(clips, start=1):
        args += ["-i", str(clip)]
        label = "aout" if len(clips) == 1 else f"a{index}"
        filters.append(f"[{index}:a]adelay=delays={max(0, int(delay_ms))}:all=1[{label}]")
    if len(clips) > 1:
        inputs = "".join(f"[a{index}]" for index in range(1, len(clips) + 1))
        filters.append(
            f"{inputs}amix=inputs={len(clips)}:duration=longest:dropout_transition=0:normalize=0[aout]"
        )
    args += [
        "-filter_complex", ";".join(filters),
        "-map", "0:v", "-map", "[aout]",
        "-c:v", "copy", "-c:a", audio_codec_for(output),
        str(output),
    ]
    return args


class AudioCompositor:
    def __init__(self, settings: RecorderSettings) -> None:
        self.settings = settings

    async def _run_ffmpeg(self, args: list[str], *, timeout: float) -> None:
        """Run ffmpeg with args, raising RuntimeError on failure or timeout."""
        cmd = [check_ffmpeg(), "-y", "-hide_banner", *args]
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise RuntimeError(f"ffmpeg timed out after {timeout}s") from None
        if process.returncode != 0:
            text = stderr.decode("utf-8", errors="replace")
            raise RuntimeError(
                f"ffmpeg failed (exit {process.returncode}):\n"
                f"stderr: {text[-STDERR_TAIL_CHARS:]}"
            )

    def collect_clips(self, audio_dir: Path, timings: list[StepTiming], logs: list[str]) -> list[tuple[Path, int]]:
        clips: list[tuple[Path, int]] = []
        for timing in timings:
            clip = find_clip(audio_dir, timing.step_id)
            if clip is None:
                note(logs, logger, "[compositor] No audio for step %d; skipped", timing.step_id, level=logging.WARNING)
                continue
            clips.append((clip, timing.start_timestamp_ms))
        return clips

    def warn_on_overlap(self, clips: list[tuple[Path, int]], logs: list[str]) -> None:
        """Clips are summed without normalization, so overlaps may clip."""
        spans: list[tuple[int, int, Path]] = []
        for clip, start in clips:
            duration = probe_duration_ms(clip)
            if duration is None:
                continue
            spans.append((start, start + duration, clip))
        spans.sort()
        for (start_a, end_a, clip_a), (start_b, _, clip_b) in zip(spans, spans[1:]):
            if start_b < end_a:
                note(
                    logs,
                    logger,
                    "[compositor] %s overlaps %s by %dms; mix may clip",
                    clip_b.name,
                    clip_a.name,
                    end_a - start_b,
                    level=logging.WARNING,
                )

    async def composite(self, raw_video: Path, audio_dir: Path, timings: list[StepTiming]) -> CompositeResult:
        logs: list[str] = []
        output = final_output_path(raw_video)
        clips = self.collect_clips(audio_dir, timings, logs)
        if clips:
            self.warn_on_overlap(clips, logs)
            note(logs, logger, "[compositor] Mixing %d clip(s) onto %s", len(clips), raw_video.name)
        else:
            note(logs, logger, "[compositor] No audio clips; adding a silent track", level=logging.WARNING)

        try:
            await self._run_ffmpeg(
                build_mix_args(raw_video, clips, output),
                timeout=self.settings.composite_timeout_seconds,
            )
        except (RuntimeError, OSError) as exc:
            note(logs, logger, "[compositor] Compositing failed: %s", exc, level=logging.ERROR)
            return CompositeResult(success=False, logs=logs, error_message=str(exc))

        if not output.is_file():
            message = f"ffmpeg reported success but {output} is missing"
            note(logs, logger, "[compositor] %s", message, level=logging.ERROR)
            return CompositeResult(success=False, logs=logs, error_message=message)

        note(logs, logger, "[compositor] Wrote %s", output)
        return CompositeResult(success=True, output_path=output, clips_mixed=len(clips), logs=logs)
