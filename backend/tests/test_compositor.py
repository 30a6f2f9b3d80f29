"""Tests for audio placement and ffmpeg argument construction."""

from pathlib import Path

import pytest

from models import StepTiming
from services import compositor as compositor_module
from services.compositor import (
    AudioCompositor,
    audio_codec_for,
    build_mix_args,
    final_output_path,
    find_clip,
)
from services.settings import RecorderSettings


def _timings(*pairs: tuple[int, int]) -> list[StepTiming]:
    return [StepTiming(step_id=s, start_timestamp_ms=t, audio_duration_ms=1000) for s, t in pairs]


def _write_clips(audio_dir: Path, *names: str) -> None:
    audio_dir.mkdir(parents=True, exist_ok=True)
    for name in names:
        (audio_dir / name).write_bytes(b"audio")


class RecordingFfmpeg:
    """Stands in for AudioCompositor._run_ffmpeg: records args, writes the output file."""

    def __init__(self, fail: bool = False) -> None:
        self.calls: list[list[str]] = []
        self.fail = fail

    async def __call__(self, args: list[str], *, timeout: float) -> None:
        self.calls.append(args)
        if self.fail:
            raise RuntimeError("ffmpeg failed (exit 1)")
        Path(args[-1]).write_bytes(b"final")


@pytest.fixture
def raw_video(tmp_path: Path) -> Path:
    path = tmp_path / "video" / "test_flow" / "video.webm"
    path.parent.mkdir(parents=True)
    path.write_bytes(b"raw")
    return path


@pytest.fixture
def no_probe(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(compositor_module, "probe_duration_ms", lambda path: None)


def test_find_clip_prefers_first_extension(tmp_path: Path) -> None:
    _write_clips(tmp_path, "step_1.wav", "step_1.mp3", "step_2.flac")
    assert find_clip(tmp_path, 1) == tmp_path / "step_1.mp3"
    assert find_clip(tmp_path, 2) == tmp_path / "step_2.flac"
    assert find_clip(tmp_path, 3) is None


def test_output_keeps_container() -> None:
    assert final_output_path(Path("/v/video.webm")) == Path("/v/video_final.webm")
    assert final_output_path(Path("/v/video.mp4")) == Path("/v/video_final.mp4")
    assert audio_codec_for(Path("x.webm")) == "libopus"
    assert audio_codec_for(Path("x.mp4")) == "aac"


def test_three_clips_are_delayed_and_summed() -> None:
    clips = [(Path("step_1.mp3"), 0), (Path("step_2.mp3"), 2000), (Path("step_3.mp3"), 3500)]
    args = build_mix_args(Path("v.webm"), clips, Path("v_final.webm"))
    graph = args[args.index("-filter_complex") + 1]
    assert graph == (
        "[1:a]adelay=delays=0:all=1[a1];"
        "[2:a]adelay=delays=2000:all=1[a2];"
        "[3:a]adelay=delays=3500:all=1[a3];"
        "[a1][a2][a3]amix=inputs=3:duration=longest:dropout_transition=0:normalize=0[aout]"
    )
    assert args[args.index("-c:v") + 1] == "copy"
    assert args[args.index("-c:a") + 1] == "libopus"
    assert ["-map", "0:v", "-map", "[aout]"] == args[args.index("-map"): args.index("-map") + 4]


def test_single_clip_skips_amix() -> None:
    args = build_mix_args(Path("v.mp4"), [(Path("step_1.mp3"), 750)], Path("v_final.mp4"))
    graph = args[args.index("-filter_complex") + 1]
    assert graph == "[1:a]adelay=delays=750:all=1[aout]"
    assert "amix" not in graph


def test_no_clips_adds_silent_track() -> None:
    args = build_mix_args(Path("v.webm"), [], Path("v_final.webm"))
    assert "anullsrc=channel_layout=stereo:sample_rate=48000" in args
    assert "-shortest" in args
    assert "-filter_complex" not in args


@pytest.mark.anyio
async def test_missing_clips_are_skipped(tmp_path: Path, raw_video: Path, no_probe: None) -> None:
    audio_dir = tmp_path / "audio"
    _write_clips(audio_dir, "step_1.mp3", "step_3.mp3")
    compositor = AudioCompositor(RecorderSettings())
    ffmpeg = RecordingFfmpeg()
    compositor._run_ffmpeg = ffmpeg

    result = await compositor.composite(raw_video, audio_dir, _timings((1, 0), (2, 2000), (3, 3500)))

    assert result.success
    assert result.clips_mixed == 2
    assert result.output_path == raw_video.with_name("video_final.webm")
    args = ffmpeg.calls[0]
    assert str(audio_dir / "step_1.mp3") in args
    assert str(audio_dir / "step_3.mp3") in args
    assert "adelay=delays=3500" in args[args.index("-filter_complex") + 1]
    assert any("No audio for step 2" in line for line in result.logs)


@pytest.mark.anyio
async def test_zero_audio_still_produces_video(tmp_path: Path, raw_video: Path, no_probe: None) -> None:
    compositor = AudioCompositor(RecorderSettings())
    ffmpeg = RecordingFfmpeg()
    compositor._run_ffmpeg = ffmpeg

    result = await compositor.composite(raw_video, tmp_path / "audio", _timings((1, 0)))

    assert result.success
    assert result.clips_mixed == 0
    assert "anullsrc=channel_layout=stereo:sample_rate=48000" in ffmpeg.calls[0]


@pytest.mark.anyio
async def test_ffmpeg_failure_is_returned_as_data(tmp_path: Path, raw_video: Path, no_probe: None) -> None:
    compositor = AudioCompositor(RecorderSettings())
    compositor._run_ffmpeg = RecordingFfmpeg(fail=True)

    result = await compositor.composite(raw_video, tmp_path / "audio", _timings((1, 0)))

    assert result.success is False
    assert result.output_path is None
    assert "ffmpeg failed" in (result.error_message or "")


@pytest.mark.anyio
async def test_overlapping_clips_are_flagged(
    tmp_path: Path, raw_video: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    audio_dir = tmp_path / "audio"
    _write_clips(audio_dir, "step_1.mp3", "step_2.mp3")
    monkeypatch.setattr(compositor_module, "probe_duration_ms", lambda path: 2500)
    compositor = AudioCompositor(RecorderSettings())
    compositor._run_ffmpeg = RecordingFfmpeg()

    result = await compositor.composite(raw_video, audio_dir, _timings((1, 0), (2, 2000)))

    assert result.success
    assert any("overlaps" in line and "500ms" in line for line in result.logs)


@pytest.mark.anyio
async def test_sequential_clips_do_not_overlap(
    tmp_path: Path, raw_video: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    audio_dir = tmp_path / "audio"
    _write_clips(audio_dir, "step_1.mp3", "step_2.mp3", "step_3.mp3")
    durations = {"step_1.mp3": 2000, "step_2.mp3": 1500, "step_3.mp3": 1000}
    monkeypatch.setattr(compositor_module, "probe_duration_ms", lambda path: durations[path.name])
    compositor = AudioCompositor(RecorderSettings())
    compositor._run_ffmpeg = RecordingFfmpeg()

    result = await compositor.composite(raw_video, audio_dir, _timings((1, 0), (2, 2000), (3, 3500)))

    assert result.clips_mixed == 3
    assert not any("overlaps" in line for line in result.logs)
