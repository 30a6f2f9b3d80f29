"""Media file helpers: locating recordings, probing durations, ffmpeg availability."""

import logging
import shutil
from pathlib import Path

import av

logger = logging.getLogger(__name__)

VIDEO_EXTENSIONS = (".webm", ".mp4", ".mkv", ".mov")


def find_video_files(root: Path) -> list[Path]:
    """All video files below root (recursive), sorted by path."""
    if not root.exists():
        return []
    return sorted(
        path for path in root.rglob("*") if path.is_file() and path.suffix.lower() in VIDEO_EXTENSIONS
    )


def clear_directory(path: Path) -> None:
    """Create path if needed and remove everything inside it."""
    path.mkdir(parents=True, exist_ok=True)
    for child in path.iterdir():
        if child.is_dir() and not child.is_symlink():
            shutil.rmtree(child)
        else:
            child.unlink()


def probe_duration_ms(path: Path) -> int | None:
    """Container duration in milliseconds, or None when it cannot be determined."""
    try:
        with av.open(str(path)) as container:
            if container.duration is not None:
                return int(container.duration * 1000 / av.time_base)
            for stream in container.streams:
                if stream.duration is not None and stream.time_base is not None:
                    return int(float(stream.duration * stream.time_base) * 1000)
    except (av.FFmpegError, OSError) as exc:
        logger.warning("[media] Could not probe %s: %s", path, exc)
    return None


def check_ffmpeg() -> str:
    """Path to the ffmpeg binary. Raises RuntimeError when it is not installed."""
    path = shutil.which("ffmpeg")
    if not path:
        raise RuntimeError("ffmpeg not found on PATH. Install from https://ffmpeg.org/")
    return path
