"""Recorder configuration read from the environment (see .env for local runs)."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_WORK_DIR = "/tmp"
DEFAULT_WIDTH = 1920
DEFAULT_HEIGHT = 1080
HARNESS_TIMEOUT_SECONDS = 300  # 5 minutes, matches the harness global timeout
COMPOSITE_TIMEOUT_SECONDS = 600
STABILIZATION_MS = 100
DEFAULT_STEP_DURATION_MS = 2000
DEFAULT_HEALTH_PORT = 3000


def _get_str(env: Mapping[str, str], key: str, default: str = "") -> str:
    return env.get(key, "").strip() or default


def _get_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{key} must be an integer, got {raw!r}") from exc


def _get_path(env: Mapping[str, str], key: str) -> Path | None:
    raw = env.get(key, "").strip()
    return Path(raw) if raw else None


@dataclass(frozen=True)
class RecorderSettings:
    project_id: str = ""
    tenant_id: str = ""

    # Job inputs: GCS objects, or local files when script_file is set.
    bucket_name: str = ""
    script_blob: str = ""
    manifest_blob: str = ""
    audio_prefix: str = ""
    script_file: Path | None = None
    manifest_file: Path | None = None
    audio_source_dir: Path | None = None
    output_dir: Path | None = None

    # Local working tree, reset before every run.
    audio_dir: Path = field(default_factory=lambda: Path(DEFAULT_WORK_DIR) / "audio")
    script_dir: Path = field(default_factory=lambda: Path(DEFAULT_WORK_DIR) / "script")
    video_dir: Path = field(default_factory=lambda: Path(DEFAULT_WORK_DIR) / "video")

    width: int = DEFAULT_WIDTH
    height: int = DEFAULT_HEIGHT
    browser: str = "chromium"
    harness_timeout_seconds: int = HARNESS_TIMEOUT_SECONDS
    composite_timeout_seconds: int = COMPOSITE_TIMEOUT_SECONDS
    stabilization_ms: int = STABILIZATION_MS
    default_step_duration_ms: int = DEFAULT_STEP_DURATION_MS

    callback_url: str = ""
    callback_secret: str = ""
    health_port: int = DEFAULT_HEALTH_PORT

    @property
    def clean_tenant_id(self) -> str:
        return self.tenant_id.removeprefix("TENANT#")

    @property
    def uses_local_inputs(self) -> bool:
        return self.script_file is not None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> RecorderSettings:
        env = os.environ if environ is None else environ
        work_dir = Path(_get_str(env, "WORK_DIR", DEFAULT_WORK_DIR))
        return cls(
            project_id=_get_str(env, "PROJECT_ID"),
            tenant_id=_get_str(env, "TENANT_ID"),
            bucket_name=_get_str(env, "GCS_BUCKET"),
            script_blob=_get_str(env, "SCRIPT_BLOB"),
            manifest_blob=_get_str(env, "MANIFEST_BLOB"),
            audio_prefix=_get_str(env, "AUDIO_PREFIX"),
            script_file=_get_path(env, "SCRIPT_FILE"),
            manifest_file=_get_path(env, "MANIFEST_FILE"),
            audio_source_dir=_get_path(env, "AUDIO_SOURCE_DIR"),
            output_dir=_get_path(env, "OUTPUT_DIR"),
            audio_dir=_get_path(env, "AUDIO_DIR") or work_dir / "audio",
            script_dir=_get_path(env, "SCRIPT_DIR") or work_dir / "script",
            video_dir=_get_path(env, "VIDEO_DIR") or work_dir / "video",
            width=_get_int(env, "VIDEO_WIDTH", DEFAULT_WIDTH),
            height=_get_int(env, "VIDEO_HEIGHT", DEFAULT_HEIGHT),
            browser=_get_str(env, "BROWSER", "chromium"),
            harness_timeout_seconds=_get_int(env, "HARNESS_TIMEOUT_SECONDS", HARNESS_TIMEOUT_SECONDS),
            composite_timeout_seconds=_get_int(env, "COMPOSITE_TIMEOUT_SECONDS", COMPOSITE_TIMEOUT_SECONDS),
            stabilization_ms=_get_int(env, "STABILIZATION_MS", STABILIZATION_MS),
            default_step_duration_ms=_get_int(env, "DEFAULT_STEP_DURATION_MS", DEFAULT_STEP_DURATION_MS),
            callback_url=_get_str(env, "CALLBACK_URL"),
            callback_secret=_get_str(env, "CALLBACK_SECRET"),
            health_port=_get_int(env, "HEALTH_PORT", DEFAULT_HEALTH_PORT),
        )
