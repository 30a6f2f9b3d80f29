"""Where a job's inputs come from and where its video goes: GCS or the local filesystem."""

from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Protocol

from services import gcs
from services.settings import RecorderSettings

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    ".webm": "video/webm",
    ".mp4": "video/mp4",
    ".mkv": "video/x-matroska",
    ".mov": "video/quicktime",
}


def video_blob_name(tenant_id: str, project_id: str, suffix: str) -> str:
    """videos/{tenant}/{project}/recording.{ext}; tenant_id comes without its TENANT# prefix."""
    return f"videos/{tenant_id}/{project_id}/recording{suffix.lower()}"


class JobSource(Protocol):
    async def fetch_script(self) -> str: ...

    async def fetch_manifest(self) -> str: ...

    async def fetch_audio(self, dest_dir: Path) -> list[Path]: ...


class ArtifactStore(Protocol):
    async def store_video(self, local_path: Path, blob_name: str) -> str: ...


class GcsJobSource:
    def __init__(self, settings: RecorderSettings) -> None:
        self.settings = settings

    @property
    def bucket_name(self) -> str:
        return self.settings.bucket_name or gcs.get_bucket_name()

    async def fetch_script(self) -> str:
        return await asyncio.to_thread(gcs.download_text, self.settings.script_blob, bucket_name=self.bucket_name)

    async def fetch_manifest(self) -> str:
        return await asyncio.to_thread(gcs.download_text, self.settings.manifest_blob, bucket_name=self.bucket_name)

    async def fetch_audio(self, dest_dir: Path) -> list[Path]:
        if not self.settings.audio_prefix:
            logger.warning("[job_io] AUDIO_PREFIX not set; no narration clips fetched")
            return []
        return await asyncio.to_thread(
            gcs.download_prefix, self.settings.audio_prefix, dest_dir, bucket_name=self.bucket_name
        )


class LocalJobSource:
    def __init__(self, settings: RecorderSettings) -> None:
        self.settings = settings

    async def fetch_script(self) -> str:
        if self.settings.script_file is None:
            return ""
        return self.settings.script_file.read_text(encoding="utf-8")

    async def fetch_manifest(self) -> str:
        if self.settings.manifest_file is None:
            return ""
        return self.settings.manifest_file.read_text(encoding="utf-8")

    async def fetch_audio(self, dest_dir: Path) -> list[Path]:
        source = self.settings.audio_source_dir
        if source is None or not source.is_dir():
            logger.warning("[job_io] AUDIO_SOURCE_DIR missing; no narration clips fetched")
            return []
        dest_dir.mkdir(parents=True, exist_ok=True)
        copied: list[Path] = []
        for path in sorted(source.iterdir()):
            if path.is_file():
                copied.append(Path(shutil.copy2(path, dest_dir / path.name)))
        return copied


class GcsArtifactStore:
    def __init__(self, settings: RecorderSettings) -> None:
        self.settings = settings

    async def store_video(self, local_path: Path, blob_name: str) -> str:
        content_type = CONTENT_TYPES.get(local_path.suffix.lower(), "application/octet-stream")
        return await asyncio.to_thread(
            gcs.upload_file,
            local_path,
            blob_name,
            content_type=content_type,
            bucket_name=self.settings.bucket_name or gcs.get_bucket_name(),
        )


class LocalArtifactStore:
    def __init__(self, output_dir: Path) -> None:
        self.output_dir = output_dir

    async def store_video(self, local_path: Path, blob_name: str) -> str:
        target = self.output_dir / blob_name
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(local_path, target)
        logger.info("[job_io] Copied %s to %s", local_path, target)
        return str(target)


def build_source(settings: RecorderSettings) -> JobSource:
    return LocalJobSource(settings) if settings.uses_local_inputs else GcsJobSource(settings)


def build_store(settings: RecorderSettings) -> ArtifactStore:
    if settings.output_dir is not None:
        return LocalArtifactStore(settings.output_dir)
    return GcsArtifactStore(settings)
