"""GCS client helpers for job inputs (script, manifest, narration clips) and the recorded video."""

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_BUCKET = "narrated-recordings"


def get_bucket_name() -> str:
    """Bucket name from env or default."""
    return os.environ.get("GCS_BUCKET", "").strip() or DEFAULT_BUCKET


def upload_file(
    local_path: Path,
    blob_name: str,
    *,
    content_type: str = "video/mp4",
    bucket_name: str | None = None,
) -> str:
    """
    Upload a local file to a GCS object.

    :param local_path: File on disk, e.g. /tmp/video/.../video_final.webm
    :param blob_name: Object path in bucket, e.g. "videos/acme/proj1/recording.webm"
    :param content_type: MIME type stored on the object
    :param bucket_name: GCS bucket; default from GCS_BUCKET env
    :return: gs:// location of the uploaded object
    """
    from google.cloud import storage

    bucket_name = bucket_name or get_bucket_name()
    client = storage.Client()
    bucket = client.bucket(bucket_name)
    blob = bucket.blob(blob_name)
    blob.upload_from_filename(str(local_path), content_type=content_type)
    logger.info("[gcs] Uploaded %s to gs://%s/%s", local_path, bucket_name, blob_name)
    return f"gs://{bucket_name}/{blob_name}"


def download_text(blob_name: str, *, bucket_name: str | None = None) -> str:
    """Read a GCS object as UTF-8 text."""
    from google.cloud import storage

    bucket_name = bucket_name or get_bucket_name()
    client = storage.Client()
    blob = client.bucket(bucket_name).blob(blob_name)
    return blob.download_as_text(encoding="utf-8")


def download_prefix(prefix: str, dest_dir: Path, *, bucket_name: str | None = None) -> list[Path]:
    """
    Download every object under prefix into dest_dir (flattened by basename).

    :return: Local paths written, in listing order
    """
    from google.cloud import storage

    bucket_name = bucket_name or get_bucket_name()
    client = storage.Client()
    dest_dir.mkdir(parents=True, exist_ok=True)
    written: list[Path] = []
    for blob in client.list_blobs(bucket_name, prefix=prefix):
        name = blob.name.rsplit("/", 1)[-1]
        if not name:
            continue
        target = dest_dir / name
        blob.download_to_filename(str(target))
        written.append(target)
    logger.info("[gcs] Downloaded %d object(s) from gs://%s/%s", len(written), bucket_name, prefix)
    return written
