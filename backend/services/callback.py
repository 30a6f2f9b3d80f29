"""Completion callback: POST the job result to the orchestrator with a signed JWT."""

import logging
import time

import httpx
import jwt

from models import JobResult, JobStatus
from services.settings import RecorderSettings

logger = logging.getLogger(__name__)

CALLBACK_TIMEOUT_SECONDS = 10.0
TOKEN_VALIDITY_SECONDS = 3600


def create_callback_token(
    secret: str,
    project_id: str,
    tenant_id: str,
    status: str,
    expiration_seconds: int = TOKEN_VALIDITY_SECONDS,
) -> str:
    """Create an HS256 JWT identifying the job.
    Sets iat 60s in the past so a receiver with a slightly fast clock
    does not reject the token as used before issue.
    """
    now = int(time.time())
    payload = {
        "project_id": project_id,
        "tenant_id": tenant_id,
        "status": status,
        "iat": now - 60,
        "exp": now + expiration_seconds,
    }
    return jwt.encode(payload, secret, algorithm="HS256")


async def send_job_result(
    result: JobResult,
    settings: RecorderSettings,
    status: JobStatus,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> bool:
    """
    Deliver result to CALLBACK_URL. Returns True on a 2xx response.

    Never raises; failures are logged.
    """
    if not settings.callback_url:
        logger.info("[callback] CALLBACK_URL not set; skipping result callback")
        return False

    headers = {"Content-Type": "application/json"}
    if settings.callback_secret:
        token = create_callback_token(
            settings.callback_secret, settings.project_id, settings.tenant_id, str(status)
        )
        headers["Authorization"] = f"Bearer {token}"
    else:
        logger.warning("[callback] CALLBACK_SECRET not set; sending unsigned callback")

    try:
        async with httpx.AsyncClient(timeout=CALLBACK_TIMEOUT_SECONDS, transport=transport) as client:
            response = await client.post(settings.callback_url, json=result.to_payload(), headers=headers)
    except httpx.HTTPError as exc:
        logger.error("[callback] POST %s failed: %s", settings.callback_url, exc)
        return False

    if response.is_success:
        logger.info("[callback] Delivered %s result (HTTP %d)", status, response.status_code)
        return True
    logger.error("[callback] Callback rejected with HTTP %d: %s", response.status_code, response.text[:200])
    return False
