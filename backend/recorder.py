"""
Recorder entry point: run one narrated recording job, serving /health and
/api/job while it runs, then exit with 0 on success and 1 on failure.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from contextlib import suppress

import uvicorn
from dotenv import load_dotenv

from app.main import app as api_app
from services.callback import send_job_result
from services.job import JobDriver
from services.job_io import build_source, build_store
from services.settings import RecorderSettings

load_dotenv(os.path.join(os.path.dirname(__file__), ".env"))
logging.basicConfig(level=logging.INFO)

logger = logging.getLogger(__name__)


async def run_job(settings: RecorderSettings, *, serve: bool = True) -> bool:
    driver = JobDriver(settings, build_source(settings), build_store(settings), send_job_result)

    server: uvicorn.Server | None = None
    server_task: asyncio.Task | None = None
    if serve:
        config = uvicorn.Config(api_app, host="0.0.0.0", port=settings.health_port, log_level="warning")
        server = uvicorn.Server(config)
        server_task = asyncio.create_task(server.serve())
        logger.info("[recorder] Status server on port %d", settings.health_port)

    try:
        result = await driver.run()
    finally:
        if server is not None and server_task is not None:
            server.should_exit = True
            with suppress(asyncio.CancelledError):
                await server_task

    if result.success:
        logger.info("[recorder] Recording uploaded to %s", result.video_location)
    else:
        logger.error("[recorder] Job failed: %s", result.error_message)
    return result.success


def main() -> int:
    try:
        settings = RecorderSettings.from_env()
    except ValueError as exc:
        logger.error("[recorder] Invalid configuration: %s", exc)
        return 1
    logger.info(
        "[recorder] Starting job project_id=%s tenant_id=%s",
        settings.project_id or "-",
        settings.tenant_id or "-",
    )
    return 0 if asyncio.run(run_job(settings)) else 1


if __name__ == "__main__":
    sys.exit(main())
