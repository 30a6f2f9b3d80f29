"""
Timed execution: run the instrumented script under pytest-playwright with
video capture, and collect per-step start timestamps from its output.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from collections import deque
from pathlib import Path

import services
from models import RecordingResult, StepTiming
from services.markers import VIDEO_START_SENTINEL, parse_timing_line
from services.media import clear_directory, find_video_files
from services.settings import RecorderSettings
from services.trail import note

logger = logging.getLogger(__name__)

TEST_FILE_NAME = "test_recording.py"
OUTPUT_TAIL_CHARS = 500
OUTPUT_TAIL_LINES = 200
STREAM_LIMIT = 1024 * 1024  # long lines (e.g. tracebacks with page HTML)

# Package root that holds `services`, so instrumented scripts can import StepSync.
PACKAGE_ROOT = Path(services.__file__).resolve().parent.parent

CONFTEST_TEMPLATE = '''import pytest


@pytest.fixture(scope="session")
def browser_context_args(browser_context_args):
    return {{
        **browser_context_args,
        "viewport": {{"width": {width}, "height": {height}}},
        "record_video_size": {{"width": {width}, "height": {height}}},
    }}
'''

PYTEST_INI = """[pytest]
addopts = -p no:randomly
"""


class TimedExecutionRunner:
    """
    Runs one instrumented script and returns a RecordingResult.

    The harness is a separate process; the only channels back are its
    combined stdout/stderr stream and its exit code.
    """

    def __init__(self, settings: RecorderSettings) -> None:
        self.settings = settings

    @property
    def test_path(self) -> Path:
        return self.settings.script_dir / TEST_FILE_NAME

    def conftest_source(self) -> str:
        return CONFTEST_TEMPLATE.format(width=self.settings.width, height=self.settings.height)

    def build_command(self, test_path: Path) -> list[str]:
        return [
            sys.executable,
            "-m",
            "pytest",
            test_path.name,
            "-s",
            "-p",
            "no:cacheprovider",
            "--browser",
            self.settings.browser,
            "--video",
            "on",
            "--output",
            str(self.settings.video_dir),
        ]

    def build_env(self) -> dict[str, str]:
        env = dict(os.environ)
        env["PYTHONUNBUFFERED"] = "1"
        existing = env.get("PYTHONPATH", "")
        env["PYTHONPATH"] = os.pathsep.join(p for p in (str(PACKAGE_ROOT), existing) if p)
        return env

    def _prepare(self, script: str) -> None:
        self.settings.script_dir.mkdir(parents=True, exist_ok=True)
        clear_directory(self.settings.video_dir)
        self.test_path.write_text(script, encoding="utf-8")
        (self.settings.script_dir / "conftest.py").write_text(self.conftest_source(), encoding="utf-8")
        (self.settings.script_dir / "pytest.ini").write_text(PYTEST_INI, encoding="utf-8")

    async def run(self, script: str, durations: dict[int, int]) -> RecordingResult:
        """Execute script; durations maps step_id to narration length in ms."""
        logs: list[str] = []
        timings: list[StepTiming] = []
        tail: deque[str] = deque(maxlen=OUTPUT_TAIL_LINES)

        self._prepare(script)
        command = self.build_command(self.test_path)
        note(logs, logger, "[runner] Starting harness: %s", " ".join(command))

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                cwd=str(self.settings.script_dir),
                env=self.build_env(),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                limit=STREAM_LIMIT,
            )
        except OSError as exc:
            note(logs, logger, "[runner] Could not start harness: %s", exc, level=logging.ERROR)
            return RecordingResult(success=False, logs=logs, error_message=f"Could not start harness: {exc}")

        async def consume() -> None:
            assert process.stdout is not None
            async for raw in process.stdout:
                line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
                tail.append(line)
                self._handle_line(line, durations, timings, logs)

        timed_out = False
        try:
            await asyncio.wait_for(
                asyncio.gather(consume(), process.wait()),
                timeout=self.settings.harness_timeout_seconds,
            )
        except asyncio.TimeoutError:
            timed_out = True
            if process.returncode is None:
                process.kill()
            await process.wait()

        self._check_monotonic(timings, logs)

        if timed_out:
            message = f"Harness timed out after {self.settings.harness_timeout_seconds}s"
            note(logs, logger, "[runner] %s", message, level=logging.ERROR)
            self._append_tail(tail, logs)
            return RecordingResult(success=False, step_timings=timings, logs=logs, error_message=message)

        if process.returncode != 0:
            message = f"Harness exited with code {process.returncode}"
            note(logs, logger, "[runner] %s", message, level=logging.ERROR)
            self._append_tail(tail, logs)
            return RecordingResult(success=False, step_timings=timings, logs=logs, error_message=message)

        videos = find_video_files(self.settings.video_dir)
        if not videos:
            message = f"No video file produced under {self.settings.video_dir}"
            note(logs, logger, "[runner] %s", message, level=logging.ERROR)
            return RecordingResult(success=False, step_timings=timings, logs=logs, error_message=message)
        if len(videos) > 1:
            note(
                logs,
                logger,
                "[runner] %d videos recorded; using %s",
                len(videos),
                videos[0],
                level=logging.WARNING,
            )

        note(logs, logger, "[runner] Recorded %s with %d step timing(s)", videos[0], len(timings))
        return RecordingResult(success=True, raw_video_path=videos[0], step_timings=timings, logs=logs)

    def _handle_line(
        self,
        line: str,
        durations: dict[int, int],
        timings: list[StepTiming],
        logs: list[str],
    ) -> None:
        event = parse_timing_line(line)
        if event is not None:
            if event.type != "start":
                return
            timings.append(
                StepTiming(
                    step_id=event.step_id,
                    start_timestamp_ms=event.timestamp_ms,
                    audio_duration_ms=durations.get(event.step_id, 0),
                )
            )
            logger.info("[runner] Step %d started at %dms", event.step_id, event.timestamp_ms)
            return
        if VIDEO_START_SENTINEL in line:
            instant = line.split(VIDEO_START_SENTINEL, 1)[1].strip()
            note(logs, logger, "[runner] Video reference instant %s", instant)
            return
        logger.debug("[harness] %s", line)

    @staticmethod
    def _check_monotonic(timings: list[StepTiming], logs: list[str]) -> None:
        for previous, current in zip(timings, timings[1:]):
            if current.start_timestamp_ms < previous.start_timestamp_ms:
                note(
                    logs,
                    logger,
                    "[runner] Step %d starts at %dms, before step %d at %dms (multiple recorded tests?)",
                    current.step_id,
                    current.start_timestamp_ms,
                    previous.step_id,
                    previous.start_timestamp_ms,
                    level=logging.WARNING,
                )
                return

    @staticmethod
    def _append_tail(tail: deque[str], logs: list[str]) -> None:
        output = "\n".join(tail)
        if output:
            logs.append(f"Harness output (tail): {output[-OUTPUT_TAIL_CHARS:]}")
