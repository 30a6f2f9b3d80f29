"""
Runtime side of the narration sync, imported by instrumented scripts.

One StepSync instance lives for exactly one recorded test: the generated
`_narration_sync` fixture creates it on setup and calls
wait_for_final_audio() on teardown, while the page (and its video) is still
open. Timing events go to stdout, which the runner streams line by line.
"""

from __future__ import annotations

import time
from collections.abc import Callable

from services.markers import VIDEO_START_SENTINEL, format_timing_event

WaitFn = Callable[[float], object]


def _sleep_ms(ms: float) -> None:
    time.sleep(ms / 1000.0)


def _print_line(line: str) -> None:
    print(line, flush=True)


class StepSync:
    """
    Paces script steps so each narration clip has time to finish, and
    reports when every step actually started.

    :param wait_ms: blocking wait in milliseconds; the fixture passes
        page.wait_for_timeout so Playwright keeps servicing the browser
    :param stabilization_ms: delay before the reference instant is fixed, so
        video capture is running when time zero is taken
    """

    def __init__(
        self,
        *,
        wait_ms: WaitFn | None = None,
        stabilization_ms: float = 100,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
        emit: Callable[[str], None] | None = None,
    ) -> None:
        self._wait_ms = wait_ms or _sleep_ms
        self._stabilization_ms = stabilization_ms
        self._clock = clock
        self._wall_clock = wall_clock
        self._emit = emit or _print_line
        self._reference: float | None = None
        self._last_step_start = 0.0
        self._last_audio_ms = 0
        self._last_step_id: int | None = None

    def _elapsed_ms(self, since: float) -> float:
        return (self._clock() - since) * 1000.0

    def sync_step(self, step_id: int, audio_duration_ms: int) -> int:
        """Wait out the previous step's narration, then emit this step's start event."""
        if self._reference is None:
            if self._stabilization_ms > 0:
                self._wait_ms(self._stabilization_ms)
            self._reference = self._clock()
            self._emit(f"{VIDEO_START_SENTINEL}{int(self._wall_clock() * 1000)}")

        if self._last_audio_ms > 0:
            elapsed = self._elapsed_ms(self._last_step_start)
            if elapsed < self._last_audio_ms:
                remaining = self._last_audio_ms - elapsed
                self._emit(f"Waiting {remaining:.0f}ms for audio sync (step {self._last_step_id})")
                self._wait_ms(remaining)

        now = self._clock()
        timestamp = max(0, int(round((now - self._reference) * 1000.0)))
        self._emit(format_timing_event(step_id, timestamp))

        self._last_step_start = now
        self._last_audio_ms = max(0, int(audio_duration_ms))
        self._last_step_id = step_id
        return timestamp

    def wait_for_final_audio(self) -> None:
        """Block until the last step's narration would have finished."""
        if self._last_audio_ms <= 0:
            return
        remaining = self._last_audio_ms - self._elapsed_ms(self._last_step_start)
        self._last_audio_ms = 0
        if remaining > 0:
            self._emit(f"Waiting {remaining:.0f}ms for final audio (step {self._last_step_id})")
            self._wait_ms(remaining)
