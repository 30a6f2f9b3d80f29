"""
Textual formats shared by the annotator, the injector, the instrumented
script and the runner.

Step marker (comment placed before a script statement):
    # __STEP_META__: {"stepId": 3, "audioDuration": 2400}

Timing event (one line on the harness output stream):
    __TIMING__:{"stepId": 3, "timestamp": 5120, "type": "start"}
"""

from __future__ import annotations

import io
import json
import re
import tokenize
from dataclasses import dataclass
from typing import Any

MARKER_SENTINEL = "__STEP_META__:"
TIMING_SENTINEL = "__TIMING__:"
VIDEO_START_SENTINEL = "__VIDEO_START__:"

_MARKER_RE = re.compile(r"#\s*__STEP_META__:\s*(\{[^}]*\})")
_UNQUOTED_KEY_RE = re.compile(r"([{,]\s*)([A-Za-z_]\w*)(\s*:)")


@dataclass(frozen=True)
class StepMarker:
    line: int                      # 1-based line of the marker comment
    raw: str                       # the comment text
    step_id: int | None = None     # None when the payload could not be parsed
    audio_duration_ms: int = 0

    @property
    def is_valid(self) -> bool:
        return self.step_id is not None


@dataclass(frozen=True)
class TimingEvent:
    step_id: int
    timestamp_ms: int
    type: str


def format_marker(step_id: int, audio_duration_ms: int) -> str:
    payload = json.dumps({"stepId": step_id, "audioDuration": audio_duration_ms})
    return f"# {MARKER_SENTINEL} {payload}"


def _loads_relaxed(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        pass
    # Relaxed object notation: {stepId: 1, 'audioDuration': 2000}
    fixed = raw.replace("'", '"')
    fixed = _UNQUOTED_KEY_RE.sub(r'\1"\2"\3', fixed)
    try:
        return json.loads(fixed)
    except json.JSONDecodeError:
        return None


def parse_marker_payload(raw: str) -> tuple[int, int] | None:
    """Return (step_id, audio_duration_ms) or None if the payload is unusable."""
    data = _loads_relaxed(raw)
    if not isinstance(data, dict):
        return None
    step_id = data.get("stepId")
    duration = data.get("audioDuration", 0)
    if isinstance(step_id, bool) or not isinstance(step_id, int) or step_id < 1:
        return None
    if isinstance(duration, bool) or not isinstance(duration, (int, float)) or duration < 0:
        return None
    return step_id, int(duration)


def is_marker_comment(text: str) -> bool:
    """True for a line that holds nothing but a marker comment."""
    return text.lstrip().startswith("#") and MARKER_SENTINEL in text


def split_lines(source: str) -> list[str]:
    """Lines with their endings, numbered the way ast and tokenize number them.

    str.splitlines also breaks on form feeds and other separators that the
    parser does not count as line ends.
    """
    return io.StringIO(source, newline="").readlines()


def _comment_tokens(source: str) -> list[tuple[int, str]]:
    try:
        tokens = tokenize.generate_tokens(io.StringIO(source).readline)
        return [(tok.start[0], tok.string) for tok in tokens if tok.type == tokenize.COMMENT]
    except (tokenize.TokenError, SyntaxError):
        # Unbalanced source: fall back to whole-line comments only.
        return [
            (number, line.strip())
            for number, line in enumerate(split_lines(source), start=1)
            if line.lstrip().startswith("#")
        ]


def find_markers(source: str) -> list[StepMarker]:
    """All marker comments in source order, parsed or not."""
    markers: list[StepMarker] = []
    for line, comment in _comment_tokens(source):
        if MARKER_SENTINEL not in comment:
            continue
        match = _MARKER_RE.search(comment)
        parsed = parse_marker_payload(match.group(1)) if match else None
        if parsed is None:
            markers.append(StepMarker(line=line, raw=comment))
        else:
            markers.append(
                StepMarker(line=line, raw=comment, step_id=parsed[0], audio_duration_ms=parsed[1])
            )
    return markers


def format_timing_event(step_id: int, timestamp_ms: int) -> str:
    return TIMING_SENTINEL + json.dumps({"stepId": step_id, "timestamp": timestamp_ms, "type": "start"})


def parse_timing_line(line: str) -> TimingEvent | None:
    """Parse one output line; None when it is not a well-formed timing event."""
    if TIMING_SENTINEL not in line:
        return None
    payload = line.split(TIMING_SENTINEL, 1)[1].strip()
    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None
    step_id = data.get("stepId")
    timestamp = data.get("timestamp")
    if not isinstance(step_id, int) or not isinstance(timestamp, (int, float)):
        return None
    return TimingEvent(step_id=step_id, timestamp_ms=int(timestamp), type=str(data.get("type", "")))
