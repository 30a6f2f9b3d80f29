from dataclasses import dataclass
from enum import StrEnum


class Importance(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass
class StepSpec:
    step_id: int                   # 1-based, unique within a job
    code_action: str               # source line the narration was written for
    narration: str                 # voiceover text
    importance: Importance = Importance.MEDIUM
    audio_duration_ms: int = 0     # 0 until speech has been synthesized
