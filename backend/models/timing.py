from dataclasses import dataclass


@dataclass
class StepTiming:
    step_id: int
    start_timestamp_ms: int        # ms since the run's reference instant
    audio_duration_ms: int = 0     # copied from the matching StepSpec
