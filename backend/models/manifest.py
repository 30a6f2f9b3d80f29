"""Job manifest as produced by the script-generation and speech-synthesis steps."""

from pydantic import BaseModel, ConfigDict, Field

from .step import Importance, StepSpec


class ManifestStep(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    step_id: int = Field(ge=1)
    code_action: str = ""
    narration: str = ""
    importance: Importance = Importance.MEDIUM
    duration_ms: int | None = Field(default=None, ge=0, alias="durationMs")


class JobManifest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    steps: list[ManifestStep] = Field(default_factory=list)
    duration_map: dict[int, int] = Field(default_factory=dict, alias="durationMap")

    def resolve_steps(self, default_duration_ms: int) -> list[StepSpec]:
        """
        Build StepSpecs with resolved audio durations.

        Precedence: durationMap entry, then the step's own durationMs, then
        default_duration_ms.
        """
        resolved: list[StepSpec] = []
        for step in self.steps:
            duration = self.duration_map.get(step.step_id)
            if duration is None:
                duration = step.duration_ms if step.duration_ms is not None else default_duration_ms
            resolved.append(
                StepSpec(
                    step_id=step.step_id,
                    code_action=step.code_action,
                    narration=step.narration,
                    importance=step.importance,
                    audio_duration_ms=max(0, int(duration)),
                )
            )
        return resolved
