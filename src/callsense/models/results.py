"""Result records exchanged between the pipeline and its collaborators."""

from typing import Any, Optional

from pydantic import BaseModel, Field

from .enums import PipelineMode

# Reserved summary key holding collected stage errors
STAGE_ERRORS_KEY = "stage_errors"


class SubOperationResult(BaseModel):
    """Result contract of black-box collaborators (rule-based adapt, goals, artifacts, actions)."""

    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list[str] = Field(default_factory=list)


class GoalProgressResult(BaseModel):
    """Outcome of goal progress tracking."""

    updated: int = 0
    completed: int = 0


class AggregateRulesResult(BaseModel):
    """Outcome of running generic AGGREGATE rule specs for one caller."""

    specs_run: int = 0
    profile_updates: int = 0
    errors: list[str] = Field(default_factory=list)


class DependencyValidation(BaseModel):
    """Outcome of rule-spec prerequisite checks. Warnings only, never fatal."""

    valid: bool = True
    warnings: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(
        default_factory=list,
        description="Slugs of specs whose prerequisites are not satisfied",
    )


class PipelineResult(BaseModel):
    """Externally observable outcome of one pipeline run."""

    call_id: str
    caller_id: str
    mode: PipelineMode
    engine: str
    summary: dict[str, Any] = Field(default_factory=dict)
    prompt: Optional[str] = None
    errors: list[str] = Field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def message(self) -> str:
        """One-line human summary in the shape operators are used to."""
        s = self.summary
        if self.mode == PipelineMode.PREP:
            return (
                f"Prep complete: {s.get('scores_created', 0)} scores, "
                f"{s.get('memories_created', 0)} memories, "
                f"{s.get('call_targets_created', 0)} targets, "
                f"{s.get('agent_measurements', 0)} agent measurements"
            )
        return "Full pipeline complete with prompt" if self.prompt else "Full pipeline complete"
