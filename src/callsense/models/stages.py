"""Pipeline stage descriptors."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .enums import OutputType, PipelineMode, StageName


class PipelineStage(BaseModel):
    """One named unit of pipeline work with a declared execution order.

    Immutable once loaded for a run. Ordering is by ``order`` ascending,
    ties broken by list position.
    """

    model_config = ConfigDict(frozen=True)

    name: StageName
    order: int
    output_categories: tuple[OutputType, ...] = Field(default_factory=tuple)
    requires_mode: Optional[PipelineMode] = None
    description: str = ""

    def runs_in(self, mode: PipelineMode) -> bool:
        """True if the stage is scheduled for the given mode."""
        return self.requires_mode is None or self.requires_mode == mode


DEFAULT_PIPELINE_STAGES: tuple[PipelineStage, ...] = (
    PipelineStage(
        name=StageName.EXTRACT,
        order=10,
        output_categories=(OutputType.MEASURE, OutputType.LEARN),
        description="Score caller parameters and extract facts",
    ),
    PipelineStage(
        name=StageName.SCORE_AGENT,
        order=20,
        output_categories=(OutputType.MEASURE_AGENT,),
        description="Score agent behaviour",
    ),
    PipelineStage(
        name=StageName.AGGREGATE,
        order=30,
        output_categories=(OutputType.AGGREGATE,),
        description="Aggregate personality and profile values",
    ),
    PipelineStage(
        name=StageName.REWARD,
        order=40,
        output_categories=(OutputType.REWARD,),
        description="Compute reward signal",
    ),
    PipelineStage(
        name=StageName.ADAPT,
        order=50,
        output_categories=(OutputType.ADAPT,),
        description="Compute personalised targets for the next call",
    ),
    PipelineStage(
        name=StageName.SUPERVISE,
        order=60,
        output_categories=(OutputType.SUPERVISE,),
        description="Clamp targets and refresh caller-level targets",
    ),
    PipelineStage(
        name=StageName.COMPOSE,
        order=100,
        output_categories=(OutputType.COMPOSE,),
        requires_mode=PipelineMode.PROMPT,
        description="Compose the next system prompt",
    ),
)
