"""Pydantic data models for the pipeline."""

from .enums import (
    AIErrorCode,
    Engine,
    MemoryCategory,
    OutputType,
    PipelineMode,
    SpecScope,
    StageName,
)
from .guardrails import (
    AggregationSettings,
    AISettings,
    ConfidenceBounds,
    GuardrailsConfig,
    MockBehavior,
    TargetClamp,
)
from .stages import DEFAULT_PIPELINE_STAGES, PipelineStage
from .results import (
    STAGE_ERRORS_KEY,
    AggregateRulesResult,
    DependencyValidation,
    GoalProgressResult,
    PipelineResult,
    SubOperationResult,
)

__all__ = [
    # Enums
    "AIErrorCode",
    "Engine",
    "MemoryCategory",
    "OutputType",
    "PipelineMode",
    "SpecScope",
    "StageName",
    # Guardrails
    "AggregationSettings",
    "AISettings",
    "ConfidenceBounds",
    "GuardrailsConfig",
    "MockBehavior",
    "TargetClamp",
    # Stages
    "DEFAULT_PIPELINE_STAGES",
    "PipelineStage",
    # Results
    "STAGE_ERRORS_KEY",
    "AggregateRulesResult",
    "DependencyValidation",
    "GoalProgressResult",
    "PipelineResult",
    "SubOperationResult",
]
