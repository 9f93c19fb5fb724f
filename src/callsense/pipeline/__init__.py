"""Per-call analysis pipeline: loaders, aggregation, stages and orchestration."""

from .aggregation import Sample, aggregated_confidence, decay_weight, time_decayed_average
from .collaborators import Collaborators
from .context import RunContext
from .dependencies import validate_spec_dependencies
from .guardrails import load_guardrails, merge_guardrails
from .orchestrator import PARALLEL_STAGES, PipelineError, plan_batches, run_pipeline, run_stages
from .stage_config import (
    extract_stages_from_config,
    get_stage_by_name,
    get_stages_for_output_type,
    load_pipeline_stages,
)

__all__ = [
    # Orchestration
    "PARALLEL_STAGES",
    "PipelineError",
    "RunContext",
    "Collaborators",
    "plan_batches",
    "run_pipeline",
    "run_stages",
    # Configuration
    "extract_stages_from_config",
    "get_stage_by_name",
    "get_stages_for_output_type",
    "load_guardrails",
    "load_pipeline_stages",
    "merge_guardrails",
    "validate_spec_dependencies",
    # Aggregation
    "Sample",
    "aggregated_confidence",
    "decay_weight",
    "time_decayed_average",
]
