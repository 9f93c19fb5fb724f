"""Pipeline stage configuration.

Stages are data: an override spec may reorder them, change their output
categories or their mode requirement. Entries look like::

    {"name": "EXTRACT", "order": 10, "outputTypes": ["MEASURE", "LEARN"],
     "description": "...", "requiresMode": "prompt"}

The override comes from the active PIPELINE spec, falling back to the
``pipeline_stages`` parameter of the SUPERVISE spec. Loading never raises.
"""

from typing import Any, Optional, Sequence

import structlog
from pydantic import ValidationError

from callsense.models import (
    DEFAULT_PIPELINE_STAGES,
    OutputType,
    PipelineMode,
    PipelineStage,
    SpecScope,
    StageName,
)
from callsense.pipeline.guardrails import get_spec_parameter
from callsense.storage import PipelineStore

logger = structlog.get_logger(__name__)


def _parse_stage(entry: Any) -> Optional[PipelineStage]:
    if not isinstance(entry, dict):
        return None

    name = entry.get("name")
    if not isinstance(name, str) or name not in StageName._value2member_map_:
        logger.warning("pipeline_stage_unknown", name=name)
        return None

    raw_types = entry.get("outputTypes") or []
    if not isinstance(raw_types, list):
        logger.warning("pipeline_stage_output_types_invalid", stage=name)
        raw_types = []

    output_types = []
    for raw in raw_types:
        if isinstance(raw, str) and raw in OutputType._value2member_map_:
            output_types.append(OutputType(raw))
        else:
            logger.debug("pipeline_stage_output_type_ignored", stage=name, output_type=raw)

    requires_mode = entry.get("requiresMode")
    try:
        return PipelineStage(
            name=StageName(name),
            order=entry.get("order", 0),
            output_categories=tuple(output_types),
            requires_mode=PipelineMode(requires_mode) if requires_mode else None,
            description=entry.get("description") or "",
        )
    except (ValidationError, ValueError) as e:
        logger.warning("pipeline_stage_invalid", name=name, error=str(e))
        return None


def sort_stages(stages: Sequence[PipelineStage]) -> list[PipelineStage]:
    """Order ascending; ties keep list position (sorted() is stable)."""
    return sorted(stages, key=lambda stage: stage.order)


def extract_stages_from_config(spec_config: Any) -> Optional[list[PipelineStage]]:
    """Parse stage entries from a spec config.

    Accepts ``{"parameters": [{"id": "pipeline_stages", "config": {"stages": [...]}}]}``
    or a bare ``{"stages": [...]}``.

    Returns:
        Sorted stages, or None if the config holds no valid stage.
    """
    param = get_spec_parameter(spec_config, "pipeline_stages")
    if param is not None:
        entries = param.get("stages")
    elif isinstance(spec_config, dict):
        entries = spec_config.get("stages")
    else:
        entries = None

    if not isinstance(entries, list) or not entries:
        return None

    stages = [stage for stage in (_parse_stage(entry) for entry in entries) if stage is not None]
    if not stages:
        return None
    return sort_stages(stages)


def load_pipeline_stages(store: PipelineStore | None) -> list[PipelineStage]:
    """Resolve the ordered stage list for one run. Never raises."""
    defaults = list(DEFAULT_PIPELINE_STAGES)
    if store is None:
        return defaults

    try:
        candidates = [
            store.first_active_spec(OutputType.PIPELINE),
            store.first_active_spec(OutputType.SUPERVISE, SpecScope.SYSTEM),
        ]
    except Exception as e:
        logger.warning("pipeline_stages_load_failed", error=str(e))
        return defaults

    for spec in candidates:
        if spec is None:
            continue
        try:
            stages = extract_stages_from_config(spec.config)
        except Exception as e:
            logger.warning("pipeline_stages_override_invalid", source=spec.slug, error=str(e))
            continue
        if stages:
            logger.info("pipeline_stages_loaded", source=spec.slug, stages=[s.name.value for s in stages])
            return stages

    logger.debug("pipeline_stages_defaults_used")
    return defaults


def get_stage_by_name(stages: Sequence[PipelineStage], name: StageName | str) -> Optional[PipelineStage]:
    """Find a stage by name."""
    for stage in stages:
        if stage.name == name:
            return stage
    return None


def get_stages_for_output_type(stages: Sequence[PipelineStage], output_type: OutputType | str) -> list[PipelineStage]:
    """All stages that declare the given output category."""
    return [stage for stage in stages if output_type in stage.output_categories]
