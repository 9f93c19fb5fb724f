"""Guardrail loading: merge an override spec field-by-field over the defaults.

The override source is the active SYSTEM spec with output type SUPERVISE.
Its ``config.parameters`` list carries one entry per guardrail section::

    {"parameters": [{"id": "target_clamp", "config": {"minValue": 0.1, "maxValue": 0.9}}, ...]}

Loading never raises. A missing spec, an unreadable store or an invalid
section all fall back to the defaults for whatever could not be read.
"""

from typing import Any, Optional

import structlog
from pydantic import ValidationError

from callsense.config import Settings
from callsense.models import (
    AggregationSettings,
    AISettings,
    ConfidenceBounds,
    GuardrailsConfig,
    MockBehavior,
    OutputType,
    SpecScope,
    TargetClamp,
)
from callsense.storage import PipelineStore

logger = structlog.get_logger(__name__)

# Section id -> (model field, model class, override key -> model field)
_SECTIONS: dict[str, tuple[str, type, dict[str, str]]] = {
    "target_clamp": ("target_clamp", TargetClamp, {"minValue": "min", "maxValue": "max"}),
    "confidence_bounds": (
        "confidence_bounds",
        ConfidenceBounds,
        {"minConfidence": "min", "maxConfidence": "max", "defaultConfidence": "default"},
    ),
    "mock_behavior": (
        "mock_behavior",
        MockBehavior,
        {"scoreRangeMin": "range_min", "scoreRangeMax": "range_max", "nudgeFactor": "nudge_factor"},
    ),
    "ai_settings": ("ai_settings", AISettings, {"temperature": "temperature", "maxRetries": "max_retries"}),
    "aggregation": (
        "aggregation",
        AggregationSettings,
        {
            "decayHalfLifeDays": "decay_half_life_days",
            "confidenceGrowthBase": "confidence_growth_base",
            "confidenceGrowthPerCall": "confidence_growth_per_call",
            "maxAggregatedConfidence": "max_aggregated_confidence",
        },
    ),
}


def get_spec_parameter(spec_config: Any, parameter_id: str) -> Optional[dict[str, Any]]:
    """Return the ``config`` of the parameter entry with the given id, if present."""
    if not isinstance(spec_config, dict):
        return None
    params = spec_config.get("parameters")
    if not isinstance(params, list):
        return None
    for entry in params:
        if isinstance(entry, dict) and entry.get("id") == parameter_id:
            config = entry.get("config")
            return config if isinstance(config, dict) else {}
    return None


def default_guardrails(settings: Settings | None = None) -> GuardrailsConfig:
    """Hardcoded defaults, with retry count and half-life taken from settings."""
    if settings is None:
        return GuardrailsConfig()
    return GuardrailsConfig(
        ai_settings=AISettings(max_retries=settings.max_retries),
        aggregation=AggregationSettings(decay_half_life_days=settings.personality_decay_half_life_days),
    )


def merge_guardrails(
    spec_config: Any,
    base: GuardrailsConfig | None = None,
    source: str = "override",
) -> GuardrailsConfig:
    """Merge override values over ``base`` field by field.

    Unknown keys are ignored. A section whose merged values fail validation
    keeps its base values.

    Args:
        spec_config: Override spec config (``{"parameters": [...]}``) or None.
        base: Complete guardrails to merge onto. Defaults to GuardrailsConfig().
        source: Label recorded in ``GuardrailsConfig.source`` when anything merged.

    Returns:
        A complete GuardrailsConfig.
    """
    base = base or GuardrailsConfig()
    merged: dict[str, Any] = {}

    for section_id, (field_name, model_cls, key_map) in _SECTIONS.items():
        override = get_spec_parameter(spec_config, section_id)
        if not override:
            continue

        values = getattr(base, field_name).model_dump()
        for key, value in override.items():
            target = key_map.get(key) or (key if key in values else None)
            if target is not None and value is not None:
                values[target] = value

        try:
            merged[field_name] = model_cls.model_validate(values)
        except ValidationError as e:
            logger.warning("guardrails_section_invalid", section=section_id, error=str(e))

    if not merged:
        return base
    return base.model_copy(update={**merged, "source": source})


def load_guardrails(store: PipelineStore | None, settings: Settings | None = None) -> GuardrailsConfig:
    """Resolve guardrails for one run. Never raises."""
    defaults = default_guardrails(settings)
    if store is None:
        return defaults

    try:
        spec = store.first_active_spec(OutputType.SUPERVISE, SpecScope.SYSTEM)
    except Exception as e:
        logger.warning("guardrails_load_failed", error=str(e))
        return defaults

    if spec is None:
        logger.debug("guardrails_defaults_used")
        return defaults

    try:
        guardrails = merge_guardrails(spec.config, defaults, source=spec.slug)
    except Exception as e:
        logger.warning("guardrails_override_invalid", source=spec.slug, error=str(e))
        return defaults

    logger.info(
        "guardrails_loaded",
        source=guardrails.source,
        clamp_min=guardrails.target_clamp.min,
        clamp_max=guardrails.target_clamp.max,
    )
    return guardrails
