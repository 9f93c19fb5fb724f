"""AGGREGATE stage: personality traits and generic aggregation rules.

Trait aggregation writes a per-call PersonalityObservation and refreshes the
caller-level CallerPersonality and CallerPersonalityProfile with
time-decayed averages of all the caller's scores. Half-life and confidence
come from guardrails; only the trait mapping is read from the AGGREGATE
system spec (``traitMapping``: parameter id -> trait name).
"""

from typing import Any

import structlog

from callsense.models import OutputType, PipelineStage, SpecScope
from callsense.pipeline.aggregate_rules import run_aggregate_rules
from callsense.pipeline.aggregation import Sample, aggregate_by_key, aggregated_confidence
from callsense.pipeline.context import RunContext
from callsense.storage.tables import utcnow

logger = structlog.get_logger(__name__)

DEFAULT_TRAIT_MAPPING: dict[str, str] = {
    "B5-O": "openness",
    "B5-C": "conscientiousness",
    "B5-E": "extraversion",
    "B5-A": "agreeableness",
    "B5-N": "neuroticism",
}


def load_trait_mapping(ctx: RunContext) -> dict[str, str]:
    spec = ctx.store.first_active_spec(OutputType.AGGREGATE, SpecScope.SYSTEM)
    mapping = (spec.config or {}).get("traitMapping") if spec else None
    if isinstance(mapping, dict) and mapping:
        return {str(pid): str(trait) for pid, trait in mapping.items()}
    return dict(DEFAULT_TRAIT_MAPPING)


def aggregate_personality(ctx: RunContext) -> dict[str, bool]:
    """Per-call trait snapshot plus caller-level decayed aggregate."""
    trait_mapping = load_trait_mapping(ctx)
    settings = ctx.guardrails.aggregation
    observation_created = False

    call_scores = ctx.store.scores_for_call(ctx.call_id)
    if not call_scores:
        logger.warning("personality_no_call_scores", call_id=ctx.call_id)
        return {"observation_created": False, "profile_updated": False}

    traits = {
        trait_mapping[s.parameter_id]: s.score
        for s in call_scores
        if s.parameter_id in trait_mapping
    }
    if traits:
        ctx.store.upsert_personality_observation(
            ctx.call_id,
            ctx.caller_id,
            traits,
            confidence=ctx.guardrails.confidence_bounds.default,
        )
        observation_created = True

    history = ctx.store.scores_for_caller(ctx.caller_id)
    now = utcnow()
    aggregated = aggregate_by_key(
        ((score.parameter_id, Sample(score.score, score.confidence, called_at)) for score, called_at in history),
        settings.decay_half_life_days,
        now=now,
    )
    parameter_values = {pid: value for pid, (value, _) in aggregated.items()}
    calls_used = len({score.call_id for score, _ in history})

    trait_values = {
        trait: parameter_values[pid]
        for pid, trait in trait_mapping.items()
        if pid in parameter_values
    }
    ctx.store.upsert_caller_personality(
        ctx.caller_id,
        trait_values,
        confidence_score=aggregated_confidence(calls_used, settings),
        observations_used=len(history),
        decay_half_life=settings.decay_half_life_days,
    )
    ctx.store.upsert_personality_profile(ctx.caller_id, parameter_values, calls_used=calls_used)

    logger.info(
        "personality_aggregated",
        caller_id=ctx.caller_id,
        scores_used=len(history),
        parameters=len(parameter_values),
        traits={trait: round(value, 2) for trait, value in trait_values.items()},
    )
    return {"observation_created": observation_created, "profile_updated": True}


async def execute_aggregate(ctx: RunContext, stage: PipelineStage) -> dict[str, Any]:
    result: dict[str, Any] = {
        "personality_observation_created": False,
        "personality_profile_updated": False,
        "aggregate_specs_run": 0,
        "profile_updates": 0,
    }

    try:
        personality = aggregate_personality(ctx)
        result["personality_observation_created"] = personality["observation_created"]
        result["personality_profile_updated"] = personality["profile_updated"]
    except Exception as e:
        logger.error("personality_aggregation_failed", call_id=ctx.call_id, error=str(e))
        result.setdefault("aggregate_errors", []).append(f"personality: {e}")

    try:
        rules = run_aggregate_rules(ctx.store, ctx.caller_id, ctx.guardrails)
        result["aggregate_specs_run"] = rules.specs_run
        result["profile_updates"] = rules.profile_updates
        if rules.errors:
            result.setdefault("aggregate_errors", []).extend(rules.errors)
    except Exception as e:
        logger.error("aggregate_rules_failed", caller_id=ctx.caller_id, error=str(e))
        result.setdefault("aggregate_errors", []).append(f"rules: {e}")

    return result
