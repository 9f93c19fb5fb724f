"""SUPERVISE stage: clamp call targets, then refresh caller-level targets."""

from typing import Any

import structlog

from callsense.models import PipelineStage
from callsense.pipeline.aggregation import Sample, aggregate_by_key, aggregated_confidence
from callsense.pipeline.context import RunContext

logger = structlog.get_logger(__name__)


def clamp_call_targets(ctx: RunContext) -> int:
    """Clamp every target of the call into the guardrail range. Returns the adjustment count."""
    low, high = ctx.guardrails.target_clamp.min, ctx.guardrails.target_clamp.max
    adjustments = 0

    for target in ctx.store.call_targets(ctx.call_id):
        value = min(high, max(low, target.target_value))
        if value == target.target_value:
            continue
        note = f"[clamped to {low:g}-{high:g}]"
        reasoning = f"{target.reasoning or ''} {note}".strip()
        ctx.store.update_call_target(target.id, value, reasoning)
        adjustments += 1

    logger.info("targets_validated", call_id=ctx.call_id, adjustments=adjustments, clamp_min=low, clamp_max=high)
    return adjustments


def aggregate_caller_targets(ctx: RunContext) -> int:
    """Time-decayed aggregate of all the caller's call targets, one row per parameter."""
    settings = ctx.guardrails.aggregation
    history = ctx.store.call_targets_for_caller(ctx.caller_id)
    if not history:
        logger.info("caller_targets_none", caller_id=ctx.caller_id)
        return 0

    aggregated = aggregate_by_key(
        ((t.parameter_id, Sample(t.target_value, t.confidence, called_at)) for t, called_at in history),
        settings.decay_half_life_days,
    )
    for parameter_id, (value, count) in aggregated.items():
        ctx.store.upsert_caller_target(
            ctx.caller_id,
            parameter_id,
            target_value=value,
            confidence=aggregated_confidence(count, settings),
            calls_used=count,
        )

    logger.info("caller_targets_aggregated", caller_id=ctx.caller_id, aggregated=len(aggregated))
    return len(aggregated)


async def execute_supervise(ctx: RunContext, stage: PipelineStage) -> dict[str, Any]:
    return {
        "targets_validated": clamp_call_targets(ctx),
        "caller_targets_aggregated": aggregate_caller_targets(ctx),
    }
