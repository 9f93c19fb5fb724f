"""REWARD stage: how closely the agent hit the system targets."""

from typing import Any, Sequence

import structlog

from callsense.models import PipelineStage
from callsense.pipeline.context import RunContext

logger = structlog.get_logger(__name__)

DEFAULT_TARGET = 0.5
NEUTRAL_REWARD = 0.5


def compute_reward(
    measurements: Sequence[tuple[str, float]],
    targets: dict[str, float],
) -> tuple[float, list[dict[str, Any]]]:
    """Reward = max(0, 1 - mean |actual - target|).

    Args:
        measurements: (parameter_id, actual value) pairs.
        targets: Target value per parameter; missing parameters use 0.5.

    Returns:
        (reward, per-parameter diffs)
    """
    diffs = []
    for parameter_id, actual in measurements:
        target = targets.get(parameter_id, DEFAULT_TARGET)
        diffs.append({
            "parameter_id": parameter_id,
            "target": target,
            "actual": actual,
            "diff": abs(actual - target),
        })
    if not diffs:
        return NEUTRAL_REWARD, diffs
    mean_diff = sum(d["diff"] for d in diffs) / len(diffs)
    return max(0.0, 1.0 - mean_diff), diffs


async def execute_reward(ctx: RunContext, stage: PipelineStage) -> dict[str, Any]:
    measurements = ctx.store.measurements_for_call(ctx.call_id)
    if not measurements:
        logger.warning("reward_no_measurements", call_id=ctx.call_id)
        return {"reward_score": NEUTRAL_REWARD}

    targets = ctx.store.system_targets(m.parameter_id for m in measurements)
    reward, diffs = compute_reward([(m.parameter_id, m.actual_value) for m in measurements], targets)
    ctx.store.upsert_reward(ctx.call_id, reward, diffs)

    logger.info("reward_computed", call_id=ctx.call_id, reward=round(reward, 4), diffs=len(diffs))
    return {"reward_score": reward}
