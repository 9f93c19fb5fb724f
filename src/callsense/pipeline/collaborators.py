"""Sub-pipelines invoked by EXTRACT and ADAPT.

Goal extraction, goal progress, curriculum, artifact and action extraction
live outside this package; they plug in through ``Collaborators`` and are
only consumed through their result records. The defaults do nothing.

Rule-based adapt ships here. ADAPT specs may carry ``adaptRules``::

    {"adaptRules": [{"profileParameter": "B5-E", "operator": "gte", "threshold": 0.7,
                     "targetParameter": "BEH-WARMTH", "targetValue": 0.8, "confidence": 0.75}]}

A rule fires when the caller's aggregated profile value for
``profileParameter`` satisfies the comparison; it then writes a
caller-level target.
"""

import operator
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable

import structlog

from callsense.models import GoalProgressResult, OutputType, SubOperationResult

if TYPE_CHECKING:
    from callsense.pipeline.context import RunContext

logger = structlog.get_logger(__name__)

SubOperation = Callable[["RunContext"], Awaitable[SubOperationResult]]

_OPERATORS: dict[str, Callable[[float, float], bool]] = {
    "gt": operator.gt,
    "gte": operator.ge,
    "lt": operator.lt,
    "lte": operator.le,
    "eq": operator.eq,
}


async def run_rule_based_adapt(ctx: "RunContext") -> SubOperationResult:
    """Apply ``adaptRules`` of every active ADAPT spec to the caller's profile."""
    result = SubOperationResult()
    profile = ctx.store.get_personality_profile(ctx.caller_id)
    values: dict = dict(profile.parameter_values) if profile else {}
    values.update(ctx.store.profile_values(ctx.caller_id))

    existing = {t.parameter_id for t in ctx.store.caller_targets(ctx.caller_id)}

    for spec in ctx.store.active_specs([OutputType.ADAPT]):
        rules = (spec.config or {}).get("adaptRules") or []
        if not isinstance(rules, list):
            result.errors.append(f"{spec.slug}: adaptRules must be a list")
            continue
        for rule in rules:
            if not isinstance(rule, dict):
                result.errors.append(f"{spec.slug}: invalid rule (not an object)")
                continue
            try:
                compare = _OPERATORS[rule.get("operator", "gte")]
                actual = values.get(rule["profileParameter"])
                if not isinstance(actual, (int, float)) or not compare(actual, float(rule["threshold"])):
                    result.skipped += 1
                    continue

                clamp = ctx.guardrails.target_clamp
                target = min(clamp.max, max(clamp.min, float(rule["targetValue"])))
                confidence = float(rule.get("confidence", ctx.guardrails.confidence_bounds.default))
                parameter_id = rule["targetParameter"]
                ctx.store.upsert_caller_target(ctx.caller_id, parameter_id, target, confidence, calls_used=0)

                if parameter_id in existing:
                    result.updated += 1
                else:
                    result.created += 1
                    existing.add(parameter_id)
            except (KeyError, TypeError, ValueError) as e:
                result.errors.append(f"{spec.slug}: invalid rule ({e})")

    logger.info(
        "rule_based_adapt_complete",
        created=result.created,
        updated=result.updated,
        skipped=result.skipped,
        errors=len(result.errors),
    )
    return result


async def no_op_sub_operation(ctx: "RunContext") -> SubOperationResult:
    return SubOperationResult()


async def no_op_goal_progress(ctx: "RunContext") -> GoalProgressResult:
    return GoalProgressResult()


async def no_op_curriculum(ctx: "RunContext") -> bool:
    return False


@dataclass
class Collaborators:
    """Entry points of the black-box sub-pipelines."""

    rule_based_adapt: SubOperation = run_rule_based_adapt
    extract_goals: SubOperation = no_op_sub_operation
    track_goal_progress: Callable[["RunContext"], Awaitable[GoalProgressResult]] = no_op_goal_progress
    track_curriculum: Callable[["RunContext"], Awaitable[bool]] = no_op_curriculum
    extract_artifacts: SubOperation = no_op_sub_operation
    extract_actions: SubOperation = no_op_sub_operation
