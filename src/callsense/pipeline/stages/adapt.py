"""ADAPT stage: personalised behaviour targets for the caller's next call.

AI target computation, rule-based adapt and goal extraction run
concurrently; a failure in one is logged and does not cancel the others.
Goal progress tracking runs afterwards because it reads the freshly
extracted goals.
"""

import asyncio
from typing import Any

import structlog

from callsense.config.prompts import ADAPT_SYSTEM_PROMPT, build_adapt_prompt
from callsense.llm import recover_broken_json
from callsense.models import GoalProgressResult, PipelineStage, SubOperationResult
from callsense.pipeline.context import RunContext
from callsense.pipeline.stages.common import clamp, first_present, load_spec_parameters

logger = structlog.get_logger(__name__)

CALL_POINT = "pipeline.adapt"


async def compute_call_targets(ctx: RunContext, stage: PipelineStage) -> int:
    """Write CallTargets for the parameters ADAPT specs reference. Returns the count."""
    specs = ctx.store.active_specs(stage.output_categories) if stage.output_categories else []
    target_params = load_spec_parameters(ctx.store, specs)
    if not target_params:
        logger.info("adapt_no_target_parameters", call_id=ctx.call_id)
        return 0

    call_scores = {s.parameter_id: s.score for s in ctx.store.scores_for_call(ctx.call_id)}
    bounds = ctx.guardrails.confidence_bounds
    created = 0

    if ctx.is_mock:
        mock = ctx.guardrails.mock_behavior
        center = mock.center
        for parameter_id, _ in target_params:
            base = call_scores.get(parameter_id, center)
            ctx.store.upsert_call_target(
                ctx.call_id,
                ctx.caller_id,
                parameter_id,
                target_value=base + (center - base) * mock.nudge_factor,
                confidence=bounds.default,
                source_spec="mock_adapt",
                reasoning=f"Mock adaptation (nudge {mock.nudge_factor} toward {center:g})",
            )
            created += 1
        return created

    profile = ctx.store.get_personality_profile(ctx.caller_id)
    prompt = build_adapt_prompt(
        ctx.transcript,
        call_scores,
        profile.parameter_values if profile else None,
        target_params,
        transcript_limit=ctx.settings.transcript_limit(CALL_POINT),
    )
    result = await ctx.require_llm(CALL_POINT).complete(
        prompt,
        system=ADAPT_SYSTEM_PROMPT,
        max_tokens=1024,
        temperature=ctx.guardrails.ai_settings.temperature,
        call_point=CALL_POINT,
    )
    recovery = recover_broken_json(result.content, CALL_POINT)
    if recovery.recovered:
        logger.info("adapt_json_recovered", fixes=recovery.fixes_applied)

    targets = recovery.parsed.get("targets")
    if isinstance(targets, dict):
        for parameter_id, data in targets.items():
            data = data if isinstance(data, dict) else {"v": data}
            ctx.store.upsert_call_target(
                ctx.call_id,
                ctx.caller_id,
                parameter_id,
                target_value=clamp(first_present(data, "value", "v"), default=0.5),
                confidence=clamp(first_present(data, "confidence", "c"), default=bounds.default),
                source_spec=f"{ctx.engine.value}_adapt",
                reasoning="AI-computed target",
            )
            created += 1
    return created


async def execute_adapt(ctx: RunContext, stage: PipelineStage) -> dict[str, Any]:
    if not ctx.force:
        existing = ctx.store.count_call_targets(ctx.call_id)
        if existing > 0:
            logger.info("adapt_skipped", call_id=ctx.call_id, existing_targets=existing)
            return {"call_targets_created": 0, "skipped_reason": "existing_targets"}

    hooks = ctx.collaborators
    ai_outcome, rule_outcome, goal_outcome = await asyncio.gather(
        compute_call_targets(ctx, stage),
        hooks.rule_based_adapt(ctx),
        hooks.extract_goals(ctx),
        return_exceptions=True,
    )

    if isinstance(ai_outcome, BaseException):
        logger.error("adapt_ai_targets_failed", call_id=ctx.call_id, error=str(ai_outcome))
        ai_outcome = 0
    if isinstance(rule_outcome, BaseException):
        logger.error("adapt_rule_based_failed", caller_id=ctx.caller_id, error=str(rule_outcome))
        rule_outcome = SubOperationResult()
    if isinstance(goal_outcome, BaseException):
        logger.error("goal_extraction_failed", caller_id=ctx.caller_id, error=str(goal_outcome))
        goal_outcome = SubOperationResult()

    try:
        progress = await hooks.track_goal_progress(ctx)
    except Exception as e:
        logger.error("goal_progress_failed", caller_id=ctx.caller_id, error=str(e))
        progress = GoalProgressResult()

    logger.info(
        "adapt_complete",
        call_id=ctx.call_id,
        call_targets=ai_outcome,
        caller_targets_created=rule_outcome.created,
        goals_extracted=goal_outcome.created,
    )
    return {
        "call_targets_created": ai_outcome,
        "caller_targets_created": rule_outcome.created,
        "caller_targets_updated": rule_outcome.updated,
        "goals_extracted": goal_outcome.created,
        "goals_updated_from_extraction": goal_outcome.updated,
        "goals_skipped": goal_outcome.skipped,
        "goals_progress_updated": progress.updated,
        "goals_completed": progress.completed,
    }
