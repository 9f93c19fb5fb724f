"""SCORE_AGENT stage: measure the agent's behaviour on the call."""

import random
from typing import Any

import structlog

from callsense.config.prompts import AGENT_SCORING_SYSTEM_PROMPT, build_agent_scoring_prompt
from callsense.llm import recover_broken_json
from callsense.models import PipelineStage
from callsense.pipeline.context import RunContext
from callsense.pipeline.stages.common import clamp, first_present, load_spec_parameters, word_count

logger = structlog.get_logger(__name__)

CALL_POINT = "pipeline.score_agent"
TOKENS_PER_PARAMETER = 150


def confidence_cap(ctx: RunContext, words: int) -> float:
    """Ceiling for measurement confidence given the transcript length."""
    if words < ctx.settings.short_transcript_threshold_words:
        return ctx.settings.short_transcript_confidence_cap
    return 1.0


async def execute_score_agent(ctx: RunContext, stage: PipelineStage) -> dict[str, Any]:
    if not ctx.force:
        existing = ctx.store.count_measurements(ctx.call_id)
        if existing > 0:
            logger.info("score_agent_skipped", call_id=ctx.call_id, existing_measurements=existing)
            return {"agent_measurements": 0, "skipped_reason": "existing_measurements"}

    words = word_count(ctx.transcript)
    if words < ctx.settings.min_transcript_words:
        logger.info(
            "score_agent_transcript_too_short",
            call_id=ctx.call_id,
            words=words,
            minimum=ctx.settings.min_transcript_words,
        )
        return {"agent_measurements": 0}

    cap = confidence_cap(ctx, words)
    if cap < 1.0:
        logger.info("score_agent_confidence_capped", words=words, cap=cap)

    specs = ctx.store.active_specs(stage.output_categories) if stage.output_categories else []
    agent_params = load_spec_parameters(ctx.store, specs)
    if not agent_params:
        logger.warning("score_agent_no_specs", call_id=ctx.call_id)
        return {"agent_measurements": 0}

    measurements = 0

    if ctx.is_mock:
        mock = ctx.guardrails.mock_behavior
        confidence = min(ctx.guardrails.confidence_bounds.default, cap)
        for parameter_id, _ in agent_params:
            ctx.store.upsert_measurement(
                ctx.call_id,
                parameter_id,
                actual_value=random.uniform(mock.range_min, mock.range_max),
                confidence=confidence,
                evidence=["Mock batched"],
            )
            measurements += 1
        logger.info("score_agent_mock_complete", measurements=measurements)
        return {"agent_measurements": measurements}

    prompt = build_agent_scoring_prompt(
        ctx.transcript,
        agent_params,
        transcript_limit=ctx.settings.transcript_limit(CALL_POINT),
    )
    result = await ctx.require_llm(CALL_POINT).complete(
        prompt,
        system=AGENT_SCORING_SYSTEM_PROMPT,
        max_tokens=max(2048, len(agent_params) * TOKENS_PER_PARAMETER),
        temperature=ctx.guardrails.ai_settings.temperature,
        call_point=CALL_POINT,
    )
    recovery = recover_broken_json(result.content, CALL_POINT)
    if recovery.recovered:
        logger.info("score_agent_json_recovered", fixes=recovery.fixes_applied)

    scores = recovery.parsed.get("scores")
    if isinstance(scores, dict):
        for parameter_id, data in scores.items():
            data = data if isinstance(data, dict) else {"s": data}
            evidence = first_present(data, "evidence", "e")
            if not isinstance(evidence, list):
                evidence = [str(evidence or "AI analysis")]
            ctx.store.upsert_measurement(
                ctx.call_id,
                parameter_id,
                actual_value=clamp(first_present(data, "score", "s"), default=0.5),
                confidence=clamp(first_present(data, "confidence", "c"), high=cap, default=0.7),
                evidence=evidence,
            )
            measurements += 1

    logger.info("score_agent_complete", call_id=ctx.call_id, measurements=measurements)
    return {"agent_measurements": measurements}
