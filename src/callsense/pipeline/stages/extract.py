"""EXTRACT stage: score the caller and extract durable facts in one completion.

After scoring, deltas against the caller's previous call are written for
parameters that have a ``{PID}-DELTA`` companion in the catalogue. Then the
curriculum, artifact and action hooks run best-effort: their failures are
logged and never fail the stage.
"""

import random
from typing import Any

import structlog

from callsense.config.prompts import CALLER_ANALYSIS_SYSTEM_PROMPT, build_caller_analysis_prompt
from callsense.llm import recover_broken_json
from callsense.models import MemoryCategory, OutputType, PipelineStage
from callsense.pipeline.context import RunContext
from callsense.pipeline.stages.common import clamp, first_present, load_spec_parameters

logger = structlog.get_logger(__name__)

CALL_POINT = "pipeline.measure"
DELTA_SUFFIX = "-DELTA"
DELTA_CONFIDENCE = 0.9
DEFAULT_MEMORY_CONFIDENCE = 0.8

# Category names models tend to return instead of the canonical ones
MEMORY_CATEGORY_SYNONYMS: dict[str, MemoryCategory] = {
    "INTEREST": MemoryCategory.TOPIC,
    "INTERESTS": MemoryCategory.TOPIC,
    "HOBBY": MemoryCategory.TOPIC,
    "HOBBIES": MemoryCategory.TOPIC,
    "LIKE": MemoryCategory.PREFERENCE,
    "LIKES": MemoryCategory.PREFERENCE,
    "DISLIKE": MemoryCategory.PREFERENCE,
    "DISLIKES": MemoryCategory.PREFERENCE,
    "PERSONAL": MemoryCategory.FACT,
    "PERSONAL_INFO": MemoryCategory.FACT,
    "DEMOGRAPHIC": MemoryCategory.FACT,
    "LOCATION": MemoryCategory.FACT,
    "WORK": MemoryCategory.FACT,
    "JOB": MemoryCategory.FACT,
    "EXPERIENCE": MemoryCategory.EVENT,
    "HISTORY": MemoryCategory.EVENT,
    "SITUATION": MemoryCategory.CONTEXT,
    "CURRENT": MemoryCategory.CONTEXT,
    "FAMILY": MemoryCategory.RELATIONSHIP,
    "FRIEND": MemoryCategory.RELATIONSHIP,
}


def map_memory_category(raw: Any) -> MemoryCategory:
    """Normalise a model-supplied category onto MemoryCategory (default FACT)."""
    if not raw:
        return MemoryCategory.FACT

    cleaned = "".join(ch for ch in str(raw).upper().strip() if ch.isalpha() or ch == "_")
    if cleaned in MemoryCategory._value2member_map_:
        return MemoryCategory(cleaned)
    if cleaned in MEMORY_CATEGORY_SYNONYMS:
        return MEMORY_CATEGORY_SYNONYMS[cleaned]

    if cleaned:
        for key, category in MEMORY_CATEGORY_SYNONYMS.items():
            if cleaned.startswith(key) or key.startswith(cleaned):
                return category
    return MemoryCategory.FACT


def _learn_actions(specs) -> list[tuple[str, str]]:
    actions = []
    for spec in specs:
        for entry in (spec.config or {}).get("learn") or []:
            if isinstance(entry, dict) and entry.get("category"):
                actions.append((entry["category"], entry.get("description", "")))
    return actions


async def analyse_caller(ctx: RunContext, stage: PipelineStage) -> tuple[int, int]:
    """Score MEASURE parameters and store LEARN facts.

    Returns:
        (scores written, memories written)
    """
    specs = ctx.store.active_specs(stage.output_categories) if stage.output_categories else []
    measure_specs = [s for s in specs if s.output_type == OutputType.MEASURE.value]
    learn_specs = [s for s in specs if s.output_type == OutputType.LEARN.value]

    measure_params = load_spec_parameters(ctx.store, measure_specs)
    learn_actions = _learn_actions(learn_specs)

    logger.info(
        "caller_analysis_start",
        call_id=ctx.call_id,
        params=len(measure_params),
        learn_actions=len(learn_actions),
    )
    if not measure_params and not learn_actions:
        logger.warning("caller_analysis_no_specs", call_id=ctx.call_id)
        return 0, 0

    scores_created = 0
    memories_created = 0

    if ctx.is_mock:
        mock = ctx.guardrails.mock_behavior
        for parameter_id, _ in measure_params:
            ctx.store.upsert_call_score(
                ctx.call_id,
                ctx.caller_id,
                parameter_id,
                score=random.uniform(mock.range_min, mock.range_max),
                confidence=ctx.guardrails.confidence_bounds.default,
                scored_by="mock_batched",
            )
            scores_created += 1
        logger.info("caller_analysis_mock_complete", scores_created=scores_created)
        return scores_created, memories_created

    prompt = build_caller_analysis_prompt(
        ctx.transcript,
        measure_params,
        learn_actions,
        transcript_limit=ctx.settings.transcript_limit(CALL_POINT),
    )
    result = await ctx.require_llm(CALL_POINT).complete(
        prompt,
        system=CALLER_ANALYSIS_SYSTEM_PROMPT,
        max_tokens=2048,
        temperature=ctx.guardrails.ai_settings.temperature,
        call_point=CALL_POINT,
    )
    recovery = recover_broken_json(result.content, CALL_POINT)
    if recovery.recovered:
        logger.info("caller_analysis_json_recovered", fixes=recovery.fixes_applied)
    parsed = recovery.parsed
    scored_by = f"{ctx.engine.value}_batched"

    scores = parsed.get("scores")
    if isinstance(scores, dict):
        for parameter_id, data in scores.items():
            data = data if isinstance(data, dict) else {"s": data}
            ctx.store.upsert_call_score(
                ctx.call_id,
                ctx.caller_id,
                parameter_id,
                score=clamp(first_present(data, "score", "s"), default=0.5),
                confidence=clamp(first_present(data, "confidence", "c"), default=0.7),
                scored_by=scored_by,
            )
            scores_created += 1

    memories = parsed.get("memories")
    if isinstance(memories, list):
        for memory in memories:
            if not isinstance(memory, dict):
                continue
            category = first_present(memory, "category", "cat")
            key = memory.get("key")
            value = first_present(memory, "value", "val")
            if not (category and key and value):
                continue
            ctx.store.add_memory(
                ctx.caller_id,
                ctx.call_id,
                map_memory_category(category).value,
                str(key),
                str(value),
                confidence=clamp(first_present(memory, "confidence", "c"), default=DEFAULT_MEMORY_CONFIDENCE),
                extracted_by=scored_by,
            )
            memories_created += 1

    logger.info(
        "caller_analysis_complete",
        scores_created=scores_created,
        memories_created=memories_created,
    )
    return scores_created, memories_created


def compute_deltas(ctx: RunContext) -> int:
    """Write score changes since the previous call, re-normalised from [-1, 1] to [0, 1]."""
    previous = ctx.store.previous_call(ctx.caller_id, ctx.call)
    if previous is None:
        logger.info("deltas_first_call", caller_id=ctx.caller_id)
        return 0

    previous_scores = {s.parameter_id: s.score for s in ctx.store.scores_for_call(previous.id)}
    current_scores = [
        s for s in ctx.store.scores_for_call(ctx.call_id)
        if not s.parameter_id.endswith(DELTA_SUFFIX) and s.parameter_id in previous_scores
    ]
    delta_params = ctx.store.parameters(f"{s.parameter_id}{DELTA_SUFFIX}" for s in current_scores)

    deltas = 0
    for score in current_scores:
        delta_id = f"{score.parameter_id}{DELTA_SUFFIX}"
        if delta_id not in delta_params:
            continue
        delta = score.score - previous_scores[score.parameter_id]
        ctx.store.upsert_call_score(
            ctx.call_id,
            ctx.caller_id,
            delta_id,
            score=(delta + 1) / 2,
            confidence=DELTA_CONFIDENCE,
            scored_by="delta",
        )
        deltas += 1

    logger.info("deltas_computed", deltas=deltas, previous_call_id=previous.id)
    return deltas


async def execute_extract(ctx: RunContext, stage: PipelineStage) -> dict[str, Any]:
    if not ctx.force:
        existing = ctx.store.count_scores(ctx.call_id)
        if existing > 0:
            logger.info("extract_skipped", call_id=ctx.call_id, existing_scores=existing)
            return {"scores_created": 0, "memories_created": 0, "skipped_reason": "existing_scores"}

    scores_created, memories_created = await analyse_caller(ctx, stage)
    deltas_computed = compute_deltas(ctx)

    hooks = ctx.collaborators
    curriculum_updated = False
    try:
        curriculum_updated = await hooks.track_curriculum(ctx)
    except Exception as e:
        logger.warning("curriculum_tracking_failed", call_id=ctx.call_id, error=str(e))

    artifacts_extracted = 0
    if ctx.settings.artifacts_enabled:
        try:
            artifacts_extracted = (await hooks.extract_artifacts(ctx)).created
        except Exception as e:
            logger.warning("artifact_extraction_failed", call_id=ctx.call_id, error=str(e))

    actions_extracted = 0
    if ctx.settings.actions_enabled:
        try:
            actions_extracted = (await hooks.extract_actions(ctx)).created
        except Exception as e:
            logger.warning("action_extraction_failed", call_id=ctx.call_id, error=str(e))

    return {
        "scores_created": scores_created,
        "memories_created": memories_created,
        "deltas_computed": deltas_computed,
        "curriculum_updated": curriculum_updated,
        "artifacts_extracted": artifacts_extracted,
        "actions_extracted": actions_extracted,
    }
