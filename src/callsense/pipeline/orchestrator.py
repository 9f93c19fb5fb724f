"""Pipeline orchestrator: schedules stages for one call.

Stages run in ascending ``order``. Consecutive parallel-eligible stages
(EXTRACT, SCORE_AGENT) form a batch that runs concurrently; everything else
runs one at a time. A failing stage is recorded as ``"{stage}: {message}"``
and the run continues, so COMPOSE always gets its turn.

Stage results are merged into ``ctx.results`` here, on the orchestrator's
task, after each batch or stage has finished.
"""

import asyncio
import time
from typing import Any, Mapping, Optional, Sequence

import structlog

from callsense.config import Settings, get_settings
from callsense.llm import CompletionClient, OllamaCompletionClient
from callsense.models import STAGE_ERRORS_KEY, Engine, PipelineMode, PipelineResult, PipelineStage, StageName
from callsense.pipeline.collaborators import Collaborators
from callsense.pipeline.context import RunContext
from callsense.pipeline.dependencies import validate_spec_dependencies
from callsense.pipeline.guardrails import load_guardrails
from callsense.pipeline.stage_config import load_pipeline_stages
from callsense.pipeline.stages import STAGE_EXECUTORS, StageExecutor
from callsense.storage import PipelineStore

logger = structlog.get_logger(__name__)

PARALLEL_STAGES = frozenset({StageName.EXTRACT, StageName.SCORE_AGENT})


class PipelineError(Exception):
    """Failure before any stage runs (bad arguments, unknown call)."""
    pass


def plan_batches(stages: Sequence[PipelineStage], mode: PipelineMode) -> list[list[PipelineStage]]:
    """Group the stages that run in ``mode`` into execution batches.

    Maximal runs of consecutive parallel-eligible stages become one batch;
    every other stage is a batch of its own. Stages for another mode are
    dropped before grouping.
    """
    batches: list[list[PipelineStage]] = []
    current: list[PipelineStage] = []

    for stage in stages:
        if not stage.runs_in(mode):
            logger.debug("stage_skipped_mode", stage=stage.name.value, requires_mode=stage.requires_mode.value)
            continue
        if stage.name in PARALLEL_STAGES:
            current.append(stage)
            continue
        if current:
            batches.append(current)
            current = []
        batches.append([stage])

    if current:
        batches.append(current)
    return batches


def _record_failure(ctx: RunContext, stage: PipelineStage, error: BaseException) -> None:
    message = str(error) or type(error).__name__
    logger.error("stage_failed", stage=stage.name.value, call_id=ctx.call_id, error=message)
    ctx.errors.append(f"{stage.name.value}: {message}")


async def _run_batch(
    ctx: RunContext,
    batch: list[PipelineStage],
    executors: Mapping[StageName, StageExecutor],
) -> None:
    runnable = []
    for stage in batch:
        if stage.name in executors:
            runnable.append(stage)
        else:
            logger.warning("stage_no_executor", stage=stage.name.value)

    if not runnable:
        return

    started = time.perf_counter()
    if len(runnable) == 1:
        stage = runnable[0]
        logger.info("stage_started", stage=stage.name.value, order=stage.order)
        try:
            ctx.results.update(await executors[stage.name](ctx, stage))
        except Exception as e:
            _record_failure(ctx, stage, e)
        else:
            logger.info("stage_complete", stage=stage.name.value, seconds=round(time.perf_counter() - started, 3))
        return

    names = [stage.name.value for stage in runnable]
    logger.info("parallel_stages_started", stages=names)
    outcomes = await asyncio.gather(
        *(executors[stage.name](ctx, stage) for stage in runnable),
        return_exceptions=True,
    )
    for stage, outcome in zip(runnable, outcomes):
        if isinstance(outcome, BaseException):
            _record_failure(ctx, stage, outcome)
        else:
            ctx.results.update(outcome)
    logger.info("parallel_stages_complete", stages=names, seconds=round(time.perf_counter() - started, 3))


async def run_stages(
    ctx: RunContext,
    executors: Mapping[StageName, StageExecutor] = STAGE_EXECUTORS,
) -> dict[str, Any]:
    """Execute the context's stage list and return the merged summary. Never raises for stage failures."""
    logger.info(
        "pipeline_stages_planned",
        call_id=ctx.call_id,
        mode=ctx.mode.value,
        stages=[stage.name.value for stage in ctx.stages],
    )

    try:
        validation = validate_spec_dependencies(ctx.store.active_specs())
        if validation.skipped:
            logger.warning("spec_dependencies_unsatisfied", specs=validation.skipped)
    except Exception as e:
        logger.warning("spec_dependency_check_failed", error=str(e))

    for batch in plan_batches(ctx.stages, ctx.mode):
        await _run_batch(ctx, batch, executors)

    if ctx.errors:
        ctx.results[STAGE_ERRORS_KEY] = list(ctx.errors)
        logger.warning("pipeline_completed_with_errors", call_id=ctx.call_id, errors=ctx.errors)
    return ctx.results


async def run_pipeline(
    call_id: str,
    caller_id: Optional[str] = None,
    mode: PipelineMode | str = PipelineMode.PREP,
    engine: Engine | str | None = None,
    force: bool = False,
    *,
    store: Optional[PipelineStore] = None,
    llm: Optional[CompletionClient] = None,
    settings: Optional[Settings] = None,
    collaborators: Optional[Collaborators] = None,
) -> PipelineResult:
    """Run the analysis pipeline for one finished call.

    Args:
        call_id: Call to analyse.
        caller_id: Caller the call belongs to. Defaults to the call's caller.
        mode: "prep" (no COMPOSE) or "prompt" (with COMPOSE).
        engine: "mock" or "ollama". Defaults to ``Settings.default_engine``.
        force: Re-run stages whose output already exists for this call.
        store: Storage to use. Defaults to one built from ``Settings.database_url``.
        llm: Completion client. Built from LLM settings when omitted and needed.
        settings: Application settings. Defaults to ``get_settings()``.
        collaborators: Sub-pipeline entry points for EXTRACT and ADAPT.

    Returns:
        PipelineResult with the merged summary, optional prompt and stage errors.

    Raises:
        PipelineError: If the arguments are invalid or the call does not exist.
    """
    started = time.perf_counter()
    settings = settings or get_settings()

    try:
        mode = PipelineMode(mode)
    except ValueError:
        raise PipelineError(f"mode must be 'prep' or 'prompt', got {mode!r}")

    try:
        engine = Engine(engine or settings.default_engine)
    except ValueError:
        raise PipelineError(f"unknown engine {engine!r}; expected one of {[e.value for e in Engine]}")

    store = store or PipelineStore.from_url(settings.database_url)
    call = store.get_call(call_id)
    if call is None:
        raise PipelineError(f"Call not found: {call_id}")

    caller_id = caller_id or call.caller_id
    logger.info("pipeline_started", call_id=call_id, caller_id=caller_id, mode=mode.value, engine=engine.value)

    guardrails = load_guardrails(store, settings)
    stages = load_pipeline_stages(store)

    if engine == Engine.OLLAMA and llm is None:
        llm = OllamaCompletionClient(max_retries=guardrails.ai_settings.max_retries)

    ctx = RunContext(
        call=call,
        caller_id=caller_id,
        engine=engine,
        guardrails=guardrails,
        stages=stages,
        mode=mode,
        store=store,
        settings=settings,
        llm=llm,
        collaborators=collaborators or Collaborators(),
        force=force,
    )
    summary = await run_stages(ctx)

    result = PipelineResult(
        call_id=call_id,
        caller_id=caller_id,
        mode=mode,
        engine=engine.value,
        summary=summary,
        prompt=summary.get("prompt"),
        errors=list(ctx.errors),
        duration_seconds=round(time.perf_counter() - started, 3),
    )
    logger.info(
        "pipeline_complete",
        call_id=call_id,
        message=result.message,
        errors=len(result.errors),
        seconds=result.duration_seconds,
    )
    return result
