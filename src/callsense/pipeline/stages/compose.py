"""COMPOSE stage: build and persist the caller's next system prompt.

Works from persisted caller state only, so it still produces a prompt when
every earlier stage failed.
"""

from typing import Any

import structlog

from callsense.models import PipelineStage
from callsense.pipeline.composition import compose_prompt, load_compose_config
from callsense.pipeline.context import RunContext

logger = structlog.get_logger(__name__)


async def execute_compose(ctx: RunContext, stage: PipelineStage) -> dict[str, Any]:
    config = load_compose_config(ctx.store)
    composition = compose_prompt(ctx.store, ctx.caller_id, config)
    saved = ctx.store.save_composed_prompt(
        ctx.caller_id,
        ctx.call_id,
        composition.prompt,
        composition.sections_rendered,
    )

    logger.info(
        "compose_complete",
        caller_id=ctx.caller_id,
        prompt_id=saved.id,
        length=len(saved.prompt),
        sections=composition.sections_rendered,
        spec=config.spec_slug,
    )
    return {
        "prompt_id": saved.id,
        "prompt_length": len(saved.prompt),
        "prompt": saved.prompt,
    }
