"""Stage executors, keyed by stage name.

Every executor takes ``(ctx, stage)`` and returns a partial result map.
"""

from typing import Any, Awaitable, Callable

from callsense.models import PipelineStage, StageName
from callsense.pipeline.context import RunContext

from .adapt import execute_adapt
from .aggregate import execute_aggregate
from .compose import execute_compose
from .extract import execute_extract, map_memory_category
from .reward import compute_reward, execute_reward
from .score_agent import execute_score_agent
from .supervise import execute_supervise

StageExecutor = Callable[[RunContext, PipelineStage], Awaitable[dict[str, Any]]]

STAGE_EXECUTORS: dict[StageName, StageExecutor] = {
    StageName.EXTRACT: execute_extract,
    StageName.SCORE_AGENT: execute_score_agent,
    StageName.AGGREGATE: execute_aggregate,
    StageName.REWARD: execute_reward,
    StageName.ADAPT: execute_adapt,
    StageName.SUPERVISE: execute_supervise,
    StageName.COMPOSE: execute_compose,
}

__all__ = [
    "STAGE_EXECUTORS",
    "StageExecutor",
    "compute_reward",
    "execute_adapt",
    "execute_aggregate",
    "execute_compose",
    "execute_extract",
    "execute_reward",
    "execute_score_agent",
    "execute_supervise",
    "map_memory_category",
]
