"""callsense - per-call analysis pipeline for conversational AI.

Given a finished call transcript, the pipeline scores the caller and the agent,
extracts durable facts, aggregates behaviour trends over time, computes reward
signals, derives personalised targets for the next call and optionally composes
the next system prompt.

Usage:
    from callsense import run_pipeline

    result = await run_pipeline("call-1", "caller-1", mode="prep", engine="mock")
    print(result.summary)
"""

from callsense.pipeline.orchestrator import PipelineError, run_pipeline

__all__ = ["PipelineError", "run_pipeline"]

__version__ = "0.1.0"
