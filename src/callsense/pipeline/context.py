"""Run context shared by the orchestrator and stage executors."""

from dataclasses import dataclass, field
from typing import Any, Optional

from callsense.config import Settings
from callsense.llm import AICompletionError, CompletionClient
from callsense.models import AIErrorCode, Engine, GuardrailsConfig, PipelineMode, PipelineStage
from callsense.pipeline.collaborators import Collaborators
from callsense.storage import PipelineStore
from callsense.storage.tables import Call


@dataclass
class RunContext:
    """Mutable state of one pipeline run. Never shared between runs.

    ``results`` is the accumulator stage results are merged into; only the
    orchestrator writes to it.
    """

    call: Call
    caller_id: str
    engine: Engine
    guardrails: GuardrailsConfig
    stages: list[PipelineStage]
    mode: PipelineMode
    store: PipelineStore
    settings: Settings
    llm: Optional[CompletionClient] = None
    collaborators: Collaborators = field(default_factory=Collaborators)
    force: bool = False
    results: dict[str, Any] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)

    @property
    def call_id(self) -> str:
        return self.call.id

    @property
    def transcript(self) -> str:
        return self.call.transcript or ""

    @property
    def is_mock(self) -> bool:
        return self.engine == Engine.MOCK

    def require_llm(self, call_point: str) -> CompletionClient:
        """Completion client for a non-mock run."""
        if self.llm is None:
            raise AICompletionError(AIErrorCode.MODEL, "no completion client configured", call_point=call_point)
        return self.llm
