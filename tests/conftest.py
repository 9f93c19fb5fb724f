"""Pytest configuration and fixtures."""

from datetime import timedelta
from typing import Any, Optional

import pytest

from callsense.config import Settings
from callsense.llm import AICompletionError, CompletionResult
from callsense.models import (
    DEFAULT_PIPELINE_STAGES,
    AIErrorCode,
    Engine,
    GuardrailsConfig,
    OutputType,
    PipelineMode,
)
from callsense.pipeline.collaborators import Collaborators
from callsense.pipeline.context import RunContext
from callsense.storage import PipelineStore
from callsense.storage.tables import utcnow

CALLER_PARAMS = ["B5-O", "B5-C", "B5-E", "B5-A", "B5-N"]
AGENT_PARAMS = ["BEH-WARMTH", "BEH-PACE"]


class FakeCompletionClient:
    """CompletionClient returning canned content per call point."""

    def __init__(self, responses: Optional[dict[str, Any]] = None):
        self.responses = responses or {}
        self.calls: list[dict[str, Any]] = []

    async def complete(
        self,
        prompt: str,
        *,
        system: str = "",
        max_tokens: int = 2048,
        temperature: float = 0.3,
        call_point: str = "pipeline",
        tools=None,
    ) -> CompletionResult:
        self.calls.append({"call_point": call_point, "prompt": prompt, "max_tokens": max_tokens})
        response = self.responses.get(call_point)
        if isinstance(response, Exception):
            raise response
        if response is None:
            raise AICompletionError(AIErrorCode.MODEL, "no canned response", call_point=call_point)
        return CompletionResult(content=response, model="fake")

    def count(self, call_point: str) -> int:
        return sum(1 for call in self.calls if call["call_point"] == call_point)


@pytest.fixture
def sample_transcript() -> str:
    """A short but realistic call transcript (well over the word gates)."""
    return (
        "Agent: Good morning, thanks for calling again. How did the garden project go last week?\n"
        "Caller: Oh it went really well, my daughter Emma came over and we planted the tomatoes together. "
        "I was worried about the frost but the weather held up nicely.\n"
        "Agent: That sounds lovely. Last time you mentioned you wanted to try growing peppers as well.\n"
        "Caller: Yes, I still want to do that. I have been reading about it in the evenings, "
        "I prefer the quiet time after dinner for reading. Maybe next month when it is warmer.\n"
        "Agent: That is a great plan. Shall we go over the watering schedule you asked about?\n"
        "Caller: Please, that would help me a lot. I always forget which days I watered."
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(database_url="sqlite://", default_engine="mock", _env_file=None)


@pytest.fixture
def store() -> PipelineStore:
    """Empty in-memory store (one private database per test)."""
    return PipelineStore.from_url("sqlite://")


@pytest.fixture
def seeded_store(store: PipelineStore, sample_transcript: str) -> PipelineStore:
    """Store with a parameter catalogue, MEASURE / MEASURE_AGENT / ADAPT specs and one call."""
    for pid in CALLER_PARAMS:
        store.add_parameter(pid, f"Big Five {pid[-1]}")
    store.add_parameter("BEH-WARMTH", "Warmth")
    store.add_parameter("BEH-PACE", "Pace")

    store.add_spec("caller-personality", OutputType.MEASURE, {"parameterIds": CALLER_PARAMS})
    store.add_spec("agent-behaviour", OutputType.MEASURE_AGENT, {"parameters": [{"id": p} for p in AGENT_PARAMS]})
    store.add_spec("agent-targets", OutputType.ADAPT, {"parameterIds": AGENT_PARAMS})

    store.add_call("call-1", "caller-1", sample_transcript, created_at=utcnow() - timedelta(hours=1))
    return store


@pytest.fixture
def make_llm():
    """Factory for a FakeCompletionClient with canned responses per call point."""
    return FakeCompletionClient


@pytest.fixture
def make_ctx(seeded_store: PipelineStore, settings: Settings):
    """Factory for a RunContext over the seeded store."""

    def _make(
        call_id: str = "call-1",
        engine: Engine = Engine.MOCK,
        mode: PipelineMode = PipelineMode.PREP,
        llm=None,
        guardrails: Optional[GuardrailsConfig] = None,
        collaborators: Optional[Collaborators] = None,
        force: bool = False,
        store: Optional[PipelineStore] = None,
    ) -> RunContext:
        store = store or seeded_store
        call = store.get_call(call_id)
        return RunContext(
            call=call,
            caller_id=call.caller_id,
            engine=engine,
            guardrails=guardrails or GuardrailsConfig(),
            stages=list(DEFAULT_PIPELINE_STAGES),
            mode=mode,
            store=store,
            settings=settings,
            llm=llm,
            collaborators=collaborators or Collaborators(),
            force=force,
        )

    return _make
