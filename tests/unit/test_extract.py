"""Unit tests for the EXTRACT stage."""

import json
from datetime import timedelta

import pytest

from callsense.models import DEFAULT_PIPELINE_STAGES, Engine, MemoryCategory, OutputType, SubOperationResult
from callsense.pipeline.collaborators import Collaborators
from callsense.pipeline.stages.extract import compute_deltas, execute_extract, map_memory_category
from callsense.storage.tables import utcnow


EXTRACT = DEFAULT_PIPELINE_STAGES[0]
CALLER_PARAMS = ["B5-O", "B5-C", "B5-E", "B5-A", "B5-N"]

LLM_RESPONSE = json.dumps({
    "scores": {
        "B5-O": {"s": 0.7, "c": 0.8},
        "B5-E": {"score": 1.4, "confidence": 0.9},
    },
    "memories": [
        {"cat": "family", "key": "daughter", "val": "Emma"},
        {"category": "hobbies", "key": "garden", "value": "growing tomatoes", "c": 0.95},
        {"category": "FACT", "key": "no_value"},
    ],
})


class TestMapMemoryCategory:
    """Tests for memory category normalisation."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("FACT", MemoryCategory.FACT),
            ("preference", MemoryCategory.PREFERENCE),
            (" Event ", MemoryCategory.EVENT),
            ("hobbies", MemoryCategory.TOPIC),
            ("family", MemoryCategory.RELATIONSHIP),
            ("likes", MemoryCategory.PREFERENCE),
            ("situation", MemoryCategory.CONTEXT),
            ("personal_info", MemoryCategory.FACT),
            ("HOBBY!", MemoryCategory.TOPIC),
            ("astrology", MemoryCategory.FACT),
            ("", MemoryCategory.FACT),
            (None, MemoryCategory.FACT),
        ],
    )
    def test_mapping(self, raw, expected):
        assert map_memory_category(raw) == expected


class TestExecuteExtractMock:
    """Tests for the mock engine path."""

    async def test_scores_every_measure_parameter(self, make_ctx, seeded_store):
        ctx = make_ctx()
        result = await execute_extract(ctx, EXTRACT)

        assert result["scores_created"] == len(CALLER_PARAMS)
        assert result["memories_created"] == 0
        assert result["deltas_computed"] == 0

        scores = seeded_store.scores_for_call("call-1")
        assert {s.parameter_id for s in scores} == set(CALLER_PARAMS)
        for score in scores:
            assert 0.4 <= score.score <= 0.8
            assert score.confidence == 0.7
            assert score.scored_by == "mock_batched"

    async def test_skipped_when_scores_exist(self, make_ctx, seeded_store):
        seeded_store.upsert_call_score("call-1", "caller-1", "B5-O", 0.5, 0.7, scored_by="manual")
        result = await execute_extract(make_ctx(), EXTRACT)

        assert result == {"scores_created": 0, "memories_created": 0, "skipped_reason": "existing_scores"}
        assert seeded_store.count_scores("call-1") == 1

    async def test_force_reruns(self, make_ctx, seeded_store):
        seeded_store.upsert_call_score("call-1", "caller-1", "B5-O", 0.5, 0.7, scored_by="manual")
        result = await execute_extract(make_ctx(force=True), EXTRACT)

        assert "skipped_reason" not in result
        assert result["scores_created"] == len(CALLER_PARAMS)

    async def test_no_specs_writes_nothing(self, make_ctx, seeded_store):
        stage = EXTRACT.model_copy(update={"output_categories": ()})
        result = await execute_extract(make_ctx(), stage)

        assert result["scores_created"] == 0
        assert seeded_store.count_scores("call-1") == 0


class TestExecuteExtractLLM:
    """Tests for the completion path."""

    async def test_scores_and_memories(self, make_ctx, make_llm, seeded_store):
        seeded_store.add_spec(
            "caller-facts",
            OutputType.LEARN,
            {"learn": [{"category": "FACT", "description": "Family and hobbies"}]},
        )
        llm = make_llm({"pipeline.measure": LLM_RESPONSE})
        result = await execute_extract(make_ctx(engine=Engine.OLLAMA, llm=llm), EXTRACT)

        assert result["scores_created"] == 2
        assert result["memories_created"] == 2
        assert llm.count("pipeline.measure") == 1
        assert llm.calls[0]["max_tokens"] == 2048

        scores = {s.parameter_id: s for s in seeded_store.scores_for_call("call-1")}
        assert scores["B5-O"].score == 0.7
        assert scores["B5-O"].confidence == 0.8
        assert scores["B5-E"].score == 1.0
        assert scores["B5-O"].scored_by == "ollama_batched"

        memories = {m.key: m for m in seeded_store.memories_for_caller("caller-1")}
        assert memories["daughter"].category == "RELATIONSHIP"
        assert memories["daughter"].confidence == 0.8
        assert memories["garden"].category == "TOPIC"
        assert memories["garden"].confidence == 0.95
        assert "no_value" not in memories

    async def test_completion_failure_propagates(self, make_ctx, make_llm):
        llm = make_llm({"pipeline.measure": RuntimeError("connection refused")})
        with pytest.raises(RuntimeError):
            await execute_extract(make_ctx(engine=Engine.OLLAMA, llm=llm), EXTRACT)


class TestDeltas:
    """Tests for score deltas against the previous call."""

    def _previous_call(self, store):
        store.add_call("call-0", "caller-1", "earlier call", created_at=utcnow() - timedelta(days=3))
        store.upsert_call_score("call-0", "caller-1", "B5-O", 0.5, 0.7, scored_by="mock_batched")
        store.upsert_call_score("call-0", "caller-1", "B5-C", 0.5, 0.7, scored_by="mock_batched")

    def test_first_call_has_no_deltas(self, make_ctx):
        assert compute_deltas(make_ctx()) == 0

    def test_delta_written_for_known_companion(self, make_ctx, seeded_store):
        self._previous_call(seeded_store)
        seeded_store.add_parameter("B5-O-DELTA", "Openness change")
        seeded_store.upsert_call_score("call-1", "caller-1", "B5-O", 0.7, 0.8, scored_by="test")
        seeded_store.upsert_call_score("call-1", "caller-1", "B5-C", 0.9, 0.8, scored_by="test")

        assert compute_deltas(make_ctx()) == 1

        scores = {s.parameter_id: s for s in seeded_store.scores_for_call("call-1")}
        assert scores["B5-O-DELTA"].score == pytest.approx(0.6)
        assert scores["B5-O-DELTA"].confidence == 0.9
        assert "B5-C-DELTA" not in scores


class TestExtractHooks:
    """Tests for the best-effort curriculum, artifact and action hooks."""

    async def test_hook_results_reported(self, make_ctx):
        async def artifacts(ctx):
            return SubOperationResult(created=3)

        async def curriculum(ctx):
            return True

        ctx = make_ctx(collaborators=Collaborators(extract_artifacts=artifacts, track_curriculum=curriculum))
        result = await execute_extract(ctx, EXTRACT)

        assert result["artifacts_extracted"] == 3
        assert result["curriculum_updated"] is True
        assert result["actions_extracted"] == 0

    async def test_hook_failure_does_not_fail_stage(self, make_ctx):
        async def broken(ctx):
            raise RuntimeError("artifact store offline")

        ctx = make_ctx(collaborators=Collaborators(extract_artifacts=broken, track_curriculum=broken))
        result = await execute_extract(ctx, EXTRACT)

        assert result["scores_created"] == len(CALLER_PARAMS)
        assert result["artifacts_extracted"] == 0
        assert result["curriculum_updated"] is False

    async def test_disabled_hook_not_called(self, make_ctx, settings):
        called = []

        async def actions(ctx):
            called.append(ctx.call_id)
            return SubOperationResult(created=1)

        settings.actions_enabled = False
        ctx = make_ctx(collaborators=Collaborators(extract_actions=actions))
        result = await execute_extract(ctx, EXTRACT)

        assert result["actions_extracted"] == 0
        assert called == []


