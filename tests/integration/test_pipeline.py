"""End-to-end pipeline runs against an in-memory store."""

import json
from datetime import timedelta

import pytest

from callsense.models import STAGE_ERRORS_KEY, OutputType, PipelineMode, SpecScope
from callsense.pipeline import run_pipeline
from callsense.storage.tables import utcnow

CALLER_PARAMS = ["B5-O", "B5-C", "B5-E", "B5-A", "B5-N"]


class TestMockPipeline:
    """Full runs with the mock engine."""

    async def test_prep_run(self, seeded_store, settings):
        result = await run_pipeline("call-1", mode="prep", engine="mock", store=seeded_store, settings=settings)

        assert result.errors == []
        assert result.prompt is None
        assert result.caller_id == "caller-1"
        assert set(result.model_dump()) == {
            "call_id", "caller_id", "mode", "engine", "summary", "prompt", "errors", "duration_seconds",
        }
        summary = result.summary
        assert summary["scores_created"] == len(CALLER_PARAMS)
        assert summary["agent_measurements"] == 2
        assert summary["personality_profile_updated"] is True
        assert 0.0 <= summary["reward_score"] <= 1.0
        assert summary["call_targets_created"] == 2
        assert summary["caller_targets_aggregated"] == 2
        assert "prompt_id" not in summary
        assert result.message == "Prep complete: 5 scores, 0 memories, 2 targets, 2 agent measurements"

        assert seeded_store.get_reward("call-1") is not None
        assert seeded_store.active_prompt("caller-1") is None
        for target in seeded_store.call_targets("call-1"):
            assert 0.2 <= target.target_value <= 0.8

    async def test_prompt_run(self, seeded_store, settings):
        result = await run_pipeline("call-1", mode=PipelineMode.PROMPT, engine="mock", store=seeded_store,
                                    settings=settings)

        assert result.errors == []
        assert result.prompt.startswith("# SESSION PROMPT")
        assert "## Caller Personality" in result.prompt
        assert "## Behaviour Targets" in result.prompt
        assert result.message == "Full pipeline complete with prompt"
        assert seeded_store.active_prompt("caller-1").prompt == result.prompt

    async def test_rerun_is_idempotent(self, seeded_store, settings):
        await run_pipeline("call-1", engine="mock", store=seeded_store, settings=settings)
        first_scores = {s.parameter_id: s.score for s in seeded_store.scores_for_call("call-1")}

        result = await run_pipeline("call-1", engine="mock", store=seeded_store, settings=settings)

        assert result.summary["skipped_reason"] in {"existing_scores", "existing_measurements", "existing_targets"}
        assert result.summary["scores_created"] == 0
        assert result.summary["agent_measurements"] == 0
        assert result.summary["call_targets_created"] == 0
        assert {s.parameter_id: s.score for s in seeded_store.scores_for_call("call-1")} == first_scores

    async def test_force_rewrites(self, seeded_store, settings):
        await run_pipeline("call-1", engine="mock", store=seeded_store, settings=settings)
        result = await run_pipeline("call-1", engine="mock", force=True, store=seeded_store, settings=settings)

        assert result.summary["scores_created"] == len(CALLER_PARAMS)
        assert "skipped_reason" not in result.summary

    async def test_default_engine_from_settings(self, seeded_store, settings):
        result = await run_pipeline("call-1", store=seeded_store, settings=settings)
        assert result.engine == "mock"

    async def test_second_call_computes_deltas(self, seeded_store, settings):
        seeded_store.add_parameter("B5-O-DELTA", "Openness change")
        seeded_store.add_call("call-0", "caller-1", "earlier call", created_at=utcnow() - timedelta(days=7))
        seeded_store.upsert_call_score("call-0", "caller-1", "B5-O", 0.5, 0.7, scored_by="mock_batched")

        result = await run_pipeline("call-1", engine="mock", store=seeded_store, settings=settings)

        assert result.summary["deltas_computed"] == 1

    async def test_guardrail_override_applied(self, seeded_store, settings):
        seeded_store.add_spec(
            "guardrails",
            OutputType.SUPERVISE,
            {"parameters": [
                {"id": "target_clamp", "config": {"minValue": 0.65, "maxValue": 0.7}},
                {"id": "mock_behavior", "config": {"scoreRangeMin": 0.1, "scoreRangeMax": 0.2}},
            ]},
            scope=SpecScope.SYSTEM,
        )
        await run_pipeline("call-1", engine="mock", store=seeded_store, settings=settings)

        for score in seeded_store.scores_for_call("call-1"):
            assert 0.1 <= score.score <= 0.2
        for target in seeded_store.call_targets("call-1"):
            assert target.target_value == pytest.approx(0.65)

    async def test_malformed_guardrail_spec_uses_defaults(self, seeded_store, settings):
        seeded_store.add_spec("guardrails", OutputType.SUPERVISE, {"parameters": 5}, scope=SpecScope.SYSTEM)

        result = await run_pipeline("call-1", engine="mock", store=seeded_store, settings=settings)

        assert result.errors == []
        assert result.summary["scores_created"] == len(CALLER_PARAMS)


class TestModelPipeline:
    """Full runs against a fake completion client."""

    async def test_failing_model_still_composes(self, seeded_store, settings, make_llm):
        llm = make_llm({
            "pipeline.measure": RuntimeError("connection refused"),
            "pipeline.score_agent": json.dumps({"scores": {"BEH-WARMTH": {"s": 0.6, "c": 0.8}}}),
            "pipeline.adapt": json.dumps({"targets": {"BEH-WARMTH": {"v": 0.9, "c": 0.8}}}),
        })
        result = await run_pipeline(
            "call-1",
            mode="prompt",
            engine="ollama",
            store=seeded_store,
            llm=llm,
            settings=settings,
        )

        assert result.errors == ["EXTRACT: connection refused"]
        assert result.summary[STAGE_ERRORS_KEY] == result.errors
        assert result.summary["agent_measurements"] == 1
        assert result.prompt.startswith("# SESSION PROMPT")

        (target,) = seeded_store.call_targets("call-1")
        assert target.target_value == 0.8
        assert target.reasoning.endswith("[clamped to 0.2-0.8]")
        assert llm.count("pipeline.measure") == 1

    async def test_parse_failure_recorded_with_code(self, seeded_store, settings, make_llm):
        llm = make_llm({
            "pipeline.measure": "I am unable to score this call.",
            "pipeline.score_agent": json.dumps({"scores": {}}),
            "pipeline.adapt": json.dumps({"targets": {}}),
        })
        result = await run_pipeline("call-1", engine="ollama", store=seeded_store, llm=llm, settings=settings)

        assert len(result.errors) == 1
        assert result.errors[0].startswith("EXTRACT: [parse] pipeline.measure:")
