"""Unit tests for the SUPERVISE stage."""

from datetime import timedelta

import pytest

from callsense.models import DEFAULT_PIPELINE_STAGES, GuardrailsConfig, TargetClamp
from callsense.pipeline.stages.supervise import aggregate_caller_targets, clamp_call_targets, execute_supervise
from callsense.storage.tables import utcnow

SUPERVISE = DEFAULT_PIPELINE_STAGES[5]


class TestClampCallTargets:
    """Tests for target clamping."""

    def test_out_of_range_clamped(self, make_ctx, seeded_store):
        seeded_store.upsert_call_target("call-1", "caller-1", "BEH-WARMTH", 0.95, 0.7, "mock_adapt", "Warm up")
        seeded_store.upsert_call_target("call-1", "caller-1", "BEH-PACE", 0.5, 0.7, "mock_adapt")

        assert clamp_call_targets(make_ctx()) == 1

        targets = {t.parameter_id: t for t in seeded_store.call_targets("call-1")}
        assert targets["BEH-WARMTH"].target_value == 0.8
        assert targets["BEH-WARMTH"].reasoning == "Warm up [clamped to 0.2-0.8]"
        assert targets["BEH-PACE"].target_value == 0.5
        assert targets["BEH-PACE"].reasoning == ""

    def test_below_minimum_clamped(self, make_ctx, seeded_store):
        seeded_store.upsert_call_target("call-1", "caller-1", "BEH-PACE", 0.05, 0.7, "mock_adapt")

        assert clamp_call_targets(make_ctx()) == 1
        (target,) = seeded_store.call_targets("call-1")
        assert target.target_value == 0.2
        assert target.reasoning == "[clamped to 0.2-0.8]"

    def test_custom_clamp(self, make_ctx, seeded_store):
        seeded_store.upsert_call_target("call-1", "caller-1", "BEH-PACE", 0.75, 0.7, "mock_adapt")
        guardrails = GuardrailsConfig(target_clamp=TargetClamp(min=0.3, max=0.7))

        assert clamp_call_targets(make_ctx(guardrails=guardrails)) == 1
        assert seeded_store.call_targets("call-1")[0].target_value == 0.7

    def test_no_targets(self, make_ctx):
        assert clamp_call_targets(make_ctx()) == 0


class TestAggregateCallerTargets:
    """Tests for caller-level target aggregation."""

    def test_aggregates_across_calls(self, make_ctx, seeded_store):
        seeded_store.add_call("call-0", "caller-1", "earlier", created_at=utcnow() - timedelta(days=30, hours=1))
        seeded_store.upsert_call_target("call-0", "caller-1", "BEH-WARMTH", 0.2, 1.0, "mock_adapt")
        seeded_store.upsert_call_target("call-1", "caller-1", "BEH-WARMTH", 0.8, 1.0, "mock_adapt")
        seeded_store.upsert_call_target("call-1", "caller-1", "BEH-PACE", 0.5, 1.0, "mock_adapt")

        assert aggregate_caller_targets(make_ctx()) == 2

        targets = {t.parameter_id: t for t in seeded_store.caller_targets("caller-1")}
        # the 30-day-old target carries half the weight
        assert targets["BEH-WARMTH"].target_value == pytest.approx(0.6, abs=0.01)
        assert targets["BEH-WARMTH"].calls_used == 2
        assert targets["BEH-WARMTH"].confidence == pytest.approx(0.7)
        assert targets["BEH-PACE"].target_value == pytest.approx(0.5)
        assert targets["BEH-PACE"].confidence == pytest.approx(0.6)

    def test_no_history(self, make_ctx):
        assert aggregate_caller_targets(make_ctx()) == 0


async def test_execute_supervise(make_ctx, seeded_store):
    seeded_store.upsert_call_target("call-1", "caller-1", "BEH-WARMTH", 0.95, 0.7, "mock_adapt")

    result = await execute_supervise(make_ctx(), SUPERVISE)

    assert result == {"targets_validated": 1, "caller_targets_aggregated": 1}
    (caller_target,) = seeded_store.caller_targets("caller-1")
    assert caller_target.target_value == pytest.approx(0.8)
