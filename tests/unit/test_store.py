"""Unit tests for the storage service."""

from datetime import timedelta

import pytest

from callsense.models import OutputType, SpecScope
from callsense.storage.tables import Parameter, utcnow


class TestCalls:
    """Tests for call lookups."""

    def test_previous_call_is_strictly_earlier(self, store):
        now = utcnow()
        store.add_call("a", "caller-1", "first", created_at=now - timedelta(days=2))
        store.add_call("b", "caller-1", "second", created_at=now - timedelta(days=1))
        store.add_call("c", "caller-1", "same time as b", created_at=now - timedelta(days=1))
        store.add_call("other", "caller-2", "someone else", created_at=now - timedelta(hours=30))

        assert store.previous_call("caller-1", store.get_call("b")).id == "a"
        assert store.previous_call("caller-1", store.get_call("c")).id == "a"
        assert store.previous_call("caller-1", store.get_call("a")) is None

    def test_calls_for_caller_oldest_first(self, store):
        now = utcnow()
        store.add_call("late", "caller-1", "", created_at=now)
        store.add_call("early", "caller-1", "", created_at=now - timedelta(days=1))

        assert [c.id for c in store.calls_for_caller("caller-1")] == ["early", "late"]


class TestUpserts:
    """Tests for keyed upserts."""

    def test_call_score_upsert(self, seeded_store):
        assert seeded_store.upsert_call_score("call-1", "caller-1", "B5-O", 0.4, 0.7, "mock") is True
        assert seeded_store.upsert_call_score("call-1", "caller-1", "B5-O", 0.6, 0.8, "mock") is False

        (score,) = seeded_store.scores_for_call("call-1")
        assert score.score == 0.6
        assert seeded_store.count_scores("call-1") == 1

    def test_memory_keyed_by_call_category_key(self, seeded_store):
        seeded_store.add_memory("caller-1", "call-1", "FACT", "city", "Leeds", 0.8, "mock")
        seeded_store.add_memory("caller-1", "call-1", "FACT", "city", "York", 0.9, "mock")

        (memory,) = seeded_store.memories_for_caller("caller-1")
        assert memory.value == "York"

    def test_system_targets_ignore_other_scopes(self, store):
        store.set_behavior_target("BEH-WARMTH", 0.7)
        store.set_behavior_target("BEH-PACE", 0.4, scope=SpecScope.DOMAIN)

        assert store.system_targets(["BEH-WARMTH", "BEH-PACE"]) == {"BEH-WARMTH": 0.7}


class TestSpecs:
    """Tests for rule spec queries."""

    def test_active_specs_filtered(self, store):
        store.add_spec("m", OutputType.MEASURE, {})
        store.add_spec("a", OutputType.ADAPT, {})
        store.add_spec("off", OutputType.MEASURE, {}, is_active=False)
        store.add_spec("sys", OutputType.SUPERVISE, {}, scope=SpecScope.SYSTEM)

        assert [s.slug for s in store.active_specs([OutputType.MEASURE])] == ["m"]
        assert [s.slug for s in store.active_specs()] == ["m", "a", "sys"]
        assert store.first_active_spec(OutputType.SUPERVISE, SpecScope.SYSTEM).slug == "sys"
        assert store.first_active_spec(OutputType.SUPERVISE, SpecScope.DOMAIN) is None


class TestComposedPrompts:
    """Tests for prompt persistence."""

    def test_only_latest_prompt_active(self, store):
        first = store.save_composed_prompt("caller-1", "call-1", "one", ["identity"])
        second = store.save_composed_prompt("caller-1", "call-2", "two", ["identity"])

        assert first.id != second.id
        assert store.active_prompt("caller-1").prompt == "two"

    def test_session_rolls_back_on_error(self, store):
        with pytest.raises(RuntimeError):
            with store.session() as session:
                session.add(Parameter(id="temp", name="temp"))
                session.flush()
                raise RuntimeError("abort")

        assert "temp" not in store.parameters()
