"""Unit tests for guardrail loading and merging."""

import pytest
from pydantic import ValidationError

from callsense.config import Settings
from callsense.models import GuardrailsConfig, OutputType, SpecScope, TargetClamp
from callsense.pipeline.guardrails import default_guardrails, load_guardrails, merge_guardrails


def _override(section: str, **config) -> dict:
    return {"parameters": [{"id": section, "config": config}]}


class TestGuardrailModels:
    """Tests for the frozen guardrail models."""

    def test_defaults(self):
        guardrails = GuardrailsConfig()
        assert guardrails.target_clamp.min == 0.2
        assert guardrails.target_clamp.max == 0.8
        assert guardrails.confidence_bounds.default == 0.7
        assert guardrails.mock_behavior.center == pytest.approx(0.6)
        assert guardrails.aggregation.decay_half_life_days == 30.0
        assert guardrails.source == "defaults"

    def test_clamp_min_above_max_rejected(self):
        with pytest.raises(ValidationError):
            TargetClamp(min=0.9, max=0.1)

    def test_frozen(self):
        guardrails = GuardrailsConfig()
        with pytest.raises(ValidationError):
            guardrails.source = "changed"


class TestMergeGuardrails:
    """Tests for field-by-field merging."""

    def test_partial_section_override(self):
        merged = merge_guardrails(_override("target_clamp", minValue=0.1), source="ops-guardrails")

        assert merged.target_clamp.min == 0.1
        assert merged.target_clamp.max == 0.8
        assert merged.confidence_bounds.default == 0.7
        assert merged.source == "ops-guardrails"

    def test_snake_case_keys_accepted(self):
        merged = merge_guardrails(_override("aggregation", decay_half_life_days=14))
        assert merged.aggregation.decay_half_life_days == 14

    def test_unknown_keys_ignored(self):
        merged = merge_guardrails(_override("ai_settings", temperature=0.1, colour="blue"))
        assert merged.ai_settings.temperature == 0.1

    def test_invalid_section_keeps_base(self):
        merged = merge_guardrails(_override("target_clamp", minValue=0.9, maxValue=0.1))

        assert merged.target_clamp == TargetClamp()
        assert merged.source == "defaults"

    def test_empty_config_returns_base(self):
        base = GuardrailsConfig()
        assert merge_guardrails(None, base) is base
        assert merge_guardrails({"parameters": []}, base) is base


class TestLoadGuardrails:
    """Tests for resolving guardrails from the store."""

    def test_defaults_without_spec(self, store):
        assert load_guardrails(store) == GuardrailsConfig()

    def test_defaults_take_settings(self):
        settings = Settings(max_retries=5, personality_decay_half_life_days=7, _env_file=None)
        guardrails = default_guardrails(settings)

        assert guardrails.ai_settings.max_retries == 5
        assert guardrails.aggregation.decay_half_life_days == 7

    def test_system_supervise_spec_applied(self, store):
        store.add_spec(
            "guardrails",
            OutputType.SUPERVISE,
            _override("target_clamp", minValue=0.3, maxValue=0.7),
            scope=SpecScope.SYSTEM,
        )
        guardrails = load_guardrails(store)

        assert guardrails.target_clamp.min == 0.3
        assert guardrails.target_clamp.max == 0.7
        assert guardrails.source == "guardrails"

    def test_domain_supervise_spec_ignored(self, store):
        store.add_spec("domain-supervise", OutputType.SUPERVISE, _override("target_clamp", minValue=0.3))
        assert load_guardrails(store).target_clamp.min == 0.2

    def test_inactive_spec_ignored(self, store):
        store.add_spec(
            "guardrails",
            OutputType.SUPERVISE,
            _override("target_clamp", minValue=0.3),
            scope=SpecScope.SYSTEM,
            is_active=False,
        )
        assert load_guardrails(store).source == "defaults"

    def test_store_failure_falls_back(self):
        class BrokenStore:
            def first_active_spec(self, *args, **kwargs):
                raise RuntimeError("database is locked")

        assert load_guardrails(BrokenStore()) == GuardrailsConfig()

    @pytest.mark.parametrize(
        "config",
        [
            {"parameters": 5},
            {"parameters": "target_clamp"},
            {"parameters": [{"id": "target_clamp", "config": {"minValue": [0.3]}}]},
        ],
    )
    def test_malformed_override_falls_back(self, store, config):
        store.add_spec("guardrails", OutputType.SUPERVISE, config, scope=SpecScope.SYSTEM)

        guardrails = load_guardrails(store)

        assert guardrails.target_clamp == TargetClamp()
        assert guardrails.source == "defaults"

    def test_merge_failure_falls_back(self, store, monkeypatch):
        def broken_merge(*args, **kwargs):
            raise TypeError("bad override")

        monkeypatch.setattr("callsense.pipeline.guardrails.merge_guardrails", broken_merge)
        store.add_spec("guardrails", OutputType.SUPERVISE, _override("target_clamp", minValue=0.3), scope=SpecScope.SYSTEM)

        assert load_guardrails(store) == GuardrailsConfig()
