"""Guardrails: numeric safety bounds and tunables for one pipeline run.

Loaded once per run and read-only afterwards (models are frozen).
"""

from pydantic import BaseModel, ConfigDict, Field, model_validator


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class TargetClamp(_Frozen):
    """Safe range every call target is clamped into."""

    min: float = Field(default=0.2, ge=0.0, le=1.0)
    max: float = Field(default=0.8, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _ordered(self) -> "TargetClamp":
        if self.min > self.max:
            raise ValueError(f"clamp min {self.min} exceeds max {self.max}")
        return self


class ConfidenceBounds(_Frozen):
    """Bounds and default for confidence values written by the pipeline."""

    min: float = Field(default=0.3, ge=0.0, le=1.0)
    max: float = Field(default=0.95, ge=0.0, le=1.0)
    default: float = Field(default=0.7, ge=0.0, le=1.0)


class MockBehavior(_Frozen):
    """How the mock engine synthesises values."""

    range_min: float = Field(default=0.4, ge=0.0, le=1.0)
    range_max: float = Field(default=0.8, ge=0.0, le=1.0)
    nudge_factor: float = Field(default=0.2, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _ordered(self) -> "MockBehavior":
        if self.range_min > self.range_max:
            raise ValueError(f"mock range min {self.range_min} exceeds max {self.range_max}")
        return self

    @property
    def center(self) -> float:
        return (self.range_min + self.range_max) / 2


class AISettings(_Frozen):
    """Completion settings consumed by the provider client."""

    temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    max_retries: int = Field(default=2, ge=0)


class AggregationSettings(_Frozen):
    """Time-decay and confidence-growth constants for caller-level aggregates."""

    decay_half_life_days: float = Field(default=30.0, gt=0.0)
    confidence_growth_base: float = Field(default=0.5, ge=0.0, le=1.0)
    confidence_growth_per_call: float = Field(default=0.1, ge=0.0, le=1.0)
    max_aggregated_confidence: float = Field(default=0.95, ge=0.0, le=1.0)


class GuardrailsConfig(_Frozen):
    """Complete guardrail bundle. Every field always has a value."""

    target_clamp: TargetClamp = Field(default_factory=TargetClamp)
    confidence_bounds: ConfidenceBounds = Field(default_factory=ConfidenceBounds)
    mock_behavior: MockBehavior = Field(default_factory=MockBehavior)
    ai_settings: AISettings = Field(default_factory=AISettings)
    aggregation: AggregationSettings = Field(default_factory=AggregationSettings)
    source: str = Field(default="defaults", description="Slug of the override spec, or 'defaults'")
