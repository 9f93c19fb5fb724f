"""
ORM tables for calls, rule specs and everything the pipeline writes.

Natural keys are enforced with unique constraints so re-runs update rows
instead of duplicating them.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from callsense.storage.database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what SQLite hands back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# =============================================================================
# Inputs: calls, parameters, rule specs
# =============================================================================

class Call(Base):
    __tablename__ = "calls"

    id = Column(String(64), primary_key=True)
    caller_id = Column(String(64), nullable=False, index=True)
    transcript = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self):
        return f"<Call(id={self.id!r}, caller_id={self.caller_id!r})>"


class Parameter(Base):
    __tablename__ = "parameters"

    id = Column(String(64), primary_key=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)

    def __repr__(self):
        return f"<Parameter(id={self.id!r}, name={self.name!r})>"


class RuleSpec(Base):
    __tablename__ = "rule_specs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    slug = Column(String(200), unique=True, nullable=False, index=True)
    name = Column(String(200), nullable=False)
    output_type = Column(String(32), nullable=False, index=True)
    scope = Column(String(16), nullable=False, default="DOMAIN")
    is_active = Column(Boolean, nullable=False, default=True)
    config = Column(JSON, nullable=False, default=dict)
    depends_on = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self):
        return f"<RuleSpec(slug={self.slug!r}, output_type={self.output_type!r})>"


# =============================================================================
# Per-call outputs
# =============================================================================

class CallScore(Base):
    __tablename__ = "call_scores"
    __table_args__ = (UniqueConstraint("call_id", "parameter_id", name="uq_call_scores_call_param"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    call_id = Column(String(64), ForeignKey("calls.id"), nullable=False, index=True)
    caller_id = Column(String(64), nullable=False, index=True)
    parameter_id = Column(String(64), nullable=False)
    score = Column(Float, nullable=False)
    confidence = Column(Float, nullable=False)
    scored_by = Column(String(64), nullable=True)
    scored_at = Column(DateTime, nullable=False, default=utcnow)


class CallerMemory(Base):
    __tablename__ = "caller_memories"
    __table_args__ = (UniqueConstraint("call_id", "category", "key", name="uq_caller_memories_call_key"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    caller_id = Column(String(64), nullable=False, index=True)
    call_id = Column(String(64), ForeignKey("calls.id"), nullable=False)
    category = Column(String(32), nullable=False)
    key = Column(String(200), nullable=False)
    value = Column(Text, nullable=False)
    confidence = Column(Float, nullable=False, default=0.8)
    extracted_by = Column(String(64), nullable=True)
    extracted_at = Column(DateTime, nullable=False, default=utcnow)


class BehaviorMeasurement(Base):
    __tablename__ = "behavior_measurements"
    __table_args__ = (UniqueConstraint("call_id", "parameter_id", name="uq_behavior_measurements_call_param"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    call_id = Column(String(64), ForeignKey("calls.id"), nullable=False, index=True)
    parameter_id = Column(String(64), nullable=False)
    actual_value = Column(Float, nullable=False)
    confidence = Column(Float, nullable=False)
    evidence = Column(JSON, nullable=False, default=list)
    measured_at = Column(DateTime, nullable=False, default=utcnow)


class RewardScore(Base):
    __tablename__ = "reward_scores"

    id = Column(Integer, primary_key=True, autoincrement=True)
    call_id = Column(String(64), ForeignKey("calls.id"), unique=True, nullable=False)
    overall_score = Column(Float, nullable=False)
    parameter_diffs = Column(JSON, nullable=False, default=list)
    computed_at = Column(DateTime, nullable=False, default=utcnow)


class PersonalityObservation(Base):
    __tablename__ = "personality_observations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    call_id = Column(String(64), ForeignKey("calls.id"), unique=True, nullable=False)
    caller_id = Column(String(64), nullable=False, index=True)
    traits = Column(JSON, nullable=False, default=dict)
    confidence = Column(Float, nullable=False)
    observed_at = Column(DateTime, nullable=False, default=utcnow)


class CallTarget(Base):
    __tablename__ = "call_targets"
    __table_args__ = (UniqueConstraint("call_id", "parameter_id", name="uq_call_targets_call_param"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    call_id = Column(String(64), ForeignKey("calls.id"), nullable=False, index=True)
    caller_id = Column(String(64), nullable=False, index=True)
    parameter_id = Column(String(64), nullable=False)
    target_value = Column(Float, nullable=False)
    confidence = Column(Float, nullable=False)
    source_spec = Column(String(200), nullable=True)
    reasoning = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


# =============================================================================
# Caller-level aggregates
# =============================================================================

class BehaviorTarget(Base):
    __tablename__ = "behavior_targets"
    __table_args__ = (UniqueConstraint("parameter_id", "scope", name="uq_behavior_targets_param_scope"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    parameter_id = Column(String(64), nullable=False)
    scope = Column(String(16), nullable=False, default="SYSTEM")
    target_value = Column(Float, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)


class CallerPersonality(Base):
    __tablename__ = "caller_personalities"

    id = Column(Integer, primary_key=True, autoincrement=True)
    caller_id = Column(String(64), unique=True, nullable=False)
    traits = Column(JSON, nullable=False, default=dict)
    confidence_score = Column(Float, nullable=False)
    observations_used = Column(Integer, nullable=False, default=0)
    decay_half_life = Column(Float, nullable=False)
    last_aggregated_at = Column(DateTime, nullable=False, default=utcnow)


class CallerPersonalityProfile(Base):
    __tablename__ = "caller_personality_profiles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    caller_id = Column(String(64), unique=True, nullable=False)
    parameter_values = Column(JSON, nullable=False, default=dict)
    calls_used = Column(Integer, nullable=False, default=0)
    last_updated_at = Column(DateTime, nullable=False, default=utcnow)


class CallerProfileValue(Base):
    __tablename__ = "caller_profile_values"
    __table_args__ = (UniqueConstraint("caller_id", "key", name="uq_caller_profile_values_caller_key"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    caller_id = Column(String(64), nullable=False, index=True)
    key = Column(String(200), nullable=False)
    value = Column(JSON, nullable=True)
    confidence = Column(Float, nullable=False)
    source_spec = Column(String(200), nullable=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow)


class CallerTarget(Base):
    __tablename__ = "caller_targets"
    __table_args__ = (UniqueConstraint("caller_id", "parameter_id", name="uq_caller_targets_caller_param"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    caller_id = Column(String(64), nullable=False, index=True)
    parameter_id = Column(String(64), nullable=False)
    target_value = Column(Float, nullable=False)
    confidence = Column(Float, nullable=False)
    calls_used = Column(Integer, nullable=False, default=0)
    last_updated_at = Column(DateTime, nullable=False, default=utcnow)


class ComposedPrompt(Base):
    __tablename__ = "composed_prompts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    caller_id = Column(String(64), nullable=False, index=True)
    call_id = Column(String(64), nullable=True)
    prompt = Column(Text, nullable=False)
    sections = Column(JSON, nullable=False, default=list)
    status = Column(String(16), nullable=False, default="active")
    composed_at = Column(DateTime, nullable=False, default=utcnow)
