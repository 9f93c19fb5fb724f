"""
Storage service used by the pipeline.

Design Decisions:
- Every write is an upsert on the row's natural key and commits on its own
- Sessions are short-lived; returned rows stay readable after commit
- Read-modify-write races between concurrent runs for the same caller are
  not guarded against here
"""

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterable, Iterator, Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from callsense.models.enums import OutputType, SpecScope
from callsense.storage.database import create_db_engine, create_session_factory, init_db
from callsense.storage.tables import (
    BehaviorMeasurement,
    BehaviorTarget,
    Call,
    CallerMemory,
    CallerPersonality,
    CallerPersonalityProfile,
    CallerProfileValue,
    CallerTarget,
    CallScore,
    CallTarget,
    ComposedPrompt,
    Parameter,
    PersonalityObservation,
    RewardScore,
    RuleSpec,
    utcnow,
)

logger = structlog.get_logger(__name__)


def _upsert(session: Session, model, keys: dict[str, Any], values: dict[str, Any]):
    """Update the row matching ``keys`` or insert a new one. Returns (row, created)."""
    row = session.execute(select(model).filter_by(**keys)).scalar_one_or_none()
    created = row is None
    if created:
        row = model(**keys, **values)
        session.add(row)
    else:
        for name, value in values.items():
            setattr(row, name, value)
    return row, created


class PipelineStore:
    """Point lookups, counts, keyed upserts and ordered scans over the pipeline tables."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @classmethod
    def from_url(cls, database_url: str, create_tables: bool = True) -> "PipelineStore":
        """Build a store for a database URL, creating tables if asked."""
        engine = create_db_engine(database_url)
        if create_tables:
            init_db(engine)
        return cls(create_session_factory(engine))

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Session that commits on success and rolls back on error."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # =========================================================================
    # Calls, parameters, specs
    # =========================================================================

    def add_call(
        self,
        call_id: str,
        caller_id: str,
        transcript: str,
        created_at: Optional[datetime] = None,
    ) -> Call:
        with self.session() as s:
            row, _ = _upsert(
                s, Call, {"id": call_id},
                {"caller_id": caller_id, "transcript": transcript, "created_at": created_at or utcnow()},
            )
            return row

    def get_call(self, call_id: str) -> Optional[Call]:
        with self.session() as s:
            return s.get(Call, call_id)

    def calls_for_caller(self, caller_id: str) -> list[Call]:
        """Calls of a caller, oldest first."""
        with self.session() as s:
            stmt = select(Call).where(Call.caller_id == caller_id).order_by(Call.created_at, Call.id)
            return list(s.execute(stmt).scalars())

    def previous_call(self, caller_id: str, call: Call) -> Optional[Call]:
        """The caller's call immediately before ``call``, if any."""
        with self.session() as s:
            stmt = (
                select(Call)
                .where(Call.caller_id == caller_id, Call.created_at < call.created_at)
                .order_by(Call.created_at.desc(), Call.id.desc())
                .limit(1)
            )
            return s.execute(stmt).scalar_one_or_none()

    def add_parameter(self, parameter_id: str, name: str, description: str = "") -> Parameter:
        with self.session() as s:
            row, _ = _upsert(s, Parameter, {"id": parameter_id}, {"name": name, "description": description})
            return row

    def parameters(self, parameter_ids: Optional[Iterable[str]] = None) -> dict[str, Parameter]:
        """Parameter catalogue keyed by id, optionally restricted to ``parameter_ids``."""
        with self.session() as s:
            stmt = select(Parameter)
            if parameter_ids is not None:
                stmt = stmt.where(Parameter.id.in_(list(parameter_ids)))
            return {p.id: p for p in s.execute(stmt).scalars()}

    def add_spec(
        self,
        slug: str,
        output_type: OutputType,
        config: Optional[dict[str, Any]] = None,
        *,
        name: Optional[str] = None,
        scope: SpecScope = SpecScope.DOMAIN,
        is_active: bool = True,
        depends_on: Optional[list[str]] = None,
    ) -> RuleSpec:
        with self.session() as s:
            row, _ = _upsert(
                s, RuleSpec, {"slug": slug},
                {
                    "name": name or slug,
                    "output_type": OutputType(output_type).value,
                    "scope": SpecScope(scope).value,
                    "is_active": is_active,
                    "config": config or {},
                    "depends_on": depends_on or [],
                },
            )
            return row

    def active_specs(
        self,
        output_types: Optional[Iterable[OutputType]] = None,
        scope: Optional[SpecScope] = None,
    ) -> list[RuleSpec]:
        """Active rule specs, optionally filtered by output type and scope, in creation order."""
        with self.session() as s:
            stmt = select(RuleSpec).where(RuleSpec.is_active.is_(True))
            if output_types is not None:
                stmt = stmt.where(RuleSpec.output_type.in_([OutputType(t).value for t in output_types]))
            if scope is not None:
                stmt = stmt.where(RuleSpec.scope == SpecScope(scope).value)
            return list(s.execute(stmt.order_by(RuleSpec.id)).scalars())

    def first_active_spec(self, output_type: OutputType, scope: Optional[SpecScope] = None) -> Optional[RuleSpec]:
        specs = self.active_specs([output_type], scope)
        return specs[0] if specs else None

    # =========================================================================
    # Caller scores and memories (EXTRACT)
    # =========================================================================

    def count_scores(self, call_id: str) -> int:
        with self.session() as s:
            return s.scalar(select(func.count()).select_from(CallScore).where(CallScore.call_id == call_id))

    def upsert_call_score(
        self,
        call_id: str,
        caller_id: str,
        parameter_id: str,
        score: float,
        confidence: float,
        scored_by: str,
    ) -> bool:
        """Write one score. Returns True if a new row was created."""
        with self.session() as s:
            _, created = _upsert(
                s, CallScore, {"call_id": call_id, "parameter_id": parameter_id},
                {
                    "caller_id": caller_id,
                    "score": score,
                    "confidence": confidence,
                    "scored_by": scored_by,
                    "scored_at": utcnow(),
                },
            )
            return created

    def scores_for_call(self, call_id: str) -> list[CallScore]:
        with self.session() as s:
            stmt = select(CallScore).where(CallScore.call_id == call_id).order_by(CallScore.parameter_id)
            return list(s.execute(stmt).scalars())

    def scores_for_caller(self, caller_id: str) -> list[tuple[CallScore, datetime]]:
        """All scores of a caller with their call's timestamp, newest call first."""
        with self.session() as s:
            stmt = (
                select(CallScore, Call.created_at)
                .join(Call, Call.id == CallScore.call_id)
                .where(CallScore.caller_id == caller_id)
                .order_by(Call.created_at.desc(), CallScore.scored_at.desc(), CallScore.id.desc())
            )
            return [(score, created_at) for score, created_at in s.execute(stmt).all()]

    def recent_scores(self, caller_id: str, parameter_id: str, limit: int) -> list[CallScore]:
        """Latest scores of one parameter for a caller, newest first."""
        with self.session() as s:
            stmt = (
                select(CallScore)
                .where(CallScore.caller_id == caller_id, CallScore.parameter_id == parameter_id)
                .order_by(CallScore.scored_at.desc(), CallScore.id.desc())
                .limit(limit)
            )
            return list(s.execute(stmt).scalars())

    def add_memory(
        self,
        caller_id: str,
        call_id: str,
        category: str,
        key: str,
        value: str,
        confidence: float,
        extracted_by: str,
    ) -> bool:
        """Write one caller fact, keyed by (call, category, key). Returns True if new."""
        with self.session() as s:
            _, created = _upsert(
                s, CallerMemory, {"call_id": call_id, "category": category, "key": key},
                {
                    "caller_id": caller_id,
                    "value": value,
                    "confidence": confidence,
                    "extracted_by": extracted_by,
                    "extracted_at": utcnow(),
                },
            )
            return created

    def memories_for_caller(self, caller_id: str, limit: Optional[int] = None) -> list[CallerMemory]:
        """Caller facts, most confident and most recent first."""
        with self.session() as s:
            stmt = (
                select(CallerMemory)
                .where(CallerMemory.caller_id == caller_id)
                .order_by(CallerMemory.confidence.desc(), CallerMemory.extracted_at.desc(), CallerMemory.id)
            )
            if limit is not None:
                stmt = stmt.limit(limit)
            return list(s.execute(stmt).scalars())

    # =========================================================================
    # Agent measurements and reward (SCORE_AGENT, REWARD)
    # =========================================================================

    def count_measurements(self, call_id: str) -> int:
        with self.session() as s:
            return s.scalar(
                select(func.count()).select_from(BehaviorMeasurement).where(BehaviorMeasurement.call_id == call_id)
            )

    def upsert_measurement(
        self,
        call_id: str,
        parameter_id: str,
        actual_value: float,
        confidence: float,
        evidence: Optional[list[str]] = None,
    ) -> bool:
        with self.session() as s:
            _, created = _upsert(
                s, BehaviorMeasurement, {"call_id": call_id, "parameter_id": parameter_id},
                {
                    "actual_value": actual_value,
                    "confidence": confidence,
                    "evidence": evidence or [],
                    "measured_at": utcnow(),
                },
            )
            return created

    def measurements_for_call(self, call_id: str) -> list[BehaviorMeasurement]:
        with self.session() as s:
            stmt = (
                select(BehaviorMeasurement)
                .where(BehaviorMeasurement.call_id == call_id)
                .order_by(BehaviorMeasurement.parameter_id)
            )
            return list(s.execute(stmt).scalars())

    def set_behavior_target(
        self,
        parameter_id: str,
        target_value: float,
        scope: SpecScope = SpecScope.SYSTEM,
    ) -> BehaviorTarget:
        with self.session() as s:
            row, _ = _upsert(
                s, BehaviorTarget, {"parameter_id": parameter_id, "scope": SpecScope(scope).value},
                {"target_value": target_value, "is_active": True},
            )
            return row

    def system_targets(self, parameter_ids: Iterable[str]) -> dict[str, float]:
        """Active system-level target values keyed by parameter id."""
        with self.session() as s:
            stmt = select(BehaviorTarget).where(
                BehaviorTarget.parameter_id.in_(list(parameter_ids)),
                BehaviorTarget.scope == SpecScope.SYSTEM.value,
                BehaviorTarget.is_active.is_(True),
            )
            return {t.parameter_id: t.target_value for t in s.execute(stmt).scalars()}

    def upsert_reward(self, call_id: str, overall_score: float, parameter_diffs: list[dict[str, Any]]) -> RewardScore:
        with self.session() as s:
            row, _ = _upsert(
                s, RewardScore, {"call_id": call_id},
                {"overall_score": overall_score, "parameter_diffs": parameter_diffs, "computed_at": utcnow()},
            )
            return row

    def get_reward(self, call_id: str) -> Optional[RewardScore]:
        with self.session() as s:
            return s.execute(select(RewardScore).where(RewardScore.call_id == call_id)).scalar_one_or_none()

    # =========================================================================
    # Personality and profiles (AGGREGATE)
    # =========================================================================

    def upsert_personality_observation(
        self,
        call_id: str,
        caller_id: str,
        traits: dict[str, float],
        confidence: float,
        observed_at: Optional[datetime] = None,
    ) -> PersonalityObservation:
        with self.session() as s:
            row, _ = _upsert(
                s, PersonalityObservation, {"call_id": call_id},
                {
                    "caller_id": caller_id,
                    "traits": traits,
                    "confidence": confidence,
                    "observed_at": observed_at or utcnow(),
                },
            )
            return row

    def personality_observations(self, caller_id: str) -> list[PersonalityObservation]:
        """Per-call trait snapshots of a caller, newest first."""
        with self.session() as s:
            stmt = (
                select(PersonalityObservation)
                .where(PersonalityObservation.caller_id == caller_id)
                .order_by(PersonalityObservation.observed_at.desc(), PersonalityObservation.id.desc())
            )
            return list(s.execute(stmt).scalars())

    def upsert_caller_personality(
        self,
        caller_id: str,
        traits: dict[str, float],
        confidence_score: float,
        observations_used: int,
        decay_half_life: float,
    ) -> CallerPersonality:
        with self.session() as s:
            row, _ = _upsert(
                s, CallerPersonality, {"caller_id": caller_id},
                {
                    "traits": traits,
                    "confidence_score": confidence_score,
                    "observations_used": observations_used,
                    "decay_half_life": decay_half_life,
                    "last_aggregated_at": utcnow(),
                },
            )
            return row

    def get_caller_personality(self, caller_id: str) -> Optional[CallerPersonality]:
        with self.session() as s:
            stmt = select(CallerPersonality).where(CallerPersonality.caller_id == caller_id)
            return s.execute(stmt).scalar_one_or_none()

    def upsert_personality_profile(
        self,
        caller_id: str,
        parameter_values: dict[str, float],
        calls_used: int,
    ) -> CallerPersonalityProfile:
        with self.session() as s:
            row, _ = _upsert(
                s, CallerPersonalityProfile, {"caller_id": caller_id},
                {"parameter_values": parameter_values, "calls_used": calls_used, "last_updated_at": utcnow()},
            )
            return row

    def get_personality_profile(self, caller_id: str) -> Optional[CallerPersonalityProfile]:
        with self.session() as s:
            stmt = select(CallerPersonalityProfile).where(CallerPersonalityProfile.caller_id == caller_id)
            return s.execute(stmt).scalar_one_or_none()

    def upsert_profile_value(
        self,
        caller_id: str,
        key: str,
        value: Any,
        confidence: float,
        source_spec: Optional[str] = None,
    ) -> bool:
        with self.session() as s:
            _, created = _upsert(
                s, CallerProfileValue, {"caller_id": caller_id, "key": key},
                {"value": value, "confidence": confidence, "source_spec": source_spec, "updated_at": utcnow()},
            )
            return created

    def profile_values(self, caller_id: str) -> dict[str, Any]:
        with self.session() as s:
            stmt = select(CallerProfileValue).where(CallerProfileValue.caller_id == caller_id)
            return {row.key: row.value for row in s.execute(stmt).scalars()}

    # =========================================================================
    # Targets (ADAPT, SUPERVISE)
    # =========================================================================

    def count_call_targets(self, call_id: str) -> int:
        with self.session() as s:
            return s.scalar(select(func.count()).select_from(CallTarget).where(CallTarget.call_id == call_id))

    def upsert_call_target(
        self,
        call_id: str,
        caller_id: str,
        parameter_id: str,
        target_value: float,
        confidence: float,
        source_spec: str,
        reasoning: str = "",
    ) -> bool:
        with self.session() as s:
            _, created = _upsert(
                s, CallTarget, {"call_id": call_id, "parameter_id": parameter_id},
                {
                    "caller_id": caller_id,
                    "target_value": target_value,
                    "confidence": confidence,
                    "source_spec": source_spec,
                    "reasoning": reasoning,
                },
            )
            return created

    def call_targets(self, call_id: str) -> list[CallTarget]:
        with self.session() as s:
            stmt = select(CallTarget).where(CallTarget.call_id == call_id).order_by(CallTarget.parameter_id)
            return list(s.execute(stmt).scalars())

    def update_call_target(self, target_id: int, target_value: float, reasoning: str) -> None:
        with self.session() as s:
            row = s.get(CallTarget, target_id)
            if row is not None:
                row.target_value = target_value
                row.reasoning = reasoning

    def call_targets_for_caller(self, caller_id: str) -> list[tuple[CallTarget, datetime]]:
        """All call targets of a caller with their call's timestamp, newest call first."""
        with self.session() as s:
            stmt = (
                select(CallTarget, Call.created_at)
                .join(Call, Call.id == CallTarget.call_id)
                .where(CallTarget.caller_id == caller_id)
                .order_by(Call.created_at.desc(), CallTarget.id.desc())
            )
            return [(target, created_at) for target, created_at in s.execute(stmt).all()]

    def upsert_caller_target(
        self,
        caller_id: str,
        parameter_id: str,
        target_value: float,
        confidence: float,
        calls_used: int,
    ) -> bool:
        with self.session() as s:
            _, created = _upsert(
                s, CallerTarget, {"caller_id": caller_id, "parameter_id": parameter_id},
                {
                    "target_value": target_value,
                    "confidence": confidence,
                    "calls_used": calls_used,
                    "last_updated_at": utcnow(),
                },
            )
            return created

    def caller_targets(self, caller_id: str) -> list[CallerTarget]:
        with self.session() as s:
            stmt = select(CallerTarget).where(CallerTarget.caller_id == caller_id).order_by(CallerTarget.parameter_id)
            return list(s.execute(stmt).scalars())

    # =========================================================================
    # Composed prompts (COMPOSE)
    # =========================================================================

    def save_composed_prompt(
        self,
        caller_id: str,
        call_id: Optional[str],
        prompt: str,
        sections: list[str],
    ) -> ComposedPrompt:
        """Store a prompt as the caller's active one, superseding earlier prompts."""
        with self.session() as s:
            previous = s.execute(
                select(ComposedPrompt).where(
                    ComposedPrompt.caller_id == caller_id,
                    ComposedPrompt.status == "active",
                )
            ).scalars()
            for row in previous:
                row.status = "superseded"
            row = ComposedPrompt(caller_id=caller_id, call_id=call_id, prompt=prompt, sections=sections)
            s.add(row)
            s.flush()
            logger.debug("composed_prompt_saved", caller_id=caller_id, prompt_id=row.id)
            return row

    def active_prompt(self, caller_id: str) -> Optional[ComposedPrompt]:
        with self.session() as s:
            stmt = (
                select(ComposedPrompt)
                .where(ComposedPrompt.caller_id == caller_id, ComposedPrompt.status == "active")
                .order_by(ComposedPrompt.id.desc())
                .limit(1)
            )
            return s.execute(stmt).scalar_one_or_none()
