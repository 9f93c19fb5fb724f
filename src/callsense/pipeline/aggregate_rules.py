"""Generic AGGREGATE rule specs.

A spec carries ``aggregationRules`` (top level or inside one of its
``parameters[].config``), plus optional ``windowSize`` (default 5) and
``minimumObservations`` (default 3). Each rule reads the caller's latest
scores of ``sourceParameter`` and writes ``targetProfileKey`` into the
caller's profile values. Methods:

- ``weighted_average``: recency-weighted mean, weight 1/(rank+1)
- ``consensus``: most common score, confidence = share of agreeing scores
- ``threshold_mapping``: weighted mean looked up in ``thresholds`` buckets
  ``{min, max?, value, confidence?}``

Unknown methods and unmatched thresholds produce no update.
"""

from collections import Counter
from typing import Any, Optional, Sequence

import structlog

from callsense.models import AggregateRulesResult, GuardrailsConfig, OutputType
from callsense.storage import PipelineStore

logger = structlog.get_logger(__name__)

DEFAULT_WINDOW_SIZE = 5
DEFAULT_MINIMUM_OBSERVATIONS = 3


def _rule_config(spec_config: Any) -> Optional[dict[str, Any]]:
    """The config block holding ``aggregationRules``, if the spec has one."""
    if not isinstance(spec_config, dict):
        return None
    if isinstance(spec_config.get("aggregationRules"), list):
        return spec_config
    entries = spec_config.get("parameters")
    if not isinstance(entries, list):
        return None
    for entry in entries:
        config = entry.get("config") if isinstance(entry, dict) else None
        if isinstance(config, dict) and isinstance(config.get("aggregationRules"), list):
            return config
    return None


def recency_weighted_average(scores: Sequence[float]) -> float:
    """Mean with weight 1/(rank+1), newest score first."""
    weights = [1.0 / (i + 1) for i in range(len(scores))]
    return sum(s * w for s, w in zip(scores, weights)) / sum(weights)


def consensus(scores: Sequence[float]) -> tuple[float, float]:
    """Most common score (first seen wins ties) and its share of all scores."""
    counts = Counter(round(s, 4) for s in scores)
    value, count = counts.most_common(1)[0]
    return value, count / len(scores)


def threshold_lookup(score: float, thresholds: Sequence[dict[str, Any]]) -> Optional[dict[str, Any]]:
    """First bucket with ``min <= score < max`` (open-ended when max is absent)."""
    for bucket in thresholds:
        low = bucket.get("min", 0.0)
        high = bucket.get("max")
        if score >= low and (high is None or score < high):
            return bucket
    return None


def apply_rule(
    rule: dict[str, Any],
    scores: Sequence[tuple[float, float]],
    default_confidence: float,
) -> Optional[tuple[Any, float]]:
    """Evaluate one rule over (score, confidence) pairs, newest first.

    Returns:
        (value, confidence), or None when the rule yields nothing.
    """
    values = [score for score, _ in scores]
    method = rule.get("method")

    if method == "weighted_average":
        mean_confidence = sum(conf for _, conf in scores) / len(scores)
        return round(recency_weighted_average(values), 4), mean_confidence

    if method == "consensus":
        return consensus(values)

    if method == "threshold_mapping":
        bucket = threshold_lookup(recency_weighted_average(values), rule.get("thresholds") or [])
        if bucket is None:
            return None
        return bucket.get("value"), bucket.get("confidence", default_confidence)

    logger.debug("aggregate_rule_unknown_method", method=method)
    return None


def run_aggregate_rules(
    store: PipelineStore,
    caller_id: str,
    guardrails: GuardrailsConfig,
    specs: Optional[list] = None,
) -> AggregateRulesResult:
    """Run every active AGGREGATE spec with aggregation rules for one caller.

    A failing rule is logged and skipped; a failing spec is recorded in
    ``errors`` and the next spec still runs.
    """
    if specs is None:
        specs = store.active_specs([OutputType.AGGREGATE])

    result = AggregateRulesResult()
    default_confidence = guardrails.confidence_bounds.default

    for spec in specs:
        try:
            config = _rule_config(spec.config)
            if config is None:
                continue

            window = int(config.get("windowSize", DEFAULT_WINDOW_SIZE))
            minimum = int(config.get("minimumObservations", DEFAULT_MINIMUM_OBSERVATIONS))
            result.specs_run += 1

            for rule in config["aggregationRules"]:
                source = rule.get("sourceParameter")
                target_key = rule.get("targetProfileKey")
                if not source or not target_key:
                    continue
                try:
                    rows = store.recent_scores(caller_id, source, window)
                    if len(rows) < minimum:
                        continue
                    outcome = apply_rule(rule, [(r.score, r.confidence) for r in rows], default_confidence)
                    if outcome is None:
                        continue
                    value, confidence = outcome
                    store.upsert_profile_value(caller_id, target_key, value, confidence, source_spec=spec.slug)
                    result.profile_updates += 1
                except Exception as e:
                    logger.warning("aggregate_rule_failed", spec=spec.slug, rule=target_key, error=str(e))
        except Exception as e:
            logger.error("aggregate_spec_failed", spec=spec.slug, error=str(e))
            result.errors.append(f"{spec.slug}: {e}")

    logger.info(
        "aggregate_rules_complete",
        caller_id=caller_id,
        specs_run=result.specs_run,
        profile_updates=result.profile_updates,
    )
    return result
