"""Time-decayed aggregation shared by personality and caller-target aggregation.

A sample's weight is ``confidence * exp(-ln2 * age_days / half_life)``: a
sample one half-life old counts half as much as a fresh one with the same
confidence. The aggregate is the weighted mean of the values.
"""

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from callsense.models import AggregationSettings
from callsense.storage.tables import utcnow

SECONDS_PER_DAY = 86400.0


@dataclass(frozen=True)
class Sample:
    """One observation feeding an aggregate."""

    value: float
    confidence: float
    timestamp: datetime


def decay_weight(age_days: float, half_life_days: float) -> float:
    """Exponential decay factor for a sample ``age_days`` old."""
    if half_life_days <= 0:
        raise ValueError("half_life_days must be positive")
    return math.exp(-math.log(2) * age_days / half_life_days)


def sample_weight(sample: Sample, half_life_days: float, now: datetime) -> float:
    age_days = (now - sample.timestamp).total_seconds() / SECONDS_PER_DAY
    return sample.confidence * decay_weight(age_days, half_life_days)


def time_decayed_average(
    samples: Iterable[Sample],
    half_life_days: float,
    now: Optional[datetime] = None,
) -> float:
    """Confidence- and recency-weighted mean of sample values.

    Args:
        samples: Observations to aggregate.
        half_life_days: Age at which a sample's weight halves.
        now: Reference time. Defaults to the current UTC time.

    Returns:
        The weighted mean, or 0.0 when the total weight is zero.
    """
    now = now or utcnow()
    weighted_sum = 0.0
    total_weight = 0.0
    for sample in samples:
        weight = sample_weight(sample, half_life_days, now)
        weighted_sum += sample.value * weight
        total_weight += weight
    if total_weight <= 0:
        return 0.0
    return weighted_sum / total_weight


def aggregated_confidence(sample_count: int, settings: AggregationSettings) -> float:
    """Confidence of a caller-level aggregate: grows per sample, capped."""
    return min(
        settings.max_aggregated_confidence,
        settings.confidence_growth_base + sample_count * settings.confidence_growth_per_call,
    )


def aggregate_by_key(
    samples: Iterable[tuple[str, Sample]],
    half_life_days: float,
    now: Optional[datetime] = None,
) -> dict[str, tuple[float, int]]:
    """Group ``(key, sample)`` pairs and aggregate each group.

    Groups whose total weight is zero are left out.

    Returns:
        key -> (aggregate value, sample count)
    """
    now = now or utcnow()
    groups: dict[str, list[Sample]] = {}
    for key, sample in samples:
        groups.setdefault(key, []).append(sample)

    result: dict[str, tuple[float, int]] = {}
    for key, group in groups.items():
        if sum(sample_weight(s, half_life_days, now) for s in group) <= 0:
            continue
        result[key] = (time_decayed_average(group, half_life_days, now), len(group))
    return result
