"""
Tool: Bayesian Estimator
Purpose: Personalized correction factor with shrinkage and confidence

For a bucket with n observations, prior mean m0 and prior variance v0:

    observed mean   m  = sum_of_ratios / n
    weight          w  = n / (n + 1/v0)
    posterior mean  mu = w * m + (1 - w) * m0

With n == 0 the posterior is the prior exactly (no formula evaluated).

Lookup walks the five bucket keys from most to least specific and uses the
first bucket with at least `minimum_observations` completions. If none
qualifies, the engagement tag's population default is used with very_low
confidence. Completion writes the observed ratio to all five buckets so
specific and general buckets learn together.

Time decay (weighting recent completions more) is not applied; every
observation counts equally.

Usage:
    from focusflow.learning.bayesian import BayesianEstimator

    estimator = BayesianEstimator(store, minimum_observations=3)
    estimate = estimator.estimate(attrs)
    estimator.record_completion(attrs, actual_minutes=52)
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from focusflow.errors import InvalidBaseline
from focusflow.logging_config import get_logger

from . import CONFIDENCE_LABELS, CONFIDENCE_LEVELS, ENGAGEMENT_DEFAULTS
from .bucket_keys import FALLBACK_LEVEL_NAMES, TaskAttributes, resolve_bucket_keys
from .correction_store import CorrectionFactor, CorrectionStore
from .ranges import calculate_range, format_range

logger = get_logger(__name__)

DEFAULT_MINIMUM_OBSERVATIONS = 3

# (inclusive lower bound on observation count, level), checked top-down
CONFIDENCE_THRESHOLDS = (
    (20, "high"),
    (12, "good"),
    (6, "medium"),
    (3, "low"),
    (0, "very_low"),
)


def posterior_mean(factor: CorrectionFactor) -> float:
    """Shrinkage-adjusted correction factor for one bucket."""
    n = factor.observation_count
    if n == 0:
        return factor.prior_mean

    observed_mean = factor.sum_of_ratios / n
    weight = n / (n + 1.0 / factor.prior_variance)
    return weight * observed_mean + (1.0 - weight) * factor.prior_mean


def confidence_for_count(observation_count: int) -> str:
    """Map an observation count to a confidence level (fixed table)."""
    for threshold, level in CONFIDENCE_THRESHOLDS:
        if observation_count >= threshold:
            return level
    return "very_low"


def degrade_confidence(level: str) -> str:
    """One level lower, used when a pipeline stage fell back to defaults."""
    index = CONFIDENCE_LEVELS.index(level)
    return CONFIDENCE_LEVELS[max(0, index - 1)]


def observed_ratio(baseline_minutes: float, actual_minutes: float) -> float:
    """actual / baseline. Raises InvalidBaseline instead of dividing by zero."""
    if baseline_minutes is None or baseline_minutes <= 0:
        raise InvalidBaseline(baseline_minutes)
    return actual_minutes / baseline_minutes


@dataclass
class CorrectionLookup:
    """Which correction factor applies to a task, and how much to trust it."""

    correction_factor: float
    confidence: str
    bucket_key: Optional[str]
    fallback_level: Optional[int]
    observation_count: int

    @property
    def source_description(self) -> str:
        if self.bucket_key is None:
            return "typical for tasks like this"
        return f"based on {FALLBACK_LEVEL_NAMES[self.fallback_level]}"


@dataclass
class PersonalizedEstimate:
    """A displayable estimate for one task."""

    baseline_minutes: float
    estimate_minutes: float
    low: int
    high: int
    confidence: str
    correction_factor: float
    source_description: str
    bucket_key: Optional[str] = None
    observation_count: int = 0
    degraded: bool = False
    notes: List[str] = field(default_factory=list)

    @property
    def confidence_label(self) -> str:
        return CONFIDENCE_LABELS[self.confidence]

    @property
    def display_range(self) -> str:
        return format_range(self.low, self.high)

    @property
    def scale_factor(self) -> float:
        """Predicted / baseline. Below 1 means this user is faster than the AI thinks."""
        if self.baseline_minutes <= 0:
            return 1.0
        return self.estimate_minutes / self.baseline_minutes

    def scale_step(self, step_minutes: float) -> int:
        """Personalize one step's baseline minutes with the task's scale factor."""
        return max(1, round(step_minutes * self.scale_factor))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "baseline_minutes": self.baseline_minutes,
            "estimate_minutes": round(self.estimate_minutes, 1),
            "low": self.low,
            "high": self.high,
            "display_range": self.display_range,
            "confidence": self.confidence,
            "confidence_label": self.confidence_label,
            "source_description": self.source_description,
            "correction_factor": round(self.correction_factor, 4),
            "bucket_key": self.bucket_key,
            "observation_count": self.observation_count,
            "degraded": self.degraded,
            "notes": list(self.notes),
        }


class BayesianEstimator:
    """Personalized estimator over an injected CorrectionStore.

    Args:
        store: Shared correction store
        minimum_observations: Buckets thinner than this are skipped during lookup
    """

    def __init__(
        self,
        store: CorrectionStore,
        minimum_observations: int = DEFAULT_MINIMUM_OBSERVATIONS,
    ):
        if minimum_observations < 1:
            raise ValueError("minimum_observations must be at least 1")
        self.store = store
        self.minimum_observations = minimum_observations

    def lookup(self, attrs: TaskAttributes) -> CorrectionLookup:
        """Find the most specific bucket with enough data, else the population default."""
        for level, key in enumerate(resolve_bucket_keys(attrs)):
            factor = self.store.fetch(key)
            if factor is None or factor.observation_count < self.minimum_observations:
                continue
            return CorrectionLookup(
                correction_factor=posterior_mean(factor),
                confidence=confidence_for_count(factor.observation_count),
                bucket_key=key,
                fallback_level=level,
                observation_count=factor.observation_count,
            )

        prior_mean, _ = ENGAGEMENT_DEFAULTS[attrs.engagement]
        return CorrectionLookup(
            correction_factor=prior_mean,
            confidence="very_low",
            bucket_key=None,
            fallback_level=None,
            observation_count=0,
        )

    def estimate(self, attrs: TaskAttributes, degraded: bool = False) -> PersonalizedEstimate:
        """
        Produce a displayable estimate for a task.

        Args:
            attrs: Task attributes, including the baseline minutes
            degraded: A pipeline stage fell back to defaults; lower confidence one level

        Returns:
            PersonalizedEstimate with range and confidence
        """
        found = self.lookup(attrs)
        confidence = degrade_confidence(found.confidence) if degraded else found.confidence
        point = attrs.baseline_minutes * found.correction_factor
        low, high = calculate_range(point, confidence)

        return PersonalizedEstimate(
            baseline_minutes=attrs.baseline_minutes,
            estimate_minutes=point,
            low=low,
            high=high,
            confidence=confidence,
            correction_factor=found.correction_factor,
            source_description=found.source_description,
            bucket_key=found.bucket_key,
            observation_count=found.observation_count,
            degraded=degraded,
        )

    def record_completion(self, attrs: TaskAttributes, actual_minutes: float) -> bool:
        """
        Write one completed task back into every fallback bucket.

        Args:
            attrs: Attributes the task was committed with
            actual_minutes: Tracked or user-confirmed elapsed time

        Returns:
            True if the observation was recorded, False if it was skipped
        """
        try:
            ratio = observed_ratio(attrs.baseline_minutes, actual_minutes)
        except InvalidBaseline as e:
            logger.warning("skipping correction write-back", reason=str(e))
            return False

        if actual_minutes <= 0:
            logger.warning("skipping correction write-back", actual_minutes=actual_minutes)
            return False

        keys = resolve_bucket_keys(attrs)
        for key in keys:
            self.store.add_observation(key, ratio)

        logger.info("correction recorded", ratio=round(ratio, 3), bucket_key=keys[0])
        return True

    def population_estimate(self, engagement: str, baseline_minutes: float) -> PersonalizedEstimate:
        """Estimate from the engagement default alone, ignoring history."""
        prior_mean, _ = ENGAGEMENT_DEFAULTS[engagement]
        point = baseline_minutes * prior_mean
        low, high = calculate_range(point, "very_low")
        return PersonalizedEstimate(
            baseline_minutes=baseline_minutes,
            estimate_minutes=point,
            low=low,
            high=high,
            confidence="very_low",
            correction_factor=prior_mean,
            source_description="typical for tasks like this",
            degraded=True,
        )
