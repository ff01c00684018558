"""
Tool: Bucket Key Resolver
Purpose: Map task attributes to the ordered list of correction buckets

Every task lands in five buckets, from most specific to global:

    1. engagement|duration|category|complexity
    2. engagement|duration|category|*
    3. engagement|duration|*|*
    4. *|duration|*|*
    5. *|*|*|*

Duration is the axis that transfers best between tasks (pace habits at a
similar time scale generalize across categories), engagement is second.
Changing this order changes what the store has learned, so it is versioned
by BUCKET_SCHEME_VERSION.

Usage:
    from focusflow.learning.bucket_keys import TaskAttributes, resolve_bucket_keys

    attrs = TaskAttributes.from_classification(
        engagement="dreaded", complexity_score=6, category="admin", baseline_minutes=45
    )
    resolve_bucket_keys(attrs)[0]   # "dreaded|30-60|admin|moderate"
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple

from . import COMPLEXITY_TIERS, DURATION_BANDS, ENGAGEMENT_LEVELS, TASK_CATEGORIES

BUCKET_SCHEME_VERSION = 1

WILDCARD = "*"
KEY_SEPARATOR = "|"

# How each fallback level is described to the user
FALLBACK_LEVEL_NAMES = (
    "tasks just like this one",
    "similar tasks in this category",
    "tasks that feel like this one",
    "tasks of a similar length",
    "all your tasks",
)


@dataclass(frozen=True)
class TaskAttributes:
    """Read-only inputs to estimation for one task."""

    engagement: str
    duration_bucket: str
    category: str
    complexity_tier: str
    baseline_minutes: float

    def __post_init__(self):
        if self.engagement not in ENGAGEMENT_LEVELS:
            raise ValueError(f"Invalid engagement level. Must be one of: {ENGAGEMENT_LEVELS}")
        if self.duration_bucket not in [band[0] for band in DURATION_BANDS]:
            raise ValueError(f"Invalid duration bucket: {self.duration_bucket}")
        if self.category not in TASK_CATEGORIES:
            raise ValueError(f"Invalid category. Must be one of: {TASK_CATEGORIES}")
        if self.complexity_tier not in [tier[0] for tier in COMPLEXITY_TIERS]:
            raise ValueError(f"Invalid complexity tier: {self.complexity_tier}")

    @classmethod
    def from_classification(
        cls,
        engagement: str,
        complexity_score: int,
        category: str,
        baseline_minutes: float,
    ) -> "TaskAttributes":
        """Build attributes from a classification result plus the baseline."""
        return cls(
            engagement=engagement,
            duration_bucket=duration_bucket_for(baseline_minutes),
            category=category,
            complexity_tier=complexity_tier_for(complexity_score),
            baseline_minutes=baseline_minutes,
        )

    def to_dict(self) -> dict:
        return {
            "engagement": self.engagement,
            "duration_bucket": self.duration_bucket,
            "category": self.category,
            "complexity_tier": self.complexity_tier,
            "baseline_minutes": self.baseline_minutes,
        }


def duration_bucket_for(minutes: float) -> str:
    """Discretize baseline minutes into a duration band label."""
    # Bands are ordered, so the first upper bound above minutes wins
    for label, _lower, upper in DURATION_BANDS:
        if upper is None or minutes < upper:
            return label
    return DURATION_BANDS[-1][0]


def complexity_tier_for(score: int) -> str:
    """Discretize a 1-10 complexity score; out-of-range scores are clamped."""
    clamped = max(1, min(10, int(score)))
    for tier, low, high in COMPLEXITY_TIERS:
        if low <= clamped <= high:
            return tier
    return COMPLEXITY_TIERS[-1][0]


def make_bucket_key(
    engagement: Optional[str] = None,
    duration_bucket: Optional[str] = None,
    category: Optional[str] = None,
    complexity_tier: Optional[str] = None,
) -> str:
    """Compose a bucket key; None on any axis becomes the wildcard."""
    parts = (engagement, duration_bucket, category, complexity_tier)
    return KEY_SEPARATOR.join(part if part is not None else WILDCARD for part in parts)


def parse_bucket_key(key: str) -> Tuple[Optional[str], Optional[str], Optional[str], Optional[str]]:
    """Split a bucket key back into its four axes (wildcards become None)."""
    parts = key.split(KEY_SEPARATOR)
    if len(parts) != 4:
        raise ValueError(f"Malformed bucket key: {key!r}")
    engagement, duration, category, complexity = (None if p == WILDCARD else p for p in parts)
    return engagement, duration, category, complexity


def resolve_bucket_keys(attrs: TaskAttributes) -> List[str]:
    """Return the five bucket keys for a task, most specific first."""
    return [
        make_bucket_key(attrs.engagement, attrs.duration_bucket, attrs.category, attrs.complexity_tier),
        make_bucket_key(attrs.engagement, attrs.duration_bucket, attrs.category),
        make_bucket_key(attrs.engagement, attrs.duration_bucket),
        make_bucket_key(duration_bucket=attrs.duration_bucket),
        make_bucket_key(),
    ]
