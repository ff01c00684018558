"""Learning - Personalized time correction from completion history

Philosophy:
    AI estimates are written for an average person. Nobody is average.
    Every completed task says something about how this user's time really
    works; the estimate should get more personal with every one.

Core Principle:
    Learn a correction factor (actual / baseline) per bucket of similar
    tasks, shrink sparse buckets toward a population prior, and only trust
    a bucket once it has enough observations.

Components:
    bucket_keys.py: Derive the five fallback keys for a task
        - engagement | duration | category | complexity, most specific first
        - Duration is the most transferable axis, engagement second

    correction_store.py: Per-bucket running sums with atomic updates
        - In-memory and SQLite backends
        - Buckets created lazily on first observation

    bayesian.py: Posterior correction factor and confidence
        - Shrinkage toward the engagement prior
        - Fallback search over specificity levels
        - Write-back to every level on completion

    ranges.py: Turn a point estimate into a display range
        - Width driven by confidence; never show a bare number

ADHD Safety Rules:
    1. Always a range, never a false-precision point value
    2. Thin data is said out loud ("rough guess"), not hidden
    3. Missing history is normal, not an error

Database: data/corrections.db
    - correction_factors: One row per bucket key
"""

# Engagement tag -> (prior mean, prior variance) of the actual/baseline ratio.
# Population-level constants, never learned.
ENGAGEMENT_DEFAULTS = {
    "dreaded": (1.6, 0.30),
    "tedious": (1.4, 0.25),
    "neutral": (1.2, 0.20),
    "engaging": (1.1, 0.25),
}

# Seeds buckets whose engagement axis is the wildcard
GLOBAL_DEFAULTS = (1.25, 0.25)

ENGAGEMENT_LEVELS = tuple(ENGAGEMENT_DEFAULTS)

# (label, lower bound inclusive, upper bound exclusive) in baseline minutes
DURATION_BANDS = (
    ("0-15", 0, 15),
    ("15-30", 15, 30),
    ("30-60", 30, 60),
    ("60-90", 60, 90),
    ("90+", 90, None),
)

TASK_CATEGORIES = (
    "cleaning",
    "cooking",
    "organizing",
    "errands",
    "work",
    "self-care",
    "admin",
    "creative",
    "social",
    "other",
)

# (tier, lowest score, highest score) on the 1-10 complexity scale
COMPLEXITY_TIERS = (
    ("simple", 1, 3),
    ("moderate", 4, 6),
    ("complex", 7, 10),
)

# Ordered lowest to highest
CONFIDENCE_LEVELS = ("very_low", "low", "medium", "good", "high")

CONFIDENCE_LABELS = {
    "very_low": "rough guess",
    "low": "based on a few similar tasks",
    "medium": "based on several similar tasks",
    "good": "based on your history",
    "high": "based on lots of your history",
}

__all__ = [
    "ENGAGEMENT_DEFAULTS",
    "GLOBAL_DEFAULTS",
    "ENGAGEMENT_LEVELS",
    "DURATION_BANDS",
    "TASK_CATEGORIES",
    "COMPLEXITY_TIERS",
    "CONFIDENCE_LEVELS",
    "CONFIDENCE_LABELS",
]
