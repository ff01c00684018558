"""Task Estimation - Break a task down and estimate it without making the user wait

Philosophy:
    The moment after typing a task is the moment attention is most fragile.
    Only the breakdown itself is worth waiting for; everything else
    (classification, per-step estimates) happens while the user is busy
    reading and editing the steps.

Components:
    generator.py: Generator contract, result types, rule-based offline backend
    anthropic_backend.py: Claude-backed generator (structure, classify, estimate)
    pipeline.py: Three-stage asynchronous estimation pipeline per session
    record.py: Committed task record, timer, completion write-back

Pipeline:
    submit_task("clean the garage")      # blocks: structure generation
        -> classification starts in the background
    submit_edit([...])                    # cancels + restarts classification
    confirm_classification()              # starts per-step estimation
    current_estimate()                    # "35-65 min, rough guess"
    finalize()                            # waits (bounded) for the baseline
"""

TERMINAL_STATES = ("committed", "abandoned")

STEP_DIFFICULTIES = ("easy", "medium", "hard")

# How generous per-step estimates should be for this user
USER_PACES = {
    "slower": "Time estimates should be generous - this person prefers extra buffer time",
    "average": "Time estimates should be realistic for an average person",
    "faster": "Time estimates can be tighter - this person works quickly",
}

# Defaults used when classification is unavailable or failed
DEFAULT_CLASSIFICATION = {
    "engagement": "neutral",
    "complexity_score": 5,
    "category": "other",
}

__all__ = [
    "TERMINAL_STATES",
    "STEP_DIFFICULTIES",
    "USER_PACES",
    "DEFAULT_CLASSIFICATION",
]
