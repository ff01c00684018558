"""
Error types for the estimation core.

Stage failures are recoverable: the pipeline catches them, records them and
degrades to a lower-confidence estimate instead of blocking task creation.
A missing bucket is never an error; the store returns None.
"""


class FocusFlowError(Exception):
    """Base class for estimation core errors."""


class GeneratorUnavailable(FocusFlowError):
    """The generative backend cannot be used at all (no key, no package, offline).

    The session skips AI enrichment entirely and proceeds with a
    population-default estimate.
    """

    def __init__(self, reason: str = "AI features are currently unavailable."):
        self.reason = reason
        super().__init__(reason)


class GeneratorCallFailed(FocusFlowError):
    """A single generator call failed. Not retried automatically."""

    def __init__(self, stage: str, message: str):
        self.stage = stage
        self.message = message
        super().__init__(f"{stage} failed: {message}")


class InvalidBaseline(FocusFlowError):
    """baseline_minutes <= 0, so no correction ratio can be computed."""

    def __init__(self, baseline_minutes: float):
        self.baseline_minutes = baseline_minutes
        super().__init__(f"Invalid baseline minutes: {baseline_minutes}")


class InvalidTransition(FocusFlowError):
    """A pipeline entry point was called in a state that does not allow it."""

    def __init__(self, action: str, state: str):
        self.action = action
        self.state = state
        super().__init__(f"Cannot {action} while pipeline is {state}")


__all__ = [
    "FocusFlowError",
    "GeneratorUnavailable",
    "GeneratorCallFailed",
    "InvalidBaseline",
    "InvalidTransition",
]
