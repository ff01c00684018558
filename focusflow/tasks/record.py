"""
Tool: Task Record
Purpose: A committed task, its time tracking, and the completion write-back

baseline_minutes is fixed when the pipeline commits the task and is never
changed afterward; it is the denominator the learning loop divides by.
actual_minutes is set once, on completion, from tracked time (start/pause
cycles accumulate) or from a duration the user confirms.

Usage:
    record = await pipeline.finalize()
    record.start()
    ...
    record.pause()
    complete_task(record, estimator)                 # tracked time
    complete_task(record, estimator, duration_minutes=40)   # user override
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

from focusflow.learning.bayesian import BayesianEstimator, PersonalizedEstimate
from focusflow.learning.bucket_keys import TaskAttributes
from focusflow.logging_config import get_logger

logger = get_logger(__name__)


def generate_id() -> str:
    """Generate a short unique ID."""
    return uuid.uuid4().hex[:12]


@dataclass
class StepRecord:
    description: str
    baseline_minutes: int
    difficulty: str = "medium"
    estimated: bool = True


@dataclass
class TaskRecord:
    """One task as committed by the estimation pipeline."""

    description: str
    name: str
    steps: List[StepRecord]
    attributes: TaskAttributes
    estimate: PersonalizedEstimate
    id: str = field(default_factory=generate_id)
    created_at: datetime = field(default_factory=datetime.now)

    # Time tracking
    started_at: Optional[datetime] = None
    accumulated_seconds: Optional[float] = None
    actual_minutes: Optional[float] = None
    completed_at: Optional[datetime] = None
    used_for_training: bool = False

    @property
    def baseline_minutes(self) -> float:
        return self.attributes.baseline_minutes

    @property
    def predicted_minutes(self) -> float:
        return self.estimate.estimate_minutes

    @property
    def scale_factor(self) -> float:
        return self.estimate.scale_factor

    @property
    def is_complete(self) -> bool:
        return self.completed_at is not None

    @property
    def is_running(self) -> bool:
        return self.started_at is not None and not self.is_complete

    @property
    def is_paused(self) -> bool:
        return self.started_at is None and self.accumulated_seconds is not None and not self.is_complete

    def personalized_step_minutes(self) -> List[int]:
        """Each step's baseline scaled by this user's correction."""
        return [self.estimate.scale_step(step.baseline_minutes) for step in self.steps]

    def elapsed_seconds(self, now: Optional[datetime] = None) -> float:
        """Accumulated time plus the current session if the timer is running."""
        accumulated = self.accumulated_seconds or 0.0
        if self.started_at is not None:
            return accumulated + ((now or datetime.now()) - self.started_at).total_seconds()
        return accumulated

    def start(self, now: Optional[datetime] = None) -> None:
        """Start or resume the timer."""
        if self.is_complete or self.is_running:
            return
        if self.accumulated_seconds is None:
            self.accumulated_seconds = 0.0
        self.started_at = now or datetime.now()

    def pause(self, now: Optional[datetime] = None) -> None:
        """Pause the timer, keeping the time worked so far."""
        if self.started_at is None:
            return
        session = ((now or datetime.now()) - self.started_at).total_seconds()
        self.accumulated_seconds = (self.accumulated_seconds or 0.0) + session
        self.started_at = None

    def complete(self, duration_minutes: Optional[float] = None, now: Optional[datetime] = None) -> None:
        """Finish the task; actual time comes from the override or the timer."""
        if self.is_complete:
            raise ValueError(f"Task {self.id} is already complete")

        now = now or datetime.now()
        if duration_minutes is not None:
            self.actual_minutes = duration_minutes
        elif self.accumulated_seconds is not None or self.started_at is not None:
            self.actual_minutes = self.elapsed_seconds(now) / 60.0

        self.started_at = None
        self.completed_at = now

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "name": self.name,
            "steps": [
                {
                    "description": step.description,
                    "baseline_minutes": step.baseline_minutes,
                    "personalized_minutes": minutes,
                    "difficulty": step.difficulty,
                    "estimated": step.estimated,
                }
                for step, minutes in zip(self.steps, self.personalized_step_minutes())
            ],
            "attributes": self.attributes.to_dict(),
            "estimate": self.estimate.to_dict(),
            "created_at": self.created_at.isoformat(),
            "actual_minutes": self.actual_minutes,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "used_for_training": self.used_for_training,
        }


class TaskSink(Protocol):
    """External task persistence; the estimation core only hands records over."""

    def save_task(self, record: TaskRecord) -> None: ...


def complete_task(
    record: TaskRecord,
    estimator: BayesianEstimator,
    duration_minutes: Optional[float] = None,
    record_history: bool = True,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Complete a task and feed its actual time back into the correction store.

    Args:
        record: Task to complete
        estimator: Estimator whose store learns from the completion
        duration_minutes: User-confirmed duration, overrides tracked time
        record_history: False completes the task without training (e.g. "I forgot the timer")
        now: Completion time (tests)

    Returns:
        dict with success status and completion data
    """
    if record.is_complete:
        return {"success": False, "error": f"Task already complete: {record.id}"}

    record.complete(duration_minutes=duration_minutes, now=now)

    recorded = False
    if not record_history:
        logger.info(f"Task {record.id} completed without recording history")
    elif record.actual_minutes is None:
        logger.info(f"Task {record.id} completed with no tracked time; nothing to learn")
    else:
        recorded = estimator.record_completion(record.attributes, record.actual_minutes)
        record.used_for_training = recorded

    return {
        "success": True,
        "data": {
            "task_id": record.id,
            "actual_minutes": record.actual_minutes,
            "baseline_minutes": record.baseline_minutes,
            "recorded": recorded,
        },
        "message": "Task completed",
    }
