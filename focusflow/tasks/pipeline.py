"""
Tool: Estimation Pipeline
Purpose: Overlap slow generator calls with user interaction for one task

One pipeline per task-creation session. Only structure generation blocks
the user; classification and per-step estimation run as background asyncio
tasks while the user reads, edits and confirms.

States:
    idle -> generating_structure -> awaiting_user_edit (+classifying)
         -> awaiting_confirmation (+estimating) -> ready -> committed
    Any non-terminal state -> abandoned

Ordering:
    Each background call kind has a monotonically increasing request
    number. Starting a new call cancels the previous one of the same kind,
    and a result is only applied if its number is still the latest, so a
    slow stale call can never overwrite the result of a later edit.
    confirm_classification() and finalize() wait for the latest call, so an
    edit made while they wait is followed rather than failing the wait.

Degradation:
    - Generator unavailable (at any stage): no further AI calls for the
      session, population default, very_low confidence
    - Structure call failed: back to idle, error re-raised to the caller
    - Classification failed or too slow: default classification, confidence
      lowered one level
    - A step estimate failed: default minutes for that step, confidence
      lowered one level
    - Finalize while estimating: wait up to finalize_timeout_seconds, then
      commit with default step minutes and the population default
    Every degradation is recorded in stage_errors and copied into the
    estimate's notes.

Usage:
    pipeline = EstimationPipeline(generator, estimator, config.pipeline)
    structure = await pipeline.submit_task("clean the garage")
    pipeline.submit_edit(structure.steps[:3])
    await pipeline.confirm_classification({"engagement": "dreaded"})
    estimate = pipeline.current_estimate()
    record = await pipeline.finalize()
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from focusflow.config_models import PipelineSettingsConfig
from focusflow.errors import GeneratorCallFailed, GeneratorUnavailable, InvalidTransition
from focusflow.learning.bayesian import BayesianEstimator, PersonalizedEstimate
from focusflow.learning.bucket_keys import TaskAttributes
from focusflow.logging_config import get_logger, stage_context

from . import DEFAULT_CLASSIFICATION, TERMINAL_STATES
from .generator import Classification, StepEstimate, StructureResult, TaskGenerator
from .record import StepRecord, TaskRecord, TaskSink, generate_id

logger = get_logger(__name__)

EDITABLE_STATES = ("awaiting_user_edit", "awaiting_confirmation", "ready")


@dataclass(frozen=True)
class EstimateDisplay:
    """What the presentation layer shows for the current estimate."""

    low: int
    high: int
    confidence: str
    confidence_label: str
    source_description: str

    @classmethod
    def from_estimate(cls, estimate: PersonalizedEstimate) -> "EstimateDisplay":
        return cls(
            low=estimate.low,
            high=estimate.high,
            confidence=estimate.confidence,
            confidence_label=estimate.confidence_label,
            source_description=estimate.source_description,
        )


class EstimationPipeline:
    """Three-stage estimation for a single task-creation session.

    Args:
        generator: Generative backend (structure, classify, estimate_step)
        estimator: Personalized estimator over the shared correction store
        config: Timeouts and default step minutes
        task_sink: Optional persistence for committed tasks
    """

    def __init__(
        self,
        generator: TaskGenerator,
        estimator: BayesianEstimator,
        config: Optional[PipelineSettingsConfig] = None,
        task_sink: Optional[TaskSink] = None,
    ):
        self.generator = generator
        self.estimator = estimator
        self.config = config or PipelineSettingsConfig()
        self.task_sink = task_sink
        self.session_id = generate_id()
        self.log = logger.bind(session_id=self.session_id)

        self.state = "idle"
        self.ai_available = True
        self.task_text: Optional[str] = None
        self.name: Optional[str] = None
        self.steps: List[str] = []

        self.classification: Optional[Classification] = None
        self.confirmed_classification: Optional[Classification] = None
        self._classification_defaulted = False

        self.step_records: Optional[List[StepRecord]] = None
        self.attributes: Optional[TaskAttributes] = None
        self.estimate: Optional[PersonalizedEstimate] = None

        # stage -> reason, for every stage that degraded
        self.stage_errors: Dict[str, str] = {}

        self._classify_seq = 0
        self._estimate_seq = 0
        self._classify_task: Optional[asyncio.Task] = None
        self._estimate_task: Optional[asyncio.Task] = None

    # ─────────────────────────────────────────────────────────────────────
    # Public entry points
    # ─────────────────────────────────────────────────────────────────────

    async def submit_task(self, task_text: str) -> StructureResult:
        """Generate the step structure. The only stage the user waits on."""
        if self.state != "idle":
            raise InvalidTransition("submit a task", self.state)
        if not task_text or not task_text.strip():
            raise ValueError("Task text must not be empty")

        self.task_text = task_text.strip()
        self.state = "generating_structure"
        self.stage_errors.pop("structure", None)

        try:
            structure = await self.generator.generate_structure(self.task_text)
        except GeneratorUnavailable as e:
            self._disable_ai("structure", e.reason)
            structure = StructureResult(name=self.task_text, steps=[self.task_text])
        except GeneratorCallFailed as e:
            self.log.warning("structure generation failed", error=str(e))
            self.state = "idle"
            self.stage_errors["structure"] = str(e)
            raise

        self.name = structure.name
        self.steps = list(structure.steps)
        self.state = "awaiting_user_edit"
        self._start_classification()
        return structure

    def submit_edit(self, steps: List[str]) -> None:
        """Replace the step list. Restarts whichever background stage depends on it."""
        if self.state not in EDITABLE_STATES:
            raise InvalidTransition("edit steps", self.state)

        cleaned = [s.strip() for s in steps if s and s.strip()]
        if not cleaned:
            raise ValueError("A task needs at least one step")
        self.steps = cleaned

        if self.state == "awaiting_user_edit":
            self._start_classification()
        else:
            # Classification was already confirmed; only the estimate is stale
            self.state = "awaiting_confirmation"
            self._start_estimation()

    async def confirm_classification(self, override: Optional[Dict[str, Any]] = None) -> Classification:
        """
        Accept the classification (optionally overriding fields) and start estimation.

        Args:
            override: Fields to replace, e.g. {"engagement": "dreaded"}

        Returns:
            The confirmed classification
        """
        if self.state not in EDITABLE_STATES:
            raise InvalidTransition("confirm classification", self.state)

        if self.state == "awaiting_user_edit":
            await self._wait_for_classification()
            if self.state in TERMINAL_STATES:
                raise InvalidTransition("confirm classification", self.state)
            base = self.classification
        else:
            base = self.confirmed_classification

        fields = base.model_dump() if base is not None else dict(DEFAULT_CLASSIFICATION)
        if override:
            fields.update(override)
        confirmed = Classification.model_validate(fields)

        self._classification_defaulted = base is None and not (
            override and set(DEFAULT_CLASSIFICATION) <= set(override)
        )
        self.confirmed_classification = confirmed
        self.state = "awaiting_confirmation"
        self._start_estimation()
        return confirmed

    async def finalize(self) -> TaskRecord:
        """Commit the task. Never commits without baseline minutes."""
        if self.state not in EDITABLE_STATES:
            raise InvalidTransition("finalize", self.state)

        if self.state == "awaiting_user_edit":
            await self.confirm_classification()

        if self.estimate is None:
            timeout = self.config.finalize_timeout_seconds
            if not await self._wait_for_latest("estimate", timeout):
                self.log.warning("estimation still running, committing with defaults", timeout=timeout)
                self.stage_errors["estimate"] = "timed out"

        if self.state in TERMINAL_STATES:
            raise InvalidTransition("finalize", self.state)

        if self.estimate is None:
            self._invalidate_estimation()
            self._apply_fallback_estimate()

        record = TaskRecord(
            description=self.task_text,
            name=self.name or self.task_text,
            steps=list(self.step_records),
            attributes=self.attributes,
            estimate=self.estimate,
        )

        # No edit can land once committed, even while draining
        self.state = "committed"
        if self.task_sink is not None:
            self.task_sink.save_task(record)
        await self._drain()

        self.log.info(
            "task committed",
            task_id=record.id,
            baseline=record.baseline_minutes,
            range=self.estimate.display_range,
        )
        return record

    async def abandon(self) -> None:
        """Discard the session and any background work."""
        if self.state in TERMINAL_STATES:
            return
        self._classify_seq += 1
        self._estimate_seq += 1
        self.state = "abandoned"
        await self._drain()
        self.log.info("session abandoned")

    def current_estimate(self) -> Optional[EstimateDisplay]:
        """Displayable estimate, or None until estimation has completed."""
        if self.estimate is None:
            return None
        return EstimateDisplay.from_estimate(self.estimate)

    @property
    def is_classifying(self) -> bool:
        return self._classify_task is not None and not self._classify_task.done()

    @property
    def is_estimating(self) -> bool:
        return self._estimate_task is not None and not self._estimate_task.done()

    # ─────────────────────────────────────────────────────────────────────
    # Classification stage
    # ─────────────────────────────────────────────────────────────────────

    def _start_classification(self) -> None:
        self._classify_seq += 1
        self.classification = None
        self.stage_errors.pop("classify", None)
        self._cancel(self._classify_task)
        self._classify_task = None

        if not self.ai_available:
            return

        self._classify_task = asyncio.create_task(
            self._run_classification(self._classify_seq, self.task_text, list(self.steps))
        )

    async def _run_classification(self, seq: int, task_text: str, steps: List[str]) -> Optional[Classification]:
        with stage_context("classify", seq):
            try:
                result = await self.generator.classify(task_text, steps)
            except GeneratorUnavailable as e:
                self._disable_ai("classify", e.reason)
                return None
            except GeneratorCallFailed as e:
                if seq == self._classify_seq:
                    self.log.warning("classification failed", error=str(e))
                    self.stage_errors["classify"] = str(e)
                return None
            except Exception as e:
                if seq == self._classify_seq:
                    self.log.exception("classification raised unexpectedly")
                    self.stage_errors["classify"] = f"unexpected error: {e}"
                return None

            if seq != self._classify_seq:
                self.log.debug("discarding stale classification")
                return None

            self.classification = result
            return result

    async def _wait_for_classification(self) -> None:
        if await self._wait_for_latest("classify", self.config.confirm_timeout_seconds):
            return
        self.log.warning("classification too slow, using defaults")
        self.stage_errors["classify"] = "timed out"
        self._classify_seq += 1
        self._cancel(self._classify_task)
        self._classify_task = None

    # ─────────────────────────────────────────────────────────────────────
    # Estimation stage
    # ─────────────────────────────────────────────────────────────────────

    def _invalidate_estimation(self) -> None:
        self._estimate_seq += 1
        self.estimate = None
        self._cancel(self._estimate_task)
        self._estimate_task = None

    def _start_estimation(self) -> None:
        self._invalidate_estimation()
        self.stage_errors.pop("estimate", None)

        if not self.ai_available:
            self._apply_estimation([None] * len(self.steps))
            return

        self._estimate_task = asyncio.create_task(
            self._run_estimation(self._estimate_seq, self.task_text, list(self.steps))
        )

    async def _estimate_step(self, task_text: str, step_text: str) -> Optional[StepEstimate]:
        if not self.ai_available:
            return None
        try:
            return await self.generator.estimate_step(task_text, step_text)
        except GeneratorUnavailable as e:
            self._disable_ai("estimate", e.reason)
            return None
        except GeneratorCallFailed as e:
            self.log.warning("step estimate failed", step=step_text, error=str(e))
            return None

    async def _run_estimation(self, seq: int, task_text: str, steps: List[str]) -> Optional[PersonalizedEstimate]:
        with stage_context("estimate", seq):
            try:
                results = await asyncio.gather(*(self._estimate_step(task_text, s) for s in steps))
            except Exception as e:
                if seq == self._estimate_seq:
                    self.log.exception("estimation raised unexpectedly")
                    self.stage_errors["estimate"] = f"unexpected error: {e}"
                return None

            if seq != self._estimate_seq:
                self.log.debug("discarding stale estimation")
                return None

            return self._apply_estimation(list(results), steps)

    def _apply_estimation(
        self,
        results: List[Optional[StepEstimate]],
        steps: Optional[List[str]] = None,
    ) -> PersonalizedEstimate:
        steps = steps if steps is not None else self.steps
        default_minutes = self.config.default_step_minutes

        self.step_records = [
            StepRecord(
                description=step,
                baseline_minutes=result.minutes if result else default_minutes,
                difficulty=result.difficulty if result else "medium",
                estimated=result is not None,
            )
            for step, result in zip(steps, results)
        ]

        failed = sum(1 for r in results if r is None)
        if failed and self.ai_available:
            self.stage_errors.setdefault("estimate", f"{failed} of {len(results)} steps used default minutes")

        baseline = sum(step.baseline_minutes for step in self.step_records)
        classification = self.confirmed_classification
        self.attributes = TaskAttributes.from_classification(
            engagement=classification.engagement,
            complexity_score=classification.complexity_score,
            category=classification.category,
            baseline_minutes=baseline,
        )

        if not self.ai_available:
            self.estimate = self.estimator.population_estimate(classification.engagement, baseline)
        else:
            degraded = failed > 0 or self._classification_defaulted
            self.estimate = self.estimator.estimate(self.attributes, degraded=degraded)
        self._annotate()

        if self.state == "awaiting_confirmation":
            self.state = "ready"
        return self.estimate

    def _apply_fallback_estimate(self) -> None:
        """Classification-only estimate when step estimation never arrived."""
        self._apply_estimation([None] * len(self.steps))
        self.estimate = self.estimator.population_estimate(
            self.confirmed_classification.engagement,
            self.attributes.baseline_minutes,
        )
        self._annotate()

    def _annotate(self) -> None:
        self.estimate.notes = [f"{stage}: {reason}" for stage, reason in self.stage_errors.items()]

    def _disable_ai(self, stage: str, reason: str) -> None:
        """The backend cannot be reached; stop calling it for the rest of the session."""
        if self.ai_available:
            self.log.info("generator unavailable, continuing without AI", stage=stage, reason=reason)
        self.ai_available = False
        self.stage_errors[stage] = reason

    # ─────────────────────────────────────────────────────────────────────
    # Task bookkeeping
    # ─────────────────────────────────────────────────────────────────────

    async def _wait_for_latest(self, kind: str, timeout: float) -> bool:
        """
        Wait for the newest background call of one kind.

        An edit while waiting cancels the call being waited on and starts a
        new one; the wait then follows the new call within the same deadline.

        Returns:
            False if the deadline passed with the call still running
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            task = self._classify_task if kind == "classify" else self._estimate_task
            if task is None or task.done():
                return True
            remaining = deadline - loop.time()
            if remaining <= 0:
                return False
            try:
                await asyncio.wait_for(asyncio.shield(task), timeout=remaining)
            except asyncio.TimeoutError:
                return False
            except asyncio.CancelledError:
                if not task.cancelled():
                    # The caller itself was cancelled
                    raise

    @staticmethod
    def _cancel(task: Optional[asyncio.Task]) -> None:
        if task is not None and not task.done():
            task.cancel()

    async def _drain(self) -> None:
        for task in (self._classify_task, self._estimate_task):
            if task is None:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._classify_task = None
        self._estimate_task = None
