"""Tests for focusflow/tasks/pipeline.py

Pipeline behaviour that matters to the user:
- Only the structure call blocks
- A stale background result never overwrites a newer one
- Failures degrade the estimate instead of blocking task creation
- finalize() never commits without baseline minutes
"""

import asyncio

import pytest

from focusflow.config_models import PipelineSettingsConfig
from focusflow.errors import GeneratorCallFailed, GeneratorUnavailable, InvalidTransition
from focusflow.learning.bayesian import BayesianEstimator
from focusflow.tasks.generator import Classification, StepEstimate
from focusflow.tasks.pipeline import EstimateDisplay, EstimationPipeline
from tests.conftest import FakeGenerator


class StubbornGenerator(FakeGenerator):
    """Calls keep running after cancellation, like requests already in flight."""

    def __init__(self, step_delays=None, **kwargs):
        super().__init__(**kwargs)
        self.step_delays = dict(step_delays or {})
        self.finished_steps = []

    async def classify(self, task_text, steps):
        index = len(self.classify_calls)
        if index >= len(self.classify_results):
            return await super().classify(task_text, steps)
        self.classify_calls.append(list(steps))
        delay = self.classify_delays[index]
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            await asyncio.sleep(delay)
        return self.classify_results[index]

    async def estimate_step(self, task_text, step_text):
        self.estimate_calls.append(step_text)
        delay = self.step_delays.get(step_text, 0.0)
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            await asyncio.sleep(delay)
        self.finished_steps.append(step_text)
        return StepEstimate(minutes=self.step_minutes.get(step_text, 10), difficulty="medium")


class RecordingSink:
    def __init__(self):
        self.saved = []

    def save_task(self, record):
        self.saved.append(record)


def _pipeline(generator, estimator, **config):
    return EstimationPipeline(generator, estimator, PipelineSettingsConfig(**config))


async def _settle(pipeline):
    """Let background stages finish."""
    for task in (pipeline._classify_task, pipeline._estimate_task):
        if task is not None and not task.done():
            try:
                await task
            except asyncio.CancelledError:
                pass


# ─────────────────────────────────────────────────────────────────────────────
# Happy Path
# ─────────────────────────────────────────────────────────────────────────────


class TestHappyPath:
    """Tests for a session where every call succeeds."""

    @pytest.mark.asyncio
    async def test_submit_returns_structure_and_starts_classifying(self, fake_generator, estimator):
        pipeline = _pipeline(fake_generator, estimator)

        structure = await pipeline.submit_task("renew car insurance")

        assert structure.name == "Renew car insurance"
        assert pipeline.state == "awaiting_user_edit"
        assert pipeline.steps == ["Find the policy", "Check the quote", "Call the insurer"]

        await _settle(pipeline)
        assert pipeline.classification.engagement == "dreaded"

    @pytest.mark.asyncio
    async def test_full_session_commits_record(self, fake_generator, estimator):
        sink = RecordingSink()
        pipeline = EstimationPipeline(fake_generator, estimator, task_sink=sink)

        await pipeline.submit_task("renew car insurance")
        await pipeline.confirm_classification()
        record = await pipeline.finalize()

        assert pipeline.state == "committed"
        assert record.baseline_minutes == 30
        assert record.attributes.engagement == "dreaded"
        assert record.estimate.confidence == "very_low"
        assert record.estimate.notes == []
        assert sink.saved == [record]

    @pytest.mark.asyncio
    async def test_current_estimate_appears_when_ready(self, fake_generator, estimator):
        pipeline = _pipeline(fake_generator, estimator)

        await pipeline.submit_task("renew car insurance")
        assert pipeline.current_estimate() is None

        await pipeline.confirm_classification()
        await _settle(pipeline)

        display = pipeline.current_estimate()
        assert pipeline.state == "ready"
        assert isinstance(display, EstimateDisplay)
        assert display.confidence_label == "rough guess"
        assert display.source_description == "typical for tasks like this"

    @pytest.mark.asyncio
    async def test_override_replaces_classification_fields(self, fake_generator, estimator):
        pipeline = _pipeline(fake_generator, estimator)
        await pipeline.submit_task("renew car insurance")

        confirmed = await pipeline.confirm_classification({"engagement": "engaging"})

        assert confirmed.engagement == "engaging"
        assert confirmed.category == "admin"

    @pytest.mark.asyncio
    async def test_invalid_override_rejected(self, fake_generator, estimator):
        pipeline = _pipeline(fake_generator, estimator)
        await pipeline.submit_task("renew car insurance")

        with pytest.raises(ValueError):
            await pipeline.confirm_classification({"engagement": "thrilling"})


# ─────────────────────────────────────────────────────────────────────────────
# Ordering
# ─────────────────────────────────────────────────────────────────────────────


class TestOrdering:
    """Tests that only the latest request of each kind is applied."""

    @pytest.mark.asyncio
    async def test_stale_classification_is_discarded(self, estimator):
        first = Classification(engagement="engaging", complexity_score=2, category="creative")
        second = Classification(engagement="tedious", complexity_score=4, category="cleaning")
        generator = StubbornGenerator(
            classify_results=[first, second],
            classify_delays=[0.2, 0.01],
        )
        pipeline = _pipeline(generator, estimator)

        await pipeline.submit_task("renew car insurance")
        await asyncio.sleep(0)
        pipeline.submit_edit(["Find the policy", "Call the insurer"])

        # Let the second call finish first, then the stale first one
        await asyncio.sleep(0.5)

        assert len(generator.classify_calls) == 2
        assert pipeline.classification == second

    @pytest.mark.asyncio
    async def test_edit_cancels_previous_classification(self, estimator):
        generator = FakeGenerator(classify_delays=[0.5, 0.0])
        pipeline = _pipeline(generator, estimator)

        await pipeline.submit_task("renew car insurance")
        await asyncio.sleep(0)
        first_task = pipeline._classify_task
        pipeline.submit_edit(["Call the insurer"])
        await _settle(pipeline)

        assert first_task.cancelled()
        assert generator.classify_calls[-1] == ["Call the insurer"]

    @pytest.mark.asyncio
    async def test_edit_after_confirmation_restarts_estimation(self, fake_generator, estimator):
        pipeline = _pipeline(fake_generator, estimator)
        await pipeline.submit_task("renew car insurance")
        await pipeline.confirm_classification()
        await _settle(pipeline)
        assert pipeline.attributes.baseline_minutes == 30

        pipeline.submit_edit(["Call the insurer"])

        assert pipeline.state == "awaiting_confirmation"
        assert pipeline.current_estimate() is None

        await _settle(pipeline)
        assert pipeline.state == "ready"
        assert pipeline.attributes.baseline_minutes == 10
        assert fake_generator.estimate_calls[-1] == "Call the insurer"

    @pytest.mark.asyncio
    async def test_stale_estimation_is_discarded(self, estimator):
        generator = StubbornGenerator(
            step_minutes={"Find the policy": 40},
            step_delays={"Find the policy": 0.2},
        )
        pipeline = _pipeline(generator, estimator)
        await pipeline.submit_task("renew car insurance")
        await pipeline.confirm_classification()
        await asyncio.sleep(0.01)

        pipeline.submit_edit(["Check the quote", "Call the insurer"])

        # The new run finishes first, then the stale in-flight step
        await asyncio.sleep(0.5)

        assert "Find the policy" in generator.finished_steps
        assert pipeline.state == "ready"
        assert pipeline.attributes.baseline_minutes == 20
        assert [step.description for step in pipeline.step_records] == ["Check the quote", "Call the insurer"]

    @pytest.mark.asyncio
    async def test_estimation_for_old_request_number_is_not_applied(self, fake_generator, estimator):
        pipeline = _pipeline(fake_generator, estimator)
        await pipeline.submit_task("renew car insurance")
        await pipeline.confirm_classification()
        await _settle(pipeline)
        current = pipeline.estimate

        result = await pipeline._run_estimation(
            pipeline._estimate_seq - 1, pipeline.task_text, ["Call the insurer"]
        )

        assert result is None
        assert pipeline.estimate is current
        assert pipeline.attributes.baseline_minutes == 30


# ─────────────────────────────────────────────────────────────────────────────
# Edits While Waiting
# ─────────────────────────────────────────────────────────────────────────────


class TestEditsWhileWaiting:
    """Tests that an edit during confirm or finalize is followed, not fatal."""

    @pytest.mark.asyncio
    async def test_edit_during_confirm_waits_for_new_classification(self, estimator):
        first = Classification(engagement="engaging", complexity_score=2, category="creative")
        second = Classification(engagement="tedious", complexity_score=4, category="cleaning")
        generator = FakeGenerator(classify_results=[first, second], classify_delays=[0.3, 0.01])
        pipeline = _pipeline(generator, estimator)
        await pipeline.submit_task("renew car insurance")

        confirming = asyncio.create_task(pipeline.confirm_classification())
        await asyncio.sleep(0.05)
        pipeline.submit_edit(["Call the insurer"])
        confirmed = await confirming

        assert confirmed == second
        assert "classify" not in pipeline.stage_errors
        assert pipeline.state in ("awaiting_confirmation", "ready")
        assert generator.classify_calls[-1] == ["Call the insurer"]

        await _settle(pipeline)
        assert pipeline.attributes.baseline_minutes == 10

    @pytest.mark.asyncio
    async def test_edit_during_finalize_commits_new_steps(self, estimator):
        generator = FakeGenerator(estimate_delay=0.3)
        sink = RecordingSink()
        pipeline = EstimationPipeline(generator, estimator, task_sink=sink)
        await pipeline.submit_task("renew car insurance")
        await pipeline.confirm_classification()

        finalizing = asyncio.create_task(pipeline.finalize())
        await asyncio.sleep(0.05)
        pipeline.submit_edit(["Call the insurer"])
        record = await finalizing

        assert pipeline.state == "committed"
        assert record.baseline_minutes == 10
        assert [step.description for step in record.steps] == ["Call the insurer"]
        assert all(step.estimated for step in record.steps)
        assert "estimate" not in pipeline.stage_errors
        assert sink.saved == [record]

    @pytest.mark.asyncio
    async def test_abandon_during_confirm_rejects_the_confirm(self, estimator):
        generator = FakeGenerator(classify_delays=[0.5])
        pipeline = _pipeline(generator, estimator)
        await pipeline.submit_task("renew car insurance")

        confirming = asyncio.create_task(pipeline.confirm_classification())
        await asyncio.sleep(0.05)
        await pipeline.abandon()

        with pytest.raises(InvalidTransition):
            await confirming
        assert pipeline.state == "abandoned"
        assert pipeline.confirmed_classification is None

    @pytest.mark.asyncio
    async def test_commit_closes_session_to_edits(self, fake_generator, estimator):
        pipeline = _pipeline(fake_generator, estimator)
        await pipeline.submit_task("renew car insurance")
        await pipeline.finalize()

        with pytest.raises(InvalidTransition):
            pipeline.submit_edit(["Call the insurer"])


# ─────────────────────────────────────────────────────────────────────────────
# Finalize
# ─────────────────────────────────────────────────────────────────────────────


class TestFinalize:
    """Tests that commit always has a baseline."""

    @pytest.mark.asyncio
    async def test_waits_for_running_estimation(self, estimator):
        generator = FakeGenerator(estimate_delay=0.05)
        pipeline = _pipeline(generator, estimator)
        await pipeline.submit_task("renew car insurance")
        await pipeline.confirm_classification()

        record = await pipeline.finalize()

        assert record.baseline_minutes == 30
        assert all(step.estimated for step in record.steps)

    @pytest.mark.asyncio
    async def test_timeout_commits_with_defaults(self, estimator):
        generator = FakeGenerator(estimate_delay=2.0)
        pipeline = _pipeline(generator, estimator, finalize_timeout_seconds=0.05)
        await pipeline.submit_task("renew car insurance")
        await pipeline.confirm_classification()

        record = await pipeline.finalize()

        assert pipeline.stage_errors["estimate"] == "timed out"
        assert record.estimate.notes == ["estimate: timed out"]
        assert record.baseline_minutes == 45
        assert not any(step.estimated for step in record.steps)
        assert record.estimate.confidence == "very_low"
        assert not pipeline.is_estimating

    @pytest.mark.asyncio
    async def test_finalize_before_confirm_confirms_implicitly(self, fake_generator, estimator):
        pipeline = _pipeline(fake_generator, estimator)
        await pipeline.submit_task("renew car insurance")

        record = await pipeline.finalize()

        assert record.attributes.category == "admin"
        assert pipeline.state == "committed"


# ─────────────────────────────────────────────────────────────────────────────
# Degradation
# ─────────────────────────────────────────────────────────────────────────────


class TestDegradation:
    """Tests for each failure mode's fallback."""

    @pytest.mark.asyncio
    async def test_generator_unavailable_uses_population_default(self, estimator):
        generator = FakeGenerator(structure=GeneratorUnavailable("no API key"))
        pipeline = _pipeline(generator, estimator)

        await pipeline.submit_task("renew car insurance")
        assert pipeline.ai_available is False
        assert pipeline.steps == ["renew car insurance"]

        await pipeline.confirm_classification({"engagement": "dreaded"})
        assert pipeline.state == "ready"
        assert generator.classify_calls == []

        record = await pipeline.finalize()
        assert record.baseline_minutes == 15
        assert record.estimate.confidence == "very_low"
        assert record.estimate.estimate_minutes == pytest.approx(24.0)

    @pytest.mark.asyncio
    async def test_unavailable_during_classification_turns_ai_off(
        self, memory_store, sample_attributes
    ):
        estimator = BayesianEstimator(memory_store)
        for _ in range(25):
            estimator.record_completion(sample_attributes, 45)
        generator = FakeGenerator(classify_results=[GeneratorUnavailable("API key revoked")])
        pipeline = _pipeline(generator, estimator)

        await pipeline.submit_task("renew car insurance")
        await _settle(pipeline)
        assert pipeline.ai_available is False

        await pipeline.confirm_classification(
            {"engagement": "dreaded", "complexity_score": 6, "category": "admin"}
        )

        # History for this exact bucket is ignored once AI is off
        assert generator.estimate_calls == []
        assert pipeline.state == "ready"
        assert pipeline.attributes.baseline_minutes == 45
        assert pipeline.estimate.confidence == "very_low"
        assert pipeline.estimate.correction_factor == pytest.approx(1.6)
        assert pipeline.estimate.notes == ["classify: API key revoked"]

    @pytest.mark.asyncio
    async def test_unavailable_during_estimation_stops_further_calls(self, estimator):
        generator = FakeGenerator(
            step_minutes={"Find the policy": GeneratorUnavailable("API key revoked")},
        )
        pipeline = _pipeline(generator, estimator)

        await pipeline.submit_task("renew car insurance")
        await pipeline.confirm_classification()
        await _settle(pipeline)

        assert pipeline.ai_available is False
        assert generator.estimate_calls == ["Find the policy"]
        assert not any(step.estimated for step in pipeline.step_records)
        assert pipeline.estimate.confidence == "very_low"
        assert pipeline.estimate.correction_factor == pytest.approx(1.6)
        assert pipeline.stage_errors == {"estimate": "API key revoked"}

    @pytest.mark.asyncio
    async def test_edit_after_ai_turned_off_skips_classification(self, estimator):
        generator = FakeGenerator(classify_results=[GeneratorUnavailable("offline")])
        pipeline = _pipeline(generator, estimator)
        await pipeline.submit_task("renew car insurance")
        await _settle(pipeline)

        pipeline.submit_edit(["Call the insurer"])

        assert not pipeline.is_classifying
        assert len(generator.classify_calls) == 1

    @pytest.mark.asyncio
    async def test_structure_failure_returns_to_idle(self, estimator):
        generator = FakeGenerator(structure=GeneratorCallFailed("structure", "backend returned 500"))
        pipeline = _pipeline(generator, estimator)

        with pytest.raises(GeneratorCallFailed):
            await pipeline.submit_task("renew car insurance")

        assert pipeline.state == "idle"
        assert "structure" in pipeline.stage_errors

    @pytest.mark.asyncio
    async def test_classification_failure_uses_defaults(self, estimator, failing_call):
        generator = FakeGenerator(classify_results=[failing_call])
        pipeline = _pipeline(generator, estimator)

        await pipeline.submit_task("renew car insurance")
        confirmed = await pipeline.confirm_classification()
        await _settle(pipeline)

        assert confirmed.engagement == "neutral"
        assert confirmed.category == "other"
        assert "classify" in pipeline.stage_errors
        assert pipeline.estimate.degraded is True
        assert pipeline.estimate.notes[0].startswith("classify: ")

    @pytest.mark.asyncio
    async def test_slow_classification_times_out_on_confirm(self, estimator):
        generator = FakeGenerator(classify_delays=[2.0])
        pipeline = _pipeline(generator, estimator, confirm_timeout_seconds=0.05)

        await pipeline.submit_task("renew car insurance")
        confirmed = await pipeline.confirm_classification()

        assert confirmed.engagement == "neutral"
        assert pipeline.stage_errors["classify"] == "timed out"
        assert not pipeline.is_classifying

    @pytest.mark.asyncio
    async def test_failed_step_uses_default_minutes(self, estimator):
        generator = FakeGenerator(
            step_minutes={"Check the quote": GeneratorCallFailed("estimate", "timeout")},
        )
        pipeline = _pipeline(generator, estimator)

        await pipeline.submit_task("renew car insurance")
        await pipeline.confirm_classification()
        await _settle(pipeline)

        estimated = [step.estimated for step in pipeline.step_records]
        assert estimated == [True, False, True]
        assert pipeline.attributes.baseline_minutes == 35
        assert pipeline.stage_errors["estimate"] == "1 of 3 steps used default minutes"
        assert pipeline.estimate.notes == ["estimate: 1 of 3 steps used default minutes"]
        assert pipeline.estimate.degraded is True

    @pytest.mark.asyncio
    async def test_degraded_estimate_lowers_learned_confidence(self, memory_store, sample_attributes):
        estimator = BayesianEstimator(memory_store)
        for _ in range(6):
            estimator.record_completion(sample_attributes, 45)
        generator = FakeGenerator(
            step_minutes={"Check the quote": GeneratorCallFailed("estimate", "timeout")},
        )
        pipeline = _pipeline(generator, estimator)

        await pipeline.submit_task("renew car insurance")
        await pipeline.confirm_classification()
        await _settle(pipeline)

        # 10 + 15 + 10 = 35 minutes lands in the same 30-60 buckets
        assert pipeline.estimate.bucket_key == "dreaded|30-60|admin|moderate"
        assert pipeline.estimate.confidence == "low"


# ─────────────────────────────────────────────────────────────────────────────
# Transitions
# ─────────────────────────────────────────────────────────────────────────────


class TestTransitions:
    """Tests for entry points called out of order."""

    @pytest.mark.asyncio
    async def test_submit_twice_rejected(self, fake_generator, estimator):
        pipeline = _pipeline(fake_generator, estimator)
        await pipeline.submit_task("renew car insurance")

        with pytest.raises(InvalidTransition):
            await pipeline.submit_task("something else")
        await pipeline.abandon()

    def test_edit_before_submit_rejected(self, fake_generator, estimator):
        pipeline = _pipeline(fake_generator, estimator)

        with pytest.raises(InvalidTransition, match="while pipeline is idle"):
            pipeline.submit_edit(["step"])

    @pytest.mark.asyncio
    async def test_empty_task_rejected(self, fake_generator, estimator):
        pipeline = _pipeline(fake_generator, estimator)

        with pytest.raises(ValueError):
            await pipeline.submit_task("   ")

    @pytest.mark.asyncio
    async def test_empty_edit_rejected(self, fake_generator, estimator):
        pipeline = _pipeline(fake_generator, estimator)
        await pipeline.submit_task("renew car insurance")

        with pytest.raises(ValueError):
            pipeline.submit_edit(["", "  "])
        await pipeline.abandon()

    @pytest.mark.asyncio
    async def test_finalize_after_commit_rejected(self, fake_generator, estimator):
        pipeline = _pipeline(fake_generator, estimator)
        await pipeline.submit_task("renew car insurance")
        await pipeline.finalize()

        with pytest.raises(InvalidTransition):
            await pipeline.finalize()

    @pytest.mark.asyncio
    async def test_abandon_stops_background_work(self, estimator):
        generator = FakeGenerator(classify_delays=[2.0])
        pipeline = _pipeline(generator, estimator)
        await pipeline.submit_task("renew car insurance")
        assert pipeline.is_classifying

        await pipeline.abandon()

        assert pipeline.state == "abandoned"
        assert not pipeline.is_classifying
        assert pipeline.classification is None

    @pytest.mark.asyncio
    async def test_abandon_after_commit_is_noop(self, fake_generator, estimator):
        pipeline = _pipeline(fake_generator, estimator)
        await pipeline.submit_task("renew car insurance")
        await pipeline.finalize()

        await pipeline.abandon()

        assert pipeline.state == "committed"
