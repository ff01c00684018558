"""Shared test fixtures for FocusFlow tests.

This module provides common fixtures used across all test modules:
- Database isolation with temporary files
- Correction stores and estimators
- Standard task attributes
- Fake generators with controllable timing

Usage:
    def test_something(memory_store):
        # memory_store starts empty for every test
        ...
"""

import asyncio
import os
import tempfile
from collections.abc import Generator
from pathlib import Path

import pytest

from focusflow.errors import GeneratorCallFailed
from focusflow.learning.bayesian import BayesianEstimator
from focusflow.learning.bucket_keys import TaskAttributes
from focusflow.learning.correction_store import (
    CorrectionStore,
    InMemoryBucketBackend,
    SQLiteBucketBackend,
)
from focusflow.tasks.generator import Classification, StepEstimate, StructureResult


# ─────────────────────────────────────────────────────────────────────────────
# Path Constants
# ─────────────────────────────────────────────────────────────────────────────

PROJECT_ROOT = Path(__file__).parent.parent
PACKAGE_DIR = PROJECT_ROOT / "focusflow"


# ─────────────────────────────────────────────────────────────────────────────
# Database Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def temp_db() -> Generator[Path, None, None]:
    """Create a temporary database file for testing.

    The database file is automatically deleted after the test completes.

    Yields:
        Path to the temporary database file
    """
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)

    yield db_path

    # Cleanup
    if db_path.exists():
        os.unlink(db_path)


# ─────────────────────────────────────────────────────────────────────────────
# Store Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def memory_store() -> CorrectionStore:
    """Empty in-memory correction store."""
    return CorrectionStore(InMemoryBucketBackend())


@pytest.fixture
def sqlite_store(temp_db: Path) -> CorrectionStore:
    """Empty SQLite-backed correction store on a temp file."""
    return CorrectionStore(SQLiteBucketBackend(temp_db))


@pytest.fixture
def estimator(memory_store: CorrectionStore) -> BayesianEstimator:
    """Estimator with the default minimum of 3 observations."""
    return BayesianEstimator(memory_store, minimum_observations=3)


# ─────────────────────────────────────────────────────────────────────────────
# Task Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def sample_attributes() -> TaskAttributes:
    """A dreaded, moderate admin task with a 45-minute baseline."""
    return TaskAttributes.from_classification(
        engagement="dreaded",
        complexity_score=6,
        category="admin",
        baseline_minutes=45,
    )


@pytest.fixture
def sample_task_text() -> str:
    return "sort out the car insurance renewal"


@pytest.fixture
def sample_steps() -> list:
    return [
        "Find last year's policy in your email",
        "Check the renewal quote",
        "Call the insurer about the price",
    ]


# ─────────────────────────────────────────────────────────────────────────────
# Generator Fixtures
# ─────────────────────────────────────────────────────────────────────────────


class FakeGenerator:
    """Scriptable generator for pipeline tests.

    Delays are per call kind. classify_results is consumed in call order,
    so the first classify() call gets the first entry, and so on. An
    Exception instance in any result list is raised instead of returned.
    """

    def __init__(
        self,
        structure=None,
        classify_results=None,
        classify_delays=None,
        step_minutes=None,
        estimate_delay: float = 0.0,
        structure_delay: float = 0.0,
    ):
        self.structure = structure or StructureResult(
            name="Renew car insurance",
            steps=["Find the policy", "Check the quote", "Call the insurer"],
        )
        self.classify_results = list(classify_results or [])
        self.classify_delays = list(classify_delays or [])
        self.step_minutes = dict(step_minutes or {})
        self.estimate_delay = estimate_delay
        self.structure_delay = structure_delay

        self.classify_calls: list = []
        self.estimate_calls: list = []

    async def generate_structure(self, task_text: str) -> StructureResult:
        if self.structure_delay:
            await asyncio.sleep(self.structure_delay)
        if isinstance(self.structure, Exception):
            raise self.structure
        return self.structure

    async def classify(self, task_text, steps) -> Classification:
        index = len(self.classify_calls)
        self.classify_calls.append(list(steps))
        delay = self.classify_delays[index] if index < len(self.classify_delays) else 0.0
        if delay:
            await asyncio.sleep(delay)

        if index < len(self.classify_results):
            result = self.classify_results[index]
        else:
            result = Classification(engagement="dreaded", complexity_score=6, category="admin")
        if isinstance(result, Exception):
            raise result
        return result

    async def estimate_step(self, task_text, step_text) -> StepEstimate:
        self.estimate_calls.append(step_text)
        if self.estimate_delay:
            await asyncio.sleep(self.estimate_delay)
        minutes = self.step_minutes.get(step_text, 10)
        if isinstance(minutes, Exception):
            raise minutes
        return StepEstimate(minutes=minutes, difficulty="medium")


@pytest.fixture
def fake_generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def failing_call() -> GeneratorCallFailed:
    return GeneratorCallFailed("classify", "backend returned 500")
