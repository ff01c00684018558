"""
Integration test fixtures for FocusFlow.

Provides fixtures specific to integration testing:
- SQLite-backed estimator that survives "restarts"
- Rule-based generator standing in for Claude
"""

from pathlib import Path

import pytest

from focusflow.learning.bayesian import BayesianEstimator
from focusflow.learning.correction_store import create_store
from focusflow.tasks.generator import RuleBasedGenerator


@pytest.fixture
def persistent_estimator(temp_db: Path) -> BayesianEstimator:
    """Estimator over a temporary SQLite database."""
    return BayesianEstimator(create_store("sqlite", str(temp_db)))


@pytest.fixture
def reopen_estimator(temp_db: Path):
    """Factory for a fresh estimator on the same database, as after an app restart."""

    def _reopen() -> BayesianEstimator:
        return BayesianEstimator(create_store("sqlite", str(temp_db)))

    return _reopen


@pytest.fixture
def rule_generator() -> RuleBasedGenerator:
    return RuleBasedGenerator()
