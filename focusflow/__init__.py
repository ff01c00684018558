"""
FocusFlow Estimation Core

Learns how long tasks actually take a specific user, starting from an
AI-generated baseline and personalizing it from completion history.

Components:
- learning/: Bucketed Bayesian correction factors (keys, store, estimator, ranges)
- tasks/: Generator backends, the three-stage estimation pipeline, task records

Usage:
    from focusflow.learning.bayesian import BayesianEstimator
    from focusflow.learning.correction_store import CorrectionStore

    estimator = BayesianEstimator(CorrectionStore())
    estimate = estimator.estimate(attributes)
    print(estimate.display_range)
"""

from pathlib import Path

__version__ = "0.3.0"

# Path constants
PROJECT_ROOT = Path(__file__).parent.parent
PACKAGE_ROOT = Path(__file__).parent
DATA_DIR = PROJECT_ROOT / "data"
ARGS_DIR = PROJECT_ROOT / "args"
CONFIG_PATH = ARGS_DIR / "estimation.yaml"

# Database paths
DB_PATH = DATA_DIR / "corrections.db"

__all__ = [
    "__version__",
    "PROJECT_ROOT",
    "PACKAGE_ROOT",
    "DATA_DIR",
    "ARGS_DIR",
    "CONFIG_PATH",
    "DB_PATH",
]
