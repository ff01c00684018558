"""FocusFlow Test Suite

Test organization:
- unit/: Unit tests for individual modules
  - learning/: bucket keys, correction store, Bayesian estimator, ranges
  - tasks/: generators, estimation pipeline, task records
- integration/: The full plan -> complete -> re-estimate loop

Running tests:
    # All tests
    pytest

    # Specific area
    pytest tests/unit/learning/

    # Skip the end-to-end loop
    pytest -m "not integration"
"""
