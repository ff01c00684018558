#!/usr/bin/env python3
"""
FocusFlow Command Line Interface

Main entry point for the `focusflow` command. Every command prints a JSON
result with a success flag and exits 1 on failure.

Usage:
    focusflow estimate --baseline 45 --engagement dreaded --category admin --complexity 6
    focusflow record --baseline 45 --actual 70 --engagement dreaded --category admin --complexity 6
    focusflow plan "clean the garage" --no-llm
    focusflow buckets
    focusflow reset --yes
    focusflow --version
"""

import argparse
import asyncio
import json
import sys
from typing import Any, Dict

from focusflow import __version__
from focusflow.config_models import EstimationConfig, load_estimation_config
from focusflow.errors import FocusFlowError
from focusflow.learning import ENGAGEMENT_LEVELS, TASK_CATEGORIES
from focusflow.learning.bayesian import BayesianEstimator
from focusflow.learning.bucket_keys import TaskAttributes, resolve_bucket_keys
from focusflow.learning.correction_store import create_store
from focusflow.logging_config import setup_logging


def _build_estimator(config: EstimationConfig) -> BayesianEstimator:
    store = create_store(config.store.backend, config.store.db_path)
    return BayesianEstimator(store, minimum_observations=config.estimator.minimum_observations)


def _attributes_from_args(args) -> TaskAttributes:
    return TaskAttributes.from_classification(
        engagement=args.engagement,
        complexity_score=args.complexity,
        category=args.category,
        baseline_minutes=args.baseline,
    )


def cmd_estimate(args, config: EstimationConfig) -> Dict[str, Any]:
    """Personalized estimate for a task with known attributes."""
    estimator = _build_estimator(config)
    attrs = _attributes_from_args(args)
    estimate = estimator.estimate(attrs)
    return {
        "success": True,
        "data": {
            "attributes": attrs.to_dict(),
            "bucket_keys": resolve_bucket_keys(attrs),
            "estimate": estimate.to_dict(),
        },
    }


def cmd_record(args, config: EstimationConfig) -> Dict[str, Any]:
    """Record a completed task's actual minutes."""
    estimator = _build_estimator(config)
    attrs = _attributes_from_args(args)
    recorded = estimator.record_completion(attrs, args.actual)
    if not recorded:
        return {"success": False, "error": "Observation skipped: baseline and actual minutes must be positive"}
    return {
        "success": True,
        "data": {"ratio": args.actual / args.baseline, "bucket_keys": resolve_bucket_keys(attrs)},
        "message": "Completion recorded",
    }


def cmd_buckets(args, config: EstimationConfig) -> Dict[str, Any]:
    """List learned buckets."""
    estimator = _build_estimator(config)
    buckets = estimator.store.list_buckets()
    if args.min_observations:
        buckets = [b for b in buckets if b.observation_count >= args.min_observations]
    return {
        "success": True,
        "data": {"buckets": [b.to_dict() for b in buckets], "total": len(buckets)},
    }


def cmd_reset(args, config: EstimationConfig) -> Dict[str, Any]:
    """Wipe all learned corrections."""
    if not args.yes:
        return {"success": False, "error": "Refusing to reset without --yes"}
    estimator = _build_estimator(config)
    estimator.store.reset()
    return {"success": True, "message": "All learned corrections cleared"}


async def _run_plan(args, config: EstimationConfig) -> Dict[str, Any]:
    from focusflow.tasks.generator import RuleBasedGenerator
    from focusflow.tasks.pipeline import EstimationPipeline

    if args.no_llm:
        generator = RuleBasedGenerator()
    else:
        from focusflow.tasks.anthropic_backend import AnthropicGenerator

        generator = AnthropicGenerator.from_config(config.generator)

    pipeline = EstimationPipeline(generator, _build_estimator(config), config.pipeline)
    await pipeline.submit_task(args.task)

    override = {}
    if args.engagement:
        override["engagement"] = args.engagement
    if args.category:
        override["category"] = args.category
    await pipeline.confirm_classification(override or None)

    record = await pipeline.finalize()
    return {
        "success": True,
        "data": {
            "task": record.to_dict(),
            "ai_available": pipeline.ai_available,
            "stage_errors": pipeline.stage_errors,
        },
    }


def cmd_plan(args, config: EstimationConfig) -> Dict[str, Any]:
    """Run the full pipeline non-interactively for one task."""
    return asyncio.run(_run_plan(args, config))


def _add_attribute_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--baseline", type=float, required=True, help="Baseline (AI) minutes")
    parser.add_argument("--engagement", required=True, choices=ENGAGEMENT_LEVELS)
    parser.add_argument("--category", required=True, choices=TASK_CATEGORIES)
    parser.add_argument("--complexity", type=int, required=True, help="Complexity score 1-10")


def main(argv=None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="focusflow",
        description="FocusFlow - personalized task time estimates",
    )
    parser.add_argument("--version", "-V", action="store_true", help="Show version and exit")
    parser.add_argument("--log-level", default=None, help="Log level (default: FOCUSFLOW_LOG_LEVEL or INFO)")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    estimate_parser = subparsers.add_parser("estimate", help="Estimate a task from its attributes")
    _add_attribute_args(estimate_parser)
    estimate_parser.set_defaults(func=cmd_estimate)

    record_parser = subparsers.add_parser("record", help="Record a completed task")
    _add_attribute_args(record_parser)
    record_parser.add_argument("--actual", type=float, required=True, help="Actual minutes taken")
    record_parser.set_defaults(func=cmd_record)

    buckets_parser = subparsers.add_parser("buckets", help="List learned correction buckets")
    buckets_parser.add_argument("--min-observations", type=int, default=0)
    buckets_parser.set_defaults(func=cmd_buckets)

    reset_parser = subparsers.add_parser("reset", help="Clear all learned corrections")
    reset_parser.add_argument("--yes", action="store_true", help="Confirm the reset")
    reset_parser.set_defaults(func=cmd_reset)

    plan_parser = subparsers.add_parser("plan", help="Break down and estimate a task")
    plan_parser.add_argument("task", help="Task description, e.g. 'clean the garage'")
    plan_parser.add_argument("--no-llm", action="store_true", help="Use rule-based generation instead of Claude")
    plan_parser.add_argument("--engagement", choices=ENGAGEMENT_LEVELS, help="Override engagement")
    plan_parser.add_argument("--category", choices=TASK_CATEGORIES, help="Override category")
    plan_parser.set_defaults(func=cmd_plan)

    args = parser.parse_args(argv)

    if args.version:
        print(f"focusflow {__version__}")
        return 0

    if not getattr(args, "func", None):
        parser.print_help()
        return 1

    setup_logging(level=args.log_level)
    config = load_estimation_config()

    try:
        result = args.func(args, config)
    except (ValueError, FocusFlowError) as e:
        result = {"success": False, "error": str(e)}

    print(json.dumps(result, indent=2, default=str))
    return 0 if result.get("success") else 1


if __name__ == "__main__":
    sys.exit(main())
