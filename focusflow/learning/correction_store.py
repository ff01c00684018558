"""
Tool: Correction Store
Purpose: Keyed per-bucket accumulators for learned correction factors

Each bucket keeps the running sums needed for a Bayesian update of the
actual/baseline ratio: observation count, sum of ratios, sum of squared
ratios, plus the prior it was seeded with. Buckets are created lazily on the
first observation and are append-only; only reset() removes them.

The store is process-wide and shared by every task-creation session and the
completion flow. add_observation() is a read-modify-write under a per-key
lock so near-simultaneous completions never lose an observation. Reads take
no lock; a slightly stale snapshot is fine for an advisory estimate.

Usage:
    from focusflow.learning.correction_store import CorrectionStore, SQLiteBucketBackend

    store = CorrectionStore(SQLiteBucketBackend())
    store.add_observation("dreaded|30-60|admin|moderate", 1.4)
    factor = store.fetch("dreaded|30-60|admin|moderate")

Dependencies:
    - sqlite3 (stdlib)
    - threading (stdlib)
"""

from __future__ import annotations

import sqlite3
import threading
from dataclasses import dataclass, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Protocol

from focusflow import DB_PATH
from focusflow.logging_config import get_logger

from . import ENGAGEMENT_DEFAULTS, GLOBAL_DEFAULTS
from .bucket_keys import parse_bucket_key

logger = get_logger(__name__)


@dataclass
class CorrectionFactor:
    """Accumulated observations for one bucket key."""

    bucket_key: str
    prior_mean: float
    prior_variance: float
    observation_count: int = 0
    sum_of_ratios: float = 0.0
    sum_of_squared_ratios: float = 0.0
    last_updated: Optional[datetime] = None

    @property
    def observed_mean(self) -> Optional[float]:
        """Plain mean of observed ratios, None before the first observation."""
        if self.observation_count == 0:
            return None
        return self.sum_of_ratios / self.observation_count

    @property
    def observed_variance(self) -> Optional[float]:
        """Sample variance of observed ratios, None with fewer than two."""
        n = self.observation_count
        if n < 2:
            return None
        mean = self.sum_of_ratios / n
        variance = (self.sum_of_squared_ratios - n * mean * mean) / (n - 1)
        # Float error can push an all-equal series slightly negative
        return max(0.0, variance)

    def with_observation(self, ratio: float, observed_at: Optional[datetime] = None) -> "CorrectionFactor":
        return replace(
            self,
            observation_count=self.observation_count + 1,
            sum_of_ratios=self.sum_of_ratios + ratio,
            sum_of_squared_ratios=self.sum_of_squared_ratios + ratio * ratio,
            last_updated=observed_at or datetime.now(),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "bucket_key": self.bucket_key,
            "prior_mean": self.prior_mean,
            "prior_variance": self.prior_variance,
            "observation_count": self.observation_count,
            "sum_of_ratios": self.sum_of_ratios,
            "sum_of_squared_ratios": self.sum_of_squared_ratios,
            "observed_mean": self.observed_mean,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }

    @classmethod
    def from_row(cls, row: sqlite3.Row | dict) -> "CorrectionFactor":
        d = dict(row)
        last_updated = d.get("last_updated")
        return cls(
            bucket_key=d["bucket_key"],
            prior_mean=d["prior_mean"],
            prior_variance=d["prior_variance"],
            observation_count=d["observation_count"],
            sum_of_ratios=d["sum_of_ratios"],
            sum_of_squared_ratios=d["sum_of_squared_ratios"],
            last_updated=datetime.fromisoformat(last_updated) if last_updated else None,
        )


def defaults_for_key(key: str) -> tuple[float, float]:
    """Prior (mean, variance) for a key, from its engagement axis."""
    engagement = parse_bucket_key(key)[0]
    if engagement is None:
        return GLOBAL_DEFAULTS
    return ENGAGEMENT_DEFAULTS[engagement]


# =============================================================================
# Backends
# =============================================================================


class BucketBackend(Protocol):
    """Persistence for buckets. Must be linearizable per key."""

    def load_bucket(self, key: str) -> Optional[CorrectionFactor]: ...

    def save_bucket(self, factor: CorrectionFactor) -> None: ...

    def list_buckets(self) -> list[CorrectionFactor]: ...

    def clear(self) -> None: ...


class InMemoryBucketBackend:
    """Dict-backed storage, used in tests and when persistence is disabled."""

    def __init__(self):
        self._buckets: dict[str, CorrectionFactor] = {}
        self._lock = threading.Lock()

    def load_bucket(self, key: str) -> Optional[CorrectionFactor]:
        with self._lock:
            return self._buckets.get(key)

    def save_bucket(self, factor: CorrectionFactor) -> None:
        with self._lock:
            self._buckets[factor.bucket_key] = factor

    def list_buckets(self) -> list[CorrectionFactor]:
        with self._lock:
            return sorted(self._buckets.values(), key=lambda f: f.bucket_key)

    def clear(self) -> None:
        with self._lock:
            self._buckets.clear()


class SQLiteBucketBackend:
    """SQLite storage at data/corrections.db (one row per bucket key)."""

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path) if db_path else DB_PATH

    def get_connection(self) -> sqlite3.Connection:
        """Get database connection, creating tables if needed."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row

        conn.execute("""
            CREATE TABLE IF NOT EXISTS correction_factors (
                bucket_key TEXT PRIMARY KEY,
                prior_mean REAL NOT NULL,
                prior_variance REAL NOT NULL CHECK(prior_variance > 0),
                observation_count INTEGER NOT NULL DEFAULT 0 CHECK(observation_count >= 0),
                sum_of_ratios REAL NOT NULL DEFAULT 0,
                sum_of_squared_ratios REAL NOT NULL DEFAULT 0,
                last_updated DATETIME
            )
        """)
        conn.commit()
        return conn

    def load_bucket(self, key: str) -> Optional[CorrectionFactor]:
        conn = self.get_connection()
        try:
            row = conn.execute(
                "SELECT * FROM correction_factors WHERE bucket_key = ?", (key,)
            ).fetchone()
        finally:
            conn.close()
        return CorrectionFactor.from_row(row) if row else None

    def save_bucket(self, factor: CorrectionFactor) -> None:
        conn = self.get_connection()
        try:
            conn.execute("""
                INSERT INTO correction_factors (
                    bucket_key, prior_mean, prior_variance, observation_count,
                    sum_of_ratios, sum_of_squared_ratios, last_updated
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(bucket_key) DO UPDATE SET
                    observation_count = excluded.observation_count,
                    sum_of_ratios = excluded.sum_of_ratios,
                    sum_of_squared_ratios = excluded.sum_of_squared_ratios,
                    last_updated = excluded.last_updated
            """, (
                factor.bucket_key,
                factor.prior_mean,
                factor.prior_variance,
                factor.observation_count,
                factor.sum_of_ratios,
                factor.sum_of_squared_ratios,
                factor.last_updated.isoformat() if factor.last_updated else None,
            ))
            conn.commit()
        finally:
            conn.close()

    def list_buckets(self) -> list[CorrectionFactor]:
        conn = self.get_connection()
        try:
            rows = conn.execute(
                "SELECT * FROM correction_factors ORDER BY bucket_key"
            ).fetchall()
        finally:
            conn.close()
        return [CorrectionFactor.from_row(row) for row in rows]

    def clear(self) -> None:
        conn = self.get_connection()
        try:
            conn.execute("DELETE FROM correction_factors")
            conn.commit()
        finally:
            conn.close()


# =============================================================================
# Store
# =============================================================================


class CorrectionStore:
    """Process-wide collection of correction buckets.

    Args:
        backend: Where buckets live. Defaults to in-memory storage.
    """

    def __init__(self, backend: Optional[BucketBackend] = None):
        self.backend = backend if backend is not None else InMemoryBucketBackend()
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _get_key_lock(self, key: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    def fetch(self, key: str) -> Optional[CorrectionFactor]:
        """Read a bucket. Absence is a normal result, not an error."""
        return self.backend.load_bucket(key)

    def get_or_create(
        self, key: str, defaults: Optional[tuple[float, float]] = None
    ) -> CorrectionFactor:
        """Return the bucket for key, creating it with the given prior if absent."""
        with self._get_key_lock(key):
            return self._get_or_create_locked(key, defaults)

    def _get_or_create_locked(
        self, key: str, defaults: Optional[tuple[float, float]]
    ) -> CorrectionFactor:
        existing = self.backend.load_bucket(key)
        if existing is not None:
            return existing

        prior_mean, prior_variance = defaults or defaults_for_key(key)
        if prior_variance <= 0:
            raise ValueError(f"Prior variance must be positive, got {prior_variance}")

        factor = CorrectionFactor(
            bucket_key=key,
            prior_mean=prior_mean,
            prior_variance=prior_variance,
        )
        self.backend.save_bucket(factor)
        logger.debug(f"Created correction bucket {key} (prior={prior_mean}, var={prior_variance})")
        return factor

    def add_observation(
        self,
        key: str,
        ratio: float,
        defaults: Optional[tuple[float, float]] = None,
    ) -> CorrectionFactor:
        """Atomically fold one actual/baseline ratio into a bucket."""
        with self._get_key_lock(key):
            current = self._get_or_create_locked(key, defaults)
            updated = current.with_observation(ratio)
            self.backend.save_bucket(updated)

        logger.debug(f"Observation {ratio:.3f} added to {key} (n={updated.observation_count})")
        return updated

    def list_buckets(self) -> list[CorrectionFactor]:
        return self.backend.list_buckets()

    def reset(self) -> None:
        """Remove every bucket (account wipe or tests)."""
        self.backend.clear()
        logger.info("Correction store reset")


def create_store(backend: str = "sqlite", db_path: Optional[str] = None) -> CorrectionStore:
    """Build a store from the `store` section of the estimation config."""
    if backend == "memory":
        return CorrectionStore(InMemoryBucketBackend())
    if backend == "sqlite":
        return CorrectionStore(SQLiteBucketBackend(Path(db_path) if db_path else None))
    raise ValueError(f"Unknown store backend: {backend}. Must be one of: ('sqlite', 'memory')")
