"""Vector encoding and distance-metric helpers for sqlite-vec."""

from __future__ import annotations

from collections.abc import Sequence

import sqlite_vec

from libdocs.errors import ConfigMismatch

# Metric name -> sqlite-vec scalar distance function.
METRICS: dict[str, str] = {
    "cosine": "vec_distance_cosine",
    "l2": "vec_distance_l2",
}


def distance_function(metric: str) -> str:
    """Return the sqlite-vec SQL function implementing *metric*.

    Raises:
        ValueError: If *metric* is not one of ``METRICS``.
    """
    try:
        return METRICS[metric]
    except KeyError:
        raise ValueError(
            f"Unknown similarity metric '{metric}'. Use one of: {', '.join(sorted(METRICS))}"
        ) from None


def serialize(vector: Sequence[float]) -> bytes:
    """Pack *vector* as the little-endian float32 blob sqlite-vec expects."""
    return sqlite_vec.serialize_float32(list(vector))


def check_dimensions(vectors: Sequence[Sequence[float]], expected: int | None = None) -> int:
    """Return the shared dimensionality of *vectors*.

    Raises:
        ConfigMismatch: If vectors disagree with each other or with *expected*.
        ValueError: If *vectors* is empty or contains an empty vector.
    """
    if not vectors:
        raise ValueError("no vectors to check")
    dims = expected if expected is not None else len(vectors[0])
    if dims < 1:
        raise ValueError(f"dimensions must be >= 1, got {dims}")
    for i, vec in enumerate(vectors):
        if len(vec) != dims:
            raise ConfigMismatch(
                f"vector {i} has {len(vec)} dimensions, expected {dims}"
            )
    return dims
