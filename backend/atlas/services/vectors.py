"""Vector math used by clustering, layout and search.

Classes:
    KMeansResult: Cluster index per input vector plus the final centroids.
    ProjectionBasis: Three random axes used to place vectors in 3D.
    Point3D: A projected position.

Functions:
    cosine_similarity(a, b): Cosine similarity, 0.0 for incomparable vectors.
    cosine_distances(matrix, query): Row-wise cosine distance against one query vector.
    kmeans_cluster(vectors, k, ...): Cosine-distance k-means with seeded initialisation.
    random_projection_basis(dim, ...): Draw a projection basis for one ingestion run.
    project_to_3d(vectors, basis, ...): Project vectors onto a shared basis.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np
from numpy.typing import ArrayLike

_PROJECTION_AXES = 3


@dataclass(slots=True)
class KMeansResult:
    assignments: list[int]
    centroids: list[list[float]]
    iterations: int = 0
    converged: bool = False


@dataclass(slots=True, frozen=True)
class ProjectionBasis:
    axes: np.ndarray

    @property
    def dim(self) -> int:
        return int(self.axes.shape[1])


@dataclass(slots=True)
class Point3D:
    x: float
    y: float
    z: float


def cosine_similarity(a: ArrayLike, b: ArrayLike) -> float:
    """Return the cosine similarity of two vectors.

    Vectors of different length are incomparable and yield 0.0, as does a
    zero-norm vector on either side.
    """

    va = np.asarray(a, dtype=float).ravel()
    vb = np.asarray(b, dtype=float).ravel()
    if va.shape != vb.shape:
        return 0.0
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0.0:
        return 0.0
    return float(np.clip(np.dot(va, vb) / denom, -1.0, 1.0))


def _l2_normalise(matrix: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return matrix / norms


def cosine_distances(matrix: ArrayLike, query: ArrayLike) -> np.ndarray:
    rows = np.atleast_2d(np.asarray(matrix, dtype=float))
    vector = np.asarray(query, dtype=float).ravel()
    if rows.size == 0:
        return np.zeros(0, dtype=float)
    if rows.shape[1] != vector.shape[0]:
        raise ValueError(
            f"query dimension {vector.shape[0]} does not match stored dimension {rows.shape[1]}"
        )
    query_norm = np.linalg.norm(vector)
    if query_norm == 0:
        return np.ones(rows.shape[0], dtype=float)
    sims = _l2_normalise(rows) @ (vector / query_norm)
    return 1.0 - np.clip(sims, -1.0, 1.0)


def _sample_distinct_indices(n: int, k: int, rng: np.random.Generator) -> list[int]:
    seen: set[int] = set()
    picked: list[int] = []
    while len(picked) < k:
        idx = int(rng.integers(0, n))
        if idx in seen:
            continue
        seen.add(idx)
        picked.append(idx)
    return picked


def kmeans_cluster(
    vectors: Sequence[Sequence[float]] | np.ndarray,
    k: int,
    *,
    max_iterations: int = 100,
    rng: np.random.Generator | None = None,
) -> KMeansResult:
    """Partition ``vectors`` into at most ``k`` groups by cosine distance.

    Centroids are seeded from distinct random input rows. Each pass assigns
    every vector to its nearest centroid (first minimum wins) and stops once
    no assignment changes; otherwise centroids move to the mean of their
    members, and a centroid with no members keeps its previous value.
    """

    if k < 1:
        raise ValueError("k must be at least 1")
    if max_iterations < 1:
        raise ValueError("max_iterations must be at least 1")

    data = np.asarray(vectors, dtype=float)
    if data.ndim != 2 or data.shape[0] == 0 or data.shape[1] == 0:
        return KMeansResult(assignments=[], centroids=[])

    n = data.shape[0]
    k = min(k, n)
    rng = rng or np.random.default_rng()

    centroids = data[_sample_distinct_indices(n, k, rng)].copy()
    unit_rows = _l2_normalise(data)
    assignments = np.full(n, -1, dtype=int)
    iterations = 0
    converged = False

    for _ in range(max_iterations):
        iterations += 1
        distances = 1.0 - unit_rows @ _l2_normalise(centroids).T
        updated = np.argmin(distances, axis=1)
        if np.array_equal(updated, assignments):
            converged = True
            break
        assignments = updated

        for index in range(k):
            members = data[assignments == index]
            if members.shape[0] == 0:
                continue
            centroids[index] = members.mean(axis=0)

    return KMeansResult(
        assignments=[int(label) for label in assignments],
        centroids=centroids.tolist(),
        iterations=iterations,
        converged=converged,
    )


def random_projection_basis(
    dim: int,
    *,
    rng: np.random.Generator | None = None,
    low: float = -1.0,
    high: float = 1.0,
) -> ProjectionBasis:
    if dim < 1:
        raise ValueError("projection basis needs a positive dimension")
    rng = rng or np.random.default_rng()
    return ProjectionBasis(axes=rng.uniform(low, high, size=(_PROJECTION_AXES, dim)))


def project_to_3d(
    vectors: Sequence[Sequence[float]] | np.ndarray,
    basis: ProjectionBasis,
    *,
    scale: float = 50.0,
) -> list[Point3D]:
    """Random-projection layout; reuse one basis per run so positions stay comparable."""

    data = np.asarray(vectors, dtype=float)
    if data.size == 0:
        return []
    data = np.atleast_2d(data)
    if data.shape[1] != basis.dim:
        raise ValueError(
            f"vector dimension {data.shape[1]} does not match projection basis dimension {basis.dim}"
        )
    coords = (data @ basis.axes.T) * scale
    return [Point3D(x=float(row[0]), y=float(row[1]), z=float(row[2])) for row in coords]
