"""
Neighbours Module

Distance-bounded neighbour queries over any ``NeighbourSearch`` backend.

Displacements are returned as ``dx = x_found - center`` using the minimum
image on periodic axes, so results are independent of the backend.
"""

from typing import Callable, Iterator, Tuple

import numpy as np


def _check_norm_order(p: float):
    if p != np.inf and p < 1:
        raise ValueError(f"Norm order must be >= 1 or inf, got {p}")


def lp_norm(dx: np.ndarray, p: float = 2) -> np.ndarray:
    """
    L-p norm along the last axis.

    Args:
        dx: Array of displacement vectors (..., D)
        p: Norm order, any p >= 1 or ``np.inf``

    Returns:
        Array of norms (...)
    """
    _check_norm_order(p)
    a = np.abs(dx)
    if p == np.inf:
        return a.max(axis=-1)
    if p == 1:
        return a.sum(axis=-1)
    if p == 2:
        return np.sqrt((a * a).sum(axis=-1))
    return (a ** p).sum(axis=-1) ** (1.0 / p)


class SearchResult:
    """
    Restartable, finite lazy sequence of (index, dx) pairs.

    Every iteration re-runs the underlying generator, so the same result can
    be traversed any number of times.
    """

    def __init__(self, generator: Callable[[], Iterator[Tuple[int, np.ndarray]]]):
        self._generator = generator

    def __iter__(self) -> Iterator[Tuple[int, np.ndarray]]:
        return self._generator()

    def __len__(self) -> int:
        return sum(1 for _ in self)

    def indices(self) -> np.ndarray:
        """Return the found point indices as an array."""
        return np.fromiter((i for i, _ in self), dtype=np.int64)

    def __repr__(self) -> str:
        return f"SearchResult(n={len(self)})"


def _search(search, center: np.ndarray, radius: float, p: float):
    config = search.config
    if radius < 0 or search.size == 0:
        return

    blocks = list(search.candidate_blocks(center, radius))
    if not blocks:
        return
    candidates = np.concatenate(blocks)

    dx = config.minimum_image(search.positions[candidates] - center)
    inside = lp_norm(dx, p) <= radius

    for index, displacement in zip(candidates[inside], dx[inside]):
        yield int(index), displacement


def distance_search(search, center, radius: float, p: float = 2) -> SearchResult:
    """
    Find all points within ``radius`` of ``center`` under the L-p norm.

    Args:
        search: A built ``NeighbourSearch`` backend
        center: Query position (D,)
        radius: Search radius
        p: Norm order (1, 2, ``np.inf`` or any p >= 1)

    Returns:
        ``SearchResult`` yielding (point index, minimum-image displacement)
    """
    search._require_built()
    center = np.asarray(center, dtype=np.float64)
    if center.shape != (search.config.dimension,):
        raise ValueError(f"Query center must have shape ({search.config.dimension},)")
    _check_norm_order(p)
    return SearchResult(lambda: _search(search, center, radius, p))


def euclidean_search(search, center, radius: float) -> SearchResult:
    """Neighbour search using the L2 norm."""
    return distance_search(search, center, radius, 2)


def manhattan_search(search, center, radius: float) -> SearchResult:
    """Neighbour search using the L1 norm."""
    return distance_search(search, center, radius, 1)


def chebyshev_search(search, center, radius: float) -> SearchResult:
    """Neighbour search using the L-infinity norm."""
    return distance_search(search, center, radius, np.inf)
