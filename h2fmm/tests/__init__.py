"""
H2 Test Suite

Tests for the neighbour search and H2 matrix implementation, plus shared
helpers used by the individual test modules.
"""

import itertools
from typing import List, Set, Tuple

import numpy as np


def lattice(n: int, dimension: int, spacing: float = 1.0) -> np.ndarray:
    """Regular lattice of n^D points at cell centers of [0, n*spacing)^D."""
    axes = [(np.arange(n) + 0.5) * spacing] * dimension
    return np.array(list(itertools.product(*axes)), dtype=np.float64)


def gauss_circle_count(r: float) -> int:
    """Number of integer lattice points (i, j) with i^2 + j^2 <= r^2."""
    m = int(np.floor(r))
    return sum(2 * int(np.floor(np.sqrt(r * r - i * i))) + 1 for i in range(-m, m + 1))


def minimum_image(dx: np.ndarray, extent: np.ndarray, periodic: np.ndarray) -> np.ndarray:
    return np.where(periodic, dx - extent * np.round(dx / extent), dx)


def brute_force_neighbours(positions: np.ndarray, center: np.ndarray, radius: float,
                           domain_min, domain_max, periodic, p: float = 2) -> Set[int]:
    """Indices within ``radius`` of ``center`` by exhaustive search."""
    extent = np.asarray(domain_max, dtype=np.float64) - np.asarray(domain_min, dtype=np.float64)
    periodic = np.broadcast_to(np.asarray(periodic, dtype=bool), extent.shape)
    dx = minimum_image(positions - center, extent, periodic)
    if p == np.inf:
        dist = np.abs(dx).max(axis=1)
    else:
        dist = (np.abs(dx) ** p).sum(axis=1) ** (1.0 / p)
    return set(np.flatnonzero(dist <= radius).tolist())


def result_pairs(result, ids: np.ndarray, decimals: int = 10) -> Set[Tuple]:
    """(point id, rounded displacement) pairs of a search result."""
    return {(int(ids[i]), tuple(np.round(dx, decimals))) for i, dx in result}


def relative_l2_error(approx: np.ndarray, exact: np.ndarray) -> float:
    return float(np.linalg.norm(approx - exact) / np.linalg.norm(exact))


def random_positions(rng: np.random.Generator, n: int, dimension: int,
                     low: float = 0.0, high: float = 1.0) -> np.ndarray:
    return rng.uniform(low, high, size=(n, dimension))


__all__: List[str] = [
    'lattice',
    'gauss_circle_count',
    'minimum_image',
    'brute_force_neighbours',
    'result_pairs',
    'relative_l2_error',
    'random_positions',
]
