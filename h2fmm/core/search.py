"""
Search Module

Shared contract for the spatial index backends: configuration, the
``NeighbourSearch`` interface and the backend factory.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Tuple

import numpy as np

from .cell import Box
from .particle import Particles

logger = logging.getLogger(__name__)

SEARCH_METHODS = (
    'bucket_search_serial',
    'bucket_search_parallel',
    'kd_tree',
    'octree',
)


@dataclass
class SearchConfig:
    """Domain and partition parameters for a spatial index."""
    domain_min: np.ndarray
    domain_max: np.ndarray
    periodic: np.ndarray = False
    n_particles_in_leaf: int = 10   # Target points per bucket / leaf threshold
    max_depth: int = 32             # Depth cap for the tree backends

    def __post_init__(self):
        """Validate configuration."""
        self.domain_min = np.atleast_1d(np.asarray(self.domain_min, dtype=np.float64))
        self.domain_max = np.atleast_1d(np.asarray(self.domain_max, dtype=np.float64))
        if self.domain_min.shape != self.domain_max.shape or self.domain_min.ndim != 1:
            raise ValueError("Domain bounds must be 1-D arrays of equal length")
        self.periodic = np.broadcast_to(
            np.asarray(self.periodic, dtype=bool), self.domain_min.shape
        ).copy()
        if not np.all(self.domain_min < self.domain_max):
            raise ValueError("Domain min must be strictly less than domain max on every axis")
        if int(self.n_particles_in_leaf) != self.n_particles_in_leaf or self.n_particles_in_leaf <= 0:
            raise ValueError("n_particles_in_leaf must be a positive integer")
        self.n_particles_in_leaf = int(self.n_particles_in_leaf)
        if self.max_depth <= 0:
            raise ValueError("Max depth must be positive")

    @property
    def dimension(self) -> int:
        return len(self.domain_min)

    @property
    def extent(self) -> np.ndarray:
        return self.domain_max - self.domain_min

    def wrap(self, positions: np.ndarray) -> np.ndarray:
        """Map positions on periodic axes back into [domain_min, domain_max)."""
        positions = np.asarray(positions, dtype=np.float64)
        if not self.periodic.any():
            return positions
        wrapped = self.domain_min + np.mod(positions - self.domain_min, self.extent)
        # mod can round up to exactly the extent for tiny negative offsets
        wrapped = np.where(wrapped >= self.domain_max, self.domain_min, wrapped)
        return np.where(self.periodic, wrapped, positions)

    def minimum_image(self, dx: np.ndarray) -> np.ndarray:
        """Wrap displacements on periodic axes into [-extent/2, extent/2]."""
        dx = np.asarray(dx, dtype=np.float64)
        if not self.periodic.any():
            return dx
        extent = self.extent
        return np.where(self.periodic, dx - extent * np.round(dx / extent), dx)

    def query_boxes(self, center: np.ndarray, radius: float) -> List[Tuple[np.ndarray, np.ndarray]]:
        """
        L-infinity boxes (in wrapped coordinates) covering a query region.

        On a periodic axis the region is shifted by one period when it crosses
        the domain boundary; a region at least one period wide covers the
        whole axis.
        """
        center = self.wrap(center)
        lower = center - radius
        upper = center + radius
        shifts = []
        for d in range(self.dimension):
            axis_shifts = [0.0]
            if self.periodic[d]:
                if 2 * radius >= self.extent[d]:
                    lower[d] = -np.inf
                    upper[d] = np.inf
                elif lower[d] < self.domain_min[d]:
                    axis_shifts.append(self.extent[d])
                elif upper[d] >= self.domain_max[d]:
                    axis_shifts.append(-self.extent[d])
            shifts.append(axis_shifts)

        boxes = []
        for shift in np.array(np.meshgrid(*shifts, indexing='ij')).reshape(self.dimension, -1).T:
            boxes.append((lower + shift, upper + shift))
        return boxes


@dataclass
class TreeNode:
    """
    Node of a tree backend, stored in an arena and addressed by index.

    Attributes:
        box: Partition box of the node
        depth: Depth below the root (root = 0)
        parent: Arena index of the parent (-1 for the root)
        children: Arena indices of the children (empty for leaves)
        indices: Point indices held by a leaf (None for internal nodes)
        split_dim: Split dimension of a binary node (-1 otherwise)
        split_value: Split coordinate of a binary node
    """
    box: Box
    depth: int
    parent: int = -1
    children: List[int] = field(default_factory=list)
    indices: Optional[np.ndarray] = None
    split_dim: int = -1
    split_value: float = np.nan

    @property
    def is_leaf(self) -> bool:
        return len(self.children) == 0


class NeighbourSearch(ABC):
    """
    Spatial index over a snapshot of point positions.

    Backends implement ``_build`` and ``candidate_blocks``; the distance
    filtering and periodic correction are shared through ``query``.
    """

    name = 'abstract'
    reorders_points = False

    def __init__(self):
        self.config: Optional[SearchConfig] = None
        self.positions = np.zeros((0, 0))
        self.wrapped_positions = np.zeros((0, 0))
        self.permutation: Optional[np.ndarray] = None

    def build(self, points, domain_min, domain_max, periodic,
              n_particles_in_leaf: int = 10) -> Optional[np.ndarray]:
        """
        Build the index over the current point positions.

        Args:
            points: (N, D) positions or a ``Particles`` container
            domain_min: Lower domain corner
            domain_max: Upper domain corner
            periodic: Per-axis periodicity flags
            n_particles_in_leaf: Target bucket size / leaf threshold

        Returns:
            The permutation (new index -> old index) applied to the points, or
            None when the backend keeps the caller's order. A container passed
            as ``points`` is reordered in place.
        """
        config = SearchConfig(domain_min, domain_max, periodic, n_particles_in_leaf)
        container = points if isinstance(points, Particles) else None
        positions = container.positions if container is not None else np.asarray(points, dtype=np.float64)
        positions = positions.reshape(-1, config.dimension) if positions.size == 0 else positions
        if positions.ndim != 2 or positions.shape[1] != config.dimension:
            raise ValueError(
                f"Points must have shape (N, {config.dimension}), got {positions.shape}"
            )

        start = time.perf_counter()
        self.config = config
        order = self._build(config.wrap(positions))

        if order is not None:
            if container is not None:
                container.permute(order)
                positions = container.positions
            else:
                positions = positions[order]

        self.permutation = order
        self.positions = np.array(positions, dtype=np.float64)
        self.wrapped_positions = config.wrap(self.positions)
        logger.debug("%s: built over %d points in %.3fs",
                     self.name, len(self.positions), time.perf_counter() - start)
        return order

    @abstractmethod
    def _build(self, positions: np.ndarray) -> Optional[np.ndarray]:
        """Build from wrapped positions; return a reorder permutation or None."""

    @abstractmethod
    def candidate_blocks(self, center: np.ndarray, radius: float) -> Iterator[np.ndarray]:
        """
        Yield arrays of point indices that may lie within the L-infinity box
        of half-width ``radius`` around ``center``. Every index is yielded at
        most once.
        """

    def query(self, center, radius: float, p: float = 2):
        """
        Find all points within ``radius`` of ``center`` under the L-p norm.

        Returns:
            A restartable ``SearchResult`` of (index, dx) pairs
        """
        from .neighbours import distance_search
        return distance_search(self, center, radius, p)

    @property
    def size(self) -> int:
        return len(self.positions)

    def _require_built(self):
        if self.config is None:
            raise RuntimeError(f"{self.name} search has not been built")

    def __repr__(self) -> str:
        return f"{type(self).__name__}(n={self.size})"


def tree_candidate_blocks(nodes: List[TreeNode], boxes) -> Iterator[np.ndarray]:
    """
    Depth-first walk over a node arena yielding the point indices of every
    non-empty leaf whose box meets any of the query boxes.
    """
    if not nodes:
        return
    stack = [0]
    while stack:
        node = nodes[stack.pop()]
        if not any(node.box.intersects(lower, upper) for lower, upper in boxes):
            continue
        if node.is_leaf:
            if node.indices is not None and len(node.indices) > 0:
                yield node.indices
        else:
            stack.extend(reversed(node.children))


def create_search(name: str) -> NeighbourSearch:
    """
    Factory function for neighbour search backends.

    Args:
        name: One of ``SEARCH_METHODS``

    Returns:
        An unbuilt backend instance
    """
    from .buckets import BucketSearchParallel, BucketSearchSerial
    from .kdtree import KdTreeSearch
    from .octree import OctreeSearch

    name = name.lower()

    if name == 'bucket_search_serial':
        return BucketSearchSerial()
    elif name == 'bucket_search_parallel':
        return BucketSearchParallel()
    elif name == 'kd_tree':
        return KdTreeSearch()
    elif name == 'octree':
        return OctreeSearch()
    else:
        raise ValueError(f"Unknown search method: {name}")
