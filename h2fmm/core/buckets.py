"""
Buckets Module

Flat cell-list (bucket grid) neighbour search backends.

The domain is divided into a regular grid of cells whose side length is
chosen so that each cell holds about ``n_particles_in_leaf`` points. Queries
visit every cell overlapping the L-infinity box around the query point.
"""

import itertools
import logging
from abc import abstractmethod
from typing import Iterator, List, Optional

import numpy as np

from .cell import Box
from .search import NeighbourSearch

logger = logging.getLogger(__name__)


class _BucketGrid(NeighbourSearch):
    """Grid geometry shared by the two bucket backends."""

    def __init__(self):
        super().__init__()
        self.cell_shape = np.zeros(0, dtype=np.int64)
        self.cell_size = np.zeros(0)

    def _init_grid(self, n_points: int):
        config = self.config
        extent = config.extent
        target_cells = max(1.0, n_points / config.n_particles_in_leaf)
        side = (np.prod(extent) / target_cells) ** (1.0 / config.dimension)
        self.cell_shape = np.maximum(1, np.floor(extent / side)).astype(np.int64)
        self.cell_size = extent / self.cell_shape
        logger.debug("%s: %s cells of size %s", self.name, self.cell_shape, self.cell_size)

    @property
    def n_cells(self) -> int:
        return int(np.prod(self.cell_shape))

    def cell_coordinates(self, positions: np.ndarray) -> np.ndarray:
        """Integer grid coordinates of (wrapped) positions, clamped to the grid."""
        coords = np.floor((positions - self.config.domain_min) / self.cell_size).astype(np.int64)
        return np.clip(coords, 0, self.cell_shape - 1)

    def cell_index(self, positions: np.ndarray) -> np.ndarray:
        """Flat cell index of each (wrapped) position."""
        coords = self.cell_coordinates(np.atleast_2d(positions))
        if len(coords) == 0:
            return np.zeros(0, dtype=np.int64)
        return np.ravel_multi_index(tuple(coords.T), tuple(self.cell_shape))

    def cell_box(self, cell: int) -> Box:
        """Partition box of a flat cell index."""
        coords = np.array(np.unravel_index(cell, tuple(self.cell_shape)))
        bmin = self.config.domain_min + coords * self.cell_size
        return Box(bmin, bmin + self.cell_size)

    @abstractmethod
    def cell_points(self, cell: int) -> np.ndarray:
        """Point indices stored in a cell."""

    def _axis_cells(self, center: np.ndarray, radius: float) -> List[List[int]]:
        config = self.config
        axes = []
        for d in range(config.dimension):
            n = int(self.cell_shape[d])
            lo = int(np.floor((center[d] - radius - config.domain_min[d]) / self.cell_size[d]))
            hi = int(np.floor((center[d] + radius - config.domain_min[d]) / self.cell_size[d]))
            if config.periodic[d]:
                if hi - lo + 1 >= n:
                    axes.append(list(range(n)))
                else:
                    axes.append(list(dict.fromkeys(i % n for i in range(lo, hi + 1))))
            else:
                lo = min(max(lo, 0), n - 1)
                hi = min(max(hi, 0), n - 1)
                axes.append(list(range(lo, hi + 1)))
        return axes

    def candidate_blocks(self, center: np.ndarray, radius: float) -> Iterator[np.ndarray]:
        self._require_built()
        if self.size == 0:
            return
        if not np.isfinite(radius):
            yield np.arange(self.size)
            return
        center = self.config.wrap(center)
        shape = tuple(self.cell_shape)
        for coords in itertools.product(*self._axis_cells(center, radius)):
            points = self.cell_points(int(np.ravel_multi_index(coords, shape)))
            if len(points) > 0:
                yield points


class BucketSearchSerial(_BucketGrid):
    """
    Bucket grid with a single-threaded build.

    Points are inserted into their cells one at a time and keep the caller's
    order; queries only read the structure and are safe to run in parallel.
    """

    name = 'bucket_search_serial'
    reorders_points = False

    def __init__(self):
        super().__init__()
        self.buckets: List[List[int]] = []
        self.point_cells = np.zeros(0, dtype=np.int64)
        self._bucket_arrays: List[np.ndarray] = []

    def _build(self, positions: np.ndarray) -> Optional[np.ndarray]:
        self._init_grid(len(positions))
        self.point_cells = self.cell_index(positions)
        self.buckets = [[] for _ in range(self.n_cells)]
        for i, cell in enumerate(self.point_cells):
            self.buckets[cell].append(i)
        self._bucket_arrays = [np.asarray(bucket, dtype=np.int64) for bucket in self.buckets]
        return None

    def cell_points(self, cell: int) -> np.ndarray:
        return self._bucket_arrays[cell]


class BucketSearchParallel(_BucketGrid):
    """
    Bucket grid built in one vectorised pass.

    The build sorts the points by cell so that each cell is a contiguous
    range (CSR layout). This reorders the caller's points; the permutation is
    returned from ``build`` and applied to a ``Particles`` container in place.
    """

    name = 'bucket_search_parallel'
    reorders_points = True

    def __init__(self):
        super().__init__()
        self.cell_offsets = np.zeros(1, dtype=np.int64)

    def _build(self, positions: np.ndarray) -> Optional[np.ndarray]:
        self._init_grid(len(positions))
        cells = self.cell_index(positions)
        order = np.argsort(cells, kind='stable')
        counts = np.bincount(cells, minlength=self.n_cells)
        self.cell_offsets = np.concatenate([[0], np.cumsum(counts)]).astype(np.int64)
        return order

    def cell_points(self, cell: int) -> np.ndarray:
        return np.arange(self.cell_offsets[cell], self.cell_offsets[cell + 1])
