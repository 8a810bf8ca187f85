"""
Cell Module

Axis-aligned boxes used by the spatial indices and the cluster tree.
"""

from dataclasses import dataclass

import numpy as np


@dataclass
class Box:
    """
    Axis-aligned box [bmin, bmax] in D dimensions.

    Attributes:
        bmin: Lower corner
        bmax: Upper corner
    """
    bmin: np.ndarray
    bmax: np.ndarray

    def __post_init__(self):
        self.bmin = np.asarray(self.bmin, dtype=np.float64)
        self.bmax = np.asarray(self.bmax, dtype=np.float64)

    @property
    def dimension(self) -> int:
        return len(self.bmin)

    @property
    def center(self) -> np.ndarray:
        return 0.5 * (self.bmin + self.bmax)

    @property
    def half_width(self) -> np.ndarray:
        return 0.5 * (self.bmax - self.bmin)

    @property
    def diameter(self) -> float:
        """Length of the box diagonal."""
        return float(np.linalg.norm(self.bmax - self.bmin))

    def contains(self, point: np.ndarray) -> bool:
        """Check if a point is inside this box (closed bounds)."""
        return bool(np.all((point >= self.bmin) & (point <= self.bmax)))

    def intersects(self, lower: np.ndarray, upper: np.ndarray) -> bool:
        """Check if this box overlaps the closed box [lower, upper]."""
        return bool(np.all((self.bmin <= upper) & (lower <= self.bmax)))

    def distance_to(self, other: 'Box') -> float:
        """
        Compute the minimum distance between two boxes.
        Returns 0 if the boxes overlap or touch.
        """
        gap = np.maximum(0.0, np.maximum(other.bmin - self.bmax, self.bmin - other.bmax))
        return float(np.linalg.norm(gap))

    def is_well_separated(self, other: 'Box', separation_ratio: float = 1.0) -> bool:
        """
        Admissibility condition for far-field interaction.

        Two boxes are well separated when their minimum distance exceeds
        ``separation_ratio`` times the larger of the two diameters.
        """
        max_diameter = max(self.diameter, other.diameter)
        return self.distance_to(other) > separation_ratio * max_diameter

    def grown_to_contain(self, points: np.ndarray) -> 'Box':
        """Return the smallest box containing this box and the given points."""
        if len(points) == 0:
            return Box(self.bmin.copy(), self.bmax.copy())
        return Box(np.minimum(self.bmin, points.min(axis=0)),
                   np.maximum(self.bmax, points.max(axis=0)))

    def split(self, dim: int, value: float):
        """Split the box at ``value`` along ``dim`` into (lower, upper) boxes."""
        lower_max = self.bmax.copy()
        lower_max[dim] = value
        upper_min = self.bmin.copy()
        upper_min[dim] = value
        return Box(self.bmin.copy(), lower_max), Box(upper_min, self.bmax.copy())

    def octants(self):
        """
        Split the box at its center along every dimension.

        Returns 2^D boxes; child ``k`` takes the upper half along dimension
        ``d`` iff bit ``d`` of ``k`` is set.
        """
        center = self.center
        children = []
        for k in range(2 ** self.dimension):
            upper = np.array([(k >> d) & 1 for d in range(self.dimension)], dtype=bool)
            children.append(Box(np.where(upper, center, self.bmin),
                                np.where(upper, self.bmax, center)))
        return children

    def __repr__(self) -> str:
        return f"Box(bmin={self.bmin}, bmax={self.bmax})"
