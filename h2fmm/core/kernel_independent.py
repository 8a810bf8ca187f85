"""
Kernel-Independent Interpolation Module

Tensor-product Chebyshev interpolation on axis-aligned boxes in any
dimension. This is the basis of the black-box expansions: every operator
matrix is built from the interpolation weights below plus kernel samples.
"""

from typing import Tuple
import numpy as np
from numpy.polynomial import chebyshev

from .cell import Box


class ChebyshevInterpolant:
    """
    Chebyshev polynomial interpolation for kernel-independent expansions.

    Uses Chebyshev nodes of the first kind for better stability and
    convergence. The D-dimensional grid is the tensor product of the 1D
    nodes, flattened with the first axis varying slowest.
    """

    def __init__(self, order: int, dimension: int = 2):
        """
        Initialize Chebyshev interpolant.

        Args:
            order: Number of Chebyshev points per dimension
            dimension: Spatial dimension (any D >= 1)
        """
        if order < 1:
            raise ValueError("Order must be at least 1")
        if dimension < 1:
            raise ValueError("Dimension must be at least 1")
        self.order = order
        self.dimension = dimension

        # Chebyshev nodes: cos((2k-1)π/(2n)) for k = 1,...,n
        k = np.arange(1, order + 1)
        self.nodes_1d = np.cos((2 * k - 1) * np.pi / (2 * order))

        self._create_grid()

    def _create_grid(self):
        """Create multi-dimensional Chebyshev grid."""
        axes = np.meshgrid(*([self.nodes_1d] * self.dimension), indexing='ij')
        self.nodes = np.column_stack([axis.ravel() for axis in axes])
        self.num_nodes = self.order ** self.dimension

    @staticmethod
    def _center_and_scale(box: Box) -> Tuple[np.ndarray, np.ndarray]:
        half = box.half_width
        # degenerate (flat) boxes map onto the reference center
        return box.center, np.where(half > 0, half, 1.0)

    def to_reference(self, box: Box, points: np.ndarray) -> np.ndarray:
        """Map physical points in ``box`` to the reference domain [-1, 1]^D."""
        center, scale = self._center_and_scale(box)
        return (np.asarray(points, dtype=np.float64) - center) / scale

    def node_positions(self, box: Box) -> np.ndarray:
        """Physical positions of the interpolation nodes of ``box``."""
        center, scale = self._center_and_scale(box)
        return center + scale * self.nodes

    def weights_1d(self, x: np.ndarray) -> np.ndarray:
        """
        One-dimensional interpolation weights.

        S(t_k, x) = 1/n + 2/n * sum_{j=1}^{n-1} T_j(t_k) T_j(x)

        Args:
            x: Reference coordinates (p,)

        Returns:
            (n, p) matrix of S(t_k, x_j)
        """
        n = self.order
        vt = chebyshev.chebvander(self.nodes_1d, n - 1)
        vx = chebyshev.chebvander(np.asarray(x, dtype=np.float64), n - 1)
        return (2.0 / n) * vt @ vx.T - 1.0 / n

    def interpolation_matrix(self, box: Box, points: np.ndarray) -> np.ndarray:
        """
        Tensor-product interpolation weights of points against the nodes.

        Args:
            box: Box carrying the interpolation nodes
            points: Physical positions (p, D)

        Returns:
            (n^D, p) matrix with entry [m, j] = prod_d S(t_m[d], x_j[d])
        """
        ref = self.to_reference(box, np.reshape(points, (-1, self.dimension)))
        weights = self.weights_1d(ref[:, 0])
        for d in range(1, self.dimension):
            weights = (weights[:, None, :] * self.weights_1d(ref[:, d])[None, :, :]).reshape(
                -1, len(ref)
            )
        return weights

    def interpolate(self, values: np.ndarray, box: Box, points: np.ndarray) -> np.ndarray:
        """
        Evaluate the interpolant with given node values at physical points.

        Args:
            values: Function values at the nodes of ``box`` (n^D,)
            box: Box carrying the interpolation nodes
            points: Target points (p, D)

        Returns:
            Interpolated values at target points
        """
        return self.interpolation_matrix(box, points).T @ values

    def __repr__(self) -> str:
        return f"ChebyshevInterpolant(order={self.order}, dimension={self.dimension})"
