"""
Expansion Module

Defines the expansion engines that build the H2 operator matrices
(P2M, M2M, M2L, L2L, L2P, P2P) for a kernel and a fixed order.
"""

from abc import ABC, abstractmethod
import numpy as np

from .cell import Box
from .kernel_independent import ChebyshevInterpolant
from ..kernels import Kernel, as_kernel


class Expansion(ABC):
    """
    Abstract base class for expansion engines.

    An engine turns boxes and point sets into dense operator matrices. It
    holds no per-box state, so one engine can serve any number of trees.
    """

    def __init__(self, kernel, dimension: int, order: int):
        """
        Initialize the expansion.

        Args:
            kernel: Kernel ``K(dx, x_a, x_b)`` (Kernel or vectorized callable)
            dimension: Spatial dimension
            order: Truncation order of the expansion
        """
        if dimension < 1:
            raise ValueError("Dimension must be at least 1")
        if int(order) != order or order < 1:
            raise ValueError("Expansion order must be a positive integer")
        self.kernel: Kernel = as_kernel(kernel)
        self.dimension = dimension
        self.order = int(order)

    @property
    @abstractmethod
    def num_coefficients(self) -> int:
        """Return the number of coefficients per box."""
        pass

    @abstractmethod
    def P2M_matrix(self, box: Box, positions: np.ndarray) -> np.ndarray:
        """Source values of points in ``box`` -> multipole coefficients."""
        pass

    @abstractmethod
    def L2P_matrix(self, box: Box, positions: np.ndarray) -> np.ndarray:
        """Local coefficients of ``box`` -> field values at points."""
        pass

    @abstractmethod
    def M2M_matrix(self, child: Box, parent: Box) -> np.ndarray:
        """Child multipole -> parent multipole."""
        pass

    @abstractmethod
    def L2L_matrix(self, child: Box, parent: Box) -> np.ndarray:
        """Parent local -> child local."""
        pass

    @abstractmethod
    def M2L_matrix(self, target: Box, source: Box) -> np.ndarray:
        """Source multipole -> target local."""
        pass

    def P2P_matrix(self, targets: np.ndarray, sources: np.ndarray) -> np.ndarray:
        """
        Direct kernel evaluation between two point sets.

        Args:
            targets: Target positions (t, D)
            sources: Source positions (s, D)

        Returns:
            (t, s) matrix with entry [i, j] = K(y_j - x_i, x_i, y_j)
        """
        targets = np.reshape(targets, (-1, self.dimension))[:, None, :]
        sources = np.reshape(sources, (-1, self.dimension))[None, :, :]
        values = self.kernel(sources - targets, targets, sources)
        return np.broadcast_to(values, (targets.shape[0], sources.shape[1])).astype(np.float64)

    def _check_positions(self, positions: np.ndarray) -> np.ndarray:
        positions = np.asarray(positions, dtype=np.float64)
        if positions.ndim != 2 or positions.shape[1] != self.dimension:
            raise ValueError(f"Positions must have shape (p, {self.dimension})")
        return positions


class BlackBoxExpansion(Expansion):
    """
    Black-box (Chebyshev interpolation) expansion.

    Multipole and local coefficients live on the order^D Chebyshev nodes of
    each box. Only kernel evaluations are needed, so any smooth kernel works.
    P2M and M2M are the interpolation weights, L2L and L2P their transposes,
    and M2L samples the kernel between the nodes of two boxes.
    """

    def __init__(self, kernel, dimension: int, order: int):
        super().__init__(kernel, dimension, order)
        self.interpolant = ChebyshevInterpolant(self.order, dimension)

    @property
    def num_coefficients(self) -> int:
        return self.interpolant.num_nodes

    def P2M_matrix(self, box: Box, positions: np.ndarray) -> np.ndarray:
        """
        Returns:
            (n^D, p) matrix with entry [m, j] = S(t_m, y_j)
        """
        return self.interpolant.interpolation_matrix(box, self._check_positions(positions))

    def L2P_matrix(self, box: Box, positions: np.ndarray) -> np.ndarray:
        """
        Returns:
            (p, n^D) matrix with entry [i, m] = S(t_m, x_i)
        """
        return self.P2M_matrix(box, positions).T

    def M2M_matrix(self, child: Box, parent: Box) -> np.ndarray:
        """
        Returns:
            (n^D, n^D) matrix with entry [m, c] = S(t_m^parent, t_c^child)
        """
        return self.interpolant.interpolation_matrix(parent, self.interpolant.node_positions(child))

    def L2L_matrix(self, child: Box, parent: Box) -> np.ndarray:
        return self.M2M_matrix(child, parent).T

    def M2L_matrix(self, target: Box, source: Box) -> np.ndarray:
        """
        Returns:
            (n^D, n^D) matrix with entry [m, l] = K(y_l - x_m, x_m, y_l) for
            target nodes x_m and source nodes y_l
        """
        return self.P2P_matrix(self.interpolant.node_positions(target),
                               self.interpolant.node_positions(source))

    def __repr__(self) -> str:
        return f"BlackBoxExpansion(dimension={self.dimension}, order={self.order})"


def make_black_box_expansion(kernel, dimension: int, order: int) -> BlackBoxExpansion:
    """Create a Chebyshev black-box expansion for ``kernel``."""
    return BlackBoxExpansion(kernel, dimension, order)
