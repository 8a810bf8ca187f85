"""
H2 Matrix Module

Hierarchical (H2) compression of a kernel interaction matrix

    y_i = sum_j K(x_j - x_i, x_i, x_j) s_j

built on cluster trees over the row (target) and column (source) points.
All operator matrices are assembled once; every multiply runs the upward,
transfer, downward and leaf passes with freshly allocated coefficients.
"""

import logging
import time
from dataclasses import dataclass
from typing import Dict, Optional, Tuple, Union

import numpy as np
from scipy.sparse.linalg import LinearOperator

from .expansion import BlackBoxExpansion, Expansion
from .particle import Particles
from .tree import BlockPartition, ClusterTree

logger = logging.getLogger(__name__)


@dataclass
class H2Config:
    """Configuration for H2 matrix assembly."""
    expansion_order: int = 3                     # Chebyshev nodes per dimension
    separation_ratio: float = 1.0                # Admissibility threshold
    n_particles_in_leaf: Optional[int] = None    # Leaf size when no search is attached

    def __post_init__(self):
        """Validate configuration."""
        if int(self.expansion_order) != self.expansion_order or self.expansion_order < 1:
            raise ValueError("Expansion order must be a positive integer")
        if self.separation_ratio <= 0:
            raise ValueError("Separation ratio must be positive")
        if self.n_particles_in_leaf is not None and self.n_particles_in_leaf <= 0:
            raise ValueError("n_particles_in_leaf must be positive")

    @property
    def leaf_size(self) -> int:
        return 10 if self.n_particles_in_leaf is None else int(self.n_particles_in_leaf)


PointSet = Union[Particles, np.ndarray]


def _cluster_tree(points: PointSet, config: H2Config) -> Tuple[ClusterTree, Optional[Particles]]:
    """Cluster tree for a container (reusing its search) or a position array."""
    if isinstance(points, Particles):
        if points.has_neighbour_search and config.n_particles_in_leaf is None:
            return ClusterTree.from_search(points.get_query()), points
        return ClusterTree.from_positions(points.positions, config.leaf_size), points
    positions = np.asarray(points, dtype=np.float64)
    if positions.ndim != 2:
        raise ValueError("Positions must be a (N, D) array")
    return ClusterTree.from_positions(positions, config.leaf_size), None


class H2Matrix:
    """
    Compressed interaction matrix between two point sets.

    Rows correspond to ``row_particles`` (targets) and columns to
    ``col_particles`` (sources), both in the current order of their
    containers. If a container changes after assembly the matrix is
    stale and refuses to multiply.
    """

    def __init__(self, row_particles: PointSet, col_particles: PointSet,
                 expansion: Expansion, config: Optional[H2Config] = None):
        """
        Assemble the H2 matrix.

        Args:
            row_particles: Target points (``Particles`` or (N, D) array)
            col_particles: Source points (``Particles`` or (M, D) array)
            expansion: Expansion engine providing the operator matrices, or a
                kernel, in which case a ``BlackBoxExpansion`` of order
                ``config.expansion_order`` is created
            config: Assembly configuration (optional)
        """
        if config is None:
            order = expansion.order if isinstance(expansion, Expansion) else 3
            config = H2Config(expansion_order=order)
        self.config = config

        start = time.perf_counter()
        self.row_tree, self._row_container = _cluster_tree(row_particles, config)
        if col_particles is row_particles:
            self.col_tree, self._col_container = self.row_tree, self._row_container
        else:
            self.col_tree, self._col_container = _cluster_tree(col_particles, config)

        if not isinstance(expansion, Expansion):
            expansion = BlackBoxExpansion(expansion, self.row_tree.dimension,
                                          config.expansion_order)
        self.expansion = expansion

        for tree in (self.row_tree, self.col_tree):
            if tree.num_points > 0 and tree.dimension != expansion.dimension:
                raise ValueError(
                    f"Points are {tree.dimension}-dimensional, expansion is "
                    f"{expansion.dimension}-dimensional"
                )

        self._layout = self._layout_stamp()
        self.partition: BlockPartition = self.row_tree.dual_tree_traversal(
            self.col_tree, config.separation_ratio
        )
        self._assemble()
        self._last_state: Optional[Tuple[np.ndarray, np.ndarray, np.ndarray]] = None

        stats = self.stats()
        logger.info(
            "H2 matrix %dx%d assembled: %d+%d nodes, %d far pairs, %d near pairs in %.3fs",
            self.shape[0], self.shape[1], stats['row_nodes'], stats['col_nodes'],
            stats['far_pairs'], stats['near_pairs'], time.perf_counter() - start,
        )

    # ------------------------------------------------------------------
    # Assembly
    # ------------------------------------------------------------------

    def _assemble(self):
        expansion = self.expansion
        rows, cols = self.row_tree, self.col_tree

        # source tree: P2M at leaves, M2M from every non-root node to its parent
        self.p2m: Dict[int, np.ndarray] = {}
        self.m2m: Dict[int, np.ndarray] = {}
        for node in cols.nodes:
            if node.is_leaf:
                self.p2m[node.index] = expansion.P2M_matrix(node.box, cols.positions[node.points])
            if not node.is_root:
                self.m2m[node.index] = expansion.M2M_matrix(node.box, cols.nodes[node.parent].box)

        # target tree: L2P at leaves, L2L from the parent into every non-root node
        self.l2p: Dict[int, np.ndarray] = {}
        self.l2l: Dict[int, np.ndarray] = {}
        for node in rows.nodes:
            if node.is_leaf:
                self.l2p[node.index] = expansion.L2P_matrix(node.box, rows.positions[node.points])
            if not node.is_root:
                self.l2l[node.index] = expansion.L2L_matrix(node.box, rows.nodes[node.parent].box)

        self.m2l: Dict[Tuple[int, int], np.ndarray] = {
            (t, s): expansion.M2L_matrix(rows.nodes[t].box, cols.nodes[s].box)
            for t, s in self.partition.far_pairs()
        }
        self.p2p: Dict[Tuple[int, int], np.ndarray] = {
            (t, s): expansion.P2P_matrix(rows.positions[rows.nodes[t].points],
                                         cols.positions[cols.nodes[s].points])
            for t, s in self.partition.near_pairs()
        }

    def _layout_stamp(self) -> Tuple:
        stamp = []
        for container in (self._row_container, self._col_container):
            if container is None:
                stamp.append(None)
            else:
                stamp.append((container.version, len(container)))
        return tuple(stamp)

    def _check_layout(self):
        if self._layout_stamp() != self._layout:
            raise RuntimeError(
                "Point container changed after the H2 matrix "
                "was assembled; rebuild the matrix"
            )

    # ------------------------------------------------------------------
    # Multiply
    # ------------------------------------------------------------------

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.row_tree.num_points, self.col_tree.num_points)

    @property
    def num_coefficients(self) -> int:
        return self.expansion.num_coefficients

    def matrix_vector_multiply(self, target: np.ndarray, source: np.ndarray) -> np.ndarray:
        """
        Accumulate the compressed product into ``target``: target += A @ source.

        Args:
            target: Output array of shape (N,) or (N, k), updated in place
            source: Source values of shape (M,) or (M, k)

        Returns:
            ``target``
        """
        self._check_layout()
        source = np.asarray(source, dtype=np.float64)
        n_rows, n_cols = self.shape
        if source.shape[:1] != (n_cols,) or source.ndim > 2:
            raise ValueError(f"Source must have shape ({n_cols},) or ({n_cols}, k)")
        if target.shape != (n_rows,) + source.shape[1:]:
            raise ValueError(f"Target must have shape {(n_rows,) + source.shape[1:]}")

        rows, cols = self.row_tree, self.col_tree
        trailing = source.shape[1:]
        nc = self.num_coefficients
        multipoles = np.zeros((len(cols.nodes), nc) + trailing)
        locals_ = np.zeros((len(rows.nodes), nc) + trailing)

        # upward pass
        for level in reversed(cols.levels):
            for i in level:
                node = cols.nodes[i]
                if node.is_leaf:
                    multipoles[i] = self.p2m[i] @ source[node.points]
                else:
                    for c in node.children:
                        multipoles[i] += self.m2m[c] @ multipoles[c]

        # transfer pass
        for (t, s), m2l in self.m2l.items():
            locals_[t] += m2l @ multipoles[s]

        # downward pass
        for level in rows.levels[1:]:
            for i in level:
                locals_[i] += self.l2l[i] @ locals_[rows.nodes[i].parent]

        # leaf evaluation
        for i in rows.leaves:
            points = rows.nodes[i].points
            result = self.l2p[i] @ locals_[i]
            for s in self.partition.near.get(i, []):
                result += self.p2p[(i, s)] @ source[cols.nodes[s].points]
            target[points] += result

        self._last_state = (source.copy(), multipoles, locals_)
        return target

    def dot(self, source: np.ndarray) -> np.ndarray:
        """Return A @ source as a new array."""
        source = np.asarray(source, dtype=np.float64)
        target = np.zeros((self.shape[0],) + source.shape[1:])
        return self.matrix_vector_multiply(target, source)

    def __matmul__(self, source: np.ndarray) -> np.ndarray:
        return self.dot(source)

    def to_dense(self) -> np.ndarray:
        """Assemble the compressed operator as a dense array (small sizes only)."""
        return self.dot(np.eye(self.shape[1]))

    # ------------------------------------------------------------------
    # Extended representation
    # ------------------------------------------------------------------

    def column_offsets(self) -> Tuple[int, int, int]:
        """Start of the multipole block, start of the local block, total columns."""
        nc = self.num_coefficients
        m_start = self.shape[1]
        l_start = m_start + nc * len(self.col_tree.nodes)
        return m_start, l_start, l_start + nc * len(self.row_tree.nodes)

    def row_offsets(self) -> Tuple[int, int, int]:
        """Start of the multipole rows, start of the local rows, total rows."""
        nc = self.num_coefficients
        m_start = self.shape[0]
        l_start = m_start + nc * len(self.col_tree.nodes)
        return m_start, l_start, l_start + nc * len(self.row_tree.nodes)

    def column_map(self) -> np.ndarray:
        """Extended position of every source point (original index -> column)."""
        mapping = np.empty(self.shape[1], dtype=np.int64)
        mapping[self.col_tree.point_order] = np.arange(self.shape[1])
        return mapping

    def row_map(self) -> np.ndarray:
        """Extended position of every target point (original index -> row)."""
        mapping = np.empty(self.shape[0], dtype=np.int64)
        mapping[self.row_tree.point_order] = np.arange(self.shape[0])
        return mapping

    def get_internal_state(self) -> np.ndarray:
        """
        Extended vector [sources | multipoles | locals] of the last multiply.

        Raises:
            RuntimeError: if no multiply has been run yet
        """
        if self._last_state is None:
            raise RuntimeError("No multiply has been performed yet")
        source, multipoles, locals_ = self._last_state
        trailing = source.shape[1:]
        m_start, l_start, total = self.column_offsets()
        state = np.zeros((total,) + trailing)
        state[self.column_map()] = source
        state[m_start:l_start] = multipoles.reshape((-1,) + trailing)
        state[l_start:] = locals_.reshape((-1,) + trailing)
        return state

    def extended_system(self):
        """Return the ``ExtendedSystem`` view of this matrix."""
        from .extended import ExtendedSystem
        return ExtendedSystem(self)

    def stats(self) -> dict:
        return {
            'rows': self.shape[0],
            'cols': self.shape[1],
            'row_nodes': len(self.row_tree.nodes),
            'col_nodes': len(self.col_tree.nodes),
            'row_leaves': len(self.row_tree.leaves),
            'col_leaves': len(self.col_tree.leaves),
            'far_pairs': self.partition.num_far,
            'near_pairs': self.partition.num_near,
            'expansion_order': self.expansion.order,
        }

    def __repr__(self) -> str:
        stats = self.stats()
        return (f"H2Matrix({stats['rows']}x{stats['cols']}, "
                f"order={stats['expansion_order']}, "
                f"far={stats['far_pairs']}, near={stats['near_pairs']})")


class H2Operator(LinearOperator):
    """
    ``scipy.sparse.linalg.LinearOperator`` wrapper around an ``H2Matrix``.

    Lets the compressed matrix drive scipy's iterative solvers (cg, gmres).
    """

    def __init__(self, h2: H2Matrix):
        self.h2 = h2
        super().__init__(dtype=np.float64, shape=h2.shape)

    def _matvec(self, x):
        return self.h2.dot(np.ravel(x))

    def _matmat(self, X):
        return self.h2.dot(np.asarray(X))


def make_h2_matrix(row_particles: PointSet, col_particles: PointSet,
                   expansion, separation_ratio: float = 1.0,
                   n_particles_in_leaf: Optional[int] = None,
                   expansion_order: int = 3) -> H2Matrix:
    """
    Assemble an H2 matrix.

    Args:
        row_particles: Target points
        col_particles: Source points
        expansion: Expansion engine (e.g. ``BlackBoxExpansion``) or a kernel
        separation_ratio: Admissibility threshold
        n_particles_in_leaf: Leaf size for trees built without a search
        expansion_order: Order used when ``expansion`` is a kernel

    Returns:
        Assembled H2Matrix
    """
    if isinstance(expansion, Expansion):
        expansion_order = expansion.order
    config = H2Config(expansion_order=expansion_order,
                      separation_ratio=separation_ratio,
                      n_particles_in_leaf=n_particles_in_leaf)
    return H2Matrix(row_particles, col_particles, expansion, config)


def create_h2_operator(row_particles: PointSet, col_particles: PointSet,
                       expansion, **kwargs) -> H2Operator:
    """Assemble an H2 matrix and wrap it as a ``LinearOperator``."""
    return H2Operator(make_h2_matrix(row_particles, col_particles, expansion, **kwargs))


def direct_multiply(row_positions: np.ndarray, col_positions: np.ndarray, kernel,
                    source: np.ndarray, chunk_size: int = 512) -> np.ndarray:
    """
    Exact O(N*M) evaluation of y_i = sum_j K(x_j - x_i, x_i, x_j) s_j.

    Targets are processed in chunks to bound memory use.
    """
    from ..kernels import as_kernel

    kernel = as_kernel(kernel)
    row_positions = np.asarray(row_positions, dtype=np.float64)
    col_positions = np.asarray(col_positions, dtype=np.float64)
    source = np.asarray(source, dtype=np.float64)
    result = np.zeros((len(row_positions),) + source.shape[1:])
    sources = col_positions[None, :, :]

    for start in range(0, len(row_positions), chunk_size):
        targets = row_positions[start:start + chunk_size, None, :]
        block = kernel(sources - targets, targets, sources)
        block = np.broadcast_to(block, (targets.shape[0], sources.shape[1]))
        result[start:start + chunk_size] = block @ source

    return result
