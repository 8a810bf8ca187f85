"""
Extended System Module

Sparse representation of an H2 matrix over the extended unknowns
[sources | multipoles | locals], used to hand the compressed operator to
exact factorisations.

Block rows (one per target point, multipole coefficient and local
coefficient):

    y_t            = sum P2P x_s + L2P l_t
    0              = m_i - P2M x_i - sum_c M2M m_c
    0              = l_i - sum_s M2L m_s - L2L l_parent

Eliminating the multipole and local unknowns recovers y = A x, so solving
the extended system with right-hand side [b | 0 | 0] solves A x = b.
"""

import logging
import time

import numpy as np
import scipy.linalg
from scipy import sparse
from scipy.sparse.linalg import splu

from .h2 import H2Matrix

logger = logging.getLogger(__name__)


class NotSolvableError(np.linalg.LinAlgError):
    """Raised when a factorisation of the system fails (singular or indefinite)."""
    pass


class ExtendedSystem:
    """
    Extended sparse view of an ``H2Matrix``.

    Point rows and columns are stored in cluster (leaf-contiguous) order;
    ``row_map`` and ``column_map`` translate original point indices.
    """

    def __init__(self, h2: H2Matrix):
        self.h2 = h2
        self._matrix = None

    @property
    def shape(self):
        return (self.h2.row_offsets()[2], self.h2.column_offsets()[2])

    @property
    def is_square(self) -> bool:
        return self.h2.shape[0] == self.h2.shape[1]

    def column_map(self) -> np.ndarray:
        """Original source index -> extended column."""
        return self.h2.column_map()

    def row_map(self) -> np.ndarray:
        """Original target index -> extended row."""
        return self.h2.row_map()

    def extended_vector(self, source: np.ndarray) -> np.ndarray:
        """Scatter ``source`` through the column map; all other entries are zero."""
        source = np.asarray(source, dtype=np.float64)
        if source.shape[:1] != (self.h2.shape[1],):
            raise ValueError(f"Source must have {self.h2.shape[1]} rows")
        vector = np.zeros((self.shape[1],) + source.shape[1:])
        vector[self.column_map()] = source
        return vector

    def filter(self, vector: np.ndarray) -> np.ndarray:
        """Gather the point rows of an extended row vector in original order."""
        vector = np.asarray(vector)
        if vector.shape[:1] != (self.shape[0],):
            raise ValueError(f"Extended vector must have {self.shape[0]} rows")
        return vector[self.row_map()]

    def matrix(self) -> sparse.csr_matrix:
        """Assemble (once) and return the extended operator as CSR."""
        if self._matrix is None:
            self._matrix = self._assemble()
        return self._matrix

    def _assemble(self) -> sparse.csr_matrix:
        start = time.perf_counter()
        h2 = self.h2
        rows, cols = h2.row_tree, h2.col_tree
        nc = h2.num_coefficients
        row_map = h2.row_map()
        col_map = h2.column_map()
        m_col, l_col, _ = h2.column_offsets()
        m_row, l_row, _ = h2.row_offsets()
        identity = np.eye(nc)

        data, ri, ci = [], [], []

        def add_block(block, block_rows, block_cols):
            block_rows, block_cols = np.meshgrid(block_rows, block_cols, indexing='ij')
            data.append(np.ravel(block))
            ri.append(np.ravel(block_rows))
            ci.append(np.ravel(block_cols))

        def coefficients(offset, node):
            return offset + nc * node + np.arange(nc)

        # target point rows
        for t in rows.leaves:
            t_rows = row_map[rows.nodes[t].points]
            add_block(h2.l2p[t], t_rows, coefficients(l_col, t))
            for s in h2.partition.near.get(t, []):
                add_block(h2.p2p[(t, s)], t_rows, col_map[cols.nodes[s].points])

        # multipole rows
        for node in cols.nodes:
            i = node.index
            m_rows = coefficients(m_row, i)
            add_block(identity, m_rows, coefficients(m_col, i))
            if node.is_leaf:
                add_block(-h2.p2m[i], m_rows, col_map[node.points])
            for c in node.children:
                add_block(-h2.m2m[c], m_rows, coefficients(m_col, c))

        # local rows
        for node in rows.nodes:
            i = node.index
            l_rows = coefficients(l_row, i)
            add_block(identity, l_rows, coefficients(l_col, i))
            for s in h2.partition.far.get(i, []):
                add_block(-h2.m2l[(i, s)], l_rows, coefficients(m_col, s))
            if not node.is_root:
                add_block(-h2.l2l[i], l_rows, coefficients(l_col, node.parent))

        if data:
            matrix = sparse.coo_matrix(
                (np.concatenate(data), (np.concatenate(ri), np.concatenate(ci))),
                shape=self.shape,
            ).tocsr()
        else:
            matrix = sparse.csr_matrix(self.shape)
        matrix.eliminate_zeros()

        logger.debug("extended matrix %s with %d non-zeros in %.3fs",
                     matrix.shape, matrix.nnz, time.perf_counter() - start)
        return matrix

    def rhs(self, b: np.ndarray) -> np.ndarray:
        """Extended right-hand side [b | 0 | 0] for the system A x = b."""
        b = np.asarray(b, dtype=np.float64)
        if b.shape[:1] != (self.h2.shape[0],):
            raise ValueError(f"Right-hand side must have {self.h2.shape[0]} rows")
        vector = np.zeros((self.shape[0],) + b.shape[1:])
        vector[self.row_map()] = b
        return vector

    def _require_square(self):
        if not self.is_square:
            raise ValueError(
                f"Solves need a square system, got {self.h2.shape[0]}x{self.h2.shape[1]}"
            )

    def lr(self) -> 'LUSolver':
        """Sparse LU factorisation of the extended system."""
        self._require_square()
        return LUSolver(self)

    def chol(self) -> 'CholeskySolver':
        """Dense Cholesky factorisation of the symmetrised compressed operator."""
        self._require_square()
        return CholeskySolver(self.h2)


class LUSolver:
    """Solves A x = b through a sparse LU factorisation of the extended system."""

    def __init__(self, system: ExtendedSystem):
        self.system = system
        start = time.perf_counter()
        try:
            self._lu = splu(system.matrix().tocsc())
        except RuntimeError as e:
            raise NotSolvableError(f"LU factorisation failed: {e}") from e
        logger.debug("sparse LU of %s in %.3fs", system.shape, time.perf_counter() - start)

    def solve(self, b: np.ndarray) -> np.ndarray:
        """
        Solve A x = b.

        Args:
            b: Right-hand side of shape (N,) or (N, k)

        Returns:
            x in original point order
        """
        solution = self._lu.solve(self.system.rhs(b))
        if not np.all(np.isfinite(solution)):
            raise NotSolvableError("LU solve produced non-finite values")
        return solution[self.system.column_map()]


class CholeskySolver:
    """Solves A x = b with a dense Cholesky factor of (A + A^T) / 2."""

    def __init__(self, h2: H2Matrix):
        self.h2 = h2
        start = time.perf_counter()
        dense = h2.to_dense()
        self.matrix = 0.5 * (dense + dense.T)
        try:
            self._factor = scipy.linalg.cho_factor(self.matrix, lower=True)
        except np.linalg.LinAlgError as e:
            raise NotSolvableError(f"Cholesky factorisation failed: {e}") from e
        logger.debug("dense Cholesky of %s in %.3fs", self.matrix.shape, time.perf_counter() - start)

    def solve(self, b: np.ndarray) -> np.ndarray:
        """Solve A x = b; ``b`` has shape (N,) or (N, k)."""
        b = np.asarray(b, dtype=np.float64)
        if b.shape[:1] != (self.h2.shape[0],):
            raise ValueError(f"Right-hand side must have {self.h2.shape[0]} rows")
        return scipy.linalg.cho_solve(self._factor, b)
