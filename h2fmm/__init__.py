"""
H2 Fast Multipole Toolkit

Fast evaluation of pairwise kernel sums y_i = sum_j K(x_i, x_j) s_j over
large point sets, and exact solves with the compressed operator.

This package includes:
- A point container with stable ids and named attributes
- Four interchangeable neighbour search backends (serial and parallel
  bucket grids, kd-tree, hyper oct-tree) with periodic L1/L2/L-inf/L-p queries
- Cluster trees with configurable admissibility (dual tree traversal)
- Kernel-independent Chebyshev (black-box) expansions in any dimension
- H2 matrix-vector products (P2M, M2M, M2L, L2L, L2P, P2P)
- An extended sparse system with LU and Cholesky solvers
"""

from h2fmm.core import (
    Particles,
    Box,
    SEARCH_METHODS,
    SearchConfig,
    create_search,
    euclidean_search,
    manhattan_search,
    chebyshev_search,
    distance_search,
    ClusterTree,
    BlockPartition,
    ChebyshevInterpolant,
    BlackBoxExpansion,
    make_black_box_expansion,
    H2Config,
    H2Matrix,
    H2Operator,
    make_h2_matrix,
    create_h2_operator,
    direct_multiply,
    ExtendedSystem,
    NotSolvableError,
)
from h2fmm.kernels import (
    Kernel,
    GaussianKernel,
    MultiquadricKernel,
    InverseMultiquadricKernel,
    ExponentialKernel,
    LaplaceKernel,
    as_kernel,
    create_kernel,
)

__version__ = '0.1.0'

__all__ = [
    # Points and search
    'Particles',
    'Box',
    'SEARCH_METHODS',
    'SearchConfig',
    'create_search',
    'euclidean_search',
    'manhattan_search',
    'chebyshev_search',
    'distance_search',
    # H2
    'ClusterTree',
    'BlockPartition',
    'ChebyshevInterpolant',
    'BlackBoxExpansion',
    'make_black_box_expansion',
    'H2Config',
    'H2Matrix',
    'H2Operator',
    'make_h2_matrix',
    'create_h2_operator',
    'direct_multiply',
    'ExtendedSystem',
    'NotSolvableError',
    # Kernels
    'Kernel',
    'GaussianKernel',
    'MultiquadricKernel',
    'InverseMultiquadricKernel',
    'ExponentialKernel',
    'LaplaceKernel',
    'as_kernel',
    'create_kernel',
]
