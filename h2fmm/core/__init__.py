"""
H2 Core Module

This module contains the point container, spatial indices, cluster tree,
expansion engine and compressed matrix classes.
"""

from .particle import Particles
from .cell import Box
from .search import (
    SEARCH_METHODS,
    SearchConfig,
    TreeNode,
    NeighbourSearch,
    create_search,
)
from .buckets import BucketSearchSerial, BucketSearchParallel
from .kdtree import KdTreeSearch
from .octree import OctreeSearch
from .neighbours import (
    SearchResult,
    lp_norm,
    distance_search,
    euclidean_search,
    manhattan_search,
    chebyshev_search,
)
from .tree import ClusterNode, ClusterTree, BlockPartition
from .kernel_independent import ChebyshevInterpolant
from .expansion import Expansion, BlackBoxExpansion, make_black_box_expansion
from .h2 import (
    H2Config,
    H2Matrix,
    H2Operator,
    make_h2_matrix,
    create_h2_operator,
    direct_multiply,
)
from .extended import ExtendedSystem, LUSolver, CholeskySolver, NotSolvableError

__all__ = [
    'Particles',
    'Box',
    'SEARCH_METHODS',
    'SearchConfig',
    'TreeNode',
    'NeighbourSearch',
    'create_search',
    'BucketSearchSerial',
    'BucketSearchParallel',
    'KdTreeSearch',
    'OctreeSearch',
    'SearchResult',
    'lp_norm',
    'distance_search',
    'euclidean_search',
    'manhattan_search',
    'chebyshev_search',
    'ClusterNode',
    'ClusterTree',
    'BlockPartition',
    'ChebyshevInterpolant',
    'Expansion',
    'BlackBoxExpansion',
    'make_black_box_expansion',
    'H2Config',
    'H2Matrix',
    'H2Operator',
    'make_h2_matrix',
    'create_h2_operator',
    'direct_multiply',
    'ExtendedSystem',
    'LUSolver',
    'CholeskySolver',
    'NotSolvableError',
]
