"""
Octree Module

Hyper oct-tree neighbour search backend (quadtree in 2D, octree in 3D,
2^D-ary tree in general).

Every internal node is split at its center along all dimensions at once and
has exactly 2^D children. Empty children are kept in the arena but skipped by
queries. Points keep the caller's order.
"""

import logging
from typing import Iterator, List, Optional

import numpy as np

from .cell import Box
from .search import NeighbourSearch, TreeNode, tree_candidate_blocks

logger = logging.getLogger(__name__)


class OctreeSearch(NeighbourSearch):
    """Hyper oct-tree over a point snapshot (arena in ``self.nodes``)."""

    name = 'octree'
    reorders_points = False

    def __init__(self):
        super().__init__()
        self.nodes: List[TreeNode] = []

    def _build(self, positions: np.ndarray) -> Optional[np.ndarray]:
        config = self.config
        root_box = Box(config.domain_min, config.domain_max).grown_to_contain(positions)
        self.nodes = [TreeNode(box=root_box, depth=0)]
        self._subdivide(0, np.arange(len(positions), dtype=np.int64), positions)
        logger.debug("octree: %d nodes, max depth %d",
                     len(self.nodes), max(node.depth for node in self.nodes))
        return None

    def _subdivide(self, node_index: int, indices: np.ndarray, positions: np.ndarray):
        node = self.nodes[node_index]
        points = positions[indices]

        if (len(indices) <= self.config.n_particles_in_leaf
                or node.depth >= self.config.max_depth
                or np.all(points == points[0])):
            node.indices = indices
            return

        center = node.box.center
        code = np.zeros(len(indices), dtype=np.int64)
        for d in range(self.config.dimension):
            code |= (points[:, d] >= center[d]).astype(np.int64) << d

        for k, box in enumerate(node.box.octants()):
            child_index = len(self.nodes)
            self.nodes.append(TreeNode(box=box, depth=node.depth + 1, parent=node_index))
            node.children.append(child_index)
            self._subdivide(child_index, indices[code == k], positions)

    def candidate_blocks(self, center: np.ndarray, radius: float) -> Iterator[np.ndarray]:
        self._require_built()
        if self.size == 0:
            return
        yield from tree_candidate_blocks(self.nodes, self.config.query_boxes(center, radius))
