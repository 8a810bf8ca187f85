"""
KD-Tree Module

Binary space-partitioning neighbour search backend.

Each internal node splits its points at the median of the dimension with
the greatest spread. The build reorders the points so that every leaf holds
a contiguous index range.
"""

import logging
from typing import Iterator, List, Optional

import numpy as np

from .cell import Box
from .search import NeighbourSearch, TreeNode, tree_candidate_blocks

logger = logging.getLogger(__name__)


class KdTreeSearch(NeighbourSearch):
    """
    KD-tree over a point snapshot.

    Nodes live in ``self.nodes`` (arena, root at index 0). A node becomes a
    leaf when it holds at most ``n_particles_in_leaf`` points, all its points
    coincide, or it reaches ``max_depth``.
    """

    name = 'kd_tree'
    reorders_points = True

    def __init__(self):
        super().__init__()
        self.nodes: List[TreeNode] = []

    def _build(self, positions: np.ndarray) -> Optional[np.ndarray]:
        config = self.config
        root_box = Box(config.domain_min, config.domain_max).grown_to_contain(positions)
        self.nodes = [TreeNode(box=root_box, depth=0)]
        order = np.arange(len(positions), dtype=np.int64)
        self._split(0, order, positions, 0, len(positions))
        logger.debug("kd_tree: %d nodes, %d leaves", len(self.nodes), len(self.leaves))
        return order

    def _split(self, node_index: int, order: np.ndarray, positions: np.ndarray,
               start: int, end: int):
        """Recursively split ``order[start:end]`` below ``node_index``."""
        node = self.nodes[node_index]
        count = end - start

        if count <= self.config.n_particles_in_leaf or node.depth >= self.config.max_depth:
            node.indices = np.arange(start, end, dtype=np.int64)
            return

        segment = order[start:end]
        values = positions[segment]
        spread = values.max(axis=0) - values.min(axis=0)
        dim = int(np.argmax(spread))
        if spread[dim] == 0.0:
            # all points coincide
            node.indices = np.arange(start, end, dtype=np.int64)
            return

        k = count // 2
        partition = np.argpartition(values[:, dim], k)
        order[start:end] = segment[partition]
        split_value = float(positions[order[start + k], dim])

        node.split_dim = dim
        node.split_value = split_value
        lower_box, upper_box = node.box.split(dim, split_value)

        for box, (child_start, child_end) in ((lower_box, (start, start + k)),
                                              (upper_box, (start + k, end))):
            child_index = len(self.nodes)
            self.nodes.append(TreeNode(box=box, depth=node.depth + 1, parent=node_index))
            node.children.append(child_index)
            self._split(child_index, order, positions, child_start, child_end)

    @property
    def leaves(self) -> List[int]:
        return [i for i, node in enumerate(self.nodes) if node.is_leaf]

    def candidate_blocks(self, center: np.ndarray, radius: float) -> Iterator[np.ndarray]:
        self._require_built()
        if self.size == 0:
            return
        yield from tree_candidate_blocks(self.nodes, self.config.query_boxes(center, radius))
