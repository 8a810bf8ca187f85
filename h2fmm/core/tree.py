"""
Tree Module

Cluster tree used to organise the block structure of the compressed matrix,
plus the admissibility partition found by a dual tree traversal.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple

import numpy as np

from .cell import Box
from .search import NeighbourSearch

logger = logging.getLogger(__name__)


@dataclass
class ClusterNode:
    """
    Node of a cluster tree, addressed by its index in ``ClusterTree.nodes``.

    Attributes:
        index: Position of the node in the arena
        box: Bounding box (partition box grown to contain the node's points)
        level: Depth below the root (root = 0)
        parent: Arena index of the parent (-1 for the root)
        children: Arena indices of the children
        points: Point indices of a leaf (None for internal nodes)
    """
    index: int
    box: Box
    level: int
    parent: int = -1
    children: List[int] = field(default_factory=list)
    points: Optional[np.ndarray] = None

    @property
    def is_leaf(self) -> bool:
        return len(self.children) == 0

    @property
    def is_root(self) -> bool:
        return self.parent < 0


@dataclass
class BlockPartition:
    """
    Admissibility partition of a (target tree, source tree) pair.

    Attributes:
        far: target node -> source nodes handled by M2L
        near: target leaf -> source leaves handled by P2P
        separation_ratio: Ratio used for the admissibility test
    """
    far: Dict[int, List[int]] = field(default_factory=dict)
    near: Dict[int, List[int]] = field(default_factory=dict)
    separation_ratio: float = 1.0

    def far_pairs(self) -> Iterator[Tuple[int, int]]:
        for target, sources in self.far.items():
            for source in sources:
                yield target, source

    def near_pairs(self) -> Iterator[Tuple[int, int]]:
        for target, sources in self.near.items():
            for source in sources:
                yield target, source

    @property
    def num_far(self) -> int:
        return sum(len(sources) for sources in self.far.values())

    @property
    def num_near(self) -> int:
        return sum(len(sources) for sources in self.near.values())


class ClusterTree:
    """
    Hierarchical partition of a point set.

    Nodes are stored in an arena (``self.nodes``) with the root at index 0
    and every parent placed before its children. Leaves appear in depth-first
    order, so concatenating their points gives a leaf-contiguous ordering
    (``point_order``).
    """

    def __init__(self, positions: np.ndarray):
        """
        Initialize an empty tree over the given positions.

        Use ``from_search`` or ``from_positions`` to build one.
        """
        self.positions = np.asarray(positions, dtype=np.float64)
        self.nodes: List[ClusterNode] = []
        self.leaves: List[int] = []
        self.levels: List[List[int]] = []
        self.point_order = np.zeros(0, dtype=np.int64)

    @property
    def dimension(self) -> int:
        return self.positions.shape[1]

    @property
    def num_points(self) -> int:
        return len(self.positions)

    @property
    def root(self) -> Optional[ClusterNode]:
        return self.nodes[0] if self.nodes else None

    def _add_node(self, box: Box, level: int, parent: int,
                  points: Optional[np.ndarray] = None) -> int:
        index = len(self.nodes)
        self.nodes.append(ClusterNode(index=index, box=box, level=level,
                                      parent=parent, points=points))
        if parent >= 0:
            self.nodes[parent].children.append(index)
        return index

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_search(cls, search: NeighbourSearch) -> 'ClusterTree':
        """
        Build a cluster tree reusing the partition of a built search backend.

        Tree backends have their arena copied (empty nodes pruned, single
        child chains collapsed); grid backends are turned into a binary tree
        by halving the cell index range along its longest axis.
        """
        search._require_built()
        start = time.perf_counter()
        tree = cls(search.positions)
        if tree.num_points > 0:
            if hasattr(search, 'nodes'):
                tree._copy_search_tree(search.nodes)
            else:
                tree._build_from_grid(search)
        tree._finalize()
        logger.debug("cluster tree from %s: %d nodes, %d leaves in %.3fs",
                     search.name, len(tree.nodes), len(tree.leaves),
                     time.perf_counter() - start)
        return tree

    @classmethod
    def from_positions(cls, positions: np.ndarray, n_particles_in_leaf: int = 10,
                       max_depth: int = 32) -> 'ClusterTree':
        """
        Build a median bisection tree directly over positions.

        Points are not reordered; leaves hold index arrays into ``positions``.
        """
        if n_particles_in_leaf <= 0:
            raise ValueError("n_particles_in_leaf must be positive")
        start = time.perf_counter()
        tree = cls(positions)
        if tree.num_points > 0:
            pts = tree.positions
            box = Box(pts.min(axis=0), pts.max(axis=0))
            tree._bisect(np.arange(tree.num_points, dtype=np.int64), box, 0, -1,
                         n_particles_in_leaf, max_depth)
        tree._finalize()
        logger.debug("cluster tree by bisection: %d nodes, %d leaves in %.3fs",
                     len(tree.nodes), len(tree.leaves), time.perf_counter() - start)
        return tree

    def _bisect(self, indices: np.ndarray, box: Box, level: int, parent: int,
                n_particles_in_leaf: int, max_depth: int):
        values = self.positions[indices]
        spread = values.max(axis=0) - values.min(axis=0)
        dim = int(np.argmax(spread))

        if len(indices) <= n_particles_in_leaf or level >= max_depth or spread[dim] == 0.0:
            self._add_node(box, level, parent, indices)
            return

        index = self._add_node(box, level, parent)
        k = len(indices) // 2
        partition = np.argpartition(values[:, dim], k)
        split_value = float(values[partition[k], dim])
        lower_box, upper_box = box.split(dim, split_value)

        self._bisect(indices[partition[:k]], lower_box, level + 1, index,
                     n_particles_in_leaf, max_depth)
        self._bisect(indices[partition[k:]], upper_box, level + 1, index,
                     n_particles_in_leaf, max_depth)

    def _copy_search_tree(self, source_nodes):
        counts = np.zeros(len(source_nodes), dtype=np.int64)
        for i in range(len(source_nodes) - 1, -1, -1):
            node = source_nodes[i]
            if node.is_leaf:
                counts[i] = 0 if node.indices is None else len(node.indices)
            else:
                counts[i] = sum(counts[c] for c in node.children)

        def copy(i: int, parent: int, level: int):
            node = source_nodes[i]
            children = [c for c in node.children if counts[c] > 0]
            while len(children) == 1:
                node = source_nodes[children[0]]
                children = [c for c in node.children if counts[c] > 0]
            points = np.asarray(node.indices, dtype=np.int64) if node.is_leaf else None
            index = self._add_node(node.box, level, parent, points)
            for child in children:
                copy(child, index, level + 1)

        copy(0, -1, 0)

    def _build_from_grid(self, search):
        shape = np.asarray(search.cell_shape, dtype=np.int64)
        counts = np.zeros(int(np.prod(shape)), dtype=np.int64)
        for cell in range(len(counts)):
            counts[cell] = len(search.cell_points(cell))
        counts = counts.reshape(tuple(shape))
        domain_min = search.config.domain_min
        cell_size = search.cell_size

        def occupied(lo, hi) -> bool:
            region = tuple(slice(a, b) for a, b in zip(lo, hi))
            return counts[region].sum() > 0

        def halves(lo, hi):
            dim = int(np.argmax(hi - lo))
            mid = (lo[dim] + hi[dim]) // 2
            lower_hi = hi.copy()
            lower_hi[dim] = mid
            upper_lo = lo.copy()
            upper_lo[dim] = mid
            return [(lo, lower_hi), (upper_lo, hi)]

        def build(lo, hi, parent: int, level: int):
            # skip levels where one half is empty
            while np.prod(hi - lo) > 1:
                parts = [part for part in halves(lo, hi) if occupied(*part)]
                if len(parts) > 1:
                    break
                lo, hi = parts[0]

            box = Box(domain_min + lo * cell_size, domain_min + hi * cell_size)
            if np.prod(hi - lo) == 1:
                cell = int(np.ravel_multi_index(tuple(lo), tuple(shape)))
                self._add_node(box, level, parent,
                               np.asarray(search.cell_points(cell), dtype=np.int64))
                return
            index = self._add_node(box, level, parent)
            for part_lo, part_hi in halves(lo, hi):
                build(part_lo, part_hi, index, level + 1)

        build(np.zeros_like(shape), shape, -1, 0)

    def _finalize(self):
        """Grow boxes to their points and index leaves and levels."""
        for node in reversed(self.nodes):
            if node.is_leaf:
                node.box = node.box.grown_to_contain(self.positions[node.points])
            else:
                bmin = np.min([self.nodes[c].box.bmin for c in node.children] + [node.box.bmin], axis=0)
                bmax = np.max([self.nodes[c].box.bmax for c in node.children] + [node.box.bmax], axis=0)
                node.box = Box(bmin, bmax)

        self.leaves = [node.index for node in self.nodes if node.is_leaf]
        n_levels = max((node.level for node in self.nodes), default=-1) + 1
        self.levels = [[] for _ in range(n_levels)]
        for node in self.nodes:
            self.levels[node.level].append(node.index)

        if self.leaves:
            self.point_order = np.concatenate([self.nodes[i].points for i in self.leaves])
        else:
            self.point_order = np.zeros(0, dtype=np.int64)

    # ------------------------------------------------------------------
    # Admissibility
    # ------------------------------------------------------------------

    def dual_tree_traversal(self, source_tree: 'ClusterTree',
                            separation_ratio: float = 1.0) -> BlockPartition:
        """
        Split (self x source_tree) into far and near blocks.

        Starting from the two roots: an admissible pair is recorded as far
        and not descended further; an inadmissible pair of leaves is recorded
        as near; otherwise the children of every non-leaf side are visited.

        Args:
            source_tree: Tree over the source (column) points
            separation_ratio: Admissibility threshold, see ``Box.is_well_separated``

        Returns:
            BlockPartition keyed by node indices of the two trees
        """
        if separation_ratio <= 0:
            raise ValueError("Separation ratio must be positive")
        partition = BlockPartition(separation_ratio=separation_ratio)
        if not self.nodes or not source_tree.nodes:
            return partition

        stack = [(0, 0)]
        while stack:
            t, s = stack.pop()
            target = self.nodes[t]
            source = source_tree.nodes[s]

            if target.box.is_well_separated(source.box, separation_ratio):
                partition.far.setdefault(t, []).append(s)
            elif target.is_leaf and source.is_leaf:
                partition.near.setdefault(t, []).append(s)
            elif target.is_leaf:
                stack.extend((t, c) for c in source.children)
            elif source.is_leaf:
                stack.extend((c, s) for c in target.children)
            else:
                stack.extend((tc, sc) for tc in target.children for sc in source.children)

        return partition

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def node_points(self, index: int) -> np.ndarray:
        """All point indices below a node, in leaf order."""
        node = self.nodes[index]
        if node.is_leaf:
            return node.points
        return np.concatenate([self.node_points(c) for c in node.children])

    def get_max_level(self) -> int:
        return len(self.levels) - 1

    def get_statistics(self) -> dict:
        leaf_sizes = [len(self.nodes[i].points) for i in self.leaves]
        return {
            'num_points': self.num_points,
            'num_nodes': len(self.nodes),
            'num_leaves': len(self.leaves),
            'max_depth': self.get_max_level(),
            'avg_points_per_leaf': float(np.mean(leaf_sizes)) if leaf_sizes else 0.0,
            'max_points_per_leaf': max(leaf_sizes, default=0),
        }

    def __repr__(self) -> str:
        stats = self.get_statistics()
        return (f"ClusterTree(N={stats['num_points']}, "
                f"nodes={stats['num_nodes']}, "
                f"leaves={stats['num_leaves']}, "
                f"depth={stats['max_depth']})")
