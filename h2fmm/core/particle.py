"""
Particle Module

Point container holding positions, stable ids and named per-point attributes.
"""

import logging
import threading
from typing import Callable, Dict, List, NamedTuple

import numpy as np

logger = logging.getLogger(__name__)


class PointState(NamedTuple):
    """Immutable snapshot of every per-point array in a container."""
    positions: np.ndarray
    ids: np.ndarray
    attributes: Dict[str, np.ndarray]


class Particles:
    """
    Container for a set of points in D dimensions.

    Positions, ids and every named attribute are stored as numpy arrays
    indexed by the current point order. Ids are assigned at insertion and
    survive any reordering.

    All per-point arrays live in one ``PointState`` that writers replace in a
    single assignment; readers that need several arrays at once should take
    ``snapshot()`` so they never mix two layouts.

    Attributes:
        reorder_count: Number of physical reorders applied so far
        version: Incremented on every change of positions, order or size
    """

    def __init__(self, positions: np.ndarray, **attributes):
        """
        Initialize the container.

        Args:
            positions: (N, D) array of point coordinates
            **attributes: Named per-point arrays of length N
        """
        positions = np.asarray(positions, dtype=np.float64)
        if positions.ndim != 2:
            raise ValueError("Positions must be a (N, D) array")

        self._lock = threading.RLock()
        self._state = PointState(positions.copy(),
                                 np.arange(len(positions), dtype=np.int64), {})
        self._next_id = len(positions)
        self._listeners: List[Callable[[np.ndarray], None]] = []
        self._search = None
        self.reorder_count = 0
        self.version = 0

        for name, values in attributes.items():
            self[name] = values

    @classmethod
    def empty(cls, dimension: int) -> 'Particles':
        """Create a container with no points."""
        return cls(np.zeros((0, dimension)))

    def snapshot(self) -> PointState:
        """Return the current positions, ids and attributes as one consistent state."""
        return self._state

    @property
    def positions(self) -> np.ndarray:
        """(N, D) array of point coordinates."""
        return self._state.positions

    @property
    def ids(self) -> np.ndarray:
        """(N,) array of stable point identities."""
        return self._state.ids

    @property
    def dimension(self) -> int:
        """Return the spatial dimension of the points."""
        return self._state.positions.shape[1]

    def __len__(self) -> int:
        return len(self._state.positions)

    def __getitem__(self, name: str) -> np.ndarray:
        return self._state.attributes[name]

    def __setitem__(self, name: str, values):
        values = np.asarray(values)
        with self._lock:
            state = self._state
            if values.shape[:1] != (len(state.positions),):
                raise ValueError(
                    f"Attribute '{name}' needs {len(state.positions)} entries, "
                    f"got shape {values.shape}"
                )
            attributes = dict(state.attributes)
            attributes[name] = values.copy()
            self._state = state._replace(attributes=attributes)

    def __contains__(self, name: str) -> bool:
        return name in self._state.attributes

    @property
    def attribute_names(self) -> List[str]:
        return list(self._state.attributes)

    def find_index(self, point_id: int) -> int:
        """Return the current index of the point with the given id."""
        matches = np.flatnonzero(self._state.ids == point_id)
        if len(matches) == 0:
            raise KeyError(f"No point with id {point_id}")
        return int(matches[0])

    def add_reorder_listener(self, listener: Callable[[np.ndarray], None]):
        """
        Register a callback invoked with the permutation after every reorder.

        The permutation maps new index -> old index.
        """
        self._listeners.append(listener)

    def _swap(self, state: PointState):
        # caller holds self._lock
        self._state = state
        self.version += 1

    def permute(self, order: np.ndarray):
        """
        Physically reorder every per-point array.

        The reordered arrays are built from one snapshot and swapped in as a
        single state, so readers never see a partial reorder.

        Args:
            order: Permutation with order[new_index] = old_index
        """
        order = np.asarray(order, dtype=np.int64)
        with self._lock:
            state = self._state
            if order.shape != (len(state.positions),):
                raise ValueError("Permutation length does not match point count")
            self._swap(PointState(
                state.positions[order],
                state.ids[order],
                {name: values[order] for name, values in state.attributes.items()},
            ))
            self.reorder_count += 1

        logger.debug("reordered %d points (reorder #%d)", len(order), self.reorder_count)
        for listener in self._listeners:
            listener(order)

    def append(self, positions: np.ndarray, **attributes):
        """
        Append points in bulk.

        Attributes not given for the new points are filled with zeros.
        """
        positions = np.atleast_2d(np.asarray(positions, dtype=np.float64))
        if positions.shape[1] != self.dimension:
            raise ValueError("Appended positions have the wrong dimension")
        n_new = len(positions)

        with self._lock:
            state = self._state
            unknown = set(attributes) - set(state.attributes)
            if unknown and len(state.positions) > 0:
                raise ValueError(f"Unknown attributes: {sorted(unknown)}")

            new_attributes = {}
            for name in set(state.attributes) | set(attributes):
                old = state.attributes.get(name)
                if name in attributes:
                    added = np.asarray(attributes[name])
                    if added.shape[:1] != (n_new,):
                        raise ValueError(f"Attribute '{name}' needs {n_new} entries")
                else:
                    added = np.zeros((n_new,) + old.shape[1:], dtype=old.dtype)
                new_attributes[name] = added if old is None else np.concatenate([old, added])

            new_ids = np.arange(self._next_id, self._next_id + n_new, dtype=np.int64)
            self._swap(PointState(
                np.concatenate([state.positions, positions]),
                np.concatenate([state.ids, new_ids]),
                new_attributes,
            ))
            self._next_id += n_new

        self._rebuild_search()

    def remove(self, indices):
        """Remove the points at the given current indices."""
        with self._lock:
            state = self._state
            keep = np.ones(len(state.positions), dtype=bool)
            keep[np.asarray(indices, dtype=np.int64)] = False
            self._swap(PointState(
                state.positions[keep],
                state.ids[keep],
                {name: values[keep] for name, values in state.attributes.items()},
            ))

        self._rebuild_search()

    def set_positions(self, positions: np.ndarray):
        """Replace all positions at once and rebuild the neighbour search."""
        positions = np.asarray(positions, dtype=np.float64)
        with self._lock:
            state = self._state
            if positions.shape != state.positions.shape:
                raise ValueError("New positions must match the existing shape")
            self._swap(state._replace(positions=positions.copy()))

        self._rebuild_search()

    def init_neighbour_search(self, domain_min, domain_max, periodic,
                              n_particles_in_leaf: int = 10,
                              method: str = 'bucket_search_serial'):
        """
        Create and build a neighbour search backend over this container.

        Backends that reorder points apply the reorder to this container.

        Args:
            domain_min: Lower domain corner
            domain_max: Upper domain corner
            periodic: Per-axis periodicity flags
            n_particles_in_leaf: Target number of points per bucket/leaf
            method: Backend name, see ``SEARCH_METHODS``

        Returns:
            The built search backend
        """
        from .search import create_search

        search = create_search(method)
        search.build(self, domain_min, domain_max, periodic, n_particles_in_leaf)
        self._search = search
        return search

    def get_query(self):
        """Return the attached neighbour search."""
        if self._search is None:
            raise RuntimeError("Call init_neighbour_search() before querying")
        return self._search

    @property
    def has_neighbour_search(self) -> bool:
        return self._search is not None

    def _rebuild_search(self):
        if self._search is None:
            return
        config = self._search.config
        self._search.build(
            self,
            config.domain_min,
            config.domain_max,
            config.periodic,
            config.n_particles_in_leaf,
        )

    def __repr__(self) -> str:
        return f"Particles(n={len(self)}, dim={self.dimension}, attributes={self.attribute_names})"
