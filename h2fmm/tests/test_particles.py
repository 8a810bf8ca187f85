"""
Tests for the Point Container

Stable ids, named attributes, bulk updates and search rebuilds.
"""

import pytest
import numpy as np

from h2fmm.core import Particles, euclidean_search


@pytest.fixture
def particles():
    positions = np.array([[0.1, 0.1], [0.9, 0.9], [0.5, 0.5], [0.2, 0.8]])
    return Particles(positions, charge=np.array([1.0, 2.0, 3.0, 4.0]))


class TestContainer:
    """Basic container behaviour."""

    def test_initialization(self, particles):
        assert len(particles) == 4
        assert particles.dimension == 2
        assert np.array_equal(particles.ids, np.arange(4))
        assert 'charge' in particles
        assert particles.attribute_names == ['charge']

    def test_rejects_flat_positions(self):
        with pytest.raises(ValueError):
            Particles(np.zeros(5))

    def test_attribute_length_checked(self, particles):
        with pytest.raises(ValueError):
            particles['mass'] = np.ones(3)
        particles['mass'] = np.ones(4)
        assert np.array_equal(particles['mass'], np.ones(4))

    def test_find_index(self, particles):
        particles.permute(np.array([3, 2, 1, 0]))
        assert particles.find_index(0) == 3
        assert particles.find_index(3) == 0
        with pytest.raises(KeyError):
            particles.find_index(42)

    def test_permute_moves_everything(self, particles):
        seen = []
        particles.add_reorder_listener(seen.append)
        order = np.array([2, 0, 3, 1])
        particles.permute(order)

        assert particles.reorder_count == 1
        assert np.array_equal(particles.ids, order)
        assert np.array_equal(particles['charge'], [3.0, 1.0, 4.0, 2.0])
        assert np.allclose(particles.positions[0], [0.5, 0.5])
        assert len(seen) == 1 and np.array_equal(seen[0], order)

    def test_permute_length_checked(self, particles):
        with pytest.raises(ValueError):
            particles.permute(np.array([0, 1]))


class TestBulkUpdates:
    """Append, remove and position replacement."""

    def test_append_assigns_new_ids(self, particles):
        particles.append(np.array([[0.3, 0.3], [0.7, 0.7]]), charge=np.array([5.0, 6.0]))
        assert len(particles) == 6
        assert np.array_equal(particles.ids, np.arange(6))
        assert np.array_equal(particles['charge'], [1.0, 2.0, 3.0, 4.0, 5.0, 6.0])

    def test_append_zero_fills_missing_attributes(self, particles):
        particles.append(np.array([0.3, 0.3]))
        assert particles['charge'][-1] == 0.0

    def test_append_unknown_attribute(self, particles):
        with pytest.raises(ValueError):
            particles.append(np.array([[0.3, 0.3]]), velocity=np.zeros(1))

    def test_append_wrong_dimension(self, particles):
        with pytest.raises(ValueError):
            particles.append(np.zeros((1, 3)))

    def test_remove_keeps_ids_stable(self, particles):
        particles.remove([1])
        assert particles.ids.tolist() == [0, 2, 3]
        assert particles['charge'].tolist() == [1.0, 3.0, 4.0]

        particles.append(np.array([[0.4, 0.4]]))
        assert particles.ids.tolist() == [0, 2, 3, 4]

    def test_set_positions_shape_checked(self, particles):
        with pytest.raises(ValueError):
            particles.set_positions(np.zeros((3, 2)))

    def test_snapshot_unaffected_by_later_reorder(self, particles):
        before = particles.snapshot()
        particles.permute(np.array([3, 2, 1, 0]))
        after = particles.snapshot()

        assert before.ids.tolist() == [0, 1, 2, 3]
        assert np.allclose(before.positions[0], [0.1, 0.1])
        assert after.ids.tolist() == [3, 2, 1, 0]
        assert np.allclose(after.positions[0], [0.2, 0.8])
        assert after.attributes['charge'].tolist() == [4.0, 3.0, 2.0, 1.0]

    def test_version_bumped_by_every_mutation(self, particles):
        assert particles.version == 0
        particles.set_positions(particles.positions + 0.01)
        assert particles.version == 1
        particles.permute(np.array([1, 0, 2, 3]))
        assert particles.version == 2
        particles.append(np.array([[0.3, 0.3]]))
        assert particles.version == 3
        particles.remove([0])
        assert particles.version == 4
        assert particles.reorder_count == 1


class TestSearchRebuild:
    """Mutations rebuild the attached neighbour search."""

    def test_query_before_init(self, particles):
        with pytest.raises(RuntimeError):
            particles.get_query()
        assert not particles.has_neighbour_search

    @pytest.mark.parametrize("method", ['bucket_search_serial', 'kd_tree'])
    def test_append_is_searchable(self, particles, method):
        particles.init_neighbour_search([0.0, 0.0], [1.0, 1.0], False, method=method)
        assert particles.has_neighbour_search
        assert len(euclidean_search(particles.get_query(), [0.65, 0.15], 0.05)) == 0

        particles.append(np.array([[0.65, 0.15]]))
        found = euclidean_search(particles.get_query(), [0.65, 0.15], 0.05).indices()
        assert particles.ids[found].tolist() == [4]

    @pytest.mark.parametrize("method", ['octree', 'bucket_search_parallel'])
    def test_remove_and_move(self, particles, method):
        particles.init_neighbour_search([0.0, 0.0], [1.0, 1.0], True, method=method)

        particles.remove([particles.find_index(2)])
        assert len(euclidean_search(particles.get_query(), [0.5, 0.5], 0.1)) == 0

        moved = particles.positions.copy()
        moved[particles.find_index(0)] = [0.5, 0.5]
        particles.set_positions(moved)
        found = euclidean_search(particles.get_query(), [0.5, 0.5], 0.1).indices()
        assert particles.ids[found].tolist() == [0]
