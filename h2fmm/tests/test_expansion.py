"""
Tests for the Black-Box Expansion Engine

Each operator matrix is checked in isolation and chained against direct
kernel evaluation.
"""

import pytest
import numpy as np

from h2fmm.core import BlackBoxExpansion, Box, ChebyshevInterpolant, make_black_box_expansion
from h2fmm.kernels import GaussianKernel, MultiquadricKernel, as_kernel


def points_in(rng, box: Box, n: int) -> np.ndarray:
    return rng.uniform(box.bmin, box.bmax, size=(n, box.dimension))


class TestChebyshevInterpolant:
    """Tensor-product Chebyshev interpolation."""

    def test_nodes(self):
        interpolant = ChebyshevInterpolant(order=4, dimension=3)
        assert interpolant.num_nodes == 64
        assert interpolant.nodes.shape == (64, 3)
        assert np.all(np.abs(interpolant.nodes_1d) < 1.0)
        # first axis varies slowest
        assert np.allclose(interpolant.nodes[1], [interpolant.nodes_1d[0]] * 2 + [interpolant.nodes_1d[1]])

    def test_cardinal_at_nodes(self):
        interpolant = ChebyshevInterpolant(order=5, dimension=2)
        box = Box([1.0, -2.0], [3.0, 0.0])
        weights = interpolant.interpolation_matrix(box, interpolant.node_positions(box))
        assert np.allclose(weights, np.eye(25), atol=1e-12)

    @pytest.mark.parametrize("dimension", [1, 2, 3])
    def test_reproduces_polynomials(self, dimension):
        rng = np.random.default_rng(dimension)
        order = 4
        interpolant = ChebyshevInterpolant(order, dimension)
        box = Box(np.full(dimension, -0.5), np.full(dimension, 2.0))

        def poly(x):
            return np.prod(1.0 + x + 0.5 * x ** 2 - 0.1 * x ** 3, axis=-1)

        values = poly(interpolant.node_positions(box))
        points = points_in(rng, box, 30)
        assert np.allclose(interpolant.interpolate(values, box, points), poly(points), atol=1e-10)

    def test_order_one_is_constant(self):
        interpolant = ChebyshevInterpolant(order=1, dimension=2)
        box = Box([0.0, 0.0], [1.0, 1.0])
        weights = interpolant.interpolation_matrix(box, np.array([[0.1, 0.9], [0.5, 0.2]]))
        assert np.allclose(weights, 1.0)

    def test_flat_box(self):
        interpolant = ChebyshevInterpolant(order=3, dimension=2)
        box = Box([0.0, 0.5], [1.0, 0.5])
        weights = interpolant.interpolation_matrix(box, np.array([[0.25, 0.5], [0.75, 0.5]]))
        assert np.all(np.isfinite(weights))
        assert weights.shape == (9, 2)

    @pytest.mark.parametrize("order,dimension", [(0, 2), (3, 0)])
    def test_invalid_arguments(self, order, dimension):
        with pytest.raises(ValueError):
            ChebyshevInterpolant(order, dimension)


class TestOperatorShapes:
    """Operator matrices have the documented shapes and relations."""

    @pytest.mark.parametrize("dimension", [1, 2, 3])
    def test_shapes(self, dimension):
        rng = np.random.default_rng(10 + dimension)
        order = 3
        expansion = BlackBoxExpansion(GaussianKernel(), dimension, order)
        n = order ** dimension
        parent = Box(np.zeros(dimension), np.ones(dimension))
        child = parent.octants()[0]
        far = Box(np.full(dimension, 3.0), np.full(dimension, 4.0))
        points = points_in(rng, child, 7)

        assert expansion.num_coefficients == n
        assert expansion.P2M_matrix(child, points).shape == (n, 7)
        assert expansion.L2P_matrix(child, points).shape == (7, n)
        assert expansion.M2M_matrix(child, parent).shape == (n, n)
        assert expansion.L2L_matrix(child, parent).shape == (n, n)
        assert expansion.M2L_matrix(child, far).shape == (n, n)
        assert expansion.P2P_matrix(points, points[:4]).shape == (7, 4)

    def test_transposes(self):
        rng = np.random.default_rng(20)
        expansion = BlackBoxExpansion(GaussianKernel(), 2, 4)
        parent = Box([0.0, 0.0], [1.0, 1.0])
        child = parent.octants()[3]
        points = points_in(rng, child, 9)

        assert np.allclose(expansion.L2P_matrix(child, points), expansion.P2M_matrix(child, points).T)
        assert np.allclose(expansion.L2L_matrix(child, parent), expansion.M2M_matrix(child, parent).T)

    def test_m2m_is_exact(self):
        """Translating child multipoles equals expanding straight into the parent."""
        rng = np.random.default_rng(21)
        expansion = BlackBoxExpansion(GaussianKernel(), 2, 5)
        parent = Box([0.0, 0.0], [1.0, 1.0])
        child = Box([0.5, 0.0], [1.0, 0.5])
        points = points_in(rng, child, 12)

        direct = expansion.P2M_matrix(parent, points)
        translated = expansion.M2M_matrix(child, parent) @ expansion.P2M_matrix(child, points)
        assert np.allclose(direct, translated, atol=1e-12)

    def test_p2m_rejects_wrong_dimension(self):
        expansion = BlackBoxExpansion(GaussianKernel(), 2, 3)
        with pytest.raises(ValueError):
            expansion.P2M_matrix(Box([0.0, 0.0], [1.0, 1.0]), np.zeros((4, 3)))

    @pytest.mark.parametrize("order", [0, 2.5, -1])
    def test_invalid_order(self, order):
        with pytest.raises(ValueError):
            BlackBoxExpansion(GaussianKernel(), 2, order)


class TestKernelConvention:
    """K(dx, x_a, x_b) with x_a the target and dx = x_b - x_a."""

    def test_p2p_argument_order(self):
        expansion = make_black_box_expansion(lambda dx, a, b: a[..., 0] - 2.0 * b[..., 0], 1, 2)
        targets = np.array([[1.0], [2.0]])
        sources = np.array([[10.0], [20.0], [30.0]])
        expected = targets[:, 0][:, None] - 2.0 * sources[:, 0][None, :]
        assert np.allclose(expansion.P2P_matrix(targets, sources), expected)

    def test_displacement_direction(self):
        expansion = make_black_box_expansion(lambda dx, a, b: dx[..., 0], 1, 2)
        targets = np.array([[1.0], [2.0]])
        sources = np.array([[10.0], [20.0]])
        assert np.allclose(expansion.P2P_matrix(targets, sources), [[9.0, 19.0], [8.0, 18.0]])

    def test_scalar_kernel_wrapper(self):
        rng = np.random.default_rng(30)
        scalar = as_kernel(lambda dx, a, b: float(np.sqrt(dx @ dx + 0.1)), vectorized=False)
        vector = MultiquadricKernel(c=0.1)
        targets = rng.uniform(size=(5, 2))
        sources = rng.uniform(size=(6, 2))
        a = BlackBoxExpansion(scalar, 2, 3).P2P_matrix(targets, sources)
        b = BlackBoxExpansion(vector, 2, 3).P2P_matrix(targets, sources)
        assert np.allclose(a, b)

    def test_m2l_samples_kernel_at_nodes(self):
        expansion = BlackBoxExpansion(MultiquadricKernel(c=0.1), 2, 3)
        target = Box([0.0, 0.0], [1.0, 1.0])
        source = Box([3.0, 0.0], [4.0, 1.0])
        x = expansion.interpolant.node_positions(target)
        y = expansion.interpolant.node_positions(source)
        expected = np.sqrt(((y[None, :, :] - x[:, None, :]) ** 2).sum(axis=-1) + 0.1)
        assert np.allclose(expansion.M2L_matrix(target, source), expected)


class TestOperatorRoundTrip:
    """Chained operators reproduce direct evaluation."""

    n = 10
    order = 10

    def _setup(self, kernel, seed):
        rng = np.random.default_rng(seed)
        expansion = BlackBoxExpansion(kernel, 2, self.order)
        parent = Box([0.0, 0.0], [1.0, 1.0])
        leaf1 = Box([0.0, 0.0], [0.5, 1.0])
        leaf2 = Box([0.5, 0.0], [1.0, 1.0])
        points1 = points_in(rng, leaf1, self.n)
        points2 = points_in(rng, leaf2, self.n)
        return expansion, parent, leaf1, leaf2, points1, points2

    def test_well_separated_boxes(self):
        rng = np.random.default_rng(40)
        expansion = BlackBoxExpansion(MultiquadricKernel(c=0.1), 2, self.order)
        target_box = Box([0.0, 0.0], [0.5, 1.0])
        source_box = Box([2.0, 0.0], [2.5, 1.0])
        assert target_box.is_well_separated(source_box, 1.0)

        targets = points_in(rng, target_box, self.n)
        sources = points_in(rng, source_box, self.n)
        values = sources[:, 0]

        exact = expansion.P2P_matrix(targets, sources) @ values
        multipole = expansion.P2M_matrix(source_box, sources) @ values
        local = expansion.M2L_matrix(target_box, source_box) @ multipole
        approx = expansion.L2P_matrix(target_box, targets) @ local
        assert np.max(np.abs(approx - exact)) < 2e-4

    def test_same_box(self):
        expansion, _, leaf1, _, points1, _ = self._setup(GaussianKernel(sigma=1.0), 41)
        values = points1[:, 0]

        exact = expansion.P2P_matrix(points1, points1) @ values
        local = expansion.M2L_matrix(leaf1, leaf1) @ (expansion.P2M_matrix(leaf1, points1) @ values)
        approx = expansion.L2P_matrix(leaf1, points1) @ local
        assert np.max(np.abs(approx - exact)) < 2e-4

    def test_parent_aggregation(self):
        expansion, parent, leaf1, leaf2, points1, points2 = self._setup(GaussianKernel(sigma=1.0), 42)
        values1 = points1[:, 0]
        values2 = points2[:, 0]

        # exact field on leaf1 from both leaves
        exact = (expansion.P2P_matrix(points1, points1) @ values1
                 + expansion.P2P_matrix(points1, points2) @ values2)

        m1 = expansion.P2M_matrix(leaf1, points1) @ values1
        m2 = expansion.P2M_matrix(leaf2, points2) @ values2
        m_parent = expansion.M2M_matrix(leaf1, parent) @ m1 + expansion.M2M_matrix(leaf2, parent) @ m2
        l_parent = expansion.M2L_matrix(parent, parent) @ m_parent
        l1 = expansion.L2L_matrix(leaf1, parent) @ l_parent
        approx = expansion.L2P_matrix(leaf1, points1) @ l1

        assert np.max(np.abs(approx - exact)) < 2e-4
        assert np.linalg.norm(approx - exact) / np.linalg.norm(exact) < 1e-4

    def test_error_decreases_with_order(self):
        rng = np.random.default_rng(43)
        kernel = MultiquadricKernel(c=0.1)
        target_box = Box([0.0, 0.0], [1.0, 1.0])
        source_box = Box([3.0, 0.0], [4.0, 1.0])
        targets = points_in(rng, target_box, 20)
        sources = points_in(rng, source_box, 20)
        values = rng.uniform(size=20)

        errors = []
        for order in [2, 4, 6]:
            expansion = BlackBoxExpansion(kernel, 2, order)
            exact = expansion.P2P_matrix(targets, sources) @ values
            approx = expansion.L2P_matrix(target_box, targets) @ (
                expansion.M2L_matrix(target_box, source_box)
                @ (expansion.P2M_matrix(source_box, sources) @ values)
            )
            errors.append(np.max(np.abs(approx - exact)))

        assert errors[0] > errors[1] > errors[2]
