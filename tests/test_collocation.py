import numpy as np
import pytest
from numpy.testing import assert_allclose

from pseudolab.collocation import (
    compute_barycentric_weights,
    compute_chebyshev_gauss_lobatto_nodes_and_weights,
    compute_collocation_components,
    compute_legendre_gauss_lobatto_nodes_and_weights,
    evaluate_lagrange_basis_at_point,
    interpolation_matrix,
    linear_resample,
)
from pseudolab.exceptions import ConfigurationError, InterpolationError


class TestLegendreGaussLobatto:
    def test_three_node_rule(self):
        nodes, weights = compute_legendre_gauss_lobatto_nodes_and_weights(3)
        assert_allclose(nodes, [-1.0, 0.0, 1.0], atol=1e-15)
        assert_allclose(weights, [1.0 / 3.0, 4.0 / 3.0, 1.0 / 3.0], rtol=1e-14)

    @pytest.mark.parametrize("N", [3, 4, 5, 8, 12, 20])
    def test_nodes_sorted_with_endpoints(self, N):
        nodes, weights = compute_legendre_gauss_lobatto_nodes_and_weights(N)
        assert nodes[0] == -1.0 and nodes[-1] == 1.0
        assert np.all(np.diff(nodes) > 0)
        assert np.all(weights > 0)
        assert_allclose(np.sum(weights), 2.0, rtol=1e-13)

    @pytest.mark.parametrize("N", [3, 4, 6, 10])
    def test_quadrature_exact_to_degree_2N_minus_3(self, N):
        nodes, weights = compute_legendre_gauss_lobatto_nodes_and_weights(N)
        for degree in range(2 * N - 2):
            exact = 0.0 if degree % 2 == 1 else 2.0 / (degree + 1)
            assert abs(np.sum(weights * nodes**degree) - exact) < 1e-12, (
                f"LGL quadrature not exact for N={N}, degree={degree}"
            )


class TestChebyshevGaussLobatto:
    def test_three_node_rule(self):
        nodes, weights = compute_chebyshev_gauss_lobatto_nodes_and_weights(3)
        assert_allclose(nodes, [-1.0, 0.0, 1.0], atol=1e-15)
        assert_allclose(weights, [1.0 / 3.0, 4.0 / 3.0, 1.0 / 3.0], rtol=1e-14)

    @pytest.mark.parametrize("N", [4, 5, 9, 16])
    def test_clenshaw_curtis_integrates_polynomials(self, N):
        nodes, weights = compute_chebyshev_gauss_lobatto_nodes_and_weights(N)
        assert np.all(np.diff(nodes) > 0)
        for degree in range(N):
            exact = 0.0 if degree % 2 == 1 else 2.0 / (degree + 1)
            assert abs(np.sum(weights * nodes**degree) - exact) < 1e-12


class TestCollocationComponents:
    @pytest.mark.parametrize("method", ["legendre", "chebyshev"])
    @pytest.mark.parametrize("N", [3, 5, 10])
    def test_differentiation_matrix_exact_for_polynomials(self, method, N):
        components = compute_collocation_components(method, N)
        D = components.state_operator
        tau = components.nodes
        for degree in range(N):
            values = tau**degree
            derivative = degree * tau ** max(degree - 1, 0) if degree > 0 else np.zeros(N)
            assert_allclose(D @ values, derivative, atol=1e-9)

    @pytest.mark.parametrize("method", ["legendre", "chebyshev"])
    def test_pseudospectral_blocks_are_square(self, method):
        components = compute_collocation_components(method, 6)
        assert components.state_operator.shape == (6, 6)
        assert_allclose(components.dynamics_operator, np.eye(6))
        assert components.num_defects == 6
        assert components.is_pseudospectral

    def test_trapezoidal_operators_are_banded(self):
        components = compute_collocation_components("trapezoidal", 5)
        D = components.state_operator
        A = components.dynamics_operator
        h = 0.5

        assert D.shape == (4, 5) and A.shape == (4, 5)
        assert components.num_defects == 4
        for k in range(4):
            expected_D = np.zeros(5)
            expected_D[k], expected_D[k + 1] = -1.0, 1.0
            expected_A = np.zeros(5)
            expected_A[k] = expected_A[k + 1] = h / 2.0
            assert_allclose(D[k], expected_D)
            assert_allclose(A[k], expected_A)
        assert_allclose(np.sum(components.quadrature_weights), 2.0)

    def test_cache_returns_same_object(self):
        first = compute_collocation_components("legendre", 7)
        second = compute_collocation_components("legendre", 7)
        assert first is second

    @pytest.mark.parametrize(
        "method, N", [("legendre", 2), ("chebyshev", 1), ("trapezoidal", 1)]
    )
    def test_too_few_nodes_rejected(self, method, N):
        with pytest.raises(ConfigurationError):
            compute_collocation_components(method, N)


class TestInterpolation:
    def test_barycentric_partition_of_unity(self):
        nodes, _ = compute_legendre_gauss_lobatto_nodes_and_weights(6)
        weights = compute_barycentric_weights(nodes)
        for tau in np.linspace(-0.95, 0.95, 17):
            assert abs(np.sum(evaluate_lagrange_basis_at_point(nodes, weights, tau)) - 1.0) < 1e-12

    def test_basis_is_cardinal_at_nodes(self):
        nodes, _ = compute_legendre_gauss_lobatto_nodes_and_weights(5)
        weights = compute_barycentric_weights(nodes)
        for j, tau in enumerate(nodes):
            assert_allclose(evaluate_lagrange_basis_at_point(nodes, weights, tau), np.eye(5)[j])

    def test_pseudospectral_resampling_exact_for_polynomials(self):
        source = compute_collocation_components("legendre", 6)
        target = compute_collocation_components("legendre", 11)
        M = interpolation_matrix(source, target.nodes)

        values = np.vstack([source.nodes**3 - source.nodes, 2.0 * source.nodes**5])
        expected = np.vstack([target.nodes**3 - target.nodes, 2.0 * target.nodes**5])
        assert_allclose(values @ M.T, expected, atol=1e-11)

    def test_trapezoidal_resampling_is_linear(self):
        source = compute_collocation_components("trapezoidal", 3)
        M = interpolation_matrix(source, np.array([-1.0, -0.5, 0.25, 1.0]))
        values = np.array([[0.0, 2.0, 6.0]])
        assert_allclose(values @ M.T, [[0.0, 1.0, 3.0, 6.0]])

    def test_target_outside_interval_rejected(self):
        source = compute_collocation_components("legendre", 4)
        with pytest.raises(InterpolationError):
            interpolation_matrix(source, np.array([0.0, 1.5]))

    def test_linear_resample_clamps_outside_samples(self):
        values = np.array([[1.0, 3.0]])
        result = linear_resample(np.array([0.0, 1.0]), values, np.array([-1.0, 0.5, 2.0]))
        assert_allclose(result, [[1.0, 2.0, 3.0]])

    def test_linear_resample_sample_count_mismatch(self):
        with pytest.raises(InterpolationError):
            linear_resample(np.array([0.0, 1.0, 2.0]), np.ones((1, 2)), np.array([0.5]))
