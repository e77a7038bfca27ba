"""
Collocation nodes, quadrature weights and differentiation matrices.

Legendre and Chebyshev Gauss-Lobatto grids and the uniform trapezoidal grid
live on the reference interval [-1, 1]. Components are cached per
``(method, num_nodes)``; the cache is safe to share between threads.
"""

import threading
from dataclasses import dataclass, field
from typing import ClassVar, cast

import numpy as np
from scipy.special import eval_legendre
from scipy.special import roots_jacobi as _scipy_roots_jacobi

from .exceptions import ConfigurationError, InterpolationError
from .input_validation import minimum_nodes_for, validate_positive_integer
from .pl_types import FloatArray, FloatMatrix
from .utils.constants import ZERO_TOLERANCE


@dataclass(frozen=True)
class CollocationComponents:
    """
    Discretization operators of one scheme on ``N`` nodes in ``[-1, 1]``.

    Every scheme enforces its dynamics defects as
    ``X @ state_operator.T - (tf - t0) / 2 * F @ dynamics_operator.T == 0``,
    where ``X`` and ``F`` hold the states and the dynamics at the nodes.
    """

    method: str
    nodes: FloatArray = field(default_factory=lambda: np.array([], dtype=np.float64))
    quadrature_weights: FloatArray = field(default_factory=lambda: np.array([], dtype=np.float64))
    state_operator: FloatMatrix = field(
        default_factory=lambda: np.empty((0, 0), dtype=np.float64)
    )
    dynamics_operator: FloatMatrix = field(
        default_factory=lambda: np.empty((0, 0), dtype=np.float64)
    )
    barycentric_weights: FloatArray = field(default_factory=lambda: np.array([], dtype=np.float64))

    @property
    def num_nodes(self) -> int:
        return len(self.nodes)

    @property
    def num_defects(self) -> int:
        return self.state_operator.shape[0]

    @property
    def is_pseudospectral(self) -> bool:
        return self.method in ("legendre", "chebyshev")


class CollocationCache:
    """Thread-safe global cache for collocation operators keyed by (method, N)."""

    _instance: ClassVar["CollocationCache | None"] = None
    _cache: ClassVar[dict[tuple[str, int], CollocationComponents]] = {}
    _lock: ClassVar[threading.Lock] = threading.Lock()

    def __new__(cls) -> "CollocationCache":
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
        return cls._instance

    def get_components(self, method: str, num_nodes: int) -> CollocationComponents:
        key = (method, num_nodes)
        with self._lock:
            if key not in self._cache:
                self._cache[key] = _compute_components(method, num_nodes)
            return self._cache[key]


_collocation_cache = CollocationCache()


def roots_jacobi(n: int, alpha: float, beta: float) -> tuple[FloatArray, FloatArray]:
    # Wrapper for scipy roots_jacobi with proper typing - parameter validation assumed
    x_val, w_val = _scipy_roots_jacobi(n, alpha, beta)
    return (
        cast(FloatArray, x_val.astype(np.float64)),
        cast(FloatArray, w_val.astype(np.float64)),
    )


def compute_legendre_gauss_lobatto_nodes_and_weights(
    num_nodes: int,
) -> tuple[FloatArray, FloatArray]:
    # Interior LGL nodes are the roots of P'_{N-1}, i.e. of the Jacobi polynomial P^{(1,1)}_{N-2}
    if num_nodes == 2:
        interior = np.array([], dtype=np.float64)
    else:
        interior, _ = roots_jacobi(num_nodes - 2, 1.0, 1.0)

    nodes = np.concatenate([[-1.0], np.sort(interior), [1.0]]).astype(np.float64)
    degree = num_nodes - 1
    legendre_at_nodes = eval_legendre(degree, nodes)
    weights = 2.0 / (degree * (degree + 1) * legendre_at_nodes**2)
    return nodes, weights.astype(np.float64)


def compute_chebyshev_gauss_lobatto_nodes_and_weights(
    num_nodes: int,
) -> tuple[FloatArray, FloatArray]:
    # Clenshaw-Curtis weights for the extrema of T_{N-1}, nodes ordered from -1 to 1
    n = num_nodes - 1
    theta = np.pi * np.arange(n + 1) / n
    nodes = -np.cos(theta)
    nodes[0], nodes[-1] = -1.0, 1.0
    if n % 2 == 0:
        # Odd node counts keep the midpoint exactly on zero
        nodes[n // 2] = 0.0

    weights = np.zeros(n + 1, dtype=np.float64)
    interior_theta = theta[1:-1]
    v = np.ones(n - 1, dtype=np.float64)
    if n % 2 == 0:
        weights[0] = weights[n] = 1.0 / (n**2 - 1)
        for k in range(1, n // 2):
            v -= 2.0 * np.cos(2 * k * interior_theta) / (4 * k**2 - 1)
        v -= np.cos(n * interior_theta) / (n**2 - 1)
    else:
        weights[0] = weights[n] = 1.0 / n**2
        for k in range(1, (n - 1) // 2 + 1):
            v -= 2.0 * np.cos(2 * k * interior_theta) / (4 * k**2 - 1)
    weights[1:-1] = 2.0 * v / n
    return nodes.astype(np.float64), weights


def compute_trapezoidal_nodes_and_weights(num_nodes: int) -> tuple[FloatArray, FloatArray]:
    nodes = np.linspace(-1.0, 1.0, num_nodes, dtype=np.float64)
    spacing = np.diff(nodes)
    weights = np.zeros(num_nodes, dtype=np.float64)
    weights[:-1] += spacing / 2.0
    weights[1:] += spacing / 2.0
    return nodes, weights


def compute_barycentric_weights(nodes: FloatArray) -> FloatArray:
    num_nodes = len(nodes)
    if num_nodes == 1:
        return np.array([1.0], dtype=np.float64)

    differences_matrix = nodes[:, np.newaxis] - nodes[np.newaxis, :]
    np.fill_diagonal(differences_matrix, 1.0)
    if np.any(np.abs(differences_matrix) < ZERO_TOLERANCE):
        raise ConfigurationError("Collocation nodes must be distinct")

    # Normalizing by the largest weight keeps large node counts away from overflow
    weights = 1.0 / np.prod(differences_matrix, axis=1, dtype=np.float64)
    return (weights / np.max(np.abs(weights))).astype(np.float64)


def compute_differentiation_matrix(
    nodes: FloatArray, barycentric_weights: FloatArray
) -> FloatMatrix:
    # Off-diagonal entries from the barycentric formula, diagonal from the row-sum identity
    num_nodes = len(nodes)
    differences = nodes[:, np.newaxis] - nodes[np.newaxis, :]
    np.fill_diagonal(differences, 1.0)

    weight_ratios = barycentric_weights[np.newaxis, :] / barycentric_weights[:, np.newaxis]
    diff_matrix = weight_ratios / differences
    np.fill_diagonal(diff_matrix, 0.0)
    diff_matrix[np.arange(num_nodes), np.arange(num_nodes)] = -np.sum(diff_matrix, axis=1)
    return diff_matrix


def evaluate_lagrange_basis_at_point(
    nodes: FloatArray, barycentric_weights: FloatArray, tau: float
) -> FloatArray:
    """Values of every Lagrange basis polynomial of ``nodes`` at ``tau``."""
    differences = tau - nodes
    coincident = np.flatnonzero(np.abs(differences) < ZERO_TOLERANCE)
    if coincident.size > 0:
        values = np.zeros(len(nodes), dtype=np.float64)
        values[coincident[0]] = 1.0
        return values

    terms = barycentric_weights / differences
    return cast(FloatArray, terms / np.sum(terms))


def _compute_components(method: str, num_nodes: int) -> CollocationComponents:
    if method == "legendre":
        nodes, quadrature_weights = compute_legendre_gauss_lobatto_nodes_and_weights(num_nodes)
    elif method == "chebyshev":
        nodes, quadrature_weights = compute_chebyshev_gauss_lobatto_nodes_and_weights(num_nodes)
    elif method == "trapezoidal":
        nodes, quadrature_weights = compute_trapezoidal_nodes_and_weights(num_nodes)
    else:
        raise ConfigurationError(f"Unknown collocation method '{method}'")

    if method == "trapezoidal":
        barycentric_weights = np.ones(num_nodes, dtype=np.float64)
        # One defect per interval: x_{k+1} - x_k = h_k / 2 * (f_k + f_{k+1})
        state_operator = np.zeros((num_nodes - 1, num_nodes), dtype=np.float64)
        dynamics_operator = np.zeros((num_nodes - 1, num_nodes), dtype=np.float64)
        half_spacing = np.diff(nodes) / 2.0
        for k in range(num_nodes - 1):
            state_operator[k, k] = -1.0
            state_operator[k, k + 1] = 1.0
            dynamics_operator[k, k] = half_spacing[k]
            dynamics_operator[k, k + 1] = half_spacing[k]
    else:
        barycentric_weights = compute_barycentric_weights(nodes)
        state_operator = compute_differentiation_matrix(nodes, barycentric_weights)
        dynamics_operator = np.eye(num_nodes, dtype=np.float64)

    return CollocationComponents(
        method=method,
        nodes=nodes,
        quadrature_weights=quadrature_weights,
        state_operator=state_operator,
        dynamics_operator=dynamics_operator,
        barycentric_weights=barycentric_weights,
    )


def compute_collocation_components(method: str, num_nodes: int) -> CollocationComponents:
    """Get collocation operators from the global cache.

    Centralized validation and caching for every supported discretization.
    """
    validate_positive_integer(
        num_nodes, f"{method} node count", min_value=minimum_nodes_for(method)
    )
    return _collocation_cache.get_components(method, num_nodes)


def interpolation_matrix(
    source: CollocationComponents, target_nodes: FloatArray
) -> FloatMatrix:
    """
    Matrix ``M`` with ``values_at_target = values_at_source @ M.T``.

    Pseudospectral schemes resample through their interpolating polynomial,
    trapezoidal grids through piecewise linear interpolation.
    """
    target = np.asarray(target_nodes, dtype=np.float64).flatten()
    if np.any(target < -1.0 - ZERO_TOLERANCE) or np.any(target > 1.0 + ZERO_TOLERANCE):
        raise InterpolationError(
            "Target nodes must lie in the normalized interval [-1, 1]",
            f"{source.method} resampling",
        )

    matrix = np.zeros((len(target), source.num_nodes), dtype=np.float64)
    if source.is_pseudospectral:
        for i, tau in enumerate(target):
            matrix[i, :] = evaluate_lagrange_basis_at_point(
                source.nodes, source.barycentric_weights, float(tau)
            )
        return matrix

    identity = np.eye(source.num_nodes, dtype=np.float64)
    for j in range(source.num_nodes):
        matrix[:, j] = np.interp(target, source.nodes, identity[j])
    return matrix


def linear_resample(
    sample_points: FloatArray, values: FloatMatrix, target_points: FloatArray
) -> FloatMatrix:
    """Row-wise linear interpolation, clamped to the end values outside the samples."""
    values = np.atleast_2d(np.asarray(values, dtype=np.float64))
    if values.shape[1] != len(sample_points):
        raise InterpolationError(
            f"Cannot resample {values.shape[1]} samples against {len(sample_points)} sample points"
        )
    if len(sample_points) == 1:
        return np.repeat(values, len(target_points), axis=1)
    return np.vstack([np.interp(target_points, sample_points, row) for row in values])
