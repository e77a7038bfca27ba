import numpy as np
import pytest
from numpy.testing import assert_allclose

from pseudolab import Algorithm
from pseudolab.direct_solver import build_discrete_nlp
from pseudolab.exceptions import ConfigurationError, NumericalFailure
from pseudolab.scaling import (
    ScalingFactors,
    compute_scaling,
    determine_bound_scaling,
    identity_scaling,
)
from pseudolab.utils.constants import MAXIMUM_ROW_SCALE


def _validated(**options):
    algorithm = Algorithm(**options)
    algorithm.validate()
    return algorithm


class TestBoundRules:
    def test_finite_bounds_map_onto_unit_interval(self):
        lower = np.array([-10.0, 0.0, 2.0])
        upper = np.array([10.0, 4.0, 3.0])
        scale, shift, rules = determine_bound_scaling(lower, upper)

        assert_allclose(scale, [10.0, 2.0, 0.5])
        assert_allclose(shift, [0.0, 2.0, 2.5])
        assert list(rules) == ["B", "B", "B"]
        assert_allclose((lower - shift) / scale, -1.0)
        assert_allclose((upper - shift) / scale, 1.0)

    def test_equal_bounds_scale_to_zero(self):
        scale, shift, rules = determine_bound_scaling(np.array([3.0]), np.array([3.0]))
        assert_allclose(scale, [1.0])
        assert_allclose(shift, [3.0])
        assert list(rules) == ["E"]

    def test_unbounded_and_half_bounded_are_identity(self):
        lower = np.array([-np.inf, 0.0, -np.inf])
        upper = np.array([np.inf, np.inf, 5.0])
        scale, shift, rules = determine_bound_scaling(lower, upper)
        assert_allclose(scale, [1.0, 1.0, 1.0])
        assert_allclose(shift, [0.0, 0.0, 0.0])
        assert list(rules) == ["U", "U", "U"]

    def test_inverted_bounds_raise_not_swap(self):
        with pytest.raises(ConfigurationError):
            determine_bound_scaling(np.array([0.0, 5.0]), np.array([1.0, 4.0]))


class TestScalingFactors:
    def test_scale_unscale_are_inverses(self):
        rng = np.random.default_rng(7)
        factors = ScalingFactors(
            mode="automatic",
            variable_scale=rng.uniform(0.1, 100.0, 20),
            variable_shift=rng.uniform(-50.0, 50.0, 20),
            constraint_scale=np.ones(0),
            constraint_shift=np.zeros(0),
        )
        raw = rng.normal(size=20) * 30.0
        assert_allclose(factors.unscale_values(factors.scale_values(raw)), raw, rtol=1e-14)

    def test_constraint_scaling_is_affine(self):
        factors = ScalingFactors(
            mode="automatic",
            variable_scale=np.ones(0),
            variable_shift=np.zeros(0),
            constraint_scale=np.array([2.0, 0.5, 10.0]),
            constraint_shift=np.array([1.0, 0.0, -4.0]),
        )
        values = np.array([3.0, 1.0, 6.0])
        assert_allclose(factors.scale_constraints(values), [1.0, 2.0, 1.0])
        assert_allclose(factors.unscale_constraints(factors.scale_constraints(values)), values)

    def test_infinite_bounds_stay_infinite(self):
        factors = identity_scaling(2, 0)
        lower, upper = factors.scale_variable_bounds(
            np.array([-np.inf, 0.0]), np.array([np.inf, 1.0])
        )
        assert lower[0] == -np.inf and upper[0] == np.inf

    def test_non_positive_scale_rejected(self):
        with pytest.raises(NumericalFailure):
            ScalingFactors(
                mode="manual",
                variable_scale=np.array([1.0, 0.0]),
                variable_shift=np.zeros(2),
                constraint_scale=np.ones(0),
                constraint_shift=np.zeros(0),
            )


class TestComputeScaling:
    def test_none_is_identity(self, chain_problem):
        problem = chain_problem(nodes=(6,))
        algorithm = _validated(scaling="none")
        nlp = build_discrete_nlp(problem, algorithm, {1: 6})
        factors = compute_scaling(nlp, problem, algorithm)

        assert_allclose(factors.variable_scale, 1.0)
        assert_allclose(factors.variable_shift, 0.0)
        assert_allclose(factors.constraint_scale, 1.0)
        assert factors.objective_scale == 1.0

    def test_automatic_envelope(self, chain_problem):
        problem = chain_problem(nodes=(6,))
        algorithm = _validated(scaling="automatic")
        nlp = build_discrete_nlp(problem, algorithm, {1: 6})
        factors = compute_scaling(nlp, problem, algorithm)

        lbz, ubz = factors.scale_variable_bounds(nlp.lbw, nlp.ubw)
        finite = np.isfinite(nlp.lbw) & np.isfinite(nlp.ubw)
        ranged = finite & (nlp.lbw < nlp.ubw)
        fixed = finite & (nlp.lbw == nlp.ubw)

        assert_allclose(lbz[ranged], -1.0)
        assert_allclose(ubz[ranged], 1.0)
        assert_allclose(lbz[fixed], 0.0, atol=1e-15)
        assert_allclose(ubz[fixed], 0.0, atol=1e-15)

        # States are bounded by +-10, controls by +-20
        layout = nlp.layout.phase(1)
        assert_allclose(factors.variable_scale[layout.states], 10.0)
        assert_allclose(factors.variable_scale[layout.controls], 20.0)

        # Defects and events are equalities: Jacobian-norm rule, never below one
        assert np.all(factors.constraint_scale >= 1.0)
        assert factors.objective_scale >= 1.0

    def test_manual_uses_phase_scale(self, chain_problem):
        problem = chain_problem(nodes=(5,))
        phase = problem.phase(1)
        phase.scale.states = [4.0]
        phase.scale.controls = [8.0]
        phase.scale.defects = [2.0]
        phase.scale.events = [1.0, 3.0, 5.0]
        problem.scale.objective = 10.0

        algorithm = _validated(scaling="manual")
        nlp = build_discrete_nlp(problem, algorithm, {1: 5})
        factors = compute_scaling(nlp, problem, algorithm)

        layout = nlp.layout.phase(1)
        assert_allclose(factors.variable_scale[layout.states], 4.0)
        assert_allclose(factors.variable_scale[layout.controls], 8.0)
        assert_allclose(factors.variable_shift, 0.0)
        assert_allclose(factors.constraint_scale[nlp.block("defects", 1).rows], 2.0)
        assert_allclose(factors.constraint_scale[nlp.block("events", 1).rows], [1.0, 3.0, 5.0])
        assert factors.objective_scale == 10.0

    def test_finite_difference_mode_matches_automatic(self, chain_problem):
        problem = chain_problem(nodes=(5,))
        exact = _validated(scaling="automatic")
        approximate = _validated(scaling="automatic", derivatives="finite-difference")
        nlp = build_discrete_nlp(problem, exact, {1: 5})

        assert_allclose(
            compute_scaling(nlp, problem, approximate).constraint_scale,
            compute_scaling(nlp, problem, exact).constraint_scale,
            rtol=1e-5,
        )

    def test_degenerate_row_scales_are_capped(self, chain_problem):
        # Chebyshev differentiation rows grow like N^2 at the endpoints
        problem = chain_problem(nodes=(30,))
        algorithm = _validated(scaling="automatic", collocation_method="Chebyshev")
        nlp = build_discrete_nlp(problem, algorithm, {1: 30})
        factors = compute_scaling(nlp, problem, algorithm)

        defects = factors.constraint_scale[nlp.block("defects", 1).rows]
        assert np.all(defects >= 1.0)
        assert np.all(defects <= MAXIMUM_ROW_SCALE)
        assert np.max(defects) == MAXIMUM_ROW_SCALE
