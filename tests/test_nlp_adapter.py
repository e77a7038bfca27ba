import numpy as np
import pytest

from pseudolab import Algorithm, NLPStatus
from pseudolab.direct_solver import build_discrete_nlp
from pseudolab.exceptions import DataIntegrityError
from pseudolab.nlp_adapter import (
    STEP_TOO_SMALL,
    NLPSolverAdapter,
    bound_violation,
    build_solver_options,
    map_return_status,
    scaled_tolerances,
)
from pseudolab.scaling import ScalingFactors, compute_scaling, identity_scaling


def _validated(**options):
    algorithm = Algorithm(**options)
    algorithm.validate()
    return algorithm


class TestReturnStatusMapping:
    @pytest.mark.parametrize(
        "return_status, expected",
        [
            ("Solve_Succeeded", NLPStatus.CONVERGED),
            ("Solved_To_Acceptable_Level", NLPStatus.CONVERGED),
            ("Maximum_Iterations_Exceeded", NLPStatus.MAX_ITERATIONS_REACHED),
            ("Maximum_CpuTime_Exceeded", NLPStatus.MAX_ITERATIONS_REACHED),
            ("Maximum_WallTime_Exceeded", NLPStatus.MAX_ITERATIONS_REACHED),
            ("Infeasible_Problem_Detected", NLPStatus.INFEASIBLE),
            ("Restoration_Failed", NLPStatus.NUMERICAL_FAILURE),
            ("Invalid_Number_Detected", NLPStatus.NUMERICAL_FAILURE),
            ("Search_Direction_Becomes_Too_Small", NLPStatus.NUMERICAL_FAILURE),
        ],
    )
    def test_ipopt_statuses(self, return_status, expected):
        assert map_return_status(return_status) is expected

    def test_success_flag_fallback(self):
        # Unrecognized strings defer to the success flag
        assert map_return_status("SOLVED", success=True) is NLPStatus.CONVERGED
        assert map_return_status("SOLVED", success=False) is NLPStatus.NUMERICAL_FAILURE

    def test_failure_words_win_over_success_flag(self):
        assert map_return_status("Maximum_Iterations_Exceeded", success=True) is (
            NLPStatus.MAX_ITERATIONS_REACHED
        )

    def test_names_match_exactly(self):
        # Near-miss names are not table entries
        assert map_return_status("Not_Solve_Succeeded") is NLPStatus.NUMERICAL_FAILURE
        assert map_return_status("solve_succeeded") is NLPStatus.NUMERICAL_FAILURE
        assert map_return_status("Maximum_Step_Exceeded") is NLPStatus.NUMERICAL_FAILURE

    @pytest.mark.parametrize(
        "return_status, expected",
        [
            ("Solve_Succeeded", NLPStatus.CONVERGED),
            ("Maximum_Iterations_Exceeded", NLPStatus.MAX_ITERATIONS_REACHED),
            ("Search_Direction_Becomes_Too_Small", NLPStatus.NUMERICAL_FAILURE),
            ("Solved_To_Acceptable_Level", NLPStatus.NUMERICAL_FAILURE),
        ],
    )
    def test_sqp_statuses(self, return_status, expected):
        assert map_return_status(return_status, nlp_method="sqp") is expected


class TestBoundViolation:
    def test_inside_bounds(self):
        values = np.array([0.0, 0.5, 1.0])
        assert bound_violation(values, np.zeros(3), np.ones(3)) == 0.0

    def test_largest_excess(self):
        values = np.array([-0.25, 0.5, 1.5])
        assert bound_violation(values, np.zeros(3), np.ones(3)) == pytest.approx(0.5)

    def test_infinite_bounds(self):
        values = np.array([1e6, -1e6])
        lower = np.full(2, -np.inf)
        upper = np.full(2, np.inf)
        assert bound_violation(values, lower, upper) == 0.0

    def test_non_finite_values(self):
        assert bound_violation(np.array([np.nan]), np.zeros(1), np.ones(1)) == float("inf")

    def test_empty(self):
        assert bound_violation(np.zeros(0), np.zeros(0), np.zeros(0)) == 0.0


class TestSolverOptions:
    def test_ipopt_defaults(self):
        options = build_solver_options(_validated(nlp_iter_max=50, nlp_tolerance=1e-8))
        assert options["ipopt.max_iter"] == 50
        assert options["ipopt.tol"] == 1e-8
        assert options["ipopt.print_level"] == 0
        assert options["error_on_fail"] is False
        assert "ipopt.hessian_approximation" not in options

    def test_ipopt_limited_memory(self):
        options = build_solver_options(_validated(hessian="limited-memory"))
        assert options["ipopt.hessian_approximation"] == "limited-memory"

    def test_ipopt_finite_differences(self):
        options = build_solver_options(_validated(derivatives="finite-difference"))
        assert options["ipopt.hessian_approximation"] == "limited-memory"
        assert options["ipopt.gradient_approximation"] == "finite-difference-values"
        assert options["ipopt.jacobian_approximation"] == "finite-difference-values"

    def test_sqp(self):
        options = build_solver_options(_validated(nlp_method="SQP", nlp_iter_max=30))
        assert options["max_iter"] == 30
        assert options["hessian_approximation"] == "exact"
        assert options["print_iteration"] is False
        assert not any(key.startswith("ipopt.") for key in options)

    def test_user_options_merged_last(self):
        algorithm = _validated(nlp_options={"ipopt.max_iter": 7, "ipopt.mu_init": 1e-2})
        options = build_solver_options(algorithm)
        assert options["ipopt.max_iter"] == 7
        assert options["ipopt.mu_init"] == 1e-2

    def test_defaults_not_mutated(self):
        build_solver_options(_validated(nlp_options={"print_time": 1}))
        assert build_solver_options(_validated())["print_time"] == 0

    def test_sqp_uses_qpoases(self):
        options = build_solver_options(_validated(nlp_method="SQP"))
        assert options["qpsol"] == "qpoases"
        assert options["convexify_strategy"] == "regularize"
        options["qpsol_options"]["printLevel"] = "high"
        assert build_solver_options(_validated(nlp_method="SQP"))["qpsol_options"] == {
            "printLevel": "none",
            "error_on_fail": False,
        }

    def test_tolerances_without_scaling(self):
        options = build_solver_options(_validated(nlp_tolerance=1e-7))
        assert options["ipopt.constr_viol_tol"] == 1e-7
        assert options["ipopt.dual_inf_tol"] == 1e-7
        assert options["ipopt.acceptable_constr_viol_tol"] == 1e-7

    def test_tolerances_follow_scale_factors(self):
        scaling = ScalingFactors(
            mode="automatic",
            variable_scale=np.ones(2),
            variable_shift=np.zeros(2),
            constraint_scale=np.array([1.0, 4.0, 250.0]),
            constraint_shift=np.zeros(3),
            objective_scale=20.0,
        )
        ipopt = build_solver_options(_validated(nlp_tolerance=1e-6), scaling)
        assert ipopt["ipopt.tol"] == 1e-6
        assert ipopt["ipopt.constr_viol_tol"] == pytest.approx(4e-9)
        assert ipopt["ipopt.dual_inf_tol"] == pytest.approx(5e-8)
        assert ipopt["ipopt.acceptable_constr_viol_tol"] == pytest.approx(4e-9)
        assert ipopt["ipopt.acceptable_dual_inf_tol"] == pytest.approx(5e-8)

        sqp = build_solver_options(_validated(nlp_method="SQP", nlp_tolerance=1e-6), scaling)
        assert sqp["tol_pr"] == pytest.approx(4e-9)
        assert sqp["tol_du"] == pytest.approx(5e-8)

    def test_small_scales_keep_nominal_tolerance(self):
        assert scaled_tolerances(1e-6, identity_scaling(3, 0)) == (1e-6, 1e-6)
        shrunk = ScalingFactors(
            mode="manual",
            variable_scale=np.ones(1),
            variable_shift=np.zeros(1),
            constraint_scale=np.array([0.5]),
            constraint_shift=np.zeros(1),
            objective_scale=0.1,
        )
        assert scaled_tolerances(1e-6, shrunk) == (1e-6, 1e-6)


class TestNLPSolverAdapter:
    def _chain_nlp(self, chain_problem, algorithm, nodes=10):
        problem = chain_problem(nodes=(nodes,))
        return problem, build_discrete_nlp(problem, algorithm, {1: nodes})

    def test_state_transitions(self, chain_problem):
        algorithm = _validated(scaling="none")
        problem, nlp = self._chain_nlp(chain_problem, algorithm)
        adapter = NLPSolverAdapter(nlp, compute_scaling(nlp, problem, algorithm), algorithm)

        assert adapter.state is NLPStatus.INITIALIZING
        assert not adapter.state.is_terminal
        assert adapter.result is None

        result = adapter.solve()
        assert adapter.state is result.status
        assert adapter.state.is_terminal
        assert adapter.result is result
        assert result.status is NLPStatus.CONVERGED
        assert result.iterations > 0
        assert result.solve_time >= 0.0

    def test_solves_only_once(self, chain_problem):
        algorithm = _validated(scaling="none")
        problem, nlp = self._chain_nlp(chain_problem, algorithm)
        adapter = NLPSolverAdapter(nlp, compute_scaling(nlp, problem, algorithm), algorithm)
        adapter.solve()
        with pytest.raises(DataIntegrityError):
            adapter.solve()

    def test_result_is_raw_and_read_only(self, chain_problem):
        algorithm = _validated(scaling="automatic")
        problem, nlp = self._chain_nlp(chain_problem, algorithm)
        result = NLPSolverAdapter(nlp, compute_scaling(nlp, problem, algorithm), algorithm).solve()

        assert result.unknowns.shape == (nlp.num_unknowns,)
        assert result.constraints.shape == (nlp.num_constraints,)
        assert result.constraint_violation < 1e-6
        events = result.constraints[nlp.block("events", 1).rows]
        np.testing.assert_allclose(events, [1.0, 3.0, 4.0], atol=1e-6)
        with pytest.raises(ValueError):
            result.unknowns[0] = 0.0

    def test_iteration_cap(self, chain_problem):
        algorithm = _validated(scaling="none", nlp_iter_max=1)
        problem, nlp = self._chain_nlp(chain_problem, algorithm)
        result = NLPSolverAdapter(nlp, compute_scaling(nlp, problem, algorithm), algorithm).solve()

        assert result.status is NLPStatus.MAX_ITERATIONS_REACHED
        assert not result.converged
        assert result.return_status == "Maximum_Iterations_Exceeded"

    def test_scaling_size_mismatch(self, chain_problem):
        algorithm = _validated()
        _, nlp = self._chain_nlp(chain_problem, algorithm)
        with pytest.raises(DataIntegrityError):
            NLPSolverAdapter(
                nlp, identity_scaling(nlp.num_unknowns + 1, nlp.num_constraints), algorithm
            )
        with pytest.raises(DataIntegrityError):
            NLPSolverAdapter(
                nlp, identity_scaling(nlp.num_unknowns, nlp.num_constraints - 1), algorithm
            )

    def test_sqp_method(self, two_phase_problem):
        problem = two_phase_problem(nodes=(8,))
        # Fixed switch time keeps the transcription a convex QP
        problem.phase(1).bounds.lower.end_time = 1.0
        problem.phase(1).bounds.upper.end_time = 1.0
        problem.phase(2).bounds.lower.start_time = 1.0
        problem.phase(2).bounds.upper.start_time = 1.0

        algorithm = _validated(nlp_method="SQP", scaling="none", nlp_iter_max=100)
        nlp = build_discrete_nlp(problem, algorithm, {1: 8, 2: 8})
        result = NLPSolverAdapter(nlp, compute_scaling(nlp, problem, algorithm), algorithm).solve()

        assert result.converged
        assert result.constraint_violation < 1e-6
        assert result.objective == pytest.approx(1.5, rel=1e-4)
        assert result.stationarity < 1e-5

    def test_sqp_agrees_with_ipopt_on_chain(self, chain_problem):
        interior = _validated(scaling="none")
        problem, nlp = self._chain_nlp(chain_problem, interior)
        reference = NLPSolverAdapter(nlp, compute_scaling(nlp, problem, interior), interior).solve()

        sqp = _validated(nlp_method="SQP", scaling="none", nlp_iter_max=200)
        problem, nlp = self._chain_nlp(chain_problem, sqp)
        result = NLPSolverAdapter(nlp, compute_scaling(nlp, problem, sqp), sqp).solve()

        assert result.converged, result.message
        assert result.constraint_violation <= sqp.nlp_tolerance
        assert result.objective == pytest.approx(reference.objective, rel=1e-4)

    def test_reports_stationarity(self, chain_problem):
        algorithm = _validated(scaling="automatic")
        problem, nlp = self._chain_nlp(chain_problem, algorithm)
        result = NLPSolverAdapter(nlp, compute_scaling(nlp, problem, algorithm), algorithm).solve()

        assert result.converged
        assert np.isfinite(result.stationarity)
        assert result.constraint_violation <= algorithm.nlp_tolerance


class TestTerminationCheck:
    @pytest.fixture
    def adapter(self, chain_problem):
        def build(**options):
            algorithm = _validated(scaling="none", nlp_tolerance=1e-6, **options)
            problem = chain_problem(nodes=(6,))
            nlp = build_discrete_nlp(problem, algorithm, {1: 6})
            return NLPSolverAdapter(nlp, compute_scaling(nlp, problem, algorithm), algorithm)

        return build

    def test_converged_within_tolerance_kept(self, adapter):
        status, message = adapter()._check_termination(
            NLPStatus.CONVERGED, "Solve_Succeeded", 1e-9, 1e-9
        )
        assert status is NLPStatus.CONVERGED
        assert message == "Solve_Succeeded"

    def test_converged_with_raw_violation_downgraded(self, adapter):
        status, message = adapter()._check_termination(
            NLPStatus.CONVERGED, "Solved_To_Acceptable_Level", 3e-4, 1e-9
        )
        assert status is NLPStatus.NUMERICAL_FAILURE
        assert "3.000e-04" in message

    def test_stationarity_alone_does_not_downgrade(self, adapter, caplog):
        with caplog.at_level("WARNING", logger="pseudolab.nlp_adapter"):
            status, _ = adapter()._check_termination(
                NLPStatus.CONVERGED, "Solve_Succeeded", 1e-9, 1e-3
            )
        assert status is NLPStatus.CONVERGED
        assert "stationarity" in caplog.text

    def test_sqp_small_step_accepted_at_tolerance(self, adapter):
        status, message = adapter(nlp_method="SQP")._check_termination(
            NLPStatus.NUMERICAL_FAILURE, STEP_TOO_SMALL, 1e-9, 1e-8
        )
        assert status is NLPStatus.CONVERGED
        assert message.startswith(STEP_TOO_SMALL)

    @pytest.mark.parametrize("violation, stationarity", [(1e-3, 1e-9), (1e-9, 1e-3)])
    def test_sqp_small_step_rejected_off_tolerance(self, adapter, violation, stationarity):
        status, _ = adapter(nlp_method="SQP")._check_termination(
            NLPStatus.NUMERICAL_FAILURE, STEP_TOO_SMALL, violation, stationarity
        )
        assert status is NLPStatus.NUMERICAL_FAILURE

    def test_ipopt_small_step_stays_failure(self, adapter):
        status, _ = adapter()._check_termination(
            NLPStatus.NUMERICAL_FAILURE, STEP_TOO_SMALL, 1e-9, 1e-9
        )
        assert status is NLPStatus.NUMERICAL_FAILURE
