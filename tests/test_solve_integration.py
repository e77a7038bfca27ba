import numpy as np
import pytest
from numpy.testing import assert_allclose

from pseudolab import Algorithm, NLPStatus, Solution, solve
from pseudolab.direct_solver import build_discrete_nlp
from pseudolab.exceptions import ConfigurationError
from pseudolab.solver import solve_mesh_iteration


class TestChainSolve:
    @pytest.fixture(scope="class")
    def solution(self, chain_problem):
        return solve(chain_problem(nodes=(20, 50)), Algorithm(), show_summary=False)

    def test_converged(self, solution):
        assert isinstance(solution, Solution)
        assert not solution.error_flag
        assert solution.status is NLPStatus.CONVERGED
        assert solution.constraint_violation < 1e-6

    def test_raw_residuals_within_tolerance(self, solution):
        tolerance = Algorithm().nlp_tolerance
        assert solution.constraint_violation <= tolerance
        assert all(s.constraint_violation <= tolerance for s in solution.mesh_history)
        assert abs(solution.get_integrals_in_phase(1)[0] - 4.0) <= tolerance

    def test_events_satisfied(self, solution):
        states = solution.get_states_in_phase(1)
        assert states.shape == (1, 50)
        assert states[0, 0] == pytest.approx(1.0, abs=1e-6)
        assert states[0, -1] == pytest.approx(3.0, abs=1e-6)
        assert_allclose(solution.get_events_in_phase(1), [1.0, 3.0, 4.0], atol=1e-6)
        assert_allclose(solution.get_integrals_in_phase(1), [4.0], atol=1e-6)

    def test_defects_vanish(self, solution):
        defects = solution.get_dynamics_defects_in_phase(1)
        assert defects.shape == (1, 50)
        assert np.max(np.abs(defects)) < 1e-6
        assert solution.get_path_in_phase(1).shape == (0, 50)

    def test_mesh_history(self, solution):
        history = solution.mesh_history
        assert len(history) == 2
        assert [snapshot.node_counts[1] for snapshot in history] == [20, 50]
        assert all(snapshot.converged for snapshot in history)
        assert solution.total_iterations == sum(s.nlp_iterations for s in history)
        assert solution.node_counts == {1: 50}

    def test_refinement_agrees_with_coarse_mesh(self, solution):
        coarse, fine = solution.mesh_history
        assert coarse.objective == pytest.approx(fine.objective, rel=1e-4)

    def test_reseeded_refined_solve(self, solution, chain_problem):
        seeded_problem = chain_problem(nodes=(50,))
        solution.to_guess(seeded_problem)
        seeded = solve(seeded_problem, Algorithm(), show_summary=False)
        cold = solve(chain_problem(nodes=(50,)), Algorithm(), show_summary=False)

        assert not seeded.error_flag
        assert seeded.iterations <= cold.iterations
        assert seeded.objective == pytest.approx(solution.objective, rel=1e-6)
        assert_allclose(
            seeded.get_states_in_phase(1), solution.get_states_in_phase(1), atol=1e-4
        )

    def test_time_grid(self, solution):
        time = solution.get_time_in_phase(1)
        assert time.shape == (1, 50)
        assert time[0, 0] == pytest.approx(0.0)
        assert time[0, -1] == pytest.approx(1.0)
        assert solution.get_phase_horizon(1) == pytest.approx((0.0, 1.0))

    def test_getters_return_copies(self, solution):
        states = solution.get_states_in_phase(1)
        states[:] = 0.0
        assert solution.get_states_in_phase(1)[0, -1] == pytest.approx(3.0, abs=1e-6)

    def test_unknown_phase(self, solution):
        with pytest.raises(ConfigurationError):
            solution.get_states_in_phase(2)

    def test_summary_prints(self, solution, capsys):
        solution.summary()
        output = capsys.readouterr().out
        assert "PSEUDOLAB SOLUTION DATA" in output
        assert "MESH HISTORY" in output
        assert "Hanging chain problem" in output


class TestCollocationSchemes:
    @pytest.mark.parametrize("scaling", ["none", "manual", "automatic"])
    def test_scaling_modes_agree(self, chain_problem, scaling):
        reference = solve(chain_problem(nodes=(20,)), Algorithm(scaling="none"), show_summary=False)
        solution = solve(chain_problem(nodes=(20,)), Algorithm(scaling=scaling), show_summary=False)
        assert not solution.error_flag
        assert solution.objective == pytest.approx(reference.objective, rel=1e-5)

    def test_chebyshev_agrees_with_legendre(self, chain_problem):
        legendre = solve(chain_problem(nodes=(30,)), Algorithm(), show_summary=False)
        chebyshev = solve(
            chain_problem(nodes=(30,)),
            Algorithm(collocation_method="Chebyshev"),
            show_summary=False,
        )
        assert not chebyshev.error_flag
        assert chebyshev.collocation_method == "chebyshev"
        assert chebyshev.objective == pytest.approx(legendre.objective, rel=1e-4)

    def test_trapezoidal_is_close(self, chain_problem):
        legendre = solve(chain_problem(nodes=(30,)), Algorithm(), show_summary=False)
        trapezoidal = solve(
            chain_problem(nodes=(100,)),
            Algorithm(collocation_method="trapezoidal"),
            show_summary=False,
        )
        assert not trapezoidal.error_flag
        assert trapezoidal.get_dynamics_defects_in_phase(1).shape == (1, 99)
        assert trapezoidal.objective == pytest.approx(legendre.objective, rel=1e-2)

    def test_finite_difference_derivatives(self, chain_problem):
        exact = solve(chain_problem(nodes=(15,)), Algorithm(), show_summary=False)
        approximate = solve(
            chain_problem(nodes=(15,)),
            Algorithm(derivatives="finite-difference"),
            show_summary=False,
        )
        assert not approximate.error_flag
        assert approximate.objective == pytest.approx(exact.objective, rel=1e-3)


class TestWarmStart:
    def test_second_iteration_starts_from_previous(self, chain_problem):
        problem = chain_problem(nodes=(20, 50))
        algorithm = Algorithm()
        algorithm.validate()

        first = solve_mesh_iteration(problem, algorithm, 0)
        assert first.converged

        cold = build_discrete_nlp(problem, algorithm, {1: 50})
        warm = build_discrete_nlp(problem, algorithm, {1: 50}, first)
        integral = cold.layout.phase(1).integrals

        assert cold.w0[integral] == pytest.approx([np.sqrt(5.0)], rel=1e-10)
        assert warm.w0[integral] == pytest.approx([4.0], abs=1e-6)

    def test_to_guess_round_trip(self, chain_problem):
        coarse = solve(chain_problem(nodes=(20,)), Algorithm(), show_summary=False)
        problem = chain_problem(nodes=(50,))
        coarse.to_guess(problem)

        guess = problem.phase(1).guess
        assert_allclose(guess.states, coarse.get_states_in_phase(1))
        assert_allclose(guess.time.flatten(), coarse.get_time_in_phase(1).flatten())

        fine = solve(problem, Algorithm(), show_summary=False)
        assert not fine.error_flag
        assert fine.objective == pytest.approx(coarse.objective, rel=1e-4)

    def test_caller_algorithm_untouched(self, chain_problem):
        algorithm = Algorithm(nlp_method="IPOPT", collocation_method="Legendre")
        solve(chain_problem(nodes=(10,)), algorithm, show_summary=False)
        assert algorithm.nlp_method == "IPOPT"
        assert algorithm.collocation_method == "Legendre"


class TestTwoPhaseSolve:
    @pytest.fixture(scope="class")
    def solution(self, two_phase_problem):
        return solve(two_phase_problem(nodes=(15,)), Algorithm(), show_summary=False)

    def test_objective(self, solution):
        assert not solution.error_flag
        assert solution.objective == pytest.approx(1.5, rel=1e-5)

    def test_linkages_hold(self, solution):
        linkages = solution.get_linkages()
        assert linkages.shape == (3,)
        assert_allclose(linkages, 0.0, atol=1e-6)

        _, switch = solution.get_phase_horizon(1)
        start, end = solution.get_phase_horizon(2)
        assert start == pytest.approx(switch, abs=1e-6)
        assert end == pytest.approx(2.0)

    def test_control_is_linear(self, solution):
        # Minimum-energy rest-to-rest transfer: u(t) = 1.5 - 1.5 t
        for phase_id in solution.phase_ids:
            time = solution.get_time_in_phase(phase_id).flatten()
            controls = solution.get_controls_in_phase(phase_id).flatten()
            assert_allclose(controls, 1.5 - 1.5 * time, atol=1e-4)


class TestSolverFailures:
    def test_iteration_cap_sets_error_flag(self, chain_problem):
        solution = solve(
            chain_problem(nodes=(20, 50)), Algorithm(nlp_iter_max=1), show_summary=False
        )
        assert solution.error_flag
        assert solution.status is NLPStatus.MAX_ITERATIONS_REACHED
        # The failed first iteration ends the sequence
        assert len(solution.mesh_history) == 1
        assert solution.get_states_in_phase(1).shape == (1, 20)

    def test_invalid_algorithm(self, chain_problem):
        with pytest.raises(ConfigurationError):
            solve(chain_problem(nodes=(10,)), Algorithm(nlp_method="snopt"), show_summary=False)

    def test_missing_dynamics(self, chain_problem):
        problem = chain_problem(nodes=(10,))
        problem.dae = None
        with pytest.raises(ConfigurationError):
            solve(problem, Algorithm(), show_summary=False)
