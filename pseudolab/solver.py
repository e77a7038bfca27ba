import logging
from dataclasses import replace

from .direct_solver import MeshIterationSnapshot, build_discrete_nlp
from .input_validation import validate_problem_ready_for_solving
from .nlp_adapter import NLPSolverAdapter
from .problem import Algorithm, Problem
from .scaling import compute_scaling
from .solution import Solution
from .solution_extraction import build_mesh_snapshot


logger = logging.getLogger(__name__)


def solve_mesh_iteration(
    problem: Problem,
    algorithm: Algorithm,
    iteration: int,
    previous: MeshIterationSnapshot | None = None,
) -> MeshIterationSnapshot:
    """
    Transcribe, scale and solve one entry of the node-count sequence.

    Args:
        problem: Validated problem
        algorithm: Validated algorithm configuration
        iteration: Index into every phase's node sequence
        previous: Snapshot of the preceding iteration; ``None`` starts from the problem guess

    Returns:
        Immutable snapshot of the finished iteration.
    """
    node_counts = problem.node_counts_at(iteration)
    nlp = build_discrete_nlp(problem, algorithm, node_counts, previous)
    scaling = compute_scaling(nlp, problem, algorithm)
    result = NLPSolverAdapter(nlp, scaling, algorithm).solve()
    return build_mesh_snapshot(iteration, nlp, result)


def solve(
    problem: Problem,
    algorithm: Algorithm | None = None,
    show_summary: bool = True,
) -> Solution:
    """
    Solve a multiphase optimal control problem over its node-count sequence.

    Each entry of the phases' node sequences is one mesh iteration. Iteration
    ``k`` is warm started from the snapshot of iteration ``k - 1``; a
    non-converged iteration ends the sequence early.

    Args:
        problem: Problem with every phase set up and all callbacks assigned
        algorithm: Solver configuration (default: ``Algorithm()``)
        show_summary: Whether to print the solution summary (default: True)

    Returns:
        Solution of the last mesh iteration that ran. Solver failures set
        ``solution.error_flag`` instead of raising.

    Raises:
        pseudolab.ConfigurationError: If the problem or algorithm is not properly configured
        pseudolab.NumericalFailure: If callbacks produce non-finite values at the initial guess

    Examples:
        >>> problem = Problem("Hanging chain problem")
        >>> ...
        >>> solution = solve(problem, Algorithm(nlp_method="IPOPT", scaling="automatic"))
        >>> if solution.error_flag:
        ...     raise SystemExit(1)
    """
    # The caller's configuration is left untouched by normalization
    algorithm = Algorithm() if algorithm is None else replace(algorithm)
    algorithm.validate()
    validate_problem_ready_for_solving(problem, algorithm)

    num_iterations = problem.num_mesh_iterations
    logger.info(
        "Starting solve: problem='%s', phases=%d, mesh iterations=%d, %s/%s",
        problem.name,
        problem.nphases,
        num_iterations,
        algorithm.nlp_method.upper(),
        algorithm.collocation_method,
    )

    history: list[MeshIterationSnapshot] = []
    previous: MeshIterationSnapshot | None = None
    for iteration in range(num_iterations):
        logger.info(
            "Mesh iteration %d/%d: nodes=%s",
            iteration + 1,
            num_iterations,
            list(problem.node_counts_at(iteration).values()),
        )
        snapshot = solve_mesh_iteration(problem, algorithm, iteration, previous)
        history.append(snapshot)

        if not snapshot.converged:
            logger.warning(
                "Mesh iteration %d ended with %s (%s); %d remaining iteration(s) skipped",
                iteration + 1,
                snapshot.status.name,
                snapshot.message,
                num_iterations - iteration - 1,
            )
            break
        previous = snapshot

    solution = Solution(problem.name, history, algorithm.nlp_method)
    if solution.error_flag:
        logger.warning("Solve of '%s' failed: %s", problem.name, solution.message)
    else:
        logger.info(
            "Solve of '%s' completed: objective=%.6e, total NLP iterations=%d",
            problem.name,
            solution.objective,
            solution.total_iterations,
        )

    if show_summary:
        solution.summary()
    return solution
