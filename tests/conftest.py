import casadi as ca
import numpy as np
import pytest

from pseudolab import Problem, auto_link


def _arc_length(x, u, p, t, phase):
    return ca.sqrt(1.0 + u[0] ** 2)


def build_chain_problem(nodes=(20, 50)):
    """Hanging chain: minimize potential energy at fixed length between fixed supports."""
    problem = Problem("Hanging chain problem", nphases=1, nlinkages=0)
    phase = problem.phase(1)
    phase.setup(nstates=1, ncontrols=1, nevents=3, npath=0, nodes=list(nodes))

    phase.bounds.lower.states = [-10.0]
    phase.bounds.upper.states = [10.0]
    phase.bounds.lower.controls = [-20.0]
    phase.bounds.upper.controls = [20.0]
    phase.bounds.lower.events = [1.0, 3.0, 4.0]
    phase.bounds.upper.events = [1.0, 3.0, 4.0]
    phase.bounds.lower.start_time = 0.0
    phase.bounds.upper.start_time = 0.0
    phase.bounds.lower.end_time = 1.0
    phase.bounds.upper.end_time = 1.0

    phase.guess.controls = 2.0 * np.ones((1, 30))
    phase.guess.states = np.linspace(1.0, 3.0, 30)
    phase.guess.time = np.linspace(0.0, 1.0, 30)

    problem.integrand_cost = lambda x, u, p, t, phase: x[0] * ca.sqrt(1.0 + u[0] ** 2)
    problem.endpoint_cost = lambda x0, xf, p, t0, tf, phase: 0.0
    problem.dae = lambda x, u, p, t, phase: (u[0], None)
    problem.events = lambda x0, xf, p, t0, tf, phase, workspace: [
        x0[0],
        xf[0],
        workspace.integrate(_arc_length),
    ]
    return problem


def build_two_phase_problem(nodes=(12,)):
    """Rest-to-rest double integrator over [0, 2] split at a free switching time."""
    problem = Problem("Two-phase double integrator", nphases=2, nlinkages=3)
    for phase in problem.phases:
        phase.setup(nstates=2, ncontrols=1, nevents=2, nodes=list(nodes))
        phase.bounds.lower.states = [-10.0, -10.0]
        phase.bounds.upper.states = [10.0, 10.0]
        phase.bounds.lower.controls = [-20.0]
        phase.bounds.upper.controls = [20.0]

    phase1, phase2 = problem.phases
    phase1.bounds.lower.events = [0.0, 0.0]
    phase1.bounds.upper.events = [0.0, 0.0]
    phase1.bounds.lower.start_time = 0.0
    phase1.bounds.upper.start_time = 0.0
    phase1.bounds.lower.end_time = 0.5
    phase1.bounds.upper.end_time = 1.5
    phase2.bounds.lower.events = [1.0, 0.0]
    phase2.bounds.upper.events = [1.0, 0.0]
    phase2.bounds.lower.start_time = 0.5
    phase2.bounds.upper.start_time = 1.5
    phase2.bounds.lower.end_time = 2.0
    phase2.bounds.upper.end_time = 2.0

    phase1.guess.time = np.linspace(0.0, 1.0, 10)
    phase1.guess.states = np.vstack([np.linspace(0.0, 0.5, 10), 0.75 * np.ones(10)])
    phase2.guess.time = np.linspace(1.0, 2.0, 10)
    phase2.guess.states = np.vstack([np.linspace(0.5, 1.0, 10), 0.75 * np.ones(10)])

    problem.integrand_cost = lambda x, u, p, t, phase: u[0] ** 2
    problem.dae = lambda x, u, p, t, phase: ([x[1], u[0]], None)
    problem.events = lambda x0, xf, p, t0, tf, phase, workspace: (
        [x0[0], x0[1]] if phase == 1 else [xf[0], xf[1]]
    )
    problem.linkages = lambda view: auto_link(view, 1, 2)
    return problem


@pytest.fixture(scope="session")
def chain_problem():
    return build_chain_problem


@pytest.fixture(scope="session")
def two_phase_problem():
    return build_two_phase_problem
