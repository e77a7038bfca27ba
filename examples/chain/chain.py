"""
Hanging chain of fixed length between two supports.

    minimize    integral_0^1 x sqrt(1 + u^2) dt
    subject to  dx/dt = u
                x(0) = 1, x(1) = 3
                integral_0^1 sqrt(1 + u^2) dt = 4

The chain length enters as an integral event, so the events callback asks
the workspace for the integral of the arc-length integrand.
"""

import casadi as ca
import numpy as np

import pseudolab as pl


def arc_length(x, u, p, t, phase):
    return ca.sqrt(1.0 + u[0] ** 2)


def integrand_cost(x, u, p, t, phase):
    return x[0] * ca.sqrt(1.0 + u[0] ** 2)


def endpoint_cost(x0, xf, p, t0, tf, phase):
    return 0.0


def dae(x, u, p, t, phase):
    return u[0], None


def events(x0, xf, p, t0, tf, phase, workspace):
    return [x0[0], xf[0], workspace.integrate(arc_length)]


def build_problem(nodes=(20, 50)):
    problem = pl.Problem("Hanging chain problem", nphases=1, nlinkages=0)
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

    problem.integrand_cost = integrand_cost
    problem.endpoint_cost = endpoint_cost
    problem.dae = dae
    problem.events = events
    return problem


def main():
    problem = build_problem()
    algorithm = pl.Algorithm(
        nlp_method="IPOPT",
        scaling="automatic",
        derivatives="automatic",
        nlp_iter_max=1000,
        nlp_tolerance=1.0e-6,
    )

    solution = pl.solve(problem, algorithm)
    if solution.error_flag:
        raise SystemExit(f"Solve failed: {solution.message}")

    x = solution.get_states_in_phase(1)
    u = solution.get_controls_in_phase(1)
    t = solution.get_time_in_phase(1)
    print(f"Objective: {solution.objective:.9f}")
    print(f"Chain length: {solution.get_integrals_in_phase(1)[0]:.9f}")

    try:
        import matplotlib.pyplot as plt
    except ImportError:
        return

    fig, axes = plt.subplots(2, 1, figsize=(8, 6), sharex=True)
    axes[0].plot(t[0], x[0], "o-")
    axes[0].set_ylabel("x")
    axes[0].set_title("Hanging chain")
    axes[1].plot(t[0], u[0], "o-")
    axes[1].set_ylabel("u")
    axes[1].set_xlabel("t")
    for ax in axes:
        ax.grid(True, alpha=0.3)
    plt.tight_layout()
    plt.show()


if __name__ == "__main__":
    main()
