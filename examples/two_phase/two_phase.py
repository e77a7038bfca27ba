"""
Rest-to-rest double integrator split into two linked phases.

    minimize    integral_0^2 u^2 dt
    subject to  dr/dt = v, dv/dt = u
                r(0) = 0, v(0) = 0, r(2) = 1, v(2) = 0

Phase 1 starts at t = 0 and phase 2 ends at t = 2; the switching time is
free. Linkages make states and time continuous across the switch. The
minimum energy is 12 d^2 / T^3 = 1.5 for d = 1, T = 2.
"""

import numpy as np

import pseudolab as pl


def integrand_cost(x, u, p, t, phase):
    return u[0] ** 2


def dae(x, u, p, t, phase):
    return [x[1], u[0]], None


def events(x0, xf, p, t0, tf, phase, workspace):
    if phase == 1:
        return [x0[0], x0[1]]
    return [xf[0], xf[1]]


def linkages(view):
    return pl.auto_link(view, 1, 2)


def build_problem(nodes=(15,)):
    problem = pl.Problem("Two-phase double integrator", nphases=2, nlinkages=3)

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
    phase1.guess.controls = np.zeros((1, 10))
    phase2.guess.time = np.linspace(1.0, 2.0, 10)
    phase2.guess.states = np.vstack([np.linspace(0.5, 1.0, 10), 0.75 * np.ones(10)])
    phase2.guess.controls = np.zeros((1, 10))

    problem.integrand_cost = integrand_cost
    problem.dae = dae
    problem.events = events
    problem.linkages = linkages
    return problem


def main():
    problem = build_problem()
    solution = pl.solve(problem, pl.Algorithm(nlp_method="IPOPT", scaling="automatic"))
    if solution.error_flag:
        raise SystemExit(f"Solve failed: {solution.message}")

    print(f"Objective: {solution.objective:.9f} (analytic 1.5)")
    print(f"Switching time: {solution.get_phase_horizon(1)[1]:.6f}")
    print(f"Linkage residuals: {solution.get_linkages()}")

    try:
        import matplotlib.pyplot as plt
    except ImportError:
        return

    fig, axes = plt.subplots(3, 1, figsize=(8, 8), sharex=True)
    for phase_id in solution.phase_ids:
        t = solution.get_time_in_phase(phase_id)[0]
        x = solution.get_states_in_phase(phase_id)
        u = solution.get_controls_in_phase(phase_id)
        axes[0].plot(t, x[0], "o-", label=f"Phase {phase_id}")
        axes[1].plot(t, x[1], "o-")
        axes[2].plot(t, u[0], "o-")

    for ax, label in zip(axes, ("position", "velocity", "control"), strict=True):
        ax.set_ylabel(label)
        ax.grid(True, alpha=0.3)
    axes[0].legend()
    axes[2].set_xlabel("t")
    plt.tight_layout()
    plt.show()


if __name__ == "__main__":
    main()
