"""User-facing problem definition: phases, their functions, bounds and guesses."""

import logging
from collections.abc import Sequence

from ..exceptions import ConfigurationError
from ..input_validation import (
    validate_non_negative_integer,
    validate_positive_integer,
    validate_string_not_empty,
)
from ..pl_types import (
    DaeFunction,
    EndpointCostFunction,
    EventsFunction,
    IntegrandFunction,
    LinkagesFunction,
    PhaseID,
)
from .bounds import LinkageBounds, PhaseBounds
from .guess import PhaseGuess
from .scale import PhaseScale, ProblemScale


logger = logging.getLogger(__name__)


class Phase:
    """
    One continuous time segment of a problem.

    A phase is created by its ``Problem`` (level-1 setup) and becomes usable
    once ``setup()`` declares its dimensions (level-2 setup). Bounds, guesses,
    scale factors and node counts only exist after that call.
    """

    def __init__(self, problem_name: str, phase_id: PhaseID) -> None:
        self.phase_id = phase_id
        self._problem_name = problem_name
        self._dimensions: dict[str, int] | None = None
        self._nodes: tuple[int, ...] = ()
        self._bounds: PhaseBounds | None = None
        self._guess: PhaseGuess | None = None
        self._scale: PhaseScale | None = None

    def setup(
        self,
        nstates: int,
        ncontrols: int,
        nevents: int = 0,
        npath: int = 0,
        nparameters: int = 0,
        nodes: Sequence[int] | None = None,
    ) -> None:
        """
        Declare the phase dimensions and allocate bound, guess and scale storage.

        Args:
            nstates: Number of state variables (at least one)
            ncontrols: Number of control variables
            nevents: Number of event constraints
            npath: Number of path constraints
            nparameters: Number of static parameters
            nodes: Node-count sequence, coarse to fine (may also be set later)

        Raises:
            ConfigurationError: If a dimension is invalid or the phase was already set up
        """
        context = f"phase {self.phase_id} setup"
        if self._dimensions is not None:
            raise ConfigurationError("Phase dimensions are already declared", context)

        validate_positive_integer(nstates, "nstates")
        for value, name in (
            (ncontrols, "ncontrols"),
            (nevents, "nevents"),
            (npath, "npath"),
            (nparameters, "nparameters"),
        ):
            validate_non_negative_integer(value, name)

        self._dimensions = {
            "nstates": nstates,
            "ncontrols": ncontrols,
            "nevents": nevents,
            "npath": npath,
            "nparameters": nparameters,
        }
        self._bounds = PhaseBounds(self.phase_id, nstates, ncontrols, nparameters, nevents, npath)
        self._guess = PhaseGuess(self.phase_id, nstates, ncontrols, nparameters)
        self._scale = PhaseScale(self.phase_id, nstates, ncontrols, nparameters, nevents, npath)

        if nodes is not None:
            self.nodes = nodes

        logger.debug(
            "Phase %d set up: states=%d, controls=%d, events=%d, path=%d, parameters=%d",
            self.phase_id,
            nstates,
            ncontrols,
            nevents,
            npath,
            nparameters,
        )

    @property
    def is_setup(self) -> bool:
        return self._dimensions is not None

    def _require_setup(self, what: str) -> None:
        if self._dimensions is None:
            raise ConfigurationError(
                f"Phase {self.phase_id} {what} is not available before phase.setup() "
                "declares the phase dimensions",
                f"problem '{self._problem_name}'",
            )

    def _dimension(self, name: str) -> int:
        self._require_setup(name)
        assert self._dimensions is not None
        return self._dimensions[name]

    @property
    def nstates(self) -> int:
        return self._dimension("nstates")

    @property
    def ncontrols(self) -> int:
        return self._dimension("ncontrols")

    @property
    def nevents(self) -> int:
        return self._dimension("nevents")

    @property
    def npath(self) -> int:
        return self._dimension("npath")

    @property
    def nparameters(self) -> int:
        return self._dimension("nparameters")

    @property
    def nodes(self) -> tuple[int, ...]:
        self._require_setup("node sequence")
        return self._nodes

    @nodes.setter
    def nodes(self, values: Sequence[int]) -> None:
        self._require_setup("node sequence")
        node_counts = tuple(values)
        if not node_counts:
            raise ConfigurationError(f"Phase {self.phase_id} node sequence cannot be empty")
        for count in node_counts:
            validate_positive_integer(count, f"phase {self.phase_id} node count", min_value=2)
        self._nodes = node_counts

    @property
    def bounds(self) -> PhaseBounds:
        self._require_setup("bounds")
        assert self._bounds is not None
        return self._bounds

    @property
    def guess(self) -> PhaseGuess:
        self._require_setup("guess")
        assert self._guess is not None
        return self._guess

    @property
    def scale(self) -> PhaseScale:
        self._require_setup("scale")
        assert self._scale is not None
        return self._scale


class Problem:
    """
    Multiphase optimal control problem description.

    Construction is the level-1 setup: it fixes the number of phases and
    linkages for the lifetime of the problem. Each phase is then set up
    through ``problem.phase(i).setup(...)``.

    Examples:
        >>> problem = Problem("Hanging chain problem", nphases=1, nlinkages=0)
        >>> phase = problem.phase(1)
        >>> phase.setup(nstates=1, ncontrols=1, nevents=3, nodes=[20, 50])
        >>> phase.bounds.lower.states[0] = -10.0
        >>> phase.bounds.upper.states[0] = 10.0
        >>> problem.dae = dae
    """

    def __init__(
        self, name: str = "Optimal Control Problem", nphases: int = 1, nlinkages: int = 0
    ) -> None:
        validate_string_not_empty(name, "Problem name")
        validate_positive_integer(nphases, "nphases")
        validate_non_negative_integer(nlinkages, "nlinkages")

        self.name = name
        self._nphases = nphases
        self._nlinkages = nlinkages
        self._phases: tuple[Phase, ...] = tuple(Phase(name, i) for i in range(1, nphases + 1))
        self._bounds = LinkageBounds(nlinkages)
        self._scale = ProblemScale(nlinkages)

        self.endpoint_cost: EndpointCostFunction | None = None
        self.integrand_cost: IntegrandFunction | None = None
        self.dae: DaeFunction | None = None
        self.events: EventsFunction | None = None
        self.linkages: LinkagesFunction | None = None

        logger.debug(
            "Problem '%s' created: phases=%d, linkages=%d", name, nphases, nlinkages
        )

    @property
    def nphases(self) -> int:
        return self._nphases

    @property
    def nlinkages(self) -> int:
        return self._nlinkages

    @property
    def phases(self) -> tuple[Phase, ...]:
        return self._phases

    @property
    def bounds(self) -> LinkageBounds:
        return self._bounds

    @property
    def scale(self) -> ProblemScale:
        return self._scale

    def phase(self, phase_id: PhaseID) -> Phase:
        """Return phase ``phase_id`` (1-based)."""
        if not isinstance(phase_id, int) or not 1 <= phase_id <= self._nphases:
            raise ConfigurationError(
                f"Phase {phase_id} does not exist; problem has phases 1..{self._nphases}",
                f"problem '{self.name}'",
            )
        return self._phases[phase_id - 1]

    @property
    def num_mesh_iterations(self) -> int:
        """Length of the node sequences shared by all phases."""
        lengths = {len(phase.nodes) for phase in self._phases}
        if len(lengths) != 1:
            raise ConfigurationError(
                f"All phases must declare node sequences of the same length, got {sorted(lengths)}",
                f"problem '{self.name}'",
            )
        return lengths.pop()

    def node_counts_at(self, iteration: int) -> dict[PhaseID, int]:
        return {phase.phase_id: phase.nodes[iteration] for phase in self._phases}

    def __repr__(self) -> str:
        return f"Problem(name={self.name!r}, nphases={self._nphases}, nlinkages={self._nlinkages})"
