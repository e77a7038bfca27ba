# pseudolab/__init__.py
"""
pseudolab: multiphase optimal control by direct collocation

This package transcribes continuous-time optimal control problems into
nonlinear programs with pseudospectral (Legendre or Chebyshev) or trapezoidal
collocation and solves them with CasADi's IPOPT or SQP solvers.

Logging:
By default, pseudolab produces no output. To enable logging::

    import logging
    logging.basicConfig()
    logging.getLogger('pseudolab').setLevel(logging.INFO)  # Major operations
    logging.getLogger('pseudolab').setLevel(logging.DEBUG)  # Detailed debugging
"""

import logging

from pseudolab.direct_solver import EventWorkspace, PhaseUnknowns, auto_link
from pseudolab.exceptions import (
    ConfigurationError,
    DataIntegrityError,
    DifferentiationError,
    InterpolationError,
    NumericalFailure,
    PseudoLabBaseError,
    SolutionExtractionError,
)
from pseudolab.pl_types import NLPStatus
from pseudolab.problem import Algorithm, Phase, Problem
from pseudolab.solution import Solution
from pseudolab.solver import solve


__all__ = [
    "Algorithm",
    "ConfigurationError",
    "DataIntegrityError",
    "DifferentiationError",
    "EventWorkspace",
    "InterpolationError",
    "NLPStatus",
    "NumericalFailure",
    "Phase",
    "PhaseUnknowns",
    "Problem",
    "PseudoLabBaseError",
    "Solution",
    "SolutionExtractionError",
    "auto_link",
    "solve",
]

__version__ = "0.1.0"


# Silent by default, the application decides where records go
logging.getLogger(__name__).addHandler(logging.NullHandler())
