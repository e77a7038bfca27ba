"""
Algorithm configuration for a single solve call.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from ..exceptions import ConfigurationError
from ..input_validation import validate_positive_integer, validate_positive_number
from ..utils.constants import DEFAULT_NLP_MAX_ITERATIONS, DEFAULT_NLP_TOLERANCE


logger = logging.getLogger(__name__)

NLP_METHODS = ("ipopt", "sqp")
SCALING_MODES = ("none", "manual", "automatic")
DERIVATIVE_MODES = ("automatic", "finite-difference", "analytic-if-supplied")
COLLOCATION_METHODS = ("legendre", "chebyshev", "trapezoidal")
HESSIAN_MODES = ("exact", "limited-memory")
MESH_REFINEMENT_POLICIES = ("manual",)
PARALLELIZATION_MODES = ("serial", "thread")


def _normalize_choice(value: Any, choices: tuple[str, ...], name: str) -> str:
    if not isinstance(value, str):
        raise ConfigurationError(f"Algorithm option '{name}' must be a string, got {type(value)}")
    normalized = value.strip().lower()
    if normalized not in choices:
        raise ConfigurationError(
            f"Algorithm option '{name}' must be one of {choices}, got '{value}'"
        )
    return normalized


@dataclass
class Algorithm:
    """
    Solver configuration, independent of the problem being solved.

    String options are case-insensitive; ``validate()`` normalizes them to
    lower case and rejects unknown values.

    Attributes:
        nlp_method: ``"IPOPT"`` (interior point) or ``"SQP"`` (CasADi sqpmethod)
        scaling: ``"none"``, ``"manual"`` or ``"automatic"``
        derivatives: ``"automatic"``, ``"finite-difference"`` or ``"analytic-if-supplied"``
        nlp_iter_max: Iteration cap for each NLP solve
        nlp_tolerance: Convergence tolerance for each NLP solve
        collocation_method: ``"Legendre"``, ``"Chebyshev"`` or ``"trapezoidal"``
        hessian: ``"exact"`` or ``"limited-memory"``
        mesh_refinement: ``"manual"``, i.e. follow each phase's node sequence
        parallelization: ``"serial"`` or ``"thread"`` evaluation of callbacks across nodes
        num_threads: Worker threads used when ``parallelization == "thread"``
        print_level: IPOPT print level (0 is silent)
        nlp_options: Raw CasADi/IPOPT options merged over everything else
    """

    nlp_method: str = "IPOPT"
    scaling: str = "automatic"
    derivatives: str = "automatic"
    nlp_iter_max: int = DEFAULT_NLP_MAX_ITERATIONS
    nlp_tolerance: float = DEFAULT_NLP_TOLERANCE
    collocation_method: str = "Legendre"
    hessian: str = "exact"
    mesh_refinement: str = "manual"
    parallelization: str = "serial"
    num_threads: int = 1
    print_level: int = 0
    nlp_options: dict[str, Any] = field(default_factory=dict)

    def validate(self) -> None:
        """Normalize string options and raise ConfigurationError on invalid values."""
        self.nlp_method = _normalize_choice(self.nlp_method, NLP_METHODS, "nlp_method")
        self.scaling = _normalize_choice(self.scaling, SCALING_MODES, "scaling")
        self.derivatives = _normalize_choice(self.derivatives, DERIVATIVE_MODES, "derivatives")
        self.collocation_method = _normalize_choice(
            self.collocation_method, COLLOCATION_METHODS, "collocation_method"
        )
        self.hessian = _normalize_choice(self.hessian, HESSIAN_MODES, "hessian")
        self.mesh_refinement = _normalize_choice(
            self.mesh_refinement, MESH_REFINEMENT_POLICIES, "mesh_refinement"
        )
        self.parallelization = _normalize_choice(
            self.parallelization, PARALLELIZATION_MODES, "parallelization"
        )

        validate_positive_integer(self.nlp_iter_max, "nlp_iter_max")
        validate_positive_number(self.nlp_tolerance, "nlp_tolerance")
        validate_positive_integer(self.num_threads, "num_threads")

        if not isinstance(self.print_level, int) or not 0 <= self.print_level <= 12:
            raise ConfigurationError(
                f"print_level must be an integer in [0, 12], got {self.print_level}"
            )
        if not isinstance(self.nlp_options, dict):
            raise ConfigurationError(f"nlp_options must be a dict, got {type(self.nlp_options)}")

        if self.derivatives == "finite-difference" and self.nlp_method != "ipopt":
            raise ConfigurationError(
                "Finite-difference derivatives are only available with the IPOPT NLP method",
                f"nlp_method='{self.nlp_method}'",
            )

    @property
    def uses_finite_differences(self) -> bool:
        return self.derivatives == "finite-difference"

    @property
    def is_pseudospectral(self) -> bool:
        return self.collocation_method in ("legendre", "chebyshev")
