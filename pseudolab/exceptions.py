import logging


# Library logger - no configuration, user controls output
logger = logging.getLogger(__name__)


class PseudoLabBaseError(Exception):
    """
    Base class for all pseudolab-specific errors.

    All pseudolab exceptions inherit from this class, allowing users to catch
    any pseudolab-specific error with a single except clause.

    Args:
        message: The error message describing what went wrong
        context: Optional additional context about where the error occurred
    """

    def __init__(self, message: str, context: str | None = None) -> None:
        self.message = message
        self.context = context

        # Library logs at DEBUG level - user can promote if needed
        logger.debug("pseudolab exception: %s", self._format_message())
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the error message with optional context."""
        if self.context:
            return f"{self.message} (Context: {self.context})"
        return self.message


class ConfigurationError(PseudoLabBaseError):
    """
    Raised when the problem or algorithm configuration is invalid or incomplete.

    Configuration errors are detected before any solve attempt and are never
    retried.

    Examples:
        - Lower bound greater than upper bound
        - Setting a bound or guess before the phase dimensions are declared
        - Guess arrays whose shape does not match the declared dimensions
        - Unknown algorithm options
    """

    pass


class DifferentiationError(ConfigurationError):
    """
    Raised when a user callback breaks differentiable value propagation.

    Callbacks receive differentiable values and must compute with them
    directly. Converting one of them to a plain Python or NumPy number (for
    example through ``float(x)`` or ``math.sqrt(x)``) would drop its
    sensitivities, so it is rejected while the callback is traced.
    """

    pass


class NumericalFailure(PseudoLabBaseError):
    """
    Raised when callback or derivative evaluation produces non-finite values.

    Typical causes are domain errors inside user callbacks, such as the
    square root of a negative number at the initial guess. The current solve
    attempt is aborted and not retried.
    """

    pass


class DataIntegrityError(PseudoLabBaseError):
    """
    Raised when internal data corruption or inconsistency is detected.

    This typically represents a bug in pseudolab rather than user error.

    Examples:
        - Unknown-vector layout that does not add up to the vector length
        - Constraint blocks whose sizes disagree with their bounds
    """

    pass


class SolutionExtractionError(PseudoLabBaseError):
    """
    Raised when solution data cannot be extracted from the solver output.
    """

    pass


class InterpolationError(PseudoLabBaseError):
    """
    Raised when an initial guess or a warm-start trajectory cannot be
    resampled onto the node grid of the next solve.
    """

    pass
