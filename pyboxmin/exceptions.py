"""Custom exceptions and warnings."""

from typing import List


class OutOfBoundsError(ValueError):
    """Raised when the initial guess lies outside the box."""

    def __init__(self, message: str, indices: List[int]) -> None:
        self.message = message
        self.indices = indices

    def __str__(self) -> str:
        """Pretty-print error."""
        return f"{self.message}\nElement indices affected: {self.indices}"


class InvalidBoxError(ValueError):
    """Raised when lower and upper bounds do not describe a box."""


class InvalidInnerMethodError(ValueError):
    """Raised when an inner optimizer is incompatible with the barrier method.

    Methods that use curvature information are not supported: the Hessian of the
    barrier objective becomes badly conditioned as iterates approach the boundary.

    """

    def __init__(self, message: str, method: str) -> None:
        self.message = message
        self.method = method

    def __str__(self) -> str:
        """Pretty-print error."""
        return f"{self.message} (got {self.method})"


class BarrierDomainError(ValueError):
    """Raised when a barrier objective is built at a point not strictly interior."""

    def __init__(self, message: str, indices: List[int]) -> None:
        self.message = message
        self.indices = indices

    def __str__(self) -> str:
        """Pretty-print error."""
        return f"{self.message}\nElement indices affected: {self.indices}"


class BacktrackingLineSearchError(Exception):
    """Raised when BTLS fails."""

    def __init__(
        self,
        message: str,
        required_improvement: float,
        actual_improvement: float,
    ) -> None:
        self.message = message
        self.required_improvement = required_improvement
        self.actual_improvement = actual_improvement

    def __str__(self) -> str:
        """Pretty-print error."""
        msg = (
            f"{self.message} (required improvement >= {self.required_improvement:.03g}"
            f"; actual improvement = {self.actual_improvement:.03g})"
        )
        return msg


class PrecisionLossError(BacktrackingLineSearchError):
    """Raised when BTLS fails because the decrease sought is below rounding error.

    This happens close to a minimizer: the predicted decrease of even the first trial
    step is comparable to the floating point resolution of the objective, so no
    step can be confirmed as an improvement. The current point is as good as the
    objective can resolve.

    """


class BoundaryInitialPointWarning(UserWarning):
    """Issued when the initial guess lies on the boundary of the box."""
