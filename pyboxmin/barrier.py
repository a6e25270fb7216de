r"""Logarithmic barrier for box constraints.

For a box l <= x <= u the barrier is
    B(x) = \sum_i [ -log(x_i - l_i) - log(u_i - x_i) ],
where a term is omitted whenever the corresponding bound is infinite, and fixed
coordinates (l_i == u_i) contribute nothing. The barrier objective is
    phi_mu(x) = f(x) + mu * B(x).
B grows without bound as any coordinate approaches the boundary, so a descent
method started from a strictly interior point never leaves the box. Outside the box
we report phi_mu(x) = +inf without evaluating f, which line searches treat as a
failed trial step.

"""

from typing import Callable, Tuple

import numpy as np
import numpy.typing as npt

from .box import Box
from .exceptions import BarrierDomainError
from .objective import Objective


def _finite_masks(box: Box) -> Tuple[npt.NDArray[np.bool_], npt.NDArray[np.bool_]]:
    free = box.free
    return free & np.isfinite(box.lower), free & np.isfinite(box.upper)


def barrier_value(x: npt.NDArray[np.float64], box: Box) -> float:
    """Evaluate B(x); +inf if x is not strictly interior."""
    if not box.interior(x):
        return np.inf

    has_lower, has_upper = _finite_masks(box)
    return float(
        -np.sum(np.log(x[has_lower] - box.lower[has_lower]))
        - np.sum(np.log(box.upper[has_upper] - x[has_upper]))
    )


def barrier_gradient(x: npt.NDArray[np.float64], box: Box) -> npt.NDArray[np.float64]:
    r"""Calculate \nabla B(x), with entries -1 / (x_i - l_i) + 1 / (u_i - x_i)."""
    if not box.interior(x):
        return np.full(x.shape, np.nan)

    has_lower, has_upper = _finite_masks(box)
    g = np.zeros_like(x, dtype=np.float64)
    g[has_lower] -= 1.0 / (x[has_lower] - box.lower[has_lower])
    g[has_upper] += 1.0 / (box.upper[has_upper] - x[has_upper])
    return g


class PenalizedObjective:
    """Barrier objective, phi_mu(x) = f(x) + mu * B(x).

    Parameters
    ----------
     objective : Objective
        The objective, f.
     box : Box
        The box.
     mu : float
        Barrier coefficient. Must be strictly positive.

    """

    def __init__(self, objective: Objective, box: Box, mu: float) -> None:
        if not mu > 0:
            raise ValueError(f"Barrier coefficient must be positive; got {mu}.")
        self.objective = objective
        self.box = box
        self.mu = mu

    def value(self, x: npt.NDArray[np.float64]) -> float:
        """Evaluate phi_mu(x)."""
        if not self.box.interior(x):
            return np.inf
        return self.objective.value(x) + self.mu * barrier_value(x, self.box)

    def gradient(self, x: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """Calculate gradient of phi_mu."""
        if not self.box.interior(x):
            return np.full(x.shape, np.nan)
        return self.objective.gradient(x) + self.mu * barrier_gradient(x, self.box)

    def value_and_gradient(
        self, x: npt.NDArray[np.float64]
    ) -> Tuple[float, npt.NDArray[np.float64]]:
        """Evaluate phi_mu and its gradient."""
        if not self.box.interior(x):
            return np.inf, np.full(x.shape, np.nan)
        f, g = self.objective.value_and_gradient(x)
        return (
            f + self.mu * barrier_value(x, self.box),
            g + self.mu * barrier_gradient(x, self.box),
        )


def build_penalized(
    objective: Objective,
    box: Box,
    mu: float,
    x: npt.NDArray[np.float64],
) -> Tuple[
    Callable[[npt.NDArray[np.float64]], float],
    Callable[[npt.NDArray[np.float64]], npt.NDArray[np.float64]],
]:
    """Build the barrier objective for a centering step starting at x.

    Parameters
    ----------
     objective : Objective
        The objective, f.
     box : Box
        The box.
     mu : float
        Barrier coefficient.
     x : npt.NDArray[np.float64]
        Starting point of the centering step. Must be strictly interior.

    Returns
    -------
     value_fn, grad_fn : callable
        phi_mu and its gradient.

    Raises
    ------
     BarrierDomainError
        If x is not strictly interior.

    """
    if not box.interior(x):
        raise BarrierDomainError(
            message="Barrier objective requires a strictly interior point.",
            indices=box.non_interior_indices(x),
        )

    penalized = PenalizedObjective(objective, box, mu)
    return penalized.value, penalized.gradient


def barrier_preconditioner(
    x: npt.NDArray[np.float64], box: Box, mu: float
) -> npt.NDArray[np.float64]:
    """Diagonal preconditioner for the barrier objective.

    Approximates the inverse of the Hessian diagonal of phi_mu by
        1 / (1 + mu * [1 / (x_i - l_i)^2 + 1 / (u_i - x_i)^2]),
    taking the curvature of f to be 1. Near an active bound the barrier term
    dominates, and scaling by this factor turns a gradient step into approximately a
    Newton step along that coordinate.

    """
    has_lower, has_upper = _finite_masks(box)
    h = np.ones_like(x, dtype=np.float64)
    with np.errstate(divide="ignore"):
        h[has_lower] += mu / (x[has_lower] - box.lower[has_lower]) ** 2
        h[has_upper] += mu / (box.upper[has_upper] - x[has_upper]) ** 2
    return 1.0 / h
