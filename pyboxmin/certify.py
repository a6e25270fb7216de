"""First-order optimality conditions for box constraints.

A point x* is a KKT point of
    minimize f(x) subject to l <= x <= u
if, for each coordinate i, either the gradient vanishes, or x*_i sits on a bound and
the gradient points out of the box: g_i > 0 at a lower bound (decreasing x_i would
help, but isn't allowed), or g_i < 0 at an upper bound.

"""

import enum
from dataclasses import dataclass
from typing import Callable, List, Tuple, Union

import numpy as np
import numpy.typing as npt

from .box import Box
from .objective import Objective


class CoordinateStatus(enum.Enum):
    """Classification of a coordinate at a candidate minimizer."""

    INTERIOR_STATIONARY = "interior-stationary"
    ACTIVE_LOWER = "active-lower"
    ACTIVE_UPPER = "active-upper"
    FIXED = "fixed"
    NOT_STATIONARY = "not-stationary"


@dataclass(frozen=True, eq=False)
class Certificate:
    """Per-coordinate first-order optimality report.

    Parameters
    ----------
     statuses : Tuple[CoordinateStatus, ...]
        Classification of each coordinate.
     gradient : npt.NDArray[np.float64]
        Unpenalized gradient at the point.
     epsilon_grad, epsilon_box : float
        Tolerances used.

    """

    statuses: Tuple[CoordinateStatus, ...]
    gradient: npt.NDArray[np.float64]
    epsilon_grad: float
    epsilon_box: float

    @property
    def is_stationary(self) -> bool:
        """True if every coordinate satisfies a first-order condition."""
        return CoordinateStatus.NOT_STATIONARY not in self.statuses

    @property
    def violations(self) -> List[int]:
        """1-indexed coordinates failing every first-order condition."""
        return [
            i + 1
            for i, status in enumerate(self.statuses)
            if status is CoordinateStatus.NOT_STATIONARY
        ]


def _near_bounds(
    x: npt.NDArray[np.float64], box: Box, epsilon_box: float
) -> Tuple[npt.NDArray[np.bool_], npt.NDArray[np.bool_]]:
    return x <= box.lower + epsilon_box, x >= box.upper - epsilon_box


def certify(
    x: npt.NDArray[np.float64],
    objective: Union[Objective, Callable[[npt.NDArray[np.float64]], npt.ArrayLike]],
    box: Box,
    epsilon_grad: float = 3e-3,
    epsilon_box: float = 1e-3,
) -> Certificate:
    """Check first-order optimality conditions at x.

    Parameters
    ----------
     x : npt.NDArray[np.float64]
        Candidate minimizer.
     objective : Objective or callable
        Either an Objective, or a function returning the gradient of the objective.
     box : Box
        The box.
     epsilon_grad : float, default=3e-3
        A coordinate with |g_i| < epsilon_grad is stationary.
     epsilon_box : float, default=1e-3
        A coordinate within epsilon_box of a bound is considered to be on it.

    Returns
    -------
     certificate : Certificate
        Per-coordinate report. This function does not decide pass or fail.

    """
    x = np.asarray(x, dtype=np.float64)
    if isinstance(objective, Objective):
        g = objective.gradient(x)
    else:
        g = np.asarray(objective(x), dtype=np.float64)

    near_lower, near_upper = _near_bounds(x, box, epsilon_box)
    statuses = []
    for i in range(x.shape[0]):
        if box.fixed[i]:
            statuses.append(CoordinateStatus.FIXED)
        elif abs(g[i]) < epsilon_grad:
            statuses.append(CoordinateStatus.INTERIOR_STATIONARY)
        elif near_lower[i] and g[i] > 0:
            statuses.append(CoordinateStatus.ACTIVE_LOWER)
        elif near_upper[i] and g[i] < 0:
            statuses.append(CoordinateStatus.ACTIVE_UPPER)
        else:
            statuses.append(CoordinateStatus.NOT_STATIONARY)

    return Certificate(
        statuses=tuple(statuses),
        gradient=g,
        epsilon_grad=epsilon_grad,
        epsilon_box=epsilon_box,
    )


def projected_gradient(
    x: npt.NDArray[np.float64],
    g: npt.NDArray[np.float64],
    box: Box,
    epsilon_box: float,
) -> npt.NDArray[np.float64]:
    """Zero out gradient components that point out of the box at an active bound.

    The infinity norm of the result measures first-order stationarity: it is zero at a
    KKT point.

    """
    near_lower, near_upper = _near_bounds(x, box, epsilon_box)
    pg = np.array(g, dtype=np.float64)
    pg[(near_lower & (pg > 0)) | (near_upper & (pg < 0)) | box.fixed] = 0.0
    return pg
