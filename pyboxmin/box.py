"""Box constraints: validation and projection of the initial guess."""

import warnings
from dataclasses import dataclass
from typing import List

import numpy as np
import numpy.typing as npt

from .exceptions import BoundaryInitialPointWarning, InvalidBoxError, OutOfBoundsError

# Fraction of the box width by which a boundary coordinate is moved inward.
BOUNDARY_OFFSET = 0.01


def _readonly(a: npt.ArrayLike) -> npt.NDArray[np.float64]:
    arr = np.array(a, dtype=np.float64, ndmin=1)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class Box:
    """Axis-aligned box, l <= x <= u.

    Parameters
    ----------
     lower, upper : array_like
        Lower and upper bounds. Infinite bounds are permitted. A coordinate with
        lower[i] == upper[i] is fixed.

    """

    lower: npt.NDArray[np.float64]
    upper: npt.NDArray[np.float64]

    def __post_init__(self) -> None:
        lower = _readonly(self.lower)
        upper = _readonly(self.upper)
        if lower.ndim != 1 or lower.shape != upper.shape:
            raise InvalidBoxError(
                "Lower and upper bounds must be vectors of the same length; got "
                f"shapes {lower.shape} and {upper.shape}."
            )
        if np.any(np.isnan(lower)) or np.any(np.isnan(upper)):
            raise InvalidBoxError("Bounds must not be NaN.")
        if np.any(lower > upper):
            bad = [int(i) + 1 for i in np.flatnonzero(lower > upper)]
            raise InvalidBoxError(
                f"Lower bound exceeds upper bound at element indices {bad}."
            )
        if np.any(lower == np.inf) or np.any(upper == -np.inf):
            raise InvalidBoxError("Box must not be empty.")

        object.__setattr__(self, "lower", lower)
        object.__setattr__(self, "upper", upper)

    @property
    def dimension(self) -> int:
        """Number of coordinates."""
        return self.lower.shape[0]

    @property
    def width(self) -> npt.NDArray[np.float64]:
        """u - l."""
        return self.upper - self.lower

    @property
    def fixed(self) -> npt.NDArray[np.bool_]:
        """Mask of coordinates with l[i] == u[i]."""
        return self.lower == self.upper

    @property
    def free(self) -> npt.NDArray[np.bool_]:
        """Mask of coordinates with l[i] < u[i]."""
        return self.lower < self.upper

    def contains(self, x: npt.NDArray[np.float64], strict: bool = False) -> bool:
        """Check l <= x <= u, or l < x < u if `strict`."""
        if strict:
            return bool(np.all(x > self.lower) and np.all(x < self.upper))
        return bool(np.all(x >= self.lower) and np.all(x <= self.upper))

    def interior(self, x: npt.NDArray[np.float64]) -> bool:
        """Check l < x < u for every free coordinate, and x == l for fixed ones."""
        free = self.free
        return bool(
            np.all(x[free] > self.lower[free])
            and np.all(x[free] < self.upper[free])
            and np.all(x[~free] == self.lower[~free])
        )

    def non_interior_indices(self, x: npt.NDArray[np.float64]) -> List[int]:
        """1-indexed free coordinates that are not strictly inside the box."""
        bad = self.free & ~((x > self.lower) & (x < self.upper))
        return [int(i) + 1 for i in np.flatnonzero(bad)]

    def clip(self, x: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """Project x onto the box."""
        return np.clip(x, self.lower, self.upper)


def _move_inward(x: float, toward: float) -> float:
    """Move a boundary value `x` a small distance towards `toward`."""
    if np.isfinite(toward):
        y = x + BOUNDARY_OFFSET * (toward - x)
        if y == x or y == toward:
            # Box is too thin for the offset to be representable.
            y = 0.5 * (x + toward)
    else:
        y = x + np.sign(toward) * BOUNDARY_OFFSET * max(1.0, abs(x))
    return float(y)


def validate_and_project(
    x0: npt.ArrayLike, box: Box, warn: bool = True
) -> npt.NDArray[np.float64]:
    """Check an initial guess against the box, moving boundary points inward.

    Parameters
    ----------
     x0 : array_like
        Initial guess.
     box : Box
        The box.
     warn : bool, default=True
        If True, issue a BoundaryInitialPointWarning when any coordinate of x0 lies
        on the boundary.

    Returns
    -------
     x : npt.NDArray[np.float64]
        A copy of x0 with every free coordinate strictly inside the box.

    Raises
    ------
     OutOfBoundsError
        If any coordinate of x0 lies outside the box. We never clamp.

    Notes
    -----
    A coordinate on its lower bound is moved 1% of the box width towards the upper
    bound (and vice versa). If the other bound is infinite, it is moved by 1% of its
    magnitude (but at least 0.01). All affected coordinates are reported in a single
    warning, 1-indexed and in ascending order. Fixed coordinates are left alone.

    """
    x = np.array(x0, dtype=np.float64, ndmin=1)
    if x.shape != box.lower.shape:
        raise ValueError(
            f"Initial guess has shape {x.shape} but box has shape {box.lower.shape}."
        )
    if not np.all(np.isfinite(x)):
        raise ValueError("Initial guess must be finite.")

    outside = (x < box.lower) | (x > box.upper)
    if np.any(outside):
        raise OutOfBoundsError(
            message="Initial guess must lie within the box.",
            indices=[int(i) + 1 for i in np.flatnonzero(outside)],
        )

    on_lower = box.free & (x == box.lower)
    on_upper = box.free & (x == box.upper)
    affected = np.flatnonzero(on_lower | on_upper)
    if affected.size == 0:
        return x

    for i in affected:
        if on_lower[i]:
            x[i] = _move_inward(box.lower[i], box.upper[i])
        else:
            x[i] = _move_inward(box.upper[i], box.lower[i])

    if warn:
        # Once per call, not once per call site.
        with warnings.catch_warnings():
            warnings.simplefilter("always", BoundaryInitialPointWarning)
            warnings.warn(
                "Initial position cannot be on the boundary of the box. Moving "
                "elements to the interior.\nElement indices affected: "
                f"{[int(i) + 1 for i in affected]}",
                BoundaryInitialPointWarning,
                stacklevel=2,
            )
    return x
