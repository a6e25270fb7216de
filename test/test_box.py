"""Test Box and validate_and_project."""

import warnings

import numpy as np
import pytest

from pyboxmin.box import Box, validate_and_project
from pyboxmin.exceptions import (
    BoundaryInitialPointWarning,
    InvalidBoxError,
    OutOfBoundsError,
)


class TestBox:
    """Test Box."""

    def test_masks(self) -> None:
        """Test fixed and free coordinates."""
        box = Box([0.0, 1.0, -np.inf], [2.0, 1.0, np.inf])
        np.testing.assert_array_equal(box.fixed, [False, True, False])
        np.testing.assert_array_equal(box.free, [True, False, True])
        assert box.dimension == 3

    def test_interior(self) -> None:
        """Test interior and containment checks."""
        box = Box([0.0, 1.0], [2.0, 1.0])
        assert box.interior(np.array([1.0, 1.0]))
        assert not box.interior(np.array([0.0, 1.0]))
        assert not box.interior(np.array([1.0, 1.5]))
        assert box.contains(np.array([0.0, 1.0]))
        assert not box.contains(np.array([-0.1, 1.0]))
        assert box.non_interior_indices(np.array([2.0, 1.0])) == [1]

    def test_contains_strict(self) -> None:
        """Test strict containment excludes the boundary."""
        box = Box([0.0, -np.inf], [1.0, 2.0])
        on_boundary = np.array([0.0, 2.0])
        inside = np.array([0.5, -1e6])
        assert box.contains(on_boundary)
        assert not box.contains(on_boundary, strict=True)
        assert box.contains(inside, strict=True)
        assert not box.contains(np.array([1.5, 0.0]), strict=True)

    def test_bounds_are_read_only(self) -> None:
        """Test bounds cannot be modified."""
        box = Box([0.0, 0.0], [1.0, 1.0])
        with pytest.raises(ValueError):
            box.lower[0] = 0.5

    @pytest.mark.parametrize(
        "lower,upper",
        [
            ([0.0, 1.0], [1.0, 0.0]),
            ([0.0], [1.0, 2.0]),
            ([np.nan], [1.0]),
            ([np.inf], [np.inf]),
        ],
    )
    def test_invalid(self, lower, upper) -> None:
        """Test invalid boxes."""
        with pytest.raises(InvalidBoxError):
            Box(lower, upper)


class TestValidateAndProject:
    """Test validate_and_project."""

    @pytest.mark.parametrize("seed,N", [(101, 3), (201, 8), (301, 20)])
    def test_interior_unchanged(self, seed: int, N: int) -> None:
        """Test interior points pass through without a warning."""
        np.random.seed(seed)
        box = Box(-np.ones(N), np.ones(N))
        x0 = 2 * np.random.rand(N) - 1
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            x = validate_and_project(x0, box)
        np.testing.assert_array_equal(x, x0)
        assert x is not x0

    @pytest.mark.parametrize("seed,N", [(102, 3), (202, 8), (302, 20)])
    def test_outside(self, seed: int, N: int) -> None:
        """Test points outside the box are rejected, not clamped."""
        np.random.seed(seed)
        box = Box(-np.ones(N), np.ones(N))
        x0 = 0.5 * np.random.rand(N)
        x0[0] = 1.5
        x0[-1] = -3.0
        with pytest.raises(OutOfBoundsError) as e:
            validate_and_project(x0, box)
        assert e.value.indices == [1, N]

    def test_boundary(self) -> None:
        """Test boundary points are moved inward with a single warning."""
        box = Box([-2.0, -2.0, -2.0, -2.0], [2.0, 2.0, 2.0, 2.0])
        x0 = np.array([2.0, 0.0, -2.0, 2.0])
        with pytest.warns(BoundaryInitialPointWarning) as record:
            x = validate_and_project(x0, box)

        messages = [
            str(w.message)
            for w in record
            if issubclass(w.category, BoundaryInitialPointWarning)
        ]
        assert messages == [
            "Initial position cannot be on the boundary of the box. Moving elements "
            "to the interior.\nElement indices affected: [1, 3, 4]"
        ]
        np.testing.assert_allclose(x, [1.96, 0.0, -1.96, 1.96])
        assert box.interior(x)
        # Input is untouched.
        np.testing.assert_array_equal(x0, [2.0, 0.0, -2.0, 2.0])

    def test_boundary_warning_repeats(self) -> None:
        """Test each call warns, even from the same line."""
        box = Box([0.0, 0.0], [1.0, 1.0])
        with warnings.catch_warnings(record=True) as record:
            warnings.simplefilter("default")
            for _ in range(2):
                validate_and_project([0.0, 1.0], box)

        moved = [
            w for w in record if issubclass(w.category, BoundaryInitialPointWarning)
        ]
        assert len(moved) == 2

    def test_boundary_infinite(self) -> None:
        """Test boundary points when the opposite bound is infinite."""
        box = Box([0.0, -np.inf, 10.0], [np.inf, 5.0, np.inf])
        with pytest.warns(BoundaryInitialPointWarning, match=r"\[1, 2, 3\]"):
            x = validate_and_project([0.0, 5.0, 10.0], box)
        np.testing.assert_allclose(x, [0.01, 4.95, 10.1])

    def test_fixed_not_reported(self) -> None:
        """Test fixed coordinates are left alone."""
        box = Box([0.0, 1.0], [2.0, 1.0])
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            x = validate_and_project([0.5, 1.0], box)
        np.testing.assert_array_equal(x, [0.5, 1.0])

        with pytest.warns(BoundaryInitialPointWarning, match=r"\[1\]$"):
            validate_and_project([0.0, 1.0], box)

    def test_bad_shape(self) -> None:
        """Test shape mismatch and non-finite input."""
        box = Box([0.0, 0.0], [1.0, 1.0])
        with pytest.raises(ValueError):
            validate_and_project([0.5], box)
        with pytest.raises(ValueError):
            validate_and_project([0.5, np.nan], box)
