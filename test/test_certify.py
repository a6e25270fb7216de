"""Test first-order optimality certificates."""

import numpy as np
import pytest

from pyboxmin.box import Box
from pyboxmin.certify import CoordinateStatus, certify, projected_gradient
from pyboxmin.objective import Objective


class TestCertify:
    """Test certify."""

    def test_classification(self) -> None:
        """Test each classification."""
        box = Box([0.0, 0.0, 0.0, 0.0, 0.0, 1.0], [1.0, 1.0, 1.0, 1.0, 1.0, 1.0])
        x = np.array([0.5, 1e-5, 1.0 - 1e-5, 1e-5, 0.5, 1.0])
        g = np.array([1e-4, 2.0, -3.0, -2.0, 1.0, 5.0])
        cert = certify(x, lambda z: g, box)
        assert cert.statuses == (
            CoordinateStatus.INTERIOR_STATIONARY,
            CoordinateStatus.ACTIVE_LOWER,
            CoordinateStatus.ACTIVE_UPPER,
            CoordinateStatus.NOT_STATIONARY,
            CoordinateStatus.NOT_STATIONARY,
            CoordinateStatus.FIXED,
        )
        assert not cert.is_stationary
        assert cert.violations == [4, 5]
        np.testing.assert_array_equal(cert.gradient, g)

    @pytest.mark.parametrize("epsilon_box,expected", [(1e-3, False), (0.1, True)])
    def test_tolerances(self, epsilon_box: float, expected: bool) -> None:
        """Test box tolerance decides whether a coordinate is active."""
        box = Box([0.0], [1.0])
        cert = certify(
            np.array([0.05]), lambda z: np.array([1.0]), box, epsilon_box=epsilon_box
        )
        assert cert.is_stationary is expected

    def test_with_objective(self) -> None:
        """Test the unpenalized gradient of an Objective is used."""
        obj = Objective(lambda x: np.sum((x - 2.0) ** 2), grad=lambda x: 2 * (x - 2.0))
        box = Box([0.0, 0.0], [1.0, 3.0])
        cert = certify(np.array([1.0, 2.0]), obj, box)
        assert cert.statuses == (
            CoordinateStatus.ACTIVE_UPPER,
            CoordinateStatus.INTERIOR_STATIONARY,
        )
        assert cert.is_stationary
        assert cert.violations == []


class TestProjectedGradient:
    """Test projected_gradient."""

    def test_projection(self) -> None:
        """Test outward components at active bounds are removed."""
        box = Box([0.0, 0.0, 0.0, 0.0, 2.0], [1.0, 1.0, 1.0, 1.0, 2.0])
        x = np.array([0.0, 1.0, 0.0, 0.5, 2.0])
        g = np.array([1.0, -1.0, -1.0, 0.5, 7.0])
        np.testing.assert_array_equal(
            projected_gradient(x, g, box, 1e-3), [0.0, 0.0, -1.0, 0.5, 0.0]
        )
