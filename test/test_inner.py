"""Test inner optimizers."""

import numpy as np
import pytest
from scipy.optimize import OptimizeResult, OptimizeWarning

from pyboxmin.inner import (
    BFGS,
    LBFGS,
    ConjugateGradient,
    GradientDescent,
    InnerOptimizer,
    NelderMead,
    Newton,
    NewtonTrustRegion,
    backtracking_line_search,
    get_inner_optimizer,
)
from pyboxmin.exceptions import BacktrackingLineSearchError, PrecisionLossError
from pyboxmin.optimization import OptimizationSettings

FIRST_ORDER = [GradientDescent, ConjugateGradient, BFGS, LBFGS]


def random_quadratic(seed: int, N: int):
    """Well-conditioned quadratic, 0.5 * x' * P * x - q' * x."""
    np.random.seed(seed)
    Q, _ = np.linalg.qr(np.random.randn(N, N))
    P = Q @ np.diag(1.0 + 4.0 * np.random.rand(N)) @ Q.T
    q = np.random.randn(N)

    def fun(x):
        return 0.5 * np.dot(x, P @ x) - np.dot(q, x)

    def grad(x):
        return P @ x - q

    return fun, grad, np.linalg.solve(P, q)


def log_barrier(x):
    """x - log(x), which is +inf for x <= 0 and minimized at x = 1."""
    if x[0] <= 0:
        return np.inf
    return x[0] - np.log(x[0])


def log_barrier_gradient(x):
    return np.array([1.0 - 1.0 / x[0]])


class TestLineSearchOptimizers:
    """Test gradient based inner optimizers."""

    @pytest.mark.parametrize("method", FIRST_ORDER)
    @pytest.mark.parametrize("seed,N", [(101, 2), (201, 5), (301, 10)])
    def test_quadratic(self, method, seed: int, N: int) -> None:
        """Test minimizing a quadratic."""
        fun, grad, x_star = random_quadratic(seed, N)
        res = method().minimize(fun, grad, np.zeros(N), OptimizationSettings())
        assert res.success
        assert res.nit > 0
        np.testing.assert_allclose(res.x, x_star, atol=1e-6)
        np.testing.assert_allclose(res.fun, fun(res.x))

    @pytest.mark.parametrize("method", FIRST_ORDER)
    @pytest.mark.parametrize("x0", [5.0, 0.01, 1e-6])
    def test_infinite_wall(self, method, x0: float) -> None:
        """Test iterates never step where the objective is infinite."""
        res = method().minimize(
            log_barrier, log_barrier_gradient, np.array([x0]), OptimizationSettings()
        )
        np.testing.assert_allclose(res.x, [1.0], atol=1e-6)
        assert np.isfinite(res.fun)
        assert res.x[0] > 0

    @pytest.mark.parametrize("method", FIRST_ORDER)
    @pytest.mark.parametrize("seed,N", [(111, 3), (211, 6)])
    def test_preconditioned_quadratic(self, method, seed: int, N: int) -> None:
        """Test a badly scaled quadratic with its exact diagonal preconditioner."""
        np.random.seed(seed)
        scale = 10.0 ** np.random.uniform(-3, 3, size=N)
        x_star = np.random.randn(N)

        def fun(x):
            return 0.5 * np.dot(scale, (x - x_star) ** 2)

        def grad(x):
            return scale * (x - x_star)

        res = method().minimize(
            fun,
            grad,
            np.zeros(N),
            OptimizationSettings(inner_g_tol=1e-10),
            precondition=lambda x: 1.0 / scale,
        )
        assert res.success
        np.testing.assert_allclose(res.x, x_star, atol=1e-6)

    @pytest.mark.parametrize("method", FIRST_ORDER)
    def test_precision_loss(self, method) -> None:
        """Test a decrease lost to rounding ends the solve successfully."""
        x0 = np.array([1e-9])

        def fun(x):
            # Flat to within rounding: every move appears to increase f.
            return 1.0 if x[0] == x0[0] else 1.0 + 1e-15

        def grad(x):
            return np.array([1e-9])

        res = method().minimize(fun, grad, x0, OptimizationSettings(inner_g_tol=0.0))
        assert res.success
        assert res.status == 0
        assert res.nit == 0
        assert "machine precision" in res.message
        assert not method().failed(res)

    @pytest.mark.parametrize("method", FIRST_ORDER)
    def test_wrong_gradient(self, method) -> None:
        """Test a line search failure is reported as a breakdown."""
        fun, grad, _ = random_quadratic(701, 3)

        def wrong_grad(x):
            return -grad(x)

        res = method().minimize(fun, wrong_grad, np.zeros(3), OptimizationSettings())
        assert not res.success
        assert res.status == 2
        assert res.nit == 0
        assert "Line search failed" in res.message
        assert method().failed(res)
        np.testing.assert_array_equal(res.x, np.zeros(3))

    def test_iteration_limit(self) -> None:
        """Test inner_iterations caps the number of iterations."""
        fun, grad, _ = random_quadratic(401, 10)
        settings = OptimizationSettings(inner_iterations=3, inner_g_tol=0.0)
        res = GradientDescent().minimize(fun, grad, np.zeros(10), settings)
        assert res.nit == 3
        assert not res.success
        assert res.status == 1

    def test_inner_options(self) -> None:
        """Test inner_options override settings and unknown ones warn."""
        fun, grad, _ = random_quadratic(501, 4)
        settings = OptimizationSettings(inner_options={"maxiter": 2})
        res = BFGS().minimize(fun, grad, np.zeros(4), settings)
        assert res.nit <= 2

        settings = OptimizationSettings(inner_options={"xatol": 1e-3})
        with pytest.warns(OptimizeWarning):
            LBFGS().minimize(fun, grad, np.zeros(4), settings)

    def test_infeasible_start(self) -> None:
        """Test the objective must be finite at the initial guess."""
        with pytest.raises(ValueError):
            BFGS().minimize(
                log_barrier,
                log_barrier_gradient,
                np.array([-1.0]),
                OptimizationSettings(),
            )

    def test_does_not_mutate_initial_guess(self) -> None:
        """Test x0 is not modified in place."""
        fun, grad, _ = random_quadratic(601, 3)
        x0 = np.zeros(3)
        LBFGS().minimize(fun, grad, x0, OptimizationSettings())
        np.testing.assert_array_equal(x0, np.zeros(3))

    def test_lbfgs_memory(self) -> None:
        """Test memory parameter."""
        assert LBFGS(m=3).m == 3
        with pytest.raises(ValueError):
            LBFGS(m=0)


class TestBacktrackingLineSearch:
    """Test backtracking_line_search."""

    def test_backtracks_over_infinite_values(self) -> None:
        """Test a step into the infinite region is shrunk."""
        x = np.array([0.1])
        g = log_barrier_gradient(x)
        step, f_new, nfev = backtracking_line_search(
            log_barrier, x, log_barrier(x), g, -g, step=1.0, alpha=1e-4, beta=0.5
        )
        assert np.isfinite(f_new)
        assert x[0] - step * g[0] > 0
        assert nfev > 1

    def test_ascent_direction(self) -> None:
        """Test an ascent direction is rejected."""
        x = np.array([2.0])
        g = log_barrier_gradient(x)
        with pytest.raises(BacktrackingLineSearchError):
            backtracking_line_search(
                log_barrier, x, log_barrier(x), g, g, step=1.0, alpha=1e-4, beta=0.5
            )

    def test_decrease_below_rounding(self) -> None:
        """Test a failure near a minimizer is flagged as a precision loss."""
        fun, grad, x_star = random_quadratic(801, 4)
        x = x_star + 1e-10
        g = grad(x)
        with pytest.raises(PrecisionLossError) as excinfo:
            backtracking_line_search(
                lambda z: fun(z) + (0.0 if np.array_equal(z, x) else 1e-14),
                x,
                fun(x),
                g,
                -g,
                step=1.0,
                alpha=1e-4,
                beta=0.5,
            )
        assert isinstance(excinfo.value, BacktrackingLineSearchError)
        assert excinfo.value.required_improvement < 1e-15


class TestNelderMead:
    """Test NelderMead."""

    @pytest.mark.parametrize("seed,N", [(101, 2), (201, 3)])
    def test_quadratic(self, seed: int, N: int) -> None:
        """Test minimizing a quadratic without gradients."""
        fun, _, x_star = random_quadratic(seed, N)

        def grad(x):
            raise AssertionError("Nelder-Mead must not use the gradient")

        res = NelderMead().minimize(fun, grad, np.zeros(N), OptimizationSettings())
        np.testing.assert_allclose(res.x, x_star, atol=1e-3)
        assert res.njev == 0

    def test_infinite_wall(self) -> None:
        """Test infinite values are tolerated."""
        res = NelderMead().minimize(
            log_barrier, log_barrier_gradient, np.array([0.05]), OptimizationSettings()
        )
        assert res.x[0] > 0
        np.testing.assert_allclose(res.x, [1.0], atol=1e-3)

    def test_limits_are_not_failures(self) -> None:
        """Test iteration and evaluation limits are not reported as breakdowns."""
        for status in [1, 2]:
            result = OptimizeResult(success=False, status=status)
            assert not NelderMead().failed(result)
        assert NelderMead().failed(OptimizeResult(success=False, status=3))
        assert GradientDescent().failed(OptimizeResult(success=False, status=2))
        assert not GradientDescent().failed(OptimizeResult(success=False, status=1))


class TestGetInnerOptimizer:
    """Test get_inner_optimizer."""

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("gd", GradientDescent),
            ("Gradient Descent", GradientDescent),
            ("cg", ConjugateGradient),
            ("conjugate_gradient", ConjugateGradient),
            ("BFGS", BFGS),
            ("L-BFGS", LBFGS),
            ("lbfgs", LBFGS),
            ("nelder-mead", NelderMead),
            ("newton", Newton),
            ("newton-trust-region", NewtonTrustRegion),
        ],
    )
    def test_names(self, name: str, expected) -> None:
        """Test lookup by name."""
        assert isinstance(get_inner_optimizer(name), expected)

    def test_instance(self) -> None:
        """Test instances are returned unchanged."""
        optimizer = LBFGS(m=5)
        assert get_inner_optimizer(optimizer) is optimizer

    def test_unknown(self) -> None:
        """Test unknown names and types."""
        with pytest.raises(ValueError):
            get_inner_optimizer("simulated-annealing")
        with pytest.raises(TypeError):
            get_inner_optimizer(3)

    def test_order(self) -> None:
        """Test only Newton methods are flagged as second order."""
        for method in FIRST_ORDER + [NelderMead]:
            assert isinstance(method(), InnerOptimizer)
            assert not method().second_order
        assert Newton().second_order
        assert NewtonTrustRegion().second_order
        assert not NelderMead().uses_gradient

    def test_names_for_summary(self) -> None:
        """Test display names."""
        assert GradientDescent().name == "Gradient Descent"
        assert ConjugateGradient().name == "Conjugate Gradient"
        assert LBFGS().name == "L-BFGS"
        assert BFGS().name == "BFGS"
        assert NelderMead().name == "Nelder-Mead"
        assert Newton().name == "Newton's Method"
        assert NewtonTrustRegion().name == "Newton's Method (Trust Region)"
