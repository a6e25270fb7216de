"""Unconstrained inner optimizers.

The barrier method solves a sequence of unconstrained problems. Any of the following
can be used for these "centering steps":
  - GradientDescent
  - ConjugateGradient
  - BFGS
  - LBFGS
  - NelderMead
Each exposes `minimize(fun, grad, x0, settings)` and returns a
`scipy.optimize.OptimizeResult`.

The barrier objective is +inf outside the box. The gradient methods here therefore use
a backtracking line search that treats a non-finite trial value as a failed step and
shrinks it; starting from a strictly feasible point, every accepted iterate is again
strictly feasible. Nelder-Mead simply ranks +inf vertices last.

The gradient methods optionally accept a diagonal preconditioner, an approximation to
the inverse of the Hessian diagonal. Fminbox supplies one derived from the barrier,
whose curvature grows without bound near an active constraint.

Newton and NewtonTrustRegion are provided for completeness but use curvature
information, so they are rejected by Fminbox.

"""

import warnings
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Deque, Dict, Optional, Tuple, Union

import numpy as np
import numpy.typing as npt
from scipy.optimize import OptimizeResult, OptimizeWarning, minimize

from .exceptions import BacktrackingLineSearchError, PrecisionLossError

if TYPE_CHECKING:
    from .optimization import OptimizationSettings

Function = Callable[[npt.NDArray[np.float64]], float]
Gradient = Callable[[npt.NDArray[np.float64]], npt.NDArray[np.float64]]
Preconditioner = Callable[[npt.NDArray[np.float64]], npt.NDArray[np.float64]]

# Decreases below this multiple of eps * max(1, |f|) are lost to rounding.
PRECISION_FACTOR = 64.0


class InnerOptimizer(ABC):
    """Base class for an unconstrained optimizer."""

    #: Human-readable name, used in result summaries.
    name: str = ""
    #: Whether the method uses second derivatives.
    second_order: bool = False
    #: Whether the method uses the gradient.
    uses_gradient: bool = True
    #: Result statuses that mean an iteration or evaluation limit was reached.
    limit_statuses: Tuple[int, ...] = (1,)

    def options(self, settings: "OptimizationSettings") -> Dict[str, Any]:
        """Solver options: iteration cap and tolerance, then user overrides."""
        opts: Dict[str, Any] = {
            "maxiter": settings.inner_iterations,
            "gtol": settings.inner_g_tol,
        }
        opts.update(settings.inner_options)
        return opts

    def failed(self, result: OptimizeResult) -> bool:
        """True if `result` reports a breakdown, rather than success or a limit."""
        return not result.success and int(result.status) not in self.limit_statuses

    @abstractmethod
    def minimize(
        self,
        fun: Function,
        grad: Gradient,
        x0: npt.NDArray[np.float64],
        settings: "OptimizationSettings",
        precondition: Optional[Preconditioner] = None,
    ) -> OptimizeResult:
        """Minimize `fun` starting from `x0`.

        Parameters
        ----------
         fun : callable
            Objective, possibly returning +inf.
         grad : callable
            Gradient of `fun`. Ignored by derivative-free methods.
         x0 : npt.NDArray[np.float64]
            Initial guess; `fun(x0)` must be finite.
         settings : OptimizationSettings
            Settings. Inner iteration cap, tolerance and options are read from here.
         precondition : callable, optional
            Returns a positive vector P(x) approximating the inverse Hessian diagonal.
            Ignored by methods that do not support preconditioning.

        Returns
        -------
         res : scipy.optimize.OptimizeResult
            Result, with fields x, fun, nit, nfev, njev, success, status and message.

        """

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


def backtracking_line_search(
    fun: Function,
    x: npt.NDArray[np.float64],
    f: float,
    g: npt.NDArray[np.float64],
    d: npt.NDArray[np.float64],
    step: float,
    alpha: float,
    beta: float,
) -> Tuple[float, float, int]:
    """Perform backtracking line search.

    Parameters
    ----------
     fun : callable
        Objective.
     x : npt.NDArray[np.float64]
        Current estimate.
     f : float
        fun(x).
     g : npt.NDArray[np.float64]
        Gradient at x.
     d : npt.NDArray[np.float64]
        Descent direction.
     step : float
        Initial step size.
     alpha : float
        Sufficient decrease parameter.
     beta : float
        Factor by which the step is reduced.

    Returns
    -------
     step : float
        Accepted step size.
     f_new : float
        fun(x + step * d).
     nfev : int
        Number of function evaluations.

    Raises
    ------
     BacktrackingLineSearchError
        If d is not a descent direction, or the step became too small to change x
        without achieving sufficient decrease.
     PrecisionLossError
        If the decrease predicted for the initial step is already below the
        resolution of the objective, and that step does not decrease it.

    """
    slope = float(np.dot(g, d))
    if not slope < 0:
        raise BacktrackingLineSearchError(
            message="Search direction was not a descent direction.",
            required_improvement=0.0,
            actual_improvement=0.0,
        )

    # Below this step size, x + step * d == x in floating point.
    min_step = (
        np.finfo(np.float64).eps
        * (1.0 + np.linalg.norm(x, np.inf))
        / np.linalg.norm(d, np.inf)
    )
    noise = PRECISION_FACTOR * np.finfo(np.float64).eps * max(1.0, abs(f))
    precision_limited = -step * slope <= noise
    nfev = 0
    while True:
        f_new = fun(x + step * d)
        nfev += 1
        if np.isfinite(f_new) and f_new <= f + alpha * step * slope:
            return step, float(f_new), nfev

        if precision_limited and np.isfinite(f_new):
            raise PrecisionLossError(
                message="Predicted decrease is below the precision of the objective.",
                required_improvement=-alpha * step * slope,
                actual_improvement=f - f_new,
            )

        if step < min_step:
            raise BacktrackingLineSearchError(
                message="Small step sizes did not adequately decrease objective.",
                required_improvement=-alpha * step * slope,
                actual_improvement=f - f_new,
            )
        step *= beta


@dataclass
class _SearchState:
    """Per-call memory of a line search method."""

    p: Optional[npt.NDArray[np.float64]] = None
    step: Optional[float] = None
    d: Optional[npt.NDArray[np.float64]] = None
    g: Optional[npt.NDArray[np.float64]] = None
    z: Optional[npt.NDArray[np.float64]] = None
    slope: Optional[float] = None
    inv_hessian: Optional[npt.NDArray[np.float64]] = None
    s_history: Deque[npt.NDArray[np.float64]] = field(default_factory=deque)
    y_history: Deque[npt.NDArray[np.float64]] = field(default_factory=deque)

    def scale(self, v: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """Apply preconditioner, if any."""
        if self.p is None:
            return v.copy()
        return self.p * v


class LineSearchOptimizer(InnerOptimizer):
    """Base class for descent methods using a backtracking line search.

    Subclasses choose the search direction; the iteration, line search and stopping
    rules are shared. A method falls back to (preconditioned) steepest descent
    whenever its direction fails to be a descent direction.

    """

    KNOWN_OPTIONS = ("maxiter", "gtol")

    def new_state(self, x: npt.NDArray[np.float64]) -> _SearchState:
        """Initialize per-call memory."""
        return _SearchState()

    @abstractmethod
    def search_direction(
        self, g: npt.NDArray[np.float64], state: _SearchState
    ) -> npt.NDArray[np.float64]:
        """Calculate search direction."""

    def initial_step(
        self,
        g: npt.NDArray[np.float64],
        d: npt.NDArray[np.float64],
        state: _SearchState,
    ) -> float:
        """First trial step of the line search.

        On the first iteration we limit the step so no coordinate moves by more than
        one unit. Afterwards, unit steps.

        """
        if state.step is None:
            return min(1.0, 1.0 / np.linalg.norm(d, np.inf))
        return 1.0

    def update(
        self,
        state: _SearchState,
        s: npt.NDArray[np.float64],
        y: npt.NDArray[np.float64],
    ) -> None:
        """Update memory after an accepted step s, with change in gradient y."""

    def restart(self, state: _SearchState) -> None:
        """Discard accumulated memory."""

    def minimize(
        self,
        fun: Function,
        grad: Gradient,
        x0: npt.NDArray[np.float64],
        settings: "OptimizationSettings",
        precondition: Optional[Preconditioner] = None,
    ) -> OptimizeResult:
        """Minimize `fun` starting from `x0`."""
        options = self.options(settings)
        unknown = sorted(set(options) - set(self.KNOWN_OPTIONS))
        if unknown:
            warnings.warn(
                f"Unknown solver options for {self.name}: {', '.join(unknown)}",
                OptimizeWarning,
                stacklevel=2,
            )
        maxiter = int(options["maxiter"])
        gtol = float(options["gtol"])

        x = np.array(x0, dtype=np.float64)
        f = float(fun(x))
        if not np.isfinite(f):
            raise ValueError("Objective must be finite at the initial guess.")
        g = np.asarray(grad(x), dtype=np.float64)
        nfev, njev = 1, 1

        state = self.new_state(x)
        status = 1
        message = "Maximum number of iterations has been exceeded."
        nit = 0
        while nit < maxiter:
            if np.linalg.norm(g, np.inf) <= gtol:
                status = 0
                message = "Optimization terminated successfully."
                break

            if precondition is not None:
                state.p = np.asarray(precondition(x), dtype=np.float64)
            d = self.search_direction(g, state)
            if not np.dot(g, d) < 0:
                self.restart(state)
                d = -state.scale(g)

            try:
                step, f_new, evals = backtracking_line_search(
                    fun,
                    x,
                    f,
                    g,
                    d,
                    step=self.initial_step(g, d, state),
                    alpha=settings.backtracking_alpha,
                    beta=settings.backtracking_beta,
                )
            except PrecisionLossError:
                status = 0
                message = (
                    "Optimization terminated: no further decrease is possible at "
                    "machine precision."
                )
                break
            except BacktrackingLineSearchError as e:
                status = 2
                message = f"Line search failed: {e}"
                break

            nfev += evals
            s = step * d
            x_new = x + s
            g_new = np.asarray(grad(x_new), dtype=np.float64)
            njev += 1

            state.slope = float(np.dot(g, d))
            state.step = step
            state.d = d
            state.g = g
            self.update(state, s, g_new - g)

            x, f, g = x_new, f_new, g_new
            nit += 1
        else:
            if np.linalg.norm(g, np.inf) <= gtol:
                status = 0
                message = "Optimization terminated successfully."

        return OptimizeResult(
            x=x,
            fun=f,
            jac=g,
            nit=nit,
            nfev=nfev,
            njev=njev,
            status=status,
            success=status == 0,
            message=message,
        )


class GradientDescent(LineSearchOptimizer):
    """Steepest descent.

    The first trial step of each line search is twice the previously accepted step,
    so the step size adapts to the scale of the problem.

    """

    name = "Gradient Descent"

    def search_direction(
        self, g: npt.NDArray[np.float64], state: _SearchState
    ) -> npt.NDArray[np.float64]:
        """Negative (preconditioned) gradient."""
        return -state.scale(g)

    def initial_step(
        self,
        g: npt.NDArray[np.float64],
        d: npt.NDArray[np.float64],
        state: _SearchState,
    ) -> float:
        """Twice the previous step."""
        if state.step is None:
            return min(1.0, 1.0 / np.linalg.norm(d, np.inf))
        return 2.0 * state.step


class ConjugateGradient(LineSearchOptimizer):
    """Nonlinear conjugate gradient (Polak-Ribiere, restarted when beta < 0).

    Parameters
    ----------
     restart_every : int, optional
        Restart with steepest descent every `restart_every` iterations. Defaults to
        the problem dimension.

    """

    name = "Conjugate Gradient"

    def __init__(self, restart_every: Optional[int] = None) -> None:
        if restart_every is not None and restart_every < 1:
            raise ValueError("restart_every must be at least 1.")
        self.restart_every = restart_every

    def new_state(self, x: npt.NDArray[np.float64]) -> _SearchState:
        """Initialize per-call memory."""
        state = _SearchState()
        state.s_history = deque(maxlen=self.restart_every or x.shape[0])
        return state

    def search_direction(
        self, g: npt.NDArray[np.float64], state: _SearchState
    ) -> npt.NDArray[np.float64]:
        """Conjugate direction."""
        z = state.scale(g)
        if (
            state.d is None
            or state.g is None
            or state.z is None
            or len(state.s_history) == state.s_history.maxlen
        ):
            state.s_history.clear()
            state.z = z
            return -z

        beta_pr = max(0.0, float(np.dot(z, g - state.g) / np.dot(state.z, state.g)))
        state.z = z
        return -z + beta_pr * state.d

    def initial_step(
        self,
        g: npt.NDArray[np.float64],
        d: npt.NDArray[np.float64],
        state: _SearchState,
    ) -> float:
        """Match the first-order change of the previous step (Nocedal & Wright 3.60)."""
        if state.step is None or state.slope is None:
            return min(1.0, 1.0 / np.linalg.norm(d, np.inf))
        return min(1.0, 1.01 * state.step * state.slope / float(np.dot(g, d)))

    def update(
        self,
        state: _SearchState,
        s: npt.NDArray[np.float64],
        y: npt.NDArray[np.float64],
    ) -> None:
        """Count steps since last restart."""
        state.s_history.append(s)

    def restart(self, state: _SearchState) -> None:
        """Discard accumulated memory."""
        state.s_history.clear()
        state.d = None


class BFGS(LineSearchOptimizer):
    """BFGS with a dense inverse Hessian approximation.

    The approximation starts at the preconditioner, if any, and otherwise at the
    identity rescaled by y's / y'y after the first step. Updates with y's <= 0 are
    skipped to preserve positive definiteness.

    """

    name = "BFGS"

    def search_direction(
        self, g: npt.NDArray[np.float64], state: _SearchState
    ) -> npt.NDArray[np.float64]:
        """Quasi-Newton direction."""
        if state.inv_hessian is None:
            state.inv_hessian = self.initial_inverse_hessian(g.shape[0], state)
        return -state.inv_hessian @ g

    @staticmethod
    def initial_inverse_hessian(n: int, state: _SearchState) -> npt.NDArray[np.float64]:
        """Preconditioner if available, otherwise the identity."""
        if state.p is None:
            return np.eye(n)
        return np.diag(state.p)

    def update(
        self,
        state: _SearchState,
        s: npt.NDArray[np.float64],
        y: npt.NDArray[np.float64],
    ) -> None:
        """BFGS update of the inverse Hessian."""
        ys = float(np.dot(y, s))
        if ys <= 1e-12 * np.linalg.norm(y) * np.linalg.norm(s):
            return

        if state.inv_hessian is None:
            state.inv_hessian = self.initial_inverse_hessian(s.shape[0], state)
        if not state.s_history and state.p is None:
            state.inv_hessian *= ys / float(np.dot(y, y))
        state.s_history.append(s)

        rho = 1.0 / ys
        Hy = state.inv_hessian @ y
        state.inv_hessian += (ys + float(np.dot(y, Hy))) * rho * rho * np.outer(
            s, s
        ) - rho * (np.outer(Hy, s) + np.outer(s, Hy))

    def restart(self, state: _SearchState) -> None:
        """Discard inverse Hessian approximation."""
        state.inv_hessian = None
        state.s_history.clear()


class LBFGS(LineSearchOptimizer):
    """Limited-memory BFGS using two-loop recursion.

    Parameters
    ----------
     m : int, default=10
        Number of correction pairs retained.

    """

    name = "L-BFGS"

    def __init__(self, m: int = 10) -> None:
        if m <= 0:
            raise ValueError("Memory parameter m must be positive.")
        self.m = m

    def new_state(self, x: npt.NDArray[np.float64]) -> _SearchState:
        """Initialize per-call memory."""
        return _SearchState(
            s_history=deque(maxlen=self.m), y_history=deque(maxlen=self.m)
        )

    def search_direction(
        self, g: npt.NDArray[np.float64], state: _SearchState
    ) -> npt.NDArray[np.float64]:
        """Two-loop recursion.

        The initial inverse Hessian is the preconditioner if there is one, and
        otherwise the identity scaled by s'y / y'y of the most recent pair.

        """
        q = g.copy()
        alphas = []
        for s, y in reversed(list(zip(state.s_history, state.y_history))):
            rho = 1.0 / float(np.dot(y, s))
            a = rho * float(np.dot(s, q))
            q -= a * y
            alphas.append((rho, a, s, y))

        if state.p is not None:
            q = state.scale(q)
        elif state.s_history:
            s, y = state.s_history[-1], state.y_history[-1]
            q *= float(np.dot(s, y) / np.dot(y, y))

        for rho, a, s, y in reversed(alphas):
            b = rho * float(np.dot(y, q))
            q += (a - b) * s
        return -q

    def update(
        self,
        state: _SearchState,
        s: npt.NDArray[np.float64],
        y: npt.NDArray[np.float64],
    ) -> None:
        """Store correction pair."""
        if float(np.dot(y, s)) > 1e-12 * np.linalg.norm(y) * np.linalg.norm(s):
            state.s_history.append(s)
            state.y_history.append(y)

    def restart(self, state: _SearchState) -> None:
        """Discard correction pairs."""
        state.s_history.clear()
        state.y_history.clear()

    def __repr__(self) -> str:
        return f"LBFGS(m={self.m})"


class ScipyOptimizer(InnerOptimizer):
    """Optimizer delegating to `scipy.optimize.minimize`."""

    method: str = ""
    hess: Optional[str] = None

    def options(self, settings: "OptimizationSettings") -> Dict[str, Any]:
        """Solver options."""
        opts: Dict[str, Any] = {"maxiter": settings.inner_iterations}
        opts.update(settings.inner_options)
        return opts

    def minimize(
        self,
        fun: Function,
        grad: Gradient,
        x0: npt.NDArray[np.float64],
        settings: "OptimizationSettings",
        precondition: Optional[Preconditioner] = None,
    ) -> OptimizeResult:
        """Minimize `fun` starting from `x0`. The preconditioner is not used."""
        kwargs: Dict[str, Any] = {}
        if self.uses_gradient:
            kwargs["jac"] = grad
        if self.hess is not None:
            kwargs["hess"] = self.hess

        res = minimize(
            fun,
            np.array(x0, dtype=np.float64),
            method=self.method,
            options=self.options(settings),
            **kwargs,
        )
        res.setdefault("njev", 0)
        res.setdefault("nit", 0)
        return res


class NelderMead(ScipyOptimizer):
    """Nelder-Mead simplex method. Derivative-free."""

    name = "Nelder-Mead"
    method = "Nelder-Mead"
    uses_gradient = False
    limit_statuses = (1, 2)


class Newton(ScipyOptimizer):
    """Newton's method (Newton-CG, with finite-difference Hessian products)."""

    name = "Newton's Method"
    method = "Newton-CG"
    second_order = True


class NewtonTrustRegion(ScipyOptimizer):
    """Trust region Newton method with a finite-difference Hessian."""

    name = "Newton's Method (Trust Region)"
    method = "trust-exact"
    hess = "2-point"
    second_order = True

    def options(self, settings: "OptimizationSettings") -> Dict[str, Any]:
        """Solver options."""
        opts: Dict[str, Any] = {
            "maxiter": settings.inner_iterations,
            "gtol": settings.inner_g_tol,
        }
        opts.update(settings.inner_options)
        return opts


INNER_OPTIMIZERS: Dict[str, Callable[[], InnerOptimizer]] = {
    "gradient-descent": GradientDescent,
    "gd": GradientDescent,
    "conjugate-gradient": ConjugateGradient,
    "cg": ConjugateGradient,
    "bfgs": BFGS,
    "lbfgs": LBFGS,
    "l-bfgs": LBFGS,
    "nelder-mead": NelderMead,
    "newton": Newton,
    "newton-trust-region": NewtonTrustRegion,
}


def get_inner_optimizer(method: Union[str, InnerOptimizer]) -> InnerOptimizer:
    """Look up an inner optimizer by name.

    Parameters
    ----------
     method : str or InnerOptimizer
        Either an InnerOptimizer (returned unchanged) or one of the names in
        INNER_OPTIMIZERS (case-insensitive; underscores and spaces are treated as
        hyphens).

    Returns
    -------
     optimizer : InnerOptimizer
        The optimizer.

    """
    if isinstance(method, InnerOptimizer):
        return method
    if not isinstance(method, str):
        raise TypeError(
            f"Expected an InnerOptimizer or a method name; got {type(method).__name__}."
        )

    key = method.strip().lower().replace("_", "-").replace(" ", "-")
    try:
        return INNER_OPTIMIZERS[key]()
    except KeyError:
        raise ValueError(
            f"Unknown inner optimizer {method!r}; expected one of "
            f"{sorted(INNER_OPTIMIZERS)}."
        ) from None
