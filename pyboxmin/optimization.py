r"""Box-constrained minimization with a logarithmic barrier.

Fminbox solves
    minimize    f(x)
    subject to  l <= x <= u
by solving a sequence of unconstrained problems,
    minimize    phi_mu(x) := f(x) + mu * B(x),
where B is a logarithmic barrier for the box (see barrier.py). Each of these
"centering steps" is handed to an unconstrained inner optimizer, starting from the
solution of the previous one; between centering steps the barrier coefficient mu is
reduced by a constant factor. As mu -> 0 the solutions of the barrier problems
approach a local minimizer of the constrained problem.

The barrier is infinite on the boundary of the box, so all iterates are strictly
feasible. Consequently, the initial guess must lie inside the box: points outside are
rejected, and points on the boundary are nudged inward with a warning.

"""

import enum
import time
import types
from dataclasses import dataclass, field, replace
from typing import Any, Callable, List, Mapping, Optional, Union

import matplotlib.pyplot as plt
import numpy as np
import numpy.typing as npt
from matplotlib.axes import Axes

from .barrier import barrier_gradient, barrier_preconditioner, build_penalized
from .box import Box, validate_and_project
from .certify import Certificate, certify, projected_gradient
from .exceptions import InvalidInnerMethodError
from .inner import LBFGS, InnerOptimizer, get_inner_optimizer
from .objective import Objective, as_objective


@dataclass(frozen=True)
class OptimizationSettings:
    """Optimization settings.

    Parameters
    ----------
    outer_iterations : int, default=1000
        Maximum number of centering steps. Reaching this limit is not an error; the
        result simply reports that it did not converge.
    outer_x_abstol : float, default=0.0
        Converged if no coordinate changed by more than this in a centering step.
    outer_f_reltol : float, default=1e-8
        Converged if the objective changed by no more than this, relative to its
        magnitude, in a centering step.
    outer_f_abstol : float, default=0.0
        Converged if the objective changed by no more than this in a centering step.
    outer_g_abstol : float, default=1e-8
        Converged if the infinity norm of the projected gradient is no more than this.
        Gradient components pointing out of the box at an active bound (within
        `epsilon_box`) are excluded.
    mu0 : float or None, default=1.0
        Initial barrier coefficient. If None, it is chosen so the barrier gradient is
        `mu0_factor` times the size of the objective gradient at the initial guess.
    mu0_factor : float, default=1e-3
        See `mu0`.
    barrier_decay : float, default=0.1
        Factor by which the barrier coefficient is multiplied after each centering
        step. Must lie strictly between 0 and 1.
    inner_iterations : int, default=1000
        Iteration limit of the inner optimizer, per centering step.
    inner_g_tol : float, default=1e-8
        Gradient tolerance (infinity norm) of the inner optimizer.
    inner_options : Mapping[str, Any], default={}
        Extra options forwarded to the inner optimizer unchanged, overriding the two
        settings above. For Nelder-Mead these are scipy's options, e.g. `xatol`.
    backtracking_alpha : float, default=1e-4
        Sufficient decrease parameter of the inner line search.
    backtracking_beta : float, default=0.5
        The factor used to reduce the step size in the inner line search.
    precondition : bool, default=True
        If True, gradient-based inner optimizers are given a diagonal preconditioner
        that undoes the curvature of the barrier near the bounds.
    epsilon_grad : float, default=3e-3
        Gradient tolerance used to certify the result. See certify.py.
    epsilon_box : float, default=1e-3
        Distance from a bound at which a coordinate is considered active.
    verbose : bool, default=False
        If True, print status along with how long it took to execute each step.

    """

    outer_iterations: int = 1000
    outer_x_abstol: float = 0.0
    outer_f_reltol: float = 1e-8
    outer_f_abstol: float = 0.0
    outer_g_abstol: float = 1e-8
    mu0: Optional[float] = 1.0
    mu0_factor: float = 1e-3
    barrier_decay: float = 0.1
    inner_iterations: int = 1000
    inner_g_tol: float = 1e-8
    inner_options: Mapping[str, Any] = field(default_factory=dict)
    backtracking_alpha: float = 1e-4
    backtracking_beta: float = 0.5
    precondition: bool = True
    epsilon_grad: float = 3e-3
    epsilon_box: float = 1e-3
    verbose: bool = False

    def __post_init__(self) -> None:
        for name in ("outer_iterations", "inner_iterations"):
            value = getattr(self, name)
            if isinstance(value, bool) or int(value) != value or value < 1:
                raise ValueError(f"{name} must be a positive integer.")
        if not 0.0 < self.barrier_decay < 1.0:
            raise ValueError("barrier_decay must lie strictly between 0 and 1.")
        if self.mu0 is not None and not self.mu0 > 0:
            raise ValueError("mu0 must be positive or None.")
        if not self.mu0_factor > 0:
            raise ValueError("mu0_factor must be positive.")
        if not 0.0 < self.backtracking_alpha < 0.5:
            raise ValueError("backtracking_alpha must lie strictly between 0 and 0.5.")
        if not 0.0 < self.backtracking_beta < 1.0:
            raise ValueError("backtracking_beta must lie strictly between 0 and 1.")
        for name in (
            "outer_x_abstol",
            "outer_f_reltol",
            "outer_f_abstol",
            "outer_g_abstol",
            "inner_g_tol",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative.")
        if not (self.epsilon_grad > 0 and self.epsilon_box > 0):
            raise ValueError("epsilon_grad and epsilon_box must be positive.")

        object.__setattr__(
            self, "inner_options", types.MappingProxyType(dict(self.inner_options))
        )

    def replace(self, **changes: Any) -> "OptimizationSettings":
        """Copy of these settings with some fields changed."""
        return replace(self, **changes)


class SolverStatus(enum.Enum):
    """Terminal state of the outer loop."""

    CONVERGED = 0
    MAX_ITERATIONS = 1
    FAILED = 2


@dataclass(frozen=True, eq=False)
class FminboxResult:
    """Results of Fminbox.

    Parameters
    ----------
     method : str
        "Fminbox with <inner method>".
     initial_x : vector
        Initial guess, after moving any boundary coordinates inward.
     minimizer : vector
        The solution.
     minimum : float
        Objective evaluated at `minimizer`.
     iterations : int
        Number of centering steps (outer iterations) completed.
     inner_iterations : List[int]
        Iterations of the inner optimizer in each centering step.
     inner_statuses : List[int]
        Status code returned by the inner optimizer in each centering step.
     status : SolverStatus
        CONVERGED, MAX_ITERATIONS or FAILED. A centering step fails if it leaves the
        interior of the box (the last interior iterate is reported), or if the inner
        optimizer breaks down without moving and the gradient has not converged.
     x_converged, f_converged, g_converged : bool
        Which outer convergence criteria were met on the last centering step.
     g_residual : float
        Infinity norm of the projected gradient at `minimizer`.
     mu_trace : List[float]
        Barrier coefficient used in each centering step.
     minimum_trace : List[float]
        Objective value after each centering step.
     g_residual_trace : List[float]
        Projected gradient norm after each centering step.
     f_calls, g_calls : int
        Number of objective and gradient evaluations.
     certificate : Certificate
        First-order optimality report at `minimizer`.
     message : str
        Summary of result.

    """

    method: str
    initial_x: npt.NDArray[np.float64]
    minimizer: npt.NDArray[np.float64]
    minimum: float
    iterations: int
    inner_iterations: List[int]
    inner_statuses: List[int]
    status: SolverStatus
    x_converged: bool
    f_converged: bool
    g_converged: bool
    g_residual: float
    mu_trace: List[float]
    minimum_trace: List[float]
    g_residual_trace: List[float]
    f_calls: int
    g_calls: int
    certificate: Certificate
    message: str

    @property
    def converged(self) -> bool:
        """True if an outer convergence criterion was met."""
        return self.status is SolverStatus.CONVERGED

    @property
    def iteration_limit_reached(self) -> bool:
        """True if the outer loop stopped because of `outer_iterations`."""
        return self.status is SolverStatus.MAX_ITERATIONS

    @property
    def total_inner_iterations(self) -> int:
        """Iterations of the inner optimizer, summed over centering steps."""
        return sum(self.inner_iterations)

    @property
    def summary(self) -> str:
        """Name of the method."""
        return self.method

    def __str__(self) -> str:
        """Pretty-print result."""
        return "\n".join(
            [
                "Results of Optimization Algorithm",
                f" * Algorithm: {self.method}",
                f" * Starting Point: {np.array2string(self.initial_x)}",
                f" * Minimizer: {np.array2string(self.minimizer)}",
                f" * Minimum: {self.minimum:.6e}",
                f" * Status: {self.status.name} ({self.message})",
                f" * Iterations: {self.iterations}",
                f" * Inner iterations: {self.total_inner_iterations}",
                f" * |x - x'| converged: {self.x_converged}",
                f" * |f(x) - f(x')| converged: {self.f_converged}",
                f" * |g(x)| converged: {self.g_converged} "
                f"(|g(x)| = {self.g_residual:.2e})",
                f" * First-order conditions satisfied: "
                f"{self.certificate.is_stationary}",
                f" * Objective calls: {self.f_calls}",
                f" * Gradient calls: {self.g_calls}",
            ]
        )

    def plot_convergence(self, ax: Optional[Axes] = None) -> Axes:
        """Plot convergence."""
        if ax is None:
            _, ax = plt.subplots()

        ax.plot(
            [ii + 1 for ii in range(self.iterations)],
            self.g_residual_trace,
            marker="o",
            label="Projected gradient",
        )
        ax.plot(
            [ii + 1 for ii in range(self.iterations)],
            self.mu_trace,
            marker="x",
            linestyle="--",
            label="Barrier coefficient",
        )
        ax.set_yscale("log")
        ax.set_xlabel("Outer Iteration")
        ax.legend()
        return ax


def _preconditioner(
    box: Box,
    mu: float,
    embed: Callable[[npt.NDArray[np.float64]], npt.NDArray[np.float64]],
) -> Callable[[npt.NDArray[np.float64]], npt.NDArray[np.float64]]:
    """Barrier preconditioner restricted to the free coordinates."""
    free = box.free

    def precondition(z: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        return barrier_preconditioner(embed(z), box, mu)[free]

    return precondition


class Fminbox:
    """Box-constrained optimizer using a logarithmic barrier.

    Parameters
    ----------
     inner : InnerOptimizer or str, optional
        Unconstrained optimizer used for centering steps. Defaults to LBFGS(). Methods
        using second derivatives are rejected.
     settings : OptimizationSettings, optional
        Settings.

    Raises
    ------
     InvalidInnerMethodError
        If `inner` uses second derivatives.

    """

    def __init__(
        self,
        inner: Optional[Union[InnerOptimizer, str]] = None,
        settings: Optional[OptimizationSettings] = None,
    ) -> None:
        """Initialize optimizer."""
        if inner is None:
            inner = LBFGS()
        self.inner = get_inner_optimizer(inner)
        if self.inner.second_order:
            raise InvalidInnerMethodError(
                message=(
                    "Fminbox does not support second order inner optimizers; use a "
                    "first order method or Nelder-Mead instead."
                ),
                method=self.inner.name,
            )

        if settings is None:
            self.settings: OptimizationSettings = OptimizationSettings()
        else:
            self.settings = settings

    @property
    def summary(self) -> str:
        """Name of the method."""
        return f"Fminbox with {self.inner.name}"

    def __repr__(self) -> str:
        return f"Fminbox({self.inner!r})"

    def initialize_barrier_parameter(
        self, objective: Objective, box: Box, x: npt.NDArray[np.float64]
    ) -> float:
        """Initialize barrier parameter.

        Uses `settings.mu0` if specified. Otherwise balances the gradients of the
        objective and barrier at x, falling back to 1 if either vanishes.

        """
        if self.settings.mu0 is not None:
            return float(self.settings.mu0)

        free = box.free
        g = objective.gradient(x)
        denominator = float(np.sum(np.abs(barrier_gradient(x, box)[free])))
        numerator = float(np.sum(np.abs(g[free])))
        if denominator > 0 and numerator > 0 and np.isfinite(numerator):
            mu = self.settings.mu0_factor * numerator / denominator
            if np.isfinite(mu) and mu > 0:
                return mu
        return 1.0

    def solve(
        self,
        objective: Union[Objective, Any],
        lower: npt.ArrayLike,
        upper: npt.ArrayLike,
        x0: npt.ArrayLike,
        grad: Optional[Any] = None,
        autodiff: str = "finite",
        inplace: bool = False,
    ) -> FminboxResult:
        """Solve optimization problem.

        Parameters
        ----------
         objective : Objective, callable, or (callable, callable)
            The objective: a pre-built Objective, a value function, or a (value,
            gradient) pair.
         lower, upper : array_like
            Bounds. Infinite values are permitted.
         x0 : array_like
            Initial guess. Must satisfy lower <= x0 <= upper.
         grad : callable, optional
            Gradient of a bare value function.
         autodiff : {"finite", "forward"}, default="finite"
            How to differentiate the objective if no gradient is supplied.
         inplace : bool, default=False
            If True, gradient functions have signature grad(G, x) and write into G.

        Returns
        -------
         res : FminboxResult
            The solution.

        Raises
        ------
         OutOfBoundsError
            If x0 lies outside the box.

        """
        obj = as_objective(objective, grad=grad, autodiff=autodiff, inplace=inplace)
        box = Box(lower, upper)
        x = validate_and_project(x0, box)
        initial_x = x.copy()
        f_calls_before, g_calls_before = obj.f_calls, obj.g_calls

        free = box.free

        def embed(z: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
            """Reinsert fixed coordinates."""
            xx = x.copy()
            xx[free] = z
            return xx

        settings = self.settings
        f_x = obj.value(x)
        mu = self.initialize_barrier_parameter(obj, box, x) if np.any(free) else 0.0

        if settings.verbose:
            overall_start_time = time.time()
            print(f"  Starting {self.summary} with {mu=:}")

        inner_nits: List[int] = []
        inner_statuses: List[int] = []
        mu_trace: List[float] = []
        minimum_trace: List[float] = []
        g_residual_trace: List[float] = []
        x_converged = f_converged = g_converged = False
        status = SolverStatus.MAX_ITERATIONS
        message = "Maximum number of outer iterations reached"
        if not np.any(free):
            status = SolverStatus.CONVERGED
            message = "All coordinates are fixed"

        iterations = 0
        while status is SolverStatus.MAX_ITERATIONS and (
            iterations < settings.outer_iterations
        ):
            if settings.verbose:
                start_time = time.time()

            value_fn, grad_fn = build_penalized(obj, box, mu, x)
            precondition = None
            if settings.precondition:
                precondition = _preconditioner(box, mu, embed)
            result = self.inner.minimize(
                lambda z: value_fn(embed(z)),
                lambda z: grad_fn(embed(z))[free],
                x[free],
                settings,
                precondition=precondition,
            )
            candidate = embed(np.asarray(result.x, dtype=np.float64))
            if not (np.all(np.isfinite(candidate)) and box.interior(candidate)):
                status = SolverStatus.FAILED
                message = (
                    f"{self.inner.name} left the interior of the box at element "
                    f"indices {box.non_interior_indices(candidate)}"
                )
                break

            # A failed inner solve that did not move says nothing about convergence.
            stalled = self.inner.failed(result) and np.array_equal(candidate, x)
            f_new = obj.value(candidate)
            g_new = obj.gradient(candidate)
            g_residual = float(
                np.linalg.norm(
                    projected_gradient(candidate, g_new, box, settings.epsilon_box),
                    np.inf,
                )
            )

            x_converged = not stalled and bool(
                np.linalg.norm(candidate - x, np.inf) <= settings.outer_x_abstol
            )
            f_converged = not stalled and bool(
                abs(f_new - f_x)
                <= max(settings.outer_f_abstol, settings.outer_f_reltol * abs(f_new))
            )
            g_converged = g_residual <= settings.outer_g_abstol

            inner_nits.append(int(result.nit))
            inner_statuses.append(int(result.status))
            mu_trace.append(mu)
            minimum_trace.append(f_new)
            g_residual_trace.append(g_residual)
            iterations += 1

            if settings.verbose:
                end_time = time.time()
                print(
                    f"  {iterations:02d} Centering step with {mu=:} completed in "
                    f"{1000 * (end_time - start_time):.03f} ms; "
                    f"{result.nit} inner iterations; f(x) = {f_new}; "
                    f"|g(x)| = {g_residual:.03g}"
                )

            x, f_x = candidate, f_new
            mu *= settings.barrier_decay
            if x_converged or f_converged or g_converged:
                status = SolverStatus.CONVERGED
                message = "Fminbox completed successfully to the desired tolerance"
            elif stalled:
                status = SolverStatus.FAILED
                message = (
                    f"{self.inner.name} failed without making progress: "
                    f"{result.message}"
                )

        if settings.verbose:
            overall_end_time = time.time()
            print(
                f"  {self.summary} completed in "
                f"{1000 * (overall_end_time - overall_start_time):.03f} ms"
            )

        minimum = obj.value(x)
        certificate = certify(
            x,
            obj,
            box,
            epsilon_grad=settings.epsilon_grad,
            epsilon_box=settings.epsilon_box,
        )
        g_residual = float(
            np.linalg.norm(
                projected_gradient(x, certificate.gradient, box, settings.epsilon_box),
                np.inf,
            )
        )
        return FminboxResult(
            method=self.summary,
            initial_x=initial_x,
            minimizer=x,
            minimum=minimum,
            iterations=iterations,
            inner_iterations=inner_nits,
            inner_statuses=inner_statuses,
            status=status,
            x_converged=x_converged,
            f_converged=f_converged,
            g_converged=g_converged,
            g_residual=g_residual,
            mu_trace=mu_trace,
            minimum_trace=minimum_trace,
            g_residual_trace=g_residual_trace,
            f_calls=obj.f_calls - f_calls_before,
            g_calls=obj.g_calls - g_calls_before,
            certificate=certificate,
            message=message,
        )


def optimize(
    objective: Union[Objective, Any],
    lower: npt.ArrayLike,
    upper: npt.ArrayLike,
    x0: npt.ArrayLike,
    inner: Optional[Union[InnerOptimizer, str]] = None,
    settings: Optional[OptimizationSettings] = None,
    grad: Optional[Any] = None,
    autodiff: str = "finite",
    inplace: bool = False,
    **kwargs: Any,
) -> FminboxResult:
    """Minimize an objective subject to box constraints.

    Parameters
    ----------
     objective : Objective, callable, or (callable, callable)
        The objective.
     lower, upper : array_like
        Bounds.
     x0 : array_like
        Initial guess.
     inner : InnerOptimizer or str, optional
        Inner optimizer, e.g. BFGS() or "cg". Defaults to LBFGS().
     settings : OptimizationSettings, optional
        Settings.
     grad, autodiff, inplace
        See Fminbox.solve.
     **kwargs
        Overrides for individual settings, e.g. `outer_iterations=2`.

    Returns
    -------
     res : FminboxResult
        The solution.

    """
    if settings is None:
        settings = OptimizationSettings(**kwargs)
    elif kwargs:
        settings = settings.replace(**kwargs)

    return Fminbox(inner=inner, settings=settings).solve(
        objective, lower, upper, x0, grad=grad, autodiff=autodiff, inplace=inplace
    )
