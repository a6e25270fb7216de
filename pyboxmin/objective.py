"""Objective functions and gradient strategies.

An Objective bundles a user-supplied value function with a way of computing its
gradient. The gradient strategy is selected once, when the Objective is created:
  - "analytic": the user supplies the gradient,
  - "finite": forward finite differences (scipy),
  - "forward": forward-mode automatic differentiation (jax).
Downstream code only ever calls value, gradient and value_and_gradient, and never
needs to know which strategy is in use.

"""

from abc import ABC, abstractmethod
from typing import Callable, Optional, Tuple, Union

import numpy as np
import numpy.typing as npt
from scipy.optimize import approx_fprime

ValueFunction = Callable[[npt.NDArray[np.float64]], float]
GradientFunction = Callable[..., Optional[npt.NDArray[np.float64]]]

AUTODIFF_MODES = ("finite", "forward")


class GradientStrategy(ABC):
    """Base class for computing the gradient of a value function."""

    mode: str = ""

    @abstractmethod
    def gradient(
        self, fun: ValueFunction, x: npt.NDArray[np.float64]
    ) -> npt.NDArray[np.float64]:
        """Calculate gradient of `fun` at `x`."""


class AnalyticGradient(GradientStrategy):
    """User-supplied gradient.

    Parameters
    ----------
     grad : callable
        If `inplace` is True, `grad(G, x)` must write the gradient into G. Otherwise
        `grad(x)` must return the gradient.
     inplace : bool, default=False
        Calling convention of `grad`.

    """

    mode = "analytic"

    def __init__(self, grad: GradientFunction, inplace: bool = False) -> None:
        self.grad = grad
        self.inplace = inplace
        self._buffer: Optional[npt.NDArray[np.float64]] = None

    def buffer(self, x: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """Scratch buffer for in-place gradient functions, reused across calls."""
        if self._buffer is None or self._buffer.shape != x.shape:
            self._buffer = np.zeros_like(x, dtype=np.float64)
        return self._buffer

    def gradient(
        self, fun: ValueFunction, x: npt.NDArray[np.float64]
    ) -> npt.NDArray[np.float64]:
        """Calculate gradient."""
        if self.inplace:
            G = self.buffer(x)
            self.grad(G, x)
            g = G.copy()
        else:
            g = np.asarray(self.grad(x), dtype=np.float64)

        if g.shape != x.shape:
            raise ValueError(
                f"Gradient has shape {g.shape} but point has shape {x.shape}."
            )
        return g


class FiniteDifferenceGradient(GradientStrategy):
    """Forward finite difference approximation to the gradient.

    Parameters
    ----------
     epsilon : float, optional
        Step size. Defaults to the square root of machine epsilon.

    """

    mode = "finite"

    def __init__(self, epsilon: Optional[float] = None) -> None:
        if epsilon is None:
            epsilon = float(np.sqrt(np.finfo(np.float64).eps))
        if epsilon <= 0:
            raise ValueError("epsilon must be positive.")
        self.epsilon = epsilon

    def gradient(
        self, fun: ValueFunction, x: npt.NDArray[np.float64]
    ) -> npt.NDArray[np.float64]:
        """Calculate gradient."""
        return np.asarray(approx_fprime(x, fun, self.epsilon), dtype=np.float64)


class ForwardModeGradient(GradientStrategy):
    """Forward-mode automatic differentiation with jax.

    The value function must be written with jax-traceable operations (e.g.
    `jax.numpy` in place of `numpy`). Double precision is enabled so gradients agree
    with the float64 arithmetic used everywhere else.

    """

    mode = "forward"

    def __init__(self) -> None:
        import jax

        jax.config.update("jax_enable_x64", True)
        self._jax = jax

    def gradient(
        self, fun: ValueFunction, x: npt.NDArray[np.float64]
    ) -> npt.NDArray[np.float64]:
        """Calculate gradient."""
        jnp = self._jax.numpy
        g = self._jax.jacfwd(fun)(jnp.asarray(x, dtype=jnp.float64))
        return np.asarray(g, dtype=np.float64).reshape(x.shape)


class Objective:
    """Differentiable objective function.

    Parameters
    ----------
     fun : callable
        Value function, `fun(x) -> float`.
     grad : callable, optional
        Gradient function. If omitted, the gradient is computed according to
        `autodiff`.
     fun_and_grad : callable, optional
        Function returning value and gradient together. If `inplace` is True, the
        signature is `fun_and_grad(G, x) -> float`, writing the gradient into G;
        otherwise `fun_and_grad(x) -> (float, array)`. Useful when the two share
        work. Requires `grad`.
     autodiff : {"finite", "forward"}, default="finite"
        How to differentiate `fun` when no gradient is supplied.
     inplace : bool, default=False
        Calling convention of `grad` and `fun_and_grad`.
     epsilon : float, optional
        Finite difference step, used only when `autodiff="finite"`.

    Notes
    -----
    The Objective keeps track of how many times the value and gradient have been
    requested, in `f_calls` and `g_calls`. Function evaluations made while
    approximating a gradient are not counted as value calls.

    """

    def __init__(
        self,
        fun: ValueFunction,
        grad: Optional[GradientFunction] = None,
        fun_and_grad: Optional[Callable] = None,
        autodiff: str = "finite",
        inplace: bool = False,
        epsilon: Optional[float] = None,
    ) -> None:
        if not callable(fun):
            raise TypeError("fun must be callable.")
        if fun_and_grad is not None and grad is None:
            raise ValueError("fun_and_grad requires grad to be specified as well.")

        self.fun = fun
        self.fun_and_grad = fun_and_grad
        self.inplace = inplace
        if grad is not None:
            self.strategy: GradientStrategy = AnalyticGradient(grad, inplace=inplace)
        elif autodiff == "finite":
            self.strategy = FiniteDifferenceGradient(epsilon=epsilon)
        elif autodiff == "forward":
            self.strategy = ForwardModeGradient()
        else:
            raise ValueError(
                f"Unknown autodiff mode {autodiff!r}; expected one of {AUTODIFF_MODES}."
            )

        self.f_calls = 0
        self.g_calls = 0

    @property
    def mode(self) -> str:
        """Differentiation mode: "analytic", "finite", or "forward"."""
        return self.strategy.mode

    def reset_counters(self) -> None:
        """Reset evaluation counters."""
        self.f_calls = 0
        self.g_calls = 0

    def value(self, x: npt.NDArray[np.float64]) -> float:
        """Evaluate objective."""
        self.f_calls += 1
        return float(self.fun(x))

    def gradient(self, x: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """Calculate gradient."""
        self.g_calls += 1
        return self.strategy.gradient(self.fun, x)

    def value_and_gradient(
        self, x: npt.NDArray[np.float64]
    ) -> Tuple[float, npt.NDArray[np.float64]]:
        """Evaluate objective and gradient."""
        if self.fun_and_grad is None:
            return self.value(x), self.gradient(x)

        if self.inplace:
            strategy = self.strategy
            if not isinstance(strategy, AnalyticGradient):
                raise TypeError(
                    "In-place fun_and_grad requires an analytic gradient strategy; "
                    f"got {type(strategy).__name__}."
                )
            G = strategy.buffer(x)
            f = self.fun_and_grad(G, x)
            g = G.copy()
        else:
            f, g = self.fun_and_grad(x)
            g = np.asarray(g, dtype=np.float64)

        self.f_calls += 1
        self.g_calls += 1
        return float(f), g


def as_objective(
    objective: Union[Objective, ValueFunction, Tuple[ValueFunction, GradientFunction]],
    grad: Optional[GradientFunction] = None,
    autodiff: str = "finite",
    inplace: bool = False,
) -> Objective:
    """Normalize the accepted ways of specifying an objective.

    Parameters
    ----------
     objective : Objective, callable, or (callable, callable)
        A pre-built Objective (returned unchanged), a value function, or a
        (value, gradient) pair.
     grad : callable, optional
        Gradient of a bare value function.
     autodiff, inplace
        See Objective.

    Returns
    -------
     obj : Objective
        The objective.

    """
    if isinstance(objective, Objective):
        if grad is not None:
            raise ValueError("Cannot specify grad alongside a pre-built Objective.")
        return objective

    if isinstance(objective, tuple):
        if len(objective) != 2 or grad is not None:
            raise ValueError("Expected a (value, gradient) pair.")
        objective, grad = objective

    return Objective(objective, grad=grad, autodiff=autodiff, inplace=inplace)
