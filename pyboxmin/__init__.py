"""Box-constrained minimization with a logarithmic barrier."""

from .barrier import (
    PenalizedObjective,
    barrier_gradient,
    barrier_preconditioner,
    barrier_value,
    build_penalized,
)
from .box import Box, validate_and_project
from .certify import Certificate, CoordinateStatus, certify, projected_gradient
from .exceptions import (
    BacktrackingLineSearchError,
    BarrierDomainError,
    BoundaryInitialPointWarning,
    InvalidBoxError,
    InvalidInnerMethodError,
    OutOfBoundsError,
    PrecisionLossError,
)
from .inner import (
    BFGS,
    LBFGS,
    ConjugateGradient,
    GradientDescent,
    InnerOptimizer,
    NelderMead,
    Newton,
    NewtonTrustRegion,
    get_inner_optimizer,
)
from .objective import (
    AnalyticGradient,
    FiniteDifferenceGradient,
    ForwardModeGradient,
    Objective,
    as_objective,
)
from .optimization import (
    Fminbox,
    FminboxResult,
    OptimizationSettings,
    SolverStatus,
    optimize,
)

__all__ = [
    "optimize",
    "Fminbox",
    "FminboxResult",
    "OptimizationSettings",
    "SolverStatus",
    "Objective",
    "as_objective",
    "AnalyticGradient",
    "FiniteDifferenceGradient",
    "ForwardModeGradient",
    "Box",
    "validate_and_project",
    "PenalizedObjective",
    "barrier_value",
    "barrier_gradient",
    "barrier_preconditioner",
    "build_penalized",
    "Certificate",
    "CoordinateStatus",
    "certify",
    "projected_gradient",
    "InnerOptimizer",
    "GradientDescent",
    "ConjugateGradient",
    "BFGS",
    "LBFGS",
    "NelderMead",
    "Newton",
    "NewtonTrustRegion",
    "get_inner_optimizer",
    "BacktrackingLineSearchError",
    "BarrierDomainError",
    "BoundaryInitialPointWarning",
    "InvalidBoxError",
    "InvalidInnerMethodError",
    "OutOfBoundsError",
    "PrecisionLossError",
]
