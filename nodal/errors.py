"""Error taxonomy for nodal

Construction problems are reported before any solve is attempted; numerical
problems are reported with enough context to tell a structural defect
(singular matrix) from a nonlinearity that did not converge.
"""

from typing import Any, Optional


class SolverError(Exception):
    """Base class for every error raised by the engine"""


class ConstructionError(SolverError):
    """Invalid circuit: floating node, bad parameter, bad connection

    Raised while the circuit is being built or finalized, never during a solve.
    """


class SingularMatrixError(SolverError):
    """The MNA matrix is structurally or numerically singular

    Attributes:
        row: Offending row index (or None when unknown)
        col: Offending column index (or None when unknown)
        name: Name of the unknown at that position, when the circuit is known
    """

    def __init__(self, message: str, row: Optional[int] = None,
                 col: Optional[int] = None, name: Optional[str] = None):
        super().__init__(message)
        self.row = row
        self.col = col
        self.name = name


class ConvergenceFailure(SolverError):
    """Newton-Raphson exhausted every convergence aid

    Attributes:
        residual_norm: Max-norm of the residual at the last iterate
        iterations: Newton iterations spent on the failing solve
        partial_result: For transient analysis, the result holding every
            step accepted before the failure
    """

    def __init__(self, message: str, residual_norm: float = float("inf"),
                 iterations: int = 0, partial_result: Any = None):
        super().__init__(message)
        self.residual_norm = residual_norm
        self.iterations = iterations
        self.partial_result = partial_result


class StepRejected(SolverError):
    """A transient step failed its LTE or Newton check

    Internal to the transient loop: rejected steps are retried with a smaller
    step size and only escalate (as ConvergenceFailure) at the minimum step.
    """

    def __init__(self, message: str, time: float = 0.0, step: float = 0.0,
                 reason: str = "", residual_norm: float = float("nan"), iterations: int = 0):
        super().__init__(message)
        self.time = time
        self.step = step
        self.reason = reason
        self.residual_norm = residual_norm
        self.iterations = iterations
