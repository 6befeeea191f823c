"""Integration methods for transient analysis.

Energy-storage devices report a charge (capacitor) or flux (inductor) per
equation row. The integrator turns dQ/dt into an algebraic companion term:

    dQ/dt = c0 * Q_new + c1 * Q_prev + d1 * dQdt_prev

- Backward Euler (be): First-order implicit, unconditionally stable, L-stable
- Trapezoidal (trap): Second-order A-stable, the accurate default

The constant part (c1 * Q_prev + d1 * dQdt_prev) only depends on the last
accepted step and is precomputed once per step as the "history" vector.
"""

from dataclasses import dataclass
from enum import Enum
from typing import NamedTuple, Tuple


class IntegrationMethod(Enum):
    """Supported integration methods for transient analysis."""

    BACKWARD_EULER = "be"
    TRAPEZOIDAL = "trap"

    @classmethod
    def from_string(cls, s: str) -> "IntegrationMethod":
        """Parse integration method from string.

        Handles the aliases used by SPICE simulators.
        """
        s_lower = s.lower().strip().strip("\"'")
        aliases = {
            "be": cls.BACKWARD_EULER,
            "euler": cls.BACKWARD_EULER,
            "backward_euler": cls.BACKWARD_EULER,
            "trap": cls.TRAPEZOIDAL,
            "trapezoidal": cls.TRAPEZOIDAL,
            "am2": cls.TRAPEZOIDAL,  # Adams-Moulton order 2
        }
        if s_lower in aliases:
            return aliases[s_lower]
        raise ValueError(f"Unknown integration method: {s}. Supported: be, trap")

    @property
    def order(self) -> int:
        return 1 if self is IntegrationMethod.BACKWARD_EULER else 2


class IntegrationCoeffs(NamedTuple):
    """Integration coefficients for a specific method and timestep.

        BE:    dQ/dt = (Q_new - Q_prev) / dt
               c0 = 1/dt, c1 = -1/dt, d1 = 0
               error_coeff = 1/2

        Trap:  dQ/dt = 2/dt * (Q_new - Q_prev) - dQdt_prev
               c0 = 2/dt, c1 = -2/dt, d1 = -1
               error_coeff = 1/12

    The error_coeff is used for Local Truncation Error (LTE) estimation.
    """

    c0: float  # Coefficient for Q_new (leading coefficient)
    c1: float  # Coefficient for Q_prev
    d1: float  # Coefficient for dQdt_prev (only trap)
    order: int
    error_coeff: float


def compute_coefficients(method: IntegrationMethod, dt: float) -> IntegrationCoeffs:
    """Compute integration coefficients for a given method and timestep.

    Args:
        method: Integration method to use
        dt: Timestep size

    Returns:
        IntegrationCoeffs with all coefficients
    """
    if dt <= 0:
        raise ValueError(f"Timestep must be positive, got {dt}")
    inv_dt = 1.0 / dt

    if method == IntegrationMethod.BACKWARD_EULER:
        return IntegrationCoeffs(
            c0=inv_dt, c1=-inv_dt, d1=0.0, order=1, error_coeff=0.5,
        )
    elif method == IntegrationMethod.TRAPEZOIDAL:
        return IntegrationCoeffs(
            c0=2.0 * inv_dt, c1=-2.0 * inv_dt, d1=-1.0, order=2, error_coeff=1.0 / 12.0,
        )
    else:
        raise ValueError(f"Unknown integration method: {method}")


def history_term(coeffs: IntegrationCoeffs, q_prev: float, dqdt_prev: float) -> float:
    """Constant part of the discretized derivative for one charge"""
    return coeffs.c1 * q_prev + coeffs.d1 * dqdt_prev


@dataclass(frozen=True)
class DeviceHistory:
    """Charges of one device at an accepted time point

    One entry per local equation row of the device (terminals, then
    branches); rows without a reactive part hold 0.

    Attributes:
        q: Charges/fluxes at the accepted time point
        dqdt: Their time derivatives at that point
        version: Index of the accepted step that produced this slot
    """
    q: Tuple[float, ...]
    dqdt: Tuple[float, ...]
    version: int = 0

    def history(self, coeffs: IntegrationCoeffs) -> Tuple[float, ...]:
        """Per-row history terms for the next step"""
        return tuple(history_term(coeffs, q, d) for q, d in zip(self.q, self.dqdt))
