"""Polynomial extrapolation predictor for adaptive timestep control.

This module implements the predictor component of a predictor-corrector scheme
for adaptive timestep control. The predictor uses polynomial extrapolation
from past solutions to estimate the solution at the next timestep.

The predictor serves two purposes:
1. Provides a good initial guess for Newton-Raphson, improving convergence
2. Enables Local Truncation Error (LTE) estimation via comparison with corrector

Error model (h = new step, p = order, x^(p+1) = derivative of the solution):

    predictor:  x_pred - x_true ≈ D   * h^(p+1) * x^(p+1)
    corrector:  x_corr - x_true ≈ C_i * h^(p+1) * x^(p+1)

so the corrector's local truncation error is (Milne's device)

    LTE = C_i / (C_i - D) * (x_corr - x_pred)

Algorithm follows VACASK's polynomial extrapolation predictor (coretrancoef.cpp).
"""

import math
from typing import List, NamedTuple, Sequence

import numpy as np
from jaxtyping import Float


class PredictorCoeffs(NamedTuple):
    """Coefficients for polynomial extrapolation predictor.

    The predicted solution is: x_{n+1,pred} = sum_i a[i] * x_{n-i}
    where a[i] are the coefficients and x_{n-i} are past solutions.

    Attributes:
        a: Coefficients for past solutions [a_0, a_1, ..., a_order]
        error_coeff: Error coefficient D of the extrapolation
        order: Order of polynomial extrapolation (1=linear, 2=quadratic, etc.)
    """

    a: np.ndarray
    error_coeff: float
    order: int


def compute_predictor_coeffs(past_dt: Sequence[float], new_dt: float, order: int) -> PredictorCoeffs:
    """Compute polynomial extrapolation coefficients for given timestep history.

    Given past timesteps [h_{n-1}, h_{n-2}, ...] (most recent first) and the
    proposed new timestep h_n, compute coefficients for predicting x_{n+1}.

    The polynomial extrapolation of order p uses p+1 past points to fit
    a polynomial and extrapolate to t_{n+1} = t_n + h_n.

    Args:
        past_dt: List of past timesteps [h_{n-1}, h_{n-2}, ...], most recent first
        new_dt: Proposed timestep h_n for next step
        order: Order of polynomial extrapolation (1=linear, 2=quadratic)

    Returns:
        PredictorCoeffs with coefficients and error coefficient
    """
    if order < 1:
        raise ValueError(f"Order must be >= 1, got {order}")
    if new_dt <= 0:
        raise ValueError(f"Timestep must be positive, got {new_dt}")

    # Not enough history - fall back to lower order
    order = min(order, len(past_dt))

    if order == 0:
        # Constant extrapolation; no meaningful error estimate
        return PredictorCoeffs(a=np.array([1.0]), error_coeff=-1.0, order=0)

    tau = _normalized_timepoints(past_dt, new_dt, order)
    a = _solve_predictor_system(tau, order)
    error_coeff = _compute_error_coeff(a, tau, order)

    return PredictorCoeffs(a=a, error_coeff=error_coeff, order=order)


def _normalized_timepoints(past_dt: Sequence[float], new_dt: float, order: int) -> np.ndarray:
    """Past timepoints relative to t_{n+1}, in units of the new step.

    tau_0 = (t_n - t_{n+1}) / h_n = -1
    tau_1 = (t_{n-1} - t_{n+1}) / h_n = -(1 + h_{n-1}/h_n)
    tau_2 = (t_{n-2} - t_{n+1}) / h_n = -(1 + h_{n-1}/h_n + h_{n-2}/h_n)
    """
    tau = np.zeros(order + 1)
    cumsum = 0.0
    for i in range(order + 1):
        tau[i] = -(1.0 + cumsum / new_dt)
        if i < len(past_dt):
            cumsum += past_dt[i]
    return tau


def _solve_predictor_system(tau: np.ndarray, order: int) -> np.ndarray:
    """Solve for coefficients a_i such that

    - sum_i a_i = 1
    - sum_i a_i * tau_i^j = 0 for j=1..order

    i.e. Lagrange interpolation evaluated at tau=0.
    """
    n = order + 1
    A = np.vander(tau, n, increasing=True).T
    b = np.zeros(n)
    b[0] = 1.0
    return np.linalg.solve(A, b)


def _compute_error_coeff(a: np.ndarray, tau: np.ndarray, order: int) -> float:
    """D = sum_i a_i * tau_i^(order+1) / (order+1)!"""
    power = order + 1
    return float(np.sum(a * tau ** power)) / math.factorial(power)


def predict(coeffs: PredictorCoeffs, history: List[np.ndarray]) -> Float[np.ndarray, "n"]:
    """Predict solution at t_{n+1} using polynomial extrapolation.

    Args:
        coeffs: Predictor coefficients from compute_predictor_coeffs()
        history: Past solutions [x_n, x_{n-1}, ...], most recent first

    Returns:
        Predicted solution x_{n+1,pred}
    """
    n_coeffs = len(coeffs.a)
    if len(history) < n_coeffs:
        raise ValueError(f"Need {n_coeffs} past solutions, got {len(history)}")

    x_pred = coeffs.a[0] * history[0]
    for i in range(1, n_coeffs):
        x_pred = x_pred + coeffs.a[i] * history[i]
    return x_pred


def estimate_lte(
    x_predicted: np.ndarray,
    x_corrected: np.ndarray,
    predictor_error_coeff: float,
    integrator_error_coeff: float,
) -> Float[np.ndarray, "n"]:
    """Estimate Local Truncation Error from predictor-corrector difference.

        LTE = C_i / (C_i - D) * (x_corrected - x_predicted)

    Args:
        x_predicted: Predicted solution from polynomial extrapolation
        x_corrected: Corrected solution from Newton-Raphson
        predictor_error_coeff: Error coefficient D from predictor
        integrator_error_coeff: Error coefficient C_i from integration method

    Returns:
        Estimated LTE vector
    """
    denom = integrator_error_coeff - predictor_error_coeff
    if abs(denom) < 1e-15:
        # Can't separate the two errors; take the difference as is
        return x_corrected - x_predicted
    factor = integrator_error_coeff / denom
    return factor * (x_corrected - x_predicted)


def lte_ratio(
    lte: np.ndarray,
    x: np.ndarray,
    x_prev: np.ndarray,
    lte_tolerance: float,
    abstol: np.ndarray,
) -> float:
    """Worst ratio of LTE to its tolerance over all unknowns

    tol_i = lte_tolerance * max(|x_i|, |x_prev_i|) + abstol_i

    A ratio above 1 rejects the step.
    """
    tol = lte_tolerance * np.maximum(np.abs(x), np.abs(x_prev)) + abstol
    return float(np.max(np.abs(lte) / tol)) if len(lte) else 0.0


def compute_new_timestep(
    ratio: float,
    current_dt: float,
    order: int,
    safety: float = 0.9,
    max_growth: float = 2.0,
    min_dt: float = 1e-15,
    max_dt: float = float("inf"),
) -> float:
    """Next timestep from the LTE ratio of the step just taken.

        h_new = h * safety * ratio^(-1/(order+1))

    bounded by ``max_growth * h`` and clamped to [min_dt, max_dt].
    """
    if ratio > 0:
        dt_new = current_dt * safety * ratio ** (-1.0 / (order + 1))
    else:
        # Perfect prediction
        dt_new = current_dt * max_growth
    dt_new = min(dt_new, current_dt * max_growth)
    return max(min_dt, min(max_dt, dt_new))
