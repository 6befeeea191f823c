"""Transient analysis for nodal.

Usage:
    from nodal.analysis.transient import StepConfig, solve_transient

    result = solve_transient(circuit, 0.0, 5e-3, StepConfig(max_step=1e-5))
    v_out = result.voltage("out")
    times = result.times
"""

from .adaptive import solve_transient
from .base import StepConfig, TimeStepState, TransientResult
from .predictor import (
    PredictorCoeffs,
    compute_new_timestep,
    compute_predictor_coeffs,
    estimate_lte,
    predict,
)

__all__ = [
    "solve_transient",
    "StepConfig",
    "TimeStepState",
    "TransientResult",
    "PredictorCoeffs",
    "compute_predictor_coeffs",
    "compute_new_timestep",
    "estimate_lte",
    "predict",
]
