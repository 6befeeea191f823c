"""nodal: Sparse nonlinear circuit solving kernel"""

import jax

from nodal.logging import logger

__version__ = "0.1.0"


def _backend_supports_x64() -> bool:
    """Check if the current JAX backend supports 64-bit floats.

    Returns:
        True if backend supports float64, False otherwise.

    Note:
        - Metal (Apple Silicon) does not support float64
        - TPU does not natively support float64
        - CPU and CUDA support float64
    """
    try:
        backend = jax.default_backend().lower()
        if backend in ("metal", "tpu", "iree_metal"):
            return False
        for d in jax.devices():
            platform = getattr(d, "platform", "").lower()
            if "metal" in platform:
                return False
        return True
    except RuntimeError:
        # No backend could be initialized; the numpy path is unaffected
        return True


def configure_precision(force_x64: bool = None) -> bool:
    """Configure JAX precision based on backend capabilities.

    The solver itself runs on numpy in float64. JAX is used to trace device
    equations for Jacobian cross-checks, which must run in the same precision.

    Args:
        force_x64: If True, force x64 even on unsupported backends (may fail).
                   If False, force x32. If None (default), auto-detect.

    Returns:
        True if x64 is enabled, False otherwise.
    """
    if force_x64 is not None:
        enable_x64 = force_x64
    else:
        enable_x64 = _backend_supports_x64()

    if enable_x64:
        logger.info("Using 64-bit float precision")
    else:
        logger.warning("Using 32-bit float precision for JAX tracing")

    jax.config.update("jax_enable_x64", enable_x64)
    return enable_x64


# Auto-configure precision on import
_x64_enabled = configure_precision()


from nodal.analysis import (  # noqa: E402
    AnalysisContext,
    DCResult,
    IntegrationMethod,
    NewtonSolver,
    NRConfig,
    NRResult,
    NRStatus,
    SimulationOptions,
    StepConfig,
    TimeStepState,
    TransientResult,
    solve_dc,
    solve_transient,
)
from nodal.circuit import GROUND, Circuit  # noqa: E402
from nodal.devices import (  # noqa: E402
    DC,
    PWL,
    VCCS,
    VCVS,
    Capacitor,
    CurrentSource,
    Device,
    DeviceEquations,
    Diode,
    Exp,
    Inductor,
    Mosfet,
    Pulse,
    Resistor,
    Sine,
    VoltageSource,
    Waveform,
)
from nodal.errors import (  # noqa: E402
    ConstructionError,
    ConvergenceFailure,
    SingularMatrixError,
    SolverError,
    StepRejected,
)

__all__ = [
    "__version__",
    "configure_precision",
    "Circuit",
    "GROUND",
    "Device",
    "DeviceEquations",
    "Resistor",
    "Capacitor",
    "Inductor",
    "VoltageSource",
    "CurrentSource",
    "Diode",
    "Mosfet",
    "VCVS",
    "VCCS",
    "Waveform",
    "DC",
    "Pulse",
    "Sine",
    "PWL",
    "Exp",
    "AnalysisContext",
    "IntegrationMethod",
    "SimulationOptions",
    "NewtonSolver",
    "NRConfig",
    "NRResult",
    "NRStatus",
    "DCResult",
    "solve_dc",
    "StepConfig",
    "TimeStepState",
    "TransientResult",
    "solve_transient",
    "SolverError",
    "ConstructionError",
    "SingularMatrixError",
    "ConvergenceFailure",
    "StepRejected",
]
