"""Analysis engines for nodal

Provides assembly, sparse linear solves, Newton-Raphson with convergence
aids, DC operating point and adaptive transient analysis.
"""

from nodal.analysis.assembler import AssembledSystem, Assembler
from nodal.analysis.context import AnalysisContext, AnalysisType
from nodal.analysis.dc import DCResult, solve_dc
from nodal.analysis.homotopy import (
    HomotopyConfig,
    HomotopyResult,
    gmin_stepping,
    run_homotopy_chain,
    source_stepping,
)
from nodal.analysis.integration import (
    DeviceHistory,
    IntegrationCoeffs,
    IntegrationMethod,
    compute_coefficients,
)
from nodal.analysis.options import SimulationOptions
from nodal.analysis.solver import NewtonSolver, NRConfig, NRResult, NRStatus
from nodal.analysis.sparse import SparseLUSolver, analyze, factorize
from nodal.analysis.transient import (
    StepConfig,
    TimeStepState,
    TransientResult,
    solve_transient,
)

__all__ = [
    "AnalysisContext",
    "AnalysisType",
    "AssembledSystem",
    "Assembler",
    "DCResult",
    "solve_dc",
    "HomotopyConfig",
    "HomotopyResult",
    "gmin_stepping",
    "source_stepping",
    "run_homotopy_chain",
    "DeviceHistory",
    "IntegrationCoeffs",
    "IntegrationMethod",
    "compute_coefficients",
    "SimulationOptions",
    "NewtonSolver",
    "NRConfig",
    "NRResult",
    "NRStatus",
    "SparseLUSolver",
    "analyze",
    "factorize",
    "StepConfig",
    "TimeStepState",
    "TransientResult",
    "solve_transient",
]
