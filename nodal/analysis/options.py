"""Simulation options with a validated Python API.

This module provides a centralized definition of all simulation options with:
- Default values
- Type validation on assignment
- Bulk updates from a plain dictionary

Example usage:
    options = SimulationOptions(reltol=1e-4)
    options.nr_damping = 0.5
    options.set("tran_method", "be")
    result = solve_dc(circuit, options)
"""

import math
from dataclasses import dataclass, fields
from typing import Any, Dict, Optional, Tuple

from nodal.analysis.integration import IntegrationMethod

HOMOTOPY_METHODS = ("gmin", "source")


def _parse_bool(value: Any) -> bool:
    """Parse a boolean from various input types."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.lower() in ('true', '1', 'yes', 'on')
    return bool(value)


def _check(name: str, value: Any) -> None:
    """Raise ValueError if value is out of range for option name"""
    positive = ('reltol', 'abstol_v', 'abstol_i', 'min_step', 'max_step',
                'lte_tolerance', 'gmin_start', 'source_step', 'source_step_min',
                'temperature')
    non_negative = ('gmin', 'gshunt')
    at_least_one = ('max_newton_iterations', 'max_gmin_steps', 'max_source_steps')

    if name in positive and not value > 0:
        raise ValueError(f"{name} must be positive, got {value}")
    if name in non_negative and not value >= 0:
        raise ValueError(f"{name} must be non-negative, got {value}")
    if name in at_least_one and value < 1:
        raise ValueError(f"{name} must be >= 1, got {value}")
    if name == 'nr_damping' and not (0 < value <= 1.0):
        raise ValueError(f"nr_damping must be in (0, 1], got {value}")
    if name == 'tran_fs' and not (0 < value <= 1.0):
        raise ValueError(f"tran_fs must be in (0, 1], got {value}")
    if name in ('gmin_factor', 'tran_redofactor', 'tran_max_growth') and not value > 1:
        raise ValueError(f"{name} must be > 1, got {value}")
    if name == 'max_backtracks' and value < 0:
        raise ValueError(f"max_backtracks must be >= 0, got {value}")
    if name in ('max_time_points', 'max_total_iterations') and value is not None and value < 1:
        raise ValueError(f"{name} must be >= 1 or None, got {value}")
    if name == 'icmode' and value not in ('op', 'ic'):
        raise ValueError(f"icmode must be 'op' or 'ic', got {value}")
    if name == 'homotopy_chain':
        for method in value:
            if method not in HOMOTOPY_METHODS:
                raise ValueError(
                    f"Unknown homotopy method {method!r}, expected one of {HOMOTOPY_METHODS}"
                )


@dataclass
class SimulationOptions:
    """Centralized simulation options.

    Options are validated on assignment. Invalid values raise ValueError.
    """

    # Convergence tolerances
    abstol_v: float = 1e-6
    """Absolute tolerance for node voltages (V)."""

    abstol_i: float = 1e-12
    """Absolute tolerance for branch currents and KCL residuals (A)."""

    reltol: float = 1e-3
    """Relative tolerance for convergence checks."""

    # Conductance options
    gmin: float = 1e-12
    """Minimum conductance placed across every nonlinear junction."""

    gshunt: float = 0.0
    """Shunt conductance from every node to ground, always applied."""

    # Newton-Raphson solver options
    max_newton_iterations: int = 100
    """Iteration limit of one Newton solve."""

    nr_damping: float = 1.0
    """NR step damping factor. 1.0 = full steps, 0.5 = half steps. Must be in (0, 1]."""

    max_backtracks: int = 20
    """How many times a non-finite Newton step is halved before giving up."""

    limiting: bool = True
    """Apply junction limiting (pnjlim/fetlim) inside nonlinear devices."""

    # Homotopy (convergence aids)
    homotopy_chain: Tuple[str, ...] = ("gmin", "source")
    """Aids tried in order after plain Newton fails."""

    max_gmin_steps: int = 100
    """Step budget of Gmin stepping."""

    gmin_start: float = 1e-3
    """Initial node shunt conductance of Gmin stepping."""

    gmin_factor: float = 10.0
    """Initial reduction factor of the node shunt per Gmin step."""

    max_source_steps: int = 100
    """Step budget of source stepping."""

    source_step: float = 0.1
    """Initial source factor increment."""

    source_step_min: float = 1e-3
    """Smallest source factor increment before source stepping gives up."""

    # Transient
    tran_method: IntegrationMethod = IntegrationMethod.TRAPEZOIDAL
    """Transient integration method (be, trap)."""

    lte_tolerance: float = 1e-3
    """Relative local truncation error accepted per step."""

    min_step: float = 1e-15
    """Smallest time step before the run fails."""

    max_step: float = math.inf
    """Largest time step (span/50 when left at inf)."""

    tran_fs: float = 0.9
    """Timestep safety factor. Lower = more conservative steps."""

    tran_max_growth: float = 2.0
    """Largest ratio between consecutive time steps."""

    tran_redofactor: float = 4.0
    """Factor to reduce timestep when a step fails to converge."""

    icmode: str = 'op'
    """Initial condition mode: 'op' (DC operating point) or 'ic' (initial vector)."""

    max_time_points: Optional[int] = None
    """Budget of accepted time points; None for no limit."""

    max_total_iterations: Optional[int] = None
    """Budget of Newton iterations over a transient run; None for no limit."""

    temperature: float = 300.15
    """Circuit temperature in Kelvin."""

    def __post_init__(self):
        """Validate all options after initialization."""
        self._validate_all()

    def __setattr__(self, name: str, value: Any) -> None:
        """Set attribute with validation."""
        if name == 'homotopy_chain':
            value = tuple(value)
        elif name == 'tran_method' and isinstance(value, str):
            value = IntegrationMethod.from_string(value)
        _check(name, value)
        object.__setattr__(self, name, value)

    def _validate_all(self):
        """Validate all option values."""
        for f in fields(self):
            _check(f.name, getattr(self, f.name))
        if self.source_step_min > self.source_step:
            raise ValueError(
                f"source_step_min ({self.source_step_min}) exceeds source_step ({self.source_step})"
            )
        if self.min_step > self.max_step:
            raise ValueError(f"min_step ({self.min_step}) exceeds max_step ({self.max_step})")

    def set(self, name: str, value: Any) -> None:
        """Set an option by name with validation.

        Args:
            name: Option name (e.g., 'nr_damping')
            value: Option value (will be converted to appropriate type)

        Raises:
            ValueError: If option name is unknown or value is invalid
        """
        field_type = None
        for f in fields(self):
            if f.name == name:
                field_type = f.type
                break
        if field_type is None:
            raise ValueError(f"Unknown option: {name}")

        if field_type == float:
            value = float(value)
        elif field_type == int:
            value = int(value)
        elif field_type == Optional[int]:
            value = int(value) if value is not None else None
        elif field_type == bool:
            value = _parse_bool(value)
        elif field_type == str:
            value = str(value).strip('"\'')
        elif field_type == Tuple[str, ...] and isinstance(value, str):
            value = tuple(part.strip() for part in value.split(',') if part.strip())

        setattr(self, name, value)
        self._validate_all()

    def get(self, name: str, default: Any = None) -> Any:
        """Get an option value by name.

        Args:
            name: Option name
            default: Default value if option is None

        Returns:
            Option value or default
        """
        value = getattr(self, name, default)
        return default if value is None else value

    def update(self, opts: Dict[str, Any]) -> None:
        """Set several options at once.

        Args:
            opts: Mapping of option name to value

        Raises:
            ValueError: If any option name is unknown or any value is invalid
        """
        for name, value in opts.items():
            self.set(name, value)

    def to_dict(self) -> Dict[str, Any]:
        """Convert options to dictionary.

        Returns:
            Dictionary of all option values
        """
        result = {}
        for f in fields(self):
            value = getattr(self, f.name)
            # Convert IntegrationMethod to string for serialization
            if isinstance(value, IntegrationMethod):
                value = value.value
            result[f.name] = value
        return result

    def copy(self) -> 'SimulationOptions':
        """Create a copy of these options.

        Returns:
            New SimulationOptions instance with same values
        """
        return SimulationOptions(**{f.name: getattr(self, f.name) for f in fields(self)})
