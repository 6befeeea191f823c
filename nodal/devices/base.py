"""Base device interface for nodal

All device models implement this interface. A device sees a *local* view of
the circuit:

    inputs:  terminal voltages, then internal node voltages, then the
             currents of the branches the device owns
    rows:    one KCL row per terminal and internal node (current leaving the
             node into the device), then one equation row per branch

``equations`` maps the local inputs to a DeviceEquations record. The inputs
arrive as dual numbers, so the Jacobian of every stamp falls out of the
evaluation itself; devices never write derivatives by hand.

Example:
    ```python
    class Conductance(Device):
        terminals = ("p", "n")

        def __init__(self, name, nodes, g):
            super().__init__(name, nodes)
            self.g = check_positive(self, "g", g)

        def equations(self, v, ctx, history=None):
            vp, vn = v
            i = self.g * (vp - vn)
            return DeviceEquations(currents=(i, -i))
    ```
"""

import math
from typing import (
    TYPE_CHECKING,
    Any,
    List,
    NamedTuple,
    Optional,
    Sequence,
    Tuple,
)

import numpy as np

from nodal.errors import ConstructionError

if TYPE_CHECKING:
    from nodal.analysis.context import AnalysisContext
    from nodal.analysis.integration import DeviceHistory


class DeviceEquations(NamedTuple):
    """Device contribution to circuit equations

    Attributes:
        currents: Resistive part per local row (Dual or float). For KCL rows
            this is the current flowing out of the node into the device; for
            branch rows it is the branch equation residual.
        charges: Reactive part per local row (charge or flux whose time
            derivative adds to the row), or None for static devices
    """
    currents: Sequence[Any]
    charges: Optional[Sequence[Any]] = None


class Device:
    """Base class for all device models

    Subclasses set ``terminals`` (role names, e.g. ('d', 'g', 's', 'b')) and
    implement ``equations``. Devices are immutable after construction:
    parameters are validated in ``__init__`` and any violation raises
    ConstructionError.

    Attributes:
        name: Instance name, unique within a circuit
        nodes: Circuit node names, one per terminal
    """

    terminals: Tuple[str, ...] = ()
    """Terminal role names for this device"""

    num_branches: int = 0
    """Number of auxiliary current unknowns the device owns"""

    is_linear: bool = True
    """True if the stamp does not depend on the operating point"""

    is_reactive: bool = False
    """True if the device reports charges"""

    def __init__(self, name: str, nodes: Sequence[str]):
        if not name:
            raise ConstructionError(f"{type(self).__name__} needs a non-empty name")
        nodes = tuple(str(n) for n in nodes)
        if len(nodes) != len(self.terminals):
            raise ConstructionError(
                f"{type(self).__name__} {name!r} has {len(self.terminals)} terminals "
                f"{self.terminals}, got {len(nodes)} nodes {nodes}"
            )
        self.name = name
        self.nodes = nodes

    @property
    def internal_nodes(self) -> Tuple[str, ...]:
        """Suffixes of internal nodes the device needs (e.g. behind a series resistance)"""
        return ()

    @property
    def conduction_groups(self) -> Tuple[Tuple[int, ...], ...]:
        """Local nodes (terminals, then internal nodes) joined by a DC current path

        Pins that only sense a voltage (controlling inputs, a MOSFET gate)
        are left out, so a node reached only through them is floating.
        """
        return (tuple(range(len(self.terminals) + len(self.internal_nodes))),)

    @property
    def num_inputs(self) -> int:
        return len(self.terminals) + len(self.internal_nodes) + self.num_branches

    def equations(
        self,
        v: Sequence[Any],
        ctx: "AnalysisContext",
        history: Optional["DeviceHistory"] = None,
    ) -> DeviceEquations:
        """Evaluate the device at local inputs v

        Args:
            v: Local inputs (terminal voltages, internal node voltages, branch
                currents); Duals during assembly, floats or JAX arrays otherwise
            ctx: Analysis context (time, source scale, gmin, temperature)
            history: Charges at the previous accepted time point (transient)

        Returns:
            DeviceEquations with one entry per local row
        """
        raise NotImplementedError

    def limit(
        self,
        v_new: np.ndarray,
        v_old: np.ndarray,
        ctx: "AnalysisContext",
    ) -> Tuple[np.ndarray, bool]:
        """Move the evaluation point of a Newton step

        Args:
            v_new: Local inputs proposed by the Newton update
            v_old: Local inputs at which the device was last evaluated
            ctx: Analysis context

        Returns:
            Tuple of (evaluation point, whether limiting was active)
        """
        return v_new, False

    def breakpoints(self, start: float, stop: float) -> List[float]:
        """Times in (start, stop] where the device's stimulus has a corner"""
        return []

    def initial_condition(self, v: np.ndarray) -> np.ndarray:
        """Impose the device's initial condition on local inputs v (icmode='ic')"""
        return v

    def __repr__(self):
        return f"{type(self).__name__}({self.name!r}, {self.nodes})"


# =============================================================================
# Parameter validation
# =============================================================================


def _finite(device_name: str, param: str, value: Any) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError) as e:
        raise ConstructionError(f"{device_name}: {param} must be a number, got {value!r}") from e
    if not math.isfinite(value):
        raise ConstructionError(f"{device_name}: {param} must be finite, got {value}")
    return value


def check_finite(device: Device, param: str, value: Any) -> float:
    return _finite(device.name, param, value)


def check_positive(device: Device, param: str, value: Any) -> float:
    value = _finite(device.name, param, value)
    if value <= 0:
        raise ConstructionError(f"{device.name}: {param} must be positive, got {value}")
    return value


def check_non_negative(device: Device, param: str, value: Any) -> float:
    value = _finite(device.name, param, value)
    if value < 0:
        raise ConstructionError(f"{device.name}: {param} must be non-negative, got {value}")
    return value


def check_range(device: Device, param: str, value: Any, lo: float, hi: float) -> float:
    """Check lo <= value < hi"""
    value = _finite(device.name, param, value)
    if not (lo <= value < hi):
        raise ConstructionError(f"{device.name}: {param} must be in [{lo}, {hi}), got {value}")
    return value
