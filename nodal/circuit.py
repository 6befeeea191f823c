"""Circuit netlist and topology management

A Circuit owns named nodes, the devices connected to them, and the index
assignment of the MNA unknown vector:

    [ V(node_0), ..., V(node_{N-1}), I(branch_0), ..., I(branch_{B-1}) ]

Node voltages come first, in the order nodes were first referenced (device
internal nodes right after their device's terminals), then branch currents
in device order. The ground node is not an unknown; its index is GROUND.
"""

from typing import Dict, List, Tuple

import numpy as np

from nodal.devices.base import Device
from nodal.devices.capacitor import Capacitor
from nodal.devices.controlled import VCCS, VCVS
from nodal.devices.diode import Diode
from nodal.devices.inductor import Inductor
from nodal.devices.mosfet import Mosfet
from nodal.devices.resistor import Resistor
from nodal.devices.sources import CurrentSource, VoltageSource
from nodal.errors import ConstructionError

GROUND = -1


class Circuit:
    """Circuit netlist with device instances and connections

    Example:
        ```python
        from nodal import Circuit, Pulse

        ckt = Circuit()
        ckt.add_vsource("V1", "in", "0", Pulse(0.0, 5.0, rise=1e-9, width=1.0))
        ckt.add_resistor("R1", "in", "out", 1e3)
        ckt.add_capacitor("C1", "out", "0", 1e-6)
        ckt.finalize()
        ckt.n  # 3 unknowns: V(in), V(out), I(V1)
        ```
    """

    def __init__(self, ground: str = "0"):
        """Initialize empty circuit

        Args:
            ground: Name of the reference node (fixed at 0 V)
        """
        self.ground = str(ground)
        self._node_names: List[str] = []
        self._node_set = set()
        self._devices: Dict[str, Device] = {}
        self._finalized = False

    # -- construction ---------------------------------------------------------

    def node(self, name: str) -> str:
        """Register a node (a no-op for ground or a known node)"""
        name = str(name)
        if name != self.ground and name not in self._node_set:
            self._node_set.add(name)
            self._node_names.append(name)
            self._finalized = False
        return name

    def add(self, device: Device) -> Device:
        """Add a device instance

        Raises:
            ConstructionError: On a duplicate device name
        """
        if not isinstance(device, Device):
            raise ConstructionError(f"Not a device: {device!r}")
        if device.name in self._devices:
            raise ConstructionError(f"Device {device.name!r} already exists")
        for node in device.nodes:
            self.node(node)
        for suffix in device.internal_nodes:
            self.node(f"{device.name}:{suffix}")
        self._devices[device.name] = device
        self._finalized = False
        return device

    def add_resistor(self, name: str, p: str, n: str, r: float, **kwargs) -> Resistor:
        return self.add(Resistor(name, (p, n), r, **kwargs))

    def add_capacitor(self, name: str, p: str, n: str, c: float, **kwargs) -> Capacitor:
        return self.add(Capacitor(name, (p, n), c, **kwargs))

    def add_inductor(self, name: str, p: str, n: str, l: float, **kwargs) -> Inductor:
        return self.add(Inductor(name, (p, n), l, **kwargs))

    def add_vsource(self, name: str, p: str, n: str, value=0.0) -> VoltageSource:
        return self.add(VoltageSource(name, (p, n), value))

    def add_isource(self, name: str, p: str, n: str, value=0.0) -> CurrentSource:
        return self.add(CurrentSource(name, (p, n), value))

    def add_diode(self, name: str, a: str, k: str, **kwargs) -> Diode:
        return self.add(Diode(name, (a, k), **kwargs))

    def add_mosfet(self, name: str, d: str, g: str, s: str, b: str, **kwargs) -> Mosfet:
        return self.add(Mosfet(name, (d, g, s, b), **kwargs))

    def add_vcvs(self, name: str, p: str, n: str, cp: str, cn: str, gain: float) -> VCVS:
        return self.add(VCVS(name, (p, n, cp, cn), gain))

    def add_vccs(self, name: str, p: str, n: str, cp: str, cn: str, gm: float) -> VCCS:
        return self.add(VCCS(name, (p, n, cp, cn), gm))

    # -- index assignment -----------------------------------------------------

    def finalize(self) -> "Circuit":
        """Assign unknown indices and check connectivity

        Raises:
            ConstructionError: If the circuit is empty or any node has no
                path to ground through a DC current path
        """
        if self._finalized:
            return self
        if not self._devices:
            raise ConstructionError("Circuit has no devices")

        self._check_connectivity()

        self._node_index = {name: i for i, name in enumerate(self._node_names)}
        self._node_index[self.ground] = GROUND

        next_index = len(self._node_names)
        self._branches: Dict[str, Tuple[int, ...]] = {}
        self._local_maps: Dict[str, np.ndarray] = {}
        for device in self._devices.values():
            branches = tuple(range(next_index, next_index + device.num_branches))
            next_index += device.num_branches
            self._branches[device.name] = branches
            nodes = list(device.nodes) + [f"{device.name}:{s}" for s in device.internal_nodes]
            local = [self._node_index[node] for node in nodes] + list(branches)
            self._local_maps[device.name] = np.array(local, dtype=np.int64)

        self._n = next_index
        self._finalized = True
        return self

    def _check_connectivity(self):
        """Union-find over DC current paths; every node must reach ground"""
        parent = {name: name for name in self._node_names}
        parent[self.ground] = self.ground

        def find(x):
            while parent[x] != x:
                parent[x] = parent[parent[x]]
                x = parent[x]
            return x

        for device in self._devices.values():
            nodes = list(device.nodes) + [f"{device.name}:{s}" for s in device.internal_nodes]
            for group in device.conduction_groups:
                root = find(nodes[group[0]])
                for k in group[1:]:
                    other = find(nodes[k])
                    if other != root:
                        parent[other] = root

        ground_root = find(self.ground)
        floating = [name for name in self._node_names if find(name) != ground_root]
        if floating:
            raise ConstructionError(
                f"Floating node(s) with no path to ground {self.ground!r}: {', '.join(floating)}"
            )

    def _require_finalized(self):
        if not self._finalized:
            self.finalize()

    # -- queries --------------------------------------------------------------

    @property
    def n(self) -> int:
        """Size of the unknown vector"""
        self._require_finalized()
        return self._n

    @property
    def num_nodes(self) -> int:
        """Number of node-voltage unknowns (ground excluded)"""
        return len(self._node_names)

    @property
    def devices(self) -> Tuple[Device, ...]:
        """Devices in insertion order"""
        return tuple(self._devices.values())

    @property
    def node_names(self) -> Tuple[str, ...]:
        return tuple(self._node_names)

    @property
    def is_linear(self) -> bool:
        """True if no device's stamp depends on the operating point"""
        return all(d.is_linear for d in self._devices.values())

    def device(self, name: str) -> Device:
        try:
            return self._devices[name]
        except KeyError:
            raise KeyError(f"Unknown device: {name!r}") from None

    def node_index(self, name: str) -> int:
        """Unknown index of a node voltage (GROUND for the reference node)"""
        self._require_finalized()
        try:
            return self._node_index[str(name)]
        except KeyError:
            raise KeyError(f"Unknown node: {name!r}") from None

    def branch_index(self, device_name: str, k: int = 0) -> int:
        """Unknown index of the k-th branch current owned by a device"""
        self._require_finalized()
        branches = self._branches.get(device_name)
        if branches is None:
            raise KeyError(f"Unknown device: {device_name!r}")
        if not 0 <= k < len(branches):
            raise KeyError(f"Device {device_name!r} has {len(branches)} branch(es), asked for {k}")
        return branches[k]

    def local_indices(self, device: Device) -> np.ndarray:
        """Global index of each local input of a device (GROUND where grounded)"""
        self._require_finalized()
        return self._local_maps[device.name]

    def unknown_names(self) -> List[str]:
        """Human-readable name of every unknown, in index order"""
        self._require_finalized()
        names = [f"V({node})" for node in self._node_names]
        for device in self._devices.values():
            count = len(self._branches[device.name])
            for k in range(count):
                names.append(f"I({device.name})" if count == 1 else f"I({device.name}#{k})")
        return names

    def breakpoints(self, start: float, stop: float) -> List[float]:
        """Sorted, de-duplicated stimulus breakpoints in (start, stop]"""
        points = set()
        for device in self._devices.values():
            points.update(device.breakpoints(start, stop))
        return sorted(points)

    def __repr__(self):
        return (f"Circuit({len(self._devices)} devices, {len(self._node_names)} nodes, "
                f"ground={self.ground!r})")
