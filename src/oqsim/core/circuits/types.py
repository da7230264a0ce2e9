from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator, List, Mapping, Optional, Tuple, Union

from oqsim.errors import InvalidGate


class GateType(str, Enum):
    I = "I"
    X = "X"
    Y = "Y"
    Z = "Z"
    H = "H"
    RX = "RX"
    RY = "RY"
    RZ = "RZ"
    U1 = "U1"
    U2 = "U2"
    U3 = "U3"
    CNOT = "CNOT"
    CZ = "CZ"
    CXZ = "CXZ"
    CZX = "CZX"
    CmZ = "CmZ"

    @property
    def num_qubits(self) -> int:
        return 2 if self in _TWO_QUBIT else 1

    @classmethod
    def parse(cls, name: Union[str, "GateType"]) -> "GateType":
        if isinstance(name, GateType):
            return name
        key = str(name).strip().upper()
        gt = _BY_UPPER_NAME.get(key)
        if gt is None:
            raise InvalidGate(f"Unknown gate type: {name!r}")
        return gt


_TWO_QUBIT = frozenset(
    {GateType.CNOT, GateType.CZ, GateType.CXZ, GateType.CZX, GateType.CmZ}
)
_BY_UPPER_NAME = {gt.value.upper(): gt for gt in GateType}


@dataclass(frozen=True)
class Gate:
    """
    One gate of a circuit.

    - targets: (qubit,) or (control, target)
    - theta, phi, lam: angles in radians; unused ones are zero
    - time: offset relative to the circuit start, in solver units
    """

    gate_type: GateType
    targets: Tuple[int, ...]
    theta: float = 0.0
    phi: float = 0.0
    lam: float = 0.0
    time: float = 0.0

    label: str = ""
    meta: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "gate_type", GateType.parse(self.gate_type))
        targets = tuple(self.targets)
        for q in targets:
            if isinstance(q, bool) or not isinstance(q, int) or q < 0:
                raise InvalidGate(f"{self.gate_type.value}: invalid qubit index {q!r}")
        n = self.gate_type.num_qubits
        if len(targets) != n:
            raise InvalidGate(
                f"{self.gate_type.value} acts on {n} qubit(s), got targets {targets}"
            )
        if n == 2 and targets[0] == targets[1]:
            raise InvalidGate(
                f"{self.gate_type.value} requires two distinct qubits, got {targets}"
            )
        for name in ("theta", "phi", "lam", "time"):
            v = float(getattr(self, name))
            if not math.isfinite(v):
                raise InvalidGate(f"{self.gate_type.value}: {name} must be finite")
            object.__setattr__(self, name, v)
        object.__setattr__(self, "targets", targets)

    @classmethod
    def create(
        cls,
        gate: Union[str, GateType],
        qubit1: int,
        qubit2: Optional[int] = None,
        *,
        theta: float = 0.0,
        phi: float = 0.0,
        lam: float = 0.0,
        time: float = 0.0,
    ) -> "Gate":
        """
        Build a gate from a name and loose parameters.

        U2 fixes theta to pi/2 and U1 fixes theta and phi to 0; rotation
        gates carry their angle in theta.
        """
        gt = GateType.parse(gate)
        if gt.num_qubits == 2:
            if qubit2 is None or qubit2 < 0:
                raise InvalidGate(
                    f"qubit2 must be specified for a two-qubit gate ({gt.value})"
                )
            return cls(gt, (qubit1, qubit2), time=time)
        if gt == GateType.U3:
            return cls(gt, (qubit1,), theta=theta, phi=phi, lam=lam, time=time)
        if gt == GateType.U2:
            return cls(gt, (qubit1,), theta=math.pi / 2, phi=phi, lam=lam, time=time)
        if gt == GateType.U1:
            return cls(gt, (qubit1,), lam=lam, time=time)
        if gt in (GateType.RX, GateType.RY, GateType.RZ):
            return cls(gt, (qubit1,), theta=theta, time=time)
        return cls(gt, (qubit1,), time=time)

    @property
    def is_two_qubit(self) -> bool:
        return self.gate_type.num_qubits == 2


class Circuit:
    """
    Ordered gate sequence plus a start time.

    Gates keep insertion order; they are never sorted by time. Applying a
    circuit snapshots the current gate list, later appends only affect later
    applications.
    """

    def __init__(self, start_time: float = 0.0, gates: Optional[List[Gate]] = None) -> None:
        self.start_time = float(start_time)
        self._gates: List[Gate] = []
        for g in gates or ():
            self.append_gate(g)

    def append_gate(self, gate: Gate) -> Gate:
        if not isinstance(gate, Gate):
            raise InvalidGate(f"Expected Gate, got {type(gate)!r}")
        self._gates.append(gate)
        return gate

    def add_gate(
        self,
        gate: Union[str, GateType],
        qubit1: int,
        qubit2: Optional[int] = None,
        theta: float = 0.0,
        phi: float = 0.0,
        lam: float = 0.0,
        time: float = 0.0,
    ) -> Gate:
        return self.append_gate(
            Gate.create(gate, qubit1, qubit2, theta=theta, phi=phi, lam=lam, time=time)
        )

    @classmethod
    def from_file(
        cls,
        filename: str,
        format: str,
        *,
        start_time: float = 0.0,
        spacing: float = 1.0,
    ) -> Tuple[int, "Circuit"]:
        from oqsim.core.circuits.importers import read_circuit

        imported = read_circuit(filename, format, spacing=spacing)
        return imported.num_qubits, cls(start_time=start_time, gates=list(imported.gates))

    @property
    def gates(self) -> Tuple[Gate, ...]:
        return tuple(self._gates)

    @property
    def num_gates(self) -> int:
        return len(self._gates)

    def __len__(self) -> int:
        return len(self._gates)

    def __iter__(self) -> Iterator[Gate]:
        return iter(tuple(self._gates))

    def __repr__(self) -> str:
        return f"<Circuit{{{self.num_gates} gates starting at t={self.start_time:g}}}>"
