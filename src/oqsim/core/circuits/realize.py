from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from oqsim.core.circuits.protocols import GateTermSpec
from oqsim.core.circuits.types import Gate, GateType
from oqsim.core.ir.ops import Operator
from oqsim.errors import InvalidGate

PAULI_I = np.eye(2, dtype=complex)
PAULI_X = np.array([[0.0, 1.0], [1.0, 0.0]], dtype=complex)
PAULI_Y = np.array([[0.0, -1.0j], [1.0j, 0.0]], dtype=complex)
PAULI_Z = np.array([[1.0, 0.0], [0.0, -1.0]], dtype=complex)

# Payload applied to the target when the control is |1>.
CONTROLLED_PAYLOAD = {
    GateType.CNOT: PAULI_X,
    GateType.CZ: PAULI_Z,
    GateType.CXZ: PAULI_X @ PAULI_Z,
    GateType.CZX: PAULI_Z @ PAULI_X,
    GateType.CmZ: -PAULI_Z,
}


def _rotation(axis: np.ndarray, angle: float) -> np.ndarray:
    return math.cos(angle / 2) * PAULI_I - 1.0j * math.sin(angle / 2) * axis


def u3_matrix(theta: float, phi: float, lam: float) -> np.ndarray:
    c = math.cos(theta / 2)
    s = math.sin(theta / 2)
    return np.array(
        [
            [c, -np.exp(1.0j * lam) * s],
            [np.exp(1.0j * phi) * s, np.exp(1.0j * (phi + lam)) * c],
        ],
        dtype=complex,
    )


def single_qubit_unitary(gate: Gate) -> np.ndarray:
    gt = gate.gate_type
    if gt == GateType.I:
        return PAULI_I.copy()
    if gt == GateType.X:
        return PAULI_X.copy()
    if gt == GateType.Y:
        return PAULI_Y.copy()
    if gt == GateType.Z:
        return PAULI_Z.copy()
    if gt == GateType.H:
        return (PAULI_X + PAULI_Z) / math.sqrt(2.0)
    if gt == GateType.RX:
        return _rotation(PAULI_X, gate.theta)
    if gt == GateType.RY:
        return _rotation(PAULI_Y, gate.theta)
    if gt == GateType.RZ:
        return _rotation(PAULI_Z, gate.theta)
    if gt in (GateType.U1, GateType.U2, GateType.U3):
        return u3_matrix(gate.theta, gate.phi, gate.lam)
    raise InvalidGate(f"{gt.value} is not a single-qubit gate")


def gate_unitary(gate: Gate) -> np.ndarray:
    """Full unitary of a gate, control qubit first for two-qubit gates."""
    if not gate.is_two_qubit:
        return single_qubit_unitary(gate)
    p0 = np.diag([1.0, 0.0]).astype(complex)
    p1 = np.diag([0.0, 1.0]).astype(complex)
    return np.kron(p0, PAULI_I) + np.kron(p1, CONTROLLED_PAYLOAD[gate.gate_type])


def su2_generator(u: np.ndarray, *, atol: float = 1e-12) -> Tuple[float, float, float, float]:
    """
    Pauli coefficients (g0, gx, gy, gz) of G = g0 I + gx X + gy Y + gz Z with
    expm(-1j * G) == u for a 2x2 unitary u.
    """
    m = np.asarray(u, dtype=complex)
    if m.shape != (2, 2):
        raise ValueError(f"Expected a 2x2 unitary, got shape {m.shape}")
    alpha = 0.5 * float(np.angle(np.linalg.det(m)))
    w = m * np.exp(-1.0j * alpha)

    # w = c I - i (sx X + sy Y + sz Z)
    c = 0.5 * float(np.real(w[0, 0] + w[1, 1]))
    sx = -0.5 * float(np.imag(w[0, 1] + w[1, 0]))
    sy = 0.5 * float(np.real(w[1, 0] - w[0, 1]))
    sz = 0.5 * float(np.imag(w[1, 1] - w[0, 0]))
    s = math.sqrt(sx * sx + sy * sy + sz * sz)

    if s <= atol:
        if c > 0:
            return -alpha, 0.0, 0.0, 0.0
        return -alpha, 0.0, 0.0, math.pi  # w == -I
    half_angle = math.atan2(s, c)
    f = half_angle / s
    return -alpha, f * sx, f * sy, f * sz


def _ladder_terms(
    g: Tuple[float, float, float, float],
    target: Operator,
    *,
    scale: float,
    control: Optional[Operator] = None,
    atol: float = 1e-14,
) -> List[GateTermSpec]:
    """
    Expand g0 I + gx X + gy Y + gz Z on a qubit into ladder operators:
    (g0 + gz) I + (gx - i gy) a + (gx + i gy) a_dag - 2 gz n.

    Without a control the identity part is a global phase and is dropped;
    with a control every term is multiplied by n_control.
    """
    g0, gx, gy, gz = g
    parts = [
        ((gx - 1.0j * gy), (target,)),
        ((gx + 1.0j * gy), (target.dag,)),
        (-2.0 * gz, (target.n,)),
    ]
    if control is not None:
        parts = [(c, (control.n,) + ops) for c, ops in parts]
        parts.insert(0, ((g0 + gz), (control.n,)))

    out = []
    for c, ops in parts:
        coeff = complex(c) * scale
        if abs(coeff) <= atol:
            continue
        out.append(GateTermSpec(coeff=coeff, ops=ops))
    return out


@dataclass(frozen=True)
class RectangularPulseRealizer:
    """
    Realize a gate U as a constant Hamiltonian G / duration over its window,
    where expm(-1j * G) equals U up to a global phase.

    Targets must be two-level subsystems.
    """

    pulse_duration: float = 1.0

    def __post_init__(self) -> None:
        if not (self.pulse_duration > 0 and math.isfinite(self.pulse_duration)):
            raise ValueError(f"pulse duration must be positive, got {self.pulse_duration}")

    def duration(self, gate: Gate) -> float:
        return float(self.pulse_duration)

    def realize(self, gate: Gate, targets: Sequence[Operator]) -> Sequence[GateTermSpec]:
        for op in targets:
            if op.levels != 2:
                raise InvalidGate(
                    f"{gate.gate_type.value} targets subsystem {op.index} with "
                    f"{op.levels} levels; gates require qubits"
                )
        if gate.gate_type == GateType.I:
            return ()

        scale = 1.0 / self.duration(gate)
        if gate.is_two_qubit:
            control, target = targets
            g = su2_generator(CONTROLLED_PAYLOAD[gate.gate_type])
            specs = _ladder_terms(g, target, scale=scale, control=control)
        else:
            g = su2_generator(single_qubit_unitary(gate))
            specs = _ladder_terms(g, targets[0], scale=scale)

        label = gate.label or gate.gate_type.value
        return tuple(
            GateTermSpec(coeff=s.coeff, ops=s.ops, kind=s.kind, label=label)
            for s in specs
        )
