import math

import numpy as np
import pytest

from oqsim import Circuit, Gate, GateType, InvalidGate
from oqsim.core.circuits.realize import (
    PAULI_X,
    RectangularPulseRealizer,
    gate_unitary,
    su2_generator,
)
from oqsim.core.ir.materialize import materialize_product
from oqsim.core.sim.compile import compile_to_dense

SINGLE_QUBIT_GATES = [
    Gate.create("I", 0),
    Gate.create("X", 0),
    Gate.create("Y", 0),
    Gate.create("Z", 0),
    Gate.create("H", 0),
    Gate.create("RX", 0, theta=0.3),
    Gate.create("RY", 0, theta=-1.1),
    Gate.create("RZ", 0, theta=2.5),
    Gate.create("RX", 0, theta=math.pi),
    Gate.create("U1", 0, lam=0.7),
    Gate.create("U2", 0, phi=0.2, lam=-0.4),
    Gate.create("U3", 0, theta=1.3, phi=0.5, lam=2.9),
]

TWO_QUBIT_GATES = [Gate.create(name, 0, 1) for name in ("CNOT", "CZ", "CXZ", "CZX", "CmZ")]


def expm_hermitian(G):
    w, v = np.linalg.eigh(G)
    return v @ np.diag(np.exp(-1j * w)) @ v.conj().T


def realized_generator(model, gate, realizer):
    targets = tuple(model.op(q) for q in gate.targets)
    dims = model.dims()
    D = int(np.prod(dims))
    H = np.zeros((D, D), dtype=complex)
    for spec in realizer.realize(gate, targets):
        H += spec.coeff * materialize_product(spec.ops, dims)
    return H * realizer.duration(gate)


def test_gate_validation():
    with pytest.raises(InvalidGate):
        Gate.create("CNOT", 0)
    with pytest.raises(InvalidGate):
        Gate.create("CZ", 1, 1)
    with pytest.raises(InvalidGate):
        Gate.create("X", -1)
    with pytest.raises(InvalidGate):
        Gate.create("SWAPPY", 0)
    with pytest.raises(InvalidGate):
        Gate(GateType.RX, (0,), theta=float("nan"))


def test_gate_parameter_fixing():
    u2 = Gate.create("u2", 0, theta=0.1, phi=0.2, lam=0.3)
    assert u2.theta == pytest.approx(math.pi / 2)
    assert (u2.phi, u2.lam) == (0.2, 0.3)
    u1 = Gate.create(GateType.U1, 0, theta=0.1, phi=0.2, lam=0.3)
    assert (u1.theta, u1.phi, u1.lam) == (0.0, 0.0, 0.3)
    assert GateType.parse("cmz") is GateType.CmZ


def test_circuit_keeps_insertion_order():
    c = Circuit(start_time=2.0)
    c.add_gate("X", 0, time=5.0)
    c.add_gate("H", 1, time=1.0)
    c.append_gate(Gate.create("CZ", 0, 1, time=0.0))
    assert [g.gate_type for g in c] == [GateType.X, GateType.H, GateType.CZ]
    assert c.num_gates == len(c) == 3
    assert "3 gates" in repr(c)
    with pytest.raises(InvalidGate):
        c.append_gate("X")


@pytest.mark.parametrize("gate", SINGLE_QUBIT_GATES, ids=lambda g: g.gate_type.value)
def test_su2_generator_exact(gate):
    u = gate_unitary(gate)
    g0, gx, gy, gz = su2_generator(u)
    G = g0 * np.eye(2) + gx * PAULI_X + gy * np.array([[0, -1j], [1j, 0]]) + gz * np.diag([1, -1])
    np.testing.assert_allclose(expm_hermitian(G), u, atol=1e-12)


@pytest.mark.parametrize("gate", SINGLE_QUBIT_GATES, ids=lambda g: g.gate_type.value)
def test_single_qubit_realization_up_to_phase(model, gate):
    model.create_qubits(1)
    realizer = RectangularPulseRealizer(pulse_duration=2.0)
    G = realized_generator(model, gate, realizer)
    np.testing.assert_allclose(G, G.conj().T, atol=1e-12)
    V = expm_hermitian(G)
    U = gate_unitary(gate)
    overlap = np.trace(U.conj().T @ V)
    assert abs(overlap) == pytest.approx(2.0, abs=1e-10)


@pytest.mark.parametrize("gate", TWO_QUBIT_GATES, ids=lambda g: g.gate_type.value)
def test_controlled_realization_exact(model, gate):
    model.create_qubits(2)
    G = realized_generator(model, gate, RectangularPulseRealizer())
    np.testing.assert_allclose(expm_hermitian(G), gate_unitary(gate), atol=1e-10)


def test_identity_emits_nothing(model):
    model.create_qubits(1)
    assert RectangularPulseRealizer().realize(Gate.create("I", 0), (model.op(0),)) == ()


def test_realizer_requires_qubits(model):
    model.create_subsystem(3)
    with pytest.raises(InvalidGate):
        RectangularPulseRealizer().realize(Gate.create("X", 0), (model.op(0),))


def test_realizer_duration_must_be_positive():
    with pytest.raises(ValueError):
        RectangularPulseRealizer(pulse_duration=0.0)


def test_start_circuit_injects_windowed_terms(model):
    model.create_qubits(2)
    c = Circuit(start_time=1.0)
    c.add_gate("X", 0, time=0.5)
    injected = model.start_circuit_at(c, 2.0)
    terms = model.hamiltonian_terms
    assert injected == len(terms) == 2
    assert all(t.label == "X" for t in terms)
    assert terms[0].meta["t_on"] == pytest.approx(3.5)
    assert terms[0].meta["t_off"] == pytest.approx(4.5)
    assert terms[0].coeff.at(3.4) == 0
    assert abs(terms[0].coeff.at(3.5)) > 0
    assert abs(terms[0].coeff.at(4.49)) > 0
    assert terms[0].coeff.at(4.5) == 0


def test_window_edges_reach_the_compiled_problem(model):
    model.create_qubits(2)
    model.create_state()
    c = Circuit()
    c.add_gate("X", 0, time=50.0)
    c.add_gate("I", 1, time=2.0)
    c.add_gate("CNOT", 0, 1, time=50.5)
    model.start_circuit_at(c, 1.0)
    assert model.timeline.breakpoints() == (3.0, 4.0, 51.0, 51.5, 52.0, 52.5)
    problem = compile_to_dense(bundle=model.compile_bundle())
    assert problem.meta["breakpoints"] == (3.0, 4.0, 51.0, 51.5, 52.0, 52.5)


def test_out_of_range_target_injects_nothing(model):
    model.create_qubits(1)
    c = Circuit()
    c.add_gate("X", 0)
    c.add_gate("CNOT", 0, 1, time=1.0)
    with pytest.raises(InvalidGate):
        model.start_circuit_at(c)
    assert model.hamiltonian_terms == ()
    assert len(model.timeline) == 0


def test_circuit_snapshot_per_application(model):
    model.create_qubits(1)
    c = Circuit()
    c.add_gate("X", 0)
    model.start_circuit_at(c)
    c.add_gate("Y", 0, time=1.0)
    assert len(model.timeline) == 1
    model.start_circuit_at(c, 10.0)
    assert len(model.timeline) == 3


def _two_circuits(model, first_time, second_time):
    first = Circuit()
    first.add_gate("X", 0, time=first_time)
    second = Circuit()
    second.add_gate("Z", 0, time=second_time)
    model.start_circuit_at(first)
    model.start_circuit_at(second)


def test_later_application_wins_overlap(model):
    model.create_qubits(1)
    _two_circuits(model, 0.0, 0.5)
    tl = model.timeline
    assert tl.is_active(0, 0.25)
    assert not tl.is_active(0, 0.75)
    assert tl.is_active(1, 0.75)
    assert tl.is_active(1, 1.25)
    assert not tl.is_active(0, 1.25)


def test_later_application_wins_even_if_it_starts_first(model):
    model.create_qubits(1)
    _two_circuits(model, 0.5, 0.0)
    tl = model.timeline
    assert tl.is_active(1, 0.25)
    assert not tl.is_active(0, 0.75)
    assert tl.is_active(1, 0.75)
    assert tl.is_active(0, 1.25)


def test_gates_on_disjoint_qubits_do_not_interact(model):
    model.create_qubits(2)
    c = Circuit()
    c.add_gate("X", 0)
    c.add_gate("H", 1)
    model.start_circuit_at(c)
    assert model.timeline.is_active(0, 0.5)
    assert model.timeline.is_active(1, 0.5)


def test_two_qubit_gate_overrides_on_shared_qubit(model):
    model.create_qubits(3)
    c = Circuit()
    c.add_gate("X", 1)
    c.add_gate("H", 2)
    c.add_gate("CNOT", 0, 1)
    model.start_circuit_at(c)
    tl = model.timeline
    assert not tl.is_active(0, 0.5)
    assert tl.is_active(1, 0.5)
    assert tl.is_active(2, 0.5)


@pytest.mark.parametrize("order", [("X", "Z"), ("Z", "X")])
def test_insertion_order_decides_overlap(model, order):
    model.create_qubits(1)
    c = Circuit()
    for name in order:
        c.add_gate(name, 0, time=0.0)
    model.start_circuit_at(c, 5.0)
    tl = model.timeline
    assert not tl.is_active(0, 5.5)
    assert tl.is_active(1, 5.5)
    active = [t.label for t in model.hamiltonian_terms if t.coeff.at(5.5) != 0]
    assert set(active) == {order[1]}
