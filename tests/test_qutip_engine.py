import math

import numpy as np
import pytest

pytest.importorskip("qutip")

from oqsim import Circuit, SystemModel
from oqsim.adapters.qutip.adapter import QuTiPEngine, _dephase_in_eigenbasis
from oqsim.core.sim.types import DriverState


def test_emission_decay(model):
    (q,) = model.create_qubits(1)
    model.add_lindblad_emission(q, 0.5)
    model.create_state()
    model.set_initial_population(q, 1)

    pops, ground, times = [], [], []

    def monitor(m, step, t):
        p0, p1 = m.get_bitstring_probs()
        pops.append(p1)
        ground.append(p0)
        times.append(t)

    model.ts_monitor = monitor
    report = model.run(end_time=4.0, dt=0.5)

    assert report.steps == 8
    assert len(pops) == 8
    assert all(t1 > t0 for t0, t1 in zip(times, times[1:]))
    assert all(b <= a + 1e-9 for a, b in zip(pops, pops[1:]))
    assert all(b >= a - 1e-9 for a, b in zip(ground, ground[1:]))
    assert pops[-1] == pytest.approx(math.exp(-2.0), abs=1e-5)
    assert model.driver().state == DriverState.COMPLETED
    assert model.state.trace() == pytest.approx(1.0, abs=1e-8)


def test_time_dependent_rate(model):
    (q,) = model.create_qubits(1)
    model.add_lindblad_term_time_dependent(1.0, lambda t: 0.2 if t < 2.0 else 0.0, q)
    model.create_state()
    model.set_initial_population(q, 1)
    model.run(end_time=4.0, dt=1.0)
    assert model.get_populations()[0] == pytest.approx(math.exp(-0.4), abs=1e-4)


def test_thermal_steady_state(model):
    (q,) = model.create_qubits(1)
    model.add_ham_num(q, 1.0)
    model.add_lindblad_thermal_coupling(q, 0.3, n_therm=0.5)
    model.create_state()
    model.steady_state()
    assert model.get_populations()[0] == pytest.approx(0.25, abs=1e-6)


def test_steady_state_without_dissipation_keeps_diagonal_state(model):
    a = model.create_subsystem(3)
    model.add_ham_num(a, 2.0)
    model.create_state()
    model.set_initial_population(a, 2)
    model.steady_state()
    assert model.get_bitstring_probs() == pytest.approx([0.0, 0.0, 1.0], abs=1e-12)


def test_dephasing_in_eigenbasis_removes_coherences():
    H = np.diag([0.0, 1.0]).astype(complex)
    rho = np.full((2, 2), 0.5, dtype=complex)
    np.testing.assert_allclose(_dephase_in_eigenbasis(H, rho, atol=1e-9), np.eye(2) / 2)
    # degenerate spectrum keeps everything
    np.testing.assert_allclose(_dephase_in_eigenbasis(np.zeros((2, 2)), rho, atol=1e-9), rho)


def test_x_gate_flips_qubit(model):
    model.create_qubits(1)
    model.create_state()
    c = Circuit()
    c.add_gate("X", 0)
    model.start_circuit_at(c, 1.0)
    model.run(end_time=3.0, dt=0.5)
    assert model.get_bitstring_probs() == pytest.approx([0.0, 1.0], abs=1e-4)


@pytest.mark.parametrize(
    "start, end, dt",
    [(50.0, 100.0, 100.0), (50.0, 100.0, 25.0), (5.0, 10.0, 10.0), (1.0, 3.0, 3.0)],
)
def test_gate_acts_when_step_is_longer_than_pulse(model, start, end, dt):
    model.create_qubits(1)
    model.create_state()
    c = Circuit()
    c.add_gate("X", 0)
    model.start_circuit_at(c, start)
    model.run(end_time=end, dt=dt)
    assert model.get_bitstring_probs() == pytest.approx([0.0, 1.0], abs=1e-4)


def test_observer_only_sees_requested_times_across_gate_edges(model):
    model.create_qubits(1)
    model.create_state()
    c = Circuit()
    c.add_gate("X", 0)
    model.start_circuit_at(c, 1.5)
    times = []
    model.ts_monitor = lambda m, step, t: times.append(t)
    report = model.run(end_time=6.0, dt=3.0)
    assert report.steps == 2
    assert times == pytest.approx([3.0, 6.0])
    assert model.get_bitstring_probs() == pytest.approx([0.0, 1.0], abs=1e-4)


def test_bell_pair():
    with SystemModel(2) as m:
        m.create_qubits()
        m.create_state()
        c = Circuit()
        c.add_gate("H", 0)
        c.add_gate("CNOT", 0, 1, time=1.0)
        m.start_circuit_at(c)
        m.run(end_time=2.0, dt=0.5)
        assert m.get_bitstring_probs() == pytest.approx([0.5, 0.0, 0.0, 0.5], abs=1e-4)


def test_later_circuit_suppresses_overlapping_gate(model):
    model.create_qubits(1)
    model.create_state()
    first = Circuit()
    first.add_gate("X", 0)
    second = Circuit()
    second.add_gate("X", 0)
    model.start_circuit_at(first)
    model.start_circuit_at(second)
    model.run(end_time=1.0, dt=0.5)
    # a single X, not X applied twice at once
    assert model.get_bitstring_probs() == pytest.approx([0.0, 1.0], abs=1e-4)


def test_engine_is_single_process():
    engine = QuTiPEngine()
    assert (engine.node_id, engine.num_nodes) == (0, 1)
