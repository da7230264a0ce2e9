import numpy as np
import pytest

from conftest import FakeEngine
from oqsim import (
    AlreadyInitialized,
    Circuit,
    InvalidState,
    NotReady,
    ObserverFailed,
    SolverFailed,
    SystemModel,
)
from oqsim.core.sim.types import DriverState
from oqsim.engine import EvolutionDriver, count_steps


def _ready(model):
    (q,) = model.create_qubits(1)
    model.add_ham_num(q, 1.0)
    model.create_state()
    return q


def test_count_steps():
    assert count_steps(0.0, 10.0, 1.0, None) == 10
    assert count_steps(0.0, 2.5, 1.0, None) == 2
    assert count_steps(0.0, 0.3, 0.1, None) == 3
    assert count_steps(0.0, 10.0, 1.0, 4) == 4
    with pytest.raises(ValueError):
        count_steps(0.0, 1.0, 0.0, None)
    with pytest.raises(ValueError):
        count_steps(2.0, 1.0, 1.0, None)


def test_run_requires_state(model, fake_engine):
    model.create_qubits(1)
    driver = model.driver(fake_engine)
    with pytest.raises(NotReady):
        driver.run(5.0)
    assert driver.state == DriverState.UNCONFIGURED
    model.create_state()
    driver.run(1.0)
    assert driver.state == DriverState.COMPLETED


def test_observer_sees_every_step_in_order(model, fake_engine):
    _ready(model)
    events = []
    model.ts_monitor = lambda m, step, t: events.append((m, step, t))
    report = model.driver(fake_engine).run(2.5, dt=0.5)
    assert [(step, t) for _, step, t in events] == [(1, 0.5), (2, 1.0), (3, 1.5), (4, 2.0), (5, 2.5)]
    assert all(m is model for m, _, _ in events)
    assert report.steps == 5
    assert not report.stopped_early


def test_max_steps_caps_the_run(model, fake_engine):
    _ready(model)
    steps = []
    driver = model.driver(fake_engine)
    driver.set_observer(lambda m, step, t: steps.append(step))
    report = driver.run(100.0, dt=1.0, max_steps=3)
    assert steps == [1, 2, 3]
    assert report.end_time == pytest.approx(3.0)
    assert fake_engine.step_calls[0][3] == 3


def test_continuation_reuses_assembly_until_model_changes(model, fake_engine):
    q = _ready(model)
    steps = []
    model.ts_monitor = lambda m, step, t: steps.append((step, t))
    driver = model.driver(fake_engine)

    driver.run(2.0)
    driver.run(4.0)
    assert len(fake_engine.assembled) == 1
    assert fake_engine.step_calls[1][0] == pytest.approx(2.0)
    assert steps == [(1, 1.0), (2, 2.0), (1, 3.0), (2, 4.0)]

    model.add_lindblad_emission(q, 0.1)
    driver.run(5.0)
    assert len(fake_engine.assembled) == 2
    assert fake_engine.assembled[1].revision == model.revision
    assert len(fake_engine.assembled[1].c_terms) == 1
    assert fake_engine.freed and fake_engine.freed[0]["freed"]


def test_explicit_start_time(model, fake_engine):
    _ready(model)
    driver = model.driver(fake_engine)
    driver.run(3.0, start_time=1.0)
    assert fake_engine.step_calls[0][:2] == (1.0, 3.0)
    assert driver.time == pytest.approx(3.0)


def test_observer_failure_is_terminal(model, fake_engine, caplog):
    _ready(model)
    seen = []

    def observer(m, step, t):
        seen.append(step)
        if step == 2:
            raise ZeroDivisionError("bad observer")

    model.ts_monitor = observer
    driver = model.driver(fake_engine)
    with caplog.at_level("ERROR", logger="oqsim.engine"):
        with pytest.raises(ObserverFailed) as info:
            driver.run(10.0)
    assert info.value.step == 2
    assert info.value.time == pytest.approx(2.0)
    assert isinstance(info.value.__cause__, ZeroDivisionError)
    assert seen == [1, 2]
    assert driver.state == DriverState.FAILED
    assert "ObserverFailed" in caplog.text

    with pytest.raises(InvalidState):
        driver.run(20.0)
    with pytest.raises(InvalidState):
        driver.steady_state()


def test_engine_step_failure(model):
    _ready(model)
    driver = model.driver(FakeEngine(fail_on="step", fail_at_step=3))
    with pytest.raises(SolverFailed):
        driver.run(5.0)
    assert driver.state == DriverState.FAILED
    with pytest.raises(InvalidState):
        model.run(6.0)


def test_engine_assembly_failure(model):
    _ready(model)
    driver = model.driver(FakeEngine(fail_on="assemble"))
    with pytest.raises(SolverFailed):
        driver.run(1.0)
    assert driver.state == DriverState.FAILED


def test_failed_model_rejects_changes(model):
    q = _ready(model)
    model.driver(FakeEngine(fail_on="assemble"))
    with pytest.raises(SolverFailed):
        model.run(1.0)
    revision = model.revision

    c = Circuit()
    c.add_gate("X", 0)
    with pytest.raises(InvalidState):
        model.add_ham_num(q, 1.0)
    with pytest.raises(InvalidState):
        model.add_lindblad_emission(q, 0.1)
    with pytest.raises(InvalidState):
        model.start_circuit_at(c)
    with pytest.raises(InvalidState):
        model.set_initial_population(q, 1)
    assert model.revision == revision
    # the last state stays readable
    assert model.get_bitstring_probs() == pytest.approx([1.0, 0.0])

    model.destroy()
    with SystemModel() as fresh:
        (q,) = fresh.create_qubits(1)
        fresh.add_ham_num(q, 1.0)


def test_request_stop_between_steps(model, fake_engine):
    _ready(model)
    driver = model.driver(fake_engine)

    def observer(m, step, t):
        if step == 2:
            driver.request_stop()

    driver.set_observer(observer)
    report = driver.run(10.0)
    assert report.steps == 2
    assert report.stopped_early
    assert driver.state == DriverState.COMPLETED
    report = driver.run(3.0)
    assert report.steps == 1 and not report.stopped_early


def test_steady_state_skips_observer(model, fake_engine):
    _ready(model)
    calls = []
    model.ts_monitor = lambda m, step, t: calls.append(step)
    dm = model.driver(fake_engine).steady_state()
    assert calls == []
    np.testing.assert_allclose(dm.data, np.eye(2) / 2)
    assert model.get_bitstring_probs() == pytest.approx([0.5, 0.5])


def test_steady_state_failure(model):
    _ready(model)
    driver = model.driver(FakeEngine(fail_on="steady_state"))
    with pytest.raises(SolverFailed):
        driver.steady_state()
    assert driver.state == DriverState.FAILED


def test_initial_population_locked_after_evolution(model, fake_engine):
    q = _ready(model)
    model.driver(fake_engine).run(1.0)
    with pytest.raises(InvalidState):
        model.set_initial_population(q, 1)


def test_destroy_frees_engine_state(model, fake_engine):
    _ready(model)
    model.driver(fake_engine).run(1.0)
    model.destroy()
    assert len(fake_engine.freed) == 1


def test_driver_rejects_second_engine(model, fake_engine):
    _ready(model)
    model.driver(fake_engine)
    assert model.driver() is model.driver(fake_engine)
    with pytest.raises(AlreadyInitialized):
        model.driver(FakeEngine())


def test_audit_runs_on_assembly(model, fake_engine):
    _ready(model)
    driver = EvolutionDriver(model, fake_engine, audit=True)
    driver.run(1.0)
    assert driver.last_audit["H"]["count"] == 1
    assert driver.node_id == 0 and driver.num_nodes == 1
