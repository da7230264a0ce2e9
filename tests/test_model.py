import numpy as np
import pytest

from oqsim import AlreadyInitialized, InvalidState, NotReady, SystemModel, UseAfterFree


def test_create_qubits_once():
    m = SystemModel(3)
    qubits = m.create_qubits()
    assert len(qubits) == 3
    assert m.dims() == (2, 2, 2)
    with pytest.raises(AlreadyInitialized):
        m.create_qubits(2)
    m.destroy()


def test_create_qubits_with_levels(model):
    model.create_qubits(2, num_levels=4)
    assert model.dims() == (4, 4)


def test_state_lifecycle(model):
    with pytest.raises(NotReady):
        model.create_state()
    with pytest.raises(NotReady):
        model.get_bitstring_probs()
    model.create_qubits(2)
    dm = model.create_density_matrix()
    assert dm.dims == (2, 2)
    assert dm.trace() == pytest.approx(1.0)
    assert model.get_bitstring_probs() == pytest.approx([1.0, 0.0, 0.0, 0.0])
    with pytest.raises(AlreadyInitialized):
        model.create_state()
    with pytest.raises(AlreadyInitialized):
        model.create_subsystem(2)


def test_set_initial_population(model):
    a = model.create_subsystem(3)
    q = model.create_subsystem(2)
    model.create_state()
    model.set_initial_population(a, 2)
    model.set_initial_population(q, 1)
    assert model.get_populations() == pytest.approx([2.0, 1.0])
    probs = model.get_bitstring_probs()
    assert probs[5] == pytest.approx(1.0)
    with pytest.raises(ValueError):
        model.set_initial_population(q, 2)


def test_destroy_releases_everything():
    m = SystemModel()
    (q,) = m.create_qubits(1)
    m.add_lindblad_emission(q, 0.1)
    dm = m.create_state()
    m.destroy()
    assert m.destroyed
    assert m.hamiltonian_terms == () and m.lindblad_terms == ()
    with pytest.raises(UseAfterFree):
        m.add_ham_num(0, 1.0)
    with pytest.raises(UseAfterFree):
        m.create_subsystem(2)
    with pytest.raises(UseAfterFree):
        _ = m.state
    with pytest.raises(UseAfterFree):
        _ = dm.data
    m.destroy()


def test_context_manager():
    with SystemModel(1) as m:
        m.create_qubits()
    assert m.destroyed


def test_compile_bundle_is_snapshot(model):
    (q,) = model.create_qubits(1)
    model.add_ham_num(q, 1.0)
    model.create_state()
    bundle = model.compile_bundle()
    model.add_lindblad_emission(q, 0.2)
    assert len(bundle.hamiltonian) == 1
    assert bundle.lindblad == ()
    assert bundle.revision < model.revision
    assert bundle.dims == (2,)
    np.testing.assert_allclose(bundle.rho0, np.diag([1.0, 0.0]))


def test_destroy_subsystem_after_state(model):
    a, b = model.create_qubits(2)
    model.create_state()
    with pytest.raises(InvalidState):
        model.destroy_subsystem(b)


def test_print_density_matrix(model, tmp_path, capsys):
    model.create_qubits(1)
    model.create_state()
    path = tmp_path / "rho.dat"
    model.print_density_matrix(str(path))
    data = np.loadtxt(path)
    assert data.shape == (2, 4)
    assert data[0, 0] == pytest.approx(1.0)
    model.print_density_matrix()
    assert "1." in capsys.readouterr().out


def test_repr(model):
    model.create_qubits(2)
    model.add_ham_cross_coupling(0, 1, 1.0)
    text = repr(model)
    assert "2 subsystems" in text
    assert "2 H / 0 L terms" in text
