from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from oqsim import runtime
from oqsim.core.circuits.protocols import GateRealizerProto
from oqsim.core.circuits.schedule import GateTimeline, apply_circuit
from oqsim.core.circuits.types import Circuit
from oqsim.core.ir.coeffs import ConstCoeff, Evaluator, TimeDependentCoeff, as_evaluator
from oqsim.core.ir.ops import Operator, OperatorRef, OperatorRegistry
from oqsim.core.ir.terms import Term, TermKind
from oqsim.core.model.protocols import CompileBundle
from oqsim.core.sim.types import DriverState
from oqsim.core.state import DensityMatrix
from oqsim.core.units import UnitSystem
from oqsim.errors import AlreadyInitialized, InvalidRate, InvalidState, NotReady, UseAfterFree

if TYPE_CHECKING:
    from oqsim.core.sim.audit import AuditOptions
    from oqsim.core.sim.protocols import SolverEngineProto
    from oqsim.core.sim.types import RunReport
    from oqsim.engine import EvolutionDriver, Observer

logger = logging.getLogger(__name__)

EvaluatorLike = Union[Evaluator, Callable[..., Any]]


class SystemModel:
    """
    An open quantum system under construction.

    The model owns its subsystems, the Hamiltonian and Lindblad term lists,
    the timeline of applied circuit gates and at most one density matrix.
    Subsystems can be passed to every composition method either as an
    ``Operator`` view or as an integer index.

    Every mutation of a term list bumps ``revision``; the evolution driver
    re-assembles the solver problem when it sees a new revision.
    """

    def __init__(
        self,
        num_qubits: int = 0,
        *,
        unit_system: Optional[UnitSystem] = None,
        ts_monitor: Optional["Observer"] = None,
    ) -> None:
        runtime.require_initialized()
        self.registry = OperatorRegistry()
        self.timeline = GateTimeline()
        self.unit_system = unit_system
        self.num_qubits = int(num_qubits)

        self._h_terms: List[Term] = []
        self._l_terms: List[Term] = []
        self._state: Optional[DensityMatrix] = None
        self._initial_levels: Optional[List[int]] = None
        self._qubits_created = False
        self._driver: Optional["EvolutionDriver"] = None
        self._pending_monitor = ts_monitor
        self.revision = 0
        self.destroyed = False

        runtime.register_model(self)

    # ----------------------------
    # Lifecycle
    # ----------------------------

    def destroy(self) -> None:
        """Release terms, the density matrix, evaluator contexts and subsystems."""
        if self.destroyed:
            return
        if self._driver is not None:
            self._driver.release()
            self._driver = None
        if self._state is not None:
            self._state.release()
            self._state = None
        self._h_terms.clear()
        self._l_terms.clear()
        self.timeline.clear()
        self.registry.release_all()
        self._pending_monitor = None
        self.destroyed = True
        runtime.unregister_model(self)
        logger.debug("model destroyed")

    def __enter__(self) -> "SystemModel":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.destroy()

    def _check_alive(self) -> None:
        if self.destroyed:
            raise UseAfterFree("model was destroyed")

    def _check_mutable(self) -> None:
        self._check_alive()
        if self._driver is not None and self._driver.state == DriverState.FAILED:
            raise InvalidState("the driver failed; destroy this model and create a new one")

    def _touch(self) -> None:
        self.revision += 1

    # ----------------------------
    # Operator registry
    # ----------------------------

    def create_subsystem(self, level_count: int) -> Operator:
        self._check_mutable()
        if self._state is not None:
            raise AlreadyInitialized("cannot add subsystems after the density matrix was created")
        op = self.registry.create_subsystem(level_count)
        self._touch()
        return op

    def create_qubits(self, num_qubits: Optional[int] = None, num_levels: int = 2) -> Tuple[Operator, ...]:
        """Create ``num_qubits`` subsystems (default: the constructor's count)."""
        self._check_mutable()
        if self._qubits_created:
            raise AlreadyInitialized("qubits for this model have already been created")
        n = self.num_qubits if num_qubits is None else int(num_qubits)
        ops = tuple(self.create_subsystem(num_levels) for _ in range(n))
        self.num_qubits = n
        self._qubits_created = True
        return ops

    def destroy_subsystem(self, op: Operator) -> None:
        """
        Release a subsystem.

        Fails with UseAfterFree while any term still references it, and once
        the density matrix exists the subsystem layout is fixed.
        """
        self._check_mutable()
        op = self.registry.resolve(op)
        if not op.is_base:
            raise ValueError("only the base operator of a subsystem can be destroyed")
        if any(t.references(op.subsystem) for t in self._h_terms + self._l_terms):
            raise UseAfterFree("subsystem is still referenced by a term of this model")
        if self._state is not None:
            raise InvalidState("cannot destroy a subsystem after the density matrix was created")
        self.registry.release(op.subsystem)
        self._touch()

    @property
    def subsystems(self) -> Tuple[Operator, ...]:
        return tuple(self.registry)

    def dims(self) -> Tuple[int, ...]:
        return self.registry.dims()

    def op(self, ref: OperatorRef) -> Operator:
        self._check_alive()
        return self.registry.resolve(ref)

    # ----------------------------
    # Term algebra
    # ----------------------------

    def _ops(self, refs: Sequence[OperatorRef]) -> Tuple[Operator, ...]:
        if len(refs) not in (1, 2):
            raise ValueError(f"a term is a product of 1 or 2 operators, got {len(refs)}")
        return self.registry.resolve_all(refs)

    def _append(self, term: Term) -> Term:
        if term.kind == TermKind.H:
            self._h_terms.append(term)
        else:
            self._l_terms.append(term)
        self._touch()
        logger.debug("added %s term %r on %s", term.kind.value, term.label, term.ops)
        return term

    def _coupling(self, value: Any) -> complex:
        if self.unit_system is not None:
            if isinstance(value, complex):
                return value
            return complex(self.unit_system.coupling_to_solver(value))
        return complex(value)

    def _rate(self, value: Any) -> float:
        if isinstance(value, (complex, np.complexfloating)):
            if value.imag != 0:
                raise InvalidRate(f"Lindblad rate must be real, got {value!r}")
            value = value.real
        rate =self.unit_system.rate_to_solver(value) if self.unit_system else float(value)
        if not np.isfinite(rate) or rate < 0:
            raise InvalidRate(f"Lindblad rate must be a non-negative number, got {value!r}")
        return float(rate)

    def _time(self, value: Any) -> float:
        return self.unit_system.t_to_solver(value) if self.unit_system else float(value)

    def add_hamiltonian_term(
        self,
        coefficient: Any,
        *ops: OperatorRef,
        label: str = "",
        meta: Optional[Mapping[str, Any]] = None,
    ) -> Term:
        self._check_mutable()
        term = Term(
            kind=TermKind.H,
            ops=self._ops(ops),
            coeff=ConstCoeff(self._coupling(coefficient)),
            label=label,
            meta=dict(meta or {}),
        )
        return self._append(term)

    def add_hamiltonian_term_time_dependent(
        self,
        base_coefficient: Any,
        evaluator: EvaluatorLike,
        *ops: OperatorRef,
        context: Any = None,
        label: str = "",
        meta: Optional[Mapping[str, Any]] = None,
    ) -> Term:
        """
        Append ``base_coefficient * evaluator(t) * ops``.

        ``evaluator`` is an Evaluator or a callable; a callable is invoked as
        ``fn(t, context)`` when a context is given and ``fn(t)`` otherwise.
        The model keeps the context alive until it is destroyed.
        """
        self._check_mutable()
        term = Term(
            kind=TermKind.H,
            ops=self._ops(ops),
            coeff=TimeDependentCoeff(self._coupling(base_coefficient), as_evaluator(evaluator, context)),
            label=label,
            meta=dict(meta or {}),
        )
        return self._append(term)

    def add_lindblad_term(
        self,
        rate: Any,
        *ops: OperatorRef,
        label: str = "",
        meta: Optional[Mapping[str, Any]] = None,
    ) -> Term:
        """Append a dissipator with rate ``rate >= 0`` (InvalidRate otherwise)."""
        self._check_mutable()
        term = Term(
            kind=TermKind.L,
            ops=self._ops(ops),
            coeff=ConstCoeff(self._rate(rate)),
            label=label,
            meta=dict(meta or {}),
        )
        return self._append(term)

    def add_lindblad_term_time_dependent(
        self,
        base_rate: Any,
        evaluator: EvaluatorLike,
        *ops: OperatorRef,
        context: Any = None,
        label: str = "",
        meta: Optional[Mapping[str, Any]] = None,
    ) -> Term:
        """The evaluator must return non-negative real weights."""
        self._check_mutable()
        term = Term(
            kind=TermKind.L,
            ops=self._ops(ops),
            coeff=TimeDependentCoeff(self._rate(base_rate), as_evaluator(evaluator, context)),
            label=label,
            meta=dict(meta or {}),
        )
        return self._append(term)

    # Composite terms; each is a fixed decomposition into the primitives above.

    def add_lindblad_emission(self, qubit: OperatorRef, gamma_1: Any) -> Term:
        return self.add_lindblad_term(gamma_1, self.op(qubit), label="emission")

    def add_lindblad_dephasing(self, qubit: OperatorRef, gamma_2: Any) -> Term:
        return self.add_lindblad_term(gamma_2, self.op(qubit).n, label="dephasing")

    def add_lindblad_thermal_coupling(
        self, qubit: OperatorRef, therm_1: Any, n_therm: float = 0.5
    ) -> Tuple[Term, Term]:
        q = self.op(qubit)
        rate = self._rate(therm_1)
        n_therm = float(n_therm)
        return (
            self.add_lindblad_term(rate * (n_therm + 1), q, label="thermal_down"),
            self.add_lindblad_term(rate * n_therm, q.dag, label="thermal_up"),
        )

    def add_lindblad_cross_coupling(
        self, qubit1: OperatorRef, qubit2: OperatorRef, coup_1: Any
    ) -> Tuple[Term, Term]:
        q1, q2 = self.op(qubit1), self.op(qubit2)
        rate = self._rate(coup_1)
        return (
            self.add_lindblad_term(rate, q1.dag, q2, label="cross_coupling"),
            self.add_lindblad_term(rate, q1, q2.dag, label="cross_coupling"),
        )

    def add_ham_num(self, qubit: OperatorRef, coeff: Any) -> Term:
        return self.add_hamiltonian_term(coeff, self.op(qubit).n, label="num")

    def add_ham_cross_coupling(
        self, qubit1: OperatorRef, qubit2: OperatorRef, coup_1: Any
    ) -> Tuple[Term, Term]:
        q1, q2 = self.op(qubit1), self.op(qubit2)
        c = self._coupling(coup_1)
        return (
            self.add_hamiltonian_term(c, q1.dag, q2, label="cross_coupling"),
            self.add_hamiltonian_term(c, q1, q2.dag, label="cross_coupling"),
        )

    def add_ham_num_time_dep(self, qubit: OperatorRef, coeff: EvaluatorLike) -> Term:
        return self.add_hamiltonian_term_time_dependent(
            1.0, coeff, self.op(qubit).n, label="num_time_dep"
        )

    def add_ham_cross_coupling_time_dep(
        self, qubit1: OperatorRef, qubit2: OperatorRef, coup_1: EvaluatorLike
    ) -> Tuple[Term, Term]:
        q1, q2 = self.op(qubit1), self.op(qubit2)
        evaluator = as_evaluator(coup_1)
        return (
            self.add_hamiltonian_term_time_dependent(
                1.0, evaluator, q1.dag, q2, label="cross_coupling_time_dep"
            ),
            self.add_hamiltonian_term_time_dependent(
                1.0, evaluator, q1, q2.dag, label="cross_coupling_time_dep"
            ),
        )

    @property
    def hamiltonian_terms(self) -> Tuple[Term, ...]:
        return tuple(self._h_terms)

    @property
    def lindblad_terms(self) -> Tuple[Term, ...]:
        return tuple(self._l_terms)

    # ----------------------------
    # Circuits
    # ----------------------------

    def start_circuit_at(
        self,
        circuit: Circuit,
        time: Any = 0.0,
        realizer: Optional[GateRealizerProto] = None,
    ) -> int:
        """Schedule ``circuit`` to start at ``time``; returns the number of injected terms."""
        self._check_mutable()
        if not isinstance(circuit, Circuit):
            raise TypeError(f"Expected Circuit, got {type(circuit)!r}")
        return apply_circuit(self, circuit, self._time(time), realizer)

    # ----------------------------
    # State
    # ----------------------------

    def create_state(self) -> DensityMatrix:
        """Create the density matrix with every subsystem in level 0."""
        self._check_mutable()
        if self._state is not None:
            raise AlreadyInitialized("the density matrix for this model has already been created")
        dims = self.dims()
        if not dims:
            raise NotReady("create subsystems before creating the density matrix")
        self._initial_levels = [0] * len(dims)
        self._state = DensityMatrix.ground(dims)
        return self._state

    create_density_matrix = create_state

    def set_initial_population(self, qubit: OperatorRef, level: int) -> DensityMatrix:
        """Put one subsystem in Fock level ``level`` before evolution starts."""
        self._check_mutable()
        state = self.state
        q = self.op(qubit)
        if self._driver is not None and self._driver.has_started:
            raise InvalidState("initial populations can only be set before evolution")
        if level < 0 or level >= q.levels:
            raise ValueError(f"level {level} out of range for {q.levels} levels")
        assert self._initial_levels is not None
        self._initial_levels[q.index] = int(level)
        state.update(DensityMatrix.from_levels(state.dims, self._initial_levels).data)
        return state

    @property
    def state(self) -> DensityMatrix:
        self._check_alive()
        if self._state is None:
            raise NotReady("the density matrix for this model has not been created")
        return self._state

    @property
    def has_state(self) -> bool:
        return self._state is not None

    def get_bitstring_probs(self) -> List[float]:
        return [float(p) for p in self.state.probabilities()]

    def get_populations(self) -> List[float]:
        return [float(p) for p in self.state.populations()]

    def print_density_matrix(self, filename: Optional[str] = None) -> None:
        data = self.state.data
        if filename:
            np.savetxt(filename, data.view(float).reshape(data.shape[0], -1))
        else:
            with np.printoptions(precision=6, suppress=True):
                print(data)

    def compile_bundle(self) -> CompileBundle:
        """Frozen snapshot of everything the compile stage needs."""
        return CompileBundle(
            dims=self.dims(),
            hamiltonian=self.hamiltonian_terms,
            lindblad=self.lindblad_terms,
            rho0=self.state.data.copy(),
            revision=self.revision,
            meta={
                "num_subsystems": len(self.registry),
                "breakpoints": self.timeline.breakpoints(),
            },
        )

    # ----------------------------
    # Evolution
    # ----------------------------

    def driver(
        self,
        engine: Optional["SolverEngineProto"] = None,
        *,
        audit: bool = False,
        audit_options: Optional["AuditOptions"] = None,
    ) -> "EvolutionDriver":
        """The model's evolution driver, created on first use."""
        self._check_alive()
        if self._driver is None:
            from oqsim.engine import EvolutionDriver

            self._driver = EvolutionDriver(
                self,
                engine=engine,
                observer=self._pending_monitor,
                audit=audit,
                audit_options=audit_options,
            )
        elif engine is not None and engine is not self._driver.engine:
            raise AlreadyInitialized("this model already has a driver with a different engine")
        return self._driver

    @property
    def ts_monitor(self) -> Optional["Observer"]:
        if self._driver is not None:
            return self._driver.observer
        return self._pending_monitor

    @ts_monitor.setter
    def ts_monitor(self, observer: Optional["Observer"]) -> None:
        self._pending_monitor = observer
        if self._driver is not None:
            self._driver.set_observer(observer)

    def run(
        self,
        end_time: Any,
        dt: Any = 1.0,
        start_time: Any = None,
        max_steps: Optional[int] = None,
    ) -> "RunReport":
        return self.driver().run(
            self._time(end_time),
            dt=self._time(dt),
            start_time=None if start_time is None else self._time(start_time),
            max_steps=max_steps,
        )

    def steady_state(self) -> DensityMatrix:
        return self.driver().steady_state()

    def __repr__(self) -> str:
        if self.destroyed:
            return "<SystemModel (destroyed)>"
        driver = self._driver
        node = f"node {driver.node_id} of {driver.num_nodes}" if driver else "no driver"
        return (
            f"<SystemModel{{{len(self.registry)} subsystems; dims={self.dims()}; "
            f"{len(self._h_terms)} H / {len(self._l_terms)} L terms; {node}}}>"
        )
