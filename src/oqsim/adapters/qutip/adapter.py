from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np

from oqsim.core.sim.eval import collapse_weight, hamiltonian_at
from oqsim.core.sim.protocols import SolverEngineProto, StepHook
from oqsim.core.sim.types import CompiledTermDense, MEProblemDense, StepReport

logger = logging.getLogger(__name__)


@dataclass
class _Assembled:
    problem: MEProblemDense
    H: Any
    c_ops: List[Any]
    solver: Any


@dataclass
class _QuTiPState:
    rho: Optional[np.ndarray]
    time: float = 0.0
    freed: bool = False


@dataclass
class QuTiPEngine(SolverEngineProto):
    """
    QuTiP 5 engine.

    Conventions:
    - H terms: effective operator is coeff(t) * op, collected in one QobjEvo
    - L terms: coeff is the rate; collapse operator is sqrt(rate(t)) * op
    - stepping uses MESolver.start/step; the steady state uses
      qutip.steadystate, or eigenbasis dephasing when nothing dissipates
    """

    # Storage preferences (QuTiP 5 data layer), e.g. "csr", "dense" or None
    op_dtype: Optional[str] = "csr"
    rho_dtype: Optional[str] = None

    solver_options: Mapping[str, Any] = field(
        default_factory=lambda: {"atol": 1e-10, "rtol": 1e-8, "nsteps": 100000}
    )
    steady_method: str = "direct"
    degeneracy_atol: float = 1e-9

    @property
    def node_id(self) -> int:
        return 0

    @property
    def num_nodes(self) -> int:
        return 1

    def assemble(self, problem: MEProblemDense) -> _Assembled:
        import qutip as qt  # type: ignore

        H = self._build_hamiltonian(problem, qt)
        c_ops = self._build_collapse_ops(problem, qt)
        options: Dict[str, Any] = dict(self.solver_options)
        options.setdefault("store_states", False)
        options.setdefault("progress_bar", "")
        solver = qt.MESolver(H, c_ops=c_ops, options=options)
        logger.debug(
            "assembled QuTiP problem: dims=%s, %d H term(s), %d collapse op(s)",
            problem.dims,
            len(problem.h_terms),
            len(c_ops),
        )
        return _Assembled(problem=problem, H=H, c_ops=c_ops, solver=solver)

    def alloc_state(self, assembled: _Assembled, rho: np.ndarray) -> _QuTiPState:
        D = assembled.problem.D
        m = np.array(rho, dtype=complex)
        if m.shape != (D, D):
            raise ValueError(f"Expected rho shape {(D, D)}, got {m.shape}")
        return _QuTiPState(rho=m)

    def step(
        self,
        assembled: _Assembled,
        state: _QuTiPState,
        t0: float,
        t1: float,
        dt: float,
        max_steps: int,
        on_step: StepHook,
    ) -> StepReport:
        import qutip as qt  # type: ignore

        self._check(state)
        dims = list(assembled.problem.dims)
        solver = assembled.solver
        solver.start(self._toq(qt, state.rho, dims=dims, dtype=self.rho_dtype), float(t0))
        edges = tuple(float(b) for b in assembled.problem.meta.get("breakpoints", ()))

        taken = 0
        stopped = False
        t = float(t0)
        while taken < max_steps:
            t_next = float(t0) + (taken + 1) * float(dt)
            if t_next > float(t1) + 1e-12 * max(1.0, abs(float(t1))):
                break
            rho_q = self._advance(solver, t, t_next, edges)
            taken += 1
            t = t_next
            state.rho = np.asarray(rho_q.full(), dtype=complex)
            state.time = t
            if on_step(taken, t, state.rho):
                stopped = True
                break

        return StepReport(steps_taken=taken, time=t, stopped=stopped, meta={"backend": "qutip"})

    def _advance(self, solver: Any, t: float, t_next: float, edges: Sequence[float]) -> Any:
        """Integrate from t to t_next, restarting the integrator at every window edge crossed."""
        eps = 1e-12 * max(1.0, abs(t_next))
        for edge in edges:
            if t + eps < edge < t_next - eps:
                rho_q = solver.step(edge)
                solver.start(rho_q, edge)
        rho_q = solver.step(t_next)
        if any(abs(edge - t_next) <= eps for edge in edges):
            solver.start(rho_q, t_next)
        return rho_q

    def steady_state(self, assembled: _Assembled, state: _QuTiPState, *, time: float) -> _QuTiPState:
        import qutip as qt  # type: ignore

        self._check(state)
        problem = assembled.problem
        dims = list(problem.dims)
        H = hamiltonian_at(problem.h_terms, time, problem.D)
        c_ops = [
            self._toq(qt, w * np.asarray(term.op, dtype=complex), dims=dims, dtype=self.op_dtype)
            for term, w in ((term, collapse_weight(term, time)) for term in problem.c_terms)
            if w > 0.0
        ]

        if c_ops:
            rho_ss = qt.steadystate(
                self._toq(qt, H, dims=dims, dtype=self.op_dtype),
                c_ops,
                method=self.steady_method,
            )
            state.rho = np.asarray(rho_ss.full(), dtype=complex)
        else:
            state.rho = _dephase_in_eigenbasis(H, state.rho, atol=self.degeneracy_atol)
        state.time = float(time)
        return state

    def read_state(self, state: _QuTiPState) -> np.ndarray:
        self._check(state)
        assert state.rho is not None
        return state.rho

    def free_state(self, state: _QuTiPState) -> None:
        state.rho = None
        state.freed = True

    def _check(self, state: _QuTiPState) -> None:
        if state.freed or state.rho is None:
            raise RuntimeError("engine state was already freed")

    def _toq(
        self, qt: Any, mat: np.ndarray, *, dims: list[int], dtype: Optional[str]
    ) -> Any:
        q = qt.Qobj(mat, dims=[dims, dims])
        if dtype:
            q = q.to(dtype)
        return q

    def _build_hamiltonian(self, problem: MEProblemDense, qt: Any) -> Any:
        dims = list(problem.dims)
        D = problem.D

        H0 = np.zeros((D, D), dtype=complex)
        H_td = []

        for term in problem.h_terms:
            op = np.asarray(term.op, dtype=complex)
            if term.is_static:
                H0 += term.coeff_at(0.0) * op
            else:
                H_td.append([self._toq(qt, op, dims=dims, dtype=self.op_dtype), _coeff_func(term)])

        H0_q = self._toq(qt, H0, dims=dims, dtype=self.op_dtype)
        if H_td:
            return qt.QobjEvo([H0_q] + H_td)
        return H0_q

    def _build_collapse_ops(self, problem: MEProblemDense, qt: Any) -> List[Any]:
        dims = list(problem.dims)

        c_ops = []
        for term in problem.c_terms:
            op = np.asarray(term.op, dtype=complex)
            if term.is_static:
                w = collapse_weight(term, 0.0)
                if w == 0.0:
                    continue
                c_ops.append(self._toq(qt, w * op, dims=dims, dtype=self.op_dtype))
            else:
                c_ops.append(
                    qt.QobjEvo(
                        [[self._toq(qt, op, dims=dims, dtype=self.op_dtype), _collapse_func(term)]]
                    )
                )
        return c_ops


def _coeff_func(term: CompiledTermDense):
    def f(t: float, args: Any) -> complex:
        return term.coeff_at(float(t))

    return f


def _collapse_func(term: CompiledTermDense):
    def f(t: float, args: Any) -> complex:
        return complex(collapse_weight(term, float(t)))

    return f


def _eigenspaces(H: np.ndarray, *, atol: float) -> List[np.ndarray]:
    """Column blocks spanning the eigenspaces of a Hermitian H."""
    vals, vecs = np.linalg.eigh(0.5 * (H + H.conj().T))
    blocks: List[np.ndarray] = []
    start = 0
    for i in range(1, len(vals) + 1):
        if i == len(vals) or abs(vals[i] - vals[start]) > atol * max(1.0, abs(vals[start])):
            blocks.append(vecs[:, start:i])
            start = i
    return blocks


def _dephase_in_eigenbasis(H: np.ndarray, rho: np.ndarray, *, atol: float) -> np.ndarray:
    """sum_k P_k rho P_k over the eigenspace projectors of H."""
    out = np.zeros_like(rho, dtype=complex)
    for block in _eigenspaces(H, atol=atol):
        P = block @ block.conj().T
        out += P @ rho @ P
    return out
