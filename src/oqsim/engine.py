from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Any, Callable, Optional

import numpy as np

from oqsim.core.sim.audit import AuditOptions, audit_problem_dense, summarize_audit
from oqsim.core.sim.compile import compile_to_dense
from oqsim.core.sim.protocols import SolverEngineProto
from oqsim.core.sim.types import DriverState, MEProblemDense, RunReport
from oqsim.core.state import DensityMatrix
from oqsim.errors import InvalidState, NotReady, ObserverFailed, SolverFailed

if TYPE_CHECKING:
    from oqsim.core.model.system import SystemModel

logger = logging.getLogger(__name__)

# observer(model, step, time); the model's density matrix is current
Observer = Callable[["SystemModel", int, float], Any]


def _default_engine() -> SolverEngineProto:
    # Late import to avoid core depending on QuTiP
    from oqsim.adapters.qutip.adapter import QuTiPEngine

    return QuTiPEngine()


def count_steps(start_time: float, end_time: float, dt: float, max_steps: Optional[int]) -> int:
    """min(floor((end - start) / dt), max_steps), tolerant to float round-off."""
    if not (dt > 0 and math.isfinite(dt)):
        raise ValueError(f"dt must be positive, got {dt}")
    span = float(end_time) - float(start_time)
    if span < 0:
        raise ValueError(f"end_time {end_time} is before start_time {start_time}")
    n = int(math.floor(span / dt + 1e-9))
    if max_steps is not None:
        if max_steps < 0:
            raise ValueError(f"max_steps must be non-negative, got {max_steps}")
        n = min(n, int(max_steps))
    return n


class EvolutionDriver:
    """
    Drives a model's density matrix through a solver engine.

    UNCONFIGURED -> ASSEMBLED on the first run/steady-state request,
    ASSEMBLED/COMPLETED -> RUNNING -> COMPLETED on success, FAILED on any
    engine or observer error. FAILED is terminal.
    """

    def __init__(
        self,
        model: "SystemModel",
        engine: Optional[SolverEngineProto] = None,
        *,
        observer: Optional[Observer] = None,
        audit: bool = False,
        audit_options: Optional[AuditOptions] = None,
    ) -> None:
        self.model = model
        self.engine = engine or _default_engine()
        self.observer = observer
        self.audit = audit
        self.audit_options = audit_options

        self.state = DriverState.UNCONFIGURED
        self.time = 0.0
        self.problem: Optional[MEProblemDense] = None
        self.last_audit: Optional[dict] = None
        self._assembled: Any = None
        self._engine_state: Any = None
        self._stop_requested = False
        self._runs = 0

    @property
    def node_id(self) -> int:
        return int(self.engine.node_id)

    @property
    def num_nodes(self) -> int:
        return int(self.engine.num_nodes)

    @property
    def has_started(self) -> bool:
        return self._runs > 0

    def set_observer(self, observer: Optional[Observer]) -> None:
        """Replace the observer; None removes it."""
        self.observer = observer

    def request_stop(self) -> None:
        """Ask the running evolution to stop after the current step."""
        self._stop_requested = True

    # ----------------------------
    # Assembly
    # ----------------------------

    def _density_matrix(self) -> DensityMatrix:
        if not self.model.has_state:
            raise NotReady("create the density matrix before evolving the model")
        return self.model.state

    def _needs_assembly(self) -> bool:
        return self.problem is None or self.problem.revision != self.model.revision

    def _assemble(self) -> None:
        dm = self._density_matrix()
        problem = compile_to_dense(bundle=self.model.compile_bundle())

        if self.audit:
            self.last_audit = audit_problem_dense(problem, options=self.audit_options)
            logger.debug("audit: %s", summarize_audit(self.last_audit))

        try:
            assembled = self.engine.assemble(problem)
            if self._engine_state is not None:
                self.engine.free_state(self._engine_state)
                self._engine_state = None
            engine_state = self.engine.alloc_state(assembled, dm.data)
        except Exception as e:
            self._fail()
            raise SolverFailed(f"engine failed to assemble the problem: {e}") from e

        self.problem = problem
        self._assembled = assembled
        self._engine_state = engine_state
        dm.engine_state = engine_state
        if self.state == DriverState.UNCONFIGURED:
            self.state = DriverState.ASSEMBLED
        logger.info(
            "assembled revision %d: dims=%s, %d H / %d L term(s)",
            problem.revision,
            problem.dims,
            len(problem.h_terms),
            len(problem.c_terms),
        )

    def _prepare(self) -> None:
        if self.state == DriverState.FAILED:
            raise InvalidState("the driver failed; create a new model to continue")
        if self.state == DriverState.RUNNING:
            raise InvalidState("the driver is already running")
        if self._needs_assembly():
            self._assemble()

    def _fail(self) -> None:
        self.state = DriverState.FAILED
        logger.info("driver entered FAILED")

    # ----------------------------
    # Requests
    # ----------------------------

    def run(
        self,
        end_time: float,
        dt: float = 1.0,
        start_time: Optional[float] = None,
        max_steps: Optional[int] = None,
    ) -> RunReport:
        """
        Integrate from ``start_time`` (default: the last reached time) toward
        ``end_time`` in steps of ``dt``, invoking the observer after each step.
        """
        t0 = self.time if start_time is None else float(start_time)
        n_steps = count_steps(t0, float(end_time), float(dt), max_steps)
        self._prepare()

        self._stop_requested = False
        self._runs += 1
        self.state = DriverState.RUNNING
        logger.info("run: t=%g -> %g, dt=%g, %d step(s)", t0, end_time, dt, n_steps)

        dm = self.model.state
        failure: list = []

        def on_step(step: int, time: float, rho: np.ndarray) -> bool:
            dm.update(np.array(rho, dtype=complex))
            self.time = float(time)
            logger.debug("step %d at t=%g", step, time)
            if self.observer is not None and self.node_id == 0:
                try:
                    self.observer(self.model, step, float(time))
                except Exception as e:
                    err = ObserverFailed(
                        f"observer raised at step {step}, t={time:g}: {e!r}", step=step, time=float(time)
                    )
                    err.__cause__ = e
                    failure.append(err)
                    logger.error("%s: %s", type(err).__name__, err)
                    return True
            return self._stop_requested

        try:
            report = self.engine.step(
                self._assembled, self._engine_state, t0, float(end_time), float(dt), n_steps, on_step
            )
        except Exception as e:
            self._fail()
            raise SolverFailed(f"engine failed while stepping: {e}") from e

        if failure:
            self._fail()
            raise failure[0]

        dm.update(np.array(self.engine.read_state(self._engine_state), dtype=complex))
        self.time = float(report.time)
        self.state = DriverState.COMPLETED
        stopped = bool(report.stopped or report.steps_taken < n_steps)
        logger.info(
            "run completed at t=%g after %d step(s)%s",
            self.time,
            report.steps_taken,
            " (stopped early)" if stopped else "",
        )
        return RunReport(
            start_time=t0,
            end_time=self.time,
            steps=int(report.steps_taken),
            stopped_early=stopped,
            state=self.state,
        )

    def steady_state(self) -> DensityMatrix:
        """Replace the model's density matrix with the steady state at the current time."""
        self._prepare()
        self._runs += 1
        self.state = DriverState.RUNNING
        dm = self.model.state
        try:
            self.engine.steady_state(self._assembled, self._engine_state, time=self.time)
            rho = self.engine.read_state(self._engine_state)
        except Exception as e:
            self._fail()
            raise SolverFailed(f"engine failed to find the steady state: {e}") from e
        dm.update(np.array(rho, dtype=complex))
        self.state = DriverState.COMPLETED
        logger.info("steady state reached at t=%g", self.time)
        return dm

    def release(self) -> None:
        """Free the engine-side state."""
        if self._engine_state is not None:
            self.engine.free_state(self._engine_state)
            self._engine_state = None
        self._assembled = None
        self.problem = None

    def __repr__(self) -> str:
        return f"<EvolutionDriver state={self.state.value} t={self.time:g} node {self.node_id}/{self.num_nodes}>"
