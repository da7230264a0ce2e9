from __future__ import annotations

from typing import Any, Dict, List, Optional

import numpy as np
import pytest

from oqsim import runtime
from oqsim.core.model.system import SystemModel
from oqsim.core.sim.types import MEProblemDense, StepReport


@pytest.fixture(autouse=True)
def oqsim_runtime():
    runtime.initialize()
    yield
    runtime.finalize()


@pytest.fixture
def model():
    m = SystemModel()
    yield m
    if not m.destroyed:
        m.destroy()


class FakeEngine:
    """
    Scripted engine: every step leaves rho unchanged, the steady state is the
    maximally mixed state. ``fail_on`` names the call that raises.
    """

    node_id = 0
    num_nodes = 1

    def __init__(self, *, fail_on: Optional[str] = None, fail_at_step: int = 1) -> None:
        self.fail_on = fail_on
        self.fail_at_step = fail_at_step
        self.assembled: List[MEProblemDense] = []
        self.step_calls: List[tuple] = []
        self.freed: List[Dict[str, Any]] = []

    def assemble(self, problem: MEProblemDense) -> MEProblemDense:
        if self.fail_on == "assemble":
            raise RuntimeError("singular operator")
        self.assembled.append(problem)
        return problem

    def alloc_state(self, assembled: MEProblemDense, rho: np.ndarray) -> Dict[str, Any]:
        return {"rho": np.array(rho, dtype=complex), "freed": False}

    def step(self, assembled, state, t0, t1, dt, max_steps, on_step) -> StepReport:
        self.step_calls.append((t0, t1, dt, max_steps))
        taken = 0
        t = t0
        while taken < max_steps:
            if self.fail_on == "step" and taken + 1 == self.fail_at_step:
                raise RuntimeError("integrator diverged")
            taken += 1
            t = t0 + taken * dt
            if on_step(taken, t, state["rho"]):
                return StepReport(steps_taken=taken, time=t, stopped=True)
        return StepReport(steps_taken=taken, time=t)

    def steady_state(self, assembled, state, *, time):
        if self.fail_on == "steady_state":
            raise RuntimeError("no convergence")
        D = state["rho"].shape[0]
        state["rho"] = np.eye(D, dtype=complex) / D
        return state

    def read_state(self, state) -> np.ndarray:
        return state["rho"]

    def free_state(self, state) -> None:
        state["freed"] = True
        self.freed.append(state)


@pytest.fixture
def fake_engine():
    return FakeEngine()
