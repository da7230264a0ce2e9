from __future__ import annotations

from typing import Any, Callable, Optional, Protocol, runtime_checkable

import numpy as np

from oqsim.core.sim.types import MEProblemDense, StepReport

# on_step(step, time, rho) -> True to request a stop after this step
StepHook = Callable[[int, float, np.ndarray], Optional[bool]]


@runtime_checkable
class SolverEngineProto(Protocol):
    """
    Backend that integrates an assembled problem.

    ``assemble`` returns an opaque handle; ``alloc_state`` returns an opaque
    engine-side state. The engine invokes ``on_step`` once per accepted step,
    on node 0 only when it runs distributed.
    """

    @property
    def node_id(self) -> int: ...

    @property
    def num_nodes(self) -> int: ...

    def assemble(self, problem: MEProblemDense) -> Any: ...

    def alloc_state(self, assembled: Any, rho: np.ndarray) -> Any: ...

    def step(
        self,
        assembled: Any,
        state: Any,
        t0: float,
        t1: float,
        dt: float,
        max_steps: int,
        on_step: StepHook,
    ) -> StepReport: ...

    def steady_state(self, assembled: Any, state: Any, *, time: float) -> Any: ...

    def read_state(self, state: Any) -> np.ndarray: ...

    def free_state(self, state: Any) -> None: ...
