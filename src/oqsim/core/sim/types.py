from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional, Tuple

import numpy as np


class DriverState(str, Enum):
    UNCONFIGURED = "unconfigured"
    ASSEMBLED = "assembled"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class CompiledTermDense:
    """
    Dense compiled term.

    op: (D, D) complex product of the term's operators
    coeff: coeff object (``at``/``eval``) OR None means constant 1
    """

    op: np.ndarray
    coeff: Optional[Any] = None
    label: str = ""
    meta: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_static(self) -> bool:
        return self.coeff is None or bool(getattr(self.coeff, "is_static", False))

    def coeff_at(self, t: float) -> complex:
        if self.coeff is None:
            return 1.0 + 0.0j
        return complex(self.coeff.at(float(t)))


@dataclass(frozen=True)
class MEProblemDense:
    """
    Dense Lindblad problem in solver units.

    c_terms carry the dissipation rate as coefficient; the collapse operator
    is sqrt(rate(t)) * op.
    """

    dims: Tuple[int, ...]

    h_terms: Tuple[CompiledTermDense, ...] = ()
    c_terms: Tuple[CompiledTermDense, ...] = ()

    rho0: Optional[np.ndarray] = None
    revision: int = 0
    meta: Mapping[str, Any] = field(default_factory=dict)

    @property
    def D(self) -> int:
        d = 1
        for x in self.dims:
            d *= int(x)
        return d


@dataclass(frozen=True)
class StepReport:
    """What the engine did during one ``step`` call."""

    steps_taken: int
    time: float
    stopped: bool = False
    meta: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RunReport:
    start_time: float
    end_time: float
    steps: int
    stopped_early: bool = False
    state: DriverState = DriverState.COMPLETED
