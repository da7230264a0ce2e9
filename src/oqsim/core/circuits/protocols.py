from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, Sequence, Tuple, runtime_checkable

from oqsim.core.circuits.types import Gate
from oqsim.core.ir.ops import Operator
from oqsim.core.ir.terms import TermKind


@dataclass(frozen=True)
class GateTermSpec:
    """
    One term realizing (part of) a gate.

    The scheduler multiplies ``coeff`` by the gate's activation window and
    injects the result into the model as a time-dependent term.
    """

    coeff: complex
    ops: Tuple[Operator, ...]
    kind: TermKind = TermKind.H
    label: str = ""
    meta: Mapping[str, Any] = field(default_factory=dict)


@runtime_checkable
class GateRealizerProto(Protocol):
    """
    Turns a gate into windowed operator terms.

    The pulse shape is the realizer's choice; the scheduler only supplies the
    activation window and the operators of the target subsystems.
    """

    def duration(self, gate: Gate) -> float: ...

    def realize(
        self, gate: Gate, targets: Sequence[Operator]
    ) -> Sequence[GateTermSpec]: ...
