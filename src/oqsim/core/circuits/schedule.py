from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, FrozenSet, List, Optional, Tuple

import numpy as np

from oqsim.core.circuits.protocols import GateRealizerProto
from oqsim.core.circuits.realize import RectangularPulseRealizer
from oqsim.core.circuits.types import Circuit, Gate
from oqsim.core.ir.ops import Subsystem
from oqsim.core.ir.terms import TermKind
from oqsim.errors import InvalidGate

if TYPE_CHECKING:
    from oqsim.core.model.system import SystemModel

logger = logging.getLogger(__name__)


@dataclass
class ScheduledGate:
    slot: int
    gate: Gate
    subsystems: FrozenSet[int]  # id() of the target Subsystem objects
    t_on: float
    t_off: float
    # Windows of later gates on a shared subsystem; they take precedence.
    overridden_by: List[Tuple[float, float]] = field(default_factory=list)

    def in_window(self, t: float) -> bool:
        return self.t_on <= t < self.t_off


class GateTimeline:
    """
    Model-wide record of scheduled gates in scheduling order.

    A gate is active at t when t lies in its window and no gate scheduled
    after it on a shared subsystem is also in its window at t.
    """

    def __init__(self) -> None:
        self._slots: List[ScheduledGate] = []

    def add(
        self, gate: Gate, subsystems: Tuple[Subsystem, ...], t_on: float, t_off: float
    ) -> ScheduledGate:
        keys = frozenset(id(s) for s in subsystems)
        entry = ScheduledGate(
            slot=len(self._slots), gate=gate, subsystems=keys, t_on=t_on, t_off=t_off
        )
        for prev in self._slots:
            if prev.subsystems & keys and prev.t_on < t_off and t_on < prev.t_off:
                prev.overridden_by.append((t_on, t_off))
                logger.debug(
                    "gate %s (slot %d) overrides slot %d on [%g, %g)",
                    gate.gate_type.value,
                    entry.slot,
                    prev.slot,
                    max(t_on, prev.t_on),
                    min(t_off, prev.t_off),
                )
        self._slots.append(entry)
        return entry

    def is_active(self, slot: int, t: float) -> bool:
        entry = self._slots[slot]
        if not entry.in_window(t):
            return False
        return not any(a <= t < b for a, b in entry.overridden_by)

    def breakpoints(self) -> Tuple[float, ...]:
        """Sorted window edges; every gate coefficient is constant between two of them."""
        return tuple(sorted({t for e in self._slots for t in (e.t_on, e.t_off)}))

    @property
    def entries(self) -> Tuple[ScheduledGate, ...]:
        return tuple(self._slots)

    def clear(self) -> None:
        self._slots.clear()

    def __len__(self) -> int:
        return len(self._slots)


@dataclass(frozen=True)
class GateWindow:
    """Evaluator that is 1 while its gate is active on the timeline, else 0."""

    timeline: GateTimeline
    slot: int

    def evaluate(self, time: float) -> complex:
        return 1.0 + 0.0j if self.timeline.is_active(self.slot, float(time)) else 0.0j

    def eval(self, tlist: np.ndarray) -> np.ndarray:
        return np.array([self.evaluate(t) for t in tlist], dtype=complex)


def apply_circuit(
    model: "SystemModel",
    circuit: Circuit,
    start_time: float = 0.0,
    realizer: Optional[GateRealizerProto] = None,
) -> int:
    """
    Expand every gate of ``circuit`` into windowed terms injected into ``model``.

    Gates are processed in insertion order; the activation time of a gate is
    start_time + circuit.start_time + gate.time. Returns the number of terms
    injected.
    """
    realizer = realizer or RectangularPulseRealizer()
    gates = circuit.gates
    n_sub = len(model.registry)

    # Validate and realize the whole circuit first so a bad gate injects nothing.
    for gate in gates:
        for q in gate.targets:
            if q >= n_sub:
                raise InvalidGate(
                    f"{gate.gate_type.value} targets qubit {q} but the model has "
                    f"{n_sub} subsystem(s)"
                )

    realized = []
    for gate in gates:
        targets = tuple(model.registry[q] for q in gate.targets)
        realized.append((gate, targets, tuple(realizer.realize(gate, targets))))

    injected = 0
    for gate, targets, specs in realized:
        t_on = float(start_time) + circuit.start_time + gate.time
        t_off = t_on + float(realizer.duration(gate))
        entry = model.timeline.add(gate, tuple(op.subsystem for op in targets), t_on, t_off)
        window = GateWindow(model.timeline, entry.slot)

        for spec in specs:
            meta = {"gate": gate.gate_type.value, "slot": entry.slot, "t_on": t_on, "t_off": t_off}
            meta.update(dict(spec.meta))
            if spec.kind == TermKind.H:
                model.add_hamiltonian_term_time_dependent(
                    spec.coeff, window, *spec.ops, label=spec.label, meta=meta
                )
            else:
                model.add_lindblad_term_time_dependent(
                    spec.coeff, window, *spec.ops, label=spec.label, meta=meta
                )
            injected += 1

    logger.info(
        "applied %r at t=%g: %d gate(s), %d term(s)", circuit, start_time, len(gates), injected
    )
    return injected
