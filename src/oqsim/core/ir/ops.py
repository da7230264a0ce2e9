from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, List, Sequence, Tuple, Union

from oqsim.errors import ForeignOperator, InvalidDimension, UseAfterFree


class OpRole(str, Enum):
    IDENTITY = "I"
    LOWER = "a"  # base operator of a subsystem
    RAISE = "a_dag"
    NUMBER = "n"


class Subsystem:
    """
    One finite-level degree of freedom owned by an OperatorRegistry.

    The subsystem owns its algebraic views; they are created lazily, cached,
    and released together with the subsystem.
    """

    def __init__(self, registry: "OperatorRegistry", levels: int) -> None:
        self.registry = registry
        self.levels = int(levels)
        self.destroyed = False
        self._views: Dict[OpRole, Operator] = {}

    @property
    def index(self) -> int:
        """Position in compiler ordering among live subsystems."""
        return self.registry.index_of(self)

    def view(self, role: OpRole) -> "Operator":
        if self.destroyed:
            raise UseAfterFree(f"subsystem with {self.levels} levels was destroyed")
        op = self._views.get(role)
        if op is None:
            op = Operator(self, role)
            self._views[role] = op
        return op

    def release(self) -> None:
        self.destroyed = True
        self._views.clear()

    def __repr__(self) -> str:
        state = "destroyed" if self.destroyed else f"index={self.index}"
        return f"<Subsystem levels={self.levels} {state}>"


@dataclass(frozen=True, eq=False)
class Operator:
    """
    Handle to one algebraic view of a subsystem.

    ``op.dag`` and ``op.n`` are paired views sharing the subsystem's lifetime,
    so ``op.dag.dag is op`` and ``op.n is op.n``.
    """

    subsystem: Subsystem
    role: OpRole

    @property
    def dag(self) -> "Operator":
        if self.role == OpRole.LOWER:
            return self.subsystem.view(OpRole.RAISE)
        if self.role == OpRole.RAISE:
            return self.subsystem.view(OpRole.LOWER)
        return self  # n and I are Hermitian

    @property
    def n(self) -> "Operator":
        return self.subsystem.view(OpRole.NUMBER)

    @property
    def eye(self) -> "Operator":
        return self.subsystem.view(OpRole.IDENTITY)

    @property
    def base(self) -> "Operator":
        return self.subsystem.view(OpRole.LOWER)

    @property
    def levels(self) -> int:
        return self.subsystem.levels

    @property
    def index(self) -> int:
        return self.subsystem.index

    @property
    def is_base(self) -> bool:
        return self.role == OpRole.LOWER

    def __repr__(self) -> str:
        if self.subsystem.destroyed:
            return f"<Operator {self.role.value} (destroyed)>"
        return f"<Operator {self.role.value}[{self.index}] levels={self.levels}>"


def raising_of(op: Operator) -> Operator:
    return op.base.dag


def number_of(op: Operator) -> Operator:
    return op.n


def identity_of(op: Operator) -> Operator:
    return op.eye


OperatorRef = Union[Operator, int]


class OperatorRegistry:
    """
    Creates and owns the subsystems of one model.

    Compiler ordering follows creation order; destroyed subsystems drop out
    of that ordering.
    """

    def __init__(self) -> None:
        self._subsystems: List[Subsystem] = []

    def create_subsystem(self, level_count: int) -> Operator:
        if isinstance(level_count, bool) or not isinstance(level_count, int):
            raise InvalidDimension(
                f"level_count must be an integer, got {level_count!r}"
            )
        if level_count < 2:
            raise InvalidDimension(f"level_count must be >= 2, got {level_count}")
        sub = Subsystem(self, level_count)
        self._subsystems.append(sub)
        return sub.view(OpRole.LOWER)

    def live(self) -> Tuple[Subsystem, ...]:
        return tuple(s for s in self._subsystems if not s.destroyed)

    def dims(self) -> Tuple[int, ...]:
        return tuple(s.levels for s in self.live())

    def index_of(self, sub: Subsystem) -> int:
        for i, s in enumerate(self.live()):
            if s is sub:
                return i
        raise UseAfterFree("subsystem is not live in this registry")

    def owns(self, op: Operator) -> bool:
        return op.subsystem.registry is self

    def resolve(self, ref: OperatorRef) -> Operator:
        """Map an Operator or a live subsystem index to a checked Operator."""
        if isinstance(ref, Operator):
            if not self.owns(ref):
                raise ForeignOperator(f"{ref!r} belongs to a different model")
            if ref.subsystem.destroyed:
                raise UseAfterFree("operator was used after its subsystem was destroyed")
            return ref
        if isinstance(ref, bool) or not isinstance(ref, int):
            raise TypeError(f"Expected Operator or int index, got {type(ref)!r}")
        live = self.live()
        if ref < 0 or ref >= len(live):
            raise IndexError(
                f"subsystem index {ref} is out of range for {len(live)} subsystem(s)"
            )
        return live[ref].view(OpRole.LOWER)

    def resolve_all(self, refs: Sequence[OperatorRef]) -> Tuple[Operator, ...]:
        return tuple(self.resolve(r) for r in refs)

    def release(self, sub: Subsystem) -> None:
        sub.release()

    def release_all(self) -> None:
        for s in self._subsystems:
            s.release()
        self._subsystems.clear()

    def __getitem__(self, index: int) -> Operator:
        return self.resolve(index)

    def __len__(self) -> int:
        return len(self.live())

    def __iter__(self) -> Iterator[Operator]:
        return iter([s.view(OpRole.LOWER) for s in self.live()])
