from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Sequence, Tuple

from oqsim.core.ir.coeffs import CoeffProto
from oqsim.core.ir.ops import Operator, Subsystem


class TermKind(str, Enum):
    H = "H"  # Hamiltonian
    L = "L"  # Lindblad dissipator


@dataclass(frozen=True)
class Term:
    """
    Unitless IR term: ``coeff * ops[0] @ ops[1] ...``.

    - ops holds 1 or 2 operator views of the owning model
    - coeff is a ConstCoeff (static) or TimeDependentCoeff
    - for L terms the coefficient is the dissipation rate; the collapse
      operator handed to the solver is sqrt(rate) * product

    All numeric values are already in solver units.
    """

    kind: TermKind
    ops: Tuple[Operator, ...]
    coeff: CoeffProto

    label: str = ""
    tags: Sequence[str] = field(default_factory=tuple)
    meta: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_static(self) -> bool:
        return bool(self.coeff.is_static)

    def references(self, sub: Subsystem) -> bool:
        return any(op.subsystem is sub for op in self.ops)
