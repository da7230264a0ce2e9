from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Tuple

import numpy as np

from oqsim.core.ir.terms import Term


@dataclass(frozen=True)
class CompileBundle:
    """Snapshot of a model handed to the compile stage."""

    dims: Tuple[int, ...]
    hamiltonian: Tuple[Term, ...]
    lindblad: Tuple[Term, ...] = ()
    rho0: Optional[np.ndarray] = None

    # model revision the snapshot was taken at
    revision: int = 0
    meta: Mapping[str, Any] = field(default_factory=dict)
