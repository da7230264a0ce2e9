from __future__ import annotations

import math
from typing import Sequence

import numpy as np

from oqsim.core.ir.coeffs import eval_coeff_any
from oqsim.core.sim.types import CompiledTermDense


def eval_coeff(term: CompiledTermDense, tlist: np.ndarray) -> np.ndarray:
    return eval_coeff_any(term.coeff, np.asarray(tlist, dtype=float))


def effective_op_at(term: CompiledTermDense, t: float) -> np.ndarray:
    return term.coeff_at(t) * np.asarray(term.op, dtype=complex)


def hamiltonian_at(terms: Sequence[CompiledTermDense], t: float, D: int) -> np.ndarray:
    """Sum of every H term at time t as a dense (D, D) matrix."""
    out = np.zeros((D, D), dtype=complex)
    for term in terms:
        out += effective_op_at(term, t)
    return out


def collapse_weight(term: CompiledTermDense, t: float) -> float:
    """sqrt of the dissipation rate at time t; negative weights clip to 0."""
    rate = term.coeff_at(t).real
    return math.sqrt(rate) if rate > 0 else 0.0
