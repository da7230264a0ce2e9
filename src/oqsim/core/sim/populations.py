from __future__ import annotations

from typing import Sequence

import numpy as np


def bitstring_probs(rho: np.ndarray) -> np.ndarray:
    """
    Probabilities of the computational basis states, in kron ordering.

    Small negative diagonal entries from integration error are clipped and the
    result is renormalised so it sums to 1.
    """
    m = np.asarray(rho, dtype=complex)
    if m.ndim != 2 or m.shape[0] != m.shape[1]:
        raise ValueError(f"Expected a square density matrix, got shape {m.shape}")
    p = np.clip(np.real(np.diag(m)), 0.0, None)
    total = float(np.sum(p))
    if total <= 0.0:
        raise ValueError("Density matrix has no positive population")
    return p / total


def mean_populations(rho: np.ndarray, dims: Sequence[int]) -> np.ndarray:
    """Expected occupation <n_k> of every subsystem k."""
    dims_t = tuple(int(d) for d in dims)
    p = bitstring_probs(rho).reshape(dims_t)
    out = np.empty(len(dims_t), dtype=float)
    for k, d in enumerate(dims_t):
        axes = tuple(i for i in range(len(dims_t)) if i != k)
        marginal = np.sum(p, axis=axes) if axes else p
        out[k] = float(np.dot(np.arange(d, dtype=float), marginal))
    return out
