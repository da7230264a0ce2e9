from __future__ import annotations

from typing import Any, Optional, Sequence, Tuple

import numpy as np

from oqsim.core.ir.materialize import basis_index, full_dimension
from oqsim.core.sim.populations import bitstring_probs, mean_populations
from oqsim.errors import UseAfterFree


class DensityMatrix:
    """
    Evolving-state handle of a model.

    ``data`` is the dense (D, D) matrix in kron ordering; ``engine_state`` is
    whatever the solver engine allocated for it (set at assembly).
    """

    def __init__(self, dims: Sequence[int], data: np.ndarray) -> None:
        self.dims: Tuple[int, ...] = tuple(int(d) for d in dims)
        D = full_dimension(self.dims)
        m = np.asarray(data, dtype=complex)
        if m.shape != (D, D):
            raise ValueError(f"Expected density matrix shape {(D, D)}, got {m.shape}")
        self._data = m.copy()
        self.engine_state: Optional[Any] = None
        self.released = False

    @classmethod
    def from_levels(cls, dims: Sequence[int], levels: Sequence[int]) -> "DensityMatrix":
        D = full_dimension(dims)
        rho = np.zeros((D, D), dtype=complex)
        i = basis_index(levels, dims)
        rho[i, i] = 1.0
        return cls(dims, rho)

    @classmethod
    def ground(cls, dims: Sequence[int]) -> "DensityMatrix":
        return cls.from_levels(dims, [0] * len(tuple(dims)))

    @property
    def data(self) -> np.ndarray:
        self._check()
        return self._data

    def update(self, data: np.ndarray) -> None:
        self._check()
        m = np.asarray(data, dtype=complex)
        if m.shape != self._data.shape:
            raise ValueError(f"Expected shape {self._data.shape}, got {m.shape}")
        self._data = m

    def probabilities(self) -> np.ndarray:
        return bitstring_probs(self.data)

    def populations(self) -> np.ndarray:
        return mean_populations(self.data, self.dims)

    def trace(self) -> complex:
        return complex(np.trace(self.data))

    def release(self) -> None:
        self.released = True
        self.engine_state = None

    def _check(self) -> None:
        if self.released:
            raise UseAfterFree("density matrix was released with its model")

    def __repr__(self) -> str:
        state = "released" if self.released else f"trace={self.trace().real:.6g}"
        return f"<DensityMatrix dims={self.dims} {state}>"
