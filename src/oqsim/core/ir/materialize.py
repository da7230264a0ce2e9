from __future__ import annotations

from typing import Sequence

import numpy as np

from oqsim.core.ir.ops import Operator, OpRole


def _prod_int(xs: Sequence[int]) -> int:
    out = 1
    for x in xs:
        out *= int(x)
    return out


def _kron_all(mats: Sequence[np.ndarray]) -> np.ndarray:
    out = np.asarray(mats[0], dtype=complex)
    for m in mats[1:]:
        out = np.kron(out, np.asarray(m, dtype=complex))
    return out


def local_matrix(role: OpRole, levels: int) -> np.ndarray:
    """
    Local (levels, levels) matrix of an operator role.

    Basis |0>, |1>, ... ; LOWER is the truncated annihilation operator.
    """
    d = int(levels)
    if role == OpRole.IDENTITY:
        return np.eye(d, dtype=complex)
    if role == OpRole.LOWER:
        return np.diag(np.sqrt(np.arange(1, d, dtype=float)), k=1).astype(complex)
    if role == OpRole.RAISE:
        return np.diag(np.sqrt(np.arange(1, d, dtype=float)), k=-1).astype(complex)
    if role == OpRole.NUMBER:
        return np.diag(np.arange(d, dtype=float)).astype(complex)
    raise ValueError(f"Unknown OpRole: {role}")


def embed_local(local: np.ndarray, index: int, dims: Sequence[int]) -> np.ndarray:
    """
    Place a local operator on mode ``index``, identity elsewhere.

    Convention: full space ordering follows dims order, kron(mode0, mode1, ...).
    """
    n = len(dims)
    if index < 0 or index >= n:
        raise IndexError(f"mode index out of range: {index} for n={n}")
    mat = np.asarray(local, dtype=complex)
    dim = int(dims[index])
    if mat.shape != (dim, dim):
        raise ValueError(f"Local op expected shape {(dim, dim)}, got {mat.shape}")

    mats = []
    for mode_index, d in enumerate(dims):
        if mode_index == index:
            mats.append(mat)
        else:
            mats.append(np.eye(int(d), dtype=complex))
    return _kron_all(mats)


def materialize_operator(op: Operator, dims: Sequence[int]) -> np.ndarray:
    return embed_local(local_matrix(op.role, op.levels), op.index, dims)


def materialize_product(ops: Sequence[Operator], dims: Sequence[int]) -> np.ndarray:
    """Dense (D, D) matrix of ``ops[0] @ ops[1] @ ...`` in the full space."""
    if not ops:
        raise ValueError("operator product requires at least one operator")
    out = materialize_operator(ops[0], dims)
    for op in ops[1:]:
        out = out @ materialize_operator(op, dims)
    return out


def basis_index(levels: Sequence[int], dims: Sequence[int]) -> int:
    """Flat index of the product basis state |levels[0], levels[1], ...>."""
    if len(levels) != len(dims):
        raise ValueError(f"Expected {len(dims)} levels, got {len(levels)}")
    idx = 0
    for lv, d in zip(levels, dims):
        if lv < 0 or lv >= d:
            raise ValueError(f"level {lv} out of range for dimension {d}")
        idx = idx * int(d) + int(lv)
    return idx


def full_dimension(dims: Sequence[int]) -> int:
    return _prod_int(dims)
