from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence, Tuple

import numpy as np

from oqsim.core.sim.eval import eval_coeff
from oqsim.core.sim.types import CompiledTermDense, MEProblemDense


@dataclass(frozen=True)
class AuditOptions:
    max_terms: int = 200
    top_entries: int = 6
    check_shapes: bool = True
    check_hermitian_H: bool = True
    hermitian_atol: float = 1e-10
    check_rho0: bool = True
    rho0_atol: float = 1e-8
    coeff_stats: bool = True
    coeff_area: bool = True


def _top_abs_entries(
    mat: np.ndarray, k: int
) -> Sequence[Tuple[float, Tuple[int, int], complex]]:
    m = np.asarray(mat)
    a = np.abs(m).ravel()
    if a.size == 0:
        return []
    k = min(int(k), int(a.size))
    idx = np.argpartition(a, -k)[-k:]
    idx = idx[np.argsort(a[idx])[::-1]]
    out = []
    n = m.shape[1]
    for flat in idx:
        i = int(flat // n)
        j = int(flat % n)
        out.append((float(abs(m[i, j])), (i, j), complex(m[i, j])))
    return out


def _fro_norm(mat: np.ndarray) -> float:
    return float(np.linalg.norm(np.asarray(mat, dtype=complex).ravel()))


def audit_problem_dense(
    problem: MEProblemDense,
    tlist: Optional[np.ndarray] = None,
    *,
    options: Optional[AuditOptions] = None,
) -> Dict[str, Any]:
    """
    Structured audit of a dense compiled problem.

    Catches shape/dim inconsistencies, non-Hermitian Hamiltonian operators,
    an initial state that is not a density matrix, and reports coefficient
    ranges, peaks and areas over ``tlist``. Coefficient statistics are
    skipped when no tlist is given.
    """

    opt = options or AuditOptions()
    t = np.asarray(tlist, dtype=float) if tlist is not None else np.zeros(0)
    dims = tuple(int(x) for x in problem.dims)
    D = problem.D

    report: Dict[str, Any] = {"dims": dims, "D": D, "revision": problem.revision}
    report["tlist_N"] = int(len(t))
    report["tlist_range"] = (float(t[0]), float(t[-1])) if len(t) >= 2 else None

    if problem.rho0 is not None:
        rho0 = np.asarray(problem.rho0, dtype=complex)
        report["rho0_shape"] = tuple(rho0.shape)
        if opt.check_shapes and rho0.shape != (D, D):
            raise ValueError(f"rho0 has shape {rho0.shape}, expected {(D, D)}")
        if opt.check_rho0:
            tr = complex(np.trace(rho0))
            report["rho0_trace"] = tr
            report["rho0_ok"] = bool(
                abs(tr - 1.0) <= opt.rho0_atol
                and np.max(np.abs(rho0 - rho0.conj().T)) <= opt.rho0_atol
            )

    def _audit_terms(kind: str, terms: Tuple[CompiledTermDense, ...]) -> Dict[str, Any]:
        out: Dict[str, Any] = {"count": int(len(terms)), "terms": []}
        n_take = min(opt.max_terms, len(terms))
        for idx in range(n_take):
            term = terms[idx]
            op = np.asarray(term.op, dtype=complex)
            item: Dict[str, Any] = {
                "index": idx,
                "label": term.label,
                "static": term.is_static,
                "op_shape": tuple(op.shape),
                "op_fro_norm": _fro_norm(op),
            }

            if opt.check_shapes and op.shape != (D, D):
                raise ValueError(
                    f"{kind} term {idx} op has shape {op.shape}, expected {(D, D)}"
                )

            if opt.check_hermitian_H and kind == "H":
                # Operator only; a Hermitian pair of terms can each be non-Hermitian.
                herm_err = np.max(np.abs(op - op.conj().T))
                item["op_hermitian_max_abs_err"] = float(herm_err)
                item["op_is_hermitian"] = bool(herm_err <= opt.hermitian_atol)

            if opt.coeff_stats and len(t):
                coeff = eval_coeff(term, t)
                peak_i = int(np.argmax(np.abs(coeff)))
                item["coeff_min_abs"] = float(np.min(np.abs(coeff)))
                item["coeff_max_abs"] = float(np.max(np.abs(coeff)))
                item["coeff_peak_index"] = peak_i
                item["coeff_peak_t"] = float(t[peak_i])
                item["coeff_peak_val"] = complex(coeff[peak_i])

                if opt.coeff_area and len(t) >= 2:
                    item["coeff_area"] = complex(np.trapezoid(coeff, t))

            item["op_top_entries"] = _top_abs_entries(op, opt.top_entries)
            out["terms"].append(item)

        if len(terms) > n_take:
            out["truncated"] = int(len(terms) - n_take)
        return out

    report["H"] = _audit_terms("H", problem.h_terms)
    report["L"] = _audit_terms("L", problem.c_terms)
    return report


def summarize_audit(report: Dict[str, Any]) -> str:
    """One-line summary suitable for a log record."""
    non_herm = sum(
        1 for item in report["H"]["terms"] if not item.get("op_is_hermitian", True)
    )
    return (
        f"dims={report['dims']} D={report['D']} "
        f"H={report['H']['count']} (non-Hermitian ops: {non_herm}) "
        f"L={report['L']['count']} rho0_ok={report.get('rho0_ok')}"
    )
