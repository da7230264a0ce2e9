from __future__ import annotations

from typing import Sequence, Tuple

import numpy as np

from oqsim.core.ir.materialize import materialize_product
from oqsim.core.ir.terms import Term
from oqsim.core.model.protocols import CompileBundle
from oqsim.core.sim.types import CompiledTermDense, MEProblemDense


def compile_to_dense(
    *,
    bundle: CompileBundle,
    rho0: np.ndarray | None = None,
) -> MEProblemDense:
    dims = tuple(int(x) for x in bundle.dims)

    def _compile_terms(terms: Sequence[Term]) -> Tuple[CompiledTermDense, ...]:
        out = []
        for term in terms:
            op = materialize_product(term.ops, dims)
            out.append(
                CompiledTermDense(
                    op=op,
                    coeff=term.coeff,
                    label=getattr(term, "label", ""),
                    meta=getattr(term, "meta", {}),
                )
            )
        return tuple(out)

    if rho0 is None:
        rho0 = bundle.rho0

    return MEProblemDense(
        dims=dims,
        h_terms=_compile_terms(bundle.hamiltonian),
        c_terms=_compile_terms(bundle.lindblad),
        rho0=None if rho0 is None else np.asarray(rho0, dtype=complex),
        revision=int(bundle.revision),
        meta=bundle.meta or {},
    )
