from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol, Union, runtime_checkable

import numpy as np


@runtime_checkable
class Evaluator(Protocol):
    """
    Time-dependent weight supplied by the caller.

    Contract: a pure function of time. It is invoked by the solver engine once
    per coefficient per internal evaluation, so it must be cheap and must not
    touch solver state.
    """

    def evaluate(self, time: float) -> complex: ...


@dataclass(frozen=True)
class CallableEvaluator:
    fn: Callable[[float], Any]

    def evaluate(self, time: float) -> complex:
        return complex(self.fn(float(time)))


@dataclass(frozen=True)
class ContextEvaluator:
    """Closure/context pair: ``fn(time, context)``; context is passed unchanged."""

    fn: Callable[[float, Any], Any]
    context: Any = None

    def evaluate(self, time: float) -> complex:
        return complex(self.fn(float(time), self.context))


def as_evaluator(
    evaluator: Union[Evaluator, Callable[..., Any]], context: Any = None
) -> Evaluator:
    if isinstance(evaluator, Evaluator):
        if context is not None:
            raise TypeError("context is only accepted together with a plain callable")
        return evaluator
    if not callable(evaluator):
        raise TypeError(f"evaluator must be callable, got {type(evaluator)!r}")
    if context is None:
        return CallableEvaluator(evaluator)
    return ContextEvaluator(evaluator, context)


@runtime_checkable
class CoeffProto(Protocol):
    @property
    def is_static(self) -> bool: ...

    def at(self, t: float) -> complex: ...

    def eval(self, tlist: np.ndarray) -> np.ndarray:
        """
        Returns complex array of shape (len(tlist),).
        All values are in solver units.
        """
        ...


@dataclass(frozen=True)
class ConstCoeff:
    value: complex

    @property
    def is_static(self) -> bool:
        return True

    def at(self, t: float) -> complex:
        return complex(self.value)

    def eval(self, tlist: np.ndarray) -> np.ndarray:
        out = np.empty(len(tlist), dtype=complex)
        out[:] = self.value
        return out


@dataclass(frozen=True)
class TimeDependentCoeff:
    """Effective weight ``base * evaluator.evaluate(t)``."""

    base: complex
    evaluator: Evaluator

    @property
    def is_static(self) -> bool:
        return False

    def at(self, t: float) -> complex:
        return complex(self.base) * complex(self.evaluator.evaluate(float(t)))

    def eval(self, tlist: np.ndarray) -> np.ndarray:
        t = np.asarray(tlist, dtype=float)
        return np.fromiter((self.at(x) for x in t), dtype=complex, count=len(t))


def eval_coeff_any(coeff: Optional[Any], tlist: np.ndarray) -> np.ndarray:
    if coeff is None:
        out = np.empty(len(tlist), dtype=complex)
        out[:] = 1.0 + 0.0j
        return out

    if hasattr(coeff, "eval"):
        return np.asarray(coeff.eval(tlist), dtype=complex).reshape(len(tlist))

    y = [complex(coeff(float(t))) for t in np.asarray(tlist, dtype=float)]
    return np.asarray(y, dtype=complex).reshape(len(tlist))
