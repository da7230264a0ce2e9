from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, cast

import pint
from pint import DimensionalityError

ureg = pint.UnitRegistry()


class QuantityLike(Protocol):
    @property
    def magnitude(self) -> Any: ...
    @property
    def units(self) -> Any: ...
    @property
    def dimensionality(self) -> Any: ...
    def to_base_units(self) -> QuantityLike: ...
    def to(self, unit: str) -> QuantityLike: ...
    def __mul__(self, other: Any) -> QuantityLike: ...
    def __rmul__(self, other: Any) -> QuantityLike: ...
    def __truediv__(self, other: Any) -> QuantityLike: ...


def Q(value: Any, units: str) -> QuantityLike:
    """Create a quantity (or cast existing) in a single registry."""
    return cast(QuantityLike, ureg.Quantity(value, units))


def is_quantity(x: Any) -> bool:
    return hasattr(x, "to") and hasattr(x, "magnitude")


def as_quantity(x: Any, units: str) -> QuantityLike:
    """
    Coerce x to a pint quantity with given units and verify compatibility.
    - bare numbers: interpreted as `units`
    - pint quantities: converted to `units` (raises if incompatible)
    """
    q = x if is_quantity(x) else Q(float(x), units)
    try:
        return cast(QuantityLike, q.to(units))
    except DimensionalityError as e:
        raise TypeError(
            f"Incompatible units: got {getattr(q, 'units', None)}, expected {units}"
        ) from e


def magnitude(x: Any, units: str) -> float:
    """Return float magnitude in requested units (with compatibility check)."""
    q = as_quantity(x, units)
    return float(q.to(units).magnitude)


# CONSTANTS
hbar = Q(1.054571817e-34, "J*s")


@dataclass(frozen=True)
class UnitSystem:
    """
    Normalization policy for lowering unitful parameters into solver units.

    Convention:
    - Time axis in solver is unitless: t_solver
    - Physical time: t_s = t_solver * time_unit_s
    - Angular frequencies and rates are represented in "per solver time unit":
        omega_solver = omega_rad_s * time_unit_s
        gamma_solver = gamma_1_s * time_unit_s
    - Energy parameters are lowered as angular frequencies via omega = E / hbar.

    Bare numbers are taken to be in solver units already and pass through.
    """

    time_unit_s: float

    def t_to_solver(self, t_s: Any) -> float:
        if not is_quantity(t_s):
            return float(t_s)
        return magnitude(t_s, "s") / self.time_unit_s

    def t_from_solver(self, t_solver: float) -> float:
        return float(t_solver) * self.time_unit_s

    def omega_to_solver(self, omega_rad_s: Any) -> float:
        if not is_quantity(omega_rad_s):
            return float(omega_rad_s)
        return magnitude(omega_rad_s, "rad/s") * self.time_unit_s

    def rate_to_solver(self, gamma_1_s: Any) -> float:
        if not is_quantity(gamma_1_s):
            return float(gamma_1_s)
        return magnitude(gamma_1_s, "1/s") * self.time_unit_s

    def energy_to_omega_solver(self, E: Any) -> float:
        # Interpret bare numbers as eV.
        E_J = as_quantity(E, "eV").to("J")
        omega = (E_J / hbar).to("rad/s")
        return float(omega.magnitude) * self.time_unit_s

    def coupling_to_solver(self, value: Any) -> float:
        """Hamiltonian weight: an angular frequency, or an energy (lowered via hbar)."""
        if not is_quantity(value):
            return float(value)
        if value.dimensionality == ureg.joule.dimensionality:
            return self.energy_to_omega_solver(value)
        return self.omega_to_solver(value)
