from oqsim.core.circuits import Circuit, Gate, GateType
from oqsim.core.model.system import SystemModel
from oqsim.core.state import DensityMatrix
from oqsim.core.units import Q, UnitSystem, ureg
from oqsim.engine import EvolutionDriver
from oqsim.errors import (
    AlreadyInitialized,
    ForeignOperator,
    InvalidDimension,
    InvalidGate,
    InvalidRate,
    InvalidState,
    NotReady,
    ObserverFailed,
    OQSimError,
    SolverFailed,
    UnsupportedFormat,
    UseAfterFree,
)
from oqsim.runtime import clear, finalize, initialize, is_initialized

__version__ = "0.1.0"

__all__ = [
    "Circuit",
    "Gate",
    "GateType",
    "SystemModel",
    "DensityMatrix",
    "EvolutionDriver",
    "Q",
    "UnitSystem",
    "ureg",
    "initialize",
    "finalize",
    "clear",
    "is_initialized",
    "OQSimError",
    "InvalidDimension",
    "ForeignOperator",
    "InvalidGate",
    "InvalidRate",
    "UnsupportedFormat",
    "AlreadyInitialized",
    "NotReady",
    "UseAfterFree",
    "InvalidState",
    "SolverFailed",
    "ObserverFailed",
]
