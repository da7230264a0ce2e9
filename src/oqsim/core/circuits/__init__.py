from oqsim.core.circuits.types import Circuit, Gate, GateType
from oqsim.core.circuits.protocols import GateRealizerProto, GateTermSpec
from oqsim.core.circuits.realize import RectangularPulseRealizer
from oqsim.core.circuits.importers import (
    parse_circuit,
    read_circuit,
    register_importer,
    supported_formats,
)

__all__ = [
    "Circuit",
    "Gate",
    "GateType",
    "GateRealizerProto",
    "GateTermSpec",
    "RectangularPulseRealizer",
    "parse_circuit",
    "read_circuit",
    "register_importer",
    "supported_formats",
]
