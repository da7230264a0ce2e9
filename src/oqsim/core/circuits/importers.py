"""
Circuit importers for third-party text formats.

Each importer turns a circuit description into ``(num_qubits, gates)``. Gates
are given sequential time offsets ``index * spacing`` in file order. Only the
unitary subset of each format is understood; measurement, classical and
bookkeeping statements are skipped.
"""
from __future__ import annotations

import ast
import logging
import math
import operator
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

from oqsim.core.circuits.types import Gate, GateType
from oqsim.errors import InvalidGate, UnsupportedFormat

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImportedCircuit:
    num_qubits: int
    gates: Tuple[Gate, ...]


ParserFn = Callable[[str, float], ImportedCircuit]

# name -> (gate type, parameter slots, fixed (theta, phi, lam) overrides)
_GateSpec = Tuple[GateType, Tuple[str, ...], Dict[str, float]]

_COMMON: Dict[str, _GateSpec] = {
    "i": (GateType.I, (), {}),
    "id": (GateType.I, (), {}),
    "x": (GateType.X, (), {}),
    "y": (GateType.Y, (), {}),
    "z": (GateType.Z, (), {}),
    "h": (GateType.H, (), {}),
    "s": (GateType.U1, (), {"lam": math.pi / 2}),
    "sdg": (GateType.U1, (), {"lam": -math.pi / 2}),
    "t": (GateType.U1, (), {"lam": math.pi / 4}),
    "tdg": (GateType.U1, (), {"lam": -math.pi / 4}),
    "rx": (GateType.RX, ("theta",), {}),
    "ry": (GateType.RY, ("theta",), {}),
    "rz": (GateType.RZ, ("theta",), {}),
    "cx": (GateType.CNOT, (), {}),
    "cnot": (GateType.CNOT, (), {}),
    "cz": (GateType.CZ, (), {}),
}

QASM_GATES: Dict[str, _GateSpec] = dict(_COMMON)
QASM_GATES.update(
    {
        "u1": (GateType.U1, ("lam",), {}),
        "p": (GateType.U1, ("lam",), {}),
        "u2": (GateType.U2, ("phi", "lam"), {}),
        "u3": (GateType.U3, ("theta", "phi", "lam"), {}),
        "u": (GateType.U3, ("theta", "phi", "lam"), {}),
    }
)

QUIL_GATES: Dict[str, _GateSpec] = dict(_COMMON)
QUIL_GATES.update({"phase": (GateType.U1, ("lam",), {})})

PROJECTQ_GATES: Dict[str, _GateSpec] = dict(_COMMON)
PROJECTQ_GATES.update({"r": (GateType.U1, ("lam",), {})})


# ----------------------------
# Angle expressions
# ----------------------------

_BINOPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Pow: operator.pow,
}
_UNARY = {ast.UAdd: operator.pos, ast.USub: operator.neg}


def eval_angle(expr: str) -> float:
    """Evaluate an angle such as ``pi/2`` or ``-3*pi/4``; only arithmetic and pi."""
    try:
        tree = ast.parse(expr.strip(), mode="eval")
    except SyntaxError as e:
        raise InvalidGate(f"Cannot parse angle expression {expr!r}") from e

    def _eval(node: ast.AST) -> float:
        if isinstance(node, ast.Expression):
            return _eval(node.body)
        if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)):
            return float(node.value)
        if isinstance(node, ast.Name) and node.id.lower() == "pi":
            return math.pi
        if isinstance(node, ast.BinOp) and type(node.op) in _BINOPS:
            return _BINOPS[type(node.op)](_eval(node.left), _eval(node.right))
        if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY:
            return _UNARY[type(node.op)](_eval(node.operand))
        raise InvalidGate(f"Unsupported element in angle expression {expr!r}")

    return float(_eval(tree))


def _split_params(params: Optional[str]) -> List[float]:
    if params is None or not params.strip():
        return []
    return [eval_angle(p) for p in params.split(",")]


def _make_gate(
    table: Dict[str, _GateSpec],
    name: str,
    params: Sequence[float],
    qubits: Sequence[int],
    time: float,
) -> Gate:
    spec = table.get(name.lower())
    if spec is None:
        raise InvalidGate(f"Unsupported gate {name!r}")
    gate_type, slots, fixed = spec
    if len(params) != len(slots):
        raise InvalidGate(
            f"Gate {name!r} expects {len(slots)} parameter(s), got {len(params)}"
        )
    angles = dict(fixed)
    angles.update(zip(slots, params))
    q2 = qubits[1] if len(qubits) > 1 else None
    if gate_type.num_qubits != len(qubits):
        raise InvalidGate(f"Gate {name!r} applied to {len(qubits)} qubit(s)")
    return Gate.create(gate_type, qubits[0], q2, time=time, **angles)


# ----------------------------
# Parsers
# ----------------------------

_QASM_STMT = re.compile(r"^(?P<name>[A-Za-z_]\w*)\s*(\((?P<params>[^)]*)\))?\s*(?P<args>.*)$")
_QASM_REG = re.compile(r"^(?P<reg>[A-Za-z_]\w*)\s*\[\s*(?P<idx>\d+)\s*\]$")
_QASM_SKIP = {"openqasm", "include", "creg", "measure", "barrier", "reset", "if"}


def parse_qasm(text: str, spacing: float = 1.0) -> ImportedCircuit:
    """OpenQASM 2 (qiskit) subset."""
    offsets: Dict[str, int] = {}
    num_qubits = 0
    gates: List[Gate] = []

    body = re.sub(r"//[^\n]*", "", text)
    for raw in body.split(";"):
        stmt = " ".join(raw.split())
        if not stmt:
            continue
        keyword = stmt.split(" ", 1)[0].split("(", 1)[0].lower()
        if keyword == "qreg":
            m = _QASM_REG.match(stmt[len("qreg"):].strip())
            if m is None:
                raise InvalidGate(f"Malformed qreg declaration: {stmt!r}")
            offsets[m.group("reg")] = num_qubits
            num_qubits += int(m.group("idx"))
            continue
        if keyword in _QASM_SKIP:
            continue
        if keyword == "gate":
            raise InvalidGate("Custom gate definitions are not supported")

        m = _QASM_STMT.match(stmt)
        if m is None:
            raise InvalidGate(f"Cannot parse statement: {stmt!r}")
        qubits = []
        for arg in m.group("args").split(","):
            r = _QASM_REG.match(arg.strip())
            if r is None or r.group("reg") not in offsets:
                raise InvalidGate(f"Unknown qubit reference {arg.strip()!r} in {stmt!r}")
            qubits.append(offsets[r.group("reg")] + int(r.group("idx")))
        gates.append(
            _make_gate(
                QASM_GATES,
                m.group("name"),
                _split_params(m.group("params")),
                qubits,
                len(gates) * spacing,
            )
        )

    return ImportedCircuit(num_qubits=num_qubits, gates=tuple(gates))


_QUIL_STMT = re.compile(r"^(?P<name>[A-Za-z_][\w-]*)\s*(\((?P<params>[^)]*)\))?\s*(?P<args>[\d\s]*)$")
_QUIL_SKIP = {"declare", "measure", "halt", "pragma", "reset", "wait", "nop"}


def parse_quil(text: str, spacing: float = 1.0) -> ImportedCircuit:
    """Quil subset: ``RX(pi/2) 0``, ``CNOT 0 1``."""
    gates: List[Gate] = []
    highest = -1
    for line in text.splitlines():
        stmt = line.split("#", 1)[0].strip()
        if not stmt:
            continue
        if stmt.split()[0].lower() in _QUIL_SKIP:
            continue
        m = _QUIL_STMT.match(stmt)
        if m is None:
            raise InvalidGate(f"Cannot parse Quil instruction: {stmt!r}")
        qubits = [int(q) for q in m.group("args").split()]
        if not qubits:
            raise InvalidGate(f"Quil instruction without qubits: {stmt!r}")
        highest = max(highest, *qubits)
        gates.append(
            _make_gate(
                QUIL_GATES,
                m.group("name"),
                _split_params(m.group("params")),
                qubits,
                len(gates) * spacing,
            )
        )
    return ImportedCircuit(num_qubits=highest + 1, gates=tuple(gates))


_PQ_STMT = re.compile(r"^(?P<name>[A-Za-z_]\w*)\s*(\((?P<params>[^)]*)\))?\s*\|\s*(?P<args>.+)$")
_PQ_QUBIT = re.compile(r"\w+\[(\d+)\]")
_PQ_SKIP = {"measure", "deallocate", "barrier", "flush"}


def parse_projectq(text: str, spacing: float = 1.0) -> ImportedCircuit:
    """ProjectQ command-printer output: ``H | Qureg[0]``, ``CX | ( Qureg[0], Qureg[1] )``."""
    gates: List[Gate] = []
    allocated = 0
    highest = -1
    for line in text.splitlines():
        stmt = line.strip()
        if not stmt:
            continue
        m = _PQ_STMT.match(stmt)
        if m is None:
            raise InvalidGate(f"Cannot parse ProjectQ command: {stmt!r}")
        name = m.group("name")
        qubits = [int(q) for q in _PQ_QUBIT.findall(m.group("args"))]
        if qubits:
            highest = max(highest, *qubits)
        if name.lower() == "allocate":
            allocated += 1
            continue
        if name.lower() in _PQ_SKIP:
            continue
        gates.append(
            _make_gate(
                PROJECTQ_GATES,
                name,
                _split_params(m.group("params")),
                qubits,
                len(gates) * spacing,
            )
        )
    return ImportedCircuit(num_qubits=max(allocated, highest + 1), gates=tuple(gates))


# ----------------------------
# Registry
# ----------------------------

_IMPORTERS: Dict[str, ParserFn] = {
    "qiskit": parse_qasm,
    "qasm": parse_qasm,
    "quil": parse_quil,
    "projectq": parse_projectq,
}


def register_importer(format: str, parser: ParserFn) -> None:
    _IMPORTERS[format.lower()] = parser


def supported_formats() -> Tuple[str, ...]:
    return tuple(sorted(_IMPORTERS))


def _parser_for(format: str) -> ParserFn:
    parser = _IMPORTERS.get(str(format).lower())
    if parser is None:
        raise UnsupportedFormat(
            f"Unknown circuit format {format!r}; supported: {', '.join(supported_formats())}"
        )
    return parser


def parse_circuit(text: str, format: str, *, spacing: float = 1.0) -> ImportedCircuit:
    return _parser_for(format)(text, float(spacing))


def read_circuit(
    filename: Union[str, Path], format: str, *, spacing: float = 1.0
) -> ImportedCircuit:
    parser = _parser_for(format)
    imported = parser(Path(filename).read_text(), float(spacing))
    logger.info(
        "read %d gate(s) on %d qubit(s) from %s (%s)",
        len(imported.gates),
        imported.num_qubits,
        filename,
        format,
    )
    return imported
