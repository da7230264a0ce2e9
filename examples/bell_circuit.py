"""Prepare a Bell pair from a QASM file, with and without dephasing."""
from __future__ import annotations

import oqsim.config  # noqa: F401

from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np

import oqsim
from oqsim import Circuit, SystemModel

QASM = Path(__file__).parent / "circuits" / "bell.qasm"


def bell_probs(dephasing: float) -> np.ndarray:
    num_qubits, circuit = Circuit.from_file(QASM, "qiskit")
    with SystemModel(num_qubits) as model:
        qubits = model.create_qubits()
        for q in qubits:
            model.add_lindblad_dephasing(q, dephasing)
        model.create_density_matrix()
        model.start_circuit_at(circuit, 0.0)
        model.run(end_time=circuit.num_gates, dt=0.5)
        print(model)
        return np.asarray(model.get_bitstring_probs())


def main() -> None:
    oqsim.initialize()
    labels = ["00", "01", "10", "11"]
    ideal = bell_probs(0.0)
    noisy = bell_probs(0.05)
    oqsim.finalize()

    for lab, p0, p1 in zip(labels, ideal, noisy):
        print(f"|{lab}>  ideal={p0:.4f}  dephased={p1:.4f}")

    x = np.arange(len(labels))
    plt.figure()
    plt.bar(x - 0.2, ideal, width=0.4, label="ideal")
    plt.bar(x + 0.2, noisy, width=0.4, label="dephasing 0.05")
    plt.xticks(x, labels)
    plt.ylabel("probability")
    plt.title("Bell pair")
    plt.legend()
    plt.show()


if __name__ == "__main__":
    main()
