from __future__ import annotations

import oqsim.config  # noqa: F401

import matplotlib.pyplot as plt
import numpy as np

import oqsim
from oqsim import SystemModel


def main() -> None:
    # Solver-unit parameters
    w = 1.0
    gamma = 0.2

    oqsim.initialize()
    with SystemModel() as model:
        (q,) = model.create_qubits(1)
        model.add_ham_num(q, w)
        model.add_lindblad_emission(q, gamma)
        model.create_state()
        model.set_initial_population(q, 1)

        times = [0.0]
        pe = [model.get_populations()[0]]

        def monitor(m: SystemModel, step: int, time: float) -> None:
            times.append(time)
            pe.append(m.get_populations()[0])

        model.ts_monitor = monitor
        model.driver(audit=True)
        model.run(end_time=25.0, dt=0.25)

    oqsim.finalize()

    print("P_e(t0) =", pe[0])
    print("P_e(tend) =", pe[-1], "expected", float(np.exp(-gamma * times[-1])))

    plt.figure()
    plt.plot(times, pe, label="oqsim")
    plt.plot(times, np.exp(-gamma * np.asarray(times)), "--", label="exp(-gamma t)")
    plt.xlabel("t (solver units)")
    plt.ylabel("P_e")
    plt.title("Two-level decay")
    plt.ylim(-0.05, 1.05)
    plt.legend()
    plt.grid(True)
    plt.show()


if __name__ == "__main__":
    main()
