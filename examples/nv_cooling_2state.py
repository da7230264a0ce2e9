"""
Sideband cooling of a mechanical resonator by two NV centers (collective
two-level emitter), written with physical units.

Time is measured in microseconds in solver units.
"""
from __future__ import annotations

import argparse
import math

import oqsim.config  # noqa: F401  (logging setup)

import matplotlib.pyplot as plt
import numpy as np

import oqsim
from oqsim import Q, SystemModel, UnitSystem


def build_model(num_phonon: int, n_th: int, num_nv: int, alpha: float) -> SystemModel:
    w_m = Q(2 * math.pi * 475e6, "rad/s")  # mechanical resonator frequency
    gamma_eff = Q(145.1e6, "1/s")  # effective NV dissipation rate
    lambda_s = 2 * math.pi * 0.1e6
    lambda_eff = Q(lambda_s * math.sqrt(alpha) * math.sqrt(num_nv), "rad/s")
    quality = 1e6

    model = SystemModel(unit_system=UnitSystem(time_unit_s=1e-6))
    a = model.create_subsystem(num_phonon)
    nv = model.create_subsystem(2)

    model.add_ham_num(a, w_m)
    model.add_ham_num(nv, w_m)

    # lambda_eff (nv_dag + nv)(a_dag + a)
    model.add_hamiltonian_term(lambda_eff, a.dag, nv.dag)
    model.add_hamiltonian_term(lambda_eff, nv.dag, a)
    model.add_hamiltonian_term(lambda_eff, nv, a.dag)
    model.add_hamiltonian_term(lambda_eff, nv, a)

    model.add_lindblad_emission(nv, gamma_eff)

    # phonon bath
    bath = w_m.to("rad/s").magnitude / quality
    model.add_lindblad_term(Q(bath * (n_th + 1), "1/s"), a, label="bath_down")
    model.add_lindblad_term(Q(bath * n_th, "1/s"), a.dag, label="bath_up")
    return model


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--num-phonon", type=int, default=5)
    parser.add_argument("--n-th", type=int, default=2)
    parser.add_argument("--num-nv", type=int, default=2)
    parser.add_argument("--init-phonon", type=int, default=4)
    parser.add_argument("--steady-state", action="store_true")
    parser.add_argument("--output", default="pop")
    args = parser.parse_args()

    oqsim.initialize()
    model = build_model(args.num_phonon, args.n_th, args.num_nv, alpha=0.01663)
    print(model)
    model.create_density_matrix()

    if args.steady_state:
        model.steady_state()
        print("steady-state populations:", model.get_populations())
        oqsim.finalize()
        return

    times = []
    pops = []

    def monitor(m: SystemModel, step: int, time: float) -> None:
        times.append(time)
        pops.append(m.get_populations())

    model.ts_monitor = monitor
    model.set_initial_population(0, args.init_phonon)
    model.set_initial_population(1, 1)
    model.run(end_time=100.0, dt=1.0, max_steps=10000)

    with open(args.output, "w") as f:
        f.write("#Time Populations\n")
        for t, p in zip(times, pops):
            f.write(f"{t:e} " + " ".join(f"{x:e}" for x in p) + "\n")

    pops_arr = np.asarray(pops)
    oqsim.finalize()

    plt.figure()
    plt.plot(times, pops_arr[:, 0], label="<n> phonon")
    plt.plot(times, pops_arr[:, 1], label="<n> NV")
    plt.xlabel("t (us)")
    plt.ylabel("population")
    plt.title("NV cooling")
    plt.legend()
    plt.grid(True)
    plt.show()


if __name__ == "__main__":
    main()
