# fvsparse/examples/heat_conduction.py
"""Steady 1-D heat conduction solved with every shipped backend.

The rod has a conductivity that varies along its length and fixed
temperatures at both ends. The finite-volume system is assembled by hand in
LDU form:

- face conductance g_f = k_f / dx on each internal face,
- wall conductance 2 k / dx on each end (half-cell distance),
- fixed-value walls put ``g_wall * T_wall`` in the boundary coefficients.

Each backend solves the same system; the script compares them with the
analytical profile and saves a plot to disk (no interactive windows).
"""

from __future__ import annotations

import logging
from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np

from fvsparse import FvMatrix, VolField, line_mesh, new_sparse_solver
from fvsparse.backends import register_builtin_backends

_OUTPUT_DIR = Path(__file__).resolve().parent / "output" / "heat_conduction"

BACKENDS: dict[str, dict[str, object]] = {
    "directLU": {},
    "scipyKrylov": {"method": "cg", "tolerance": 1e-10},
    "jacobi": {"tolerance": 1e-8, "maxIter": 200000},
}


def conductivity(x: np.ndarray) -> np.ndarray:
    """Conductivity along the rod, k(x) = 1 + x."""
    return 1.0 + x


def analytical_profile(x: np.ndarray, t_left: float, t_right: float) -> np.ndarray:
    """Exact steady temperature for k(x) = 1 + x on [0, 1].

    The heat flux is constant, so T varies like log(1 + x).

    Returns:
        Temperature at x.
    """
    return t_left + (t_right - t_left) * np.log1p(x) / np.log(2.0)


def assemble(field: VolField, t_left: float, t_right: float) -> FvMatrix:
    """Assemble the conduction system for a rod on [0, 1].

    Args:
        field: Temperature field on a line mesh.
        t_left: Temperature at x = 0.
        t_right: Temperature at x = 1.

    Returns:
        The assembled FvMatrix.
    """
    mesh = field.mesh
    n = mesh.n_cells
    dx = 1.0 / n
    x_faces = np.arange(1, n) * dx

    g_face = conductivity(x_faces) / dx
    diag = np.zeros(n)
    np.add.at(diag, mesh.lower_addr, g_face)
    np.add.at(diag, mesh.upper_addr, g_face)

    g_left = 2.0 * float(conductivity(np.array([0.0]))[0]) / dx
    g_right = 2.0 * float(conductivity(np.array([1.0]))[0]) / dx
    return FvMatrix(
        field,
        diag,
        lower=-g_face,
        internal_coeffs=[[g_left], [g_right]],
        boundary_coeffs=[[g_left * t_left], [g_right * t_right]],
    )


def save_profile_plot(
    x: np.ndarray,
    profiles: dict[str, np.ndarray],
    exact: np.ndarray,
    *,
    out_path: Path,
) -> None:
    """Save backend profiles and their error against the exact solution.

    Args:
        x: Cell centres.
        profiles: Solved temperature per backend name.
        exact: Analytical temperature at the cell centres.
        out_path: Output path for the saved figure.
    """
    fig, (ax_t, ax_err) = plt.subplots(1, 2, figsize=(11, 4.5))
    ax_t.plot(x, exact, "k-", label="exact")
    for name, temp in profiles.items():
        ax_t.plot(x, temp, "o", markersize=3, label=name)
        ax_err.semilogy(x, np.abs(temp - exact) + 1e-16, label=name)

    ax_t.set_xlabel("x")
    ax_t.set_ylabel("T")
    ax_t.grid(visible=True)
    ax_t.legend()
    ax_err.set_xlabel("x")
    ax_err.set_ylabel("|T - T_exact|")
    ax_err.grid(visible=True)
    ax_err.legend()
    fig.tight_layout()

    out_path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(out_path, dpi=150)
    plt.close(fig)


def main() -> None:
    """Solve the rod with every backend, report errors and save a plot."""
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    register_builtin_backends()

    n_cells = 40
    t_left, t_right = 300.0, 400.0
    mesh = line_mesh(n_cells)
    x = (np.arange(n_cells) + 0.5) / n_cells
    exact = analytical_profile(x, t_left, t_right)

    profiles: dict[str, np.ndarray] = {}
    for name, options in BACKENDS.items():
        field = VolField("T", mesh, t_left)
        solution = {"solvers": {"T": {"solverType": name, **options}}}
        solver = new_sparse_solver(field, mesh, solution)
        (perf,) = solver.solve(assemble(field, t_left, t_right))
        profiles[name] = field.internal[:, 0].copy()
        err = float(np.max(np.abs(profiles[name] - exact)))
        print(f"{name:12s} iterations={perf.n_iterations:6d}  max error={err:.3e}")

    save_profile_plot(x, profiles, exact, out_path=_OUTPUT_DIR / "profiles.png")


if __name__ == "__main__":
    main()
