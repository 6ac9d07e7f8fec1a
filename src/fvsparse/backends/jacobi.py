# src/fvsparse/backends/jacobi.py
"""Weighted Jacobi iteration inside the framework.

Each sweep updates ``psi += omega * (b - A psi) / diag`` with the coupled
product evaluated through the interfaces, so processor neighbours are
refreshed every iteration. The relaxation factor comes from the
``relaxation`` option (default 1.0).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import numpy as np

from fvsparse.errors import SolverBreakdownError, raise_invalid_solver_config
from fvsparse.sparse_solver import SolverPerformance, SparseSolver

if TYPE_CHECKING:
    from collections.abc import Mapping

    from numpy.typing import NDArray

    from fvsparse.config import SolverControls
    from fvsparse.matrix import FvMatrix
    from fvsparse.sparse_solver import ComponentSystem

_ZERO_DIAG_MSG = "jacobi: zero diagonal coefficient in {field}[{cmpt}] at cell {cell}"
_NON_FINITE_MSG = "jacobi: iteration diverged for {field}[{cmpt}] after {n} sweeps"


def _relaxation(controls: SolverControls, field_name: str) -> float:
    omega = float(controls.option("relaxation", 1.0))
    if not 0.0 < omega <= 1.0:
        raise_invalid_solver_config(
            field_name=field_name,
            detail=f"relaxation must be in (0, 1]; got {omega}",
        )
    return omega


class JacobiSolver(SparseSolver):
    """Weighted Jacobi smoother used as a solver."""

    def type_name(self) -> str:
        """Return the registered backend name."""
        return "jacobi"

    def is_external_solver(self) -> bool:
        """Runs on the framework's own matrix product."""
        return False

    def solve(self, matrix: FvMatrix) -> list[SolverPerformance]:
        """Solve with the stored controls."""
        return self._solve_segregated(matrix, self.controls, self._solve_component)

    def solve_with(
        self,
        matrix: FvMatrix,
        controls: SolverControls | Mapping[str, Any],
    ) -> list[SolverPerformance]:
        """Solve with override controls."""
        return self._solve_segregated(
            matrix, self._resolve_controls(controls), self._solve_component
        )

    def _solve_component(
        self,
        matrix: FvMatrix,
        psi_cmpt: NDArray[np.floating],
        system: ComponentSystem,
        controls: SolverControls,
    ) -> SolverPerformance:
        name = matrix.psi.name
        omega = _relaxation(controls, name)
        zero = np.flatnonzero(system.diag == 0.0)
        if zero.size:
            raise SolverBreakdownError(
                _ZERO_DIAG_MSG.format(field=name, cmpt=system.cmpt, cell=int(zero[0]))
            )

        self.residual_evaluator.reset(system.vcmpt)
        initial = self._residual(matrix, psi_cmpt, system, controls, save_system=True)
        perf = SolverPerformance(
            solver_name=self.type_name(),
            field_name=name,
            component=system.cmpt,
            initial_residual=initial,
            final_residual=initial,
        )

        target = max(controls.tolerance, controls.rel_tol * initial)
        residual = initial
        n_iter = 0
        while n_iter < controls.max_iter and (
            n_iter < controls.min_iter or residual > target
        ):
            apsi = matrix.amul(
                psi_cmpt,
                system.bou_coeffs,
                system.interfaces,
                system.cmpt,
                diag=system.diag,
            )
            psi_cmpt += omega * (system.source - apsi) / system.diag
            n_iter += 1
            if not np.all(np.isfinite(psi_cmpt)):
                raise SolverBreakdownError(
                    _NON_FINITE_MSG.format(field=name, cmpt=system.cmpt, n=n_iter)
                )
            residual = self._residual(matrix, psi_cmpt, system, controls)

        perf.final_residual = residual
        perf.n_iterations = n_iter
        perf.converged = residual <= target
        return perf
