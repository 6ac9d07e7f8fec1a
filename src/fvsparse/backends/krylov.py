# src/fvsparse/backends/krylov.py
"""Krylov solvers from scipy.sparse.linalg over the framework's product.

The matrix is never assembled: SciPy sees a LinearOperator whose matvec is
FvMatrix.amul, so cyclic and processor couplings are applied implicitly on
every iteration. Backend options:

- ``method``: "cg", "bicgstab" (default) or "gmres",
- ``preconditioner``: "diagonal" (default) or "none",
- ``restart``: GMRES restart length (default 30).

SciPy stops on its own relative criterion (``rtol = tolerance``); the
reported residuals use the normalized definition shared by all backends.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Final

import numpy as np
from scipy.sparse.linalg import LinearOperator, bicgstab, cg, gmres

from fvsparse.errors import SolverBreakdownError, raise_invalid_solver_config
from fvsparse.sparse_solver import (
    ComponentSystem,
    SolverPerformance,
    SparseSolver,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

    from numpy.typing import NDArray

    from fvsparse.config import FvSolution, SolverControls
    from fvsparse.fields import VolField
    from fvsparse.matrix import FvMatrix
    from fvsparse.mesh import FvMesh


logger = logging.getLogger(__name__)

_METHODS: Final[tuple[str, ...]] = ("cg", "bicgstab", "gmres")
_PRECONDITIONERS: Final[tuple[str, ...]] = ("diagonal", "none")
_NON_FINITE_MSG = "scipyKrylov: non-finite solution for {field}[{cmpt}]"
_ZERO_DIAG_MSG = (
    "scipyKrylov: zero diagonal in {field}[{cmpt}] with diagonal preconditioner"
)


def _validate_options(controls: SolverControls, field_name: str) -> tuple[str, str]:
    method = str(controls.option("method", "bicgstab"))
    precond = str(controls.option("preconditioner", "diagonal"))
    if method not in _METHODS:
        raise_invalid_solver_config(
            field_name=field_name,
            detail=(
                f"unknown Krylov method '{method}'; expected one of {list(_METHODS)}"
            ),
        )
    if precond not in _PRECONDITIONERS:
        raise_invalid_solver_config(
            field_name=field_name,
            detail=(
                f"unknown preconditioner '{precond}'; "
                f"expected one of {list(_PRECONDITIONERS)}"
            ),
        )
    return method, precond


class KrylovSolver(SparseSolver):
    """CG / BiCGStab / GMRES on a matrix-free operator."""

    def __init__(
        self,
        field: VolField,
        mesh: FvMesh,
        fv_solution: FvSolution | Mapping[str, Any],
    ) -> None:
        """Initialize KrylovSolver and validate its options.

        Raises:
            ConfigurationError: If method or preconditioner is unknown.
        """
        super().__init__(field, mesh, fv_solution)
        _validate_options(self.controls, field.name)

    def type_name(self) -> str:
        """Return the registered backend name."""
        return "scipyKrylov"

    def is_external_solver(self) -> bool:
        """The iterations run in SciPy, outside the framework."""
        return True

    def solve(self, matrix: FvMatrix) -> list[SolverPerformance]:
        """Solve with the stored controls."""
        return self._solve_segregated(matrix, self.controls, self._solve_component)

    def solve_with(
        self,
        matrix: FvMatrix,
        controls: SolverControls | Mapping[str, Any],
    ) -> list[SolverPerformance]:
        """Solve with override controls (method, tolerances, limits)."""
        resolved = self._resolve_controls(controls)
        _validate_options(resolved, matrix.psi.name)
        return self._solve_segregated(matrix, resolved, self._solve_component)

    def _operators(
        self,
        matrix: FvMatrix,
        system: ComponentSystem,
        precond: str,
    ) -> tuple[LinearOperator, LinearOperator | None]:
        n = matrix.mesh.n_cells

        def matvec(v: NDArray[np.floating]) -> NDArray[np.floating]:
            return matrix.amul(
                np.asarray(v, dtype=np.float64).reshape(-1),
                system.bou_coeffs,
                system.interfaces,
                system.cmpt,
                diag=system.diag,
            )

        a_op = LinearOperator(shape=(n, n), dtype=np.float64, matvec=matvec)
        if precond == "none":
            return a_op, None

        if np.any(system.diag == 0.0):
            raise SolverBreakdownError(
                _ZERO_DIAG_MSG.format(field=matrix.psi.name, cmpt=system.cmpt)
            )
        inv_diag = 1.0 / system.diag

        def precond_matvec(v: NDArray[np.floating]) -> NDArray[np.floating]:
            return inv_diag * np.asarray(v, dtype=np.float64).reshape(-1)

        m_op = LinearOperator(shape=(n, n), dtype=np.float64, matvec=precond_matvec)
        return a_op, m_op

    def _solve_component(
        self,
        matrix: FvMatrix,
        psi_cmpt: NDArray[np.floating],
        system: ComponentSystem,
        controls: SolverControls,
    ) -> SolverPerformance:
        method, precond = _validate_options(controls, matrix.psi.name)
        self.residual_evaluator.reset(system.vcmpt)
        initial = self._residual(matrix, psi_cmpt, system, controls, save_system=True)

        perf = SolverPerformance(
            solver_name=self.type_name(),
            field_name=matrix.psi.name,
            component=system.cmpt,
            initial_residual=initial,
            final_residual=initial,
        )
        if controls.min_iter == 0 and initial <= controls.tolerance:
            perf.converged = True
            return perf

        a_op, m_op = self._operators(matrix, system, precond)
        n_iter = 0

        def count(_arg: object) -> None:
            nonlocal n_iter
            n_iter += 1

        kwargs: dict[str, Any] = {
            "x0": psi_cmpt.copy(),
            "rtol": controls.tolerance,
            "atol": 0.0,
            "maxiter": controls.max_iter,
            "M": m_op,
            "callback": count,
        }
        if method == "cg":
            solution, info = cg(a_op, system.source, **kwargs)
        elif method == "bicgstab":
            solution, info = bicgstab(a_op, system.source, **kwargs)
        else:
            solution, info = gmres(
                a_op,
                system.source,
                restart=int(controls.option("restart", 30)),
                callback_type="x",
                **kwargs,
            )

        if not np.all(np.isfinite(solution)):
            raise SolverBreakdownError(
                _NON_FINITE_MSG.format(field=matrix.psi.name, cmpt=system.cmpt)
            )
        if info > 0:
            logger.debug(
                "scipyKrylov: %s did not reach rtol for %s[%d] in %d iterations",
                method,
                matrix.psi.name,
                system.cmpt,
                n_iter,
            )

        psi_cmpt[:] = solution
        perf.final_residual = self._residual(
            matrix, psi_cmpt, system, controls, save_system=True
        )
        perf.n_iterations = n_iter
        perf.converged = info == 0 or perf.final_residual <= max(
            controls.tolerance, controls.rel_tol * initial
        )
        return perf
