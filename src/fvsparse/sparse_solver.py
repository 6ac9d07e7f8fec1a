# src/fvsparse/sparse_solver.py
"""Sparse-solver contract and per-rank backend registry.

A SparseSolver binds one field, its mesh and the ``solvers`` section of the
solution dictionary. Backends implement:

- ``solve(matrix)``: solve the assembled system for the bound field,
- ``is_external_solver()``: whether the work is offloaded to a package
  outside the discretization framework,
- ``type_name()``: the registered backend name.

Optional capabilities have explicit defaults:

- ``solve_with(matrix, controls)`` ignores the override and calls ``solve``,
- ``solve_owned(handle, controls=None)`` releases a TmpMatrix and delegates,
- ``check_matrix_sum(...)`` runs the row-sum change heuristic.

Shared services used by backends inside ``solve``:

- ``add_boundary_source`` / ``add_boundary_diag`` (boundary injection),
- ``get_foam_residuals`` (normalized residual with snapshot cache),
- ``_solve_segregated`` (component loop in the host framework's order).

Registry:
    One table per tensor rank maps a backend name to a constructor
    ``(field, mesh, fv_solution) -> SparseSolver``. Tables are isolated: a
    name registered for scalars is unknown to vectors. Registration is an
    explicit call; registering the same name twice for a rank is an error.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final, Protocol, TypeAlias

import numpy as np

from . import boundary
from .change_detector import HeuristicMismatch, MatrixChangeDetector
from .config import FvSolution, SolverControls, parse_controls
from .errors import (
    DuplicateBackendError,
    raise_patch_mismatch,
    raise_unknown_backend,
)
from .matrix import FvMatrix, TmpMatrix
from .ranks import ALL_RANKS, FieldRank, validate_rank
from .residuals import ResidualEvaluator

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping, Sequence

    from numpy.typing import NDArray

    from .fields import VolField
    from .interfaces import InterfaceField
    from .mesh import FvMesh


logger = logging.getLogger(__name__)

_NOT_COPYABLE_MSG: Final[str] = (
    "{cls} instances bind a live mesh and system and cannot be copied"
)
_DUPLICATE_BACKEND_MSG: Final[str] = (
    "Sparse solver '{name}' is already registered for rank '{rank}'"
)


# =============================================================================
# Solve records
# =============================================================================


@dataclass(slots=True)
class SolverPerformance:
    """Outcome of solving one component.

    Attributes:
        solver_name: Backend name.
        field_name: Name of the solved field.
        component: Solved component index.
        initial_residual: Normalized residual before the solve.
        final_residual: Normalized residual after the solve.
        n_iterations: Iterations performed (1 for direct solves).
        converged: Whether the backend met its tolerance.
    """

    solver_name: str
    field_name: str
    component: int = 0
    initial_residual: float = 0.0
    final_residual: float = 0.0
    n_iterations: int = 0
    converged: bool = False

    def summary(self) -> str:
        """Return the one-line report used in solver logs."""
        return (
            f"{self.solver_name}:  Solving for {self.field_name}[{self.component}], "
            f"Initial residual = {self.initial_residual:.6g}, "
            f"Final residual = {self.final_residual:.6g}, "
            f"No Iterations {self.n_iterations}"
        )


@dataclass(slots=True)
class ComponentSystem:
    """One component of an assembled system, boundary contributions folded in.

    Attributes:
        cmpt: Component index.
        diag: Diagonal with internal coefficients added, shape (n_cells,).
        source: Source with plain-patch contributions added, shape (n_cells,).
        bou_coeffs: Boundary coefficients of the component, per patch.
        interfaces: Coupled interfaces, per patch.
        slot: Solve slot of this call within the current time step.
        vcmpt: Key of this (slot, component) pair for cached per-solve state.
    """

    cmpt: int
    diag: NDArray[np.floating]
    source: NDArray[np.floating]
    bou_coeffs: list[NDArray[np.floating]]
    interfaces: Sequence[InterfaceField | None]
    slot: int
    vcmpt: int


class ComponentSolveFunction(Protocol):
    """Callable solving one component of a segregated system in place."""

    def __call__(
        self,
        matrix: FvMatrix,
        psi_cmpt: NDArray[np.floating],
        system: ComponentSystem,
        controls: SolverControls,
    ) -> SolverPerformance:
        """Solve for psi_cmpt in place and report the outcome."""
        ...


# =============================================================================
# Solver contract
# =============================================================================


class SparseSolver(ABC):
    """Base class of sparse-solver backends."""

    def __init__(
        self,
        field: VolField,
        mesh: FvMesh,
        fv_solution: FvSolution | Mapping[str, Any],
    ) -> None:
        """Initialize SparseSolver.

        Args:
            field: Field whose equation this instance solves.
            mesh: Mesh the field lives on.
            fv_solution: Solution dictionary holding the ``solvers`` section.

        Raises:
            ConfigurationError: If the field has no valid solver entry.
        """
        solution = FvSolution.coerce(fv_solution)
        self._mesh = mesh
        self._sol_dict: dict[str, dict[str, Any]] = solution.solvers
        self._field_name = field.name
        self._controls = solution.controls(field.name)

        self._residuals = ResidualEvaluator()
        self._change_detector = MatrixChangeDetector(
            rel_tol=self._controls.matrix_sum_tol,
            max_checks=self._controls.n_eval_init,
        )
        self._slot_time_index: int | None = None
        self._slot = -1

    def __copy__(self) -> SparseSolver:
        raise TypeError(_NOT_COPYABLE_MSG.format(cls=type(self).__name__))

    def __deepcopy__(self, memo: dict[int, Any]) -> SparseSolver:
        raise TypeError(_NOT_COPYABLE_MSG.format(cls=type(self).__name__))

    def __repr__(self) -> str:
        return f"{type(self).__name__}(field={self._field_name!r})"

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def mesh(self) -> FvMesh:
        """Mesh reference."""
        return self._mesh

    @property
    def sol_dict(self) -> dict[str, dict[str, Any]]:
        """The ``solvers`` section this instance was built from."""
        return self._sol_dict

    @property
    def controls(self) -> SolverControls:
        """Validated controls of the bound field."""
        return self._controls

    @property
    def residual_evaluator(self) -> ResidualEvaluator:
        """Residual evaluator owned by this instance."""
        return self._residuals

    @property
    def change_detector(self) -> MatrixChangeDetector:
        """Matrix-change detector owned by this instance."""
        return self._change_detector

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    @abstractmethod
    def type_name(self) -> str:
        """Return the registered backend name."""

    @abstractmethod
    def is_external_solver(self) -> bool:
        """Whether the backend relies on a package outside the framework."""

    @abstractmethod
    def solve(self, matrix: FvMatrix) -> list[SolverPerformance]:
        """Solve the system for its field, updating the field in place."""

    def solve_with(
        self,
        matrix: FvMatrix,
        controls: SolverControls | Mapping[str, Any],  # noqa: ARG002
    ) -> list[SolverPerformance]:
        """Solve with override controls.

        The default ignores the override; backends whose behaviour depends on
        the controls reimplement this.
        """
        return self.solve(matrix)

    def solve_owned(
        self,
        handle: TmpMatrix,
        controls: SolverControls | Mapping[str, Any] | None = None,
    ) -> list[SolverPerformance]:
        """Solve a system the caller relinquishes.

        Args:
            handle: Handle whose matrix is released for this solve.
            controls: Optional override controls.

        Returns:
            Performance records, as returned by solve/solve_with.
        """
        matrix = handle.release()
        if controls is None:
            return self.solve(matrix)
        return self.solve_with(matrix, controls)

    def _resolve_controls(
        self,
        controls: SolverControls | Mapping[str, Any] | None,
    ) -> SolverControls:
        if controls is None:
            return self._controls
        return parse_controls(controls, field_name=self._field_name)

    # ------------------------------------------------------------------
    # Shared services
    # ------------------------------------------------------------------

    def add_boundary_source(
        self,
        source: NDArray[np.floating],
        matrix: FvMatrix,
        field: VolField,
        couples: bool = True,  # noqa: FBT001, FBT002
    ) -> None:
        """Add boundary contributions to source in place."""
        boundary.add_boundary_source(source, matrix, field, couples=couples)

    def add_boundary_diag(
        self,
        diag: NDArray[np.floating],
        cmpt: int,
        matrix: FvMatrix,
    ) -> None:
        """Add one component of the internal coefficients to diag in place."""
        boundary.add_boundary_diag(diag, cmpt, matrix)

    def get_foam_residuals(
        self,
        field: VolField,
        matrix: FvMatrix,
        source_cmpt: NDArray[np.floating],
        psi_cmpt: NDArray[np.floating],
        save_diag: NDArray[np.floating],
        bou_coeffs_cmpt: Sequence[NDArray[np.floating]],
        interfaces: Sequence[InterfaceField | None],
        n_eval_init: int,
        save_system: bool,  # noqa: FBT001
        cmpt: int,
        vcmpt: int,
    ) -> float:
        """Normalized residual of one component (see fvsparse.residuals)."""
        return self._residuals.get_foam_residuals(
            field,
            matrix,
            source_cmpt,
            psi_cmpt,
            save_diag,
            bou_coeffs_cmpt,
            interfaces,
            n_eval_init,
            save_system,
            cmpt,
            vcmpt,
        )

    def check_matrix_sum(
        self,
        row_sum: NDArray[np.floating],
        name: str,
        tindex: int,
        vcmpt: int,
    ) -> HeuristicMismatch | None:
        """Check whether the matrix coefficients changed since the last solve.

        Compares the global sum of ``|row_sum|`` with the value stored for
        ``(name, tindex, vcmpt)``. The comparison is a heuristic: drift that
        preserves the summary goes unnoticed. Backends with a cheaper or exact
        change signal override this method.

        Returns:
            A HeuristicMismatch if drift was detected at this call, else None.
        """
        mismatch = self._change_detector.check(
            row_sum,
            name,
            tindex,
            vcmpt,
            reduce=self._mesh.reduce_sum,
        )
        if mismatch is not None:
            logger.debug(
                "%s: coefficients of %s[%d] changed (relative change %.3e)",
                self.type_name(),
                name,
                vcmpt,
                mismatch.relative_change,
            )
            self._residuals.reset(vcmpt)
        return mismatch

    def matrix_changed(self, name: str, tindex: int, vcmpt: int) -> bool:
        """Whether coefficient drift has been flagged for a key."""
        return self._change_detector.changed(name, tindex, vcmpt)

    def _next_slot(self, field: VolField, n_slots: int) -> int:
        """Return the solve slot of this call within the field's time step.

        The k-th solve of a time step uses slot k, up to ``n_slots - 1``;
        later solves of the same step share the last slot.
        """
        if self._slot_time_index != field.time_index:
            self._slot_time_index = field.time_index
            self._slot = -1
        self._slot = min(self._slot + 1, n_slots - 1)
        return self._slot

    def _check_alignment(self, matrix: FvMatrix) -> None:
        n_patches = self._mesh.n_patches
        interfaces = matrix.interfaces()
        if len(interfaces) != n_patches:
            raise_patch_mismatch(
                what="interfaces", expected=n_patches, got=len(interfaces)
            )
        for what, coeffs in (
            ("internal coefficients", matrix.internal_coeffs),
            ("boundary coefficients", matrix.boundary_coeffs),
        ):
            if len(coeffs) != n_patches:
                raise_patch_mismatch(what=what, expected=n_patches, got=len(coeffs))

    def _solve_segregated(
        self,
        matrix: FvMatrix,
        controls: SolverControls,
        solve_component: ComponentSolveFunction,
    ) -> list[SolverPerformance]:
        """Solve the components of a system one after the other.

        For each component, the diagonal gets the internal coefficients, the
        source gets the plain-patch contributions (coupled patches stay
        implicit through the interfaces), and the solved values are written
        back to the field before moving on.

        Args:
            matrix: Assembled system; its diagonal and source are not modified.
            controls: Controls in effect for this solve.
            solve_component: Backend routine solving one component in place.

        Returns:
            One performance record per component.
        """
        self._check_alignment(matrix)
        field = matrix.psi
        slot = self._next_slot(field, controls.n_slots)

        save_diag = matrix.diag.copy()
        source = matrix.source.copy()
        self.add_boundary_source(source, matrix, field, couples=False)
        interfaces = matrix.interfaces()

        performances: list[SolverPerformance] = []
        for cmpt in range(field.n_components):
            diag = save_diag.copy()
            self.add_boundary_diag(diag, cmpt, matrix)
            system = ComponentSystem(
                cmpt=cmpt,
                diag=diag,
                source=np.ascontiguousarray(source[:, cmpt]),
                bou_coeffs=matrix.boundary_coeffs_component(cmpt),
                interfaces=interfaces,
                slot=slot,
                vcmpt=slot * field.n_components + cmpt,
            )
            psi_cmpt = field.component(cmpt)
            perf = solve_component(matrix, psi_cmpt, system, controls)
            field.replace(cmpt, psi_cmpt)
            logger.info(perf.summary())
            performances.append(perf)
        return performances

    def _residual(
        self,
        matrix: FvMatrix,
        psi_cmpt: NDArray[np.floating],
        system: ComponentSystem,
        controls: SolverControls,
        *,
        save_system: bool = False,
    ) -> float:
        """Normalized residual of psi_cmpt for a component system."""
        return self.get_foam_residuals(
            matrix.psi,
            matrix,
            system.source,
            psi_cmpt,
            system.diag,
            system.bou_coeffs,
            system.interfaces,
            controls.n_eval_init,
            save_system,
            system.cmpt,
            system.vcmpt,
        )


# =============================================================================
# Registry
# =============================================================================

SolverConstructor: TypeAlias = (
    "Callable[[VolField, FvMesh, FvSolution | Mapping[str, Any]], SparseSolver]"
)


class SparseSolverRegistry:
    """Backend constructors keyed by (rank, name), one table per rank."""

    def __init__(self) -> None:
        """Initialize empty tables for all ranks."""
        self._tables: dict[FieldRank, dict[str, SolverConstructor]] = {
            rank: {} for rank in ALL_RANKS
        }

    def register(
        self,
        name: str,
        constructor: SolverConstructor,
        *,
        ranks: Iterable[str] = ALL_RANKS,
    ) -> None:
        """Register a backend constructor.

        Args:
            name: Backend name, as used by ``solverType``.
            constructor: Callable building the backend.
            ranks: Ranks the backend supports.

        Raises:
            DuplicateBackendError: If name is already registered for a rank.
        """
        resolved = [validate_rank(rank) for rank in ranks]
        for rank in resolved:
            if name in self._tables[rank]:
                raise DuplicateBackendError(
                    _DUPLICATE_BACKEND_MSG.format(name=name, rank=rank)
                )
        for rank in resolved:
            self._tables[rank][name] = constructor
            logger.debug("Registered sparse solver '%s' for rank '%s'", name, rank)

    def is_registered(self, name: str, rank: str) -> bool:
        """Whether a backend name is registered for a rank."""
        return name in self._tables[validate_rank(rank)]

    def names(self, rank: str) -> list[str]:
        """Backend names registered for a rank, sorted."""
        return sorted(self._tables[validate_rank(rank)])

    def lookup(self, name: str, rank: str, *, field_name: str) -> SolverConstructor:
        """Return the constructor of a backend.

        Raises:
            ConfigurationError: If name is not registered for rank.
        """
        table = self._tables[validate_rank(rank)]
        constructor = table.get(name)
        if constructor is None:
            raise_unknown_backend(name, field_name=field_name, rank=rank, valid=table)
        return constructor

    def new(
        self,
        field: VolField,
        mesh: FvMesh,
        fv_solution: FvSolution | Mapping[str, Any],
    ) -> SparseSolver:
        """Build the backend selected for a field.

        Reads ``solverType`` from the field's entry in the ``solvers`` section
        and instantiates the backend registered under that name for the
        field's rank.

        Raises:
            ConfigurationError: If the entry is missing, invalid, or names a
                backend not registered for the field's rank.

        Returns:
            A new backend instance bound to field and mesh.
        """
        solution = FvSolution.coerce(fv_solution)
        controls = solution.controls(field.name)
        constructor = self.lookup(
            controls.solver_type, field.rank, field_name=field.name
        )
        logger.debug(
            "Selecting sparse solver '%s' for field '%s' (rank '%s')",
            controls.solver_type,
            field.name,
            field.rank,
        )
        return constructor(field, mesh, solution)


_DEFAULT_REGISTRY = SparseSolverRegistry()


def default_registry() -> SparseSolverRegistry:
    """Return the process-wide registry."""
    return _DEFAULT_REGISTRY


def register_backend(
    name: str,
    constructor: SolverConstructor,
    *,
    ranks: Iterable[str] = ALL_RANKS,
) -> None:
    """Register a backend in the process-wide registry."""
    _DEFAULT_REGISTRY.register(name, constructor, ranks=ranks)


def registered_backends(rank: str) -> list[str]:
    """Backend names registered for a rank in the process-wide registry."""
    return _DEFAULT_REGISTRY.names(rank)


def new_sparse_solver(
    field: VolField,
    mesh: FvMesh,
    fv_solution: FvSolution | Mapping[str, Any],
    *,
    registry: SparseSolverRegistry | None = None,
) -> SparseSolver:
    """Build the backend selected for a field.

    Args:
        field: Field whose equation is solved.
        mesh: Mesh the field lives on.
        fv_solution: Solution dictionary holding the ``solvers`` section.
        registry: Registry to use; the process-wide one if None.

    Returns:
        A new backend instance.
    """
    reg = _DEFAULT_REGISTRY if registry is None else registry
    return reg.new(field, mesh, fv_solution)
