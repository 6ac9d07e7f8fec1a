"""Global pytest configuration and shared fixtures for fvsparse."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import numpy as np
import pytest

from fvsparse.backends import register_builtin_backends
from fvsparse.fields import VolField
from fvsparse.matrix import FvMatrix
from fvsparse.mesh import FvMesh, line_mesh
from fvsparse.sparse_solver import SparseSolverRegistry

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray

    from fvsparse.ranks import FieldRank


# -----------------------------------------------------------------------------
# Builders
# -----------------------------------------------------------------------------


def _solution_dict(field_name: str, solver_type: str, **controls: Any) -> dict:  # noqa: ANN401
    """Return a minimal solution dictionary with one solver entry."""
    return {"solvers": {field_name: {"solverType": solver_type, **controls}}}


def _diffusion_matrix(
    field: VolField,
    *,
    reaction: float = 0.0,
    wall_coeff: float = 1.0,
    boundary_values: Sequence[float] | None = None,
) -> FvMatrix:
    """Assemble a unit-coefficient 1-D diffusion(-reaction) system.

    Internal faces couple neighbours with -1. Every patch adds ``wall_coeff``
    to the diagonal of its cell. Plain patches put ``wall_coeff * value`` in
    the boundary coefficients; coupled patches use ``wall_coeff`` as the
    coupling coefficient.

    Args:
        field: Field to assemble for; its mesh provides the addressing.
        reaction: Extra diagonal term per cell.
        wall_coeff: Face coefficient of the boundary patches.
        boundary_values: Value per patch (plain patches only), broadcast over
            all components. Defaults to zero.

    Returns:
        The assembled FvMatrix with a zero source.
    """
    mesh = field.mesh
    n_cmpt = field.n_components
    values = [0.0] * mesh.n_patches if boundary_values is None else boundary_values

    diag = np.full(mesh.n_cells, reaction, dtype=np.float64)
    np.add.at(diag, mesh.lower_addr, 1.0)
    np.add.at(diag, mesh.upper_addr, 1.0)
    lower = -np.ones(mesh.n_internal_faces)

    internal = [np.full((p.size, n_cmpt), wall_coeff) for p in mesh.patches]
    bou = []
    for patch, value in zip(mesh.patches, values, strict=True):
        scale = wall_coeff if patch.coupled else wall_coeff * value
        bou.append(np.full((patch.size, n_cmpt), scale))
    return FvMatrix(
        field,
        diag,
        lower=lower,
        internal_coeffs=internal,
        boundary_coeffs=bou,
    )


def _dense_reference(matrix: FvMatrix, cmpt: int = 0) -> tuple[NDArray, NDArray]:
    """Assemble the dense (A, b) of one component independently of FvMatrix.

    Only plain and cyclic patches are supported.

    Returns:
        The dense matrix and right-hand side.
    """
    mesh = matrix.mesh
    n = mesh.n_cells
    a = np.diag(np.asarray(matrix.diag, dtype=np.float64).copy())
    for f, (lo, up) in enumerate(zip(mesh.lower_addr, mesh.upper_addr, strict=True)):
        a[up, lo] += matrix.lower[f]
        a[lo, up] += matrix.upper_coeffs[f]
    b = matrix.source[:, cmpt].copy()

    for patchi, patch in enumerate(mesh.patches):
        ic = matrix.internal_coeffs[patchi][:, cmpt]
        bc = matrix.boundary_coeffs[patchi][:, cmpt]
        for face, cell in enumerate(patch.face_cells):
            a[cell, cell] += ic[face]
            if patch.kind == "plain":
                b[cell] += bc[face]
            else:
                nbr = mesh.patch(str(patch.neighbour_patch)).face_cells[face]
                a[cell, nbr] -= bc[face]
    assert a.shape == (n, n)
    return a, b


# -----------------------------------------------------------------------------
# Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def registry() -> SparseSolverRegistry:
    """Fresh registry holding the shipped backends."""
    reg = SparseSolverRegistry()
    register_builtin_backends(reg)
    return reg


@pytest.fixture
def line3() -> FvMesh:
    """Three cells in a row with plain 'left' and 'right' patches."""
    return line_mesh(3)


@pytest.fixture
def make_field():
    """Factory for zero-initialized fields on a mesh."""

    def _make(
        mesh: FvMesh,
        name: str = "T",
        rank: FieldRank = "scalar",
        *,
        time_index: int = 0,
    ) -> VolField:
        return VolField(name, mesh, 0.0, rank=rank, time_index=time_index)

    return _make


@pytest.fixture
def solution_dict():
    """Builder of one-entry solution dictionaries."""
    return _solution_dict


@pytest.fixture
def diffusion_matrix():
    """Builder of 1-D diffusion(-reaction) systems."""
    return _diffusion_matrix


@pytest.fixture
def dense_reference():
    """Independent dense assembly of an FvMatrix component."""
    return _dense_reference
