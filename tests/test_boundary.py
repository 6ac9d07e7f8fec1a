# tests/test_boundary.py
"""Unit tests for fvsparse.boundary.

This module verifies:
- Zero boundary/internal coefficients leave source and diagonal unchanged.
- Plain patches inject their boundary coefficients into the owning cells.
- Coupled patches contribute only when ``couples`` is set.
- Faces sharing a cell accumulate.
- Misaligned per-patch lists are rejected.
"""

from __future__ import annotations

import numpy as np
import pytest

from fvsparse.boundary import add_boundary_diag, add_boundary_source
from fvsparse.errors import PatchInterfaceMismatchError
from fvsparse.fields import VolField
from fvsparse.matrix import FvMatrix
from fvsparse.mesh import BoundaryPatch, FvMesh, line_mesh

# -------------------------------------------------------------------
# No-op properties
# -------------------------------------------------------------------


@pytest.mark.parametrize("periodic", [False, True])
@pytest.mark.parametrize("rank", ["scalar", "vector", "symmTensor"])
def test_zero_coefficients_are_no_ops(*, periodic: bool, rank: str) -> None:
    """Zero coefficients on every patch leave source and diag untouched."""
    mesh = line_mesh(4, periodic=periodic)
    rng = np.random.default_rng(3)
    field = VolField("U", mesh, 0.0, rank=rank)
    field.internal[:] = rng.normal(size=field.internal.shape)
    matrix = FvMatrix(field, np.ones(4))

    source = rng.normal(size=(4, field.n_components))
    expected_source = source.copy()
    add_boundary_source(source, matrix, field)
    np.testing.assert_array_equal(source, expected_source)

    for cmpt in range(field.n_components):
        diag = rng.normal(size=4)
        expected_diag = diag.copy()
        add_boundary_diag(diag, cmpt, matrix)
        np.testing.assert_array_equal(diag, expected_diag)


# -------------------------------------------------------------------
# Plain patches
# -------------------------------------------------------------------


def test_fixed_value_patches_inject_into_end_cells(line3: FvMesh) -> None:
    """Unit coefficients on both ends add 1 to the first and last cell."""
    field = VolField("T", line3, 0.0, boundary={"left": 1.0, "right": 1.0})
    matrix = FvMatrix(
        field,
        np.full(3, 2.0),
        boundary_coeffs=[np.ones(1), np.ones(1)],
    )

    source = np.zeros(3)
    add_boundary_source(source, matrix, field)

    np.testing.assert_array_equal(source, [1.0, 0.0, 1.0])


def test_internal_coeffs_add_per_component() -> None:
    """Each component of the internal coefficients goes to its own diagonal."""
    mesh = line_mesh(3)
    field = VolField("U", mesh, 0.0, rank="vector")
    matrix = FvMatrix(
        field,
        np.zeros(3),
        internal_coeffs=[[[1.0, 2.0, 3.0]], [[4.0, 5.0, 6.0]]],
    )

    for cmpt, (left, right) in enumerate([(1.0, 4.0), (2.0, 5.0), (3.0, 6.0)]):
        diag = np.zeros(3)
        add_boundary_diag(diag, cmpt, matrix)
        np.testing.assert_array_equal(diag, [left, 0.0, right])


def test_faces_sharing_a_cell_accumulate() -> None:
    """Two faces of one patch next to the same cell both contribute."""
    mesh = FvMesh(
        n_cells=2,
        lower_addr=[0],
        upper_addr=[1],
        patches=(BoundaryPatch("wall", "plain", [0, 0]),),
    )
    field = VolField("T", mesh, 0.0)
    matrix = FvMatrix(
        field,
        np.zeros(2),
        internal_coeffs=[[0.5, 0.25]],
        boundary_coeffs=[[2.0, 3.0]],
    )

    source = np.zeros((2, 1))
    add_boundary_source(source, matrix, field)
    diag = np.zeros(2)
    add_boundary_diag(diag, 0, matrix)

    np.testing.assert_array_equal(source[:, 0], [5.0, 0.0])
    np.testing.assert_array_equal(diag, [0.75, 0.0])


# -------------------------------------------------------------------
# Coupled patches
# -------------------------------------------------------------------


def test_cyclic_contribution_depends_on_couples() -> None:
    """Cyclic patches add coeff * neighbour value only when couples is set."""
    mesh = line_mesh(3, periodic=True)
    field = VolField("T", mesh, [10.0, 20.0, 30.0])
    matrix = FvMatrix(field, np.ones(3), boundary_coeffs=[[2.0], [3.0]])

    implicit = np.zeros(3)
    add_boundary_source(implicit, matrix, field, couples=False)
    np.testing.assert_array_equal(implicit, np.zeros(3))

    explicit = np.zeros(3)
    add_boundary_source(explicit, matrix, field)
    # left (cell 0) sees cell 2 across the cycle, right (cell 2) sees cell 0
    np.testing.assert_array_equal(explicit, [2.0 * 30.0, 0.0, 3.0 * 10.0])


def test_source_must_match_field_shape(line3: FvMesh) -> None:
    """A source with the wrong shape is rejected."""
    field = VolField("U", line3, 0.0, rank="vector")
    matrix = FvMatrix(field, np.ones(3))

    with pytest.raises(ValueError, match="source has shape"):
        add_boundary_source(np.zeros(3), matrix, field)


def test_misaligned_coefficients_are_rejected(line3: FvMesh) -> None:
    """Coefficient lists shorter than the patch list raise."""
    field = VolField("T", line3, 0.0)
    matrix = FvMatrix(field, np.ones(3))
    matrix.internal_coeffs = matrix.internal_coeffs[:1]

    with pytest.raises(PatchInterfaceMismatchError, match="2 boundary patches"):
        add_boundary_diag(np.zeros(3), 0, matrix)
