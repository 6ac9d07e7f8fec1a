# src/fvsparse/boundary.py
"""Fold boundary-patch contributions into plain source and diagonal arrays.

Backends hand plain arrays to third-party packages, so the per-patch
coefficients of an FvMatrix have to be folded into the cell rows first.
These two functions are the only place that happens:

- add_boundary_source: boundary coefficients into the source,
- add_boundary_diag: internal coefficients into the diagonal.

Both walk the patches in mesh order. Several faces may share a cell, so the
accumulation is unbuffered (``numpy.add.at``).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from .errors import raise_patch_mismatch

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from .fields import VolField
    from .matrix import FvMatrix

_SOURCE_SHAPE_ERROR = "source has shape {actual}; expected {expected}"
_DIAG_SHAPE_ERROR = "diag has shape {actual}; expected ({n_cells},)"


def add_boundary_source(
    source: NDArray[np.floating],
    matrix: FvMatrix,
    field: VolField,
    *,
    couples: bool = True,
) -> None:
    """Add boundary contributions to a source array in place.

    Plain patches add their boundary coefficients, which already carry the
    boundary values. Coupled patches add ``boundary_coeffs * neighbour`` with
    the neighbour values taken across the patch, or are skipped when
    ``couples`` is False (the coupling is then handled implicitly).

    Args:
        source: Source array, shape (n_cells, n_components) or (n_cells,) for
            single-component fields.
        matrix: Assembled system providing the boundary coefficients.
        field: Field providing the neighbour values of coupled patches.
        couples: Whether coupled patches contribute.

    Raises:
        ValueError: If source has the wrong shape.
    """
    mesh = field.mesh
    n_cmpt = field.n_components
    src2d = source.reshape(-1, 1) if source.ndim == 1 else source
    expected = (mesh.n_cells, n_cmpt)
    if src2d.shape != expected:
        raise ValueError(
            _SOURCE_SHAPE_ERROR.format(actual=source.shape, expected=expected)
        )
    if len(matrix.boundary_coeffs) != mesh.n_patches:
        raise_patch_mismatch(
            what="boundary coefficients",
            expected=mesh.n_patches,
            got=len(matrix.boundary_coeffs),
        )

    for patchi, patch in enumerate(mesh.patches):
        pbc = matrix.boundary_coeffs[patchi]
        if not patch.coupled:
            np.add.at(src2d, patch.face_cells, pbc)
        elif couples:
            pnf = field.patch_neighbour_field(patchi)
            np.add.at(src2d, patch.face_cells, pbc * pnf)


def add_boundary_diag(
    diag: NDArray[np.floating],
    cmpt: int,
    matrix: FvMatrix,
) -> None:
    """Add one component of the internal coefficients to a diagonal in place.

    Args:
        diag: Diagonal array, shape (n_cells,).
        cmpt: Component of the internal coefficients to add.
        matrix: Assembled system providing the internal coefficients.

    Raises:
        ValueError: If diag has the wrong shape.
    """
    mesh = matrix.mesh
    if diag.shape != (mesh.n_cells,):
        raise ValueError(
            _DIAG_SHAPE_ERROR.format(actual=diag.shape, n_cells=mesh.n_cells)
        )
    if len(matrix.internal_coeffs) != mesh.n_patches:
        raise_patch_mismatch(
            what="internal coefficients",
            expected=mesh.n_patches,
            got=len(matrix.internal_coeffs),
        )

    for patch, coeffs in zip(mesh.patches, matrix.internal_coeffs, strict=True):
        np.add.at(diag, patch.face_cells, coeffs[:, cmpt])
