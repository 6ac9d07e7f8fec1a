# src/fvsparse/matrix.py
"""Assembled finite-volume linear systems in lower/diagonal/upper form.

The discretization hands the solver layer an FvMatrix:

- ``diag``: one coefficient per cell,
- ``lower``/``upper``: one coefficient per internal face. ``lower[f]`` sits in
  row ``upper_addr[f]``, column ``lower_addr[f]``; ``upper[f]`` sits in row
  ``lower_addr[f]``, column ``upper_addr[f]``. A matrix without ``upper`` is
  symmetric,
- ``source``: right-hand side, one component row per cell,
- ``internal_coeffs``/``boundary_coeffs``: per-patch coefficients in mesh
  patch order. Internal coefficients add to the diagonal; boundary
  coefficients either carry the fixed boundary contribution to the source
  (plain patches) or couple to the neighbour cell across the patch (coupled
  patches, entering the matrix as ``-coeff``).

The matrix-vector product, row sums and normalization factor follow the
host discretization's own definitions so residuals agree across backends.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import numpy as np
import numpy.typing as npt
from scipy.sparse import coo_matrix, csr_matrix

from .errors import PatchInterfaceMismatchError, raise_patch_mismatch

if TYPE_CHECKING:
    from collections.abc import Sequence

    from .fields import VolField
    from .interfaces import InterfaceField
    from .mesh import FvMesh


FloatArray = npt.NDArray[np.floating[Any]]

_DIAG_SHAPE_ERROR = "diag has shape {actual}; expected ({n_cells},)"
_FACE_COEFF_SHAPE_ERROR = "{what} has shape {actual}; expected ({n_faces},)"
_SOURCE_SHAPE_ERROR = "source has shape {actual}; expected {expected}"
_PATCH_COEFF_SHAPE_ERROR = (
    "{what} on patch '{patch}' has shape {actual}; expected {expected}"
)
_RELEASED_ERROR = "TmpMatrix has already been released"


class FvMatrix:
    """Assembled linear system for one field, in LDU form."""

    def __init__(
        self,
        psi: VolField,
        diag: object,
        source: object | None = None,
        *,
        lower: object | None = None,
        upper: object | None = None,
        internal_coeffs: Sequence[object] | None = None,
        boundary_coeffs: Sequence[object] | None = None,
    ) -> None:
        """
        Initialize FvMatrix.

        Args:
            psi: Field solved for. Its mesh provides the addressing.
            diag: Diagonal coefficients, shape (n_cells,).
            source: Source, shape (n_cells, n_components). Defaults to zero.
            lower: Lower coefficients, shape (n_internal_faces,). Defaults to zero.
            upper: Upper coefficients; None means symmetric (upper = lower).
            internal_coeffs: Per-patch diagonal contributions,
                each (n_patch_faces, n_components). Defaults to zero.
            boundary_coeffs: Per-patch source/coupling contributions,
                each (n_patch_faces, n_components). Defaults to zero.

        Raises:
            ValueError: If an array has an incompatible shape.
            PatchInterfaceMismatchError: If a per-patch list is misaligned.
        """
        self.psi = psi
        mesh = psi.mesh
        n_cmpt = psi.n_components

        self.diag = np.array(diag, dtype=np.float64).reshape(-1)
        if self.diag.shape != (mesh.n_cells,):
            raise ValueError(
                _DIAG_SHAPE_ERROR.format(actual=self.diag.shape, n_cells=mesh.n_cells)
            )

        self.lower = self._face_coeffs(lower, "lower")
        self.upper: FloatArray | None = (
            None if upper is None else self._face_coeffs(upper, "upper")
        )

        expected = (mesh.n_cells, n_cmpt)
        if source is None:
            self.source = np.zeros(expected, dtype=np.float64)
        else:
            self.source = np.array(source, dtype=np.float64)
            if self.source.ndim == 1 and n_cmpt == 1:
                self.source = self.source.reshape(-1, 1)
        if self.source.shape != expected:
            raise ValueError(
                _SOURCE_SHAPE_ERROR.format(actual=self.source.shape, expected=expected)
            )

        self.internal_coeffs = self._patch_coeffs(internal_coeffs, "internal_coeffs")
        self.boundary_coeffs = self._patch_coeffs(boundary_coeffs, "boundary_coeffs")

    def _face_coeffs(self, values: object | None, what: str) -> FloatArray:
        n_faces = self.mesh.n_internal_faces
        if values is None:
            return np.zeros(n_faces, dtype=np.float64)
        arr = np.array(values, dtype=np.float64).reshape(-1)
        if arr.shape != (n_faces,):
            raise ValueError(
                _FACE_COEFF_SHAPE_ERROR.format(
                    what=what, actual=arr.shape, n_faces=n_faces
                )
            )
        return arr

    def _patch_coeffs(
        self,
        values: Sequence[object] | None,
        what: str,
    ) -> list[FloatArray]:
        patches = self.mesh.patches
        n_cmpt = self.psi.n_components
        if values is None:
            return [np.zeros((p.size, n_cmpt), dtype=np.float64) for p in patches]
        if len(values) != len(patches):
            raise_patch_mismatch(what=what, expected=len(patches), got=len(values))

        out: list[FloatArray] = []
        for patch, coeffs in zip(patches, values, strict=True):
            arr = np.array(coeffs, dtype=np.float64)
            if arr.ndim == 0:
                arr = np.full((patch.size, n_cmpt), float(arr))
            elif arr.ndim == 1 and n_cmpt == 1:
                arr = arr.reshape(-1, 1)
            if arr.shape != (patch.size, n_cmpt):
                raise PatchInterfaceMismatchError(
                    _PATCH_COEFF_SHAPE_ERROR.format(
                        what=what,
                        patch=patch.name,
                        actual=arr.shape,
                        expected=(patch.size, n_cmpt),
                    )
                )
            out.append(arr)
        return out

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def mesh(self) -> FvMesh:
        """Mesh providing the addressing."""
        return self.psi.mesh

    @property
    def symmetric(self) -> bool:
        """Whether the off-diagonal part is symmetric."""
        return self.upper is None

    @property
    def upper_coeffs(self) -> FloatArray:
        """Upper coefficients (the lower ones for a symmetric matrix)."""
        return self.lower if self.upper is None else self.upper

    def boundary_coeffs_component(self, cmpt: int) -> list[FloatArray]:
        """Return one component of the boundary coefficients, per patch."""
        return [np.ascontiguousarray(c[:, cmpt]) for c in self.boundary_coeffs]

    def internal_coeffs_component(self, cmpt: int) -> list[FloatArray]:
        """Return one component of the internal coefficients, per patch."""
        return [np.ascontiguousarray(c[:, cmpt]) for c in self.internal_coeffs]

    def interfaces(self) -> list[InterfaceField | None]:
        """Return the coupled interfaces of the field, one slot per patch."""
        return self.psi.scalar_interfaces()

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    def _check_aligned(
        self,
        bou_coeffs_cmpt: Sequence[FloatArray],
        interfaces: Sequence[InterfaceField | None],
    ) -> None:
        n_patches = self.mesh.n_patches
        if len(interfaces) != n_patches:
            raise_patch_mismatch(
                what="interfaces", expected=n_patches, got=len(interfaces)
            )
        if len(bou_coeffs_cmpt) != n_patches:
            raise_patch_mismatch(
                what="boundary coefficients",
                expected=n_patches,
                got=len(bou_coeffs_cmpt),
            )

    def amul(
        self,
        psi_cmpt: FloatArray,
        bou_coeffs_cmpt: Sequence[FloatArray],
        interfaces: Sequence[InterfaceField | None],
        cmpt: int,
        *,
        diag: FloatArray | None = None,
    ) -> FloatArray:
        """Compute A @ psi for one component, including coupled interfaces.

        Args:
            psi_cmpt: Component of psi, shape (n_cells,).
            bou_coeffs_cmpt: Boundary coefficients of the component, per patch.
            interfaces: Coupled interfaces, per patch (None for plain patches).
            cmpt: Component index, forwarded to the interfaces.
            diag: Diagonal to use instead of the stored one (e.g. with boundary
                contributions added).

        Returns:
            The product, shape (n_cells,).
        """
        self._check_aligned(bou_coeffs_cmpt, interfaces)
        mesh = self.mesh
        l_addr = mesh.lower_addr
        u_addr = mesh.upper_addr
        d = self.diag if diag is None else diag

        apsi = d * psi_cmpt
        np.add.at(apsi, u_addr, self.lower * psi_cmpt[l_addr])
        np.add.at(apsi, l_addr, self.upper_coeffs * psi_cmpt[u_addr])

        for interface, coeffs in zip(interfaces, bou_coeffs_cmpt, strict=True):
            if interface is not None:
                interface.update_interface_matrix(apsi, psi_cmpt, coeffs, cmpt)
        return apsi

    def sum_a(
        self,
        bou_coeffs_cmpt: Sequence[FloatArray],
        interfaces: Sequence[InterfaceField | None],
        *,
        diag: FloatArray | None = None,
    ) -> FloatArray:
        """Row sums of A, with coupled interface coefficients included.

        Returns:
            Row sums, shape (n_cells,).
        """
        self._check_aligned(bou_coeffs_cmpt, interfaces)
        mesh = self.mesh
        d = self.diag if diag is None else diag

        sum_a = np.array(d, dtype=np.float64, copy=True)
        np.add.at(sum_a, mesh.upper_addr, self.lower)
        np.add.at(sum_a, mesh.lower_addr, self.upper_coeffs)

        for interface, coeffs in zip(interfaces, bou_coeffs_cmpt, strict=True):
            if interface is not None:
                np.subtract.at(sum_a, interface.patch.face_cells, coeffs)
        return sum_a

    def norm_factor(
        self,
        psi_cmpt: FloatArray,
        source_cmpt: FloatArray,
        apsi: FloatArray,
        sum_a: FloatArray,
    ) -> float:
        """Unclamped residual normalization factor.

        ``x_ref`` is the global average of psi; the factor is
        ``gSum(|A psi - sumA x_ref| + |b - sumA x_ref|)``.

        Returns:
            The normalization factor, without the small-number guard.
        """
        mesh = self.mesh
        n_global = mesh.reduce_sum(float(psi_cmpt.size))
        x_ref = mesh.reduce_sum(float(np.sum(psi_cmpt))) / max(n_global, 1.0)
        ref = sum_a * x_ref
        local = float(np.sum(np.abs(apsi - ref) + np.abs(source_cmpt - ref)))
        return mesh.reduce_sum(local)

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    def to_csr(
        self,
        diag: FloatArray | None = None,
        *,
        bou_coeffs_cmpt: Sequence[FloatArray] | None = None,
        interfaces: Sequence[InterfaceField | None] | None = None,
    ) -> csr_matrix:
        """Assemble the local matrix as CSR.

        Coupled interfaces whose neighbours live on this processor (cyclic
        patches) are embedded as ``-coeff`` off-diagonal entries when both
        ``bou_coeffs_cmpt`` and ``interfaces`` are given. Processor interfaces
        cannot be embedded and are left to the caller.

        Returns:
            Square CSR matrix of size n_cells.
        """
        mesh = self.mesh
        n = mesh.n_cells
        d = self.diag if diag is None else diag
        cells = np.arange(n, dtype=np.intp)

        rows = [cells, mesh.upper_addr, mesh.lower_addr]
        cols = [cells, mesh.lower_addr, mesh.upper_addr]
        vals = [np.asarray(d, dtype=np.float64), self.lower, self.upper_coeffs]

        if bou_coeffs_cmpt is not None and interfaces is not None:
            self._check_aligned(bou_coeffs_cmpt, interfaces)
            for interface, coeffs in zip(interfaces, bou_coeffs_cmpt, strict=True):
                if interface is None or not interface.is_local:
                    continue
                nbr = mesh.patch(str(interface.patch.neighbour_patch))
                rows.append(interface.patch.face_cells)
                cols.append(nbr.face_cells)
                vals.append(-np.asarray(coeffs, dtype=np.float64))

        coo = coo_matrix(
            (np.concatenate(vals), (np.concatenate(rows), np.concatenate(cols))),
            shape=(n, n),
        )
        return coo.tocsr()


class TmpMatrix:
    """Handle to a matrix the caller relinquishes to the solver.

    The solver releases the matrix exactly once; afterwards the handle is
    empty and the caller must not use the matrix through it.
    """

    __slots__ = ("_matrix",)

    def __init__(self, matrix: FvMatrix) -> None:
        self._matrix: FvMatrix | None = matrix

    @property
    def valid(self) -> bool:
        """Whether the handle still holds a matrix."""
        return self._matrix is not None

    def release(self) -> FvMatrix:
        """Take the matrix out of the handle.

        Raises:
            RuntimeError: If the matrix was already released.
        """
        if self._matrix is None:
            raise RuntimeError(_RELEASED_ERROR)
        matrix, self._matrix = self._matrix, None
        return matrix
