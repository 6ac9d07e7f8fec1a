# src/fvsparse/interfaces.py
"""Coupled-patch interfaces used inside the matrix-vector product.

A coupled patch contributes ``-coeff * psi_neighbour`` to the rows of the
cells next to it. The interface objects below know how to fetch the
neighbour values for one solution component:

- cyclic patches read them from the partner patch on the same mesh,
- processor and processor-cyclic patches ask the mesh communicator for a
  halo exchange (a blocking collective the solver layer does not inspect).

Plain patches have no interface; interface lists hold ``None`` in their slot
so the list stays aligned with the mesh patch order.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, TypeAlias

import numpy as np

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray

    from .mesh import BoundaryPatch, FvMesh


class InterfaceField(Protocol):
    """Minimal coupled-interface contract consumed by the matrix product."""

    @property
    def patch(self) -> BoundaryPatch:
        """Return the patch this interface belongs to."""
        ...

    @property
    def is_local(self) -> bool:
        """Whether neighbour values live on this processor."""
        ...

    def patch_neighbour_field(
        self,
        psi_internal: NDArray[np.floating],
    ) -> NDArray[np.floating]:
        """Return the neighbour cell values seen across each patch face."""
        ...

    def update_interface_matrix(
        self,
        result: NDArray[np.floating],
        psi_internal: NDArray[np.floating],
        coeffs: NDArray[np.floating],
        cmpt: int,
    ) -> None:
        """Subtract coeffs * neighbour values from result in place."""
        ...


InterfaceList: TypeAlias = "Sequence[InterfaceField | None]"


class CoupledInterfaceField:
    """Shared behaviour of coupled interfaces."""

    def __init__(self, mesh: FvMesh, patch_index: int) -> None:
        self._mesh = mesh
        self._patch_index = patch_index
        self._patch = mesh.patches[patch_index]

    @property
    def patch(self) -> BoundaryPatch:
        """Return the patch this interface belongs to."""
        return self._patch

    @property
    def patch_index(self) -> int:
        """Return the patch enumeration index."""
        return self._patch_index

    @property
    def is_local(self) -> bool:
        """Whether neighbour values live on this processor."""
        return not self._patch.is_processor

    def patch_internal_field(
        self,
        psi_internal: NDArray[np.floating],
    ) -> NDArray[np.floating]:
        """Return psi in the cells next to the patch faces."""
        return psi_internal[self._patch.face_cells]

    def patch_neighbour_field(
        self,
        psi_internal: NDArray[np.floating],
    ) -> NDArray[np.floating]:
        """Return the neighbour cell values seen across each patch face."""
        raise NotImplementedError

    def update_interface_matrix(
        self,
        result: NDArray[np.floating],
        psi_internal: NDArray[np.floating],
        coeffs: NDArray[np.floating],
        cmpt: int,  # noqa: ARG002
    ) -> None:
        """Subtract coeffs * neighbour values from result in place.

        Args:
            result: Matrix-vector product being accumulated, shape (n_cells,).
            psi_internal: Component of psi being multiplied, shape (n_cells,).
            coeffs: Boundary coefficients of this patch for the component.
            cmpt: Solution component (kept for transform-aware interfaces).
        """
        pnf = self.patch_neighbour_field(psi_internal)
        np.subtract.at(result, self._patch.face_cells, coeffs * pnf)


class CyclicInterfaceField(CoupledInterfaceField):
    """Periodic coupling to a partner patch on the same mesh."""

    def __init__(self, mesh: FvMesh, patch_index: int) -> None:
        super().__init__(mesh, patch_index)
        self._nbr_patch = mesh.patch(str(self._patch.neighbour_patch))

    def patch_neighbour_field(
        self,
        psi_internal: NDArray[np.floating],
    ) -> NDArray[np.floating]:
        """Return psi in the cells next to the partner patch."""
        return psi_internal[self._nbr_patch.face_cells]


class ProcessorInterfaceField(CoupledInterfaceField):
    """Coupling across a processor boundary (plain or cyclic)."""

    def patch_neighbour_field(
        self,
        psi_internal: NDArray[np.floating],
    ) -> NDArray[np.floating]:
        """Exchange patch-internal values with the neighbouring processor."""
        received = self._mesh.comm.exchange(
            self._patch,
            np.ascontiguousarray(self.patch_internal_field(psi_internal)),
        )
        return np.asarray(received, dtype=psi_internal.dtype).reshape(
            self.patch_internal_field(psi_internal).shape
        )


def build_interfaces(mesh: FvMesh) -> list[InterfaceField | None]:
    """Build the interface list of a mesh, aligned with its patches.

    Args:
        mesh: Mesh whose patches are enumerated.

    Returns:
        One entry per patch: None for plain patches, an interface otherwise.
    """
    out: list[InterfaceField | None] = []
    for i, patch in enumerate(mesh.patches):
        if not patch.coupled:
            out.append(None)
        elif patch.kind == "cyclic":
            out.append(CyclicInterfaceField(mesh, i))
        else:
            out.append(ProcessorInterfaceField(mesh, i))
    return out
