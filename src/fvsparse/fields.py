# src/fvsparse/fields.py
"""Cell-centred fields solved for by the sparse solvers.

A VolField stores one row of components per cell and, for each boundary
patch in mesh order, one row of components per patch face. Scalars and
spherical tensors have one component, vectors three, symmetric tensors six
and full tensors nine.

The solver layer reads fields and writes back solved components through
``replace``; it never changes their shape or boundary values.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import numpy as np
import numpy.typing as npt

from .errors import raise_patch_mismatch
from .interfaces import InterfaceField, build_interfaces
from .ranks import FieldRank, n_components, validate_rank

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from .mesh import FvMesh


FloatArray = npt.NDArray[np.floating[Any]]

_INTERNAL_SHAPE_ERROR = (
    "Field '{name}' internal values have shape {actual}; expected {expected}"
)
_BOUNDARY_SHAPE_ERROR = (
    "Field '{name}' values on patch '{patch}' have shape {actual}; expected {expected}"
)
_CMPT_RANGE_ERROR = "Component {cmpt} out of range for rank '{rank}'"


def _as_component_array(values: object, n_rows: int, n_cmpt: int) -> FloatArray:
    arr = np.array(values, dtype=np.float64)
    if arr.ndim == 0:
        return np.full((n_rows, n_cmpt), float(arr), dtype=np.float64)
    if arr.ndim == 1 and n_cmpt == 1:
        return arr.reshape(-1, 1)
    if arr.ndim == 1 and arr.size == n_cmpt and n_rows != n_cmpt:
        return np.tile(arr, (n_rows, 1))
    return arr


class VolField:
    """Cell values plus per-patch boundary values of a tensor field."""

    def __init__(
        self,
        name: str,
        mesh: FvMesh,
        internal: object,
        boundary: Mapping[str, object] | Sequence[object] | None = None,
        *,
        rank: FieldRank = "scalar",
        time_index: int = 0,
    ) -> None:
        """
        Initialize VolField.

        Args:
            name: Field name, used to look up its solver configuration.
            mesh: Mesh the field lives on.
            internal: Cell values, shape (n_cells, n_components). Scalars may be
                1D; a single value or a single component row is broadcast.
            boundary: Patch values, either a mapping keyed by patch name or a
                sequence in mesh patch order. Missing patches default to zero.
            rank: Tensor rank tag.
            time_index: Index of the time step the values belong to.

        Raises:
            ValueError: If any array has an incompatible shape.
        """
        self.name = name
        self.mesh = mesh
        self.rank: FieldRank = validate_rank(rank)
        self.n_components = n_components(rank)
        self.time_index = int(time_index)

        expected = (mesh.n_cells, self.n_components)
        self.internal = _as_component_array(internal, mesh.n_cells, self.n_components)
        if self.internal.shape != expected:
            raise ValueError(
                _INTERNAL_SHAPE_ERROR.format(
                    name=name, actual=self.internal.shape, expected=expected
                )
            )

        self.boundary: list[FloatArray] = self._resolve_boundary(boundary)
        self._interfaces: list[InterfaceField | None] | None = None

    def _resolve_boundary(
        self,
        boundary: Mapping[str, object] | Sequence[object] | None,
    ) -> list[FloatArray]:
        patches = self.mesh.patches
        if boundary is None:
            raw: list[object | None] = [None] * len(patches)
        elif hasattr(boundary, "keys"):
            mapping = dict(boundary)  # type: ignore[arg-type]
            unknown = set(mapping) - {p.name for p in patches}
            for name in sorted(unknown):
                self.mesh.patch_index(name)
            raw = [mapping.get(p.name) for p in patches]
        else:
            raw = list(boundary)
            if len(raw) != len(patches):
                raise_patch_mismatch(
                    what=f"Boundary values of field '{self.name}'",
                    expected=len(patches),
                    got=len(raw),
                )

        out: list[FloatArray] = []
        for patch, values in zip(patches, raw, strict=True):
            if values is None:
                out.append(np.zeros((patch.size, self.n_components), dtype=np.float64))
                continue
            arr = _as_component_array(values, patch.size, self.n_components)
            expected = (patch.size, self.n_components)
            if arr.shape != expected:
                raise ValueError(
                    _BOUNDARY_SHAPE_ERROR.format(
                        name=self.name,
                        patch=patch.name,
                        actual=arr.shape,
                        expected=expected,
                    )
                )
            out.append(arr)
        return out

    def __repr__(self) -> str:
        return (
            f"VolField(name={self.name!r}, rank={self.rank!r}, "
            f"n_cells={self.mesh.n_cells})"
        )

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    def _check_cmpt(self, cmpt: int) -> None:
        if not 0 <= cmpt < self.n_components:
            raise IndexError(_CMPT_RANGE_ERROR.format(cmpt=cmpt, rank=self.rank))

    def component(self, cmpt: int) -> FloatArray:
        """Return a contiguous copy of one component of the cell values."""
        self._check_cmpt(cmpt)
        return np.ascontiguousarray(self.internal[:, cmpt])

    def replace(self, cmpt: int, values: FloatArray) -> None:
        """Overwrite one component of the cell values."""
        self._check_cmpt(cmpt)
        self.internal[:, cmpt] = values

    # ------------------------------------------------------------------
    # Patch views
    # ------------------------------------------------------------------

    def patch_internal_field(self, patchi: int) -> FloatArray:
        """Return cell values next to the faces of a patch."""
        return self.internal[self.mesh.patches[patchi].face_cells]

    def patch_neighbour_field(self, patchi: int) -> FloatArray:
        """Return cell values across the faces of a coupled patch.

        Raises:
            ValueError: If the patch is not coupled.
        """
        interface = self.scalar_interfaces()[patchi]
        if interface is None:
            msg = f"Patch '{self.mesh.patches[patchi].name}' is not coupled"
            raise ValueError(msg)
        return interface.patch_neighbour_field(self.internal)

    def scalar_interfaces(self) -> list[InterfaceField | None]:
        """Return the coupled interfaces, one slot per mesh patch."""
        if self._interfaces is None:
            self._interfaces = build_interfaces(self.mesh)
        return list(self._interfaces)
