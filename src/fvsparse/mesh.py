# src/fvsparse/mesh.py
"""Mesh topology consumed by the solver layer.

The solver layer never builds or modifies a mesh; it only needs:

- the number of cells,
- lower/upper (owner/neighbour) addressing of the internal faces, in the
  order used by the off-diagonal matrix coefficients,
- an ordered tuple of boundary patches, each tagged as plain, processor,
  cyclic or processor-cyclic, with the cells next to its faces, and
- a communicator providing global sums and the processor halo exchange.

Patch order is fixed at construction; every per-patch list handed to the
solver layer (coefficients, field values, interfaces) follows it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal, Protocol, TypeAlias

import numpy as np

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray


PatchKind: TypeAlias = Literal["plain", "processor", "cyclic", "processorCyclic"]

_PATCH_KINDS: tuple[str, ...] = ("plain", "processor", "cyclic", "processorCyclic")

_UNKNOWN_KIND_ERROR = "Unknown patch kind {kind!r} for patch '{name}'"
_CYCLIC_PARTNER_ERROR = "Cyclic patch '{name}' requires a neighbour_patch"
_CYCLIC_SIZE_ERROR = (
    "Cyclic patch '{name}' has {size} faces but its neighbour '{nbr}' has {nbr_size}"
)
_ADDR_LENGTH_ERROR = "lower_addr and upper_addr must have the same length"
_CELL_RANGE_ERROR = "{what} references cells outside [0, {n_cells})"
_DUPLICATE_PATCH_ERROR = "Duplicate patch name: {name}"
_UNKNOWN_PATCH_ERROR = "Unknown patch: {name}"
_SERIAL_EXCHANGE_ERROR = (
    "Patch '{name}' of kind '{kind}' needs a processor exchange, "
    "but the mesh uses a serial communicator"
)


class Communicator(Protocol):
    """Parallel primitives the solver layer delegates to the mesh framework."""

    def all_reduce_sum(self, value: float) -> float:
        """Return the sum of value over all processors."""
        ...

    def exchange(
        self,
        patch: BoundaryPatch,
        values: NDArray[np.floating],
    ) -> NDArray[np.floating]:
        """Send patch-internal values across a processor patch.

        Returns:
            The neighbour's values for the patch faces.
        """
        ...


class SerialCommunicator:
    """Communicator for a single, undecomposed mesh."""

    def all_reduce_sum(self, value: float) -> float:
        """Return value unchanged."""
        return float(value)

    def exchange(
        self,
        patch: BoundaryPatch,
        values: NDArray[np.floating],  # noqa: ARG002
    ) -> NDArray[np.floating]:
        """Fail: a serial mesh has no processor neighbours.

        Raises:
            RuntimeError: Always.
        """
        raise RuntimeError(
            _SERIAL_EXCHANGE_ERROR.format(name=patch.name, kind=patch.kind)
        )


@dataclass(frozen=True, slots=True)
class BoundaryPatch:
    """A named group of boundary faces.

    Attributes:
        name: Patch name.
        kind: One of "plain", "processor", "cyclic", "processorCyclic".
        face_cells: Cell index next to each patch face.
        neighbour_patch: Partner patch name (cyclic patches only).
        neighbour_processor: Rank on the other side (processor patches only).
    """

    name: str
    kind: PatchKind
    face_cells: NDArray[np.intp]
    neighbour_patch: str | None = None
    neighbour_processor: int | None = None

    def __post_init__(self) -> None:
        if self.kind not in _PATCH_KINDS:
            raise ValueError(_UNKNOWN_KIND_ERROR.format(kind=self.kind, name=self.name))
        if self.kind == "cyclic" and self.neighbour_patch is None:
            raise ValueError(_CYCLIC_PARTNER_ERROR.format(name=self.name))
        object.__setattr__(
            self,
            "face_cells",
            np.ascontiguousarray(self.face_cells, dtype=np.intp).reshape(-1),
        )

    @property
    def size(self) -> int:
        """Number of faces on the patch."""
        return int(self.face_cells.size)

    @property
    def coupled(self) -> bool:
        """Whether the patch couples its cells to cells across it."""
        return self.kind != "plain"

    @property
    def is_processor(self) -> bool:
        """Whether the coupling needs a processor exchange."""
        return self.kind in {"processor", "processorCyclic"}


@dataclass(slots=True)
class FvMesh:
    """Finite-volume mesh topology in lower/upper addressing.

    Attributes:
        n_cells: Number of cells on this processor.
        lower_addr: Lower (owner) cell of each internal face.
        upper_addr: Upper (neighbour) cell of each internal face.
        patches: Boundary patches in their fixed enumeration order.
        comm: Communicator used for global reductions and halo exchange.
    """

    n_cells: int
    lower_addr: NDArray[np.intp]
    upper_addr: NDArray[np.intp]
    patches: tuple[BoundaryPatch, ...] = ()
    comm: Communicator = field(default_factory=SerialCommunicator)
    _patch_ids: dict[str, int] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.n_cells = int(self.n_cells)
        self.lower_addr = np.ascontiguousarray(self.lower_addr, dtype=np.intp).ravel()
        self.upper_addr = np.ascontiguousarray(self.upper_addr, dtype=np.intp).ravel()
        self.patches = tuple(self.patches)

        if self.lower_addr.shape != self.upper_addr.shape:
            raise ValueError(_ADDR_LENGTH_ERROR)
        self._check_cells(self.lower_addr, "lower_addr")
        self._check_cells(self.upper_addr, "upper_addr")

        self._patch_ids = {}
        for i, patch in enumerate(self.patches):
            if patch.name in self._patch_ids:
                raise ValueError(_DUPLICATE_PATCH_ERROR.format(name=patch.name))
            self._patch_ids[patch.name] = i
            self._check_cells(patch.face_cells, f"patch '{patch.name}'")

        for patch in self.patches:
            if patch.kind != "cyclic":
                continue
            nbr = self.patch(str(patch.neighbour_patch))
            if nbr.size != patch.size:
                raise ValueError(
                    _CYCLIC_SIZE_ERROR.format(
                        name=patch.name,
                        size=patch.size,
                        nbr=nbr.name,
                        nbr_size=nbr.size,
                    )
                )

    def _check_cells(self, cells: NDArray[np.intp], what: str) -> None:
        if cells.size and (cells.min() < 0 or cells.max() >= self.n_cells):
            raise ValueError(_CELL_RANGE_ERROR.format(what=what, n_cells=self.n_cells))

    @property
    def n_internal_faces(self) -> int:
        """Number of internal faces."""
        return int(self.lower_addr.size)

    @property
    def n_patches(self) -> int:
        """Number of boundary patches."""
        return len(self.patches)

    def patch_index(self, name: str) -> int:
        """Return the enumeration index of a patch.

        Raises:
            KeyError: If no patch has this name.
        """
        try:
            return self._patch_ids[name]
        except KeyError:
            raise KeyError(_UNKNOWN_PATCH_ERROR.format(name=name)) from None

    def patch(self, name: str) -> BoundaryPatch:
        """Return a patch by name."""
        return self.patches[self.patch_index(name)]

    def reduce_sum(self, value: float) -> float:
        """Global sum over all processors."""
        return float(self.comm.all_reduce_sum(float(value)))


def line_mesh(
    n_cells: int,
    *,
    periodic: bool = False,
    patch_names: Sequence[str] = ("left", "right"),
    comm: Communicator | None = None,
) -> FvMesh:
    """Build a 1D chain of cells with one boundary patch at each end.

    Args:
        n_cells: Number of cells.
        periodic: If True, the end patches form a cyclic pair.
        patch_names: Names of the (left, right) patches.
        comm: Optional communicator; defaults to serial.

    Returns:
        FvMesh with faces (i, i+1) in increasing order.
    """
    cells = np.arange(n_cells, dtype=np.intp)
    left, right = patch_names
    if periodic:
        patches = (
            BoundaryPatch(left, "cyclic", cells[:1], neighbour_patch=right),
            BoundaryPatch(right, "cyclic", cells[-1:], neighbour_patch=left),
        )
    else:
        patches = (
            BoundaryPatch(left, "plain", cells[:1]),
            BoundaryPatch(right, "plain", cells[-1:]),
        )
    return FvMesh(
        n_cells=n_cells,
        lower_addr=cells[:-1],
        upper_addr=cells[1:],
        patches=patches,
        comm=comm if comm is not None else SerialCommunicator(),
    )
