# src/fvsparse/residuals.py
"""Residuals in the host discretization's normalized form.

Every backend reports convergence with the same residual definition, so
outer-iteration control does not depend on which package solved the system:

    x_ref      = gAverage(psi)
    normFactor = gSum(|A psi - sumA x_ref| + |b - sumA x_ref|) + SMALL
    residual   = gSum(|b - A psi|) / normFactor

``A psi`` and ``sumA`` include coupled interfaces, so the product goes through
the mesh's processor/cyclic machinery rather than a backend-local matrix.

The evaluator also keeps a per-component snapshot of the diagonal and
boundary coefficients. While a component has been evaluated fewer than
``n_eval_init`` times, the supplied arrays are used (and copied into the
snapshot when ``save_system`` is set); afterwards the snapshot is reused.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

import numpy as np

from .errors import DegenerateNormalizationWarning

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray

    from .fields import VolField
    from .interfaces import InterfaceField
    from .matrix import FvMatrix


SMALL: Final[float] = 1.0e-20

_DEGENERATE_NORM_MSG = (
    "Residual normalization factor for field '{field}' component {cmpt} is "
    "{value:.3e}; clamped to {small:.1e}"
)


@dataclass(slots=True)
class ResidualSnapshot:
    """Saved system pieces for one solution component.

    Attributes:
        n_evals: Number of evaluations performed so far.
        diag: Saved diagonal (with boundary contributions), if any.
        bou_coeffs: Saved boundary coefficients, if any.
    """

    n_evals: int = 0
    diag: NDArray[np.floating] | None = None
    bou_coeffs: list[NDArray[np.floating]] | None = None


class ResidualEvaluator:
    """Normalized residual evaluation with a per-component snapshot cache."""

    def __init__(self) -> None:
        """Initialize an empty snapshot cache."""
        self._snapshots: dict[int, ResidualSnapshot] = {}

    @property
    def n_snapshots(self) -> int:
        """Number of components with a snapshot."""
        return len(self._snapshots)

    def snapshot(self, vcmpt: int) -> ResidualSnapshot | None:
        """Return the snapshot of a component, if one exists."""
        return self._snapshots.get(vcmpt)

    def reset(self, vcmpt: int | None = None) -> None:
        """Discard the snapshot of one component, or all of them."""
        if vcmpt is None:
            self._snapshots.clear()
        else:
            self._snapshots.pop(vcmpt, None)

    def _resolve_system(
        self,
        save_diag: NDArray[np.floating],
        bou_coeffs_cmpt: Sequence[NDArray[np.floating]],
        *,
        n_eval_init: int,
        save_system: bool,
        vcmpt: int,
    ) -> tuple[NDArray[np.floating], Sequence[NDArray[np.floating]]]:
        snap = self._snapshots.setdefault(vcmpt, ResidualSnapshot())
        diag: NDArray[np.floating] = save_diag
        bou: Sequence[NDArray[np.floating]] = bou_coeffs_cmpt

        if snap.n_evals < n_eval_init:
            if save_system:
                snap.diag = np.array(save_diag, dtype=np.float64, copy=True)
                snap.bou_coeffs = [
                    np.array(c, dtype=np.float64) for c in bou_coeffs_cmpt
                ]
        else:
            if snap.diag is not None:
                diag = snap.diag
            if snap.bou_coeffs is not None:
                bou = snap.bou_coeffs

        snap.n_evals += 1
        return diag, bou

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
        """Compute the normalized residual of one solution component.

        Args:
            field: Field being solved for (names the warning, owns the mesh).
            matrix: Assembled system providing the off-diagonal coefficients.
            source_cmpt: Source component with boundary contributions, (n_cells,).
            psi_cmpt: Candidate solution component, (n_cells,).
            save_diag: Diagonal with boundary contributions, (n_cells,).
            bou_coeffs_cmpt: Boundary coefficients of the component, per patch.
            interfaces: Coupled interfaces, per patch.
            n_eval_init: Number of evaluations using the supplied system pieces.
            save_system: Whether to snapshot the supplied pieces for later reuse.
            cmpt: Component index forwarded to the interfaces.
            vcmpt: Key of the snapshot (the solved component).

        Returns:
            The normalized residual.
        """
        diag, bou = self._resolve_system(
            save_diag,
            bou_coeffs_cmpt,
            n_eval_init=n_eval_init,
            save_system=save_system,
            vcmpt=vcmpt,
        )

        apsi = matrix.amul(psi_cmpt, bou, interfaces, cmpt, diag=diag)
        sum_a = matrix.sum_a(bou, interfaces, diag=diag)
        norm = clamp_norm_factor(
            matrix.norm_factor(psi_cmpt, source_cmpt, apsi, sum_a),
            field_name=field.name,
            cmpt=vcmpt,
        )

        mesh = field.mesh
        return mesh.reduce_sum(float(np.sum(np.abs(source_cmpt - apsi)))) / norm


def clamp_norm_factor(value: float, *, field_name: str, cmpt: int) -> float:
    """Add the small-number guard to a normalization factor.

    Emits DegenerateNormalizationWarning when the raw factor is not above
    SMALL.

    Args:
        value: Raw normalization factor.
        field_name: Field name for the warning message.
        cmpt: Component index for the warning message.

    Returns:
        ``value + SMALL``, or SMALL when the raw factor is degenerate.
    """
    if not value > SMALL:
        warnings.warn(
            _DEGENERATE_NORM_MSG.format(
                field=field_name, cmpt=cmpt, value=value, small=SMALL
            ),
            DegenerateNormalizationWarning,
            stacklevel=3,
        )
        return SMALL
    return value + SMALL
