# src/fvsparse/change_detector.py
"""Heuristic detection of matrix coefficients changing between solves.

Backends that cache a factorization need to know whether the matrix they
factorized is still the one being solved. Instead of comparing every
coefficient, the detector tracks one scalar per key, the global sum of
``|row_sum|``, and compares it against the value seen at the previous check.

This is a heuristic and not a safe change signal: a change that preserves the
summary goes unnoticed. Comparisons stop after ``max_checks`` per key, after
which the last verdict stands.

Keys are ``(equation name, solve slot, component)``; the slot lets an
equation that is solved several times per time step track each solve
separately.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, TypeAlias

import numpy as np

if TYPE_CHECKING:
    from collections.abc import Callable

    from numpy.typing import NDArray


ChangeKey: TypeAlias = tuple[str, int, int]

_REL_TOL_ERROR = "rel_tol must be a finite non-negative float; got {rel_tol}"
_MAX_CHECKS_ERROR = "max_checks must be a non-negative int; got {max_checks}"

# Floor for the reference magnitude in the relative comparison.
_TINY = 1.0e-300


class TrackingState(Enum):
    """Lifecycle of a tracked key."""

    UNINITIALIZED = "uninitialized"
    TRACKED = "tracked"


@dataclass(frozen=True, slots=True)
class HeuristicMismatch:
    """Signal that the row-sum summary drifted beyond tolerance.

    Attributes:
        key: (equation name, solve slot, component).
        previous: Summary stored at the previous check.
        current: Summary computed at this check.
        relative_change: |current - previous| / |previous|.
    """

    key: ChangeKey
    previous: float
    current: float
    relative_change: float


@dataclass(slots=True)
class _KeyRecord:
    state: TrackingState = TrackingState.UNINITIALIZED
    reference: float = 0.0
    n_checks: int = 0
    changed: bool = False


class MatrixChangeDetector:
    """Track a row-sum summary per key and flag coefficient drift."""

    def __init__(self, rel_tol: float = 1.0e-8, max_checks: int = 1) -> None:
        """Initialize MatrixChangeDetector.

        Args:
            rel_tol: Relative tolerance on the summary.
            max_checks: Maximum number of comparisons per key.

        Raises:
            ValueError: If a parameter is out of range.
        """
        rel_tol_f = float(rel_tol)
        if not (np.isfinite(rel_tol_f) and rel_tol_f >= 0.0):
            raise ValueError(_REL_TOL_ERROR.format(rel_tol=rel_tol))
        if int(max_checks) < 0:
            raise ValueError(_MAX_CHECKS_ERROR.format(max_checks=max_checks))
        self.rel_tol = rel_tol_f
        self.max_checks = int(max_checks)
        self._records: dict[ChangeKey, _KeyRecord] = {}

    @property
    def n_keys(self) -> int:
        """Number of tracked keys."""
        return len(self._records)

    def state(self, name: str, tindex: int, vcmpt: int) -> TrackingState:
        """Return the tracking state of a key."""
        record = self._records.get((name, tindex, vcmpt))
        return TrackingState.UNINITIALIZED if record is None else record.state

    def changed(self, name: str, tindex: int, vcmpt: int) -> bool:
        """Whether drift has ever been flagged for a key."""
        record = self._records.get((name, tindex, vcmpt))
        return record is not None and record.changed

    def n_checks(self, name: str, tindex: int, vcmpt: int) -> int:
        """Number of comparisons performed for a key."""
        record = self._records.get((name, tindex, vcmpt))
        return 0 if record is None else record.n_checks

    def reset(self) -> None:
        """Forget all keys."""
        self._records.clear()

    def check(
        self,
        row_sum: NDArray[np.floating],
        name: str,
        tindex: int,
        vcmpt: int,
        *,
        reduce: Callable[[float], float] | None = None,
    ) -> HeuristicMismatch | None:
        """Compare the row-sum summary of a matrix with the stored one.

        Args:
            row_sum: Row sums of the matrix, shape (n_cells,).
            name: Equation (field) name.
            tindex: Solve slot.
            vcmpt: Solution component.
            reduce: Global sum over processors; identity if None.

        Returns:
            A HeuristicMismatch when drift is detected at this check, else None.
        """
        key: ChangeKey = (name, int(tindex), int(vcmpt))
        record = self._records.setdefault(key, _KeyRecord())

        if record.state is TrackingState.UNINITIALIZED:
            record.reference = _summary(row_sum, reduce)
            record.state = TrackingState.TRACKED
            return None

        if record.n_checks >= self.max_checks:
            return None

        current = _summary(row_sum, reduce)
        record.n_checks += 1
        previous = record.reference
        rel = abs(current - previous) / max(abs(previous), _TINY)
        if rel <= self.rel_tol:
            return None

        record.reference = current
        record.changed = True
        return HeuristicMismatch(
            key=key,
            previous=previous,
            current=current,
            relative_change=rel,
        )


def _summary(
    row_sum: NDArray[np.floating],
    reduce: Callable[[float], float] | None,
) -> float:
    local = float(np.sum(np.abs(row_sum)))
    return local if reduce is None else float(reduce(local))
