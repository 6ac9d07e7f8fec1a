# src/fvsparse/errors.py
"""Error and warning types for fvsparse.

This module centralizes:
- explicit error classes with actionable messages,
- the numerical advisory warning raised by the residual evaluator, and
- small helpers that build standardized messages before raising.

Only construction-time problems (misconfiguration, duplicate registration) and
precondition violations (misaligned patch lists) are errors. Numerical guards
are warnings, and matrix-change detection is a plain signal.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, NoReturn

if TYPE_CHECKING:
    from collections.abc import Iterable


class FvSparseError(Exception):
    """Base exception for fvsparse errors."""


class ConfigurationError(FvSparseError, ValueError):
    """Raised when the solver configuration cannot select or build a backend."""


class DuplicateBackendError(FvSparseError, RuntimeError):
    """Raised when a backend name is registered twice for the same rank."""


class PatchInterfaceMismatchError(FvSparseError, ValueError):
    """Raised when per-patch lists are not aligned with the mesh patches."""


class SolverBreakdownError(FvSparseError, ArithmeticError):
    """Raised when a backend produces a singular or non-finite solution."""


class DegenerateNormalizationWarning(RuntimeWarning):
    """Emitted when the residual normalization factor is clamped."""


def raise_unknown_backend(
    name: str,
    *,
    field_name: str,
    rank: str,
    valid: Iterable[str],
) -> NoReturn:
    """Raise a standardized ConfigurationError for an unregistered backend.

    Args:
        name: Requested backend name.
        field_name: Name of the field whose equation is being solved.
        rank: Tensor rank of the field.
        valid: Backend names registered for that rank.

    Raises:
        ConfigurationError: Always.
    """
    msg = (
        f"Unknown sparse solver type '{name}' requested for field "
        f"'{field_name}' (rank '{rank}'). "
        f"Valid solver types for this rank are: {sorted(valid)}."
    )
    raise ConfigurationError(msg)


def raise_invalid_solver_config(
    *,
    field_name: str | None = None,
    missing: list[str] | None = None,
    detail: str | None = None,
) -> NoReturn:
    """Raise a standardized ConfigurationError for a malformed configuration.

    Args:
        field_name: Optional field whose entry is malformed.
        missing: Required keys that are missing.
        detail: Optional additional context.

    Raises:
        ConfigurationError: Always.
    """
    parts: list[str] = ["Invalid sparse solver configuration"]
    parts[0] += f" for field '{field_name}'." if field_name else "."
    if missing:
        parts.append(f"Missing required field(s): {sorted(set(missing))}.")
    if detail:
        parts.append(f"Detail: {detail}")
    raise ConfigurationError(" ".join(parts))


def raise_patch_mismatch(*, what: str, expected: int, got: int) -> NoReturn:
    """Raise a standardized PatchInterfaceMismatchError.

    Args:
        what: Name of the misaligned per-patch list.
        expected: Number of mesh boundary patches.
        got: Length of the offending list.

    Raises:
        PatchInterfaceMismatchError: Always.
    """
    msg = (
        f"{what} has {got} entries but the mesh has {expected} boundary patches; "
        "per-patch lists must follow the mesh patch order one-to-one."
    )
    raise PatchInterfaceMismatchError(msg)
