"""Reference sparse-solver backends.

Backends are not registered on import. Call ``register_builtin_backends()``
once at startup (or with a private registry in tests).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Final

from fvsparse.ranks import ALL_RANKS
from fvsparse.sparse_solver import default_registry

from .direct import DirectLUSolver
from .jacobi import JacobiSolver
from .krylov import KrylovSolver

if TYPE_CHECKING:
    from fvsparse.sparse_solver import SolverConstructor, SparseSolverRegistry

BUILTIN_BACKENDS: Final[tuple[tuple[str, SolverConstructor], ...]] = (
    ("directLU", DirectLUSolver),
    ("scipyKrylov", KrylovSolver),
    ("jacobi", JacobiSolver),
)


def register_builtin_backends(registry: SparseSolverRegistry | None = None) -> None:
    """Register the shipped backends for every rank.

    Names already present for a rank are left untouched, so calling this
    twice is harmless.

    Args:
        registry: Registry to populate; the process-wide one if None.
    """
    reg = default_registry() if registry is None else registry
    for name, constructor in BUILTIN_BACKENDS:
        ranks = [rank for rank in ALL_RANKS if not reg.is_registered(name, rank)]
        if ranks:
            reg.register(name, constructor, ranks=ranks)


__all__ = [
    "BUILTIN_BACKENDS",
    "DirectLUSolver",
    "JacobiSolver",
    "KrylovSolver",
    "register_builtin_backends",
]
