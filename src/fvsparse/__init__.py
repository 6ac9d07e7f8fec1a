"""fvsparse sparse-solver abstraction for finite-volume linear systems."""

from __future__ import annotations

from .boundary import add_boundary_diag, add_boundary_source
from .change_detector import HeuristicMismatch, MatrixChangeDetector, TrackingState
from .config import FvSolution, SolverControls, parse_controls
from .errors import (
    ConfigurationError,
    DegenerateNormalizationWarning,
    DuplicateBackendError,
    FvSparseError,
    PatchInterfaceMismatchError,
    SolverBreakdownError,
)
from .fields import VolField
from .interfaces import (
    CyclicInterfaceField,
    InterfaceField,
    ProcessorInterfaceField,
    build_interfaces,
)
from .matrix import FvMatrix, TmpMatrix
from .mesh import BoundaryPatch, Communicator, FvMesh, SerialCommunicator, line_mesh
from .ranks import ALL_RANKS, N_COMPONENTS, FieldRank
from .residuals import SMALL, ResidualEvaluator
from .sparse_solver import (
    SolverPerformance,
    SparseSolver,
    SparseSolverRegistry,
    default_registry,
    new_sparse_solver,
    register_backend,
    registered_backends,
)

__all__ = [
    "ALL_RANKS",
    "N_COMPONENTS",
    "SMALL",
    "BoundaryPatch",
    "Communicator",
    "ConfigurationError",
    "CyclicInterfaceField",
    "DegenerateNormalizationWarning",
    "DuplicateBackendError",
    "FieldRank",
    "FvMatrix",
    "FvMesh",
    "FvSolution",
    "FvSparseError",
    "HeuristicMismatch",
    "InterfaceField",
    "MatrixChangeDetector",
    "PatchInterfaceMismatchError",
    "ProcessorInterfaceField",
    "ResidualEvaluator",
    "SerialCommunicator",
    "SolverBreakdownError",
    "SolverControls",
    "SolverPerformance",
    "SparseSolver",
    "SparseSolverRegistry",
    "TmpMatrix",
    "TrackingState",
    "VolField",
    "add_boundary_diag",
    "add_boundary_source",
    "build_interfaces",
    "default_registry",
    "line_mesh",
    "new_sparse_solver",
    "parse_controls",
    "register_backend",
    "registered_backends",
]

__version__ = "0.1.0"
