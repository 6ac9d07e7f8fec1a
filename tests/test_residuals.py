# tests/test_residuals.py
"""Unit tests for fvsparse.residuals.

This module verifies:
- Diagonal-only systems give a zero residual at the exact solution.
- The normalized residual is invariant under a global rescaling of the system.
- The residual of a known case matches a hand computation.
- Snapshot semantics: supplied pieces are used for the first n_eval_init
  evaluations and the saved snapshot afterwards.
- Degenerate normalization emits DegenerateNormalizationWarning.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import pytest

from fvsparse.boundary import add_boundary_diag, add_boundary_source
from fvsparse.errors import DegenerateNormalizationWarning
from fvsparse.fields import VolField
from fvsparse.matrix import FvMatrix
from fvsparse.mesh import line_mesh
from fvsparse.residuals import SMALL, ResidualEvaluator, clamp_norm_factor

if TYPE_CHECKING:
    from fvsparse.mesh import FvMesh


def _residual(
    evaluator: ResidualEvaluator,
    matrix: FvMatrix,
    psi: np.ndarray,
    *,
    cmpt: int = 0,
    n_eval_init: int = 1,
    save_system: bool = False,
    diag: np.ndarray | None = None,
) -> float:
    field = matrix.psi
    source = matrix.source.copy()
    add_boundary_source(source, matrix, field, couples=False)
    if diag is None:
        diag = matrix.diag.copy()
        add_boundary_diag(diag, cmpt, matrix)
    return evaluator.get_foam_residuals(
        field,
        matrix,
        np.ascontiguousarray(source[:, cmpt]),
        psi,
        diag,
        matrix.boundary_coeffs_component(cmpt),
        matrix.interfaces(),
        n_eval_init,
        save_system,
        cmpt,
        cmpt,
    )


# -------------------------------------------------------------------
# Exactness and scaling
# -------------------------------------------------------------------


def test_diagonal_only_system_has_zero_residual_at_exact_solution() -> None:
    """source = diag * x gives a zero residual for psi = x."""
    mesh = line_mesh(5)
    field = VolField("T", mesh, 0.0)
    diag = np.array([1.0, 2.0, 3.0, 4.0, 5.0])
    x = np.array([0.3, -1.2, 2.5, 0.0, 7.0])
    matrix = FvMatrix(field, diag, source=diag * x)

    residual = _residual(ResidualEvaluator(), matrix, x)

    assert residual == pytest.approx(0.0, abs=1e-14)


def test_three_cell_fixed_value_case(line3: FvMesh) -> None:
    """Injected source [1, 0, 1] with diag 2 is solved exactly by [0.5, 0, 0.5]."""
    field = VolField("T", line3, 0.0, boundary={"left": 1.0, "right": 1.0})
    matrix = FvMatrix(field, np.full(3, 2.0), boundary_coeffs=[[1.0], [1.0]])

    source = matrix.source.copy()
    add_boundary_source(source, matrix, field, couples=False)
    np.testing.assert_array_equal(source[:, 0], [1.0, 0.0, 1.0])

    exact = np.linalg.solve(np.diag(matrix.diag), source[:, 0])
    residual = _residual(ResidualEvaluator(), matrix, exact)

    assert residual == pytest.approx(0.0, abs=1e-14)


def test_residual_matches_hand_computation(line3: FvMesh) -> None:
    """Residual of psi = 0 for diag 2, source [1, 0, 1] is 2 / 2 = 1."""
    field = VolField("T", line3, 0.0)
    matrix = FvMatrix(field, np.full(3, 2.0), source=[1.0, 0.0, 1.0])

    # x_ref = 0, so normFactor = sum|A psi| + sum|b| = 0 + 2
    residual = _residual(ResidualEvaluator(), matrix, np.zeros(3))

    assert residual == pytest.approx(1.0)


@pytest.mark.parametrize("scale", [1e-6, 3.0, -2.5, 1e8])
def test_residual_is_scale_invariant(
    scale: float,
    diffusion_matrix,  # noqa: ANN001
) -> None:
    """Rescaling diag, off-diagonals, source and coefficients keeps the residual."""
    mesh = line_mesh(6, periodic=True)
    field = VolField("T", mesh, 0.0)
    base = diffusion_matrix(field, reaction=0.5)
    base.source[:, 0] = np.linspace(-1.0, 2.0, 6)
    psi = np.array([0.1, 0.4, -0.3, 1.0, 0.0, 0.2])

    scaled = FvMatrix(
        field,
        scale * base.diag,
        scale * base.source,
        lower=scale * base.lower,
        internal_coeffs=[scale * c for c in base.internal_coeffs],
        boundary_coeffs=[scale * c for c in base.boundary_coeffs],
    )

    r_base = _residual(ResidualEvaluator(), base, psi)
    r_scaled = _residual(ResidualEvaluator(), scaled, psi)

    assert r_base > 0.0
    assert r_scaled == pytest.approx(r_base, rel=1e-10)


@pytest.mark.parametrize("scale", [1e-6, -2.5, 1e8])
def test_residual_from_snapshot_is_scale_invariant(
    scale: float,
    diffusion_matrix,  # noqa: ANN001
) -> None:
    """A rescaled system with its rescaled snapshot keeps the residual."""
    mesh = line_mesh(6, periodic=True)
    field = VolField("T", mesh, 0.0)
    base = diffusion_matrix(field, reaction=0.5)
    base.source[:, 0] = np.linspace(-1.0, 2.0, 6)
    psi = np.array([0.1, 0.4, -0.3, 1.0, 0.0, 0.2])
    scaled = FvMatrix(
        field,
        scale * base.diag,
        scale * base.source,
        lower=scale * base.lower,
        internal_coeffs=[scale * c for c in base.internal_coeffs],
        boundary_coeffs=[scale * c for c in base.boundary_coeffs],
    )

    results = []
    for matrix in (base, scaled):
        evaluator = ResidualEvaluator()
        fresh = _residual(evaluator, matrix, psi, save_system=True)
        # The second evaluation reads the diagonal from the snapshot.
        reused = _residual(evaluator, matrix, psi, diag=np.ones(6))
        assert evaluator.snapshot(0) is not None
        assert reused == pytest.approx(fresh, rel=1e-12)
        results.append(reused)

    assert results[0] > 0.0
    assert results[1] == pytest.approx(results[0], rel=1e-10)


def test_cyclic_coupling_enters_the_product() -> None:
    """A periodic system solved densely has zero residual through the interfaces."""
    mesh = line_mesh(4, periodic=True)
    field = VolField("T", mesh, 0.0)
    diag = np.full(4, 3.0)
    matrix = FvMatrix(
        field,
        diag,
        source=[1.0, 2.0, 3.0, 4.0],
        lower=-np.ones(3),
        boundary_coeffs=[[1.0], [1.0]],
    )
    dense = np.diag(diag) - np.eye(4, k=1) - np.eye(4, k=-1)
    dense[0, 3] -= 1.0
    dense[3, 0] -= 1.0
    exact = np.linalg.solve(dense, [1.0, 2.0, 3.0, 4.0])

    assert _residual(ResidualEvaluator(), matrix, exact) == pytest.approx(0.0, abs=1e-13)


# -------------------------------------------------------------------
# Snapshot semantics
# -------------------------------------------------------------------


def test_snapshot_is_reused_after_n_eval_init(line3: FvMesh) -> None:
    """After the first evaluation the saved diagonal replaces the supplied one."""
    field = VolField("T", line3, 0.0)
    matrix = FvMatrix(field, np.full(3, 2.0), source=[2.0, 4.0, 6.0])
    evaluator = ResidualEvaluator()
    psi = np.array([1.0, 2.0, 3.0])

    first = _residual(evaluator, matrix, psi, save_system=True)
    assert first == pytest.approx(0.0, abs=1e-14)

    # A different supplied diagonal is ignored once the snapshot exists.
    second = _residual(evaluator, matrix, psi, diag=np.full(3, 5.0))
    assert second == pytest.approx(0.0, abs=1e-14)

    snap = evaluator.snapshot(0)
    assert snap is not None
    assert snap.n_evals == 2
    np.testing.assert_array_equal(snap.diag, np.full(3, 2.0))


def test_without_save_system_supplied_pieces_are_used(line3: FvMesh) -> None:
    """With no snapshot saved, every evaluation uses the supplied pieces."""
    field = VolField("T", line3, 0.0)
    matrix = FvMatrix(field, np.full(3, 2.0), source=[2.0, 4.0, 6.0])
    evaluator = ResidualEvaluator()
    psi = np.array([1.0, 2.0, 3.0])

    _residual(evaluator, matrix, psi)
    later = _residual(evaluator, matrix, psi, diag=np.full(3, 4.0))

    assert later > 0.0


def test_reset_discards_snapshot(line3: FvMesh) -> None:
    """reset(vcmpt) forgets the snapshot of that component only."""
    field = VolField("U", line3, 0.0, rank="vector")
    matrix = FvMatrix(field, np.full(3, 2.0))
    evaluator = ResidualEvaluator()
    psi = np.ones(3)
    for cmpt in range(3):
        _residual(evaluator, matrix, psi, cmpt=cmpt, save_system=True)

    evaluator.reset(1)
    assert evaluator.snapshot(1) is None
    assert evaluator.snapshot(0) is not None

    evaluator.reset()
    assert evaluator.snapshot(0) is None


def test_residual_does_not_mutate_inputs(line3: FvMesh) -> None:
    """The evaluator leaves field, matrix and psi untouched."""
    field = VolField("T", line3, [1.0, 2.0, 3.0])
    matrix = FvMatrix(field, np.full(3, 2.0), source=[1.0, 0.0, 1.0])
    before = (field.internal.copy(), matrix.diag.copy(), matrix.source.copy())
    psi = np.array([0.5, 0.5, 0.5])

    _residual(ResidualEvaluator(), matrix, psi, save_system=True)

    np.testing.assert_array_equal(field.internal, before[0])
    np.testing.assert_array_equal(matrix.diag, before[1])
    np.testing.assert_array_equal(matrix.source, before[2])
    np.testing.assert_array_equal(psi, [0.5, 0.5, 0.5])


# -------------------------------------------------------------------
# Degenerate normalization
# -------------------------------------------------------------------


def test_zero_system_warns_and_returns_zero(line3: FvMesh) -> None:
    """An all-zero system clamps the normalization and warns."""
    field = VolField("T", line3, 0.0)
    matrix = FvMatrix(field, np.zeros(3))

    with pytest.warns(DegenerateNormalizationWarning, match="field 'T'"):
        residual = _residual(ResidualEvaluator(), matrix, np.zeros(3))

    assert residual == 0.0


def test_clamp_norm_factor_adds_small() -> None:
    """A regular factor only gets SMALL added."""
    assert clamp_norm_factor(2.0, field_name="T", cmpt=0) == 2.0 + SMALL

    with pytest.warns(DegenerateNormalizationWarning):
        assert clamp_norm_factor(0.0, field_name="T", cmpt=0) == SMALL
