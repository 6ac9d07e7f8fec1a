# src/fvsparse/config.py
"""Solver configuration models.

The configuration mirrors the host framework's solution dictionary: a
``solvers`` section keyed by field name, each entry selecting a backend with
``solverType`` and carrying backend options. Keys may be quoted regular
expressions such as ``"(U|T)"``; an exact key wins, otherwise patterns are
tried from the last one defined to the first.

Notes:
    - Only the keys modelled on SolverControls are interpreted here. Any other
      key is kept (``extra="allow"``) and forwarded to the backend through
      ``SolverControls.options``.
    - Option names follow the host camelCase spelling; snake_case field names
      are accepted as well.
    - The double quotes are part of a pattern key. In YAML, wrap the key in
      single quotes (``'"(U|T)"':``) so the loader keeps them.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from ruamel.yaml import YAML

from .errors import raise_invalid_solver_config

if TYPE_CHECKING:
    from collections.abc import Mapping

MatrixUpdate = Literal["auto", "always", "never"]

_PATTERN_KEY = re.compile(r'^"(?P<pattern>.*)"$')


class SolverControls(BaseModel):
    """Per-field solver controls.

    Attributes:
        solver_type: Registered backend name (``solverType``).
        tolerance: Absolute tolerance on the normalized residual.
        rel_tol: Tolerance relative to the initial residual.
        max_iter: Maximum number of iterations for iterative backends.
        min_iter: Minimum number of iterations for iterative backends.
        n_eval_init: Number of residual evaluations per component that use the
            freshly assembled system pieces.
        matrix_sum_tol: Relative tolerance of the matrix-change detector.
        matrix_update: Factorization reuse policy: "auto" follows the change
            detector, "always" refactorizes on each solve, "never" keeps the
            first factorization.
        n_slots: Number of distinct solve slots per time step. Solves past
            the last slot within one time step share it, so cached
            per-solve state stays bounded even when the time index never
            advances.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True, frozen=True)

    solver_type: str = Field(alias="solverType", min_length=1)
    tolerance: float = Field(default=1e-6, ge=0.0)
    rel_tol: float = Field(default=0.0, ge=0.0, alias="relTol")
    max_iter: int = Field(default=1000, gt=0, alias="maxIter")
    min_iter: int = Field(default=0, ge=0, alias="minIter")
    n_eval_init: int = Field(default=1, ge=0, alias="nEvalInit")
    matrix_sum_tol: float = Field(default=1e-8, ge=0.0, alias="matrixSumTol")
    matrix_update: MatrixUpdate = Field(default="auto", alias="matrixUpdate")
    n_slots: int = Field(default=1, ge=1, alias="nSlots")

    @property
    def options(self) -> dict[str, Any]:
        """Backend-specific options not interpreted by the solver layer."""
        return dict(self.model_extra or {})

    def option(self, name: str, default: Any = None) -> Any:  # noqa: ANN401
        """Return one backend-specific option."""
        return self.options.get(name, default)


class FvSolution(BaseModel):
    """Solution dictionary holding the ``solvers`` section."""

    model_config = ConfigDict(extra="allow")

    solvers: dict[str, dict[str, Any]]

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> FvSolution:
        """Validate a plain mapping.

        Raises:
            ConfigurationError: If the mapping is not a valid solution dictionary.

        Returns:
            Validated FvSolution.
        """
        if "solvers" not in data:
            raise_invalid_solver_config(missing=["solvers"])
        try:
            return cls.model_validate(dict(data))
        except ValidationError as exc:
            raise_invalid_solver_config(detail=str(exc))

    @classmethod
    def from_yaml(cls, path: str | Path) -> FvSolution:
        """Load a solution dictionary from a YAML file.

        Returns:
            Validated FvSolution.
        """
        yaml = YAML(typ="safe")
        with Path(path).open(encoding="utf-8") as fh:
            data = yaml.load(fh) or {}
        return cls.from_mapping(data)

    @classmethod
    def coerce(cls, value: FvSolution | Mapping[str, Any]) -> FvSolution:
        """Return value as an FvSolution, validating mappings."""
        if isinstance(value, FvSolution):
            return value
        return cls.from_mapping(value)

    def solver_dict(self, field_name: str) -> dict[str, Any]:
        """Return the raw entry of a field, resolving pattern keys.

        Raises:
            ConfigurationError: If no key matches the field name, or a
                pattern key is not a valid regular expression.

        Returns:
            The raw (unvalidated) entry.
        """
        entry = self.solvers.get(field_name)
        if entry is not None:
            return entry

        for key in reversed(list(self.solvers)):
            match = _PATTERN_KEY.match(key)
            if match is None:
                continue
            try:
                matched = re.fullmatch(match.group("pattern"), field_name)
            except re.error as exc:
                raise_invalid_solver_config(
                    field_name=field_name,
                    detail=f"invalid pattern key {key}: {exc}",
                )
            if matched:
                return self.solvers[key]

        raise_invalid_solver_config(
            field_name=field_name,
            detail=f"no entry in 'solvers' matches '{field_name}'",
        )

    def controls(self, field_name: str) -> SolverControls:
        """Return the validated controls of a field.

        Raises:
            ConfigurationError: If the entry is missing or invalid.

        Returns:
            SolverControls for the field.
        """
        return parse_controls(self.solver_dict(field_name), field_name=field_name)


def parse_controls(
    entry: SolverControls | Mapping[str, Any],
    *,
    field_name: str,
) -> SolverControls:
    """Validate a single solver entry.

    Args:
        entry: Raw entry or already-validated controls.
        field_name: Field name, for error messages.

    Raises:
        ConfigurationError: If the entry is invalid.

    Returns:
        SolverControls.
    """
    if isinstance(entry, SolverControls):
        return entry
    if "solverType" not in entry and "solver_type" not in entry:
        raise_invalid_solver_config(field_name=field_name, missing=["solverType"])
    try:
        return SolverControls.model_validate(dict(entry))
    except ValidationError as exc:
        raise_invalid_solver_config(field_name=field_name, detail=str(exc))
