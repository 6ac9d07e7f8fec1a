# src/fvsparse/ranks.py
"""Tensor ranks supported by the solver layer.

Each rank owns an isolated backend registry table and a fixed number of
components that are solved one after the other (segregated solution).
"""

from __future__ import annotations

from typing import Final, Literal, TypeAlias, cast

FieldRank: TypeAlias = Literal[
    "scalar",
    "vector",
    "tensor",
    "symmTensor",
    "sphericalTensor",
]

N_COMPONENTS: Final[dict[str, int]] = {
    "scalar": 1,
    "vector": 3,
    "tensor": 9,
    "symmTensor": 6,
    "sphericalTensor": 1,
}

ALL_RANKS: Final[tuple[FieldRank, ...]] = (
    "scalar",
    "vector",
    "tensor",
    "symmTensor",
    "sphericalTensor",
)

_UNKNOWN_RANK_ERROR = "Unknown field rank: {rank!r}; expected one of {ranks}"


def validate_rank(rank: str) -> FieldRank:
    """Validate a rank tag.

    Args:
        rank: Candidate rank tag.

    Raises:
        ValueError: If the tag is not one of the supported ranks.

    Returns:
        The rank tag, typed as FieldRank.
    """
    if rank not in N_COMPONENTS:
        raise ValueError(_UNKNOWN_RANK_ERROR.format(rank=rank, ranks=ALL_RANKS))
    return cast("FieldRank", rank)


def n_components(rank: str) -> int:
    """Return the number of scalar components of a rank."""
    return N_COMPONENTS[validate_rank(rank)]
