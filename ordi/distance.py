"""Pairwise dissimilarities between samples."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from scipy.spatial.distance import pdist, squareform

from .errors import DegenerateDissimilarityError, UnsupportedMethodError
from .io import CommunityTable

# name -> scipy metric
METRICS = {
    "bray": "braycurtis",
    "jaccard": "jaccard",
    "euclidean": "euclidean",
    "manhattan": "cityblock",
    "canberra": "canberra",
}


@dataclass
class DissimilarityResult:
    """Square dissimilarity matrix with its sample IDs."""

    sample_ids: list[str]
    distance_matrix: np.ndarray  # shape (n_samples, n_samples)
    metric: str

    def condensed(self) -> np.ndarray:
        return squareform(self.distance_matrix, checks=False)


def dissimilarity(
    table: CommunityTable,
    metric: str = "bray",
    empty_pairs: str = "raise",
) -> DissimilarityResult:
    """Compute a dissimilarity matrix between all sample pairs.

    Bray-Curtis and Jaccard are undefined for two empty samples. With
    ``empty_pairs="raise"`` such pairs raise DegenerateDissimilarityError;
    with ``empty_pairs="zero"`` two empty samples count as identical.
    """
    key = metric.lower()
    if key not in METRICS:
        raise UnsupportedMethodError(
            f"Unknown dissimilarity {metric!r}; choose from {', '.join(METRICS)}"
        )
    if empty_pairs not in ("raise", "zero"):
        raise ValueError(f"empty_pairs must be 'raise' or 'zero', got {empty_pairs!r}")

    mat = table.values
    if key == "jaccard":
        mat = (mat > 0).astype(np.float64)
    with np.errstate(invalid="ignore", divide="ignore"):
        dists = pdist(mat, metric=METRICS[key])
    dm = squareform(dists)

    undefined = ~np.isfinite(dm)
    if key in ("bray", "jaccard"):
        # scipy returns 0 for two all-zero rows under jaccard and NaN under bray
        empty = table.row_totals() == 0
        both_empty = np.outer(empty, empty)
        np.fill_diagonal(both_empty, False)
        undefined |= both_empty
    if undefined.any():
        if empty_pairs == "raise":
            i, j = np.argwhere(undefined)[0]
            raise DegenerateDissimilarityError(
                f"{key} dissimilarity undefined between samples "
                f"{table.sample_ids[i]!r} and {table.sample_ids[j]!r} (both empty)"
            )
        dm = np.where(undefined, 0.0, dm)

    if dm.shape[0] > 1 and not (dm > 0).any():
        raise DegenerateDissimilarityError(
            "All pairwise dissimilarities are zero; samples are indistinguishable"
        )
    return DissimilarityResult(
        sample_ids=list(table.sample_ids),
        distance_matrix=dm,
        metric=key,
    )


def bray_curtis(table: CommunityTable, empty_pairs: str = "raise") -> DissimilarityResult:
    """Compute Bray-Curtis dissimilarity between all sample pairs."""
    return dissimilarity(table, "bray", empty_pairs=empty_pairs)


def jaccard(table: CommunityTable, empty_pairs: str = "raise") -> DissimilarityResult:
    """Compute Jaccard dissimilarity on presence/absence."""
    return dissimilarity(table, "jaccard", empty_pairs=empty_pairs)
