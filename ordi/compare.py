"""Compare sample scores with explanatory variables.

These are read-only, post-hoc comparisons: explanatory data is never fed
into the unconstrained ordination itself.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
from scipy import stats as sp_stats

from .errors import MalformedInputError, OrdinationError
from .io import ExplanatoryTable
from .scores import EntityKind, ScoreTable

logger = logging.getLogger(__name__)


@dataclass
class AxisCorrelation:
    """Correlation of one covariate with one ordination axis."""

    variable: str
    axis: int
    r: float
    p_value: float
    method: str


@dataclass
class VectorFit:
    """Envfit-style fit of a continuous covariate onto ordination axes."""

    variable: str
    direction: np.ndarray  # unit vector over the fitted axes
    r_squared: float
    p_value: float
    n_permutations: int


def _aligned(scores: ScoreTable, explanatory: ExplanatoryTable) -> ExplanatoryTable:
    if scores.kind is not EntityKind.SAMPLES:
        raise OrdinationError("Explanatory variables can only be compared with sample scores")
    return explanatory.align(scores.ids)


def _numeric_variables(explanatory: ExplanatoryTable, variables: list[str] | None) -> list[str]:
    """Variables to compare; named ones must be numeric, unnamed constant ones are skipped."""
    if variables is None:
        selected = []
        for v in explanatory.names:
            if not explanatory.is_numeric(v):
                continue
            if np.ptp(explanatory.numeric(v)) == 0:
                logger.warning("Skipping constant variable %s", v)
                continue
            selected.append(v)
        return selected
    for v in variables:
        if not explanatory.is_numeric(v):
            raise MalformedInputError(f"Variable {v!r} is not numeric")
    return list(variables)


def correlate_axes(
    scores: ScoreTable,
    explanatory: ExplanatoryTable,
    method: str = "pearson",
    variables: list[str] | None = None,
) -> list[AxisCorrelation]:
    """Correlate every numeric covariate with every extracted axis."""
    if method not in ("pearson", "spearman"):
        raise ValueError(f"method must be 'pearson' or 'spearman', got {method!r}")
    env = _aligned(scores, explanatory)
    corr = sp_stats.pearsonr if method == "pearson" else sp_stats.spearmanr

    results: list[AxisCorrelation] = []
    for var in _numeric_variables(env, variables):
        x = env.numeric(var)
        for axis in scores.axes:
            y = scores.column(axis)
            if np.ptp(x) == 0 or np.ptp(y) == 0:
                r, p = np.nan, np.nan
            else:
                r, p = corr(x, y)
            results.append(
                AxisCorrelation(variable=var, axis=axis, r=float(r), p_value=float(p), method=method)
            )
    return results


def _fit_r_squared(basis: np.ndarray, y: np.ndarray) -> tuple[float, np.ndarray]:
    coef, *_ = np.linalg.lstsq(basis, y, rcond=None)
    fitted = basis @ coef
    ss_tot = float((y**2).sum())
    ss_fit = float((fitted**2).sum())
    return ss_fit / ss_tot, coef


def fit_vectors(
    scores: ScoreTable,
    explanatory: ExplanatoryTable,
    variables: list[str] | None = None,
    n_permutations: int = 999,
    seed: int = 42,
) -> list[VectorFit]:
    """Fit continuous covariates as vectors in the ordination space.

    Each covariate is regressed on the score axes. The direction is the
    normalized regression coefficient vector and r² the share of the
    covariate's variance explained. Significance comes from a permutation
    test shuffling the covariate.
    """
    env = _aligned(scores, explanatory)
    basis = scores.values - scores.values.mean(axis=0, keepdims=True)
    rng = np.random.default_rng(seed)

    results: list[VectorFit] = []
    for var in _numeric_variables(env, variables):
        y = env.numeric(var)
        y = y - y.mean()
        if not y.any():
            raise MalformedInputError(f"Variable {var!r} is constant")
        observed, coef = _fit_r_squared(basis, y)
        norm = np.linalg.norm(coef)
        direction = coef / norm if norm > 0 else coef

        count = 0
        for _ in range(n_permutations):
            r2, _ = _fit_r_squared(basis, rng.permutation(y))
            if r2 >= observed:
                count += 1
        p_value = (count + 1) / (n_permutations + 1)

        results.append(
            VectorFit(
                variable=var,
                direction=direction,
                r_squared=observed,
                p_value=p_value,
                n_permutations=n_permutations,
            )
        )
    return results


def group_centroids(
    scores: ScoreTable,
    explanatory: ExplanatoryTable,
    variable: str,
) -> dict[str, np.ndarray]:
    """Mean score per level of a categorical covariate.

    Returns dict mapping level -> array of shape (n_axes,).
    """
    env = _aligned(scores, explanatory)
    index = {s: i for i, s in enumerate(scores.ids)}
    centroids: dict[str, np.ndarray] = {}
    for level, sids in sorted(env.groups(variable).items()):
        rows = [index[s] for s in sids]
        centroids[level] = scores.values[rows].mean(axis=0)
    return centroids
