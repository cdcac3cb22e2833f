"""Ordination methods (PCA, CA, NMDS, PCoA) for community tables.

Every method returns the same immutable :class:`OrdinationResult`. The
numerics are delegated to NumPy (SVD / eigendecomposition) and
scikit-learn (non-metric SMACOF); this module only prepares the matrices,
picks the decomposition and scales the scores.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

import numpy as np

from .distance import DissimilarityResult, dissimilarity
from .errors import (
    AxisOutOfRangeError,
    DegenerateDissimilarityError,
    MalformedInputError,
    UnsupportedMethodError,
)
from .io import CommunityTable
from .transform import apply_transform

logger = logging.getLogger(__name__)

# Relative eigenvalue tolerance below which an axis is considered trivial
EIGEN_TOL = 1e-10


class OrdinationMethod(enum.Enum):
    PCA = "PCA"
    CA = "CA"
    NMDS = "NMDS"
    PCOA = "PCoA"

    @classmethod
    def parse(cls, name: str | OrdinationMethod) -> OrdinationMethod:
        if isinstance(name, cls):
            return name
        for member in cls:
            if str(name).lower() == member.value.lower():
                return member
        raise UnsupportedMethodError(
            f"Unknown ordination method {name!r}; choose from "
            + ", ".join(m.value for m in cls)
        )

    @property
    def axis_prefix(self) -> str:
        return {"PCA": "PC"}.get(self.value, self.value)


@dataclass
class NMDSConfig:
    """Configuration for NMDS.

    Attributes:
        n_axes: Number of dimensions of the embedding.
        metric: Dissimilarity name (see ``ordi.distance.METRICS``).
        transform: Standardization applied first ("auto", "none", "sqrt", ...).
        n_restarts: Number of SMACOF runs; the lowest-stress one is kept.
        max_iter: Maximum SMACOF iterations per restart.
        eps: Relative stress tolerance for convergence.
        random_state: Seed for the restart seeds (None = fresh entropy).
        empty_pairs: How to treat two empty samples ("raise" or "zero").
        sqrt_threshold: "auto" transform takes the square root above this maximum.
        wisconsin_threshold: "auto" transform applies Wisconsin above this maximum.
        stress_warning: Best stress above this is logged as a warning.
    """

    n_axes: int = 2
    metric: str = "bray"
    transform: str = "auto"
    n_restarts: int = 20
    max_iter: int = 300
    eps: float = 1e-3
    random_state: int | None = 42
    empty_pairs: str = "raise"
    sqrt_threshold: float = 50.0
    wisconsin_threshold: float = 9.0
    stress_warning: float = 0.2


def _readonly(arr: np.ndarray | None) -> np.ndarray | None:
    if arr is None:
        return None
    arr = np.array(arr, dtype=np.float64, copy=True)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class OrdinationResult:
    """Ordination scores and diagnostics."""

    method: OrdinationMethod
    sample_ids: tuple[str, ...]
    attribute_ids: tuple[str, ...]
    sample_scores: np.ndarray  # shape (n_samples, rank)
    attribute_scores: np.ndarray | None  # shape (n_attributes, rank); None for PCoA
    eigenvalues: np.ndarray | None = None  # PCA / CA / PCoA
    explained_variance: np.ndarray | None = None  # per axis, sums to 1
    stress: float | None = None  # NMDS only
    diagnostics: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "sample_ids", tuple(self.sample_ids))
        object.__setattr__(self, "attribute_ids", tuple(self.attribute_ids))
        for name in ("sample_scores", "attribute_scores", "eigenvalues", "explained_variance"):
            object.__setattr__(self, name, _readonly(getattr(self, name)))
        object.__setattr__(self, "diagnostics", MappingProxyType(dict(self.diagnostics)))

    @property
    def rank(self) -> int:
        return int(self.sample_scores.shape[1])

    @property
    def axis_labels(self) -> list[str]:
        return [f"{self.method.axis_prefix}{k + 1}" for k in range(self.rank)]

    @property
    def cumulative_variance(self) -> np.ndarray | None:
        if self.explained_variance is None:
            return None
        return np.cumsum(self.explained_variance)


def _check_table(table: CommunityTable) -> None:
    if table.n_samples < 2:
        raise MalformedInputError(
            f"Ordination needs at least 2 samples, got {table.n_samples}"
        )
    if table.n_attributes < 1:
        raise MalformedInputError("Ordination needs at least 1 attribute")


def _axis_signs(u: np.ndarray) -> np.ndarray:
    """Signs that make the largest absolute sample value of each axis positive."""
    idx = np.argmax(np.abs(u), axis=0)
    signs = np.sign(u[idx, np.arange(u.shape[1])])
    signs[signs == 0] = 1.0
    return signs


def _fix_signs(u: np.ndarray, v: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    signs = _axis_signs(u)
    return u * signs, v * signs


def _nontrivial(eigenvalues: np.ndarray) -> int:
    if eigenvalues.size == 0 or eigenvalues.max() <= 0:
        return 0
    return int((eigenvalues > EIGEN_TOL * eigenvalues.max()).sum())


def _check_scaling(scaling: int) -> None:
    if scaling not in (1, 2, 3):
        raise ValueError(f"scaling must be 1, 2 or 3, got {scaling!r}")


def pca(
    table: CommunityTable,
    scale: bool = False,
    scaling: int = 2,
    transform: str = "none",
) -> OrdinationResult:
    """Principal components analysis via SVD of the centered table.

    ``scale=True`` standardizes attributes to unit variance (correlation
    PCA). Scaling 1 keeps distances between samples (sample scores are
    the principal components, attribute scores the unit loadings);
    scaling 2 keeps covariances between attributes (unit-variance sample
    scores, attribute loadings times the axis standard deviation);
    scaling 3 splits the singular values symmetrically.
    """
    _check_table(table)
    _check_scaling(scaling)
    data, steps = apply_transform(table, transform)
    n = data.n_samples
    x = data.values - data.values.mean(axis=0, keepdims=True)
    if scale:
        sd = x.std(axis=0, ddof=1)
        if (sd == 0).any():
            constant = [a for a, s in zip(data.attribute_ids, sd) if s == 0]
            raise MalformedInputError(
                f"Cannot scale constant attributes: {', '.join(constant)}"
            )
        x = x / sd

    u, s, vt = np.linalg.svd(x, full_matrices=False)
    eigenvalues = s**2 / (n - 1)
    rank = _nontrivial(eigenvalues)
    if rank == 0:
        raise MalformedInputError("Table has no variation; PCA is undefined")
    u, v = _fix_signs(u[:, :rank], vt[:rank].T)
    s = s[:rank]
    eigenvalues = eigenvalues[:rank]

    if scaling == 1:
        site, species = u * s, v
    elif scaling == 2:
        site, species = u * np.sqrt(n - 1), v * (s / np.sqrt(n - 1))
    else:
        site, species = u * np.sqrt(s), v * np.sqrt(s)

    return OrdinationResult(
        method=OrdinationMethod.PCA,
        sample_ids=data.sample_ids,
        attribute_ids=data.attribute_ids,
        sample_scores=site,
        attribute_scores=species,
        eigenvalues=eigenvalues,
        explained_variance=eigenvalues / eigenvalues.sum(),
        diagnostics={
            "scale": scale,
            "scaling": scaling,
            "transform": steps,
            "total_variance": float(eigenvalues.sum()),
        },
    )


def ca(
    table: CommunityTable,
    scaling: int = 2,
    transform: str = "none",
) -> OrdinationResult:
    """Correspondence analysis via SVD of the chi-square residual matrix.

    Scaling 1 gives samples in principal and attributes in standard
    coordinates, scaling 2 the reverse, scaling 3 both multiplied by the
    square root of the singular values.
    """
    _check_table(table)
    _check_scaling(scaling)
    data, steps = apply_transform(table, transform)
    total = data.values.sum()
    if total <= 0:
        raise MalformedInputError("Table is empty; CA is undefined")
    p = data.values / total
    r = p.sum(axis=1)
    c = p.sum(axis=0)
    empty = [s for s, t in zip(data.sample_ids, r) if t == 0]
    empty += [a for a, t in zip(data.attribute_ids, c) if t == 0]
    if empty:
        raise MalformedInputError(
            f"CA needs positive row and column totals; empty: {', '.join(empty)}"
        )

    expected = np.outer(r, c)
    residuals = (p - expected) / np.sqrt(expected)
    u, s, vt = np.linalg.svd(residuals, full_matrices=False)
    eigenvalues = s**2
    rank = _nontrivial(eigenvalues)
    if rank == 0:
        raise MalformedInputError("Table has no variation; CA is undefined")
    u, v = _fix_signs(u[:, :rank], vt[:rank].T)
    s = s[:rank]
    eigenvalues = eigenvalues[:rank]

    row_std = u / np.sqrt(r)[:, np.newaxis]
    col_std = v / np.sqrt(c)[:, np.newaxis]
    if scaling == 1:
        site, species = row_std * s, col_std
    elif scaling == 2:
        site, species = row_std, col_std * s
    else:
        site, species = row_std * np.sqrt(s), col_std * np.sqrt(s)

    return OrdinationResult(
        method=OrdinationMethod.CA,
        sample_ids=data.sample_ids,
        attribute_ids=data.attribute_ids,
        sample_scores=site,
        attribute_scores=species,
        eigenvalues=eigenvalues,
        explained_variance=eigenvalues / eigenvalues.sum(),
        diagnostics={
            "scaling": scaling,
            "transform": steps,
            "total_inertia": float(eigenvalues.sum()),
        },
    )


def _classical_scaling(dm: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Double-center squared distances and eigendecompose (descending)."""
    d2 = dm**2
    row_mean = d2.mean(axis=1, keepdims=True)
    col_mean = d2.mean(axis=0, keepdims=True)
    grand_mean = d2.mean()
    b = -0.5 * (d2 - row_mean - col_mean + grand_mean)

    eigenvalues, eigenvectors = np.linalg.eigh(b)
    idx = np.argsort(eigenvalues)[::-1]
    return eigenvalues[idx], eigenvectors[:, idx]


def pcoa(beta: DissimilarityResult, n_axes: int | None = None) -> OrdinationResult:
    """Principal Coordinates Analysis via classical MDS.

    Keeps the axes with positive eigenvalues (at most ``n_axes``);
    explained variance is relative to the sum of positive eigenvalues.
    """
    n = beta.distance_matrix.shape[0]
    if n < 2:
        raise MalformedInputError(f"Ordination needs at least 2 samples, got {n}")
    eigenvalues, eigenvectors = _classical_scaling(beta.distance_matrix)
    rank = _nontrivial(eigenvalues)
    if rank == 0:
        raise MalformedInputError("Dissimilarities have no Euclidean structure")
    total_pos = eigenvalues[:rank].sum()
    if n_axes is not None:
        if n_axes < 1:
            raise AxisOutOfRangeError(f"n_axes must be >= 1, got {n_axes}")
        rank = min(rank, n_axes)
    pos = eigenvalues[:rank]
    vecs = eigenvectors[:, :rank]
    vecs = vecs * _axis_signs(vecs)
    coords = vecs * np.sqrt(pos)[np.newaxis, :]

    return OrdinationResult(
        method=OrdinationMethod.PCOA,
        sample_ids=beta.sample_ids,
        attribute_ids=(),
        sample_scores=coords,
        attribute_scores=None,
        eigenvalues=pos,
        explained_variance=pos / total_pos,
        diagnostics={
            "metric": beta.metric,
            "negative_eigenvalues": int((eigenvalues < -EIGEN_TOL * eigenvalues.max()).sum()),
        },
    )


def weighted_averages(values: np.ndarray, coords: np.ndarray) -> np.ndarray:
    """Attribute scores as abundance-weighted averages of sample scores.

    Attributes with zero totals get NaN.
    """
    totals = values.sum(axis=0)
    with np.errstate(invalid="ignore", divide="ignore"):
        wa = (values.T @ coords) / totals[:, np.newaxis]
    wa[totals == 0] = np.nan
    return wa


def _principal_rotation(coords: np.ndarray) -> np.ndarray:
    """Center and rotate an embedding so axis 1 carries most spread."""
    centered = coords - coords.mean(axis=0, keepdims=True)
    _, _, vt = np.linalg.svd(centered, full_matrices=False)
    rotated = centered @ vt.T
    return rotated * _axis_signs(rotated)


def nmds(table: CommunityTable, config: NMDSConfig | None = None) -> OrdinationResult:
    """Non-metric Multidimensional Scaling with multiple restarts.

    Restart 0 starts from the classical scaling (PCoA) configuration, the
    others from random configurations. Restart seeds are spawned from
    ``config.random_state`` so restart *i* is identical whatever the
    number of restarts; the lowest-stress embedding is kept, hence more
    restarts never give a higher reported stress.
    """
    from sklearn.manifold import MDS

    config = config or NMDSConfig()
    _check_table(table)
    n = table.n_samples
    if not 1 <= config.n_axes <= n - 1:
        raise AxisOutOfRangeError(
            f"NMDS with {n} samples supports 1..{n - 1} axes, got {config.n_axes}"
        )
    if config.n_restarts < 1:
        raise ValueError(f"n_restarts must be >= 1, got {config.n_restarts}")

    data, steps = apply_transform(
        table,
        config.transform,
        sqrt_threshold=config.sqrt_threshold,
        wisconsin_threshold=config.wisconsin_threshold,
    )
    if steps:
        logger.info("NMDS transform: %s", " + ".join(steps))
    beta = dissimilarity(data, config.metric, empty_pairs=config.empty_pairs)
    dm = beta.distance_matrix

    eigenvalues, eigenvectors = _classical_scaling(dm)
    pos = eigenvalues[: config.n_axes].clip(min=0)
    start = eigenvectors[:, : config.n_axes] * np.sqrt(pos)[np.newaxis, :]

    best_coords: np.ndarray | None = None
    best_stress = np.inf
    best_restart = -1
    best_converged = False
    stresses: list[float] = []
    children = np.random.SeedSequence(config.random_state).spawn(config.n_restarts)
    for i, child in enumerate(children):
        seed = int(child.generate_state(1)[0])
        mds = MDS(
            n_components=config.n_axes,
            metric=False,
            dissimilarity="precomputed",
            n_init=1,
            max_iter=config.max_iter,
            eps=config.eps,
            random_state=seed,
            normalized_stress="auto",
        )
        init = start if i == 0 and pos.all() else None
        coords = mds.fit_transform(dm, init=init)
        stress = float(mds.stress_)
        stresses.append(stress)
        logger.debug("NMDS restart %d/%d: stress %.5f", i + 1, config.n_restarts, stress)
        if stress < best_stress:
            best_coords = coords
            best_stress = stress
            best_restart = i
            best_converged = mds.n_iter_ < config.max_iter

    if best_coords is None:
        raise DegenerateDissimilarityError(
            f"NMDS produced no finite stress in {config.n_restarts} restarts"
        )
    coords = _principal_rotation(best_coords)
    logger.info(
        "NMDS best stress %.4f (restart %d of %d)",
        best_stress, best_restart + 1, config.n_restarts,
    )
    if best_stress > config.stress_warning:
        logger.warning(
            "NMDS stress %.4f is above %.2f; interpret the ordination with care",
            best_stress, config.stress_warning,
        )

    return OrdinationResult(
        method=OrdinationMethod.NMDS,
        sample_ids=data.sample_ids,
        attribute_ids=data.attribute_ids,
        sample_scores=coords,
        attribute_scores=weighted_averages(data.values, coords),
        stress=best_stress,
        diagnostics={
            "metric": beta.metric,
            "transform": steps,
            "n_restarts": config.n_restarts,
            "best_restart": best_restart,
            "restart_stresses": tuple(stresses),
            "converged": best_converged,
            "dissimilarities": beta.condensed(),
        },
    )


def run_ordination(
    table: CommunityTable,
    method: str | OrdinationMethod,
    **options: Any,
) -> OrdinationResult:
    """Dispatch ``method`` to pca / ca / nmds / pcoa with ``options``.

    NMDS accepts either ``config=NMDSConfig(...)`` or NMDSConfig fields as
    keyword arguments. PCoA accepts ``metric``, ``empty_pairs``,
    ``transform`` and ``n_axes``.
    """
    kind = OrdinationMethod.parse(method)
    _check_table(table)
    if kind is OrdinationMethod.PCA:
        return pca(table, **options)
    if kind is OrdinationMethod.CA:
        return ca(table, **options)
    if kind is OrdinationMethod.NMDS:
        config = options.pop("config", None)
        if config is None:
            config = NMDSConfig(**options)
        elif options:
            raise TypeError(
                f"Pass NMDS options either as config or as keywords, not both: {sorted(options)}"
            )
        return nmds(table, config)
    data, _ = apply_transform(table, options.pop("transform", "none"))
    beta = dissimilarity(
        data,
        options.pop("metric", "bray"),
        empty_pairs=options.pop("empty_pairs", "raise"),
    )
    return pcoa(beta, **options)
