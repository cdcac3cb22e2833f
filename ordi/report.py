"""Ordination report generator: score tables, summaries and plots."""

from __future__ import annotations

import csv
import logging
from pathlib import Path

from . import compare as cmp_mod
from . import plots
from .io import CommunityTable, ExplanatoryTable
from .ordination import OrdinationMethod, OrdinationResult, run_ordination
from .scores import EntityKind, ScoreTable, extract_scores

logger = logging.getLogger(__name__)


def generate_report(
    table: CommunityTable,
    explanatory: ExplanatoryTable | None,
    method: str | OrdinationMethod,
    output_dir: str | Path,
    group_by: str | None = None,
    n_permutations: int = 999,
    seed: int = 42,
    **options,
) -> OrdinationResult:
    """Run one ordination and write its scores, plots and comparisons."""
    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)
    kind = OrdinationMethod.parse(method)
    tag = kind.value.lower()

    logger.info(
        "Running %s on %d samples x %d attributes",
        kind.value, table.n_samples, table.n_attributes,
    )
    result = run_ordination(table, kind, **options)
    axes = list(range(1, result.rank + 1))

    samples = extract_scores(result, EntityKind.SAMPLES, axes)
    write_scores(samples, out / f"{tag}_sample_scores.csv")
    has_attributes = result.attribute_scores is not None
    if has_attributes:
        write_scores(
            extract_scores(result, EntityKind.ATTRIBUTES, axes),
            out / f"{tag}_attribute_scores.csv",
        )
    if result.eigenvalues is not None:
        write_eigenvalues(result, out / f"{tag}_eigenvalues.csv")
    write_summary(result, out / f"{tag}_summary.txt")

    if result.rank >= 2:
        groups = group_by if explanatory is not None else None
        plots.plot_ordination(result, out / f"{tag}_samples.pdf", layers="samples",
                              explanatory=explanatory, group_by=groups)
        if has_attributes:
            plots.plot_ordination(result, out / f"{tag}_attributes.pdf", layers="attributes")
            plots.plot_ordination(result, out / f"{tag}_biplot.pdf", layers="both",
                                  explanatory=explanatory, group_by=groups)
    else:
        logger.warning("%s result has a single axis; skipping scatter plots", kind.value)
    if result.explained_variance is not None:
        plots.plot_scree(result, out / f"{tag}_scree.pdf")
    if kind is OrdinationMethod.NMDS:
        plots.plot_shepard(result, out / f"{tag}_shepard.pdf")

    if explanatory is not None:
        n_fit = min(2, result.rank)
        fit_scores = extract_scores(result, EntityKind.SAMPLES, list(range(1, n_fit + 1)))
        correlations = cmp_mod.correlate_axes(samples, explanatory)
        _write_correlations(correlations, out / f"{tag}_axis_correlations.csv")
        fits = cmp_mod.fit_vectors(fit_scores, explanatory,
                                   n_permutations=n_permutations, seed=seed)
        write_vector_fits(fits, fit_scores, out / f"{tag}_vector_fits.csv")
        if group_by is not None:
            centroids = cmp_mod.group_centroids(samples, explanatory, group_by)
            _write_centroids(centroids, samples, out / f"{tag}_centroids_{group_by}.csv")
        logger.info("Compared scores with %d explanatory variables", len(explanatory.names))

    logger.info("%s report written to %s", kind.value, out)
    return result


def write_scores(scores: ScoreTable, path: Path) -> None:
    with open(path, "w", newline="") as f:
        w = csv.writer(f)
        rows = scores.to_rows()
        rows[0][0] = "sample_id" if scores.kind is EntityKind.SAMPLES else "attribute_id"
        w.writerow(rows[0])
        for row in rows[1:]:
            w.writerow([row[0]] + [f"{v:.6f}" for v in row[1:]])


def write_eigenvalues(result: OrdinationResult, path: Path) -> None:
    with open(path, "w", newline="") as f:
        w = csv.writer(f)
        w.writerow(["axis", "eigenvalue", "proportion_explained", "cumulative"])
        for label, ev, prop, cum in zip(
            result.axis_labels,
            result.eigenvalues,
            result.explained_variance,
            result.cumulative_variance,
        ):
            w.writerow([label, f"{ev:.6f}", f"{prop:.6f}", f"{cum:.6f}"])


def write_summary(result: OrdinationResult, path: Path) -> None:
    with open(path, "w") as f:
        f.write(f"Method: {result.method.value}\n")
        f.write(f"Samples: {len(result.sample_ids)}\n")
        f.write(f"Attributes: {len(result.attribute_ids)}\n")
        f.write(f"Axes: {result.rank}\n")
        if result.explained_variance is not None:
            n = min(2, result.rank)
            f.write(f"Variance explained by first {n} axes: "
                    f"{result.explained_variance[:n].sum():.4f}\n")
        if result.stress is not None:
            f.write(f"Stress: {result.stress:.4f}\n")
        for k, v in result.diagnostics.items():
            if k in ("dissimilarities", "restart_stresses"):
                continue
            f.write(f"{k}: {v}\n")


def write_vector_fits(fits: list[cmp_mod.VectorFit], scores: ScoreTable, path: Path) -> None:
    with open(path, "w", newline="") as f:
        w = csv.writer(f)
        w.writerow(["variable"] + list(scores.axis_labels) + ["r2", "p_value"])
        for fit in fits:
            w.writerow(
                [fit.variable]
                + [f"{d:.6f}" for d in fit.direction]
                + [f"{fit.r_squared:.6f}", f"{fit.p_value:.4f}"]
            )


def _write_correlations(correlations: list[cmp_mod.AxisCorrelation], path: Path) -> None:
    with open(path, "w", newline="") as f:
        w = csv.writer(f)
        w.writerow(["variable", "axis", "r", "p_value", "method"])
        for c in correlations:
            w.writerow([c.variable, c.axis, f"{c.r:.6f}", f"{c.p_value:.4g}", c.method])


def _write_centroids(centroids: dict, scores: ScoreTable, path: Path) -> None:
    with open(path, "w", newline="") as f:
        w = csv.writer(f)
        w.writerow(["level"] + list(scores.axis_labels))
        for level, centre in centroids.items():
            w.writerow([level] + [f"{v:.6f}" for v in centre])
