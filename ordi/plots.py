"""Ordination plots: layered sample/attribute scatters, scree and Shepard plots."""

from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
from matplotlib.figure import Figure
from matplotlib.patches import Ellipse
import numpy as np
import seaborn as sns
from scipy.spatial.distance import pdist

from .errors import AxisOutOfRangeError, OrdinationError
from .io import ExplanatoryTable
from .ordination import OrdinationMethod, OrdinationResult
from .scores import EntityKind, ScoreTable, extract_scores

# Consistent style
PALETTE = sns.color_palette("Set2")
DPI = 300
GEOMS = ("points", "text")


def _setup_style() -> None:
    sns.set_theme(style="whitegrid", palette="Set2")
    plt.rcParams.update({"figure.dpi": DPI, "savefig.dpi": DPI, "font.size": 10})


@dataclass(frozen=True, eq=False)
class PlotLayer:
    """One set of coordinates drawn as point markers or text labels."""

    scores: ScoreTable
    geom: str = "points"
    label: str | None = None
    color: str | None = None
    groups: dict[str, str] | None = None  # entity id -> group level
    ellipses: bool = False

    def __post_init__(self) -> None:
        if self.geom not in GEOMS:
            raise ValueError(f"geom must be one of {GEOMS}, got {self.geom!r}")
        if len(self.scores.axes) < 2:
            raise ValueError("A plot layer needs scores on at least two axes")

    @property
    def plotted_axes(self) -> tuple[int, int]:
        return self.scores.axes[0], self.scores.axes[1]


@dataclass(frozen=True)
class PlotRequest:
    """Immutable description of an ordination plot.

    Every ``with_*``/``add_*`` method returns a new request, so one base
    request can be reused across plots that share limits or titles.
    """

    layers: tuple[PlotLayer, ...] = ()
    title: str | None = None
    xlim: tuple[float, float] | None = None
    ylim: tuple[float, float] | None = None
    xlabel: str | None = None
    ylabel: str | None = None
    annotation: str | None = None
    figsize: tuple[float, float] = (8, 6)
    legend: bool = True

    def add_layer(self, layer: PlotLayer) -> PlotRequest:
        return replace(self, layers=self.layers + (layer,))

    def add_samples(self, scores: ScoreTable, geom: str = "points", **kwargs) -> PlotRequest:
        return self.add_layer(PlotLayer(scores=scores, geom=geom, **kwargs))

    def add_attributes(self, scores: ScoreTable, geom: str = "text", **kwargs) -> PlotRequest:
        return self.add_layer(PlotLayer(scores=scores, geom=geom, **kwargs))

    def with_title(self, title: str | None) -> PlotRequest:
        return replace(self, title=title)

    def with_limits(
        self,
        xlim: tuple[float, float] | None = None,
        ylim: tuple[float, float] | None = None,
    ) -> PlotRequest:
        return replace(self, xlim=xlim, ylim=ylim)

    def with_axes_labels(self, xlabel: str | None, ylabel: str | None) -> PlotRequest:
        return replace(self, xlabel=xlabel, ylabel=ylabel)

    def with_annotation(self, text: str | None) -> PlotRequest:
        return replace(self, annotation=text)


def _confidence_ellipse(coords: np.ndarray, color) -> Ellipse:
    """95% confidence ellipse of a 2-D point cloud (needs >= 3 points)."""
    mean = coords.mean(axis=0)
    cov = np.cov(coords[:, 0], coords[:, 1])
    eigenvalues, eigenvectors = np.linalg.eigh(cov)
    order = eigenvalues.argsort()[::-1]
    eigenvalues = eigenvalues[order]
    eigenvectors = eigenvectors[:, order]
    angle = np.degrees(np.arctan2(eigenvectors[1, 0], eigenvectors[0, 0]))
    # chi-squared with 2 df at 0.05
    chi2_val = 5.991
    width = 2 * np.sqrt(chi2_val * max(eigenvalues[0], 0))
    height = 2 * np.sqrt(chi2_val * max(eigenvalues[1], 0))
    return Ellipse(
        xy=mean, width=width, height=height, angle=angle,
        facecolor=color, alpha=0.15, edgecolor=color,
        linewidth=1.5, linestyle="--",
    )


def _draw(ax, coords: np.ndarray, ids: list[str], layer: PlotLayer, color, label) -> None:
    if layer.geom == "points":
        marker = "o" if layer.scores.kind is EntityKind.SAMPLES else "^"
        ax.scatter(coords[:, 0], coords[:, 1], color=color, s=50, alpha=0.8,
                   marker=marker, label=label)
    else:
        for (x, y), ident in zip(coords, ids):
            ax.text(x, y, ident, color=color, fontsize=8, ha="center", va="center")
        if label:
            # invisible handle so text layers still show up in the legend
            ax.scatter([], [], color=color, marker="$a$", label=label)


def _draw_layer(ax, layer: PlotLayer, layer_index: int) -> None:
    scores = layer.scores.finite()
    x_axis, y_axis = layer.plotted_axes
    coords = np.column_stack([scores.column(x_axis), scores.column(y_axis)])
    default = layer.color or PALETTE[layer_index % len(PALETTE)]

    if layer.groups is None:
        _draw(ax, coords, scores.ids, layer, default, layer.label)
        return

    levels = sorted({layer.groups.get(i, "Unknown") for i in scores.ids})
    for gi, level in enumerate(levels):
        mask = np.array([layer.groups.get(i, "Unknown") == level for i in scores.ids])
        color = PALETTE[gi % len(PALETTE)]
        ids = [i for i, keep in zip(scores.ids, mask) if keep]
        _draw(ax, coords[mask], ids, layer, color, level)
        if layer.ellipses and mask.sum() >= 3:
            ax.add_patch(_confidence_ellipse(coords[mask], color))


def render(request: PlotRequest, output: str | Path | None = None) -> Figure | None:
    """Draw a plot request with matplotlib.

    Saves to ``output`` and closes the figure when a path is given,
    otherwise returns the open Figure.
    """
    if not request.layers:
        raise ValueError("Plot request has no layers")
    axes_pairs = {layer.plotted_axes for layer in request.layers}
    if len(axes_pairs) > 1:
        raise ValueError(f"All layers must share the same axes, got {sorted(axes_pairs)}")

    _setup_style()
    fig, ax = plt.subplots(figsize=request.figsize)
    for i, layer in enumerate(request.layers):
        _draw_layer(ax, layer, i)

    first = request.layers[0].scores
    ax.axhline(0, color="grey", linewidth=0.6, linestyle=":")
    ax.axvline(0, color="grey", linewidth=0.6, linestyle=":")
    ax.set_xlabel(request.xlabel or first.axis_labels[0])
    ax.set_ylabel(request.ylabel or first.axis_labels[1])
    if request.xlim is not None:
        ax.set_xlim(*request.xlim)
    if request.ylim is not None:
        ax.set_ylim(*request.ylim)
    if request.title:
        ax.set_title(request.title)
    if request.annotation:
        ax.text(0.02, 0.02, request.annotation, transform=ax.transAxes, fontsize=9)
    if request.legend and ax.get_legend_handles_labels()[0]:
        ax.legend()
    fig.tight_layout()

    if output is None:
        return fig
    fig.savefig(output, bbox_inches="tight")
    plt.close(fig)
    return None


def _axis_label(result: OrdinationResult, axis: int) -> str:
    label = result.axis_labels[axis - 1]
    if result.explained_variance is not None:
        label += f" ({result.explained_variance[axis - 1] * 100:.1f}%)"
    return label


def ordination_request(
    result: OrdinationResult,
    layers: str = "both",
    axes: tuple[int, int] = (1, 2),
    sample_geom: str = "points",
    attribute_geom: str = "text",
    explanatory: ExplanatoryTable | None = None,
    group_by: str | None = None,
    ellipses: bool = False,
) -> PlotRequest:
    """Build a plot request for samples, attributes or both from one result."""
    if layers not in ("both", "samples", "attributes"):
        raise ValueError(f"layers must be 'both', 'samples' or 'attributes', got {layers!r}")
    # validates the axes against the result's rank before any labels are built
    samples = extract_scores(result, EntityKind.SAMPLES, axes)
    if len(samples.axes) != 2:
        raise AxisOutOfRangeError(f"An ordination plot needs exactly two axes, got {samples.axes}")
    request = PlotRequest(title=f"{result.method.value} ordination").with_axes_labels(
        _axis_label(result, samples.axes[0]), _axis_label(result, samples.axes[1])
    )
    if result.stress is not None:
        request = request.with_annotation(f"Stress: {result.stress:.4f}")

    if layers in ("both", "samples"):
        groups = None
        if group_by is not None:
            if explanatory is None:
                raise OrdinationError("group_by needs an explanatory table")
            env = explanatory.align(list(result.sample_ids))
            groups = dict(zip(env.sample_ids, env.categorical(group_by)))
        request = request.add_samples(
            samples,
            geom=sample_geom,
            label=None if groups else "samples",
            groups=groups,
            ellipses=ellipses,
        )
    if layers in ("both", "attributes"):
        request = request.add_attributes(
            extract_scores(result, EntityKind.ATTRIBUTES, axes),
            geom=attribute_geom,
            label="attributes",
            color="firebrick",
        )
    return request


def plot_ordination(
    result: OrdinationResult,
    output: str | Path,
    layers: str = "both",
    explanatory: ExplanatoryTable | None = None,
    group_by: str | None = None,
) -> None:
    """Scatter plot of an ordination with default layers and labels."""
    request = ordination_request(
        result,
        layers=layers,
        explanatory=explanatory,
        group_by=group_by,
        ellipses=group_by is not None,
    )
    render(request, output)


def plot_scree(result: OrdinationResult, output: str | Path) -> None:
    """Bar chart of the proportion of variance explained per axis."""
    if result.explained_variance is None:
        raise OrdinationError(f"{result.method.value} result has no eigenvalues")
    _setup_style()
    fig, ax = plt.subplots(figsize=(8, 4))
    pct = result.explained_variance * 100
    ax.bar(result.axis_labels, pct, color=PALETTE[0])
    ax.plot(result.axis_labels, np.cumsum(pct), color=PALETTE[1], marker="o",
            label="cumulative")
    ax.set_ylabel("Variance explained (%)")
    ax.set_title(f"{result.method.value} scree plot")
    ax.legend()
    if result.rank > 10:
        ax.tick_params(axis="x", rotation=90)
    fig.tight_layout()
    fig.savefig(output, bbox_inches="tight")
    plt.close(fig)


def plot_shepard(result: OrdinationResult, output: str | Path | None = None) -> Figure | None:
    """Shepard diagram: observed dissimilarity vs. ordination distance.

    The step line is the isotonic regression of ordination distances on the
    observed dissimilarities, the monotone fit that non-metric stress is
    measured against. Returns the open Figure when ``output`` is None.
    """
    from sklearn.isotonic import IsotonicRegression

    if result.method is not OrdinationMethod.NMDS:
        raise OrdinationError("Shepard diagrams are only drawn for NMDS results")
    observed = np.asarray(result.diagnostics["dissimilarities"])
    fitted = pdist(result.sample_scores)
    order = np.argsort(observed, kind="stable")
    monotone = IsotonicRegression().fit_transform(observed[order], fitted[order])

    _setup_style()
    fig, ax = plt.subplots(figsize=(6, 6))
    ax.scatter(observed, fitted, s=12, alpha=0.6, color=PALETTE[2])
    ax.step(observed[order], monotone, where="post", color=PALETTE[1])
    ax.set_xlabel(f"Observed dissimilarity ({result.diagnostics['metric']})")
    ax.set_ylabel("Ordination distance")
    ax.set_title(f"Shepard diagram (stress {result.stress:.4f})")
    fig.tight_layout()

    if output is None:
        return fig
    fig.savefig(output, bbox_inches="tight")
    plt.close(fig)
    return None
