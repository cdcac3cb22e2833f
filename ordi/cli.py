"""Click CLI for ordiprofile: ordination of community tables."""

from __future__ import annotations

import csv
import functools
import logging
import sys
from pathlib import Path

import click

from ordi import __version__

from .errors import OrdinationError
from .io import load_community_table, load_explanatory_table

logger = logging.getLogger(__name__)

METHODS = ["pca", "ca", "nmds", "pcoa"]
TRANSFORMS = ["none", "auto", "sqrt", "wisconsin", "hellinger", "pa", "relative"]
DISTANCES = ["bray", "jaccard", "euclidean", "manhattan", "canberra"]


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _reported(func):
    """Turn library errors into clean CLI failures."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except OrdinationError as e:
            raise click.ClickException(str(e)) from e

    return wrapper


def _method_options(func):
    options = [
        click.option("--method", "-m", type=click.Choice(METHODS), default="pca", show_default=True, help="Ordination method"),
        click.option("--transform", type=click.Choice(TRANSFORMS), default=None, help="Standardization (default: none; auto for NMDS)"),
        click.option("--distance", type=click.Choice(DISTANCES), default="bray", show_default=True, help="Dissimilarity for NMDS/PCoA"),
        click.option("--scale/--no-scale", default=False, help="PCA on unit-variance attributes"),
        click.option("--scaling", type=click.IntRange(1, 3), default=2, show_default=True, help="Score scaling for PCA/CA"),
        click.option("--axes", "n_axes", default=2, show_default=True, help="NMDS dimensions"),
        click.option("--restarts", default=20, show_default=True, help="NMDS random restarts"),
        click.option("--max-iter", default=300, show_default=True, help="NMDS iterations per restart"),
        click.option("--seed", default=42, show_default=True, help="Random seed"),
        click.option("--zero-empty-pairs", is_flag=True, help="Treat two empty samples as identical instead of failing"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _method_kwargs(method, transform, distance, scale, scaling, n_axes, restarts, max_iter, seed, zero_empty_pairs) -> dict:
    from .ordination import NMDSConfig

    empty_pairs = "zero" if zero_empty_pairs else "raise"
    if method == "pca":
        return {"scale": scale, "scaling": scaling, "transform": transform or "none"}
    if method == "ca":
        return {"scaling": scaling, "transform": transform or "none"}
    if method == "nmds":
        return {
            "config": NMDSConfig(
                n_axes=n_axes,
                metric=distance,
                transform=transform or "auto",
                n_restarts=restarts,
                max_iter=max_iter,
                random_state=seed,
                empty_pairs=empty_pairs,
            )
        }
    return {"metric": distance, "transform": transform or "none", "empty_pairs": empty_pairs}


@click.group()
@click.version_option(version=__version__)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def main(verbose: bool) -> None:
    """ordiprofile: PCA, CA and NMDS ordination of community tables."""
    _setup_logging(verbose)


@main.command()
@click.option("--table", "-t", required=True, type=click.Path(exists=True), help="Sample-by-species table (CSV/TSV)")
@_method_options
@click.option("--layers", type=click.Choice(["both", "samples", "attributes"]), default="samples", show_default=True, help="Plot layers")
@click.option("--output", "-o", default="results", help="Output directory")
@_reported
def ordinate(table: str, layers: str, output: str, **method_opts) -> None:
    """Run one ordination and write scores and a plot."""
    from .ordination import run_ordination
    from .plots import plot_ordination
    from .report import write_scores, write_summary
    from .scores import extract_scores

    data = load_community_table(table)
    logger.info("Loaded %d samples x %d attributes from %s", data.n_samples, data.n_attributes, table)
    method = method_opts["method"]
    out = Path(output)
    out.mkdir(parents=True, exist_ok=True)

    result = run_ordination(data, method, **_method_kwargs(**method_opts))
    axes = list(range(1, result.rank + 1))
    write_scores(extract_scores(result, "samples", axes), out / f"{method}_sample_scores.csv")
    if result.attribute_scores is not None:
        write_scores(extract_scores(result, "attributes", axes), out / f"{method}_attribute_scores.csv")
    write_summary(result, out / f"{method}_summary.txt")
    if result.rank >= 2:
        if result.attribute_scores is None:
            layers = "samples"
        plot_ordination(result, out / f"{method}_{layers}.pdf", layers=layers)
    click.echo(f"{result.method.value} results written to {out}/")


@main.command()
@click.option("--table", "-t", required=True, type=click.Path(exists=True), help="Sample-by-species table (CSV/TSV)")
@_method_options
@click.option("--kind", type=click.Choice(["samples", "attributes"]), default="samples", show_default=True, help="Entity whose scores to print")
@click.option("--axis", "axis_list", multiple=True, type=int, help="1-based axis (repeatable; default 1 and 2)")
@_reported
def scores(table: str, kind: str, axis_list: tuple[int, ...], **method_opts) -> None:
    """Print selected ordination scores as CSV on stdout."""
    from .ordination import run_ordination
    from .scores import extract_scores

    data = load_community_table(table)
    logger.info("Loaded %d samples x %d attributes from %s", data.n_samples, data.n_attributes, table)
    result = run_ordination(data, method_opts["method"], **_method_kwargs(**method_opts))
    selected = extract_scores(result, kind, list(axis_list) or [1, 2])
    w = csv.writer(sys.stdout)
    for row in selected.to_rows():
        w.writerow(row)


@main.command()
@click.option("--table", "-t", required=True, type=click.Path(exists=True), help="Sample-by-species table (CSV/TSV)")
@click.option("--explanatory", "-e", default=None, type=click.Path(exists=True), help="Explanatory variables table (optional)")
@click.option("--group", "-g", default=None, help="Categorical explanatory variable for colouring and centroids")
@click.option("--permutations", "-p", default=999, help="Permutations for vector fitting")
@_method_options
@click.option("--output", "-o", default="results", help="Output directory")
@_reported
def report(table: str, explanatory: str | None, group: str | None, permutations: int, output: str, **method_opts) -> None:
    """Run an ordination plus explanatory-variable comparisons."""
    from .report import generate_report

    data = load_community_table(table)
    logger.info("Loaded %d samples x %d attributes from %s", data.n_samples, data.n_attributes, table)
    env = load_explanatory_table(explanatory) if explanatory else None
    if group is not None and env is None:
        raise click.UsageError("--group needs --explanatory")

    generate_report(
        data,
        env,
        method_opts["method"],
        output,
        group_by=group,
        n_permutations=permutations,
        seed=method_opts["seed"],
        **_method_kwargs(**method_opts),
    )
    click.echo(f"Full report written to {output}/")
