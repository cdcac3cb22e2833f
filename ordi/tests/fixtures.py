"""Synthetic data generation for ordination tests."""

from __future__ import annotations

import numpy as np

from ordi.io import CommunityTable, ExplanatoryTable

MANAGEMENT = ["BF", "HF", "NM", "SF"]


def generate_gradient_community(
    n_samples: int = 20,
    n_attributes: int = 30,
    seed: int = 42,
) -> tuple[CommunityTable, ExplanatoryTable]:
    """Dune-meadow-like cover table (0-10) along one moisture gradient.

    Species have Gaussian responses with optima spread along the gradient,
    so most of the table is zero. Every sample holds at least one species
    and every species occurs at least once.
    """
    rng = np.random.default_rng(seed)
    gradient = np.linspace(0.0, 10.0, n_samples)
    optima = rng.uniform(-1.0, 11.0, n_attributes)
    tolerance = rng.uniform(1.0, 2.5, n_attributes)
    peak = rng.uniform(4.0, 10.0, n_attributes)

    expected = peak * np.exp(-((gradient[:, None] - optima[None, :]) ** 2) / (2 * tolerance**2))
    values = np.clip(np.round(expected + rng.normal(0.0, 0.7, expected.shape)), 0, 10)
    values[values < 1] = 0

    for i in np.where(values.sum(axis=1) == 0)[0]:
        values[i, np.argmax(expected[i])] = 1
    for j in np.where(values.sum(axis=0) == 0)[0]:
        values[np.argmax(expected[:, j]), j] = 1

    sample_ids = [str(i + 1) for i in range(n_samples)]
    attribute_ids = [f"Sp{j + 1:02d}" for j in range(n_attributes)]

    moisture = np.clip(np.round(gradient / 2.5) + 1, 1, 5).astype(int)
    a1 = 2.5 + 0.6 * gradient + rng.normal(0.0, 0.8, n_samples)
    explanatory = ExplanatoryTable(
        sample_ids=list(sample_ids),
        columns={
            "A1": [f"{v:.1f}" for v in a1],
            "Moisture": [str(m) for m in moisture],
            "Management": [MANAGEMENT[i % len(MANAGEMENT)] for i in range(n_samples)],
        },
    )
    table = CommunityTable(sample_ids=sample_ids, attribute_ids=attribute_ids, values=values)
    return table, explanatory


def generate_two_group_table() -> CommunityTable:
    """Six samples in two clearly separated groups of three."""
    return CommunityTable(
        sample_ids=["a1", "a2", "a3", "b1", "b2", "b3"],
        attribute_ids=["Sp1", "Sp2", "Sp3", "Sp4"],
        values=np.array(
            [
                [9.0, 7.0, 0.0, 1.0],
                [8.0, 6.0, 1.0, 0.0],
                [9.0, 8.0, 0.0, 0.0],
                [0.0, 1.0, 8.0, 9.0],
                [1.0, 0.0, 7.0, 8.0],
                [0.0, 0.0, 9.0, 7.0],
            ]
        ),
    )


def write_table(path, table: CommunityTable, delimiter: str = ",") -> None:
    lines = [delimiter.join([""] + table.attribute_ids)]
    for sid, row in zip(table.sample_ids, table.values):
        lines.append(delimiter.join([sid] + [f"{v:g}" for v in row]))
    path.write_text("\n".join(lines) + "\n")


def write_explanatory(path, explanatory: ExplanatoryTable, delimiter: str = ",") -> None:
    names = explanatory.names
    lines = [delimiter.join(["sample"] + names)]
    for i, sid in enumerate(explanatory.sample_ids):
        lines.append(delimiter.join([sid] + [explanatory.columns[n][i] for n in names]))
    path.write_text("\n".join(lines) + "\n")
