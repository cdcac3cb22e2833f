"""Score extraction from ordination results."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Iterable

import numpy as np

from .errors import AxisOutOfRangeError, OrdinationError
from .ordination import OrdinationMethod, OrdinationResult


class EntityKind(enum.Enum):
    SAMPLES = "samples"
    ATTRIBUTES = "attributes"

    @classmethod
    def parse(cls, name: str | EntityKind) -> EntityKind:
        if isinstance(name, cls):
            return name
        key = str(name).lower()
        aliases = {
            "samples": cls.SAMPLES,
            "sites": cls.SAMPLES,
            "attributes": cls.ATTRIBUTES,
            "species": cls.ATTRIBUTES,
        }
        if key not in aliases:
            raise OrdinationError(
                f"Unknown entity kind {name!r}; use 'samples' or 'attributes'"
            )
        return aliases[key]


@dataclass
class ScoreTable:
    """Coordinates of samples or attributes on selected axes."""

    kind: EntityKind
    ids: list[str]
    axes: list[int]  # 1-based axis numbers
    values: np.ndarray  # shape (len(ids), len(axes))
    method: OrdinationMethod
    axis_labels: list[str]

    def column(self, axis: int) -> np.ndarray:
        """Scores on a 1-based axis that is part of this table."""
        if axis not in self.axes:
            raise AxisOutOfRangeError(f"Axis {axis} not in extracted axes {self.axes}")
        return self.values[:, self.axes.index(axis)]

    def as_dict(self) -> dict[str, tuple[float, ...]]:
        return {i: tuple(float(v) for v in row) for i, row in zip(self.ids, self.values)}

    def to_rows(self) -> list[list[object]]:
        """Header plus one row per entity, ready for csv.writer."""
        rows: list[list[object]] = [["id"] + list(self.axis_labels)]
        for ident, row in zip(self.ids, self.values):
            rows.append([ident] + [float(v) for v in row])
        return rows

    def finite(self) -> ScoreTable:
        """Drop rows with NaN scores (e.g. absent species in NMDS)."""
        mask = np.all(np.isfinite(self.values), axis=1)
        return ScoreTable(
            kind=self.kind,
            ids=[i for i, keep in zip(self.ids, mask) if keep],
            axes=list(self.axes),
            values=self.values[mask],
            method=self.method,
            axis_labels=list(self.axis_labels),
        )


def _normalize_axes(axes: int | Iterable[int]) -> list[int]:
    if isinstance(axes, (int, np.integer)):
        return [int(axes)]
    out = [int(a) for a in axes]
    if not out:
        raise AxisOutOfRangeError("No axes requested")
    if len(set(out)) != len(out):
        raise AxisOutOfRangeError(f"Duplicate axes requested: {out}")
    return out


def extract_scores(
    result: OrdinationResult,
    kind: str | EntityKind = EntityKind.SAMPLES,
    axes: int | Iterable[int] = (1, 2),
) -> ScoreTable:
    """Slice sample or attribute scores on 1-based ``axes``.

    Axes may be sparse and are returned in the order given. Rows keep the
    identifier order of the ordinated table.
    """
    kind = EntityKind.parse(kind)
    wanted = _normalize_axes(axes)
    bad = [a for a in wanted if a < 1 or a > result.rank]
    if bad:
        raise AxisOutOfRangeError(
            f"Axes {bad} out of range; {result.method.value} result has rank {result.rank}"
        )

    if kind is EntityKind.SAMPLES:
        ids, source = list(result.sample_ids), result.sample_scores
    else:
        if result.attribute_scores is None:
            raise OrdinationError(f"{result.method.value} result has no attribute scores")
        ids, source = list(result.attribute_ids), result.attribute_scores

    cols = [a - 1 for a in wanted]
    labels = result.axis_labels
    return ScoreTable(
        kind=kind,
        ids=ids,
        axes=wanted,
        values=np.array(source[:, cols], dtype=np.float64),
        method=result.method,
        axis_labels=[labels[c] for c in cols],
    )
