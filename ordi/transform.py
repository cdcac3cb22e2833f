"""Community data standardizations applied before ordination."""

from __future__ import annotations

import numpy as np

from .errors import UnsupportedMethodError
from .io import CommunityTable


def _safe_divide(values: np.ndarray, denom: np.ndarray) -> np.ndarray:
    denom = np.where(denom == 0, 1.0, denom)
    return values / denom


def sqrt_transform(table: CommunityTable) -> CommunityTable:
    return table.with_values(np.sqrt(table.values))


def presence_absence(table: CommunityTable) -> CommunityTable:
    return table.with_values((table.values > 0).astype(np.float64))


def relative(table: CommunityTable) -> CommunityTable:
    """Divide each sample by its total (rows sum to 1, empty rows stay 0)."""
    totals = table.values.sum(axis=1, keepdims=True)
    return table.with_values(_safe_divide(table.values, totals))


def hellinger(table: CommunityTable) -> CommunityTable:
    return table.with_values(np.sqrt(relative(table).values))


def wisconsin(table: CommunityTable) -> CommunityTable:
    """Wisconsin double standardization.

    Each attribute is divided by its maximum, then each sample by its total.
    """
    col_max = table.values.max(axis=0, keepdims=True)
    by_max = _safe_divide(table.values, col_max)
    totals = by_max.sum(axis=1, keepdims=True)
    return table.with_values(_safe_divide(by_max, totals))


def auto_transform(
    table: CommunityTable,
    sqrt_threshold: float = 50.0,
    wisconsin_threshold: float = 9.0,
) -> tuple[CommunityTable, list[str]]:
    """Square root and/or Wisconsin standardization depending on data range.

    Square root is taken when the maximum value exceeds ``sqrt_threshold``;
    Wisconsin standardization follows when the maximum of the original data
    exceeds ``wisconsin_threshold``. Returns the table and the steps taken.
    """
    steps: list[str] = []
    max_value = float(table.values.max()) if table.values.size else 0.0
    out = table
    if max_value > sqrt_threshold:
        out = sqrt_transform(out)
        steps.append("sqrt")
    if max_value > wisconsin_threshold:
        out = wisconsin(out)
        steps.append("wisconsin")
    return out, steps


TRANSFORMS = {
    "sqrt": sqrt_transform,
    "wisconsin": wisconsin,
    "hellinger": hellinger,
    "pa": presence_absence,
    "relative": relative,
}


def apply_transform(
    table: CommunityTable,
    name: str = "none",
    sqrt_threshold: float = 50.0,
    wisconsin_threshold: float = 9.0,
) -> tuple[CommunityTable, list[str]]:
    """Apply a named transform; returns the table and the steps applied."""
    key = name.lower()
    if key == "none":
        return table, []
    if key == "auto":
        return auto_transform(table, sqrt_threshold, wisconsin_threshold)
    if key not in TRANSFORMS:
        raise UnsupportedMethodError(
            f"Unknown transform {name!r}; choose from none, auto, {', '.join(TRANSFORMS)}"
        )
    return TRANSFORMS[key](table), [key]
