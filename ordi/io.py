"""Data loading and validation for community ordination."""

from __future__ import annotations

import csv
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

import numpy as np

from .errors import MalformedInputError


def _check_ids(ids: Sequence[str], what: str) -> None:
    seen: set[str] = set()
    for ident in ids:
        if not ident:
            raise MalformedInputError(f"Empty {what} identifier")
        if ident in seen:
            raise MalformedInputError(f"Duplicate {what} identifier: {ident!r}")
        seen.add(ident)


@dataclass
class CommunityTable:
    """Sample-by-attribute (species) abundance matrix."""

    sample_ids: list[str]
    attribute_ids: list[str]
    values: np.ndarray  # shape (n_samples, n_attributes)

    def __post_init__(self) -> None:
        try:
            self.values = np.asarray(self.values, dtype=np.float64)
        except (TypeError, ValueError) as e:
            raise MalformedInputError(f"Table values are not numeric: {e}") from e
        if self.values.ndim != 2:
            raise MalformedInputError(
                f"Table must be 2-D, got {self.values.ndim} dimension(s)"
            )
        n_samples, n_attributes = self.values.shape
        if n_samples != len(self.sample_ids):
            raise MalformedInputError(
                f"Row count {n_samples} != len(sample_ids) {len(self.sample_ids)}"
            )
        if n_attributes != len(self.attribute_ids):
            raise MalformedInputError(
                f"Col count {n_attributes} != len(attribute_ids) {len(self.attribute_ids)}"
            )
        _check_ids(self.sample_ids, "sample")
        _check_ids(self.attribute_ids, "attribute")
        for name in self.attribute_ids:
            if name[0].isdigit():
                raise MalformedInputError(
                    f"Attribute identifier must not start with a digit: {name!r}"
                )
        if not np.all(np.isfinite(self.values)):
            raise MalformedInputError("Table contains missing or infinite values")
        if (self.values < 0).any():
            raise MalformedInputError("Table contains negative values")

    @property
    def n_samples(self) -> int:
        return len(self.sample_ids)

    @property
    def n_attributes(self) -> int:
        return len(self.attribute_ids)

    def row_totals(self) -> np.ndarray:
        return self.values.sum(axis=1)

    def column_totals(self) -> np.ndarray:
        return self.values.sum(axis=0)

    def drop_empty(self) -> CommunityTable:
        """Remove samples and attributes whose totals are zero."""
        rows = self.row_totals() > 0
        cols = self.column_totals() > 0
        return CommunityTable(
            sample_ids=[s for s, keep in zip(self.sample_ids, rows) if keep],
            attribute_ids=[a for a, keep in zip(self.attribute_ids, cols) if keep],
            values=self.values[rows][:, cols],
        )

    def subset_samples(self, sample_ids: Sequence[str]) -> CommunityTable:
        """Return table with only the specified samples."""
        idx_map = {s: i for i, s in enumerate(self.sample_ids)}
        indices = [idx_map[s] for s in sample_ids]
        return CommunityTable(
            sample_ids=list(sample_ids),
            attribute_ids=list(self.attribute_ids),
            values=self.values[indices],
        )

    def subset_attributes(self, attribute_ids: Sequence[str]) -> CommunityTable:
        """Return table with only the specified attributes."""
        idx_map = {a: i for i, a in enumerate(self.attribute_ids)}
        indices = [idx_map[a] for a in attribute_ids]
        return CommunityTable(
            sample_ids=list(self.sample_ids),
            attribute_ids=list(attribute_ids),
            values=self.values[:, indices],
        )

    def with_values(self, values: np.ndarray) -> CommunityTable:
        """Same identifiers, new values (used by the transforms)."""
        return CommunityTable(
            sample_ids=list(self.sample_ids),
            attribute_ids=list(self.attribute_ids),
            values=values,
        )


@dataclass
class ExplanatoryTable:
    """Covariates keyed by sample ID, one list of raw values per column."""

    sample_ids: list[str]
    columns: dict[str, list[str]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        _check_ids(self.sample_ids, "sample")
        for name, col in self.columns.items():
            if len(col) != len(self.sample_ids):
                raise MalformedInputError(
                    f"Column {name!r} has {len(col)} values for {len(self.sample_ids)} samples"
                )

    @property
    def names(self) -> list[str]:
        return list(self.columns.keys())

    def _column(self, name: str) -> list[str]:
        if name not in self.columns:
            raise MalformedInputError(f"Unknown explanatory variable: {name!r}")
        return self.columns[name]

    def is_numeric(self, name: str) -> bool:
        try:
            [float(v) for v in self._column(name)]
        except ValueError:
            return False
        return True

    def numeric(self, name: str) -> np.ndarray:
        col = self._column(name)
        try:
            return np.array([float(v) for v in col], dtype=np.float64)
        except ValueError as e:
            raise MalformedInputError(f"Variable {name!r} is not numeric: {e}") from e

    def categorical(self, name: str) -> list[str]:
        return list(self._column(name))

    def groups(self, name: str) -> dict[str, list[str]]:
        """Group sample IDs by the levels of a variable.

        Returns dict mapping level -> list of sample_ids.
        """
        groups: dict[str, list[str]] = {}
        for sample_id, val in zip(self.sample_ids, self._column(name)):
            groups.setdefault(val, []).append(sample_id)
        return groups

    def align(self, sample_ids: Sequence[str]) -> ExplanatoryTable:
        """Reorder rows to follow ``sample_ids`` (e.g. a community table's)."""
        idx_map = {s: i for i, s in enumerate(self.sample_ids)}
        missing = [s for s in sample_ids if s not in idx_map]
        if missing:
            raise MalformedInputError(
                f"Explanatory table is missing samples: {', '.join(missing)}"
            )
        indices = [idx_map[s] for s in sample_ids]
        return ExplanatoryTable(
            sample_ids=list(sample_ids),
            columns={k: [v[i] for i in indices] for k, v in self.columns.items()},
        )


def _delimiter_for(path: Path, delimiter: str | None) -> str:
    if delimiter is not None:
        return delimiter
    return "\t" if path.suffix.lower() in (".tsv", ".tab", ".txt") else ","


def _read_rows(path: Path, delimiter: str) -> tuple[list[str], list[tuple[int, list[str]]]]:
    with open(path, newline="") as f:
        reader = csv.reader(f, delimiter=delimiter)
        try:
            header = [h.strip() for h in next(reader)]
        except StopIteration:
            raise MalformedInputError(f"{path}: empty file") from None
        if len(header) < 2:
            raise MalformedInputError(
                f"{path}: header needs a row-id column and at least one attribute"
            )
        try:
            _check_ids(header[1:], "column")
        except MalformedInputError as e:
            raise MalformedInputError(f"{path}: {e}") from e
        rows: list[tuple[int, list[str]]] = []
        for row in reader:
            if not row or not row[0].strip():
                continue
            if len(row) != len(header):
                raise MalformedInputError(
                    f"{path}:{reader.line_num}: expected {len(header)} fields, got {len(row)}"
                )
            rows.append((reader.line_num, [x.strip() for x in row]))
    return header, rows


def load_community_table(path: str | Path, delimiter: str | None = None) -> CommunityTable:
    """Load a delimited sample-by-attribute table.

    First column = sample ID, header row = attribute IDs, remaining cells
    are non-negative numbers.
    """
    path = Path(path)
    header, rows = _read_rows(path, _delimiter_for(path, delimiter))
    sample_ids: list[str] = []
    values: list[list[float]] = []
    for line_num, row in rows:
        sample_ids.append(row[0])
        try:
            values.append([float(x) for x in row[1:]])
        except ValueError as e:
            raise MalformedInputError(f"{path}:{line_num}: {e}") from e
    if not values:
        raise MalformedInputError(f"{path}: no data rows")
    try:
        return CommunityTable(
            sample_ids=sample_ids,
            attribute_ids=header[1:],
            values=np.array(values, dtype=np.float64),
        )
    except MalformedInputError as e:
        raise MalformedInputError(f"{path}: {e}") from e


def load_explanatory_table(path: str | Path, delimiter: str | None = None) -> ExplanatoryTable:
    """Load a delimited covariate table.

    First column = sample ID, remaining columns = covariates kept as strings.
    """
    path = Path(path)
    header, rows = _read_rows(path, _delimiter_for(path, delimiter))
    names = header[1:]
    columns: dict[str, list[str]] = {n: [] for n in names}
    sample_ids: list[str] = []
    for _, row in rows:
        sample_ids.append(row[0])
        for name, val in zip(names, row[1:]):
            columns[name].append(val)
    try:
        return ExplanatoryTable(sample_ids=sample_ids, columns=columns)
    except MalformedInputError as e:
        raise MalformedInputError(f"{path}: {e}") from e
