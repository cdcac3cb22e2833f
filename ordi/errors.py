"""Exceptions raised by ordiprofile."""

from __future__ import annotations


class OrdinationError(ValueError):
    """Base class for all ordiprofile errors."""


class MalformedInputError(OrdinationError):
    """Bad header, duplicated identifiers, non-numeric or negative values."""


class UnsupportedMethodError(OrdinationError):
    """Unknown ordination method, transform or dissimilarity metric."""


class AxisOutOfRangeError(OrdinationError):
    """Requested axis exceeds the rank of the ordination."""


class DegenerateDissimilarityError(OrdinationError):
    """Undefined or all-zero pairwise dissimilarities."""
