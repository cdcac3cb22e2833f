"""ordiprofile: ordination helpers for ecological community tables.

Runs PCA, correspondence analysis and NMDS on sample-by-species tables,
extracts sample and species scores, compares them with explanatory
variables and draws ordination plots.
"""

__version__ = "0.1.0"
