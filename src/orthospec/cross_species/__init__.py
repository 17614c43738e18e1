"""
Cross-species comparison.

Balances group sets across species and compares within-group rankings on
shared (orthologous) gene identifiers.
"""

from orthospec.cross_species.harmonization import (
    balance_groups,
    shared_genes,
    shared_groups,
)
from orthospec.cross_species.comparator import (
    CrossSpeciesComparator,
    RankComparison,
    compare_across_species,
    median_rank_matrix,
    summary_table,
)

__all__ = [
    # Harmonization
    "balance_groups",
    "shared_genes",
    "shared_groups",
    # Comparison
    "CrossSpeciesComparator",
    "RankComparison",
    "compare_across_species",
    "median_rank_matrix",
    "summary_table",
]
