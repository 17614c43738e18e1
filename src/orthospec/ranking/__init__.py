"""
Rank extraction.

Top-N gene lists and rank lookups within specificity tables.
"""

from orthospec.ranking.extractor import (
    RankExtractor,
    RankTable,
    rank_columns,
    rank_of,
    stable_order,
    top_n,
)

__all__ = [
    "RankExtractor",
    "RankTable",
    "rank_columns",
    "rank_of",
    "stable_order",
    "top_n",
]
