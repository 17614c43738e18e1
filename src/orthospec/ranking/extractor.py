"""
Rank extraction from specificity tables.

Ranks are 1-based positions in the stable descending order of a group's
scores: higher score first, original gene order among equal scores.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Iterable, Iterator, Literal, Optional

import numpy as np
import pandas as pd
from scipy import stats

from orthospec.core.errors import GeneNotFoundError

if TYPE_CHECKING:
    from orthospec.specificity.calculator import SpecificityTable

TiesMethod = Literal["min", "ordinal"]
RANK_METHODS = ("min", "ordinal")


def rank_columns(scores: np.ndarray, ties: TiesMethod = "min") -> np.ndarray:
    """Rank every column of a genes x groups score array, best = 1.

    ``ordinal`` gives each gene its position in the stable descending
    order; ``min`` gives tied genes the best position of their tie block.
    """
    if ties not in RANK_METHODS:
        raise ValueError(f"Unknown ties method: {ties}. Available: {list(RANK_METHODS)}")
    scores = np.asarray(scores, dtype=np.float64)
    if not np.isfinite(scores).all():
        raise ValueError("Cannot rank non-finite specificity scores")
    if scores.ndim == 1:
        return stats.rankdata(-scores, method=ties).astype(np.int64)
    return stats.rankdata(-scores, method=ties, axis=0).astype(np.int64)


def stable_order(values: np.ndarray) -> np.ndarray:
    """Indices sorting ``values`` descending, ties kept in original order."""
    return np.argsort(-np.asarray(values, dtype=np.float64), kind="stable")


class RankTable(Mapping):
    """Read-only ordered mapping gene -> rank within one (species, group)."""

    def __init__(
        self,
        ranks: dict[str, int],
        group: str,
        species: Optional[str] = None,
    ):
        self._ranks = dict(ranks)
        self.group = group
        self.species = species

    def __getitem__(self, gene: str) -> int:
        return self._ranks[gene]

    def __iter__(self) -> Iterator[str]:
        return iter(self._ranks)

    def __len__(self) -> int:
        return len(self._ranks)

    def to_series(self) -> pd.Series:
        """Ranks as an integer Series indexed by gene."""
        return pd.Series(
            self._ranks, dtype="int64", name=self.species or self.group
        ).rename_axis("gene")

    def __repr__(self) -> str:
        return f"RankTable(group={self.group!r}, species={self.species!r}, {self._ranks!r})"


class RankExtractor:
    """
    Extracts top genes and rank lookups from a SpecificityTable.

    Example:
        >>> extractor = RankExtractor()
        >>> top = extractor.top_n(table, "microglia", 50)
        >>> ranks = extractor.rank_of(top, other_species_table, "microglia")
    """

    def __init__(self, ties: TiesMethod = "min"):
        """
        Initialize extractor.

        Args:
            ties: ``min`` shares the best position among tied genes,
                ``ordinal`` keeps the stable position.
        """
        if ties not in RANK_METHODS:
            raise ValueError(f"Unknown ties method: {ties}. Available: {list(RANK_METHODS)}")
        self.ties = ties

    def top_n(self, table: SpecificityTable, group: str, n: int) -> list[str]:
        """The ``n`` highest scoring genes for ``group``, best first."""
        if n < 1:
            raise ValueError(f"n must be >= 1, got {n}")
        column = table.column(group)
        order = stable_order(column.to_numpy())[:n]
        return column.index[order].tolist()

    def ranks(self, table: SpecificityTable, group: str) -> pd.Series:
        """Rank of every gene in the table for ``group``."""
        column = table.column(group)
        return pd.Series(
            rank_columns(column.to_numpy(), self.ties),
            index=column.index,
            name=group,
        )

    def rank_of(
        self,
        genes: Iterable[str],
        table: SpecificityTable,
        group: str,
    ) -> RankTable:
        """
        Look up each gene's rank among all genes of ``table`` for ``group``.

        Args:
            genes: Genes to look up.
            table: Specificity table to rank within.
            group: Group column to rank by.

        Returns:
            RankTable in the order of ``genes``.

        Raises:
            GeneNotFoundError: If any gene is absent from the table.
        """
        genes = list(genes)
        all_ranks = self.ranks(table, group)

        missing = [g for g in genes if g not in all_ranks.index]
        if missing:
            raise GeneNotFoundError(missing, group=group, species=table.species)

        return RankTable(
            {g: int(all_ranks.at[g]) for g in genes},
            group=group,
            species=table.species,
        )


def top_n(table: SpecificityTable, group: str, n: int) -> list[str]:
    """Convenience function for top gene extraction."""
    return RankExtractor().top_n(table, group, n)


def rank_of(
    genes: Iterable[str],
    table: SpecificityTable,
    group: str,
    ties: TiesMethod = "min",
) -> RankTable:
    """Convenience function for rank lookup."""
    return RankExtractor(ties=ties).rank_of(genes, table, group)
