"""
Cross-species rank comparison.

Takes a reference species' most specific genes for a group and looks up
where the same (orthologous) identifiers rank for that group in every
other species.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Literal, Mapping, Optional, Sequence

import numpy as np
import pandas as pd
from scipy import stats

from orthospec.core.errors import MissingOrthologError
from orthospec.ranking.extractor import RankExtractor
from orthospec.specificity.calculator import SpecificityTable

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class RankComparison:
    """Ranks of one reference top-N gene list across species."""

    reference_species: str
    """Species the genes were selected in."""

    group: str
    """Group (cell type) compared."""

    genes: list[str]
    """Reference top-N genes, best first."""

    ranks: pd.DataFrame
    """Rank per gene (rows) and species (columns); pd.NA when missing."""

    top_n: int
    """Requested list length."""

    missing: dict[str, list[str]] = field(default_factory=dict)
    """Genes skipped per species (no ortholog entry)."""

    @property
    def species(self) -> list[str]:
        return list(self.ranks.columns)

    @property
    def omissions(self) -> dict[str, int]:
        """Number of skipped genes per species."""
        return {sp: len(self.missing.get(sp, [])) for sp in self.species}

    def _float_ranks(self) -> pd.DataFrame:
        return self.ranks.astype("float64")

    def median_ranks(self) -> pd.Series:
        """Median rank per species, ignoring missing genes."""
        return self._float_ranks().median().rename("median_rank")

    def summary(self) -> pd.DataFrame:
        """Per-species summary statistics."""
        ranks = self._float_ranks()
        return pd.DataFrame({
            "group": self.group,
            "n_genes": ranks.notna().sum(),
            "n_missing": pd.Series(self.omissions),
            "median_rank": ranks.median(),
            "mean_rank": ranks.mean(),
        }).rename_axis("species")

    def concordance(self) -> pd.Series:
        """Spearman correlation of each species' ranks with the reference ranks."""
        ranks = self._float_ranks()
        reference = ranks[self.reference_species]
        rhos = {}
        for sp in self.species:
            shared = reference.notna() & ranks[sp].notna()
            if shared.sum() < 3:
                rhos[sp] = np.nan
                continue
            rho, _ = stats.spearmanr(reference[shared], ranks[sp][shared])
            rhos[sp] = float(rho)
        return pd.Series(rhos, name="spearman_rho")

    def to_long(self) -> pd.DataFrame:
        """Long format (gene, species, rank) for rendering."""
        long = self.ranks.reset_index().melt(
            id_vars="gene", var_name="species", value_name="rank"
        )
        long.insert(0, "group", self.group)
        return long


class CrossSpeciesComparator:
    """
    Compares within-group rankings across species on shared gene identifiers.

    Example:
        >>> comparator = CrossSpeciesComparator()
        >>> comparison = comparator.compare(
        ...     "mouse", ["human", "macaque"], tables, group="microglia", top_n=100
        ... )
        >>> comparison.median_ranks()
    """

    def __init__(
        self,
        extractor: Optional[RankExtractor] = None,
        strict: bool = False,
    ):
        """
        Initialize comparator.

        Args:
            extractor: Rank extractor (default ties="min").
            strict: Raise MissingOrthologError instead of skipping genes.
        """
        self.extractor = extractor or RankExtractor()
        self.strict = strict

    def compare(
        self,
        reference_species: str,
        target_species: Sequence[str],
        tables: Mapping[str, SpecificityTable],
        group: str,
        top_n: int,
    ) -> RankComparison:
        """
        Rank the reference top-N genes of ``group`` in every species.

        Args:
            reference_species: Species whose top genes are compared.
            target_species: Species to look the genes up in (the
                reference is always included, first).
            tables: Species name to SpecificityTable.
            group: Group label, shared across species.
            top_n: Number of reference genes.

        Returns:
            RankComparison.

        Raises:
            MissingOrthologError: In strict mode, when a gene is absent
                from a target table.
        """
        species_order = list(dict.fromkeys([reference_species, *target_species]))
        unknown = [sp for sp in species_order if sp not in tables]
        if unknown:
            raise ValueError(f"No specificity table for species: {unknown}")

        genes = self.extractor.top_n(tables[reference_species], group, top_n)

        columns = {}
        missing = {}
        for sp in species_order:
            table = tables[sp]
            table.column(group)

            absent = [g for g in genes if g not in table]
            if absent:
                if self.strict:
                    raise MissingOrthologError(absent[0], sp, group)
                logger.warning(
                    "%s: %d of %d '%s' genes from %s have no ortholog entry, skipped",
                    sp, len(absent), len(genes), group, reference_species,
                )

            present = [g for g in genes if g in table]
            ranks = self.extractor.rank_of(present, table, group)
            columns[sp] = pd.Series(dict(ranks), dtype="Int64").reindex(genes)
            missing[sp] = absent

        frame = pd.DataFrame(columns, index=pd.Index(genes, name="gene"))
        frame = frame.astype("Int64")
        frame.columns.name = "species"

        logger.info(
            "Compared %d '%s' genes from %s across %d species",
            len(genes), group, reference_species, len(species_order),
        )

        return RankComparison(
            reference_species=reference_species,
            group=group,
            genes=genes,
            ranks=frame,
            top_n=top_n,
            missing=missing,
        )

    def compare_groups(
        self,
        reference_species: str,
        target_species: Sequence[str],
        tables: Mapping[str, SpecificityTable],
        top_n: int,
        groups: Optional[Sequence[str]] = None,
    ) -> dict[str, RankComparison]:
        """Run ``compare`` for several groups (default: groups shared by all tables)."""
        if groups is None:
            involved = [reference_species, *target_species]
            common = set.intersection(*(set(tables[sp].groups) for sp in involved))
            groups = [g for g in tables[reference_species].groups if g in common]

        return {
            group: self.compare(reference_species, target_species, tables, group, top_n)
            for group in groups
        }


def median_rank_matrix(comparisons: Mapping[str, RankComparison]) -> pd.DataFrame:
    """Median rank per group (rows) and species (columns)."""
    rows = {group: comp.median_ranks() for group, comp in comparisons.items()}
    matrix = pd.DataFrame(rows).T
    matrix.index.name = "group"
    matrix.columns.name = "species"
    return matrix


def compare_across_species(
    reference_species: str,
    target_species: Sequence[str],
    tables: Mapping[str, SpecificityTable],
    group: str,
    top_n: int,
    strict: bool = False,
    ties: Literal["min", "ordinal"] = "min",
) -> RankComparison:
    """Convenience function for cross-species rank comparison."""
    comparator = CrossSpeciesComparator(RankExtractor(ties=ties), strict=strict)
    return comparator.compare(reference_species, target_species, tables, group, top_n)


def summary_table(comparisons: Mapping[str, RankComparison]) -> pd.DataFrame:
    """Per-species summaries of several comparisons, one row per (group, species)."""
    frames = [comp.summary().reset_index() for comp in comparisons.values()]
    if not frames:
        return pd.DataFrame(
            columns=["species", "group", "n_genes", "n_missing", "median_rank", "mean_rank"]
        )
    return pd.concat(frames, ignore_index=True)
