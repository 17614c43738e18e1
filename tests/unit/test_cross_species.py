"""Tests for cross-species rank comparison and group harmonization."""

import pytest
import numpy as np
import pandas as pd

from orthospec.core.errors import (
    DegenerateInputError,
    MissingOrthologError,
    ShapeMismatchError,
)
from orthospec.cross_species import (
    CrossSpeciesComparator,
    balance_groups,
    compare_across_species,
    median_rank_matrix,
    shared_genes,
    shared_groups,
)
from orthospec.expression import ExpressionMatrix
from orthospec.ranking import RankExtractor


class TestCompare:
    """Tests for a single-group comparison."""

    def test_top_three(self, species_tables):
        comparison = compare_across_species("mouse", ["human"], species_tables, "N", 3)

        assert comparison.genes == ["g1", "g2", "g3"]
        assert comparison.species == ["mouse", "human"]
        assert comparison.ranks["mouse"].tolist() == [1, 2, 3]
        assert comparison.ranks["human"].tolist() == [4, 2, 3]
        assert comparison.omissions == {"mouse": 0, "human": 0}

    def test_missing_ortholog_skipped(self, species_tables):
        comparison = compare_across_species("mouse", ["human"], species_tables, "N", 5)

        assert comparison.ranks.loc["g5", "mouse"] == 5
        assert pd.isna(comparison.ranks.loc["g5", "human"])
        assert comparison.missing["human"] == ["g5"]
        assert comparison.omissions == {"mouse": 0, "human": 1}

    def test_missing_ortholog_strict(self, species_tables):
        with pytest.raises(MissingOrthologError) as exc_info:
            compare_across_species("mouse", ["human"], species_tables, "N", 5, strict=True)

        error = exc_info.value
        assert error.gene == "g5"
        assert error.species == "human"
        assert error.group == "N"

    def test_reference_listed_once(self, species_tables):
        comparison = compare_across_species(
            "human", ["mouse", "human"], species_tables, "N", 2
        )
        assert comparison.species == ["human", "mouse"]
        assert comparison.genes == ["g6", "g2"]

    def test_unknown_species(self, species_tables):
        with pytest.raises(ValueError, match="macaque"):
            compare_across_species("mouse", ["macaque"], species_tables, "N", 3)

    def test_unknown_group(self, species_tables):
        with pytest.raises(ShapeMismatchError):
            compare_across_species("mouse", ["human"], species_tables, "Z", 3)

    def test_ordinal_extractor(self, species_tables):
        comparator = CrossSpeciesComparator(RankExtractor(ties="ordinal"))
        comparison = comparator.compare("mouse", ["human"], species_tables, "N", 3)
        assert comparison.ranks["human"].tolist() == [4, 2, 3]


class TestRankComparison:
    """Tests for comparison summaries."""

    @pytest.fixture
    def comparison(self, species_tables):
        return compare_across_species("mouse", ["human"], species_tables, "N", 5)

    def test_median_ranks(self, comparison):
        medians = comparison.median_ranks()
        assert medians["mouse"] == 3.0
        assert medians["human"] == 3.5

    def test_summary(self, comparison):
        summary = comparison.summary()
        assert summary.loc["human", "n_genes"] == 4
        assert summary.loc["human", "n_missing"] == 1
        assert summary.loc["mouse", "mean_rank"] == 3.0
        assert (summary["group"] == "N").all()

    def test_concordance(self, comparison):
        rho = comparison.concordance()
        assert rho["mouse"] == pytest.approx(1.0)
        assert -1.0 <= rho["human"] <= 1.0

    def test_concordance_needs_three_genes(self, species_tables):
        comparison = compare_across_species("mouse", ["human"], species_tables, "N", 2)
        assert np.isnan(comparison.concordance()["human"])

    def test_to_long(self, comparison):
        long = comparison.to_long()
        assert list(long.columns) == ["group", "gene", "species", "rank"]
        assert len(long) == 10
        assert long["rank"].isna().sum() == 1


class TestCompareGroups:
    """Tests for multi-group comparison."""

    def test_all_shared_groups(self, species_tables):
        comparator = CrossSpeciesComparator()
        comparisons = comparator.compare_groups("mouse", ["human"], species_tables, top_n=3)

        assert list(comparisons) == ["N", "A"]
        assert comparisons["A"].genes == ["g5", "g4", "g3"]

    def test_median_rank_matrix(self, species_tables):
        comparisons = CrossSpeciesComparator().compare_groups(
            "mouse", ["human"], species_tables, top_n=3, groups=["N"]
        )
        matrix = median_rank_matrix(comparisons)
        assert list(matrix.index) == ["N"]
        assert matrix.loc["N", "mouse"] == 2.0
        assert matrix.loc["N", "human"] == 3.0


class TestHarmonization:
    """Tests for group and gene harmonization."""

    @pytest.fixture
    def matrices(self):
        mouse = ExpressionMatrix(
            pd.DataFrame(np.ones((2, 4)), index=["g1", "g2"]),
            groups=["N", "A", "M", "O"],
            species="mouse",
        )
        human = ExpressionMatrix(
            pd.DataFrame(np.ones((2, 3)), index=["g1", "g3"]),
            groups=["A", "N", "E"],
            species="human",
        )
        return {"mouse": mouse, "human": human}

    def test_shared_groups(self, matrices):
        assert shared_groups(matrices) == ["N", "A"]

    def test_balance_groups(self, matrices):
        balanced = balance_groups(matrices)
        assert balanced["mouse"].groups == ("N", "A")
        assert balanced["human"].groups == ("N", "A")
        assert balanced["human"].n_samples == 2

    def test_balance_groups_exclusion_leaves_one(self, matrices):
        with pytest.raises(DegenerateInputError):
            balance_groups(matrices, exclude=["A"])

    def test_shared_genes(self, species_tables):
        assert shared_genes(species_tables) == ["g1", "g2", "g3", "g4"]
