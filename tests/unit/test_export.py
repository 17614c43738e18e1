"""Tests for CSV and JSON writers."""

import json

import pytest
import pandas as pd

from orthospec.cross_species import compare_across_species
from orthospec.export import CSVWriter, JSONWriter, write_specificity_csv
from orthospec.specificity import compute_specificity, compute_with_replicate_resampling


class TestCSVWriter:
    """Tests for CSVWriter."""

    def test_write_specificity(self, two_gene_matrix, tmp_path):
        table = compute_specificity(two_gene_matrix, bottom_threshold=1.0)
        path = write_specificity_csv(table, tmp_path / "out")

        assert path == tmp_path / "out" / "specificity.csv"
        loaded = pd.read_csv(path, index_col=0)
        assert loaded.index.name == "gene"
        assert list(loaded.columns) == ["X", "Y"]
        assert loaded.loc["B", "Y"] == 0.9

    def test_write_resampling(self, two_gene_matrix, tmp_path):
        result = compute_with_replicate_resampling(two_gene_matrix, iterations=5, seed=1)
        paths = CSVWriter(tmp_path).write_resampling(result)

        summary = pd.read_csv(paths["summary"])
        assert {"gene", "group", "mean_rank", "std_rank"} <= set(summary.columns)
        assert len(summary) == 4
        assert paths["mean_ranks"].name == "resampling_mean_ranks.csv"

    def test_write_comparison(self, species_tables, tmp_path):
        comparison = compare_across_species("mouse", ["human"], species_tables, "N", 5)
        writer = CSVWriter(tmp_path)

        path = writer.write_comparison(comparison)
        assert path.name == "rank_comparison_N.csv"
        loaded = pd.read_csv(path, index_col=0)
        assert pd.isna(loaded.loc["g5", "human"])
        assert loaded.loc["g1", "human"] == 4

        medians = pd.read_csv(writer.write_median_ranks({"N": comparison}), index_col=0)
        assert medians.loc["N", "human"] == 3.5


class TestJSONWriter:
    """Tests for JSONWriter."""

    def test_write_comparison(self, species_tables, tmp_path):
        comparison = compare_across_species("mouse", ["human"], species_tables, "N", 5)
        path = JSONWriter(tmp_path).write_comparison(comparison)

        with open(path) as f:
            data = json.load(f)

        assert data["group"] == "N"
        assert data["rows"] == ["g1", "g2", "g3", "g4", "g5"]
        assert data["omissions"] == {"mouse": 0, "human": 1}
        assert data["median_ranks"]["human"] == 3.5
        assert {"row": "g5", "col": "human", "value": None} in data["records"]
        assert "_metadata" in data

    def test_write_comparison_summary(self, species_tables, tmp_path):
        comparisons = {
            group: compare_across_species("mouse", ["human"], species_tables, group, 5)
            for group in ["N", "A"]
        }
        path = JSONWriter(tmp_path).write_comparison_summary(comparisons)

        assert path.name == "comparison_summary.json"
        with open(path) as f:
            data = json.load(f)

        assert data["reference_species"] == "mouse"
        assert data["top_n"] == 5
        assert data["groups"] == ["N", "A"]
        assert data["concordance"]["N"]["mouse"] == pytest.approx(1.0)
        assert len(data["summary"]) == 4
        human_n = next(
            r for r in data["summary"] if r["group"] == "N" and r["species"] == "human"
        )
        assert human_n["n_genes"] == 4
        assert human_n["n_missing"] == 1
        assert human_n["median_rank"] == 3.5

    def test_write_resampling_summary(self, two_gene_matrix, tmp_path):
        result = compute_with_replicate_resampling(two_gene_matrix, iterations=3, seed=4)
        path = JSONWriter(tmp_path, include_metadata=False).write_resampling_summary(result)

        with open(path) as f:
            data = json.load(f)

        assert data["n_completed"] == 3
        assert data["seed"] == 4
        assert "_metadata" not in data
