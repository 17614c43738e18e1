"""
CSV output writer for tabular exports.
"""

from __future__ import annotations

from pathlib import Path
from typing import Mapping, Optional

import pandas as pd

from orthospec.cross_species.comparator import RankComparison, median_rank_matrix
from orthospec.specificity.calculator import SpecificityTable
from orthospec.specificity.resampling import ResamplingResult


class CSVWriter:
    """Writes specificity results to CSV files."""

    def __init__(
        self,
        output_dir: Path,
        include_index: bool = True,
        float_format: str = "%.6g",
    ):
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.include_index = include_index
        self.float_format = float_format

    def write_matrix(
        self,
        matrix: pd.DataFrame,
        filename: str,
        index_label: Optional[str] = None,
    ) -> Path:
        """Write matrix to CSV.

        Parameters
        ----------
        matrix : pd.DataFrame
            Matrix to write
        filename : str
            Output filename
        index_label : str, optional
            Label for index column

        Returns
        -------
        Path
            Path to written file
        """
        path = self.output_dir / filename
        matrix.to_csv(
            path,
            index=self.include_index,
            index_label=index_label,
            float_format=self.float_format,
        )
        return path

    def write_specificity(
        self,
        table: SpecificityTable,
        filename: str = "specificity.csv",
    ) -> Path:
        """Write specificity scores (genes x groups)."""
        return self.write_matrix(table.scores, filename, index_label="gene")

    def write_resampling(
        self,
        result: ResamplingResult,
        filename_prefix: str = "resampling",
    ) -> dict[str, Path]:
        """Write the long-format stability summary and the mean rank matrix."""
        paths = {}

        summary = result.summary()
        path = self.output_dir / f"{filename_prefix}_summary.csv"
        summary.to_csv(path, index=False, float_format=self.float_format)
        paths["summary"] = path

        paths["mean_ranks"] = self.write_matrix(
            result.mean_ranks,
            f"{filename_prefix}_mean_ranks.csv",
            index_label="gene",
        )

        return paths

    def write_comparison(
        self,
        comparison: RankComparison,
        filename: Optional[str] = None,
    ) -> Path:
        """Write a rank comparison (genes x species)."""
        filename = filename or f"rank_comparison_{comparison.group}.csv"
        return self.write_matrix(comparison.ranks, filename, index_label="gene")

    def write_median_ranks(
        self,
        comparisons: Mapping[str, RankComparison],
        filename: str = "median_ranks.csv",
    ) -> Path:
        """Write median rank per group and species."""
        return self.write_matrix(
            median_rank_matrix(comparisons), filename, index_label="group"
        )


def write_specificity_csv(
    table: SpecificityTable,
    output_dir: Path,
    filename: str = "specificity.csv",
) -> Path:
    """Convenience function to write a specificity table to CSV."""
    writer = CSVWriter(output_dir)
    return writer.write_specificity(table, filename)
