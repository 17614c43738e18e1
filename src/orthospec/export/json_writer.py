"""
JSON output writer for visualization.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Mapping
from datetime import datetime

import numpy as np
import pandas as pd

from orthospec import __version__
from orthospec.cross_species.comparator import RankComparison, summary_table
from orthospec.specificity.resampling import ResamplingResult


class NumpyEncoder(json.JSONEncoder):
    """JSON encoder that handles numpy and pandas missing values."""

    def default(self, obj):
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.floating):
            return float(obj)
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if obj is pd.NA or pd.isna(obj):
            return None
        return super().default(obj)


class JSONWriter:
    """Writes rank comparisons and run summaries to JSON files."""

    def __init__(
        self,
        output_dir: Path,
        pretty_print: bool = True,
        include_metadata: bool = True,
    ):
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.pretty_print = pretty_print
        self.include_metadata = include_metadata

    def _add_metadata(self, data: dict) -> dict:
        """Add generation metadata."""
        if self.include_metadata:
            data["_metadata"] = {
                "generated_at": datetime.now().isoformat(),
                "generator": f"orthospec {__version__}",
            }
        return data

    def _write_json(self, data: Any, filename: str) -> Path:
        """Write JSON file."""
        path = self.output_dir / filename
        with open(path, "w") as f:
            if self.pretty_print:
                json.dump(data, f, indent=2, cls=NumpyEncoder)
            else:
                json.dump(data, f, cls=NumpyEncoder)
        return path

    def write_comparison(
        self,
        comparison: RankComparison,
        filename: str | None = None,
    ) -> Path:
        """Write a rank comparison as heatmap records (row/col/value)."""
        records = []
        for gene in comparison.ranks.index:
            for species in comparison.ranks.columns:
                rank = comparison.ranks.at[gene, species]
                records.append({
                    "row": gene,
                    "col": species,
                    "value": None if pd.isna(rank) else int(rank),
                })

        data = {
            "group": comparison.group,
            "reference_species": comparison.reference_species,
            "top_n": comparison.top_n,
            "rows": comparison.ranks.index.tolist(),
            "cols": comparison.ranks.columns.tolist(),
            "records": records,
            "omissions": comparison.omissions,
            "median_ranks": {
                sp: (None if pd.isna(v) else float(v))
                for sp, v in comparison.median_ranks().items()
            },
        }
        data = self._add_metadata(data)
        return self._write_json(data, filename or f"rank_comparison_{comparison.group}.json")

    def write_resampling_summary(
        self,
        result: ResamplingResult,
        filename: str = "resampling.json",
    ) -> Path:
        """Write resampling run accounting (iterations, failures, seed)."""
        data = self._add_metadata(result.to_dict())
        return self._write_json(data, filename)

    def write_summary_stats(
        self,
        stats: Mapping[str, Any],
        filename: str = "summary.json",
    ) -> Path:
        """Write summary statistics."""
        data = self._add_metadata(dict(stats))
        return self._write_json(data, filename)

    def write_comparison_summary(
        self,
        comparisons: Mapping[str, RankComparison],
        filename: str = "comparison_summary.json",
    ) -> Path:
        """Write per-group, per-species rank statistics of a comparison run."""
        table = summary_table(comparisons)
        records = table.astype(object).where(table.notna(), None).to_dict(orient="records")

        first = next(iter(comparisons.values()), None)
        stats = {
            "reference_species": first.reference_species if first else None,
            "top_n": first.top_n if first else None,
            "groups": list(comparisons),
            "concordance": {
                group: {
                    sp: (None if pd.isna(v) else float(v))
                    for sp, v in comp.concordance().items()
                }
                for group, comp in comparisons.items()
            },
            "summary": records,
        }
        return self.write_summary_stats(stats, filename)
