"""
Specificity index scoring.

The specificity index of gene i for group g is the fraction of the gene's
cross-group expression attributable to g:

    score(i, g) = c(i, g) / sum_h c(i, h),   c(i, g) = max(mean_g(i), floor)

where ``floor`` is the bottom threshold guarding against spurious
specificity at noise level.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd

from orthospec.core.errors import (
    DegenerateInputError,
    NonFiniteScoreError,
    ShapeMismatchError,
)
from orthospec.expression.matrix import ExpressionMatrix

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class SpecificityTable:
    """Specificity scores for every gene against every group."""

    scores: pd.DataFrame
    """Specificity scores (genes x groups)."""

    group_means: Optional[pd.DataFrame] = None
    """Group means after clamping to the bottom threshold."""

    bottom_threshold: float = 0.0
    """Floor used for the computation."""

    species: Optional[str] = None
    """Species the table was computed for."""

    @property
    def genes(self) -> pd.Index:
        return self.scores.index

    @property
    def groups(self) -> tuple[str, ...]:
        return tuple(self.scores.columns)

    @property
    def n_genes(self) -> int:
        return self.scores.shape[0]

    def __contains__(self, gene: object) -> bool:
        return gene in self.scores.index

    def column(self, group: str) -> pd.Series:
        """Scores of every gene for one group."""
        if group not in self.scores.columns:
            where = f" for species '{self.species}'" if self.species else ""
            raise ShapeMismatchError(
                f"Group '{group}' has no samples in specificity table{where}",
                group=group,
            )
        return self.scores[group]

    def top_group(self) -> pd.Series:
        """Most specific group per gene (first group in column order on ties)."""
        return self.scores.idxmax(axis=1).rename("top_group")

    def to_frame(self) -> pd.DataFrame:
        """Copy of the score matrix."""
        return self.scores.copy()

    @classmethod
    def from_frame(
        cls,
        scores: pd.DataFrame,
        species: Optional[str] = None,
        bottom_threshold: float = 0.0,
    ) -> "SpecificityTable":
        """Wrap a previously computed score matrix (e.g. read from CSV)."""
        if scores.index.has_duplicates:
            raise ValueError("Duplicate gene identifiers in specificity table")
        scores = scores.astype(np.float64)
        scores.index = scores.index.astype(str)
        scores.columns = scores.columns.astype(str)

        invalid = ~np.isfinite(scores.to_numpy()).all(axis=1)
        if invalid.any():
            genes = scores.index[invalid].tolist()
            raise ValueError(f"Non-finite specificity scores for genes: {genes[:10]}")
        return cls(scores=scores, bottom_threshold=bottom_threshold, species=species)


class SpecificityCalculator:
    """
    Computes specificity index tables from an ExpressionMatrix.

    Example:
        >>> calculator = SpecificityCalculator(bottom_threshold=1.0)
        >>> table = calculator.compute(matrix)
        >>> table.column("hepatocyte").nlargest(10)
    """

    def __init__(self, bottom_threshold: float = 0.0):
        """
        Initialize calculator.

        Args:
            bottom_threshold: Group means below this value are raised to it
                before the ratio is taken.
        """
        if not math.isfinite(bottom_threshold) or bottom_threshold < 0:
            raise ValueError(f"bottom_threshold must be finite and >= 0, got {bottom_threshold}")
        self.bottom_threshold = float(bottom_threshold)

    def compute_scores(
        self,
        matrix: ExpressionMatrix,
        sample_indices: Optional[Mapping[str, np.ndarray]] = None,
    ) -> tuple[np.ndarray, np.ndarray]:
        """
        Compute raw score and clamped mean arrays.

        Args:
            matrix: Expression matrix.
            sample_indices: Replicate positions per group (all replicates
                if None).

        Returns:
            (scores, clamped_means), both genes x groups.
        """
        if matrix.n_groups < 2:
            raise DegenerateInputError(
                f"Specificity needs at least two groups, got {list(matrix.groups)}",
                groups=matrix.groups,
            )

        means = matrix.group_means(sample_indices)
        clamped = np.maximum(means, self.bottom_threshold)

        invalid = ~np.isfinite(clamped)
        if invalid.any():
            i, j = np.argwhere(invalid)[0]
            raise NonFiniteScoreError(
                gene=matrix.genes[i], group=matrix.groups[j], value=float(means[i, j])
            )

        totals = clamped.sum(axis=1, keepdims=True)
        # All-zero rows (floor of 0) are a tie across groups
        scores = np.divide(
            clamped,
            totals,
            out=np.full_like(clamped, 1.0 / matrix.n_groups),
            where=totals > 0,
        )
        return scores, clamped

    def compute(self, matrix: ExpressionMatrix) -> SpecificityTable:
        """Compute the specificity table for every gene and group."""
        scores, clamped = self.compute_scores(matrix)
        columns = pd.Index(matrix.groups, name="group")

        logger.debug(
            "Computed specificity for %d genes x %d groups (floor=%g)",
            matrix.n_genes, matrix.n_groups, self.bottom_threshold,
        )

        return SpecificityTable(
            scores=pd.DataFrame(scores, index=matrix.genes, columns=columns),
            group_means=pd.DataFrame(clamped, index=matrix.genes, columns=columns),
            bottom_threshold=self.bottom_threshold,
            species=matrix.species,
        )


def as_expression_matrix(
    matrix: Union[ExpressionMatrix, pd.DataFrame],
    group_labels: Optional[Sequence[str]] = None,
    group_order: Optional[Sequence[str]] = None,
    species: Optional[str] = None,
) -> ExpressionMatrix:
    """Accept either an ExpressionMatrix or a DataFrame plus labels."""
    if isinstance(matrix, ExpressionMatrix):
        if group_labels is None and group_order is None:
            return matrix
        return ExpressionMatrix(
            matrix.to_frame(),
            groups=matrix.group_labels if group_labels is None else group_labels,
            species=species or matrix.species,
            group_order=group_order,
        )
    if group_labels is None:
        raise ShapeMismatchError("group_labels are required with a DataFrame input")
    return ExpressionMatrix(matrix, groups=group_labels, species=species, group_order=group_order)


def compute_specificity(
    matrix: Union[ExpressionMatrix, pd.DataFrame],
    group_labels: Optional[Sequence[str]] = None,
    bottom_threshold: float = 0.0,
    group_order: Optional[Sequence[str]] = None,
    species: Optional[str] = None,
) -> SpecificityTable:
    """
    Convenience function for specificity scoring.

    Args:
        matrix: ExpressionMatrix, or a genes x samples DataFrame.
        group_labels: One group label per sample (required for DataFrames).
        bottom_threshold: Floor for group means.
        group_order: Explicit group column order.
        species: Species label attached to the result.

    Returns:
        SpecificityTable (genes x groups).
    """
    matrix = as_expression_matrix(matrix, group_labels, group_order, species)
    return SpecificityCalculator(bottom_threshold).compute(matrix)
